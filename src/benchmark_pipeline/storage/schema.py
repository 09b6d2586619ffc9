"""
PostgreSQL DDL for the benchmark pipeline.

Statements are idempotent and applied in order by Database.apply_schema().
"""

SCHEMA_STATEMENTS: tuple[str, ...] = (
    # -------------------------------------------------------------------------
    # Dedup ledger: one row per canonical game id, append-only
    # -------------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS dedup_ledger (
        game_id       TEXT PRIMARY KEY,
        status        TEXT NOT NULL CHECK (status IN ('accepted', 'permanently_failed')),
        source        TEXT,
        reason        TEXT,
        first_seen_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    # -------------------------------------------------------------------------
    # Prediction attempts: immutable, one per position sample
    # -------------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS prediction_attempts (
        id                    BIGSERIAL PRIMARY KEY,
        game_id               TEXT NOT NULL UNIQUE,
        position_hash         TEXT NOT NULL UNIQUE,
        fen                   TEXT NOT NULL,
        move_index            INTEGER NOT NULL,
        challenger_prediction TEXT NOT NULL,
        challenger_confidence DOUBLE PRECISION NOT NULL,
        challenger_correct    BOOLEAN NOT NULL,
        archetype             TEXT NOT NULL,
        baseline_prediction   TEXT NOT NULL,
        baseline_confidence   DOUBLE PRECISION NOT NULL,
        baseline_correct      BOOLEAN NOT NULL,
        baseline_eval_cp      INTEGER,
        baseline_mate         INTEGER,
        baseline_depth        INTEGER NOT NULL,
        actual_result         TEXT NOT NULL,
        pool_name             TEXT NOT NULL,
        data_source           TEXT NOT NULL,
        white_rating          INTEGER,
        black_rating          INTEGER,
        time_control          TEXT,
        analysis_time_ms      INTEGER,
        run_id                TEXT,
        created_at            TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_prediction_attempts_pool
        ON prediction_attempts (pool_name, created_at DESC)
    """,
    # -------------------------------------------------------------------------
    # Evolution state: upserted by state_id
    # -------------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS evolution_state (
        state_id           TEXT PRIMARY KEY,
        generation         INTEGER NOT NULL DEFAULT 0,
        weights            JSONB NOT NULL,
        fitness_score      DOUBLE PRECISION NOT NULL DEFAULT 0,
        deployment_status  TEXT NOT NULL DEFAULT 'baseline',
        auto_deploy        BOOLEAN NOT NULL DEFAULT TRUE,
        last_mutation_at   TIMESTAMPTZ,
        updated_at         TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS promotion_snapshots (
        id                  BIGSERIAL PRIMARY KEY,
        state_id            TEXT NOT NULL REFERENCES evolution_state (state_id),
        generation          INTEGER NOT NULL,
        challenger_accuracy DOUBLE PRECISION NOT NULL,
        baseline_accuracy   DOUBLE PRECISION NOT NULL,
        improvement         DOUBLE PRECISION NOT NULL,
        p_value             DOUBLE PRECISION NOT NULL,
        sample_size         INTEGER NOT NULL,
        weights             JSONB NOT NULL,
        promoted_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (state_id)
    )
    """,
    # -------------------------------------------------------------------------
    # Batch runs
    # -------------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS batch_runs (
        run_id          TEXT PRIMARY KEY,
        pool_name       TEXT NOT NULL,
        window_start    TIMESTAMPTZ,
        window_end      TIMESTAMPTZ,
        fetched_count   INTEGER NOT NULL DEFAULT 0,
        accepted_count  INTEGER NOT NULL DEFAULT 0,
        rejected_count  INTEGER NOT NULL DEFAULT 0,
        failed_count    INTEGER NOT NULL DEFAULT 0,
        malformed_count INTEGER NOT NULL DEFAULT 0,
        status          TEXT NOT NULL DEFAULT 'running',
        error           TEXT,
        started_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
        completed_at    TIMESTAMPTZ
    )
    """,
)
