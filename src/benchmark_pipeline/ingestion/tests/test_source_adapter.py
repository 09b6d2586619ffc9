"""
Tests for SourceAdapter.fetch_batch: exclusion, no starvation, window rotation.
"""
import pytest

from benchmark_pipeline.ingestion.client import RateLimitedError, TransientNetworkError
from benchmark_pipeline.ingestion.models import GameId


def ids(result):
    return [game.game_id.raw for game in result]


# =============================================================================
# Exclusion and batch size
# =============================================================================


class TestFetchBatchExclusion:
    @pytest.mark.asyncio
    async def test_known_ids_are_skipped_and_batch_filled_from_the_rest(
        self, make_adapter, make_raw_games, small_pool
    ):
        adapter = make_adapter(games_by_player={"p1": make_raw_games("g1", "g2", "g3", "g4", "g5", "g6")})

        result = await adapter.fetch_batch(small_pool, exclude_ids={GameId("g1"), GameId("g2")})

        assert ids(result) == ["g3", "g4", "g5"]
        assert result.excluded_count == 2
        assert result.fetched_count == 6

    @pytest.mark.asyncio
    async def test_returns_every_fresh_game_when_fewer_than_batch(
        self, make_adapter, make_raw_games, small_pool
    ):
        adapter = make_adapter(games_by_player={"p1": make_raw_games("g1", "g2", "g3")})

        result = await adapter.fetch_batch(small_pool, exclude_ids={GameId("g1")})

        assert ids(result) == ["g2", "g3"]

    @pytest.mark.asyncio
    async def test_all_known_returns_empty(self, make_adapter, make_raw_games, small_pool):
        adapter = make_adapter(games_by_player={"p1": make_raw_games("g1", "g2")})

        result = await adapter.fetch_batch(small_pool, exclude_ids={GameId("g1"), GameId("g2")})

        assert len(result) == 0
        assert result.excluded_count == 2

    @pytest.mark.asyncio
    async def test_exclusion_uses_canonical_identity(self, make_adapter, make_raw_games, small_pool):
        adapter = make_adapter(games_by_player={"p1": make_raw_games("li_g1", "lichess_g2", "g3")})

        result = await adapter.fetch_batch(small_pool, exclude_ids={GameId("g1"), GameId("g2")})

        assert ids(result) == ["g3"]

    @pytest.mark.asyncio
    async def test_duplicates_within_one_fetch_are_dropped(self, make_adapter, make_raw_games, small_pool):
        adapter = make_adapter(games_by_player={"p1": make_raw_games("g1", "g1", "g2")})

        result = await adapter.fetch_batch(small_pool, exclude_ids=set())

        assert ids(result) == ["g1", "g2"]

    @pytest.mark.asyncio
    async def test_explicit_limit_overrides_batch_size(self, make_adapter, make_raw_games, small_pool):
        adapter = make_adapter(games_by_player={"p1": make_raw_games("g1", "g2", "g3")})

        result = await adapter.fetch_batch(small_pool, exclude_ids=set(), limit=1)

        assert ids(result) == ["g1"]

    @pytest.mark.asyncio
    async def test_raw_request_capped_by_fetch_limit(self, make_adapter, make_raw_games, small_pool):
        pool = small_pool.with_updates(batch_size=1, fetch_multiplier=2)
        adapter = make_adapter(games_by_player={"p1": make_raw_games("g1", "g2", "g3")})

        result = await adapter.fetch_batch(pool, exclude_ids={GameId("g1"), GameId("g2")})

        assert adapter.calls[0][2] == 2
        assert result.fetched_count == 2
        assert len(result) == 0

    @pytest.mark.asyncio
    async def test_result_iterates_games(self, make_adapter, make_raw_games, small_pool):
        adapter = make_adapter(games_by_player={"p1": make_raw_games("g1")})

        result = await adapter.fetch_batch(small_pool, exclude_ids=set())

        assert list(result) == result.games


# =============================================================================
# Malformed records and provider errors
# =============================================================================


class TestFetchBatchErrors:
    @pytest.mark.asyncio
    async def test_malformed_records_returned_separately(self, make_adapter, small_pool):
        adapter = make_adapter(games_by_player={"p1": [{"id": "bad1", "bad": True}, {"id": "g2"}]})

        result = await adapter.fetch_batch(small_pool, exclude_ids=set())

        assert ids(result) == ["g2"]
        assert len(result.malformed) == 1
        assert result.malformed[0].game_id == GameId("bad1")
        assert result.malformed[0].reason == "bad record"

    @pytest.mark.asyncio
    async def test_known_malformed_record_is_not_reported_again(self, make_adapter, small_pool):
        adapter = make_adapter(games_by_player={"p1": [{"id": "bad1", "bad": True}]})

        result = await adapter.fetch_batch(small_pool, exclude_ids={GameId("bad1")})

        assert result.malformed == []

    @pytest.mark.asyncio
    async def test_malformed_without_id(self, make_adapter, small_pool):
        adapter = make_adapter(games_by_player={"p1": [{"bad": True}]})

        result = await adapter.fetch_batch(small_pool, exclude_ids=set())

        assert result.malformed[0].game_id is None

    @pytest.mark.asyncio
    async def test_rate_limit_ends_fetch_early(self, make_adapter, make_raw_games, small_pool):
        adapter = make_adapter(
            players=("p1", "p2"),
            games_by_player={"p2": make_raw_games("g1")},
            errors={"p1": RateLimitedError("slow down", retry_after=5)},
        )

        result = await adapter.fetch_batch(small_pool, exclude_ids=set())

        assert result.rate_limited is True
        assert len(result) == 0
        assert len(adapter.calls) == 1

    @pytest.mark.asyncio
    async def test_transient_error_moves_on_to_next_player(self, make_adapter, make_raw_games, small_pool):
        adapter = make_adapter(
            players=("p1", "p2"),
            games_by_player={"p2": make_raw_games("g1")},
            errors={"p1": TransientNetworkError("reset")},
        )

        result = await adapter.fetch_batch(small_pool, exclude_ids=set())

        assert ids(result) == ["g1"]
        assert len(result.errors) == 1
        # p1 was never scanned, so the window must not advance yet
        planner = adapter.planner_for(small_pool)
        assert planner.cursor == result.window.until


# =============================================================================
# Player rotation and windows
# =============================================================================


class TestFetchBatchRotation:
    @pytest.mark.asyncio
    async def test_window_advances_only_after_every_player_scanned(
        self, make_adapter, make_raw_games, small_pool
    ):
        adapter = make_adapter(
            players=("p1", "p2"),
            games_by_player={
                "p1": make_raw_games("a1", "a2", "a3", "a4"),
                "p2": make_raw_games("b1", "b2", "b3", "b4"),
            },
        )

        first = await adapter.fetch_batch(small_pool, exclude_ids=set())
        second = await adapter.fetch_batch(small_pool, exclude_ids=set())
        third = await adapter.fetch_batch(small_pool, exclude_ids=set())

        assert [call[0] for call in adapter.calls] == ["p1", "p2", "p1"]
        assert first.window == second.window
        assert third.window.until == first.window.since
        assert not third.window.overlaps(first.window)

    @pytest.mark.asyncio
    async def test_no_player_window_pair_requested_twice(
        self, make_adapter, make_raw_games, small_pool
    ):
        adapter = make_adapter(
            players=("p1", "p2", "p3"),
            games_by_player={"p1": make_raw_games("a1", "a2", "a3")},
        )

        first = await adapter.fetch_batch(small_pool, exclude_ids=set())
        second = await adapter.fetch_batch(small_pool, exclude_ids={game.game_id for game in first})
        third = await adapter.fetch_batch(small_pool, exclude_ids={game.game_id for game in first})

        pairs = [(player, window) for player, window, _ in adapter.calls]
        assert len(pairs) == len(set(pairs))
        assert [player for player, _ in pairs] == ["p1", "p2", "p3", "p1", "p2", "p3"]
        assert second.window == first.window
        assert all(window == third.window for _, window in pairs[3:])
        assert not third.window.overlaps(first.window)

    @pytest.mark.asyncio
    async def test_failed_player_is_retried_in_same_window(
        self, make_adapter, make_raw_games, small_pool
    ):
        adapter = make_adapter(
            players=("p1", "p2"),
            errors={"p1": TransientNetworkError("reset")},
        )

        first = await adapter.fetch_batch(small_pool, exclude_ids=set())
        adapter.errors.clear()
        second = await adapter.fetch_batch(small_pool, exclude_ids=set())

        assert [call[0] for call in adapter.calls] == ["p1", "p2", "p1"]
        assert second.window == first.window
        assert adapter.planner_for(small_pool).cursor == first.window.since

    @pytest.mark.asyncio
    async def test_pools_start_on_different_players(self, make_adapter, small_pool):
        adapter = make_adapter(players=("p1", "p2", "p3", "p4"))
        deep = small_pool.with_updates(name="DEEP")

        await adapter.fetch_batch(small_pool, exclude_ids=set(), limit=1)
        first_volume = adapter.calls[0][0]
        adapter.calls.clear()
        await adapter.fetch_batch(deep, exclude_ids=set(), limit=1)

        assert first_volume == "p1"
        assert adapter.calls[0][0] == "p4"

    @pytest.mark.asyncio
    async def test_pools_keep_independent_windows(self, make_adapter, make_raw_games, small_pool):
        adapter = make_adapter(games_by_player={"p1": make_raw_games("g1")})
        deep = small_pool.with_updates(name="DEEP", window_offset_days=30.0, window_span_hours=24.0)

        await adapter.fetch_batch(small_pool, exclude_ids=set())
        volume_planner = adapter.planner_for(small_pool)
        deep_planner = adapter.planner_for(deep)

        assert volume_planner is not deep_planner
        assert deep_planner.current_window().until < volume_planner.current_window().since

    def test_adapter_needs_players(self, gate):
        from benchmark_pipeline.ingestion.lichess import LichessAdapter

        with pytest.raises(ValueError):
            LichessAdapter(gate, players=[])
