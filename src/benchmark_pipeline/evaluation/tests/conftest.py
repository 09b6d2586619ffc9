"""
Shared fixtures for evaluation tests.
"""
import pytest

from benchmark_pipeline.storage.models import PredictionAttempt


def build_attempt(index: int, challenger_correct: bool, baseline_correct: bool, archetype: str = "balanced"):
    return PredictionAttempt(
        game_id=f"g{index}",
        position_hash=f"{index:032x}",
        fen="rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1",
        move_index=20,
        challenger_prediction="white_wins",
        challenger_confidence=60.0,
        challenger_correct=challenger_correct,
        archetype=archetype,
        baseline_prediction="draw",
        baseline_confidence=55.0,
        baseline_correct=baseline_correct,
        baseline_eval_cp=12,
        baseline_depth=18,
        actual_result="white_wins",
        pool_name="VOLUME",
        data_source="lichess",
    )


@pytest.fixture
def make_attempt():
    return build_attempt


@pytest.fixture
def make_attempts():
    """
    Build attempts from cell counts of the 2x2 agreement table.

    Cells are given as (both_correct, challenger_only, baseline_only, both_wrong).
    """
    def _make(both_correct=0, challenger_only=0, baseline_only=0, both_wrong=0, archetype="balanced"):
        attempts = []
        cells = [
            (both_correct, True, True),
            (challenger_only, True, False),
            (baseline_only, False, True),
            (both_wrong, False, False),
        ]
        for count, c, b in cells:
            for _ in range(count):
                attempts.append(build_attempt(len(attempts), c, b, archetype))
        return attempts
    return _make
