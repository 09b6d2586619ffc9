"""
The two competing predictors and the comparator.

Baseline: deterministic thresholding of the engine evaluation.
Challenger: weighted move-pattern features only (never sees the engine
score), tagged with the archetype of the position's move history.
Both predict one of Outcome.WHITE_WINS / BLACK_WINS / DRAW.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from benchmark_pipeline.analysis.engine import Evaluation
from benchmark_pipeline.ingestion.models import Outcome

# =============================================================================
# SHARED TYPES
# =============================================================================


@dataclass(frozen=True)
class Prediction:
    outcome: Outcome
    confidence: float
    archetype: Optional[str] = None


@dataclass(frozen=True)
class Comparison:
    challenger: Prediction
    baseline: Prediction
    actual: Outcome

    @property
    def challenger_correct(self) -> bool:
        return self.challenger.outcome == self.actual

    @property
    def baseline_correct(self) -> bool:
        return self.baseline.outcome == self.actual


def compare(challenger: Prediction, baseline: Prediction, actual: Outcome) -> Comparison:
    return Comparison(challenger=challenger, baseline=baseline, actual=actual)


# =============================================================================
# BASELINE
# =============================================================================

DECISIVE_CP = 50
LEANING_CP = 15
MAX_BASELINE_CONFIDENCE = 95.0


def baseline_prediction(evaluation: Evaluation) -> Prediction:
    """
    Map an engine evaluation to a class.

    |cp| > 50 is decisive, 15 < |cp| <= 50 leans, anything closer is a draw.
    A mate score always favours the side delivering mate.
    """
    if evaluation.mate is not None:
        outcome = Outcome.WHITE_WINS if evaluation.mate > 0 else Outcome.BLACK_WINS
        return Prediction(outcome=outcome, confidence=MAX_BASELINE_CONFIDENCE)

    cp = evaluation.cp
    magnitude = abs(cp)
    if cp > DECISIVE_CP:
        return Prediction(Outcome.WHITE_WINS, min(MAX_BASELINE_CONFIDENCE, 50 + magnitude / 8))
    if cp < -DECISIVE_CP:
        return Prediction(Outcome.BLACK_WINS, min(MAX_BASELINE_CONFIDENCE, 50 + magnitude / 8))
    if cp > LEANING_CP:
        return Prediction(Outcome.WHITE_WINS, 40 + magnitude)
    if cp < -LEANING_CP:
        return Prediction(Outcome.BLACK_WINS, 40 + magnitude)
    return Prediction(Outcome.DRAW, 35 + (LEANING_CP - magnitude) * 2)


# =============================================================================
# CHALLENGER
# =============================================================================

FEATURE_KEYS = ("kingside", "queenside", "center", "tempo", "aggression", "king_safety")

DEFAULT_WEIGHTS: dict[str, float] = {key: 1.0 / len(FEATURE_KEYS) for key in FEATURE_KEYS}

# Weight components each archetype leans on; the auto-tuner decays these
ARCHETYPE_FEATURES: dict[str, tuple[str, ...]] = {
    "kingside_attack": ("kingside", "aggression"),
    "queenside_expansion": ("queenside",),
    "central_domination": ("center",),
    "prophylactic_defense": ("king_safety",),
    "pawn_storm": ("tempo", "kingside"),
    "piece_harmony": ("center", "tempo"),
    "balanced": (),
    "unknown": (),
}

# Historical White score per archetype, 0.5 means no lean
ARCHETYPE_PRIORS: dict[str, float] = {
    "kingside_attack": 0.58,
    "queenside_expansion": 0.54,
    "central_domination": 0.62,
    "prophylactic_defense": 0.48,
    "pawn_storm": 0.55,
    "piece_harmony": 0.60,
    "balanced": 0.50,
    "unknown": 0.50,
}

_DESTINATION = re.compile(r"[a-h][1-8]")
_CENTER_SQUARES = {"d4", "e4", "d5", "e5"}


@dataclass(frozen=True)
class ChallengerConfig:
    """Thresholds for archetype tagging and class decisions. Tunable constants."""

    min_plies: int = 10
    kingside_threshold: float = 12.0
    queenside_threshold: float = 12.0
    wing_dominance_ratio: float = 1.2
    center_threshold: float = 10.0
    pawn_storm_window: int = 10
    pawn_storm_share: float = 0.6
    quiet_aggression: float = 2.0
    balanced_threshold: float = 6.0
    decisive_margin: float = 0.10
    prior_weight: float = 0.5
    max_confidence: float = 88.0


@dataclass
class SideFeatures:
    kingside: float = 0.0
    queenside: float = 0.0
    center: float = 0.0
    tempo: float = 0.0
    aggression: float = 0.0
    king_safety: float = 0.0
    castled: bool = False

    def get(self, key: str) -> float:
        return getattr(self, key)


@dataclass
class MoveFeatures:
    """Per-side move-pattern tallies for a move prefix."""

    white: SideFeatures = field(default_factory=SideFeatures)
    black: SideFeatures = field(default_factory=SideFeatures)
    ply_count: int = 0
    recent_pawn_share: float = 0.0

    def differential(self, key: str) -> float:
        """(white - black) / (white + black), in [-1, 1]."""
        w = self.white.get(key)
        b = self.black.get(key)
        total = w + b
        if total == 0:
            return 0.0
        return (w - b) / total

    def imbalance(self, key: str) -> float:
        return abs(self.white.get(key) - self.black.get(key))


def extract_features(moves: Sequence[str], pawn_storm_window: int = 10) -> MoveFeatures:
    """Tally move patterns per side from SAN moves, White first."""
    features = MoveFeatures(ply_count=len(moves))

    for idx, san in enumerate(moves):
        side = features.white if idx % 2 == 0 else features.black

        if "+" in san or "#" in san:
            side.aggression += 1

        if san.startswith("O-O-O"):
            side.king_safety += 2
            side.queenside += 1
            side.castled = True
            continue
        if san.startswith("O-O"):
            side.king_safety += 3
            side.kingside += 1
            side.castled = True
            continue

        squares = _DESTINATION.findall(san)
        if not squares:
            continue
        dest = squares[-1]

        if "x" in san:
            side.aggression += 1
        if san[0] in "abcdefgh":
            side.tempo += 1

        if dest in _CENTER_SQUARES:
            side.center += 5
        elif dest[0] in "efgh":
            side.kingside += 3
        else:
            side.queenside += 3

    recent = moves[-pawn_storm_window:]
    if recent:
        pawn_moves = sum(1 for san in recent if san and san[0] in "abcdefgh")
        features.recent_pawn_share = pawn_moves / len(recent)
    return features


def classify_archetype(features: MoveFeatures, config: ChallengerConfig = ChallengerConfig()) -> str:
    """Tag a move history with the archetype the challenger weights react to."""
    if features.ply_count < config.min_plies:
        return "unknown"

    if features.recent_pawn_share >= config.pawn_storm_share:
        return "pawn_storm"

    kingside = features.imbalance("kingside")
    queenside = features.imbalance("queenside")
    if kingside > config.kingside_threshold and kingside > queenside * config.wing_dominance_ratio:
        return "kingside_attack"
    if queenside > config.queenside_threshold and queenside > kingside * config.wing_dominance_ratio:
        return "queenside_expansion"

    if features.imbalance("center") > config.center_threshold:
        return "central_domination"

    total_aggression = features.white.aggression + features.black.aggression
    if features.white.castled and features.black.castled and total_aggression <= config.quiet_aggression:
        return "prophylactic_defense"

    if all(features.imbalance(key) < config.balanced_threshold for key in ("kingside", "queenside", "center")):
        return "balanced"

    return "piece_harmony"


class ChallengerPredictor:
    """
    Move-pattern predictor driven by the evolution weight vector.

    Usage:
        challenger = ChallengerPredictor()
        prediction = challenger.predict(sample.moves_played, state.weights)
    """

    def __init__(self, config: Optional[ChallengerConfig] = None):
        self.config = config or ChallengerConfig()

    def score(self, features: MoveFeatures, weights: Mapping[str, float]) -> float:
        return sum(weights.get(key, 0.0) * features.differential(key) for key in FEATURE_KEYS)

    def predict(self, moves: Sequence[str], weights: Mapping[str, float]) -> Prediction:
        features = extract_features(moves, self.config.pawn_storm_window)
        archetype = classify_archetype(features, self.config)

        prior = ARCHETYPE_PRIORS.get(archetype, 0.5)
        white_score = self.score(features, weights) + (prior - 0.5) * self.config.prior_weight
        margin = self.config.decisive_margin

        if white_score > margin:
            outcome = Outcome.WHITE_WINS
        elif white_score < -margin:
            outcome = Outcome.BLACK_WINS
        else:
            outcome = Outcome.DRAW

        if outcome == Outcome.DRAW:
            confidence = 35.0 + (margin - abs(white_score)) / margin * 20.0
        else:
            confidence = min(self.config.max_confidence, 45.0 + abs(white_score) * 50.0)

        return Prediction(outcome=outcome, confidence=round(confidence, 2), archetype=archetype)
