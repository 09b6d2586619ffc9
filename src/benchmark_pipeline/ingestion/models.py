"""
Data models for the ingestion layer.

These models represent data structures for:
- Canonical game identity (GameId)
- Finished games fetched from a provider (GameRecord)
- Fetch windows handed out by the window planner (TimeWindow)

Identity is canonicalised exactly once, here. Everything downstream of
an adapter compares GameId values, never raw provider strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class GameSource(str, Enum):
    """Upstream provider of a game."""
    LICHESS = "lichess"
    CHESSCOM = "chesscom"


class Outcome(str, Enum):
    """Three-way game outcome, from White's point of view."""
    WHITE_WINS = "white_wins"
    BLACK_WINS = "black_wins"
    DRAW = "draw"

    @classmethod
    def from_result(cls, result: str) -> "Outcome":
        """Parse a PGN result tag ("1-0", "0-1", "1/2-1/2")."""
        normalized = result.strip()
        if normalized == "1-0":
            return cls.WHITE_WINS
        if normalized == "0-1":
            return cls.BLACK_WINS
        if normalized in ("1/2-1/2", "½-½"):
            return cls.DRAW
        raise ValueError(f"Unrecognised result: {result!r}")


# Longest prefixes first so "chesscom_" wins over "cc_"-style shorter matches
_ID_PREFIXES = (
    "chesscom_",
    "chesscom:",
    "lichess_",
    "lichess:",
    "cc_",
    "li_",
)
_URL_PATTERN = re.compile(r"^https?://[^/]+/(?:.*/)?(?P<tail>[^/?#]+)/?(?:[?#].*)?$")
_RAW_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


@dataclass(frozen=True)
class GameId:
    """
    Canonical game identity.

    Equality and hashing use only the raw id, so "cc_123", "chesscom_123"
    and "123" are the same game. The source travels along for logging but
    never affects identity.
    """
    raw: str
    source: Optional[GameSource] = field(default=None, compare=False, hash=False)

    def __post_init__(self):
        if not self.raw or not _RAW_ID_PATTERN.match(self.raw):
            raise ValueError(f"Invalid raw game id: {self.raw!r}")

    @classmethod
    def parse(cls, value: str, source: Optional[GameSource] = None) -> "GameId":
        """
        Build a GameId from any provider spelling.

        Accepts bare ids, prefixed ids (cc_, li_, lichess_, chesscom_...)
        and game URLs.
        """
        if value is None:
            raise ValueError("Game id is missing")

        text = str(value).strip()
        url_match = _URL_PATTERN.match(text)
        if url_match:
            text = url_match.group("tail")

        lowered = text.lower()
        for prefix in _ID_PREFIXES:
            if lowered.startswith(prefix):
                text = text[len(prefix):]
                break

        return cls(raw=text, source=source)

    def __str__(self) -> str:
        return self.raw


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [since, until) of game end times."""
    since: datetime
    until: datetime

    def __post_init__(self):
        if self.since >= self.until:
            raise ValueError(f"Empty window: {self.since} >= {self.until}")

    @property
    def since_ms(self) -> int:
        return int(self.since.timestamp() * 1000)

    @property
    def until_ms(self) -> int:
        return int(self.until.timestamp() * 1000)

    def contains(self, moment: datetime) -> bool:
        return self.since <= moment < self.until

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.since < other.until and other.since < self.until


@dataclass(frozen=True)
class GameRecord:
    """
    Finished game fetched from a provider.

    Transient: discarded once a position sample has been extracted.

    Attributes:
        game_id: Canonical identity
        source: Provider the game came from
        moves: SAN move list, White first
        result: Final outcome
        white_rating / black_rating: Participant ratings when known
        time_control: Provider time-control class (blitz, rapid...)
        played_at: When the game ended
        display_name: "White vs Black" label for logs and dashboards
    """
    game_id: GameId
    source: GameSource
    moves: tuple[str, ...]
    result: Outcome
    white_rating: Optional[int] = None
    black_rating: Optional[int] = None
    time_control: Optional[str] = None
    played_at: Optional[datetime] = None
    display_name: str = ""
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ply_count(self) -> int:
        return len(self.moves)
