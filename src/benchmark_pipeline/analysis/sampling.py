"""
Position sample extraction.

One sample per game: replay the first N plies with python-chess and take
the resulting position. N is derived from a hash of the game id, so the
same game always yields the same sample and the same position hash.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass

import chess

from benchmark_pipeline.ingestion.client import MalformedRecordError
from benchmark_pipeline.ingestion.models import GameId, GameRecord


@dataclass(frozen=True)
class PositionSample:
    """A position taken from a game, plus the moves that led to it."""
    game_id: GameId
    move_index: int
    fen: str
    moves_played: tuple[str, ...]

    @property
    def position_key(self) -> str:
        """FEN without the halfmove and fullmove clocks."""
        return position_key(self.fen)

    @property
    def position_hash(self) -> str:
        return position_hash(self.fen)

    @property
    def board(self) -> chess.Board:
        return chess.Board(self.fen)


def position_key(fen: str) -> str:
    return " ".join(fen.split(" ")[:4])


def position_hash(fen: str) -> str:
    return hashlib.sha256(position_key(fen).encode("utf-8")).hexdigest()[:32]


def choose_move_index(game_id: GameId, low: int, high: int, ply_count: int) -> int:
    """
    Deterministic ply index in [low, min(high, ply_count - 1)].

    Raises ValueError when the game is too short for the range.
    """
    upper = min(high, ply_count - 1)
    if upper < low:
        raise ValueError(f"game has {ply_count} plies, need more than {low}")
    digest = hashlib.sha256(game_id.raw.encode("utf-8")).digest()
    offset = int.from_bytes(digest[:8], "big") % (upper - low + 1)
    return low + offset


def extract_sample(game: GameRecord, min_move_index: int, max_move_index: int) -> PositionSample:
    """
    Replay the game up to its sample ply.

    Raises MalformedRecordError if the game is too short or a move is illegal.
    """
    try:
        index = choose_move_index(game.game_id, min_move_index, max_move_index, game.ply_count)
    except ValueError as e:
        raise MalformedRecordError(str(e), game_id=game.game_id.raw)

    board = chess.Board()
    played = game.moves[:index]
    for ply, san in enumerate(played, start=1):
        try:
            board.push_san(san)
        except ValueError as e:
            raise MalformedRecordError(f"illegal move {san!r} at ply {ply}: {e}", game_id=game.game_id.raw)

    return PositionSample(
        game_id=game.game_id,
        move_index=index,
        fen=board.fen(),
        moves_played=tuple(played),
    )
