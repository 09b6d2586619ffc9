"""
Scoring engines.

A scoring engine turns a position into an Evaluation from White's point of
view. Two implementations:
    - UciEngine: a local UCI engine process driven by python-chess
    - RemoteEvalEngine: an HTTP position-evaluation service (cloud eval)
      reached through a ProviderGate like any other provider
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import chess
import chess.engine

from benchmark_pipeline.ingestion.client import NotFoundError, ProviderClient

logger = logging.getLogger(__name__)

LICHESS_CLOUD_EVAL = "https://lichess.org/api/cloud-eval"


class EngineCrashed(Exception):
    """The engine process or service stopped responding."""
    pass


class EvaluationUnavailable(Exception):
    """The engine answered but has no evaluation for this position."""
    pass


@dataclass(frozen=True)
class Evaluation:
    """
    Engine verdict for one position.

    cp is in centipawns and mate in moves, both from White's side:
    positive favours White. Exactly one of them is set.
    """
    cp: Optional[int]
    mate: Optional[int]
    depth: int
    nodes: Optional[int] = None

    def __post_init__(self):
        if (self.cp is None) == (self.mate is None):
            raise ValueError("Evaluation needs exactly one of cp or mate")


class ScoringEngine(Protocol):
    """What the analysis worker needs from an engine."""

    name: str

    async def start(self) -> None: ...

    async def evaluate(self, fen: str, depth: int) -> Evaluation: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


class UciEngine:
    """
    Local UCI engine (Stockfish or compatible).

    Usage:
        engine = UciEngine("/usr/bin/stockfish", threads=2)
        await engine.start()
        evaluation = await engine.evaluate(fen, depth=18)
        await engine.close()
    """

    def __init__(self, path: str, threads: int = 1, hash_mb: int = 64, name: Optional[str] = None):
        self.path = path
        self.threads = threads
        self.hash_mb = hash_mb
        self.name = name or f"uci:{path}"
        self._transport: Any = None
        self._protocol: Optional[chess.engine.UciProtocol] = None

    @property
    def is_running(self) -> bool:
        return self._protocol is not None

    async def start(self) -> None:
        if self._protocol is not None:
            return
        try:
            self._transport, self._protocol = await chess.engine.popen_uci(self.path)
        except (OSError, chess.engine.EngineError) as e:
            raise EngineCrashed(f"Could not start {self.path}: {e}") from e

        options = {}
        if "Threads" in self._protocol.options:
            options["Threads"] = self.threads
        if "Hash" in self._protocol.options:
            options["Hash"] = self.hash_mb
        if options:
            await self._protocol.configure(options)
        logger.info(f"Engine started: {self._protocol.id.get('name', self.path)}")

    async def evaluate(self, fen: str, depth: int) -> Evaluation:
        if self._protocol is None:
            raise EngineCrashed("Engine not started")
        board = chess.Board(fen)
        try:
            info = await self._protocol.analyse(board, chess.engine.Limit(depth=depth))
        except chess.engine.EngineTerminatedError as e:
            self._protocol = None
            raise EngineCrashed(f"{self.name} terminated: {e}") from e

        score = info.get("score")
        if score is None:
            raise EvaluationUnavailable("engine returned no score")
        white = score.white()
        mate = white.mate()
        if mate == 0:
            # Already mated; keep only the sign of who won
            mate = 1 if white > chess.engine.Cp(0) else -1
        return Evaluation(
            cp=white.score(),
            mate=mate,
            depth=info.get("depth", depth),
            nodes=info.get("nodes"),
        )

    async def ping(self) -> None:
        """isready/readyok round trip. Raises if the engine is gone."""
        if self._protocol is None:
            raise EngineCrashed("Engine not started")
        try:
            await self._protocol.ping()
        except chess.engine.EngineTerminatedError as e:
            self._protocol = None
            raise EngineCrashed(f"{self.name} terminated: {e}") from e

    async def close(self) -> None:
        protocol, self._protocol = self._protocol, None
        if protocol is None:
            return
        try:
            await protocol.quit()
        except chess.engine.EngineTerminatedError:
            pass
        logger.info(f"Engine stopped: {self.name}")


class RemoteEvalEngine(ProviderClient):
    """
    Position evaluation over HTTP.

    Speaks the cloud-eval contract: GET ?fen=...&multiPv=1 returns
    {"depth": int, "pvs": [{"cp": int} | {"mate": int}]}, 404 when the
    position is not in the cache, 429 when rate limited. The depth argument
    is advisory; the service answers with whatever depth it has.
    """

    name = "remote-eval"

    def __init__(self, *args, url: str = LICHESS_CLOUD_EVAL, **kwargs):
        super().__init__(*args, **kwargs)
        self.url = url

    async def start(self) -> None:
        await self.__aenter__()

    async def evaluate(self, fen: str, depth: int) -> Evaluation:
        try:
            data = await self._request("GET", self.url, params={"fen": fen, "multiPv": "1"})
        except NotFoundError as e:
            raise EvaluationUnavailable("position not in evaluation cache") from e

        pvs = data.get("pvs") if isinstance(data, dict) else None
        if not pvs:
            raise EvaluationUnavailable("response carried no principal variation")
        best = pvs[0]
        cp = best.get("cp")
        mate = best.get("mate")
        if cp is None and mate is None:
            raise EvaluationUnavailable("principal variation carried no score")
        knodes = data.get("knodes")
        return Evaluation(
            cp=cp if mate is None else None,
            mate=mate,
            depth=int(data.get("depth", 0)),
            nodes=knodes * 1000 if isinstance(knodes, int) else None,
        )

    async def ping(self) -> None:
        if self._session is None or self._session.closed:
            raise EngineCrashed("HTTP session closed")
        await self.evaluate(chess.STARTING_FEN, depth=1)
