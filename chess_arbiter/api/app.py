"""
FastAPI application: the live WebSocket channel plus a small HTTP query surface.

Endpoints:
    WS   /ws?identity=<id>        live commands / notifications (identity is allocated if not given)
    GET  /api/games               matches waiting for an opponent in the open queue
    GET  /api/games/{match_id}    durable record of a match and its moves
    GET  /api/health
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import Any, AsyncIterator, Callable, Optional
from uuid import UUID, uuid4

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from chess_arbiter.api.dispatch import CommandDispatcher
from chess_arbiter.api.models import (
    AwaitingMatchResponse,
    Connected,
    ErrorNotification,
    MatchResponse,
    MoveResponse,
)
from chess_arbiter.core.config import Settings
from chess_arbiter.core.exceptions import DependencyFailure
from chess_arbiter.core.shared_types import AUTOMATED_OPPONENT
from chess_arbiter.db.database import build_engine, build_session_factory, init_db
from chess_arbiter.db.repository import MatchRepository
from chess_arbiter.db.sql_repository import SQLMatchRepository
from chess_arbiter.engine.opponent import AutomatedOpponent, MaterialSearchOpponent
from chess_arbiter.engine.position import ChessPositionEngine, PositionEngine
from chess_arbiter.services.arbitrator import MatchArbitrator
from chess_arbiter.services.background import AsyncioTaskRunner, WriteBehindLog
from chess_arbiter.services.connections import ConnectionRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)


class WebSocketConnection:
    """
    One open WebSocket.
    ---
    `send` only queues the message; a writer task drains the queue in order. That way the Arbitrator never waits on a slow client.
    Once a write fails the connection is closed for good: `on_closed` fires (the endpoint unregisters it there) and later sends are dropped.
    """

    def __init__(
        self,
        websocket: WebSocket,
        on_closed: Optional[Callable[["WebSocketConnection"], None]] = None,
    ) -> None:
        self.connection_id = uuid4().hex[:8]
        self.websocket = websocket
        self.on_closed = on_closed
        self.closed = False
        self._loop = asyncio.get_running_loop()
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._outbox.put_nowait(message)
        else:
            self._loop.call_soon_threadsafe(self._outbox.put_nowait, message)

    async def pump(self) -> None:
        """Writer loop, runs until cancelled or the socket is gone."""
        while True:
            message = await self._outbox.get()
            try:
                await self.websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.info("Connection %s closed while sending %s: %s", self.connection_id, message.get("type"), exc)
                self._close()
                return

    def _close(self) -> None:
        self.closed = True
        while not self._outbox.empty():
            self._outbox.get_nowait()
        if self.on_closed is not None:
            self.on_closed(self)


async def sweep_periodically(arbitrator: MatchArbitrator, interval: timedelta) -> None:
    while True:
        await asyncio.sleep(interval.total_seconds())
        try:
            arbitrator.sweep()
        except Exception:
            logger.exception("Sweep failed")


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[PositionEngine] = None,
    opponent: Optional[AutomatedOpponent] = None,
    repository: Optional[MatchRepository] = None,
) -> FastAPI:
    """
    Wire up the Arbitrator with its collaborators and expose it.

    Args:
        settings: configuration (read from the environment if not given)
        engine / opponent / repository: collaborators, defaults are python-chess and SQLAlchemy backed
    """
    settings = settings or Settings.from_env()
    configure_logging(settings)

    if repository is None:
        db_engine = build_engine(settings.database_url)
        init_db(db_engine)
        repository = SQLMatchRepository(build_session_factory(db_engine))

    runner = AsyncioTaskRunner()
    registry = ConnectionRegistry()
    arbitrator = MatchArbitrator(
        engine=engine or ChessPositionEngine(),
        opponent=opponent or MaterialSearchOpponent(),
        registry=registry,
        persistence=WriteBehindLog(repository, runner),
        runner=runner,
        settings=settings,
    )
    dispatcher = CommandDispatcher(arbitrator)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        runner.bind(asyncio.get_running_loop())
        sweeper = asyncio.create_task(sweep_periodically(arbitrator, settings.sweep_interval))
        logger.info("Chess arbiter started")
        try:
            yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            await runner.shutdown()
            logger.info("Chess arbiter stopped")

    app = FastAPI(title="Chess Arbiter", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.arbitrator = arbitrator
    app.state.repository = repository

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, identity: Optional[str] = None) -> None:
        await websocket.accept()
        if identity == AUTOMATED_OPPONENT:
            await websocket.close(code=1008, reason="Reserved identity.")
            return
        identity = identity or registry.allocate_identity()

        connection = WebSocketConnection(websocket, on_closed=lambda closed: registry.unregister(identity, closed))
        registry.register(identity, connection)
        connection.send(Connected(identity=identity).to_wire())
        writer = asyncio.create_task(connection.pump())
        try:
            while True:
                try:
                    payload = await websocket.receive_json()
                except json.JSONDecodeError:
                    connection.send(ErrorNotification(message="Messages must be valid JSON.").to_wire())
                    continue
                dispatcher.dispatch(identity, connection, payload)
        except WebSocketDisconnect:
            logger.info("Connection %s of %s disconnected", connection.connection_id, identity)
        finally:
            registry.unregister(identity, connection)
            writer.cancel()

    @app.get("/api/games", response_model=list[AwaitingMatchResponse])
    def list_awaiting_games() -> list[AwaitingMatchResponse]:
        return [
            AwaitingMatchResponse(
                match_id=match.id,
                creator=match.creator,
                mode=match.mode,
                time_control=match.time_control,
                created_at=match.created_at,
            )
            for match in arbitrator.awaiting_matches()
        ]

    @app.get("/api/games/{match_id}", response_model=MatchResponse)
    def get_game(match_id: UUID) -> MatchResponse:
        try:
            record = repository.get_match(match_id)
            moves = repository.get_moves(match_id) if record is not None else []
        except DependencyFailure as exc:
            logger.exception("Could not read game %s", match_id)
            raise HTTPException(status_code=503, detail="Game records are unavailable") from exc
        if record is None:
            raise HTTPException(status_code=404, detail=f"Game {match_id} not found")
        return MatchResponse(
            match_id=record.id,
            position=record.position,
            phase=record.phase,
            white=record.white,
            black=record.black,
            mode=record.mode,
            time_control=record.time_control,
            difficulty=record.difficulty,
            result=record.result,
            winner=record.winner,
            created_at=record.created_at,
            updated_at=record.updated_at,
            moves=[
                MoveResponse(
                    from_square=move.from_square,
                    to_square=move.to_square,
                    promotion=move.promotion,
                    mover=move.mover,
                    created_at=move.created_at,
                )
                for move in moves
            ],
        )

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "activeMatches": len(arbitrator.store)}

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
