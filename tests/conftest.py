"""
Pytest will auto-discover / import this file called 'conftest.py'.
This file defines fixtures/fakes required for testing multiple layers.
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Generator, Optional
from uuid import UUID

import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from chess_arbiter.core.config import Settings
from chess_arbiter.core.exceptions import DependencyFailure
from chess_arbiter.core.models import MatchRecord, MoveRecord
from chess_arbiter.db.schema import Base
from chess_arbiter.engine.position import ChessPositionEngine, ProposedMove
from chess_arbiter.services.arbitrator import MatchArbitrator
from chess_arbiter.services.background import Job, WriteBehindLog
from chess_arbiter.services.connections import ConnectionRegistry

# Setup an in-memory SQLite database for testing
DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    """Session factory bound to a test database. Tables are removed at teardown to make unit tests of repository independent of each other."""
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


# --- FAKES ---
class RecordingConnection:
    """Connection that keeps everything it was sent."""

    def __init__(self, connection_id: str = "conn") -> None:
        self.connection_id = connection_id
        self.messages: list[dict[str, Any]] = []

    def send(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    @property
    def types(self) -> list[str]:
        return [message["type"] for message in self.messages]

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.messages if message["type"] == message_type]

    def last(self) -> dict[str, Any]:
        return self.messages[-1]

    def clear(self) -> None:
        self.messages.clear()


class ManualTaskRunner:
    """Collects background jobs; the test decides when they run."""

    def __init__(self) -> None:
        self.jobs: list[tuple[str, Job]] = []

    def spawn(self, job: Job, name: str) -> None:
        self.jobs.append((name, job))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.jobs]

    def run_all(self) -> int:
        """Run jobs (including the ones spawned while running) until none are left."""
        count = 0
        while self.jobs:
            _, job = self.jobs.pop(0)
            asyncio.run(job())
            count += 1
        return count

    def discard(self) -> None:
        self.jobs.clear()


class MockRepository:
    """Mock the MatchRepository using dictionaries."""

    def __init__(self) -> None:
        self.matches: dict[UUID, MatchRecord] = {}
        self.moves: dict[UUID, list[MoveRecord]] = {}
        self.fail = False

    def save_match(self, match: MatchRecord) -> MatchRecord:
        self._maybe_fail()
        self.matches[match.id] = match
        return match

    def record_move(self, move: MoveRecord) -> MoveRecord:
        self._maybe_fail()
        self.moves.setdefault(move.match_id, []).append(move)
        return move

    def get_match(self, match_id: UUID) -> MatchRecord | None:
        return self.matches.get(match_id)

    def get_moves(self, match_id: UUID) -> list[MoveRecord]:
        return list(self.moves.get(match_id, []))

    def delete_match(self, match_id: UUID) -> MatchRecord | None:
        self.moves.pop(match_id, None)
        return self.matches.pop(match_id, None)

    def _maybe_fail(self) -> None:
        if self.fail:
            raise DependencyFailure("database is down")


class ScriptedOpponent:
    """Automated opponent that plays the given moves (UCI strings, or None for 'no move') in order."""

    def __init__(self, moves: Optional[list[Optional[str]]] = None) -> None:
        self.moves = list(moves or [])
        self.calls: list[tuple[str, int]] = []

    def propose_move(self, position: str, difficulty: int) -> Optional[ProposedMove]:
        self.calls.append((position, difficulty))
        if not self.moves:
            return None
        uci = self.moves.pop(0)
        return ProposedMove.from_uci(uci) if uci else None


class FixedClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ArbiterHarness:
    """Arbitrator wired to fakes, plus helpers to connect participants."""

    def __init__(self, opponent: Optional[ScriptedOpponent] = None, seed: int = 7) -> None:
        self.registry = ConnectionRegistry()
        self.runner = ManualTaskRunner()
        self.repository = MockRepository()
        self.clock = FixedClock()
        self.opponent = opponent or ScriptedOpponent()
        self.arbitrator = MatchArbitrator(
            engine=ChessPositionEngine(),
            opponent=self.opponent,
            registry=self.registry,
            persistence=WriteBehindLog(self.repository, self.runner),
            runner=self.runner,
            settings=Settings(),
            clock=self.clock,
            rng=random.Random(seed),
        )

    def connect(self, identity: str, connection_id: Optional[str] = None) -> RecordingConnection:
        connection = RecordingConnection(connection_id or f"{identity}-{len(self.registry.connections_for(identity))}")
        self.registry.register(identity, connection)
        return connection


@pytest.fixture
def harness() -> ArbiterHarness:
    return ArbiterHarness()
