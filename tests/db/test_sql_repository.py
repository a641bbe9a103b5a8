"""Unit tests for chess_arbiter/db/sql_repository.py"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from chess_arbiter.core.exceptions import DependencyFailure
from chess_arbiter.core.models import MatchRecord, MoveRecord
from chess_arbiter.db.database import build_engine, build_session_factory, init_db
from chess_arbiter.db.sql_repository import SQLMatchRepository

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_record(**overrides) -> MatchRecord:
    values = dict(
        id=uuid4(),
        position="rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1",
        phase="in_progress",
        white="player_white",
        black="player_black",
        mode="standard",
        time_control="5+0",
        difficulty=1,
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(overrides)
    return MatchRecord(**values)


def test_save_new_match(session_factory: sessionmaker[Session]) -> None:
    """Conversion from a MatchRecord to DBMatch for a new entry to the database."""
    model = make_record()
    repo = SQLMatchRepository(session_factory)
    stored = repo.save_match(model)
    assert isinstance(stored, MatchRecord)
    assert stored == model


def test_get_match_by_id(session_factory: sessionmaker[Session]) -> None:
    """Create a match, then fetch it from db."""
    model = make_record(white=None, black=None, phase="awaiting_opponent", time_control=None)
    repo = SQLMatchRepository(session_factory)
    expected = repo.save_match(model)
    found = repo.get_match(model.id)
    assert found == expected


def test_get_unknown_match(session_factory: sessionmaker[Session]) -> None:
    """
    Should return None if ID does not match anything in database.

    NOTE with an empty database, any id is a valid test case.
    """
    repo = SQLMatchRepository(session_factory)
    assert repo.get_match(uuid4()) is None

    repo.save_match(make_record())
    assert repo.get_match(uuid4()) is None


def test_save_existing_match_overwrites_snapshot(session_factory: sessionmaker[Session]) -> None:
    repo = SQLMatchRepository(session_factory)
    model = make_record()
    repo.save_match(model)

    concluded = replace(
        model,
        position="rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 1 3",
        phase="concluded",
        result="checkmate",
        winner="black",
        updated_at=NOW + timedelta(minutes=3),
    )
    repo.save_match(concluded)

    found = repo.get_match(model.id)
    assert found == concluded
    # creation time is not touched by later snapshots
    assert found.created_at == NOW


def test_moves_keep_insertion_order(session_factory: sessionmaker[Session]) -> None:
    repo = SQLMatchRepository(session_factory)
    model = make_record()
    repo.save_match(model)
    moves = [
        MoveRecord(model.id, "e2", "e4", None, "player_white", NOW),
        MoveRecord(model.id, "e7", "e5", None, "player_black", NOW + timedelta(seconds=5)),
        MoveRecord(model.id, "g1", "f3", None, "player_white", NOW + timedelta(seconds=9)),
    ]
    for move in moves:
        assert repo.record_move(move) == move

    assert repo.get_moves(model.id) == moves
    assert repo.get_moves(uuid4()) == []


def test_delete_match(session_factory: sessionmaker[Session]) -> None:
    repo = SQLMatchRepository(session_factory)
    model = make_record()
    repo.save_match(model)
    repo.record_move(MoveRecord(model.id, "e2", "e4", None, "player_white", NOW))

    assert repo.delete_match(model.id) == model
    assert repo.get_match(model.id) is None
    assert repo.get_moves(model.id) == []
    assert repo.delete_match(model.id) is None


def test_database_errors_become_dependency_failures() -> None:
    """Tables never created: every call fails."""
    engine = build_engine("sqlite:///:memory:")
    repo = SQLMatchRepository(build_session_factory(engine))
    record = make_record()
    calls = [
        lambda: repo.save_match(record),
        lambda: repo.record_move(MoveRecord(record.id, "e2", "e4", None, "alice", record.created_at)),
        lambda: repo.get_match(record.id),
        lambda: repo.get_moves(record.id),
        lambda: repo.delete_match(record.id),
    ]
    for call in calls:
        with pytest.raises(DependencyFailure):
            call()


def test_init_db_with_file_database(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'matches.db'}")
    init_db(engine)
    repo = SQLMatchRepository(build_session_factory(engine))
    model = make_record()
    repo.save_match(model)
    assert repo.get_match(model.id) == model
