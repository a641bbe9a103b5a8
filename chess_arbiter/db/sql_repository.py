"""Implementation of (Match)Repository using SQLAlchemy"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chess_arbiter.core.exceptions import DependencyFailure
from chess_arbiter.core.models import MatchRecord, MoveRecord
from chess_arbiter.db.schema import DBMatch, DBMove


class SQLMatchRepository:
    """
    Data stored using SQL / methods implemented using SQLAlchemy
    ---
    Every call opens its own short-lived session, so the repository can be used from the write-behind worker threads.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def save_match(self, match: MatchRecord) -> MatchRecord:
        """Create the record, or overwrite the stored snapshot if it already exists."""
        try:
            with self.session_factory() as db:
                match_db = db.get(DBMatch, match.id)
                if match_db is None:
                    match_db = DBMatch(id=match.id, created_at=match.created_at)
                    db.add(match_db)
                match_db.position = match.position
                match_db.phase = match.phase
                match_db.white = match.white
                match_db.black = match.black
                match_db.mode = match.mode
                match_db.time_control = match.time_control
                match_db.difficulty = match.difficulty
                match_db.result = match.result
                match_db.winner = match.winner
                match_db.updated_at = match.updated_at
                db.commit()
                db.refresh(match_db)
                return self._to_match_record(match_db)
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Could not save match {match.id}.") from exc

    def record_move(self, move: MoveRecord) -> MoveRecord:
        """Append a move to the match's history."""
        try:
            with self.session_factory() as db:
                move_db = DBMove(
                    match_id=move.match_id,
                    from_square=move.from_square,
                    to_square=move.to_square,
                    promotion=move.promotion,
                    mover=move.mover,
                    created_at=move.created_at,
                )
                db.add(move_db)
                db.commit()
                db.refresh(move_db)
                return self._to_move_record(move_db)
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Could not record move for match {move.match_id}.") from exc

    def get_match(self, match_id: UUID) -> MatchRecord | None:
        """Get match by ID, if record exists."""
        try:
            with self.session_factory() as db:
                match_db = db.get(DBMatch, match_id)
                if match_db:
                    return self._to_match_record(match_db)
                return None
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Could not load match {match_id}.") from exc

    def get_moves(self, match_id: UUID) -> list[MoveRecord]:
        """Moves of a match in the order they were recorded."""
        query = select(DBMove).where(DBMove.match_id == match_id).order_by(DBMove.id)
        try:
            with self.session_factory() as db:
                return [self._to_move_record(move_db) for move_db in db.scalars(query)]
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Could not load moves of match {match_id}.") from exc

    def delete_match(self, match_id: UUID) -> MatchRecord | None:
        """Remove a match's record (and its moves)."""
        try:
            with self.session_factory() as db:
                match_db = db.get(DBMatch, match_id)
                if not match_db:
                    return None
                record = self._to_match_record(match_db)
                db.delete(match_db)
                db.commit()
                return record
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Could not delete match {match_id}.") from exc

    # -- Internal helpers --
    def _to_match_record(self, match_db: DBMatch) -> MatchRecord:
        """Convert SQLAlchemy model to data transfer model."""
        return MatchRecord(
            id=match_db.id,
            position=match_db.position,
            phase=match_db.phase,
            white=match_db.white,
            black=match_db.black,
            mode=match_db.mode,
            time_control=match_db.time_control,
            difficulty=match_db.difficulty,
            created_at=_as_utc(match_db.created_at),
            updated_at=_as_utc(match_db.updated_at),
            result=match_db.result,
            winner=match_db.winner,
        )

    def _to_move_record(self, move_db: DBMove) -> MoveRecord:
        return MoveRecord(
            match_id=move_db.match_id,
            from_square=move_db.from_square,
            to_square=move_db.to_square,
            promotion=move_db.promotion,
            mover=move_db.mover,
            created_at=_as_utc(move_db.created_at),
        )


def _as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back without their timezone. Everything is stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
