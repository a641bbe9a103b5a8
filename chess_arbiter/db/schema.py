"""Database tables / schema"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import ForeignKey
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DBMatch(Base):
    __tablename__ = "matches"
    id: Mapped[UUID] = mapped_column(primary_key=True)
    position: Mapped[str]
    phase: Mapped[str]
    white: Mapped[Optional[str]]
    black: Mapped[Optional[str]]
    mode: Mapped[str]
    time_control: Mapped[Optional[str]]
    difficulty: Mapped[int]
    result: Mapped[Optional[str]]
    winner: Mapped[Optional[str]]
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    moves: Mapped[list["DBMove"]] = relationship(
        back_populates="match", cascade="all, delete-orphan", order_by="DBMove.id"
    )


class DBMove(Base):
    __tablename__ = "moves"
    # autoincrement id doubles as the insertion order of a match's moves
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    match_id: Mapped[UUID] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"), index=True)
    from_square: Mapped[str]
    to_square: Mapped[str]
    promotion: Mapped[Optional[str]]
    mover: Mapped[str]
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    match: Mapped[DBMatch] = relationship(back_populates="moves")
