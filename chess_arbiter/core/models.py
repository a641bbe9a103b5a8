"""
Boundary layer data model(s).

The Arbitrator hands these records to the persistence layer (and the HTTP query surface reads them back).
Decouples the in-memory Match (which is mutated during play) from what gets written to the durable store.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID


@dataclass
class MatchRecord:
    """Snapshot of a match as it gets written to the durable store."""

    id: UUID
    position: str
    phase: str
    white: Optional[str]
    black: Optional[str]
    mode: str
    time_control: Optional[str]
    difficulty: int
    created_at: datetime
    updated_at: datetime
    result: Optional[str] = None
    winner: Optional[str] = None


@dataclass
class MoveRecord:
    """One applied move. Insertion-ordered per match."""

    match_id: UUID
    from_square: str
    to_square: str
    promotion: Optional[str]
    mover: str
    created_at: datetime
