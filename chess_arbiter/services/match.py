"""
Live match state.

The MatchStore is the authoritative copy while a match is awaiting an opponent or in progress.
Only the Arbitrator mutates what is in here.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from chess_arbiter.core.models import MatchRecord
from chess_arbiter.core.shared_types import (
    AUTOMATED_OPPONENT,
    Identity,
    OpponentKind,
    Phase,
    Result,
    Side,
)


@dataclass
class Match:
    id: UUID
    position: str
    phase: Phase
    creator: Identity
    opponent_kind: OpponentKind
    mode: str
    time_control: Optional[str]
    difficulty: int
    created_at: datetime
    updated_at: datetime
    sides: dict[Side, Identity] = field(default_factory=dict)
    result: Optional[Result] = None
    winner: Optional[Side] = None

    @property
    def participants(self) -> set[Identity]:
        """Everyone involved, the creator included before sides are assigned."""
        return {self.creator, *self.sides.values()}

    @property
    def human_participants(self) -> set[Identity]:
        return self.participants - {AUTOMATED_OPPONENT}

    def assign_sides(self, white: Identity, black: Identity) -> None:
        if self.sides:
            raise ValueError(f"Sides of match {self.id} are already assigned.")
        if white == black and white != AUTOMATED_OPPONENT:
            raise ValueError("The same participant cannot play both sides.")
        self.sides = {Side.WHITE: white, Side.BLACK: black}

    def side_of(self, identity: Identity) -> Optional[Side]:
        return next((side for side, who in self.sides.items() if who == identity), None)

    def identity_of(self, side: Side) -> Optional[Identity]:
        return self.sides.get(side)

    def opponent_of(self, identity: Identity) -> Optional[Identity]:
        side = self.side_of(identity)
        if side is None:
            return None
        return self.sides.get(side.opposite())

    def conclude(self, result: Result, winner: Optional[Side], now: datetime) -> None:
        self.phase = Phase.CONCLUDED
        self.result = result
        self.winner = winner
        self.updated_at = now

    def to_record(self) -> MatchRecord:
        """Encode into the format the persistence layer uses."""
        return MatchRecord(
            id=self.id,
            position=self.position,
            phase=self.phase.value,
            white=self.sides.get(Side.WHITE),
            black=self.sides.get(Side.BLACK),
            mode=self.mode,
            time_control=self.time_control,
            difficulty=self.difficulty,
            created_at=self.created_at,
            updated_at=self.updated_at,
            result=self.result.value if self.result else None,
            winner=self.winner.value if self.winner else None,
        )


@dataclass
class PendingChallenge:
    """A match-to-be, waiting for whoever opens the shareable link."""

    id: UUID
    creator: Identity
    mode: str
    time_control: Optional[str]
    created_at: datetime

    @property
    def token(self) -> str:
        return self.id.hex


class MatchStore:
    """In-memory matches keyed by id."""

    def __init__(self) -> None:
        self._matches: dict[UUID, Match] = {}

    def add(self, match: Match) -> None:
        if match.id in self._matches:
            raise ValueError(f"Match {match.id} already stored.")
        self._matches[match.id] = match

    def get(self, match_id: UUID) -> Optional[Match]:
        return self._matches.get(match_id)

    def remove(self, match_id: UUID) -> Optional[Match]:
        return self._matches.pop(match_id, None)

    def matches_for(self, identity: Identity) -> list[Match]:
        return [match for match in self._matches.values() if identity in match.participants]

    def in_phase(self, phase: Phase) -> list[Match]:
        return [match for match in self._matches.values() if match.phase == phase]

    def __len__(self) -> int:
        return len(self._matches)
