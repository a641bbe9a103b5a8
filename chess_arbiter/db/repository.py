"""Protocol repository: the Persistence Gateway the Arbitrator writes behind to."""

from typing import Protocol
from uuid import UUID

from chess_arbiter.core.models import MatchRecord, MoveRecord


class MatchRepository(Protocol):
    """Persistence layer orchestration"""

    def save_match(self, match: MatchRecord) -> MatchRecord:
        """Create the record, or overwrite the stored snapshot if it already exists."""
        ...

    def record_move(self, move: MoveRecord) -> MoveRecord:
        """Append a move to the match's history."""
        ...

    def get_match(self, match_id: UUID) -> MatchRecord | None:
        """Get match by ID, if record exists."""
        ...

    def get_moves(self, match_id: UUID) -> list[MoveRecord]:
        """Moves of a match in the order they were recorded."""
        ...

    def delete_match(self, match_id: UUID) -> MatchRecord | None:
        """Remove a match's record (and its moves)."""
        ...
