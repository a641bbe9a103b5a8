"""
Matchmaking Queue: matches waiting for an opponent.

Two ways to wait:
* open queue -> first compatible (same mode, different creator) request pairs up, oldest entry first.
* challenge link -> a PendingChallenge that only exists until someone claims its token.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from chess_arbiter.core.exceptions import ConflictError, NotFoundError
from chess_arbiter.core.shared_types import Identity, Phase
from chess_arbiter.services.match import Match, PendingChallenge

DEFAULT_OPEN_QUEUE_TIMEOUT = timedelta(minutes=5)
DEFAULT_CHALLENGE_TIMEOUT = timedelta(minutes=60)


class MatchmakingQueue:
    def __init__(
        self,
        open_queue_timeout: timedelta = DEFAULT_OPEN_QUEUE_TIMEOUT,
        challenge_timeout: timedelta = DEFAULT_CHALLENGE_TIMEOUT,
    ) -> None:
        self.open_queue_timeout = open_queue_timeout
        self.challenge_timeout = challenge_timeout
        # mode -> insertion ordered entries (oldest first)
        self._queues: dict[str, OrderedDict[UUID, Match]] = {}
        self._challenges: dict[UUID, PendingChallenge] = {}

    # --- OPEN QUEUE ---
    def enqueue(self, match: Match) -> None:
        if match.phase != Phase.AWAITING_OPPONENT:
            raise ValueError(f"Only matches awaiting an opponent can be queued. status: {match.phase}")
        self._queues.setdefault(match.mode, OrderedDict())[match.id] = match

    def find_compatible(self, mode: str, excluding: Identity) -> Optional[Match]:
        """Oldest queued match of this mode that was not created by `excluding`. No other ranking."""
        for match in self._queues.get(mode, {}).values():
            if match.creator != excluding:
                return match
        return None

    def remove(self, match_id: UUID) -> Optional[Match]:
        for queue in self._queues.values():
            if match_id in queue:
                return queue.pop(match_id)
        return None

    def queued(self) -> list[Match]:
        """All queued matches, oldest first within each mode."""
        return [match for queue in self._queues.values() for match in queue.values()]

    # --- CHALLENGE LINKS ---
    def create_challenge(
        self,
        creator: Identity,
        mode: str,
        time_control: Optional[str],
        now: datetime,
    ) -> PendingChallenge:
        challenge = PendingChallenge(
            id=uuid4(),
            creator=creator,
            mode=mode,
            time_control=time_control,
            created_at=now,
        )
        self._challenges[challenge.id] = challenge
        return challenge

    def claim_challenge(self, token: str, claimant: Identity, now: datetime) -> PendingChallenge:
        """
        Claim (and thereby remove) a challenge.
        ----
        Fails with NotFoundError for unknown, already claimed or expired tokens and with ConflictError when the creator tries to claim it.
        A failed claim leaves the challenge in place (except when it turned out to be expired).
        """
        challenge_id = self._parse_token(token)
        challenge = self.get_challenge(challenge_id) if challenge_id else None
        if challenge is None:
            raise NotFoundError("Challenge not found or already claimed.")

        if self._is_expired(challenge.created_at, self.challenge_timeout, now):
            del self._challenges[challenge.id]
            raise NotFoundError("Challenge has expired.")

        if challenge.creator == claimant:
            raise ConflictError("You cannot join your own challenge.")

        del self._challenges[challenge.id]
        return challenge

    def get_challenge(self, challenge_id: UUID) -> Optional[PendingChallenge]:
        return self._challenges.get(challenge_id)

    def challenges_for(self, identity: Identity) -> list[PendingChallenge]:
        return [c for c in self._challenges.values() if c.creator == identity]

    def cancel_challenges_for(self, identity: Identity) -> list[PendingChallenge]:
        cancelled = self.challenges_for(identity)
        for challenge in cancelled:
            del self._challenges[challenge.id]
        return cancelled

    # --- EXPIRY ---
    def expire(self, now: datetime) -> tuple[list[Match], list[PendingChallenge]]:
        """Drop every open-queue entry and challenge past its timeout and return what was dropped."""
        expired_matches = [
            match
            for match in self.queued()
            if self._is_expired(match.created_at, self.open_queue_timeout, now)
        ]
        for match in expired_matches:
            self.remove(match.id)

        expired_challenges = [
            challenge
            for challenge in self._challenges.values()
            if self._is_expired(challenge.created_at, self.challenge_timeout, now)
        ]
        for challenge in expired_challenges:
            del self._challenges[challenge.id]

        return expired_matches, expired_challenges

    # -- Internal helpers --
    def _is_expired(self, created_at: datetime, timeout: timedelta, now: datetime) -> bool:
        return now - created_at >= timeout

    def _parse_token(self, token: str) -> Optional[UUID]:
        """Tokens are UUIDs, both the hex and the dashed form are accepted."""
        try:
            return UUID(token.strip())
        except (AttributeError, ValueError):
            return None
