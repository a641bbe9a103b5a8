"""
The Match Arbitrator: the only component that mutates match state.

awaiting_opponent -> in_progress -> concluded (+ in_progress -> in_progress on reset)

Every public operation runs under one arbitration lock, so commands coming in from different connection handlers
(or threads) are applied strictly one after the other. Notifications are queued on the connections while the lock is
held, which keeps the broadcast order of a match equal to the order its moves were applied.
Persistence and automated-opponent turns are handed off as background jobs.
"""

import asyncio
import logging
import random
import threading
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Optional
from uuid import UUID, uuid4

from chess_arbiter.api.models import (
    ChallengeCreated,
    CreateGameCommand,
    GameCancelled,
    GameCreated,
    GameOver,
    GameReset,
    GameStarted,
    MoveMade,
    Notification,
    OpponentDisconnected,
)
from chess_arbiter.core.config import Settings
from chess_arbiter.core.exceptions import (
    ConflictError,
    IllegalMoveError,
    NotFoundError,
    NotYourTurnError,
    RequestError,
)
from chess_arbiter.core.models import MoveRecord
from chess_arbiter.core.shared_types import (
    AUTOMATED_OPPONENT,
    Identity,
    OpponentKind,
    Phase,
    Result,
    Side,
)
from chess_arbiter.engine.opponent import AutomatedOpponent
from chess_arbiter.engine.position import MoveOutcome, PositionEngine, ProposedMove
from chess_arbiter.services.background import TaskRunner, WriteBehindLog
from chess_arbiter.services.connections import ConnectionRegistry
from chess_arbiter.services.match import Match, MatchStore, PendingChallenge
from chess_arbiter.services.matchmaking import MatchmakingQueue

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MatchArbitrator:
    """Orchestration of matchmaking, move arbitration, persistence and broadcast."""

    def __init__(
        self,
        engine: PositionEngine,
        opponent: AutomatedOpponent,
        registry: ConnectionRegistry,
        persistence: WriteBehindLog,
        runner: TaskRunner,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.engine = engine
        self.opponent = opponent
        self.registry = registry
        self.persistence = persistence
        self.runner = runner
        self.settings = settings or Settings()
        self.clock = clock
        self.rng = rng or random.Random()

        self.store = MatchStore()
        self.queue = MatchmakingQueue(
            open_queue_timeout=self.settings.open_queue_timeout,
            challenge_timeout=self.settings.challenge_timeout,
        )
        self._lock = threading.RLock()

        # Losing the last connection of an identity triggers disconnect handling.
        registry.add_unreachable_listener(self.handle_disconnect)

    # --- CREATE / JOIN ---
    def create_match(self, requester: Identity, command: CreateGameCommand) -> UUID:
        """
        Create a match against the requested kind of opponent. Returns the match id (the challenge token for links).
        ----
        * automated -> in progress right away
        * openQueue -> paired with the oldest compatible waiting match, or queued itself
        * challengeLink -> a PendingChallenge; no Match exists until someone claims it
        """
        self._assert_human(requester)
        handlers = {
            OpponentKind.AUTOMATED: self._create_automated_match,
            OpponentKind.OPEN_QUEUE: self._create_open_queue_match,
            OpponentKind.CHALLENGE_LINK: self._create_challenge,
        }
        with self._lock:
            return handlers[command.opponent_type](requester, command)

    def join_challenge(self, claimant: Identity, token: str) -> UUID:
        """Claim a challenge link. The challenge turns into a Match under the same id."""
        self._assert_human(claimant)
        with self._lock:
            now = self.clock()
            challenge = self.queue.claim_challenge(token, claimant, now)
            match = self._match_from_challenge(challenge, now)
            white, black = self._random_sides(challenge.creator, claimant)
            match.assign_sides(white, black)
            self.store.add(match)
            logger.info("Challenge %s claimed by %s", challenge.id, claimant)

            self.persistence.save_match(match.to_record())
            self._announce_start(match)
            return match.id

    # --- PLAY ---
    def make_move(
        self,
        requester: Identity,
        match_id: UUID,
        from_square: str,
        to_square: str,
        promotion: Optional[str] = None,
    ) -> MoveOutcome:
        """Attempt a move. Nothing about the match changes unless the Position Engine accepts it."""
        self._assert_human(requester)
        with self._lock:
            match = self._fetch_in_progress(match_id, requester)
            side_to_move = self.engine.side_to_move(match.position)
            if match.identity_of(side_to_move) != requester:
                raise NotYourTurnError("Not your turn.")
            return self._apply_move(match, requester, ProposedMove(from_square, to_square, promotion))

    async def play_automated_turn(self, match_id: UUID) -> None:
        """
        Let the automated opponent move.
        ----
        The move is computed outside the lock (in a worker thread). If the match moved on in the meantime (reset, resigned)
        the result is discarded. A missing, illegal or failed proposal is replaced by a random legal move, so the match never stalls.
        """
        with self._lock:
            match = self.store.get(match_id)
            if match is None or not self._is_automated_to_move(match):
                return
            position, difficulty = match.position, match.difficulty

        try:
            proposal = await asyncio.to_thread(self.opponent.propose_move, position, difficulty)
        except Exception:
            logger.exception("Automated opponent failed for match %s", match_id)
            proposal = None

        with self._lock:
            match = self.store.get(match_id)
            if match is None or match.position != position or not self._is_automated_to_move(match):
                logger.info("Discarding automated move for match %s: position changed meanwhile", match_id)
                return

            if proposal is not None:
                try:
                    self._apply_move(match, AUTOMATED_OPPONENT, proposal)
                    return
                except IllegalMoveError:
                    logger.warning("Automated opponent proposed illegal move %s in match %s", proposal.to_uci(), match_id)
            else:
                logger.warning("Automated opponent proposed no move in match %s", match_id)

            fallback = self._fallback_move(position)
            if fallback is None:
                logger.error("No legal move available for the automated side in match %s", match_id)
                return
            self._apply_move(match, AUTOMATED_OPPONENT, fallback)

    def resign(self, requester: Identity, match_id: UUID) -> None:
        self._assert_human(requester)
        with self._lock:
            match = self._fetch_in_progress(match_id, requester)
            side = match.side_of(requester)
            assert side is not None
            logger.info("%s resigned match %s", requester, match_id)
            self._conclude(match, Result.RESIGNATION, winner=side.opposite())

    def reset(self, requester: Identity, match_id: UUID) -> None:
        """Back to the starting position. Participants, sides and phase stay as they are."""
        self._assert_human(requester)
        with self._lock:
            match = self._fetch_in_progress(match_id, requester)
            match.position = self.engine.new_game_position()
            match.updated_at = self.clock()
            logger.info("%s reset match %s", requester, match_id)

            self.persistence.save_match(match.to_record())
            self._broadcast(match, GameReset(match_id=match.id, position=match.position))
            if self._is_automated_to_move(match):
                self._schedule_automated_turn(match)

    # --- CONNECTION LIFECYCLE ---
    def handle_disconnect(self, identity: Identity) -> None:
        """
        The identity lost its last connection.
        ----
        Waiting matches and challenges it created are withdrawn (nobody can be paired with an absent creator).
        Matches in progress continue: the peer gets an advisory notice, the identity may come back on a new connection.
        """
        with self._lock:
            for match in self.store.matches_for(identity):
                if match.phase == Phase.AWAITING_OPPONENT:
                    self._withdraw(match)
                elif match.phase == Phase.IN_PROGRESS:
                    opponent = match.opponent_of(identity)
                    if opponent is not None and opponent != AUTOMATED_OPPONENT:
                        self._send(opponent, OpponentDisconnected(match_id=match.id))

            for challenge in self.queue.cancel_challenges_for(identity):
                logger.info("Challenge %s withdrawn: creator %s disconnected", challenge.id, identity)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Periodic cleanup. Returns the number of matches / challenges removed.
        ----
        1. expired open-queue entries and challenge links (creator gets a cancellation notice)
        2. any match still awaiting an opponent past the open-queue timeout (lost cleanup events)
        3. matches in progress without activity for longer than the idle timeout -> abandoned
        """
        with self._lock:
            now = now or self.clock()
            expired_matches, expired_challenges = self.queue.expire(now)
            for match in expired_matches:
                self._expire(match.id, match.creator)
            for challenge in expired_challenges:
                self._send(challenge.creator, GameCancelled(match_id=challenge.id, reason="expired"))

            stale = [
                match
                for match in self.store.in_phase(Phase.AWAITING_OPPONENT)
                if now - match.created_at >= self.settings.open_queue_timeout
            ]
            for match in stale:
                self.queue.remove(match.id)
                self._expire(match.id, match.creator)

            idle = [
                match
                for match in self.store.in_phase(Phase.IN_PROGRESS)
                if now - match.updated_at >= self.settings.idle_timeout
            ]
            for match in idle:
                logger.info("Match %s abandoned after being idle since %s", match.id, match.updated_at)
                self._conclude(match, Result.ABANDONMENT, winner=None)

            removed = len(expired_matches) + len(expired_challenges) + len(stale) + len(idle)
            if removed:
                logger.info("Sweep removed %d match(es) / challenge(s)", removed)
            return removed

    # --- QUERIES ---
    def awaiting_matches(self, now: Optional[datetime] = None) -> list[Match]:
        """Open-queue matches still waiting for an opponent and younger than the expiry threshold, oldest first."""
        with self._lock:
            now = now or self.clock()
            return [
                match
                for match in self.queue.queued()
                if now - match.created_at < self.settings.open_queue_timeout
            ]

    def get_match(self, match_id: UUID) -> Optional[Match]:
        with self._lock:
            return self.store.get(match_id)

    # -- Internal helpers: creation --
    def _create_automated_match(self, requester: Identity, command: CreateGameCommand) -> UUID:
        now = self.clock()
        match = self._new_match(requester, command, Phase.IN_PROGRESS, now)
        if (command.preferred_color or Side.WHITE) == Side.WHITE:
            match.assign_sides(white=requester, black=AUTOMATED_OPPONENT)
        else:
            match.assign_sides(white=AUTOMATED_OPPONENT, black=requester)
        self.store.add(match)
        logger.info("Match %s created: %s against the automated opponent (difficulty %d)", match.id, requester, match.difficulty)

        self.persistence.save_match(match.to_record())
        self._announce_start(match)
        return match.id

    def _create_open_queue_match(self, requester: Identity, command: CreateGameCommand) -> UUID:
        now = self.clock()
        waiting = self.queue.find_compatible(command.mode, excluding=requester)
        if waiting is None:
            match = self._new_match(requester, command, Phase.AWAITING_OPPONENT, now)
            self.store.add(match)
            self.queue.enqueue(match)
            logger.info("Match %s created by %s, waiting for an opponent (mode %s)", match.id, requester, match.mode)

            self.persistence.save_match(match.to_record())
            self._send(requester, GameCreated(match_id=match.id, position=match.position))
            return match.id

        self.queue.remove(waiting.id)
        white, black = self._random_sides(waiting.creator, requester)
        waiting.assign_sides(white, black)
        waiting.phase = Phase.IN_PROGRESS
        waiting.updated_at = now
        logger.info("Match %s paired: %s joined %s", waiting.id, requester, waiting.creator)

        self.persistence.save_match(waiting.to_record())
        self._announce_start(waiting)
        return waiting.id

    def _create_challenge(self, requester: Identity, command: CreateGameCommand) -> UUID:
        challenge = self.queue.create_challenge(requester, command.mode, command.time_control, self.clock())
        logger.info("Challenge %s created by %s", challenge.id, requester)
        self._send(
            requester,
            ChallengeCreated(match_id=challenge.id, join_link=self.settings.join_link(challenge.token)),
        )
        return challenge.id

    def _new_match(self, creator: Identity, command: CreateGameCommand, phase: Phase, now: datetime) -> Match:
        return Match(
            id=uuid4(),
            position=self.engine.new_game_position(),
            phase=phase,
            creator=creator,
            opponent_kind=command.opponent_type,
            mode=command.mode,
            time_control=command.time_control,
            difficulty=command.difficulty,
            created_at=now,
            updated_at=now,
        )

    def _match_from_challenge(self, challenge: PendingChallenge, now: datetime) -> Match:
        return Match(
            id=challenge.id,
            position=self.engine.new_game_position(),
            phase=Phase.IN_PROGRESS,
            creator=challenge.creator,
            opponent_kind=OpponentKind.CHALLENGE_LINK,
            mode=challenge.mode,
            time_control=challenge.time_control,
            difficulty=1,
            created_at=challenge.created_at,
            updated_at=now,
        )

    def _random_sides(self, first: Identity, second: Identity) -> tuple[Identity, Identity]:
        """Uniformly random (white, black) assignment, no systematic first-mover advantage."""
        pair = [first, second]
        self.rng.shuffle(pair)
        return pair[0], pair[1]

    def _announce_start(self, match: Match) -> None:
        """Every human participant learns their own side. Kicks off the automated opponent if it moves first."""
        for side, identity in match.sides.items():
            if identity == AUTOMATED_OPPONENT:
                continue
            opponent = match.sides[side.opposite()]
            self._send(
                identity,
                GameStarted(match_id=match.id, position=match.position, side=side, opponent=opponent),
            )
        if self._is_automated_to_move(match):
            self._schedule_automated_turn(match)

    # -- Internal helpers: play --
    def _fetch_in_progress(self, match_id: UUID, requester: Identity) -> Match:
        match = self.store.get(match_id)
        if match is None:
            raise NotFoundError("Game not found.")
        if requester not in match.participants:
            raise ConflictError("You are not playing in this game.")
        if match.phase != Phase.IN_PROGRESS:
            raise ConflictError("Game has not started yet.")
        return match

    def _apply_move(self, match: Match, mover: Identity, move: ProposedMove) -> MoveOutcome:
        """
        Validate with the Position Engine and adopt its result.
        ----
        1. reject (no mutation) if illegal, or if the engine hands back a position it does not accept itself
        2. adopt the new position, persist move + snapshot, broadcast the move as applied
        3. terminal? conclude. Otherwise hand the turn to the automated opponent if it is up next.
        """
        outcome = self.engine.validate_and_apply(
            match.position, move.from_square, move.to_square, move.promotion
        )
        if not outcome.legal or outcome.new_position is None or outcome.applied is None:
            raise IllegalMoveError("Invalid move.")
        if not self.engine.is_well_formed(outcome.new_position):
            logger.error("Match %s: engine produced malformed position %r for %s", match.id, outcome.new_position, move.to_uci())
            raise IllegalMoveError("Invalid move.")

        applied = outcome.applied
        now = self.clock()
        match.position = outcome.new_position
        match.updated_at = now
        side_to_move = self.engine.side_to_move(match.position)
        logger.debug("Match %s: %s played %s -> %s", match.id, mover, applied.to_uci(), match.position)

        self.persistence.record_move(
            MoveRecord(
                match_id=match.id,
                from_square=applied.from_square,
                to_square=applied.to_square,
                promotion=applied.promotion,
                mover=mover,
                created_at=now,
            )
        )
        self.persistence.save_match(match.to_record())
        self._broadcast(
            match,
            MoveMade(
                match_id=match.id,
                from_square=applied.from_square,
                to_square=applied.to_square,
                promotion=applied.promotion,
                position=match.position,
                side_to_move=side_to_move,
                is_check=outcome.is_check,
                is_checkmate=outcome.is_checkmate,
                is_draw=outcome.is_draw,
            ),
        )

        if outcome.is_terminal:
            if outcome.is_checkmate:
                # the side that was just mated is the one to move
                self._conclude(match, Result.CHECKMATE, winner=side_to_move.opposite())
            else:
                self._conclude(match, Result.DRAW, winner=None)
        elif match.identity_of(side_to_move) == AUTOMATED_OPPONENT:
            self._schedule_automated_turn(match)
        return outcome

    def _conclude(self, match: Match, result: Result, winner: Optional[Side]) -> None:
        """Terminal transition: the match leaves active play for good."""
        match.conclude(result, winner, self.clock())
        self.store.remove(match.id)
        logger.info("Match %s concluded: %s, winner %s", match.id, result, winner or "-")

        self.persistence.save_match(match.to_record())
        winner_identity = match.identity_of(winner) if winner else None
        for side, identity in match.sides.items():
            if identity == AUTOMATED_OPPONENT:
                continue
            self._send(
                identity,
                GameOver(
                    match_id=match.id,
                    result=result,
                    winner=winner,
                    winner_identity=winner_identity,
                    outcome=self._outcome_for(side, result, winner),
                ),
            )

    def _outcome_for(self, side: Side, result: Result, winner: Optional[Side]) -> Optional[str]:
        if winner is not None:
            return "win" if side == winner else "loss"
        if result == Result.DRAW:
            return "draw"
        return None

    def _is_automated_to_move(self, match: Match) -> bool:
        if match.phase != Phase.IN_PROGRESS:
            return False
        return match.identity_of(self.engine.side_to_move(match.position)) == AUTOMATED_OPPONENT

    def _schedule_automated_turn(self, match: Match) -> None:
        self.runner.spawn(partial(self.play_automated_turn, match.id), name=f"automated-turn-{match.id}")

    def _fallback_move(self, position: str) -> Optional[ProposedMove]:
        legal_moves = self.engine.legal_moves(position)
        if not legal_moves:
            return None
        return self.rng.choice(legal_moves)

    # -- Internal helpers: removal / notification --
    def _withdraw(self, match: Match) -> None:
        """Remove a match that never started (creator went away)."""
        self.store.remove(match.id)
        self.queue.remove(match.id)
        self.persistence.delete_match(match.id)
        logger.info("Match %s withdrawn: creator %s disconnected", match.id, match.creator)

    def _expire(self, match_id: UUID, creator: Identity) -> None:
        self.store.remove(match_id)
        self.persistence.delete_match(match_id)
        logger.info("Match %s expired without an opponent", match_id)
        self._send(creator, GameCancelled(match_id=match_id, reason="expired"))

    def _broadcast(self, match: Match, notification: Notification) -> None:
        """Same message to every registered connection of every human participant."""
        message = notification.to_wire()
        for identity in sorted(match.human_participants):
            self.registry.send(identity, message)

    def _send(self, identity: Identity, notification: Notification) -> None:
        self.registry.send(identity, notification.to_wire())

    def _assert_human(self, identity: Identity) -> None:
        if identity == AUTOMATED_OPPONENT:
            raise RequestError("Reserved identity.")
