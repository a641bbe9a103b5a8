"""Inbound command dispatch: parse a message, route it to the Arbitrator, report failures to the sender."""

import logging
from typing import Any, Callable

from chess_arbiter.api.models import (
    CreateGameCommand,
    ErrorNotification,
    JoinChallengeCommand,
    MakeMoveCommand,
    ResetGameCommand,
    ResignCommand,
    parse_command,
)
from chess_arbiter.core.exceptions import ArbiterError
from chess_arbiter.core.shared_types import Identity
from chess_arbiter.services.arbitrator import MatchArbitrator
from chess_arbiter.services.connections import Connection

logger = logging.getLogger(__name__)


class CommandDispatcher:
    def __init__(self, arbitrator: MatchArbitrator) -> None:
        self.arbitrator = arbitrator
        self._routes: dict[type, Callable[[Identity, Any], object]] = {
            CreateGameCommand: self._create_game,
            JoinChallengeCommand: self._join_challenge,
            MakeMoveCommand: self._make_move,
            ResignCommand: self._resign,
            ResetGameCommand: self._reset_game,
        }

    def dispatch(self, identity: Identity, connection: Connection, payload: Any) -> bool:
        """
        Handle one inbound message.
        ---
        Returns False if the command was rejected. The rejection (and only that) goes back to the connection that sent the command.
        """
        try:
            command = parse_command(payload)
            self._routes[type(command)](identity, command)
        except ArbiterError as exc:
            logger.info("Rejected message from %s: %s", identity, exc)
            connection.send(ErrorNotification(message=str(exc)).to_wire())
            return False
        return True

    # -- Routes --
    def _create_game(self, identity: Identity, command: CreateGameCommand) -> None:
        self.arbitrator.create_match(identity, command)

    def _join_challenge(self, identity: Identity, command: JoinChallengeCommand) -> None:
        self.arbitrator.join_challenge(identity, command.token)

    def _make_move(self, identity: Identity, command: MakeMoveCommand) -> None:
        self.arbitrator.make_move(
            identity,
            command.match_id,
            command.from_square,
            command.to_square,
            command.promotion,
        )

    def _resign(self, identity: Identity, command: ResignCommand) -> None:
        self.arbitrator.resign(identity, command.match_id)

    def _reset_game(self, identity: Identity, command: ResetGameCommand) -> None:
        self.arbitrator.reset(identity, command.match_id)
