"""Command and notification models of the live protocol (plus the HTTP query responses)"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from chess_arbiter.core.exceptions import RequestError
from chess_arbiter.core.shared_types import OpponentKind, Result, Side

Promotion = Literal["q", "r", "b", "n"]


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- INBOUND COMMANDS ---
class CreateGameCommand(WireModel):
    type: Literal["create_game"] = "create_game"
    opponent_type: OpponentKind
    preferred_color: Optional[Side] = None
    mode: str = "standard"
    time_control: Optional[str] = None
    difficulty: int = Field(default=1, ge=1, le=5)

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("mode cannot be empty.")
        return value


class JoinChallengeCommand(WireModel):
    type: Literal["join_challenge"] = "join_challenge"
    token: str


class MakeMoveCommand(WireModel):
    type: Literal["make_move"] = "make_move"
    match_id: UUID
    from_square: str = Field(alias="from")
    to_square: str = Field(alias="to")
    promotion: Optional[Promotion] = None

    @field_validator("from_square", "to_square")
    @classmethod
    def validate_square(cls, value: str) -> str:
        def _is_algebraic_notation(value: str) -> bool:
            if len(value) != 2:
                return False

            file, rank = value[0], value[1]
            return file in "abcdefgh" and rank in "12345678"

        value = value.strip().lower()
        if not _is_algebraic_notation(value):
            raise ValueError(f"Cannot interpret {value!r} as a valid square name.")
        return value

    @field_validator("promotion", mode="before")
    @classmethod
    def lowercase_promotion(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class ResignCommand(WireModel):
    type: Literal["resign"] = "resign"
    match_id: UUID


class ResetGameCommand(WireModel):
    type: Literal["reset_game"] = "reset_game"
    match_id: UUID


Command = Annotated[
    Union[CreateGameCommand, JoinChallengeCommand, MakeMoveCommand, ResignCommand, ResetGameCommand],
    Field(discriminator="type"),
]
_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(payload: Any) -> Command:
    """Validate an inbound message. Any problem with it becomes a RequestError."""
    if not isinstance(payload, dict):
        raise RequestError("Messages must be JSON objects.")
    try:
        return _command_adapter.validate_python(payload)
    except ValidationError as exc:
        raise RequestError(_describe(exc, payload)) from exc


def _describe(exc: ValidationError, payload: dict[str, Any]) -> str:
    error = exc.errors()[0]
    if error["type"] in ("union_tag_invalid", "union_tag_not_found"):
        return f"Unknown message type: {payload.get('type')!r}"
    location = ".".join(str(part) for part in error["loc"][1:]) or "message"
    return f"Invalid {location}: {error['msg']}"


# --- OUTBOUND NOTIFICATIONS ---
class Notification(WireModel):
    type: str

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Connected(Notification):
    type: Literal["connected"] = "connected"
    identity: str


class GameCreated(Notification):
    type: Literal["game_created"] = "game_created"
    match_id: UUID
    position: str


class ChallengeCreated(Notification):
    type: Literal["challenge_created"] = "challenge_created"
    match_id: UUID
    join_link: str


class GameStarted(Notification):
    type: Literal["game_started"] = "game_started"
    match_id: UUID
    position: str
    side: Side
    opponent: str


class MoveMade(Notification):
    type: Literal["move_made"] = "move_made"
    match_id: UUID
    from_square: str = Field(alias="from")
    to_square: str = Field(alias="to")
    promotion: Optional[str] = None
    position: str
    side_to_move: Side
    is_check: bool
    is_checkmate: bool
    is_draw: bool


class GameReset(Notification):
    type: Literal["game_reset"] = "game_reset"
    match_id: UUID
    position: str


class GameOver(Notification):
    type: Literal["game_over"] = "game_over"
    match_id: UUID
    result: Result
    winner: Optional[Side] = None
    winner_identity: Optional[str] = None
    outcome: Optional[Literal["win", "loss", "draw"]] = None


class OpponentDisconnected(Notification):
    type: Literal["opponent_disconnected"] = "opponent_disconnected"
    match_id: UUID


class GameCancelled(Notification):
    type: Literal["game_cancelled"] = "game_cancelled"
    match_id: UUID
    reason: str


class ErrorNotification(Notification):
    type: Literal["error"] = "error"
    message: str


# --- HTTP RESPONSE MODELS ---
class AwaitingMatchResponse(WireModel):
    match_id: UUID
    creator: str
    mode: str
    time_control: Optional[str]
    created_at: datetime


class MoveResponse(WireModel):
    from_square: str = Field(alias="from")
    to_square: str = Field(alias="to")
    promotion: Optional[str]
    mover: str
    created_at: datetime


class MatchResponse(WireModel):
    match_id: UUID
    position: str
    phase: str
    white: Optional[str]
    black: Optional[str]
    mode: str
    time_control: Optional[str]
    difficulty: int
    result: Optional[str]
    winner: Optional[str]
    created_at: datetime
    updated_at: datetime
    moves: list[MoveResponse]
