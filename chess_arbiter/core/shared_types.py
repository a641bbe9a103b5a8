"""
Type definitions used across layers
"""

from enum import StrEnum

# Participants are only ever used as map keys by the core.
Identity = str

# Reserved identity of the non-human side. Never registered as a live connection.
AUTOMATED_OPPONENT: Identity = "@automated"


class Side(StrEnum):
    WHITE = "white"
    BLACK = "black"

    def opposite(self) -> "Side":
        return Side.BLACK if self == Side.WHITE else Side.WHITE


class Phase(StrEnum):
    AWAITING_OPPONENT = "awaiting_opponent"
    IN_PROGRESS = "in_progress"
    CONCLUDED = "concluded"


class OpponentKind(StrEnum):
    AUTOMATED = "automated"
    OPEN_QUEUE = "openQueue"
    CHALLENGE_LINK = "challengeLink"


class Result(StrEnum):
    CHECKMATE = "checkmate"
    DRAW = "draw"
    RESIGNATION = "resignation"
    ABANDONMENT = "abandonment"
