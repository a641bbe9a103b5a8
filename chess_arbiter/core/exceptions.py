"""
Custom exceptions.

Everything a participant can trigger derives from ArbiterError, and its message is what gets sent back in the `error` notification.
DependencyFailure is the odd one out: it only ever ends up in the logs.
"""


class ArbiterError(Exception):
    """Top-level exception for anything going wrong while arbitrating a match."""


# --- Participant facing ---
class RequestError(ArbiterError):
    """Bad or missing fields in a command."""


class RuleViolation(ArbiterError):
    """The command is well-formed, but the rules of the game do not allow it."""


class NotYourTurnError(RuleViolation):
    pass


class IllegalMoveError(RuleViolation):
    pass


class NotFoundError(ArbiterError):
    """Unknown match / token, or a challenge that was already claimed."""


class ConflictError(ArbiterError):
    """Self-join, or joining something that is not open for joining."""


# --- Background only ---
class DependencyFailure(ArbiterError):
    """Persistence gateway or automated opponent failed. Logged, never surfaced to participants."""
