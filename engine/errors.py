"""Error taxonomy shared by the engine, storage and host layers."""

from __future__ import annotations


class PokerError(Exception):
    code = "POKER_ERROR"

    def __init__(self, msg: str, code: str | None = None) -> None:
        super().__init__(msg)
        self.msg = msg
        if code is not None:
            self.code = code


class ValidationError(PokerError, ValueError):
    """Illegal action or malformed input. State is unchanged; never retried."""

    code = "INVALID_ACTION"


class ConcurrencyConflict(PokerError):
    """The turn or hand moved between reading the game and writing it back."""

    code = "STALE_STATE"


class TransientInfraError(PokerError):
    """Storage or broadcast failure that is safe to retry."""

    code = "RETRY_LATER"


class InvariantViolation(PokerError, RuntimeError):
    """A rules invariant broke (chips created/destroyed, no actor). Always propagated."""

    code = "INVARIANT_VIOLATION"
