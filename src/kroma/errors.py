"""Exceptions raised by the production core."""

from typing import Optional


class KromaError(Exception):
    """Base class for studio errors."""


class InsufficientCredits(KromaError):
    """The user's balance cannot cover a paid generation step."""

    def __init__(self, cost: int, balance: int, action: Optional[str] = None) -> None:
        self.cost = cost
        self.balance = balance
        self.action = action
        what = f" for {action}" if action else ""
        super().__init__(
            f"Insufficient credits{what}: need {cost}, have {balance}"
        )


class GenerationFailure(KromaError):
    """A generation backend failed; the message is safe to show to users."""

    def __init__(self, message: str, kind: str = "generation") -> None:
        self.kind = kind
        self.message = message or f"{kind.capitalize()} generation failed"
        super().__init__(self.message)


class PreconditionViolation(KromaError):
    """An operation was invoked in a state where it does not apply.

    The controller treats these as no-ops rather than user-facing errors.
    """
