from __future__ import annotations

from dataclasses import dataclass


class StateError(RuntimeError):
    """Raised when an operation is invoked against a session or node in an invalid state."""


class OperationInFlightError(StateError):
    """Raised when a second generation is requested for a key that is still in flight."""


class StaleResultError(StateError):
    """Raised when a generation result resolves against a target that has since changed."""


class GenerationUnavailable(RuntimeError):
    """Raised when the text generator threw or returned nothing."""


class BudgetExceededError(GenerationUnavailable):
    """Raised when cumulative token budget limits are exceeded."""


class ValidationFailure(ValueError):
    """Raised when parsed output violates a structural invariant."""


@dataclass(frozen=True, slots=True)
class ParseFailure:
    reason: str

    def __bool__(self) -> bool:
        return False
