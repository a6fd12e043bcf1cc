"""Exception hierarchy raised by the translation workflow engine."""
from __future__ import annotations

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """
    Base class for every error surfaced by the engine.

    Carries enough context (entity ids, expected vs. actual state) for a
    caller to render a precise message.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the error for logging or API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": {key: _plain(value) for key, value in self.context.items()},
        }


class InvalidInput(WorkflowError):
    """Malformed or empty input, bad ordinal, failed validation."""


class NotFound(WorkflowError):
    """Referenced entity does not exist."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} '{entity_id}' not found", kind=kind, entity_id=entity_id)
        self.kind = kind
        self.entity_id = entity_id


class Unauthorized(WorkflowError):
    """The actor's effective role does not permit the action."""


class InvalidTransition(WorkflowError):
    """Illegal state machine move."""

    def __init__(self, entity_id: str, current: Any, target: Any, reason: Optional[str] = None) -> None:
        message = f"Cannot move '{entity_id}' from {_plain(current)} to {_plain(target)}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, entity_id=entity_id, current=current, target=target)
        self.current = current
        self.target = target


class ConflictError(WorkflowError):
    """Write attempted against a stale version."""

    def __init__(self, entity_id: str, expected: Optional[int], actual: Optional[int] = None) -> None:
        found = actual if actual is not None else "a newer row"
        super().__init__(
            f"Version conflict on '{entity_id}': expected {expected}, found {found}",
            entity_id=entity_id,
            expected=expected,
            actual=actual,
        )
        self.expected = expected
        self.actual = actual


class ProviderError(WorkflowError):
    """Failure reported by the external translation provider."""


class ProviderUnavailable(ProviderError):
    """Provider could not be reached or returned no usable output."""


class RateLimited(ProviderError):
    """Provider refused the call because of rate limiting."""

    def __init__(self, message: str, retry_after: Optional[float] = None, **context: Any) -> None:
        super().__init__(message, retry_after=retry_after, **context)
        self.retry_after = retry_after


class DuplicateOrdinal(WorkflowError):
    """Ordinal already used inside the document."""


class DuplicateKey(WorkflowError):
    """Uniqueness violation on a keyed entity."""


def _plain(value: Any) -> Any:
    return getattr(value, "value", value)
