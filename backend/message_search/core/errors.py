"""Typed errors shared across the engine."""

from __future__ import annotations

from typing import Any


class MessageSearchError(RuntimeError):
    """Base error carrying a message and structured details."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(MessageSearchError):
    """Invalid parameters; fatal and never retried."""


class Unauthenticated(MessageSearchError):
    """Missing or unknown credential, or an unresolved owner value."""


class OwnershipViolation(MessageSearchError):
    """An operation referenced an entity owned by another principal."""


class NotFound(MessageSearchError):
    """Entity does not exist for the acting owner."""


class ProviderUnavailable(MessageSearchError):
    """Transient provider failure that outlived the retry budget."""


class TransientProviderError(MessageSearchError):
    """Raised by providers for rate limits, timeouts and other retryable faults."""


class PermanentProviderError(MessageSearchError):
    """Raised by providers when input is rejected.

    ``index`` identifies the offending item within the submitted batch when the
    provider knows it.
    """

    def __init__(self, message: str, index: int | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)
        self.index = index


class DimensionMismatch(MessageSearchError):
    """Vector dimension differs from the configured embedding dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"expected vector of dimension {expected}, got {actual}",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class SyncStateError(MessageSearchError):
    """Base error for sync state machine violations."""


class SyncAlreadyRunning(SyncStateError):
    """A sync for the same (owner, source) is already running."""


class InvalidSyncTransition(SyncStateError):
    """Requested status change is not allowed by the state machine."""


class DuplicateExternalId(MessageSearchError):
    """A message with the same dedup key already exists for the owner."""


__all__ = [
    "MessageSearchError",
    "ConfigurationError",
    "Unauthenticated",
    "OwnershipViolation",
    "NotFound",
    "ProviderUnavailable",
    "TransientProviderError",
    "PermanentProviderError",
    "DimensionMismatch",
    "SyncStateError",
    "SyncAlreadyRunning",
    "InvalidSyncTransition",
    "DuplicateExternalId",
]
