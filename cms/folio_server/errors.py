"""
Error types for Folio.

Every failure the engine surfaces belongs to one of four categories:
- NotFoundError: storage miss. Recoverable, often caught to mean
  "first publish" or "no prior value".
- ClientError: caller-supplied data violates an invariant (empty page
  fields, missing layout, no resolvable url, reference cycle). Never retried.
- OperationTimeoutError: an operation exceeded its budget. The commit status
  of a timed-out write is unknown and must be verified out of band.
- DefectError: a record type hook misbehaved (zero batch operations, model
  returned a non-document). Indicates misconfiguration, never retried.

Invariants:
    - All errors inherit from FolioError
    - within() keeps the error category while naming the failing reference
    - Error messages are actionable and never contain record payloads

How to change safely:
    - Add new categories as subclasses, never by changing codes
    - Callers match on classes, not on message text
"""

from __future__ import annotations

import copy
from typing import Any


class FolioError(Exception):
    """Base exception for all Folio errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    default_code = "FOLIO_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def within(self, address: str) -> FolioError:
        """Return a copy of this error naming the reference it was raised under.

        The copy keeps the original class, so a NotFoundError raised three
        levels down a composed page is still a NotFoundError at the top, with
        the full chain of addresses in its message.

        Args:
            address: Address of the reference being resolved

        Returns:
            New error of the same class with an extended message
        """
        cls = type(self)
        enriched = cls.__new__(cls)
        enriched.__dict__.update(copy.copy(self.__dict__))
        enriched.message = f"{self.message} within {address}"
        enriched.args = (enriched.message,)
        enriched.details = {**self.details, "trail": [*self.details.get("trail", []), address]}
        return enriched


class NotFoundError(FolioError):
    """No record stored at the requested key."""

    default_code = "NOT_FOUND"

    def __init__(self, key: str) -> None:
        super().__init__(f"Key not found in storage: {key}", details={"key": key})
        self.key = key


class ClientError(FolioError):
    """Caller-supplied data violates an invariant.

    Raised when:
    - A page has empty values
    - A page has no resolvable url on publish
    - A new page is missing its layout reference
    - A schedule entry is malformed
    """

    default_code = "CLIENT_ERROR"


class ReferenceCycleError(ClientError):
    """A record graph references one of its own ancestors."""

    default_code = "REFERENCE_CYCLE"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(
            f"Reference cycle detected: {' -> '.join(cycle)}",
            details={"cycle": cycle},
        )
        self.cycle = cycle


class OperationTimeoutError(FolioError):
    """An operation exceeded its time budget.

    The wrapped work is not cancelled: a timed-out publish may still have
    committed. Treat this as "unknown outcome", never as "rolled back".
    """

    default_code = "TIMEOUT"

    def __init__(self, message: str, limit_ms: int | None = None) -> None:
        super().__init__(message, details={"limit_ms": limit_ms})
        self.limit_ms = limit_ms


class DefectError(FolioError):
    """A record type hook produced something the engine cannot store."""

    default_code = "DEFECT"


class ResolutionError(FolioError):
    """Wraps a non-Folio exception raised while composing a reference."""

    default_code = "RESOLUTION_ERROR"


class StorageConfigurationError(FolioError):
    """A storage engine does not expose the required surface."""

    default_code = "STORAGE_CONFIGURATION"


class RegistryFrozenError(FolioError):
    """Raised when attempting to modify a frozen hook registry."""

    default_code = "REGISTRY_FROZEN"


class DuplicateRegistrationError(FolioError):
    """Raised when a record type name is registered twice."""

    default_code = "DUPLICATE_REGISTRATION"
