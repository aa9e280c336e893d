"""Domain error taxonomy shared by every layer.

Every error that crosses a layer boundary is a DomainError tagged with one
of four kinds. Storage and transport failures are translated by the layer
that produced them:

    try:
        ...
    except IntegrityError as e:
        raise ConflictError("email already registered", cause=e) from e

Higher layers either let the error through or add context without changing
the kind:

    except DomainError as e:
        raise e.with_context("user lookup failed") from e
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Self


class ErrorKind(StrEnum):
    """Kind tag carried in the error envelope."""

    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    INVALID = "Invalid"
    INTERNAL = "Internal"


class DomainError(Exception):
    """Base for all classified errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.details = details

    def with_context(self, context: str) -> Self:
        """Return a copy of this error with ``context`` prefixed to the message.

        The new error has the same class (and therefore the same kind) and
        wraps the original as its cause.
        """
        return type(self)(
            f"{context}: {self.message}",
            cause=self,
            details=self.details,
        )

    def root_cause(self) -> BaseException | None:
        """Walk the cause chain down to the first non-domain exception."""
        cause = self.cause
        while isinstance(cause, DomainError):
            cause = cause.cause
        return cause

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class NotFoundError(DomainError):
    """Requested entity does not exist."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(DomainError):
    """Write would violate a uniqueness constraint."""

    kind = ErrorKind.CONFLICT


class InvalidError(DomainError):
    """Input failed parsing or validation."""

    kind = ErrorKind.INVALID


class InternalError(DomainError):
    """Unclassified fault. The message is never sent to clients."""

    kind = ErrorKind.INTERNAL

