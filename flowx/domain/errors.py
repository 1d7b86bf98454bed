"""Domain error hierarchy for clean exception handling."""
from __future__ import annotations


class DomainError(Exception):
    """Base for all domain errors."""

    code = "domain_error"


class NotFoundError(DomainError):
    """Resource not found (or soft-deleted)."""

    code = "not_found"


class ValidationError(DomainError):
    """Invalid input; rejected before any remote call."""

    code = "validation"


class ConflictError(ValidationError):
    """Resource conflict (e.g., duplicate sibling name)."""

    code = "conflict"


class InvariantViolation(DomainError):
    """Operation would break a structural rule (e.g., deleting a non-empty folder)."""

    code = "invariant_violation"


class RemoteCallError(DomainError):
    """The remote store rejected the call or could not be reached."""

    code = "remote_call"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
