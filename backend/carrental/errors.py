# Overview: Domain error taxonomy shared by services and routes.

"""
Domain errors raised by the service layer.

Every business-rule violation is reported synchronously as one of these,
carrying a machine-readable kind, the HTTP status the API layer renders it
with, and optional details (which rule fired, the current state).

    InvalidInputError  400  malformed dates, bad duration, non-writable fields
    ForbiddenError     403  tier too low, not the owner, not an admin
    NotFoundError      404  entity missing
    ConflictError      409  state-machine violation, double booking, rental cap
    TransientError     503  storage timeout or lock contention; safe to retry
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for per-request business errors."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind}
        body.update(self.details)
        return body


class InvalidInputError(DomainError):
    kind = "invalid_input"
    status_code = 400


class ForbiddenError(DomainError):
    kind = "forbidden"
    status_code = 403


class NotFoundError(DomainError):
    kind = "not_found"
    status_code = 404


class ConflictError(DomainError):
    kind = "conflict"
    status_code = 409


class TransientError(DomainError):
    """Storage was unavailable within its time bound; the caller may retry."""

    kind = "transient"
    status_code = 503

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryable"] = True
        return body
