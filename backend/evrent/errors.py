# backend/evrent/errors.py
"""
Domain errors raised by the booking / session / ledger core.

Every error carries a machine-readable ``code`` and a ``context`` dict
(entity id, current state, ...) so the HTTP layer can render a useful
message without re-querying. Only ``StorageFailure`` is worth retrying.
"""

from typing import Any


class DomainError(Exception):
    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.context}


class NotFound(DomainError):
    code = "not_found"
    status_code = 404


class InvalidState(DomainError):
    code = "invalid_state"
    status_code = 409


class CapacityExceeded(DomainError):
    code = "capacity_exceeded"
    status_code = 409


class ValidationError(DomainError):
    code = "validation_error"
    status_code = 422


class InsufficientFunds(DomainError):
    code = "insufficient_funds"
    status_code = 402


class StorageFailure(DomainError):
    code = "storage_failure"
    status_code = 503
