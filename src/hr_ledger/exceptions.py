"""Typed exception hierarchy for the HR ledger service.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer should answer with. Callers catch by type, never by message text.

    HRLedgerError
    +-- ValidationError           400
    +-- AuthorizationError        403
    +-- NotFoundError             404
    +-- ConflictError             409
    +-- InvalidTransitionError    409
    +-- InsufficientBalanceError  422
    +-- UpstreamUnavailableError  503
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class HRLedgerError(Exception):
    """Base class for all domain errors."""

    code = "HR_LEDGER_ERROR"
    kind = "error"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "kind": self.kind,
            "detail": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(HRLedgerError):
    """Malformed or inconsistent input."""

    code = "VALIDATION_ERROR"
    kind = "validation"
    status_code = 400


class AuthorizationError(HRLedgerError):
    """Actor is not allowed to act on the current workflow step."""

    code = "AUTHORIZATION_ERROR"
    kind = "authorization"
    status_code = 403


class NotFoundError(HRLedgerError):
    """A referenced entity does not exist."""

    code = "NOT_FOUND"
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} '{key}' not found", {"entity": entity, "key": str(key)})


class ConflictError(HRLedgerError):
    """Duplicate natural key or concurrent modification."""

    code = "CONFLICT"
    kind = "conflict"
    status_code = 409


class InvalidTransitionError(HRLedgerError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"
    kind = "conflict"
    status_code = 409

    def __init__(
        self,
        entity: str,
        from_status: str,
        to_status: str,
        reason: str | None = None,
    ):
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid {entity} transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            {"entity": entity, "from_status": from_status, "to_status": to_status},
        )


class InsufficientBalanceError(HRLedgerError):
    """A take/encashment/reservation exceeds the available balance."""

    code = "INSUFFICIENT_BALANCE"
    kind = "insufficient_balance"
    status_code = 422

    def __init__(self, employee_id: str, leave_type_id: str, requested: Decimal, available: Decimal):
        self.employee_id = employee_id
        self.leave_type_id = leave_type_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} day(s) but only {available} available "
            f"for employee '{employee_id}' leave type '{leave_type_id}'",
            {
                "employee_id": employee_id,
                "leave_type_id": leave_type_id,
                "requested": str(requested),
                "available": str(available),
            },
        )


class UpstreamUnavailableError(HRLedgerError):
    """A required collaborator input is missing."""

    code = "UPSTREAM_UNAVAILABLE"
    kind = "upstream_unavailable"
    status_code = 503

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(message, {"source": source})
