"""
Billing error taxonomy.

Every failure the billing core can report is one of these types, so callers
branch on the class instead of parsing messages or database error codes.
"""
from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for all billing errors."""

    kind = "billing_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {"success": False, "error": self.kind, "detail": self.message}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class ValidationError(BillingError):
    """Missing or invalid readings, rate or period. Never reaches persistence."""

    kind = "validation_error"
    status_code = 422

    def __init__(
        self,
        message: str,
        unit_id: Any = None,
        unit_number: Optional[str] = None,
        field: Optional[str] = None,
    ):
        super().__init__(
            message,
            unit_id=str(unit_id) if unit_id is not None else None,
            unit_number=unit_number,
            field=field,
        )
        self.unit_id = unit_id
        self.unit_number = unit_number
        self.field = field


class ConflictError(BillingError):
    """A bill already exists for the unit and billing period."""

    kind = "conflict"
    status_code = 409

    def __init__(self, message: str = "A bill already exists for this unit and billing period", **details: Any):
        details.setdefault("hint", "Reload the billing period to edit the existing bills")
        super().__init__(message, **details)


class StaleWriteError(ConflictError):
    """The bill changed since it was loaded (version mismatch)."""

    kind = "stale_write"

    def __init__(self, message: str = "The bill was changed by someone else since it was loaded", **details: Any):
        details.setdefault("hint", "Reload the billing period and re-apply your changes")
        super().__init__(message, **details)


class TransientFetchError(BillingError):
    """The backing service could not be reached or timed out."""

    kind = "transient_error"
    status_code = 503

    def __init__(self, message: str = "The billing service is temporarily unavailable", **details: Any):
        details.setdefault("retryable", True)
        super().__init__(message, **details)


class PartialPersistError(BillingError):
    """Some bill lines were written, others failed."""

    kind = "partial_persist"
    status_code = 207

    def __init__(self, result):
        failed_units = ", ".join(f.unit_number or str(f.unit_id) for f in result.failed)
        super().__init__(
            f"{len(result.failed)} of {result.total} bills could not be saved: {failed_units}",
            result=result.to_dict(),
        )
        self.result = result


class SessionStateError(BillingError):
    """The operation is not allowed in the session's current state."""

    kind = "invalid_state"
    status_code = 409


class NotFoundError(BillingError):
    kind = "not_found"
    status_code = 404
