"""
shared/utils/exceptions.py
Typed errors raised by the scheduling core.

Every error carries an HTTP status, a stable machine code and a category
(validation / conflict / authorization / state / not_found). main.py turns
them into JSON responses; services never raise HTTPException for these.
"""

from typing import Any, Optional


class SchedulingError(Exception):
    status_code: int = 400
    code: str = "SCHEDULING_ERROR"
    category: str = "validation"
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "code": self.code,
            "category": self.category,
            **self.extra,
        }


# ── Validation (caller-correctable) ───────────────────────────

class ValidationError(SchedulingError):
    status_code = 400
    category = "validation"
    code = "VALIDATION_ERROR"


class SelfBookingError(ValidationError):
    code = "SELF_BOOKING"
    default_message = "You cannot book yourself"


class OutsideAvailabilityError(ValidationError):
    code = "OUTSIDE_AVAILABILITY"
    default_message = "Requested time is outside the companion's availability"


class InvalidRangeError(ValidationError):
    code = "INVALID_RANGE"
    default_message = "Start time must be before end time"


class InvalidServiceError(ValidationError):
    code = "INVALID_SERVICE"
    default_message = "Service is not offered by this companion"


# ── Conflict (concurrency-dependent) ──────────────────────────

class ConflictError(SchedulingError):
    status_code = 409
    category = "conflict"


class DoubleBookedError(ConflictError):
    code = "DOUBLE_BOOKED"
    default_message = "This time has just been booked. Please pick another slot."


class OverlapError(ConflictError):
    code = "SLOT_OVERLAP"
    default_message = "This time overlaps with another slot"


# ── Authorization (policy-dependent, never leaks other accounts' state) ──

class AuthorizationError(SchedulingError):
    status_code = 403
    category = "authorization"


class RoleNotGranted(AuthorizationError):
    code = "ROLE_NOT_GRANTED"
    default_message = "This account does not hold the requested role"


class RoleNotActive(AuthorizationError):
    code = "ROLE_NOT_ACTIVE"
    default_message = "Switch to the required role to perform this action"


class NotVerifiedError(AuthorizationError):
    code = "NOT_VERIFIED"
    default_message = "Identity verification must be approved before browsing or booking"


class CompanionNotApprovedError(AuthorizationError):
    code = "COMPANION_NOT_APPROVED"
    default_message = "Companion application must be approved first"


class NotPermittedError(AuthorizationError):
    code = "NOT_PERMITTED"
    default_message = "You are not allowed to perform this action"


# ── State (stale client view) ─────────────────────────────────

class InvalidTransitionError(SchedulingError):
    status_code = 409
    category = "state"
    code = "INVALID_TRANSITION"

    def __init__(self, from_status, to_status, message: Optional[str] = None):
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(
            message or f"Cannot move from '{from_value}' to '{to_value}'",
            from_status=from_value,
            to_status=to_value,
        )
        self.from_status = from_value
        self.to_status = to_value


# ── Lookup ────────────────────────────────────────────────────

class NotFoundError(SchedulingError):
    status_code = 404
    category = "not_found"
    code = "NOT_FOUND"
    default_message = "Not found"
