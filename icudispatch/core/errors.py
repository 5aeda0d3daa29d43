"""
Error taxonomy for reservation and dispatch operations.

Every engine failure is a DispatchError carrying a stable ``kind`` (the family),
a ``code`` (the specific failure), an HTTP status and the ids involved.
"""

from typing import Any, Dict, Optional


class DispatchError(Exception):
    """Base class for all domain errors."""

    kind: str = "Error"
    status_code: int = 500
    default_message: str = "Operation failed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Structured error body returned to clients."""
        return {
            "success": False,
            "error": self.kind,
            "code": self.code,
            "message": self.message,
            "context": self.context
        }

    def __repr__(self) -> str:
        return f"<{self.code} {self.message!r} {self.context}>"


# ========================
# Families
# ========================

class NotFoundError(DispatchError):
    kind = "NotFound"
    status_code = 404
    default_message = "Entity not found"


class PreconditionFailedError(DispatchError):
    kind = "PreconditionFailed"
    status_code = 409
    default_message = "Current state does not permit this transition"


class ConflictError(PreconditionFailedError):
    """Lost a race for a contested entity."""
    kind = "Conflict"
    status_code = 409
    default_message = "Someone else already took this"


class ValidationError(DispatchError):
    kind = "ValidationError"
    status_code = 422
    default_message = "Invalid input"


class AuthorizationError(DispatchError):
    kind = "AuthorizationError"
    status_code = 403
    default_message = "Not permitted for this role"


# ========================
# Not found
# ========================

class BedNotFound(NotFoundError):
    default_message = "ICU bed not found"


class PatientNotFound(NotFoundError):
    default_message = "Patient not found"


class AmbulanceNotFound(NotFoundError):
    default_message = "Ambulance not found"


class RequestNotFound(NotFoundError):
    default_message = "Ambulance request not found"


class HospitalNotFound(NotFoundError):
    default_message = "Hospital not found"


class ActorNotFound(NotFoundError):
    default_message = "User not found"


# ========================
# Preconditions
# ========================

class BedUnavailable(PreconditionFailedError):
    default_message = "ICU bed is not available for reservation"


class BedAlreadyTaken(ConflictError, BedUnavailable):
    default_message = "ICU bed was just reserved by another patient"


class AlreadyCheckedIn(PreconditionFailedError):
    default_message = "Patient is already checked in"


class BedNotOccupied(PreconditionFailedError):
    default_message = "ICU bed is not occupied"


class BedReserved(PreconditionFailedError):
    default_message = "ICU bed is reserved and cannot be changed"


class PatientAlreadyReserved(PreconditionFailedError):
    default_message = "Patient already has an ICU reservation"


class ReservationMismatch(PreconditionFailedError):
    default_message = "This ICU bed is not reserved by this patient"


class CannotCancelAfterCheckIn(PreconditionFailedError):
    default_message = "Checked-in patients must be checked out, not cancelled"


class TransportNotComplete(PreconditionFailedError):
    default_message = "Patient cannot check in before ambulance transport completes"


class NoActiveReservation(PreconditionFailedError):
    default_message = "Patient has no active ICU reservation"


class DuplicateActiveRequest(PreconditionFailedError):
    default_message = "Patient already has an active ambulance request"


class AmbulanceNotAvailable(PreconditionFailedError):
    default_message = "Ambulance is not available"


class AmbulanceAlreadyAssigned(PreconditionFailedError):
    default_message = "Ambulance is already assigned to a patient"


class AssignmentMismatch(PreconditionFailedError):
    default_message = "Ambulance is not assigned to this patient"


class RequestCancelled(PreconditionFailedError):
    default_message = "Ambulance request was cancelled"


class CannotCancelAtThisStage(PreconditionFailedError):
    default_message = "Ambulance request can no longer be cancelled"


class RequestAlreadyTaken(ConflictError):
    default_message = "Ambulance request was already accepted by another ambulance"


class StoreBusy(ConflictError):
    """Database lock wait ran past the busy timeout."""
    default_message = "Another operation is holding the record; retry shortly"


# ========================
# Validation / authorization
# ========================

class InvalidCoordinates(ValidationError):
    default_message = "Coordinates must be a [longitude, latitude] pair"


class InvalidStatus(ValidationError):
    default_message = "Invalid status value"


class NotRequestOwner(AuthorizationError):
    default_message = "Only the requesting patient can cancel this request"
