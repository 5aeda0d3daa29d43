"""
Event models broadcast after every successful state transition.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Names of the events pushed to connected clients."""
    # ICU inventory / reservations
    ICU_RESERVED = "icuReserved"
    ICU_RESERVATION_CANCELLED = "icuReservationCancelled"
    ICU_UPDATED = "icuUpdated"
    ICU_STATUS_UPDATE = "icuStatusUpdate"

    # Reception
    PATIENT_CHECKED_IN = "patientCheckedIn"
    PATIENT_CHECKED_OUT = "patientCheckedOut"

    # Dispatch
    AMBULANCE_PICKUP_REQUEST = "ambulancePickupRequest"
    PICKUP_REQUEST_TAKEN = "pickupRequestTaken"
    AMBULANCE_ACCEPTED = "ambulanceAccepted"
    AMBULANCE_ASSIGNED = "ambulanceAssigned"
    AMBULANCE_APPROVED_PICKUP = "ambulanceApprovedPickup"
    PICKUP_REJECTED_NOTIFICATION = "pickupRejectedNotification"
    PICKUP_REQUEST_CANCELLED = "pickupRequestCancelled"
    PATIENT_ARRIVED = "patientArrived"
    PATIENT_NOTIFICATION = "patientNotification"
    AMBULANCE_STATUS_UPDATE = "ambulanceStatusUpdate"


class DomainEvent(BaseModel):
    """A completed transition, published to every listener."""
    id: str = Field(..., description="Unique event ID")
    event_type: EventType
    timestamp: datetime = Field(default_factory=datetime.now)
    source: str = Field("system", description="Engine that produced the event")
    payload: Dict[str, Any] = Field(default_factory=dict)

    # Hint for clients that self-filter; delivery is never scoped by it
    audience: Optional[str] = Field(None, description="ambulances, patient, staff")
    correlation_id: Optional[str] = Field(None, description="ID linking related events")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "event": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "audience": self.audience,
            "correlation_id": self.correlation_id,
            "data": self.payload
        }
