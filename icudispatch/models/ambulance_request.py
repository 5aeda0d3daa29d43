"""
Ambulance request models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from icudispatch.models.hospital import GeoPoint


class RequestStatus(str, Enum):
    """Lifecycle of a pickup request. Moves forward only, except for cancellation."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_TRANSIT = "in_transit"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# At most one request per patient may be in one of these
ACTIVE_STATUSES = (RequestStatus.PENDING, RequestStatus.ACCEPTED, RequestStatus.IN_TRANSIT)

# Statuses in which an ambulance holds the patient
ASSIGNED_STATUSES = (RequestStatus.ACCEPTED, RequestStatus.IN_TRANSIT, RequestStatus.ARRIVED)

CANCELLABLE_STATUSES = (RequestStatus.PENDING, RequestStatus.ACCEPTED)


class Urgency(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"


class PickupInfo(BaseModel):
    """Pickup details supplied with a reservation or a standalone request."""
    needs_pickup: bool = True
    pickup_location: Optional[str] = Field(None, description="Free-text address")
    pickup_coordinates: Optional[List[float]] = Field(None, description="[lng, lat]")
    urgency: Urgency = Urgency.NORMAL
    notes: str = ""
    phone: Optional[str] = None


class AmbulanceRequest(BaseModel):
    """A transport task linking a patient to a destination hospital."""
    id: str
    patient_id: str
    hospital_id: str
    icu_id: Optional[str] = None
    pickup_location: str
    pickup_coordinates: GeoPoint
    status: RequestStatus = RequestStatus.PENDING
    accepted_by: Optional[str] = None
    accepted_at: Optional[datetime] = None
    urgency: Urgency = Urgency.NORMAL
    notes: str = ""
    phone: Optional[str] = None
    declined_by: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def age_minutes(self) -> float:
        if not self.created_at:
            return 0.0
        return (datetime.now() - self.created_at).total_seconds() / 60

    def to_summary(self) -> Dict[str, Any]:
        """Return summary for clients and event payloads."""
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "hospital_id": self.hospital_id,
            "icu_id": self.icu_id,
            "pickup_location": self.pickup_location,
            "pickup_coordinates": self.pickup_coordinates.to_pair(),
            "status": self.status.value,
            "accepted_by": self.accepted_by,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "urgency": self.urgency.value,
            "notes": self.notes,
            "phone": self.phone,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }
