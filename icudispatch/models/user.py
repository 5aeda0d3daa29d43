"""
Actor models.

Every user shares a common Actor record; role-specific state lives in a
``profile`` variant selected by the role tag, so a patient never carries
ambulance fields and vice versa.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Union, Literal
from pydantic import BaseModel, Field, model_validator

from icudispatch.models.hospital import GeoPoint


class Role(str, Enum):
    """User roles. Chosen at creation, never changed."""
    PATIENT = "Patient"
    DOCTOR = "Doctor"
    ADMIN = "Admin"
    MANAGER = "Manager"
    RECEPTIONIST = "Receptionist"
    AMBULANCE = "Ambulance"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        if isinstance(value, cls):
            return value
        for member in cls:
            if isinstance(value, str) and value.strip().lower() == member.value.lower():
                return member
        raise ValueError(f"Unknown role: {value!r}")


class PatientStatus(str, Enum):
    """Where a patient is in the reservation / transport flow."""
    RESERVED = "RESERVED"
    AWAITING_PICKUP = "AWAITING_PICKUP"
    IN_TRANSIT = "IN_TRANSIT"
    ARRIVED = "ARRIVED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"


class AmbulanceStatus(str, Enum):
    """Ambulance crew status."""
    AVAILABLE = "AVAILABLE"
    EN_ROUTE = "EN_ROUTE"
    ARRIVED_HOSPITAL = "ARRIVED_HOSPITAL"

    @classmethod
    def parse(cls, value: Any) -> "AmbulanceStatus":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().upper().replace("-", "_").replace(" ", "_")
            for member in cls:
                if normalized == member.value:
                    return member
        raise ValueError(f"Unknown ambulance status: {value!r}")


class PatientProfile(BaseModel):
    """Patient-only state."""
    kind: Literal["patient"] = "patient"
    reserved_icu: Optional[str] = None
    patient_status: Optional[PatientStatus] = None
    needs_pickup: bool = False
    pickup_location: Optional[str] = None
    assigned_ambulance: Optional[str] = None
    location: Optional[GeoPoint] = None


class AmbulanceProfile(BaseModel):
    """Ambulance-only state."""
    kind: Literal["ambulance"] = "ambulance"
    status: AmbulanceStatus = AmbulanceStatus.AVAILABLE
    assigned_patient: Optional[str] = None
    assigned_hospital: Optional[str] = None
    destination: Optional[str] = None
    current_location: Optional[GeoPoint] = None
    eta: Optional[int] = Field(None, ge=0, description="Minutes")

    @property
    def is_free(self) -> bool:
        return self.status == AmbulanceStatus.AVAILABLE and self.assigned_patient is None


class StaffProfile(BaseModel):
    """Staff roles carry no dispatch state."""
    kind: Literal["staff"] = "staff"


Profile = Union[PatientProfile, AmbulanceProfile, StaffProfile]

_PROFILE_KIND = {
    Role.PATIENT: "patient",
    Role.AMBULANCE: "ambulance",
}


def profile_kind_for(role: Role) -> str:
    return _PROFILE_KIND.get(role, "staff")


class Actor(BaseModel):
    """Any authenticated user of the system."""
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Role
    hospital_id: Optional[str] = Field(None, description="Staff hospital assignment")
    created_at: Optional[datetime] = None
    profile: Profile = Field(default_factory=StaffProfile, discriminator="kind")

    @model_validator(mode="after")
    def _profile_matches_role(self) -> "Actor":
        expected = profile_kind_for(self.role)
        if self.profile.kind != expected:
            raise ValueError(f"{self.role.value} must carry a {expected} profile")
        return self

    @property
    def is_patient(self) -> bool:
        return self.role == Role.PATIENT

    @property
    def is_ambulance(self) -> bool:
        return self.role == Role.AMBULANCE

    @property
    def patient(self) -> PatientProfile:
        if not isinstance(self.profile, PatientProfile):
            raise TypeError(f"Actor {self.id} is not a patient")
        return self.profile

    @property
    def ambulance(self) -> AmbulanceProfile:
        if not isinstance(self.profile, AmbulanceProfile):
            raise TypeError(f"Actor {self.id} is not an ambulance")
        return self.profile

    def to_summary(self) -> Dict[str, Any]:
        """Return summary for clients and event payloads."""
        summary: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role.value,
            "hospital_id": self.hospital_id
        }
        if isinstance(self.profile, PatientProfile):
            summary.update({
                "reserved_icu": self.profile.reserved_icu,
                "patient_status": self.profile.patient_status.value if self.profile.patient_status else None,
                "needs_pickup": self.profile.needs_pickup,
                "pickup_location": self.profile.pickup_location,
                "assigned_ambulance": self.profile.assigned_ambulance
            })
        elif isinstance(self.profile, AmbulanceProfile):
            summary.update({
                "status": self.profile.status.value,
                "assigned_patient": self.profile.assigned_patient,
                "assigned_hospital": self.profile.assigned_hospital,
                "destination": self.profile.destination,
                "current_location": (
                    self.profile.current_location.to_pair() if self.profile.current_location else None
                ),
                "eta": self.profile.eta
            })
        return summary
