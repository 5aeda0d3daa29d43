"""
Hospital and ICU bed models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Tuple
from pydantic import BaseModel, Field


class BedStatus(str, Enum):
    """Status of an ICU bed."""
    AVAILABLE = "Available"
    OCCUPIED = "Occupied"
    MAINTENANCE = "Maintenance"

    @classmethod
    def parse(cls, value: Any) -> "BedStatus":
        """Accept any casing ("available", "AVAILABLE") and return the member."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if isinstance(value, str) and value.strip().lower() == member.value.lower():
                return member
        raise ValueError(f"Unknown bed status: {value!r}")


class Specialization(str, Enum):
    """Medical categories an ICU bed can be registered under."""
    MEDICAL = "Medical ICU"
    SURGICAL = "Surgical ICU"
    CARDIAC = "Cardiac ICU"
    NEONATAL = "Neonatal ICU"
    PEDIATRIC = "Pediatric ICU"
    NEUROLOGICAL = "Neurological ICU"
    TRAUMA = "Trauma ICU"
    BURN = "Burn ICU"
    RESPIRATORY = "Respiratory ICU"
    CORONARY_CARE = "Coronary Care Unit"
    ONCOLOGY = "Oncology ICU"
    TRANSPLANT = "Transplant ICU"
    GERIATRIC = "Geriatric ICU"
    POST_ANESTHESIA = "Post-Anesthesia Care Unit"
    OBSTETRIC = "Obstetric ICU"
    INFECTIOUS_DISEASE = "Infectious Disease ICU"

    @classmethod
    def parse(cls, value: Any) -> "Specialization":
        if isinstance(value, cls):
            return value
        for member in cls:
            if isinstance(value, str) and value.strip().lower() == member.value.lower():
                return member
        raise ValueError(f"Unknown ICU specialization: {value!r}")


class GeoPoint(BaseModel):
    """A [lng, lat] location."""
    lng: float = Field(..., ge=-180, le=180)
    lat: float = Field(..., ge=-90, le=90)

    def to_pair(self) -> Tuple[float, float]:
        return (self.lng, self.lat)

    @classmethod
    def from_pair(cls, lng: Optional[float], lat: Optional[float]) -> Optional["GeoPoint"]:
        if lng is None or lat is None:
            return None
        return cls(lng=lng, lat=lat)


class Hospital(BaseModel):
    """Hospital owning ICU beds."""
    id: str
    name: str
    address: Optional[str] = None
    location: Optional[GeoPoint] = None

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "location": self.location.to_pair() if self.location else None
        }


class IcuBed(BaseModel):
    """
    A schedulable ICU bed.

    ``is_reserved`` and ``reserved_by`` always move together, and a reserved
    bed is always Occupied.
    """
    id: str = Field(..., description="Unique bed identifier")
    hospital_id: str = Field(..., description="Owning hospital")
    specialization: Specialization
    room: str
    capacity: int = Field(1, ge=1)
    status: BedStatus = BedStatus.AVAILABLE
    fee: float = Field(100, ge=0)
    is_reserved: bool = False
    reserved_by: Optional[str] = Field(None, description="Patient holding the reservation")
    checked_in_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Populated by queries that join the owning hospital
    hospital: Optional[Hospital] = None

    def is_available(self) -> bool:
        """Check if the bed can be reserved."""
        return self.status == BedStatus.AVAILABLE and not self.is_reserved

    def to_summary(self) -> Dict[str, Any]:
        """Return summary for clients and event payloads."""
        return {
            "id": self.id,
            "hospital_id": self.hospital_id,
            "hospital": self.hospital.to_summary() if self.hospital else None,
            "specialization": self.specialization.value,
            "room": self.room,
            "capacity": self.capacity,
            "status": self.status.value,
            "fee": self.fee,
            "is_reserved": self.is_reserved,
            "reserved_by": self.reserved_by,
            "checked_in_at": self.checked_in_at.isoformat() if self.checked_in_at else None
        }
