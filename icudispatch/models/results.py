"""
Return types of engine operations.
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from icudispatch.models.hospital import IcuBed
from icudispatch.models.user import Actor
from icudispatch.models.ambulance_request import AmbulanceRequest


class TransitionResult(BaseModel):
    """Entities touched by a successful transition."""
    message: str
    bed: Optional[IcuBed] = None
    patient: Optional[Actor] = None
    ambulance: Optional[Actor] = None
    request: Optional[AmbulanceRequest] = None

    def to_dict(self) -> Dict[str, Any]:
        """Response body for the REST layer."""
        body: Dict[str, Any] = {"success": True, "message": self.message}
        if self.bed:
            body["icu"] = self.bed.to_summary()
        if self.patient:
            body["patient"] = self.patient.to_summary()
        if self.ambulance:
            body["ambulance"] = self.ambulance.to_summary()
        if self.request:
            body["request"] = self.request.to_summary()
        return body


class RankedBed(BaseModel):
    bed: IcuBed
    distance_km: Optional[float] = None

    def to_summary(self) -> Dict[str, Any]:
        summary = self.bed.to_summary()
        summary["distance_km"] = self.distance_km
        return summary


class RankedRequest(BaseModel):
    request: AmbulanceRequest
    distance_km: Optional[float] = None

    def to_summary(self) -> Dict[str, Any]:
        summary = self.request.to_summary()
        summary["distance_km"] = self.distance_km
        return summary


class ReconciliationReport(BaseModel):
    """What a reconciliation sweep found and repaired."""
    restored_links: List[Dict[str, str]] = Field(default_factory=list)
    freed_ambulances: List[str] = Field(default_factory=list)
    cleared_patient_links: List[str] = Field(default_factory=list)
    freed_beds: List[str] = Field(default_factory=list)
    restored_reservations: List[Dict[str, str]] = Field(default_factory=list)
    cleared_reservations: List[str] = Field(default_factory=list)
    rebroadcast_requests: List[str] = Field(default_factory=list)

    @property
    def repair_count(self) -> int:
        return (
            len(self.restored_links)
            + len(self.freed_ambulances)
            + len(self.cleared_patient_links)
            + len(self.freed_beds)
            + len(self.restored_reservations)
            + len(self.cleared_reservations)
        )

    def to_dict(self) -> Dict[str, Any]:
        body = self.model_dump()
        body["repair_count"] = self.repair_count
        return body
