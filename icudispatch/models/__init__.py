"""
Models package for the ICU dispatch backend.
"""

from .hospital import (
    BedStatus,
    Specialization,
    GeoPoint,
    Hospital,
    IcuBed
)

from .user import (
    Role,
    PatientStatus,
    AmbulanceStatus,
    PatientProfile,
    AmbulanceProfile,
    StaffProfile,
    Actor
)

from .ambulance_request import (
    RequestStatus,
    Urgency,
    PickupInfo,
    AmbulanceRequest,
    ACTIVE_STATUSES,
    ASSIGNED_STATUSES,
    CANCELLABLE_STATUSES
)

from .events import (
    EventType,
    DomainEvent
)

from .results import (
    TransitionResult,
    RankedBed,
    RankedRequest,
    ReconciliationReport
)

__all__ = [
    # Hospital
    "BedStatus",
    "Specialization",
    "GeoPoint",
    "Hospital",
    "IcuBed",

    # Users
    "Role",
    "PatientStatus",
    "AmbulanceStatus",
    "PatientProfile",
    "AmbulanceProfile",
    "StaffProfile",
    "Actor",

    # Ambulance requests
    "RequestStatus",
    "Urgency",
    "PickupInfo",
    "AmbulanceRequest",
    "ACTIVE_STATUSES",
    "ASSIGNED_STATUSES",
    "CANCELLABLE_STATUSES",

    # Events
    "EventType",
    "DomainEvent",

    # Results
    "TransitionResult",
    "RankedBed",
    "RankedRequest",
    "ReconciliationReport"
]
