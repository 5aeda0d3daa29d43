"""
Ambulance routes: pickup requests, crew actions and manual dispatch.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from icudispatch.api.deps import get_dispatch, require_roles
from icudispatch.core.errors import AuthorizationError
from icudispatch.engine import DispatchEngine
from icudispatch.models.ambulance_request import PickupInfo, Urgency
from icudispatch.models.user import Actor, Role

router = APIRouter()

_STAFF = (Role.ADMIN, Role.MANAGER, Role.RECEPTIONIST, Role.DOCTOR)
_DISPATCHERS = (Role.ADMIN, Role.RECEPTIONIST)


# ========================
# Request Models
# ========================

class PickupRequest(BaseModel):
    pickup_location: Optional[str] = None
    pickup_coordinates: List[float] = Field(..., description="[lng, lat]")
    urgency: Urgency = Urgency.NORMAL
    notes: str = ""
    phone: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class PatientRef(BaseModel):
    patient_id: str


class StatusUpdateRequest(BaseModel):
    status: Optional[str] = None
    location: Optional[List[float]] = Field(None, description="[lng, lat]")
    eta: Optional[int] = None


def _require_self_or_admin(actor: Actor, ambulance_id: str) -> None:
    """Crew may only act as their own ambulance."""
    if actor.role == Role.ADMIN:
        return
    if actor.role != Role.AMBULANCE or actor.id != ambulance_id:
        raise AuthorizationError("Ambulance crews can only act for their own ambulance", ambulance_id=ambulance_id)


# ========================
# Pickup Requests
# ========================

@router.post("/request")
async def create_pickup_request(
    body: PickupRequest,
    actor: Actor = Depends(require_roles(Role.PATIENT)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    pickup = PickupInfo(needs_pickup=True, **body.model_dump())
    result = await dispatch.create_request(actor.id, pickup)
    return result.to_dict()


@router.get("/requests")
def list_pending_requests(
    lng: Optional[float] = Query(None),
    lat: Optional[float] = Query(None),
    actor: Actor = Depends(require_roles(Role.AMBULANCE, *_STAFF)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    """Pending requests nearest first, without the ones this crew declined."""
    origin = [lng, lat] if lng is not None and lat is not None else None
    ambulance_id = actor.id if actor.is_ambulance else None
    requests = dispatch.list_pending_requests(ambulance_id, origin)
    return {
        "success": True,
        "requests": [ranked.to_summary() for ranked in requests],
        "count": len(requests)
    }


@router.post("/requests/{request_id}/accept")
async def accept_request(
    request_id: str,
    actor: Actor = Depends(require_roles(Role.AMBULANCE)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    result = await dispatch.accept_request(request_id, actor.id)
    return result.to_dict()


@router.post("/requests/{request_id}/reject")
async def reject_request(
    request_id: str,
    body: Optional[RejectRequest] = None,
    actor: Actor = Depends(require_roles(Role.AMBULANCE)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    result = await dispatch.reject_request(request_id, actor.id, body.reason if body else None)
    return result.to_dict()


@router.delete("/requests/{request_id}/cancel")
async def cancel_request(
    request_id: str,
    actor: Actor = Depends(require_roles(Role.PATIENT)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    result = await dispatch.cancel_request(request_id, actor.id)
    return result.to_dict()


@router.get("/my-request")
def my_request(
    actor: Actor = Depends(require_roles(Role.PATIENT)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    request = dispatch.get_active_request_for_patient(actor.id)
    return {"success": True, "request": request.to_summary() if request else None}


@router.get("/my-accepted-request")
def my_accepted_request(
    actor: Actor = Depends(require_roles(Role.AMBULANCE)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    request = dispatch.get_accepted_request_for_ambulance(actor.id)
    return {"success": True, "request": request.to_summary() if request else None}


# ========================
# Ambulances
# ========================

@router.get("")
def list_ambulances(
    status: Optional[str] = None,
    actor: Actor = Depends(require_roles(Role.AMBULANCE, *_STAFF)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    ambulances = dispatch.list_ambulances(status)
    return {
        "success": True,
        "ambulances": [a.to_summary() for a in ambulances],
        "count": len(ambulances)
    }


@router.get("/{ambulance_id}")
def get_ambulance(
    ambulance_id: str,
    actor: Actor = Depends(require_roles(Role.AMBULANCE, *_STAFF)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    return {"success": True, "ambulance": dispatch.get_ambulance(ambulance_id).to_summary()}


@router.put("/{ambulance_id}/status")
async def update_status(
    ambulance_id: str,
    body: StatusUpdateRequest,
    actor: Actor = Depends(require_roles(Role.AMBULANCE, Role.ADMIN)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    _require_self_or_admin(actor, ambulance_id)
    result = await dispatch.update_ambulance_status(
        ambulance_id,
        status=body.status,
        location=body.location,
        eta=body.eta
    )
    return result.to_dict()


@router.post("/{ambulance_id}/assign")
async def assign_ambulance(
    ambulance_id: str,
    body: PatientRef,
    actor: Actor = Depends(require_roles(*_DISPATCHERS)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    result = await dispatch.assign_ambulance(ambulance_id, body.patient_id, assigned_by=actor.id)
    return result.to_dict()


@router.post("/{ambulance_id}/approve-pickup")
async def approve_pickup(
    ambulance_id: str,
    body: PatientRef,
    actor: Actor = Depends(require_roles(Role.AMBULANCE)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    _require_self_or_admin(actor, ambulance_id)
    result = await dispatch.approve_pickup(ambulance_id, body.patient_id)
    return result.to_dict()


@router.post("/{ambulance_id}/accept-pickup")
async def accept_pickup(
    ambulance_id: str,
    actor: Actor = Depends(require_roles(Role.AMBULANCE)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    """Crew confirms the patient is on board."""
    _require_self_or_admin(actor, ambulance_id)
    result = await dispatch.start_transport(ambulance_id)
    return result.to_dict()


@router.post("/{ambulance_id}/mark-arrived")
async def mark_arrived(
    ambulance_id: str,
    body: PatientRef,
    actor: Actor = Depends(require_roles(Role.AMBULANCE)),
    dispatch: DispatchEngine = Depends(get_dispatch)
):
    _require_self_or_admin(actor, ambulance_id)
    result = await dispatch.mark_arrived(ambulance_id, body.patient_id)
    return result.to_dict()
