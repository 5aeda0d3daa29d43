"""
Reception routes: reservations made at the desk, arrivals waiting for
admission, admitted patients, check-in and check-out.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from icudispatch.api.deps import get_reservations, require_roles
from icudispatch.api.routes.icus import ReserveBedRequest
from icudispatch.engine import ReservationEngine
from icudispatch.models.user import Actor, Role

router = APIRouter()

_RECEPTION = (Role.RECEPTIONIST, Role.MANAGER, Role.ADMIN)


class ReserveForPatientRequest(ReserveBedRequest):
    patient_id: str


class CheckInRequest(BaseModel):
    icu_id: str
    patient_id: str


class CheckOutRequest(BaseModel):
    icu_id: Optional[str] = None
    patient_id: Optional[str] = None


@router.post("/reserve")
async def reserve_for_patient(
    body: ReserveForPatientRequest,
    actor: Actor = Depends(require_roles(*_RECEPTION)),
    reservations: ReservationEngine = Depends(get_reservations)
):
    """Reserve a bed on behalf of a patient at the desk."""
    result = await reservations.reserve_bed(body.icu_id, body.patient_id, body.pickup())
    return result.to_dict()


@router.get("/requests")
def list_pending_check_ins(
    hospital_id: Optional[str] = None,
    actor: Actor = Depends(require_roles(*_RECEPTION)),
    reservations: ReservationEngine = Depends(get_reservations)
):
    """Reserved beds at the caller's hospital whose patient is not admitted yet."""
    entries = reservations.list_pending_check_ins(hospital_id or actor.hospital_id)
    return {"success": True, "requests": entries, "count": len(entries)}


@router.get("/checked-in")
def list_checked_in_patients(
    hospital_id: Optional[str] = None,
    actor: Actor = Depends(require_roles(*_RECEPTION)),
    reservations: ReservationEngine = Depends(get_reservations)
):
    entries = reservations.list_checked_in_patients(hospital_id or actor.hospital_id)
    return {"success": True, "patients": entries, "count": len(entries)}


@router.post("/check-in")
async def check_in(
    body: CheckInRequest,
    actor: Actor = Depends(require_roles(*_RECEPTION)),
    reservations: ReservationEngine = Depends(get_reservations)
):
    result = await reservations.check_in(body.icu_id, body.patient_id)
    return result.to_dict()


@router.post("/check-out")
async def check_out(
    body: CheckOutRequest,
    actor: Actor = Depends(require_roles(*_RECEPTION)),
    reservations: ReservationEngine = Depends(get_reservations)
):
    result = await reservations.check_out(bed_id=body.icu_id, patient_id=body.patient_id)
    return result.to_dict()
