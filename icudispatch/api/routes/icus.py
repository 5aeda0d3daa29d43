"""
ICU bed routes: browsing, reservations and manager inventory.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from icudispatch.api.deps import get_inventory, get_reservations, require_roles
from icudispatch.engine import InventoryService, ReservationEngine
from icudispatch.models.ambulance_request import PickupInfo, Urgency
from icudispatch.models.user import Actor, Role

router = APIRouter()

_MANAGERS = (Role.MANAGER, Role.ADMIN)


# ========================
# Request Models
# ========================

class ReserveBedRequest(BaseModel):
    icu_id: str
    needs_pickup: bool = False
    pickup_location: Optional[str] = None
    pickup_coordinates: Optional[List[float]] = Field(None, description="[lng, lat]")
    urgency: Urgency = Urgency.NORMAL
    notes: str = ""
    phone: Optional[str] = None

    def pickup(self) -> Optional[PickupInfo]:
        if not self.needs_pickup:
            return None
        return PickupInfo(
            needs_pickup=True,
            pickup_location=self.pickup_location,
            pickup_coordinates=self.pickup_coordinates,
            urgency=self.urgency,
            notes=self.notes,
            phone=self.phone
        )


class CancelReservationRequest(BaseModel):
    icu_id: str


class RegisterBedRequest(BaseModel):
    hospital_id: Optional[str] = None
    specialization: str
    room: str
    capacity: int = 1
    fee: float = 100
    status: str = "Available"


class UpdateBedRequest(BaseModel):
    specialization: Optional[str] = None
    room: Optional[str] = None
    capacity: Optional[int] = None
    fee: Optional[float] = None
    status: Optional[str] = None


# ========================
# Patient Endpoints
# ========================

@router.get("/available")
def list_available_icus(
    lng: Optional[float] = Query(None),
    lat: Optional[float] = Query(None),
    specialization: Optional[str] = None,
    hospital_id: Optional[str] = None,
    reservations: ReservationEngine = Depends(get_reservations)
):
    """Available ICU beds, nearest first when a location is given."""
    origin = [lng, lat] if lng is not None and lat is not None else None
    beds = reservations.list_available_beds(origin, specialization, hospital_id)
    return {
        "success": True,
        "icus": [ranked.to_summary() for ranked in beds],
        "count": len(beds)
    }


@router.post("/reserve")
async def reserve_icu(
    body: ReserveBedRequest,
    actor: Actor = Depends(require_roles(Role.PATIENT)),
    reservations: ReservationEngine = Depends(get_reservations)
):
    result = await reservations.reserve_bed(body.icu_id, actor.id, body.pickup())
    return result.to_dict()


@router.post("/cancel")
async def cancel_reservation(
    body: CancelReservationRequest,
    actor: Actor = Depends(require_roles(Role.PATIENT)),
    reservations: ReservationEngine = Depends(get_reservations)
):
    result = await reservations.cancel_reservation(body.icu_id, actor.id)
    return result.to_dict()


# ========================
# Manager Endpoints
# ========================

@router.post("")
async def register_icu(
    body: RegisterBedRequest,
    actor: Actor = Depends(require_roles(*_MANAGERS)),
    inventory: InventoryService = Depends(get_inventory)
):
    """Register a bed; managers default to their own hospital."""
    result = await inventory.register_bed(
        hospital_id=body.hospital_id or actor.hospital_id,
        specialization=body.specialization,
        room=body.room,
        capacity=body.capacity,
        fee=body.fee,
        status=body.status
    )
    return result.to_dict()


@router.get("/{icu_id}")
def get_icu(icu_id: str, inventory: InventoryService = Depends(get_inventory)):
    return {"success": True, "icu": inventory.get_bed(icu_id).to_summary()}


@router.put("/{icu_id}")
async def update_icu(
    icu_id: str,
    body: UpdateBedRequest,
    actor: Actor = Depends(require_roles(*_MANAGERS)),
    inventory: InventoryService = Depends(get_inventory)
):
    result = await inventory.update_bed(icu_id, **body.model_dump(exclude_none=True))
    return result.to_dict()


@router.delete("/{icu_id}")
async def delete_icu(
    icu_id: str,
    actor: Actor = Depends(require_roles(*_MANAGERS)),
    inventory: InventoryService = Depends(get_inventory)
):
    result = await inventory.delete_bed(icu_id)
    return result.to_dict()
