"""
ICU inventory management for hospital managers.

Beds are registered as Available or Maintenance. Occupied is never set by
hand: it only follows from a reservation, and a reserved bed's status cannot
be edited until the reservation ends.
"""

import logging
from typing import Any, Optional

from icudispatch.core.errors import (
    BedNotFound,
    BedReserved,
    HospitalNotFound,
    InvalidStatus,
    ValidationError
)
from icudispatch.engine.base import BaseEngine
from icudispatch.engine.reservation import ReservationEngine
from icudispatch.models.events import EventType
from icudispatch.models.hospital import BedStatus, IcuBed, Specialization
from icudispatch.models.results import TransitionResult

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("specialization", "room", "capacity", "fee", "status")


def _manual_status(value: Any) -> BedStatus:
    try:
        status = BedStatus.parse(value)
    except ValueError:
        raise InvalidStatus(status=value, allowed=[BedStatus.AVAILABLE.value, BedStatus.MAINTENANCE.value])
    if status == BedStatus.OCCUPIED:
        raise InvalidStatus(
            "Occupied is set by reservations, not by hand",
            status=value,
            allowed=[BedStatus.AVAILABLE.value, BedStatus.MAINTENANCE.value]
        )
    return status


def _specialization(value: Any) -> Specialization:
    try:
        return Specialization.parse(value)
    except ValueError:
        raise ValidationError(
            "Unknown ICU specialization",
            specialization=value,
            allowed=[s.value for s in Specialization]
        )


def _capacity(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError("capacity must be a positive integer", capacity=value)
    return value


def _fee(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValidationError("fee must be a non-negative number", fee=value)
    return float(value)


def _room(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("room is required", room=value)
    return value.strip()


class InventoryService(BaseEngine):
    """Register, edit and remove ICU beds."""

    def __init__(self, session_factory, event_bus, reservations: Optional[ReservationEngine] = None):
        super().__init__(session_factory, event_bus, name="InventoryService")
        self.reservations = reservations or ReservationEngine(session_factory, event_bus)

    async def register_bed(
        self,
        hospital_id: str,
        specialization: Any,
        room: str,
        capacity: int = 1,
        fee: float = 100,
        status: Any = BedStatus.AVAILABLE
    ) -> TransitionResult:
        if not hospital_id:
            raise ValidationError("hospital_id is required")
        values = {
            "specialization": _specialization(specialization),
            "room": _room(room),
            "capacity": _capacity(capacity),
            "fee": _fee(fee),
            "status": _manual_status(status)
        }

        def apply(store):
            if store.get_hospital(hospital_id) is None:
                raise HospitalNotFound(hospital_id=hospital_id)
            return store.add_bed(hospital_id=hospital_id, **values)

        bed = await self.transact(apply)

        logger.info(f"Registered ICU bed {bed.id} ({bed.specialization.value}) at hospital {hospital_id}")
        await self.reservations.broadcast_available_beds()

        return TransitionResult(message="ICU bed registered", bed=bed)

    async def update_bed(self, bed_id: str, **changes: Any) -> TransitionResult:
        """
        Edit bed details.

        Raises:
            BedNotFound: unknown bed
            BedReserved: status change on a reserved bed
            InvalidStatus: unknown status or an attempt to set Occupied
            ValidationError: bad field value
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError("Unknown bed fields", fields=sorted(unknown))

        updates = {}
        if changes.get("specialization") is not None:
            updates["specialization"] = _specialization(changes["specialization"])
        if changes.get("room") is not None:
            updates["room"] = _room(changes["room"])
        if changes.get("capacity") is not None:
            updates["capacity"] = _capacity(changes["capacity"])
        if changes.get("fee") is not None:
            updates["fee"] = _fee(changes["fee"])
        if changes.get("status") is not None:
            updates["status"] = _manual_status(changes["status"])

        def apply(store):
            bed = store.get_bed(bed_id)
            if bed is None:
                raise BedNotFound(bed_id=bed_id)

            status_changed = "status" in updates and updates["status"] != bed.status
            expected = {}
            if "status" in updates:
                if bed.is_reserved:
                    raise BedReserved(bed_id=bed_id, reserved_by=bed.reserved_by)
                # A reservation landing between read and write must win
                expected = {"is_reserved": False, "status": bed.status}

            if updates and not store.update_bed(bed_id, expected, **updates):
                raise BedReserved(bed_id=bed_id)
            return store.get_bed(bed_id), status_changed

        bed, status_changed = await self.transact(apply)

        logger.info(f"ICU bed {bed_id} updated: {sorted(updates)}")
        await self._broadcast(
            EventType.ICU_STATUS_UPDATE,
            {"icu": bed.to_summary(), "changed": sorted(updates)},
            correlation_id=bed_id
        )
        if status_changed:
            await self.reservations.broadcast_available_beds()

        return TransitionResult(message="ICU bed updated", bed=bed)

    async def delete_bed(self, bed_id: str) -> TransitionResult:
        def apply(store):
            bed = store.get_bed(bed_id)
            if bed is None:
                raise BedNotFound(bed_id=bed_id)
            if bed.is_reserved or not store.delete_unreserved_bed(bed_id):
                raise BedReserved("Reserved ICU beds cannot be deleted", bed_id=bed_id)
            return bed

        bed = await self.transact(apply)

        logger.info(f"ICU bed {bed_id} deleted")
        await self.reservations.broadcast_available_beds()

        return TransitionResult(message="ICU bed deleted", bed=bed)

    def get_bed(self, bed_id: str) -> IcuBed:
        return self.reservations.get_bed(bed_id)
