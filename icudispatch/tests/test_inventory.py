"""
Inventory service: registering, editing and removing ICU beds.
"""

import pytest

from icudispatch.core.errors import (
    BedNotFound,
    BedReserved,
    HospitalNotFound,
    InvalidStatus,
    ValidationError
)
from icudispatch.models.ambulance_request import PickupInfo
from icudispatch.models.events import EventType
from icudispatch.models.hospital import BedStatus, Specialization
from icudispatch.tests.conftest import run


def test_register_bed(engines, world, store, bus):
    result = run(engines.inventory.register_bed(
        world.hospital, "Neonatal ICU", " N-1 ", capacity=2, fee=250
    ))

    bed = store.get_bed(result.bed.id)
    assert bed.specialization == Specialization.NEONATAL
    assert bed.room == "N-1"
    assert (bed.capacity, bed.fee) == (2, 250.0)
    assert bed.is_available()
    assert bed.id.startswith("icu_")
    assert bus.names() == [EventType.ICU_UPDATED]
    assert result.bed.id in [icu["id"] for icu in bus.events[0].payload["icus"]]


def test_register_in_maintenance_is_not_listed(engines, world):
    result = run(engines.inventory.register_bed(world.hospital, "Burn ICU", "B-1", status="maintenance"))

    assert result.bed.status == BedStatus.MAINTENANCE
    listed = [entry.bed.id for entry in engines.reservations.list_available_beds()]
    assert result.bed.id not in listed


@pytest.mark.parametrize("kwargs, error", [
    ({"hospital_id": ""}, ValidationError),
    ({"hospital_id": "hosp_missing"}, HospitalNotFound),
    ({"specialization": "Dental ICU"}, ValidationError),
    ({"room": "  "}, ValidationError),
    ({"capacity": 0}, ValidationError),
    ({"capacity": True}, ValidationError),
    ({"fee": -5}, ValidationError),
    ({"status": "Occupied"}, InvalidStatus),
    ({"status": "Closed"}, InvalidStatus),
])
def test_register_bed_rejections(engines, world, kwargs, error):
    params = {"hospital_id": world.hospital, "specialization": "Medical ICU", "room": "M-9"}
    params.update(kwargs)
    with pytest.raises(error):
        run(engines.inventory.register_bed(**params))


def test_update_bed_details_and_status(engines, world, store, bus):
    run(engines.inventory.update_bed(world.bed_y, room="M-202", fee=120))
    assert bus.names() == [EventType.ICU_STATUS_UPDATE]

    bus.clear()
    run(engines.inventory.update_bed(world.bed_y, status="Maintenance"))

    bed = store.get_bed(world.bed_y)
    assert bed.room == "M-202"
    assert bed.fee == 120
    assert bed.status == BedStatus.MAINTENANCE
    assert bus.names() == [EventType.ICU_STATUS_UPDATE, EventType.ICU_UPDATED]
    assert bus.events[0].payload["changed"] == ["status"]


def test_reserved_bed_status_is_locked(engines, world, store):
    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))

    with pytest.raises(BedReserved):
        run(engines.inventory.update_bed(world.bed_x, status="Available"))
    with pytest.raises(BedReserved):
        run(engines.inventory.delete_bed(world.bed_x))

    # Non-status details stay editable
    run(engines.inventory.update_bed(world.bed_x, fee=300))
    bed = store.get_bed(world.bed_x)
    assert bed.fee == 300
    assert bed.status == BedStatus.OCCUPIED and bed.reserved_by == world.patient_a


def test_update_bed_rejections(engines, world):
    with pytest.raises(BedNotFound):
        run(engines.inventory.update_bed("icu_missing", room="X"))
    with pytest.raises(ValidationError):
        run(engines.inventory.update_bed(world.bed_x, is_reserved=True))
    with pytest.raises(InvalidStatus):
        run(engines.inventory.update_bed(world.bed_x, status="Occupied"))


def test_delete_bed(engines, world, store):
    run(engines.inventory.delete_bed(world.bed_y))

    assert store.get_bed(world.bed_y) is None
    with pytest.raises(BedNotFound):
        engines.inventory.get_bed(world.bed_y)
    with pytest.raises(BedNotFound):
        run(engines.inventory.delete_bed(world.bed_y))


def test_delete_bed_with_finished_request_history(engines, world, store):
    pickup = PickupInfo(needs_pickup=True, pickup_location="home", pickup_coordinates=[31.2, 30.0])
    result = run(engines.reservations.reserve_bed(world.bed_y, world.patient_a, pickup))
    run(engines.reservations.cancel_reservation(world.bed_y, world.patient_a))

    run(engines.inventory.delete_bed(world.bed_y))

    assert store.get_request(result.request.id).icu_id is None
