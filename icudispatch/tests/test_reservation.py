"""
Reservation engine: reserve, cancel, check-in, check-out and bed queries.
"""

import pytest

from icudispatch.core.errors import (
    AlreadyCheckedIn,
    BedNotFound,
    BedNotOccupied,
    BedUnavailable,
    CannotCancelAfterCheckIn,
    InvalidCoordinates,
    PatientAlreadyReserved,
    PatientNotFound,
    ReservationMismatch,
    TransportNotComplete,
    ValidationError
)
from icudispatch.db.store import EntityStore
from icudispatch.engine import ReservationEngine
from icudispatch.models.ambulance_request import PickupInfo, RequestStatus
from icudispatch.models.events import EventType
from icudispatch.models.hospital import BedStatus
from icudispatch.models.user import AmbulanceStatus, PatientStatus
from icudispatch.tests.conftest import HOSPITAL_LOCATION, PICKUP, run


def _pickup(coords=PICKUP):
    return PickupInfo(needs_pickup=True, pickup_location="12 Nile St", pickup_coordinates=coords)


# ========================
# reserve_bed
# ========================

def test_reserve_without_pickup(engines, world, store, bus):
    """Scenario 1: A reserves X; B is then turned away."""
    result = run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))

    bed = store.get_bed(world.bed_x)
    patient = store.get_actor(world.patient_a)
    assert bed.status == BedStatus.OCCUPIED
    assert bed.is_reserved and bed.reserved_by == world.patient_a
    assert patient.patient.reserved_icu == world.bed_x
    assert patient.patient.patient_status == PatientStatus.RESERVED
    assert patient.patient.needs_pickup is False
    assert result.request is None
    assert result.to_dict()["success"] is True

    assert EventType.ICU_RESERVED in bus.names()
    assert EventType.ICU_UPDATED in bus.names()
    assert EventType.AMBULANCE_PICKUP_REQUEST not in bus.names()

    with pytest.raises(BedUnavailable):
        run(engines.reservations.reserve_bed(world.bed_x, world.patient_b))
    assert store.get_actor(world.patient_b).patient.reserved_icu is None


def test_reserve_with_pickup_opens_request(engines, world, store, bus):
    result = run(engines.reservations.reserve_bed(world.bed_x, world.patient_a, _pickup()))

    request = result.request
    assert request is not None
    assert request.status == RequestStatus.PENDING
    assert request.hospital_id == world.hospital
    assert request.icu_id == world.bed_x
    assert request.pickup_coordinates.to_pair() == tuple(PICKUP)

    patient = store.get_actor(world.patient_a)
    assert patient.patient.patient_status == PatientStatus.AWAITING_PICKUP
    assert patient.patient.needs_pickup is True
    assert patient.patient.pickup_location == "12 Nile St"

    pickup_events = bus.of(EventType.AMBULANCE_PICKUP_REQUEST)
    assert len(pickup_events) == 1
    assert pickup_events[0].audience == "ambulances"
    assert bus.of(EventType.PATIENT_NOTIFICATION)[0].payload["patient_id"] == world.patient_a


@pytest.mark.parametrize("coords", [None, [31.2], [400, 30.0], [31.2, float("nan")]])
def test_reserve_with_bad_pickup_changes_nothing(engines, world, store, bus, coords):
    with pytest.raises(InvalidCoordinates):
        run(engines.reservations.reserve_bed(world.bed_x, world.patient_a, _pickup(coords)))

    assert store.get_bed(world.bed_x).is_available()
    assert store.get_actor(world.patient_a).patient.reserved_icu is None
    assert store.list_requests() == []
    assert bus.events == []


def test_reserve_preconditions(engines, world, session_factory):
    with pytest.raises(BedNotFound):
        run(engines.reservations.reserve_bed("icu_missing", world.patient_a))
    with pytest.raises(PatientNotFound):
        run(engines.reservations.reserve_bed(world.bed_x, "pat_missing"))
    with pytest.raises(PatientNotFound):
        run(engines.reservations.reserve_bed(world.bed_x, world.ambulance_c))

    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))
    with pytest.raises(PatientAlreadyReserved):
        run(engines.reservations.reserve_bed(world.bed_y, world.patient_a))

    session = session_factory()
    EntityStore(session).update_bed(world.bed_y, {}, status=BedStatus.MAINTENANCE)
    session.commit()
    session.close()
    with pytest.raises(BedUnavailable):
        run(engines.reservations.reserve_bed(world.bed_y, world.patient_b))


def test_reserve_stores_plain_ids(engines, world, store):
    run(engines.reservations.reserve_bed(f" {world.bed_x} ", f"{world.patient_a}\t"))

    assert store.get_bed(world.bed_x).reserved_by == world.patient_a
    assert store.get_actor(world.patient_a).patient.reserved_icu == world.bed_x
    run(engines.reservations.cancel_reservation(world.bed_x, world.patient_a))
    assert store.get_bed(world.bed_x).is_available()


def test_broadcast_failure_does_not_undo_reservation(session_factory, world, store):
    class BrokenBus:
        async def emit(self, *args, **kwargs):
            raise ConnectionError("broker down")

    reservations = ReservationEngine(session_factory, BrokenBus())
    result = run(reservations.reserve_bed(world.bed_x, world.patient_a))

    assert result.bed.is_reserved
    assert store.get_bed(world.bed_x).reserved_by == world.patient_a


# ========================
# cancel_reservation
# ========================

def test_reserve_then_cancel_restores_state(engines, world, store, bus):
    before_bed = store.get_bed(world.bed_x)
    before_patient = store.get_actor(world.patient_a)

    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))
    run(engines.reservations.cancel_reservation(world.bed_x, world.patient_a))

    bed = store.get_bed(world.bed_x)
    patient = store.get_actor(world.patient_a)
    assert (bed.status, bed.is_reserved, bed.reserved_by, bed.checked_in_at) == (
        before_bed.status, before_bed.is_reserved, before_bed.reserved_by, before_bed.checked_in_at
    )
    assert patient.profile == before_patient.profile
    assert EventType.ICU_RESERVATION_CANCELLED in bus.names()


def test_cancel_with_pending_pickup_cancels_request(engines, world, store, bus):
    result = run(engines.reservations.reserve_bed(world.bed_x, world.patient_a, _pickup()))
    run(engines.reservations.cancel_reservation(world.bed_x, world.patient_a))

    assert store.get_request(result.request.id).status == RequestStatus.CANCELLED
    assert EventType.PICKUP_REQUEST_CANCELLED in bus.names()
    # A fresh reservation with pickup is allowed again
    run(engines.reservations.reserve_bed(world.bed_y, world.patient_a, _pickup()))


def test_cancel_preconditions(engines, world):
    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))

    with pytest.raises(BedNotFound):
        run(engines.reservations.cancel_reservation("icu_missing", world.patient_a))
    with pytest.raises(PatientNotFound):
        run(engines.reservations.cancel_reservation(world.bed_x, "pat_missing"))
    with pytest.raises(ReservationMismatch):
        run(engines.reservations.cancel_reservation(world.bed_x, world.patient_b))
    with pytest.raises(ReservationMismatch):
        run(engines.reservations.cancel_reservation(world.bed_y, world.patient_a))

    run(engines.reservations.check_in(world.bed_x, world.patient_a))
    with pytest.raises(CannotCancelAfterCheckIn):
        run(engines.reservations.cancel_reservation(world.bed_x, world.patient_a))


def test_cancel_matches_ids_with_stray_whitespace(engines, world, store):
    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))
    run(engines.reservations.cancel_reservation(world.bed_x, f" {world.patient_a} "))
    assert store.get_bed(world.bed_x).is_available()


# ========================
# check_in / check_out
# ========================

def test_check_in_without_pickup(engines, world, store, bus):
    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))
    run(engines.reservations.check_in(world.bed_x, world.patient_a))

    bed = store.get_bed(world.bed_x)
    assert bed.checked_in_at is not None
    assert bed.status == BedStatus.OCCUPIED
    assert store.get_actor(world.patient_a).patient.patient_status == PatientStatus.CHECKED_IN
    assert EventType.PATIENT_CHECKED_IN in bus.names()

    with pytest.raises(AlreadyCheckedIn):
        run(engines.reservations.check_in(world.bed_x, world.patient_a))


def test_check_in_withdraws_unclaimed_pickup(engines, world, store, bus):
    result = run(engines.reservations.reserve_bed(world.bed_x, world.patient_a, _pickup()))
    run(engines.reservations.check_in(world.bed_x, world.patient_a))

    assert store.get_request(result.request.id).status == RequestStatus.CANCELLED
    patient = store.get_actor(world.patient_a)
    assert patient.patient.needs_pickup is False
    assert patient.patient.pickup_location is None
    assert EventType.PICKUP_REQUEST_CANCELLED in bus.names()


def test_check_in_before_transport_completes(engines, world, session_factory):
    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a, _pickup()))

    # Legacy row: ambulance linked while the patient still awaits pickup
    session = session_factory()
    store = EntityStore(session)
    store.update_patient(world.patient_a, {}, assigned_ambulance=world.ambulance_c)
    store.update_ambulance(
        world.ambulance_c, {}, assigned_patient=world.patient_a, status=AmbulanceStatus.EN_ROUTE
    )
    session.commit()
    session.close()

    with pytest.raises(TransportNotComplete):
        run(engines.reservations.check_in(world.bed_x, world.patient_a))


def test_check_in_preconditions(engines, world):
    with pytest.raises(BedNotFound):
        run(engines.reservations.check_in("icu_missing", world.patient_a))
    with pytest.raises(ReservationMismatch):
        run(engines.reservations.check_in(world.bed_x, world.patient_a))

    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))
    with pytest.raises(ReservationMismatch):
        run(engines.reservations.check_in(world.bed_x, world.patient_b))


def test_check_out_by_bed(engines, world, store, bus):
    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))
    run(engines.reservations.check_in(world.bed_x, world.patient_a))
    bus.clear()

    run(engines.reservations.check_out(bed_id=world.bed_x))

    bed = store.get_bed(world.bed_x)
    patient = store.get_actor(world.patient_a)
    assert bed.is_available() and bed.reserved_by is None and bed.checked_in_at is None
    assert patient.patient.patient_status == PatientStatus.CHECKED_OUT
    assert patient.patient.reserved_icu is None
    assert bus.names() == [EventType.ICU_UPDATED, EventType.PATIENT_CHECKED_OUT]

    # A checked-out patient can reserve again
    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))


def test_check_out_by_patient(engines, world, store):
    run(engines.reservations.reserve_bed(world.bed_y, world.patient_b))
    run(engines.reservations.check_in(world.bed_y, world.patient_b))
    result = run(engines.reservations.check_out(patient_id=world.patient_b))

    assert result.bed.id == world.bed_y
    assert store.get_bed(world.bed_y).is_available()


def test_check_out_preconditions(engines, world):
    with pytest.raises(ValidationError):
        run(engines.reservations.check_out())
    with pytest.raises(BedNotFound):
        run(engines.reservations.check_out(bed_id="icu_missing"))
    with pytest.raises(BedNotOccupied):
        run(engines.reservations.check_out(bed_id=world.bed_x))
    with pytest.raises(PatientNotFound):
        run(engines.reservations.check_out(patient_id="pat_missing"))
    with pytest.raises(BedNotFound):
        run(engines.reservations.check_out(patient_id=world.patient_a))


# ========================
# Queries
# ========================

def test_available_beds_ranked_by_distance(engines, world):
    run(engines.reservations.reserve_bed(world.bed_y, world.patient_a))

    ranked = engines.reservations.list_available_beds(origin=list(HOSPITAL_LOCATION))
    ids = [entry.bed.id for entry in ranked]

    assert world.bed_y not in ids
    assert ids == [world.bed_x, world.bed_far, world.bed_unlocated]
    assert ranked[0].distance_km == 0
    assert ranked[1].distance_km > 100
    assert ranked[2].distance_km is None


def test_available_beds_filters(engines, world):
    cardiac = engines.reservations.list_available_beds(specialization="cardiac icu")
    assert {entry.bed.id for entry in cardiac} == {world.bed_x, world.bed_far}

    local = engines.reservations.list_available_beds(hospital_id=world.hospital)
    assert {entry.bed.id for entry in local} == {world.bed_x, world.bed_y}

    with pytest.raises(ValidationError):
        engines.reservations.list_available_beds(specialization="Dental ICU")
    with pytest.raises(InvalidCoordinates):
        engines.reservations.list_available_beds(origin=[0, 100])


def test_pending_check_ins(engines, world):
    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a, _pickup()))
    run(engines.reservations.reserve_bed(world.bed_y, world.patient_b))
    run(engines.reservations.check_in(world.bed_y, world.patient_b))

    entries = engines.reservations.list_pending_check_ins(world.hospital)

    assert [entry["patient"]["id"] for entry in entries] == [world.patient_a]
    assert entries[0]["request"]["status"] == "pending"
    assert engines.reservations.list_pending_check_ins(world.far_hospital) == []


def test_checked_in_patients(engines, world):
    run(engines.reservations.reserve_bed(world.bed_x, world.patient_a))
    run(engines.reservations.reserve_bed(world.bed_y, world.patient_b))
    assert engines.reservations.list_checked_in_patients(world.hospital) == []

    run(engines.reservations.check_in(world.bed_y, world.patient_b))
    run(engines.reservations.check_in(world.bed_x, world.patient_a))

    entries = engines.reservations.list_checked_in_patients(world.hospital)
    assert [entry["patient"]["id"] for entry in entries] == [world.patient_b, world.patient_a]
    assert entries[0]["icu"]["id"] == world.bed_y
    assert entries[0]["checked_in_at"] is not None
    assert engines.reservations.list_checked_in_patients(world.far_hospital) == []

    run(engines.reservations.check_out(bed_id=world.bed_y))
    entries = engines.reservations.list_checked_in_patients()
    assert [entry["patient"]["id"] for entry in entries] == [world.patient_a]
