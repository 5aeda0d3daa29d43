"""
Shared fixtures: a fresh database per test, a recording event bus and a
small seeded world (one hospital, beds, patients, ambulances and staff).
"""

import asyncio
import threading
from types import SimpleNamespace
from typing import List

import pytest

from icudispatch.core.event_bus import create_event_id
from icudispatch.db.connection import init_db
from icudispatch.db.store import EntityStore
from icudispatch.engine import DispatchEngine, InventoryService, ReservationEngine, Reconciler
from icudispatch.models.events import DomainEvent, EventType
from icudispatch.models.hospital import Specialization
from icudispatch.models.user import Role

HOSPITAL_LOCATION = (31.2357, 30.0444)
PICKUP = [31.2, 30.0]


class RecordingBus:
    """Event bus stand-in that records every event; safe to share across threads."""

    def __init__(self):
        self.events: List[DomainEvent] = []
        self._lock = threading.Lock()

    async def publish(self, event: DomainEvent) -> None:
        with self._lock:
            self.events.append(event)

    async def emit(self, event_type, payload, source="system", audience=None, correlation_id=None):
        event = DomainEvent(
            id=create_event_id(),
            event_type=event_type,
            source=source,
            payload=payload,
            audience=audience,
            correlation_id=correlation_id
        )
        await self.publish(event)
        return event

    def names(self) -> List[EventType]:
        return [e.event_type for e in self.events]

    def of(self, event_type: EventType) -> List[DomainEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


def run(coro):
    """Drive one engine coroutine to completion."""
    return asyncio.run(coro)


def seed_world(session_factory) -> SimpleNamespace:
    session = session_factory()
    store = EntityStore(session)
    try:
        hospital = store.add_hospital("Cairo General", "Tahrir Sq", HOSPITAL_LOCATION, hospital_id="hosp_cairo")
        far = store.add_hospital("Alexandria Central", "Corniche", (29.9187, 31.2001), hospital_id="hosp_alex")
        nowhere = store.add_hospital("Field Clinic", hospital_id="hosp_field")

        bed_x = store.add_bed(hospital.id, Specialization.CARDIAC, "C-101", bed_id="icu_x")
        bed_y = store.add_bed(hospital.id, Specialization.MEDICAL, "M-201", bed_id="icu_y")
        bed_far = store.add_bed(far.id, Specialization.CARDIAC, "A-1", bed_id="icu_far")
        bed_unlocated = store.add_bed(nowhere.id, Specialization.TRAUMA, "F-1", bed_id="icu_field")

        store.add_user("Patient A", Role.PATIENT, email="a@example.com", location=PICKUP, user_id="pat_a")
        store.add_user("Patient B", Role.PATIENT, email="b@example.com", user_id="pat_b")
        store.add_user("Ambulance C", Role.AMBULANCE, email="c@example.com", location=(31.21, 30.01), user_id="amb_c")
        store.add_user("Ambulance D", Role.AMBULANCE, email="d@example.com", user_id="amb_d")
        store.add_user("Rita Reception", Role.RECEPTIONIST, email="r@example.com", hospital_id=hospital.id, user_id="staff_r")
        store.add_user("Max Manager", Role.MANAGER, email="m@example.com", hospital_id=hospital.id, user_id="staff_m")
        store.add_user("Ada Admin", Role.ADMIN, email="admin@example.com", user_id="staff_admin")
        session.commit()
    finally:
        session.close()

    return SimpleNamespace(
        hospital=hospital.id,
        far_hospital=far.id,
        bed_x=bed_x.id,
        bed_y=bed_y.id,
        bed_far=bed_far.id,
        bed_unlocated=bed_unlocated.id,
        patient_a="pat_a",
        patient_b="pat_b",
        ambulance_c="amb_c",
        ambulance_d="amb_d",
        receptionist="staff_r",
        manager="staff_m",
        admin="staff_admin"
    )


@pytest.fixture
def session_factory():
    return init_db("sqlite://")


@pytest.fixture
def file_session_factory(tmp_path):
    return init_db(f"sqlite:///{tmp_path / 'icudispatch.db'}")


@pytest.fixture
def bus():
    return RecordingBus()


def build_engines(session_factory, bus) -> SimpleNamespace:
    dispatch = DispatchEngine(session_factory, bus)
    reservations = ReservationEngine(session_factory, bus, dispatch=dispatch)
    return SimpleNamespace(
        dispatch=dispatch,
        reservations=reservations,
        inventory=InventoryService(session_factory, bus, reservations=reservations),
        reconciler=Reconciler(session_factory, bus, reservations=reservations),
        session_factory=session_factory
    )


@pytest.fixture
def engines(session_factory, bus):
    return build_engines(session_factory, bus)


@pytest.fixture
def world(session_factory):
    return seed_world(session_factory)


class StoreReader:
    """Runs each EntityStore query in its own short-lived session."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def __getattr__(self, name):
        def call(*args, **kwargs):
            session = self.session_factory()
            try:
                return getattr(EntityStore(session), name)(*args, **kwargs)
            finally:
                session.close()
        return call


@pytest.fixture
def store(session_factory):
    """Read-side store for assertions."""
    return StoreReader(session_factory)
