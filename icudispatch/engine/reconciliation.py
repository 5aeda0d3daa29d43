"""
Reconciliation sweep.

Repairs cross-entity links that drifted out of step (legacy rows, manual
database edits, crashes between processes). Claimed requests (accepted,
in_transit, arrived) are the source of truth for patient <-> ambulance
links; the bed row is the source of truth for reservations.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Set, Tuple

from icudispatch.core.config import Config
from icudispatch.db.store import EntityStore
from icudispatch.engine.base import BaseEngine, same_id
from icudispatch.engine.dispatch import AMBULANCE_AUDIENCE, FREE_AMBULANCE, DispatchEngine
from icudispatch.engine.reservation import ReservationEngine
from icudispatch.models.ambulance_request import ASSIGNED_STATUSES, AmbulanceRequest, RequestStatus
from icudispatch.models.events import EventType
from icudispatch.models.hospital import BedStatus
from icudispatch.models.results import ReconciliationReport
from icudispatch.models.user import AmbulanceStatus, PatientStatus

logger = logging.getLogger(__name__)


class Reconciler(BaseEngine):
    """Explicit, repeatable consistency sweep."""

    def __init__(
        self,
        session_factory,
        event_bus,
        reservations: Optional[ReservationEngine] = None,
        pending_timeout_minutes: Optional[int] = None
    ):
        super().__init__(session_factory, event_bus, name="Reconciler")
        self.reservations = reservations or ReservationEngine(session_factory, event_bus)
        self.dispatch: DispatchEngine = self.reservations.dispatch
        if pending_timeout_minutes is None:
            pending_timeout_minutes = Config.PENDING_REQUEST_TIMEOUT_MINUTES
        self.pending_timeout_minutes = pending_timeout_minutes

    async def reconcile(self) -> ReconciliationReport:
        """Run one sweep and report every repair made."""
        report = ReconciliationReport()

        def sweep(store):
            backed = self._restore_assignment_links(store, report)
            self._clear_unbacked_links(store, backed, report)
            self._repair_reservations(store, report)
            self._free_orphaned_beds(store, report)
            stale = self._stale_pending_requests(store)
            report.rebroadcast_requests = [r.id for r in stale]
            ambulances = [
                store.get_actor(a) for a in
                {link["ambulance_id"] for link in report.restored_links} | set(report.freed_ambulances)
            ]
            return stale, ambulances

        stale, ambulances = await self.transact(sweep)

        if report.repair_count:
            logger.warning(f"Reconciliation repaired {report.repair_count} inconsistencies: {report.to_dict()}")
        else:
            logger.info("Reconciliation found no inconsistencies")

        if report.freed_beds or report.restored_reservations or report.cleared_reservations:
            await self.reservations.broadcast_available_beds()
        for ambulance in ambulances:
            if ambulance is not None:
                await self.dispatch._announce_ambulance(ambulance)
        for request in stale:
            await self._broadcast(
                EventType.AMBULANCE_PICKUP_REQUEST,
                {
                    "request": request.to_summary(),
                    "rebroadcast": True,
                    "waiting_minutes": round(request.age_minutes, 1)
                },
                audience=AMBULANCE_AUDIENCE,
                correlation_id=request.id
            )

        return report

    def _restore_assignment_links(self, store: EntityStore, report: ReconciliationReport) -> Set[Tuple[str, str]]:
        """Make both sides of every claimed request point at each other."""
        backed: Set[Tuple[str, str]] = set()

        for request in store.list_requests(ASSIGNED_STATUSES):
            if not request.accepted_by:
                continue
            backed.add((request.accepted_by, request.patient_id))

            ambulance = store.get_actor(request.accepted_by)
            if ambulance is not None and ambulance.is_ambulance:
                crew = ambulance.ambulance
                busy = (
                    AmbulanceStatus.ARRIVED_HOSPITAL if request.status == RequestStatus.ARRIVED
                    else AmbulanceStatus.EN_ROUTE
                )
                if crew.assigned_patient is None:
                    if store.update_ambulance(
                        ambulance.id,
                        {"assigned_patient": None},
                        assigned_patient=request.patient_id,
                        assigned_hospital=request.hospital_id,
                        status=crew.status if crew.status != AmbulanceStatus.AVAILABLE else busy
                    ):
                        report.restored_links.append(_link("ambulance", request))
                elif same_id(crew.assigned_patient, request.patient_id) and crew.status == AmbulanceStatus.AVAILABLE:
                    if store.update_ambulance(
                        ambulance.id,
                        {"assigned_patient": request.patient_id, "status": AmbulanceStatus.AVAILABLE},
                        status=busy
                    ):
                        report.restored_links.append(_link("ambulance_status", request))

            patient = store.get_actor(request.patient_id)
            if patient is not None and patient.is_patient and patient.patient.assigned_ambulance is None:
                if store.update_patient(
                    patient.id,
                    {"assigned_ambulance": None},
                    assigned_ambulance=request.accepted_by
                ):
                    report.restored_links.append(_link("patient", request))

        return backed

    def _clear_unbacked_links(
        self,
        store: EntityStore,
        backed: Set[Tuple[str, str]],
        report: ReconciliationReport
    ) -> None:
        """Drop patient/ambulance links no claimed request accounts for."""
        for ambulance in store.list_ambulances():
            assigned = ambulance.ambulance.assigned_patient
            if assigned and (ambulance.id, assigned) not in backed:
                if store.update_ambulance(ambulance.id, {"assigned_patient": assigned}, **FREE_AMBULANCE):
                    report.freed_ambulances.append(ambulance.id)

        for patient in store.list_patients(with_ambulance=True):
            assigned = patient.patient.assigned_ambulance
            if (assigned, patient.id) not in backed:
                if store.update_patient(patient.id, {"assigned_ambulance": assigned}, assigned_ambulance=None):
                    report.cleared_patient_links.append(patient.id)

    def _repair_reservations(self, store: EntityStore, report: ReconciliationReport) -> None:
        """Match reserved beds with the patients holding them."""
        for bed in store.list_beds(is_reserved=True):
            patient = store.get_actor(bed.reserved_by) if bed.reserved_by else None
            if patient is None or not patient.is_patient:
                self._free_bed(store, bed.id, report)
                continue

            held = patient.patient.reserved_icu
            if held is None:
                status = patient.patient.patient_status
                if status in (None, PatientStatus.CHECKED_OUT):
                    status = PatientStatus.CHECKED_IN if bed.checked_in_at else PatientStatus.RESERVED
                if store.update_patient(patient.id, {"reserved_icu": None}, reserved_icu=bed.id, patient_status=status):
                    report.restored_reservations.append({"bed_id": bed.id, "patient_id": patient.id})
            elif not same_id(held, bed.id):
                # Patient holds another bed; this one is stale
                self._free_bed(store, bed.id, report)

        for patient in store.list_patients():
            held = patient.patient.reserved_icu
            if not held:
                continue
            bed = store.get_bed(held, with_hospital=False)
            if bed is None or not bed.is_reserved or not same_id(bed.reserved_by, patient.id):
                if store.update_patient(
                    patient.id,
                    {"reserved_icu": held},
                    reserved_icu=None,
                    patient_status=None,
                    needs_pickup=False,
                    pickup_location=None
                ):
                    report.cleared_reservations.append(patient.id)

    def _free_orphaned_beds(self, store: EntityStore, report: ReconciliationReport) -> None:
        """Occupied beds without a reservation go back to Available."""
        for bed in store.list_beds(is_reserved=False):
            if bed.status == BedStatus.OCCUPIED or bed.reserved_by or bed.checked_in_at:
                self._free_bed(store, bed.id, report)

    @staticmethod
    def _free_bed(store: EntityStore, bed_id: str, report: ReconciliationReport) -> None:
        bed = store.get_bed(bed_id, with_hospital=False)
        status = BedStatus.MAINTENANCE if bed.status == BedStatus.MAINTENANCE else BedStatus.AVAILABLE
        if store.update_bed(
            bed_id,
            {"is_reserved": bed.is_reserved, "reserved_by": bed.reserved_by},
            status=status,
            is_reserved=False,
            reserved_by=None,
            checked_in_at=None
        ):
            report.freed_beds.append(bed_id)

    def _stale_pending_requests(self, store: EntityStore) -> List[AmbulanceRequest]:
        if not self.pending_timeout_minutes:
            return []
        cutoff = datetime.now() - timedelta(minutes=self.pending_timeout_minutes)
        return store.list_requests([RequestStatus.PENDING], created_before=cutoff)


def _link(side: str, request: AmbulanceRequest) -> dict:
    return {
        "side": side,
        "request_id": request.id,
        "ambulance_id": request.accepted_by,
        "patient_id": request.patient_id
    }
