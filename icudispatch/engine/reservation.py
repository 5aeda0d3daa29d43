"""
Reservation Engine

Owns the ICU bed lifecycle as seen by patients and reception:
reserve -> (pickup) -> check in -> check out, or reserve -> cancel.

A bed is the contested row for every operation here. Its expected state is
part of the UPDATE that changes it, so two patients racing for one bed can
never both win.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from icudispatch.core.errors import (
    AlreadyCheckedIn,
    BedAlreadyTaken,
    BedNotFound,
    BedNotOccupied,
    BedUnavailable,
    CannotCancelAfterCheckIn,
    CannotCancelAtThisStage,
    PatientAlreadyReserved,
    PatientNotFound,
    ReservationMismatch,
    TransportNotComplete,
    ValidationError
)
from icudispatch.core.geo import rank_by_distance, validate_coordinates
from icudispatch.engine.base import BaseEngine, plain_id, same_id
from icudispatch.engine.dispatch import OPEN_STATUSES, DispatchEngine
from icudispatch.models.ambulance_request import PickupInfo, RequestStatus
from icudispatch.models.events import EventType
from icudispatch.models.hospital import BedStatus, IcuBed, Specialization
from icudispatch.models.results import RankedBed, TransitionResult
from icudispatch.models.user import PatientStatus

logger = logging.getLogger(__name__)

_FREE_BED = {
    "status": BedStatus.AVAILABLE,
    "is_reserved": False,
    "reserved_by": None,
    "checked_in_at": None
}

_CLEARED_PATIENT = {
    "reserved_icu": None,
    "needs_pickup": False,
    "pickup_location": None,
    "assigned_ambulance": None
}

# Patients that hold a bed but are not in it yet
_AWAITING_CHECK_IN = (
    PatientStatus.RESERVED,
    PatientStatus.AWAITING_PICKUP,
    PatientStatus.IN_TRANSIT,
    PatientStatus.ARRIVED
)


class ReservationEngine(BaseEngine):
    """ICU bed reservation, check-in and check-out."""

    def __init__(self, session_factory, event_bus, dispatch: Optional[DispatchEngine] = None):
        super().__init__(session_factory, event_bus, name="ReservationEngine")
        self.dispatch = dispatch or DispatchEngine(session_factory, event_bus)

    async def reserve_bed(
        self,
        bed_id: str,
        patient_id: str,
        pickup: Optional[PickupInfo] = None
    ) -> TransitionResult:
        """
        Reserve an available bed for a patient.

        With pickup requested, the ambulance request is opened in the same
        transaction: malformed pickup coordinates leave nothing behind.

        Raises:
            BedNotFound, BedUnavailable, PatientNotFound,
            PatientAlreadyReserved, InvalidCoordinates
        """
        bed_id, patient_id = plain_id(bed_id), plain_id(patient_id)
        wants_pickup = pickup is not None and pickup.needs_pickup
        coords = validate_coordinates(pickup.pickup_coordinates) if wants_pickup else None

        def apply(store):
            bed = store.get_bed(bed_id)
            if bed is None:
                raise BedNotFound(bed_id=bed_id)
            if not bed.is_available():
                raise BedUnavailable(bed_id=bed_id, status=bed.status.value, is_reserved=bed.is_reserved)

            patient = self._require_patient(store, patient_id)
            if patient.patient.reserved_icu:
                raise PatientAlreadyReserved(patient_id=patient_id, reserved_icu=patient.patient.reserved_icu)

            if not store.update_bed(
                bed_id,
                {"status": BedStatus.AVAILABLE, "is_reserved": False},
                status=BedStatus.OCCUPIED,
                is_reserved=True,
                reserved_by=patient_id,
                checked_in_at=None
            ):
                raise BedAlreadyTaken(bed_id=bed_id)

            if not store.update_patient(
                patient_id,
                {"reserved_icu": None},
                reserved_icu=bed_id,
                assigned_ambulance=None,
                patient_status=PatientStatus.AWAITING_PICKUP if wants_pickup else PatientStatus.RESERVED,
                needs_pickup=wants_pickup,
                pickup_location=pickup.pickup_location if wants_pickup else None
            ):
                raise PatientAlreadyReserved(patient_id=patient_id)

            request = None
            if wants_pickup:
                request = self.dispatch._open_request(store, patient_id, bed, pickup, coords)

            return store.get_bed(bed_id), store.get_actor(patient_id), request

        bed, patient, request = await self.transact(apply)

        logger.info(f"Bed {bed_id} reserved by patient {patient_id} (pickup={wants_pickup})")
        await self._broadcast(
            EventType.ICU_RESERVED,
            {
                "icu": bed.to_summary(),
                "hospital": bed.hospital.to_summary() if bed.hospital else None,
                "patient": patient.to_summary()
            },
            correlation_id=bed_id
        )
        await self.broadcast_available_beds()
        if request is not None:
            await self.dispatch._announce_request(request, patient)

        return TransitionResult(message="ICU bed reserved", bed=bed, patient=patient, request=request)

    async def cancel_reservation(self, bed_id: str, patient_id: str) -> TransitionResult:
        """
        Release a reservation that has not been checked in.

        Any pending or accepted pickup is cancelled and its ambulance freed.

        Raises:
            BedNotFound, PatientNotFound, ReservationMismatch,
            CannotCancelAfterCheckIn, CannotCancelAtThisStage
        """
        bed_id, patient_id = plain_id(bed_id), plain_id(patient_id)

        def apply(store):
            bed = store.get_bed(bed_id)
            if bed is None:
                raise BedNotFound(bed_id=bed_id)
            patient = self._require_patient(store, patient_id)

            if not bed.is_reserved or not same_id(bed.reserved_by, patient_id):
                raise ReservationMismatch(bed_id=bed_id, patient_id=patient_id)
            if patient.patient.patient_status == PatientStatus.CHECKED_IN:
                raise CannotCancelAfterCheckIn(bed_id=bed_id, patient_id=patient_id)

            active = store.find_request_for_patient(patient_id, OPEN_STATUSES)
            if active is not None and active.status in (RequestStatus.IN_TRANSIT, RequestStatus.ARRIVED):
                raise CannotCancelAtThisStage(
                    "Patient is already with the ambulance crew",
                    request_id=active.id,
                    status=active.status.value
                )

            if not store.update_bed(bed_id, {"is_reserved": True, "reserved_by": patient_id}, **_FREE_BED):
                raise ReservationMismatch(bed_id=bed_id, patient_id=patient_id)

            request = None
            ambulance = None
            if active is not None:
                request, ambulance = self.dispatch._withdraw_request(store, active)
            if ambulance is None and patient.patient.assigned_ambulance:
                ambulance = self.dispatch._release_ambulance(store, patient.patient.assigned_ambulance, patient_id)

            store.update_patient(patient_id, {}, patient_status=None, **_CLEARED_PATIENT)

            return store.get_bed(bed_id), store.get_actor(patient_id), request, ambulance

        bed, patient, request, ambulance = await self.transact(apply)

        logger.info(f"Reservation of bed {bed_id} cancelled by patient {patient_id}")
        await self._broadcast(
            EventType.ICU_RESERVATION_CANCELLED,
            {"icu": bed.to_summary(), "patient_id": patient_id},
            correlation_id=bed_id
        )
        await self.broadcast_available_beds()
        if request is not None:
            await self.dispatch._announce_cancellation(request, ambulance, "Reservation cancelled")
        elif ambulance is not None:
            await self.dispatch._announce_ambulance(ambulance)

        return TransitionResult(
            message="Reservation cancelled",
            bed=bed,
            patient=patient,
            ambulance=ambulance,
            request=request
        )

    async def check_in(self, bed_id: str, patient_id: str) -> TransitionResult:
        """
        Admit a patient into their reserved bed.

        A patient with an ambulance must have been picked up first. The
        ambulance is freed and the request completed; a pickup nobody took is
        withdrawn.

        Raises:
            BedNotFound, PatientNotFound, ReservationMismatch,
            TransportNotComplete, AlreadyCheckedIn
        """
        bed_id, patient_id = plain_id(bed_id), plain_id(patient_id)

        def apply(store):
            bed = store.get_bed(bed_id)
            if bed is None:
                raise BedNotFound(bed_id=bed_id)
            if not bed.is_reserved or not same_id(bed.reserved_by, patient_id):
                raise ReservationMismatch(bed_id=bed_id, patient_id=patient_id)

            patient = self._require_patient(store, patient_id)
            profile = patient.patient
            if profile.patient_status == PatientStatus.CHECKED_IN or bed.checked_in_at is not None:
                raise AlreadyCheckedIn(bed_id=bed_id, patient_id=patient_id)
            if profile.assigned_ambulance and profile.patient_status not in (
                PatientStatus.IN_TRANSIT, PatientStatus.ARRIVED
            ):
                raise TransportNotComplete(
                    patient_id=patient_id,
                    patient_status=profile.patient_status.value if profile.patient_status else None
                )

            if not store.update_bed(
                bed_id,
                {"is_reserved": True, "reserved_by": patient_id, "checked_in_at": None},
                checked_in_at=datetime.now()
            ):
                raise ReservationMismatch(bed_id=bed_id, patient_id=patient_id)

            request = None
            ambulance = None
            withdrawn = False
            active = store.find_request_for_patient(patient_id, OPEN_STATUSES)
            if active is not None:
                withdrawn = active.status == RequestStatus.PENDING
                request, ambulance = self.dispatch._finish_request(store, active)
            if ambulance is None and profile.assigned_ambulance:
                ambulance = self.dispatch._release_ambulance(store, profile.assigned_ambulance, patient_id)

            store.update_patient(
                patient_id,
                {"reserved_icu": bed_id},
                patient_status=PatientStatus.CHECKED_IN,
                assigned_ambulance=None,
                pickup_location=None,
                needs_pickup=False
            )

            return store.get_bed(bed_id), store.get_actor(patient_id), request, ambulance, withdrawn

        bed, patient, request, ambulance, withdrawn = await self.transact(apply)

        logger.info(f"Patient {patient_id} checked in to bed {bed_id}")
        await self._broadcast(
            EventType.PATIENT_CHECKED_IN,
            {
                "icu": bed.to_summary(),
                "patient": patient.to_summary(),
                "ambulance_id": ambulance.id if ambulance else None
            },
            correlation_id=bed_id
        )
        if withdrawn:
            await self.dispatch._announce_cancellation(request, None, "Patient checked in")
        if ambulance is not None:
            await self.dispatch._announce_ambulance(ambulance)

        return TransitionResult(
            message="Patient checked in",
            bed=bed,
            patient=patient,
            ambulance=ambulance,
            request=request
        )

    async def check_out(
        self,
        bed_id: Optional[str] = None,
        patient_id: Optional[str] = None
    ) -> TransitionResult:
        """
        Discharge a patient and free their bed.

        The bed is looked up by id, or by the patient's reservation when no
        bed id is given.

        Raises:
            ValidationError, BedNotFound, BedNotOccupied, PatientNotFound,
            ReservationMismatch
        """
        bed_id, patient_id = plain_id(bed_id) or None, plain_id(patient_id) or None
        if not bed_id and not patient_id:
            raise ValidationError("Either bed_id or patient_id is required")

        def apply(store):
            if bed_id:
                bed = store.get_bed(bed_id)
            else:
                self._require_patient(store, patient_id)
                bed = store.find_bed_reserved_by(patient_id)
            if bed is None:
                raise BedNotFound(bed_id=bed_id, patient_id=patient_id)
            if not bed.is_reserved or not bed.reserved_by:
                raise BedNotOccupied(bed_id=bed.id)
            if patient_id and not same_id(bed.reserved_by, patient_id):
                raise ReservationMismatch(bed_id=bed.id, patient_id=patient_id)

            occupant = store.get_actor(bed.reserved_by)
            if occupant is None or not occupant.is_patient:
                raise PatientNotFound(patient_id=bed.reserved_by)

            if not store.update_bed(bed.id, {"is_reserved": True, "reserved_by": occupant.id}, **_FREE_BED):
                raise BedNotOccupied(bed_id=bed.id)

            request = None
            ambulance = None
            withdrawn = False
            active = store.find_request_for_patient(occupant.id, OPEN_STATUSES)
            if active is not None:
                withdrawn = active.status == RequestStatus.PENDING
                request, ambulance = self.dispatch._finish_request(store, active)
            if ambulance is None and occupant.patient.assigned_ambulance:
                ambulance = self.dispatch._release_ambulance(
                    store, occupant.patient.assigned_ambulance, occupant.id
                )

            store.update_patient(occupant.id, {}, patient_status=PatientStatus.CHECKED_OUT, **_CLEARED_PATIENT)

            return store.get_bed(bed.id), store.get_actor(occupant.id), request, ambulance, withdrawn

        bed, patient, request, ambulance, withdrawn = await self.transact(apply)

        logger.info(f"Patient {patient.id} checked out of bed {bed.id}")
        await self.broadcast_available_beds()
        await self._broadcast(
            EventType.PATIENT_CHECKED_OUT,
            {"icu": bed.to_summary(), "patient": patient.to_summary()},
            correlation_id=bed.id
        )
        if withdrawn:
            await self.dispatch._announce_cancellation(request, None, "Patient checked out")
        if ambulance is not None:
            await self.dispatch._announce_ambulance(ambulance)

        return TransitionResult(
            message="Patient checked out",
            bed=bed,
            patient=patient,
            ambulance=ambulance,
            request=request
        )

    # ========================
    # Queries
    # ========================

    def list_available_beds(
        self,
        origin: Optional[Sequence[float]] = None,
        specialization: Optional[Any] = None,
        hospital_id: Optional[str] = None
    ) -> List[RankedBed]:
        """Available, unreserved beds ordered by distance to their hospital."""
        point = validate_coordinates(origin) if origin is not None else None
        wanted = None
        if specialization is not None:
            try:
                wanted = Specialization.parse(specialization)
            except ValueError:
                raise ValidationError(
                    "Unknown ICU specialization",
                    specialization=specialization,
                    allowed=[s.value for s in Specialization]
                )

        with self.unit_of_work() as store:
            beds = store.list_beds(
                status=BedStatus.AVAILABLE,
                is_reserved=False,
                hospital_id=hospital_id,
                specialization=wanted
            )

        ranked = rank_by_distance(beds, point, _hospital_location)
        return [RankedBed(bed=bed, distance_km=distance) for bed, distance in ranked]

    def list_pending_check_ins(self, hospital_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Reserved beds whose patient has not been admitted yet."""
        entries = []
        with self.unit_of_work() as store:
            for bed in store.list_beds(is_reserved=True, hospital_id=hospital_id):
                if bed.checked_in_at is not None or not bed.reserved_by:
                    continue
                patient = store.get_actor(bed.reserved_by)
                if patient is None or not patient.is_patient:
                    continue
                if patient.patient.patient_status not in _AWAITING_CHECK_IN:
                    continue
                request = store.find_request_for_patient(patient.id, OPEN_STATUSES)
                entries.append({
                    "icu": bed.to_summary(),
                    "patient": patient.to_summary(),
                    "request": request.to_summary() if request else None
                })
        return entries

    def list_checked_in_patients(self, hospital_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Admitted patients and their beds, earliest admission first."""
        entries = []
        with self.unit_of_work() as store:
            beds = [
                bed for bed in store.list_beds(is_reserved=True, hospital_id=hospital_id)
                if bed.checked_in_at is not None and bed.reserved_by
            ]
            for bed in sorted(beds, key=lambda b: b.checked_in_at):
                patient = store.get_actor(bed.reserved_by)
                if patient is None or not patient.is_patient:
                    continue
                entries.append({
                    "icu": bed.to_summary(),
                    "patient": patient.to_summary(),
                    "checked_in_at": bed.checked_in_at.isoformat()
                })
        return entries

    def get_bed(self, bed_id: str) -> IcuBed:
        with self.unit_of_work() as store:
            bed = store.get_bed(bed_id)
        if bed is None:
            raise BedNotFound(bed_id=bed_id)
        return bed

    async def broadcast_available_beds(self) -> None:
        """Push the refreshed list of available beds. Never raises."""
        try:
            beds = await asyncio.to_thread(self.list_available_beds)
        except Exception as e:
            logger.error(f"Could not load available beds for broadcast: {e}", exc_info=True)
            return
        await self._broadcast(
            EventType.ICU_UPDATED,
            {"icus": [ranked.to_summary() for ranked in beds], "count": len(beds)}
        )


def _hospital_location(bed: IcuBed):
    if bed.hospital is None or bed.hospital.location is None:
        return None
    return bed.hospital.location.to_pair()
