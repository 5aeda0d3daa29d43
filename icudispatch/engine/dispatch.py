"""
Dispatch Engine

Owns the ambulance-request lifecycle and ambulance status transitions:

    pending -> accepted -> in_transit -> arrived -> completed
       \\---------\\--> cancelled

Guarantees at most one active request per patient and at most one patient
per ambulance. Every claim is decided by a conditional update on the request
row, so when several ambulances accept the same request exactly one wins and
the others get RequestAlreadyTaken.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError

from icudispatch.core.config import Config
from icudispatch.core.errors import (
    AmbulanceAlreadyAssigned,
    AmbulanceNotAvailable,
    AssignmentMismatch,
    CannotCancelAtThisStage,
    ConflictError,
    DuplicateActiveRequest,
    InvalidStatus,
    NoActiveReservation,
    NotRequestOwner,
    RequestAlreadyTaken,
    RequestCancelled,
    RequestNotFound,
    ValidationError
)
from icudispatch.core.geo import (
    LngLat,
    estimate_eta_minutes,
    haversine_km,
    rank_by_distance,
    validate_coordinates
)
from icudispatch.db.store import EntityStore
from icudispatch.engine.base import BaseEngine, plain_id, same_id
from icudispatch.models.ambulance_request import (
    ACTIVE_STATUSES,
    ASSIGNED_STATUSES,
    CANCELLABLE_STATUSES,
    AmbulanceRequest,
    PickupInfo,
    RequestStatus
)
from icudispatch.models.events import EventType
from icudispatch.models.hospital import IcuBed
from icudispatch.models.results import RankedRequest, TransitionResult
from icudispatch.models.user import Actor, AmbulanceStatus, PatientStatus

logger = logging.getLogger(__name__)

AMBULANCE_AUDIENCE = "ambulances"

# Statuses a patient's request can be in while it still matters to them
OPEN_STATUSES = ACTIVE_STATUSES + (RequestStatus.ARRIVED,)

# Optimistic retries for declined_by updates
_REJECT_ATTEMPTS = 3

FREE_AMBULANCE = {
    "status": AmbulanceStatus.AVAILABLE,
    "assigned_patient": None,
    "assigned_hospital": None,
    "destination": None,
    "eta": None
}


class DispatchEngine(BaseEngine):
    """
    Ambulance request and crew state machine.

    All mutating operations are async: state changes happen inside one
    database transaction, broadcasts go out after it commits.
    """

    def __init__(self, session_factory, event_bus, speed_kmh: Optional[float] = None):
        super().__init__(session_factory, event_bus, name="DispatchEngine")
        self.speed_kmh = speed_kmh or Config.AMBULANCE_SPEED_KMH

    # ========================
    # Shared transaction helpers
    # ========================

    def _open_request(
        self,
        store: EntityStore,
        patient_id: str,
        bed: IcuBed,
        pickup: PickupInfo,
        coords: LngLat
    ) -> AmbulanceRequest:
        """Insert a pending request. Caller has already moved the patient to AWAITING_PICKUP."""
        existing = store.find_request_for_patient(patient_id, ACTIVE_STATUSES)
        if existing is not None:
            raise DuplicateActiveRequest(patient_id=patient_id, request_id=existing.id)

        location = pickup.pickup_location or f"{coords[1]:.5f}, {coords[0]:.5f}"
        try:
            return store.add_request(
                patient_id=patient_id,
                hospital_id=bed.hospital_id,
                pickup_location=location,
                pickup_coordinates=coords,
                icu_id=bed.id,
                urgency=pickup.urgency,
                notes=pickup.notes,
                phone=pickup.phone
            )
        except IntegrityError:
            # Partial unique index: another active request slipped in
            raise DuplicateActiveRequest(patient_id=patient_id)

    def _release_ambulance(
        self,
        store: EntityStore,
        ambulance_id: Optional[str],
        patient_id: str
    ) -> Optional[Actor]:
        """Return an ambulance to AVAILABLE if it still holds this patient."""
        if not ambulance_id:
            return None
        if not store.update_ambulance(ambulance_id, {"assigned_patient": patient_id}, **FREE_AMBULANCE):
            logger.warning(f"Ambulance {ambulance_id} was not holding patient {patient_id}; left as is")
            return None
        logger.info(f"Ambulance {ambulance_id} released from patient {patient_id}")
        return store.get_actor(ambulance_id)

    def _withdraw_request(
        self,
        store: EntityStore,
        request: AmbulanceRequest
    ) -> Tuple[AmbulanceRequest, Optional[Actor]]:
        """Cancel a pending or accepted request and free the ambulance that held it."""
        if request.status not in CANCELLABLE_STATUSES:
            raise CannotCancelAtThisStage(request_id=request.id, status=request.status.value)
        if not store.update_request(
            request.id,
            {"status": list(CANCELLABLE_STATUSES)},
            status=RequestStatus.CANCELLED
        ):
            current = store.get_request(request.id)
            raise CannotCancelAtThisStage(
                request_id=request.id,
                status=current.status.value if current else None
            )
        ambulance = self._release_ambulance(store, request.accepted_by, request.patient_id)
        return store.get_request(request.id), ambulance

    def _finish_request(
        self,
        store: EntityStore,
        request: AmbulanceRequest
    ) -> Tuple[AmbulanceRequest, Optional[Actor]]:
        """Close an open request: a pending one is withdrawn, a claimed one completes."""
        if request.status == RequestStatus.PENDING:
            return self._withdraw_request(store, request)
        if not store.update_request(request.id, {"status": request.status}, status=RequestStatus.COMPLETED):
            raise ConflictError("Ambulance request changed concurrently", request_id=request.id)
        ambulance = self._release_ambulance(store, request.accepted_by, request.patient_id)
        return store.get_request(request.id), ambulance

    def _claim(
        self,
        store: EntityStore,
        request: Optional[AmbulanceRequest],
        ambulance_id: str,
        request_id: Optional[str] = None
    ) -> Tuple[AmbulanceRequest, Actor, Actor]:
        """
        Give a pending request to an ambulance.

        The request row is the contested document: its status is checked in
        the same UPDATE that changes it. The ambulance row is gated second so
        one crew cannot take two patients at once.
        """
        if request is None:
            raise RequestNotFound(request_id=request_id)
        ambulance = self._require_ambulance(store, ambulance_id)
        crew = ambulance.ambulance

        if crew.assigned_patient is not None:
            raise AmbulanceAlreadyAssigned(ambulance_id=ambulance_id, assigned_patient=crew.assigned_patient)
        if crew.status != AmbulanceStatus.AVAILABLE:
            raise AmbulanceNotAvailable(ambulance_id=ambulance_id, status=crew.status.value)
        if request.status == RequestStatus.CANCELLED:
            raise RequestCancelled(request_id=request.id)
        if request.status != RequestStatus.PENDING:
            raise RequestAlreadyTaken(request_id=request.id, accepted_by=request.accepted_by)

        if not store.update_request(
            request.id,
            {"status": RequestStatus.PENDING},
            status=RequestStatus.ACCEPTED,
            accepted_by=ambulance_id,
            accepted_at=datetime.now()
        ):
            current = store.get_request(request.id)
            if current is not None and current.status == RequestStatus.CANCELLED:
                raise RequestCancelled(request_id=request.id)
            raise RequestAlreadyTaken(
                request_id=request.id,
                accepted_by=current.accepted_by if current else None
            )

        hospital = store.get_hospital(request.hospital_id)
        destination = None
        if hospital is not None:
            destination = f"{hospital.name}, {hospital.address}" if hospital.address else hospital.name

        eta = None
        if crew.current_location is not None:
            distance = haversine_km(crew.current_location.to_pair(), request.pickup_coordinates.to_pair())
            eta = estimate_eta_minutes(distance, self.speed_kmh)

        if not store.update_ambulance(
            ambulance_id,
            {"status": AmbulanceStatus.AVAILABLE, "assigned_patient": None},
            status=AmbulanceStatus.EN_ROUTE,
            assigned_patient=request.patient_id,
            assigned_hospital=request.hospital_id,
            destination=destination,
            eta=eta
        ):
            raise AmbulanceNotAvailable(ambulance_id=ambulance_id)

        if not store.update_patient(
            request.patient_id,
            {"needs_pickup": True},
            patient_status=PatientStatus.IN_TRANSIT,
            assigned_ambulance=ambulance_id
        ):
            raise RequestCancelled("Patient no longer awaits pickup", request_id=request.id)

        return (
            store.get_request(request.id),
            store.get_actor(ambulance_id),
            store.get_actor(request.patient_id)
        )

    def _claim_for_patient(
        self,
        store: EntityStore,
        patient_id: str,
        ambulance_id: str
    ) -> Tuple[AmbulanceRequest, Actor, Actor]:
        self._require_patient(store, patient_id)
        pending = store.find_request_for_patient(patient_id, [RequestStatus.PENDING])
        if pending is None:
            raise RequestNotFound("No pending ambulance request for this patient", patient_id=patient_id)
        return self._claim(store, pending, ambulance_id)

    # ========================
    # Broadcast helpers
    # ========================

    async def _announce_request(self, request: AmbulanceRequest, patient: Optional[Actor]) -> None:
        """Tell every ambulance about a pending request and confirm to the patient."""
        await self._broadcast(
            EventType.AMBULANCE_PICKUP_REQUEST,
            {
                "request": request.to_summary(),
                "patient": patient.to_summary() if patient else None
            },
            audience=AMBULANCE_AUDIENCE,
            correlation_id=request.id
        )
        await self._broadcast(
            EventType.PATIENT_NOTIFICATION,
            {
                "patient_id": request.patient_id,
                "request_id": request.id,
                "message": "Ambulance request sent to nearby ambulances"
            },
            audience=request.patient_id,
            correlation_id=request.id
        )

    async def _announce_claim(
        self,
        request: AmbulanceRequest,
        ambulance: Actor,
        patient: Actor,
        message: str
    ) -> None:
        await self._broadcast(
            EventType.AMBULANCE_ACCEPTED,
            {
                "request": request.to_summary(),
                "ambulance": ambulance.to_summary(),
                "patient_id": patient.id
            },
            audience=patient.id,
            correlation_id=request.id
        )
        await self._broadcast(
            EventType.PICKUP_REQUEST_TAKEN,
            {"request_id": request.id, "accepted_by": ambulance.id},
            audience=AMBULANCE_AUDIENCE,
            correlation_id=request.id
        )
        await self._broadcast(
            EventType.PATIENT_NOTIFICATION,
            {
                "patient_id": patient.id,
                "request_id": request.id,
                "ambulance_id": ambulance.id,
                "eta": ambulance.ambulance.eta,
                "message": message
            },
            audience=patient.id,
            correlation_id=request.id
        )

    async def _announce_cancellation(
        self,
        request: AmbulanceRequest,
        ambulance: Optional[Actor],
        reason: str
    ) -> None:
        await self._broadcast(
            EventType.PICKUP_REQUEST_CANCELLED,
            {
                "request_id": request.id,
                "patient_id": request.patient_id,
                "ambulance_id": ambulance.id if ambulance else request.accepted_by,
                "reason": reason
            },
            audience=AMBULANCE_AUDIENCE,
            correlation_id=request.id
        )
        if ambulance is not None:
            await self._announce_ambulance(ambulance)

    async def _announce_ambulance(self, ambulance: Actor) -> None:
        await self._broadcast(
            EventType.AMBULANCE_STATUS_UPDATE,
            {"ambulance": ambulance.to_summary()},
            audience=AMBULANCE_AUDIENCE
        )

    # ========================
    # Operations
    # ========================

    async def create_request(self, patient_id: str, pickup: PickupInfo) -> TransitionResult:
        """Open a pickup request for a patient who already holds a reservation."""
        coords = validate_coordinates(pickup.pickup_coordinates)

        def apply(store):
            patient = self._require_patient(store, patient_id)
            profile = patient.patient
            if not profile.reserved_icu or profile.patient_status == PatientStatus.CHECKED_IN:
                raise NoActiveReservation(patient_id=patient_id)

            existing = store.find_request_for_patient(patient_id, ACTIVE_STATUSES)
            if existing is not None:
                raise DuplicateActiveRequest(patient_id=patient_id, request_id=existing.id)

            bed = store.get_bed(profile.reserved_icu)
            if bed is None:
                raise NoActiveReservation(patient_id=patient_id, bed_id=profile.reserved_icu)

            if not store.update_patient(
                patient_id,
                {"reserved_icu": bed.id, "needs_pickup": False},
                patient_status=PatientStatus.AWAITING_PICKUP,
                needs_pickup=True,
                pickup_location=pickup.pickup_location,
                assigned_ambulance=None
            ):
                raise DuplicateActiveRequest(patient_id=patient_id)

            request = self._open_request(store, patient_id, bed, pickup, coords)
            return request, store.get_actor(patient_id)

        request, patient = await self.transact(apply)

        logger.info(f"Ambulance request {request.id} created for patient {patient_id}")
        await self._announce_request(request, patient)

        return TransitionResult(message="Ambulance request created", request=request, patient=patient)

    async def accept_request(self, request_id: str, ambulance_id: str) -> TransitionResult:
        """First-come-first-served claim of a pending request."""
        request, ambulance, patient = await self.transact(
            lambda store: self._claim(store, store.get_request(request_id), ambulance_id, request_id)
        )

        logger.info(f"Ambulance {ambulance_id} accepted request {request_id} for patient {patient.id}")
        await self._announce_claim(request, ambulance, patient, "An ambulance has accepted your request")

        return TransitionResult(
            message="Ambulance request accepted",
            request=request,
            ambulance=ambulance,
            patient=patient
        )

    async def reject_request(
        self,
        request_id: str,
        ambulance_id: str,
        reason: Optional[str] = None
    ) -> TransitionResult:
        """
        Decline a pending request for this ambulance only.

        The request stays pending for everyone else and disappears from this
        ambulance's pending list.
        """
        def attempt(store):
            """Returns the request once declined, None when it changed underneath."""
            request = store.get_request(request_id)
            if request is None:
                raise RequestNotFound(request_id=request_id)
            self._require_ambulance(store, ambulance_id)

            if request.status == RequestStatus.CANCELLED:
                raise RequestCancelled(request_id=request_id)
            if request.status != RequestStatus.PENDING:
                raise RequestAlreadyTaken(request_id=request_id, accepted_by=request.accepted_by)

            if ambulance_id in request.declined_by:
                return request

            if store.update_request(
                request_id,
                {"status": RequestStatus.PENDING, "updated_at": request.updated_at},
                declined_by=request.declined_by + [ambulance_id],
                updated_at=datetime.now()
            ):
                return store.get_request(request_id)
            return None

        for _ in range(_REJECT_ATTEMPTS):
            request = await self.transact(attempt)
            if request is not None:
                break
        else:
            raise ConflictError("Ambulance request changed concurrently", request_id=request_id)

        logger.info(f"Ambulance {ambulance_id} declined request {request_id}")
        await self._broadcast(
            EventType.PICKUP_REJECTED_NOTIFICATION,
            {
                "request_id": request_id,
                "ambulance_id": ambulance_id,
                "patient_id": request.patient_id,
                "reason": reason or ""
            },
            audience=AMBULANCE_AUDIENCE,
            correlation_id=request_id
        )

        return TransitionResult(message="Ambulance request declined", request=request)

    async def approve_pickup(self, ambulance_id: str, patient_id: str) -> TransitionResult:
        """Ambulance approves a named patient's pending pickup."""
        request, ambulance, patient = await self.transact(
            lambda store: self._claim_for_patient(store, patient_id, ambulance_id)
        )

        logger.info(f"Ambulance {ambulance_id} approved pickup for patient {patient_id}")
        await self._broadcast(
            EventType.AMBULANCE_APPROVED_PICKUP,
            {
                "request": request.to_summary(),
                "ambulance": ambulance.to_summary(),
                "patient_id": patient_id
            },
            audience=patient_id,
            correlation_id=request.id
        )
        await self._announce_claim(request, ambulance, patient, "Your pickup has been approved")

        return TransitionResult(
            message="Pickup approved",
            request=request,
            ambulance=ambulance,
            patient=patient
        )

    async def assign_ambulance(
        self,
        ambulance_id: str,
        patient_id: str,
        assigned_by: Optional[str] = None
    ) -> TransitionResult:
        """Manual dispatch by staff of an ambulance to a patient's pending request."""
        request, ambulance, patient = await self.transact(
            lambda store: self._claim_for_patient(store, patient_id, ambulance_id)
        )

        logger.info(f"Ambulance {ambulance_id} assigned to patient {patient_id} by {assigned_by}")
        await self._broadcast(
            EventType.AMBULANCE_ASSIGNED,
            {
                "request": request.to_summary(),
                "ambulance": ambulance.to_summary(),
                "patient": patient.to_summary(),
                "assigned_by": assigned_by
            },
            correlation_id=request.id
        )
        await self._announce_claim(request, ambulance, patient, "An ambulance has been assigned to you")

        return TransitionResult(
            message="Ambulance assigned",
            request=request,
            ambulance=ambulance,
            patient=patient
        )

    async def start_transport(self, ambulance_id: str) -> TransitionResult:
        """Crew confirms the patient is on board."""
        def apply(store):
            self._require_ambulance(store, ambulance_id)
            request = store.find_request_accepted_by(ambulance_id, [RequestStatus.ACCEPTED])
            if request is None:
                raise RequestNotFound("No accepted request for this ambulance", ambulance_id=ambulance_id)
            if not store.update_request(
                request.id,
                {"status": RequestStatus.ACCEPTED, "accepted_by": ambulance_id},
                status=RequestStatus.IN_TRANSIT
            ):
                raise RequestCancelled(request_id=request.id)

            request = store.get_request(request.id)
            return request, store.get_actor(ambulance_id), store.get_actor(request.patient_id)

        request, ambulance, patient = await self.transact(apply)

        logger.info(f"Ambulance {ambulance_id} picked up patient {request.patient_id}")
        await self._announce_ambulance(ambulance)
        await self._broadcast(
            EventType.PATIENT_NOTIFICATION,
            {
                "patient_id": request.patient_id,
                "request_id": request.id,
                "ambulance_id": ambulance_id,
                "message": "You are on the way to the hospital"
            },
            audience=request.patient_id,
            correlation_id=request.id
        )

        return TransitionResult(
            message="Patient picked up",
            request=request,
            ambulance=ambulance,
            patient=patient
        )

    async def cancel_request(self, request_id: str, patient_id: str) -> TransitionResult:
        """Patient withdraws a pending or accepted pickup request."""
        request_id, patient_id = plain_id(request_id), plain_id(patient_id)

        def apply(store):
            request = store.get_request(request_id)
            if request is None:
                raise RequestNotFound(request_id=request_id)
            if not same_id(request.patient_id, patient_id):
                raise NotRequestOwner(request_id=request_id, patient_id=patient_id)

            request, ambulance = self._withdraw_request(store, request)
            store.update_patient(
                patient_id,
                {},
                patient_status=PatientStatus.RESERVED,
                assigned_ambulance=None,
                needs_pickup=False,
                pickup_location=None
            )
            return request, ambulance, store.get_actor(patient_id)

        request, ambulance, patient = await self.transact(apply)

        logger.info(f"Request {request_id} cancelled by patient {patient_id}")
        await self._announce_cancellation(request, ambulance, "Cancelled by patient")
        await self._broadcast(
            EventType.PATIENT_NOTIFICATION,
            {
                "patient_id": patient_id,
                "request_id": request_id,
                "message": "Your ambulance request was cancelled"
            },
            audience=patient_id,
            correlation_id=request_id
        )

        return TransitionResult(
            message="Ambulance request cancelled",
            request=request,
            ambulance=ambulance,
            patient=patient
        )

    async def mark_arrived(self, ambulance_id: str, patient_id: str) -> TransitionResult:
        """Ambulance reports arrival at the hospital with its patient."""
        def apply(store):
            ambulance = self._require_ambulance(store, ambulance_id)
            if not same_id(ambulance.ambulance.assigned_patient, patient_id):
                raise AssignmentMismatch(ambulance_id=ambulance_id, patient_id=patient_id)

            if not store.update_ambulance(
                ambulance_id,
                {"assigned_patient": patient_id},
                status=AmbulanceStatus.ARRIVED_HOSPITAL,
                eta=0
            ):
                raise AssignmentMismatch(ambulance_id=ambulance_id, patient_id=patient_id)
            if not store.update_patient(
                patient_id,
                {"assigned_ambulance": ambulance_id},
                patient_status=PatientStatus.ARRIVED
            ):
                raise AssignmentMismatch("Patient is not linked to this ambulance", ambulance_id=ambulance_id, patient_id=patient_id)

            request = store.find_request_accepted_by(
                ambulance_id, [RequestStatus.ACCEPTED, RequestStatus.IN_TRANSIT]
            )
            if request is not None:
                store.update_request(request.id, {"status": request.status}, status=RequestStatus.ARRIVED)
                request = store.get_request(request.id)
            else:
                logger.warning(f"Ambulance {ambulance_id} arrived without an open request for {patient_id}")

            return request, store.get_actor(ambulance_id), store.get_actor(patient_id)

        request, ambulance, patient = await self.transact(apply)

        logger.info(f"Ambulance {ambulance_id} arrived with patient {patient_id}")
        await self._broadcast(
            EventType.PATIENT_ARRIVED,
            {
                "patient": patient.to_summary(),
                "ambulance": ambulance.to_summary(),
                "request_id": request.id if request else None,
                "icu_id": patient.patient.reserved_icu
            },
            correlation_id=request.id if request else None
        )

        return TransitionResult(
            message="Patient arrived at hospital",
            request=request,
            ambulance=ambulance,
            patient=patient
        )

    async def update_ambulance_status(
        self,
        ambulance_id: str,
        status: Optional[Any] = None,
        location: Optional[Sequence[float]] = None,
        eta: Optional[int] = None
    ) -> TransitionResult:
        """Status and telemetry push from the crew."""
        changes: Dict[str, Any] = {}
        if status is not None:
            try:
                changes["status"] = AmbulanceStatus.parse(status)
            except ValueError:
                raise InvalidStatus(
                    status=status,
                    allowed=[s.value for s in AmbulanceStatus]
                )
        if location is not None:
            changes["lng"], changes["lat"] = validate_coordinates(location)
        if eta is not None:
            if isinstance(eta, bool) or not isinstance(eta, int) or eta < 0:
                raise ValidationError("eta must be a non-negative number of minutes", eta=eta)
            changes["eta"] = eta

        def apply(store):
            ambulance = self._require_ambulance(store, ambulance_id)
            assigned = ambulance.ambulance.assigned_patient
            if changes.get("status") == AmbulanceStatus.AVAILABLE and assigned is not None:
                raise AmbulanceAlreadyAssigned(
                    "Ambulance cannot become AVAILABLE while a patient is assigned",
                    ambulance_id=ambulance_id,
                    assigned_patient=assigned
                )
            if changes and not store.update_ambulance(ambulance_id, {"assigned_patient": assigned}, **changes):
                raise ConflictError("Ambulance assignment changed concurrently", ambulance_id=ambulance_id)
            return store.get_actor(ambulance_id)

        ambulance = await self.transact(apply)

        logger.info(f"Ambulance {ambulance_id} status update: {ambulance.ambulance.status.value}")
        await self._announce_ambulance(ambulance)

        return TransitionResult(message="Ambulance status updated", ambulance=ambulance)

    # ========================
    # Queries
    # ========================

    def list_pending_requests(
        self,
        ambulance_id: Optional[str] = None,
        origin: Optional[Sequence[float]] = None
    ) -> List[RankedRequest]:
        """
        Pending requests, nearest first.

        When an ambulance asks, requests it declined are hidden and its own
        location is the default origin.
        """
        point = validate_coordinates(origin) if origin is not None else None

        with self.unit_of_work() as store:
            requests = store.list_requests([RequestStatus.PENDING])
            if ambulance_id:
                ambulance = self._require_ambulance(store, ambulance_id)
                requests = [r for r in requests if ambulance_id not in r.declined_by]
                if point is None and ambulance.ambulance.current_location is not None:
                    point = ambulance.ambulance.current_location.to_pair()

        ranked = rank_by_distance(requests, point, lambda r: r.pickup_coordinates.to_pair())
        return [RankedRequest(request=r, distance_km=d) for r, d in ranked]

    def get_active_request_for_patient(self, patient_id: str) -> Optional[AmbulanceRequest]:
        with self.unit_of_work() as store:
            self._require_patient(store, patient_id)
            return store.find_request_for_patient(patient_id, OPEN_STATUSES)

    def get_accepted_request_for_ambulance(self, ambulance_id: str) -> Optional[AmbulanceRequest]:
        with self.unit_of_work() as store:
            self._require_ambulance(store, ambulance_id)
            return store.find_request_accepted_by(ambulance_id, ASSIGNED_STATUSES)

    def list_ambulances(self, status: Optional[Any] = None) -> List[Actor]:
        wanted = None
        if status is not None:
            try:
                wanted = AmbulanceStatus.parse(status)
            except ValueError:
                raise InvalidStatus(status=status, allowed=[s.value for s in AmbulanceStatus])
        with self.unit_of_work() as store:
            return store.list_ambulances(wanted)

    def get_ambulance(self, ambulance_id: str) -> Actor:
        with self.unit_of_work() as store:
            return self._require_ambulance(store, ambulance_id)
