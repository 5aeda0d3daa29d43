"""
Entity store: the persistence port used by the engines.

Offers get-by-id, atomic match-and-set updates and simple filtered queries,
and converts ORM records to domain models. Callers own the session and its
transaction.
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, inspect, select, update
from sqlalchemy.orm import Session

from icudispatch.db.tables import (
    AmbulanceRequestRecord,
    AmbulanceStateRecord,
    HospitalRecord,
    IcuBedRecord,
    PatientStateRecord,
    UserRecord
)
from icudispatch.models.ambulance_request import AmbulanceRequest, RequestStatus, Urgency
from icudispatch.models.hospital import BedStatus, GeoPoint, Hospital, IcuBed, Specialization
from icudispatch.models.user import (
    Actor,
    AmbulanceProfile,
    AmbulanceStatus,
    PatientProfile,
    PatientStatus,
    Role,
    StaffProfile
)

logger = logging.getLogger(__name__)


def new_id(prefix: str) -> str:
    """Generate a short unique entity ID."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _plain(value: Any) -> Any:
    """Strip enums down to their stored value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    return value


# ========================
# Record -> model conversion
# ========================

def hospital_from_record(record: HospitalRecord) -> Hospital:
    return Hospital(
        id=record.id,
        name=record.name,
        address=record.address,
        location=GeoPoint.from_pair(record.lng, record.lat)
    )


def bed_from_record(record: IcuBedRecord, hospital: Optional[HospitalRecord] = None) -> IcuBed:
    return IcuBed(
        id=record.id,
        hospital_id=record.hospital_id,
        specialization=Specialization.parse(record.specialization),
        room=record.room,
        capacity=record.capacity,
        status=BedStatus.parse(record.status),
        fee=record.fee,
        is_reserved=record.is_reserved,
        reserved_by=record.reserved_by,
        checked_in_at=record.checked_in_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
        hospital=hospital_from_record(hospital) if hospital else None
    )


def actor_from_records(
    user: UserRecord,
    patient_state: Optional[PatientStateRecord] = None,
    ambulance_state: Optional[AmbulanceStateRecord] = None
) -> Actor:
    role = Role.parse(user.role)
    if role == Role.PATIENT:
        state = patient_state
        profile = PatientProfile(
            reserved_icu=state.reserved_icu if state else None,
            patient_status=PatientStatus(state.patient_status) if state and state.patient_status else None,
            needs_pickup=bool(state.needs_pickup) if state else False,
            pickup_location=state.pickup_location if state else None,
            assigned_ambulance=state.assigned_ambulance if state else None,
            location=GeoPoint.from_pair(state.lng, state.lat) if state else None
        )
    elif role == Role.AMBULANCE:
        state = ambulance_state
        profile = AmbulanceProfile(
            status=AmbulanceStatus.parse(state.status) if state else AmbulanceStatus.AVAILABLE,
            assigned_patient=state.assigned_patient if state else None,
            assigned_hospital=state.assigned_hospital if state else None,
            destination=state.destination if state else None,
            current_location=GeoPoint.from_pair(state.lng, state.lat) if state else None,
            eta=state.eta if state else None
        )
    else:
        profile = StaffProfile()

    return Actor(
        id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        role=role,
        hospital_id=user.hospital_id,
        created_at=user.created_at,
        profile=profile
    )


def request_from_record(record: AmbulanceRequestRecord) -> AmbulanceRequest:
    return AmbulanceRequest(
        id=record.id,
        patient_id=record.patient_id,
        hospital_id=record.hospital_id,
        icu_id=record.icu_id,
        pickup_location=record.pickup_location,
        pickup_coordinates=GeoPoint(lng=record.pickup_lng, lat=record.pickup_lat),
        status=RequestStatus(record.status),
        accepted_by=record.accepted_by,
        accepted_at=record.accepted_at,
        urgency=Urgency(record.urgency),
        notes=record.notes or "",
        phone=record.phone,
        declined_by=list(record.declined_by or []),
        created_at=record.created_at,
        updated_at=record.updated_at
    )


class EntityStore:
    """Persistence operations over one session."""

    def __init__(self, session: Session):
        self.session = session

    # ========================
    # Match-and-set
    # ========================

    def match_and_set(
        self,
        model: type,
        key: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any]
    ) -> bool:
        """
        Atomically update one row only if it still matches ``expected``.

        ``expected`` maps column names to a value, ``None`` (IS NULL) or a
        sequence (IN). Returns True when exactly one row changed.
        """
        pk = inspect(model).primary_key[0]
        conditions = [pk == key]
        for column_name, value in expected.items():
            column = getattr(model, column_name)
            value = _plain(value)
            if value is None:
                conditions.append(column.is_(None))
            elif isinstance(value, list):
                conditions.append(column.in_(value))
            else:
                conditions.append(column == value)

        stmt = (
            update(model)
            .where(*conditions)
            .values(**{k: _plain(v) for k, v in changes.items()})
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        matched = result.rowcount == 1
        if not matched:
            logger.debug(f"match_and_set missed on {model.__tablename__}:{key} expecting {expected}")
        return matched

    def update_bed(self, bed_id: str, expected: Dict[str, Any], **changes: Any) -> bool:
        return self.match_and_set(IcuBedRecord, bed_id, expected, changes)

    def update_patient(self, patient_id: str, expected: Dict[str, Any], **changes: Any) -> bool:
        return self.match_and_set(PatientStateRecord, patient_id, expected, changes)

    def update_ambulance(self, ambulance_id: str, expected: Dict[str, Any], **changes: Any) -> bool:
        return self.match_and_set(AmbulanceStateRecord, ambulance_id, expected, changes)

    def update_request(self, request_id: str, expected: Dict[str, Any], **changes: Any) -> bool:
        return self.match_and_set(AmbulanceRequestRecord, request_id, expected, changes)

    # ========================
    # Hospitals
    # ========================

    def add_hospital(
        self,
        name: str,
        address: Optional[str] = None,
        location: Optional[Sequence[float]] = None,
        hospital_id: Optional[str] = None
    ) -> Hospital:
        record = HospitalRecord(
            id=hospital_id or new_id("hosp"),
            name=name,
            address=address,
            lng=location[0] if location else None,
            lat=location[1] if location else None
        )
        self.session.add(record)
        self.session.flush()
        return hospital_from_record(record)

    def get_hospital(self, hospital_id: str) -> Optional[Hospital]:
        record = self.session.get(HospitalRecord, hospital_id)
        return hospital_from_record(record) if record else None

    # ========================
    # ICU beds
    # ========================

    def add_bed(
        self,
        hospital_id: str,
        specialization: Specialization,
        room: str,
        capacity: int = 1,
        fee: float = 100,
        status: BedStatus = BedStatus.AVAILABLE,
        bed_id: Optional[str] = None
    ) -> IcuBed:
        record = IcuBedRecord(
            id=bed_id or new_id("icu"),
            hospital_id=hospital_id,
            specialization=_plain(specialization),
            room=room,
            capacity=capacity,
            status=_plain(status),
            fee=fee,
            is_reserved=False
        )
        self.session.add(record)
        self.session.flush()
        return self.get_bed(record.id)

    def get_bed(self, bed_id: str, with_hospital: bool = True) -> Optional[IcuBed]:
        record = self.session.get(IcuBedRecord, bed_id, populate_existing=True)
        if record is None:
            return None
        hospital = self.session.get(HospitalRecord, record.hospital_id) if with_hospital else None
        return bed_from_record(record, hospital)

    def find_bed_reserved_by(self, patient_id: str) -> Optional[IcuBed]:
        stmt = select(IcuBedRecord).where(
            IcuBedRecord.reserved_by == patient_id,
            IcuBedRecord.is_reserved.is_(True)
        )
        record = self.session.execute(stmt).scalars().first()
        return self.get_bed(record.id) if record else None

    def list_beds(
        self,
        status: Optional[BedStatus] = None,
        is_reserved: Optional[bool] = None,
        hospital_id: Optional[str] = None,
        specialization: Optional[Specialization] = None
    ) -> List[IcuBed]:
        stmt = (
            select(IcuBedRecord, HospitalRecord)
            .join(HospitalRecord, HospitalRecord.id == IcuBedRecord.hospital_id)
            .order_by(IcuBedRecord.created_at, IcuBedRecord.id)
        )
        if status is not None:
            stmt = stmt.where(IcuBedRecord.status == _plain(status))
        if is_reserved is not None:
            stmt = stmt.where(IcuBedRecord.is_reserved.is_(is_reserved))
        if hospital_id is not None:
            stmt = stmt.where(IcuBedRecord.hospital_id == hospital_id)
        if specialization is not None:
            stmt = stmt.where(IcuBedRecord.specialization == _plain(specialization))

        return [bed_from_record(bed, hospital) for bed, hospital in self.session.execute(stmt).all()]

    def delete_unreserved_bed(self, bed_id: str) -> bool:
        """Delete a bed only if it is not reserved. Returns True when deleted."""
        self.session.execute(
            update(AmbulanceRequestRecord)
            .where(
                AmbulanceRequestRecord.icu_id == bed_id,
                AmbulanceRequestRecord.status.in_(
                    [RequestStatus.COMPLETED.value, RequestStatus.CANCELLED.value]
                )
            )
            .values(icu_id=None)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(
            delete(IcuBedRecord)
            .where(IcuBedRecord.id == bed_id, IcuBedRecord.is_reserved.is_(False))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ========================
    # Users
    # ========================

    def add_user(
        self,
        name: str,
        role: Role,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        hospital_id: Optional[str] = None,
        location: Optional[Sequence[float]] = None,
        password_hash: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Actor:
        """Create a user and its role-specific state row."""
        role = Role.parse(role)
        record = UserRecord(
            id=user_id or new_id("usr"),
            name=name,
            email=email,
            phone=phone,
            role=role.value,
            password_hash=password_hash,
            hospital_id=hospital_id
        )
        self.session.add(record)
        self.session.flush()

        lng = location[0] if location else None
        lat = location[1] if location else None
        if role == Role.PATIENT:
            self.session.add(PatientStateRecord(user_id=record.id, needs_pickup=False, lng=lng, lat=lat))
        elif role == Role.AMBULANCE:
            self.session.add(AmbulanceStateRecord(
                user_id=record.id, status=AmbulanceStatus.AVAILABLE.value, lng=lng, lat=lat
            ))
        self.session.flush()
        return self.get_actor(record.id)

    def get_actor(self, user_id: str) -> Optional[Actor]:
        user = self.session.get(UserRecord, user_id, populate_existing=True)
        if user is None:
            return None
        patient_state = None
        ambulance_state = None
        if user.role == Role.PATIENT.value:
            patient_state = self.session.get(PatientStateRecord, user_id, populate_existing=True)
        elif user.role == Role.AMBULANCE.value:
            ambulance_state = self.session.get(AmbulanceStateRecord, user_id, populate_existing=True)
        return actor_from_records(user, patient_state, ambulance_state)

    def list_ambulances(self, status: Optional[AmbulanceStatus] = None) -> List[Actor]:
        stmt = (
            select(UserRecord, AmbulanceStateRecord)
            .join(AmbulanceStateRecord, AmbulanceStateRecord.user_id == UserRecord.id)
            .order_by(UserRecord.created_at, UserRecord.id)
        )
        if status is not None:
            stmt = stmt.where(AmbulanceStateRecord.status == _plain(status))
        return [
            actor_from_records(user, ambulance_state=state)
            for user, state in self.session.execute(stmt).all()
        ]

    def list_patients(
        self,
        statuses: Optional[Iterable[PatientStatus]] = None,
        with_ambulance: bool = False
    ) -> List[Actor]:
        stmt = (
            select(UserRecord, PatientStateRecord)
            .join(PatientStateRecord, PatientStateRecord.user_id == UserRecord.id)
            .order_by(UserRecord.created_at, UserRecord.id)
        )
        if statuses is not None:
            stmt = stmt.where(PatientStateRecord.patient_status.in_(_plain(list(statuses))))
        if with_ambulance:
            stmt = stmt.where(PatientStateRecord.assigned_ambulance.is_not(None))
        return [
            actor_from_records(user, patient_state=state)
            for user, state in self.session.execute(stmt).all()
        ]

    # ========================
    # Ambulance requests
    # ========================

    def add_request(
        self,
        patient_id: str,
        hospital_id: str,
        pickup_location: str,
        pickup_coordinates: Sequence[float],
        icu_id: Optional[str] = None,
        urgency: Urgency = Urgency.NORMAL,
        notes: str = "",
        phone: Optional[str] = None
    ) -> AmbulanceRequest:
        record = AmbulanceRequestRecord(
            id=new_id("req"),
            patient_id=patient_id,
            hospital_id=hospital_id,
            icu_id=icu_id,
            pickup_location=pickup_location,
            pickup_lng=pickup_coordinates[0],
            pickup_lat=pickup_coordinates[1],
            status=RequestStatus.PENDING.value,
            urgency=_plain(urgency),
            notes=notes or "",
            phone=phone,
            declined_by=[]
        )
        self.session.add(record)
        self.session.flush()
        return request_from_record(record)

    def get_request(self, request_id: str) -> Optional[AmbulanceRequest]:
        record = self.session.get(AmbulanceRequestRecord, request_id, populate_existing=True)
        return request_from_record(record) if record else None

    def find_request_for_patient(
        self,
        patient_id: str,
        statuses: Iterable[RequestStatus]
    ) -> Optional[AmbulanceRequest]:
        stmt = (
            select(AmbulanceRequestRecord)
            .where(
                AmbulanceRequestRecord.patient_id == patient_id,
                AmbulanceRequestRecord.status.in_(_plain(list(statuses)))
            )
            .order_by(AmbulanceRequestRecord.created_at.desc())
            .execution_options(populate_existing=True)
        )
        record = self.session.execute(stmt).scalars().first()
        return request_from_record(record) if record else None

    def find_request_accepted_by(
        self,
        ambulance_id: str,
        statuses: Iterable[RequestStatus]
    ) -> Optional[AmbulanceRequest]:
        stmt = (
            select(AmbulanceRequestRecord)
            .where(
                AmbulanceRequestRecord.accepted_by == ambulance_id,
                AmbulanceRequestRecord.status.in_(_plain(list(statuses)))
            )
            .order_by(AmbulanceRequestRecord.accepted_at.desc())
            .execution_options(populate_existing=True)
        )
        record = self.session.execute(stmt).scalars().first()
        return request_from_record(record) if record else None

    def list_requests(
        self,
        statuses: Optional[Iterable[RequestStatus]] = None,
        created_before: Optional[datetime] = None
    ) -> List[AmbulanceRequest]:
        stmt = (
            select(AmbulanceRequestRecord)
            .order_by(AmbulanceRequestRecord.created_at, AmbulanceRequestRecord.id)
            .execution_options(populate_existing=True)
        )
        if statuses is not None:
            stmt = stmt.where(AmbulanceRequestRecord.status.in_(_plain(list(statuses))))
        if created_before is not None:
            stmt = stmt.where(AmbulanceRequestRecord.created_at < created_before)
        return [request_from_record(r) for r in self.session.execute(stmt).scalars().all()]
