"""
ORM tables.

User state is split the same way as the Actor model: a common ``users`` row
plus one role-specific state row (``patient_states`` or ``ambulance_states``).
"""

from datetime import datetime

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, JSON, String, Text, text
)

from icudispatch.db.connection import Base

_ACTIVE_REQUEST_FILTER = "status IN ('pending', 'accepted', 'in_transit')"


class HospitalRecord(Base):
    __tablename__ = "hospitals"

    id = Column(String(32), primary_key=True)
    name = Column(String(200), nullable=False)
    address = Column(String(300))
    lng = Column(Float)
    lat = Column(Float)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class IcuBedRecord(Base):
    __tablename__ = "icu_beds"

    id = Column(String(32), primary_key=True)
    hospital_id = Column(String(32), ForeignKey("hospitals.id"), nullable=False, index=True)
    specialization = Column(String(64), nullable=False)
    room = Column(String(32), nullable=False)
    capacity = Column(Integer, nullable=False, default=1)
    status = Column(String(16), nullable=False, default="Available", index=True)
    fee = Column(Float, nullable=False, default=100)
    is_reserved = Column(Boolean, nullable=False, default=False)
    reserved_by = Column(String(32), ForeignKey("users.id"), nullable=True, index=True)
    checked_in_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)


class UserRecord(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), unique=True)
    phone = Column(String(32))
    role = Column(String(16), nullable=False, index=True)
    password_hash = Column(String(200))
    hospital_id = Column(String(32), ForeignKey("hospitals.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class PatientStateRecord(Base):
    __tablename__ = "patient_states"

    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    reserved_icu = Column(String(32), ForeignKey("icu_beds.id"), nullable=True)
    patient_status = Column(String(16), nullable=True)
    needs_pickup = Column(Boolean, nullable=False, default=False)
    pickup_location = Column(String(300), nullable=True)
    assigned_ambulance = Column(String(32), ForeignKey("users.id"), nullable=True)
    lng = Column(Float)
    lat = Column(Float)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)


class AmbulanceStateRecord(Base):
    __tablename__ = "ambulance_states"

    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    status = Column(String(20), nullable=False, default="AVAILABLE", index=True)
    assigned_patient = Column(String(32), ForeignKey("users.id"), nullable=True)
    assigned_hospital = Column(String(32), ForeignKey("hospitals.id"), nullable=True)
    destination = Column(String(300), nullable=True)
    lng = Column(Float)
    lat = Column(Float)
    eta = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)


class AmbulanceRequestRecord(Base):
    __tablename__ = "ambulance_requests"
    __table_args__ = (
        Index("ix_ambulance_requests_status_created", "status", "created_at"),
        # One active request per patient
        Index(
            "uq_ambulance_requests_active_patient",
            "patient_id",
            unique=True,
            sqlite_where=text(_ACTIVE_REQUEST_FILTER),
            postgresql_where=text(_ACTIVE_REQUEST_FILTER)
        ),
    )

    id = Column(String(32), primary_key=True)
    patient_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    hospital_id = Column(String(32), ForeignKey("hospitals.id"), nullable=False)
    icu_id = Column(String(32), ForeignKey("icu_beds.id"), nullable=True)
    pickup_location = Column(String(300), nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_lat = Column(Float, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    accepted_by = Column(String(32), ForeignKey("users.id"), nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    urgency = Column(String(16), nullable=False, default="normal")
    notes = Column(Text, nullable=False, default="")
    phone = Column(String(32), nullable=True)
    declined_by = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)
