"""
shared/models/models.py
All SQLAlchemy ORM models for the Companion Booking Platform.
UUID primary keys throughout; JSON columns become JSONB on PostgreSQL.
"""

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import FrozenSet, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────

class Role(str, PyEnum):
    CLIENT = "client"
    COMPANION = "companion"
    ADMIN = "admin"


class ApplicationStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VerificationStatus(str, PyEnum):
    NOT_SUBMITTED = "not_submitted"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DayOfWeek(str, PyEnum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def for_date(cls, value: date) -> "DayOfWeek":
        # date.weekday(): Monday == 0, same order as the members above
        return list(cls)[value.weekday()]


class ServiceTag(str, PyEnum):
    """Closed catalog of services a companion can offer."""
    COFFEE_DATE = "Coffee Date"
    DINNER_COMPANION = "Dinner Companion"
    MOVIE_NIGHT = "Movie Night"
    SHOPPING_COMPANION = "Shopping Companion"
    MUSEUM_VISIT = "Museum Visit"
    CONCERT_EVENT = "Concert/Event"
    WALKING_HIKING = "Walking/Hiking"
    BEACH_DAY = "Beach Day"
    ART_GALLERY = "Art Gallery"
    WINE_TASTING = "Wine Tasting"
    COOKING_TOGETHER = "Cooking Together"
    GAME_NIGHT = "Game Night"
    CITY_TOUR = "City Tour"
    SPORTS_EVENT = "Sports Event"
    THEATER_PLAY = "Theater/Play"
    DANCE_PARTNER = "Dance Partner"
    STUDY_BUDDY = "Study Buddy"
    GYM_PARTNER = "Gym Partner"
    TRAVEL_COMPANION = "Travel Companion"
    BUSINESS_EVENT = "Business Event"


class MeetingType(str, PyEnum):
    IN_PERSON = "in_person"
    VIRTUAL = "virtual"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


TERMINAL_BOOKING_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}
)


class PaymentStatus(str, PyEnum):
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, PyEnum):
    STRIPE = "stripe"
    CARD = "card"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"


class RequestStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class BookingActor(str, PyEnum):
    CLIENT = "client"
    COMPANION = "companion"
    SYSTEM = "system"


class EventType(str, PyEnum):
    BOOKING_CREATED = "BookingCreated"
    BOOKING_STATUS_CHANGED = "BookingStatusChanged"
    BOOKING_REQUEST_CREATED = "BookingRequestCreated"
    BOOKING_REQUEST_RESPONDED = "BookingRequestResponded"
    APPLICATION_REVIEWED = "ApplicationReviewed"
    VERIFICATION_REVIEWED = "VerificationReviewed"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class SoftDeleteMixin:
    """Adds soft delete capability."""
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# ── Identity ──────────────────────────────────────────────────

class User(TimestampMixin, SoftDeleteMixin, Base):
    """
    One account, many roles. `active_role` scopes every authorization decision
    and is always read from this row, never from a token claim.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active_role: Mapped[Role] = mapped_column(Enum(Role), nullable=False, default=Role.CLIENT)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    role_grants: Mapped[List["RoleGrant"]] = relationship(
        back_populates="user", lazy="selectin", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_users_active_role", "active_role"),)

    @property
    def roles(self) -> FrozenSet[Role]:
        return frozenset(g.role for g in self.role_grants if g.is_active)

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.active_role})>"


class RoleGrant(Base):
    """A role granted to an account. Revocation flips is_active, rows are never deleted."""
    __tablename__ = "user_roles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[Role] = mapped_column(Enum(Role), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    user: Mapped["User"] = relationship(back_populates="role_grants")

    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)


# ── Verification ──────────────────────────────────────────────

class CompanionApplication(TimestampMixin, Base):
    """
    Companion onboarding application. The latest approved application is the
    companion's public profile (rate, services, languages, bio).
    """
    __tablename__ = "companion_applications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Personal / legal
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    government_id_number: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str] = mapped_column(String(30), nullable=False)
    address_line: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    country: Mapped[str] = mapped_column(String(100), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)

    # Profile
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    services_offered: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    languages: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    # Opaque storage references, e.g. {"government_id": "s3://...", "photo": "..."}
    documents: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Review
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus), default=ApplicationStatus.PENDING, nullable=False
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_companion_applications_user_status", "user_id", "status"),
        Index("ix_companion_applications_status", "status"),
    )


class ClientVerification(TimestampMixin, Base):
    """Client identity verification. No row means `not_submitted`."""
    __tablename__ = "client_verifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    address_line: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    government_id_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    id_document_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    profile_photo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus), default=VerificationStatus.NOT_SUBMITTED, nullable=False
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_client_verifications_status", "status"),)


# ── Availability ──────────────────────────────────────────────

class AvailabilitySlot(TimestampMixin, Base):
    """
    Weekly recurring window published by a companion.
    Slots for one (companion, day_of_week) never overlap; touching endpoints are fine.
    """
    __tablename__ = "availability_slots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    companion_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week: Mapped[DayOfWeek] = mapped_column(Enum(DayOfWeek), nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    services: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "companion_id", "day_of_week", "start_time", name="uq_availability_companion_day_start"
        ),
        CheckConstraint("start_time < end_time", name="ck_availability_range"),
        Index("ix_availability_companion_day", "companion_id", "day_of_week"),
    )


# ── Bookings ──────────────────────────────────────────────────

class Booking(TimestampMixin, Base):
    """
    A dated reservation. Amounts are a snapshot taken at creation.
    Status transitions: pending → confirmed | cancelled;
    confirmed → completed | cancelled | no_show.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    companion_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    source_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("booking_requests.id"), nullable=True
    )

    # Schedule
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    # Meeting
    meeting_type: Mapped[MeetingType] = mapped_column(
        Enum(MeetingType), default=MeetingType.IN_PERSON, nullable=False
    )
    meeting_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    service_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    cancelled_by: Mapped[Optional[BookingActor]] = mapped_column(Enum(BookingActor), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Payment bookkeeping (capture is external)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), nullable=False, default=PaymentStatus.UNPAID
    )
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        Enum(PaymentMethod), nullable=True
    )

    # Pricing snapshot
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    extra_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    companion_earnings: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Timestamps
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("client_id <> companion_id", name="ck_bookings_not_self"),
        Index("ix_bookings_client_id", "client_id"),
        Index("ix_bookings_companion_date", "companion_id", "booking_date"),
        Index("ix_bookings_status", "status"),
    )


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id"), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    actor: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (Index("ix_booking_audit_logs_booking_id", "booking_id"),)


class BookingRequest(TimestampMixin, Base):
    """
    Client proposal outside published availability. Becomes a Booking only
    when the companion accepts it and the booking passes normal validation.
    """
    __tablename__ = "booking_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    companion_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)

    requested_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    duration_hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    service_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    extra_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    meeting_type: Mapped[MeetingType] = mapped_column(
        Enum(MeetingType), default=MeetingType.IN_PERSON, nullable=False
    )
    meeting_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus), default=RequestStatus.PENDING, nullable=False
    )
    companion_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        Index("ix_booking_requests_companion_status", "companion_id", "status"),
        Index("ix_booking_requests_client_id", "client_id"),
    )


class Favorite(Base):
    """Client bookmarks a companion."""
    __tablename__ = "favorites"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    companion_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("client_id", "companion_id", name="uq_favorites_client_companion"),
    )


# ── Outbound events / audit ───────────────────────────────────

class DomainEvent(Base):
    """
    Outbox row for every event handed to the external notifier.
    `published` stays False when the broker could not be reached.
    """
    __tablename__ = "domain_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type: Mapped[EventType] = mapped_column(Enum(EventType), nullable=False)
    recipient_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_domain_events_recipient", "recipient_id"),
        Index("ix_domain_events_unpublished", "published"),
    )


class AdminAuditLog(Base):
    """Immutable audit trail of all admin review actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_entity", "entity_type", "entity_id"),
    )
