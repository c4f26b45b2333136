"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import (
    ApplicationStatus,
    BookingActor,
    BookingStatus,
    DayOfWeek,
    MeetingType,
    PaymentMethod,
    PaymentStatus,
    RequestStatus,
    Role,
    ServiceTag,
    VerificationStatus,
)

MIN_COMPANION_AGE = 18


def _minute_precision(value: Optional[time]) -> Optional[time]:
    if value is not None and (value.second or value.microsecond):
        raise ValueError("Times have minute granularity (HH:MM)")
    return value


def _unique_services(values) -> Optional[List[str]]:
    if values is None:
        return None
    return sorted({getattr(tag, "value", tag) for tag in values})


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class MessageResponse(BaseSchema):
    message: str


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
    category: Optional[str] = None
    request_id: Optional[str] = None


# ── Auth / Identity ───────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    name: str
    phone: Optional[str]
    avatar_url: Optional[str]
    roles: List[Role]
    active_role: Role
    is_email_verified: bool
    created_at: datetime

    @field_validator("roles", mode="after")
    @classmethod
    def sort_roles(cls, v):
        return sorted(v, key=lambda r: getattr(r, "value", r))


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class SwitchRoleRequest(BaseSchema):
    role: Role


class SwitchRoleResponse(TokenResponse):
    user: UserResponse


# ── Client Verification ───────────────────────────────────────

class ClientVerificationSubmit(BaseSchema):
    address_line: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    country: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    date_of_birth: Optional[date] = None
    government_id_number: Optional[str] = Field(None, max_length=100)
    id_document_url: Optional[str] = None
    profile_photo_url: Optional[str] = None

    @field_validator("address_line", "city", "state", "country", "postal_code")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field must not be blank")
        return v


class ClientVerificationResponse(BaseSchema):
    status: VerificationStatus
    can_browse_or_book: bool
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    id_document_url: Optional[str] = None
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None


# ── Companion Application ─────────────────────────────────────

class CompanionApplicationCreate(BaseSchema):
    date_of_birth: date
    government_id_number: str = Field(..., min_length=4, max_length=100)
    phone: str = Field(..., pattern=r"^\+?[0-9 ()-]{7,20}$")
    address_line: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    country: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    bio: Optional[str] = Field(None, max_length=2000)
    services_offered: List[ServiceTag] = Field(..., min_length=1)
    languages: List[str] = Field(default_factory=list)
    hourly_rate: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    documents: Optional[Dict[str, str]] = None

    @field_validator("date_of_birth")
    @classmethod
    def must_be_adult(cls, v: date) -> date:
        today = date.today()
        age = today.year - v.year - ((today.month, today.day) < (v.month, v.day))
        if age < MIN_COMPANION_AGE:
            raise ValueError(f"Companions must be at least {MIN_COMPANION_AGE} years old")
        return v

    @field_validator("services_offered")
    @classmethod
    def dedupe_services(cls, v):
        return _unique_services(v)


class CompanionApplicationResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    status: ApplicationStatus
    city: str
    state: str
    country: str
    bio: Optional[str]
    services_offered: List[str]
    languages: List[str]
    hourly_rate: Decimal
    rejection_reason: Optional[str]
    reviewed_at: Optional[datetime]
    created_at: datetime


class CompanionProfileUpdate(BaseSchema):
    bio: Optional[str] = Field(None, max_length=2000)
    services_offered: Optional[List[ServiceTag]] = Field(None, min_length=1)
    languages: Optional[List[str]] = None
    hourly_rate: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)

    @field_validator("services_offered")
    @classmethod
    def dedupe_services(cls, v):
        return _unique_services(v)


class CompanionCardResponse(BaseSchema):
    """Public catalog entry. Built from the user row and the approved application."""
    id: uuid.UUID
    name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    services_offered: List[str]
    languages: List[str]
    hourly_rate: Decimal


class AdminRejectRequest(BaseSchema):
    reason: str = Field(..., min_length=3, max_length=1000)


# ── Availability ──────────────────────────────────────────────

class SlotCreate(BaseSchema):
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_available: bool = True
    services: List[ServiceTag] = Field(default_factory=list)

    @field_validator("start_time", "end_time")
    @classmethod
    def minute_precision(cls, v):
        return _minute_precision(v)

    @field_validator("services")
    @classmethod
    def dedupe_services(cls, v):
        return _unique_services(v)


class SlotUpdate(BaseSchema):
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    is_available: Optional[bool] = None
    services: Optional[List[ServiceTag]] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def minute_precision(cls, v):
        return _minute_precision(v)

    @field_validator("services")
    @classmethod
    def dedupe_services(cls, v):
        return _unique_services(v)


class SlotResponse(BaseSchema):
    id: uuid.UUID
    companion_id: uuid.UUID
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_available: bool
    services: List[str]


class WeekReplaceRequest(BaseSchema):
    slots: List[SlotCreate]


class WeeklyWindow(BaseSchema):
    start_time: time
    end_time: time
    services: List[str]


class WeeklySummary(BaseSchema):
    total_slots_per_week: int
    days_available: int
    available_days: List[DayOfWeek]


class WeeklyPatternResponse(BaseSchema):
    companion_id: uuid.UUID
    days: Dict[DayOfWeek, List[WeeklyWindow]]
    summary: WeeklySummary


class OpenWindowsResponse(BaseSchema):
    companion_id: uuid.UUID
    date: date
    day_of_week: DayOfWeek
    windows: List[WeeklyWindow]


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    companion_id: uuid.UUID
    booking_date: date
    start_time: time
    end_time: time
    meeting_type: MeetingType = MeetingType.IN_PERSON
    meeting_location: Optional[str] = Field(None, max_length=500)
    service_type: Optional[ServiceTag] = None
    special_requests: Optional[str] = Field(None, max_length=2000)

    @field_validator("start_time", "end_time")
    @classmethod
    def minute_precision(cls, v):
        return _minute_precision(v)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    client_id: uuid.UUID
    companion_id: uuid.UUID
    source_request_id: Optional[uuid.UUID] = None
    booking_date: date
    start_time: time
    end_time: time
    duration_hours: Decimal
    meeting_type: MeetingType
    meeting_location: Optional[str]
    service_type: Optional[str]
    special_requests: Optional[str]
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: Optional[PaymentMethod]
    hourly_rate: Decimal
    extra_amount: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    companion_earnings: Decimal
    cancelled_by: Optional[BookingActor]
    cancellation_reason: Optional[str]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=1000)


class PaymentStatusUpdate(BaseSchema):
    payment_status: PaymentStatus
    payment_method: Optional[PaymentMethod] = None


# ── Booking Requests ──────────────────────────────────────────

class BookingRequestCreate(BaseSchema):
    companion_id: uuid.UUID
    requested_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    duration_hours: Optional[Decimal] = Field(None, gt=0, le=24)
    service_type: Optional[ServiceTag] = None
    extra_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    meeting_type: MeetingType = MeetingType.IN_PERSON
    meeting_location: Optional[str] = Field(None, max_length=500)
    special_requests: Optional[str] = Field(None, max_length=2000)

    @field_validator("start_time", "end_time")
    @classmethod
    def minute_precision(cls, v):
        return _minute_precision(v)

    @model_validator(mode="after")
    def needs_duration(self):
        if self.end_time is not None and self.start_time is None:
            raise ValueError("end_time requires start_time")
        if self.duration_hours is None and (self.start_time is None or self.end_time is None):
            raise ValueError("Provide duration_hours or both start_time and end_time")
        return self


class BookingRequestResponse(BaseSchema):
    id: uuid.UUID
    client_id: uuid.UUID
    companion_id: uuid.UUID
    requested_date: date
    start_time: Optional[time]
    end_time: Optional[time]
    duration_hours: Decimal
    service_type: Optional[str]
    extra_amount: Decimal
    meeting_type: MeetingType
    meeting_location: Optional[str]
    special_requests: Optional[str]
    status: RequestStatus
    companion_response: Optional[str]
    responded_at: Optional[datetime]
    booking_id: Optional[uuid.UUID]
    created_at: datetime


class BookingRequestAccept(BaseSchema):
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    response: Optional[str] = Field(None, max_length=1000)

    @field_validator("start_time", "end_time")
    @classmethod
    def minute_precision(cls, v):
        return _minute_precision(v)


class BookingRequestReject(BaseSchema):
    response: Optional[str] = Field(None, max_length=1000)


class AcceptedRequestResponse(BaseSchema):
    request: BookingRequestResponse
    booking: BookingResponse


class PendingApprovalsResponse(BaseSchema):
    bookings: List[BookingResponse]
    requests: List[BookingRequestResponse]


# ── Favorites ─────────────────────────────────────────────────

class FavoriteResponse(BaseSchema):
    companion_id: uuid.UUID
    created_at: datetime
    companion: Optional[CompanionCardResponse] = None


# ── Admin ─────────────────────────────────────────────────────

class AdminAuditLogResponse(BaseSchema):
    id: uuid.UUID
    admin_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: str
    payload: Optional[dict]
    ip_address: Optional[str]
    created_at: datetime
