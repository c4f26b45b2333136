"""
config/policy.py
Scheduling policy handed to the booking engine and availability ledger.
Built from settings in production; tests construct their own.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field

from config.settings import Settings, settings


class BookingPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform_fee_percent: Decimal = Field(Decimal("10"), ge=0, le=100)
    min_booking_hours: Decimal = Field(Decimal("1"), ge=0)
    max_booking_hours: Decimal = Field(Decimal("12"), gt=0)
    lock_ttl_seconds: int = Field(30, gt=0)
    lock_wait_seconds: float = Field(5.0, ge=0)
    schedule_timezone: str = "UTC"
    # Returns naive wall-clock time; pinned in tests
    clock: Optional[Callable[[], datetime]] = Field(None, exclude=True)

    @classmethod
    def from_settings(cls, s: Settings) -> "BookingPolicy":
        return cls(
            platform_fee_percent=Decimal(str(s.PLATFORM_FEE_PERCENT)),
            min_booking_hours=Decimal(str(s.MIN_BOOKING_HOURS)),
            max_booking_hours=Decimal(str(s.MAX_BOOKING_HOURS)),
            lock_ttl_seconds=s.BOOKING_LOCK_TTL_SECONDS,
            lock_wait_seconds=s.BOOKING_LOCK_WAIT_SECONDS,
            schedule_timezone=s.SCHEDULE_TIMEZONE,
        )

    def now(self) -> datetime:
        """Current wall-clock time in the timezone booking dates and times are written in."""
        if self.clock is not None:
            return self.clock()
        return datetime.now(ZoneInfo(self.schedule_timezone)).replace(tzinfo=None)


def get_booking_policy() -> BookingPolicy:
    """FastAPI dependency. Override in tests to vary the fee without touching settings."""
    return BookingPolicy.from_settings(settings)
