"""Domain Value Objects"""
from pydantic import BaseModel, Field, validator
from datetime import datetime
from decimal import Decimal
from uuid import UUID
from typing import Any, List

from domain.enums import SettingValueType


class TimeRange(BaseModel):
    """Value Object for a half-open [start, end) interval"""
    start: datetime
    end: datetime

    @validator('end')
    def end_after_start(cls, v, values):
        if 'start' in values and v <= values['start']:
            raise ValueError('End time must be after start time')
        return v

    def minutes(self) -> int:
        """Wall-clock length in whole minutes"""
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Two ranges intersect when each starts before the other ends"""
        return self.start < other.end and other.start < self.end

    class Config:
        frozen = True


class PricingSnapshot(BaseModel):
    """Rate, duration and total frozen onto a reservation at write time"""
    hourly_rate_snapshot: Decimal
    duration_minutes: int = Field(gt=0)
    total_amount: Decimal

    class Config:
        frozen = True


class TypedSetting(BaseModel):
    """A setting value already converted to its declared type"""
    value: Any
    value_type: SettingValueType

    class Config:
        frozen = True


class ReservationRules(BaseModel):
    """Global booking rules read from the settings store"""
    min_hours_before: Decimal = Decimal("2")
    open_hour: int = Field(default=0, ge=0, le=24)
    close_hour: int = Field(default=24, ge=0, le=24)
    min_minutes: int = Field(default=1, ge=1)
    step_minutes: int = Field(default=1, ge=1)

    class Config:
        frozen = True


class TypeRules(BaseModel):
    """Per space-type quotas for a single user"""
    max_hours_per_day_per_user: Decimal
    max_hours_per_week_per_user: Decimal
    max_spaces_per_day_per_user: int
    max_overlapping_spaces_per_user: int

    class Config:
        frozen = True


class AutoCompleteSchedule(BaseModel):
    """Daily wall-clock time at which the completion sweep runs"""
    hour: int = Field(default=2, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)

    class Config:
        frozen = True


class LimitOverrideAlert(BaseModel):
    """Payload sent to admins when a user asks to exceed a booking limit"""
    recipients: List[str]
    user_id: UUID
    space_id: str
    space_name: str
    space_type: str
    date: str
    start_time: str
    end_time: str
    limit_reason: str

    class Config:
        frozen = True
