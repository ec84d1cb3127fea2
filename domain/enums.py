"""Domain Enums"""
from enum import Enum


class ReservationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    INVOICED = "INVOICED"
    PENALIZED = "PENALIZED"


# Reservations in these states are billable until a LiquidationItem exists
BILLABLE_STATUSES = (ReservationStatus.COMPLETED, ReservationStatus.PENALIZED)


class SpaceType(str, Enum):
    FLEX_DESK = "FLEX_DESK"
    FIX_DESK = "FIX_DESK"
    MEETING_ROOM = "MEETING_ROOM"
    OFFICE_ROOM = "OFFICE_ROOM"
    SHARED_TABLE = "SHARED_TABLE"

    @property
    def is_shared(self) -> bool:
        """Shared spaces are priced per attendee"""
        return self in (SpaceType.FLEX_DESK, SpaceType.SHARED_TABLE)


class SettingValueType(str, Enum):
    INT = "INT"
    NUMBER = "NUMBER"
    BOOL = "BOOL"
    JSON = "JSON"
    STRING = "STRING"


class SettingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class LiquidationStatus(str, Enum):
    DRAFT = "DRAFT"


class ValidationErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    OUT_OF_OPENING_HOURS = "OUT_OF_OPENING_HOURS"
    INVALID_STEP = "INVALID_STEP"
    MIN_DURATION = "MIN_DURATION"
    INVALID_DURATION = "INVALID_DURATION"
    MIN_HOURS_BEFORE_EXCEEDED = "MIN_HOURS_BEFORE_EXCEEDED"
    DAY_HOURS_LIMIT_EXCEEDED = "DAY_HOURS_LIMIT_EXCEEDED"
    DAY_SPACES_LIMIT_EXCEEDED = "DAY_SPACES_LIMIT_EXCEEDED"
    WEEK_HOURS_LIMIT_EXCEEDED = "WEEK_HOURS_LIMIT_EXCEEDED"
    OVERLAPPING_SPACES_LIMIT_EXCEEDED = "OVERLAPPING_SPACES_LIMIT_EXCEEDED"
    SPACE_OVERLAP = "SPACE_OVERLAP"
