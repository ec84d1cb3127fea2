"""Validator input and tagged results

The validator returns either a ``ValidatedReservation`` or a
``ReservationRejection``; callers branch on ``result.ok``.
"""
from pydantic import BaseModel
from datetime import date, datetime
from uuid import UUID
from typing import Any, Dict, Optional, Union

from domain.entities import Space
from domain.enums import ValidationErrorCode
from domain.value_objects import TimeRange


class ReservationCandidate(BaseModel):
    """Raw booking request as received from the caller"""
    user_id: Optional[UUID] = None
    space_id: Optional[str] = None
    reservation_date: Optional[Union[date, str]] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reservation_id_to_exclude: Optional[UUID] = None


class ValidatedReservation(BaseModel):
    """Normalized window accepted by the validator"""
    date_only: date
    start_datetime: datetime
    end_datetime: datetime
    space: Space

    class Config:
        frozen = True

    @property
    def ok(self) -> bool:
        return True

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start_datetime, end=self.end_datetime)


class ReservationRejection(BaseModel):
    """Business rejection with a stable code, a message and structured context"""
    code: ValidationErrorCode
    message: str
    context: Dict[str, Any] = {}

    class Config:
        frozen = True

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def invalid(cls, message: str, **context: Any) -> "ReservationRejection":
        return cls(code=ValidationErrorCode.VALIDATION_ERROR, message=message, context=context)

    @classmethod
    def space_overlap(cls, **context: Any) -> "ReservationRejection":
        return cls(
            code=ValidationErrorCode.SPACE_OVERLAP,
            message="A reservation already exists in this space for that time slot",
            context=context,
        )


ValidationResult = Union[ValidatedReservation, ReservationRejection]
