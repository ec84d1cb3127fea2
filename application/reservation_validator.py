"""Reservation Validator - decides whether a requested slot may be booked"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional, Tuple, Union

from dateutil import tz
from dateutil.relativedelta import relativedelta, MO

from application.pricing import parse_hhmm
from application.settings_provider import SettingsProvider
from domain.entities import Reservation, Space
from domain.enums import ValidationErrorCode
from domain.errors import InvalidTimeRange
from domain.repositories import ReservationRepository, SpaceRepository
from domain.validation import (
    ReservationCandidate, ReservationRejection, ValidatedReservation, ValidationResult,
)
from domain.value_objects import ReservationRules

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _hours(minutes: int) -> float:
    return round(minutes / 60, 2)


def _used_minutes(reservations: Iterable[Reservation]) -> int:
    return sum(r.time_range.minutes() for r in reservations)


def week_bounds(day: date) -> Tuple[date, date]:
    """Monday of the ISO week containing ``day`` and the following Monday"""
    week_start = day + relativedelta(weekday=MO(-1))
    return week_start, week_start + relativedelta(weeks=1)


def parse_reservation_date(value: Union[date, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()


class ReservationValidator:
    """Applies the booking rules in a fixed order; the first failure wins.

    Business rejections come back as ``ReservationRejection`` values and
    are never raised. Dates and HH:MM times are read in the booking
    timezone and returned as UTC instants.
    """

    def __init__(
        self,
        reservations: ReservationRepository,
        spaces: SpaceRepository,
        settings: SettingsProvider,
        timezone_name: str = "Europe/Madrid",
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.reservations = reservations
        self.spaces = spaces
        self.settings = settings
        self.tz = tz.gettz(timezone_name)
        if self.tz is None:
            raise ValueError(f"Unknown timezone {timezone_name}")
        self._clock = clock or _utcnow

    def to_utc(self, day: date, hhmm: str) -> datetime:
        """Local wall-clock time on ``day`` as a UTC instant.

        Times skipped by a DST jump are moved forward to the first valid
        instant.
        """
        minutes = parse_hhmm(hhmm)
        local = datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=self.tz)
        return tz.resolve_imaginary(local).astimezone(timezone.utc)

    def _local_minutes(self, instant: datetime) -> int:
        local = instant.astimezone(self.tz)
        return local.hour * 60 + local.minute

    async def validate(self, candidate: ReservationCandidate) -> ValidationResult:
        # 1) Presence and parseability
        if (
            candidate.user_id is None
            or not candidate.space_id
            or not candidate.reservation_date
            or not candidate.start_time
            or not candidate.end_time
        ):
            return self._reject(ReservationRejection.invalid(
                "user, space, date, start time and end time are required"
            ))

        try:
            date_only = parse_reservation_date(candidate.reservation_date)
            start = self.to_utc(date_only, candidate.start_time)
            end = self.to_utc(date_only, candidate.end_time)
        except (ValueError, InvalidTimeRange) as e:
            return self._reject(ReservationRejection.invalid(f"Invalid date or time: {e}"))

        # 2) End after start
        if end <= start:
            return self._reject(ReservationRejection.invalid("End time must be after start time"))

        rules = await self.settings.reservation_rules()

        # 2b) Opening hours, step and minimum duration
        rejection = self._check_time_rules(start, end, rules)
        if rejection:
            return self._reject(rejection)

        # 3) Lead time
        now = self._clock()
        lead_seconds = Decimal(str((start - now).total_seconds()))
        if lead_seconds < rules.min_hours_before * 3600:
            return self._reject(ReservationRejection(
                code=ValidationErrorCode.MIN_HOURS_BEFORE_EXCEEDED,
                message=f"Reservations must be made at least {rules.min_hours_before} hours in advance",
                context={"min_hours_before": float(rules.min_hours_before)},
            ))

        # 4) Space exists and is active
        space = await self.spaces.find_by_id(candidate.space_id)
        if space is None or not space.active:
            return self._reject(ReservationRejection.invalid(
                "Space does not exist or is inactive", space_id=candidate.space_id
            ))

        # 5) Per space-type quotas
        rejection = await self._check_quotas(candidate, space, date_only, start, end)
        if rejection:
            return self._reject(rejection)

        # 6) Same-space overlap
        conflict = await self.reservations.find_active_overlapping_in_space(
            space.space_id, start, end, candidate.reservation_id_to_exclude
        )
        if conflict is not None:
            return self._reject(ReservationRejection.space_overlap(
                conflicting_reservation_id=str(conflict.reservation_id)
            ))

        return ValidatedReservation(
            date_only=date_only,
            start_datetime=start,
            end_datetime=end,
            space=space,
        )

    def _check_time_rules(
        self, start: datetime, end: datetime, rules: ReservationRules
    ) -> Optional[ReservationRejection]:
        start_min = self._local_minutes(start)
        end_min = self._local_minutes(end)
        step = rules.step_minutes

        # Boundaries are measured within the hour: 10:45 fits a 45 minute step
        if start_min % 60 % step or end_min % 60 % step:
            return ReservationRejection(
                code=ValidationErrorCode.INVALID_STEP,
                message=f"Reservations must start and end on {step} minute boundaries",
                context={"step_minutes": step},
            )

        if start_min < rules.open_hour * 60 or end_min > rules.close_hour * 60:
            return ReservationRejection(
                code=ValidationErrorCode.OUT_OF_OPENING_HOURS,
                message=f"Reservations are allowed from {rules.open_hour:02d}:00 to {rules.close_hour:02d}:00",
                context={"open_hour": rules.open_hour, "close_hour": rules.close_hour},
            )

        duration = int((end - start).total_seconds() // 60)
        if duration < rules.min_minutes:
            return ReservationRejection(
                code=ValidationErrorCode.MIN_DURATION,
                message=f"Reservations must last at least {rules.min_minutes} minutes",
                context={"min_minutes": rules.min_minutes},
            )

        if duration % step:
            return ReservationRejection(
                code=ValidationErrorCode.INVALID_DURATION,
                message=f"Duration must be a multiple of {step} minutes",
                context={"step_minutes": step},
            )
        return None

    async def _check_quotas(
        self,
        candidate: ReservationCandidate,
        space: Space,
        date_only: date,
        start: datetime,
        end: datetime
    ) -> Optional[ReservationRejection]:
        type_rules = await self.settings.type_rules(space.type)
        exclude_id = candidate.reservation_id_to_exclude
        new_minutes = int((end - start).total_seconds() // 60)

        # Day window
        day_reservations = await self.reservations.find_active_for_user_in_dates(
            candidate.user_id, space.type, date_only, date_only + timedelta(days=1), exclude_id
        )
        used_day = _used_minutes(day_reservations)
        if used_day + new_minutes > type_rules.max_hours_per_day_per_user * 60:
            return ReservationRejection(
                code=ValidationErrorCode.DAY_HOURS_LIMIT_EXCEEDED,
                message=(
                    f"Exceeds the maximum of {type_rules.max_hours_per_day_per_user} hours "
                    f"per day for this space type"
                ),
                context={
                    "space_type": space.type.value,
                    "used_day_hours": _hours(used_day),
                    "new_reservation_hours": _hours(new_minutes),
                    "max_hours_per_day_per_user": float(type_rules.max_hours_per_day_per_user),
                },
            )

        distinct_day_spaces = {r.space_id for r in day_reservations} | {space.space_id}
        if len(distinct_day_spaces) > type_rules.max_spaces_per_day_per_user:
            return ReservationRejection(
                code=ValidationErrorCode.DAY_SPACES_LIMIT_EXCEEDED,
                message=(
                    f"Cannot book more than {type_rules.max_spaces_per_day_per_user} "
                    f"spaces of this type on the same day"
                ),
                context={
                    "space_type": space.type.value,
                    "distinct_spaces_day_count": len(distinct_day_spaces),
                    "max_spaces_per_day_per_user": type_rules.max_spaces_per_day_per_user,
                },
            )

        # ISO week window
        week_start, week_end = week_bounds(date_only)
        week_reservations = await self.reservations.find_active_for_user_in_dates(
            candidate.user_id, space.type, week_start, week_end, exclude_id
        )
        used_week = _used_minutes(week_reservations)
        if used_week + new_minutes > type_rules.max_hours_per_week_per_user * 60:
            return ReservationRejection(
                code=ValidationErrorCode.WEEK_HOURS_LIMIT_EXCEEDED,
                message=(
                    f"Exceeds the maximum of {type_rules.max_hours_per_week_per_user} hours "
                    f"per week for this space type"
                ),
                context={
                    "space_type": space.type.value,
                    "used_week_hours": _hours(used_week),
                    "new_reservation_hours": _hours(new_minutes),
                    "max_hours_per_week_per_user": float(type_rules.max_hours_per_week_per_user),
                },
            )

        # Simultaneous spaces of the same type
        overlapping = await self.reservations.find_active_overlapping_for_user(
            candidate.user_id, space.type, start, end, exclude_id
        )
        overlapping_spaces = {r.space_id for r in overlapping}
        if len(overlapping_spaces) >= type_rules.max_overlapping_spaces_per_user:
            return ReservationRejection(
                code=ValidationErrorCode.OVERLAPPING_SPACES_LIMIT_EXCEEDED,
                message="Cannot book more spaces of this type in the same time slot",
                context={
                    "space_type": space.type.value,
                    "overlapping_spaces_count": len(overlapping_spaces),
                    "max_overlapping_spaces_per_user": type_rules.max_overlapping_spaces_per_user,
                },
            )
        return None

    def _reject(self, rejection: ReservationRejection) -> ReservationRejection:
        logger.info("Reservation rejected: %s (%s)", rejection.code.value, rejection.message)
        return rejection
