"""Pricing Engine - durations and rounded totals frozen onto reservations"""
import re
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Optional, Union

from domain.errors import InvalidTimeRange
from domain.value_objects import PricingSnapshot

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

HHMM_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")

Money = Union[Decimal, int, str]
TimeInput = Union[datetime, str]


def parse_hhmm(value: str) -> int:
    """Minutes since midnight for a 24h ``HH:MM`` string"""
    if not isinstance(value, str):
        raise InvalidTimeRange("Time must be a string HH:MM")
    match = HHMM_PATTERN.match(value.strip())
    if not match:
        raise InvalidTimeRange(f'Invalid time format "{value}" (expected HH:MM)')
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23:
        raise InvalidTimeRange(f'Invalid hour in "{value}"')
    if minute > 59:
        raise InvalidTimeRange(f'Invalid minutes in "{value}"')
    return hour * 60 + minute


def round_money(amount: Money) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_EVEN)


def duration_minutes(start: TimeInput, end: TimeInput) -> int:
    """Whole minutes between two datetimes or two HH:MM strings.

    Raises InvalidTimeRange if end is not after start.
    """
    if isinstance(start, datetime) and isinstance(end, datetime):
        diff = int((end - start).total_seconds() // 60)
    elif isinstance(start, str) and isinstance(end, str):
        diff = parse_hhmm(end) - parse_hhmm(start)
    else:
        raise InvalidTimeRange("Start and end must both be datetimes or both be HH:MM strings")

    if diff <= 0:
        raise InvalidTimeRange("End time must be after start time")
    return diff


def total_amount(hourly_rate: Money, minutes: int, multiplier: int = 1) -> Decimal:
    """rate * minutes/60 * max(1, multiplier), rounded half-even to cents"""
    if minutes is None or minutes <= 0:
        return ZERO
    try:
        rate = Decimal(str(hourly_rate or 0))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid hourly rate {hourly_rate!r}") from exc
    safe_multiplier = multiplier if multiplier and multiplier > 0 else 1
    return round_money(rate * Decimal(minutes) / Decimal(60) * Decimal(safe_multiplier))


def build_snapshot(
    start: TimeInput,
    end: TimeInput,
    space_hourly_rate: Money,
    hourly_rate_snapshot: Optional[Money] = None,
    shared: bool = False,
    attendees: int = 1
) -> PricingSnapshot:
    """Compute the pricing snapshot stored on a reservation.

    An existing ``hourly_rate_snapshot`` (edit) wins over the space's
    current rate (create), so later rate changes never touch history.
    Shared spaces multiply the total by the attendee count.
    """
    minutes = duration_minutes(start, end)
    rate = hourly_rate_snapshot if hourly_rate_snapshot is not None else space_hourly_rate
    multiplier = max(1, attendees or 1) if shared else 1
    return PricingSnapshot(
        hourly_rate_snapshot=round_money(rate or 0),
        duration_minutes=minutes,
        total_amount=total_amount(rate, minutes, multiplier),
    )
