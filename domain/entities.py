"""Domain Entities - Aggregates"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime, date, timezone
from typing import Optional
from decimal import Decimal

from domain.enums import (
    ReservationStatus, SpaceType, SettingValueType, SettingStatus, LiquidationStatus,
)
from domain.value_objects import TimeRange, PricingSnapshot


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Space(BaseModel):
    """Bookable desk, office or room. Read-only for the booking engine."""

    space_id: str
    name: str = ""
    type: SpaceType
    active: bool = True
    hourly_rate: Decimal = Field(ge=0)
    capacity: int = Field(ge=0, default=1)

    class Config:
        from_attributes = True

    @property
    def is_shared(self) -> bool:
        return self.type.is_shared


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""

    # Identity
    reservation_id: UUID = Field(default_factory=uuid4)

    # References to other contexts
    user_id: UUID
    space_id: str

    # Time window (start/end are absolute UTC instants, date is the local day)
    date: date
    start_time: datetime
    end_time: datetime

    # Pricing snapshot
    hourly_rate_snapshot: Decimal
    duration_minutes: int
    total_amount: Decimal
    attendees: int = Field(ge=1, default=1)

    status: ReservationStatus = ReservationStatus.ACTIVE

    # Metadata
    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        user_id: UUID,
        space_id: str,
        date_only: date,
        time_range: TimeRange,
        pricing: PricingSnapshot,
        attendees: int = 1
    ) -> "Reservation":
        """Create a new ACTIVE reservation from an already validated window"""
        return Reservation(
            user_id=user_id,
            space_id=space_id,
            date=date_only,
            start_time=time_range.start,
            end_time=time_range.end,
            hourly_rate_snapshot=pricing.hourly_rate_snapshot,
            duration_minutes=pricing.duration_minutes,
            total_amount=pricing.total_amount,
            attendees=attendees,
            status=ReservationStatus.ACTIVE,
        )

    # ==================== MODIFICATION METHODS ====================
    def reschedule(
        self,
        space_id: str,
        date_only: date,
        time_range: TimeRange,
        pricing: PricingSnapshot
    ) -> None:
        """Move the reservation to a new validated window and refreeze pricing"""
        if self.status != ReservationStatus.ACTIVE:
            raise ValueError(
                f"Cannot edit reservation with status {self.status.value}"
            )

        self.space_id = space_id
        self.date = date_only
        self.start_time = time_range.start
        self.end_time = time_range.end
        self.hourly_rate_snapshot = pricing.hourly_rate_snapshot
        self.duration_minutes = pricing.duration_minutes
        self.total_amount = pricing.total_amount
        self._touch()

    # ==================== STATE TRANSITION METHODS ====================
    def cancel(self, now: datetime) -> None:
        """Cancel an active reservation that has not started yet"""
        if self.status != ReservationStatus.ACTIVE:
            raise ValueError(
                f"Cannot cancel reservation with status {self.status.value}"
            )

        if self.start_time <= now:
            raise ValueError("Cannot cancel a reservation that has already started")

        self.status = ReservationStatus.CANCELLED
        self._touch()

    def transition_to(self, status: ReservationStatus) -> None:
        """Apply a bulk status change decided by a batch job"""
        self.status = status
        self._touch()

    # ==================== QUERY METHODS ====================
    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start_time, end=self.end_time)

    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    def is_editable(self, now: datetime) -> bool:
        """Only active reservations that have not started can be edited"""
        return self.is_active() and self.start_time > now

    def _touch(self) -> None:
        self.modified_at = _utcnow()
        self.version += 1


class Setting(BaseModel):
    """Business-rule parameter stored as raw text plus its declared type"""

    key: str
    value: str
    value_type: SettingValueType = SettingValueType.STRING
    status: SettingStatus = SettingStatus.ACTIVE
    description: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True


class Liquidation(BaseModel):
    """Per-user billing aggregate. Append-only once created."""

    liquidation_id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    status: LiquidationStatus = LiquidationStatus.DRAFT
    total_amount: Decimal
    from_date: datetime
    to_date: datetime
    created_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True


class LiquidationItem(BaseModel):
    """Links one billed reservation to its liquidation"""

    item_id: UUID = Field(default_factory=uuid4)
    liquidation_id: UUID
    reservation_id: UUID
    amount: Decimal

    class Config:
        from_attributes = True
