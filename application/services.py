"""Application Services - Business use cases"""
import asyncio
import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Tuple, Union
from uuid import UUID

from dateutil import tz
from pydantic import BaseModel

from application.pricing import build_snapshot
from application.reservation_validator import ReservationValidator
from application.settings_provider import SettingsProvider
from domain.entities import Liquidation, LiquidationItem, Reservation, Space
from domain.enums import BILLABLE_STATUSES, ReservationStatus
from domain.errors import (
    CompletionRunError, LiquidationRunError, ReservationConflictError,
    ReservationNotFoundError, SpaceNotFoundError,
)
from domain.notifications import NotificationPort
from domain.repositories import (
    LiquidationRepository, ReservationRepository, SpaceRepository, TransactionManager,
)
from domain.validation import ReservationCandidate, ReservationRejection
from domain.value_objects import LimitOverrideAlert

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# RESULTS
# ============================================================================

class BookingResult(BaseModel):
    """Either the persisted reservation or the rejection that stopped it"""
    reservation: Optional[Reservation] = None
    rejection: Optional[ReservationRejection] = None

    @property
    def ok(self) -> bool:
        return self.rejection is None


class OverrideRequestOutcome(BaseModel):
    sent: bool
    recipients: List[str] = []
    reason: Optional[str] = None


class CompletionPreview(BaseModel):
    count: int
    sample: List[Reservation]
    end_before: Optional[datetime] = None


class LiquidationRunResult(BaseModel):
    created_liquidations: int = 0
    created_items: int = 0
    updated_reservations: int = 0


class UserBillingGroup(BaseModel):
    user_id: UUID
    count: int
    total: Decimal
    reservations: List[Reservation]


class LiquidationPreview(BaseModel):
    count: int
    total_amount: Decimal
    by_user: List[UserBillingGroup]


def _group_by_user(reservations: Sequence[Reservation]) -> "OrderedDict[UUID, List[Reservation]]":
    groups: "OrderedDict[UUID, List[Reservation]]" = OrderedDict()
    for reservation in reservations:
        groups.setdefault(reservation.user_id, []).append(reservation)
    return groups


# ============================================================================
# BOOKING
# ============================================================================

class BookingService:
    """Service for reservation booking use cases"""

    def __init__(
        self,
        store: TransactionManager,
        reservations: ReservationRepository,
        spaces: SpaceRepository,
        validator: ReservationValidator,
        settings: SettingsProvider,
        notifier: NotificationPort,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.reservations = reservations
        self.spaces = spaces
        self.validator = validator
        self.settings = settings
        self.notifier = notifier
        self._clock = clock or _utcnow

    async def create(
        self,
        user_id: UUID,
        space_id: str,
        reservation_date: Union[date, str],
        start_time: str,
        end_time: str,
        attendees: int = 1
    ) -> BookingResult:
        """Validate, price and persist a new reservation in one transaction"""
        candidate = ReservationCandidate(
            user_id=user_id,
            space_id=space_id,
            reservation_date=reservation_date,
            start_time=start_time,
            end_time=end_time,
        )
        try:
            async with self.store.transaction():
                result = await self.validator.validate(candidate)
                if not result.ok:
                    return BookingResult(rejection=result)

                space = result.space
                rejection = self._capacity_rejection(space, attendees)
                if rejection:
                    return BookingResult(rejection=rejection)

                pricing = build_snapshot(
                    result.start_datetime,
                    result.end_datetime,
                    space_hourly_rate=space.hourly_rate,
                    shared=space.is_shared,
                    attendees=attendees,
                )
                reservation = Reservation.create(
                    user_id=user_id,
                    space_id=space.space_id,
                    date_only=result.date_only,
                    time_range=result.time_range,
                    pricing=pricing,
                    attendees=attendees,
                )
                await self.reservations.save(reservation)
        except ReservationConflictError as e:
            logger.info("Booking for space %s lost an overlap race", e.space_id)
            return BookingResult(rejection=self._conflict_rejection(e))

        logger.info(
            "Reservation %s created for user %s in space %s (%s)",
            reservation.reservation_id, user_id, reservation.space_id, reservation.total_amount,
        )
        return BookingResult(reservation=reservation)

    async def update(
        self,
        reservation_id: UUID,
        space_id: Optional[str] = None,
        reservation_date: Optional[Union[date, str]] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        hourly_rate_override: Optional[Decimal] = None
    ) -> BookingResult:
        """Move an ACTIVE, not yet started reservation to a new slot.

        Fields left as None keep their current value. The snapshot rate
        is reused unless ``hourly_rate_override`` is given.
        """
        try:
            async with self.store.transaction():
                reservation = await self.reservations.find_by_id(reservation_id)
                if not reservation:
                    raise ReservationNotFoundError(reservation_id)
                if not reservation.is_editable(self._clock()):
                    raise ValueError("Only active reservations that have not started can be edited")

                local_start = reservation.start_time.astimezone(self.validator.tz)
                local_end = reservation.end_time.astimezone(self.validator.tz)
                candidate = ReservationCandidate(
                    user_id=reservation.user_id,
                    space_id=space_id or reservation.space_id,
                    reservation_date=reservation_date or reservation.date,
                    start_time=start_time or local_start.strftime("%H:%M"),
                    end_time=end_time or local_end.strftime("%H:%M"),
                    reservation_id_to_exclude=reservation.reservation_id,
                )
                result = await self.validator.validate(candidate)
                if not result.ok:
                    return BookingResult(rejection=result)

                rejection = self._capacity_rejection(result.space, reservation.attendees)
                if rejection:
                    return BookingResult(rejection=rejection)

                rate = hourly_rate_override if hourly_rate_override is not None else reservation.hourly_rate_snapshot
                pricing = build_snapshot(
                    result.start_datetime,
                    result.end_datetime,
                    space_hourly_rate=result.space.hourly_rate,
                    hourly_rate_snapshot=rate,
                    shared=result.space.is_shared,
                    attendees=reservation.attendees,
                )
                reservation.reschedule(
                    space_id=result.space.space_id,
                    date_only=result.date_only,
                    time_range=result.time_range,
                    pricing=pricing,
                )
                await self.reservations.update(reservation)
        except ReservationConflictError as e:
            logger.info("Update of reservation %s lost an overlap race", reservation_id)
            return BookingResult(rejection=self._conflict_rejection(e))

        logger.info("Reservation %s rescheduled", reservation_id)
        return BookingResult(reservation=reservation)

    async def cancel(self, reservation_id: UUID, now: Optional[datetime] = None) -> Reservation:
        """Cancel an ACTIVE reservation that has not started"""
        async with self.store.transaction():
            reservation = await self.reservations.find_by_id(reservation_id)
            if not reservation:
                raise ReservationNotFoundError(reservation_id)
            reservation.cancel(now or self._clock())
            await self.reservations.update(reservation)

        logger.info("Reservation %s cancelled", reservation_id)
        return reservation

    async def get(self, reservation_id: UUID) -> Reservation:
        reservation = await self.reservations.find_by_id(reservation_id)
        if not reservation:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    async def list(self, user_id: Optional[UUID] = None) -> List[Reservation]:
        if user_id:
            return await self.reservations.find_by_user_id(user_id)
        return await self.reservations.find_all()

    async def request_limit_override(
        self,
        user_id: UUID,
        space_id: str,
        reservation_date: str,
        start_time: str,
        end_time: str,
        limit_code: Optional[str] = None,
        limit_message: Optional[str] = None
    ) -> OverrideRequestOutcome:
        """Ask the admins to allow a booking that broke a limit"""
        space = await self.spaces.find_by_id(space_id)
        if not space:
            raise SpaceNotFoundError(space_id)

        recipients = await self.settings.limit_alert_recipients()
        if not recipients:
            logger.warning("Limit override request from user %s skipped: no recipients configured", user_id)
            return OverrideRequestOutcome(sent=False, reason="No limit alert recipients configured")

        alert = LimitOverrideAlert(
            recipients=recipients,
            user_id=user_id,
            space_id=space.space_id,
            space_name=space.name,
            space_type=space.type.value,
            date=str(reservation_date),
            start_time=start_time,
            end_time=end_time,
            limit_reason=limit_message or f"Limit code: {limit_code or 'UNKNOWN'}",
        )
        await self.notifier.send_limit_override_alert(alert)
        return OverrideRequestOutcome(sent=True, recipients=recipients)

    @staticmethod
    def _capacity_rejection(space: Space, attendees: int) -> Optional[ReservationRejection]:
        """Shared spaces cannot hold more attendees than their capacity"""
        if space.is_shared and space.capacity and attendees > space.capacity:
            return ReservationRejection.invalid(
                f"Space {space.space_id} holds at most {space.capacity} people",
                capacity=space.capacity,
                attendees=attendees,
            )
        return None

    @staticmethod
    def _conflict_rejection(error: ReservationConflictError) -> ReservationRejection:
        if error.conflicting_reservation_id:
            return ReservationRejection.space_overlap(
                conflicting_reservation_id=str(error.conflicting_reservation_id)
            )
        return ReservationRejection.space_overlap()


# ============================================================================
# COMPLETION SWEEP
# ============================================================================

class CompletionSweeper:
    """Marks elapsed ACTIVE reservations as COMPLETED, on demand or daily"""

    SAMPLE_SIZE = 50

    def __init__(
        self,
        store: TransactionManager,
        reservations: ReservationRepository,
        settings: SettingsProvider,
        timezone_name: str = "Europe/Madrid",
        retry_seconds: float = 3600.0,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.reservations = reservations
        self.settings = settings
        self.tz = tz.gettz(timezone_name)
        if self.tz is None:
            raise ValueError(f"Unknown timezone {timezone_name}")
        self.retry_seconds = retry_seconds
        self._clock = clock or _utcnow
        self._task: Optional[asyncio.Task] = None

    def _filters(
        self,
        now: datetime,
        ids: Optional[Sequence[UUID]],
        user_id: Optional[UUID],
        space_id: Optional[str],
        end_before: Optional[datetime]
    ) -> dict:
        # An explicit id list ignores the other filters but never completes future rows
        if ids:
            return {"ids": list(ids), "end_before": now}
        return {"user_id": user_id, "space_id": space_id, "end_before": end_before or now}

    async def complete_expired(self, now: Optional[datetime] = None) -> int:
        """ACTIVE reservations with end_time <= now become COMPLETED"""
        return await self.complete(now=now)

    async def complete(
        self,
        now: Optional[datetime] = None,
        ids: Optional[Sequence[UUID]] = None,
        user_id: Optional[UUID] = None,
        space_id: Optional[str] = None,
        end_before: Optional[datetime] = None
    ) -> int:
        filters = self._filters(now or self._clock(), ids, user_id, space_id, end_before)
        try:
            async with self.store.transaction():
                count = await self.reservations.update_status_where(
                    ReservationStatus.COMPLETED, [ReservationStatus.ACTIVE], **filters
                )
        except Exception as e:
            raise CompletionRunError(f"Completion run failed: {e}") from e

        logger.info("Completion run marked %d reservations as COMPLETED", count)
        return count

    async def preview(
        self,
        now: Optional[datetime] = None,
        user_id: Optional[UUID] = None,
        space_id: Optional[str] = None,
        end_before: Optional[datetime] = None
    ) -> CompletionPreview:
        filters = self._filters(now or self._clock(), None, user_id, space_id, end_before)
        rows = await self.reservations.find_where([ReservationStatus.ACTIVE], **filters)
        return CompletionPreview(
            count=len(rows),
            sample=rows[:self.SAMPLE_SIZE],
            end_before=filters["end_before"],
        )

    async def run_now(self) -> int:
        return await self.complete_expired(self._clock())

    # ==================== SCHEDULING ====================
    async def seconds_until_next_run(self, now: Optional[datetime] = None) -> float:
        """Delay until the next configured local hour:minute"""
        now = (now or self._clock()).astimezone(timezone.utc)
        schedule = await self.settings.auto_complete_schedule()
        local_now = now.astimezone(self.tz)
        next_local = local_now.replace(
            hour=schedule.hour, minute=schedule.minute, second=0, microsecond=0
        )
        if next_local <= local_now:
            next_local = next_local + timedelta(days=1)
        next_run = tz.resolve_imaginary(next_local).astimezone(timezone.utc)
        return max(0.0, (next_run - now).total_seconds())

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the daily sweep on the running event loop"""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run_forever())
        logger.info("Completion sweeper started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Completion sweeper stopped")

    async def _run_forever(self) -> None:
        delay: Optional[float] = None
        while True:
            try:
                if delay is None:
                    delay = await self.seconds_until_next_run()
                await asyncio.sleep(delay)
                await self.run_now()
                delay = None
            except Exception:
                logger.exception("Completion sweep failed; retrying in %.0f seconds", self.retry_seconds)
                delay = self.retry_seconds


# ============================================================================
# LIQUIDATION
# ============================================================================

class LiquidationGenerator:
    """Bills COMPLETED/PENALIZED reservations that have no liquidation item"""

    def __init__(
        self,
        store: TransactionManager,
        reservations: ReservationRepository,
        liquidations: LiquidationRepository
    ):
        self.store = store
        self.reservations = reservations
        self.liquidations = liquidations

    async def generate(self, user_id: Optional[UUID] = None) -> LiquidationRunResult:
        """Create one DRAFT liquidation per user and mark its reservations INVOICED.

        The run commits as a whole; any failure rolls back every
        liquidation, item and status change and is raised as
        LiquidationRunError.
        """
        result = LiquidationRunResult()
        try:
            async with self.store.transaction():
                eligible = await self.reservations.find_unbilled(user_id)
                for uid, rows in _group_by_user(eligible).items():
                    liquidation = Liquidation(
                        user_id=uid,
                        total_amount=sum((r.total_amount for r in rows), Decimal("0.00")),
                        from_date=rows[0].end_time,
                        to_date=rows[-1].end_time,
                    )
                    await self.liquidations.save(liquidation)
                    result.created_liquidations += 1

                    for reservation in rows:
                        await self.liquidations.save_item(LiquidationItem(
                            liquidation_id=liquidation.liquidation_id,
                            reservation_id=reservation.reservation_id,
                            amount=reservation.total_amount,
                        ))
                        result.created_items += 1

                    result.updated_reservations += await self.reservations.update_status_where(
                        ReservationStatus.INVOICED,
                        BILLABLE_STATUSES,
                        ids=[r.reservation_id for r in rows],
                    )
        except Exception as e:
            logger.error("Liquidation run failed and was rolled back: %s", e)
            raise LiquidationRunError(f"Liquidation run failed: {e}") from e

        logger.info(
            "Liquidation run created %d liquidations, %d items, invoiced %d reservations",
            result.created_liquidations, result.created_items, result.updated_reservations,
        )
        return result

    async def preview(self, user_id: Optional[UUID] = None) -> LiquidationPreview:
        eligible = await self.reservations.find_unbilled(user_id)
        groups = [
            UserBillingGroup(
                user_id=uid,
                count=len(rows),
                total=sum((r.total_amount for r in rows), Decimal("0.00")),
                reservations=rows,
            )
            for uid, rows in _group_by_user(eligible).items()
        ]
        return LiquidationPreview(
            count=len(eligible),
            total_amount=sum((g.total for g in groups), Decimal("0.00")),
            by_user=groups,
        )

    async def eligible_users(self) -> List[UUID]:
        return list(_group_by_user(await self.reservations.find_unbilled()).keys())

    async def liquidations_for_user(self, user_id: UUID) -> List[Tuple[Liquidation, List[LiquidationItem]]]:
        result = []
        for liquidation in await self.liquidations.find_by_user_id(user_id):
            result.append((liquidation, await self.liquidations.find_items(liquidation.liquidation_id)))
        return result
