"""In-Memory Repository Implementations"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Hashable, Optional, List, Dict, Iterable, Sequence, Tuple
from uuid import UUID
from datetime import date, datetime

from domain.repositories import (
    TransactionManager, SpaceRepository, ReservationRepository,
    LiquidationRepository, SettingRepository,
)
from domain.entities import Reservation, Space, Setting, Liquidation, LiquidationItem
from domain.enums import ReservationStatus, SpaceType, SettingStatus, BILLABLE_STATUSES
from domain.errors import ReservationConflictError, DuplicateLiquidationItemError

logger = logging.getLogger(__name__)


_MISSING = object()


class InMemoryStore(TransactionManager):
    """Tables shared by the in-memory repositories.

    ``transaction()`` serializes writers on one lock. Repositories call
    ``record()`` before writing a row; when the block raises, every row
    written inside it goes back to its committed state.
    """

    def __init__(self):
        self.spaces: Dict[str, Space] = {}
        self.reservations: Dict[UUID, Reservation] = {}
        self.liquidations: Dict[UUID, Liquidation] = {}
        self.liquidation_items: Dict[UUID, LiquidationItem] = {}
        self.settings: Dict[str, Setting] = {}
        self._lock = asyncio.Lock()
        self._undo: Optional[Dict[Tuple[str, Hashable], Any]] = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._lock:
            self._undo = {}
            try:
                yield
            except BaseException:
                self._rollback()
                raise
            finally:
                self._undo = None

    def record(self, table: str, key: Hashable) -> None:
        """Keep the committed state of a row before its first write in the open transaction"""
        if self._undo is None or (table, key) in self._undo:
            return
        row = getattr(self, table).get(key)
        self._undo[(table, key)] = _MISSING if row is None else row.model_copy(deep=True)

    def _rollback(self) -> None:
        for (table, key), row in self._undo.items():
            rows = getattr(self, table)
            if row is _MISSING:
                rows.pop(key, None)
            else:
                rows[key] = row
        logger.debug("Transaction rolled back %d rows", len(self._undo))


def _sorted_by_end(reservations: Iterable[Reservation]) -> List[Reservation]:
    return sorted(reservations, key=lambda r: (r.end_time, str(r.reservation_id)))


class InMemorySpaceRepository(SpaceRepository):
    """In-memory implementation of SpaceRepository"""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def save(self, space: Space) -> Space:
        self._store.record("spaces", space.space_id)
        self._store.spaces[space.space_id] = space
        return space

    async def find_by_id(self, space_id: str) -> Optional[Space]:
        return self._store.spaces.get(space_id)

    async def find_all(self) -> List[Space]:
        return sorted(self._store.spaces.values(), key=lambda s: s.space_id)


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository"""

    def __init__(self, store: InMemoryStore):
        self._store = store

    def _check_exclusion(self, reservation: Reservation) -> None:
        """No two ACTIVE rows of one space may intersect"""
        if not reservation.is_active():
            return
        for other in self._store.reservations.values():
            if (
                other.reservation_id != reservation.reservation_id
                and other.is_active()
                and other.space_id == reservation.space_id
                and other.time_range.overlaps(reservation.time_range)
            ):
                raise ReservationConflictError(reservation.space_id, other.reservation_id)

    def _space_type(self, reservation: Reservation) -> Optional[SpaceType]:
        space = self._store.spaces.get(reservation.space_id)
        return space.type if space else None

    async def save(self, reservation: Reservation) -> Reservation:
        """Insert reservation"""
        self._store.record("reservations", reservation.reservation_id)
        self._check_exclusion(reservation)
        self._store.reservations[reservation.reservation_id] = reservation
        return reservation

    async def update(self, reservation: Reservation) -> Reservation:
        """Update reservation"""
        if reservation.reservation_id not in self._store.reservations:
            raise ValueError("Reservation not found")
        self._store.record("reservations", reservation.reservation_id)
        self._check_exclusion(reservation)
        self._store.reservations[reservation.reservation_id] = reservation
        return reservation

    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        """Detached copy; changes reach the store only through update()"""
        reservation = self._store.reservations.get(reservation_id)
        return reservation.model_copy(deep=True) if reservation else None

    async def find_all(self) -> List[Reservation]:
        return sorted(self._store.reservations.values(), key=lambda r: r.start_time)

    async def find_by_user_id(self, user_id: UUID) -> List[Reservation]:
        return sorted(
            (r for r in self._store.reservations.values() if r.user_id == user_id),
            key=lambda r: r.start_time,
        )

    async def find_active_for_user_in_dates(
        self,
        user_id: UUID,
        space_type: SpaceType,
        from_date: date,
        to_date: date,
        exclude_id: Optional[UUID] = None
    ) -> List[Reservation]:
        return [
            r for r in self._store.reservations.values()
            if r.user_id == user_id
            and r.is_active()
            and r.reservation_id != exclude_id
            and from_date <= r.date < to_date
            and self._space_type(r) == space_type
        ]

    async def find_active_overlapping_for_user(
        self,
        user_id: UUID,
        space_type: SpaceType,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None
    ) -> List[Reservation]:
        return [
            r for r in self._store.reservations.values()
            if r.user_id == user_id
            and r.is_active()
            and r.reservation_id != exclude_id
            and r.start_time < end and r.end_time > start
            and self._space_type(r) == space_type
        ]

    async def find_active_overlapping_in_space(
        self,
        space_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None
    ) -> Optional[Reservation]:
        for r in _sorted_by_end(self._store.reservations.values()):
            if (
                r.space_id == space_id
                and r.is_active()
                and r.reservation_id != exclude_id
                and r.start_time < end and r.end_time > start
            ):
                return r
        return None

    def _matching(
        self,
        statuses: Iterable[ReservationStatus],
        ids: Optional[Sequence[UUID]],
        user_id: Optional[UUID],
        space_id: Optional[str],
        end_before: Optional[datetime]
    ) -> List[Reservation]:
        allowed = set(statuses)
        wanted_ids = set(ids) if ids is not None else None
        return _sorted_by_end(
            r for r in self._store.reservations.values()
            if r.status in allowed
            and (wanted_ids is None or r.reservation_id in wanted_ids)
            and (user_id is None or r.user_id == user_id)
            and (space_id is None or r.space_id == space_id)
            and (end_before is None or r.end_time <= end_before)
        )

    async def find_where(
        self,
        statuses: Iterable[ReservationStatus],
        ids: Optional[Sequence[UUID]] = None,
        user_id: Optional[UUID] = None,
        space_id: Optional[str] = None,
        end_before: Optional[datetime] = None
    ) -> List[Reservation]:
        return self._matching(statuses, ids, user_id, space_id, end_before)

    async def update_status_where(
        self,
        new_status: ReservationStatus,
        statuses: Iterable[ReservationStatus],
        ids: Optional[Sequence[UUID]] = None,
        user_id: Optional[UUID] = None,
        space_id: Optional[str] = None,
        end_before: Optional[datetime] = None
    ) -> int:
        rows = self._matching(statuses, ids, user_id, space_id, end_before)
        for reservation in rows:
            self._store.record("reservations", reservation.reservation_id)
            reservation.transition_to(new_status)
        return len(rows)

    async def find_unbilled(self, user_id: Optional[UUID] = None) -> List[Reservation]:
        billed = {item.reservation_id for item in self._store.liquidation_items.values()}
        return [
            r for r in self._matching(BILLABLE_STATUSES, None, user_id, None, None)
            if r.reservation_id not in billed
        ]


class InMemoryLiquidationRepository(LiquidationRepository):
    """In-memory implementation of LiquidationRepository"""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def save(self, liquidation: Liquidation) -> Liquidation:
        self._store.record("liquidations", liquidation.liquidation_id)
        self._store.liquidations[liquidation.liquidation_id] = liquidation
        return liquidation

    async def save_item(self, item: LiquidationItem) -> LiquidationItem:
        if await self.find_item_by_reservation_id(item.reservation_id) is not None:
            raise DuplicateLiquidationItemError(item.reservation_id)
        self._store.record("liquidation_items", item.item_id)
        self._store.liquidation_items[item.item_id] = item
        return item

    async def find_by_id(self, liquidation_id: UUID) -> Optional[Liquidation]:
        return self._store.liquidations.get(liquidation_id)

    async def find_by_user_id(self, user_id: UUID) -> List[Liquidation]:
        return sorted(
            (l for l in self._store.liquidations.values() if l.user_id == user_id),
            key=lambda l: l.created_at,
        )

    async def find_items(self, liquidation_id: UUID) -> List[LiquidationItem]:
        return [i for i in self._store.liquidation_items.values() if i.liquidation_id == liquidation_id]

    async def find_item_by_reservation_id(self, reservation_id: UUID) -> Optional[LiquidationItem]:
        for item in self._store.liquidation_items.values():
            if item.reservation_id == reservation_id:
                return item
        return None


class InMemorySettingRepository(SettingRepository):
    """In-memory implementation of SettingRepository"""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def find_active_map(self) -> Dict[str, Setting]:
        return {
            key: s for key, s in self._store.settings.items()
            if s.status == SettingStatus.ACTIVE
        }

    async def find_by_key(self, key: str) -> Optional[Setting]:
        return self._store.settings.get(key)

    async def find_all(self) -> List[Setting]:
        return [self._store.settings[k] for k in sorted(self._store.settings)]

    async def save(self, setting: Setting) -> Setting:
        self._store.record("settings", setting.key)
        self._store.settings[setting.key] = setting
        return setting
