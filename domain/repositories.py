"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from typing import AsyncContextManager, Dict, Iterable, Optional, List, Sequence
from uuid import UUID
from datetime import date, datetime

from domain.entities import Reservation, Space, Setting, Liquidation, LiquidationItem
from domain.enums import ReservationStatus, SpaceType


class TransactionManager(ABC):
    """Atomic multi-statement unit of work"""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """Serialize writers and roll back everything on exception"""
        pass


class SpaceRepository(ABC):
    """Repository interface for Space records"""

    @abstractmethod
    async def save(self, space: Space) -> Space:
        """Save space"""
        pass

    @abstractmethod
    async def find_by_id(self, space_id: str) -> Optional[Space]:
        """Find space by ID"""
        pass

    @abstractmethod
    async def find_all(self) -> List[Space]:
        """Find all spaces"""
        pass


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate

    Implementations must reject a save/update that would leave two ACTIVE
    reservations of the same space with intersecting ranges by raising
    ``ReservationConflictError``.
    """

    @abstractmethod
    async def save(self, reservation: Reservation) -> Reservation:
        """Insert reservation"""
        pass

    @abstractmethod
    async def update(self, reservation: Reservation) -> Reservation:
        """Replace an existing reservation"""
        pass

    @abstractmethod
    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        pass

    @abstractmethod
    async def find_all(self) -> List[Reservation]:
        """Find all reservations"""
        pass

    @abstractmethod
    async def find_by_user_id(self, user_id: UUID) -> List[Reservation]:
        """Find reservations for a user ordered by start time"""
        pass

    @abstractmethod
    async def find_active_for_user_in_dates(
        self,
        user_id: UUID,
        space_type: SpaceType,
        from_date: date,
        to_date: date,
        exclude_id: Optional[UUID] = None
    ) -> List[Reservation]:
        """ACTIVE reservations of a user for one space type with from_date <= date < to_date"""
        pass

    @abstractmethod
    async def find_active_overlapping_for_user(
        self,
        user_id: UUID,
        space_type: SpaceType,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None
    ) -> List[Reservation]:
        """ACTIVE reservations of a user for one space type intersecting [start, end)"""
        pass

    @abstractmethod
    async def find_active_overlapping_in_space(
        self,
        space_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None
    ) -> Optional[Reservation]:
        """First ACTIVE reservation in a space intersecting [start, end)"""
        pass

    @abstractmethod
    async def find_where(
        self,
        statuses: Iterable[ReservationStatus],
        ids: Optional[Sequence[UUID]] = None,
        user_id: Optional[UUID] = None,
        space_id: Optional[str] = None,
        end_before: Optional[datetime] = None
    ) -> List[Reservation]:
        """Filtered query ordered by end time ascending"""
        pass

    @abstractmethod
    async def update_status_where(
        self,
        new_status: ReservationStatus,
        statuses: Iterable[ReservationStatus],
        ids: Optional[Sequence[UUID]] = None,
        user_id: Optional[UUID] = None,
        space_id: Optional[str] = None,
        end_before: Optional[datetime] = None
    ) -> int:
        """Bulk status transition; returns the number of rows changed"""
        pass

    @abstractmethod
    async def find_unbilled(self, user_id: Optional[UUID] = None) -> List[Reservation]:
        """COMPLETED/PENALIZED reservations without a LiquidationItem, ordered by end time"""
        pass


class LiquidationRepository(ABC):
    """Repository interface for the Liquidation ledger"""

    @abstractmethod
    async def save(self, liquidation: Liquidation) -> Liquidation:
        """Insert liquidation"""
        pass

    @abstractmethod
    async def save_item(self, item: LiquidationItem) -> LiquidationItem:
        """Insert item; raises DuplicateLiquidationItemError if the reservation is billed"""
        pass

    @abstractmethod
    async def find_by_id(self, liquidation_id: UUID) -> Optional[Liquidation]:
        """Find liquidation by ID"""
        pass

    @abstractmethod
    async def find_by_user_id(self, user_id: UUID) -> List[Liquidation]:
        """Find liquidations for a user"""
        pass

    @abstractmethod
    async def find_items(self, liquidation_id: UUID) -> List[LiquidationItem]:
        """Find items of a liquidation"""
        pass

    @abstractmethod
    async def find_item_by_reservation_id(self, reservation_id: UUID) -> Optional[LiquidationItem]:
        """Find the item billing a reservation, if any"""
        pass


class SettingRepository(ABC):
    """Repository interface for business-rule settings"""

    @abstractmethod
    async def find_active_map(self) -> Dict[str, Setting]:
        """All ACTIVE settings keyed by setting key"""
        pass

    @abstractmethod
    async def find_by_key(self, key: str) -> Optional[Setting]:
        """Find setting by key regardless of status"""
        pass

    @abstractmethod
    async def find_all(self) -> List[Setting]:
        """Find all settings ordered by key"""
        pass

    @abstractmethod
    async def save(self, setting: Setting) -> Setting:
        """Insert or replace setting"""
        pass
