"""Domain Exceptions

Business rejections from the validator are returned as values
(see ``ReservationRejection``); the exceptions here cover contract
violations, storage constraints and aggregate batch failures.
"""
from typing import Optional
from uuid import UUID


class InvalidTimeRange(ValueError):
    """Malformed HH:MM or a range whose end is not after its start"""


class NotFoundError(LookupError):
    """Requested record does not exist"""


class ReservationNotFoundError(NotFoundError):
    def __init__(self, reservation_id: UUID):
        super().__init__(f"Reservation {reservation_id} not found")
        self.reservation_id = reservation_id


class SpaceNotFoundError(NotFoundError):
    def __init__(self, space_id: str):
        super().__init__(f"Space {space_id} not found")
        self.space_id = space_id


class ReservationConflictError(Exception):
    """Storage-level exclusion constraint: overlapping ACTIVE rows in one space"""

    def __init__(self, space_id: str, conflicting_reservation_id: Optional[UUID] = None):
        super().__init__(
            f"Space {space_id} already has an active reservation in that time range"
        )
        self.space_id = space_id
        self.conflicting_reservation_id = conflicting_reservation_id


class DuplicateLiquidationItemError(Exception):
    """Storage-level unique constraint: one LiquidationItem per reservation"""

    def __init__(self, reservation_id: UUID):
        super().__init__(f"Reservation {reservation_id} is already billed")
        self.reservation_id = reservation_id


class BatchRunError(Exception):
    """A batch run failed as a whole; nothing it did was committed"""


class CompletionRunError(BatchRunError):
    pass


class LiquidationRunError(BatchRunError):
    pass
