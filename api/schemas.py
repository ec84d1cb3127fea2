"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import List, Optional

from domain.enums import SpaceType, SettingValueType, SettingStatus, LiquidationStatus


# ============================================================================
# SPACE SCHEMAS
# ============================================================================

class CreateSpaceRequest(BaseModel):
    """Create or replace space request DTO"""
    space_id: str
    name: str = ""
    type: SpaceType
    active: bool = True
    hourly_rate: Decimal = Field(ge=0)
    capacity: int = Field(ge=0, default=1)


class SpaceResponse(BaseModel):
    """Space response DTO"""
    space_id: str
    name: str
    type: str
    active: bool
    hourly_rate: Decimal
    capacity: int


# ============================================================================
# SETTING SCHEMAS
# ============================================================================

class PutSettingRequest(BaseModel):
    """Create or replace setting request DTO"""
    value: str
    value_type: SettingValueType = SettingValueType.STRING
    description: Optional[str] = None


class SettingResponse(BaseModel):
    """Setting response DTO"""
    key: str
    value: str
    value_type: SettingValueType
    status: SettingStatus
    description: Optional[str] = None
    updated_at: datetime


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class CreateReservationRequest(BaseModel):
    """Create reservation request DTO.

    ``date`` is YYYY-MM-DD and times are HH:MM in the booking timezone.
    """
    user_id: UUID
    space_id: str
    date: str
    start_time: str
    end_time: str
    attendees: int = Field(ge=1, default=1)


class UpdateReservationRequest(BaseModel):
    """Update reservation request DTO"""
    space_id: Optional[str] = None
    date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    hourly_rate_override: Optional[Decimal] = Field(None, ge=0)


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: UUID
    user_id: UUID
    space_id: str
    date: date
    start_time: datetime
    end_time: datetime
    status: str
    hourly_rate_snapshot: Decimal
    duration_minutes: int
    total_amount: Decimal
    attendees: int
    created_at: datetime
    modified_at: datetime
    version: int


class LimitOverrideRequest(BaseModel):
    """Limit override request DTO"""
    user_id: UUID
    space_id: str
    date: str
    start_time: str
    end_time: str
    limit_code: Optional[str] = None
    limit_message: Optional[str] = None


class LimitOverrideResponse(BaseModel):
    """Limit override response DTO"""
    message: str
    sent: bool
    recipients: List[str] = []


# ============================================================================
# OPERATIONS SCHEMAS
# ============================================================================

class CompletePreviewResponse(BaseModel):
    """Completion preview response DTO"""
    count: int
    sample: List[ReservationResponse]
    end_before: Optional[datetime] = None
    note: Optional[str] = None


class CompleteExecuteRequest(BaseModel):
    """Completion request DTO; ``ids`` wins over the other filters"""
    ids: Optional[List[UUID]] = None
    user_id: Optional[UUID] = None
    space_id: Optional[str] = None
    end_before: Optional[datetime] = None


class CompleteExecuteResponse(BaseModel):
    """Completion response DTO"""
    updated: int


# ============================================================================
# LIQUIDATION SCHEMAS
# ============================================================================

class GenerateLiquidationsRequest(BaseModel):
    """Liquidation run request DTO"""
    user_id: Optional[UUID] = None


class LiquidationRunResponse(BaseModel):
    """Liquidation run response DTO"""
    created_liquidations: int
    created_items: int
    updated_reservations: int
    message: Optional[str] = None


class UserBillingGroupResponse(BaseModel):
    """Per-user group in the liquidation preview"""
    user_id: UUID
    count: int
    total: Decimal
    reservations: List[ReservationResponse]


class LiquidationPreviewResponse(BaseModel):
    """Liquidation preview response DTO"""
    count: int
    total_amount: Decimal
    by_user: List[UserBillingGroupResponse]


class EligibleUsersResponse(BaseModel):
    """Users with at least one billable reservation"""
    user_ids: List[UUID]


class LiquidationItemResponse(BaseModel):
    """Liquidation item response DTO"""
    item_id: UUID
    reservation_id: UUID
    amount: Decimal


class LiquidationResponse(BaseModel):
    """Liquidation response DTO"""
    liquidation_id: UUID
    user_id: UUID
    status: LiquidationStatus
    total_amount: Decimal
    from_date: datetime
    to_date: datetime
    created_at: datetime
    items: List[LiquidationItemResponse] = []
