import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Depends

from api.schemas import (
    # Spaces
    CreateSpaceRequest, SpaceResponse,
    # Settings
    PutSettingRequest, SettingResponse,
    # Reservations
    CreateReservationRequest, UpdateReservationRequest, ReservationResponse,
    LimitOverrideRequest, LimitOverrideResponse,
    # Operations
    CompletePreviewResponse, CompleteExecuteRequest, CompleteExecuteResponse,
    # Liquidations
    GenerateLiquidationsRequest, LiquidationRunResponse, LiquidationPreviewResponse,
    UserBillingGroupResponse, EligibleUsersResponse, LiquidationResponse, LiquidationItemResponse,
)

from application.reservation_validator import ReservationValidator
from application.services import BookingService, CompletionSweeper, LiquidationGenerator
from application.settings_provider import SettingsCache, SettingsProvider
from domain.entities import Space
from domain.enums import ReservationStatus, SpaceType, SettingValueType, ValidationErrorCode
from domain.errors import BatchRunError, NotFoundError
from domain.validation import ReservationRejection
from infrastructure.config import get_settings
from infrastructure.logging_config import configure_logging
from infrastructure.notifications import LoggingNotifier
from infrastructure.repositories.in_memory_repositories import (
    InMemoryStore, InMemorySpaceRepository, InMemoryReservationRepository,
    InMemoryLiquidationRepository, InMemorySettingRepository,
)

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    description="Coworking reservation constraint and settlement engine",
    version=settings.app_version
)

# Initialize repositories
store = InMemoryStore()
space_repo = InMemorySpaceRepository(store)
reservation_repo = InMemoryReservationRepository(store)
liquidation_repo = InMemoryLiquidationRepository(store)
setting_repo = InMemorySettingRepository(store)

# One settings cache per process, reset on every write through the provider
settings_provider = SettingsProvider(
    setting_repo, SettingsCache(ttl_seconds=settings.settings_cache_ttl_seconds)
)
validator = ReservationValidator(
    reservation_repo, space_repo, settings_provider, settings.booking_timezone
)
notifier = LoggingNotifier()
sweeper = CompletionSweeper(
    store, reservation_repo, settings_provider,
    timezone_name=settings.booking_timezone,
    retry_seconds=settings.auto_complete_retry_seconds,
)

# Dependency injection
def get_booking_service() -> BookingService:
    return BookingService(store, reservation_repo, space_repo, validator, settings_provider, notifier)

def get_settings_provider() -> SettingsProvider:
    return settings_provider

def get_completion_sweeper() -> CompletionSweeper:
    return sweeper

def get_liquidation_generator() -> LiquidationGenerator:
    return LiquidationGenerator(store, reservation_repo, liquidation_repo)

# ============================================================================
# LIFECYCLE
# ============================================================================

@app.on_event("startup")
async def on_startup():
    await settings_provider.ensure_defaults()
    if settings.auto_complete_enabled:
        sweeper.start()

@app.on_event("shutdown")
async def on_shutdown():
    await sweeper.stop()

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": settings.app_name, "sweeper_running": sweeper.running}

@app.get("/api/enums/reservation-status", tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all reservation statuses"""
    return {"statuses": [s.value for s in ReservationStatus]}

@app.get("/api/enums/space-type", tags=["Enum Reference"])
async def get_space_types():
    """Get all space types"""
    return {
        "space_types": [
            {"name": t.value, "shared": t.is_shared} for t in SpaceType
        ]
    }

@app.get("/api/enums/setting-value-type", tags=["Enum Reference"])
async def get_setting_value_types():
    """Get all setting value types"""
    return {"value_types": [t.value for t in SettingValueType]}

@app.get("/api/enums/validation-error-code", tags=["Enum Reference"])
async def get_validation_error_codes():
    """Get all booking rejection codes"""
    return {"codes": [c.value for c in ValidationErrorCode]}

# ============================================================================
# SPACE ENDPOINTS
# ============================================================================

@app.post("/api/spaces", response_model=SpaceResponse, status_code=201, tags=["Spaces"])
async def upsert_space(request: CreateSpaceRequest):
    """Create or replace a space"""
    space = await space_repo.save(Space(**request.model_dump()))
    return _space_to_response(space)

@app.get("/api/spaces", response_model=List[SpaceResponse], tags=["Spaces"])
async def get_spaces():
    """Get all spaces"""
    return [_space_to_response(s) for s in await space_repo.find_all()]

@app.get("/api/spaces/{space_id}", response_model=SpaceResponse, tags=["Spaces"])
async def get_space(space_id: str):
    """Get space by ID"""
    space = await space_repo.find_by_id(space_id)
    if not space:
        raise HTTPException(status_code=404, detail="Space not found")
    return _space_to_response(space)

# ============================================================================
# SETTING ENDPOINTS
# ============================================================================

@app.get("/api/settings", response_model=List[SettingResponse], tags=["Settings"])
async def get_all_settings(provider: SettingsProvider = Depends(get_settings_provider)):
    """Get all settings, active and inactive"""
    return [_setting_to_response(s) for s in await provider.list_settings()]

@app.put("/api/settings/{key}", response_model=SettingResponse, tags=["Settings"])
async def put_setting(
    key: str,
    request: PutSettingRequest,
    provider: SettingsProvider = Depends(get_settings_provider)
):
    """Create or replace a setting"""
    setting = await provider.put(key, request.value, request.value_type, request.description)
    return _setting_to_response(setting)

@app.delete("/api/settings/{key}", response_model=SettingResponse, tags=["Settings"])
async def deactivate_setting(key: str, provider: SettingsProvider = Depends(get_settings_provider)):
    """Deactivate a setting"""
    setting = await provider.deactivate(key)
    if not setting:
        raise HTTPException(status_code=404, detail="Setting not found")
    return _setting_to_response(setting)

# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@app.post("/api/reservations", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def create_reservation(
    request: CreateReservationRequest,
    service: BookingService = Depends(get_booking_service)
):
    """Create new reservation"""
    result = await service.create(
        user_id=request.user_id,
        space_id=request.space_id,
        reservation_date=request.date,
        start_time=request.start_time,
        end_time=request.end_time,
        attendees=request.attendees
    )
    if not result.ok:
        raise _rejection_to_http(result.rejection)
    return _reservation_to_response(result.reservation)

@app.get("/api/reservations", response_model=List[ReservationResponse], tags=["Reservations"])
async def get_reservations(
    user_id: Optional[UUID] = None,
    service: BookingService = Depends(get_booking_service)
):
    """Get all reservations, optionally for one user"""
    return [_reservation_to_response(r) for r in await service.list(user_id)]

@app.post("/api/reservations/limit-override-request", response_model=LimitOverrideResponse, tags=["Reservations"])
async def request_limit_override(
    request: LimitOverrideRequest,
    service: BookingService = Depends(get_booking_service)
):
    """Ask the admins to allow a booking that exceeded a limit"""
    try:
        outcome = await service.request_limit_override(
            user_id=request.user_id,
            space_id=request.space_id,
            reservation_date=request.date,
            start_time=request.start_time,
            end_time=request.end_time,
            limit_code=request.limit_code,
            limit_message=request.limit_message
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    message = (
        "Your request was registered. An administrator will contact you shortly."
        if outcome.sent else outcome.reason
    )
    return LimitOverrideResponse(message=message, sent=outcome.sent, recipients=outcome.recipients)

@app.get("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation(
    reservation_id: UUID,
    service: BookingService = Depends(get_booking_service)
):
    """Get reservation by ID"""
    try:
        return _reservation_to_response(await service.get(reservation_id))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Reservation not found")

@app.put("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def update_reservation(
    reservation_id: UUID,
    request: UpdateReservationRequest,
    service: BookingService = Depends(get_booking_service)
):
    """Move reservation to a new slot"""
    try:
        result = await service.update(
            reservation_id=reservation_id,
            space_id=request.space_id,
            reservation_date=request.date,
            start_time=request.start_time,
            end_time=request.end_time,
            hourly_rate_override=request.hourly_rate_override
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Reservation not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.ok:
        raise _rejection_to_http(result.rejection)
    return _reservation_to_response(result.reservation)

@app.post("/api/reservations/{reservation_id}/cancel", response_model=ReservationResponse, tags=["Reservations"])
async def cancel_reservation(
    reservation_id: UUID,
    service: BookingService = Depends(get_booking_service)
):
    """Cancel reservation"""
    try:
        return _reservation_to_response(await service.cancel(reservation_id))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Reservation not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

# ============================================================================
# ADMIN OPERATION ENDPOINTS
# ============================================================================

@app.get("/api/admin/operations/complete-preview", response_model=CompletePreviewResponse, tags=["Operations"])
async def complete_preview(
    user_id: Optional[UUID] = None,
    space_id: Optional[str] = None,
    end_before: Optional[datetime] = None,
    service: CompletionSweeper = Depends(get_completion_sweeper)
):
    """Preview ACTIVE reservations that would become COMPLETED"""
    preview = await service.preview(user_id=user_id, space_id=space_id, end_before=end_before)
    return CompletePreviewResponse(
        count=preview.count,
        sample=[_reservation_to_response(r) for r in preview.sample],
        end_before=preview.end_before,
        note=f"Showing {len(preview.sample)} of {preview.count}" if preview.count > len(preview.sample) else None
    )

@app.post("/api/admin/operations/complete-execute", response_model=CompleteExecuteResponse, tags=["Operations"])
async def complete_execute(
    request: CompleteExecuteRequest,
    service: CompletionSweeper = Depends(get_completion_sweeper)
):
    """Mark elapsed ACTIVE reservations as COMPLETED"""
    try:
        updated = await service.complete(
            ids=request.ids,
            user_id=request.user_id,
            space_id=request.space_id,
            end_before=request.end_before
        )
    except BatchRunError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return CompleteExecuteResponse(updated=updated)

@app.get("/api/admin/operations/liquidations/eligible-users", response_model=EligibleUsersResponse, tags=["Operations"])
async def liquidation_eligible_users(service: LiquidationGenerator = Depends(get_liquidation_generator)):
    """Users with at least one billable, unbilled reservation"""
    return EligibleUsersResponse(user_ids=await service.eligible_users())

@app.get("/api/admin/operations/liquidations/preview", response_model=LiquidationPreviewResponse, tags=["Operations"])
async def liquidation_preview(
    user_id: Optional[UUID] = None,
    service: LiquidationGenerator = Depends(get_liquidation_generator)
):
    """Preview what a liquidation run would bill"""
    preview = await service.preview(user_id)
    return LiquidationPreviewResponse(
        count=preview.count,
        total_amount=preview.total_amount,
        by_user=[
            UserBillingGroupResponse(
                user_id=g.user_id,
                count=g.count,
                total=g.total,
                reservations=[_reservation_to_response(r) for r in g.reservations]
            )
            for g in preview.by_user
        ]
    )

@app.post("/api/admin/operations/liquidations/generate", response_model=LiquidationRunResponse, tags=["Operations"])
async def generate_liquidations(
    request: GenerateLiquidationsRequest,
    service: LiquidationGenerator = Depends(get_liquidation_generator)
):
    """Bill every eligible reservation, grouped per user"""
    try:
        result = await service.generate(request.user_id)
    except BatchRunError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return LiquidationRunResponse(
        **result.model_dump(),
        message=None if result.created_liquidations else "No reservations pending billing"
    )

@app.get("/api/users/{user_id}/liquidations", response_model=List[LiquidationResponse], tags=["Liquidations"])
async def get_user_liquidations(
    user_id: UUID,
    service: LiquidationGenerator = Depends(get_liquidation_generator)
):
    """Get a user's liquidations with their items"""
    return [
        _liquidation_to_response(liquidation, items)
        for liquidation, items in await service.liquidations_for_user(user_id)
    ]

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _rejection_to_http(rejection: ReservationRejection) -> HTTPException:
    """Convert a booking rejection to a 400 carrying its code and context"""
    return HTTPException(
        status_code=400,
        detail={
            "message": rejection.message,
            "code": rejection.code.value,
            **rejection.context,
            "can_request_override": True,
        }
    )

def _space_to_response(space) -> SpaceResponse:
    """Convert Space entity to SpaceResponse"""
    return SpaceResponse(
        space_id=space.space_id,
        name=space.name,
        type=space.type.value,
        active=space.active,
        hourly_rate=space.hourly_rate,
        capacity=space.capacity
    )

def _setting_to_response(setting) -> SettingResponse:
    """Convert Setting entity to SettingResponse"""
    return SettingResponse(
        key=setting.key,
        value=setting.value,
        value_type=setting.value_type,
        status=setting.status,
        description=setting.description,
        updated_at=setting.updated_at
    )

def _reservation_to_response(reservation) -> ReservationResponse:
    """Convert Reservation entity to ReservationResponse"""
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        user_id=reservation.user_id,
        space_id=reservation.space_id,
        date=reservation.date,
        start_time=reservation.start_time,
        end_time=reservation.end_time,
        status=reservation.status.value,
        hourly_rate_snapshot=reservation.hourly_rate_snapshot,
        duration_minutes=reservation.duration_minutes,
        total_amount=reservation.total_amount,
        attendees=reservation.attendees,
        created_at=reservation.created_at,
        modified_at=reservation.modified_at,
        version=reservation.version
    )

def _liquidation_to_response(liquidation, items) -> LiquidationResponse:
    """Convert Liquidation entity and its items to LiquidationResponse"""
    return LiquidationResponse(
        liquidation_id=liquidation.liquidation_id,
        user_id=liquidation.user_id,
        status=liquidation.status,
        total_amount=liquidation.total_amount,
        from_date=liquidation.from_date,
        to_date=liquidation.to_date,
        created_at=liquidation.created_at,
        items=[
            LiquidationItemResponse(item_id=i.item_id, reservation_id=i.reservation_id, amount=i.amount)
            for i in items
        ]
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
