"""Scheduling API router."""

from __future__ import annotations

from datetime import time
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from app.core.enums import RoleEnum
from app.modules.identity.service import require_roles
from app.modules.scheduling.schemas import (
    SuggestedEndRead,
    TimeOptionsRead,
    WindowCreate,
    WindowRead,
    WindowUpdate,
)
from app.modules.scheduling.service import SchedulingService, get_scheduling_service
from app.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/scheduling", tags=["scheduling"])

_manage_availability = require_roles(RoleEnum.TUTOR, RoleEnum.ADMIN)


@router.post("/windows", response_model=WindowRead, status_code=status.HTTP_201_CREATED)
async def create_window(
    payload: WindowCreate,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(_manage_availability),
) -> WindowRead:
    """Publish availability window."""
    window = await service.create_window(payload, current_user)
    return WindowRead.model_validate(window)


@router.patch("/windows/{window_id}", response_model=WindowRead)
async def update_window(
    window_id: UUID,
    payload: WindowUpdate,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(_manage_availability),
) -> WindowRead:
    """Reschedule an unbooked availability window."""
    window = await service.update_window(window_id, payload, current_user)
    return WindowRead.model_validate(window)


@router.delete("/windows/{window_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_window(
    window_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(_manage_availability),
) -> Response:
    """Remove availability window."""
    await service.delete_window(window_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/windows/open", response_model=Page[WindowRead])
async def list_open_windows(
    tutor_id: UUID | None = Query(default=None),
    pagination=Depends(get_pagination_params),
    service: SchedulingService = Depends(get_scheduling_service),
) -> Page[WindowRead]:
    """List currently open availability windows."""
    items, total = await service.list_open_windows(tutor_id, pagination.limit, pagination.offset)
    serialized = [WindowRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/windows/{window_id}/suggested-end", response_model=SuggestedEndRead)
async def suggest_end_time(
    window_id: UUID,
    start_time: time = Query(...),
    service: SchedulingService = Depends(get_scheduling_service),
) -> SuggestedEndRead:
    """Default end time for a booking starting at start_time."""
    return await service.suggest_end_time(window_id, start_time)


@router.get("/time-options", response_model=TimeOptionsRead)
async def list_time_options(
    step_minutes: int = Query(default=30, ge=1, le=720),
) -> TimeOptionsRead:
    """Times of day for time pickers."""
    return SchedulingService.list_time_options(step_minutes)
