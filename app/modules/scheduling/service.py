"""Scheduling business logic layer."""

from __future__ import annotations

from datetime import date, time
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import RoleEnum, SessionModeEnum
from app.modules.identity.models import User
from app.modules.scheduling.models import AvailabilityWindow
from app.modules.scheduling.repository import SchedulingRepository
from app.modules.scheduling.schemas import SuggestedEndRead, TimeOptionsRead, WindowCreate, WindowUpdate
from app.modules.scheduling.time_utils import (
    default_end_time,
    format_12_hour,
    generate_time_grid,
    intervals_overlap,
    time_to_minutes,
    to_time_of_day,
)
from app.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    UnauthorizedException,
)
from app.shared.utils import utc_now

settings = get_settings()


class SchedulingService:
    """Tutor availability management."""

    def __init__(self, repository: SchedulingRepository) -> None:
        self.repository = repository

    def _business_today(self) -> date:
        return utc_now().astimezone(settings.business_tz).date()

    def _resolve_tutor_id(self, payload: WindowCreate, actor: User) -> UUID:
        if actor.role.name == RoleEnum.TUTOR:
            if payload.tutor_id is not None and payload.tutor_id != actor.id:
                raise UnauthorizedException("Tutors can only publish their own availability")
            return actor.id
        if actor.role.name == RoleEnum.ADMIN:
            if payload.tutor_id is None:
                raise BusinessRuleException("tutor_id is required when an admin publishes availability")
            return payload.tutor_id
        raise UnauthorizedException("Only tutors and admins can manage availability")

    def _ensure_can_manage(self, window: AvailabilityWindow, actor: User) -> None:
        if actor.role.name == RoleEnum.ADMIN:
            return
        if actor.role.name == RoleEnum.TUTOR and window.tutor_id == actor.id:
            return
        raise UnauthorizedException("You cannot manage this availability window")

    def _validate_bounds(self, window_date: date, start_time: time, end_time: time) -> None:
        if time_to_minutes(end_time) <= time_to_minutes(start_time):
            raise BusinessRuleException("End time must be after start time")
        if window_date < self._business_today():
            raise BusinessRuleException("Availability cannot be published for a past date")

    async def _ensure_no_overlap(
        self,
        tutor_id: UUID,
        window_date: date,
        mode: SessionModeEnum,
        start_time: time,
        end_time: time,
        exclude_id: UUID | None = None,
    ) -> None:
        siblings = await self.repository.list_tutor_windows_on_date(tutor_id, window_date, mode)
        for sibling in siblings:
            if sibling.id == exclude_id:
                continue
            if intervals_overlap(start_time, end_time, sibling.start_time, sibling.end_time):
                raise ConflictException("Availability overlaps an existing window on this date")

    async def create_window(self, payload: WindowCreate, actor: User) -> AvailabilityWindow:
        """Publish a new availability window."""
        tutor_id = self._resolve_tutor_id(payload, actor)
        self._validate_bounds(payload.date, payload.start_time, payload.end_time)
        await self._ensure_no_overlap(tutor_id, payload.date, payload.mode, payload.start_time, payload.end_time)

        return await self.repository.create_window(
            tutor_id=tutor_id,
            window_date=payload.date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            mode=payload.mode,
            location=payload.location,
        )

    async def update_window(self, window_id: UUID, payload: WindowUpdate, actor: User) -> AvailabilityWindow:
        """Reschedule a window that has not been booked."""
        window = await self.repository.get_window_by_id(window_id)
        if window is None:
            raise NotFoundException("Availability window not found")
        self._ensure_can_manage(window, actor)
        if window.is_booked:
            raise ConflictException("Booked availability cannot be edited")

        self._validate_bounds(payload.date, payload.start_time, payload.end_time)
        await self._ensure_no_overlap(
            window.tutor_id,
            payload.date,
            window.mode,
            payload.start_time,
            payload.end_time,
            exclude_id=window.id,
        )
        return await self.repository.update_window(
            window,
            window_date=payload.date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            location=payload.location,
        )

    async def delete_window(self, window_id: UUID, actor: User) -> None:
        """Remove a window explicitly."""
        window = await self.repository.get_window_by_id(window_id)
        if window is None:
            raise NotFoundException("Availability window not found")
        self._ensure_can_manage(window, actor)
        await self.repository.delete_window(window)

    async def list_open_windows(
        self,
        tutor_id: UUID | None,
        limit: int,
        offset: int,
    ) -> tuple[list[AvailabilityWindow], int]:
        """List unbooked windows from today on."""
        return await self.repository.list_open_windows(
            tutor_id=tutor_id,
            date_from=self._business_today(),
            limit=limit,
            offset=offset,
        )

    async def suggest_end_time(self, window_id: UUID, start_time: time) -> SuggestedEndRead:
        """Default lesson length from start_time, clipped to the window end."""
        window = await self.repository.get_window_by_id(window_id)
        if window is None:
            raise NotFoundException("Availability window not found")
        end_time = default_end_time(start_time, window.end_time, settings.booking_default_duration_minutes)
        return SuggestedEndRead(window_id=window.id, start_time=start_time, end_time=to_time_of_day(end_time))

    @staticmethod
    def list_time_options(step_minutes: int) -> TimeOptionsRead:
        """Times of day for pickers, with 12-hour labels."""
        try:
            grid = generate_time_grid(step_minutes)
        except ValueError as exc:
            raise BusinessRuleException(str(exc)) from exc
        times = list(grid)
        return TimeOptionsRead(
            step_minutes=step_minutes,
            times=times,
            labels=[format_12_hour(value) for value in times],
        )


async def get_scheduling_service(session: AsyncSession = Depends(get_db_session)) -> SchedulingService:
    """Dependency provider for scheduling service."""
    return SchedulingService(SchedulingRepository(session))
