"""Scheduling repository layer."""

from __future__ import annotations

from datetime import date, time
from uuid import UUID

from sqlalchemy import Select, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import savepoint
from app.core.enums import SessionModeEnum
from app.modules.scheduling.allocator import WindowRemainder
from app.modules.scheduling.models import AvailabilityWindow


class SchedulingRepository:
    """DB access for availability windows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_window(
        self,
        tutor_id: UUID,
        window_date: date,
        start_time: time,
        end_time: time,
        mode: SessionModeEnum,
        location: str | None,
    ) -> AvailabilityWindow:
        window = AvailabilityWindow(
            tutor_id=tutor_id,
            date=window_date,
            start_time=start_time,
            end_time=end_time,
            mode=mode,
            location=location,
            is_booked=False,
        )
        self.session.add(window)
        await self.session.flush()
        return window

    async def get_window_by_id(self, window_id: UUID) -> AvailabilityWindow | None:
        stmt = select(AvailabilityWindow).where(AvailabilityWindow.id == window_id)
        return await self.session.scalar(stmt)

    async def list_open_windows(
        self,
        tutor_id: UUID | None,
        date_from: date,
        limit: int,
        offset: int,
    ) -> tuple[list[AvailabilityWindow], int]:
        base_stmt: Select[tuple[AvailabilityWindow]] = select(AvailabilityWindow).where(
            AvailabilityWindow.is_booked.is_(False),
            AvailabilityWindow.date >= date_from,
        )
        if tutor_id is not None:
            base_stmt = base_stmt.where(AvailabilityWindow.tutor_id == tutor_id)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = (
            base_stmt.order_by(AvailabilityWindow.date.asc(), AvailabilityWindow.start_time.asc())
            .limit(limit)
            .offset(offset)
        )
        items = (await self.session.scalars(stmt)).all()
        return list(items), total

    async def list_tutor_windows_on_date(
        self,
        tutor_id: UUID,
        window_date: date,
        mode: SessionModeEnum | None = None,
    ) -> list[AvailabilityWindow]:
        stmt = select(AvailabilityWindow).where(
            AvailabilityWindow.tutor_id == tutor_id,
            AvailabilityWindow.date == window_date,
        )
        if mode is not None:
            stmt = stmt.where(AvailabilityWindow.mode == mode)
        stmt = stmt.order_by(AvailabilityWindow.start_time.asc())
        return list((await self.session.scalars(stmt)).all())

    async def update_window(
        self,
        window: AvailabilityWindow,
        *,
        window_date: date,
        start_time: time,
        end_time: time,
        location: str | None,
    ) -> AvailabilityWindow:
        window.date = window_date
        window.start_time = start_time
        window.end_time = end_time
        window.location = location
        await self.session.flush()
        return window

    async def delete_window(self, window: AvailabilityWindow) -> None:
        await self.session.delete(window)
        await self.session.flush()

    async def consume_window(self, window_id: UUID) -> bool:
        """Delete the window only if it still exists unbooked; False means a lost race."""
        stmt = delete(AvailabilityWindow).where(
            AvailabilityWindow.id == window_id,
            AvailabilityWindow.is_booked.is_(False),
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def insert_remainders(self, remainders: tuple[WindowRemainder, ...]) -> list[AvailabilityWindow]:
        """Insert split remainders in their own savepoint."""
        if not remainders:
            return []
        windows = [
            AvailabilityWindow(
                tutor_id=remainder.tutor_id,
                date=remainder.date,
                start_time=remainder.start_time,
                end_time=remainder.end_time,
                mode=remainder.mode,
                location=remainder.location,
                is_booked=remainder.is_booked,
            )
            for remainder in remainders
        ]
        async with savepoint(self.session):
            self.session.add_all(windows)
            await self.session.flush()
        return windows
