"""Booking repository layer."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import savepoint
from app.core.enums import BookingStatusEnum, PaymentStatusEnum, RoleEnum, SessionModeEnum
from app.modules.booking.models import Booking
from app.shared.exceptions import DuplicatePaymentSessionError

ACTIVE_STATUSES = (BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED)


class BookingRepository:
    """DB operations for booking domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """Group the booking insert with the window consumption."""
        async with savepoint(self.session):
            yield

    async def create_booking(
        self,
        *,
        student_id: UUID,
        tutor_id: UUID,
        start_at: datetime,
        end_at: datetime,
        duration_minutes: int,
        mode: SessionModeEnum,
        location: str | None,
        notes: str | None,
        status: BookingStatusEnum,
        payment_status: PaymentStatusEnum,
        price_minor: int,
        payment_session_id: str | None = None,
        confirmed_at: datetime | None = None,
    ) -> Booking:
        booking = Booking(
            student_id=student_id,
            tutor_id=tutor_id,
            start_at=start_at,
            end_at=end_at,
            duration_minutes=duration_minutes,
            mode=mode,
            location=location,
            notes=notes,
            status=status,
            payment_status=payment_status,
            price_minor=price_minor,
            is_free_trial=False,
            payment_session_id=payment_session_id,
            confirmed_at=confirmed_at,
        )
        self.session.add(booking)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            if payment_session_id is not None and "payment_session_id" in str(exc.orig):
                raise DuplicatePaymentSessionError(payment_session_id) from exc
            raise
        return booking

    async def get_booking_by_id(self, booking_id: UUID) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id)
        return await self.session.scalar(stmt)

    async def get_booking_by_payment_session(self, payment_session_id: str) -> Booking | None:
        stmt = select(Booking).where(Booking.payment_session_id == payment_session_id)
        return await self.session.scalar(stmt)

    async def list_bookings(
        self,
        user_id: UUID,
        role_name: RoleEnum,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        base_stmt: Select[tuple[Booking]] = select(Booking)

        if role_name == RoleEnum.STUDENT:
            base_stmt = base_stmt.where(Booking.student_id == user_id)
        elif role_name == RoleEnum.TUTOR:
            base_stmt = base_stmt.where(Booking.tutor_id == user_id)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(Booking.start_at.desc()).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return list(items), total

    async def list_active_bookings(self, ending_after: datetime, limit: int) -> list[Booking]:
        """Pending or confirmed bookings that have not finished yet."""
        stmt = (
            select(Booking)
            .where(
                Booking.status.in_(ACTIVE_STATUSES),
                Booking.end_at > ending_after,
            )
            .order_by(Booking.start_at.asc())
            .limit(limit)
        )
        return list((await self.session.scalars(stmt)).all())

    async def save(self, booking: Booking) -> Booking:
        await self.session.flush()
        return booking
