"""Notifications repository layer."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.notifications.models import Notification


class NotificationsRepository:
    """DB operations for the notification inbox."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_notification(
        self,
        user_id: UUID,
        event_type: str,
        title: str,
        body: str,
        *,
        source_event_id: UUID | None = None,
        booking_id: UUID | None = None,
        payment_session_id: str | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            event_type=event_type,
            title=title,
            body=body,
            source_event_id=source_event_id,
            booking_id=booking_id,
            payment_session_id=payment_session_id,
        )
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def exists_for_event(self, source_event_id: UUID, user_id: UUID) -> bool:
        stmt = select(Notification.id).where(
            Notification.source_event_id == source_event_id,
            Notification.user_id == user_id,
        )
        return (await self.session.scalar(stmt)) is not None

    async def get_notification_by_id(self, notification_id: UUID) -> Notification | None:
        return await self.session.get(Notification, notification_id)

    async def list_notifications_for_user(
        self,
        user_id: UUID,
        limit: int,
        offset: int,
        *,
        unread_only: bool = False,
    ) -> tuple[list[Notification], int]:
        base_stmt: Select[tuple[Notification]] = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            base_stmt = base_stmt.where(Notification.read_at.is_(None))
        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(Notification.created_at.desc()).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return list(items), total

    async def mark_read(self, notification: Notification, read_at: datetime) -> Notification:
        notification.read_at = read_at
        await self.session.flush()
        return notification
