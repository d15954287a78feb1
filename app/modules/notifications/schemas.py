"""Notifications schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class NotificationRead(BaseModel):
    """Inbox entry; ``booking_id`` links to the booking it is about."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    event_type: str
    booking_id: UUID | None
    payment_session_id: str | None
    title: str
    body: str
    read_at: datetime | None
    created_at: datetime
