"""Booking notification dispatch.

The booking flow hands a summary to a :class:`NotificationDispatcher` once the
booking is persisted. Delivery is best effort: a False result or an exception
is logged by the caller and never undoes the booking.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from app.core.database import savepoint
from app.modules.audit.repository import AuditRepository

logger = logging.getLogger(__name__)

BOOKING_CREATED_EVENT = "booking.created"


@dataclass(frozen=True, slots=True)
class BookingNotificationPayload:
    booking_id: UUID
    student_id: UUID
    tutor_id: UUID
    date: str
    start_time: str
    end_time: str
    duration_minutes: int
    mode: str
    location: str | None
    price_display: str
    payment_status: str

    def to_event_payload(self) -> dict:
        payload = asdict(self)
        for key in ("booking_id", "student_id", "tutor_id"):
            payload[key] = str(payload[key])
        return payload


class NotificationDispatcher(Protocol):
    async def dispatch(self, payload: BookingNotificationPayload) -> bool: ...


class OutboxNotificationDispatcher:
    """Queue a ``booking.created`` outbox event for the notifications worker."""

    def __init__(self, audit_repository: AuditRepository) -> None:
        self.audit_repository = audit_repository

    async def dispatch(self, payload: BookingNotificationPayload) -> bool:
        try:
            async with savepoint(self.audit_repository.session):
                await self.audit_repository.create_outbox_event(
                    aggregate_type="booking",
                    aggregate_id=str(payload.booking_id),
                    event_type=BOOKING_CREATED_EVENT,
                    payload=payload.to_event_payload(),
                )
        except SQLAlchemyError:
            logger.warning("Could not queue notification for booking %s", payload.booking_id, exc_info=True)
            return False
        return True
