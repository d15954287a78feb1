"""Outbox consumer that turns booking and payment events into inbox notices."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from app.modules.audit.models import OutboxEvent
from app.modules.audit.repository import AuditRepository
from app.modules.notifications.repository import NotificationsRepository
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)

LIFECYCLE_EVENTS = ("booking.confirmed", "booking.cancelled", "booking.completed")


@dataclass(slots=True)
class NotificationMessage:
    user_id: UUID
    title: str
    body: str
    booking_id: UUID | None = None
    payment_session_id: str | None = None


class NotificationsOutboxWorker:
    """Process due outbox events; failed events are retried with exponential backoff."""

    def __init__(
        self,
        audit_repository: AuditRepository,
        notifications_repository: NotificationsRepository,
        *,
        batch_size: int = 100,
        max_attempts: int = 5,
        base_backoff_seconds: int = 30,
        max_backoff_seconds: int = 300,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self.audit_repository = audit_repository
        self.notifications_repository = notifications_repository
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.now_provider = now_provider

    async def run_once(self) -> dict[str, int]:
        """Run one processing cycle."""
        stats = {"processed": 0, "retried": 0, "failed": 0, "dispatched": 0, "duplicates": 0}
        now = self.now_provider()

        events = await self.audit_repository.list_due_outbox(now, limit=self.batch_size)
        for event in events:
            try:
                for message in self._build_messages(event):
                    if await self.notifications_repository.exists_for_event(event.id, message.user_id):
                        stats["duplicates"] += 1
                        continue
                    await self.notifications_repository.create_notification(
                        user_id=message.user_id,
                        event_type=event.event_type,
                        title=message.title,
                        body=message.body,
                        source_event_id=event.id,
                        booking_id=message.booking_id,
                        payment_session_id=message.payment_session_id,
                    )
                    stats["dispatched"] += 1

                await self.audit_repository.mark_outbox_processed(event, now)
                stats["processed"] += 1
            except Exception as exc:
                await self._record_failure(event, exc, now, stats)
        return stats

    def backoff_seconds(self, attempt: int) -> int:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(self.max_backoff_seconds, self.base_backoff_seconds * (2 ** (max(attempt, 1) - 1)))

    async def _record_failure(
        self,
        event: OutboxEvent,
        exc: Exception,
        now: datetime,
        stats: dict[str, int],
    ) -> None:
        attempt = event.attempts + 1
        if attempt >= self.max_attempts:
            logger.error(
                "Outbox event %s (%s) failed after %s attempts: %s",
                event.id,
                event.event_type,
                attempt,
                exc,
            )
            await self.audit_repository.mark_outbox_failed(event, str(exc))
            stats["failed"] += 1
            return

        delay = self.backoff_seconds(attempt)
        logger.warning(
            "Outbox event %s (%s) attempt %s failed, retrying in %ss: %s",
            event.id,
            event.event_type,
            attempt,
            delay,
            exc,
        )
        await self.audit_repository.schedule_outbox_retry(event, str(exc), now + timedelta(seconds=delay))
        stats["retried"] += 1

    def _build_messages(self, event: OutboxEvent) -> list[NotificationMessage]:
        payload = event.payload or {}
        event_type = event.event_type

        if event_type == "booking.created":
            student_id = self._required_uuid(payload, "student_id")
            tutor_id = self._required_uuid(payload, "tutor_id")
            booking_id = self._required_uuid(payload, "booking_id")
            summary = self._booking_summary(payload)
            payment_status = payload.get("payment_status", "unpaid")
            return [
                NotificationMessage(
                    user_id=student_id,
                    title="Booking received",
                    body=f"Your lesson is booked: {summary}. Payment status: {payment_status}.",
                    booking_id=booking_id,
                ),
                NotificationMessage(
                    user_id=tutor_id,
                    title="New booking",
                    body=f"A student booked {summary}.",
                    booking_id=booking_id,
                ),
            ]

        if event_type in LIFECYCLE_EVENTS:
            action = event_type.rsplit(".", 1)[1]
            booking_id = self._required_uuid(payload, "booking_id")
            recipients = self._unique_recipients(
                self._optional_uuid(payload, "student_id"),
                self._optional_uuid(payload, "tutor_id"),
            )
            return [
                NotificationMessage(
                    user_id=user_id,
                    title=f"Booking {action}",
                    body=f"Your lesson has been {action}.",
                    booking_id=booking_id,
                )
                for user_id in recipients
            ]

        if event_type == "booking.payment_status.updated":
            student_id = self._required_uuid(payload, "student_id")
            booking_id = self._required_uuid(payload, "booking_id")
            to_status = payload.get("to_status", "unknown")
            return [
                NotificationMessage(
                    user_id=student_id,
                    title="Payment status changed",
                    body=f"Payment for your lesson is now {to_status}.",
                    booking_id=booking_id,
                ),
            ]

        if event_type == "billing.payment.unallocated":
            student_id = self._required_uuid(payload, "student_id")
            return [
                NotificationMessage(
                    user_id=student_id,
                    title="Payment received, time no longer available",
                    body=(
                        "We received your payment but the selected time was booked by someone else first. "
                        "We will contact you to reschedule or refund."
                    ),
                    payment_session_id=payload.get("session_id"),
                ),
            ]

        return []

    @staticmethod
    def _booking_summary(payload: dict) -> str:
        location = payload.get("location")
        where = f" at {location}" if location else ""
        return (
            f"{payload.get('date', '?')} {payload.get('start_time', '?')} to {payload.get('end_time', '?')} "
            f"({payload.get('duration_minutes', '?')} min, {payload.get('mode', '?')}{where}), "
            f"${payload.get('price_display', '?')}"
        )

    @staticmethod
    def _required_uuid(payload: dict, key: str) -> UUID:
        value = payload.get(key)
        if value is None:
            raise ValueError(f"Missing required key: {key}")
        return UUID(str(value))

    @staticmethod
    def _optional_uuid(payload: dict, key: str) -> UUID | None:
        value = payload.get(key)
        if value is None:
            return None
        return UUID(str(value))

    @staticmethod
    def _unique_recipients(*recipients: UUID | None) -> list[UUID]:
        unique: list[UUID] = []
        seen: set[UUID] = set()
        for recipient in recipients:
            if recipient is not None and recipient not in seen:
                unique.append(recipient)
                seen.add(recipient)
        return unique
