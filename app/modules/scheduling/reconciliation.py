"""Repair availability left stale by failed or partial window updates.

An active booking is the durable fact. Any open window of the same tutor that
still overlaps an active booking's local interval is run through the
allocator again: in-person windows are removed, online windows are split
around the overlap.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, time
from zoneinfo import ZoneInfo

from app.modules.audit.repository import AuditRepository
from app.modules.booking.models import Booking
from app.modules.booking.repository import BookingRepository
from app.modules.scheduling.allocator import allocate
from app.modules.scheduling.repository import SchedulingRepository
from app.modules.scheduling.time_utils import intervals_overlap
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)


class AvailabilityReconciler:
    """Re-apply the allocator to open windows that overlap active bookings."""

    def __init__(
        self,
        booking_repository: BookingRepository,
        scheduling_repository: SchedulingRepository,
        audit_repository: AuditRepository,
        business_tz: ZoneInfo,
        *,
        batch_size: int = 200,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self.booking_repository = booking_repository
        self.scheduling_repository = scheduling_repository
        self.audit_repository = audit_repository
        self.business_tz = business_tz
        self.batch_size = batch_size
        self.now_provider = now_provider

    async def run_once(self) -> dict[str, int]:
        """Run one reconciliation pass."""
        stats = {"bookings_checked": 0, "windows_repaired": 0, "remainders_created": 0, "skipped": 0}
        bookings = await self.booking_repository.list_active_bookings(
            ending_after=self.now_provider(),
            limit=self.batch_size,
        )
        for booking in bookings:
            stats["bookings_checked"] += 1
            local_start = booking.start_at.astimezone(self.business_tz)
            local_end = booking.end_at.astimezone(self.business_tz)
            if local_start.date() != local_end.date():
                # Windows never cross midnight.
                stats["skipped"] += 1
                continue

            repaired, created = await self._repair_for_booking(booking, local_start.time(), local_end.time())
            stats["windows_repaired"] += repaired
            stats["remainders_created"] += created
        return stats

    async def _repair_for_booking(self, booking: Booking, booked_start: time, booked_end: time) -> tuple[int, int]:
        windows = await self.scheduling_repository.list_tutor_windows_on_date(
            booking.tutor_id,
            booking.start_at.astimezone(self.business_tz).date(),
        )
        repaired = 0
        created = 0
        for window in windows:
            if window.is_booked:
                continue
            if not intervals_overlap(window.start_time, window.end_time, booked_start, booked_end):
                continue

            overlap_start = max(window.start_time, booked_start)
            overlap_end = min(window.end_time, booked_end)
            plan = allocate(window, overlap_start, overlap_end)
            if not await self.scheduling_repository.consume_window(plan.window_id):
                continue

            remainders = await self.scheduling_repository.insert_remainders(plan.remainders)
            await self.audit_repository.create_audit_log(
                actor_id=None,
                action="scheduling.window.reconciled",
                entity_type="availability_window",
                entity_id=str(plan.window_id),
                payload={"booking_id": str(booking.id), "remainders": len(remainders)},
            )
            logger.info(
                "Window %s overlapped booking %s; replaced with %s remainder(s)",
                plan.window_id,
                booking.id,
                len(remainders),
            )
            repaired += 1
            created += len(remainders)
        return repaired, created
