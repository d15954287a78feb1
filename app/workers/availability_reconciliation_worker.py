"""Executable worker that repairs stale availability windows.

Run with ``python -m app.workers.availability_reconciliation_worker``;
behaviour is configured through the ``RECONCILIATION_WORKER_*`` settings.
"""

from __future__ import annotations

import asyncio

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.modules.audit.repository import AuditRepository
from app.modules.booking.repository import BookingRepository
from app.modules.scheduling.reconciliation import AvailabilityReconciler
from app.modules.scheduling.repository import SchedulingRepository
from app.workers.runner import configure_logging, run_worker


async def run_cycle() -> dict[str, int]:
    """Run a single reconciliation pass in one DB transaction."""
    settings = get_settings()
    async with SessionLocal() as session:
        reconciler = AvailabilityReconciler(
            booking_repository=BookingRepository(session),
            scheduling_repository=SchedulingRepository(session),
            audit_repository=AuditRepository(session),
            business_tz=settings.business_tz,
            batch_size=settings.reconciliation_worker_batch_size,
        )
        stats = await reconciler.run_once()
        await session.commit()
        return stats


async def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    await run_worker(
        "Availability reconciliation",
        run_cycle,
        mode=settings.reconciliation_worker_mode,
        poll_seconds=settings.reconciliation_worker_poll_seconds,
    )


if __name__ == "__main__":
    asyncio.run(main())
