"""Executable worker that delivers outbox events to user inboxes.

Run with ``python -m app.workers.outbox_notifications_worker``; behaviour is
configured through the ``OUTBOX_WORKER_*`` settings.
"""

from __future__ import annotations

import asyncio

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.modules.audit.repository import AuditRepository
from app.modules.notifications.outbox_worker import NotificationsOutboxWorker
from app.modules.notifications.repository import NotificationsRepository
from app.workers.runner import configure_logging, run_worker


async def run_cycle() -> dict[str, int]:
    """Process one batch of due events in one DB transaction."""
    settings = get_settings()
    async with SessionLocal() as session:
        worker = NotificationsOutboxWorker(
            audit_repository=AuditRepository(session),
            notifications_repository=NotificationsRepository(session),
            batch_size=settings.outbox_worker_batch_size,
            max_attempts=settings.outbox_worker_max_attempts,
            base_backoff_seconds=settings.outbox_worker_base_backoff_seconds,
            max_backoff_seconds=settings.outbox_worker_max_backoff_seconds,
        )
        stats = await worker.run_once()
        await session.commit()
        return stats


async def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    await run_worker(
        "Outbox notifications worker",
        run_cycle,
        mode=settings.outbox_worker_mode,
        poll_seconds=settings.outbox_worker_poll_seconds,
    )


if __name__ == "__main__":
    asyncio.run(main())
