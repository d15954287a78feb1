"""Shared entrypoint loop for the executable workers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from app.core.config import Settings

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def run_worker(
    name: str,
    run_cycle: Callable[[], Awaitable[dict[str, int]]],
    *,
    mode: str,
    poll_seconds: int,
) -> None:
    """Run one cycle in ``once`` mode, otherwise poll until cancelled.

    A failed cycle in ``loop`` mode is logged and the next one still runs.
    """
    if mode == "once":
        stats = await run_cycle()
        logger.info("%s stats: %s", name, stats)
        return

    while True:
        try:
            stats = await run_cycle()
            logger.info("%s stats: %s", name, stats)
        except Exception:
            logger.exception("%s cycle failed", name)
        await asyncio.sleep(poll_seconds)
