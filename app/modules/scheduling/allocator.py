"""Decide what happens to an availability window once a booking consumes it.

Business rule: an in-person window stands for one physical commitment (travel,
a venue), so any booking inside it consumes the whole window. Online windows
are split, and the unbooked time on either side stays bookable.

The allocator only plans. Applying a plan is the repository's job: the
original window is removed with a conditional delete and the remainders are
inserted afterwards, so a failure in between leaves a gap in availability and
never a double booking.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Protocol
from uuid import UUID

from app.core.enums import SessionModeEnum
from app.modules.scheduling.time_utils import TimeLike, time_to_minutes, to_time_of_day
from app.shared.exceptions import UnknownModeError


class WindowLike(Protocol):
    id: UUID
    tutor_id: UUID
    date: date
    start_time: time
    end_time: time
    mode: SessionModeEnum
    location: str | None


@dataclass(frozen=True, slots=True)
class WindowRemainder:
    tutor_id: UUID
    date: date
    start_time: time
    end_time: time
    mode: SessionModeEnum
    location: str | None
    is_booked: bool = False


@dataclass(frozen=True, slots=True)
class AllocationPlan:
    """Replace ``window_id`` with ``remainders`` (possibly none)."""

    window_id: UUID
    remainders: tuple[WindowRemainder, ...]

    @property
    def deletes_only(self) -> bool:
        return not self.remainders


def _remainder(window: WindowLike, start: time, end: time) -> WindowRemainder:
    return WindowRemainder(
        tutor_id=window.tutor_id,
        date=window.date,
        start_time=start,
        end_time=end,
        mode=window.mode,
        location=window.location,
    )


def _split_online(window: WindowLike, booked_start: time, booked_end: time) -> tuple[WindowRemainder, ...]:
    window_start = time_to_minutes(window.start_time)
    window_end = time_to_minutes(window.end_time)
    start = time_to_minutes(booked_start)
    end = time_to_minutes(booked_end)

    if start == window_start and end == window_end:
        return ()

    remainders: list[WindowRemainder] = []
    if window_start < start:
        remainders.append(_remainder(window, to_time_of_day(window.start_time), booked_start))
    if end < window_end:
        remainders.append(_remainder(window, booked_end, to_time_of_day(window.end_time)))
    return tuple(remainders)


def allocate(window: WindowLike, booked_start: TimeLike, booked_end: TimeLike) -> AllocationPlan:
    """Plan the windows that replace ``window`` after booking [booked_start, booked_end)."""
    start = to_time_of_day(booked_start)
    end = to_time_of_day(booked_end)

    match window.mode:
        case SessionModeEnum.IN_PERSON:
            remainders: tuple[WindowRemainder, ...] = ()
        case SessionModeEnum.ONLINE:
            remainders = _split_online(window, start, end)
        case _:
            raise UnknownModeError(window.mode)

    return AllocationPlan(window_id=window.id, remainders=remainders)
