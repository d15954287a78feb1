"""Wall-clock time helpers for availability windows and booking forms.

Times of day travel through the API as ``"HH:MM"`` or ``"HH:MM:SS"`` strings
and come back from the database as :class:`datetime.time`; every helper here
accepts either. None of these functions know about dates or timezones except
:func:`combine_local`, which is the single place a wall-clock time becomes an
instant.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

MINUTES_PER_DAY = 24 * 60

TimeLike = str | time


def time_to_minutes(value: TimeLike) -> int:
    """Return minutes since midnight; seconds are ignored."""
    if isinstance(value, time):
        return value.hour * 60 + value.minute

    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Expected HH:MM or HH:MM:SS, got {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Time of day out of range: {value!r}")
    return hours * 60 + minutes


def minutes_to_time(minutes: int) -> str:
    """Inverse of :func:`time_to_minutes`, always with ``:00`` seconds."""
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}:00"


def to_time_of_day(value: TimeLike) -> time:
    total = time_to_minutes(value)
    return time(hour=total // 60, minute=total % 60)


def duration_minutes(start: TimeLike, end: TimeLike) -> int:
    """Minutes from start to end; zero or negative when end <= start."""
    return time_to_minutes(end) - time_to_minutes(start)


def intervals_overlap(start_a: TimeLike, end_a: TimeLike, start_b: TimeLike, end_b: TimeLike) -> bool:
    """Half-open [start, end) overlap test on times of day."""
    return time_to_minutes(start_a) < time_to_minutes(end_b) and time_to_minutes(start_b) < time_to_minutes(end_a)


def add_minutes_capped(start: TimeLike, minutes: int, cap: TimeLike) -> str:
    """Return start + minutes, but never later than cap."""
    target = min(time_to_minutes(start) + minutes, time_to_minutes(cap))
    return minutes_to_time(target)


def default_end_time(start: TimeLike, window_end: TimeLike, default_minutes: int) -> str:
    """Pre-fill a booking end: the default lesson length, clipped to the window."""
    return add_minutes_capped(start, default_minutes, window_end)


def format_12_hour(value: TimeLike) -> str:
    """``"14:30"`` -> ``"2:30 PM"``; midnight is 12 AM and noon is 12 PM."""
    total = time_to_minutes(value)
    hours, minutes = divmod(total, 60)
    hour12 = hours % 12 or 12
    period = "PM" if hours >= 12 else "AM"
    return f"{hour12}:{minutes:02d} {period}"


def format_24_hour(value: str) -> str:
    """``"2:30 PM"`` -> ``"14:30"``."""
    clock, _, period = value.strip().partition(" ")
    hour_text, _, minute_text = clock.partition(":")
    hour = int(hour_text)
    period = period.strip().upper()
    if period not in ("AM", "PM") or not 1 <= hour <= 12:
        raise ValueError(f"Expected h:MM AM/PM, got {value!r}")

    if period == "PM" and hour != 12:
        hour += 12
    elif period == "AM" and hour == 12:
        hour = 0
    return f"{hour:02d}:{int(minute_text):02d}"


class TimeGrid:
    """All times of day at a fixed step, as ``"HH:MM"`` strings.

    Iteration is lazy and can be repeated; the grid itself holds no cursor.
    """

    def __init__(self, step_minutes: int) -> None:
        if step_minutes <= 0 or MINUTES_PER_DAY % step_minutes != 0:
            raise ValueError(f"Step must be a positive divisor of {MINUTES_PER_DAY}: {step_minutes}")
        self.step_minutes = step_minutes

    def __iter__(self) -> Iterator[str]:
        for total in range(0, MINUTES_PER_DAY, self.step_minutes):
            yield f"{total // 60:02d}:{total % 60:02d}"

    def __len__(self) -> int:
        return MINUTES_PER_DAY // self.step_minutes


def generate_time_grid(step_minutes: int) -> TimeGrid:
    return TimeGrid(step_minutes)


def generate_time_options(
    start_hour: int = 10,
    interval_minutes: int = 30,
    total_slots: int = 29,
) -> list[str]:
    """12-hour labels for a picker, starting at start_hour and wrapping past midnight."""
    start = start_hour * 60
    return [
        format_12_hour(minutes_to_time((start + index * interval_minutes) % MINUTES_PER_DAY))
        for index in range(total_slots)
    ]


def combine_local(day: date, value: TimeLike, tz: ZoneInfo) -> datetime:
    """Attach a wall-clock time on a date to the business timezone."""
    return datetime.combine(day, to_time_of_day(value), tzinfo=tz)
