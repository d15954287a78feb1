"""Check a requested lesson interval against the window it is booked in."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any

from app.modules.scheduling.time_utils import TimeLike, format_12_hour, time_to_minutes

DEFAULT_MIN_DURATION_MINUTES = 60


class TimeValidationReasonEnum(StrEnum):
    """Why a requested interval was rejected."""

    MISSING_TIMES = "missing_times"
    START_BEFORE_SLOT = "start_before_slot"
    END_AFTER_SLOT = "end_after_slot"
    END_NOT_AFTER_START = "end_not_after_start"
    BELOW_MINIMUM_DURATION = "below_minimum_duration"


@dataclass(frozen=True, slots=True)
class TimeValidationFailure:
    reason: TimeValidationReasonEnum
    title: str
    description: str
    slot_start: str | None = None
    slot_end: str | None = None
    requested_start: str | None = None
    requested_end: str | None = None
    min_duration_minutes: int | None = None

    def as_details(self) -> dict[str, Any]:
        details = asdict(self)
        details["reason"] = self.reason.value
        return {key: value for key, value in details.items() if value is not None}


def _text(value: TimeLike | None) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else value.strftime("%H:%M:%S")


def _hours_label(minutes: int) -> str:
    hours = minutes / 60
    amount = f"{hours:g}"
    return f"{amount} hour" if minutes == 60 else f"{amount} hours"


def validate_booking_times(
    slot_start: TimeLike,
    slot_end: TimeLike,
    requested_start: TimeLike | None,
    requested_end: TimeLike | None,
    min_duration_minutes: int = DEFAULT_MIN_DURATION_MINUTES,
) -> TimeValidationFailure | None:
    """Return the first failed check, or None when the request is acceptable.

    Checks run in a fixed order and stop at the first failure: missing
    inputs, start bound, end bound, ordering, minimum duration.
    """
    bounds = {
        "slot_start": _text(slot_start),
        "slot_end": _text(slot_end),
        "requested_start": _text(requested_start),
        "requested_end": _text(requested_end),
    }

    if not requested_start or not requested_end:
        return TimeValidationFailure(
            reason=TimeValidationReasonEnum.MISSING_TIMES,
            title="Time not selected",
            description="Please select both start and end times",
            **bounds,
        )

    window_start = time_to_minutes(slot_start)
    window_end = time_to_minutes(slot_end)
    start = time_to_minutes(requested_start)
    end = time_to_minutes(requested_end)

    if start < window_start:
        return TimeValidationFailure(
            reason=TimeValidationReasonEnum.START_BEFORE_SLOT,
            title="Invalid start time",
            description=f"Start time must be at or after {format_12_hour(slot_start)}",
            **bounds,
        )

    if end > window_end:
        return TimeValidationFailure(
            reason=TimeValidationReasonEnum.END_AFTER_SLOT,
            title="Invalid end time",
            description=f"End time must be at or before {format_12_hour(slot_end)}",
            **bounds,
        )

    if end <= start:
        return TimeValidationFailure(
            reason=TimeValidationReasonEnum.END_NOT_AFTER_START,
            title="Invalid time range",
            description="End time must be after start time",
            **bounds,
        )

    if end - start < min_duration_minutes:
        return TimeValidationFailure(
            reason=TimeValidationReasonEnum.BELOW_MINIMUM_DURATION,
            title="Minimum duration not met",
            description=f"Lesson must be at least {_hours_label(min_duration_minutes)} long",
            min_duration_minutes=min_duration_minutes,
            **bounds,
        )

    return None
