"""Scheduling schemas."""

from __future__ import annotations

import datetime as dt
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import SessionModeEnum


class WindowCreate(BaseModel):
    """Publish availability window request."""

    date: dt.date
    start_time: dt.time
    end_time: dt.time
    mode: SessionModeEnum = SessionModeEnum.ONLINE
    location: str | None = Field(default=None, max_length=255)
    tutor_id: UUID | None = None


class WindowUpdate(BaseModel):
    """Reschedule availability window request."""

    date: dt.date
    start_time: dt.time
    end_time: dt.time
    location: str | None = Field(default=None, max_length=255)


class WindowRead(BaseModel):
    """Availability window response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tutor_id: UUID
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    mode: SessionModeEnum
    location: str | None
    is_booked: bool
    created_at: dt.datetime
    updated_at: dt.datetime


class TimeOptionsRead(BaseModel):
    """Times of day offered by pickers."""

    step_minutes: int
    times: list[str]
    labels: list[str]


class SuggestedEndRead(BaseModel):
    """Pre-filled end time for a booking form."""

    window_id: UUID
    start_time: dt.time
    end_time: dt.time
