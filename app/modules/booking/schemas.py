"""Booking schemas."""

from __future__ import annotations

from datetime import datetime, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import BookingStatusEnum, PaymentStatusEnum, SessionModeEnum


class BookingRequest(BaseModel):
    """Book part of an availability window."""

    window_id: UUID
    start_time: time | None = None
    end_time: time | None = None
    notes: str | None = Field(default=None, max_length=2000)


class PaymentStatusUpdate(BaseModel):
    """Admin payment status change."""

    payment_status: PaymentStatusEnum


class BookingRead(BaseModel):
    """Booking response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    tutor_id: UUID
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    mode: SessionModeEnum
    location: str | None
    notes: str | None
    status: BookingStatusEnum
    payment_status: PaymentStatusEnum
    price_minor: int
    is_free_trial: bool
    confirmed_at: datetime | None
    cancelled_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class BookingCreatedRead(BaseModel):
    """Pay-later booking result."""

    booking: BookingRead
    price_minor: int
    price_display: str


class CheckoutRead(BaseModel):
    """Hosted checkout session for a pay-now booking."""

    checkout_url: str
    session_id: str
    price_minor: int
    price_display: str
