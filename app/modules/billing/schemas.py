"""Billing schemas."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel

from app.core.enums import SessionModeEnum


class QuoteRead(BaseModel):
    """Price for a session of a given mode and length."""

    mode: SessionModeEnum
    duration_minutes: int
    hourly_rate_minor: int
    price_minor: int
    price_display: str
    currency: str


class WebhookResult(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = True
    handled: bool = False
    booking_id: UUID | None = None
    already_processed: bool = False
    unallocated: bool = False
