"""Billing API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request

from app.core.enums import SessionModeEnum
from app.modules.billing.schemas import QuoteRead, WebhookResult
from app.modules.billing.service import BillingService, get_billing_service

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/quote", response_model=QuoteRead)
async def get_quote(
    mode: SessionModeEnum = Query(...),
    duration_minutes: int = Query(..., ge=1, le=24 * 60),
) -> QuoteRead:
    """Price a session by mode and length."""
    return BillingService.quote(mode, duration_minutes)


@router.post("/webhooks/stripe", response_model=WebhookResult)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    service: BillingService = Depends(get_billing_service),
) -> WebhookResult:
    """Receive checkout completion events."""
    payload = await request.body()
    return await service.handle_checkout_webhook(payload, stripe_signature)
