"""Billing business logic layer."""

from __future__ import annotations

import logging

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import SessionModeEnum
from app.modules.audit.repository import AuditRepository
from app.modules.billing.checkout import CheckoutProvider, PaymentConfirmation, get_checkout_provider
from app.modules.billing.pricing import format_price, price, rate
from app.modules.billing.schemas import QuoteRead, WebhookResult
from app.modules.booking.service import BookingService, get_booking_service
from app.shared.exceptions import BookingValidationException, SlotUnavailableException

settings = get_settings()
logger = logging.getLogger(__name__)

UNALLOCATED_PAYMENT_EVENT = "billing.payment.unallocated"


class BillingService:
    """Price quotes and payment-confirmation handling."""

    def __init__(
        self,
        booking_service: BookingService,
        audit_repository: AuditRepository,
        checkout_provider: CheckoutProvider,
    ) -> None:
        self.booking_service = booking_service
        self.audit_repository = audit_repository
        self.checkout_provider = checkout_provider

    @staticmethod
    def quote(mode: SessionModeEnum, duration_minutes: int) -> QuoteRead:
        """Price a session without booking it."""
        price_minor = price(mode, duration_minutes)
        return QuoteRead(
            mode=mode,
            duration_minutes=duration_minutes,
            hourly_rate_minor=rate(mode),
            price_minor=price_minor,
            price_display=format_price(price_minor),
            currency=settings.payment_currency,
        )

    async def handle_checkout_webhook(self, payload: bytes, signature: str | None) -> WebhookResult:
        """Turn a verified checkout completion into a booking.

        Payments whose window is gone or no longer fits are acknowledged and
        queued for an admin to refund or reassign, so the provider stops
        retrying.
        """
        confirmation = self.checkout_provider.parse_webhook(payload, signature)
        if confirmation is None:
            return WebhookResult(handled=False)

        try:
            booking, already_processed = await self.booking_service.confirm_paid_booking(confirmation)
        except (SlotUnavailableException, BookingValidationException) as exc:
            await self._record_unallocated_payment(confirmation, exc)
            return WebhookResult(handled=True, unallocated=True)

        return WebhookResult(handled=True, booking_id=booking.id, already_processed=already_processed)

    async def _record_unallocated_payment(self, confirmation: PaymentConfirmation, exc: Exception) -> None:
        intent = confirmation.intent
        logger.warning(
            "Paid checkout %s could not be allocated to window %s: %s",
            confirmation.session_id,
            intent.window_id,
            exc,
        )
        payload = {
            "session_id": confirmation.session_id,
            "student_id": str(intent.student_id),
            "window_id": str(intent.window_id),
            "window_date": intent.window_date.isoformat(),
            "start_time": intent.start_time.isoformat(),
            "end_time": intent.end_time.isoformat(),
            "amount_minor": intent.amount_minor,
            "reason": getattr(exc, "code", type(exc).__name__),
        }
        await self.audit_repository.create_audit_log(
            actor_id=None,
            action=UNALLOCATED_PAYMENT_EVENT,
            entity_type="payment_session",
            entity_id=confirmation.session_id,
            payload=payload,
        )
        await self.audit_repository.create_outbox_event(
            aggregate_type="payment_session",
            aggregate_id=confirmation.session_id,
            event_type=UNALLOCATED_PAYMENT_EVENT,
            payload=payload,
        )


async def get_billing_service(
    session: AsyncSession = Depends(get_db_session),
    booking_service: BookingService = Depends(get_booking_service),
    checkout_provider: CheckoutProvider = Depends(get_checkout_provider),
) -> BillingService:
    """Dependency provider for billing service."""
    return BillingService(
        booking_service=booking_service,
        audit_repository=AuditRepository(session),
        checkout_provider=checkout_provider,
    )
