"""Hosted checkout sessions for pay-now bookings.

The booking intent travels to the payment provider as string metadata and
comes back on the ``checkout.session.completed`` webhook. Nothing is stored
locally until that confirmation arrives.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Protocol
from uuid import UUID

import stripe

from app.core.config import Settings, get_settings
from app.core.enums import SessionModeEnum
from app.modules.billing.pricing import format_price
from app.modules.scheduling.time_utils import format_12_hour, minutes_to_time, time_to_minutes
from app.shared.exceptions import WebhookVerificationException

logger = logging.getLogger(__name__)

COMPLETED_EVENT_TYPE = "checkout.session.completed"

_REQUIRED_METADATA = ("student_id", "window_id", "window_date", "start_time", "end_time")


@dataclass(frozen=True, slots=True)
class CheckoutIntent:
    """Everything needed to create the booking once payment succeeds."""

    student_id: UUID
    window_id: UUID
    window_date: date
    mode: SessionModeEnum
    location: str | None
    start_time: time
    end_time: time
    duration_minutes: int
    notes: str | None
    amount_minor: int

    def to_metadata(self) -> dict[str, str]:
        return {
            "student_id": str(self.student_id),
            "window_id": str(self.window_id),
            "window_date": self.window_date.isoformat(),
            "mode": self.mode.value,
            "location": self.location or "",
            "start_time": minutes_to_time(time_to_minutes(self.start_time)),
            "end_time": minutes_to_time(time_to_minutes(self.end_time)),
            "duration": str(self.duration_minutes),
            "notes": self.notes or "",
            "amount": str(self.amount_minor),
        }

    @classmethod
    def from_metadata(cls, metadata: dict[str, str]) -> "CheckoutIntent":
        """Rebuild the intent; raises ValueError on missing or malformed fields."""
        missing = [key for key in _REQUIRED_METADATA if not metadata.get(key)]
        if missing:
            raise ValueError(f"Missing booking metadata: {', '.join(missing)}")

        return cls(
            student_id=UUID(metadata["student_id"]),
            window_id=UUID(metadata["window_id"]),
            window_date=date.fromisoformat(metadata["window_date"]),
            mode=SessionModeEnum(metadata.get("mode") or SessionModeEnum.ONLINE),
            location=metadata.get("location") or None,
            start_time=time.fromisoformat(metadata["start_time"]),
            end_time=time.fromisoformat(metadata["end_time"]),
            duration_minutes=int(metadata.get("duration") or 0),
            notes=metadata.get("notes") or None,
            amount_minor=int(metadata.get("amount") or 0),
        )


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    session_id: str
    url: str


@dataclass(frozen=True, slots=True)
class PaymentConfirmation:
    """A verified, completed checkout carrying its booking intent."""

    session_id: str
    intent: CheckoutIntent
    customer_email: str | None = None


class CheckoutProvider(Protocol):
    async def create_checkout_session(
        self,
        intent: CheckoutIntent,
        amount_minor: int,
        customer_email: str | None,
    ) -> CheckoutSession: ...

    def parse_webhook(self, payload: bytes, signature: str | None) -> PaymentConfirmation | None: ...


class StripeCheckoutProvider:
    """Stripe Checkout implementation of :class:`CheckoutProvider`."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _session_description(self, intent: CheckoutIntent) -> str:
        mode_label = "Online" if intent.mode == SessionModeEnum.ONLINE else "In-person"
        return (
            f"{mode_label} session on {intent.window_date.isoformat()}, "
            f"{format_12_hour(intent.start_time)} to {format_12_hour(intent.end_time)} "
            f"({intent.duration_minutes} min)"
        )

    async def create_checkout_session(
        self,
        intent: CheckoutIntent,
        amount_minor: int,
        customer_email: str | None,
    ) -> CheckoutSession:
        if not self.settings.stripe_secret_key:
            raise RuntimeError("STRIPE_SECRET_KEY is not configured")

        params = {
            "api_key": self.settings.stripe_secret_key,
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": self.settings.payment_currency,
                        "product_data": {
                            "name": self.settings.checkout_product_name,
                            "description": self._session_description(intent),
                        },
                        "unit_amount": amount_minor,
                    },
                    "quantity": 1,
                },
            ],
            "success_url": self.settings.checkout_success_url,
            "cancel_url": self.settings.checkout_cancel_url,
            "metadata": intent.to_metadata(),
        }
        if customer_email:
            params["customer_email"] = customer_email

        session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        logger.info(
            "Checkout session %s created for window %s (%s)",
            session.id,
            intent.window_id,
            format_price(amount_minor),
        )
        return CheckoutSession(session_id=session.id, url=session.url)

    def parse_webhook(self, payload: bytes, signature: str | None) -> PaymentConfirmation | None:
        """Verify the signature and extract a confirmation.

        Returns None for event types that do not complete a checkout.
        """
        if not signature:
            raise WebhookVerificationException("Missing Stripe-Signature header")
        if not self.settings.stripe_webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.settings.stripe_webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Invalid webhook signature")
            raise WebhookVerificationException("Invalid webhook signature") from exc
        except ValueError as exc:
            raise WebhookVerificationException("Webhook payload is not valid JSON") from exc

        if event["type"] != COMPLETED_EVENT_TYPE:
            logger.debug("Ignoring webhook event %s", event["type"])
            return None

        # StripeObject is not a dict; read fields from a plain copy.
        checkout = event.to_dict()["data"]["object"]
        try:
            intent = CheckoutIntent.from_metadata(dict(checkout.get("metadata") or {}))
        except ValueError as exc:
            raise WebhookVerificationException(str(exc)) from exc

        customer_details = checkout.get("customer_details") or {}
        return PaymentConfirmation(
            session_id=checkout["id"],
            intent=intent,
            customer_email=customer_details.get("email"),
        )


def get_checkout_provider() -> CheckoutProvider:
    """Dependency provider for the configured checkout provider."""
    return StripeCheckoutProvider(get_settings())
