"""Booking API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status

from app.modules.billing.pricing import format_price
from app.modules.booking.schemas import (
    BookingCreatedRead,
    BookingRead,
    BookingRequest,
    CheckoutRead,
    PaymentStatusUpdate,
)
from app.modules.booking.service import BookingService, get_booking_service
from app.modules.identity.service import get_current_user
from app.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/bookings", tags=["booking"])


@router.post("", response_model=BookingCreatedRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingRequest,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> BookingCreatedRead:
    """Book now and pay later."""
    booking = await service.create_booking(payload, current_user)
    return BookingCreatedRead(
        booking=BookingRead.model_validate(booking),
        price_minor=booking.price_minor,
        price_display=format_price(booking.price_minor),
    )


@router.post("/checkout", response_model=CheckoutRead)
async def start_checkout(
    payload: BookingRequest,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> CheckoutRead:
    """Start a hosted checkout; the booking is created when payment succeeds."""
    session, price_minor = await service.start_checkout(payload, current_user)
    return CheckoutRead(
        checkout_url=session.url,
        session_id=session.session_id,
        price_minor=price_minor,
        price_display=format_price(price_minor),
    )


@router.get("/my", response_model=Page[BookingRead])
async def list_my_bookings(
    pagination=Depends(get_pagination_params),
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> Page[BookingRead]:
    """List bookings for current user."""
    items, total = await service.list_bookings(current_user, pagination.limit, pagination.offset)
    serialized = [BookingRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.post("/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> BookingRead:
    """Cancel a pending booking."""
    booking = await service.cancel_booking(booking_id, current_user)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/confirm", response_model=BookingRead)
async def confirm_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> BookingRead:
    """Confirm a pending booking."""
    booking = await service.confirm_booking(booking_id, current_user)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/complete", response_model=BookingRead)
async def complete_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> BookingRead:
    """Mark a finished lesson as completed."""
    booking = await service.complete_booking(booking_id, current_user)
    return BookingRead.model_validate(booking)


@router.patch("/{booking_id}/payment-status", response_model=BookingRead)
async def update_payment_status(
    booking_id: UUID,
    payload: PaymentStatusUpdate,
    service: BookingService = Depends(get_booking_service),
    current_user=Depends(get_current_user),
) -> BookingRead:
    """Change payment status (admin)."""
    booking = await service.update_payment_status(booking_id, payload.payment_status, current_user)
    return BookingRead.model_validate(booking)
