"""Booking business logic layer.

Two entry paths create bookings from availability windows:

* pay-later: validate, price, persist and consume the window immediately;
* pay-now: validate and price, hand the intent to the checkout provider, and
  persist only when the provider confirms payment.

Both paths share one commit step. The booking row is inserted first and the
window is then removed with a conditional delete inside the same savepoint,
so a lost race rolls the booking back and nothing double-books. Remainder
windows and notifications come afterwards and are best effort.
"""

from __future__ import annotations

import logging
from datetime import datetime, time
from uuid import UUID

from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import (
    BookingStatusEnum,
    PaymentPathEnum,
    PaymentStatusEnum,
    RoleEnum,
)
from app.core.metrics import (
    ALLOCATION_FAILURES_TOTAL,
    BOOKING_CONTENTION_TOTAL,
    BOOKINGS_CREATED_TOTAL,
    NOTIFICATION_FAILURES_TOTAL,
)
from app.modules.audit.repository import AuditRepository
from app.modules.billing.checkout import (
    CheckoutIntent,
    CheckoutProvider,
    CheckoutSession,
    PaymentConfirmation,
    get_checkout_provider,
)
from app.modules.billing.pricing import format_price, price
from app.modules.booking.models import Booking
from app.modules.booking.repository import BookingRepository
from app.modules.booking.schemas import BookingRequest
from app.modules.booking.validation import validate_booking_times
from app.modules.identity.models import User
from app.modules.notifications.dispatcher import (
    BookingNotificationPayload,
    NotificationDispatcher,
    OutboxNotificationDispatcher,
)
from app.modules.scheduling.allocator import AllocationPlan, allocate
from app.modules.scheduling.models import AvailabilityWindow
from app.modules.scheduling.repository import SchedulingRepository
from app.modules.scheduling.time_utils import combine_local, duration_minutes, format_12_hour
from app.shared.exceptions import (
    BookingValidationException,
    BusinessRuleException,
    ConflictException,
    DuplicatePaymentSessionError,
    NotFoundException,
    OperationFailedException,
    SlotUnavailableException,
    UnauthorizedException,
)
from app.shared.utils import new_correlation_id, utc_now

settings = get_settings()
logger = logging.getLogger(__name__)

PAYMENT_STATUS_TRANSITIONS: dict[PaymentStatusEnum, frozenset[PaymentStatusEnum]] = {
    PaymentStatusEnum.UNPAID: frozenset({PaymentStatusEnum.PENDING, PaymentStatusEnum.PAID}),
    PaymentStatusEnum.PENDING: frozenset(
        {PaymentStatusEnum.PAID, PaymentStatusEnum.UNPAID, PaymentStatusEnum.PROCESSING},
    ),
    PaymentStatusEnum.PROCESSING: frozenset({PaymentStatusEnum.PAID, PaymentStatusEnum.UNPAID}),
    PaymentStatusEnum.PAID: frozenset({PaymentStatusEnum.REFUNDED}),
    PaymentStatusEnum.REFUNDED: frozenset(),
}


class BookingService:
    """Booking orchestration and lifecycle rules."""

    def __init__(
        self,
        booking_repository: BookingRepository,
        scheduling_repository: SchedulingRepository,
        audit_repository: AuditRepository,
        notification_dispatcher: NotificationDispatcher,
        checkout_provider: CheckoutProvider | None = None,
    ) -> None:
        self.booking_repository = booking_repository
        self.scheduling_repository = scheduling_repository
        self.audit_repository = audit_repository
        self.notification_dispatcher = notification_dispatcher
        self.checkout_provider = checkout_provider

    @staticmethod
    def _ensure_student(actor: User) -> None:
        if actor.role.name != RoleEnum.STUDENT:
            raise UnauthorizedException("Only students can book lessons")

    @staticmethod
    def _validate_actor_access(booking: Booking, actor: User) -> None:
        if actor.role.name == RoleEnum.ADMIN:
            return
        if actor.role.name == RoleEnum.STUDENT and booking.student_id == actor.id:
            return
        if actor.role.name == RoleEnum.TUTOR and booking.tutor_id == actor.id:
            return
        raise UnauthorizedException("You cannot manage this booking")

    @staticmethod
    def _ensure_tutor_or_admin(booking: Booking, actor: User) -> None:
        if actor.role.name == RoleEnum.ADMIN:
            return
        if actor.role.name == RoleEnum.TUTOR and booking.tutor_id == actor.id:
            return
        raise UnauthorizedException("Only the tutor or an admin can do this")

    async def _load_window(self, window_id: UUID) -> AvailabilityWindow:
        """Load a bookable window; a missing one was taken or withdrawn."""
        window = await self.scheduling_repository.get_window_by_id(window_id)
        if window is None:
            BOOKING_CONTENTION_TOTAL.inc()
            logger.info("Window %s is no longer available", window_id)
            raise SlotUnavailableException()
        return window

    @staticmethod
    def _ensure_not_started(window: AvailabilityWindow, start_time: time) -> None:
        if combine_local(window.date, start_time, settings.business_tz) <= utc_now():
            raise BusinessRuleException("This time has already passed and can no longer be booked")

    async def _replayed_booking(self, session_id: str) -> Booking | None:
        existing = await self.booking_repository.get_booking_by_payment_session(session_id)
        if existing is not None:
            logger.info("Payment session %s already produced booking %s", session_id, existing.id)
        return existing

    @staticmethod
    def _validate_times(window: AvailabilityWindow, start_time: time | None, end_time: time | None) -> int:
        failure = validate_booking_times(
            window.start_time,
            window.end_time,
            start_time,
            end_time,
            min_duration_minutes=settings.booking_min_duration_minutes,
        )
        if failure is not None:
            raise BookingValidationException(failure.description, details=failure.as_details())
        return duration_minutes(start_time, end_time)

    async def _persist(
        self,
        window: AvailabilityWindow,
        plan: AllocationPlan,
        *,
        student_id: UUID,
        start_time: time,
        end_time: time,
        minutes: int,
        price_minor: int,
        notes: str | None,
        status: BookingStatusEnum,
        payment_status: PaymentStatusEnum,
        payment_session_id: str | None = None,
        confirmed_at: datetime | None = None,
    ) -> Booking:
        """Insert the booking and consume its window as one unit."""
        tz = settings.business_tz
        try:
            async with self.booking_repository.atomic():
                booking = await self.booking_repository.create_booking(
                    student_id=student_id,
                    tutor_id=window.tutor_id,
                    start_at=combine_local(window.date, start_time, tz),
                    end_at=combine_local(window.date, end_time, tz),
                    duration_minutes=minutes,
                    mode=window.mode,
                    location=window.location,
                    notes=notes,
                    status=status,
                    payment_status=payment_status,
                    price_minor=price_minor,
                    payment_session_id=payment_session_id,
                    confirmed_at=confirmed_at,
                )
                if not await self.scheduling_repository.consume_window(plan.window_id):
                    raise SlotUnavailableException()
        except SlotUnavailableException:
            BOOKING_CONTENTION_TOTAL.inc()
            logger.info("Window %s was taken before student %s could book it", plan.window_id, student_id)
            raise
        except SQLAlchemyError as exc:
            correlation_id = new_correlation_id()
            logger.exception(
                "Booking persistence failed [correlation_id=%s window_id=%s student_id=%s]",
                correlation_id,
                plan.window_id,
                student_id,
            )
            raise OperationFailedException(correlation_id) from exc
        return booking

    async def _apply_remainders(self, booking: Booking, plan: AllocationPlan) -> None:
        """Insert remainder windows; a failure leaves a gap to be reconciled."""
        if plan.deletes_only:
            return
        try:
            await self.scheduling_repository.insert_remainders(plan.remainders)
        except Exception:
            ALLOCATION_FAILURES_TOTAL.inc()
            logger.exception(
                "Remainder windows not restored [booking_id=%s window_id=%s]",
                booking.id,
                plan.window_id,
            )
            await self.audit_repository.create_audit_log(
                actor_id=None,
                action="scheduling.allocation.failed",
                entity_type="availability_window",
                entity_id=str(plan.window_id),
                payload={
                    "booking_id": str(booking.id),
                    "remainders": [
                        {
                            "date": remainder.date.isoformat(),
                            "start_time": remainder.start_time.isoformat(),
                            "end_time": remainder.end_time.isoformat(),
                            "mode": remainder.mode.value,
                        }
                        for remainder in plan.remainders
                    ],
                },
            )

    async def _notify(self, booking: Booking) -> None:
        tz = settings.business_tz
        local_start = booking.start_at.astimezone(tz)
        local_end = booking.end_at.astimezone(tz)
        payload = BookingNotificationPayload(
            booking_id=booking.id,
            student_id=booking.student_id,
            tutor_id=booking.tutor_id,
            date=local_start.date().isoformat(),
            start_time=format_12_hour(local_start.time()),
            end_time=format_12_hour(local_end.time()),
            duration_minutes=booking.duration_minutes,
            mode=booking.mode.value,
            location=booking.location,
            price_display=format_price(booking.price_minor),
            payment_status=booking.payment_status.value,
        )
        try:
            dispatched = await self.notification_dispatcher.dispatch(payload)
        except Exception:
            logger.exception("Notification dispatch raised for booking %s", booking.id)
            dispatched = False
        if not dispatched:
            NOTIFICATION_FAILURES_TOTAL.inc()
            logger.warning("Booking %s was created without notifications", booking.id)

    async def _finish_creation(
        self,
        booking: Booking,
        plan: AllocationPlan,
        path: PaymentPathEnum,
        actor_id: UUID | None,
    ) -> None:
        BOOKINGS_CREATED_TOTAL.labels(path=path.value).inc()
        await self.audit_repository.create_audit_log(
            actor_id=actor_id,
            action="booking.created",
            entity_type="booking",
            entity_id=str(booking.id),
            payload={
                "window_id": str(plan.window_id),
                "path": path.value,
                "price_minor": booking.price_minor,
                "remainders": len(plan.remainders),
            },
        )
        await self._apply_remainders(booking, plan)
        await self._notify(booking)

    async def create_booking(self, payload: BookingRequest, actor: User) -> Booking:
        """Pay-later booking: persisted now as pending and unpaid."""
        self._ensure_student(actor)
        window = await self._load_window(payload.window_id)
        minutes = self._validate_times(window, payload.start_time, payload.end_time)
        self._ensure_not_started(window, payload.start_time)
        price_minor = price(window.mode, minutes)
        plan = allocate(window, payload.start_time, payload.end_time)

        booking = await self._persist(
            window,
            plan,
            student_id=actor.id,
            start_time=payload.start_time,
            end_time=payload.end_time,
            minutes=minutes,
            price_minor=price_minor,
            notes=payload.notes,
            status=BookingStatusEnum.PENDING,
            payment_status=PaymentStatusEnum.UNPAID,
        )
        await self._finish_creation(booking, plan, PaymentPathEnum.PAY_LATER, actor.id)
        logger.info("Booking %s created (pay-later, %s minutes, %s)", booking.id, minutes, format_price(price_minor))
        return booking

    async def start_checkout(self, payload: BookingRequest, actor: User) -> tuple[CheckoutSession, int]:
        """Pay-now booking: open a hosted checkout, store nothing yet."""
        self._ensure_student(actor)
        if self.checkout_provider is None:
            raise BusinessRuleException("Online payment is not available")

        window = await self._load_window(payload.window_id)
        minutes = self._validate_times(window, payload.start_time, payload.end_time)
        self._ensure_not_started(window, payload.start_time)
        price_minor = price(window.mode, minutes)
        intent = CheckoutIntent(
            student_id=actor.id,
            window_id=window.id,
            window_date=window.date,
            mode=window.mode,
            location=window.location,
            start_time=payload.start_time,
            end_time=payload.end_time,
            duration_minutes=minutes,
            notes=payload.notes,
            amount_minor=price_minor,
        )
        try:
            session = await self.checkout_provider.create_checkout_session(intent, price_minor, actor.email)
        except Exception as exc:
            correlation_id = new_correlation_id()
            logger.exception(
                "Checkout session creation failed [correlation_id=%s window_id=%s]",
                correlation_id,
                window.id,
            )
            raise OperationFailedException(correlation_id) from exc
        return session, price_minor

    async def confirm_paid_booking(self, confirmation: PaymentConfirmation) -> tuple[Booking, bool]:
        """Create the booking for a confirmed payment.

        Returns the booking and whether the confirmation had already been
        processed. Replays of the same checkout session never create a
        second booking.
        """
        existing = await self._replayed_booking(confirmation.session_id)
        if existing is not None:
            return existing, True

        # An earlier delivery may have committed after the lookup above and
        # consumed the window, so check again before reporting a failure.
        intent = confirmation.intent
        window = await self.scheduling_repository.get_window_by_id(intent.window_id)
        if window is None:
            existing = await self._replayed_booking(confirmation.session_id)
            if existing is not None:
                return existing, True
            BOOKING_CONTENTION_TOTAL.inc()
            raise SlotUnavailableException()

        try:
            minutes = self._validate_times(window, intent.start_time, intent.end_time)
        except BookingValidationException:
            existing = await self._replayed_booking(confirmation.session_id)
            if existing is not None:
                return existing, True
            raise
        price_minor = price(window.mode, minutes)
        if price_minor != intent.amount_minor:
            logger.warning(
                "Checkout amount %s differs from computed price %s for session %s",
                intent.amount_minor,
                price_minor,
                confirmation.session_id,
            )
        plan = allocate(window, intent.start_time, intent.end_time)

        try:
            booking = await self._persist(
                window,
                plan,
                student_id=intent.student_id,
                start_time=intent.start_time,
                end_time=intent.end_time,
                minutes=minutes,
                price_minor=price_minor,
                notes=intent.notes,
                status=BookingStatusEnum.CONFIRMED,
                payment_status=PaymentStatusEnum.PAID,
                payment_session_id=confirmation.session_id,
                confirmed_at=utc_now(),
            )
        except DuplicatePaymentSessionError:
            existing = await self.booking_repository.get_booking_by_payment_session(confirmation.session_id)
            if existing is None:
                raise
            logger.info("Concurrent delivery of payment session %s ignored", confirmation.session_id)
            return existing, True

        await self._finish_creation(booking, plan, PaymentPathEnum.PAY_NOW, intent.student_id)
        logger.info("Booking %s created (pay-now, session %s)", booking.id, confirmation.session_id)
        return booking, False

    async def _get_booking(self, booking_id: UUID) -> Booking:
        booking = await self.booking_repository.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        return booking

    async def _record_transition(self, booking: Booking, actor: User, event_type: str, **extra) -> None:
        payload = {
            "booking_id": str(booking.id),
            "student_id": str(booking.student_id),
            "tutor_id": str(booking.tutor_id),
            "start_at": booking.start_at.isoformat(),
            **extra,
        }
        await self.audit_repository.create_audit_log(
            actor_id=actor.id,
            action=event_type,
            entity_type="booking",
            entity_id=str(booking.id),
            payload=payload,
        )
        await self.audit_repository.create_outbox_event(
            aggregate_type="booking",
            aggregate_id=str(booking.id),
            event_type=event_type,
            payload=payload,
        )

    async def cancel_booking(self, booking_id: UUID, actor: User) -> Booking:
        """Cancel a pending booking; the row is kept."""
        booking = await self._get_booking(booking_id)
        self._validate_actor_access(booking, actor)
        if booking.status != BookingStatusEnum.PENDING:
            raise ConflictException("Only pending bookings can be cancelled")

        booking.status = BookingStatusEnum.CANCELLED
        booking.cancelled_at = utc_now()
        await self.booking_repository.save(booking)
        await self._record_transition(booking, actor, "booking.cancelled")
        return booking

    async def confirm_booking(self, booking_id: UUID, actor: User) -> Booking:
        booking = await self._get_booking(booking_id)
        self._ensure_tutor_or_admin(booking, actor)
        if booking.status != BookingStatusEnum.PENDING:
            raise ConflictException("Only pending bookings can be confirmed")

        booking.status = BookingStatusEnum.CONFIRMED
        booking.confirmed_at = utc_now()
        await self.booking_repository.save(booking)
        await self._record_transition(booking, actor, "booking.confirmed")
        return booking

    async def complete_booking(self, booking_id: UUID, actor: User) -> Booking:
        """Mark a confirmed lesson as held once its end time has passed."""
        booking = await self._get_booking(booking_id)
        self._ensure_tutor_or_admin(booking, actor)
        if booking.status != BookingStatusEnum.CONFIRMED:
            raise ConflictException("Only confirmed bookings can be completed")

        now = utc_now()
        if booking.end_at > now:
            raise BusinessRuleException("A lesson cannot be completed before it ends")

        booking.status = BookingStatusEnum.COMPLETED
        booking.completed_at = now
        await self.booking_repository.save(booking)
        await self._record_transition(booking, actor, "booking.completed")
        return booking

    async def update_payment_status(
        self,
        booking_id: UUID,
        payment_status: PaymentStatusEnum,
        actor: User,
    ) -> Booking:
        if actor.role.name != RoleEnum.ADMIN:
            raise UnauthorizedException("Only admin can change payment status")

        booking = await self._get_booking(booking_id)
        current = booking.payment_status
        if payment_status not in PAYMENT_STATUS_TRANSITIONS[current]:
            raise ConflictException(f"Payment status cannot change from {current.value} to {payment_status.value}")

        booking.payment_status = payment_status
        await self.booking_repository.save(booking)
        await self._record_transition(
            booking,
            actor,
            "booking.payment_status.updated",
            from_status=current.value,
            to_status=payment_status.value,
        )
        return booking

    async def list_bookings(
        self,
        actor: User,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        """List bookings for actor according to role."""
        return await self.booking_repository.list_bookings(actor.id, actor.role.name, limit, offset)


async def get_booking_service(
    session: AsyncSession = Depends(get_db_session),
    checkout_provider: CheckoutProvider = Depends(get_checkout_provider),
) -> BookingService:
    """Dependency provider for booking service."""
    audit_repository = AuditRepository(session)
    return BookingService(
        booking_repository=BookingRepository(session),
        scheduling_repository=SchedulingRepository(session),
        audit_repository=audit_repository,
        notification_dispatcher=OutboxNotificationDispatcher(audit_repository),
        checkout_provider=checkout_provider,
    )
