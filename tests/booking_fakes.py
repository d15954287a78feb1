"""In-memory stand-ins for the booking, scheduling and audit repositories."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import date, datetime, time
from types import SimpleNamespace
from uuid import UUID, uuid4

from prometheus_client import REGISTRY

from app.core.enums import BookingStatusEnum, PaymentStatusEnum, RoleEnum, SessionModeEnum
from app.modules.billing.checkout import CheckoutIntent, CheckoutSession, PaymentConfirmation
from app.modules.booking.service import BookingService
from app.shared.exceptions import DuplicatePaymentSessionError

_atomic_scope: ContextVar[list[UUID] | None] = ContextVar("atomic_scope", default=None)

LESSON_DATE = date(2026, 11, 2)


@dataclass
class FakeWindow:
    id: UUID
    tutor_id: UUID
    date: date
    start_time: time
    end_time: time
    mode: SessionModeEnum
    location: str | None = None
    is_booked: bool = False


@dataclass
class FakeBooking:
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
    payment_session_id: str | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    is_free_trial: bool = False
    id: UUID = field(default_factory=uuid4)


class FakeSchedulingRepository:
    def __init__(self, windows: list[FakeWindow] | None = None) -> None:
        self.windows: dict[UUID, FakeWindow] = {window.id: window for window in windows or []}
        self.fail_remainders = False

    async def get_window_by_id(self, window_id: UUID) -> FakeWindow | None:
        return self.windows.get(window_id)

    async def list_tutor_windows_on_date(
        self,
        tutor_id: UUID,
        window_date: date,
        mode: SessionModeEnum | None = None,
    ) -> list[FakeWindow]:
        return sorted(
            (
                window
                for window in self.windows.values()
                if window.tutor_id == tutor_id
                and window.date == window_date
                and (mode is None or window.mode == mode)
            ),
            key=lambda window: window.start_time,
        )

    async def consume_window(self, window_id: UUID) -> bool:
        await asyncio.sleep(0)
        window = self.windows.get(window_id)
        if window is None or window.is_booked:
            return False
        del self.windows[window_id]
        return True

    async def insert_remainders(self, remainders: tuple) -> list[FakeWindow]:
        if self.fail_remainders:
            raise RuntimeError("remainder insert failed")
        created = [
            FakeWindow(
                id=uuid4(),
                tutor_id=remainder.tutor_id,
                date=remainder.date,
                start_time=remainder.start_time,
                end_time=remainder.end_time,
                mode=remainder.mode,
                location=remainder.location,
                is_booked=remainder.is_booked,
            )
            for remainder in remainders
        ]
        for window in created:
            self.windows[window.id] = window
        return created


class FakeBookingRepository:
    def __init__(self, bookings: list[FakeBooking] | None = None) -> None:
        self.bookings: dict[UUID, FakeBooking] = {booking.id: booking for booking in bookings or []}
        self.fail_insert: Exception | None = None
        self.session_lookup_misses = 0

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        created: list[UUID] = []
        token = _atomic_scope.set(created)
        try:
            yield
        except Exception:
            for booking_id in created:
                self.bookings.pop(booking_id, None)
            raise
        finally:
            _atomic_scope.reset(token)

    async def create_booking(self, **kwargs) -> FakeBooking:
        await asyncio.sleep(0)
        if self.fail_insert is not None:
            raise self.fail_insert
        session_id = kwargs.get("payment_session_id")
        if session_id is not None and any(
            booking.payment_session_id == session_id for booking in self.bookings.values()
        ):
            raise DuplicatePaymentSessionError(session_id)

        booking = FakeBooking(**kwargs)
        self.bookings[booking.id] = booking
        scope = _atomic_scope.get()
        if scope is not None:
            scope.append(booking.id)
        return booking

    async def get_booking_by_id(self, booking_id: UUID) -> FakeBooking | None:
        return self.bookings.get(booking_id)

    async def get_booking_by_payment_session(self, payment_session_id: str) -> FakeBooking | None:
        if self.session_lookup_misses:
            self.session_lookup_misses -= 1
            return None
        for booking in self.bookings.values():
            if booking.payment_session_id == payment_session_id:
                return booking
        return None

    async def list_bookings(
        self,
        user_id: UUID,
        role_name: RoleEnum,
        limit: int,
        offset: int,
    ) -> tuple[list[FakeBooking], int]:
        items = [
            booking
            for booking in self.bookings.values()
            if role_name == RoleEnum.ADMIN
            or (role_name == RoleEnum.STUDENT and booking.student_id == user_id)
            or (role_name == RoleEnum.TUTOR and booking.tutor_id == user_id)
        ]
        items.sort(key=lambda booking: booking.start_at, reverse=True)
        return items[offset : offset + limit], len(items)

    async def list_active_bookings(self, ending_after: datetime, limit: int) -> list[FakeBooking]:
        items = [
            booking
            for booking in self.bookings.values()
            if booking.status in (BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED)
            and booking.end_at > ending_after
        ]
        items.sort(key=lambda booking: booking.start_at)
        return items[:limit]

    async def save(self, booking: FakeBooking) -> FakeBooking:
        self.bookings[booking.id] = booking
        return booking


class FakeAuditRepository:
    def __init__(self) -> None:
        self.logs: list[dict] = []
        self.events: list[dict] = []

    async def create_audit_log(
        self,
        actor_id: UUID | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict,
    ) -> None:
        self.logs.append(
            {
                "actor_id": actor_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "payload": payload,
            },
        )

    async def create_outbox_event(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
    ) -> None:
        self.events.append(
            {
                "aggregate_type": aggregate_type,
                "aggregate_id": aggregate_id,
                "event_type": event_type,
                "payload": payload,
            },
        )

    def actions(self) -> list[str]:
        return [log["action"] for log in self.logs]


class FakeDispatcher:
    def __init__(self, *, result: bool = True, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.payloads: list = []

    async def dispatch(self, payload) -> bool:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.result


class FakeCheckoutProvider:
    def __init__(
        self,
        *,
        confirmation: PaymentConfirmation | None = None,
        error: Exception | None = None,
    ) -> None:
        self.confirmation = confirmation
        self.error = error
        self.created: list[tuple[CheckoutIntent, int, str | None]] = []

    async def create_checkout_session(
        self,
        intent: CheckoutIntent,
        amount_minor: int,
        customer_email: str | None,
    ) -> CheckoutSession:
        if self.error is not None:
            raise self.error
        self.created.append((intent, amount_minor, customer_email))
        session_id = f"cs_test_{len(self.created)}"
        return CheckoutSession(session_id=session_id, url=f"https://checkout.test/{session_id}")

    def parse_webhook(self, payload: bytes, signature: str | None) -> PaymentConfirmation | None:
        if self.error is not None:
            raise self.error
        return self.confirmation


@dataclass
class BookingHarness:
    service: BookingService
    booking_repo: FakeBookingRepository
    scheduling_repo: FakeSchedulingRepository
    audit_repo: FakeAuditRepository
    dispatcher: FakeDispatcher


def make_actor(user_id: UUID, role: RoleEnum = RoleEnum.STUDENT) -> SimpleNamespace:
    return SimpleNamespace(id=user_id, email=f"{role.value}@example.com", role=SimpleNamespace(name=role))


def make_window(
    tutor_id: UUID,
    *,
    mode: SessionModeEnum = SessionModeEnum.ONLINE,
    start: time = time(9, 0),
    end: time = time(13, 0),
    window_date: date = LESSON_DATE,
) -> FakeWindow:
    return FakeWindow(
        id=uuid4(),
        tutor_id=tutor_id,
        date=window_date,
        start_time=start,
        end_time=end,
        mode=mode,
        location="Library room 2" if mode == SessionModeEnum.IN_PERSON else None,
    )


def make_harness(
    *,
    windows: list[FakeWindow] | None = None,
    bookings: list[FakeBooking] | None = None,
    dispatcher: FakeDispatcher | None = None,
    checkout_provider: FakeCheckoutProvider | None = None,
) -> BookingHarness:
    booking_repo = FakeBookingRepository(bookings)
    scheduling_repo = FakeSchedulingRepository(windows)
    audit_repo = FakeAuditRepository()
    dispatcher = dispatcher or FakeDispatcher()
    service = BookingService(
        booking_repository=booking_repo,  # type: ignore[arg-type]
        scheduling_repository=scheduling_repo,  # type: ignore[arg-type]
        audit_repository=audit_repo,  # type: ignore[arg-type]
        notification_dispatcher=dispatcher,
        checkout_provider=checkout_provider,
    )
    return BookingHarness(service, booking_repo, scheduling_repo, audit_repo, dispatcher)


def counter_value(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0
