from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime, time
from uuid import uuid4

import pytest
from booking_fakes import (
    FakeCheckoutProvider,
    FakeDispatcher,
    counter_value,
    make_actor,
    make_harness,
    make_window,
)
from sqlalchemy.exc import SQLAlchemyError

import app.modules.booking.service as booking_service_module
from app.core.enums import BookingStatusEnum, PaymentStatusEnum, RoleEnum, SessionModeEnum
from app.modules.billing.checkout import CheckoutIntent, PaymentConfirmation
from app.modules.booking.schemas import BookingRequest
from app.modules.scheduling.time_utils import combine_local
from app.shared.exceptions import (
    BookingValidationException,
    BusinessRuleException,
    OperationFailedException,
    SlotUnavailableException,
    UnauthorizedException,
)

FIXED_NOW = datetime(2026, 10, 20, 1, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def fixed_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(booking_service_module, "utc_now", lambda: FIXED_NOW)


def make_intent(window, student_id, start: time, end: time, amount_minor: int) -> CheckoutIntent:
    return CheckoutIntent(
        student_id=student_id,
        window_id=window.id,
        window_date=window.date,
        mode=window.mode,
        location=window.location,
        start_time=start,
        end_time=end,
        duration_minutes=60,
        notes="Calculus revision",
        amount_minor=amount_minor,
    )


@pytest.mark.asyncio
async def test_pay_later_booking_splits_online_window_and_notifies() -> None:
    tutor_id = uuid4()
    student_id = uuid4()
    window = make_window(tutor_id, mode=SessionModeEnum.ONLINE, start=time(9, 0), end=time(13, 0))
    harness = make_harness(windows=[window])
    created_before = counter_value("tutorbook_bookings_created_total", {"path": "pay-later"})

    booking = await harness.service.create_booking(
        BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 0), notes="Algebra"),
        make_actor(student_id),
    )

    tz = booking_service_module.settings.business_tz
    assert booking.status == BookingStatusEnum.PENDING
    assert booking.payment_status == PaymentStatusEnum.UNPAID
    assert booking.price_minor == 6000
    assert booking.duration_minutes == 60
    assert booking.tutor_id == tutor_id
    assert booking.start_at == combine_local(window.date, time(10, 0), tz)
    assert booking.end_at == combine_local(window.date, time(11, 0), tz)

    remaining = sorted(harness.scheduling_repo.windows.values(), key=lambda item: item.start_time)
    assert window.id not in harness.scheduling_repo.windows
    assert [(item.start_time, item.end_time) for item in remaining] == [
        (time(9, 0), time(10, 0)),
        (time(11, 0), time(13, 0)),
    ]

    assert len(harness.dispatcher.payloads) == 1
    notification = harness.dispatcher.payloads[0]
    assert notification.start_time == "10:00 AM"
    assert notification.end_time == "11:00 AM"
    assert notification.price_display == "60.00"
    assert notification.payment_status == "unpaid"

    assert "booking.created" in harness.audit_repo.actions()
    assert counter_value("tutorbook_bookings_created_total", {"path": "pay-later"}) == created_before + 1


@pytest.mark.asyncio
async def test_pay_later_in_person_booking_consumes_whole_window() -> None:
    window = make_window(uuid4(), mode=SessionModeEnum.IN_PERSON, start=time(9, 0), end=time(13, 0))
    harness = make_harness(windows=[window])

    booking = await harness.service.create_booking(
        BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 30)),
        make_actor(uuid4()),
    )

    assert booking.price_minor == 10500
    assert booking.location == "Library room 2"
    assert harness.scheduling_repo.windows == {}


@pytest.mark.asyncio
async def test_only_students_can_book() -> None:
    window = make_window(uuid4())
    harness = make_harness(windows=[window])

    with pytest.raises(UnauthorizedException):
        await harness.service.create_booking(
            BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 0)),
            make_actor(uuid4(), RoleEnum.TUTOR),
        )


@pytest.mark.asyncio
async def test_missing_window_is_reported_as_unavailable() -> None:
    harness = make_harness()
    contention_before = counter_value("tutorbook_booking_contention_total")

    with pytest.raises(SlotUnavailableException) as exc:
        await harness.service.create_booking(
            BookingRequest(window_id=uuid4(), start_time=time(10, 0), end_time=time(11, 0)),
            make_actor(uuid4()),
        )

    assert exc.value.status_code == 409
    assert exc.value.code == "slot_unavailable"
    assert counter_value("tutorbook_booking_contention_total") == contention_before + 1


@pytest.mark.asyncio
async def test_second_student_finds_window_already_taken() -> None:
    window = make_window(uuid4(), mode=SessionModeEnum.IN_PERSON, start=time(9, 0), end=time(13, 0))
    harness = make_harness(windows=[window])
    await harness.service.create_booking(
        BookingRequest(window_id=window.id, start_time=time(9, 0), end_time=time(13, 0)),
        make_actor(uuid4()),
    )

    with pytest.raises(SlotUnavailableException):
        await harness.service.create_booking(
            BookingRequest(window_id=window.id, start_time=time(9, 0), end_time=time(10, 0)),
            make_actor(uuid4()),
        )

    assert len(harness.booking_repo.bookings) == 1


@pytest.mark.asyncio
async def test_checkout_for_missing_window_is_unavailable() -> None:
    provider = FakeCheckoutProvider()
    harness = make_harness(checkout_provider=provider)

    with pytest.raises(SlotUnavailableException):
        await harness.service.start_checkout(
            BookingRequest(window_id=uuid4(), start_time=time(10, 0), end_time=time(11, 0)),
            make_actor(uuid4()),
        )

    assert provider.created == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("window_date", "start"),
    [
        (date(2026, 10, 19), time(10, 0)),
        # 01:00 UTC on 20 Oct is 12:00 in Sydney
        (date(2026, 10, 20), time(11, 0)),
        (date(2026, 10, 20), time(12, 0)),
    ],
)
async def test_window_that_has_started_cannot_be_booked(window_date: date, start: time) -> None:
    window = make_window(uuid4(), start=time(9, 0), end=time(18, 0), window_date=window_date)
    provider = FakeCheckoutProvider()
    harness = make_harness(windows=[window], checkout_provider=provider)
    request = BookingRequest(window_id=window.id, start_time=start, end_time=time(13, 0))

    with pytest.raises(BusinessRuleException):
        await harness.service.create_booking(request, make_actor(uuid4()))
    with pytest.raises(BusinessRuleException):
        await harness.service.start_checkout(request, make_actor(uuid4()))

    assert harness.booking_repo.bookings == {}
    assert window.id in harness.scheduling_repo.windows
    assert provider.created == []


@pytest.mark.asyncio
async def test_later_time_on_the_same_day_can_be_booked() -> None:
    window = make_window(uuid4(), start=time(9, 0), end=time(18, 0), window_date=date(2026, 10, 20))
    harness = make_harness(windows=[window])

    booking = await harness.service.create_booking(
        BookingRequest(window_id=window.id, start_time=time(14, 0), end_time=time(15, 0)),
        make_actor(uuid4()),
    )

    assert booking.id in harness.booking_repo.bookings


@pytest.mark.asyncio
async def test_invalid_times_leave_window_untouched() -> None:
    window = make_window(uuid4(), start=time(10, 0), end=time(16, 0))
    harness = make_harness(windows=[window])

    with pytest.raises(BookingValidationException) as exc:
        await harness.service.create_booking(
            BookingRequest(window_id=window.id, start_time=time(9, 30), end_time=time(11, 0)),
            make_actor(uuid4()),
        )

    assert exc.value.message == "Start time must be at or after 10:00 AM"
    assert exc.value.details["reason"] == "start_before_slot"
    assert window.id in harness.scheduling_repo.windows
    assert harness.booking_repo.bookings == {}


@pytest.mark.asyncio
async def test_concurrent_bookings_for_one_window_produce_exactly_one_booking() -> None:
    window = make_window(uuid4(), mode=SessionModeEnum.IN_PERSON)
    harness = make_harness(windows=[window])
    contention_before = counter_value("tutorbook_booking_contention_total")

    results = await asyncio.gather(
        *(
            harness.service.create_booking(
                BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 0)),
                make_actor(uuid4()),
            )
            for _ in range(2)
        ),
        return_exceptions=True,
    )

    failures = [result for result in results if isinstance(result, Exception)]
    successes = [result for result in results if not isinstance(result, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], SlotUnavailableException)
    assert list(harness.booking_repo.bookings.values()) == successes
    assert counter_value("tutorbook_booking_contention_total") == contention_before + 1


@pytest.mark.asyncio
async def test_lost_race_rolls_back_inserted_booking() -> None:
    window = make_window(uuid4())
    window.is_booked = True
    harness = make_harness(windows=[window])

    with pytest.raises(SlotUnavailableException):
        await harness.service.create_booking(
            BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 0)),
            make_actor(uuid4()),
        )

    assert harness.booking_repo.bookings == {}
    assert harness.dispatcher.payloads == []


@pytest.mark.asyncio
async def test_remainder_failure_keeps_booking_and_records_gap() -> None:
    window = make_window(uuid4(), mode=SessionModeEnum.ONLINE)
    harness = make_harness(windows=[window])
    harness.scheduling_repo.fail_remainders = True
    failures_before = counter_value("tutorbook_allocation_failures_total")

    booking = await harness.service.create_booking(
        BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 0)),
        make_actor(uuid4()),
    )

    assert booking.id in harness.booking_repo.bookings
    assert harness.scheduling_repo.windows == {}
    assert "scheduling.allocation.failed" in harness.audit_repo.actions()
    assert counter_value("tutorbook_allocation_failures_total") == failures_before + 1
    assert len(harness.dispatcher.payloads) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "dispatcher",
    [FakeDispatcher(result=False), FakeDispatcher(error=RuntimeError("smtp down"))],
)
async def test_notification_failure_does_not_undo_booking(dispatcher: FakeDispatcher) -> None:
    window = make_window(uuid4())
    harness = make_harness(windows=[window], dispatcher=dispatcher)
    failures_before = counter_value("tutorbook_notification_failures_total")

    booking = await harness.service.create_booking(
        BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 0)),
        make_actor(uuid4()),
    )

    assert booking.id in harness.booking_repo.bookings
    assert counter_value("tutorbook_notification_failures_total") == failures_before + 1


@pytest.mark.asyncio
async def test_persistence_failure_surfaces_correlation_id() -> None:
    window = make_window(uuid4())
    harness = make_harness(windows=[window])
    harness.booking_repo.fail_insert = SQLAlchemyError("connection reset")

    with pytest.raises(OperationFailedException) as exc:
        await harness.service.create_booking(
            BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 0)),
            make_actor(uuid4()),
        )

    assert exc.value.correlation_id
    assert exc.value.correlation_id in exc.value.message
    assert exc.value.details == {"correlation_id": exc.value.correlation_id}
    assert "connection reset" not in exc.value.message
    assert window.id in harness.scheduling_repo.windows


@pytest.mark.asyncio
async def test_start_checkout_creates_session_without_persisting() -> None:
    window = make_window(uuid4(), start=time(9, 0), end=time(13, 0))
    provider = FakeCheckoutProvider()
    harness = make_harness(windows=[window], checkout_provider=provider)
    student_id = uuid4()

    session, price_minor = await harness.service.start_checkout(
        BookingRequest(window_id=window.id, start_time=time(9, 0), end_time=time(10, 30), notes="Essay"),
        make_actor(student_id),
    )

    assert session.session_id == "cs_test_1"
    assert price_minor == 9000
    intent, amount, email = provider.created[0]
    assert intent.student_id == student_id
    assert intent.window_id == window.id
    assert intent.duration_minutes == 90
    assert intent.notes == "Essay"
    assert amount == 9000
    assert email == "student@example.com"
    assert harness.booking_repo.bookings == {}
    assert window.id in harness.scheduling_repo.windows


@pytest.mark.asyncio
async def test_start_checkout_requires_provider() -> None:
    window = make_window(uuid4())
    harness = make_harness(windows=[window])

    with pytest.raises(BusinessRuleException):
        await harness.service.start_checkout(
            BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 0)),
            make_actor(uuid4()),
        )


@pytest.mark.asyncio
async def test_start_checkout_provider_error_is_opaque() -> None:
    window = make_window(uuid4())
    harness = make_harness(
        windows=[window],
        checkout_provider=FakeCheckoutProvider(error=RuntimeError("api key revoked")),
    )

    with pytest.raises(OperationFailedException) as exc:
        await harness.service.start_checkout(
            BookingRequest(window_id=window.id, start_time=time(10, 0), end_time=time(11, 0)),
            make_actor(uuid4()),
        )

    assert "api key" not in exc.value.message


@pytest.mark.asyncio
async def test_confirmed_payment_creates_paid_booking(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(booking_service_module, "utc_now", lambda: FIXED_NOW)
    window = make_window(uuid4(), mode=SessionModeEnum.ONLINE, start=time(9, 0), end=time(13, 0))
    harness = make_harness(windows=[window])
    student_id = uuid4()
    confirmation = PaymentConfirmation(
        session_id="cs_paid_1",
        intent=make_intent(window, student_id, time(11, 0), time(12, 0), 6000),
    )

    booking, already_processed = await harness.service.confirm_paid_booking(confirmation)

    assert already_processed is False
    assert booking.status == BookingStatusEnum.CONFIRMED
    assert booking.payment_status == PaymentStatusEnum.PAID
    assert booking.payment_session_id == "cs_paid_1"
    assert booking.confirmed_at == FIXED_NOW
    assert booking.student_id == student_id
    assert booking.notes == "Calculus revision"
    assert len(harness.scheduling_repo.windows) == 2
    assert harness.dispatcher.payloads[0].payment_status == "paid"


@pytest.mark.asyncio
async def test_replayed_confirmation_returns_existing_booking() -> None:
    window = make_window(uuid4())
    harness = make_harness(windows=[window])
    confirmation = PaymentConfirmation(
        session_id="cs_replay",
        intent=make_intent(window, uuid4(), time(10, 0), time(11, 0), 6000),
    )

    first, first_replayed = await harness.service.confirm_paid_booking(confirmation)
    second, second_replayed = await harness.service.confirm_paid_booking(confirmation)

    assert first_replayed is False
    assert second_replayed is True
    assert second.id == first.id
    assert len(harness.booking_repo.bookings) == 1
    assert len(harness.dispatcher.payloads) == 1


@pytest.mark.asyncio
async def test_concurrent_delivery_after_window_consumed_returns_existing_booking() -> None:
    window = make_window(uuid4())
    harness = make_harness(windows=[window])
    confirmation = PaymentConfirmation(
        session_id="cs_race",
        intent=make_intent(window, uuid4(), time(10, 0), time(11, 0), 6000),
    )
    existing, _ = await harness.service.confirm_paid_booking(confirmation)
    harness.booking_repo.session_lookup_misses = 1
    contention_before = counter_value("tutorbook_booking_contention_total")

    booking, already_processed = await harness.service.confirm_paid_booking(confirmation)

    assert already_processed is True
    assert booking.id == existing.id
    assert window.id not in harness.scheduling_repo.windows
    assert len(harness.booking_repo.bookings) == 1
    assert len(harness.dispatcher.payloads) == 1
    assert counter_value("tutorbook_booking_contention_total") == contention_before


@pytest.mark.asyncio
async def test_concurrent_delivery_that_no_longer_fits_returns_existing_booking() -> None:
    window = make_window(uuid4(), mode=SessionModeEnum.ONLINE, start=time(9, 0), end=time(13, 0))
    harness = make_harness(windows=[window])
    intent = make_intent(window, uuid4(), time(10, 0), time(11, 0), 6000)
    confirmation = PaymentConfirmation(session_id="cs_split", intent=intent)
    existing, _ = await harness.service.confirm_paid_booking(confirmation)
    # The head remainder now sits where the original window was; point the replay at it.
    head = next(item for item in harness.scheduling_repo.windows.values() if item.start_time == time(9, 0))
    replay = PaymentConfirmation(
        session_id="cs_split",
        intent=make_intent(head, intent.student_id, time(10, 0), time(11, 0), 6000),
    )
    harness.booking_repo.session_lookup_misses = 1

    booking, already_processed = await harness.service.confirm_paid_booking(replay)

    assert already_processed is True
    assert booking.id == existing.id
    assert len(harness.booking_repo.bookings) == 1


@pytest.mark.asyncio
async def test_concurrent_delivery_colliding_on_insert_returns_existing_booking() -> None:
    window = make_window(uuid4())
    harness = make_harness(windows=[window])
    confirmation = PaymentConfirmation(
        session_id="cs_insert",
        intent=make_intent(window, uuid4(), time(10, 0), time(11, 0), 6000),
    )
    existing, _ = await harness.service.confirm_paid_booking(confirmation)
    harness.scheduling_repo.windows[window.id] = window
    harness.booking_repo.session_lookup_misses = 1

    booking, already_processed = await harness.service.confirm_paid_booking(confirmation)

    assert already_processed is True
    assert booking.id == existing.id
    assert len(harness.booking_repo.bookings) == 1
    assert window.id in harness.scheduling_repo.windows


@pytest.mark.asyncio
async def test_confirmation_for_consumed_window_is_unavailable() -> None:
    window = make_window(uuid4())
    harness = make_harness()
    confirmation = PaymentConfirmation(
        session_id="cs_gone",
        intent=make_intent(window, uuid4(), time(10, 0), time(11, 0), 6000),
    )

    with pytest.raises(SlotUnavailableException):
        await harness.service.confirm_paid_booking(confirmation)
    assert harness.booking_repo.bookings == {}


@pytest.mark.asyncio
async def test_confirmation_stores_recomputed_price() -> None:
    window = make_window(uuid4(), mode=SessionModeEnum.IN_PERSON)
    harness = make_harness(windows=[window])
    confirmation = PaymentConfirmation(
        session_id="cs_mismatch",
        intent=make_intent(window, uuid4(), time(10, 0), time(11, 0), 1),
    )

    booking, _ = await harness.service.confirm_paid_booking(confirmation)

    assert booking.price_minor == 7000
