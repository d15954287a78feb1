"""Core enums used across modules."""

from enum import StrEnum


class RoleEnum(StrEnum):
    """System roles."""

    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"


class SessionModeEnum(StrEnum):
    """How a lesson is delivered; drives both pricing and slot consumption."""

    ONLINE = "online"
    IN_PERSON = "in-person"


class BookingStatusEnum(StrEnum):
    """Booking lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatusEnum(StrEnum):
    """Payment state of a booking."""

    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    PROCESSING = "processing"


class PaymentPathEnum(StrEnum):
    """Booking creation entry path."""

    PAY_NOW = "pay-now"
    PAY_LATER = "pay-later"


class OutboxStatusEnum(StrEnum):
    """Outbox event state; ``failed`` events have used up their attempts."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
