"""Session pricing in minor currency units."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from app.core.enums import SessionModeEnum
from app.shared.exceptions import UnknownModeError

HOURLY_RATES_MINOR: dict[SessionModeEnum, int] = {
    SessionModeEnum.ONLINE: 6000,
    SessionModeEnum.IN_PERSON: 7000,
}


def is_valid_session_mode(value: object) -> bool:
    return value in {mode.value for mode in SessionModeEnum}


def _coerce_mode(mode: SessionModeEnum | str) -> SessionModeEnum:
    if isinstance(mode, SessionModeEnum):
        return mode
    try:
        return SessionModeEnum(mode)
    except ValueError as exc:
        raise UnknownModeError(mode) from exc


def rate(mode: SessionModeEnum | str) -> int:
    """Hourly rate in minor units for a session mode."""
    match _coerce_mode(mode):
        case SessionModeEnum.ONLINE:
            return HOURLY_RATES_MINOR[SessionModeEnum.ONLINE]
        case SessionModeEnum.IN_PERSON:
            return HOURLY_RATES_MINOR[SessionModeEnum.IN_PERSON]
    raise UnknownModeError(mode)


def price(mode: SessionModeEnum | str, duration_minutes: int) -> int:
    """Price for a session, rounded half-up to the nearest minor unit."""
    exact = Decimal(rate(mode)) * Decimal(duration_minutes) / Decimal(60)
    return int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_price(minor_units: int) -> str:
    """``6000`` -> ``"60.00"``; the caller adds the currency symbol."""
    return f"{Decimal(minor_units) / Decimal(100):.2f}"
