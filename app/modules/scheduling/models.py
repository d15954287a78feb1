"""Scheduling ORM models."""

from __future__ import annotations

import datetime as dt
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, String, Time
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, BaseModelMixin
from app.core.enums import SessionModeEnum


class AvailabilityWindow(BaseModelMixin, Base):
    """Bookable wall-clock interval a tutor publishes for one date."""

    __tablename__ = "availability_windows"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="start_before_end"),
        Index("ix_availability_windows_tutor_date_mode", "tutor_id", "date", "mode"),
    )

    tutor_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    mode: Mapped[SessionModeEnum] = mapped_column(
        SAEnum(SessionModeEnum, name="session_mode_enum", native_enum=False),
        default=SessionModeEnum.ONLINE,
        nullable=False,
    )
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_booked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
