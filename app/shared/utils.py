"""Shared utility functions."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4


def utc_now() -> datetime:
    """Return aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_correlation_id() -> str:
    """Short opaque id that ties a user-facing failure to its log lines."""
    return uuid4().hex[:12]
