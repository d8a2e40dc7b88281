"""Time zone helpers for UTC storage and local presentation."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


def get_appointment_timezone(name: str | None = None) -> ZoneInfo:
    """Return the configured appointment timezone."""
    timezone_name = name or settings.appointment_timezone
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone: {timezone_name}") from exc


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime, name: str | None = None) -> datetime:
    """Convert a UTC datetime to the appointment timezone."""
    return ensure_utc(value).astimezone(get_appointment_timezone(name))


def utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def format_appointment_time(value: datetime, name: str | None = None) -> str:
    """Format an appointment start time for customer-facing messages.

    Produces a medium date-time such as ``Jun 1, 2024, 10:00 AM`` in the
    appointment timezone.
    """
    local = to_local(value, name)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%b} {local.day}, {local.year}, {hour}:{local.minute:02d} {meridiem}"
