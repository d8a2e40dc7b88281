"""Unit tests for timezone conversion helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

import time_utils
from config import Settings
from time_utils import ensure_utc, format_appointment_time, get_appointment_timezone, to_local


def test_get_appointment_timezone_rejects_unknown_names() -> None:
    """Unknown timezone names raise ValueError."""
    assert get_appointment_timezone("UTC").key == "UTC"
    with pytest.raises(ValueError, match="Invalid timezone"):
        get_appointment_timezone("Nowhere/Special")


def test_default_timezone_follows_calendar_setting(monkeypatch) -> None:
    """With no appointment timezone the calendar timezone is used."""
    monkeypatch.setattr(
        time_utils,
        "settings",
        Settings(appointments={"timezone": None}, google_calendar={"timezone": "America/Chicago"}),
    )

    assert get_appointment_timezone().key == "America/Chicago"


def test_ensure_utc_handles_naive_and_offset_values() -> None:
    """Naive values are UTC and offset values are converted."""
    naive = datetime(2025, 1, 15, 12, 0)
    offset = datetime(2025, 1, 15, 7, 0, tzinfo=timezone(timedelta(hours=-5)))

    assert ensure_utc(naive) == datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert ensure_utc(offset).hour == 12
    assert ensure_utc(offset).tzinfo == timezone.utc


def test_to_local_converts_from_utc() -> None:
    """to_local converts aware UTC times to the appointment timezone."""
    converted = to_local(datetime(2025, 1, 15, 17, 0, tzinfo=timezone.utc), "America/New_York")

    assert converted.hour == 12
    assert converted.tzinfo is not None


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc), "Jun 1, 2024, 10:00 AM"),
        (datetime(2024, 12, 24, 17, 5, tzinfo=timezone.utc), "Dec 24, 2024, 12:05 PM"),
        (datetime(2024, 3, 2, 5, 30, tzinfo=timezone.utc), "Mar 2, 2024, 12:30 AM"),
    ],
)
def test_format_appointment_time(value: datetime, expected: str) -> None:
    """Appointment times render as medium local date-times."""
    assert format_appointment_time(value, "America/New_York") == expected
