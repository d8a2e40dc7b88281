"""Appointment status transitions driven by confirmation replies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from automation.intent import ConfirmationIntent
from time_utils import ensure_utc

CONFIRMATION_REPLY_GRACE = timedelta(hours=12)
DEFAULT_MAX_WINDOW_MINUTES = 24 * 60


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment."""

    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.CANCELED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
)

_TRANSITIONS: dict[tuple[AppointmentStatus, ConfirmationIntent], AppointmentStatus] = {
    (AppointmentStatus.REQUESTED, "confirm"): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.CONFIRMED, "confirm"): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.REQUESTED, "decline"): AppointmentStatus.REQUESTED,
    (AppointmentStatus.CONFIRMED, "decline"): AppointmentStatus.REQUESTED,
}


@dataclass(frozen=True)
class ConfirmationWindow:
    """Range of start times a confirmation reply may refer to."""

    start: datetime
    end: datetime

    @classmethod
    def around(
        cls,
        now: datetime,
        max_window_minutes: int | None = None,
        grace: timedelta = CONFIRMATION_REPLY_GRACE,
    ) -> ConfirmationWindow:
        """Build the window ``[now - grace, now + max window + grace]``."""
        minutes = max_window_minutes or DEFAULT_MAX_WINDOW_MINUTES
        now_utc = ensure_utc(now)
        return cls(
            start=now_utc - grace,
            end=now_utc + timedelta(minutes=minutes) + grace,
        )

    def contains(self, value: datetime) -> bool:
        """Return True when ``value`` falls inside the window, bounds inclusive."""
        return self.start <= ensure_utc(value) <= self.end


def resolve_confirmation_transition(
    status: AppointmentStatus | str,
    intent: ConfirmationIntent,
    start_at: datetime | None,
    window: ConfirmationWindow,
) -> AppointmentStatus | None:
    """Return the status a confirmation reply moves an appointment to.

    Returns None when the reply cannot apply: the appointment is in a
    terminal state, has no start time, or starts outside the window.
    """
    try:
        current = AppointmentStatus(status)
    except ValueError:
        return None
    if current in TERMINAL_STATUSES:
        return None
    if start_at is None or not window.contains(start_at):
        return None
    return _TRANSITIONS.get((current, intent))


__all__ = [
    "AppointmentStatus",
    "CONFIRMATION_REPLY_GRACE",
    "ConfirmationWindow",
    "TERMINAL_STATUSES",
    "resolve_confirmation_transition",
]
