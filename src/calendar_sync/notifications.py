"""Record Google Calendar push notifications and decide when to resync."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Callable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import CalendarSyncState
from time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

SYNC_TRIGGER_STATES = frozenset({"sync", "exists", "not_exists"})


@dataclass(frozen=True)
class CalendarNotification:
    """Header values of one Google push notification."""

    channel_id: str | None
    resource_id: str | None
    resource_state: str | None
    channel_expiration: str | None

    @property
    def triggers_sync(self) -> bool:
        """Return True when the resource state calls for a resync."""
        return self.resource_state in SYNC_TRIGGER_STATES


class CalendarSyncRunner(Protocol):
    """Collaborator that reconciles appointments with the calendar."""

    async def sync(
        self,
        *,
        reason: str,
        channel_id: str | None = None,
        resource_state: str | None = None,
    ) -> None:
        """Run one incremental calendar sync."""


def parse_channel_expiration(raw: str | None) -> datetime | None:
    """Parse a channel expiration header as an aware UTC datetime.

    Google sends RFC 1123 dates; ISO 8601 values are accepted as well.
    """
    if not raw or not raw.strip():
        return None
    value = raw.strip()
    try:
        return ensure_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError):
        pass
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        logger.warning("Unparseable calendar channel expiration: %s", value)
        return None


async def record_calendar_notification(
    session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession],
    calendar_id: str,
    notification: CalendarNotification,
    *,
    now: datetime | None = None,
) -> bool:
    """Store notification bookkeeping on the calendar sync state row.

    Notifications for a channel other than the registered one are ignored.
    Returns True when the notification was recorded.
    """
    received_at = now or utc_now()
    async with session_factory() as session:
        try:
            state = await session.get(CalendarSyncState, calendar_id)
            if state is None:
                state = CalendarSyncState(calendar_id=calendar_id, updated_at=received_at)
                session.add(state)

            if (
                state.channel_id
                and notification.channel_id
                and state.channel_id != notification.channel_id
            ):
                logger.warning(
                    "Calendar notification channel mismatch: expected=%s received=%s",
                    state.channel_id,
                    notification.channel_id,
                )
                await session.rollback()
                return False

            state.last_notification_at = received_at
            state.updated_at = received_at
            if not state.channel_id and notification.channel_id:
                state.channel_id = notification.channel_id
            if not state.resource_id and notification.resource_id:
                state.resource_id = notification.resource_id
            expires_at = parse_channel_expiration(notification.channel_expiration)
            if expires_at is not None:
                state.channel_expires_at = expires_at
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    return True


__all__ = [
    "CalendarNotification",
    "CalendarSyncRunner",
    "SYNC_TRIGGER_STATES",
    "parse_channel_expiration",
    "record_calendar_notification",
]
