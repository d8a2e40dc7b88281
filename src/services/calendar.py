"""Google Calendar client used to remove events for declined appointments."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol
from urllib.parse import quote

from config import GoogleCalendarConfig, settings
from services.http_client import AsyncHttpClient, ErrorConfig, ErrorStrategy, RetryConfig

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_API_BASE = "https://www.googleapis.com/calendar/v3"
_TOKEN_EXPIRY_SKEW_SECONDS = 30
_DEFAULT_TOKEN_TTL_SECONDS = 3000


class CalendarEventDeleter(Protocol):
    """Collaborator interface for removing a calendar event."""

    async def delete_event(self, event_id: str) -> None:
        """Delete the event, treating an already-missing event as success."""


@dataclass
class _CachedToken:
    access_token: str
    expires_at: float


class GoogleCalendarClient:
    """Minimal Google Calendar REST client with refresh-token auth."""

    def __init__(
        self,
        config: GoogleCalendarConfig | None = None,
        *,
        http_client: AsyncHttpClient | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the client from calendar configuration."""
        self._config = config or settings.google_calendar
        self._http = http_client or AsyncHttpClient(
            timeout=self._config.request_timeout,
            connect_timeout=self._config.request_timeout,
            error_config=ErrorConfig(
                strategy=ErrorStrategy.LOG_AND_RETURN_NONE,
                log_level=logging.WARNING,
                include_response_body=True,
            ),
            retry_config=RetryConfig(max_attempts=2, backoff_factor=0.5, max_backoff=2.0),
        )
        self._clock = clock or time.monotonic
        self._token: _CachedToken | None = None

    @property
    def enabled(self) -> bool:
        """Return True when the calendar integration is fully configured."""
        return self._config.is_configured

    async def get_access_token(self) -> str | None:
        """Return a cached or freshly refreshed OAuth access token."""
        if not self.enabled:
            return None
        now = self._clock()
        if self._token is not None and self._token.expires_at > now + _TOKEN_EXPIRY_SKEW_SECONDS:
            return self._token.access_token

        response = await self._http.post(
            TOKEN_ENDPOINT,
            data={
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "refresh_token": self._config.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if response is None:
            return None
        data = response.json()
        access_token = data.get("access_token")
        if not access_token:
            logger.warning("Calendar token refresh returned no access token")
            return None
        expires_in = data.get("expires_in") or _DEFAULT_TOKEN_TTL_SECONDS
        self._token = _CachedToken(access_token=access_token, expires_at=now + float(expires_in))
        return access_token

    async def delete_event(self, event_id: str) -> None:
        """Delete a calendar event; missing events are treated as deleted."""
        if not self.enabled:
            return
        access_token = await self.get_access_token()
        if not access_token:
            return

        response = await self._http.delete(
            self._event_url(event_id),
            headers={"Authorization": f"Bearer {access_token}"},
            raise_for_status=False,
        )
        if response is None:
            return
        if response.is_success or response.status_code == 404:
            logger.info("Calendar event deleted: event_id=%s", event_id)
            return
        logger.warning(
            "Calendar delete failed: event_id=%s status=%s body=%s",
            event_id,
            response.status_code,
            response.text,
        )

    def _event_url(self, event_id: str) -> str:
        """Build the REST URL for one event on the configured calendar."""
        calendar_id = quote(self._config.calendar_id or "", safe="")
        return f"{GOOGLE_API_BASE}/calendars/{calendar_id}/events/{quote(event_id, safe='')}"


__all__ = ["CalendarEventDeleter", "GoogleCalendarClient", "TOKEN_ENDPOINT", "GOOGLE_API_BASE"]
