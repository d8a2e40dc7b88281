"""Google Calendar push-notification webhook."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Request, Response

from calendar_sync.notifications import (
    CalendarNotification,
    CalendarSyncRunner,
    record_calendar_notification,
)
from config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["calendar"])


def _header(request: Request, name: str) -> str | None:
    """Return a stripped header value, or None when absent or blank."""
    value = request.headers.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


async def _run_sync(runner: CalendarSyncRunner, notification: CalendarNotification) -> None:
    """Run a webhook-triggered resync, logging failures."""
    try:
        await runner.sync(
            reason="webhook",
            channel_id=notification.channel_id,
            resource_state=notification.resource_state,
        )
    except Exception:
        logger.exception("Calendar sync failed after webhook")


@router.post("/webhook", status_code=204)
async def receive_calendar_notification(
    request: Request,
    background_tasks: BackgroundTasks,
) -> Response:
    """Record a push notification and schedule a resync when needed.

    Google retries non-2xx responses, so this always answers 204.
    """
    settings: Settings = request.app.state.settings
    calendar = settings.google_calendar
    if not calendar.enabled:
        return Response(status_code=204)

    notification = CalendarNotification(
        channel_id=_header(request, "x-goog-channel-id"),
        resource_id=_header(request, "x-goog-resource-id"),
        resource_state=_header(request, "x-goog-resource-state"),
        channel_expiration=_header(request, "x-goog-channel-expiration"),
    )

    if calendar.calendar_id:
        try:
            await record_calendar_notification(
                request.app.state.session_factory,
                calendar.calendar_id,
                notification,
            )
        except Exception:
            logger.exception("Calendar notification could not be recorded")

    runner: CalendarSyncRunner | None = request.app.state.calendar_sync_runner
    if notification.triggers_sync:
        if runner is None:
            logger.info(
                "Calendar resync requested but no runner configured: state=%s",
                notification.resource_state,
            )
        else:
            background_tasks.add_task(_run_sync, runner, notification)

    return Response(status_code=204)


@router.get("/webhook")
async def calendar_webhook_status() -> dict[str, bool]:
    """Answer liveness checks for the webhook URL."""
    return {"ok": True}


__all__ = ["router"]
