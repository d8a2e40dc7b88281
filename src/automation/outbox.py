"""Outbox writes made in the same transaction as the state they refer to."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from models import OutboxEvent

logger = logging.getLogger(__name__)

MESSAGE_SEND = "message.send"
ESTIMATE_REMINDER = "estimate.reminder"
FOLLOWUP_SEND = "followup.send"


async def enqueue(
    session: AsyncSession,
    event_type: str,
    payload: Mapping[str, Any],
    *,
    created_at: datetime,
    next_attempt_at: datetime | None = None,
) -> OutboxEvent:
    """Add an outbox event to the session and flush it."""
    event = OutboxEvent(
        type=event_type,
        payload=dict(payload),
        attempts=0,
        created_at=created_at,
        next_attempt_at=next_attempt_at,
    )
    session.add(event)
    await session.flush()
    logger.debug("Outbox event enqueued: type=%s id=%s", event_type, event.id)
    return event


async def delete_followups_for_leads(session: AsyncSession, lead_ids: Iterable[str]) -> int:
    """Delete pending follow-up sends for the given leads."""
    ids = [lead_id for lead_id in lead_ids if lead_id]
    if not ids:
        return 0
    result = await session.execute(
        delete(OutboxEvent)
        .where(OutboxEvent.type == FOLLOWUP_SEND)
        .where(OutboxEvent.payload["leadId"].as_string().in_(ids))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def delete_reminders_for_appointment(session: AsyncSession, appointment_id: str) -> int:
    """Delete pending estimate reminders for an appointment."""
    result = await session.execute(
        delete(OutboxEvent)
        .where(OutboxEvent.type == ESTIMATE_REMINDER)
        .where(OutboxEvent.payload["appointmentId"].as_string() == appointment_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


__all__ = [
    "ESTIMATE_REMINDER",
    "FOLLOWUP_SEND",
    "MESSAGE_SEND",
    "delete_followups_for_leads",
    "delete_reminders_for_appointment",
    "enqueue",
]
