"""Seed data builders for automation tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select

from models import (
    Appointment,
    AuditLog,
    AutomationSetting,
    Contact,
    ConversationMessage,
    ConversationThread,
    Lead,
    LeadAutomationState,
    OutboxEvent,
    PolicySetting,
    Property,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@dataclass(frozen=True)
class SeededConversation:
    """Identifiers of a seeded contact, lead, thread, and inbound message."""

    contact_id: str
    lead_id: str | None
    thread_id: str
    message_id: str


async def seed_inbound(
    session_factory,
    *,
    body: str,
    channel: str | None = "sms",
    email: str | None = "pat@example.com",
    phone: str | None = "404-555-0100",
    phone_e164: str | None = "+14045550100",
    postal_code: str | None = "30188",
    partner_status: str | None = None,
    with_lead: bool = True,
    thread_subject: str | None = None,
    from_address: str | None = None,
    metadata: dict[str, Any] | None = None,
    direction: str = "inbound",
) -> SeededConversation:
    """Create a contact with one thread holding a single message."""
    async with session_factory() as session:
        contact = Contact(
            first_name="Pat",
            last_name="Lee",
            email=email,
            phone=phone,
            phone_e164=phone_e164,
            partner_status=partner_status,
        )
        session.add(contact)
        await session.flush()
        prop = Property(contact_id=contact.id, postal_code=postal_code)
        session.add(prop)
        await session.flush()
        lead = None
        if with_lead:
            lead = Lead(contact_id=contact.id, property_id=prop.id, status="new")
            session.add(lead)
            await session.flush()
        thread = ConversationThread(
            contact_id=contact.id,
            lead_id=lead.id if lead else None,
            property_id=prop.id,
            subject=thread_subject,
            channel=channel,
        )
        session.add(thread)
        await session.flush()
        message = ConversationMessage(
            thread_id=thread.id,
            direction=direction,
            channel=channel,
            body=body,
            from_address=from_address,
            meta=metadata,
            created_at=NOW,
        )
        session.add(message)
        await session.commit()
        return SeededConversation(
            contact_id=contact.id,
            lead_id=lead.id if lead else None,
            thread_id=thread.id,
            message_id=message.id,
        )


async def add_lead(session_factory, contact_id: str) -> str:
    """Create an additional lead for a contact."""
    async with session_factory() as session:
        lead = Lead(contact_id=contact_id, status="new")
        session.add(lead)
        await session.commit()
        return lead.id


async def add_inbound_message(session_factory, thread_id: str, body: str, channel: str = "sms") -> str:
    """Append another inbound message to a thread."""
    async with session_factory() as session:
        message = ConversationMessage(
            thread_id=thread_id, direction="inbound", channel=channel, body=body, created_at=NOW
        )
        session.add(message)
        await session.commit()
        return message.id


async def add_outbound_message(session_factory, thread_id: str, body: str = "On it!") -> str:
    """Append a staff-written outbound message to a thread."""
    async with session_factory() as session:
        message = ConversationMessage(
            thread_id=thread_id, direction="outbound", channel="sms", body=body, created_at=NOW
        )
        session.add(message)
        await session.commit()
        return message.id


async def set_automation_mode(session_factory, channel: str, mode: str) -> None:
    """Store the global automation mode for a channel."""
    async with session_factory() as session:
        session.add(AutomationSetting(channel=channel, mode=mode))
        await session.commit()


async def set_policy(session_factory, key: str, value: dict[str, Any]) -> None:
    """Store a policy override."""
    async with session_factory() as session:
        session.add(PolicySetting(key=key, value=value))
        await session.commit()


async def set_lead_state(session_factory, lead_id: str, channel: str, **flags: Any) -> None:
    """Store kill-switch flags for a lead on a channel."""
    async with session_factory() as session:
        session.add(LeadAutomationState(lead_id=lead_id, channel=channel, **flags))
        await session.commit()


async def add_appointment(session_factory, **values: Any) -> str:
    """Create an appointment with a reschedule token by default."""
    values.setdefault("reschedule_token", "tok-123")
    values.setdefault("status", "requested")
    async with session_factory() as session:
        appointment = Appointment(**values)
        session.add(appointment)
        await session.commit()
        return appointment.id


async def add_outbox_event(session_factory, event_type: str, payload: dict[str, Any]) -> int:
    """Create a pending outbox event."""
    async with session_factory() as session:
        event = OutboxEvent(type=event_type, payload=payload, next_attempt_at=NOW)
        session.add(event)
        await session.commit()
        return event.id


async def fetch_all(session_factory, model, *criteria) -> list:
    """Return every row of a model matching the criteria."""
    async with session_factory() as session:
        query = select(model)
        if criteria:
            query = query.where(*criteria)
        result = await session.execute(query)
        return list(result.scalars())


async def fetch_one(session_factory, model, key):
    """Return one row by primary key."""
    async with session_factory() as session:
        return await session.get(model, key)


async def audit_actions(session_factory) -> list[str]:
    """Return recorded audit actions in insertion order."""
    async with session_factory() as session:
        result = await session.execute(select(AuditLog.action).order_by(AuditLog.id))
        return list(result.scalars())


async def outbound_messages(session_factory, thread_id: str) -> list[ConversationMessage]:
    """Return outbound messages on a thread."""
    return await fetch_all(
        session_factory,
        ConversationMessage,
        ConversationMessage.thread_id == thread_id,
        ConversationMessage.direction == "outbound",
    )
