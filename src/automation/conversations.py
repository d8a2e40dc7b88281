"""Conversation store reads and writes used by the automation pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from automation.message_metadata import MessageMetadata
from automation.outbox import MESSAGE_SEND, enqueue
from models import (
    Contact,
    ConversationMessage,
    ConversationParticipant,
    ConversationThread,
    Lead,
    Property,
)

logger = logging.getLogger(__name__)

SYSTEM_PARTICIPANT_NAME = "Stonegate Assistant"
PREVIEW_LENGTH = 140
QUEUED_STATUS = "queued"


@dataclass(frozen=True)
class InboundContext:
    """An inbound message joined with its thread, contact, and property."""

    message: ConversationMessage
    thread: ConversationThread
    contact: Contact | None
    property: Property | None

    @property
    def message_id(self) -> str:
        """Return the inbound message id."""
        return self.message.id

    @property
    def channel(self) -> str:
        """Return the inbound channel, defaulting to sms."""
        return (self.message.channel or "sms").lower()

    @property
    def lead_id(self) -> str | None:
        """Return the lead attached to the thread, if any."""
        return self.thread.lead_id

    @property
    def contact_id(self) -> str | None:
        """Return the contact attached to the thread, if any."""
        return self.thread.contact_id


async def load_inbound_context(session: AsyncSession, message_id: str) -> InboundContext | None:
    """Load a message with its thread, contact, and property.

    Returns None when the message or its thread does not exist.
    """
    result = await session.execute(
        select(ConversationMessage, ConversationThread, Contact, Property)
        .join(ConversationThread, ConversationMessage.thread_id == ConversationThread.id)
        .outerjoin(Contact, ConversationThread.contact_id == Contact.id)
        .outerjoin(Property, ConversationThread.property_id == Property.id)
        .where(ConversationMessage.id == message_id)
        .limit(1)
    )
    row = result.first()
    if row is None:
        return None
    message, thread, contact, prop = row
    return InboundContext(message=message, thread=thread, contact=contact, property=prop)


async def list_contact_lead_ids(
    session: AsyncSession,
    contact_id: str | None,
    thread_lead_id: str | None = None,
) -> list[str]:
    """Return the thread's lead plus every lead belonging to the contact."""
    lead_ids: set[str] = set()
    if thread_lead_id:
        lead_ids.add(thread_lead_id)
    if contact_id:
        result = await session.execute(select(Lead.id).where(Lead.contact_id == contact_id))
        lead_ids.update(result.scalars())
    return sorted(lead_ids)


async def find_auto_reply(
    session: AsyncSession,
    thread_id: str,
    inbound_message_id: str,
) -> ConversationMessage | None:
    """Return the automated reply already created for an inbound message."""
    result = await session.execute(
        select(ConversationMessage)
        .where(ConversationMessage.thread_id == thread_id)
        .where(ConversationMessage.direction == "outbound")
        .where(ConversationMessage.auto_reply_to_message_id == inbound_message_id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def has_outbound_message(session: AsyncSession, thread_id: str) -> bool:
    """Return True when any outbound message exists on the thread."""
    result = await session.execute(
        select(ConversationMessage.id)
        .where(ConversationMessage.thread_id == thread_id)
        .where(ConversationMessage.direction == "outbound")
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def ensure_system_participant(
    session: AsyncSession,
    thread_id: str,
    created_at: datetime,
) -> str:
    """Return the thread's system participant id, creating it if absent."""
    result = await session.execute(
        select(ConversationParticipant.id)
        .where(ConversationParticipant.thread_id == thread_id)
        .where(ConversationParticipant.participant_type == "system")
        .limit(1)
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing

    participant = ConversationParticipant(
        thread_id=thread_id,
        participant_type="system",
        display_name=SYSTEM_PARTICIPANT_NAME,
        created_at=created_at,
    )
    session.add(participant)
    await session.flush()
    return participant.id


async def queue_thread_message(
    session: AsyncSession,
    *,
    thread_id: str,
    channel: str,
    to_address: str,
    body: str,
    metadata: MessageMetadata,
    created_at: datetime,
    delay_ms: int,
    subject: str | None = None,
    auto_reply_to_message_id: str | None = None,
    draft: bool = False,
) -> ConversationMessage:
    """Insert an outbound message and, unless drafted, schedule its send.

    Queued messages update the thread preview and enqueue a ``message.send``
    outbox event due ``delay_ms`` after ``created_at``. Drafts are stored
    only; the thread and outbox are left untouched. Nothing is committed
    here; the caller owns the transaction.
    """
    participant_id = await ensure_system_participant(session, thread_id, created_at)
    message = ConversationMessage(
        thread_id=thread_id,
        participant_id=participant_id,
        direction="outbound",
        channel=channel,
        subject=subject,
        body=body,
        to_address=to_address,
        delivery_status=QUEUED_STATUS,
        meta=metadata.to_json(),
        auto_reply_to_message_id=auto_reply_to_message_id,
        created_at=created_at,
    )
    session.add(message)
    await session.flush()

    if draft:
        logger.info("Draft reply stored: message_id=%s thread_id=%s", message.id, thread_id)
        return message

    thread = await session.get(ConversationThread, thread_id)
    if thread is not None:
        thread.last_message_preview = body[:PREVIEW_LENGTH]
        thread.last_message_at = created_at
        thread.updated_at = created_at

    next_attempt_at = created_at + timedelta(milliseconds=delay_ms) if delay_ms > 0 else None
    await enqueue(
        session,
        MESSAGE_SEND,
        {"messageId": message.id},
        created_at=created_at,
        next_attempt_at=next_attempt_at,
    )
    logger.info(
        "Reply queued: message_id=%s thread_id=%s channel=%s delay_ms=%s",
        message.id,
        thread_id,
        channel,
        delay_ms,
    )
    return message


__all__ = [
    "InboundContext",
    "SYSTEM_PARTICIPANT_NAME",
    "ensure_system_participant",
    "find_auto_reply",
    "has_outbound_message",
    "list_contact_lead_ids",
    "load_inbound_context",
    "queue_thread_message",
]
