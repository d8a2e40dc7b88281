"""STOP/unsubscribe handling: do-not-contact for every lead of a contact."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from automation.audit import STOP_HANDLER_ACTOR, AuditEventRequest, AuditRecorder
from automation.conversations import InboundContext, list_contact_lead_ids
from automation.lead_state import LeadAutomationStateStore
from automation.outbox import delete_followups_for_leads
from time_utils import utc_now

logger = logging.getLogger(__name__)

DNC_CHANNELS = frozenset({"sms", "email"})


class StopHandler:
    """Apply do-not-contact in response to a STOP-family message."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession],
        audit: AuditRecorder,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the handler with a session factory and audit recorder."""
        self._session_factory = session_factory
        self._audit = audit
        self._now = now_provider or utc_now

    async def handle(self, context: InboundContext) -> list[str]:
        """Suppress automation for the contact and record the STOP request.

        DNC rows are only written for sms and email. Every STOP message is
        audited regardless of channel. Returns the lead ids marked DNC.
        """
        channel = context.channel
        lead_ids: list[str] = []
        if channel in DNC_CHANNELS:
            lead_ids = await self._apply_dnc(context, channel)
        else:
            logger.info(
                "STOP received on channel without DNC support: message_id=%s channel=%s",
                context.message_id,
                channel,
            )

        await self._audit.record_skip(
            STOP_HANDLER_ACTOR,
            context.message_id,
            "stop_request",
            inboundChannel=channel,
        )
        return lead_ids

    async def _apply_dnc(self, context: InboundContext, channel: str) -> list[str]:
        """Upsert DNC state and drop pending follow-ups in one transaction."""
        now = self._now()
        async with self._session_factory() as session:
            try:
                lead_ids = await list_contact_lead_ids(session, context.contact_id, context.lead_id)
                if not lead_ids:
                    return []
                await LeadAutomationStateStore(session).apply_dnc(lead_ids, channel, now)
                removed = await delete_followups_for_leads(session, lead_ids)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info(
            "Do-not-contact enabled: contact_id=%s channel=%s leads=%s followups_removed=%s",
            context.contact_id,
            channel,
            len(lead_ids),
            removed,
        )
        await self._audit.record(
            AuditEventRequest(
                actor=STOP_HANDLER_ACTOR,
                action="automation.dnc.enabled",
                entity_type="contact",
                entity_id=context.contact_id,
                meta={
                    "leadIds": lead_ids,
                    "channel": channel,
                    "messageId": context.message_id,
                },
            )
        )
        return lead_ids


__all__ = ["DNC_CHANNELS", "StopHandler"]
