"""Confirmation loop: apply yes/no replies to the next upcoming appointment."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from appointments.state_machine import (
    AppointmentStatus,
    ConfirmationWindow,
    TERMINAL_STATUSES,
    resolve_confirmation_transition,
)
from automation.audit import CONFIRMATION_LOOP_ACTOR, AuditEventRequest, AuditRecorder
from automation.channels import resolve_destination
from automation.conversations import InboundContext, queue_thread_message
from automation.delays import DelayProvider, random_delay_ms
from automation.intent import ConfirmationIntent, parse_confirmation_intent
from automation.lead_state import LeadAutomationStateStore
from automation.message_metadata import ConfirmationLoopMessage
from automation.outbox import delete_reminders_for_appointment
from automation.policy import PolicyResolver
from config import Settings, settings as default_settings
from models import Appointment, Lead
from services.calendar import CalendarEventDeleter
from services.public_site import build_reschedule_url
from time_utils import format_appointment_time, utc_now

logger = logging.getLogger(__name__)

_LEAD_STATUS_BY_INTENT: dict[ConfirmationIntent, str] = {
    "confirm": "scheduled",
    "decline": "contacted",
}
_AUDIT_ACTION_BY_INTENT: dict[ConfirmationIntent, str] = {
    "confirm": "appointment.confirmed",
    "decline": "appointment.reschedule_requested",
}
RESCHEDULE_FALLBACK_BODY = (
    "No problem. Reply here with a better day/time and we'll get you rescheduled."
)


@dataclass(frozen=True)
class ConfirmationResult:
    """Outcome of a handled confirmation reply."""

    appointment_id: str
    intent: ConfirmationIntent
    status: AppointmentStatus
    reply_message_id: str | None
    removed_calendar_event_id: str | None


def confirmation_reply_channel(inbound_channel: str) -> str:
    """Return the channel a confirmation reply is sent on."""
    return "email" if inbound_channel.lower() == "email" else "sms"


class ConfirmationLoopHandler:
    """Match short confirmation replies to appointments and act on them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession],
        audit: AuditRecorder,
        calendar: CalendarEventDeleter,
        *,
        delay_provider: DelayProvider | None = None,
        now_provider: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the handler with its collaborators."""
        self._session_factory = session_factory
        self._audit = audit
        self._calendar = calendar
        self._delay = delay_provider or random_delay_ms
        self._now = now_provider or utc_now
        self._settings = settings or default_settings

    async def handle(self, context: InboundContext) -> ConfirmationResult | None:
        """Apply a confirm or decline reply, or return None when it does not qualify.

        Database changes commit together. On decline the calendar event is
        removed only after the commit, and a calendar failure is logged
        without undoing the status change.
        """
        intent = parse_confirmation_intent(context.message.body)
        if intent is None:
            return None
        if not context.lead_id and not context.contact_id:
            return None

        now = self._now()
        async with self._session_factory() as session:
            try:
                policy = await PolicyResolver(session).get_confirmation_loop_policy()
                if not policy.enabled:
                    return None
                window = ConfirmationWindow.around(now, policy.max_window_minutes)
                appointment = await self._find_appointment(session, context, window)
                if appointment is None or not appointment.reschedule_token:
                    return None
                target = resolve_confirmation_transition(
                    appointment.status, intent, appointment.start_at, window
                )
                if target is None:
                    return None

                removed_event_id = await self._apply_transition(
                    session, appointment, intent, target, now
                )
                reply_message_id = await self._queue_reply(
                    session, context, appointment, intent, now
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        if removed_event_id:
            await self._delete_calendar_event(appointment.id, removed_event_id)

        await self._audit.record(
            AuditEventRequest(
                actor=CONFIRMATION_LOOP_ACTOR,
                action=_AUDIT_ACTION_BY_INTENT[intent],
                entity_type="appointment",
                entity_id=appointment.id,
                meta={"messageId": context.message_id, "channel": context.channel},
            )
        )
        logger.info(
            "Confirmation reply applied: appointment_id=%s intent=%s status=%s",
            appointment.id,
            intent,
            target.value,
        )
        return ConfirmationResult(
            appointment_id=appointment.id,
            intent=intent,
            status=target,
            reply_message_id=reply_message_id,
            removed_calendar_event_id=removed_event_id,
        )

    async def _find_appointment(
        self,
        session: AsyncSession,
        context: InboundContext,
        window: ConfirmationWindow,
    ) -> Appointment | None:
        """Return the soonest active appointment starting inside the window."""
        query = (
            select(Appointment)
            .where(Appointment.start_at.is_not(None))
            .where(Appointment.start_at >= window.start)
            .where(Appointment.start_at <= window.end)
            .where(Appointment.status.not_in([status.value for status in TERMINAL_STATUSES]))
            .order_by(Appointment.start_at.asc())
            .limit(1)
        )
        if context.lead_id:
            query = query.where(Appointment.lead_id == context.lead_id)
        else:
            query = query.where(Appointment.contact_id == context.contact_id)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def _apply_transition(
        self,
        session: AsyncSession,
        appointment: Appointment,
        intent: ConfirmationIntent,
        target: AppointmentStatus,
        now: datetime,
    ) -> str | None:
        """Update appointment and lead status; return a calendar event to remove."""
        removed_event_id: str | None = None
        appointment.status = target.value
        appointment.updated_at = now
        if intent == "decline":
            removed_event_id = appointment.calendar_event_id
            appointment.calendar_event_id = None

        if appointment.lead_id:
            lead = await session.get(Lead, appointment.lead_id)
            if lead is not None:
                lead.status = _LEAD_STATUS_BY_INTENT[intent]
                lead.updated_at = now

        await session.flush()
        removed = await delete_reminders_for_appointment(session, appointment.id)
        if removed:
            logger.info(
                "Estimate reminders removed: appointment_id=%s count=%s", appointment.id, removed
            )
        return removed_event_id

    async def _queue_reply(
        self,
        session: AsyncSession,
        context: InboundContext,
        appointment: Appointment,
        intent: ConfirmationIntent,
        now: datetime,
    ) -> str | None:
        """Queue the confirmation or reschedule reply when the lead may be messaged."""
        reply_channel = confirmation_reply_channel(context.channel)
        to_address = resolve_destination(reply_channel, context.contact)
        if not to_address:
            return None
        if context.lead_id and await LeadAutomationStateStore(session).is_kill_switch_active(
            context.lead_id, reply_channel
        ):
            logger.info(
                "Confirmation reply suppressed by kill switch: lead_id=%s channel=%s",
                context.lead_id,
                reply_channel,
            )
            return None

        delay_ms = self._delay()
        message = await queue_thread_message(
            session,
            thread_id=context.thread.id,
            channel=reply_channel,
            to_address=to_address,
            body=self._reply_body(appointment, intent),
            metadata=ConfirmationLoopMessage(
                intent=intent,
                appointment_id=appointment.id,
                delay_ms=delay_ms,
            ),
            created_at=now,
            delay_ms=delay_ms,
        )
        return message.id

    def _reply_body(self, appointment: Appointment, intent: ConfirmationIntent) -> str:
        """Compose the customer-facing reply for an intent."""
        if intent == "confirm":
            when = (
                format_appointment_time(appointment.start_at, self._settings.appointment_timezone)
                if appointment.start_at is not None
                else "soon"
            )
            return f"Thanks! You're confirmed for {when}. Reply if you need any changes."
        url = build_reschedule_url(appointment.id, appointment.reschedule_token, self._settings)
        if url:
            return f"No problem. Use this link to reschedule: {url}"
        return RESCHEDULE_FALLBACK_BODY

    async def _delete_calendar_event(self, appointment_id: str, event_id: str) -> None:
        """Remove the calendar event, logging rather than raising on failure."""
        try:
            await self._calendar.delete_event(event_id)
        except Exception:
            logger.exception(
                "Calendar event deletion failed: appointment_id=%s event_id=%s",
                appointment_id,
                event_id,
            )


__all__ = [
    "ConfirmationLoopHandler",
    "ConfirmationResult",
    "RESCHEDULE_FALLBACK_BODY",
    "confirmation_reply_channel",
]
