"""Auto-reply orchestration for inbound conversation messages.

For each inbound message the orchestrator decides whether automation should
answer, and if so on which channel and with which template. Checks run in a
fixed order and stop at the first one that decides the outcome:

1. load the message with its thread, contact, and property
2. STOP/unsubscribe handling
3. appointment confirmation replies
4. partner contacts
5. sales autopilot deferral
6. reply channel selection (kill switches, destinations)
7. duplicate-send idempotency
8. template resolution (service area)
9. compose and persist the reply with its outbox event
10. audit the result
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from automation.audit import (
    AUTO_REPLY_ACTOR,
    AUTO_REPLY_SYSTEM_ACTOR,
    AuditEventRequest,
    AuditRecorder,
)
from automation.channels import resolve_candidate_channels, resolve_destination
from automation.confirmation_loop import ConfirmationLoopHandler
from automation.conversations import (
    InboundContext,
    find_auto_reply,
    has_outbound_message,
    load_inbound_context,
    queue_thread_message,
)
from automation.delays import DelayProvider, random_delay_ms
from automation.intent import is_stop_message
from automation.message_metadata import AutoReplyMessage
from automation.policy import (
    AutomationMode,
    PolicyResolver,
    is_postal_code_allowed,
    normalize_postal_code,
    resolve_template_for_channel,
)
from automation.stop_handler import StopHandler
from config import Settings, settings as default_settings
from observability import bind_context, log_context
from services.calendar import CalendarEventDeleter
from time_utils import utc_now

logger = logging.getLogger(__name__)

PARTNER_STATUS = "partner"

OutcomeStatus = Literal["processed", "skipped"]


@dataclass(frozen=True)
class AutoReplyOutcome:
    """Result of one orchestrator invocation."""

    status: OutcomeStatus
    reason: str | None = None

    @classmethod
    def processed(cls, reason: str | None = None) -> AutoReplyOutcome:
        """Return a processed outcome."""
        return cls(status="processed", reason=reason)

    @classmethod
    def skipped(cls, reason: str | None = None) -> AutoReplyOutcome:
        """Return a skipped outcome."""
        return cls(status="skipped", reason=reason)


@dataclass(frozen=True)
class ChannelAttempt:
    """A reply channel that was considered and rejected."""

    channel: str
    reason: str

    def to_json(self) -> dict[str, str]:
        """Return the audit representation of the attempt."""
        return {"channel": self.channel, "reason": self.reason}


@dataclass(frozen=True)
class ChannelSelection:
    """The reply channel chosen for an auto-reply."""

    channel: str
    mode: AutomationMode
    to_address: str


class AutoReplyOrchestrator:
    """Decide and persist automated replies to inbound messages."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession] | None = None,
        *,
        audit: AuditRecorder | None = None,
        calendar: CalendarEventDeleter | None = None,
        policy_factory: Callable[[AsyncSession], PolicyResolver] = PolicyResolver,
        delay_provider: DelayProvider | None = None,
        now_provider: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the orchestrator; unset collaborators use production defaults."""
        if session_factory is None:
            from services.database import async_session_factory

            session_factory = async_session_factory
        if calendar is None:
            from services.calendar import GoogleCalendarClient

            calendar = GoogleCalendarClient()

        self._session_factory = session_factory
        self._policy_factory = policy_factory
        self._delay = delay_provider or random_delay_ms
        self._now = now_provider or utc_now
        self._settings = settings or default_settings
        self._audit = audit or AuditRecorder(session_factory, now_provider=self._now)
        self._stop_handler = StopHandler(session_factory, self._audit, now_provider=self._now)
        self._confirmation_loop = ConfirmationLoopHandler(
            session_factory,
            self._audit,
            calendar,
            delay_provider=self._delay,
            now_provider=self._now,
            settings=self._settings,
        )

    async def handle_inbound_auto_reply(self, message_id: str) -> AutoReplyOutcome:
        """Run the auto-reply decision pipeline for one inbound message.

        Safe to call repeatedly for the same message: a second call finds the
        reply created by the first and reports ``processed``. Database and
        network errors propagate to the caller.
        """
        with log_context(message_id=message_id):
            outcome = await self._handle(message_id)
            logger.info(
                "Auto-reply finished: status=%s reason=%s", outcome.status, outcome.reason
            )
            return outcome

    async def _handle(self, message_id: str) -> AutoReplyOutcome:
        """Run the pipeline inside the bound logging context."""
        async with self._session_factory() as session:
            context = await load_inbound_context(session, message_id)

        if context is None:
            logger.warning("Inbound message not found: message_id=%s", message_id)
            return AutoReplyOutcome.skipped("inbound_not_found")
        if context.message.direction != "inbound":
            logger.warning(
                "Message is not inbound: message_id=%s direction=%s",
                message_id,
                context.message.direction,
            )
            return AutoReplyOutcome.skipped("not_inbound")

        bind_context(thread_id=context.thread.id)

        if is_stop_message(context.message.body):
            await self._stop_handler.handle(context)
            return AutoReplyOutcome.processed("stop_request")

        confirmation = await self._confirmation_loop.handle(context)
        if confirmation is not None:
            return AutoReplyOutcome.processed(f"confirmation_{confirmation.intent}")

        if context.contact is not None and context.contact.partner_status == PARTNER_STATUS:
            await self._audit.record_skip(
                AUTO_REPLY_SYSTEM_ACTOR,
                context.message_id,
                "partner_contact",
                inboundChannel=context.channel,
            )
            return AutoReplyOutcome.skipped("partner_contact")

        async with self._session_factory() as session:
            try:
                return await self._compose_reply(session, context)
            except IntegrityError:
                await session.rollback()
                if await find_auto_reply(session, context.thread.id, context.message_id) is None:
                    raise
                logger.info(
                    "Concurrent auto-reply already stored: message_id=%s", context.message_id
                )
                return AutoReplyOutcome.processed("already_replied")
            except Exception:
                await session.rollback()
                raise

    async def _compose_reply(
        self,
        session: AsyncSession,
        context: InboundContext,
    ) -> AutoReplyOutcome:
        """Run the policy checks and persist the reply in one transaction."""
        policy = self._policy_factory(session)

        autopilot = await policy.get_sales_autopilot_policy()
        if autopilot.enabled:
            await self._audit.record(
                self._skip_request(
                    context, {"reason": "sales_autopilot_enabled", "inboundChannel": context.channel}
                )
            )
            return AutoReplyOutcome.processed("sales_autopilot_enabled")

        selection, attempted = await self._select_channel(policy, context)
        if selection is None:
            await self._audit.record(
                self._skip_request(
                    context,
                    {
                        "reason": "no_eligible_channel",
                        "inboundChannel": context.channel,
                        "attempted": [attempt.to_json() for attempt in attempted],
                    },
                )
            )
            return AutoReplyOutcome.skipped("no_eligible_channel")

        if await find_auto_reply(session, context.thread.id, context.message_id) is not None:
            return AutoReplyOutcome.processed("already_replied")
        if await has_outbound_message(session, context.thread.id):
            await self._audit.record(
                self._skip_request(
                    context, {"reason": "existing_outbound", "channel": selection.channel}
                )
            )
            return AutoReplyOutcome.skipped("existing_outbound")

        templates = await policy.get_templates_policy()
        service_area = await policy.get_service_area_policy()
        postal_code = normalize_postal_code(
            context.property.postal_code if context.property is not None else None
        )
        out_of_area = postal_code is not None and not is_postal_code_allowed(
            postal_code, service_area
        )
        template = resolve_template_for_channel(
            templates.group("out_of_area" if out_of_area else "first_touch"),
            inbound_channel=context.channel,
            reply_channel=selection.channel,
        )
        if not template:
            await self._audit.record(
                self._skip_request(
                    context,
                    {
                        "reason": "missing_template",
                        "channel": selection.channel,
                        "outOfArea": out_of_area,
                    },
                )
            )
            return AutoReplyOutcome.skipped("missing_template")

        subject = None
        if selection.channel == "email":
            subject = await self._email_subject(policy, context)

        delay_ms = self._delay()
        now = self._now()
        draft = selection.mode == "draft"
        inbound_meta = context.message.meta if isinstance(context.message.meta, dict) else {}
        message = await queue_thread_message(
            session,
            thread_id=context.thread.id,
            channel=selection.channel,
            to_address=selection.to_address,
            body=template,
            subject=subject,
            metadata=AutoReplyMessage(
                to_message_id=context.message_id,
                delay_ms=delay_ms,
                mode=selection.mode,
                inbound_channel=context.channel,
                reply_channel=selection.channel,
                draft=draft,
                out_of_area=out_of_area,
                extra=inbound_meta,
            ),
            created_at=now,
            delay_ms=delay_ms,
            auto_reply_to_message_id=context.message_id,
            draft=draft,
        )
        message_id = message.id
        await session.commit()

        action = "auto_reply.draft_created" if draft else "auto_reply.queued"
        await self._audit.record(
            AuditEventRequest(
                actor=AUTO_REPLY_ACTOR,
                action=action,
                entity_type="conversation_message",
                entity_id=message_id,
                meta={
                    "inboundMessageId": context.message_id,
                    "threadId": context.thread.id,
                    "channel": selection.channel,
                    "mode": selection.mode,
                    "delayMs": delay_ms,
                },
            )
        )
        return AutoReplyOutcome.processed("draft_created" if draft else "queued")

    async def _select_channel(
        self,
        policy: PolicyResolver,
        context: InboundContext,
    ) -> tuple[ChannelSelection | None, list[ChannelAttempt]]:
        """Return the first candidate channel that passes every check."""
        attempted: list[ChannelAttempt] = []
        for channel in resolve_candidate_channels(context.channel):
            mode = await policy.get_automation_mode(channel)
            if context.lead_id:
                state = await policy.get_lead_automation_state(context.lead_id, channel)
                if state is not None and state.kill_switch_active:
                    attempted.append(ChannelAttempt(channel, "lead_kill_switch"))
                    continue
            to_address = resolve_destination(channel, context.contact, context.message.from_address)
            if not to_address:
                attempted.append(ChannelAttempt(channel, "missing_recipient"))
                continue
            return ChannelSelection(channel=channel, mode=mode, to_address=to_address), attempted
        return None, attempted

    async def _email_subject(self, policy: PolicyResolver, context: InboundContext) -> str:
        """Return the reply subject for an email auto-reply."""
        thread_subject = (context.thread.subject or "").strip()
        if thread_subject:
            return f"Re: {context.thread.subject}"
        profile = await policy.get_company_profile_policy()
        return profile.business_name

    def _skip_request(self, context: InboundContext, meta: dict[str, Any]) -> AuditEventRequest:
        """Build an ``auto_reply.skipped`` audit request for the inbound message."""
        return AuditEventRequest(
            actor=AUTO_REPLY_ACTOR,
            action="auto_reply.skipped",
            entity_type="conversation_message",
            entity_id=context.message_id,
            meta=meta,
        )


_default_orchestrator: AutoReplyOrchestrator | None = None


def get_default_orchestrator() -> AutoReplyOrchestrator:
    """Return the process-wide orchestrator built from production collaborators."""
    global _default_orchestrator
    if _default_orchestrator is None:
        _default_orchestrator = AutoReplyOrchestrator()
    return _default_orchestrator


async def handle_inbound_auto_reply(
    message_id: str,
    *,
    orchestrator: AutoReplyOrchestrator | None = None,
) -> AutoReplyOutcome:
    """Run the auto-reply pipeline, reusing the default orchestrator when none is given."""
    active = orchestrator or get_default_orchestrator()
    return await active.handle_inbound_auto_reply(message_id)


__all__ = [
    "AutoReplyOrchestrator",
    "AutoReplyOutcome",
    "ChannelAttempt",
    "ChannelSelection",
    "get_default_orchestrator",
    "handle_inbound_auto_reply",
]
