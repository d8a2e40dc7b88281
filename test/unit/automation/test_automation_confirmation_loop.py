"""Unit tests for confirmation-loop handling of yes/no replies."""

from __future__ import annotations

from datetime import timedelta

import pytest

from automation.confirmation_loop import RESCHEDULE_FALLBACK_BODY, confirmation_reply_channel
from automation.delays import fixed_delay
from automation.orchestrator import AutoReplyOrchestrator
from config import Settings
from helpers.calendar_stub import RecordingCalendar
from helpers.factories import (
    NOW,
    add_appointment,
    add_outbox_event,
    audit_actions,
    fetch_all,
    fetch_one,
    outbound_messages,
    seed_inbound,
    set_lead_state,
    set_policy,
)
from models import Appointment, AuditLog, Lead, OutboxEvent

APPOINTMENT_START = NOW + timedelta(hours=2)


def _orchestrator(session_factory, calendar=None, settings=None) -> AutoReplyOrchestrator:
    """Build an orchestrator with a fixed clock and delay."""
    return AutoReplyOrchestrator(
        session_factory,
        calendar=calendar or RecordingCalendar(),
        delay_provider=fixed_delay(12_000),
        now_provider=lambda: NOW,
        settings=settings,
    )


async def _seed_with_appointment(session_factory, body: str, **appointment):
    """Seed an inbound reply, enable the loop, and book an appointment."""
    seeded = await seed_inbound(session_factory, body=body)
    await set_policy(session_factory, "confirmation_loop", {"enabled": True})
    appointment.setdefault("start_at", APPOINTMENT_START)
    appointment_id = await add_appointment(
        session_factory,
        lead_id=seeded.lead_id,
        contact_id=seeded.contact_id,
        **appointment,
    )
    return seeded, appointment_id


def test_reply_channel_prefers_email_only_for_email() -> None:
    """Confirmation replies go back by email only for email inbound."""
    assert confirmation_reply_channel("EMAIL") == "email"
    assert confirmation_reply_channel("sms") == "sms"
    assert confirmation_reply_channel("dm") == "sms"


@pytest.mark.asyncio
async def test_confirm_reply_end_to_end(session_factory) -> None:
    """A YES reply confirms the appointment and schedules the lead."""
    seeded, appointment_id = await _seed_with_appointment(session_factory, "Yes!")
    await add_outbox_event(session_factory, "estimate.reminder", {"appointmentId": appointment_id})
    await add_outbox_event(session_factory, "estimate.reminder", {"appointmentId": "other"})

    outcome = await _orchestrator(session_factory).handle_inbound_auto_reply(seeded.message_id)

    assert outcome.status == "processed"
    assert outcome.reason == "confirmation_confirm"
    appointment = await fetch_one(session_factory, Appointment, appointment_id)
    assert appointment.status == "confirmed"
    lead = await fetch_one(session_factory, Lead, seeded.lead_id)
    assert lead.status == "scheduled"

    replies = await outbound_messages(session_factory, seeded.thread_id)
    assert len(replies) == 1
    reply = replies[0]
    assert reply.channel == "sms"
    assert reply.body == (
        "Thanks! You're confirmed for Jun 1, 2024, 10:00 AM. Reply if you need any changes."
    )
    assert reply.auto_reply_to_message_id is None
    assert reply.meta == {
        "confirmationLoop": True,
        "confirmationIntent": "confirm",
        "appointmentId": appointment_id,
        "humanisticDelayMs": 12_000,
    }

    events = await fetch_all(session_factory, OutboxEvent)
    assert sorted(event.type for event in events) == ["estimate.reminder", "message.send"]
    reminder = next(event for event in events if event.type == "estimate.reminder")
    assert reminder.payload == {"appointmentId": "other"}

    assert await audit_actions(session_factory) == ["appointment.confirmed"]
    logs = await fetch_all(session_factory, AuditLog)
    assert logs[0].entity_id == appointment_id
    assert logs[0].meta == {"messageId": seeded.message_id, "channel": "sms"}


@pytest.mark.asyncio
async def test_confirm_reply_uses_calendar_timezone_fallback(session_factory) -> None:
    """Without an appointment timezone the calendar timezone formats the time."""
    seeded, _ = await _seed_with_appointment(session_factory, "yes")
    settings = Settings(
        appointments={"timezone": None}, google_calendar={"timezone": "America/Chicago"}
    )

    await _orchestrator(session_factory, settings=settings).handle_inbound_auto_reply(
        seeded.message_id
    )

    replies = await outbound_messages(session_factory, seeded.thread_id)
    assert replies[0].body == (
        "Thanks! You're confirmed for Jun 1, 2024, 9:00 AM. Reply if you need any changes."
    )


@pytest.mark.asyncio
async def test_decline_survives_calendar_failure(session_factory) -> None:
    """A failed calendar delete does not undo the reschedule request."""
    seeded, appointment_id = await _seed_with_appointment(
        session_factory, "No, can't make it", status="confirmed", calendar_event_id="evt-1"
    )
    calendar = RecordingCalendar(error=RuntimeError("calendar down"))

    outcome = await _orchestrator(session_factory, calendar=calendar).handle_inbound_auto_reply(
        seeded.message_id
    )

    assert outcome.status == "processed"
    assert outcome.reason == "confirmation_decline"
    assert calendar.deleted == ["evt-1"]
    appointment = await fetch_one(session_factory, Appointment, appointment_id)
    assert appointment.status == "requested"
    assert appointment.calendar_event_id is None
    lead = await fetch_one(session_factory, Lead, seeded.lead_id)
    assert lead.status == "contacted"
    replies = await outbound_messages(session_factory, seeded.thread_id)
    assert [reply.body for reply in replies] == [RESCHEDULE_FALLBACK_BODY]
    assert await audit_actions(session_factory) == ["appointment.reschedule_requested"]


@pytest.mark.asyncio
async def test_decline_includes_reschedule_link(session_factory) -> None:
    """A usable public site origin produces a self-service link."""
    seeded, appointment_id = await _seed_with_appointment(session_factory, "reschedule")
    settings = Settings(public_site={"url": "https://stonegate.example.com/"})

    await _orchestrator(session_factory, settings=settings).handle_inbound_auto_reply(
        seeded.message_id
    )

    replies = await outbound_messages(session_factory, seeded.thread_id)
    assert replies[0].body == (
        "No problem. Use this link to reschedule: "
        f"https://stonegate.example.com/schedule?appointmentId={appointment_id}&token=tok-123"
    )


@pytest.mark.asyncio
async def test_kill_switch_suppresses_only_the_reply(session_factory) -> None:
    """A paused lead still has its appointment confirmed, without a reply."""
    seeded, appointment_id = await _seed_with_appointment(session_factory, "confirm")
    await set_lead_state(session_factory, seeded.lead_id, "sms", paused=True)

    outcome = await _orchestrator(session_factory).handle_inbound_auto_reply(seeded.message_id)

    assert outcome.reason == "confirmation_confirm"
    appointment = await fetch_one(session_factory, Appointment, appointment_id)
    assert appointment.status == "confirmed"
    assert await outbound_messages(session_factory, seeded.thread_id) == []


@pytest.mark.asyncio
async def test_appointment_outside_window_falls_through(session_factory) -> None:
    """Appointments beyond the window leave the reply to the auto-reply path."""
    seeded, appointment_id = await _seed_with_appointment(
        session_factory, "yes", start_at=NOW + timedelta(days=3)
    )

    outcome = await _orchestrator(session_factory).handle_inbound_auto_reply(seeded.message_id)

    assert outcome.reason == "draft_created"
    appointment = await fetch_one(session_factory, Appointment, appointment_id)
    assert appointment.status == "requested"


@pytest.mark.asyncio
async def test_terminal_appointment_is_ignored(session_factory) -> None:
    """Canceled appointments are never reopened by a reply."""
    seeded, appointment_id = await _seed_with_appointment(session_factory, "yes", status="canceled")

    outcome = await _orchestrator(session_factory).handle_inbound_auto_reply(seeded.message_id)

    assert outcome.reason == "draft_created"
    appointment = await fetch_one(session_factory, Appointment, appointment_id)
    assert appointment.status == "canceled"


@pytest.mark.asyncio
async def test_missing_reschedule_token_is_ignored(session_factory) -> None:
    """Appointments without a reschedule token are not matched."""
    seeded, appointment_id = await _seed_with_appointment(
        session_factory, "yes", reschedule_token=None
    )

    outcome = await _orchestrator(session_factory).handle_inbound_auto_reply(seeded.message_id)

    assert outcome.reason == "draft_created"
    appointment = await fetch_one(session_factory, Appointment, appointment_id)
    assert appointment.status == "requested"


@pytest.mark.asyncio
async def test_disabled_loop_ignores_replies(session_factory) -> None:
    """Without the policy enabled a YES is treated like any message."""
    seeded = await seed_inbound(session_factory, body="yes")
    appointment_id = await add_appointment(
        session_factory, lead_id=seeded.lead_id, start_at=APPOINTMENT_START
    )

    outcome = await _orchestrator(session_factory).handle_inbound_auto_reply(seeded.message_id)

    assert outcome.reason == "draft_created"
    appointment = await fetch_one(session_factory, Appointment, appointment_id)
    assert appointment.status == "requested"


@pytest.mark.asyncio
async def test_soonest_appointment_is_chosen(session_factory) -> None:
    """The earliest qualifying appointment receives the reply."""
    seeded, later_id = await _seed_with_appointment(
        session_factory, "yes", start_at=NOW + timedelta(hours=20)
    )
    sooner_id = await add_appointment(
        session_factory, lead_id=seeded.lead_id, start_at=NOW + timedelta(hours=1)
    )

    await _orchestrator(session_factory).handle_inbound_auto_reply(seeded.message_id)

    assert (await fetch_one(session_factory, Appointment, sooner_id)).status == "confirmed"
    assert (await fetch_one(session_factory, Appointment, later_id)).status == "requested"
