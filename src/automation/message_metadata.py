"""Typed provenance metadata stored on conversation messages.

Messages persist metadata as a JSON object. Automation-generated messages
carry well-known provenance keys; every other key is preserved in ``extra``
so metadata written by channel webhooks survives a round trip.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from automation.intent import ConfirmationIntent

_AUTO_REPLY_KEYS = frozenset(
    {
        "autoReply",
        "autoReplyToMessageId",
        "autoReplyDelayMs",
        "autoReplyMode",
        "draft",
        "inboundChannel",
        "replyChannel",
        "outOfArea",
    }
)
_CONFIRMATION_KEYS = frozenset(
    {"confirmationLoop", "confirmationIntent", "appointmentId", "humanisticDelayMs"}
)


def _without(raw: Mapping[str, Any], keys: frozenset[str]) -> dict[str, Any]:
    """Return a copy of ``raw`` minus the given provenance keys."""
    return {key: value for key, value in raw.items() if key not in keys}


@dataclass(frozen=True)
class PlainMessage:
    """Metadata with no automation provenance."""

    extra: Mapping[str, Any] = field(default_factory=dict)
    kind: Literal["plain"] = "plain"

    def to_json(self) -> dict[str, Any]:
        """Return the JSON object to persist."""
        return dict(self.extra)


@dataclass(frozen=True)
class AutoReplyMessage:
    """Provenance of an automated reply to one inbound message."""

    to_message_id: str
    delay_ms: int
    mode: str | None
    inbound_channel: str | None = None
    reply_channel: str | None = None
    draft: bool = False
    out_of_area: bool = False
    extra: Mapping[str, Any] = field(default_factory=dict)
    kind: Literal["auto_reply"] = "auto_reply"

    def to_json(self) -> dict[str, Any]:
        """Return the JSON object to persist, with optional flags only when set."""
        payload = _without(self.extra, _AUTO_REPLY_KEYS)
        payload.update(
            {
                "autoReply": True,
                "autoReplyToMessageId": self.to_message_id,
                "autoReplyDelayMs": self.delay_ms,
                "autoReplyMode": self.mode,
                "inboundChannel": self.inbound_channel,
                "replyChannel": self.reply_channel,
            }
        )
        if self.draft:
            payload["draft"] = True
        if self.out_of_area:
            payload["outOfArea"] = True
        return payload


@dataclass(frozen=True)
class ConfirmationLoopMessage:
    """Provenance of a reply to an appointment confirmation or decline."""

    intent: ConfirmationIntent
    appointment_id: str
    delay_ms: int
    extra: Mapping[str, Any] = field(default_factory=dict)
    kind: Literal["confirmation_loop"] = "confirmation_loop"

    def to_json(self) -> dict[str, Any]:
        """Return the JSON object to persist."""
        payload = _without(self.extra, _CONFIRMATION_KEYS)
        payload.update(
            {
                "confirmationLoop": True,
                "confirmationIntent": self.intent,
                "appointmentId": self.appointment_id,
                "humanisticDelayMs": self.delay_ms,
            }
        )
        return payload


MessageMetadata = PlainMessage | AutoReplyMessage | ConfirmationLoopMessage


def parse_message_metadata(raw: Mapping[str, Any] | None) -> MessageMetadata:
    """Interpret a stored metadata object as its typed variant."""
    if not isinstance(raw, Mapping):
        return PlainMessage()

    if raw.get("autoReply") is True and isinstance(raw.get("autoReplyToMessageId"), str):
        delay = raw.get("autoReplyDelayMs")
        return AutoReplyMessage(
            to_message_id=raw["autoReplyToMessageId"],
            delay_ms=int(delay) if isinstance(delay, (int, float)) else 0,
            mode=raw.get("autoReplyMode"),
            inbound_channel=raw.get("inboundChannel"),
            reply_channel=raw.get("replyChannel"),
            draft=raw.get("draft") is True,
            out_of_area=raw.get("outOfArea") is True,
            extra=_without(raw, _AUTO_REPLY_KEYS),
        )

    if (
        raw.get("confirmationLoop") is True
        and raw.get("confirmationIntent") in ("confirm", "decline")
        and isinstance(raw.get("appointmentId"), str)
    ):
        delay = raw.get("humanisticDelayMs")
        return ConfirmationLoopMessage(
            intent=raw["confirmationIntent"],
            appointment_id=raw["appointmentId"],
            delay_ms=int(delay) if isinstance(delay, (int, float)) else 0,
            extra=_without(raw, _CONFIRMATION_KEYS),
        )

    return PlainMessage(extra=dict(raw))


__all__ = [
    "AutoReplyMessage",
    "ConfirmationLoopMessage",
    "MessageMetadata",
    "PlainMessage",
    "parse_message_metadata",
]
