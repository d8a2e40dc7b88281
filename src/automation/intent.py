"""Keyword-based intent parsing for inbound message bodies."""

from __future__ import annotations

import re
from typing import Literal

ConfirmationIntent = Literal["confirm", "decline"]

STOP_TOKENS = frozenset({"stop", "stopall", "unsubscribe", "cancel", "end", "quit"})
CONFIRM_TOKENS = frozenset({"yes", "yep", "yeah", "y", "ok", "okay", "sure", "confirm", "confirmed"})
DECLINE_TOKENS = frozenset({"no", "nope", "nah", "cancel", "reschedule"})

_NON_WORD_PATTERN = re.compile(r"[^\w\s]")
_STOP_WORD_PATTERN = re.compile(r"\b(stop|unsubscribe)\b")


def is_stop_message(body: str | None) -> bool:
    """Return True when any word of the body is a STOP-family token."""
    return any(token in STOP_TOKENS for token in _tokenize(body))


def parse_confirmation_intent(body: str | None) -> ConfirmationIntent | None:
    """Parse a short yes/no reply to an appointment confirmation prompt.

    Bodies that mention stop or unsubscribe never yield an intent. Decline
    tokens are checked before confirm tokens, so a body carrying both is a
    decline.
    """
    normalized = _normalize(body)
    if not normalized:
        return None
    if _STOP_WORD_PATTERN.search(normalized):
        return None
    tokens = set(normalized.split())
    if tokens & DECLINE_TOKENS:
        return "decline"
    if tokens & CONFIRM_TOKENS:
        return "confirm"
    return None


def _normalize(body: str | None) -> str:
    """Lowercase the body and replace punctuation with spaces."""
    if not body:
        return ""
    return _NON_WORD_PATTERN.sub(" ", body.strip().lower())


def _tokenize(body: str | None) -> list[str]:
    """Split a normalized body into whitespace-separated words."""
    return _normalize(body).split()


__all__ = [
    "CONFIRM_TOKENS",
    "ConfirmationIntent",
    "DECLINE_TOKENS",
    "STOP_TOKENS",
    "is_stop_message",
    "parse_confirmation_intent",
]
