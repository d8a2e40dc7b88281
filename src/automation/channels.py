"""Reply-channel selection for inbound messages."""

from __future__ import annotations

from typing import Literal, Protocol

ReplyChannel = Literal["sms", "email", "dm"]

_CANDIDATES: dict[str, tuple[ReplyChannel, ...]] = {
    "sms": ("sms",),
    "call": ("sms",),
    "email": ("email",),
    "dm": ("dm",),
}
_FALLBACK_CANDIDATES: tuple[ReplyChannel, ...] = ("sms", "email")


class ContactAddresses(Protocol):
    """Contact fields consulted when picking a destination address."""

    email: str | None
    phone: str | None
    phone_e164: str | None


def resolve_candidate_channels(inbound_channel: str | None) -> list[ReplyChannel]:
    """Return acceptable reply channels for an inbound channel, in order.

    Unknown channels (including ``web``) fall back to sms then email.
    """
    key = (inbound_channel or "").strip().lower()
    return list(_CANDIDATES.get(key, _FALLBACK_CANDIDATES))


def resolve_destination(
    channel: str,
    contact: ContactAddresses | None,
    from_address: str | None = None,
) -> str | None:
    """Return the address a reply on ``channel`` should be sent to."""
    if channel == "sms":
        if contact is None:
            return None
        return contact.phone_e164 or contact.phone or None
    if channel == "email":
        return contact.email if contact is not None and contact.email else None
    if channel == "dm":
        return from_address or None
    return None


__all__ = ["ContactAddresses", "ReplyChannel", "resolve_candidate_channels", "resolve_destination"]
