"""Resolution of the public site origin used in customer-facing links."""

from __future__ import annotations

import re
from urllib.parse import urlencode, urlsplit

from config import Settings, settings as default_settings

_UNSAFE_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}
_SCHEME_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


def resolve_public_site_base_url(settings: Settings | None = None) -> str | None:
    """Return the public site origin, or None when it is unusable.

    Loopback hosts are never returned, and HTTPS is required outside
    development and test environments.
    """
    active = settings or default_settings
    raw = (active.public_site.url or "").strip()
    if not raw:
        return None
    candidate = raw if _SCHEME_PATTERN.match(raw) else f"https://{raw}"

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return None
    hostname = (parts.hostname or "").lower()
    if not hostname or hostname in _UNSAFE_HOSTS:
        return None
    scheme = parts.scheme.lower()
    if not active.is_dev_environment and scheme != "https":
        return None

    origin = f"{scheme}://{hostname}"
    if port is not None:
        origin = f"{origin}:{port}"
    return origin


def build_reschedule_url(
    appointment_id: str,
    token: str,
    settings: Settings | None = None,
) -> str | None:
    """Return the self-service reschedule link for an appointment."""
    base = resolve_public_site_base_url(settings)
    if base is None:
        return None
    query = urlencode({"appointmentId": appointment_id, "token": token})
    return f"{base}/schedule?{query}"
