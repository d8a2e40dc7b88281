"""Unit tests for automation policy coercion and lookup."""

from __future__ import annotations

import pytest

from automation.policy import (
    PolicyResolver,
    ServiceAreaPolicy,
    TemplatesPolicy,
    coerce_automation_mode,
    coerce_confirmation_loop_policy,
    coerce_sales_autopilot_policy,
    coerce_service_area_policy,
    coerce_templates_policy,
    is_postal_code_allowed,
    normalize_postal_code,
    resolve_template_for_channel,
)
from helpers.factories import set_automation_mode, set_policy


def test_normalize_postal_code() -> None:
    """Postal codes keep the first five digits and need at least five."""
    assert normalize_postal_code("30188-1234") == "30188"
    assert normalize_postal_code(" 30 188 ") == "30188"
    assert normalize_postal_code("3018") is None
    assert normalize_postal_code(None) is None


def test_postal_code_allowlist() -> None:
    """Only allowlisted codes pass, and an empty allowlist allows everything."""
    policy = ServiceAreaPolicy()
    assert is_postal_code_allowed("30188", policy) is True
    assert is_postal_code_allowed("90210", policy) is False
    assert is_postal_code_allowed("90210", ServiceAreaPolicy(zip_allowlist=())) is True
    assert is_postal_code_allowed("abc", policy) is False


def test_template_resolution_order() -> None:
    """Templates resolve by inbound channel, reply channel, sms, then email."""
    group = {"web": "web copy", "email": "email copy", "sms": "sms copy"}
    assert resolve_template_for_channel(group, inbound_channel="WEB", reply_channel="sms") == "web copy"
    assert resolve_template_for_channel(group, inbound_channel="call", reply_channel="email") == "email copy"
    assert resolve_template_for_channel(group, inbound_channel="call", reply_channel="dm") == "sms copy"
    assert resolve_template_for_channel({"email": "only email"}, inbound_channel="dm") == "only email"
    assert resolve_template_for_channel({}, inbound_channel="sms", reply_channel="sms") is None


def test_templates_overlay_keeps_defaults() -> None:
    """Stored templates override per channel while blanks and non-strings are ignored."""
    policy = coerce_templates_policy(
        {"first_touch": {"sms": "  Custom hello  ", "email": "   ", "dm": 7}, "reviews": "bad"}
    )
    defaults = TemplatesPolicy()
    assert policy.first_touch["sms"] == "Custom hello"
    assert policy.first_touch["email"] == defaults.first_touch["email"]
    assert policy.first_touch["dm"] == defaults.first_touch["dm"]
    assert policy.reviews == defaults.reviews


def test_confirmation_loop_coercion() -> None:
    """Only an explicit true enables the loop and invalid windows fall back."""
    assert coerce_confirmation_loop_policy(None).enabled is False
    assert coerce_confirmation_loop_policy({"enabled": "true"}).enabled is False
    policy = coerce_confirmation_loop_policy({"enabled": True, "windowsMinutes": [60, -5, "x", 30]})
    assert policy.enabled is True
    assert policy.windows_minutes == (60, 30)
    assert policy.max_window_minutes == 60
    fallback = coerce_confirmation_loop_policy({"enabled": True, "windowsMinutes": []})
    assert fallback.windows_minutes == (1440, 120)


def test_sales_autopilot_defaults_and_stored_rows() -> None:
    """Autopilot is off without a row and on for a row unless explicitly false."""
    assert coerce_sales_autopilot_policy(None).enabled is False
    stored = coerce_sales_autopilot_policy({"autoSendAfterMinutes": 500, "agentDisplayName": " "})
    assert stored.enabled is True
    assert stored.auto_send_after_minutes == 120
    assert stored.agent_display_name == "Devon"
    assert coerce_sales_autopilot_policy({"enabled": False}).enabled is False


def test_service_area_coercion() -> None:
    """Stored allowlists replace the default and drop blank entries."""
    policy = coerce_service_area_policy({"zipAllowlist": ["30188", " ", 5], "radiusMiles": "far"})
    assert policy.zip_allowlist == ("30188",)
    assert policy.radius_miles == 50


def test_unknown_automation_mode_raises() -> None:
    """Unknown automation modes are rejected; missing means draft."""
    assert coerce_automation_mode(None) == "draft"
    assert coerce_automation_mode("AUTO") == "auto"
    with pytest.raises(ValueError, match="Unknown automation mode"):
        coerce_automation_mode("yolo")


@pytest.mark.asyncio
async def test_resolver_reads_stored_settings(session_factory) -> None:
    """The resolver reads modes and policies from the database."""
    await set_automation_mode(session_factory, "sms", "auto")
    await set_policy(session_factory, "confirmation_loop", {"enabled": True})

    async with session_factory() as session:
        resolver = PolicyResolver(session)
        assert await resolver.get_automation_mode("sms") == "auto"
        assert await resolver.get_automation_mode("email") == "draft"
        assert (await resolver.get_confirmation_loop_policy()).enabled is True
        assert (await resolver.get_sales_autopilot_policy()).enabled is False
        assert (await resolver.get_company_profile_policy()).business_name == "Stonegate Junk Removal"
        assert await resolver.get_lead_automation_state("missing", "sms") is None
