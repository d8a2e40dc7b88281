"""Policy resolution for inbound-message automation.

Stored policy rows hold free-form JSON edited by office staff. Each getter
coerces the stored value over the built-in defaults, dropping entries of the
wrong type rather than failing, so a partially edited policy never disables
automation outright.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from automation.lead_state import LeadAutomationSnapshot, LeadAutomationStateStore
from models import AutomationSetting, PolicySetting

logger = logging.getLogger(__name__)

AutomationMode = Literal["draft", "assist", "auto"]
TemplateGroupName = Literal["first_touch", "follow_up", "confirmations", "reviews", "out_of_area"]

AUTOMATION_MODES: tuple[AutomationMode, ...] = ("draft", "assist", "auto")
DEFAULT_AUTOMATION_MODE: AutomationMode = "draft"

SERVICE_AREA_KEY = "service_area"
TEMPLATES_KEY = "templates"
CONFIRMATION_LOOP_KEY = "confirmation_loop"
SALES_AUTOPILOT_KEY = "sales_autopilot"
COMPANY_PROFILE_KEY = "company_profile"

DEFAULT_ZIP_ALLOWLIST: tuple[str, ...] = tuple(
    """
    30002 30003 30004 30005 30006 30007 30008 30009 30010 30011 30012 30013
    30017 30018 30019 30021 30022 30023 30024 30026 30028 30029 30030 30031
    30032 30033 30034 30035 30036 30037 30038 30039 30040 30041 30042 30043
    30044 30045 30046 30047 30048 30052 30054 30058 30060 30061 30062 30063
    30064 30065 30066 30067 30068 30069 30071 30072 30074 30075 30076 30077
    30078 30079 30080 30081 30082 30083 30084 30085 30086 30087 30088 30090
    30091 30092 30093 30094 30095 30096 30097 30098 30099 30101 30102 30103
    30104 30105 30106 30107 30108 30109 30110 30111 30113 30114 30115 30116
    30117 30118 30119 30120 30121 30122 30123 30124 30125 30126 30127 30129
    30132 30133 30134 30135 30137 30138 30139 30140 30141 30142 30143 30144
    30145 30146 30147 30148 30149 30150 30151 30152 30153 30154 30157 30161
    30162 30163 30164 30165 30168 30171 30172 30173 30175 30176 30177 30178
    30179 30180 30183 30184 30185 30187 30188 30189 30213 30214 30215 30228
    30232 30236 30237 30238 30250 30253 30260 30265 30268 30269 30272 30273
    30274 30281 30287 30288 30290 30291 30294 30296 30297 30298 30301 30302
    30303 30304 30305 30306 30307 30308 30309 30310 30311 30312 30313 30314
    30315 30316 30317 30318 30319 30320 30321 30322 30324 30325 30326 30327
    30328 30329 30330 30331 30332 30333 30334 30336 30337 30338 30339 30340
    30341 30342 30343 30344 30345 30346 30347 30348 30349 30350 30353 30354
    30355 30356 30357 30358 30359 30360 30361 30362 30364 30366 30368 30369
    30370 30371 30374 30375 30376 30377 30378 30379 30380 30384 30385 30386
    30387 30388 30389 30390 30392 30394 30396 30398 30399 30501 30502 30503
    30504 30506 30507 30515 30517 30518 30519 30522 30527 30533 30534 30539
    30540 30542 30543 30548 30564 30566 30575 30597 30620 30656 30680 30701
    30703 30705 30724 30732 30733 30734 30735 30746 31106 31107 31119 31126
    31131 31139 31141 31145 31146 31150 31156 31191 31192 31193 31195 31196
    31197 31198 31199
    """.split()
)


class ServiceAreaPolicy(BaseModel):
    """ZIP allowlist describing where the crew will travel."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["zip_allowlist"] = "zip_allowlist"
    home_base: str | None = "Woodstock, GA"
    radius_miles: float | None = 50
    zip_allowlist: tuple[str, ...] = DEFAULT_ZIP_ALLOWLIST
    notes: str | None = "Allowlist by ZIP (50 miles from Woodstock)."


class TemplatesPolicy(BaseModel):
    """Message templates grouped by purpose, each keyed by channel."""

    model_config = ConfigDict(frozen=True)

    first_touch: dict[str, str] = Field(
        default_factory=lambda: {
            "sms": (
                "Hey this is Devon, with Stonegate Junk Removal. What all do you need removed and "
                "when would you like us to come out? If you can, send a couple photos and your zip code."
            ),
            "email": (
                "Thanks for contacting Stonegate Junk Removal. This is Devon. What items do you need "
                "removed and what timeframe are you aiming for? If you have photos and your zip code, "
                "include those and we will follow up."
            ),
            "dm": (
                "Hey this is Devon, with Stonegate Junk Removal. What all do you need removed and what "
                "zip code? Photos help too."
            ),
            "call": (
                "Sorry we missed you. This is Devon with Stonegate Junk Removal. Text back what you need "
                "removed, your zip code, and photos if you have them. We will get you scheduled."
            ),
            "web": (
                "Hey this is Devon, with Stonegate Junk Removal. What all do you need removed and what "
                "zip code? Photos help too."
            ),
        }
    )
    follow_up: dict[str, str] = Field(
        default_factory=lambda: {
            "sms": "Just checking in. Do you want to lock in a time for your junk removal?",
            "email": "Following up on your quote request. Let us know if you want to schedule.",
        }
    )
    confirmations: dict[str, str] = Field(
        default_factory=lambda: {
            "sms": "Confirmed! We will see you at the scheduled time. Reply YES to confirm.",
            "email": "Your appointment is confirmed. Reply YES if everything looks right.",
        }
    )
    reviews: dict[str, str] = Field(
        default_factory=lambda: {
            "sms": "Thanks for choosing Stonegate! Would you leave a quick review?",
            "email": "We appreciate your business. If you have a moment, please share a review.",
        }
    )
    out_of_area: dict[str, str] = Field(
        default_factory=lambda: {
            "sms": (
                "Thanks for reaching out! We currently serve areas within 50 miles of Woodstock. "
                "If you are just outside, call (404) 777-2631 and we will try to help."
            ),
            "email": (
                "Thanks for reaching out! We currently serve areas within 50 miles of Woodstock. "
                "If you are just outside our zone, call (404) 777-2631 and we will try to help."
            ),
            "web": (
                "Thanks for reaching out! We currently serve areas within 50 miles of Woodstock. "
                "If you are just outside our zone, call (404) 777-2631 and we will try to help."
            ),
        }
    )

    def group(self, name: TemplateGroupName) -> dict[str, str]:
        """Return the channel-keyed templates for one group."""
        return getattr(self, name)


class ConfirmationLoopPolicy(BaseModel):
    """Whether short yes/no replies are matched to upcoming appointments."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    windows_minutes: tuple[int, ...] = (24 * 60, 2 * 60)

    @property
    def max_window_minutes(self) -> int:
        """Return the widest reminder window, in minutes."""
        return max(self.windows_minutes, default=24 * 60)


class SalesAutopilotPolicy(BaseModel):
    """Settings of the separate sales autopilot that supersedes auto-replies."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    auto_send_after_minutes: int = 15
    activity_window_minutes: int = 14
    retry_delay_minutes: int = 2
    agent_display_name: str = "Devon"


class CompanyProfilePolicy(BaseModel):
    """Business identity used in outbound copy."""

    model_config = ConfigDict(frozen=True)

    business_name: str = "Stonegate Junk Removal"
    primary_phone: str = "(404) 777-2631"
    service_area_summary: str = (
        "North Metro Atlanta within about 50 miles of Woodstock, Georgia (ZIP allowlist)."
    )


def _is_number(value: Any) -> bool:
    """Return True for real numbers, excluding booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_string(value: Any, fallback: str) -> str:
    """Return a trimmed non-empty string or the fallback."""
    if not isinstance(value, str):
        return fallback
    trimmed = value.strip()
    return trimmed or fallback


def _coerce_int(value: Any, fallback: int, *, minimum: int, maximum: int) -> int:
    """Return a rounded integer clamped into range, or the fallback."""
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return fallback
    if not _is_number(value) or value != value:
        return fallback
    return min(maximum, max(minimum, round(value)))


def _coerce_template_group(value: Any, fallback: Mapping[str, str]) -> dict[str, str]:
    """Overlay non-empty stored templates onto the default group."""
    result = dict(fallback)
    if not isinstance(value, Mapping):
        return result
    for key, item in value.items():
        if isinstance(item, str) and item.strip():
            result[str(key)] = item.strip()
    return result


def coerce_service_area_policy(stored: Mapping[str, Any] | None) -> ServiceAreaPolicy:
    """Build a service-area policy from a stored JSON value."""
    default = ServiceAreaPolicy()
    if not stored:
        return default
    raw_allowlist = stored.get("zipAllowlist")
    if isinstance(raw_allowlist, list):
        allowlist = tuple(
            item.strip() for item in raw_allowlist if isinstance(item, str) and item.strip()
        )
    else:
        allowlist = default.zip_allowlist
    radius = stored.get("radiusMiles")
    return ServiceAreaPolicy(
        home_base=(
            stored["homeBase"] if isinstance(stored.get("homeBase"), str) else default.home_base
        ),
        radius_miles=radius if _is_number(radius) else default.radius_miles,
        zip_allowlist=allowlist,
        notes=stored["notes"] if isinstance(stored.get("notes"), str) else default.notes,
    )


def coerce_templates_policy(stored: Mapping[str, Any] | None) -> TemplatesPolicy:
    """Build the templates policy by overlaying stored groups on the defaults."""
    default = TemplatesPolicy()
    if not stored:
        return default
    return TemplatesPolicy(
        first_touch=_coerce_template_group(stored.get("first_touch"), default.first_touch),
        follow_up=_coerce_template_group(stored.get("follow_up"), default.follow_up),
        confirmations=_coerce_template_group(stored.get("confirmations"), default.confirmations),
        reviews=_coerce_template_group(stored.get("reviews"), default.reviews),
        out_of_area=_coerce_template_group(stored.get("out_of_area"), default.out_of_area),
    )


def coerce_confirmation_loop_policy(stored: Mapping[str, Any] | None) -> ConfirmationLoopPolicy:
    """Build the confirmation-loop policy; only an explicit ``true`` enables it."""
    default = ConfirmationLoopPolicy()
    if not stored:
        return default
    raw_windows = stored.get("windowsMinutes")
    windows: tuple[int, ...] = ()
    if isinstance(raw_windows, list):
        windows = tuple(int(item) for item in raw_windows if _is_number(item) and item > 0)
    return ConfirmationLoopPolicy(
        enabled=stored.get("enabled") is True,
        windows_minutes=windows or default.windows_minutes,
    )


def coerce_sales_autopilot_policy(stored: Mapping[str, Any] | None) -> SalesAutopilotPolicy:
    """Build the sales-autopilot policy; a stored row is enabled unless set to false."""
    default = SalesAutopilotPolicy()
    if not stored:
        return default
    return SalesAutopilotPolicy(
        enabled=stored.get("enabled") is not False,
        auto_send_after_minutes=_coerce_int(
            stored.get("autoSendAfterMinutes"), default.auto_send_after_minutes, minimum=1, maximum=120
        ),
        activity_window_minutes=_coerce_int(
            stored.get("activityWindowMinutes"), default.activity_window_minutes, minimum=1, maximum=120
        ),
        retry_delay_minutes=_coerce_int(
            stored.get("retryDelayMinutes"), default.retry_delay_minutes, minimum=1, maximum=60
        ),
        agent_display_name=_coerce_string(stored.get("agentDisplayName"), default.agent_display_name),
    )


def coerce_company_profile_policy(stored: Mapping[str, Any] | None) -> CompanyProfilePolicy:
    """Build the company profile, keeping defaults for blank fields."""
    default = CompanyProfilePolicy()
    if not stored:
        return default
    return CompanyProfilePolicy(
        business_name=_coerce_string(stored.get("businessName"), default.business_name),
        primary_phone=_coerce_string(stored.get("primaryPhone"), default.primary_phone),
        service_area_summary=_coerce_string(
            stored.get("serviceAreaSummary"), default.service_area_summary
        ),
    )


def coerce_automation_mode(value: str | None) -> AutomationMode:
    """Validate an automation mode, treating a missing value as draft."""
    if value is None:
        return DEFAULT_AUTOMATION_MODE
    normalized = value.strip().lower()
    if normalized not in AUTOMATION_MODES:
        raise ValueError(f"Unknown automation mode: {value!r}")
    return normalized  # type: ignore[return-value]


def normalize_postal_code(raw: str | None) -> str | None:
    """Return the first five digits of a postal code, or None if too short."""
    if not raw:
        return None
    digits = "".join(char for char in raw if char.isdigit())
    if len(digits) < 5:
        return None
    return digits[:5]


def is_postal_code_allowed(postal_code: str | None, policy: ServiceAreaPolicy) -> bool:
    """Return True when the postal code falls inside the service area.

    An empty allowlist allows every parseable postal code.
    """
    normalized = normalize_postal_code(postal_code)
    if normalized is None:
        return False
    if not policy.zip_allowlist:
        return True
    return normalized in policy.zip_allowlist


def resolve_template_for_channel(
    group: Mapping[str, str],
    *,
    inbound_channel: str | None = None,
    reply_channel: str | None = None,
) -> str | None:
    """Pick a template by inbound channel, then reply channel, then sms, then email."""
    for key in (
        (inbound_channel or "").lower(),
        (reply_channel or "").lower(),
        "sms",
        "email",
    ):
        if key and group.get(key):
            return group[key]
    return None


class PolicyResolver:
    """Read-only policy queries over one database session."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the resolver with an async database session."""
        self._session = session
        self._lead_states = LeadAutomationStateStore(session)

    async def get_policy_setting(self, key: str) -> dict[str, Any] | None:
        """Return the stored JSON object for a policy key, if any."""
        result = await self._session.execute(
            select(PolicySetting.value).where(PolicySetting.key == key).limit(1)
        )
        value = result.scalar_one_or_none()
        if value is None:
            return None
        if not isinstance(value, dict):
            logger.warning("Ignoring non-object policy setting: key=%s", key)
            return None
        return value

    async def get_automation_mode(self, channel: str) -> AutomationMode:
        """Return the global automation mode for a reply channel."""
        result = await self._session.execute(
            select(AutomationSetting.mode).where(AutomationSetting.channel == channel).limit(1)
        )
        return coerce_automation_mode(result.scalar_one_or_none())

    async def get_lead_automation_state(
        self,
        lead_id: str,
        channel: str,
    ) -> LeadAutomationSnapshot | None:
        """Return the kill-switch state for a lead on a channel."""
        return await self._lead_states.get_state(lead_id, channel)

    async def get_service_area_policy(self) -> ServiceAreaPolicy:
        """Return the service-area policy."""
        return coerce_service_area_policy(await self.get_policy_setting(SERVICE_AREA_KEY))

    async def get_templates_policy(self) -> TemplatesPolicy:
        """Return the templates policy."""
        return coerce_templates_policy(await self.get_policy_setting(TEMPLATES_KEY))

    async def get_confirmation_loop_policy(self) -> ConfirmationLoopPolicy:
        """Return the confirmation-loop policy."""
        return coerce_confirmation_loop_policy(await self.get_policy_setting(CONFIRMATION_LOOP_KEY))

    async def get_sales_autopilot_policy(self) -> SalesAutopilotPolicy:
        """Return the sales-autopilot policy."""
        return coerce_sales_autopilot_policy(await self.get_policy_setting(SALES_AUTOPILOT_KEY))

    async def get_company_profile_policy(self) -> CompanyProfilePolicy:
        """Return the company profile."""
        return coerce_company_profile_policy(await self.get_policy_setting(COMPANY_PROFILE_KEY))


__all__ = [
    "AUTOMATION_MODES",
    "AutomationMode",
    "CompanyProfilePolicy",
    "ConfirmationLoopPolicy",
    "DEFAULT_ZIP_ALLOWLIST",
    "PolicyResolver",
    "SalesAutopilotPolicy",
    "ServiceAreaPolicy",
    "TemplateGroupName",
    "TemplatesPolicy",
    "coerce_automation_mode",
    "coerce_company_profile_policy",
    "coerce_confirmation_loop_policy",
    "coerce_sales_autopilot_policy",
    "coerce_service_area_policy",
    "coerce_templates_policy",
    "is_postal_code_allowed",
    "normalize_postal_code",
    "resolve_template_for_channel",
]
