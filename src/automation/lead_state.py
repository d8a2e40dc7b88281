"""Per lead and channel automation state: kill switches and DNC upserts."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from models import LeadAutomationState

logger = logging.getLogger(__name__)

STOPPED_FOLLOWUP_STATE = "stopped"


@dataclass(frozen=True)
class LeadAutomationSnapshot:
    """Read-only view of one lead automation state row."""

    lead_id: str
    channel: str
    paused: bool
    dnc: bool
    human_takeover: bool
    followup_state: str | None
    followup_step: int
    next_followup_at: datetime | None

    @property
    def kill_switch_active(self) -> bool:
        """Return True when any flag suppresses automation."""
        return self.paused or self.dnc or self.human_takeover


def _dialect_insert(session: AsyncSession):
    """Return the upsert-capable insert construct for the session bind."""
    bind = session.get_bind()
    if bind.dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


def _to_snapshot(row: LeadAutomationState) -> LeadAutomationSnapshot:
    """Convert an ORM row into an immutable snapshot."""
    return LeadAutomationSnapshot(
        lead_id=row.lead_id,
        channel=row.channel,
        paused=bool(row.paused),
        dnc=bool(row.dnc),
        human_takeover=bool(row.human_takeover),
        followup_state=row.followup_state,
        followup_step=row.followup_step or 0,
        next_followup_at=row.next_followup_at,
    )


class LeadAutomationStateStore:
    """Reads and upserts lead automation state within a caller's session."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the store with an async database session."""
        self._session = session

    async def get_state(self, lead_id: str, channel: str) -> LeadAutomationSnapshot | None:
        """Return the state row for a lead and channel, if one exists."""
        result = await self._session.execute(
            select(LeadAutomationState)
            .where(LeadAutomationState.lead_id == lead_id)
            .where(LeadAutomationState.channel == channel)
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _to_snapshot(row) if row is not None else None

    async def is_kill_switch_active(self, lead_id: str, channel: str) -> bool:
        """Return True when automation is suppressed for a lead on a channel."""
        state = await self.get_state(lead_id, channel)
        return state is not None and state.kill_switch_active

    async def apply_dnc(self, lead_ids: Iterable[str], channel: str, now: datetime) -> list[str]:
        """Mark each lead as do-not-contact on a channel.

        Rows are written with a single insert-or-update keyed on lead and
        channel, so repeated or concurrent STOP messages leave the same end
        state. Returns the lead ids written.
        """
        unique_ids = sorted({lead_id for lead_id in lead_ids if lead_id})
        if not unique_ids:
            return []

        stopped = {
            "paused": True,
            "dnc": True,
            "human_takeover": False,
            "followup_state": STOPPED_FOLLOWUP_STATE,
            "followup_step": 0,
            "next_followup_at": None,
            "paused_at": now,
            "paused_by": None,
            "updated_at": now,
        }
        insert = _dialect_insert(self._session)
        stmt = insert(LeadAutomationState).values(
            [
                {"lead_id": lead_id, "channel": channel, "created_at": now, **stopped}
                for lead_id in unique_ids
            ]
        )
        await self._session.execute(
            stmt.on_conflict_do_update(index_elements=["lead_id", "channel"], set_=stopped)
        )
        logger.info("Applied do-not-contact: channel=%s lead_ids=%s", channel, unique_ids)
        return unique_ids


__all__ = ["LeadAutomationSnapshot", "LeadAutomationStateStore", "STOPPED_FOLLOWUP_STATE"]
