"""Audit logging for automation decisions."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import AuditLog

logger = logging.getLogger(__name__)


class AuditActorType(str, Enum):
    """Allowed audit actor types."""

    HUMAN = "human"
    AI = "ai"
    SYSTEM = "system"
    WORKER = "worker"


@dataclass(frozen=True)
class AuditActor:
    """Who or what made an audited decision."""

    type: AuditActorType
    id: str | None = None
    role: str | None = None
    label: str | None = None


AUTO_REPLY_ACTOR = AuditActor(type=AuditActorType.AI, label="auto-reply")
AUTO_REPLY_SYSTEM_ACTOR = AuditActor(type=AuditActorType.SYSTEM, label="auto-reply")
STOP_HANDLER_ACTOR = AuditActor(type=AuditActorType.SYSTEM, label="stop-handler")
CONFIRMATION_LOOP_ACTOR = AuditActor(type=AuditActorType.AI, label="confirmation-loop")


@dataclass(frozen=True)
class AuditEventRequest:
    """Inputs for a single audit log entry."""

    actor: AuditActor
    action: str
    entity_type: str
    entity_id: str | None = None
    meta: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


class AuditRecorder:
    """Write audit entries in their own session with failure isolation.

    A failed audit write is logged and reported as ``False``; it never undoes
    or interrupts the decision being audited.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession],
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the recorder with an async session factory."""
        self._session_factory = session_factory
        self._now = now_provider or (lambda: datetime.now(timezone.utc))

    async def record(self, request: AuditEventRequest) -> bool:
        """Persist a new audit log entry and return success status."""
        try:
            async with self._session_factory() as session:
                session.add(
                    AuditLog(
                        actor_type=request.actor.type.value,
                        actor_id=request.actor.id,
                        actor_role=request.actor.role,
                        actor_label=request.actor.label,
                        action=request.action.strip(),
                        entity_type=request.entity_type.strip(),
                        entity_id=request.entity_id,
                        meta=dict(request.meta),
                        created_at=request.created_at or self._now(),
                    )
                )
                await session.commit()
        except Exception:
            logger.exception("Audit logging failed: action=%s", request.action)
            return False
        return True

    async def record_skip(
        self,
        actor: AuditActor,
        message_id: str,
        reason: str,
        **meta: Any,
    ) -> bool:
        """Record an ``auto_reply.skipped`` event for an inbound message."""
        return await self.record(
            AuditEventRequest(
                actor=actor,
                action="auto_reply.skipped",
                entity_type="conversation_message",
                entity_id=message_id,
                meta={"reason": reason, **meta},
            )
        )


__all__ = [
    "AUTO_REPLY_ACTOR",
    "AUTO_REPLY_SYSTEM_ACTOR",
    "AuditActor",
    "AuditActorType",
    "AuditEventRequest",
    "AuditRecorder",
    "CONFIRMATION_LOOP_ACTOR",
    "STOP_HANDLER_ACTOR",
]
