"""Data models for the Stonegate operations service."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()

JsonType = JSON().with_variant(JSONB(), "postgresql")

MessageDirectionEnum = Enum(
    "inbound",
    "outbound",
    name="message_direction",
    native_enum=False,
)
ParticipantTypeEnum = Enum(
    "contact",
    "team",
    "system",
    name="participant_type",
    native_enum=False,
)
AppointmentStatusEnum = Enum(
    "requested",
    "confirmed",
    "canceled",
    "completed",
    "no_show",
    name="appointment_status",
    native_enum=False,
)
AutomationModeEnum = Enum(
    "draft",
    "assist",
    "auto",
    name="automation_mode",
    native_enum=False,
)
AuditActorTypeEnum = Enum(
    "human",
    "ai",
    "system",
    "worker",
    name="audit_actor_type",
    native_enum=False,
)


def _new_id() -> str:
    """Return a new string primary key."""
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    """Return the current UTC timestamp."""
    return datetime.now(timezone.utc)


class Contact(Base):
    """Person or business the team communicates with."""

    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=_new_id)
    first_name = Column(String(200), nullable=True)
    last_name = Column(String(200), nullable=True)
    email = Column(String(320), nullable=True)
    phone = Column(String(50), nullable=True)
    phone_e164 = Column(String(20), nullable=True)
    partner_status = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class Property(Base):
    """Service address belonging to a contact."""

    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=_new_id)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    address_line1 = Column(String(300), nullable=True)
    city = Column(String(200), nullable=True)
    state = Column(String(50), nullable=True)
    postal_code = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Lead(Base):
    """Sales opportunity for a contact."""

    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_new_id)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=True)
    status = Column(String(50), nullable=False, default="new")
    source = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class ConversationThread(Base):
    """Messaging relationship with a contact on one channel or omni-channel."""

    __tablename__ = "conversation_threads"

    id = Column(String(36), primary_key=True, default=_new_id)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=True)
    lead_id = Column(String(36), ForeignKey("leads.id"), nullable=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=True)
    subject = Column(String(500), nullable=True)
    channel = Column(String(20), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    last_message_preview = Column(String(140), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class ConversationParticipant(Base):
    """Participant attached to a conversation thread."""

    __tablename__ = "conversation_participants"

    id = Column(String(36), primary_key=True, default=_new_id)
    thread_id = Column(String(36), ForeignKey("conversation_threads.id"), nullable=False)
    participant_type = Column(ParticipantTypeEnum, nullable=False)
    display_name = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ConversationMessage(Base):
    """Inbound or outbound message on a thread."""

    __tablename__ = "conversation_messages"
    __table_args__ = (
        UniqueConstraint(
            "thread_id",
            "auto_reply_to_message_id",
            name="uq_conversation_messages_auto_reply",
        ),
        Index("ix_conversation_messages_thread_direction", "thread_id", "direction"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    thread_id = Column(String(36), ForeignKey("conversation_threads.id"), nullable=False)
    participant_id = Column(
        String(36), ForeignKey("conversation_participants.id"), nullable=True
    )
    direction = Column(MessageDirectionEnum, nullable=False)
    channel = Column(String(20), nullable=True)
    subject = Column(String(500), nullable=True)
    body = Column(Text, nullable=True)
    to_address = Column(String(320), nullable=True)
    from_address = Column(String(320), nullable=True)
    delivery_status = Column(String(50), nullable=True)
    meta = Column("metadata", JsonType, nullable=True)
    auto_reply_to_message_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class LeadAutomationState(Base):
    """Per lead and channel automation kill switches and follow-up progress."""

    __tablename__ = "lead_automation_states"
    __table_args__ = (
        UniqueConstraint("lead_id", "channel", name="uq_lead_automation_states_lead_channel"),
    )

    id = Column(Integer, primary_key=True)
    lead_id = Column(String(36), ForeignKey("leads.id"), nullable=False)
    channel = Column(String(20), nullable=False)
    paused = Column(Boolean, nullable=False, default=False)
    dnc = Column(Boolean, nullable=False, default=False)
    human_takeover = Column(Boolean, nullable=False, default=False)
    followup_state = Column(String(50), nullable=True)
    followup_step = Column(Integer, nullable=False, default=0)
    next_followup_at = Column(DateTime(timezone=True), nullable=True)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    paused_by = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class Appointment(Base):
    """Scheduled on-site visit for a lead or contact."""

    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=_new_id)
    lead_id = Column(String(36), ForeignKey("leads.id"), nullable=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=60)
    status = Column(AppointmentStatusEnum, nullable=False, default="requested")
    reschedule_token = Column(String(100), nullable=True)
    calendar_event_id = Column(String(300), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class OutboxEvent(Base):
    """Durable side-effect work item consumed by the outbox worker."""

    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True)
    type = Column(String(100), nullable=False)
    payload = Column(JsonType, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class AutomationSetting(Base):
    """Global automation mode for one reply channel."""

    __tablename__ = "automation_settings"

    channel = Column(String(20), primary_key=True)
    mode = Column(AutomationModeEnum, nullable=False, default="draft")
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class PolicySetting(Base):
    """Stored JSON override for one named policy."""

    __tablename__ = "policy_settings"

    key = Column(String(100), primary_key=True)
    value = Column(JsonType, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class AuditLog(Base):
    """Append-only record of automation and staff decisions."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    actor_type = Column(AuditActorTypeEnum, nullable=False, default="system")
    actor_id = Column(String(200), nullable=True)
    actor_role = Column(String(100), nullable=True)
    actor_label = Column(String(200), nullable=True)
    action = Column(String(200), nullable=False)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(200), nullable=True)
    meta = Column(JsonType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class CalendarSyncState(Base):
    """Push-notification channel bookkeeping for one Google calendar."""

    __tablename__ = "calendar_sync_state"

    calendar_id = Column(String(300), primary_key=True)
    channel_id = Column(String(300), nullable=True)
    resource_id = Column(String(300), nullable=True)
    channel_expires_at = Column(DateTime(timezone=True), nullable=True)
    sync_token = Column(Text, nullable=True)
    last_notification_at = Column(DateTime(timezone=True), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


def _ensure_aware_timestamp(value: datetime | None) -> datetime | None:
    """Normalize timestamps to UTC when timezone info is missing."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@event.listens_for(Base, "load", propagate=True)
def _normalize_timestamps_on_load(target: object, _context: object) -> None:
    """Ensure loaded timestamps retain timezone awareness on SQLite."""
    for column in target.__table__.columns:
        if not isinstance(column.type, DateTime):
            continue
        attribute = target.__mapper__.get_property_by_column(column).key
        value = target.__dict__.get(attribute)
        if isinstance(value, datetime):
            target.__dict__[attribute] = _ensure_aware_timestamp(value)
