"""Data models for the Pulse wake scheduler."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()

# Pulse enums
WakeTypeEnum = Enum(
    "scheduled",
    "continue",
    name="pulse_wake_type",
    native_enum=False,
)
PulseStatusEnum = Enum(
    "pending",
    "in_progress",
    "completed",
    "failed",
    "skipped",
    name="pulse_status",
    native_enum=False,
)
SkipReasonEnum = Enum(
    "active_conversation",
    "budget_exhausted",
    "outside_active_hours",
    "max_chain_depth",
    name="pulse_skip_reason",
    native_enum=False,
)
EndSignalEnum = Enum(
    "rest",
    "tool_limit",
    "error",
    "crash_recovery",
    name="pulse_end_signal",
    native_enum=False,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PulseLog(Base):
    """One row per pulse wake attempt."""

    __tablename__ = "pulse_logs"
    __table_args__ = (
        Index("ix_pulse_logs_entity_created", "entity_id", "created_at"),
        Index("ix_pulse_logs_entity_status_created", "entity_id", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    entity_id = Column(String(200), nullable=False, index=True)
    entity_name = Column(String(200), nullable=True)
    wake_type = Column(WakeTypeEnum, nullable=False, default="scheduled")
    status = Column(PulseStatusEnum, nullable=False, default="pending")
    skip_reason = Column(SkipReasonEnum, nullable=True)
    chain_depth = Column(Integer, nullable=False, default=0)
    end_signal = Column(EndSignalEnum, nullable=True)
    task_context = Column(Text, nullable=True)
    reflection = Column(Text, nullable=True)
    token_usage = Column(JSON, nullable=True)
    tool_call_count = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Entity(Base):
    """Entity persona record; owned by the entity service and read-only here."""

    __tablename__ = "entities"

    id = Column(String(200), primary_key=True)
    name = Column(String(200), nullable=False)
    workspace_url = Column(String(1000), nullable=True)
    model_override = Column(String(200), nullable=True)
    preferred_model = Column(String(200), nullable=True)
    pulse = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class ContinuityMemory(Base):
    """Long-lived entity memory; the Internal Compass is one of these."""

    __tablename__ = "continuity_memories"

    id = Column(Integer, primary_key=True)
    entity_id = Column(String(200), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    tags = Column(JSON, nullable=True)
    content = Column(Text, nullable=True)
    importance = Column(Float, nullable=False, default=0.0)
    last_accessed = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


def _ensure_aware_timestamp(value: datetime | None) -> datetime | None:
    """Normalize timestamps to UTC when timezone info is missing."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@event.listens_for(PulseLog, "load")
def _normalize_pulse_log_on_load(target: PulseLog, _context: object) -> None:
    """Ensure loaded pulse log timestamps retain timezone awareness."""
    target.created_at = _ensure_aware_timestamp(target.created_at)
    target.updated_at = _ensure_aware_timestamp(target.updated_at)


@event.listens_for(ContinuityMemory, "load")
def _normalize_memory_on_load(target: ContinuityMemory, _context: object) -> None:
    """Ensure loaded memory timestamps retain timezone awareness."""
    target.last_accessed = _ensure_aware_timestamp(target.last_accessed)
