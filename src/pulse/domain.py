"""Typed vocabulary for Pulse wakes: enums, entity config, payloads, outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class WakeType(str, Enum):
    """Why a wake attempt is running."""

    SCHEDULED = "scheduled"
    CONTINUE = "continue"


class PulseStatus(str, Enum):
    """Lifecycle status of an invocation log row."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    """Guard that short-circuited a wake."""

    ACTIVE_CONVERSATION = "active_conversation"
    BUDGET_EXHAUSTED = "budget_exhausted"
    OUTSIDE_ACTIVE_HOURS = "outside_active_hours"
    MAX_CHAIN_DEPTH = "max_chain_depth"


class EndSignal(str, Enum):
    """How a wake attempt ended."""

    REST = "rest"
    TOOL_LIMIT = "tool_limit"
    ERROR = "error"
    CRASH_RECOVERY = "crash_recovery"


class PulseSignal(str, Enum):
    """Signal the orchestrator hands back to the chain scheduler."""

    REST = "rest"
    CONTINUE = "continue"
    SKIPPED = "skipped"
    ERROR = "error"


class ActiveHours(BaseModel):
    """Daily wake window in an entity's local time."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    start: str | None = None
    end: str | None = None
    timezone: str | None = Field(
        default=None, validation_alias=AliasChoices("timezone", "tz")
    )


class EntityPulseConfig(BaseModel):
    """The ``pulse`` sub-document of an entity; unset fields use scheduler defaults."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    enabled: bool = False
    wake_interval_minutes: int | None = Field(default=None, alias="wakeIntervalMinutes")
    max_chain_depth: int | None = Field(default=None, alias="maxChainDepth")
    daily_budget_wakes: int | None = Field(default=None, alias="dailyBudgetWakes")
    daily_budget_tokens: int | None = Field(default=None, alias="dailyBudgetTokens")
    active_hours: ActiveHours | None = Field(default=None, alias="activeHours")
    model: str | None = None


@dataclass(frozen=True)
class PulseEntity:
    """Read-only view of an entity as the scheduler needs it."""

    id: str
    name: str
    pulse: EntityPulseConfig = field(default_factory=EntityPulseConfig)
    workspace_url: str | None = None
    model_override: str | None = None
    preferred_model: str | None = None

    def resolve_model(self, default_model: str) -> str:
        """Pick the model: pulse override, entity override, preferred, default."""
        return (
            self.pulse.model
            or self.model_override
            or self.preferred_model
            or default_model
        )


class EndPulseMessage(BaseModel):
    """Payload an agent tool posts to end its own wake."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    task_context: str | None = Field(default=None, alias="taskContext")
    reflection: str | None = None


class PulseJobPayload(BaseModel):
    """Queue message for ``pulse.wake`` and ``pulse.continue`` jobs."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    entity_id: str = Field(alias="entityId", min_length=1)
    entity_name: str = Field(default="", alias="entityName")
    wake_type: WakeType = Field(default=WakeType.SCHEDULED, alias="wakeType")
    chain_depth: int = Field(default=0, alias="chainDepth", ge=0)
    task_context: str | None = Field(default=None, alias="taskContext")

    def to_message(self) -> dict[str, Any]:
        """Serialize with camelCase keys for the queue."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


@dataclass(frozen=True)
class WakeOptions:
    """Per-attempt inputs to the orchestrator."""

    wake_type: WakeType = WakeType.SCHEDULED
    chain_depth: int = 0
    task_context: str | None = None


@dataclass(frozen=True)
class SkippedOutcome:
    """Terminal outcome for a guard short-circuit."""

    reason: SkipReason
    duration_ms: int | None = None

    @property
    def status(self) -> PulseStatus:
        return PulseStatus.SKIPPED


@dataclass(frozen=True)
class CompletedOutcome:
    """Terminal outcome for an attempt that reached the agent and finished."""

    end_signal: EndSignal
    duration_ms: int | None = None
    task_context: str | None = None
    reflection: str | None = None
    token_usage: dict[str, Any] | None = None
    tool_call_count: int = 0

    def __post_init__(self) -> None:
        if self.end_signal not in (EndSignal.REST, EndSignal.TOOL_LIMIT):
            raise ValueError(f"completed outcome cannot end with {self.end_signal.value}")

    @property
    def status(self) -> PulseStatus:
        return PulseStatus.COMPLETED


@dataclass(frozen=True)
class FailedOutcome:
    """Terminal outcome for an error or a reclaimed crash."""

    end_signal: EndSignal
    error: str
    duration_ms: int | None = None

    def __post_init__(self) -> None:
        if self.end_signal not in (EndSignal.ERROR, EndSignal.CRASH_RECOVERY):
            raise ValueError(f"failed outcome cannot end with {self.end_signal.value}")

    @property
    def status(self) -> PulseStatus:
        return PulseStatus.FAILED


TerminalOutcome = SkippedOutcome | CompletedOutcome | FailedOutcome


@dataclass(frozen=True)
class PulseWakeResult:
    """What one orchestrator run tells the chain scheduler."""

    signal: PulseSignal
    chain_depth: int | None = None
    task_context: str | None = None
    end_signal: EndPulseMessage | None = None
    error: str | None = None
    reason: SkipReason | None = None

    @classmethod
    def rest(cls, message: EndPulseMessage) -> "PulseWakeResult":
        return cls(signal=PulseSignal.REST, end_signal=message)

    @classmethod
    def continue_with(cls, chain_depth: int, task_context: str | None) -> "PulseWakeResult":
        return cls(
            signal=PulseSignal.CONTINUE,
            chain_depth=chain_depth,
            task_context=task_context,
        )

    @classmethod
    def skipped(cls, reason: SkipReason) -> "PulseWakeResult":
        return cls(signal=PulseSignal.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, error: str) -> "PulseWakeResult":
        return cls(signal=PulseSignal.ERROR, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly dict, used as the Celery task result."""
        payload: dict[str, Any] = {"signal": self.signal.value}
        if self.chain_depth is not None:
            payload["chainDepth"] = self.chain_depth
        if self.task_context is not None:
            payload["taskContext"] = self.task_context
        if self.end_signal is not None:
            payload["endSignal"] = self.end_signal.model_dump(by_alias=True)
        if self.error is not None:
            payload["error"] = self.error
        if self.reason is not None:
            payload["reason"] = self.reason.value
        return payload
