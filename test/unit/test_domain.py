"""Unit tests for Pulse domain types."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pulse.domain import (
    CompletedOutcome,
    EndSignal,
    EntityPulseConfig,
    FailedOutcome,
    PulseEntity,
    PulseJobPayload,
    PulseStatus,
    SkippedOutcome,
    SkipReason,
)


def test_model_resolution_order() -> None:
    """Pulse model beats entity override, which beats preferred and default."""
    entity = PulseEntity(
        id="e1",
        name="Ada",
        pulse=EntityPulseConfig(model="pulse-model"),
        model_override="override",
        preferred_model="preferred",
    )
    assert entity.resolve_model("default") == "pulse-model"

    entity = PulseEntity(id="e1", name="Ada", model_override="override", preferred_model="preferred")
    assert entity.resolve_model("default") == "override"

    assert PulseEntity(id="e1", name="Ada").resolve_model("default") == "default"


def test_outcomes_reject_mismatched_end_signals() -> None:
    """Completed outcomes only rest or hit the tool limit; failures only error or recover."""
    with pytest.raises(ValueError):
        CompletedOutcome(end_signal=EndSignal.ERROR)
    with pytest.raises(ValueError):
        FailedOutcome(end_signal=EndSignal.REST, error="x")

    assert SkippedOutcome(reason=SkipReason.BUDGET_EXHAUSTED).status == PulseStatus.SKIPPED
    assert CompletedOutcome(end_signal=EndSignal.TOOL_LIMIT).status == PulseStatus.COMPLETED
    assert FailedOutcome(end_signal=EndSignal.CRASH_RECOVERY, error="x").status == PulseStatus.FAILED


def test_job_payload_rejects_negative_depth() -> None:
    """Chain depth is never negative."""
    with pytest.raises(ValidationError):
        PulseJobPayload(entityId="e1", chainDepth=-1)


def test_job_payload_message_omits_missing_context() -> None:
    """Queue messages use camelCase keys and drop an absent note."""
    payload = PulseJobPayload(entityId="e1", entityName="Ada")

    assert payload.to_message() == {
        "entityId": "e1",
        "entityName": "Ada",
        "wakeType": "scheduled",
        "chainDepth": 0,
    }


def test_unknown_config_keys_are_ignored() -> None:
    """Extra keys in an entity's pulse document do not break parsing."""
    config = EntityPulseConfig.model_validate({"enabled": True, "mood": "sunny"})

    assert config.enabled is True
    assert config.wake_interval_minutes is None
