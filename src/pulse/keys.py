"""Key-value store key layout shared with the agent service."""

from __future__ import annotations


def lock_key(namespace: str, entity_id: str) -> str:
    return f"{namespace}:pulse:{entity_id}:active"


def budget_key(namespace: str, entity_id: str, date_key: str) -> str:
    return f"{namespace}:pulse:{entity_id}:budget:{date_key}"


def task_context_key(namespace: str, entity_id: str) -> str:
    return f"{namespace}:pulse:{entity_id}:taskContext"


def end_signal_key(namespace: str, entity_id: str) -> str:
    return f"{namespace}:pulse:{entity_id}:endSignal"


def expression_pattern(namespace: str, entity_id: str) -> str:
    """Glob matching every per-user expression hash for an entity."""
    return f"{namespace}:{entity_id}:*:expression"
