"""Durable task-context note an entity leaves for its next wake."""

from __future__ import annotations

from pulse.keys import task_context_key
from services.kv_store import KeyValueStore


class TaskContextStore:
    """Crash-surviving copy of the carried task context."""

    def __init__(self, store: KeyValueStore, *, namespace: str, ttl_seconds: int) -> None:
        self._store = store
        self._namespace = namespace
        self._ttl_seconds = ttl_seconds

    def _key(self, entity_id: str) -> str:
        return task_context_key(self._namespace, entity_id)

    def get(self, entity_id: str) -> str | None:
        value = self._store.get_value(key=self._key(entity_id))
        return value or None

    def set(self, entity_id: str, task_context: str | None) -> None:
        """Persist the note; an empty or ``None`` note clears it."""
        if not task_context:
            self.clear(entity_id)
            return
        self._store.set_value(
            key=self._key(entity_id),
            value=task_context,
            ttl_seconds=self._ttl_seconds,
        )

    def clear(self, entity_id: str) -> None:
        self._store.delete_value(key=self._key(entity_id))

    def clear_if_unchanged(self, entity_id: str, expected: str | None) -> bool:
        """Clear the note only if it still holds ``expected``.

        A note rewritten by the agent while the wake ran is kept.
        """
        if expected is None:
            return False
        if self.get(entity_id) != expected:
            return False
        self.clear(entity_id)
        return True
