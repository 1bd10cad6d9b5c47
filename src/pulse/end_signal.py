"""Single-slot mailbox through which an agent tool ends its own wake."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from pulse.domain import EndPulseMessage
from pulse.keys import end_signal_key
from services.kv_store import KeyValueStore

LOGGER = logging.getLogger(__name__)


class EndSignalMailbox:
    """At-most-once delivery of ``EndPulseMessage`` per entity; last write wins."""

    def __init__(self, store: KeyValueStore, *, namespace: str, ttl_seconds: int) -> None:
        self._store = store
        self._namespace = namespace
        self._ttl_seconds = ttl_seconds

    def post(self, entity_id: str, message: EndPulseMessage) -> None:
        """Producer side, called by the EndPulse tool."""
        self._store.set_value(
            key=end_signal_key(self._namespace, entity_id),
            value=message.model_dump_json(by_alias=True),
            ttl_seconds=self._ttl_seconds,
        )

    def consume(self, entity_id: str) -> EndPulseMessage | None:
        """Read then delete the slot; unreadable payloads count as no signal."""
        key = end_signal_key(self._namespace, entity_id)
        raw = self._store.get_value(key=key)
        if raw is None:
            return None
        self._store.delete_value(key=key)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("Discarding non-JSON end signal for %s", entity_id)
            return None
        if not isinstance(data, dict):
            LOGGER.warning("Discarding non-object end signal for %s", entity_id)
            return None
        try:
            return EndPulseMessage.model_validate(data)
        except ValidationError:
            LOGGER.warning("Discarding malformed end signal for %s", entity_id)
            return None
