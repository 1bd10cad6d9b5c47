"""Active-conversation check against per-user expression state."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from pulse.keys import expression_pattern
from services.kv_store import KeyValueStore
from time_utils import parse_timestamp, utc_now

LOGGER = logging.getLogger(__name__)

LAST_INTERACTION_FIELD = "lastInteractionTimestamp"


class ConversationLiveness:
    """Reports whether a human talked to the entity within the window."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        namespace: str,
        window_minutes: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._window = timedelta(minutes=window_minutes)
        self._clock = clock

    def is_entity_active(self, entity_id: str) -> bool:
        cutoff = self._clock() - self._window
        for key in self._store.scan_keys(pattern=expression_pattern(self._namespace, entity_id)):
            raw = self._store.get_hash_field(key=key, field=LAST_INTERACTION_FIELD)
            if not raw:
                continue
            try:
                last = parse_timestamp(raw)
            except ValueError:
                LOGGER.debug("Ignoring unparseable interaction timestamp on %s", key)
                continue
            if last > cutoff:
                return True
        return False
