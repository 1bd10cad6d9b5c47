"""Per-entity daily wake and token budget."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from pulse.domain import EntityPulseConfig
from pulse.keys import budget_key
from services.kv_store import KeyValueStore
from time_utils import utc_date_key, utc_now

LOGGER = logging.getLogger(__name__)

WAKES_FIELD = "wakes"
TOKENS_FIELD = "tokens"


@dataclass(frozen=True)
class BudgetStatus:
    """Today's usage compared to the entity's limits."""

    exhausted: bool
    wakes: int
    tokens: int


def _parse_counter(raw: str | None) -> int:
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0


class BudgetLedger:
    """Daily counters keyed by entity and UTC day."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        namespace: str,
        default_wakes: int,
        default_tokens: int,
        ttl_seconds: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._default_wakes = default_wakes
        self._default_tokens = default_tokens
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def _key(self, entity_id: str) -> str:
        return budget_key(self._namespace, entity_id, utc_date_key(self._clock()))

    def check(self, entity_id: str, config: EntityPulseConfig) -> BudgetStatus:
        """Read today's counters; either limit met or exceeded means exhausted."""
        raw = self._store.get_hash(key=self._key(entity_id))
        wakes = _parse_counter(raw.get(WAKES_FIELD))
        tokens = _parse_counter(raw.get(TOKENS_FIELD))
        max_wakes = (
            config.daily_budget_wakes
            if config.daily_budget_wakes is not None
            else self._default_wakes
        )
        max_tokens = (
            config.daily_budget_tokens
            if config.daily_budget_tokens is not None
            else self._default_tokens
        )
        return BudgetStatus(
            exhausted=wakes >= max_wakes or tokens >= max_tokens,
            wakes=wakes,
            tokens=tokens,
        )

    def increment(self, entity_id: str, token_count: int) -> None:
        """Count one wake plus its tokens and push the expiry out again."""
        increments = {WAKES_FIELD: 1}
        if token_count > 0:
            increments[TOKENS_FIELD] = token_count
        self._store.increment_fields(
            key=self._key(entity_id),
            increments=increments,
            ttl_seconds=self._ttl_seconds,
        )
        LOGGER.debug("Budget incremented for %s (+%d tokens)", entity_id, token_count)
