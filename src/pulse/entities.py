"""Read-only access to entity records."""

from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from models import Entity
from pulse.domain import EntityPulseConfig, PulseEntity

LOGGER = logging.getLogger(__name__)


def _to_entity(row: Entity) -> PulseEntity:
    try:
        pulse = EntityPulseConfig.model_validate(row.pulse or {})
    except ValidationError as exc:
        LOGGER.warning(
            "Entity %s has an invalid pulse config; treating as disabled: %s", row.id, exc
        )
        pulse = EntityPulseConfig()
    return PulseEntity(
        id=row.id,
        name=row.name,
        pulse=pulse,
        workspace_url=row.workspace_url,
        model_override=row.model_override,
        preferred_model=row.preferred_model,
    )


class EntityStore:
    """Entity lookups for scheduling and per-job config refresh."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def list_pulse_enabled(self) -> list[PulseEntity]:
        with self._session_factory() as session:
            rows = session.query(Entity).order_by(Entity.id).all()
            entities = [_to_entity(row) for row in rows]
        return [entity for entity in entities if entity.pulse.enabled]

    def get(self, entity_id: str) -> PulseEntity | None:
        with self._session_factory() as session:
            row = session.get(Entity, entity_id)
            return _to_entity(row) if row is not None else None
