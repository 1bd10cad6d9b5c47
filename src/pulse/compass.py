"""Internal Compass lookup from continuity memories."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session, sessionmaker

from models import ContinuityMemory

LOGGER = logging.getLogger(__name__)

COMPASS_MEMORY_TYPE = "EPISODE"
COMPASS_TAG = "internal-compass"


class CompassReader:
    """Reads the entity's long-lived narrative, if one has been synthesized."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_compass(self, entity_id: str) -> str | None:
        """Newest compass memory content; any lookup failure yields ``None``."""
        try:
            with self._session_factory() as session:
                rows = (
                    session.query(ContinuityMemory)
                    .filter(
                        ContinuityMemory.entity_id == entity_id,
                        ContinuityMemory.type == COMPASS_MEMORY_TYPE,
                    )
                    .order_by(
                        ContinuityMemory.last_accessed.desc().nulls_last(),
                        ContinuityMemory.importance.desc(),
                        ContinuityMemory.id.desc(),
                    )
                    .all()
                )
                for row in rows:
                    if COMPASS_TAG in (row.tags or []):
                        return row.content or None
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Compass lookup failed for %s: %s", entity_id, exc)
        return None
