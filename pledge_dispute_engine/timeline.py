"""Append-only, per-dispute event timeline.

Events are never mutated or removed.  ``timeline()`` returns copies in
timestamp order (insertion order breaks ties).
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from typing import Any

from pledge_dispute_engine.schemas import DisputeEvent, EventType

logger = logging.getLogger(__name__)


class EventRecorder:
    """In-memory audit log keyed by dispute id."""

    def __init__(self) -> None:
        self._events: dict[str, list[DisputeEvent]] = {}
        self._lock = threading.Lock()

    def record(
        self,
        dispute_id: str,
        event_type: EventType,
        description: str,
        actor: str,
        timestamp: datetime,
        data: dict[str, Any] | None = None,
    ) -> DisputeEvent:
        event = DisputeEvent(
            id=f"event_{uuid.uuid4().hex[:16]}",
            dispute_id=dispute_id,
            type=event_type,
            description=description,
            actor=actor,
            data=data,
            timestamp=timestamp,
        )
        with self._lock:
            self._events.setdefault(dispute_id, []).append(event)
        logger.debug("Recorded %s for dispute %s: %s", event_type.value, dispute_id, description)
        return event.model_copy(deep=True)

    def timeline(self, dispute_id: str) -> list[DisputeEvent]:
        with self._lock:
            events = list(self._events.get(dispute_id, []))
        # sorted() is stable, so same-timestamp events keep insertion order.
        return [e.model_copy(deep=True) for e in sorted(events, key=lambda e: e.timestamp)]
