"""Tier ordering, timeout detection and the background timeout sweeper.

Tiers only ever move up: automated -> community -> creator -> council.
The sweeper periodically asks the engine to escalate disputes that have
sat idle past the escalation timeout and to close expired votes.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from pledge_dispute_engine.config import settings
from pledge_dispute_engine.schemas import Dispute, DisputeStatus, ResolutionTier

if TYPE_CHECKING:
    from pledge_dispute_engine.engine import DisputeEngine

logger = logging.getLogger(__name__)

TIER_ORDER: tuple[ResolutionTier, ...] = (
    ResolutionTier.AUTOMATED,
    ResolutionTier.COMMUNITY,
    ResolutionTier.CREATOR,
    ResolutionTier.COUNCIL,
)

# Statuses that are waiting on someone; left idle too long they escalate.
TIMEOUT_STATUSES = frozenset(
    {DisputeStatus.PENDING, DisputeStatus.REVIEWING, DisputeStatus.ESCALATED}
)


def next_tier(tier: ResolutionTier) -> ResolutionTier | None:
    """Return the tier above *tier*, or None at the top."""
    index = TIER_ORDER.index(tier)
    if index >= len(TIER_ORDER) - 1:
        return None
    return TIER_ORDER[index + 1]


def is_escalation_due(dispute: Dispute, now: datetime, timeout: timedelta) -> bool:
    return dispute.status in TIMEOUT_STATUSES and now - dispute.updated_at > timeout


def is_voting_expired(dispute: Dispute, now: datetime) -> bool:
    return (
        dispute.voting_enabled
        and dispute.voting_ends_at is not None
        and now > dispute.voting_ends_at
    )


class EscalationSweeper:
    """Daemon thread that runs ``engine.process_timeouts()`` on an interval."""

    def __init__(self, engine: DisputeEngine, interval: float | None = None) -> None:
        self._engine = engine
        self._interval = interval if interval is not None else settings.sweep_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_sweep_at: datetime | None = None
        self._last_escalated: list[str] = []
        self._total_escalated = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_sweep_at(self) -> datetime | None:
        return self._last_sweep_at

    @property
    def last_escalated(self) -> list[str]:
        return list(self._last_escalated)

    def start(self) -> None:
        """Start the sweeper background thread."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="escalation-sweeper")
        self._thread.start()
        logger.info("Escalation sweeper started (interval=%.1fs)", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the sweeper to stop and wait up to *timeout* seconds."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Escalation sweeper stopped")

    def status(self) -> dict:
        """Return a snapshot of the sweeper's state."""
        return {
            "running": self.running,
            "interval_seconds": self._interval,
            "last_sweep_at": self._last_sweep_at.isoformat() if self._last_sweep_at else None,
            "last_escalated": list(self._last_escalated),
            "total_escalated": self._total_escalated,
        }

    def sweep(self) -> list[str]:
        """Run one pass immediately and record its result."""
        escalated = self._engine.process_timeouts()
        self._last_sweep_at = self._engine.now()
        self._last_escalated = escalated
        self._total_escalated += len(escalated)
        if escalated:
            logger.info("Sweep escalated %d dispute(s): %s", len(escalated), ", ".join(escalated))
        return escalated

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("Escalation sweep failed")
            self._stop_event.wait(timeout=self._interval)
