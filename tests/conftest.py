"""Shared fixtures: a controllable clock, a recording sink and a wired engine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pledge_dispute_engine.config import EscalationRules
from pledge_dispute_engine.engine import DisputeEngine
from pledge_dispute_engine.schemas import (
    CreateDisputeRequest,
    DisputeCategory,
    DisputeEvent,
)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[DisputeEvent] = []

    def emit(self, event: DisputeEvent) -> None:
        self.events.append(event)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def rules():
    return EscalationRules(
        voting_duration_hours=72,
        quorum_percent=50,
        community_vote_threshold=60,
        escalation_timeout_hours=168,
        appeal_window_hours=48,
    )


@pytest.fixture
def engine(rules, sink, clock):
    return DisputeEngine(rules, sink=sink, clock=clock)


@pytest.fixture
def new_dispute(engine):
    """Factory creating a dispute with sensible defaults."""

    def _create(
        category: DisputeCategory = DisputeCategory.MILESTONE_DISPUTE,
        raised_by: str = "0xbacker",
        campaign_id: str = "campaign-1",
        **overrides,
    ):
        request = CreateDisputeRequest(
            campaign_id=campaign_id,
            category=category,
            title=overrides.pop("title", "Milestone 2 never shipped"),
            description=overrides.pop(
                "description", "The creator marked milestone 2 complete without a release."
            ),
            **overrides,
        )
        return engine.create_dispute(request, raised_by)

    return _create
