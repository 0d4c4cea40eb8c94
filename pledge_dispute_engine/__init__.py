"""Pledge Dispute Engine: tiered escalation and weighted voting for escrowed pledge disputes."""

from pledge_dispute_engine.classifier import classify
from pledge_dispute_engine.config import EngineSettings, EscalationRules, settings
from pledge_dispute_engine.engine import DisputeEngine
from pledge_dispute_engine.escalation import TIER_ORDER, EscalationSweeper, next_tier
from pledge_dispute_engine.exceptions import (
    Conflict,
    DisputeError,
    Forbidden,
    InvalidArgument,
    InvalidState,
    NotFound,
)
from pledge_dispute_engine.notifications import EventSink, LoggingEventSink, WebhookEventSink
from pledge_dispute_engine.schemas import (
    CreateDisputeRequest,
    Dispute,
    DisputeCategory,
    DisputeEvent,
    DisputeFilters,
    DisputePriority,
    DisputeStatistics,
    DisputeStatus,
    EventType,
    Evidence,
    EvidenceSubmission,
    EvidenceType,
    ResolutionDecision,
    ResolutionOutcome,
    ResolutionRequest,
    ResolutionTier,
    Vote,
    VoteOption,
    VoteTally,
)
from pledge_dispute_engine.store import (
    DisputeLocks,
    DisputeRepository,
    InMemoryDisputeRepository,
)
from pledge_dispute_engine.timeline import EventRecorder
from pledge_dispute_engine.voting import compute_tally

__all__ = [
    # Engine
    "DisputeEngine",
    "EscalationSweeper",
    "EventRecorder",
    "DisputeRepository",
    "InMemoryDisputeRepository",
    "DisputeLocks",
    "classify",
    "compute_tally",
    "next_tier",
    "TIER_ORDER",
    # Configuration
    "settings",
    "EngineSettings",
    "EscalationRules",
    # Notifications
    "EventSink",
    "LoggingEventSink",
    "WebhookEventSink",
    # Errors
    "DisputeError",
    "NotFound",
    "InvalidState",
    "Conflict",
    "Forbidden",
    "InvalidArgument",
    # Models
    "CreateDisputeRequest",
    "Dispute",
    "DisputeCategory",
    "DisputeEvent",
    "DisputeFilters",
    "DisputePriority",
    "DisputeStatistics",
    "DisputeStatus",
    "EventType",
    "Evidence",
    "EvidenceSubmission",
    "EvidenceType",
    "ResolutionDecision",
    "ResolutionOutcome",
    "ResolutionRequest",
    "ResolutionTier",
    "Vote",
    "VoteOption",
    "VoteTally",
]

__version__ = "0.1.0"
