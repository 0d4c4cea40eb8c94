"""Pydantic models for disputes, evidence, votes, decisions and the audit timeline.

Voting power and escrow amounts are plain Python ``int`` (arbitrary
precision).  Percentages derived from them use integer division and are
never computed in floating point.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AwareDatetime, BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DisputeStatus(str, Enum):
    PENDING = "pending"
    REVIEWING = "reviewing"
    VOTING = "voting"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    APPEALED = "appealed"
    CLOSED = "closed"


class ResolutionTier(str, Enum):
    """Escalation levels, declared lowest to highest."""

    AUTOMATED = "automated"
    COMMUNITY = "community"
    CREATOR = "creator"
    COUNCIL = "council"


class DisputeCategory(str, Enum):
    ORACLE_DISAGREEMENT = "oracle_disagreement"
    ORACLE_FAILURE = "oracle_failure"
    MILESTONE_DISPUTE = "milestone_dispute"
    CALCULATION_ERROR = "calculation_error"
    FRAUD_CLAIM = "fraud_claim"
    TECHNICAL_ISSUE = "technical_issue"
    OTHER = "other"


class DisputePriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class VoteOption(str, Enum):
    RELEASE = "release"
    REFUND = "refund"
    PARTIAL = "partial"
    ABSTAIN = "abstain"


class ResolutionOutcome(str, Enum):
    RELEASE = "release"
    REFUND = "refund"
    PARTIAL = "partial"


class EvidenceType(str, Enum):
    DOCUMENT = "document"
    SCREENSHOT = "screenshot"
    API_RESPONSE = "api_response"
    ATTESTATION = "attestation"
    LINK = "link"
    TEXT = "text"


class EventType(str, Enum):
    CREATED = "created"
    EVIDENCE_SUBMITTED = "evidence_submitted"
    STATUS_CHANGED = "status_changed"
    VOTING_OPENED = "voting_opened"
    VOTE_CAST = "vote_cast"
    VOTING_CLOSED = "voting_closed"
    TIER_ESCALATED = "tier_escalated"
    RESOLVED = "resolved"
    APPEALED = "appealed"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Child records (append-only)
# ---------------------------------------------------------------------------


class EvidenceSubmission(BaseModel):
    """Caller-supplied part of an evidence record."""

    type: EvidenceType
    title: str
    description: str
    content: str = Field(..., description="URL or inline text content")
    content_hash: str | None = Field(default=None, description="e.g. an IPFS hash")


class Evidence(EvidenceSubmission):
    id: str
    dispute_id: str
    submitted_by: str
    submitted_at: datetime = Field(default_factory=_utcnow)
    verified: bool = False


class Vote(BaseModel):
    """One voter's ballot.  At most one per (dispute_id, voter)."""

    id: str
    dispute_id: str
    voter: str
    voting_power: int = Field(..., ge=0)
    vote: VoteOption
    partial_percent: float | None = Field(default=None, ge=0, le=100)
    reason: str | None = None
    voted_at: datetime = Field(default_factory=_utcnow)
    # Which opening of the vote this ballot belongs to (1-based).
    voting_round: int = 1


class VoteTally(BaseModel):
    """Derived view of the ballots, recomputed in full on every vote."""

    total_voting_power: int = 0
    release: int = 0
    refund: int = 0
    partial: int = 0
    abstain: int = 0
    voter_count: int = 0
    quorum_reached: bool = False
    quorum_threshold: int = 0
    consensus_reached: bool = False
    leading_option: VoteOption = VoteOption.ABSTAIN
    leading_percent: int = 0

    @property
    def total_voted(self) -> int:
        return self.release + self.refund + self.partial + self.abstain


class DisputeEvent(BaseModel):
    """Append-only audit record."""

    id: str
    dispute_id: str
    type: EventType
    description: str
    actor: str
    data: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ResolutionRequest(BaseModel):
    """A binding decision as proposed by a tier (or derived from a vote)."""

    outcome: ResolutionOutcome
    release_percent: int = Field(..., ge=0, le=100)
    refund_percent: int = Field(..., ge=0, le=100)
    decided_by: ResolutionTier
    rationale: str
    evidence_ids: list[str] = Field(default_factory=list)
    vote_tally: VoteTally | None = None

    @model_validator(mode="after")
    def _percents_sum_to_100(self) -> ResolutionRequest:
        if self.release_percent + self.refund_percent != 100:
            raise ValueError(
                "release_percent and refund_percent must sum to 100 "
                f"(got {self.release_percent} + {self.refund_percent})"
            )
        return self


class ResolutionDecision(ResolutionRequest):
    """A decision bound to a dispute by ``resolve``."""

    decided_at: datetime
    appealable: bool = True
    appeal_deadline: datetime | None = None


# ---------------------------------------------------------------------------
# Dispute
# ---------------------------------------------------------------------------


class CreateDisputeRequest(BaseModel):
    campaign_id: str
    pledge_ids: list[str] = Field(default_factory=list)
    milestone_id: str | None = None
    category: DisputeCategory
    title: str
    description: str
    # Supplied by the caller from the escrow ledger; informational only.
    total_escrowed_amount: int = Field(default=0, ge=0)
    affected_backer_count: int = Field(default=0, ge=0)
    tags: list[str] = Field(default_factory=list)
    initial_evidence: list[EvidenceSubmission] = Field(default_factory=list)


class Dispute(BaseModel):
    """One adjudication case.  The only entity that transitions."""

    id: str
    campaign_id: str
    pledge_ids: list[str] = Field(default_factory=list)
    milestone_id: str | None = None

    category: DisputeCategory
    title: str
    description: str
    raised_by: str
    raised_at: datetime

    status: DisputeStatus = DisputeStatus.PENDING
    current_tier: ResolutionTier
    priority: DisputePriority

    voting_enabled: bool = False
    voting_round: int = 0
    voting_started_at: datetime | None = None
    voting_ends_at: datetime | None = None
    eligible_voters: list[str] = Field(default_factory=list)
    # Power assigned to each voter when the current round opened.
    voting_powers: dict[str, int] = Field(default_factory=dict)
    vote_tally: VoteTally | None = None

    decision: ResolutionDecision | None = None

    total_escrowed_amount: int = Field(default=0, ge=0)
    affected_backer_count: int = Field(default=0, ge=0)

    updated_at: datetime
    resolved_at: datetime | None = None
    closed_at: datetime | None = None

    tags: list[str] = Field(default_factory=list)

    def voting_active_at(self, now: datetime) -> bool:
        return (
            self.voting_enabled
            and self.voting_started_at is not None
            and self.voting_ends_at is not None
            and self.voting_started_at <= now <= self.voting_ends_at
        )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class DisputeFilters(BaseModel):
    """Filters for ``list_disputes``.  Unset fields do not filter."""

    campaign_id: str | None = None
    status: DisputeStatus | list[DisputeStatus] | None = None
    category: DisputeCategory | None = None
    tier: ResolutionTier | None = None
    raised_by: str | None = None
    # Matches disputes raised by this address or where it may vote.
    affects_address: str | None = None
    priority: DisputePriority | None = None
    voting_active: bool | None = None
    # Compared against timezone-aware raised_at, so naive values are rejected.
    from_date: AwareDatetime | None = None
    to_date: AwareDatetime | None = None


class DisputeStatistics(BaseModel):
    total: int
    by_status: dict[DisputeStatus, int]
    by_category: dict[DisputeCategory, int]
    by_tier: dict[ResolutionTier, int]
    average_resolution_seconds: float
    total_value_disputed: int
