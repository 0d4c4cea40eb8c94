"""Dispute engine: the single entry point for every dispute operation.

Orchestrates the full dispute lifecycle:
1. Create the dispute and classify its tier/priority
2. Collect evidence
3. Run a weighted community vote and evaluate quorum/consensus
4. Escalate up the tier ladder on failure, inactivity or appeal
5. Bind a decision, enforce the appeal window, close

Every mutation runs under the dispute's lock, validates before touching
state, saves the dispute, records a timeline event and finally hands the
event to the sink.  A failing sink never affects the transition.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from pledge_dispute_engine.classifier import classify
from pledge_dispute_engine.config import EscalationRules
from pledge_dispute_engine.escalation import is_escalation_due, is_voting_expired, next_tier
from pledge_dispute_engine.exceptions import (
    Conflict,
    DisputeError,
    Forbidden,
    InvalidArgument,
    InvalidState,
    NotFound,
)
from pledge_dispute_engine.notifications import EventSink, LoggingEventSink
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
    ResolutionDecision,
    ResolutionRequest,
    ResolutionTier,
    Vote,
    VoteOption,
    VoteTally,
)
from pledge_dispute_engine.store import DisputeLocks, DisputeRepository, InMemoryDisputeRepository
from pledge_dispute_engine.timeline import EventRecorder
from pledge_dispute_engine.voting import (
    compute_tally,
    empty_tally,
    resolution_from_tally,
    total_voting_power,
    validate_partial_percent,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SYSTEM_ACTOR = "system"

_PRIORITY_RANK = {
    DisputePriority.CRITICAL: 0,
    DisputePriority.HIGH: 1,
    DisputePriority.MEDIUM: 2,
    DisputePriority.LOW: 3,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class DisputeEngine:
    """Tiered escalation-and-voting state machine over a dispute repository."""

    def __init__(
        self,
        rules: EscalationRules,
        repository: DisputeRepository | None = None,
        recorder: EventRecorder | None = None,
        sink: EventSink | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._rules = rules
        self._repo = repository if repository is not None else InMemoryDisputeRepository()
        self._recorder = recorder if recorder is not None else EventRecorder()
        self._sink = sink if sink is not None else LoggingEventSink()
        self._clock = clock
        self._locks = DisputeLocks()

    @property
    def rules(self) -> EscalationRules:
        return self._rules

    @property
    def sink(self) -> EventSink:
        return self._sink

    def now(self) -> datetime:
        """Current time according to the engine's clock."""
        return self._clock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self, dispute_id: str) -> Dispute:
        dispute = self._repo.get_dispute(dispute_id)
        if dispute is None:
            raise NotFound(f"Dispute {dispute_id} not found")
        return dispute

    def _log(
        self,
        dispute_id: str,
        event_type: EventType,
        description: str,
        actor: str,
        data: dict[str, Any] | None = None,
    ) -> DisputeEvent:
        event = self._recorder.record(
            dispute_id, event_type, description, actor, self._clock(), data
        )
        try:
            self._sink.emit(event)
        except Exception:
            logger.exception("Event sink failed for %s on %s", event_type.value, dispute_id)
        return event

    def _round_votes(self, dispute: Dispute) -> list[Vote]:
        return [
            v for v in self._repo.list_votes(dispute.id) if v.voting_round == dispute.voting_round
        ]

    def _tally(self, dispute: Dispute, votes: Sequence[Vote]) -> VoteTally:
        total = dispute.vote_tally.total_voting_power if dispute.vote_tally else 0
        return compute_tally(
            votes,
            total,
            self._rules.quorum_percent,
            self._rules.community_vote_threshold,
        )

    # ------------------------------------------------------------------
    # Dispute store
    # ------------------------------------------------------------------

    def create_dispute(self, request: CreateDisputeRequest, raised_by: str) -> Dispute:
        """Open a new dispute and submit any initial evidence through ``submit_evidence``."""
        now = self._clock()
        tier, priority = classify(request.category)

        dispute = Dispute(
            id=_new_id("dispute"),
            campaign_id=request.campaign_id,
            pledge_ids=list(request.pledge_ids),
            milestone_id=request.milestone_id,
            category=request.category,
            title=request.title,
            description=request.description,
            raised_by=raised_by,
            raised_at=now,
            status=DisputeStatus.PENDING,
            current_tier=tier,
            priority=priority,
            total_escrowed_amount=request.total_escrowed_amount,
            affected_backer_count=request.affected_backer_count,
            updated_at=now,
            tags=list(request.tags),
        )

        with self._locks.hold(dispute.id):
            self._repo.save_dispute(dispute)
            self._log(
                dispute.id,
                EventType.CREATED,
                "Dispute created",
                raised_by,
                {
                    "category": request.category.value,
                    "title": request.title,
                    "tier": tier.value,
                    "priority": priority.value,
                },
            )
            logger.info(
                "Created dispute %s (campaign=%s category=%s tier=%s priority=%s)",
                dispute.id,
                dispute.campaign_id,
                dispute.category.value,
                tier.value,
                priority.value,
            )

            for item in request.initial_evidence:
                self.submit_evidence(dispute.id, raised_by, item)

            return self._load(dispute.id)

    def get_dispute(self, dispute_id: str) -> Dispute:
        return self._load(dispute_id)

    def list_disputes(self, filters: DisputeFilters | None = None) -> list[Dispute]:
        """Return matching disputes, most urgent first, newest first within a priority."""
        f = filters or DisputeFilters()
        disputes = self._repo.list_disputes()

        if f.campaign_id is not None:
            disputes = [d for d in disputes if d.campaign_id == f.campaign_id]
        if f.status is not None:
            statuses = set(f.status) if isinstance(f.status, list) else {f.status}
            disputes = [d for d in disputes if d.status in statuses]
        if f.category is not None:
            disputes = [d for d in disputes if d.category == f.category]
        if f.tier is not None:
            disputes = [d for d in disputes if d.current_tier == f.tier]
        if f.raised_by is not None:
            disputes = [d for d in disputes if d.raised_by == f.raised_by]
        if f.affects_address is not None:
            disputes = [
                d
                for d in disputes
                if d.raised_by == f.affects_address or f.affects_address in d.eligible_voters
            ]
        if f.priority is not None:
            disputes = [d for d in disputes if d.priority == f.priority]
        if f.voting_active is not None:
            now = self._clock()
            disputes = [d for d in disputes if d.voting_active_at(now) == f.voting_active]
        if f.from_date is not None:
            disputes = [d for d in disputes if d.raised_at >= f.from_date]
        if f.to_date is not None:
            disputes = [d for d in disputes if d.raised_at <= f.to_date]

        disputes.sort(key=lambda d: d.raised_at, reverse=True)
        disputes.sort(key=lambda d: _PRIORITY_RANK[d.priority])
        return disputes

    def submit_evidence(
        self,
        dispute_id: str,
        submitted_by: str,
        evidence: EvidenceSubmission,
    ) -> Evidence:
        with self._locks.hold(dispute_id):
            dispute = self._load(dispute_id)
            if dispute.status in (DisputeStatus.CLOSED, DisputeStatus.RESOLVED):
                raise InvalidState("Cannot submit evidence to closed/resolved dispute")

            record = Evidence(
                id=_new_id("ev"),
                dispute_id=dispute_id,
                submitted_by=submitted_by,
                submitted_at=self._clock(),
                verified=False,
                **evidence.model_dump(),
            )
            self._repo.add_evidence(record)
            self._log(
                dispute_id,
                EventType.EVIDENCE_SUBMITTED,
                f"Evidence submitted: {evidence.title}",
                submitted_by,
                {"evidence_id": record.id, "type": record.type.value},
            )
            return record

    def get_evidence(self, dispute_id: str) -> list[Evidence]:
        return self._repo.list_evidence(dispute_id)

    def get_votes(self, dispute_id: str) -> list[Vote]:
        return self._repo.list_votes(dispute_id)

    def get_timeline(self, dispute_id: str) -> list[DisputeEvent]:
        return self._recorder.timeline(dispute_id)

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def open_voting(
        self,
        dispute_id: str,
        eligible_voters: Sequence[str],
        voting_powers: Mapping[str, int],
    ) -> Dispute:
        """Open a voting round whose total power is fixed for its whole duration."""
        with self._locks.hold(dispute_id):
            dispute = self._load(dispute_id)
            if dispute.voting_enabled:
                raise InvalidState("Voting already enabled for this dispute")
            if dispute.status == DisputeStatus.CLOSED:
                raise InvalidState("Cannot open voting on a closed dispute")
            if dispute.status == DisputeStatus.RESOLVED:
                raise InvalidState("Cannot open voting on a resolved dispute")
            total = total_voting_power(voting_powers)

            now = self._clock()
            dispute.voting_enabled = True
            dispute.voting_round += 1
            dispute.voting_started_at = now
            dispute.voting_ends_at = now + timedelta(hours=self._rules.voting_duration_hours)
            dispute.eligible_voters = list(dict.fromkeys(eligible_voters))
            dispute.voting_powers = dict(voting_powers)
            dispute.status = DisputeStatus.VOTING
            dispute.vote_tally = empty_tally(total, self._rules.quorum_percent)
            dispute.updated_at = now
            self._repo.save_dispute(dispute)

            self._log(
                dispute_id,
                EventType.VOTING_OPENED,
                "Community voting opened",
                SYSTEM_ACTOR,
                {
                    "eligible_voters": len(dispute.eligible_voters),
                    "total_voting_power": str(total),
                    "voting_ends_at": dispute.voting_ends_at.isoformat(),
                },
            )
            logger.info(
                "Voting opened on %s (voters=%d total_power=%d ends=%s)",
                dispute_id,
                len(dispute.eligible_voters),
                total,
                dispute.voting_ends_at.isoformat(),
            )
            return dispute

    def cast_vote(
        self,
        dispute_id: str,
        voter: str,
        voting_power: int,
        vote: VoteOption | str,
        partial_percent: float | None = None,
        reason: str | None = None,
    ) -> Vote:
        with self._locks.hold(dispute_id):
            dispute = self._load(dispute_id)
            if not dispute.voting_enabled:
                raise InvalidState("Voting not enabled for this dispute")

            now = self._clock()
            if dispute.voting_ends_at is not None and now > dispute.voting_ends_at:
                raise InvalidState("Voting period has ended")

            if voter not in dispute.eligible_voters:
                raise Forbidden("Address not eligible to vote on this dispute")

            votes = self._round_votes(dispute)
            if any(v.voter == voter for v in votes):
                raise Conflict("Already voted on this dispute")

            try:
                option = VoteOption(vote)
            except ValueError as exc:
                raise InvalidArgument(f"Unknown vote option: {vote!r}") from exc
            validate_partial_percent(option, partial_percent)
            if voting_power < 0:
                raise InvalidArgument("Voting power must be non-negative")
            # Eligible voters without an assigned power hold none.
            assigned = dispute.voting_powers.get(voter, 0)
            if voting_power > assigned:
                raise InvalidArgument(
                    f"Voting power {voting_power} exceeds the {assigned} assigned to {voter}"
                )

            record = Vote(
                id=_new_id("vote"),
                dispute_id=dispute_id,
                voter=voter,
                voting_power=voting_power,
                vote=option,
                partial_percent=partial_percent if option == VoteOption.PARTIAL else None,
                reason=reason,
                voted_at=now,
                voting_round=dispute.voting_round,
            )
            self._repo.add_vote(record)

            dispute.vote_tally = self._tally(dispute, [*votes, record])
            dispute.updated_at = now
            self._repo.save_dispute(dispute)

            self._log(
                dispute_id,
                EventType.VOTE_CAST,
                f"Vote cast: {option.value}",
                voter,
                {"vote_id": record.id, "vote": option.value, "voting_power": str(voting_power)},
            )
            return record

    def close_voting(self, dispute_id: str) -> VoteTally:
        """Close the vote, then resolve, escalate or park the dispute depending on the tally."""
        with self._locks.hold(dispute_id):
            dispute = self._load(dispute_id)
            if not dispute.voting_enabled:
                raise InvalidState("Voting not enabled for this dispute")

            votes = self._round_votes(dispute)
            tally = self._tally(dispute, votes)
            dispute.vote_tally = tally
            dispute.voting_enabled = False
            dispute.updated_at = self._clock()
            self._repo.save_dispute(dispute)

            self._log(
                dispute_id,
                EventType.VOTING_CLOSED,
                "Community voting closed",
                SYSTEM_ACTOR,
                {
                    "tally": {
                        "release": str(tally.release),
                        "refund": str(tally.refund),
                        "partial": str(tally.partial),
                        "abstain": str(tally.abstain),
                        "voter_count": tally.voter_count,
                        "quorum_reached": tally.quorum_reached,
                        "consensus_reached": tally.consensus_reached,
                    }
                },
            )
            logger.info(
                "Voting closed on %s (voted=%d/%d quorum=%s leading=%s %d%%)",
                dispute_id,
                tally.total_voted,
                tally.total_voting_power,
                tally.quorum_reached,
                tally.leading_option.value,
                tally.leading_percent,
            )

            if tally.quorum_reached and tally.consensus_reached:
                evidence_ids = [e.id for e in self._repo.list_evidence(dispute_id)]
                self.resolve(dispute_id, resolution_from_tally(tally, votes, evidence_ids))
            elif not tally.quorum_reached:
                if next_tier(dispute.current_tier) is not None:
                    self.escalate(dispute_id, "Quorum not reached during voting")
                else:
                    self._park(dispute, "Quorum not reached at highest tier")
            else:
                self._park(dispute, "Consensus not reached; awaiting next tier")

            return tally

    def _park(self, dispute: Dispute, reason: str) -> None:
        """Mark an undecided dispute as escalated without moving its tier."""
        previous = dispute.status
        dispute.status = DisputeStatus.ESCALATED
        dispute.updated_at = self._clock()
        self._repo.save_dispute(dispute)
        self._log(
            dispute.id,
            EventType.STATUS_CHANGED,
            reason,
            SYSTEM_ACTOR,
            {
                "previous_status": previous.value,
                "new_status": DisputeStatus.ESCALATED.value,
                "tier": dispute.current_tier.value,
            },
        )

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    def escalate(self, dispute_id: str, reason: str, actor: str = SYSTEM_ACTOR) -> Dispute:
        with self._locks.hold(dispute_id):
            dispute = self._load(dispute_id)
            previous = dispute.current_tier
            new_tier = next_tier(previous)
            if new_tier is None:
                raise InvalidState("Dispute already at highest tier")

            dispute.current_tier = new_tier
            # An appeal keeps its status while the next tier takes over.
            if dispute.status != DisputeStatus.APPEALED:
                dispute.status = DisputeStatus.ESCALATED
            dispute.updated_at = self._clock()
            self._repo.save_dispute(dispute)

            self._log(
                dispute_id,
                EventType.TIER_ESCALATED,
                f"Escalated to {new_tier.value}: {reason}",
                actor,
                {"previous_tier": previous.value, "new_tier": new_tier.value, "reason": reason},
            )
            logger.info(
                "Escalated dispute %s %s -> %s (%s)",
                dispute_id,
                previous.value,
                new_tier.value,
                reason,
            )
            return dispute

    def process_timeouts(self) -> list[str]:
        """Escalate idle disputes and close expired votes.

        Returns the ids escalated for inactivity on this pass.  Votes
        closed here are not included, even if closing escalates them.
        """
        now = self._clock()
        timeout = timedelta(hours=self._rules.escalation_timeout_hours)
        escalated: list[str] = []

        for snapshot in self._repo.list_disputes():
            dispute_id = snapshot.id
            try:
                with self._locks.hold(dispute_id):
                    dispute = self._load(dispute_id)
                    if is_escalation_due(dispute, now, timeout):
                        if next_tier(dispute.current_tier) is None:
                            logger.debug(
                                "Dispute %s idle at highest tier; nothing to escalate", dispute_id
                            )
                        else:
                            dispute = self.escalate(dispute_id, "Escalation timeout reached")
                            escalated.append(dispute_id)

                    if is_voting_expired(dispute, now):
                        self.close_voting(dispute_id)
            except DisputeError as exc:
                logger.warning("Timeout sweep skipped dispute %s: %s", dispute_id, exc)
            except Exception:
                logger.exception("Timeout sweep failed on dispute %s", dispute_id)

        return escalated

    # ------------------------------------------------------------------
    # Resolution & appeal
    # ------------------------------------------------------------------

    def resolve(
        self,
        dispute_id: str,
        decision: ResolutionRequest,
        actor: str = SYSTEM_ACTOR,
    ) -> Dispute:
        """Bind *decision* to the dispute and open the appeal window.

        The release/refund split is validated when the request is built;
        it is not re-checked here.
        """
        with self._locks.hold(dispute_id):
            dispute = self._load(dispute_id)
            now = self._clock()

            dispute.decision = ResolutionDecision(
                **decision.model_dump(include=set(ResolutionRequest.model_fields)),
                decided_at=now,
                appealable=True,
                appeal_deadline=now + timedelta(hours=self._rules.appeal_window_hours),
            )
            dispute.status = DisputeStatus.RESOLVED
            dispute.voting_enabled = False
            dispute.resolved_at = now
            dispute.updated_at = now
            self._repo.save_dispute(dispute)

            self._log(
                dispute_id,
                EventType.RESOLVED,
                f"Dispute resolved: {decision.outcome.value}",
                actor,
                {
                    "outcome": decision.outcome.value,
                    "release_percent": decision.release_percent,
                    "refund_percent": decision.refund_percent,
                    "decided_by": decision.decided_by.value,
                },
            )
            logger.info(
                "Resolved dispute %s -> %s (release=%d%% refund=%d%% by %s)",
                dispute_id,
                decision.outcome.value,
                decision.release_percent,
                decision.refund_percent,
                decision.decided_by.value,
            )
            return dispute

    def appeal(self, dispute_id: str, appealed_by: str, reason: str) -> Dispute:
        """Contest a decision inside its window; always bumps the tier."""
        with self._locks.hold(dispute_id):
            dispute = self._load(dispute_id)
            if dispute.status != DisputeStatus.RESOLVED:
                raise InvalidState("Can only appeal resolved disputes")
            if dispute.decision is None or not dispute.decision.appealable:
                raise Forbidden("This decision is not appealable")

            now = self._clock()
            deadline = dispute.decision.appeal_deadline
            if deadline is not None and now > deadline:
                raise InvalidState("Appeal window expired")
            if next_tier(dispute.current_tier) is None:
                raise InvalidState("Dispute already at highest tier")

            dispute.status = DisputeStatus.APPEALED
            dispute.updated_at = now
            self._repo.save_dispute(dispute)

            self._log(
                dispute_id,
                EventType.APPEALED,
                f"Resolution appealed: {reason}",
                appealed_by,
                {"previous_decision": dispute.decision.outcome.value, "reason": reason},
            )
            logger.info("Dispute %s appealed by %s", dispute_id, appealed_by)

            return self.escalate(dispute_id, f"Appeal filed: {reason}")

    def close(self, dispute_id: str, closed_by: str) -> Dispute:
        """Close from any status; a bound decision can no longer be appealed."""
        with self._locks.hold(dispute_id):
            dispute = self._load(dispute_id)
            previous = dispute.status
            now = self._clock()

            dispute.status = DisputeStatus.CLOSED
            dispute.closed_at = now
            dispute.updated_at = now
            dispute.voting_enabled = False
            if dispute.decision is not None:
                dispute.decision.appealable = False
            self._repo.save_dispute(dispute)

            self._log(
                dispute_id,
                EventType.CLOSED,
                "Dispute closed",
                closed_by,
                {"previous_status": previous.value},
            )
            logger.info("Closed dispute %s (was %s)", dispute_id, previous.value)
            return dispute

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_statistics(self) -> DisputeStatistics:
        disputes = self._repo.list_disputes()

        by_status = {status: 0 for status in DisputeStatus}
        by_category = {category: 0 for category in DisputeCategory}
        by_tier = {tier: 0 for tier in ResolutionTier}
        total_value = 0
        resolution_seconds = 0.0
        resolved_count = 0

        for dispute in disputes:
            by_status[dispute.status] += 1
            by_category[dispute.category] += 1
            by_tier[dispute.current_tier] += 1
            total_value += dispute.total_escrowed_amount
            if dispute.resolved_at is not None:
                resolution_seconds += (dispute.resolved_at - dispute.raised_at).total_seconds()
                resolved_count += 1

        return DisputeStatistics(
            total=len(disputes),
            by_status=by_status,
            by_category=by_category,
            by_tier=by_tier,
            average_resolution_seconds=(
                resolution_seconds / resolved_count if resolved_count else 0.0
            ),
            total_value_disputed=total_value,
        )
