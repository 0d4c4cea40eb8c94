"""HTTP adapter for the dispute engine.

A thin FastAPI layer: request bodies are validated by pydantic, every
``DisputeError`` maps to its status code, and the escalation sweeper runs
for the lifetime of the app.  Callers are assumed to be authenticated
already; identities arrive as plain strings in the body.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import AwareDatetime, BaseModel, Field, model_validator
from starlette.middleware.base import BaseHTTPMiddleware

from pledge_dispute_engine import __version__
from pledge_dispute_engine.config import settings
from pledge_dispute_engine.engine import DisputeEngine
from pledge_dispute_engine.escalation import EscalationSweeper
from pledge_dispute_engine.exceptions import DisputeError
from pledge_dispute_engine.notifications import sink_from_settings
from pledge_dispute_engine.schemas import (
    CreateDisputeRequest,
    DisputeCategory,
    DisputeFilters,
    DisputePriority,
    DisputeStatus,
    EvidenceSubmission,
    ResolutionOutcome,
    ResolutionRequest,
    ResolutionTier,
    VoteOption,
)

logger = logging.getLogger(__name__)

MAX_REQUEST_BODY_BYTES = 1 * 1024 * 1024  # 1 MiB hard cap on all request bodies


class _BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests whose body exceeds MAX_REQUEST_BODY_BYTES."""

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and int(content_length) > MAX_REQUEST_BODY_BYTES:
            return JSONResponse(
                status_code=413,
                content={"detail": "Request body too large"},
            )
        return await call_next(request)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class CreateDisputeBody(CreateDisputeRequest):
    raised_by: str = Field(..., min_length=1)


class SubmitEvidenceBody(EvidenceSubmission):
    submitted_by: str = Field(..., min_length=1)


class OpenVotingBody(BaseModel):
    eligible_voters: list[str]
    voting_powers: dict[str, int] = Field(default_factory=dict)


class CastVoteBody(BaseModel):
    voter: str = Field(..., min_length=1)
    # Accepts JSON numbers or decimal strings for values beyond 2**53.
    voting_power: int = Field(..., ge=0)
    vote: VoteOption
    partial_percent: float | None = Field(default=None, ge=0, le=100)
    reason: str | None = Field(default=None, max_length=1000)


class ResolveBody(BaseModel):
    outcome: ResolutionOutcome
    release_percent: int = Field(..., ge=0, le=100)
    refund_percent: int = Field(..., ge=0, le=100)
    rationale: str = Field(..., min_length=1, max_length=2000)
    evidence_ids: list[str] = Field(default_factory=list)
    # Defaults to the dispute's current tier.
    decided_by: ResolutionTier | None = None
    actor: str = "system"

    @model_validator(mode="after")
    def _percents_sum_to_100(self) -> ResolveBody:
        if self.release_percent + self.refund_percent != 100:
            raise ValueError("release_percent and refund_percent must sum to 100")
        return self


class AppealBody(BaseModel):
    appealed_by: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=2000)


class EscalateBody(BaseModel):
    reason: str = Field(..., min_length=1)
    actor: str = "system"


class CloseBody(BaseModel):
    closed_by: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

router = APIRouter()


def _engine(request: Request) -> DisputeEngine:
    return request.app.state.engine


def _sweeper(request: Request) -> EscalationSweeper:
    return request.app.state.sweeper


@router.get("/health")
def health(engine: DisputeEngine = Depends(_engine)):
    return {
        "status": "ok",
        "service": "pledge-dispute-engine",
        "version": __version__,
        "rules": engine.rules.model_dump(),
    }


@router.post("/disputes", status_code=201)
def create_dispute(body: CreateDisputeBody, engine: DisputeEngine = Depends(_engine)):
    request = CreateDisputeRequest(**body.model_dump(exclude={"raised_by"}))
    dispute = engine.create_dispute(request, body.raised_by)
    return dispute.model_dump(mode="json")


@router.get("/disputes")
def list_disputes(
    campaign_id: str | None = None,
    status: list[DisputeStatus] | None = Query(default=None),
    category: DisputeCategory | None = None,
    tier: ResolutionTier | None = None,
    raised_by: str | None = None,
    affects_address: str | None = None,
    priority: DisputePriority | None = None,
    voting_active: bool | None = None,
    from_date: AwareDatetime | None = None,
    to_date: AwareDatetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    engine: DisputeEngine = Depends(_engine),
):
    """List disputes, most urgent first."""
    filters = DisputeFilters(
        campaign_id=campaign_id,
        status=status,
        category=category,
        tier=tier,
        raised_by=raised_by,
        affects_address=affects_address,
        priority=priority,
        voting_active=voting_active,
        from_date=from_date,
        to_date=to_date,
    )
    disputes = engine.list_disputes(filters)
    page = disputes[offset : offset + limit]
    return {
        "disputes": [d.model_dump(mode="json") for d in page],
        "total": len(disputes),
    }


@router.get("/disputes/stats")
def dispute_statistics(engine: DisputeEngine = Depends(_engine)):
    return engine.get_statistics().model_dump(mode="json")


@router.post("/disputes/process-timeouts")
def process_timeouts(sweeper: EscalationSweeper = Depends(_sweeper)):
    """Run one timeout sweep now instead of waiting for the next tick."""
    escalated = sweeper.sweep()
    return {"escalated": escalated, "count": len(escalated)}


@router.get("/disputes/{dispute_id}")
def get_dispute(dispute_id: str, engine: DisputeEngine = Depends(_engine)):
    return engine.get_dispute(dispute_id).model_dump(mode="json")


@router.get("/disputes/{dispute_id}/timeline")
def get_timeline(dispute_id: str, engine: DisputeEngine = Depends(_engine)):
    engine.get_dispute(dispute_id)
    events = engine.get_timeline(dispute_id)
    return {"events": [e.model_dump(mode="json") for e in events], "count": len(events)}


@router.post("/disputes/{dispute_id}/evidence", status_code=201)
def submit_evidence(
    dispute_id: str,
    body: SubmitEvidenceBody,
    engine: DisputeEngine = Depends(_engine),
):
    submission = EvidenceSubmission(**body.model_dump(exclude={"submitted_by"}))
    evidence = engine.submit_evidence(dispute_id, body.submitted_by, submission)
    return evidence.model_dump(mode="json")


@router.get("/disputes/{dispute_id}/evidence")
def get_evidence(dispute_id: str, engine: DisputeEngine = Depends(_engine)):
    engine.get_dispute(dispute_id)
    evidence = engine.get_evidence(dispute_id)
    return {"evidence": [e.model_dump(mode="json") for e in evidence], "count": len(evidence)}


@router.post("/disputes/{dispute_id}/voting/open")
def open_voting(
    dispute_id: str,
    body: OpenVotingBody,
    engine: DisputeEngine = Depends(_engine),
):
    dispute = engine.open_voting(dispute_id, body.eligible_voters, body.voting_powers)
    return dispute.model_dump(mode="json")


@router.post("/disputes/{dispute_id}/voting/vote", status_code=201)
def cast_vote(dispute_id: str, body: CastVoteBody, engine: DisputeEngine = Depends(_engine)):
    vote = engine.cast_vote(
        dispute_id,
        body.voter,
        body.voting_power,
        body.vote,
        partial_percent=body.partial_percent,
        reason=body.reason,
    )
    return vote.model_dump(mode="json")


@router.get("/disputes/{dispute_id}/voting/votes")
def get_votes(dispute_id: str, engine: DisputeEngine = Depends(_engine)):
    dispute = engine.get_dispute(dispute_id)
    votes = engine.get_votes(dispute_id)
    return {
        "votes": [v.model_dump(mode="json") for v in votes],
        "tally": dispute.vote_tally.model_dump(mode="json") if dispute.vote_tally else None,
    }


@router.post("/disputes/{dispute_id}/voting/close")
def close_voting(dispute_id: str, engine: DisputeEngine = Depends(_engine)):
    tally = engine.close_voting(dispute_id)
    dispute = engine.get_dispute(dispute_id)
    return {"tally": tally.model_dump(mode="json"), "dispute": dispute.model_dump(mode="json")}


@router.post("/disputes/{dispute_id}/resolve")
def resolve(dispute_id: str, body: ResolveBody, engine: DisputeEngine = Depends(_engine)):
    decided_by = body.decided_by or engine.get_dispute(dispute_id).current_tier
    decision = ResolutionRequest(
        outcome=body.outcome,
        release_percent=body.release_percent,
        refund_percent=body.refund_percent,
        decided_by=decided_by,
        rationale=body.rationale,
        evidence_ids=body.evidence_ids,
    )
    dispute = engine.resolve(dispute_id, decision, actor=body.actor)
    return dispute.model_dump(mode="json")


@router.post("/disputes/{dispute_id}/appeal")
def appeal(dispute_id: str, body: AppealBody, engine: DisputeEngine = Depends(_engine)):
    dispute = engine.appeal(dispute_id, body.appealed_by, body.reason)
    return dispute.model_dump(mode="json")


@router.post("/disputes/{dispute_id}/escalate")
def escalate(dispute_id: str, body: EscalateBody, engine: DisputeEngine = Depends(_engine)):
    dispute = engine.escalate(dispute_id, body.reason, actor=body.actor)
    return dispute.model_dump(mode="json")


@router.post("/disputes/{dispute_id}/close")
def close(dispute_id: str, body: CloseBody, engine: DisputeEngine = Depends(_engine)):
    dispute = engine.close(dispute_id, body.closed_by)
    return dispute.model_dump(mode="json")


@router.get("/sweeper/status")
def sweeper_status(sweeper: EscalationSweeper = Depends(_sweeper)):
    """Return the current state of the escalation sweeper."""
    return sweeper.status()


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


async def _dispute_error_handler(_request: Request, exc: DisputeError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def create_app(
    engine: DisputeEngine | None = None,
    sweeper: EscalationSweeper | None = None,
    run_sweeper: bool | None = None,
) -> FastAPI:
    """Build the FastAPI app around *engine* (a settings-driven one by default)."""
    if engine is None:
        engine = DisputeEngine(settings.escalation_rules(), sink=sink_from_settings())
    if sweeper is None:
        sweeper = EscalationSweeper(engine)
    if run_sweeper is None:
        run_sweeper = settings.sweeper_enabled

    @asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if run_sweeper:
            sweeper.start()
        yield
        if run_sweeper:
            sweeper.stop()
        shutdown = getattr(engine.sink, "shutdown", None)
        if shutdown is not None:
            shutdown()

    app = FastAPI(
        title="Pledge Dispute Engine",
        description="Tiered escalation and weighted voting for pledge escrow disputes",
        version=__version__,
        lifespan=_lifespan,
    )
    app.state.engine = engine
    app.state.sweeper = sweeper
    app.add_middleware(_BodySizeLimitMiddleware)
    app.add_exception_handler(DisputeError, _dispute_error_handler)
    app.include_router(router)
    return app
