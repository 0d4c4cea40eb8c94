"""Initial tier and priority for a new dispute, by category."""

from __future__ import annotations

from pledge_dispute_engine.schemas import DisputeCategory, DisputePriority, ResolutionTier

_CLASSIFICATION: dict[DisputeCategory, tuple[ResolutionTier, DisputePriority]] = {
    # Oracle and arithmetic problems get an automated pass first.
    DisputeCategory.ORACLE_DISAGREEMENT: (ResolutionTier.AUTOMATED, DisputePriority.LOW),
    DisputeCategory.ORACLE_FAILURE: (ResolutionTier.AUTOMATED, DisputePriority.HIGH),
    DisputeCategory.CALCULATION_ERROR: (ResolutionTier.AUTOMATED, DisputePriority.MEDIUM),
    DisputeCategory.TECHNICAL_ISSUE: (ResolutionTier.AUTOMATED, DisputePriority.MEDIUM),
    DisputeCategory.MILESTONE_DISPUTE: (ResolutionTier.COMMUNITY, DisputePriority.MEDIUM),
    # Fraud goes straight to the council.
    DisputeCategory.FRAUD_CLAIM: (ResolutionTier.COUNCIL, DisputePriority.CRITICAL),
}

_DEFAULT = (ResolutionTier.COMMUNITY, DisputePriority.LOW)


def classify(category: DisputeCategory) -> tuple[ResolutionTier, DisputePriority]:
    """Return ``(initial_tier, priority)`` for *category*."""
    return _CLASSIFICATION.get(category, _DEFAULT)
