"""Example: Driving a dispute through its lifecycle in-process.

This example uses the engine as a library rather than running the HTTP
service. Useful for testing, batch replays of recorded disputes, or
embedding the engine inside a larger campaign service.

Usage:
    python examples/programmatic_dispute.py
"""

from __future__ import annotations

import json
import logging

from pledge_dispute_engine import (
    CreateDisputeRequest,
    DisputeCategory,
    DisputeEngine,
    EscalationRules,
    EvidenceSubmission,
    EvidenceType,
    VoteOption,
)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")

    engine = DisputeEngine(EscalationRules(quorum_percent=25, community_vote_threshold=70))

    # Step 1: A backer disputes a milestone
    dispute = engine.create_dispute(
        CreateDisputeRequest(
            campaign_id="campaign-solar-kit",
            pledge_ids=["pledge-17", "pledge-42"],
            milestone_id="milestone-2",
            category=DisputeCategory.MILESTONE_DISPUTE,
            title="Prototype milestone marked complete without a prototype",
            description="Backers received renders, not the promised working unit.",
            total_escrowed_amount=3_500_000_000_000_000_000,
            affected_backer_count=128,
            initial_evidence=[
                EvidenceSubmission(
                    type=EvidenceType.SCREENSHOT,
                    title="Update post",
                    description="Creator update claiming the milestone",
                    content="ipfs://bafy-update-post",
                )
            ],
        ),
        raised_by="0xbacker17",
    )
    print("=" * 60)
    print(f"Dispute {dispute.id}: tier={dispute.current_tier.value} priority={dispute.priority.value}")
    print("=" * 60)

    # Step 2: Community vote weighted by pledge size
    powers = {"0xbacker17": 400, "0xbacker42": 250, "0xbacker77": 350}
    engine.open_voting(dispute.id, list(powers), powers)
    engine.cast_vote(dispute.id, "0xbacker17", 400, VoteOption.PARTIAL, 30, reason="Some work done")
    engine.cast_vote(dispute.id, "0xbacker42", 250, VoteOption.PARTIAL, 45)
    engine.cast_vote(dispute.id, "0xbacker77", 350, VoteOption.REFUND)

    tally = engine.close_voting(dispute.id)
    print(f"Turnout: {tally.total_voted}/{tally.total_voting_power} (quorum={tally.quorum_reached})")
    print(f"Leading: {tally.leading_option.value} at {tally.leading_percent}%")

    # Step 3: Show where the dispute ended up
    dispute = engine.get_dispute(dispute.id)
    print(f"Status:  {dispute.status.value} at tier {dispute.current_tier.value}")
    if dispute.decision is not None:
        print(
            f"Decision: release {dispute.decision.release_percent}% / "
            f"refund {dispute.decision.refund_percent}%"
        )

    print("\nTimeline:")
    for event in engine.get_timeline(dispute.id):
        print(f"  {event.timestamp.isoformat()}  {event.type.value:<20} {event.description}")

    print("\nStatistics:")
    print(json.dumps(engine.get_statistics().model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    main()
