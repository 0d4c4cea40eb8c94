"""Weighted-vote tally, quorum and consensus evaluation.

All arithmetic is on Python ints.  Percentages use integer (floor)
division, so 100 release / 150 cast is 66, not 66.67.

Quorum is measured against the total voting power fixed when voting
opened.  Consensus is measured against the power actually cast, and
abstentions count toward participation but never toward consensus.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping

from pledge_dispute_engine.exceptions import InvalidArgument
from pledge_dispute_engine.schemas import (
    ResolutionOutcome,
    ResolutionRequest,
    ResolutionTier,
    Vote,
    VoteOption,
    VoteTally,
)

# Declaration order doubles as the tie-break order for the leading option.
_DECISIVE_OPTIONS = (VoteOption.RELEASE, VoteOption.REFUND, VoteOption.PARTIAL)

DEFAULT_PARTIAL_PERCENT = 50


def total_voting_power(voting_powers: Mapping[str, int]) -> int:
    """Sum the assigned voting power of every eligible voter."""
    total = 0
    for voter, power in voting_powers.items():
        if power < 0:
            raise InvalidArgument(f"Voting power for {voter} must be non-negative")
        total += power
    return total


def empty_tally(total_power: int, quorum_percent: int) -> VoteTally:
    return VoteTally(
        total_voting_power=total_power,
        quorum_threshold=quorum_percent,
        leading_option=VoteOption.ABSTAIN,
        leading_percent=0,
    )


def compute_tally(
    votes: Iterable[Vote],
    total_power: int,
    quorum_percent: int,
    consensus_percent: int,
) -> VoteTally:
    """Recompute the full tally from the ballots cast so far."""
    sums = {option: 0 for option in VoteOption}
    voter_count = 0
    for vote in votes:
        sums[vote.vote] += vote.voting_power
        voter_count += 1

    total_voted = sum(sums.values())

    quorum_reached = total_power > 0 and (total_voted * 100) // total_power >= quorum_percent

    # max() keeps the first maximal element, so ties resolve in declaration order.
    leading_option = max(_DECISIVE_OPTIONS, key=lambda option: sums[option])
    leading_percent = (sums[leading_option] * 100) // total_voted if total_voted > 0 else 0

    return VoteTally(
        total_voting_power=total_power,
        release=sums[VoteOption.RELEASE],
        refund=sums[VoteOption.REFUND],
        partial=sums[VoteOption.PARTIAL],
        abstain=sums[VoteOption.ABSTAIN],
        voter_count=voter_count,
        quorum_reached=quorum_reached,
        quorum_threshold=quorum_percent,
        consensus_reached=leading_percent >= consensus_percent,
        leading_option=leading_option,
        leading_percent=leading_percent,
    )


def validate_partial_percent(vote: VoteOption, partial_percent: float | None) -> None:
    if vote != VoteOption.PARTIAL:
        return
    if partial_percent is None or not 0 <= partial_percent <= 100:
        raise InvalidArgument("Partial vote requires valid percentage (0-100)")


def average_partial_percent(votes: Iterable[Vote]) -> int:
    """Half-up rounded mean of the partial percentages among partial ballots."""
    percents = [
        v.partial_percent if v.partial_percent is not None else DEFAULT_PARTIAL_PERCENT
        for v in votes
        if v.vote == VoteOption.PARTIAL
    ]
    if not percents:
        return DEFAULT_PARTIAL_PERCENT
    mean = sum(percents) / len(percents)
    return int(math.floor(mean + 0.5))


def resolution_from_tally(
    tally: VoteTally,
    votes: list[Vote],
    evidence_ids: list[str],
) -> ResolutionRequest:
    """Build the community decision implied by a decisive tally."""
    option = tally.leading_option
    if option == VoteOption.RELEASE:
        release_percent = 100
    elif option == VoteOption.REFUND:
        release_percent = 0
    elif option == VoteOption.PARTIAL:
        release_percent = average_partial_percent(votes)
    else:
        raise InvalidArgument(f"Tally has no decisive leading option ({option.value})")

    return ResolutionRequest(
        outcome=ResolutionOutcome(option.value),
        release_percent=release_percent,
        refund_percent=100 - release_percent,
        decided_by=ResolutionTier.COMMUNITY,
        rationale=f"Community vote: {tally.leading_percent}% voted for {option.value}",
        evidence_ids=evidence_ids,
        vote_tally=tally,
    )
