"""
Proposal state machine. Pure transitions over immutable proposals:
pending -> approved | rejected | expired | cancelled. Terminal states absorb.
"""

from dataclasses import replace
from datetime import datetime

from schoolpool.domain.constraints import ScheduleConfig
from schoolpool.domain.errors import ProposalClosedError
from schoolpool.domain.models import (
    ProposalStatus,
    ScheduleChangeProposal,
    ScheduleVote,
)


def is_overdue(proposal: ScheduleChangeProposal, now: datetime) -> bool:
    return proposal.status == ProposalStatus.PENDING and now > proposal.expires_at


def _require_pending(proposal: ScheduleChangeProposal) -> None:
    if proposal.status != ProposalStatus.PENDING:
        raise ProposalClosedError(proposal.proposal_id, proposal.status.value)


def outcome(proposal: ScheduleChangeProposal, config: ScheduleConfig) -> ProposalStatus:
    """Status implied by the current votes. Ties are rejected."""
    if len(proposal.votes) < proposal.votes_required:
        return ProposalStatus.PENDING
    if proposal.approval_percentage > config.approval_threshold_pct:
        return ProposalStatus.APPROVED
    return ProposalStatus.REJECTED


def apply_vote(
    proposal: ScheduleChangeProposal,
    vote: ScheduleVote,
    config: ScheduleConfig,
) -> ScheduleChangeProposal:
    _require_pending(proposal)
    votes = tuple(v for v in proposal.votes if v.voter_id != vote.voter_id) + (vote,)
    updated = replace(proposal, votes=votes, updated_at=vote.cast_at)
    status = outcome(updated, config)
    if status != ProposalStatus.PENDING:
        updated = replace(updated, status=status, resolved_at=vote.cast_at)
    return updated


def expire(proposal: ScheduleChangeProposal, now: datetime) -> ScheduleChangeProposal:
    _require_pending(proposal)
    return replace(proposal, status=ProposalStatus.EXPIRED, updated_at=now, resolved_at=now)


def cancel(proposal: ScheduleChangeProposal, now: datetime) -> ScheduleChangeProposal:
    _require_pending(proposal)
    return replace(proposal, status=ProposalStatus.CANCELLED, updated_at=now, resolved_at=now)
