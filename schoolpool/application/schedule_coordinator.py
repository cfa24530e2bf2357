"""
Schedule change coordination: proposals, conflict detection, voting, expiry.
Proposals are immutable; each transition replaces the stored value under that proposal's lock.
"""

import threading
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional

from schoolpool.application.events import (
    EventBus,
    ProposalCancelled,
    ProposalCreated,
    ProposalResolved,
    ProposalsExpired,
    VoteCast,
)
from schoolpool.application.repositories import GroupRepository
from schoolpool.core.schedule_engine import proposal_state
from schoolpool.core.schedule_engine.conflicts import ScheduleConflictDetector, aggregate_severity
from schoolpool.domain.constraints import ScheduleConfig
from schoolpool.domain.errors import (
    GroupArchivedError,
    GroupNotFoundError,
    PendingProposalExistsError,
    PermissionDeniedError,
    ProposalClosedError,
    ProposalNotFoundError,
    ValidationError,
)
from schoolpool.domain.models import (
    CarpoolGroup,
    ConflictDetectionResult,
    GroupStatus,
    ProposalPriority,
    ProposalStatus,
    ScheduleChangeProposal,
    ScheduleVote,
    VoteChoice,
)
from schoolpool.utils.clock import Clock, SystemClock
from schoolpool.utils.logger import logger


class ScheduleConflictResolver:
    def __init__(
        self,
        detector: Optional[ScheduleConflictDetector] = None,
        bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        config: Optional[ScheduleConfig] = None,
        groups: Optional[GroupRepository] = None,
    ):
        self.config = config or ScheduleConfig()
        self.detector = detector or ScheduleConflictDetector(config=self.config)
        self.bus = bus or EventBus()
        self.clock = clock or SystemClock()
        self.groups = groups
        self._proposals: Dict[str, ScheduleChangeProposal] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._group_locks: Dict[str, threading.Lock] = {}
        self._recent: Deque[ScheduleChangeProposal] = deque(maxlen=self.config.recent_changes_limit)
        self._lock = threading.Lock()

    # --- locks / storage ---

    def _proposal_lock(self, proposal_id: str) -> threading.Lock:
        with self._lock:
            lock = self._locks.get(proposal_id)
        if lock is None:
            raise ProposalNotFoundError(proposal_id)
        return lock

    def _group_lock(self, group_id: str) -> threading.Lock:
        with self._lock:
            return self._group_locks.setdefault(group_id, threading.Lock())

    def _store(self, proposal: ScheduleChangeProposal) -> None:
        with self._lock:
            self._proposals[proposal.proposal_id] = proposal
            self._locks.setdefault(proposal.proposal_id, threading.Lock())
            if proposal.status.is_terminal:
                self._recent.appendleft(proposal)

    def _group(self, group_id: str) -> Optional[CarpoolGroup]:
        if self.groups is None:
            return None
        group = self.groups.get(group_id)
        if group is None:
            raise GroupNotFoundError(group_id)
        return group

    # --- conflict detection ---

    def detect_conflicts(self, proposed_time: datetime, group_id: str) -> ConflictDetectionResult:
        return self.detector.detect_conflicts(proposed_time, group_id)

    def generate_alternatives(self, original: datetime, conflicts, group_id: str) -> List[datetime]:
        return self.detector.generate_alternatives(original, conflicts, group_id)

    # --- commands ---

    def propose_change(
        self,
        group_id: str,
        proposer_id: str,
        current_time: datetime,
        proposed_time: datetime,
        reason: str = "",
        priority: ProposalPriority = ProposalPriority.NORMAL,
        votes_required: Optional[int] = None,
    ) -> ScheduleChangeProposal:
        if proposed_time == current_time:
            raise ValidationError(
                "Proposed time is the same as the current time",
                recovery="Choose a different departure time",
            )
        group = self._group(group_id)
        if group is not None:
            if group.status == GroupStatus.ARCHIVED:
                raise GroupArchivedError(group_id)
            if group.member(proposer_id) is None:
                raise PermissionDeniedError(f"Family {proposer_id} is not a member of group {group_id}")
        if votes_required is None:
            votes_required = len(group.members) if group is not None else self.config.default_votes_required
        if votes_required < 1:
            raise ValidationError("At least one vote must be required")
        if group is not None and votes_required > len(group.members):
            raise ValidationError(
                f"Votes required ({votes_required}) exceeds group size ({len(group.members)})"
            )

        with self._group_lock(group_id):
            self._expire_overdue_for_group(group_id)
            pending = self.pending_approvals(group_id)
            if pending:
                raise PendingProposalExistsError(group_id, pending[0].proposal_id)

            detection = self.detect_conflicts(proposed_time, group_id)
            alternatives: List[datetime] = []
            if detection.conflicts:
                alternatives = self.generate_alternatives(proposed_time, detection.conflicts, group_id)

            now = self.clock.now()
            proposal = ScheduleChangeProposal(
                proposal_id=str(uuid.uuid4()),
                group_id=group_id,
                proposer_id=proposer_id,
                current_time=current_time,
                proposed_time=proposed_time,
                reason=reason,
                priority=priority,
                votes_required=votes_required,
                created_at=now,
                expires_at=now + timedelta(hours=self.config.proposal_lifetime_h),
                detected_conflicts=detection.conflicts,
                alternatives=tuple(alternatives),
                conflict_severity=aggregate_severity(detection.conflicts),
                conflict_detection_degraded=detection.degraded,
                updated_at=now,
            )
            self._store(proposal)

        logger.info(
            f"Proposal {proposal.proposal_id} created for group {group_id}: "
            f"{len(proposal.detected_conflicts)} conflicts ({proposal.conflict_severity.value}), "
            f"{len(proposal.alternatives)} alternatives"
        )
        self.bus.publish(ProposalCreated(proposal=proposal))
        return proposal

    def cast_vote(
        self,
        proposal_id: str,
        voter_id: str,
        choice: VoteChoice,
        comment: Optional[str] = None,
    ) -> ScheduleChangeProposal:
        lock = self._proposal_lock(proposal_id)
        expired: Optional[ScheduleChangeProposal] = None
        with lock:
            current = self._proposals[proposal_id]
            now = self.clock.now()
            if proposal_state.is_overdue(current, now):
                expired = proposal_state.expire(current, now)
                self._store(expired)
            else:
                if current.status == ProposalStatus.PENDING and self.groups is not None:
                    group = self.groups.get(current.group_id)
                    if group is not None and group.member(voter_id) is None:
                        raise PermissionDeniedError(
                            f"Family {voter_id} is not a member of group {current.group_id}"
                        )
                vote = ScheduleVote(voter_id=voter_id, choice=choice, cast_at=now, comment=comment)
                updated = proposal_state.apply_vote(current, vote, self.config)
                self._store(updated)

        if expired is not None:
            logger.info(f"Proposal {proposal_id} expired before vote from {voter_id}")
            self.bus.publish(ProposalsExpired(proposals=(expired,)))
            raise ProposalClosedError(proposal_id, expired.status.value)

        logger.info(
            f"Vote {choice.value} on {proposal_id} by {voter_id}: "
            f"{len(updated.votes)}/{updated.votes_required} cast, {updated.approval_percentage:.1f}% approve"
        )
        self.bus.publish(VoteCast(proposal=updated, vote=vote))
        if updated.status.is_terminal:
            logger.info(
                f"Proposal {proposal_id} resolved: {updated.status.value} "
                f"({updated.approve_count} approve, {updated.reject_count} reject)"
            )
            self.bus.publish(ProposalResolved(proposal=updated))
        return updated

    def cancel_proposal(self, proposal_id: str, requested_by: str) -> ScheduleChangeProposal:
        lock = self._proposal_lock(proposal_id)
        with lock:
            current = self._proposals[proposal_id]
            allowed = requested_by == current.proposer_id
            if not allowed and self.groups is not None:
                group = self.groups.get(current.group_id)
                allowed = group is not None and group.admin_id == requested_by
            if not allowed:
                raise PermissionDeniedError(
                    f"Only the proposer or the group admin can cancel proposal {proposal_id}"
                )
            cancelled = proposal_state.cancel(current, self.clock.now())
            self._store(cancelled)

        logger.info(f"Proposal {proposal_id} cancelled by {requested_by}")
        self.bus.publish(ProposalCancelled(proposal=cancelled, cancelled_by=requested_by))
        return cancelled

    def _expire_one(self, proposal_id: str, now: datetime) -> Optional[ScheduleChangeProposal]:
        with self._proposal_lock(proposal_id):
            current = self._proposals[proposal_id]
            if not proposal_state.is_overdue(current, now):
                return None
            expired = proposal_state.expire(current, now)
            self._store(expired)
            return expired

    def _expire_overdue_for_group(self, group_id: str) -> None:
        now = self.clock.now()
        expired = [
            e for e in (self._expire_one(p.proposal_id, now) for p in self.pending_approvals(group_id))
            if e is not None
        ]
        if expired:
            self.bus.publish(ProposalsExpired(proposals=tuple(expired)))

    def sweep_expired(self) -> List[ScheduleChangeProposal]:
        """Expire every overdue pending proposal. Run periodically by the scheduler."""
        now = self.clock.now()
        expired: List[ScheduleChangeProposal] = []
        for p in self.pending_approvals():
            e = self._expire_one(p.proposal_id, now)
            if e is not None:
                expired.append(e)
        if expired:
            logger.info(f"Expiry sweep: {len(expired)} proposals expired")
            self.bus.publish(ProposalsExpired(proposals=tuple(expired)))
        return expired

    # --- queries ---

    def get(self, proposal_id: str) -> ScheduleChangeProposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    def pending_approvals(self, group_id: Optional[str] = None) -> List[ScheduleChangeProposal]:
        with self._lock:
            proposals = list(self._proposals.values())
        pending = [
            p for p in proposals
            if p.status == ProposalStatus.PENDING and (group_id is None or p.group_id == group_id)
        ]
        pending.sort(key=lambda p: (p.created_at, p.proposal_id))
        return pending

    def proposals_for_group(self, group_id: str) -> List[ScheduleChangeProposal]:
        with self._lock:
            proposals = [p for p in self._proposals.values() if p.group_id == group_id]
        proposals.sort(key=lambda p: (p.created_at, p.proposal_id))
        return proposals

    def urgent_proposals(self) -> List[ScheduleChangeProposal]:
        return [p for p in self.pending_approvals() if p.requires_immediate_action]

    @property
    def recent_changes(self) -> List[ScheduleChangeProposal]:
        """Most recently resolved proposals, newest first."""
        with self._lock:
            return list(self._recent)
