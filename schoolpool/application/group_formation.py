"""
Group formation use case. Validates a family set, sequences pickups, scores the route,
assigns roles, issues invitations. Also membership changes: join by code, invitation replies, archive.
"""

import secrets
import string
import uuid
from dataclasses import replace
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from schoolpool.application.events import (
    EventBus,
    GroupArchived,
    GroupFormed,
    InvitationIssued,
    MemberJoined,
)
from schoolpool.application.repositories import (
    GroupRepository,
    InMemoryGroupRepository,
    InMemoryInvitationRepository,
)
from schoolpool.core.matching_engine.compatibility import validate_profile
from schoolpool.core.routing_engine.pickup_sequencer import PickupSequencer
from schoolpool.core.routing_engine.route_analysis import RouteAnalysisService
from schoolpool.domain.constraints import GroupFormationConfig
from schoolpool.domain.errors import (
    DifferentSchoolsError,
    GroupArchivedError,
    GroupFullError,
    GroupNotFoundError,
    IneligibleMemberError,
    InsufficientSeatsError,
    InvalidInviteCodeError,
    InvitationClosedError,
    NoDriverAvailableError,
    PermissionDeniedError,
    RouteRiskTooHighError,
    ValidationError,
)
from schoolpool.domain.models import (
    CarpoolGroup,
    Coordinate,
    FamilyProfile,
    GroupInvitation,
    GroupMember,
    GroupStatus,
    InvitationStatus,
    MemberRole,
    PickupPoint,
    RouteRiskAnalysis,
)
from schoolpool.utils.clock import Clock, SystemClock
from schoolpool.utils.logger import logger

_INVITE_ALPHABET = string.ascii_uppercase + string.digits


def contribution_score(family: FamilyProfile, config: GroupFormationConfig) -> float:
    """Any capable driver earns the driver bonus, backups included."""
    s = config.contribution_base
    if family.can_drive:
        s += config.contribution_driver_bonus
    if family.is_high_trust:
        s += config.contribution_high_trust_bonus
    if family.average_rating >= 4.5:
        s += config.contribution_rating_bonus
    return min(config.contribution_cap, s)


def assign_role(
    family: FamilyProfile, seeker_id: str, backup_driver_ids: Iterable[str]
) -> MemberRole:
    if family.family_id == seeker_id:
        return MemberRole.ADMIN
    if family.family_id in set(backup_driver_ids):
        return MemberRole.BACKUP
    if family.can_drive:
        return MemberRole.DRIVER
    return MemberRole.PASSENGER


def validate_composition(families: Sequence[FamilyProfile], max_members: int) -> None:
    """Raises the first ValidationError that applies, in a fixed order."""
    seen = set()
    for f in families:
        if f.family_id in seen:
            raise ValidationError(f"Family {f.family_id} appears more than once")
        seen.add(f.family_id)
    if len(families) > max_members:
        raise ValidationError(
            f"A group holds at most {max_members} families ({len(families)} given)",
            recovery="Split the families into two groups",
        )
    for f in families:
        validate_profile(f)
        if not f.background_check.is_eligible:
            raise IneligibleMemberError(f.family_id)
    if len({f.school_id for f in families}) > 1:
        raise DifferentSchoolsError()
    drivers = [f for f in families if f.can_drive]
    if not drivers:
        raise NoDriverAvailableError()
    best = max(d.available_seats for d in drivers)
    if best < len(families):
        raise InsufficientSeatsError(needed=len(families), available=best)


class GroupFormationOrchestrator:
    def __init__(
        self,
        route_service: Optional[RouteAnalysisService] = None,
        sequencer: Optional[PickupSequencer] = None,
        groups: Optional[GroupRepository] = None,
        invitations: Optional[InMemoryInvitationRepository] = None,
        bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        config: Optional[GroupFormationConfig] = None,
    ):
        self.route_service = route_service or RouteAnalysisService()
        self.sequencer = sequencer or PickupSequencer()
        self.groups = groups if groups is not None else InMemoryGroupRepository()
        self.invitations = invitations if invitations is not None else InMemoryInvitationRepository()
        self.bus = bus or EventBus()
        self.clock = clock or SystemClock()
        self.config = config or GroupFormationConfig()

    # --- helpers ---

    def _base_time(self, departure_min: float) -> datetime:
        now = self.clock.now()
        midnight = datetime.combine(now.date(), time(0, 0), tzinfo=now.tzinfo)
        return midnight + timedelta(minutes=departure_min)

    def _new_invite_code(self) -> str:
        while True:
            code = "".join(secrets.choice(_INVITE_ALPHABET) for _ in range(self.config.invite_code_length))
            if self.groups.find_by_invite_code(code) is None:
                return code

    def _plan_route(
        self,
        stops: Sequence[Tuple[str, Coordinate]],
        school: Coordinate,
        departure_min: float,
    ) -> Tuple[List[PickupPoint], Optional[RouteRiskAnalysis]]:
        pickups = self.sequencer.sequence(stops, school, base_time=self._base_time(departure_min))
        if not pickups:
            return [], None
        path = self.sequencer.stops_with_destination(pickups, school)
        result = self.route_service.analyze(path[0], path[-1], path[1:-1])
        analysis = result.primary
        if result.degraded and not analysis.degraded:
            analysis = replace(analysis, degraded=True)
        return pickups, analysis

    def _check_route(self, analysis: Optional[RouteRiskAnalysis]) -> None:
        if not self.config.require_acceptable_route or analysis is None:
            return
        if not analysis.acceptable:
            raise RouteRiskTooHighError(analysis.overall_risk, self.route_service.scorer.config.max_acceptable_risk)

    def _status_for(self, group: CarpoolGroup) -> GroupStatus:
        if len(group.members) < 2:
            return GroupStatus.FORMING
        if group.seat_capacity < len(group.members):
            return GroupStatus.PAUSED
        return GroupStatus.ACTIVE

    def _issue_invitation(self, group: CarpoolGroup, invitee_id: str) -> GroupInvitation:
        sent = self.clock.now()
        invitation = GroupInvitation(
            invitation_id=str(uuid.uuid4()),
            group_id=group.group_id,
            invitee_id=invitee_id,
            inviter_id=group.admin_id,
            sent_at=sent,
            expires_at=sent + timedelta(days=self.config.invitation_ttl_days),
        )
        self.invitations.save(invitation)
        return invitation

    def _get_group(self, group_id: str) -> CarpoolGroup:
        group = self.groups.get(group_id)
        if group is None:
            raise GroupNotFoundError(group_id)
        return group

    # --- commands ---

    def form_group(
        self,
        seeker: FamilyProfile,
        matched: Sequence[FamilyProfile],
        name: Optional[str] = None,
        backup_driver_ids: Iterable[str] = (),
    ) -> CarpoolGroup:
        families = [seeker, *matched]
        validate_composition(families, self.config.max_members)
        backup_driver_ids = list(backup_driver_ids)

        pickups, analysis = self._plan_route(
            [(f.family_id, f.home) for f in families], seeker.school, seeker.departure_min
        )
        self._check_route(analysis)

        now = self.clock.now()
        members = []
        for f in families:
            role = assign_role(f, seeker.family_id, backup_driver_ids)
            members.append(GroupMember(
                family_id=f.family_id,
                role=role,
                contribution_score=contribution_score(f, self.config),
                joined_at=now,
            ))
        if seeker.can_drive:
            current_driver = seeker.family_id
        else:
            drivers = [m for m, f in zip(members, families) if f.can_drive]
            preferred = [m for m in drivers if m.role == MemberRole.DRIVER]
            current_driver = (preferred or drivers)[0].family_id
        driver_seats = tuple((f.family_id, f.available_seats) for f in families if f.can_drive)

        group = CarpoolGroup(
            group_id=str(uuid.uuid4()),
            name=name or f"{seeker.school_name or seeker.school_id} carpool",
            admin_id=seeker.family_id,
            members=tuple(members),
            school_id=seeker.school_id,
            departure_min=seeker.departure_min,
            pickup_sequence=tuple(pickups),
            route_analysis=analysis,
            status=GroupStatus.FORMING,
            invite_code=self._new_invite_code(),
            created_at=now,
            max_members=self.config.max_members,
            current_driver_id=current_driver,
            school_location=seeker.school,
            driver_seats=driver_seats,
        )
        group = replace(group, status=self._status_for(group))
        self.groups.save(group)
        invitations = [self._issue_invitation(group, f.family_id) for f in matched]

        logger.info(
            f"Group {group.group_id} formed: {len(members)} members, "
            f"risk {analysis.overall_risk if analysis else 0.0:.1f}/10, status {group.status.value}"
        )
        self.bus.publish(GroupFormed(group=group))
        for inv in invitations:
            self.bus.publish(InvitationIssued(invitation=inv))
        return group

    def join_group(self, invite_code: str, family: FamilyProfile) -> CarpoolGroup:
        found = self.groups.find_by_invite_code(invite_code or "")
        if found is None:
            raise InvalidInviteCodeError()
        validate_profile(family)

        with self.groups.group_lock(found.group_id):
            group = self._get_group(found.group_id)
            if group.status == GroupStatus.ARCHIVED:
                raise GroupArchivedError(group.group_id)
            if group.member(family.family_id) is not None:
                raise ValidationError(f"Family {family.family_id} is already a member of this group")
            if not group.allows_new_members:
                raise GroupFullError()
            if family.school_id != group.school_id:
                raise DifferentSchoolsError()
            if not family.background_check.is_eligible:
                raise IneligibleMemberError(family.family_id)

            driver_seats = group.driver_seats
            if family.can_drive:
                driver_seats = driver_seats + ((family.family_id, family.available_seats),)
            role = MemberRole.DRIVER if family.can_drive else MemberRole.PASSENGER
            grown = replace(
                group,
                members=group.members + (GroupMember(
                    family_id=family.family_id,
                    role=role,
                    contribution_score=contribution_score(family, self.config),
                    joined_at=self.clock.now(),
                ),),
                driver_seats=driver_seats,
            )
            if grown.seat_capacity < len(grown.members):
                raise GroupFullError()

            stops = [(p.family_id, p.coordinate) for p in sorted(group.pickup_sequence, key=lambda p: p.sequence_order)]
            stops.append((family.family_id, family.home))
            pickups, analysis = self._plan_route(stops, group.school_location or family.school, group.departure_min)

            updated = replace(
                grown,
                pickup_sequence=tuple(pickups),
                route_analysis=analysis,
                status=self._status_for(grown),
            )
            self.groups.save(updated)

        logger.info(f"Family {family.family_id} joined group {group.group_id}")
        self.bus.publish(MemberJoined(group=updated, family_id=family.family_id))
        return updated

    def respond_to_invitation(self, invitation_id: str, accept: bool) -> GroupInvitation:
        invitation = self.invitations.get(invitation_id)
        if invitation is None:
            raise ValidationError(f"Invitation {invitation_id} not found")

        with self.groups.group_lock(invitation.group_id):
            invitation = self.invitations.get(invitation_id)
            if invitation.status != InvitationStatus.PENDING:
                raise InvitationClosedError(invitation_id, invitation.status.value)
            now = self.clock.now()
            if now > invitation.expires_at:
                self.invitations.save(replace(invitation, status=InvitationStatus.EXPIRED))
                raise InvitationClosedError(invitation_id, InvitationStatus.EXPIRED.value)

            status = InvitationStatus.ACCEPTED if accept else InvitationStatus.DECLINED
            invitation = replace(invitation, status=status)
            self.invitations.save(invitation)
            if not accept:
                self._remove_member(invitation.group_id, invitation.invitee_id)

        logger.info(f"Invitation {invitation_id} {status.value} by {invitation.invitee_id}")
        return invitation

    def _remove_member(self, group_id: str, family_id: str) -> None:
        """Caller holds the group lock."""
        group = self.groups.get(group_id)
        if group is None or group.member(family_id) is None or group.admin_id == family_id:
            return
        trimmed = replace(
            group,
            members=tuple(m for m in group.members if m.family_id != family_id),
            driver_seats=tuple(d for d in group.driver_seats if d[0] != family_id),
        )
        stops = [
            (p.family_id, p.coordinate)
            for p in sorted(group.pickup_sequence, key=lambda p: p.sequence_order)
            if p.family_id != family_id
        ]
        pickups, analysis = self._plan_route(stops, group.school_location, group.departure_min)
        current_driver = group.current_driver_id
        if current_driver == family_id:
            current_driver = trimmed.driver_seats[0][0] if trimmed.driver_seats else None
        status = group.status
        if status != GroupStatus.ARCHIVED:
            status = self._status_for(trimmed)
        self.groups.save(replace(
            trimmed,
            pickup_sequence=tuple(pickups),
            route_analysis=analysis,
            current_driver_id=current_driver,
            status=status,
        ))

    def archive_group(self, group_id: str, requested_by: Optional[str] = None) -> CarpoolGroup:
        with self.groups.group_lock(group_id):
            group = self._get_group(group_id)
            if requested_by is not None and requested_by != group.admin_id:
                raise PermissionDeniedError("Only the group admin can archive the group")
            if group.status == GroupStatus.ARCHIVED:
                raise GroupArchivedError(group_id)
            archived = replace(group, status=GroupStatus.ARCHIVED)
            self.groups.save(archived)

        logger.info(f"Group {group_id} archived")
        self.bus.publish(GroupArchived(group=archived))
        return archived
