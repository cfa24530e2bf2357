import threading
from datetime import timedelta

import pytest

from conftest import SCHOOL, T0, north
from schoolpool.application.events import (
    EventBus,
    GroupArchived,
    GroupFormed,
    InvitationIssued,
    MemberJoined,
    RecordingSubscriber,
)
from schoolpool.application.group_formation import (
    GroupFormationOrchestrator,
    assign_role,
    contribution_score,
    validate_composition,
)
from schoolpool.core.routing_engine.route_analysis import RouteAnalysisService
from schoolpool.core.safety_engine.geo_risk_cache import GeoRiskCache
from schoolpool.domain.constraints import GroupFormationConfig
from schoolpool.domain.errors import (
    DifferentSchoolsError,
    GroupArchivedError,
    GroupFullError,
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
    BackgroundCheckState,
    GroupStatus,
    InvitationStatus,
    MemberRole,
    SchoolLocation,
)
from schoolpool.infrastructure.providers import StaticGeoRiskProvider


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def route_service(clock, no_wait_retry):
    cache = GeoRiskCache(
        StaticGeoRiskProvider([SchoolLocation("school-1", "Lyneham Primary", SCHOOL)]),
        retry_policy=no_wait_retry,
        clock=clock,
    )
    return RouteAnalysisService(geo_cache=cache, retry_policy=no_wait_retry)


@pytest.fixture
def orchestrator(route_service, bus, clock):
    return GroupFormationOrchestrator(route_service=route_service, bus=bus, clock=clock)


@pytest.fixture
def trio(make_family, driver, trusted_kwargs):
    seeker = driver("seeker", home=north(SCHOOL, 1500), seats=4, **trusted_kwargs)
    p1 = make_family("p1", home=north(SCHOOL, 1200))
    p2 = make_family("p2", home=north(SCHOOL, 900))
    return seeker, p1, p2


def test_form_group_with_driver_and_passengers(orchestrator, trio, bus):
    events = RecordingSubscriber(bus, GroupFormed, InvitationIssued)
    seeker, p1, p2 = trio
    group = orchestrator.form_group(seeker, [p1, p2])

    assert group.status == GroupStatus.ACTIVE
    assert group.admin_id == "seeker"
    assert group.current_driver_id == "seeker"
    assert group.name == "school-1 carpool"
    assert len(group.invite_code) == 6
    assert {m.family_id: m.role for m in group.members} == {
        "seeker": MemberRole.ADMIN,
        "p1": MemberRole.PASSENGER,
        "p2": MemberRole.PASSENGER,
    }
    assert [p.family_id for p in group.pickup_sequence] == ["seeker", "p1", "p2"]
    assert group.pickup_sequence[0].estimated_time == T0.replace(hour=8, minute=15)
    assert group.route_analysis is not None
    assert group.route_analysis.degraded is True  # straight-line fallback
    assert orchestrator.groups.get(group.group_id) == group

    invitations = orchestrator.invitations.for_group(group.group_id)
    assert sorted(i.invitee_id for i in invitations) == ["p1", "p2"]
    assert all(i.expires_at == T0 + timedelta(days=7) for i in invitations)
    assert len(events.of_type(GroupFormed)) == 1
    assert len(events.of_type(InvitationIssued)) == 2


def test_contribution_scores(trio, driver):
    seeker, p1, _ = trio
    cfg = GroupFormationConfig()
    assert contribution_score(seeker, cfg) == pytest.approx(8.5)
    assert contribution_score(p1, cfg) == pytest.approx(5.0)
    assert contribution_score(driver("no-seats", seats=0), cfg) == pytest.approx(5.0)


def test_backup_driver_keeps_driver_bonus(orchestrator, make_family, driver):
    seeker = driver("seeker", home=north(SCHOOL, 1000), seats=4)
    backup = driver("backup", home=north(SCHOOL, 1100), seats=3)
    group = orchestrator.form_group(seeker, [backup, make_family("p", home=north(SCHOOL, 900))], backup_driver_ids=["backup"])
    member = group.member("backup")
    assert member.role == MemberRole.BACKUP
    assert member.contribution_score == pytest.approx(7.0)
    assert group.member("p").contribution_score == pytest.approx(5.0)


def test_assign_roles(make_family, driver):
    assert assign_role(make_family("s"), "s", []) == MemberRole.ADMIN
    assert assign_role(driver("b"), "s", ["b"]) == MemberRole.BACKUP
    assert assign_role(driver("d"), "s", []) == MemberRole.DRIVER
    assert assign_role(make_family("p"), "s", []) == MemberRole.PASSENGER


def test_non_driving_seeker_uses_first_driver(orchestrator, make_family, driver):
    seeker = make_family("seeker", home=north(SCHOOL, 1000))
    backup = driver("backup", home=north(SCHOOL, 1100), seats=4)
    main = driver("main", home=north(SCHOOL, 1200), seats=4)
    group = orchestrator.form_group(seeker, [backup, main], name="Morning run", backup_driver_ids=["backup"])
    assert group.name == "Morning run"
    assert group.current_driver_id == "main"
    assert group.member("backup").role == MemberRole.BACKUP


@pytest.mark.parametrize(
    "case, error",
    [
        ("duplicate", ValidationError),
        ("too_many", ValidationError),
        ("other_school", DifferentSchoolsError),
        ("no_driver", NoDriverAvailableError),
        ("few_seats", InsufficientSeatsError),
        ("flagged", IneligibleMemberError),
    ],
)
def test_invalid_compositions(case, error, make_family, driver):
    d = driver("d", seats=4)
    families = {
        "duplicate": [d, make_family("p"), make_family("p")],
        "too_many": [driver("d", seats=7)] + [make_family(f"p{i}") for i in range(6)],
        "other_school": [d, make_family("p", school_id="school-2")],
        "no_driver": [make_family("a"), make_family("b")],
        "few_seats": [driver("d", seats=2), make_family("a"), make_family("b")],
        "flagged": [d, make_family("p", background_check=BackgroundCheckState.FLAGGED)],
    }[case]
    with pytest.raises(error):
        validate_composition(families, max_members=6)


def test_seat_shortfall_reports_counts(make_family, driver):
    with pytest.raises(InsufficientSeatsError) as exc:
        validate_composition([driver("d", seats=2), make_family("a"), make_family("b")], max_members=6)
    assert exc.value.needed == 3
    assert exc.value.available == 2


def test_risky_route_refused_when_required(route_service, bus, clock, make_family, driver):
    orchestrator = GroupFormationOrchestrator(
        route_service=route_service,
        bus=bus,
        clock=clock,
        config=GroupFormationConfig(require_acceptable_route=True),
    )
    seeker = driver("seeker", home=north(SCHOOL, 8000))
    with pytest.raises(RouteRiskTooHighError):
        orchestrator.form_group(seeker, [make_family("p", home=north(SCHOOL, 7900))])


def test_join_by_invite_code(orchestrator, trio, make_family, bus):
    events = RecordingSubscriber(bus, MemberJoined)
    seeker, p1, p2 = trio
    group = orchestrator.form_group(seeker, [p1])
    joiner = make_family("p3", home=north(SCHOOL, 1300))

    updated = orchestrator.join_group(f"  {group.invite_code.lower()} ", joiner)
    assert updated.member_ids == ["seeker", "p1", "p3"]
    assert updated.member("p3").role == MemberRole.PASSENGER
    assert sorted(p.family_id for p in updated.pickup_sequence) == ["p1", "p3", "seeker"]
    assert [p.sequence_order for p in updated.pickup_sequence] == [0, 1, 2]
    assert events.of_type(MemberJoined)[0].family_id == "p3"

    with pytest.raises(ValidationError):
        orchestrator.join_group(group.invite_code, joiner)


def test_join_rejections(orchestrator, trio, make_family):
    seeker, p1, p2 = trio
    group = orchestrator.form_group(seeker, [p1, p2])
    with pytest.raises(InvalidInviteCodeError):
        orchestrator.join_group("ZZZZZZ", make_family("x"))
    with pytest.raises(DifferentSchoolsError):
        orchestrator.join_group(group.invite_code, make_family("x", school_id="school-2"))
    with pytest.raises(IneligibleMemberError):
        orchestrator.join_group(
            group.invite_code, make_family("x", background_check=BackgroundCheckState.FAILED)
        )

    orchestrator.join_group(group.invite_code, make_family("p3"))
    # four seats, four members
    with pytest.raises(GroupFullError):
        orchestrator.join_group(group.invite_code, make_family("p4"))

    orchestrator.archive_group(group.group_id, requested_by="seeker")
    with pytest.raises(GroupArchivedError):
        orchestrator.join_group(group.invite_code, make_family("p5"))


def test_invitation_accept_and_decline(orchestrator, trio):
    seeker, p1, p2 = trio
    group = orchestrator.form_group(seeker, [p1, p2])
    by_invitee = {i.invitee_id: i for i in orchestrator.invitations.for_group(group.group_id)}

    accepted = orchestrator.respond_to_invitation(by_invitee["p1"].invitation_id, accept=True)
    assert accepted.status == InvitationStatus.ACCEPTED
    with pytest.raises(InvitationClosedError):
        orchestrator.respond_to_invitation(accepted.invitation_id, accept=False)

    declined = orchestrator.respond_to_invitation(by_invitee["p2"].invitation_id, accept=False)
    assert declined.status == InvitationStatus.DECLINED
    group = orchestrator.groups.get(group.group_id)
    assert group.member_ids == ["seeker", "p1"]
    assert [p.family_id for p in group.pickup_sequence] == ["seeker", "p1"]


def test_expired_invitation(orchestrator, trio, clock):
    seeker, p1, _ = trio
    group = orchestrator.form_group(seeker, [p1])
    invitation = orchestrator.invitations.for_group(group.group_id)[0]
    clock.advance(days=8)
    with pytest.raises(InvitationClosedError):
        orchestrator.respond_to_invitation(invitation.invitation_id, accept=True)
    assert orchestrator.invitations.get(invitation.invitation_id).status == InvitationStatus.EXPIRED


def test_driver_declining_pauses_group(orchestrator, make_family, driver):
    seeker = make_family("seeker", home=north(SCHOOL, 1000))
    d = driver("d", home=north(SCHOOL, 1200), seats=3)
    p = make_family("p", home=north(SCHOOL, 800))
    group = orchestrator.form_group(seeker, [d, p])
    assert group.current_driver_id == "d"

    invitation = next(i for i in orchestrator.invitations.for_group(group.group_id) if i.invitee_id == "d")
    orchestrator.respond_to_invitation(invitation.invitation_id, accept=False)
    group = orchestrator.groups.get(group.group_id)
    assert group.status == GroupStatus.PAUSED
    assert group.current_driver_id is None


def test_archive(orchestrator, trio, bus):
    events = RecordingSubscriber(bus, GroupArchived)
    seeker, p1, _ = trio
    group = orchestrator.form_group(seeker, [p1])
    with pytest.raises(PermissionDeniedError):
        orchestrator.archive_group(group.group_id, requested_by="p1")
    archived = orchestrator.archive_group(group.group_id, requested_by="seeker")
    assert archived.status == GroupStatus.ARCHIVED
    assert len(events.of_type(GroupArchived)) == 1
    with pytest.raises(GroupArchivedError):
        orchestrator.archive_group(group.group_id)


def test_concurrent_joins_fill_the_last_seat_once(orchestrator, trio, make_family):
    seeker, p1, p2 = trio
    group = orchestrator.form_group(seeker, [p1, p2])
    joiners = [make_family(f"j{i}", home=north(SCHOOL, 1000 + 50 * i)) for i in range(4)]
    barrier = threading.Barrier(len(joiners))
    joined, errors = [], []

    def join(family):
        barrier.wait()
        try:
            joined.append(orchestrator.join_group(group.invite_code, family))
        except GroupFullError as e:
            errors.append(e)

    threads = [threading.Thread(target=join, args=(f,)) for f in joiners]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(joined) == 1
    assert len(errors) == 3
    stored = orchestrator.groups.get(group.group_id)
    assert len(stored.members) == 4
    assert len(stored.pickup_sequence) == 4
    assert stored.seat_capacity == 4


def test_join_respects_member_limit(route_service, bus, clock, trio, make_family):
    orchestrator = GroupFormationOrchestrator(
        route_service=route_service, bus=bus, clock=clock, config=GroupFormationConfig(max_members=3)
    )
    seeker, p1, p2 = trio
    group = orchestrator.form_group(seeker, [p1, p2])
    assert group.seat_capacity == 4
    assert group.allows_new_members is False
    with pytest.raises(GroupFullError):
        orchestrator.join_group(group.invite_code, make_family("p3"))
