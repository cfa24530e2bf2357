"""
API router. Calls application only. No business logic.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends

from schoolpool.api.dependencies import get_services, to_http
from schoolpool.api.schemas import (
    ArchiveGroupRequest,
    BreakdownSchema,
    CancelRequest,
    ConflictSchema,
    FamiliesRequest,
    FamilySchema,
    FormGroupRequest,
    GroupSchema,
    HealthSchema,
    InvitationResponseRequest,
    InvitationSchema,
    JoinGroupRequest,
    MatchSchema,
    MemberSchema,
    PickupPointSchema,
    ProposalRequest,
    ProposalSchema,
    RankRequest,
    RankResponse,
    RecommendationSchema,
    RiskAnalysisSchema,
    RiskRequest,
    SequenceRequest,
    SequenceResponse,
    SwipeRequest,
    VoteRequest,
    VoteSchema,
)
from schoolpool.application.container import Services
from schoolpool.core.matching_engine.compatibility import (
    estimate_daily_savings,
    estimate_weekly_co2_kg,
    match_quality,
)
from schoolpool.core.routing_engine.pickup_sequencer import route_distance_m
from schoolpool.domain.errors import SchoolPoolError, ValidationError
from schoolpool.domain.geo import distance_m, polyline_length_m
from schoolpool.domain.models import (
    CarpoolGroup,
    Coordinate,
    FamilyProfile,
    LocationFix,
    PickupPoint,
    ProposalPriority,
    RouteGeometry,
    RouteRiskAnalysis,
    ScheduleChangeProposal,
    SearchPreferences,
    VoteChoice,
)
from schoolpool.infrastructure.family_loader import format_minutes, load_family, parse_time_to_minutes
from schoolpool.infrastructure.providers import accept_location_fix

router = APIRouter()


# --- mapping ---


def _family(schema: FamilySchema) -> FamilyProfile:
    return load_family(schema.model_dump())


def _choice(value: str, enum_cls, label: str):
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown {label}: {value!r}")


def _pickup_schema(p: PickupPoint) -> PickupPointSchema:
    return PickupPointSchema(
        family_id=p.family_id,
        lat=p.coordinate.lat,
        lng=p.coordinate.lng,
        sequence_order=p.sequence_order,
        estimated_time=p.estimated_time,
    )


def _analysis_schema(a: RouteRiskAnalysis) -> RiskAnalysisSchema:
    return RiskAnalysisSchema(
        overall_risk=a.overall_risk,
        risk_level=a.risk_level.value,
        acceptable=a.acceptable,
        school_zone_coverage_pct=a.factors.school_zone_coverage_pct,
        road_type_contribution=a.factors.road_type_contribution,
        traffic_light_reduction=a.factors.traffic_light_reduction,
        accident_penalty=a.factors.accident_penalty,
        recommendations=[
            RecommendationSchema(
                priority=r.priority.value,
                title=r.title,
                description=r.description,
                action_required=r.action_required,
            )
            for r in a.recommendations
        ],
        distance_m=a.route.distance_m,
        duration_s=a.route.duration_s,
        degraded=a.degraded,
        data_as_of=a.data_as_of,
    )


def _group_schema(g: CarpoolGroup) -> GroupSchema:
    return GroupSchema(
        group_id=g.group_id,
        name=g.name,
        admin_id=g.admin_id,
        school_id=g.school_id,
        departure_time=format_minutes(g.departure_min),
        status=g.status.value,
        invite_code=g.invite_code,
        current_driver_id=g.current_driver_id,
        members=[
            MemberSchema(family_id=m.family_id, role=m.role.value, contribution_score=m.contribution_score)
            for m in g.members
        ],
        pickup_sequence=[_pickup_schema(p) for p in g.pickup_sequence],
        route_analysis=_analysis_schema(g.route_analysis) if g.route_analysis else None,
    )


def _proposal_schema(p: ScheduleChangeProposal) -> ProposalSchema:
    return ProposalSchema(
        proposal_id=p.proposal_id,
        group_id=p.group_id,
        proposer_id=p.proposer_id,
        current_time=p.current_time,
        proposed_time=p.proposed_time,
        reason=p.reason,
        priority=p.priority.value,
        status=p.status.value,
        votes_required=p.votes_required,
        votes=[
            VoteSchema(voter_id=v.voter_id, choice=v.choice.value, cast_at=v.cast_at, comment=v.comment)
            for v in p.votes
        ],
        approval_percentage=p.approval_percentage,
        detected_conflicts=[
            ConflictSchema(
                conflict_type=c.conflict_type.value,
                severity=c.severity.value,
                description=c.description,
                affected_members=list(c.affected_members),
                suggested_resolution=c.suggested_resolution,
            )
            for c in p.detected_conflicts
        ],
        conflict_severity=p.conflict_severity.value,
        conflict_detection_degraded=p.conflict_detection_degraded,
        alternatives=list(p.alternatives),
        requires_immediate_action=p.requires_immediate_action,
        created_at=p.created_at,
        expires_at=p.expires_at,
    )


def _known_family(services: Services, family_id: str) -> FamilyProfile:
    family = services.directory.get(family_id)
    if family is None:
        raise ValidationError(f"Family {family_id} not found", recovery="Register the family first")
    return family


# --- endpoints ---


@router.get("/health", response_model=HealthSchema)
def get_health(services: Services = Depends(get_services)) -> HealthSchema:
    snapshot = services.geo_cache.current
    return HealthSchema(
        status="ok",
        geo_data_stale=snapshot.stale or snapshot.is_empty,
        geo_data_as_of=snapshot.fetched_at,
        scheduler=services.jobs.status(),
    )


@router.post("/families")
def post_families(request: FamiliesRequest, services: Services = Depends(get_services)) -> dict:
    """POST /families. Registers or replaces families in the directory."""
    try:
        families = [_family(f) for f in request.families]
    except SchoolPoolError as e:
        raise to_http(e)
    for f in families:
        services.directory.add(f)
    return {"registered": len(families)}


@router.post("/matches/rank", response_model=RankResponse)
def post_rank(request: RankRequest, services: Services = Depends(get_services)) -> RankResponse:
    """
    POST /matches/rank
    Ranks explicit candidates, or directory families around the seeker when none are sent.
    A current location with good accuracy replaces the seeker's home as search centre.
    """
    try:
        seeker = _family(request.seeker)
        prefs_in = request.preferences
        departure: Optional[float] = None
        if prefs_in.departure_time is not None:
            departure = parse_time_to_minutes(prefs_in.departure_time)
            if departure is None:
                raise ValidationError(f"Invalid departure time: {prefs_in.departure_time!r}")
        prefs = SearchPreferences(
            search_radius_m=prefs_in.search_radius_m,
            required_seats=prefs_in.required_seats,
            prioritize_safety=prefs_in.prioritize_safety,
            departure_min=departure,
            flexibility_min=prefs_in.flexibility_min,
        )
        if request.candidates is not None:
            candidates = [_family(c) for c in request.candidates]
        else:
            center = seeker.home
            if request.current_location is not None:
                fix = LocationFix(
                    coordinate=Coordinate(lat=request.current_location.lat, lng=request.current_location.lng),
                    horizontal_accuracy_m=request.current_location.horizontal_accuracy_m,
                )
                center = accept_location_fix(fix) or seeker.home
            candidates = services.directory.families_within(center, prefs.search_radius_m)
        results = services.scorer.rank(seeker, candidates, prefs)
    except SchoolPoolError as e:
        raise to_http(e)

    by_id = {c.family_id: c for c in candidates}
    matches = []
    for r in results:
        to_school = distance_m(by_id[r.candidate_id].home, by_id[r.candidate_id].school)
        matches.append(MatchSchema(
            candidate_id=r.candidate_id,
            score=r.score,
            match_quality=match_quality(r.score),
            breakdown=BreakdownSchema(**asdict(r.breakdown)),
            estimated_daily_savings=estimate_daily_savings(to_school),
            estimated_weekly_co2_kg=estimate_weekly_co2_kg(to_school),
        ))
    return RankResponse(seeker_id=seeker.family_id, matches=matches)


@router.post("/matches/swipe")
def post_swipe(request: SwipeRequest, services: Services = Depends(get_services)) -> dict:
    services.scorer.record_swipe(request.seeker_id, request.candidate_id)
    return {"seeker_id": request.seeker_id, "swiped": sorted(services.scorer.swiped(request.seeker_id))}


@router.post("/routes/sequence", response_model=SequenceResponse)
def post_sequence(request: SequenceRequest, services: Services = Depends(get_services)) -> SequenceResponse:
    try:
        destination = Coordinate(lat=request.destination.lat, lng=request.destination.lng)
        pickups = services.sequencer.sequence(
            [(p.family_id, Coordinate(lat=p.lat, lng=p.lng)) for p in request.points],
            destination,
            base_time=request.base_time,
        )
    except SchoolPoolError as e:
        raise to_http(e)
    return SequenceResponse(
        pickups=[_pickup_schema(p) for p in pickups],
        route_distance_m=route_distance_m(pickups, destination),
    )


@router.post("/routes/risk", response_model=RiskAnalysisSchema)
def post_route_risk(request: RiskRequest, services: Services = Depends(get_services)) -> RiskAnalysisSchema:
    try:
        coords = [Coordinate(lat=c.lat, lng=c.lng) for c in request.coordinates]
        if len(coords) < 2:
            raise ValidationError("A route needs at least two coordinates")
        if any(not c.is_valid for c in coords):
            raise ValidationError("Invalid route coordinate")
        route = RouteGeometry(
            coordinates=tuple(coords),
            distance_m=request.distance_m if request.distance_m is not None else polyline_length_m(coords),
            duration_s=request.duration_s,
        )
        analysis = services.route_service.score(route)
    except SchoolPoolError as e:
        raise to_http(e)
    return _analysis_schema(analysis)


@router.post("/groups", response_model=GroupSchema)
def post_group(request: FormGroupRequest, services: Services = Depends(get_services)) -> GroupSchema:
    try:
        seeker = _known_family(services, request.seeker_id)
        matched = [_known_family(services, fid) for fid in request.matched_ids]
        group = services.group_formation.form_group(
            seeker, matched, name=request.name, backup_driver_ids=request.backup_driver_ids
        )
    except SchoolPoolError as e:
        raise to_http(e)
    return _group_schema(group)


@router.post("/groups/join", response_model=GroupSchema)
def post_join_group(request: JoinGroupRequest, services: Services = Depends(get_services)) -> GroupSchema:
    try:
        family = _known_family(services, request.family_id)
        group = services.group_formation.join_group(request.invite_code, family)
    except SchoolPoolError as e:
        raise to_http(e)
    return _group_schema(group)


@router.post("/groups/{group_id}/archive", response_model=GroupSchema)
def post_archive_group(
    group_id: str,
    request: ArchiveGroupRequest,
    services: Services = Depends(get_services),
) -> GroupSchema:
    try:
        group = services.group_formation.archive_group(group_id, requested_by=request.requested_by)
    except SchoolPoolError as e:
        raise to_http(e)
    return _group_schema(group)


@router.post("/invitations/{invitation_id}/respond", response_model=InvitationSchema)
def post_invitation_response(
    invitation_id: str,
    request: InvitationResponseRequest,
    services: Services = Depends(get_services),
) -> InvitationSchema:
    try:
        inv = services.group_formation.respond_to_invitation(invitation_id, request.accept)
    except SchoolPoolError as e:
        raise to_http(e)
    return InvitationSchema(
        invitation_id=inv.invitation_id,
        group_id=inv.group_id,
        invitee_id=inv.invitee_id,
        status=inv.status.value,
        expires_at=inv.expires_at,
    )


@router.get("/groups/{group_id}/proposals", response_model=list[ProposalSchema])
def get_group_proposals(group_id: str, services: Services = Depends(get_services)) -> list[ProposalSchema]:
    return [_proposal_schema(p) for p in services.resolver.proposals_for_group(group_id)]


@router.post("/proposals", response_model=ProposalSchema)
def post_proposal(request: ProposalRequest, services: Services = Depends(get_services)) -> ProposalSchema:
    try:
        proposal = services.resolver.propose_change(
            group_id=request.group_id,
            proposer_id=request.proposer_id,
            current_time=request.current_time,
            proposed_time=request.proposed_time,
            reason=request.reason,
            priority=_choice(request.priority, ProposalPriority, "priority"),
            votes_required=request.votes_required,
        )
    except SchoolPoolError as e:
        raise to_http(e)
    return _proposal_schema(proposal)


@router.post("/proposals/{proposal_id}/votes", response_model=ProposalSchema)
def post_vote(
    proposal_id: str,
    request: VoteRequest,
    services: Services = Depends(get_services),
) -> ProposalSchema:
    try:
        proposal = services.resolver.cast_vote(
            proposal_id,
            request.voter_id,
            _choice(request.choice, VoteChoice, "vote choice"),
            comment=request.comment,
        )
    except SchoolPoolError as e:
        raise to_http(e)
    return _proposal_schema(proposal)


@router.post("/proposals/{proposal_id}/cancel", response_model=ProposalSchema)
def post_cancel(
    proposal_id: str,
    request: CancelRequest,
    services: Services = Depends(get_services),
) -> ProposalSchema:
    try:
        proposal = services.resolver.cancel_proposal(proposal_id, request.requested_by)
    except SchoolPoolError as e:
        raise to_http(e)
    return _proposal_schema(proposal)
