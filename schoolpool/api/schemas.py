"""
API request/response schemas. Pydantic only in api layer.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class CoordinateSchema(BaseModel):
    lat: float
    lng: float


class FamilySchema(BaseModel):
    family_id: str
    display_name: str = ""
    home_lat: float
    home_lng: float
    school_id: str
    school_name: str = ""
    school_lat: float
    school_lng: float
    departure_time: str | None = None  # "HH:MM"
    departure_min: float | None = None  # minutes since midnight; wins over departure_time
    flexibility_min: float = 15.0
    driver_available: bool = False
    available_seats: int = 0
    verification: str = "unverified"
    average_rating: float = Field(default=0.0, ge=0.0, le=5.0)
    rating_count: int = Field(default=0, ge=0)
    background_check: str = "not_requested"


class FamiliesRequest(BaseModel):
    families: list[FamilySchema]


class LocationFixSchema(BaseModel):
    lat: float
    lng: float
    horizontal_accuracy_m: float


class PreferencesSchema(BaseModel):
    search_radius_m: float = 3000.0
    required_seats: int = 1
    prioritize_safety: bool = True
    departure_time: str | None = None
    flexibility_min: float | None = None


class RankRequest(BaseModel):
    seeker: FamilySchema
    # None -> candidates come from the family directory around the seeker
    candidates: list[FamilySchema] | None = None
    preferences: PreferencesSchema = Field(default_factory=PreferencesSchema)
    current_location: LocationFixSchema | None = None


class BreakdownSchema(BaseModel):
    distance_m: float
    distance_score: float
    schedule_score: float
    trust_score: float
    capacity_score: float
    weighted_score: float
    safety_multiplier: float


class MatchSchema(BaseModel):
    candidate_id: str
    score: float
    match_quality: str
    breakdown: BreakdownSchema
    estimated_daily_savings: float
    estimated_weekly_co2_kg: float


class RankResponse(BaseModel):
    seeker_id: str
    matches: list[MatchSchema]


class SwipeRequest(BaseModel):
    seeker_id: str
    candidate_id: str


class PickupInputSchema(BaseModel):
    family_id: str
    lat: float
    lng: float


class SequenceRequest(BaseModel):
    points: list[PickupInputSchema]
    destination: CoordinateSchema
    base_time: datetime | None = None


class PickupPointSchema(BaseModel):
    family_id: str
    lat: float
    lng: float
    sequence_order: int
    estimated_time: datetime | None = None


class SequenceResponse(BaseModel):
    pickups: list[PickupPointSchema]
    route_distance_m: float


class RiskRequest(BaseModel):
    coordinates: list[CoordinateSchema]
    distance_m: float | None = None  # None -> polyline length
    duration_s: float


class RecommendationSchema(BaseModel):
    priority: str
    title: str
    description: str
    action_required: bool


class RiskAnalysisSchema(BaseModel):
    overall_risk: float
    risk_level: str
    acceptable: bool
    school_zone_coverage_pct: float
    road_type_contribution: float
    traffic_light_reduction: float
    accident_penalty: float
    recommendations: list[RecommendationSchema]
    distance_m: float
    duration_s: float
    degraded: bool
    data_as_of: datetime | None = None


class FormGroupRequest(BaseModel):
    seeker_id: str
    matched_ids: list[str]
    name: str | None = None
    backup_driver_ids: list[str] = []


class MemberSchema(BaseModel):
    family_id: str
    role: str
    contribution_score: float


class GroupSchema(BaseModel):
    group_id: str
    name: str
    admin_id: str
    school_id: str
    departure_time: str
    status: str
    invite_code: str
    current_driver_id: str | None = None
    members: list[MemberSchema]
    pickup_sequence: list[PickupPointSchema]
    route_analysis: RiskAnalysisSchema | None = None


class JoinGroupRequest(BaseModel):
    invite_code: str
    family_id: str


class ArchiveGroupRequest(BaseModel):
    requested_by: str | None = None


class InvitationResponseRequest(BaseModel):
    accept: bool


class InvitationSchema(BaseModel):
    invitation_id: str
    group_id: str
    invitee_id: str
    status: str
    expires_at: datetime


class ProposalRequest(BaseModel):
    group_id: str
    proposer_id: str
    current_time: datetime
    proposed_time: datetime
    reason: str = ""
    priority: str = "normal"
    votes_required: int | None = None


class VoteRequest(BaseModel):
    voter_id: str
    choice: str  # approve | reject | abstain
    comment: str | None = None


class CancelRequest(BaseModel):
    requested_by: str


class ConflictSchema(BaseModel):
    conflict_type: str
    severity: str
    description: str
    affected_members: list[str]
    suggested_resolution: str | None = None


class VoteSchema(BaseModel):
    voter_id: str
    choice: str
    cast_at: datetime
    comment: str | None = None


class ProposalSchema(BaseModel):
    proposal_id: str
    group_id: str
    proposer_id: str
    current_time: datetime
    proposed_time: datetime
    reason: str
    priority: str
    status: str
    votes_required: int
    votes: list[VoteSchema]
    approval_percentage: float
    detected_conflicts: list[ConflictSchema]
    conflict_severity: str
    conflict_detection_degraded: bool
    alternatives: list[datetime]
    requires_immediate_action: bool
    created_at: datetime
    expires_at: datetime


class HealthSchema(BaseModel):
    status: str
    geo_data_stale: bool
    geo_data_as_of: datetime | None = None
    scheduler: dict
