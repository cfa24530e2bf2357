"""
Domain models. Dataclasses and enums only. No FastAPI, no I/O.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


# --- Families ---


class VerificationTier(str, Enum):
    UNVERIFIED = "unverified"
    PHONE_VERIFIED = "phone_verified"
    DOCUMENTS_VERIFIED = "documents_verified"
    VERIFIED = "verified"

    @property
    def trust_multiplier(self) -> float:
        return _TRUST_MULTIPLIERS[self]


_TRUST_MULTIPLIERS = {
    VerificationTier.UNVERIFIED: 0.5,
    VerificationTier.PHONE_VERIFIED: 0.7,
    VerificationTier.DOCUMENTS_VERIFIED: 0.9,
    VerificationTier.VERIFIED: 1.0,
}


class BackgroundCheckState(str, Enum):
    NOT_REQUESTED = "not_requested"
    PENDING = "pending"
    CLEARED = "cleared"
    FLAGGED = "flagged"
    FAILED = "failed"

    @property
    def is_eligible(self) -> bool:
        return self not in (BackgroundCheckState.FLAGGED, BackgroundCheckState.FAILED)


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    @property
    def is_valid(self) -> bool:
        return -90.0 <= self.lat <= 90.0 and -180.0 <= self.lng <= 180.0


@dataclass(frozen=True)
class FamilyProfile:
    """Snapshot of a family as seen by one matching run. Owned by the family directory."""
    family_id: str
    home: Coordinate
    school_id: str
    school: Coordinate
    departure_min: float  # minutes since midnight
    flexibility_min: float = 15.0  # +/- window
    driver_available: bool = False
    available_seats: int = 0
    verification: VerificationTier = VerificationTier.UNVERIFIED
    average_rating: float = 0.0
    rating_count: int = 0
    background_check: BackgroundCheckState = BackgroundCheckState.NOT_REQUESTED
    display_name: str = ""
    school_name: str = ""

    @property
    def is_high_trust(self) -> bool:
        return (
            self.verification == VerificationTier.VERIFIED
            and self.average_rating >= 4.5
            and self.rating_count >= 10
        )

    @property
    def can_drive(self) -> bool:
        return self.driver_available and self.available_seats > 0


@dataclass(frozen=True)
class SearchPreferences:
    search_radius_m: float = 3000.0
    required_seats: int = 1
    prioritize_safety: bool = True
    # None -> use the seeker's own profile values
    departure_min: Optional[float] = None
    flexibility_min: Optional[float] = None


@dataclass(frozen=True)
class CompatibilityBreakdown:
    distance_m: float
    distance_score: float
    schedule_score: float
    trust_score: float
    capacity_score: float
    weighted_score: float  # before the safety multiplier, always in [0, 1]
    safety_multiplier: float


@dataclass(frozen=True)
class CompatibilityResult:
    candidate_id: str
    score: float
    breakdown: CompatibilityBreakdown


# --- Safety / routes ---


@dataclass(frozen=True)
class SchoolLocation:
    school_id: str
    name: str
    location: Coordinate


@dataclass(frozen=True)
class AccidentLocation:
    accident_id: str
    location: Coordinate
    severity: str = ""
    occurred_at: Optional[datetime] = None


@dataclass(frozen=True)
class GeoRiskSnapshot:
    """School and accident locations as of fetched_at. stale=True after a failed refresh."""
    schools: tuple[SchoolLocation, ...] = ()
    accidents: tuple[AccidentLocation, ...] = ()
    fetched_at: Optional[datetime] = None
    stale: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.schools and not self.accidents


@dataclass(frozen=True)
class RouteGeometry:
    """Ordered polyline with total distance (m) and expected duration (s)."""
    coordinates: tuple[Coordinate, ...]
    distance_m: float
    duration_s: float


class RecommendationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class RiskRecommendation:
    priority: RecommendationPriority
    title: str
    description: str
    action_required: bool


@dataclass(frozen=True)
class RiskFactors:
    school_zone_coverage_pct: float = 0.0
    road_type_contribution: float = 0.0
    traffic_light_reduction: float = 0.0
    accident_penalty: float = 0.0


@dataclass(frozen=True)
class RouteRiskAnalysis:
    route: RouteGeometry
    overall_risk: float
    factors: RiskFactors
    acceptable: bool
    recommendations: tuple[RiskRecommendation, ...]
    risk_level: RiskLevel
    degraded: bool = False
    data_as_of: Optional[datetime] = None


@dataclass(frozen=True)
class RouteAnalysisResult:
    """Safest route first; the rest ranked by ascending risk."""
    primary: RouteRiskAnalysis
    alternatives: tuple[RouteRiskAnalysis, ...] = ()
    degraded: bool = False


# --- Groups ---


@dataclass(frozen=True)
class PickupPoint:
    family_id: str
    coordinate: Coordinate
    sequence_order: int
    estimated_time: Optional[datetime] = None


class MemberRole(str, Enum):
    ADMIN = "admin"
    DRIVER = "driver"
    PASSENGER = "passenger"
    BACKUP = "backup"


class GroupStatus(str, Enum):
    FORMING = "forming"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class GroupMember:
    family_id: str
    role: MemberRole
    contribution_score: float = 5.0
    joined_at: Optional[datetime] = None


@dataclass(frozen=True)
class CarpoolGroup:
    group_id: str
    name: str
    admin_id: str
    members: tuple[GroupMember, ...]
    school_id: str
    departure_min: float
    pickup_sequence: tuple[PickupPoint, ...]
    route_analysis: Optional[RouteRiskAnalysis]
    status: GroupStatus
    invite_code: str
    created_at: datetime
    max_members: int = 6
    current_driver_id: Optional[str] = None
    school_location: Optional[Coordinate] = None
    driver_seats: tuple[tuple[str, int], ...] = ()  # (family_id, seats) of capable drivers

    @property
    def member_ids(self) -> list[str]:
        return [m.family_id for m in self.members]

    @property
    def seat_capacity(self) -> int:
        return max((s for _, s in self.driver_seats), default=0)

    @property
    def allows_new_members(self) -> bool:
        return self.status != GroupStatus.ARCHIVED and len(self.members) < self.max_members

    def member(self, family_id: str) -> Optional[GroupMember]:
        return next((m for m in self.members if m.family_id == family_id), None)


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


@dataclass(frozen=True)
class GroupInvitation:
    invitation_id: str
    group_id: str
    invitee_id: str
    inviter_id: str
    sent_at: datetime
    expires_at: datetime
    status: InvitationStatus = InvitationStatus.PENDING


# --- Schedule coordination ---


class ProposalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self != ProposalStatus.PENDING


class ProposalPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class VoteChoice(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    ABSTAIN = "abstain"


class ConflictType(str, Enum):
    CALENDAR = "calendar_conflict"


class ConflictSeverity(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [
    ConflictSeverity.NONE,
    ConflictSeverity.LOW,
    ConflictSeverity.MEDIUM,
    ConflictSeverity.HIGH,
    ConflictSeverity.CRITICAL,
]


@dataclass(frozen=True)
class CalendarEvent:
    title: str
    start: datetime
    end: datetime
    all_day: bool = False
    member_id: Optional[str] = None


@dataclass(frozen=True)
class ScheduleConflict:
    conflict_type: ConflictType
    severity: ConflictSeverity
    description: str
    affected_members: tuple[str, ...] = ()
    suggested_resolution: Optional[str] = None


@dataclass(frozen=True)
class ConflictDetectionResult:
    conflicts: tuple[ScheduleConflict, ...] = ()
    degraded: bool = False


@dataclass(frozen=True)
class ScheduleVote:
    voter_id: str
    choice: VoteChoice
    cast_at: datetime
    comment: Optional[str] = None


@dataclass(frozen=True)
class ScheduleChangeProposal:
    proposal_id: str
    group_id: str
    proposer_id: str
    current_time: datetime
    proposed_time: datetime
    reason: str
    priority: ProposalPriority
    votes_required: int
    created_at: datetime
    expires_at: datetime
    votes: tuple[ScheduleVote, ...] = ()
    detected_conflicts: tuple[ScheduleConflict, ...] = ()
    alternatives: tuple[datetime, ...] = ()
    conflict_severity: ConflictSeverity = ConflictSeverity.NONE
    conflict_detection_degraded: bool = False
    status: ProposalStatus = ProposalStatus.PENDING
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def approve_count(self) -> int:
        return sum(1 for v in self.votes if v.choice == VoteChoice.APPROVE)

    @property
    def reject_count(self) -> int:
        return sum(1 for v in self.votes if v.choice == VoteChoice.REJECT)

    @property
    def approval_percentage(self) -> float:
        if not self.votes:
            return 0.0
        return self.approve_count / len(self.votes) * 100.0

    @property
    def requires_immediate_action(self) -> bool:
        return (
            self.priority == ProposalPriority.URGENT
            or self.conflict_severity == ConflictSeverity.CRITICAL
        )

    def vote_of(self, voter_id: str) -> Optional[ScheduleVote]:
        return next((v for v in self.votes if v.voter_id == voter_id), None)


# --- Location fixes ---


@dataclass(frozen=True)
class LocationFix:
    coordinate: Coordinate
    horizontal_accuracy_m: float
    taken_at: Optional[datetime] = None

