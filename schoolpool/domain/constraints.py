"""
Domain parameters. Frozen dataclasses only. No FastAPI, no external deps beyond dataclasses/typing.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class MatchingConfig:
    max_search_radius_m: float = 5000.0
    min_compatibility_score: float = 0.3
    weight_distance: float = 0.4
    weight_schedule: float = 0.3
    weight_trust: float = 0.2
    weight_capacity: float = 0.1
    # Trust
    no_ratings_score: float = 0.5  # rating sub-score when a family has zero ratings
    background_cleared_bonus: float = 0.2
    # Capacity
    capacity_base_score: float = 0.8
    capacity_extra_seat_bonus: float = 0.1
    # Safety multiplier bonuses
    high_trust_bonus: float = 0.3
    verified_bonus: float = 0.2
    cleared_bonus: float = 0.1
    top_rated_bonus: float = 0.1
    top_rating: float = 4.5
    top_rating_min_count: int = 10
    max_workers: int = 8


@dataclass(frozen=True)
class RiskScoringConfig:
    base_risk: float = 5.0
    max_acceptable_risk: float = 3.0
    sample_spacing_m: float = 100.0
    school_zone_radius_m: float = 500.0
    school_zone_weight: float = 2.0  # full coverage removes this much risk
    residential_speed_kmh: float = 40.0
    arterial_speed_kmh: float = 60.0
    residential_contribution: float = -1.5
    mixed_contribution: float = 1.2
    arterial_contribution: float = 1.0
    traffic_light_radius_m: float = 200.0
    traffic_light_max_reduction: float = 1.3
    accident_radius_m: float = 100.0
    accident_unit_penalty: float = 0.1
    accident_max_penalty: float = 3.0
    # Recommendation thresholds
    low_coverage_pct: float = 30.0
    accident_warning_penalty: float = 1.0
    high_speed_contribution: float = 2.0


@dataclass(frozen=True)
class GeoDataConfig:
    max_age_min: float = 60.0
    failure_cooldown_min: float = 5.0  # no new refresh attempt within this window after a failure


@dataclass(frozen=True)
class SequencingConfig:
    minutes_per_stop: float = 3.0
    fallback_speed_kmh: float = 50.0  # mixed band, no residential bonus for unknown roads
    max_alternative_routes: int = 3


@dataclass(frozen=True)
class ScheduleConfig:
    search_window_h: float = 2.0
    conflict_buffer_min: float = 30.0
    high_severity_h: float = 4.0
    medium_severity_h: float = 2.0
    alternative_offsets_min: tuple[int, ...] = (-15, 15, -30, 30, -45, 45, -60, 60)
    proposal_lifetime_h: float = 24.0
    approval_threshold_pct: float = 50.0
    default_votes_required: int = 3
    sweep_interval_s: float = 300.0
    recent_changes_limit: int = 10


@dataclass(frozen=True)
class GroupFormationConfig:
    max_members: int = 6
    invitation_ttl_days: int = 7
    require_acceptable_route: bool = False
    contribution_base: float = 5.0
    contribution_driver_bonus: float = 2.0
    contribution_high_trust_bonus: float = 1.0
    contribution_rating_bonus: float = 0.5
    contribution_cap: float = 10.0
    invite_code_length: int = 6


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 0.5  # delay before retry k is base_delay_s * k
    timeout_s: float = 10.0
