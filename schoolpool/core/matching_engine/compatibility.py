"""
Family compatibility. Weighted distance / schedule / trust / capacity sub-scores,
safety multiplier, parallel ranking. Pure scoring, no I/O.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Set

from schoolpool.domain.constraints import MatchingConfig
from schoolpool.domain.errors import ValidationError
from schoolpool.domain.geo import distance_m
from schoolpool.domain.models import (
    BackgroundCheckState,
    CompatibilityBreakdown,
    CompatibilityResult,
    FamilyProfile,
    SearchPreferences,
    VerificationTier,
)

FUEL_COST_PER_KM = 0.15
SHARING_FACTOR = 0.5
CO2_KG_PER_SAVED_UNIT = 0.25
SCHOOL_DAYS_PER_WEEK = 5


def validate_profile(profile: FamilyProfile) -> None:
    if not profile.home.is_valid:
        raise ValidationError(f"Family {profile.family_id} has an invalid home coordinate")
    if not profile.school.is_valid:
        raise ValidationError(f"Family {profile.family_id} has an invalid school coordinate")
    if profile.flexibility_min < 0:
        raise ValidationError(f"Family {profile.family_id} has a negative flexibility window")
    if profile.available_seats < 0:
        raise ValidationError(f"Family {profile.family_id} has a negative seat count")
    if profile.rating_count < 0:
        raise ValidationError(f"Family {profile.family_id} has a negative rating count")
    if not 0.0 <= profile.average_rating <= 5.0:
        raise ValidationError(f"Family {profile.family_id} has an average rating outside 0-5")


def _validate_prefs(prefs: SearchPreferences) -> None:
    if prefs.search_radius_m <= 0:
        raise ValidationError("Search radius must be positive")
    if prefs.required_seats < 0:
        raise ValidationError("Required seats cannot be negative")
    if prefs.flexibility_min is not None and prefs.flexibility_min < 0:
        raise ValidationError("Flexibility window cannot be negative")


def distance_score(d_m: float, config: MatchingConfig) -> float:
    return max(0.0, 1.0 - d_m / config.max_search_radius_m)


def schedule_score(seeker_min: float, seeker_flex: float, cand_min: float, cand_flex: float) -> float:
    delta = abs(seeker_min - cand_min)
    window = seeker_flex + cand_flex
    if window <= 0:
        return 1.0 if delta == 0 else 0.0
    if delta <= window:
        return 1.0 - delta / window
    return 0.0


def trust_score(candidate: FamilyProfile, config: MatchingConfig) -> float:
    if candidate.rating_count > 0:
        rating_norm = candidate.average_rating / 5.0
    else:
        rating_norm = config.no_ratings_score
    s = (candidate.verification.trust_multiplier + rating_norm) / 2.0
    if candidate.background_check == BackgroundCheckState.CLEARED:
        s += config.background_cleared_bonus
    return min(1.0, s)


def capacity_score(candidate: FamilyProfile, required_seats: int, config: MatchingConfig) -> float:
    if not candidate.driver_available or candidate.available_seats < required_seats:
        return 0.0
    if candidate.available_seats <= 0:
        return 0.0
    extra = candidate.available_seats - required_seats
    return min(1.0, config.capacity_base_score + config.capacity_extra_seat_bonus * extra)


def safety_multiplier(candidate: FamilyProfile, config: MatchingConfig) -> float:
    m = 1.0
    if candidate.is_high_trust:
        m += config.high_trust_bonus
    if candidate.verification == VerificationTier.VERIFIED:
        m += config.verified_bonus
    if candidate.background_check == BackgroundCheckState.CLEARED:
        m += config.cleared_bonus
    if (
        candidate.average_rating >= config.top_rating
        and candidate.rating_count >= config.top_rating_min_count
    ):
        m += config.top_rated_bonus
    return m


class CompatibilityScorer:
    """
    Scores seeker/candidate pairs and ranks candidate pools.

    score() is a pure function of its inputs. rank() additionally skips
    candidates the seeker has already swiped on (record_swipe).
    """

    def __init__(self, config: Optional[MatchingConfig] = None):
        self.config = config or MatchingConfig()
        self._swiped: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def score(
        self,
        seeker: FamilyProfile,
        candidate: FamilyProfile,
        prefs: Optional[SearchPreferences] = None,
    ) -> CompatibilityResult:
        prefs = prefs or SearchPreferences()
        validate_profile(seeker)
        validate_profile(candidate)
        _validate_prefs(prefs)
        return self._score(seeker, candidate, prefs)

    def _score(
        self, seeker: FamilyProfile, candidate: FamilyProfile, prefs: SearchPreferences
    ) -> CompatibilityResult:
        cfg = self.config
        d = distance_m(seeker.home, candidate.home)
        seeker_min = prefs.departure_min if prefs.departure_min is not None else seeker.departure_min
        seeker_flex = prefs.flexibility_min if prefs.flexibility_min is not None else seeker.flexibility_min

        s_dist = distance_score(d, cfg)
        s_sched = schedule_score(seeker_min, seeker_flex, candidate.departure_min, candidate.flexibility_min)
        s_trust = trust_score(candidate, cfg)
        s_cap = capacity_score(candidate, prefs.required_seats, cfg)
        weighted = (
            cfg.weight_distance * s_dist
            + cfg.weight_schedule * s_sched
            + cfg.weight_trust * s_trust
            + cfg.weight_capacity * s_cap
        )
        mult = safety_multiplier(candidate, cfg) if prefs.prioritize_safety else 1.0
        return CompatibilityResult(
            candidate_id=candidate.family_id,
            score=weighted * mult,
            breakdown=CompatibilityBreakdown(
                distance_m=d,
                distance_score=s_dist,
                schedule_score=s_sched,
                trust_score=s_trust,
                capacity_score=s_cap,
                weighted_score=weighted,
                safety_multiplier=mult,
            ),
        )

    def record_swipe(self, seeker_id: str, candidate_id: str) -> None:
        with self._lock:
            self._swiped.setdefault(seeker_id, set()).add(candidate_id)

    def swiped(self, seeker_id: str) -> Set[str]:
        with self._lock:
            return set(self._swiped.get(seeker_id, ()))

    def rank(
        self,
        seeker: FamilyProfile,
        candidates: Iterable[FamilyProfile],
        prefs: Optional[SearchPreferences] = None,
    ) -> List[CompatibilityResult]:
        prefs = prefs or SearchPreferences()
        validate_profile(seeker)
        _validate_prefs(prefs)
        excluded = self.swiped(seeker.family_id)
        pool = [
            c for c in candidates
            if c.family_id != seeker.family_id and c.family_id not in excluded
        ]
        for c in pool:
            validate_profile(c)
        if not pool:
            return []

        radius = min(prefs.search_radius_m, self.config.max_search_radius_m)
        workers = max(1, min(self.config.max_workers, len(pool)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(lambda c: self._score(seeker, c, prefs), pool))

        kept = [
            r for r in results
            if r.breakdown.distance_m <= radius and r.score >= self.config.min_compatibility_score
        ]
        kept.sort(key=lambda r: (-r.score, r.candidate_id))
        return kept


def match_quality(score: float) -> str:
    if score >= 0.8:
        return "excellent"
    if score >= 0.6:
        return "good"
    if score >= 0.4:
        return "fair"
    if score >= 0.3:
        return "marginal"
    return "poor"


def estimate_daily_savings(distance_to_school_m: float) -> float:
    """Fuel cost saved per school day by sharing a round trip."""
    round_trip_km = 2.0 * distance_to_school_m / 1000.0
    return round_trip_km * FUEL_COST_PER_KM * SHARING_FACTOR


def estimate_weekly_co2_kg(distance_to_school_m: float) -> float:
    weekly = estimate_daily_savings(distance_to_school_m) * SCHOOL_DAYS_PER_WEEK
    return weekly * CO2_KG_PER_SAVED_UNIT
