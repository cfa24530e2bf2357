"""
Route safety risk. Densified polyline vs school zones and accident history (BallTree, haversine).
Pure scoring on a geodata snapshot. Never raises because of missing geodata.
"""

from typing import List, Optional

import numpy as np
from sklearn.neighbors import BallTree

from schoolpool.domain.constraints import RiskScoringConfig
from schoolpool.domain.geo import EARTH_RADIUS_M, densify, to_radians
from schoolpool.domain.models import (
    Coordinate,
    GeoRiskSnapshot,
    RecommendationPriority,
    RiskFactors,
    RiskLevel,
    RiskRecommendation,
    RouteGeometry,
    RouteRiskAnalysis,
)


def risk_level(overall: float) -> RiskLevel:
    if overall <= 1.0:
        return RiskLevel.LOW
    if overall <= 3.0:
        return RiskLevel.MEDIUM
    if overall <= 6.0:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def road_type_contribution(route: RouteGeometry, config: RiskScoringConfig) -> float:
    """Average-speed proxy for road class: residential < 40 km/h <= mixed < 60 km/h <= arterial."""
    if route.duration_s <= 0:
        return config.mixed_contribution
    speed_kmh = (route.distance_m / 1000.0) / (route.duration_s / 3600.0)
    if speed_kmh < config.residential_speed_kmh:
        return config.residential_contribution
    if speed_kmh < config.arterial_speed_kmh:
        return config.mixed_contribution
    return config.arterial_contribution


def _within_mask(tree: Optional[BallTree], samples_rad: np.ndarray, radius_m: float) -> np.ndarray:
    """Boolean per sample: True when any indexed point lies within radius_m."""
    if tree is None or len(samples_rad) == 0:
        return np.zeros(len(samples_rad), dtype=bool)
    counts = tree.query_radius(samples_rad, r=radius_m / EARTH_RADIUS_M, count_only=True)
    return np.asarray(counts) > 0


class _SnapshotIndex:
    """BallTrees over one snapshot's schools and accidents."""

    def __init__(self, snapshot: GeoRiskSnapshot):
        self.snapshot = snapshot
        schools = [s.location for s in snapshot.schools]
        accidents = [a.location for a in snapshot.accidents]
        self.school_tree = BallTree(to_radians(schools), metric="haversine") if schools else None
        self.accident_tree = BallTree(to_radians(accidents), metric="haversine") if accidents else None


class SafetyRiskScorer:
    def __init__(self, config: Optional[RiskScoringConfig] = None):
        self.config = config or RiskScoringConfig()
        self._index: Optional[_SnapshotIndex] = None

    def _index_for(self, snapshot: GeoRiskSnapshot) -> _SnapshotIndex:
        idx = self._index
        if idx is None or idx.snapshot is not snapshot:
            idx = _SnapshotIndex(snapshot)
            self._index = idx
        return idx

    def compute_factors(self, route: RouteGeometry, snapshot: GeoRiskSnapshot) -> RiskFactors:
        cfg = self.config
        samples: List[Coordinate] = densify(list(route.coordinates), cfg.sample_spacing_m)
        road = road_type_contribution(route, cfg)
        if not samples:
            return RiskFactors(road_type_contribution=road)

        idx = self._index_for(snapshot)
        X = to_radians(samples)
        n = len(samples)

        in_zone = _within_mask(idx.school_tree, X, cfg.school_zone_radius_m)
        coverage_pct = float(in_zone.sum()) / n * 100.0

        near_light = _within_mask(idx.school_tree, X, cfg.traffic_light_radius_m)
        traffic = min(
            cfg.traffic_light_max_reduction,
            cfg.traffic_light_max_reduction * float(near_light.sum()) / n,
        )

        accident = 0.0
        if idx.accident_tree is not None:
            hits = idx.accident_tree.query_radius(X, r=cfg.accident_radius_m / EARTH_RADIUS_M)
            distinct = set()
            for h in hits:
                distinct.update(int(i) for i in h)
            accident = min(cfg.accident_max_penalty, cfg.accident_unit_penalty * len(distinct))

        return RiskFactors(
            school_zone_coverage_pct=coverage_pct,
            road_type_contribution=road,
            traffic_light_reduction=traffic,
            accident_penalty=accident,
        )

    def overall_risk(self, factors: RiskFactors) -> float:
        cfg = self.config
        raw = (
            cfg.base_risk
            + factors.road_type_contribution
            - factors.school_zone_coverage_pct * cfg.school_zone_weight / 100.0
            - factors.traffic_light_reduction
            + factors.accident_penalty
        )
        return float(min(10.0, max(0.0, raw)))

    def recommendations(self, overall: float, factors: RiskFactors) -> List[RiskRecommendation]:
        cfg = self.config
        recs: List[RiskRecommendation] = []
        if overall > cfg.max_acceptable_risk:
            recs.append(RiskRecommendation(
                priority=RecommendationPriority.CRITICAL,
                title="Route risk above acceptable threshold",
                description=(
                    f"Overall risk {overall:.1f}/10 exceeds {cfg.max_acceptable_risk:.1f}/10. "
                    "Consider an alternative route."
                ),
                action_required=True,
            ))
        if factors.school_zone_coverage_pct < cfg.low_coverage_pct:
            recs.append(RiskRecommendation(
                priority=RecommendationPriority.MEDIUM,
                title="Low school zone coverage",
                description=(
                    f"Only {factors.school_zone_coverage_pct:.0f}% of the route runs through school zones."
                ),
                action_required=False,
            ))
        if factors.accident_penalty > cfg.accident_warning_penalty:
            recs.append(RiskRecommendation(
                priority=RecommendationPriority.HIGH,
                title="Accident history along the route",
                description="Several recorded accidents are close to this route. Drive with extra care.",
                action_required=True,
            ))
        if factors.road_type_contribution > cfg.high_speed_contribution:
            recs.append(RiskRecommendation(
                priority=RecommendationPriority.MEDIUM,
                title="High-speed roads",
                description="The route relies on high-speed roads. Prefer residential streets where possible.",
                action_required=False,
            ))
        return recs

    def score_route(self, route: RouteGeometry, snapshot: Optional[GeoRiskSnapshot] = None) -> RouteRiskAnalysis:
        snapshot = snapshot or GeoRiskSnapshot()
        factors = self.compute_factors(route, snapshot)
        overall = self.overall_risk(factors)
        return RouteRiskAnalysis(
            route=route,
            overall_risk=overall,
            factors=factors,
            acceptable=overall <= self.config.max_acceptable_risk,
            recommendations=tuple(self.recommendations(overall, factors)),
            risk_level=risk_level(overall),
            degraded=snapshot.stale or snapshot.is_empty,
            data_as_of=snapshot.fetched_at,
        )
