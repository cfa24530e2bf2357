"""
Route analysis. Directions alternatives scored for risk, safest first.
Straight-line fallback when directions are unavailable.
"""

from typing import Callable, List, Optional, Protocol, Sequence

from schoolpool.core.safety_engine.geo_risk_cache import GeoRiskCache
from schoolpool.core.safety_engine.risk_scoring import SafetyRiskScorer
from schoolpool.domain.constraints import RetryPolicy, SequencingConfig
from schoolpool.domain.errors import ExternalServiceError, ValidationError
from schoolpool.domain.geo import polyline_length_m
from schoolpool.domain.models import (
    Coordinate,
    GeoRiskSnapshot,
    RouteAnalysisResult,
    RouteGeometry,
    RouteRiskAnalysis,
)
from schoolpool.utils.logger import logger
from schoolpool.utils.retry import call_with_retry


class DirectionsProvider(Protocol):
    def directions(
        self,
        origin: Coordinate,
        destination: Coordinate,
        waypoints: Sequence[Coordinate],
        alternatives: int,
    ) -> List[RouteGeometry]:
        """Up to `alternatives` candidate routes through the waypoints in order."""
        ...


def straight_line_route(stops: Sequence[Coordinate], speed_kmh: float) -> RouteGeometry:
    d = polyline_length_m(list(stops))
    duration_s = (d / 1000.0) / max(1.0, speed_kmh) * 3600.0
    return RouteGeometry(coordinates=tuple(stops), distance_m=d, duration_s=duration_s)


class RouteAnalysisService:
    def __init__(
        self,
        scorer: Optional[SafetyRiskScorer] = None,
        directions: Optional[DirectionsProvider] = None,
        geo_cache: Optional[GeoRiskCache] = None,
        config: Optional[SequencingConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.scorer = scorer or SafetyRiskScorer()
        self.directions = directions
        self.geo_cache = geo_cache
        self.config = config or SequencingConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def _snapshot(self) -> GeoRiskSnapshot:
        if self.geo_cache is None:
            return GeoRiskSnapshot()
        return self.geo_cache.snapshot()

    def _routes(
        self, origin: Coordinate, destination: Coordinate, waypoints: Sequence[Coordinate]
    ) -> Optional[List[RouteGeometry]]:
        if self.directions is None:
            return None
        kwargs = {"policy": self.retry_policy}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            routes = call_with_retry(
                lambda: self.directions.directions(
                    origin, destination, list(waypoints), self.config.max_alternative_routes
                ),
                operation="directions",
                **kwargs,
            )
        except ExternalServiceError as e:
            logger.warning(f"Directions unavailable, using straight-line fallback: {e.reason}")
            return None
        routes = [r for r in routes if r.coordinates][: self.config.max_alternative_routes]
        return routes or None

    def score(self, route: RouteGeometry) -> RouteRiskAnalysis:
        return self.scorer.score_route(route, self._snapshot())

    def analyze(
        self,
        origin: Coordinate,
        destination: Coordinate,
        waypoints: Sequence[Coordinate] = (),
    ) -> RouteAnalysisResult:
        for c in [origin, destination, *waypoints]:
            if not c.is_valid:
                raise ValidationError("Invalid route coordinate")

        snapshot = self._snapshot()
        routes = self._routes(origin, destination, waypoints)
        fallback = routes is None
        if fallback:
            routes = [straight_line_route([origin, *waypoints, destination], self.config.fallback_speed_kmh)]

        analyses = [self.scorer.score_route(r, snapshot) for r in routes]
        # Stable sort keeps provider order between equal risks.
        analyses.sort(key=lambda a: a.overall_risk)
        degraded = fallback or any(a.degraded for a in analyses)
        return RouteAnalysisResult(primary=analyses[0], alternatives=tuple(analyses[1:]), degraded=degraded)
