"""
Service wiring. Builds every service once from Settings; providers can be swapped for tests.
"""

from dataclasses import dataclass
from typing import Optional

from schoolpool.application.config import Settings
from schoolpool.application.events import EventBus
from schoolpool.application.group_formation import GroupFormationOrchestrator
from schoolpool.application.repositories import InMemoryGroupRepository, InMemoryInvitationRepository
from schoolpool.application.schedule_coordinator import ScheduleConflictResolver
from schoolpool.application.scheduler import JobScheduler
from schoolpool.core.matching_engine.compatibility import CompatibilityScorer
from schoolpool.core.routing_engine.pickup_sequencer import PickupSequencer
from schoolpool.core.routing_engine.route_analysis import DirectionsProvider, RouteAnalysisService
from schoolpool.core.safety_engine.geo_risk_cache import GeoRiskCache, GeoRiskDataProvider
from schoolpool.core.safety_engine.risk_scoring import SafetyRiskScorer
from schoolpool.core.schedule_engine.conflicts import CalendarProvider, ScheduleConflictDetector
from schoolpool.infrastructure.open_data import OpenDataGeoRiskProvider
from schoolpool.infrastructure.providers import (
    InMemoryFamilyDirectory,
    StaticGeoRiskProvider,
    StraightLineDirectionsProvider,
)
from schoolpool.utils.clock import Clock, SystemClock
from schoolpool.utils.logger import logger


@dataclass
class Services:
    settings: Settings
    clock: Clock
    bus: EventBus
    directory: InMemoryFamilyDirectory
    scorer: CompatibilityScorer
    geo_provider: GeoRiskDataProvider
    geo_cache: GeoRiskCache
    route_service: RouteAnalysisService
    sequencer: PickupSequencer
    groups: InMemoryGroupRepository
    invitations: InMemoryInvitationRepository
    group_formation: GroupFormationOrchestrator
    resolver: ScheduleConflictResolver
    jobs: JobScheduler


def build_services(
    settings: Settings,
    clock: Optional[Clock] = None,
    geo_provider: Optional[GeoRiskDataProvider] = None,
    directions: Optional[DirectionsProvider] = None,
    calendar: Optional[CalendarProvider] = None,
    directory: Optional[InMemoryFamilyDirectory] = None,
) -> Services:
    clock = clock or SystemClock()
    retry = settings.retry_policy()
    bus = EventBus()

    if geo_provider is None:
        if settings.open_data_enabled:
            geo_provider = OpenDataGeoRiskProvider(
                settings.open_data_schools_url,
                settings.open_data_accidents_url,
                timeout_s=settings.open_data_timeout_s,
            )
        else:
            logger.warning("No open data URLs configured, risk scoring runs on empty geodata (degraded)")
            geo_provider = StaticGeoRiskProvider()

    geo_cache = GeoRiskCache(geo_provider, config=settings.geo_data_config(), retry_policy=retry, clock=clock)
    sequencer = PickupSequencer()
    route_service = RouteAnalysisService(
        scorer=SafetyRiskScorer(settings.risk_scoring_config()),
        directions=directions or StraightLineDirectionsProvider(),
        geo_cache=geo_cache,
        retry_policy=retry,
    )
    groups = InMemoryGroupRepository()
    invitations = InMemoryInvitationRepository()
    schedule_config = settings.schedule_config()

    return Services(
        settings=settings,
        clock=clock,
        bus=bus,
        directory=directory if directory is not None else InMemoryFamilyDirectory(),
        scorer=CompatibilityScorer(settings.matching_config()),
        geo_provider=geo_provider,
        geo_cache=geo_cache,
        route_service=route_service,
        sequencer=sequencer,
        groups=groups,
        invitations=invitations,
        group_formation=GroupFormationOrchestrator(
            route_service=route_service,
            sequencer=sequencer,
            groups=groups,
            invitations=invitations,
            bus=bus,
            clock=clock,
            config=settings.group_formation_config(),
        ),
        resolver=ScheduleConflictResolver(
            detector=ScheduleConflictDetector(calendar, config=schedule_config, retry_policy=retry),
            bus=bus,
            clock=clock,
            config=schedule_config,
            groups=groups,
        ),
        jobs=JobScheduler(),
    )
