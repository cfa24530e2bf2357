"""
Geodata cache for risk scoring. Refresh when older than max_age, retry, then serve last snapshot as stale.
"""

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Protocol

from schoolpool.domain.constraints import GeoDataConfig, RetryPolicy
from schoolpool.domain.errors import ExternalServiceError
from schoolpool.domain.models import AccidentLocation, GeoRiskSnapshot, SchoolLocation
from schoolpool.utils.clock import Clock, SystemClock
from schoolpool.utils.logger import logger
from schoolpool.utils.retry import call_with_retry


class GeoRiskDataProvider(Protocol):
    """Source of school and accident locations (open data portal, fixture, ...)."""

    def fetch_schools(self) -> List[SchoolLocation]:
        ...

    def fetch_accidents(self) -> List[AccidentLocation]:
        ...


class GeoRiskCache:
    def __init__(
        self,
        provider: GeoRiskDataProvider,
        config: Optional[GeoDataConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.provider = provider
        self.config = config or GeoDataConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock or SystemClock()
        self._sleep = sleep
        self._snapshot = GeoRiskSnapshot(stale=True)
        self._last_failure: Optional[datetime] = None
        self._refresh_lock = threading.Lock()

    def _is_fresh(self, now: datetime) -> bool:
        fetched = self._snapshot.fetched_at
        if fetched is None or self._snapshot.stale:
            return False
        return now - fetched < timedelta(minutes=self.config.max_age_min)

    def _in_cooldown(self, now: datetime) -> bool:
        if self._last_failure is None:
            return False
        return now - self._last_failure < timedelta(minutes=self.config.failure_cooldown_min)

    def _fetch(self) -> GeoRiskSnapshot:
        kwargs = {"policy": self.retry_policy}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        schools = call_with_retry(self.provider.fetch_schools, operation="fetch schools", **kwargs)
        accidents = call_with_retry(self.provider.fetch_accidents, operation="fetch accidents", **kwargs)
        return GeoRiskSnapshot(
            schools=tuple(schools),
            accidents=tuple(accidents),
            fetched_at=self.clock.now(),
            stale=False,
        )

    def refresh(self, force: bool = False) -> GeoRiskSnapshot:
        """
        Fetch a new snapshot. On failure keep the previous one, marked stale.

        Only one refresh runs at a time. Callers arriving while it is in flight
        get the current snapshot instead of waiting on the provider.
        """
        if not self._refresh_lock.acquire(blocking=False):
            return self._snapshot
        try:
            now = self.clock.now()
            if not force and (self._is_fresh(now) or self._in_cooldown(now)):
                return self._snapshot
            try:
                snapshot = self._fetch()
            except ExternalServiceError as e:
                self._last_failure = now
                if not self._snapshot.stale:
                    self._snapshot = replace(self._snapshot, stale=True)
                current = self._snapshot
                logger.warning(
                    f"Geo risk data refresh failed, serving stale snapshot "
                    f"({len(current.schools)} schools, {len(current.accidents)} accidents): {e.reason}"
                )
                return current
            self._snapshot = snapshot
            self._last_failure = None
            logger.info(
                f"Geo risk data refreshed: {len(snapshot.schools)} schools, {len(snapshot.accidents)} accidents"
            )
            return snapshot
        finally:
            self._refresh_lock.release()

    def snapshot(self) -> GeoRiskSnapshot:
        """Current snapshot, refreshed first when it is older than max_age."""
        now = self.clock.now()
        if self._is_fresh(now):
            return self._snapshot
        return self.refresh()

    @property
    def current(self) -> GeoRiskSnapshot:
        return self._snapshot
