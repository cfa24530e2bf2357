"""
Schedule conflict detection against member calendars, severity aggregation,
alternative departure times.
"""

from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Protocol

from schoolpool.domain.constraints import RetryPolicy, ScheduleConfig
from schoolpool.domain.errors import ExternalServiceError
from schoolpool.domain.models import (
    CalendarEvent,
    ConflictDetectionResult,
    ConflictSeverity,
    ConflictType,
    ScheduleConflict,
)
from schoolpool.utils.logger import logger
from schoolpool.utils.retry import call_with_retry


class CalendarProvider(Protocol):
    def events_between(self, group_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        """Events of the group's members intersecting [start, end]."""
        ...


def event_severity(event: CalendarEvent, config: ScheduleConfig) -> ConflictSeverity:
    if event.all_day:
        return ConflictSeverity.LOW
    hours = (event.end - event.start).total_seconds() / 3600.0
    if hours > config.high_severity_h:
        return ConflictSeverity.HIGH
    if hours > config.medium_severity_h:
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.LOW


def aggregate_severity(conflicts: Iterable[ScheduleConflict]) -> ConflictSeverity:
    conflicts = list(conflicts)
    if not conflicts:
        return ConflictSeverity.NONE
    severities = [c.severity for c in conflicts]
    high = sum(1 for s in severities if s == ConflictSeverity.HIGH)
    if ConflictSeverity.CRITICAL in severities or high >= 2:
        return ConflictSeverity.CRITICAL
    if high == 1:
        return ConflictSeverity.HIGH
    return max(severities, key=lambda s: s.rank)


def overlaps(event: CalendarEvent, start: datetime, end: datetime) -> bool:
    return event.start < end and event.end > start


class ScheduleConflictDetector:
    def __init__(
        self,
        calendar: Optional[CalendarProvider] = None,
        config: Optional[ScheduleConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.calendar = calendar
        self.config = config or ScheduleConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def _events(self, group_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        kwargs = {"policy": self.retry_policy}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return call_with_retry(
            lambda: self.calendar.events_between(group_id, start, end),
            operation="calendar lookup",
            **kwargs,
        )

    def detect_conflicts(self, proposed_time: datetime, group_id: str) -> ConflictDetectionResult:
        if self.calendar is None:
            return ConflictDetectionResult()
        cfg = self.config
        window = timedelta(hours=cfg.search_window_h)
        try:
            events = self._events(group_id, proposed_time - window, proposed_time + window)
        except ExternalServiceError as e:
            logger.warning(f"Calendar lookup failed for group {group_id}, no conflicts reported: {e.reason}")
            return ConflictDetectionResult(degraded=True)

        buffer = timedelta(minutes=cfg.conflict_buffer_min)
        lo, hi = proposed_time - buffer, proposed_time + buffer
        conflicts: List[ScheduleConflict] = []
        for ev in sorted(events, key=lambda e: (e.start, e.title)):
            if not overlaps(ev, lo, hi):
                continue
            severity = event_severity(ev, cfg)
            conflicts.append(ScheduleConflict(
                conflict_type=ConflictType.CALENDAR,
                severity=severity,
                description=f"'{ev.title}' ({ev.start:%H:%M}-{ev.end:%H:%M}) overlaps the proposed time",
                affected_members=(ev.member_id,) if ev.member_id else (),
                suggested_resolution=(
                    "Consider one of the alternative times"
                    if severity != ConflictSeverity.LOW
                    else "Check whether the event can be moved"
                ),
            ))
        return ConflictDetectionResult(conflicts=tuple(conflicts))

    def generate_alternatives(
        self,
        original: datetime,
        conflicts: Iterable[ScheduleConflict],
        group_id: str,
    ) -> List[datetime]:
        """Conflict-free times near `original`, in search order. Empty when there is nothing to avoid."""
        if not list(conflicts):
            return []
        found: List[datetime] = []
        for offset in self.config.alternative_offsets_min:
            candidate = original + timedelta(minutes=offset)
            check = self.detect_conflicts(candidate, group_id)
            if check.degraded or check.conflicts:
                continue
            found.append(candidate)
        return found
