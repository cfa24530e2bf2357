"""
Typed in-process events. Publishers never fail because of a subscriber.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, List, Type, TypeVar

from schoolpool.domain.models import CarpoolGroup, GroupInvitation, ScheduleChangeProposal, ScheduleVote
from schoolpool.utils.logger import logger


@dataclass(frozen=True)
class ProposalCreated:
    proposal: ScheduleChangeProposal


@dataclass(frozen=True)
class VoteCast:
    proposal: ScheduleChangeProposal
    vote: ScheduleVote


@dataclass(frozen=True)
class ProposalResolved:
    proposal: ScheduleChangeProposal


@dataclass(frozen=True)
class ProposalCancelled:
    proposal: ScheduleChangeProposal
    cancelled_by: str


@dataclass(frozen=True)
class ProposalsExpired:
    proposals: tuple[ScheduleChangeProposal, ...]


@dataclass(frozen=True)
class GroupFormed:
    group: CarpoolGroup


@dataclass(frozen=True)
class MemberJoined:
    group: CarpoolGroup
    family_id: str


@dataclass(frozen=True)
class GroupArchived:
    group: CarpoolGroup


@dataclass(frozen=True)
class InvitationIssued:
    invitation: GroupInvitation


E = TypeVar("E")
Handler = Callable[[object], None]


class EventBus:
    def __init__(self):
        self._handlers: DefaultDict[type, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        with self._lock:
            if handler in self._handlers[event_type]:
                self._handlers[event_type].remove(handler)

    def publish(self, event: object) -> None:
        with self._lock:
            handlers = list(self._handlers[type(event)])
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler failed for {type(event).__name__}")


class RecordingSubscriber:
    """Collects every event it receives. Handy for audits and tests."""

    def __init__(self, bus: EventBus, *event_types: type):
        self.events: List[object] = []
        self._lock = threading.Lock()
        for t in event_types:
            bus.subscribe(t, self._record)

    def _record(self, event: object) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: Type[E]) -> List[E]:
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]
