"""
Group and invitation stores. In-memory implementations; storage technology is left to the deployment.
Reads return immutable snapshots. Writers serialise per group through group_lock().
"""

import threading
from typing import Dict, List, Optional, Protocol

from schoolpool.domain.models import CarpoolGroup, GroupInvitation


class GroupRepository(Protocol):
    def get(self, group_id: str) -> Optional[CarpoolGroup]:
        ...

    def save(self, group: CarpoolGroup) -> None:
        ...

    def find_by_invite_code(self, invite_code: str) -> Optional[CarpoolGroup]:
        ...

    def group_lock(self, group_id: str) -> threading.Lock:
        ...


class InMemoryGroupRepository:
    def __init__(self):
        self._groups: Dict[str, CarpoolGroup] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, group_id: str) -> Optional[CarpoolGroup]:
        return self._groups.get(group_id)

    def save(self, group: CarpoolGroup) -> None:
        with self._lock:
            self._groups[group.group_id] = group

    def find_by_invite_code(self, invite_code: str) -> Optional[CarpoolGroup]:
        code = invite_code.strip().upper()
        return next((g for g in list(self._groups.values()) if g.invite_code == code), None)

    def group_lock(self, group_id: str) -> threading.Lock:
        with self._lock:
            return self._locks.setdefault(group_id, threading.Lock())


class InMemoryInvitationRepository:
    def __init__(self):
        self._invitations: Dict[str, GroupInvitation] = {}
        self._lock = threading.Lock()

    def get(self, invitation_id: str) -> Optional[GroupInvitation]:
        return self._invitations.get(invitation_id)

    def save(self, invitation: GroupInvitation) -> None:
        with self._lock:
            self._invitations[invitation.invitation_id] = invitation

    def for_group(self, group_id: str) -> List[GroupInvitation]:
        return [i for i in list(self._invitations.values()) if i.group_id == group_id]
