"""Error taxonomy for the decision engine."""

from typing import Optional


class SchoolPoolError(Exception):
    """Base error. Carries a human-readable reason and, where useful, a recovery hint."""

    def __init__(self, reason: str, recovery: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.recovery = recovery

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "reason": self.reason, "recovery": self.recovery}


class ValidationError(SchoolPoolError):
    """Bad input or composition. Never retried."""
    pass


class StateConflictError(SchoolPoolError):
    """Operation not allowed in the entity's current state. Never retried."""
    pass


class ExternalServiceError(SchoolPoolError):
    """A provider timed out or failed. Retried with backoff, then degraded."""
    pass


# --- Group formation ---


class DifferentSchoolsError(ValidationError):
    def __init__(self):
        super().__init__("All families must attend the same school")


class NoDriverAvailableError(ValidationError):
    def __init__(self):
        super().__init__(
            "At least one family must be available to drive",
            recovery="Add a family with a vehicle and free seats",
        )


class InsufficientSeatsError(ValidationError):
    def __init__(self, needed: int, available: int):
        super().__init__(
            f"Not enough vehicle seats for all families ({available} available, {needed} needed)",
            recovery="Remove a family or add another driver",
        )
        self.needed = needed
        self.available = available


class IneligibleMemberError(ValidationError):
    def __init__(self, family_id: str):
        super().__init__(f"Family {family_id} is not eligible to join a carpool group")
        self.family_id = family_id


class RouteRiskTooHighError(ValidationError):
    def __init__(self, overall_risk: float, max_risk: float):
        super().__init__(
            f"Route risk {overall_risk:.1f}/10 is above the maximum acceptable {max_risk:.1f}/10",
            recovery="Choose families closer together or a different school route",
        )


class InvalidInviteCodeError(ValidationError):
    def __init__(self):
        super().__init__("Invalid or expired invite code")


class GroupNotFoundError(ValidationError):
    def __init__(self, group_id: str):
        super().__init__(f"Group {group_id} not found")


class GroupFullError(StateConflictError):
    def __init__(self):
        super().__init__("This group is already full", recovery="Look for another group nearby")


class GroupArchivedError(StateConflictError):
    def __init__(self, group_id: str):
        super().__init__(f"Group {group_id} is archived")


class InvitationClosedError(StateConflictError):
    def __init__(self, invitation_id: str, status: str):
        super().__init__(f"Invitation {invitation_id} is already {status}")


# --- Schedule coordination ---


class ProposalNotFoundError(ValidationError):
    def __init__(self, proposal_id: str):
        super().__init__(f"Proposal {proposal_id} not found")


class ProposalClosedError(StateConflictError):
    def __init__(self, proposal_id: str, status: str):
        super().__init__(
            f"Proposal {proposal_id} is already {status}",
            recovery="Create a new proposal or choose an alternative time",
        )
        self.status = status


class PendingProposalExistsError(StateConflictError):
    def __init__(self, group_id: str, proposal_id: str):
        super().__init__(
            f"Group {group_id} already has a pending proposal ({proposal_id})",
            recovery="Wait for the current vote to finish or cancel it",
        )


class PermissionDeniedError(ValidationError):
    pass
