from datetime import datetime, timezone

import pytest

from schoolpool.domain.constraints import RetryPolicy
from schoolpool.domain.models import (
    BackgroundCheckState,
    CarpoolGroup,
    Coordinate,
    FamilyProfile,
    GroupMember,
    GroupStatus,
    MemberRole,
    VerificationTier,
)
from schoolpool.utils.clock import ManualClock

SCHOOL = Coordinate(lat=-35.3000, lng=149.1000)
T0 = datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc)

# Metres per degree of latitude on the haversine sphere.
M_PER_DEG_LAT = 6371000.0 * 3.141592653589793 / 180.0


def north(c: Coordinate, metres: float) -> Coordinate:
    return Coordinate(lat=c.lat + metres / M_PER_DEG_LAT, lng=c.lng)


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def no_wait_retry():
    return RetryPolicy(max_attempts=3, base_delay_s=0.0, timeout_s=0.0)


@pytest.fixture
def make_family():
    def _make(
        family_id: str,
        home: Coordinate = SCHOOL,
        school_id: str = "school-1",
        departure_min: float = 495.0,
        **kwargs,
    ) -> FamilyProfile:
        return FamilyProfile(
            family_id=family_id,
            home=home,
            school_id=school_id,
            school=kwargs.pop("school", SCHOOL),
            departure_min=departure_min,
            **kwargs,
        )

    return _make


@pytest.fixture
def driver(make_family):
    def _make(family_id: str, home: Coordinate = SCHOOL, seats: int = 4, **kwargs) -> FamilyProfile:
        return make_family(family_id, home=home, driver_available=True, available_seats=seats, **kwargs)

    return _make


@pytest.fixture
def trusted_kwargs():
    return dict(
        verification=VerificationTier.VERIFIED,
        average_rating=4.9,
        rating_count=31,
        background_check=BackgroundCheckState.CLEARED,
    )


@pytest.fixture
def make_group():
    def _make(group_id: str, member_ids, admin_id=None, status=GroupStatus.ACTIVE) -> CarpoolGroup:
        admin_id = admin_id or member_ids[0]
        return CarpoolGroup(
            group_id=group_id,
            name=f"Group {group_id}",
            admin_id=admin_id,
            members=tuple(
                GroupMember(family_id=m, role=MemberRole.ADMIN if m == admin_id else MemberRole.PASSENGER)
                for m in member_ids
            ),
            school_id="school-1",
            departure_min=495.0,
            pickup_sequence=(),
            route_analysis=None,
            status=status,
            invite_code="ABC123",
            created_at=T0,
            school_location=SCHOOL,
            driver_seats=((admin_id, 4),),
        )

    return _make
