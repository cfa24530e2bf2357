"""
Family loader. Raw dict -> domain FamilyProfile. Directory records merged with app-side overrides.
"""

from typing import Any, Optional

from schoolpool.domain.errors import ValidationError
from schoolpool.domain.models import (
    BackgroundCheckState,
    Coordinate,
    FamilyProfile,
    VerificationTier,
)


def parse_time_to_minutes(value: Any) -> Optional[float]:
    """'HH:MM' -> minutes since midnight. Numbers pass through. None if empty or invalid."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if 0 <= value < 24 * 60 else None
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    parts = value.split(":")
    if len(parts) != 2:
        return None
    try:
        h, m = int(parts[0]), int(parts[1])
        if 0 <= h < 24 and 0 <= m < 60:
            return float(h * 60 + m)
    except ValueError:
        pass
    return None


def format_minutes(minutes: float) -> str:
    total = int(round(minutes)) % (24 * 60)
    return f"{total // 60:02d}:{total % 60:02d}"


def _enum(enum_cls, value: Any, default):
    if value is None or value == "":
        return default
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown {enum_cls.__name__} value: {value!r}")


def load_family(raw: dict) -> FamilyProfile:
    """
    Accepted keys: family_id, display_name, home_lat, home_lng, school_id, school_name,
    school_lat, school_lng, departure_time ('HH:MM') or departure_min, flexibility_min,
    driver_available, available_seats, verification, average_rating, rating_count, background_check.
    """
    family_id = str(raw.get("family_id", "")).strip()
    if not family_id:
        raise ValidationError("Family record without family_id")
    departure = raw.get("departure_min")
    if departure is None:
        departure = parse_time_to_minutes(raw.get("departure_time"))
    if departure is None:
        raise ValidationError(f"Family {family_id} has no valid departure time")
    try:
        return FamilyProfile(
            family_id=family_id,
            display_name=str(raw.get("display_name", "")),
            home=Coordinate(lat=float(raw["home_lat"]), lng=float(raw["home_lng"])),
            school_id=str(raw.get("school_id", "")),
            school_name=str(raw.get("school_name", "")),
            school=Coordinate(lat=float(raw["school_lat"]), lng=float(raw["school_lng"])),
            departure_min=float(departure),
            flexibility_min=float(raw.get("flexibility_min", 15.0)),
            driver_available=bool(raw.get("driver_available", False)),
            available_seats=int(raw.get("available_seats", 0)),
            verification=_enum(VerificationTier, raw.get("verification"), VerificationTier.UNVERIFIED),
            average_rating=float(raw.get("average_rating", 0.0)),
            rating_count=int(raw.get("rating_count", 0)),
            background_check=_enum(
                BackgroundCheckState, raw.get("background_check"), BackgroundCheckState.NOT_REQUESTED
            ),
        )
    except KeyError as e:
        raise ValidationError(f"Family {family_id} is missing field {e.args[0]}")
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Family {family_id} has an invalid field: {e}")


def load_families(raw_families: list[dict]) -> list[FamilyProfile]:
    return [load_family(raw) for raw in raw_families]


def apply_overrides(base: list[FamilyProfile], overrides: list[dict]) -> list[FamilyProfile]:
    """
    Per family, values present in its override replace the directory ones.
    overrides: dicts with 'family_id' and any of home_lat, home_lng, departure_time / departure_min,
    flexibility_min, driver_available, available_seats.
    """
    override_by_id: dict[str, dict] = {}
    for o in overrides:
        fid = o.get("family_id")
        if fid is not None:
            override_by_id[str(fid)] = o

    out: list[FamilyProfile] = []
    for f in base:
        o = override_by_id.get(f.family_id)
        if not o:
            out.append(f)
            continue
        departure = o.get("departure_min")
        if departure is None and o.get("departure_time") is not None:
            departure = parse_time_to_minutes(str(o["departure_time"]))
        home_lat = o.get("home_lat")
        home_lng = o.get("home_lng")
        out.append(
            FamilyProfile(
                family_id=f.family_id,
                display_name=f.display_name,
                home=Coordinate(
                    lat=float(home_lat) if home_lat is not None else f.home.lat,
                    lng=float(home_lng) if home_lng is not None else f.home.lng,
                ),
                school_id=f.school_id,
                school_name=f.school_name,
                school=f.school,
                departure_min=float(departure) if departure is not None else f.departure_min,
                flexibility_min=float(o["flexibility_min"]) if o.get("flexibility_min") is not None else f.flexibility_min,
                driver_available=bool(o["driver_available"]) if o.get("driver_available") is not None else f.driver_available,
                available_seats=int(o["available_seats"]) if o.get("available_seats") is not None else f.available_seats,
                verification=f.verification,
                average_rating=f.average_rating,
                rating_count=f.rating_count,
                background_check=f.background_check,
            )
        )
    return out
