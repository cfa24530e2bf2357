"""
Open data geo-risk provider over HTTP (httpx). Schools as JSON records, accidents as GeoJSON points.
Parsing is lenient: records without usable coordinates are skipped.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

import httpx

from schoolpool.domain.errors import ExternalServiceError
from schoolpool.domain.models import AccidentLocation, Coordinate, SchoolLocation
from schoolpool.utils.logger import logger

ACCIDENT_QUERY_PARAMS = {
    "outFields": "*",
    "where": "1=1",
    "f": "geojson",
    "returnGeometry": "true",
    "outSR": "4326",
}

USER_AGENT = "schoolpool/0.1 (school carpool safety)"


def _float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_school_records(payload: Any) -> List[SchoolLocation]:
    """
    Accepts a list of records or {"data"|"results"|"records": [...]}.
    Coordinates are read from location_1 / location {latitude, longitude}, or flat latitude/longitude.
    """
    if isinstance(payload, dict):
        payload = payload.get("data") or payload.get("results") or payload.get("records") or []
    if not isinstance(payload, list):
        return []

    schools: List[SchoolLocation] = []
    for i, record in enumerate(payload):
        if not isinstance(record, dict):
            continue
        loc = record.get("location_1") or record.get("location") or record
        if not isinstance(loc, dict):
            continue
        lat, lng = _float(loc.get("latitude")), _float(loc.get("longitude"))
        if lat is None or lng is None:
            continue
        c = Coordinate(lat=lat, lng=lng)
        if not c.is_valid:
            continue
        name = record.get("school_name") or record.get("name") or f"School {i + 1}"
        school_id = str(record.get("school_id") or record.get("id") or f"school-{i + 1}")
        schools.append(SchoolLocation(school_id=school_id, name=str(name), location=c))
    return schools


def _parse_date(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        # ArcGIS feature services report epoch milliseconds
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    for fmt in ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(str(value)[:19], fmt)
        except ValueError:
            continue
    return None


def parse_accident_features(payload: Any) -> List[AccidentLocation]:
    if not isinstance(payload, dict):
        return []
    accidents: List[AccidentLocation] = []
    for i, feature in enumerate(payload.get("features") or []):
        geometry = (feature or {}).get("geometry") or {}
        if geometry.get("type") != "Point":
            continue
        coords = geometry.get("coordinates") or []
        if len(coords) < 2:
            continue
        lng, lat = _float(coords[0]), _float(coords[1])
        if lat is None or lng is None:
            continue
        c = Coordinate(lat=lat, lng=lng)
        if not c.is_valid:
            continue
        props = feature.get("properties") or {}
        accident_id = str(props.get("objectid") or props.get("OBJECTID") or props.get("id") or f"accident-{i + 1}")
        accidents.append(AccidentLocation(
            accident_id=accident_id,
            location=c,
            severity=str(props.get("severity") or props.get("crash_severity") or ""),
            occurred_at=_parse_date(props.get("date") or props.get("crash_date")),
        ))
    return accidents


class OpenDataGeoRiskProvider:
    def __init__(
        self,
        schools_url: str,
        accidents_url: str,
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.schools_url = schools_url
        self.accidents_url = accidents_url
        self.client = client or httpx.Client(
            timeout=timeout_s,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        try:
            response = self.client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                f"{url} returned HTTP {e.response.status_code}",
                recovery="Check connectivity and retry",
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Request to {url} failed: {e}", recovery="Check connectivity and retry") from e
        except ValueError as e:
            raise ExternalServiceError(f"{url} returned invalid JSON") from e

    def fetch_schools(self) -> List[SchoolLocation]:
        schools = parse_school_records(self._get_json(self.schools_url))
        logger.info(f"Fetched {len(schools)} school locations")
        return schools

    def fetch_accidents(self) -> List[AccidentLocation]:
        accidents = parse_accident_features(self._get_json(self.accidents_url, params=ACCIDENT_QUERY_PARAMS))
        logger.info(f"Fetched {len(accidents)} accident locations")
        return accidents

    def close(self) -> None:
        self.client.close()
