import httpx
import pytest

from schoolpool.domain.errors import ExternalServiceError
from schoolpool.infrastructure.open_data import (
    OpenDataGeoRiskProvider,
    parse_accident_features,
    parse_school_records,
)

SCHOOLS_URL = "https://data.example.org/schools.json"
ACCIDENTS_URL = "https://gis.example.org/crashes/query"

SCHOOLS = [
    {"school_name": "Lyneham Primary", "location_1": {"latitude": "-35.2500", "longitude": "149.1300"}},
    {"name": "Ainslie School", "latitude": -35.2620, "longitude": 149.1450, "school_id": "ainslie"},
    {"name": "Nowhere", "location": {"latitude": None, "longitude": None}},
    "junk",
]

ACCIDENTS = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [149.13, -35.25]},
            "properties": {"OBJECTID": 17, "crash_severity": "Injury", "crash_date": 1704067200000},
        },
        {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [149.14, -35.26]},
            "properties": {"id": "x9", "date": "2023-05-01"},
        },
        {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]}},
        {"type": "Feature", "geometry": {"type": "Point", "coordinates": [200.0, 95.0]}},
    ],
}


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_parse_school_records():
    schools = parse_school_records(SCHOOLS)
    assert [s.name for s in schools] == ["Lyneham Primary", "Ainslie School"]
    assert schools[0].school_id == "school-1"
    assert schools[0].location.lat == -35.25
    assert schools[1].school_id == "ainslie"
    assert parse_school_records({"data": SCHOOLS[:1]})[0].name == "Lyneham Primary"
    assert parse_school_records("nope") == []


def test_parse_accident_features():
    accidents = parse_accident_features(ACCIDENTS)
    assert [a.accident_id for a in accidents] == ["17", "x9"]
    assert accidents[0].location.lat == -35.25 and accidents[0].location.lng == 149.13
    assert accidents[0].severity == "Injury"
    assert accidents[0].occurred_at.year == 2024
    assert accidents[1].occurred_at.month == 5
    assert parse_accident_features([]) == []


def test_provider_fetches_and_parses():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.host == "data.example.org":
            return httpx.Response(200, json=SCHOOLS)
        return httpx.Response(200, json=ACCIDENTS)

    provider = OpenDataGeoRiskProvider(SCHOOLS_URL, ACCIDENTS_URL, client=_client(handler))
    assert len(provider.fetch_schools()) == 2
    assert len(provider.fetch_accidents()) == 2
    assert seen[1].url.params["f"] == "geojson"
    provider.close()


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="maintenance"),
        httpx.Response(200, text="<html>not json</html>"),
    ],
)
def test_provider_errors_become_external_service_errors(response):
    provider = OpenDataGeoRiskProvider(SCHOOLS_URL, ACCIDENTS_URL, client=_client(lambda request: response))
    with pytest.raises(ExternalServiceError):
        provider.fetch_schools()


def test_transport_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = OpenDataGeoRiskProvider(SCHOOLS_URL, ACCIDENTS_URL, client=_client(handler))
    with pytest.raises(ExternalServiceError):
        provider.fetch_accidents()
