import pytest

from clinic_search.etl import transform
from clinic_search.models import Clinic, Coordinate, ScoredResult, StrategyKind


def test_to_clinic_maps_fields():
    row = {
        "id": 12,
        "name": "  Spine & Sports Rehab ",
        "address": "12 MG Road, Andheri, Mumbai 400053",
        "location": "Andheri West",
        "pincode": 400053,
        "city": "Mumbai",
        "latitude": "19.1364",
        "longitude": "72.8296",
        "rating": "4.6",
        "verified": "true",
        "services": "Physiotherapy, Sports Injury ,",
        "specialization": "Orthopaedic",
        "phone": "",
    }

    clinic = transform.to_clinic(row)

    assert clinic.id == "12"
    assert clinic.name == "Spine & Sports Rehab"
    assert clinic.pincode == "400053"
    assert clinic.coordinate == Coordinate(lat=19.1364, lng=72.8296)
    assert clinic.rating == 4.6
    assert clinic.verified is True
    assert clinic.status == "active"
    assert clinic.services == frozenset({"Physiotherapy", "Sports Injury"})
    assert clinic.phone is None


def test_to_clinic_skips_rows_without_identity():
    assert transform.to_clinic({"name": "No id"}) is None
    assert transform.to_clinic({"id": "1", "name": "  "}) is None


def test_nested_coordinates_and_invalid_values():
    assert transform.parse_coordinate({"coordinates": {"lat": 18.5, "lng": 73.8}}) == Coordinate(18.5, 73.8)
    assert transform.parse_coordinate({"lat": 95, "lng": 10}) is None
    assert transform.parse_coordinate({"lat": "abc", "lng": 10}) is None
    assert transform.parse_coordinate({"lat": 10}) is None


@pytest.mark.parametrize("value, expected", [("4.5", 4.5), (0, 0.0), (5.5, None), (-1, None), ("bad", None), (None, None)])
def test_parse_rating(value, expected):
    assert transform.parse_rating(value) == expected


def test_services_fall_back_to_treatments():
    clinic = transform.to_clinic({"id": "1", "name": "A", "treatments": ["Speech Therapy", ""]})
    assert clinic.services == frozenset({"Speech Therapy"})


def test_to_clinics_drops_invalid_rows():
    clinics = transform.to_clinics([{"id": "1", "name": "A"}, {"id": "2"}, {"id": "3", "name": "C"}])
    assert [c.id for c in clinics] == ["1", "3"]


def test_result_to_dict_includes_scores_and_distance():
    clinic = Clinic(id="1", name="A", coordinate=Coordinate(19.0, 72.8), services=frozenset({"b", "a"}))
    result = ScoredResult(
        clinic=clinic,
        relevance_score=41.123456,
        found_by=(StrategyKind.GEOSPATIAL, StrategyKind.TEXT),
        distance_km=2.34567,
    )

    payload = transform.result_to_dict(result)

    assert payload["id"] == "1"
    assert payload["lat"] == 19.0
    assert payload["services"] == ["a", "b"]
    assert payload["relevanceScore"] == 41.1235
    assert payload["foundBy"] == ["GEOSPATIAL", "TEXT"]
    assert payload["distanceKm"] == 2.346
    assert payload["distanceText"] == "2.3km"


def test_result_to_dict_without_distance():
    payload = transform.result_to_dict(
        ScoredResult(clinic=Clinic(id="1", name="A"), relevance_score=10, found_by=(StrategyKind.FALLBACK,))
    )
    assert payload["distanceKm"] is None
    assert "distanceText" not in payload
    assert payload["lat"] is None
