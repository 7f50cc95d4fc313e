import pytest

from clinic_search.models import Clinic, Coordinate, SearchFilters, SearchQuery, StrategyKind
from clinic_search.search import strategies
from clinic_search.vendors.fulltext_index import FullTextIndexClient, FullTextIndexError, IndexHit, IndexResults

ORIGIN = Coordinate(lat=19.0760, lng=72.8777)

CATALOG = [
    Clinic(id="1", name="Andheri Physio", pincode="400001", coordinate=Coordinate(19.0800, 72.8800), rating=4.0),
    Clinic(id="2", name="Bandra Rehab", pincode="400099", coordinate=Coordinate(19.0500, 72.8400), rating=4.8),
    Clinic(id="3", name="Pune Spine", pincode="411001", coordinate=Coordinate(18.5204, 73.8567), rating=3.5),
]

TEXT_CATALOG = [
    Clinic(id="a", name="City Physio Centre", rating=4.0),
    Clinic(id="b", name="Physio", rating=3.0),
    Clinic(id="c", name="Hand Clinic", specialization="Physiotherapy", rating=5.0, verified=True),
    Clinic(id="d", name="Speech Lab", services=frozenset({"Speech Therapy"}), rating=4.0),
    Clinic(id="e", name="Physio Plus", rating=4.0),
]


class DummyResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class DummySession:
    def __init__(self, payload):
        self.payload = payload

    def post(self, url, json=None, timeout=None):
        return DummyResponse(self.payload)


def _ids(candidates):
    return [candidate.clinic.id for candidate in candidates]


def test_geospatial_within_radius_sorted_by_distance():
    found = strategies.GeospatialStrategy().retrieve(SearchQuery(origin=ORIGIN, radius_km=10), CATALOG)

    assert _ids(found) == ["1", "2"]
    assert found[0].distance_km < found[1].distance_km
    assert all(c.source is StrategyKind.GEOSPATIAL for c in found)


def test_geospatial_has_no_cap_on_count():
    found = strategies.GeospatialStrategy().retrieve(SearchQuery(origin=ORIGIN, radius_km=500, limit=1), CATALOG)
    assert _ids(found) == ["1", "2", "3"]


def test_geospatial_skips_clinics_without_coordinates():
    clinics = CATALOG + [Clinic(id="4", name="Nowhere")]
    found = strategies.GeospatialStrategy().retrieve(SearchQuery(origin=ORIGIN, radius_km=500), clinics)
    assert "4" not in _ids(found)


def test_geospatial_invalid_origin_yields_nothing():
    query = SearchQuery(origin=Coordinate(lat=120, lng=0))
    assert strategies.GeospatialStrategy().retrieve(query, CATALOG) == []


def test_geospatial_applies_filters():
    query = SearchQuery(origin=ORIGIN, radius_km=10, filters=SearchFilters(min_rating=4.5))
    assert _ids(strategies.GeospatialStrategy().retrieve(query, CATALOG)) == ["2"]


def test_geospatial_handles_antipodal_clinics():
    far_side = Clinic(id="antipode", name="Far Side", coordinate=Coordinate(-69.51232454868148, -93.4187717400493))
    query = SearchQuery(origin=Coordinate(69.51232454868148, 86.5812282599507), radius_km=500)

    assert strategies.GeospatialStrategy().retrieve(query, [far_side]) == []


def test_pincode_exact_and_nearby_tiers():
    matches = strategies.PincodeStrategy().match("400001", CATALOG)

    assert [c.id for c in matches.exact] == ["1"]
    assert [c.id for c in matches.nearby] == ["2"]
    assert "3" not in [c.id for c in matches.ordered()]


def test_pincode_cascade_order_and_counts():
    clinics = [
        Clinic(id="near", name="N", pincode="400050"),
        Clinic(id="loc", name="L", location="Colaba 400001"),
        Clinic(id="addr", name="A", address="Fort, Mumbai 400001"),
        Clinic(id="exact", name="E", pincode="400001", address="Fort 400001"),
    ]

    matches = strategies.PincodeStrategy().match("400001", clinics)

    assert [c.id for c in matches.ordered()] == ["exact", "addr", "loc", "near"]
    assert matches.counts() == {"exactMatches": 1, "addressMatches": 1, "locationMatches": 1, "nearbyMatches": 1}


def test_pincode_nearby_needs_two_full_pincodes():
    clinics = [Clinic(id="short", name="S", pincode="4000"), Clinic(id="full", name="F", pincode="400777")]
    assert strategies.PincodeStrategy().match("400", clinics).nearby == ()
    assert [c.id for c in strategies.PincodeStrategy().match("400001", clinics).nearby] == ["full"]


def test_pincode_retrieve_truncates_to_window_and_keeps_metadata():
    clinics = [Clinic(id=str(i), name=f"C{i}", pincode="400001") for i in range(5)]
    query = SearchQuery(pincode="400001", limit=2, offset=1)

    candidates, matches = strategies.PincodeStrategy().retrieve_with_matches(query, clinics)

    assert _ids(candidates) == ["0", "1", "2"]
    assert len(matches.exact) == 5
    assert strategies.PincodeStrategy().retrieve_page(query, clinics)[1] == 5


def test_pincode_without_pincode_yields_nothing():
    assert strategies.PincodeStrategy().retrieve(SearchQuery(), CATALOG) == []


def test_text_scoring_order():
    found = strategies.TextStrategy().retrieve(SearchQuery(free_text="PHYSIO"), TEXT_CATALOG)

    # b: exact+prefix+15, e: prefix+20, c: verified+25, a: 20
    assert _ids(found) == ["b", "e", "c", "a"]
    assert found[0].text_score == 100 + 50 + 15


def test_text_ties_broken_by_rating_then_catalog_order():
    clinics = [
        Clinic(id="first", name="One Rehab", rating=2.0),
        Clinic(id="verified", name="Two Rehab", verified=True),
        Clinic(id="rated", name="Three Rehab", rating=4.0),
        Clinic(id="second", name="Four Rehab", rating=2.0),
    ]
    found = strategies.TextStrategy().retrieve(SearchQuery(free_text="rehab"), clinics)
    assert _ids(found) == ["rated", "verified", "first", "second"]


def test_text_matches_services():
    found = strategies.TextStrategy().retrieve(SearchQuery(free_text="speech therapy"), TEXT_CATALOG)
    assert _ids(found) == ["d"]


def test_numeric_text_is_a_pincode_fragment():
    clinics = [
        Clinic(id="p", name="P", pincode="400053"),
        Clinic(id="q", name="Q 400053"),
        Clinic(id="r", name="R", address="Andheri 400053"),
    ]
    found = strategies.TextStrategy().retrieve(SearchQuery(free_text="40005"), clinics)
    assert sorted(_ids(found)) == ["p", "r"]


def test_empty_text_yields_nothing():
    assert strategies.TextStrategy().retrieve(SearchQuery(), TEXT_CATALOG) == []
    assert strategies.TextStrategy().retrieve_page(SearchQuery(), TEXT_CATALOG) == ([], 0)


def test_text_scan_reports_every_match():
    candidates, total = strategies.TextStrategy().retrieve_page(SearchQuery(free_text="physio", limit=1), TEXT_CATALOG)
    assert total == len(candidates) == 4


def test_text_uses_index_when_available():
    class DummyIndex:
        def __init__(self):
            self.calls = []

        def search(self, query, filters=None, size=20):
            self.calls.append((query, size))
            hits = [IndexHit("d", 9.5), IndexHit("missing", 8.0), IndexHit("a", 7.0, distance_km=1.2)]
            return IndexResults(hits=hits, total=12)

    index = DummyIndex()
    found, total = strategies.TextStrategy(index).retrieve_page(SearchQuery(free_text="therapy", limit=5), TEXT_CATALOG)

    assert index.calls == [("therapy", 5)]
    assert _ids(found) == ["d", "a"]
    assert found[0].text_score == 9.5
    assert found[1].distance_km == 1.2
    assert total == 11


def test_text_index_failure_falls_back_to_scan(caplog):
    class BrokenIndex:
        def search(self, query, filters=None, size=20):
            raise FullTextIndexError("connection refused")

    with caplog.at_level("WARNING"):
        found = strategies.TextStrategy(BrokenIndex()).retrieve(SearchQuery(free_text="speech"), TEXT_CATALOG)

    assert _ids(found) == ["d"]
    assert "scanning catalog instead" in " ".join(caplog.messages)


@pytest.mark.parametrize("payload", [[], {"hits": {"hits": [{"_id": "d", "_score": "high"}]}}])
def test_text_malformed_index_response_falls_back_to_scan(payload):
    index = FullTextIndexClient("http://search:9200", session=DummySession(payload))

    found = strategies.TextStrategy(index).retrieve(SearchQuery(free_text="speech"), TEXT_CATALOG)

    assert _ids(found) == ["d"]


def test_fallback_rating_descending_with_unrated_last():
    clinics = [
        Clinic(id="u", name="U"),
        Clinic(id="lo", name="L", rating=3.0),
        Clinic(id="hi1", name="H1", rating=4.5),
        Clinic(id="hi2", name="H2", rating=4.5),
    ]
    found = strategies.FallbackStrategy().retrieve(SearchQuery(), clinics)
    assert _ids(found) == ["hi1", "hi2", "lo", "u"]


def test_fallback_filters_and_window():
    clinics = [
        Clinic(id="a", name="A", rating=5, verified=True),
        Clinic(id="b", name="B", rating=4, verified=False),
        Clinic(id="c", name="C", rating=3, verified=True, status="inactive"),
        Clinic(id="d", name="D", rating=2, verified=True),
    ]
    query = SearchQuery(filters=SearchFilters(verified=True, status="active"), limit=1)

    candidates, total = strategies.FallbackStrategy().retrieve_page(query, clinics)

    assert _ids(candidates) == ["a"]
    assert total == 2


@pytest.mark.parametrize("services, expected", [(("speech therapy",), ["d"]), (("Speech Therapy", "Yoga"), [])])
def test_fallback_service_filters(services, expected):
    query = SearchQuery(filters=SearchFilters(services=services))
    assert _ids(strategies.FallbackStrategy().retrieve(query, TEXT_CATALOG)) == expected
