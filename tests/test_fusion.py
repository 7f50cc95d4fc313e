import pytest

from clinic_search.models import Candidate, Clinic, SearchQuery, StrategyKind
from clinic_search.search.fusion import ResultFusion, score_candidate

GEO = StrategyKind.GEOSPATIAL
PIN = StrategyKind.PINCODE
TEXT = StrategyKind.TEXT


def _clinic(clinic_id, **kwargs):
    kwargs.setdefault("name", f"Clinic {clinic_id}")
    return Clinic(id=clinic_id, **kwargs)


def test_score_components():
    clinic = _clinic("1", name="Spine Physio", rating=4.0, verified=True)
    candidate = Candidate(clinic=clinic, source=GEO, distance_km=5.0)

    # base 10 + distance 15 + rating 8 + name 15 + verified 5
    assert score_candidate(candidate, "physio") == pytest.approx(53.0)


def test_distance_bonus_never_negative():
    far = Candidate(clinic=_clinic("1"), source=GEO, distance_km=120.0)
    assert score_candidate(far, "") == pytest.approx(10.0)


def test_confirmed_clinic_outranks_single_source_twin():
    a = _clinic("a", rating=4.0)
    b = _clinic("b", rating=4.0)
    lists = [
        (0, [Candidate(clinic=a, source=GEO), Candidate(clinic=b, source=GEO)]),
        (1, [Candidate(clinic=b, source=TEXT)]),
    ]

    results = ResultFusion().merge(lists, SearchQuery(free_text="zz"))

    assert [r.clinic.id for r in results] == ["b", "a"]
    assert results[0].relevance_score == pytest.approx(results[1].relevance_score + 5)
    assert results[0].found_by == (GEO, TEXT)
    assert results[1].found_by == (GEO,)


def test_primary_list_confirmation_bonus_is_larger():
    a = _clinic("a")
    lists = [(0, [Candidate(clinic=a, source=GEO), Candidate(clinic=a, source=GEO)])]

    (result,) = ResultFusion().merge(lists, SearchQuery())

    assert result.relevance_score == pytest.approx(20.0)
    assert result.found_by == (GEO,)


def test_ties_keep_first_seen_order_and_merge_is_deterministic():
    clinics = [_clinic(str(i)) for i in range(5)]
    lists = [
        (0, [Candidate(clinic=c, source=PIN) for c in clinics[:3]]),
        (1, [Candidate(clinic=c, source=TEXT) for c in clinics[3:]]),
    ]
    fusion = ResultFusion()

    first = fusion.merge(lists, SearchQuery())
    second = fusion.merge(lists, SearchQuery())

    assert [r.clinic.id for r in first] == ["0", "1", "2", "3", "4"]
    assert first == second


def test_limit_applies_after_sorting():
    low = _clinic("low")
    high = _clinic("high", rating=5.0)
    lists = [(0, [Candidate(clinic=low, source=TEXT), Candidate(clinic=high, source=TEXT)])]

    results = ResultFusion().merge(lists, SearchQuery(), limit=1)

    assert [r.clinic.id for r in results] == ["high"]


def test_distance_is_taken_from_later_strategy_when_missing():
    clinic = _clinic("1")
    lists = [
        (0, [Candidate(clinic=clinic, source=PIN)]),
        (1, [Candidate(clinic=clinic, source=GEO, distance_km=3.0)]),
    ]

    (result,) = ResultFusion().merge(lists, SearchQuery())

    assert result.distance_km == 3.0
    # The first-seen score is kept: no distance bonus is added afterwards.
    assert result.relevance_score == pytest.approx(15.0)


def test_empty_lists_fuse_to_nothing():
    assert ResultFusion().merge([(0, []), (1, [])], SearchQuery()) == []


def test_annotate_keeps_input_order():
    near = Candidate(clinic=_clinic("near"), source=GEO, distance_km=1.0)
    far = Candidate(clinic=_clinic("far", rating=5.0, verified=True), source=GEO, distance_km=9.0)

    results = ResultFusion().annotate([near, far], SearchQuery())

    assert [r.clinic.id for r in results] == ["near", "far"]
    assert results[0].relevance_score == pytest.approx(29.0)
    assert results[1].relevance_score == pytest.approx(36.0)
