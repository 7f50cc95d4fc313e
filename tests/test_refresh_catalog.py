import pytest

from clinic_search.core.cache import MemoryCacheStore
from clinic_search.core.config import Settings
from clinic_search.jobs import refresh_catalog
from clinic_search.models import Clinic


class DummySource:
    def __init__(self, error=None):
        self.error = error

    def fetch(self):
        if self.error is not None:
            raise self.error
        return [Clinic(id="1", name="Andheri Physio")]


@pytest.fixture
def store(monkeypatch):
    store = MemoryCacheStore(rng=lambda: 1.0)
    store.set("search:abc", {"clinics": []}, 60)
    store.set("suggestions:phys", ["Physio"], 60)
    store.set("rate_limit:search:1.2.3.4", 1, 60)
    monkeypatch.setattr(refresh_catalog, "get_settings", lambda: Settings(catalog_path="clinics.json"))
    monkeypatch.setattr(refresh_catalog, "build_cache_store", lambda client: store)
    return store


def test_refresh_job_invalidates_search_and_suggestion_caches(monkeypatch, store):
    monkeypatch.setattr(refresh_catalog, "build_catalog_source", lambda settings: DummySource())

    removed = refresh_catalog.run_refresh_job()

    assert removed == 2
    assert store.get("rate_limit:search:1.2.3.4") == 1


def test_refresh_job_keeps_caches_when_catalog_fails(monkeypatch, store):
    monkeypatch.setattr(refresh_catalog, "build_catalog_source", lambda settings: DummySource(RuntimeError("db down")))

    with pytest.raises(RuntimeError):
        refresh_catalog.run_refresh_job()

    assert store.get("search:abc") == {"clinics": []}


def test_skip_reload_and_custom_prefix(monkeypatch, store):
    def fail(settings):
        raise AssertionError("catalog should not be loaded")

    monkeypatch.setattr(refresh_catalog, "build_catalog_source", fail)

    assert refresh_catalog.run_refresh_job(prefixes=["suggestions:"], skip_reload=True) == 1
    assert store.get("search:abc") is not None


def test_main_parses_args(monkeypatch):
    captured = {}

    def fake_job(**kwargs):
        captured.update(kwargs)
        return 0

    monkeypatch.setattr(refresh_catalog, "run_refresh_job", fake_job)

    refresh_catalog.main(["--prefix", "search:", "--skip-reload"])

    assert captured == {"prefixes": ["search:"], "skip_reload": True}


def test_main_exits_non_zero_on_failure(monkeypatch):
    def broken_job(**kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(refresh_catalog, "run_refresh_job", broken_job)

    with pytest.raises(SystemExit) as excinfo:
        refresh_catalog.main([])

    assert excinfo.value.code == 1
