"""Top-level search entry point: select, retrieve, fuse, cache."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Executor, Future, wait
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from clinic_search.core.cache import CacheStore, search_cache_key, suggestions_cache_key
from clinic_search.core.catalog import CatalogSnapshot
from clinic_search.etl.transform import clinic_to_dict, result_to_dict
from clinic_search.models import (
    Candidate,
    Clinic,
    PincodeMatches,
    SearchOutcome,
    SearchQuery,
    StrategyKind,
    ValidationError,
)
from clinic_search.search.fusion import ResultFusion
from clinic_search.search.selector import StrategySelector
from clinic_search.search.strategies import (
    FallbackStrategy,
    GeospatialStrategy,
    PincodeStrategy,
    RetrievalStrategy,
    TextStrategy,
)
from clinic_search.search.validation import MIN_QUERY_LENGTH, parse_pincode

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 8
POLL_INTERVAL_SECONDS = 0.05
PINCODE_ENDPOINT_STRATEGY = "PRECISION_PINCODE"

POPULAR_SEARCHES = (
    "Physiotherapy",
    "Rehabilitation Center",
    "Speech Therapy",
    "Occupational Therapy",
    "Mumbai",
    "Delhi",
    "Bangalore",
    "Pune",
)

# Hybrid runs these in this order; the order fixes fusion's first-seen ranking.
HYBRID_PLAN = (StrategyKind.GEOSPATIAL, StrategyKind.PINCODE, StrategyKind.TEXT)

StrategyRun = Callable[[StrategyKind, SearchQuery, Sequence[Clinic], Optional[threading.Event]], SearchOutcome]


def default_strategies(text_strategy: Optional[TextStrategy] = None) -> Dict[StrategyKind, RetrievalStrategy]:
    return {
        StrategyKind.GEOSPATIAL: GeospatialStrategy(),
        StrategyKind.PINCODE: PincodeStrategy(),
        StrategyKind.TEXT: text_strategy or TextStrategy(),
        StrategyKind.FALLBACK: FallbackStrategy(),
    }


class SearchOrchestrator:
    """Composes selector, strategies, fusion and cache behind one call.

    All collaborators are injected; the orchestrator owns no global state.
    """

    def __init__(
        self,
        catalog: CatalogSnapshot,
        cache: CacheStore,
        executor: Executor,
        strategies: Optional[Mapping[StrategyKind, RetrievalStrategy]] = None,
        selector: Optional[StrategySelector] = None,
        fusion: Optional[ResultFusion] = None,
        strategy_timeout: float = 5.0,
        search_cache_ttl: int = 180,
        suggestions_cache_ttl: int = 300,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._catalog = catalog
        self._cache = cache
        self._executor = executor
        self._strategies = dict(strategies) if strategies is not None else default_strategies()
        self._selector = selector or StrategySelector()
        self._fusion = fusion or ResultFusion()
        self._strategy_timeout = strategy_timeout
        self._search_cache_ttl = search_cache_ttl
        self._suggestions_cache_ttl = suggestions_cache_ttl
        self._timer = timer

        self._dispatch: Dict[StrategyKind, StrategyRun] = {
            StrategyKind.GEOSPATIAL: self._run_single,
            StrategyKind.PINCODE: self._run_pincode,
            StrategyKind.TEXT: self._run_single,
            StrategyKind.HYBRID: self._run_hybrid,
            StrategyKind.FALLBACK: self._run_single,
        }
        unhandled = set(StrategyKind) - set(self._dispatch)
        if unhandled:
            raise ValueError(f"no dispatch for strategies: {sorted(k.value for k in unhandled)}")
        missing = set(self._dispatch) - {StrategyKind.HYBRID} - set(self._strategies)
        if missing:
            raise ValueError(f"missing retrieval strategies: {sorted(k.value for k in missing)}")
        pincode_strategy = self._strategies[StrategyKind.PINCODE]
        if not isinstance(pincode_strategy, PincodeStrategy):
            raise ValueError("PINCODE strategy must be a PincodeStrategy")
        self._pincode: PincodeStrategy = pincode_strategy

    # ---------- Core pipeline ----------

    def run(self, query: SearchQuery, cancel_event: Optional[threading.Event] = None) -> SearchOutcome:
        """Execute one search without touching the response cache."""
        clinics = self._catalog.all()
        kind = self._selector.select(query)
        logger.info("Search strategy %s for query=%r pincode=%s", kind.value, query.text, query.pincode)
        return self._dispatch[kind](kind, query, clinics, cancel_event)

    def _page(self, kind: StrategyKind, query: SearchQuery, ranked: List, total: int, **extra: Any) -> SearchOutcome:
        return SearchOutcome(
            strategy=kind,
            results=ranked[query.offset : query.window],
            total=total,
            limit=query.limit,
            offset=query.offset,
            **extra,
        )

    def _run_single(
        self,
        kind: StrategyKind,
        query: SearchQuery,
        clinics: Sequence[Clinic],
        cancel_event: Optional[threading.Event],
    ) -> SearchOutcome:
        candidates, total = self._strategies[kind].retrieve_page(query, clinics)
        return self._page(kind, query, self._fusion.annotate(candidates, query), total)

    def _run_pincode(
        self,
        kind: StrategyKind,
        query: SearchQuery,
        clinics: Sequence[Clinic],
        cancel_event: Optional[threading.Event],
    ) -> SearchOutcome:
        candidates, matches = self._pincode.retrieve_with_matches(query, clinics)
        total = len(matches.ordered())
        return self._page(kind, query, self._fusion.annotate(candidates, query), total, pincode_matches=matches)

    def _run_hybrid(
        self,
        kind: StrategyKind,
        query: SearchQuery,
        clinics: Sequence[Clinic],
        cancel_event: Optional[threading.Event],
    ) -> SearchOutcome:
        plan: List[StrategyKind] = []
        for step in HYBRID_PLAN:
            if step is StrategyKind.GEOSPATIAL and query.has_valid_origin:
                plan.append(step)
            elif step is StrategyKind.PINCODE and query.pincode:
                plan.append(step)
            elif step is StrategyKind.TEXT and query.text:
                plan.append(step)

        futures: List[Tuple[StrategyKind, Future]] = []
        for step in plan:
            if step is StrategyKind.PINCODE:
                futures.append((step, self._executor.submit(self._pincode.retrieve_with_matches, query, clinics)))
            else:
                futures.append((step, self._executor.submit(self._strategies[step].retrieve, query, clinics)))

        if not self._await_all([future for _, future in futures], cancel_event):
            logger.info("Hybrid search cancelled; discarding partial results")
            return SearchOutcome(
                strategy=kind, results=[], total=0, limit=query.limit, offset=query.offset, degraded=True
            )

        # Read in submission order so fusion never depends on completion order.
        candidate_lists: List[Tuple[int, Sequence[Candidate]]] = []
        pincode_matches: Optional[PincodeMatches] = None
        degraded = False
        for index, (step, future) in enumerate(futures):
            result = self._collect(step, future)
            if result is None:
                degraded = True
            elif step is StrategyKind.PINCODE:
                result, pincode_matches = result
            candidate_lists.append((index, result or []))

        fused = self._fusion.merge(candidate_lists, query)
        return self._page(kind, query, fused, len(fused), pincode_matches=pincode_matches, degraded=degraded)

    def _await_all(self, futures: List[Future], cancel_event: Optional[threading.Event]) -> bool:
        """Wait for every future, the timeout, or cancellation. Returns False if cancelled."""
        deadline = time.monotonic() + self._strategy_timeout
        pending = set(futures)
        while pending:
            if cancel_event is not None and cancel_event.is_set():
                for future in futures:
                    future.cancel()
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            step = remaining if cancel_event is None else min(remaining, POLL_INTERVAL_SECONDS)
            _, pending = wait(pending, timeout=step, return_when=FIRST_COMPLETED)
        for future in pending:
            future.cancel()
        return True

    def _collect(self, step: StrategyKind, future: Future) -> Any:
        """The strategy's result, or None when it timed out, was cancelled or raised."""
        if not future.done():
            logger.warning("%s strategy timed out after %.1fs", step.value, self._strategy_timeout)
            return None
        if future.cancelled():
            return None
        exc = future.exception()
        if exc is not None:
            logger.warning("%s strategy failed in hybrid search: %s", step.value, exc)
            return None
        return future.result()

    # ---------- Response-level operations ----------

    def search(self, query: SearchQuery) -> Dict[str, Any]:
        """Run a search and render the JSON payload, serving repeats from the cache."""
        started = self._timer()
        key = search_cache_key(query)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Search cache hit for %s", key)
            meta = dict(cached["meta"], cached=True, searchTimeMs=self._elapsed_ms(started))
            return {"clinics": cached["clinics"], "meta": meta}

        outcome = self.run(query)
        meta: Dict[str, Any] = {
            "strategy": outcome.strategy.value,
            "totalResults": outcome.total,
            "limit": outcome.limit,
            "offset": outcome.offset,
            "hasMore": outcome.has_more,
            "searchTimeMs": self._elapsed_ms(started),
            "cached": False,
        }
        if outcome.pincode_matches is not None:
            meta["pincodeMatches"] = outcome.pincode_matches.counts()
        payload = {"clinics": [result_to_dict(result) for result in outcome.results], "meta": meta}
        if outcome.degraded:
            logger.info("Not caching search %s: a strategy did not complete", key)
        else:
            self._cache.set(key, payload, self._search_cache_ttl)
        return payload

    def search_by_pincode(self, pincode: Any, limit: int = 20) -> Dict[str, Any]:
        code = parse_pincode(pincode)
        if code is None:
            raise ValidationError("Invalid pincode. Minimum 3 digits required.")

        matches = self._pincode.match(code, self._catalog.all())
        ordered = matches.ordered()
        candidates = [Candidate(clinic=clinic, source=StrategyKind.PINCODE) for clinic in ordered[:limit]]
        results = self._fusion.annotate(candidates, SearchQuery(pincode=code, limit=limit))
        meta: Dict[str, Any] = dict(matches.counts())
        meta["totalResults"] = len(ordered)
        meta["strategy"] = PINCODE_ENDPOINT_STRATEGY
        return {
            "success": True,
            "pincode": code,
            "results": [result_to_dict(result) for result in results],
            "meta": meta,
        }

    def suggestions(self, text: Any) -> List[str]:
        if not isinstance(text, str):
            return []
        needle = text.strip().lower()
        if len(needle) < MIN_QUERY_LENGTH:
            return []

        key = suggestions_cache_key(needle)
        cached = self._cache.get(key)
        if cached is not None:
            return list(cached)

        found: Dict[str, None] = {}
        for clinic in self._catalog.all():
            labels = [clinic.name, clinic.city, *(part.strip() for part in clinic.address.split(","))]
            labels.extend(sorted(clinic.services))
            for label in labels:
                if label and needle in label.lower():
                    found.setdefault(label, None)
                if len(found) >= MAX_SUGGESTIONS:
                    break
            if len(found) >= MAX_SUGGESTIONS:
                break

        suggestions = list(found)
        self._cache.set(key, suggestions, self._suggestions_cache_ttl)
        return suggestions

    def popular_searches(self) -> List[str]:
        return list(POPULAR_SEARCHES)

    def get_clinic(self, clinic_id: str) -> Optional[Dict[str, Any]]:
        clinic = self._catalog.get(clinic_id)
        return clinic_to_dict(clinic) if clinic is not None else None

    def stats(self) -> Dict[str, Any]:
        return {"catalog": self._catalog.stats(), "cache": self._cache.stats()}

    def _elapsed_ms(self, started: float) -> int:
        return int(round((self._timer() - started) * 1000))
