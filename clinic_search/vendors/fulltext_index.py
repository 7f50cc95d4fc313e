"""Client for the optional Elasticsearch-compatible clinic index."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from clinic_search.models import Coordinate, SearchFilters

logger = logging.getLogger(__name__)


class FullTextIndexError(RuntimeError):
    """Raised when the index cannot answer a query."""


@dataclass(frozen=True)
class IndexHit:
    clinic_id: str
    score: float
    distance_km: Optional[float] = None


@dataclass(frozen=True)
class IndexResults:
    """One page of hits plus the index's count of every matching document."""

    hits: List[IndexHit]
    total: int


def _build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=1,
        backoff_factor=0.2,
        status_forcelist=(502, 503, 504),
        allowed_methods=("POST", "GET"),
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


def build_search_body(
    query: str,
    geo: Optional[Coordinate],
    radius_km: float,
    filters: SearchFilters,
    size: int,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "size": size,
        "query": {"bool": {"must": [], "filter": [], "should": []}},
        "sort": ["_score"],
    }
    bool_query = body["query"]["bool"]

    if query:
        bool_query["must"].append(
            {
                "multi_match": {
                    "query": query,
                    "fields": ["name^3", "address^2", "description", "services", "specializations"],
                    "type": "best_fields",
                    "fuzziness": "AUTO",
                }
            }
        )
    else:
        bool_query["must"].append({"match_all": {}})

    if geo is not None and geo.is_valid:
        point = {"lat": geo.lat, "lon": geo.lng}
        bool_query["filter"].append({"geo_distance": {"distance": f"{radius_km}km", "location": point}})
        body["sort"].append({"_geo_distance": {"location": point, "order": "asc", "unit": "km", "mode": "min"}})

    if filters.verified is not None:
        bool_query["filter"].append({"term": {"verified": filters.verified}})
    if filters.min_rating:
        bool_query["filter"].append({"range": {"rating": {"gte": filters.min_rating}}})
    if filters.status:
        bool_query["filter"].append({"term": {"status": filters.status}})
    if filters.services:
        bool_query["filter"].append({"terms": {"services": list(filters.services)}})

    bool_query["should"].append({"term": {"verified": {"value": True, "boost": 1.5}}})
    return body


def parse_search_response(payload: Any) -> IndexResults:
    hits_block = payload.get("hits") or {}
    hits = hits_block.get("hits")
    if not isinstance(hits, list):
        raise FullTextIndexError("index response is missing hits")

    results: List[IndexHit] = []
    for hit in hits:
        clinic_id = hit.get("_id")
        if not clinic_id:
            continue
        sort_values = hit.get("sort") or []
        distance = float(sort_values[1]) if len(sort_values) > 1 else None
        results.append(IndexHit(clinic_id=str(clinic_id), score=float(hit.get("_score") or 0.0), distance_km=distance))

    # Newer servers report {"value": n, "relation": "eq"}, older ones a bare int.
    total = hits_block.get("total")
    if isinstance(total, dict):
        total = total.get("value")
    total = int(total) if total is not None else len(results)
    return IndexResults(hits=results, total=max(total, len(results)))


class FullTextIndexClient:
    def __init__(
        self,
        base_url: str,
        index_name: str = "rehab_clinics",
        timeout: float = 3.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/{index_name}/_search"
        self._timeout = timeout
        self._session = session or _build_session()

    def search(
        self,
        query: str,
        geo: Optional[Coordinate] = None,
        filters: Optional[SearchFilters] = None,
        radius_km: float = 10.0,
        size: int = 20,
    ) -> IndexResults:
        body = build_search_body(query, geo, radius_km, filters or SearchFilters(), size)
        try:
            response = self._session.post(self._url, json=body, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Full-text index request failed: %s", exc)
            raise FullTextIndexError(str(exc)) from exc

        try:
            return parse_search_response(payload)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Full-text index returned a malformed response: %s", exc)
            raise FullTextIndexError(f"malformed index response: {exc}") from exc

    def close(self) -> None:
        self._session.close()
