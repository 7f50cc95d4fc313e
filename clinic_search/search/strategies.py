"""Retrieval strategies that turn a catalog snapshot into candidate lists."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from clinic_search.core.geo import distance_km
from clinic_search.models import Candidate, Clinic, PincodeMatches, SearchQuery, StrategyKind
from clinic_search.search.selector import is_full_pincode
from clinic_search.vendors.fulltext_index import FullTextIndexClient, FullTextIndexError

logger = logging.getLogger(__name__)

SUBDIVISION_DIGITS = 3

EXACT_NAME_SCORE = 100.0
NAME_PREFIX_SCORE = 50.0
VERIFIED_TEXT_SCORE = 20.0
RATING_TEXT_WEIGHT = 5.0


class RetrievalStrategy:
    kind: StrategyKind

    def retrieve(self, query: SearchQuery, clinics: Sequence[Clinic]) -> List[Candidate]:
        raise NotImplementedError

    def retrieve_page(self, query: SearchQuery, clinics: Sequence[Clinic]) -> Tuple[List[Candidate], int]:
        """Candidates plus the number of matches before any truncation."""
        candidates = self.retrieve(query, clinics)
        return candidates, len(candidates)


class GeospatialStrategy(RetrievalStrategy):
    """Every clinic within ``radius_km`` of the origin, closest first."""

    kind = StrategyKind.GEOSPATIAL

    def retrieve(self, query: SearchQuery, clinics: Sequence[Clinic]) -> List[Candidate]:
        if not query.has_valid_origin:
            return []

        candidates: List[Candidate] = []
        for clinic in clinics:
            if clinic.coordinate is None or not query.filters.matches(clinic):
                continue
            distance = distance_km(query.origin, clinic.coordinate)
            if distance is None or distance > query.radius_km:
                continue
            candidates.append(Candidate(clinic=clinic, source=self.kind, distance_km=distance))

        candidates.sort(key=lambda candidate: candidate.distance_km)
        return candidates


class PincodeStrategy(RetrievalStrategy):
    """Tiered pincode lookup: exact, address, location, then postal subdivision.

    Each clinic lands in the first tier it matches. The nearby tier only
    applies when both pincodes are full six-digit codes.
    """

    kind = StrategyKind.PINCODE

    def match(self, pincode: str, clinics: Sequence[Clinic], query: Optional[SearchQuery] = None) -> PincodeMatches:
        exact: List[Clinic] = []
        address: List[Clinic] = []
        location: List[Clinic] = []
        nearby: List[Clinic] = []
        search_full = is_full_pincode(pincode)
        subdivision = pincode[:SUBDIVISION_DIGITS]

        for clinic in clinics:
            if query is not None and not query.filters.matches(clinic):
                continue
            if clinic.pincode == pincode:
                exact.append(clinic)
            elif pincode in clinic.address:
                address.append(clinic)
            elif pincode in clinic.location:
                location.append(clinic)
            elif search_full and is_full_pincode(clinic.pincode) and clinic.pincode[:SUBDIVISION_DIGITS] == subdivision:
                nearby.append(clinic)

        return PincodeMatches(exact=tuple(exact), address=tuple(address), location=tuple(location), nearby=tuple(nearby))

    def retrieve_with_matches(
        self, query: SearchQuery, clinics: Sequence[Clinic]
    ) -> Tuple[List[Candidate], PincodeMatches]:
        if not query.pincode:
            return [], PincodeMatches()
        matches = self.match(query.pincode, clinics, query)
        ordered = matches.ordered()[: query.window]
        return [Candidate(clinic=clinic, source=self.kind) for clinic in ordered], matches

    def retrieve(self, query: SearchQuery, clinics: Sequence[Clinic]) -> List[Candidate]:
        candidates, _ = self.retrieve_with_matches(query, clinics)
        return candidates

    def retrieve_page(self, query: SearchQuery, clinics: Sequence[Clinic]) -> Tuple[List[Candidate], int]:
        candidates, matches = self.retrieve_with_matches(query, clinics)
        return candidates, len(matches.ordered())


def text_relevance(clinic: Clinic, text_lower: str) -> float:
    name = clinic.name.lower()
    score = 0.0
    if name == text_lower:
        score += EXACT_NAME_SCORE
    if name.startswith(text_lower):
        score += NAME_PREFIX_SCORE
    if clinic.verified:
        score += VERIFIED_TEXT_SCORE
    score += (clinic.rating or 0.0) * RATING_TEXT_WEIGHT
    return score


def text_matches(clinic: Clinic, text: str) -> bool:
    if text.isdigit():
        return text in clinic.pincode or text in clinic.address or text in clinic.location

    text_lower = text.lower()
    fields = (clinic.name, clinic.address, clinic.location, clinic.specialization, clinic.city)
    if any(text_lower in field.lower() for field in fields):
        return True
    return any(text_lower in service.lower() for service in clinic.services)


class TextStrategy(RetrievalStrategy):
    """Substring search over the snapshot, or the external index when one is configured."""

    kind = StrategyKind.TEXT

    def __init__(self, index_client: Optional[FullTextIndexClient] = None) -> None:
        self._index_client = index_client

    def retrieve(self, query: SearchQuery, clinics: Sequence[Clinic]) -> List[Candidate]:
        candidates, _ = self.retrieve_page(query, clinics)
        return candidates

    def retrieve_page(self, query: SearchQuery, clinics: Sequence[Clinic]) -> Tuple[List[Candidate], int]:
        text = query.text
        if not text:
            return [], 0

        if self._index_client is not None:
            try:
                return self._from_index(query, clinics)
            except FullTextIndexError as exc:
                logger.warning("Full-text index unavailable, scanning catalog instead: %s", exc)

        text_lower = text.lower()
        scored = [
            Candidate(clinic=clinic, source=self.kind, text_score=text_relevance(clinic, text_lower))
            for clinic in clinics
            if text_matches(clinic, text) and query.filters.matches(clinic)
        ]
        scored.sort(key=lambda candidate: (candidate.text_score, candidate.clinic.rating or 0.0), reverse=True)
        return scored, len(scored)

    def _from_index(self, query: SearchQuery, clinics: Sequence[Clinic]) -> Tuple[List[Candidate], int]:
        results = self._index_client.search(query.text, filters=query.filters, size=query.window)
        by_id = {clinic.id: clinic for clinic in clinics}
        candidates: List[Candidate] = []
        for hit in results.hits:
            clinic = by_id.get(hit.clinic_id)
            if clinic is None or not query.filters.matches(clinic):
                continue
            candidates.append(
                Candidate(clinic=clinic, source=self.kind, distance_km=hit.distance_km, text_score=hit.score)
            )
        # Hits the snapshot cannot resolve or the filters reject are not counted.
        dropped = len(results.hits) - len(candidates)
        return candidates, max(len(candidates), results.total - dropped)


class FallbackStrategy(RetrievalStrategy):
    """Unfiltered default listing: highest rated first, catalog order on ties."""

    kind = StrategyKind.FALLBACK

    def retrieve(self, query: SearchQuery, clinics: Sequence[Clinic]) -> List[Candidate]:
        candidates, _ = self.retrieve_page(query, clinics)
        return candidates

    def retrieve_page(self, query: SearchQuery, clinics: Sequence[Clinic]) -> Tuple[List[Candidate], int]:
        eligible = [clinic for clinic in clinics if query.filters.matches(clinic)]
        eligible.sort(key=lambda clinic: clinic.rating if clinic.rating is not None else -1.0, reverse=True)
        return [Candidate(clinic=clinic, source=self.kind) for clinic in eligible[: query.window]], len(eligible)
