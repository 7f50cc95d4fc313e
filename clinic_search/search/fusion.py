"""Merges per-strategy candidate lists into one ranked, deduplicated list."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from clinic_search.models import Candidate, ScoredResult, SearchQuery, StrategyKind

logger = logging.getLogger(__name__)

BASE_SCORE = 10.0
DISTANCE_CEILING_KM = 20.0
RATING_WEIGHT = 2.0
NAME_MATCH_BONUS = 15.0
VERIFIED_BONUS = 5.0
PRIMARY_CONFIRMATION_BONUS = 10.0
CONFIRMATION_BONUS = 5.0


def score_candidate(candidate: Candidate, text_lower: str) -> float:
    clinic = candidate.clinic
    score = BASE_SCORE
    if candidate.distance_km is not None:
        score += max(0.0, DISTANCE_CEILING_KM - candidate.distance_km)
    if clinic.rating:
        score += clinic.rating * RATING_WEIGHT
    if text_lower and text_lower in clinic.name.lower():
        score += NAME_MATCH_BONUS
    if clinic.verified:
        score += VERIFIED_BONUS
    return score


@dataclass(slots=True)
class _Entry:
    candidate: Candidate
    score: float
    found_by: List[StrategyKind]
    distance_km: Optional[float]


class ResultFusion:
    """Deterministic merge: same inputs, same output, regardless of completion order."""

    def merge(
        self,
        candidate_lists: Sequence[Tuple[int, Sequence[Candidate]]],
        query: SearchQuery,
        limit: Optional[int] = None,
    ) -> List[ScoredResult]:
        text_lower = query.text.lower()
        entries: Dict[str, _Entry] = {}
        order: List[str] = []

        for strategy_index, candidates in candidate_lists:
            for candidate in candidates:
                clinic_id = candidate.clinic.id
                existing = entries.get(clinic_id)
                if existing is None:
                    entries[clinic_id] = _Entry(
                        candidate=candidate,
                        score=score_candidate(candidate, text_lower),
                        found_by=[candidate.source],
                        distance_km=candidate.distance_km,
                    )
                    order.append(clinic_id)
                    continue

                existing.score += PRIMARY_CONFIRMATION_BONUS if strategy_index == 0 else CONFIRMATION_BONUS
                if candidate.source not in existing.found_by:
                    existing.found_by.append(candidate.source)
                if existing.distance_km is None:
                    existing.distance_km = candidate.distance_km

        # sorted() is stable, so equal scores keep first-seen order.
        ranked = sorted((entries[clinic_id] for clinic_id in order), key=lambda entry: entry.score, reverse=True)
        if limit is not None:
            ranked = ranked[:limit]
        return [
            ScoredResult(
                clinic=entry.candidate.clinic,
                relevance_score=entry.score,
                found_by=tuple(entry.found_by),
                distance_km=entry.distance_km,
            )
            for entry in ranked
        ]

    def annotate(self, candidates: Sequence[Candidate], query: SearchQuery) -> List[ScoredResult]:
        """Score a single strategy's list without reordering it."""
        text_lower = query.text.lower()
        return [
            ScoredResult(
                clinic=candidate.clinic,
                relevance_score=score_candidate(candidate, text_lower),
                found_by=(candidate.source,),
                distance_km=candidate.distance_km,
            )
            for candidate in candidates
        ]
