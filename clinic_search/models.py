"""Core data models shared by the clinic search pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class ValidationError(ValueError):
    """Raised when a search request is structurally invalid."""


class StrategyKind(str, Enum):
    GEOSPATIAL = "GEOSPATIAL"
    PINCODE = "PINCODE"
    TEXT = "TEXT"
    HYBRID = "HYBRID"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True, slots=True)
class Coordinate:
    lat: float
    lng: float

    @property
    def is_valid(self) -> bool:
        if isinstance(self.lat, bool) or isinstance(self.lng, bool):
            return False
        if not isinstance(self.lat, (int, float)) or not isinstance(self.lng, (int, float)):
            return False
        if math.isnan(self.lat) or math.isnan(self.lng):
            return False
        return -90 <= self.lat <= 90 and -180 <= self.lng <= 180

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True, slots=True)
class Clinic:
    """Immutable snapshot of one catalog entry.

    Instances are owned by the catalog snapshot; strategies and fusion only
    hold references to them.
    """

    id: str
    name: str
    address: str = ""
    location: str = ""
    pincode: str = ""
    coordinate: Optional[Coordinate] = None
    rating: Optional[float] = None
    verified: bool = False
    status: str = "active"
    services: FrozenSet[str] = frozenset()
    specialization: str = ""
    city: str = ""
    phone: Optional[str] = None
    website: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SearchFilters:
    verified: Optional[bool] = None
    min_rating: Optional[float] = None
    status: Optional[str] = None
    services: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.min_rating is not None and not 0 <= self.min_rating <= 5:
            raise ValueError("min_rating must be between 0 and 5")

    def matches(self, clinic: Clinic) -> bool:
        if self.verified is not None and clinic.verified is not self.verified:
            return False
        if self.min_rating is not None and (clinic.rating is None or clinic.rating < self.min_rating):
            return False
        if self.status and clinic.status != self.status:
            return False
        if self.services:
            offered = {service.lower() for service in clinic.services}
            if not all(service.lower() in offered for service in self.services):
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "minRating": self.min_rating,
            "status": self.status,
            "services": sorted(self.services),
        }


@dataclass(frozen=True, slots=True)
class SearchQuery:
    free_text: str = ""
    origin: Optional[Coordinate] = None
    pincode: Optional[str] = None
    radius_km: float = 10.0
    filters: SearchFilters = field(default_factory=SearchFilters)
    limit: int = 20
    offset: int = 0

    def __post_init__(self) -> None:
        if self.radius_km <= 0:
            raise ValueError("radius_km must be positive")
        if self.limit <= 0:
            raise ValueError("limit must be positive")
        if self.offset < 0:
            raise ValueError("offset must not be negative")

    @property
    def text(self) -> str:
        return (self.free_text or "").strip()

    @property
    def has_valid_origin(self) -> bool:
        return self.origin is not None and self.origin.is_valid

    @property
    def window(self) -> int:
        """Number of ranked results needed to serve ``offset + limit``."""
        return self.offset + self.limit


@dataclass(slots=True)
class Candidate:
    clinic: Clinic
    source: StrategyKind
    distance_km: Optional[float] = None
    text_score: Optional[float] = None


@dataclass(frozen=True, slots=True)
class ScoredResult:
    clinic: Clinic
    relevance_score: float
    found_by: Tuple[StrategyKind, ...]
    distance_km: Optional[float] = None


@dataclass(frozen=True, slots=True)
class PincodeMatches:
    """Per-tier membership of a pincode lookup, in priority order."""

    exact: Tuple[Clinic, ...] = ()
    address: Tuple[Clinic, ...] = ()
    location: Tuple[Clinic, ...] = ()
    nearby: Tuple[Clinic, ...] = ()

    def ordered(self) -> List[Clinic]:
        return [*self.exact, *self.address, *self.location, *self.nearby]

    def counts(self) -> Dict[str, int]:
        return {
            "exactMatches": len(self.exact),
            "addressMatches": len(self.address),
            "locationMatches": len(self.location),
            "nearbyMatches": len(self.nearby),
        }


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    current_count: int
    limit: int
    reset_at: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)

    def retry_after_seconds(self, now_ms: int) -> int:
        return max(0, math.ceil((self.reset_at - now_ms) / 1000))


@dataclass(slots=True)
class SearchOutcome:
    strategy: StrategyKind
    results: List[ScoredResult]
    total: int
    limit: int
    offset: int
    pincode_matches: Optional[PincodeMatches] = None
    degraded: bool = False

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total
