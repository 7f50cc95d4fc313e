"""Utilities for turning raw catalog rows into Clinic records and back."""

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from clinic_search.core.geo import format_distance
from clinic_search.models import Clinic, Coordinate, ScoredResult

logger = logging.getLogger(__name__)

_LAT_KEYS = ("lat", "latitude")
_LNG_KEYS = ("lng", "long", "lon", "longitude")


def _first_present(row: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None or isinstance(value, bool):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _strip_or_empty(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_coordinate(row: Dict[str, Any]) -> Optional[Coordinate]:
    source = row.get("coordinates") if isinstance(row.get("coordinates"), dict) else row
    lat = _safe_float(_first_present(source, _LAT_KEYS))
    lng = _safe_float(_first_present(source, _LNG_KEYS))
    if lat is None or lng is None:
        return None
    coordinate = Coordinate(lat=lat, lng=lng)
    return coordinate if coordinate.is_valid else None


def parse_rating(value: Any) -> Optional[float]:
    rating = _safe_float(value)
    if rating is None or not 0 <= rating <= 5:
        return None
    return rating


def parse_services(value: Any) -> FrozenSet[str]:
    if not value:
        return frozenset()
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    else:
        items = value
    return frozenset(s for s in (_strip_or_empty(item) for item in items) if s)


def parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


def to_clinic(row: Dict[str, Any]) -> Optional[Clinic]:
    """Normalise one catalog row; rows without an id or name are skipped."""
    clinic_id = _strip_or_empty(row.get("id"))
    name = _strip_or_empty(row.get("name"))
    if not clinic_id or not name:
        logger.debug("Skipping catalog row without id/name: %s", row)
        return None

    return Clinic(
        id=clinic_id,
        name=name,
        address=_strip_or_empty(row.get("address")),
        location=_strip_or_empty(row.get("location")),
        pincode=_strip_or_empty(row.get("pincode")),
        coordinate=parse_coordinate(row),
        rating=parse_rating(row.get("rating")),
        verified=parse_bool(row.get("verified")),
        status=_strip_or_empty(row.get("status")) or "active",
        services=parse_services(row.get("services") or row.get("treatments")),
        specialization=_strip_or_empty(row.get("specialization")),
        city=_strip_or_empty(row.get("city")),
        phone=_strip_or_empty(row.get("phone")) or None,
        website=_strip_or_empty(row.get("website")) or None,
    )


def to_clinics(rows: Iterable[Dict[str, Any]]) -> List[Clinic]:
    clinics: List[Clinic] = []
    for row in rows:
        clinic = to_clinic(row)
        if clinic is not None:
            clinics.append(clinic)
    return clinics


def clinic_to_dict(clinic: Clinic) -> Dict[str, Any]:
    coordinate = clinic.coordinate
    return {
        "id": clinic.id,
        "name": clinic.name,
        "address": clinic.address,
        "location": clinic.location,
        "pincode": clinic.pincode,
        "city": clinic.city,
        "lat": coordinate.lat if coordinate else None,
        "lng": coordinate.lng if coordinate else None,
        "rating": clinic.rating,
        "verified": clinic.verified,
        "status": clinic.status,
        "services": sorted(clinic.services),
        "specialization": clinic.specialization,
        "phone": clinic.phone,
        "website": clinic.website,
    }


def result_to_dict(result: ScoredResult) -> Dict[str, Any]:
    payload = clinic_to_dict(result.clinic)
    payload["relevanceScore"] = round(result.relevance_score, 4)
    payload["foundBy"] = [kind.value for kind in result.found_by]
    if result.distance_km is not None:
        payload["distanceKm"] = round(result.distance_km, 3)
        payload["distanceText"] = format_distance(result.distance_km)
    else:
        payload["distanceKm"] = None
    return payload
