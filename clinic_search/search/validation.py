"""Structural validation of inbound search requests."""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from clinic_search.models import Coordinate, SearchFilters, SearchQuery, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_KM = 10.0
MAX_RADIUS_KM = 500.0
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
MIN_QUERY_LENGTH = 2
MIN_PINCODE_DIGITS = 3


def _parse_number(value: Any, name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be numeric") from exc


def _parse_int(value: Any, name: str, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer") from exc


def _parse_bool(value: Any, name: str) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    raise ValidationError(f"{name} must be a boolean")


def parse_origin(lat: Any, lng: Any) -> Optional[Coordinate]:
    lat_val = _parse_number(lat, "lat")
    lng_val = _parse_number(lng, "lng")
    if lat_val is None and lng_val is None:
        return None
    if lat_val is None or lng_val is None:
        raise ValidationError("lat and lng must be provided together")
    origin = Coordinate(lat=lat_val, lng=lng_val)
    if not origin.is_valid:
        raise ValidationError("Invalid coordinates")
    return origin


def parse_pincode(value: Any) -> Optional[str]:
    if value is None:
        return None
    pincode = str(value).strip()
    if not pincode:
        return None
    if not pincode.isdigit():
        raise ValidationError("pincode must contain digits only")
    if len(pincode) < MIN_PINCODE_DIGITS:
        raise ValidationError(f"Invalid pincode. Minimum {MIN_PINCODE_DIGITS} digits required.")
    return pincode


def parse_filters(raw: Any) -> SearchFilters:
    if raw in (None, ""):
        return SearchFilters()
    if not isinstance(raw, Mapping):
        raise ValidationError("filters must be an object")

    min_rating = _parse_number(raw.get("minRating", raw.get("rating")), "filters.minRating")
    if min_rating is not None and not 0 <= min_rating <= 5:
        raise ValidationError("filters.minRating must be between 0 and 5")
    if min_rating == 0:
        min_rating = None

    status = raw.get("status")
    if status is not None and not isinstance(status, str):
        raise ValidationError("filters.status must be a string")

    services = raw.get("services") or ()
    if isinstance(services, str):
        services = [services]
    if not isinstance(services, (list, tuple)) or not all(isinstance(s, str) for s in services):
        raise ValidationError("filters.services must be a list of strings")

    return SearchFilters(
        verified=_parse_bool(raw.get("verified"), "filters.verified"),
        min_rating=min_rating,
        status=(status or "").strip() or None,
        services=tuple(s.strip() for s in services if s.strip()),
    )


def parse_limit_offset(limit: Any, offset: Any) -> Tuple[int, int]:
    limit_val = _parse_int(limit, "limit", DEFAULT_LIMIT)
    offset_val = _parse_int(offset, "offset", 0)
    if not 1 <= limit_val <= MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")
    if offset_val < 0:
        raise ValidationError("offset must not be negative")
    return limit_val, offset_val


def parse_search_request(payload: Dict[str, Any]) -> SearchQuery:
    """Build an immutable SearchQuery from a JSON body or query-string dict."""
    if not isinstance(payload, Mapping):
        raise ValidationError("request body must be an object")

    text = payload.get("query", payload.get("q")) or ""
    if not isinstance(text, str):
        raise ValidationError("query must be a string")
    text = text.strip()
    if text and len(text) < MIN_QUERY_LENGTH:
        raise ValidationError(f"query must be at least {MIN_QUERY_LENGTH} characters")

    radius = _parse_number(payload.get("radius"), "radius")
    if radius is None:
        radius = DEFAULT_RADIUS_KM
    if not 0 < radius <= MAX_RADIUS_KM:
        raise ValidationError(f"radius must be between 0 and {MAX_RADIUS_KM:g} km")

    limit, offset = parse_limit_offset(payload.get("limit"), payload.get("offset"))

    return SearchQuery(
        free_text=text,
        origin=parse_origin(payload.get("lat"), payload.get("lng")),
        pincode=parse_pincode(payload.get("pincode")),
        radius_km=radius,
        filters=parse_filters(payload.get("filters")),
        limit=limit,
        offset=offset,
    )
