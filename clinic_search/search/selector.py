"""Chooses the retrieval strategy for a search request."""

from clinic_search.models import SearchQuery, StrategyKind

PINCODE_LENGTH = 6


def is_full_pincode(pincode: str) -> bool:
    return bool(pincode) and len(pincode) == PINCODE_LENGTH and pincode.isdigit()


class StrategySelector:
    """Location beats postal code, postal code beats free text, free text beats the default listing."""

    def select(self, query: SearchQuery) -> StrategyKind:
        has_text = bool(query.text)

        if query.has_valid_origin:
            return StrategyKind.HYBRID if has_text else StrategyKind.GEOSPATIAL

        if is_full_pincode(query.pincode or ""):
            return StrategyKind.HYBRID if has_text else StrategyKind.PINCODE

        if has_text:
            return StrategyKind.TEXT

        return StrategyKind.FALLBACK
