"""HTTP entrypoint for clinic search (Flask)."""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Dict

from flask import Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from clinic_search.core.catalog import CatalogUnavailableError
from clinic_search.core.config import get_settings
from clinic_search.core.rate_limit import CallerIdentity
from clinic_search.models import RateLimitDecision, ValidationError
from clinic_search.search.validation import parse_limit_offset, parse_search_request
from clinic_search.services import Services, build_services

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

_SEARCH_ARGS = ("q", "query", "lat", "lng", "pincode", "radius", "limit", "offset")
_FILTER_ARGS = ("verified", "minRating", "rating", "status")


def _services() -> Services:
    return current_app.config["SERVICES"]


def caller_identity() -> CallerIdentity:
    """Authenticated user id from the upstream auth layer, else the network origin."""
    header = _services().settings.identity_header
    user_id = (request.headers.get(header) or "").strip() or None
    forwarded = request.headers.get("X-Forwarded-For", "")
    remote_addr = forwarded.split(",")[0].strip() if forwarded else ""
    return CallerIdentity(remote_addr=remote_addr or request.remote_addr or "", user_id=user_id)


def _rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at),
    }


def rate_limited(rule_name: str) -> Callable:
    """Admit the request under ``rule_name`` or answer 429."""

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            limiter = _services().rate_limiter
            rule = limiter.rules[rule_name]
            decision = limiter.check(rule_name, caller_identity())
            g.rate_limit = decision
            if not decision.allowed:
                retry_after = decision.retry_after_seconds(limiter.now_ms())
                logger.info("Rate limit %s exceeded", rule_name)
                response = jsonify(
                    {
                        "error": rule.message,
                        "limit": decision.limit,
                        "remaining": 0,
                        "resetAt": decision.reset_at,
                        "retryAfterSeconds": retry_after,
                    }
                )
                response.status_code = 429
                response.headers["Retry-After"] = str(retry_after)
                return response
            return view(*args, **kwargs)

        return wrapper

    return decorator


def _search_payload_from_args() -> Dict[str, Any]:
    args = request.args
    payload: Dict[str, Any] = {name: args.get(name) for name in _SEARCH_ARGS if args.get(name) is not None}
    filters: Dict[str, Any] = {name: args.get(name) for name in _FILTER_ARGS if args.get(name) is not None}
    services = args.getlist("services")
    if services:
        filters["services"] = services
    if filters:
        payload["filters"] = filters
    return payload


def create_app(services: Services) -> Flask:
    app = Flask(__name__)
    app.config["SERVICES"] = services

    @app.after_request
    def attach_rate_limit_headers(response):
        decision = g.get("rate_limit")
        if decision is not None:
            response.headers.update(_rate_limit_headers(decision))
        return response

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError) -> Any:
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(CatalogUnavailableError)
    def handle_catalog_unavailable(exc: CatalogUnavailableError) -> Any:
        logger.error("Catalog unavailable: %s", exc)
        return jsonify({"error": "clinic catalog is unavailable"}), 503

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception) -> Any:
        if isinstance(exc, HTTPException):
            return exc
        logger.exception("Unhandled error on %s: %s", request.path, exc)
        return jsonify({"error": "internal server error"}), 500

    # ---------- Routes ----------

    @app.get("/")
    def root() -> Any:
        return "ok", 200

    @app.get("/api/health")
    @rate_limited("general")
    def health() -> Any:
        svc = _services()
        stats = svc.orchestrator.stats()
        stats["rateLimiter"] = {"degraded": svc.rate_limiter.degraded}
        status = "ok" if stats["catalog"]["loaded"] else "degraded"
        return jsonify({"status": status, **stats}), 200

    @app.post("/api/search")
    @rate_limited("search")
    def search_post() -> Any:
        payload = request.get_json(silent=True)
        query = parse_search_request(payload if payload is not None else {})
        return jsonify(_services().orchestrator.search(query)), 200

    @app.get("/api/search")
    @rate_limited("search")
    def search_get() -> Any:
        query = parse_search_request(_search_payload_from_args())
        return jsonify(_services().orchestrator.search(query)), 200

    @app.get("/api/search/popular")
    @rate_limited("general")
    def popular_searches() -> Any:
        return jsonify({"popular": _services().orchestrator.popular_searches()}), 200

    @app.get("/api/clinics/suggestions")
    @rate_limited("clinic")
    def suggestions() -> Any:
        text = request.args.get("query", request.args.get("q", ""))
        return jsonify({"suggestions": _services().orchestrator.suggestions(text)}), 200

    @app.get("/api/clinics/pincode/<pincode>")
    @rate_limited("clinic")
    def clinics_by_pincode(pincode: str) -> Any:
        limit, _ = parse_limit_offset(request.args.get("limit"), None)
        return jsonify(_services().orchestrator.search_by_pincode(pincode, limit)), 200

    @app.get("/api/clinics/<clinic_id>")
    @rate_limited("clinic")
    def clinic_detail(clinic_id: str) -> Any:
        clinic = _services().orchestrator.get_clinic(clinic_id)
        if clinic is None:
            return jsonify({"error": "clinic not found"}), 404
        return jsonify({"clinic": clinic}), 200

    return app


def main() -> None:
    settings = get_settings()
    services = build_services(settings)
    app = create_app(services)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", settings.port)
    try:
        app.run(host="0.0.0.0", port=settings.port, threaded=True)
    finally:
        services.close()


if __name__ == "__main__":
    main()
