#!/usr/bin/env python3
# RMV departure-board proxy for the tram stop dashboard.

from dataclasses import dataclass, field
import logging
import os
import sys
from typing import Any, List, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, make_response, request, Response

from departure_cache import TTLCache
from departures import DEFAULT_TTL_SEC, DepartureService
from rmv_client import RMV_DEPARTURE_BOARD_URL, RmvClient, UpstreamError

log = logging.getLogger("rmv_proxy")
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_csv(name: str, default: str) -> List[str]:
    value = os.getenv(name, default)
    return [item.strip() for item in value.split(",") if item.strip()]


class MissingConfig(Exception):
    def __init__(self, message: str):
        super().__init__(message)


@dataclass
class Config:
    api_key: str
    stop_id: str
    port: int = 8080
    host: str = "0.0.0.0"
    allowed_origins: List[str] = field(default_factory=list)
    rmv_base_url: str = RMV_DEPARTURE_BOARD_URL
    duration_min: int = 60
    connect_timeout_sec: float = 3.0
    read_timeout_sec: float = 7.0
    cache_ttl_sec: int = DEFAULT_TTL_SEC
    max_cache: int = 0
    coalesce_fetches: bool = False
    enable_hsts: bool = False
    hsts_max_age_sec: int = 15552000


def load_config() -> Config:
    api_key = os.getenv("RMV_API_KEY", "").strip()
    stop_id = os.getenv("STOP_ID", "").strip()
    if not api_key:
        raise MissingConfig("RMV_API_KEY environment variable is required")
    if not stop_id:
        raise MissingConfig("STOP_ID environment variable is required")

    return Config(
        api_key=api_key,
        stop_id=stop_id,
        port=env_int("PORT", 8080),
        host=os.getenv("APP_HOST", "0.0.0.0"),
        allowed_origins=env_csv("ALLOWED_ORIGINS", ""),
        rmv_base_url=os.getenv("RMV_BASE_URL", RMV_DEPARTURE_BOARD_URL),
        duration_min=env_int("DEPARTURE_DURATION_MIN", 60),
        connect_timeout_sec=env_float("RMV_CONNECT_TIMEOUT_SEC", 3.0),
        read_timeout_sec=env_float("RMV_READ_TIMEOUT_SEC", 7.0),
        cache_ttl_sec=env_int("CACHE_TTL_SEC", DEFAULT_TTL_SEC),
        max_cache=env_int("MAX_CACHE", 0),
        coalesce_fetches=env_bool("COALESCE_FETCHES", False),
        enable_hsts=env_bool("ENABLE_HSTS", False),
        hsts_max_age_sec=env_int("HSTS_MAX_AGE_SEC", 15552000),
    )


def build_service(config: Config) -> DepartureService:
    client = RmvClient(
        config.api_key,
        base_url=config.rmv_base_url,
        duration_min=config.duration_min,
        connect_timeout_sec=config.connect_timeout_sec,
        read_timeout_sec=config.read_timeout_sec,
    )
    cache = TTLCache(max_entries=config.max_cache)
    return DepartureService(
        cache, client, ttl_sec=config.cache_ttl_sec, coalesce=config.coalesce_fetches
    )


def origin_allowed(origin: Optional[str], allowed_origins: List[str]) -> bool:
    if not origin:
        return False
    return origin in allowed_origins or "*" in allowed_origins


def error_response(status: int, message: str) -> Response:
    resp = jsonify({"error": message})
    resp.status_code = status
    resp.headers["Cache-Control"] = "no-store"
    return resp


def create_app(config: Config, service: Optional[DepartureService] = None) -> Flask:
    if service is None:
        service = build_service(config)

    app = Flask(__name__)
    # Upstream payload is forwarded as-is, key order included.
    app.json.sort_keys = False  # type: ignore[attr-defined]
    app.json.ensure_ascii = False  # type: ignore[attr-defined]
    app.extensions["departure_service"] = service

    @app.before_request
    def answer_preflight() -> Optional[Response]:
        if request.method == "OPTIONS":
            return make_response("", 204)
        return None

    @app.after_request
    def add_common_headers(resp: Response) -> Response:
        origin = request.headers.get("Origin")
        if origin_allowed(origin, config.allowed_origins):
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Vary"] = "Origin"
            resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"

        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("X-Frame-Options", "DENY")

        if config.enable_hsts and request.is_secure:
            resp.headers.setdefault(
                "Strict-Transport-Security",
                f"max-age={config.hsts_max_age_sec}; includeSubDomains",
            )
        return resp

    @app.route("/next-departures", methods=["GET", "OPTIONS"])
    def next_departures() -> Response:
        try:
            data: Any = service.get_departures(config.stop_id)
        except UpstreamError as exc:
            log.error("failed to fetch departures: status=%s %s", exc.status, exc)
            return error_response(500, "Failed to fetch departures")
        except Exception:
            log.exception("failed to fetch departures")
            return error_response(500, "Failed to fetch departures")

        return jsonify(data)

    return app


def main() -> None:
    if not load_dotenv():
        log.info("No .env file loaded, using process environment")

    try:
        config = load_config()
    except MissingConfig as exc:
        log.error("%s", exc)
        sys.exit(1)

    app = create_app(config)
    log.info("Starting server addr=%s:%s stop=%s", config.host, config.port, config.stop_id)
    app.run(host=config.host, port=config.port, threaded=True)


if __name__ == "__main__":
    main()
