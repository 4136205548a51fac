#!/usr/bin/env python3
# Next / last metro API for the Paris station schedule.

import atexit
import datetime
import logging
import os
import signal
import time
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, Response

from schedule_engine import TZ_NAME, ScheduleError, last_departure, next_metro, now_in_zone
from station_directory import (
    DirectoryUnavailable,
    StationDirectory,
    StationNotFound,
    directory_from_env,
)

load_dotenv()

log = logging.getLogger("metro_api")
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


def env_csv(name: str, default: str) -> List[str]:
    value = os.getenv(name, default)
    return [item.strip() for item in value.split(",") if item.strip()]


CORS_ALLOWED_ORIGINS = set(env_csv("CORS_ALLOWED_ORIGINS", ""))

DIRECTORY_CONNECT_TIMEOUT_SEC = env_float("DIRECTORY_CONNECT_TIMEOUT_SEC", 3.0)
DIRECTORY_READ_TIMEOUT_SEC = env_float("DIRECTORY_READ_TIMEOUT_SEC", 5.0)

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = env_int("APP_PORT", env_int("PORT", 5000))

JsonDict = Dict[str, Any]
Clock = Callable[[], datetime.datetime]


def error_response(status: int, message: str) -> Response:
    resp = jsonify({"error": message})
    resp.status_code = status
    resp.headers["Cache-Control"] = "no-store"
    return resp


def station_param() -> str:
    return (request.args.get("station") or "").strip()


def build_directory() -> StationDirectory:
    return directory_from_env(
        connect_timeout=DIRECTORY_CONNECT_TIMEOUT_SEC,
        read_timeout=DIRECTORY_READ_TIMEOUT_SEC,
    )


def create_app(
    directory: Optional[StationDirectory] = None, clock: Optional[Clock] = None
) -> Flask:
    if directory is None:
        directory = build_directory()
        atexit.register(directory.close)
    now_fn: Clock = clock or now_in_zone

    app = Flask(__name__)
    app.extensions["station_directory"] = directory

    @app.before_request
    def start_timer() -> None:
        g.request_started = time.monotonic()

    @app.after_request
    def add_common_headers(resp: Response) -> Response:
        origin = request.headers.get("Origin")
        if origin and origin in CORS_ALLOWED_ORIGINS:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Vary"] = "Origin"
            resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
            resp.headers["Access-Control-Max-Age"] = "600"

        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("X-Frame-Options", "DENY")

        started = g.get("request_started")
        elapsed_ms = int((time.monotonic() - started) * 1000) if started is not None else 0
        log.info("%s %s -> %s %dms", request.method, request.path, resp.status_code, elapsed_ms)
        return resp

    @app.errorhandler(404)
    @app.errorhandler(405)
    def not_found(_exc: Exception) -> Response:
        return error_response(404, "not found")

    @app.errorhandler(500)
    def internal_error(exc: Exception) -> Response:
        log.error("Unhandled error: %s", getattr(exc, "original_exception", None) or exc)
        return error_response(500, "internal error")

    @app.route("/health", methods=["GET"])
    def health() -> Response:
        return jsonify({"status": "ok"})

    @app.route("/next-metro", methods=["GET"])
    def next_metro_route() -> Response:
        station = station_param()
        if not station:
            return error_response(400, "missing station")

        try:
            config = directory.lookup(station)
            now = now_in_zone(now_fn())
            result = next_metro(
                now,
                headway_minutes=config.headway_minutes,
                service_start=config.service_start,
                service_end=config.service_end,
                last_window_start=config.last_window_start,
            )
        except StationNotFound:
            return error_response(404, "station not found")
        except DirectoryUnavailable as exc:
            log.error("Station lookup failed for %r: %s", station, exc)
            return error_response(500, "internal error")
        except ScheduleError as exc:
            log.error("Schedule error for %r: %s", station, exc)
            return error_response(500, "internal error")
        except Exception:
            log.exception("Error in /next-metro")
            return error_response(500, "internal error")

        if result is None:
            return jsonify({"service": "closed", "tz": TZ_NAME})

        payload: JsonDict = {
            "station": config.name,
            "line": config.line,
            "headwayMin": config.headway_minutes,
            "nextArrival": result.next_arrival,
            "isLast": result.is_last,
            "tz": TZ_NAME,
        }
        return jsonify(payload)

    @app.route("/last-metro", methods=["GET"])
    def last_metro_route() -> Response:
        station = station_param()
        if not station:
            return error_response(400, "missing station")

        try:
            config = directory.lookup(station)
            departure = last_departure(config.service_end)
        except StationNotFound:
            return error_response(404, "station not found")
        except DirectoryUnavailable as exc:
            log.error("Station lookup failed for %r: %s", station, exc)
            return error_response(500, "internal error")
        except ScheduleError as exc:
            log.error("Schedule error for %r: %s", station, exc)
            return error_response(500, "internal error")
        except Exception:
            log.exception("Error in /last-metro")
            return error_response(500, "internal error")

        payload: JsonDict = {
            "station": config.name,
            "line": config.line,
            "lastDeparture": departure,
            "tz": TZ_NAME,
        }
        return jsonify(payload)

    return app


def handle_sigterm(signum: int, _frame: Any) -> None:
    log.info("SIGTERM signal received: closing HTTP server")
    raise SystemExit(0)


def main() -> None:
    directory = build_directory()
    app = create_app(directory)
    signal.signal(signal.SIGTERM, handle_sigterm)
    log.info("API ready on http://localhost:%s", APP_PORT)
    try:
        app.run(host=APP_HOST, port=APP_PORT)
    finally:
        directory.close()
        log.info("Station directory closed")


if __name__ == "__main__":
    main()
