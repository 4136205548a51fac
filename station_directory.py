# Station lookup: record defaulting plus SQL and HTTP backends.

from dataclasses import dataclass
import datetime
import logging
import math
import os
from typing import Any, Mapping, Optional, Protocol, Tuple, runtime_checkable
from urllib.parse import quote

import requests
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

log = logging.getLogger("station_directory")

DEFAULT_HEADWAY_MIN = 3
# one full day
MAX_HEADWAY_MIN = 1440
DEFAULT_SERVICE_START = "05:30"
DEFAULT_SERVICE_END = "01:15"
DEFAULT_LAST_WINDOW_START = "00:45"

STATION_COLUMNS = (
    "station",
    "line",
    "headway_min",
    "service_start",
    "service_end",
    "last_window_start",
)


@dataclass(frozen=True)
class StationConfig:
    name: str
    line: str
    headway_minutes: int
    service_start: str
    service_end: str
    last_window_start: str


class StationNotFound(Exception):
    def __init__(self, name: str):
        super().__init__(f"station not found: {name!r}")
        self.name = name


class DirectoryUnavailable(Exception):
    def __init__(self, message: str):
        super().__init__(message)


class MissingConfig(Exception):
    def __init__(self, message: str):
        super().__init__(message)


@runtime_checkable
class StationDirectory(Protocol):
    def lookup(self, name: str) -> StationConfig:
        ...

    def close(self) -> None:
        ...


def normalize_headway(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return DEFAULT_HEADWAY_MIN
    try:
        number = float(str(value).strip())
    except ValueError:
        return DEFAULT_HEADWAY_MIN
    if not math.isfinite(number) or number <= 0 or not number.is_integer():
        return DEFAULT_HEADWAY_MIN
    if number > MAX_HEADWAY_MIN:
        return DEFAULT_HEADWAY_MIN
    return int(number)


def normalize_time_of_day(value: Any, default: str) -> str:
    # TIME columns come back as datetime.time
    if isinstance(value, datetime.time):
        return value.strftime("%H:%M")
    if value is None:
        return default
    value = str(value).strip()
    return value or default


def normalize_station_record(row: Mapping[str, Any]) -> StationConfig:
    """Build a fully populated StationConfig from a raw station record.

    Missing or blank optional fields get the network defaults. Time strings are
    not validated here; a malformed value surfaces from the schedule engine.
    """
    return StationConfig(
        name=str(row.get("station") or "").strip(),
        line=str(row.get("line") or ""),
        headway_minutes=normalize_headway(row.get("headway_min")),
        service_start=normalize_time_of_day(row.get("service_start"), DEFAULT_SERVICE_START),
        service_end=normalize_time_of_day(row.get("service_end"), DEFAULT_SERVICE_END),
        last_window_start=normalize_time_of_day(
            row.get("last_window_start"), DEFAULT_LAST_WINDOW_START
        ),
    )


class SqlStationDirectory:
    """Stations table read through a SQLAlchemy connection pool."""

    _SELECT = text(
        "SELECT station, line, headway_min, service_start, service_end, last_window_start "
        "FROM stations WHERE station = :station LIMIT 1"
    )

    def __init__(self, database_url: str, **engine_kwargs: Any) -> None:
        # SQLAlchemy only accepts the "postgresql" scheme
        if database_url.startswith("postgres://"):
            database_url = "postgresql://" + database_url[len("postgres://"):]
        self.engine: Engine = create_engine(database_url, pool_pre_ping=True, **engine_kwargs)

    def lookup(self, name: str) -> StationConfig:
        name = (name or "").strip()
        if not name:
            raise StationNotFound(name)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(self._SELECT, {"station": name}).mappings().first()
        except SQLAlchemyError as exc:
            raise DirectoryUnavailable("station database query failed") from exc
        if row is None:
            raise StationNotFound(name)
        return normalize_station_record(row)

    def create_schema(self) -> None:
        ddl = text(
            "CREATE TABLE IF NOT EXISTS stations ("
            "station TEXT PRIMARY KEY, "
            "line TEXT NOT NULL, "
            "headway_min INTEGER, "
            "service_start TEXT, "
            "service_end TEXT, "
            "last_window_start TEXT)"
        )
        with self.engine.begin() as conn:
            conn.execute(ddl)

    def add_station(self, station: str, line: str, **fields: Any) -> None:
        unknown = set(fields) - set(STATION_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown station columns: {sorted(unknown)}")
        values = {column: None for column in STATION_COLUMNS}
        values.update(fields, station=station, line=line)
        stmt = text(
            "INSERT INTO stations (station, line, headway_min, service_start, service_end, "
            "last_window_start) VALUES (:station, :line, :headway_min, :service_start, "
            ":service_end, :last_window_start)"
        )
        with self.engine.begin() as conn:
            conn.execute(stmt, values)

    def close(self) -> None:
        self.engine.dispose()


class HttpStationDirectory:
    """Remote key-value station lookup: GET {base_url}/stations/{name}."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Tuple[float, float] = (3.0, 5.0),
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, name: str) -> StationConfig:
        name = (name or "").strip()
        if not name:
            raise StationNotFound(name)
        url = f"{self.base_url}/stations/{quote(name, safe='')}"
        try:
            resp = self.session.get(
                url,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        except requests.RequestException as exc:
            raise DirectoryUnavailable("station directory request failed") from exc

        if resp.status_code == 404:
            raise StationNotFound(name)
        if resp.status_code >= 400:
            raise DirectoryUnavailable(f"station directory error {resp.status_code}")

        try:
            record = resp.json()
        except ValueError as exc:
            raise DirectoryUnavailable("station directory invalid JSON") from exc
        if not isinstance(record, dict):
            raise DirectoryUnavailable("station directory returned a non-object record")
        if not record.get("station"):
            record["station"] = name
        return normalize_station_record(record)

    def close(self) -> None:
        self.session.close()


def directory_from_env(
    *, connect_timeout: float = 3.0, read_timeout: float = 5.0
) -> StationDirectory:
    directory_url = os.getenv("DIRECTORY_URL")
    if directory_url:
        log.info("Using HTTP station directory at %s", directory_url)
        return HttpStationDirectory(directory_url, timeout=(connect_timeout, read_timeout))

    database_url = os.getenv("DATABASE_URL") or os.getenv("PG_URI")
    if database_url:
        log.info("Using SQL station directory")
        return SqlStationDirectory(database_url)

    raise MissingConfig("Set DIRECTORY_URL or DATABASE_URL to configure the station directory")
