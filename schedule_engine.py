# Service-window and next-arrival arithmetic for a metro station.

from dataclasses import dataclass
import datetime
import math
from typing import Any, Optional, Tuple
from zoneinfo import ZoneInfo

TZ_NAME = "Europe/Paris"
TZ = ZoneInfo(TZ_NAME)

_UTC = datetime.timezone.utc


class ScheduleError(ValueError):
    pass


class InvalidInput(ScheduleError):
    def __init__(self, message: str):
        super().__init__(message)


class InvalidTimeFormat(ScheduleError):
    def __init__(self, value: Any):
        super().__init__(f"invalid time of day: {value!r}")
        self.value = value


@dataclass(frozen=True)
class ServiceWindow:
    is_open: bool
    window_start: datetime.datetime


@dataclass(frozen=True)
class NextMetro:
    next_arrival: str
    is_last: bool


def now_in_zone(value: Optional[datetime.datetime] = None) -> datetime.datetime:
    if value is None:
        return datetime.datetime.now(TZ)
    return require_instant(value, "now").astimezone(TZ)


def require_instant(value: Any, name: str) -> datetime.datetime:
    if not isinstance(value, datetime.datetime):
        raise InvalidInput(f"{name} must be a datetime")
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidInput(f"{name} must be timezone-aware")
    return value


def parse_time_of_day(value: Any) -> Tuple[int, int]:
    if not isinstance(value, str):
        raise InvalidTimeFormat(value)
    parts = value.strip().split(":")
    if len(parts) != 2:
        raise InvalidTimeFormat(value)
    if not all(p.isascii() and p.isdigit() for p in parts):
        raise InvalidTimeFormat(value)
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise InvalidTimeFormat(value)
    return hour, minute


def format_time_of_day(value: str) -> str:
    hour, minute = parse_time_of_day(value)
    return f"{hour:02d}:{minute:02d}"


def anchor_time_of_day(reference: datetime.datetime, hhmm: str) -> datetime.datetime:
    """Place a "HH:MM" wall-clock time on the reference instant's calendar date in TZ."""
    hour, minute = parse_time_of_day(hhmm)
    local_date = reference.astimezone(TZ).date()
    return datetime.datetime.combine(local_date, datetime.time(hour, minute), tzinfo=TZ)


def roll_past(
    anchored: datetime.datetime, reference: datetime.datetime, *, inclusive: bool
) -> datetime.datetime:
    """Move an anchored time-of-day to the next calendar day when it does not
    fall after the reference instant.

    With inclusive=True a time equal to the reference is rolled as well.
    """
    a = anchored.astimezone(_UTC)
    r = reference.astimezone(_UTC)
    if a < r or (inclusive and a == r):
        local = anchored.astimezone(TZ)
        next_day = local.date() + datetime.timedelta(days=1)
        return datetime.datetime.combine(next_day, local.time(), tzinfo=TZ)
    return anchored


def resolve_service_window(
    now: datetime.datetime, service_start: str, service_end: str
) -> ServiceWindow:
    now = require_instant(now, "now")
    window_start = anchor_time_of_day(now, service_start)
    window_end = roll_past(anchor_time_of_day(now, service_end), window_start, inclusive=True)
    instant = now.astimezone(_UTC)
    is_open = window_start.astimezone(_UTC) <= instant <= window_end.astimezone(_UTC)
    return ServiceWindow(is_open=is_open, window_start=window_start)


def compute_next_arrival(now: datetime.datetime, headway_minutes: Any) -> str:
    now = require_instant(now, "now")
    if isinstance(headway_minutes, bool) or not isinstance(headway_minutes, (int, float)):
        raise InvalidInput("headway_minutes must be a number")
    if not math.isfinite(headway_minutes) or headway_minutes <= 0:
        raise InvalidInput("headway_minutes must be positive and finite")
    try:
        arrival = now.astimezone(_UTC) + datetime.timedelta(minutes=headway_minutes)
    except OverflowError as exc:
        raise InvalidInput("headway_minutes is out of range") from exc
    return arrival.astimezone(TZ).strftime("%H:%M")


def resolve_last_window_start(
    window_start: datetime.datetime, last_window_start: str
) -> datetime.datetime:
    window_start = require_instant(window_start, "window_start")
    anchored = anchor_time_of_day(window_start, last_window_start)
    return roll_past(anchored, window_start, inclusive=False)


def classify_arrival(now: datetime.datetime, last_window_instant: datetime.datetime) -> bool:
    now = require_instant(now, "now")
    last_window_instant = require_instant(last_window_instant, "last_window_instant")
    return now.astimezone(_UTC) >= last_window_instant.astimezone(_UTC)


def next_metro(
    now: datetime.datetime,
    *,
    headway_minutes: Any,
    service_start: str,
    service_end: str,
    last_window_start: str,
) -> Optional[NextMetro]:
    window = resolve_service_window(now, service_start, service_end)
    if not window.is_open:
        return None
    next_arrival = compute_next_arrival(now, headway_minutes)
    last_window = resolve_last_window_start(window.window_start, last_window_start)
    return NextMetro(next_arrival=next_arrival, is_last=classify_arrival(now, last_window))


def last_departure(service_end: str) -> str:
    return format_time_of_day(service_end)
