import datetime
import math

import pytest

from schedule_engine import (
    TZ,
    InvalidInput,
    InvalidTimeFormat,
    classify_arrival,
    compute_next_arrival,
    last_departure,
    next_metro,
    parse_time_of_day,
    resolve_last_window_start,
    resolve_service_window,
)

UTC = datetime.timezone.utc


def paris(*args):
    return datetime.datetime(*args, tzinfo=TZ)


def test_overnight_window_closed_before_start():
    window = resolve_service_window(paris(2023, 1, 1, 3, 0), "05:30", "01:15")
    assert window.is_open is False
    assert window.window_start == paris(2023, 1, 1, 5, 30)


def test_overnight_window_open_midday():
    window = resolve_service_window(paris(2023, 1, 1, 12, 0), "05:30", "01:15")
    assert window.is_open is True
    assert window.window_start == paris(2023, 1, 1, 5, 30)


def test_window_bounds_are_inclusive():
    assert resolve_service_window(paris(2023, 1, 1, 5, 30), "05:30", "01:15").is_open
    assert not resolve_service_window(paris(2023, 1, 1, 5, 29, 59), "05:30", "01:15").is_open
    assert resolve_service_window(paris(2023, 1, 1, 22, 0), "06:00", "22:00").is_open
    assert not resolve_service_window(paris(2023, 1, 1, 22, 0, 1), "06:00", "22:00").is_open


def test_equal_start_and_end_spans_a_full_day():
    assert resolve_service_window(paris(2023, 1, 1, 23, 59), "05:30", "05:30").is_open
    assert not resolve_service_window(paris(2023, 1, 1, 4, 0), "05:30", "05:30").is_open


def test_window_uses_paris_calendar_for_utc_instants():
    # 23:30 UTC on Dec 31 is already Jan 1 in Paris
    now = datetime.datetime(2022, 12, 31, 23, 30, tzinfo=UTC)
    window = resolve_service_window(now, "05:30", "01:15")
    assert window.window_start == paris(2023, 1, 1, 5, 30)
    assert window.is_open is False

    now = datetime.datetime(2023, 1, 1, 11, 0, tzinfo=UTC)
    assert resolve_service_window(now, "05:30", "01:15").is_open


@pytest.mark.parametrize(
    "value",
    ["5h30", "05:30:00", "", "ab:cd", "24:00", "12:60", "-1:30", "12:", ":30", " : ", None, 530],
)
def test_malformed_time_of_day(value):
    with pytest.raises(InvalidTimeFormat):
        resolve_service_window(paris(2023, 1, 1, 12, 0), value, "01:15")
    with pytest.raises(InvalidTimeFormat):
        resolve_service_window(paris(2023, 1, 1, 12, 0), "05:30", value)


def test_time_of_day_accepts_single_digits_and_whitespace():
    assert parse_time_of_day("5:07") == (5, 7)
    assert parse_time_of_day(" 23:59 ") == (23, 59)
    assert parse_time_of_day("00:00") == (0, 0)


@pytest.mark.parametrize(
    "now",
    [datetime.datetime(2023, 1, 1, 12, 0), "2023-01-01T12:00:00", None, datetime.date(2023, 1, 1)],
)
def test_invalid_instants(now):
    with pytest.raises(InvalidInput):
        resolve_service_window(now, "05:30", "01:15")
    with pytest.raises(InvalidInput):
        compute_next_arrival(now, 3)
    with pytest.raises(InvalidInput):
        resolve_last_window_start(now, "00:45")
    with pytest.raises(InvalidInput):
        classify_arrival(now, paris(2023, 1, 2, 0, 45))


def test_next_arrival_adds_headway():
    assert compute_next_arrival(paris(2023, 1, 1, 12, 0, 0), 4) == "12:04"
    assert compute_next_arrival(paris(2023, 1, 1, 12, 0, 0), 1.5) == "12:01"


def test_next_arrival_wraps_past_midnight():
    assert compute_next_arrival(paris(2023, 1, 1, 23, 58), 3) == "00:01"


def test_next_arrival_is_reported_in_paris_time():
    now = datetime.datetime(2023, 1, 1, 12, 0, tzinfo=UTC)
    assert compute_next_arrival(now, 4) == "13:04"
    now = datetime.datetime(2023, 7, 1, 12, 0, tzinfo=UTC)
    assert compute_next_arrival(now, 4) == "14:04"


def test_next_arrival_across_dst_start():
    # 02:00 CET jumps to 03:00 CEST on 2023-03-26
    assert compute_next_arrival(paris(2023, 3, 26, 1, 58), 3) == "03:01"


@pytest.mark.parametrize("headway", [0, -1, -0.5, math.nan, math.inf, True, "4", None])
def test_next_arrival_rejects_bad_headway(headway):
    with pytest.raises(InvalidInput):
        compute_next_arrival(paris(2023, 1, 1, 12, 0), headway)


@pytest.mark.parametrize("headway", [1e12, 10**20, 1e300])
def test_next_arrival_rejects_out_of_range_headway(headway):
    with pytest.raises(InvalidInput):
        compute_next_arrival(paris(2023, 1, 1, 12, 0), headway)


def test_next_arrival_accepts_a_full_day_headway():
    assert compute_next_arrival(paris(2023, 1, 1, 12, 0), 1440) == "12:00"


def test_last_window_rolls_to_following_day():
    resolved = resolve_last_window_start(paris(2023, 1, 1, 5, 30), "00:45")
    assert resolved == paris(2023, 1, 2, 0, 45)


def test_last_window_same_day_when_after_start():
    assert resolve_last_window_start(paris(2023, 1, 1, 5, 30), "23:00") == paris(2023, 1, 1, 23, 0)
    # equal to the start is not strictly before it
    assert resolve_last_window_start(paris(2023, 1, 1, 5, 30), "05:30") == paris(2023, 1, 1, 5, 30)


def test_last_window_rejects_malformed_time():
    with pytest.raises(InvalidTimeFormat):
        resolve_last_window_start(paris(2023, 1, 1, 5, 30), "0045")


def test_classify_arrival_boundary_is_inclusive():
    last_window = paris(2023, 1, 2, 0, 45)
    assert classify_arrival(paris(2023, 1, 2, 0, 44, 59), last_window) is False
    assert classify_arrival(paris(2023, 1, 2, 0, 45), last_window) is True
    assert classify_arrival(paris(2023, 1, 2, 1, 0), last_window) is True
    # same instant expressed in UTC
    assert classify_arrival(datetime.datetime(2023, 1, 1, 23, 45, tzinfo=UTC), last_window) is True


def test_engine_functions_are_idempotent():
    now = paris(2023, 1, 1, 12, 0)
    assert resolve_service_window(now, "05:30", "01:15") == resolve_service_window(
        now, "05:30", "01:15"
    )
    assert compute_next_arrival(now, 4) == compute_next_arrival(now, 4)
    start = paris(2023, 1, 1, 5, 30)
    assert resolve_last_window_start(start, "00:45") == resolve_last_window_start(start, "00:45")
    last_window = paris(2023, 1, 2, 0, 45)
    assert classify_arrival(now, last_window) == classify_arrival(now, last_window)


def test_next_metro_closed_returns_none():
    result = next_metro(
        paris(2023, 1, 1, 3, 0),
        headway_minutes=3,
        service_start="05:30",
        service_end="01:15",
        last_window_start="00:45",
    )
    assert result is None


def test_next_metro_open():
    result = next_metro(
        paris(2023, 1, 1, 12, 0),
        headway_minutes=4,
        service_start="05:30",
        service_end="01:15",
        last_window_start="00:45",
    )
    assert result is not None
    assert result.next_arrival == "12:04"
    assert result.is_last is False


def test_next_metro_flags_last_train():
    result = next_metro(
        paris(2023, 1, 1, 22, 30),
        headway_minutes=5,
        service_start="05:30",
        service_end="01:15",
        last_window_start="22:00",
    )
    assert result is not None
    assert result.next_arrival == "22:35"
    assert result.is_last is True


def test_last_departure_is_zero_padded():
    assert last_departure("01:15") == "01:15"
    assert last_departure("1:05") == "01:05"
    with pytest.raises(InvalidTimeFormat):
        last_departure("1h05")
