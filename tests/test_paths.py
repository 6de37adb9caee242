from datetime import date, datetime

import pytest

from oddscollector.utils.dates import iso_z, parse_iso_utc
from oddscollector.utils.paths import (
    calculate_scheduled_time, generate_job_id, generate_match_key, generate_snapshot_id,
    index_key, infer_season, is_index_key, parse_snapshot_id, snapshot_key,
)


def test_match_key_replaces_whitespace_and_keeps_order():
    assert generate_match_key("Arsenal FC", "Chelsea FC", "2025-11-30") == "Arsenal_FC_Chelsea_FC_2025-11-30"
    assert generate_match_key("Chelsea FC", "Arsenal FC", "2025-11-30") == "Chelsea_FC_Arsenal_FC_2025-11-30"


@pytest.mark.parametrize("match_date,season", [
    ("2025-07-15", "2024-2025"),
    ("2025-09-01", "2025-2026"),
    ("2025-08-01", "2025-2026"),
    ("2026-05-24", "2025-2026"),
])
def test_infer_season(match_date, season):
    assert infer_season(match_date) == season


def test_infer_season_accepts_dates_and_datetimes():
    assert infer_season(date(2025, 7, 31)) == "2024-2025"
    assert infer_season(datetime(2025, 8, 1, 0, 30)) == "2025-2026"


def test_scheduled_time_is_kickoff_minus_offset():
    t = calculate_scheduled_time("2025-12-01T15:00:00Z", 24)
    assert iso_z(t) == "2025-11-30T15:00:00Z"
    assert calculate_scheduled_time(datetime(2025, 12, 1, 15), 1.5) == datetime(2025, 12, 1, 13, 30)


def test_snapshot_and_index_keys():
    sid = generate_snapshot_id("abc123", "day_before", "2025-11-30")
    assert sid == "abc123_day_before_2025-11-30"
    assert snapshot_key("england_premier_league", "2025-2026", sid) == \
        "leagues/england_premier_league/2025-2026/abc123_day_before_2025-11-30.json"
    assert index_key("italy_serie_a", "2025-2026", "by_team") == \
        "leagues/italy_serie_a/2025-2026/by_team.json"
    with pytest.raises(ValueError):
        index_key("italy_serie_a", "2025-2026", "by_bookmaker")


def test_parse_snapshot_id_keeps_underscores_in_offset():
    assert parse_snapshot_id("abc123_day_before_2025-11-30") == ("abc123", "day_before", "2025-11-30")
    assert parse_snapshot_id("abc123_closing_2025-11-30") == ("abc123", "closing", "2025-11-30")
    with pytest.raises(ValueError):
        parse_snapshot_id("abc123")


def test_job_id_and_index_key_detection():
    assert generate_job_id("abc123", "opening") == "abc123_opening"
    assert is_index_key("leagues/x/2025-2026/by_match.json")
    assert not is_index_key("leagues/x/2025-2026/abc_closing_2025-11-30.json")


def test_parse_iso_utc_normalizes_offsets():
    assert parse_iso_utc("2025-11-30T15:00:00Z") == datetime(2025, 11, 30, 15, 0)
    assert parse_iso_utc("2025-11-30T16:00:00+01:00") == datetime(2025, 11, 30, 15, 0)
