"""
Key and identity helpers shared by the queue, the snapshot store and the
index builder. Everything here is a pure function of its arguments.

Snapshot key:  leagues/{league_id}/{season}/{fixture_id}_{offset}_{match_date}.json
Index key:     leagues/{league_id}/{season}/{index_type}.json
"""
import re
from datetime import date, datetime

from .dates import hours, parse_iso_utc

INDEX_TYPES = ("by_match", "by_date", "by_team")

_WS = re.compile(r"\s+")


def format_team_name_for_path(team_name: str) -> str:
    return _WS.sub("_", team_name)


def generate_match_key(home_team: str, away_team: str, match_date: str) -> str:
    home = format_team_name_for_path(home_team)
    away = format_team_name_for_path(away_team)
    return f"{home}_{away}_{match_date}"


def generate_job_id(fixture_id: str, offset_name: str) -> str:
    return f"{fixture_id}_{offset_name}"


def generate_snapshot_id(fixture_id: str, offset_name: str, match_date: str) -> str:
    return f"{fixture_id}_{offset_name}_{match_date}"


def parse_snapshot_id(snapshot_id: str) -> tuple[str, str, str]:
    """
    fixture_id, offset_name, match_date from a snapshot id.
    Offset names may contain underscores (day_before), fixture ids do not.
    """
    parts = snapshot_id.split("_")
    if len(parts) < 3:
        raise ValueError(f"not a snapshot id: {snapshot_id!r}")
    return parts[0], "_".join(parts[1:-1]), parts[-1]


def snapshot_key(league_id: str, season: str, snapshot_id: str) -> str:
    return f"leagues/{league_id}/{season}/{snapshot_id}.json"


def index_key(league_id: str, season: str, index_type: str) -> str:
    if index_type not in INDEX_TYPES:
        raise ValueError(f"unknown index type: {index_type!r}")
    return f"leagues/{league_id}/{season}/{index_type}.json"


def season_prefix(league_id: str, season: str) -> str:
    return f"leagues/{league_id}/{season}/"


def is_index_key(key: str) -> bool:
    name = key.rsplit("/", 1)[-1]
    return name in {f"{t}.json" for t in INDEX_TYPES}


def infer_season(match_date) -> str:
    # European seasons: August .. May
    if isinstance(match_date, str):
        d = date.fromisoformat(match_date[:10])
    elif isinstance(match_date, datetime):
        d = match_date.date()
    else:
        d = match_date
    if d.month >= 8:
        return f"{d.year}-{d.year + 1}"
    return f"{d.year - 1}-{d.year}"


def calculate_scheduled_time(kickoff, hours_before_kickoff: float) -> datetime:
    if isinstance(kickoff, str):
        kickoff = parse_iso_utc(kickoff)
    return kickoff - hours(hours_before_kickoff)
