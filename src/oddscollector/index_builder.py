"""
Lookup indexes for stored snapshots, per league/season:

    by_match  match key -> {teams, date, fixture id, kickoff, offset -> snapshot key}
    by_date   date -> match keys on that date + offsets seen across them
    by_team   team -> match keys the team plays in (home or away)

by_match is updated incrementally. by_date and by_team are rebuilt from
by_match on every call and carry its last_updated stamp, so rebuilding
from an unchanged match index writes identical bytes.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .leagues import TeamNormalizer, normalize_team_name
from .storage.snapshots import SnapshotStore
from .utils.dates import iso_z, utcnow
from .utils.paths import format_team_name_for_path, generate_match_key, infer_season

logger = logging.getLogger("oddscollector.index_builder")

INDEX_VERSION = "1.0"


@dataclass(frozen=True)
class SnapshotDescriptor:
    home_team: str
    away_team: str
    match_date: str
    fixture_id: str
    offset_name: str
    location: str
    kickoff_time: str


def descriptors_from_jobs(jobs: Iterable[Any]) -> List[SnapshotDescriptor]:
    """Completed queue rows -> descriptors. Rows without a snapshot path are skipped."""
    out = []
    for job in jobs:
        if job.status != "completed" or not job.snapshot_path:
            continue
        kickoff = job.kickoff_time
        out.append(SnapshotDescriptor(
            home_team=job.home_team,
            away_team=job.away_team,
            match_date=job.match_date,
            fixture_id=job.event_id,
            offset_name=job.timing_offset,
            location=job.snapshot_path,
            kickoff_time=iso_z(kickoff) if hasattr(kickoff, "isoformat") else str(kickoff),
        ))
    return out


def descriptors_from_snapshots(store: SnapshotStore, league_id: str, season: str,
                               normalize: TeamNormalizer = normalize_team_name,
                               ) -> List[SnapshotDescriptor]:
    """
    Reads every stored snapshot of a league/season. Unreadable ones are
    logged and skipped. Team names come from the snapshot metadata; older
    snapshots without them fall back to the normalized provider names.
    """
    out = []
    for snapshot_id in store.list_snapshots(league_id, season):
        try:
            snap = store.get_snapshot(league_id, season, snapshot_id)
        except Exception as e:
            logger.warning("could not load snapshot %s: %s", snapshot_id, e)
            continue
        if snap is None:
            logger.warning("snapshot vanished while listing: %s", snapshot_id)
            continue
        md = snap.metadata
        out.append(SnapshotDescriptor(
            home_team=md.home_team or normalize(snap.odds.home_team),
            away_team=md.away_team or normalize(snap.odds.away_team),
            match_date=md.date,
            fixture_id=md.fixture_id or snap.odds.id,
            offset_name=md.snapshot_timing,
            location=f"leagues/{league_id}/{season}/{snapshot_id}.json",
            kickoff_time=md.kickoff_time or snap.odds.commence_time,
        ))
    return out


class IndexBuilder:
    def __init__(self, store: SnapshotStore, clock: Callable = utcnow):
        self.store = store
        self._clock = clock

    def _empty_match_index(self, league_id: str, season: str) -> Dict[str, Any]:
        return {
            "version": INDEX_VERSION,
            "league_id": league_id,
            "season": season,
            "last_updated": iso_z(self._clock()),
            "matches": {},
        }

    def update_match_index(self, league_id: str, season: str,
                           descriptors: Iterable[SnapshotDescriptor]) -> Dict[str, Any]:
        index = self.store.get_index(league_id, season, "by_match")
        if index is None:
            index = self._empty_match_index(league_id, season)
        matches = index.setdefault("matches", {})

        n = 0
        for d in descriptors:
            key = generate_match_key(d.home_team, d.away_team, d.match_date)
            entry = matches.get(key)
            if entry is None:
                entry = matches[key] = {
                    "home_team": d.home_team,
                    "away_team": d.away_team,
                    "match_date": d.match_date,
                    "fixture_id": d.fixture_id,
                    "kickoff_time": d.kickoff_time,
                    "snapshots": {},
                }
            # last write for an offset wins
            entry["snapshots"][d.offset_name] = d.location
            n += 1

        index["last_updated"] = iso_z(self._clock())
        self.store.save_index(league_id, season, "by_match", index)
        logger.info("updated match index %s/%s: %d descriptors, %d matches",
                    league_id, season, n, len(matches))
        return index

    def build_date_index(self, league_id: str, season: str) -> Optional[Dict[str, Any]]:
        match_index = self.store.get_index(league_id, season, "by_match")
        if match_index is None:
            logger.warning("no match index for %s/%s", league_id, season)
            return None

        by_date: Dict[str, List[str]] = defaultdict(list)
        offsets: Dict[str, set] = defaultdict(set)
        for key, entry in match_index.get("matches", {}).items():
            by_date[entry["match_date"]].append(key)
            offsets[entry["match_date"]].update(entry.get("snapshots", {}))

        date_index = {
            "version": INDEX_VERSION,
            "league_id": league_id,
            "season": season,
            "last_updated": match_index.get("last_updated"),
            "dates": {
                d: {
                    "match_count": len(keys),
                    "matches": sorted(keys),
                    "snapshot_timings_available": sorted(offsets[d]),
                }
                for d, keys in sorted(by_date.items())
            },
        }
        self.store.save_index(league_id, season, "by_date", date_index)
        logger.info("built date index %s/%s (%d dates)", league_id, season, len(by_date))
        return date_index

    def build_team_index(self, league_id: str, season: str) -> Optional[Dict[str, Any]]:
        match_index = self.store.get_index(league_id, season, "by_match")
        if match_index is None:
            logger.warning("no match index for %s/%s", league_id, season)
            return None

        by_team: Dict[str, set] = defaultdict(set)
        for key, entry in match_index.get("matches", {}).items():
            by_team[format_team_name_for_path(entry["home_team"])].add(key)
            by_team[format_team_name_for_path(entry["away_team"])].add(key)

        team_index = {
            "version": INDEX_VERSION,
            "league_id": league_id,
            "season": season,
            "last_updated": match_index.get("last_updated"),
            "teams": {
                team: {"match_count": len(keys), "matches": sorted(keys)}
                for team, keys in sorted(by_team.items())
            },
        }
        self.store.save_index(league_id, season, "by_team", team_index)
        logger.info("built team index %s/%s (%d teams)", league_id, season, len(by_team))
        return team_index

    def build_all_indexes(self, league_id: str, season: str) -> None:
        self.build_date_index(league_id, season)
        self.build_team_index(league_id, season)

    # -- lookups ----------------------------------------------------------

    def lookup_match(self, league_id: str, season: str, home_team: str,
                     away_team: str, match_date: str) -> Optional[Dict[str, Any]]:
        index = self.store.get_index(league_id, season, "by_match")
        if index is None:
            return None
        return index.get("matches", {}).get(generate_match_key(home_team, away_team, match_date))

    def get_matches_for_date(self, league_id: str, season: str, match_date: str) -> List[str]:
        index = self.store.get_index(league_id, season, "by_date")
        if index is None:
            return []
        return list(index.get("dates", {}).get(match_date, {}).get("matches", []))

    def get_matches_for_team(self, league_id: str, season: str, team_name: str) -> List[str]:
        index = self.store.get_index(league_id, season, "by_team")
        if index is None:
            return []
        team = format_team_name_for_path(team_name)
        return list(index.get("teams", {}).get(team, {}).get("matches", []))


def refresh_league_indexes(queue, builder: IndexBuilder, league_id: str) -> List[str]:
    """
    Feeds the league's completed jobs into the match index, one season at a
    time, then rebuilds the derived indexes. Returns the seasons touched.
    """
    by_season: Dict[str, List[SnapshotDescriptor]] = defaultdict(list)
    for d in descriptors_from_jobs(queue.get_completed_jobs(league_id)):
        by_season[infer_season(d.match_date)].append(d)

    for season, descriptors in sorted(by_season.items()):
        builder.update_match_index(league_id, season, descriptors)
        builder.build_all_indexes(league_id, season)
    return sorted(by_season)
