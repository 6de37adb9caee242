"""
Fill gaps from the historical odds endpoint.

Walks weekly batches between --since and --until, asks the provider which
fixtures were visible at the start of each week, and fetches historical
odds for every (fixture, offset) pair that has no stored snapshot yet.
Historical requests cost ten times a live one, so --dry-run first.
"""
import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dtime, timedelta
from typing import Callable, List, Optional, Sequence, Set, Tuple

from . import config
from .factory import build_index_builder, build_provider, build_store
from .leagues import LeagueConfig, TeamNormalizer, normalize_team_name, resolve_leagues
from .providers.base import OddsProvider, Snapshot, SnapshotMetadata, estimate_cost
from .rebuild_indexes import rebuild_from_snapshots
from .storage.snapshots import SnapshotStore
from .timings import TimingOffset, get_preset
from .utils.dates import iso_z, utcnow
from .utils.paths import calculate_scheduled_time, generate_job_id, infer_season, parse_snapshot_id
from .utils.log import setup_logging

logger = logging.getLogger("oddscollector.backfill")


@dataclass
class BackfillStats:
    api_calls: int = 0
    cost_units: int = 0
    uploaded: int = 0
    skipped: int = 0
    failed: int = 0
    seasons: Set[str] = field(default_factory=set)


def weekly_batches(since: date, until: date) -> List[Tuple[date, date]]:
    out = []
    cur = since
    while cur < until:
        end = min(cur + timedelta(days=7), until)
        out.append((cur, end))
        cur = cur + timedelta(days=7)
    return out


def seasons_between(since: date, until: date) -> List[str]:
    seasons = set()
    cur = since
    while cur <= until:
        seasons.add(infer_season(cur))
        cur += timedelta(days=28)
    seasons.add(infer_season(until))
    return sorted(seasons)


def existing_pairs(store: SnapshotStore, league_id: str, seasons: Sequence[str]) -> Set[str]:
    """{fixture_id}_{offset} of every snapshot already stored."""
    pairs = set()
    for season in seasons:
        for snapshot_id in store.list_snapshots(league_id, season):
            try:
                fixture_id, offset, _ = parse_snapshot_id(snapshot_id)
            except ValueError:
                logger.warning("skipping unparseable snapshot id %s", snapshot_id)
                continue
            pairs.add(generate_job_id(fixture_id, offset))
    return pairs


class Backfiller:
    def __init__(self, provider: OddsProvider, store: SnapshotStore,
                 timings: Sequence[TimingOffset], normalize: TeamNormalizer = normalize_team_name,
                 regions: str = "eu", request_delay: float = 1.1, dry_run: bool = False,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], datetime] = utcnow):
        self.provider = provider
        self.store = store
        self.timings = list(timings)
        self.normalize = normalize
        self.regions = regions
        self.request_delay = request_delay
        self.dry_run = dry_run
        self._sleep = sleep
        self._clock = clock

    def _throttle(self) -> None:
        if self.request_delay > 0:
            self._sleep(self.request_delay)

    def run(self, league: LeagueConfig, since: date, until: date,
            stats: Optional[BackfillStats] = None) -> BackfillStats:
        stats = stats or BackfillStats()
        existing = existing_pairs(self.store, league.id, seasons_between(since, until))
        logger.info("%s: %d (fixture, offset) pairs already stored", league.id, len(existing))

        for start, end in weekly_batches(since, until):
            as_of = datetime.combine(start, dtime.min)
            try:
                stats.api_calls += 1
                stats.cost_units += estimate_cost("historical_events", 0, 1)
                fixtures = self.provider.fetch_historical_fixtures(
                    league.provider_key, as_of,
                    from_=as_of, to=datetime.combine(end, dtime(23, 59, 59)),
                )
            except Exception as e:
                logger.error("%s batch %s..%s: fixture fetch failed: %s", league.id, start, end, e)
                continue
            finally:
                self._throttle()
            logger.info("%s batch %s..%s: %d fixtures", league.id, start, end, len(fixtures))

            for fx in fixtures:
                for timing in self.timings:
                    self._backfill_one(league, fx, timing, existing, stats)
        return stats

    def _backfill_one(self, league, fx, timing: TimingOffset, existing: Set[str],
                      stats: BackfillStats) -> None:
        pair = generate_job_id(fx.id, timing.name)
        if pair in existing:
            stats.skipped += 1
            return
        fetch_at = calculate_scheduled_time(fx.kickoff, timing.hours_before_kickoff)
        if fetch_at > self._clock():
            # still ahead, the live pipeline will collect it
            stats.skipped += 1
            return
        if self.dry_run:
            print(f"   would fetch {fx.home_team} vs {fx.away_team} {timing.name} @ {iso_z(fetch_at)}")
            stats.uploaded += 1
            return

        season = infer_season(fx.kickoff)
        try:
            stats.api_calls += 1
            payload = self.provider.fetch_historical_odds(
                league.provider_key, fx.id, fetch_at, timing.markets, self.regions,
            )
            stats.cost_units += estimate_cost(
                "historical_odds", len(timing.markets), len(self.regions.split(",")),
            )
            snap = Snapshot(
                metadata=SnapshotMetadata(
                    timestamp=iso_z(self._clock()),
                    date=fx.match_date,
                    league=league.id,
                    season=season,
                    collection_method="historical",
                    snapshot_timing=timing.name,
                    fixture_id=fx.id,
                    kickoff_time=iso_z(fx.kickoff),
                    home_team=self.normalize(fx.home_team),
                    away_team=self.normalize(fx.away_team),
                ),
                odds=payload,
            )
            self.store.save_snapshot(league.id, season, snap)
        except Exception as e:
            logger.error("%s %s: %s", fx.id, timing.name, e)
            stats.failed += 1
        else:
            existing.add(pair)
            stats.uploaded += 1
            stats.seasons.add(season)
        finally:
            self._throttle()


def _season_start(today: date) -> date:
    return date(today.year if today.month >= 8 else today.year - 1, 8, 1)


def main():
    ap = argparse.ArgumentParser(description="Backfill missing snapshots from historical odds")
    ap.add_argument("--dry-run", action="store_true", help="list what would be fetched")
    ap.add_argument("--league", action="append",
                    help="league id, repeatable (default: LEAGUES from env)")
    ap.add_argument("--since", type=date.fromisoformat, help="YYYY-MM-DD (default: Aug 1 of this season)")
    ap.add_argument("--until", type=date.fromisoformat, help="YYYY-MM-DD (default: today)")
    args = ap.parse_args()

    setup_logging()
    today = utcnow().date()
    since = args.since or _season_start(today)
    until = args.until or today
    leagues = resolve_leagues(args.league or config.LEAGUES)
    if not leagues:
        print("[ERROR] no known leagues to backfill", flush=True)
        sys.exit(1)

    store = build_store()
    backfiller = Backfiller(
        provider=build_provider(),
        store=store,
        timings=get_preset(config.TIMING_PRESET),
        regions=config.ODDS_REGIONS,
        request_delay=config.REQUEST_DELAY_SECONDS,
        dry_run=args.dry_run,
    )
    builder = build_index_builder(store)

    for league in leagues:
        print(f"== {league.name} {since} .. {until}{'  (DRY RUN)' if args.dry_run else ''}")
        stats = backfiller.run(league, since, until)
        print(f"✔ {league.id}: uploaded={stats.uploaded}  skipped={stats.skipped}  "
              f"failed={stats.failed}  api_calls={stats.api_calls}  cost={stats.cost_units}")

        if stats.uploaded and not args.dry_run:
            for season in sorted(stats.seasons):
                try:
                    n = rebuild_from_snapshots(builder, league.id, season,
                                               normalize=backfiller.normalize)
                    print(f"✔ {league.id}/{season}: indexes built from {n} snapshots")
                except Exception as e:
                    print(f"[ERROR] index rebuild failed for {league.id}/{season}: {e}", flush=True)


if __name__ == "__main__":
    main()
