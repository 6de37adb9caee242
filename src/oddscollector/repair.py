"""
Reconcile the job queue with what is actually in snapshot storage.

    1. audit    (read only) locate each completed job's snapshot, classify
                path mismatches, missing snapshots and orphaned blobs
    2. refetch  (--fetch-missing) recollect missing snapshots whose kickoff
                is still ahead, throttled like a normal run
    3. repair   fix stale snapshot paths, optionally drop the indexes, then
                rebuild them from freshly re-queried job state

--dry-run prints the plan of every phase without changing anything.
"""
import argparse
import logging
import sys
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from . import config
from .collector import OddsCollector
from .factory import build_collector, build_index_builder, build_queue, build_store
from .index_builder import IndexBuilder, refresh_league_indexes
from .jobqueue import JobQueue
from .models import ScheduledJob
from .storage.snapshots import SnapshotStore
from .utils.dates import utcnow
from .utils.log import setup_logging
from .utils.paths import generate_snapshot_id, infer_season, is_index_key, snapshot_key

logger = logging.getLogger("oddscollector.repair")

_TEAM_ERROR_HINTS = ("team", "normalize", "mapping")


@dataclass
class PathMismatch:
    job_id: str
    old_path: Optional[str]
    new_path: str              # where the snapshot actually is


@dataclass
class MissingSnapshot:
    job: ScheduledJob
    reason: str                # not_in_store | failed_job | team_mapping_error
    can_refetch: bool


@dataclass
class AuditResult:
    keys: Set[str]
    jobs: List[ScheduledJob]
    path_mismatches: List[PathMismatch] = field(default_factory=list)
    missing: List[MissingSnapshot] = field(default_factory=list)
    orphans: List[str] = field(default_factory=list)

    @property
    def refetchable(self) -> List[MissingSnapshot]:
        return [m for m in self.missing if m.can_refetch]

    def to_dict(self) -> dict:
        return {
            "objects": len(self.keys),
            "jobs": len(self.jobs),
            "path_mismatches": len(self.path_mismatches),
            "missing": len(self.missing),
            "refetchable": len(self.refetchable),
            "orphans": len(self.orphans),
        }


def expected_key(job: ScheduledJob) -> str:
    snapshot_id = generate_snapshot_id(job.event_id, job.timing_offset, job.match_date)
    return snapshot_key(job.league_id, infer_season(job.match_date), snapshot_id)


def locate_snapshot(job: ScheduledJob, keys: Set[str], legacy_scan: bool = True) -> Optional[str]:
    """Expected key, then the recorded path, then (optionally) a substring scan."""
    key = expected_key(job)
    if key in keys:
        return key
    if job.snapshot_path and job.snapshot_path in keys:
        return job.snapshot_path
    if not legacy_scan:
        return None
    # O(n) per job; only for data written under an older key layout
    for k in sorted(keys):
        if job.event_id in k and job.timing_offset in k and job.match_date in k:
            return k
    return None


def audit(queue: JobQueue, store: SnapshotStore, legacy_scan: bool = True,
          clock: Callable[[], datetime] = utcnow) -> AuditResult:
    keys = set(store.list_keys())
    jobs = queue.get_all_jobs()
    result = AuditResult(keys=keys, jobs=jobs)
    now = clock()
    referenced: Set[str] = set()

    for job in jobs:
        located = locate_snapshot(job, keys, legacy_scan)
        if located:
            referenced.add(located)

        if job.status == "completed":
            if located is None:
                result.missing.append(MissingSnapshot(job, "not_in_store", job.kickoff_time > now))
            elif located != job.snapshot_path:
                result.path_mismatches.append(PathMismatch(job.id, job.snapshot_path, located))
        elif job.status == "failed":
            err = (job.error or "").lower()
            reason = "team_mapping_error" if any(h in err for h in _TEAM_ERROR_HINTS) else "failed_job"
            result.missing.append(MissingSnapshot(job, reason, job.kickoff_time > now))

    result.orphans = sorted(
        k for k in keys
        if k.endswith(".json") and not is_index_key(k) and k not in referenced
    )
    logger.info("audit: %s", result.to_dict())
    return result


def refetch_missing(result: AuditResult, collector: OddsCollector,
                    dry_run: bool = False) -> int:
    """Recollects refetchable snapshots through the normal execution path."""
    fetched = 0
    for m in result.refetchable:
        job = m.job
        if dry_run:
            print(f"   would fetch {job.home_team} vs {job.away_team} ({job.timing_offset})")
            continue
        queue = collector.queue
        queue.retry_job(job.id, collector.clock())
        if not queue.claim_job(job.id, collector.owner_id, collector.lease):
            logger.warning("could not claim %s for refetch, skipping", job.id)
            continue
        ok = collector.execute_job(queue.get_job(job.id))
        collector.throttle()
        if ok:
            fetched += 1
            print(f"   ✔ {job.id}")
        else:
            print(f"   ✘ {job.id}")
    collector.flush_metrics()
    return fetched


def _league_seasons(jobs: Iterable[ScheduledJob]) -> Dict[str, Set[str]]:
    out: Dict[str, Set[str]] = defaultdict(set)
    for job in jobs:
        out[job.league_id].add(infer_season(job.match_date))
    return out


def repair_and_rebuild(result: AuditResult, queue: JobQueue, builder: IndexBuilder,
                       dry_run: bool = False, clear_indexes: bool = False) -> Dict[str, List[str]]:
    """Returns league id -> seasons whose indexes were (or would be) rebuilt."""
    if result.path_mismatches:
        if dry_run:
            for pm in result.path_mismatches[:10]:
                print(f"   would update {pm.job_id}: {pm.old_path} -> {pm.new_path}")
            if len(result.path_mismatches) > 10:
                print(f"   ... and {len(result.path_mismatches) - 10} more")
        else:
            for pm in result.path_mismatches:
                queue.set_snapshot_path(pm.job_id, pm.new_path)
            print(f"✔ updated {len(result.path_mismatches)} job paths")

    seasons_by_league = _league_seasons(result.jobs)

    if clear_indexes:
        for league_id, seasons in sorted(seasons_by_league.items()):
            for season in sorted(seasons):
                if dry_run:
                    print(f"   would clear indexes for {league_id}/{season}")
                else:
                    builder.store.clear_indexes(league_id, season)
                    print(f"✔ cleared indexes for {league_id}/{season}")

    rebuilt: Dict[str, List[str]] = {}
    for league_id in sorted(seasons_by_league):
        if dry_run:
            completed = queue.get_completed_jobs(league_id)
            rebuilt[league_id] = sorted({infer_season(j.match_date) for j in completed})
            print(f"   would rebuild {league_id}: {len(completed)} snapshots")
            continue
        try:
            # re-queried inside, so the path fixes above are picked up
            rebuilt[league_id] = refresh_league_indexes(queue, builder, league_id)
            print(f"✔ indexes rebuilt for {league_id}: {', '.join(rebuilt[league_id]) or '-'}")
        except Exception as e:
            logger.error("index rebuild failed for %s: %s", league_id, e)
    return rebuilt


def _print_audit(result: AuditResult) -> None:
    d = result.to_dict()
    print(f"   objects={d['objects']}  jobs={d['jobs']}")
    print(f"   path mismatches:   {d['path_mismatches']}")
    print(f"   missing snapshots: {d['missing']} (refetchable {d['refetchable']})")
    print(f"   orphaned blobs:    {d['orphans']}")


def main():
    ap = argparse.ArgumentParser(description="Audit and repair queue/storage drift")
    ap.add_argument("--dry-run", action="store_true", help="report the plan, change nothing")
    ap.add_argument("--fetch-missing", action="store_true",
                    help="recollect missing snapshots whose kickoff is still ahead")
    ap.add_argument("--clear-indexes", action="store_true",
                    help="delete all indexes before rebuilding them")
    ap.add_argument("--no-legacy-scan", action="store_true",
                    help="do not scan all keys for snapshots under older layouts")
    args = ap.parse_args()

    setup_logging()

    store = build_store()
    queue = build_queue()
    builder = build_index_builder(store)
    legacy_scan = config.REPAIR_LEGACY_SCAN and not args.no_legacy_scan

    print(f"mode: {'DRY RUN' if args.dry_run else 'LIVE'}  fetch-missing: {args.fetch_missing}  "
          f"clear-indexes: {args.clear_indexes}")

    print("\n=== audit ===")
    result = audit(queue, store, legacy_scan=legacy_scan)
    _print_audit(result)

    if args.fetch_missing:
        print("\n=== refetch ===")
        collector = build_collector(store=store, queue=queue)
        n = refetch_missing(result, collector, dry_run=args.dry_run)
        if not args.dry_run:
            print(f"✔ refetched {n} snapshots")
            result = audit(queue, store, legacy_scan=legacy_scan)
            _print_audit(result)

    print("\n=== repair ===")
    repair_and_rebuild(result, queue, builder, dry_run=args.dry_run,
                       clear_indexes=args.clear_indexes)
    print("\n✔ repair done" + ("  (dry run, nothing changed)" if args.dry_run else ""))


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        print(f"[ERROR] repair failed: {e}", flush=True)
        sys.exit(1)
