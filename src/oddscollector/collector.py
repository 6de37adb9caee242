"""
Discovery -> scheduling -> execution pipeline.

One `run()` is one invocation: discover fixtures and schedule their jobs,
execute whatever is due, flush per-(league, day) metrics. Jobs run one at a
time with a fixed delay after every provider call; a failing league or job
is logged and recorded, the rest of the run carries on.
"""
import logging
import os
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import ConfigurationError, LeaseLostError
from .jobqueue import JobQueue, MetricsRecord, NewJob
from .leagues import LeagueConfig, TeamNormalizer, normalize_team_name
from .models import ScheduledJob
from .providers.base import OddsProvider, Snapshot, SnapshotMetadata, estimate_cost
from .storage.snapshots import SnapshotStore
from .timings import TimingOffset
from .utils.dates import iso_z, utcnow
from .utils.paths import calculate_scheduled_time, generate_job_id, infer_season

logger = logging.getLogger("oddscollector.collector")


def default_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass
class RunSummary:
    started_at: datetime
    finished_at: Optional[datetime] = None
    jobs_scheduled: int = 0
    jobs_completed: int = 0
    jobs_failed: int = 0
    jobs_skipped: int = 0          # claimed by another executor first
    leases_requeued: int = 0
    pending: int = 0
    discovery_errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "started_at": iso_z(self.started_at),
            "finished_at": iso_z(self.finished_at) if self.finished_at else None,
            "jobs_scheduled": self.jobs_scheduled,
            "jobs_completed": self.jobs_completed,
            "jobs_failed": self.jobs_failed,
            "jobs_skipped": self.jobs_skipped,
            "leases_requeued": self.leases_requeued,
            "pending": self.pending,
            "discovery_errors": dict(self.discovery_errors),
        }


class OddsCollector:
    def __init__(
        self,
        provider: OddsProvider,
        store: SnapshotStore,
        queue: JobQueue,
        leagues: Sequence[LeagueConfig],
        timings: Sequence[TimingOffset],
        normalize: TeamNormalizer = normalize_team_name,
        max_jobs_per_run: int = 100,
        request_delay: float = 1.1,
        slack_window: timedelta = timedelta(minutes=5),
        regions: str = "eu",
        lease: timedelta = timedelta(minutes=15),
        owner_id: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.store = store
        self.queue = queue
        self.leagues = list(leagues)
        self.timings = list(timings)
        self.normalize = normalize
        self.max_jobs_per_run = max_jobs_per_run
        self.request_delay = request_delay
        self.slack_window = slack_window
        self.regions = regions
        self.lease = lease
        self.owner_id = owner_id or default_owner_id()
        self._sleep = sleep
        self.clock = clock
        self._metrics: Dict[Tuple[str, str], MetricsRecord] = {}

    # -- helpers ----------------------------------------------------------

    def throttle(self) -> None:
        if self.request_delay > 0:
            self._sleep(self.request_delay)

    def _metrics_for(self, league_id: str) -> MetricsRecord:
        day = self.clock().date().isoformat()
        rec = self._metrics.get((league_id, day))
        if rec is None:
            rec = self._metrics[(league_id, day)] = MetricsRecord(date=day, league_id=league_id)
        return rec

    @property
    def region_count(self) -> int:
        return len([r for r in self.regions.split(",") if r.strip()]) or 1

    def _resolve(self, job: ScheduledJob) -> Tuple[LeagueConfig, TimingOffset]:
        league = next((lg for lg in self.leagues if lg.id == job.league_id), None)
        if league is None:
            raise ConfigurationError(f"League config not found: {job.league_id}")
        timing = next((t for t in self.timings if t.name == job.timing_offset), None)
        if timing is None:
            raise ConfigurationError(f"Timing offset not found: {job.timing_offset}")
        return league, timing

    # -- pipeline ---------------------------------------------------------

    def run(self) -> RunSummary:
        self._metrics = {}
        summary = RunSummary(started_at=self.clock())
        logger.info("collection run started (owner=%s)", self.owner_id)

        summary.jobs_scheduled = self.discover(summary.discovery_errors)
        self.execute(summary)
        self.flush_metrics()

        summary.pending = self.queue.get_summary().total_pending
        summary.finished_at = self.clock()
        logger.info(
            "collection run finished: scheduled=%d completed=%d failed=%d pending=%d",
            summary.jobs_scheduled, summary.jobs_completed, summary.jobs_failed, summary.pending,
        )
        return summary

    def discover(self, errors: Optional[Dict[str, str]] = None) -> int:
        """Schedules jobs for every upcoming fixture of every configured league."""
        total = 0
        for league in self.leagues:
            try:
                total += self._discover_league(league)
            except Exception as e:
                logger.error("discovery failed for %s: %s", league.id, e)
                if errors is not None:
                    errors[league.id] = str(e)
        logger.info("discovery scheduled %d new jobs", total)
        return total

    def _discover_league(self, league: LeagueConfig) -> int:
        metrics = self._metrics_for(league.id)
        metrics.api_requests += 1
        try:
            fixtures = self.provider.list_fixtures(league.provider_key)
        finally:
            self.throttle()
        metrics.api_cost_tokens += estimate_cost("events", 0, self.region_count)
        logger.info("%s: %d fixtures", league.id, len(fixtures))

        now = self.clock()
        scheduled = 0
        for fx in fixtures:
            home = self.normalize(fx.home_team)
            away = self.normalize(fx.away_team)
            for timing in self.timings:
                when = calculate_scheduled_time(fx.kickoff, timing.hours_before_kickoff)
                if when < now:
                    continue
                job_id = generate_job_id(fx.id, timing.name)
                if self.queue.get_job(job_id) is not None:
                    continue
                created = self.queue.schedule_job(NewJob(
                    id=job_id,
                    league_id=league.id,
                    event_id=fx.id,
                    home_team=home,
                    away_team=away,
                    match_date=fx.match_date,
                    kickoff_time=fx.kickoff,
                    timing_offset=timing.name,
                    scheduled_time=when,
                ))
                if created:
                    scheduled += 1
                    logger.debug("scheduled %s at %s", job_id, iso_z(when))
        metrics.jobs_scheduled += scheduled
        return scheduled

    def execute(self, summary: Optional[RunSummary] = None) -> RunSummary:
        """Runs due jobs in scheduled order. Queue failures on the due query propagate."""
        if summary is None:
            summary = RunSummary(started_at=self.clock())
        summary.leases_requeued = self.queue.requeue_expired_leases()

        jobs = self.queue.get_jobs_due_within(self.slack_window, self.max_jobs_per_run)
        logger.info("%d jobs due", len(jobs))

        for job in jobs:
            if not self.queue.claim_job(job.id, self.owner_id, self.lease):
                logger.info("job %s already claimed, skipping", job.id)
                summary.jobs_skipped += 1
                continue
            if self.execute_job(job):
                summary.jobs_completed += 1
            else:
                summary.jobs_failed += 1
            self.throttle()
        return summary

    def execute_job(self, job: ScheduledJob) -> bool:
        """Fetch, store and complete one job the caller has already claimed."""
        metrics = self._metrics_for(job.league_id)
        try:
            league, timing = self._resolve(job)
            metrics.api_requests += 1
            payload = self.provider.fetch_live_odds(
                league.provider_key, job.event_id, timing.markets, self.regions,
            )
            metrics.api_cost_tokens += estimate_cost(
                "live_odds", len(timing.markets), self.region_count,
            )

            season = infer_season(job.match_date)
            snapshot = Snapshot(
                metadata=SnapshotMetadata(
                    timestamp=iso_z(self.clock()),
                    date=job.match_date,
                    league=job.league_id,
                    season=season,
                    collection_method="event_based",
                    snapshot_timing=timing.name,
                    fixture_id=job.event_id,
                    kickoff_time=iso_z(job.kickoff_time),
                    home_team=job.home_team,
                    away_team=job.away_team,
                ),
                odds=payload,
            )
            # the fetch may have outlived the lease; never write for a job someone else owns
            if not self.queue.renew_lease(job.id, self.owner_id, self.lease):
                raise LeaseLostError(f"{job.id}: lease lost before snapshot write")
            key = self.store.save_snapshot(job.league_id, season, snapshot)
            self.queue.update_job_status(job.id, "completed", snapshot_path=key,
                                         owner=self.owner_id)
        except LeaseLostError as e:
            logger.warning("job %s abandoned: %s", job.id, e)
            return False
        except Exception as e:
            logger.error("job %s failed: %s", job.id, e)
            metrics.jobs_failed += 1
            try:
                self.queue.update_job_status(job.id, "failed", error=str(e), owner=self.owner_id)
            except LeaseLostError as lost:
                logger.warning("job %s not marked failed: %s", job.id, lost)
            except Exception:
                logger.exception("could not mark job %s as failed", job.id)
            return False

        metrics.jobs_completed += 1
        logger.info("job %s completed -> %s", job.id, key)
        return True

    def flush_metrics(self) -> List[MetricsRecord]:
        records = list(self._metrics.values())
        for rec in records:
            self.queue.record_metrics(rec)
        self._metrics = {}
        return records
