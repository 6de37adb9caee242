"""
Durable queue of scheduled collection jobs on any SQLAlchemy database.

The deterministic job id ({fixture_id}_{offset}) is the primary key, so a
second insert for the same pair is a no-op. Due jobs come back strictly
ordered by scheduled time. A running job carries a lease (owner + expiry);
`requeue_expired_leases` puts jobs whose executor vanished back to pending.

Database errors are not caught here, they belong to the caller.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from .errors import InvalidTransitionError, JobNotFoundError, LeaseLostError
from .models import TERMINAL_STATUSES, CollectionMetrics, ScheduledJob
from .utils.dates import utcnow

logger = logging.getLogger("oddscollector.jobqueue")

_ALLOWED = {
    "pending": {"running"},
    "running": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


@dataclass
class NewJob:
    id: str
    league_id: str
    event_id: str
    home_team: str
    away_team: str
    match_date: str
    kickoff_time: datetime
    timing_offset: str
    scheduled_time: datetime


@dataclass
class QueueSummary:
    total_pending: int = 0
    total_running: int = 0
    total_completed: int = 0
    total_failed: int = 0
    next_job_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "pending": self.total_pending,
            "running": self.total_running,
            "completed": self.total_completed,
            "failed": self.total_failed,
            "next_job_time": self.next_job_time.isoformat() if self.next_job_time else None,
        }


@dataclass
class MetricsRecord:
    date: str
    league_id: str
    jobs_scheduled: int = 0
    jobs_completed: int = 0
    jobs_failed: int = 0
    api_requests: int = 0
    api_cost_tokens: int = 0


class JobQueue:
    def __init__(self, session_factory, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def _session(self):
        return self._session_factory()

    # -- scheduling -------------------------------------------------------

    def schedule_job(self, job: NewJob) -> bool:
        """Insert a pending job. Returns False if the id is already present."""
        with self._session() as db:
            if db.get(ScheduledJob, job.id) is not None:
                return False
            db.add(ScheduledJob(
                id=job.id,
                league_id=job.league_id,
                event_id=job.event_id,
                home_team=job.home_team,
                away_team=job.away_team,
                match_date=job.match_date,
                kickoff_time=job.kickoff_time,
                timing_offset=job.timing_offset,
                scheduled_time=job.scheduled_time,
                status="pending",
                attempts=0,
                created_at=self._clock(),
            ))
            try:
                db.commit()
            except IntegrityError:
                # another discoverer got there first
                db.rollback()
                return False
            return True

    def get_job(self, job_id: str) -> Optional[ScheduledJob]:
        with self._session() as db:
            return db.get(ScheduledJob, job_id)

    def get_due_jobs(self, limit: int = 100) -> List[ScheduledJob]:
        return self.get_jobs_due_within(timedelta(0), limit)

    def get_jobs_due_within(self, window: timedelta, limit: int = 100) -> List[ScheduledJob]:
        horizon = self._clock() + window
        q = (
            select(ScheduledJob)
            .where(ScheduledJob.status == "pending", ScheduledJob.scheduled_time <= horizon)
            .order_by(ScheduledJob.scheduled_time.asc(), ScheduledJob.id.asc())
            .limit(limit)
        )
        with self._session() as db:
            return list(db.execute(q).scalars().all())

    # -- execution bookkeeping --------------------------------------------

    def claim_job(self, job_id: str, owner: str, lease: timedelta) -> bool:
        """pending -> running under a lease. False if someone else holds it."""
        now = self._clock()
        stmt = (
            update(ScheduledJob)
            .where(ScheduledJob.id == job_id, ScheduledJob.status == "pending")
            .values(
                status="running",
                attempts=ScheduledJob.attempts + 1,
                last_attempt=now,
                lease_owner=owner,
                lease_expires_at=now + lease,
            )
        )
        with self._session() as db:
            won = db.execute(stmt, execution_options={"synchronize_session": False}).rowcount == 1
            db.commit()
        return won

    def renew_lease(self, job_id: str, owner: str, lease: timedelta) -> bool:
        stmt = (
            update(ScheduledJob)
            .where(ScheduledJob.id == job_id, ScheduledJob.status == "running",
                   ScheduledJob.lease_owner == owner)
            .values(lease_expires_at=self._clock() + lease)
        )
        with self._session() as db:
            ok = db.execute(stmt, execution_options={"synchronize_session": False}).rowcount == 1
            db.commit()
        return ok

    def requeue_expired_leases(self) -> int:
        now = self._clock()
        stmt = (
            update(ScheduledJob)
            .where(
                ScheduledJob.status == "running",
                (ScheduledJob.lease_expires_at.is_(None)) | (ScheduledJob.lease_expires_at < now),
            )
            .values(status="pending", lease_owner=None, lease_expires_at=None,
                    error="lease expired")
        )
        with self._session() as db:
            n = db.execute(stmt, execution_options={"synchronize_session": False}).rowcount
            db.commit()
        if n:
            logger.warning("requeued %d jobs with expired leases", n)
        return n

    def update_job_status(self, job_id: str, status: str,
                          snapshot_path: Optional[str] = None,
                          error: Optional[str] = None,
                          owner: Optional[str] = None) -> ScheduledJob:
        """
        Move a job to `status`. Every call bumps attempts and last_attempt;
        completed_at is only stamped on terminal statuses and an existing
        snapshot_path survives when none is passed.

        With `owner`, the job is only finished if that owner still holds its
        lease; otherwise LeaseLostError is raised and the row is untouched.
        """
        now = self._clock()
        if owner is not None:
            return self._finish_leased(job_id, status, owner, now, snapshot_path, error)
        with self._session() as db:
            job = db.get(ScheduledJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if status not in _ALLOWED.get(job.status, set()):
                raise InvalidTransitionError(f"{job_id}: {job.status} -> {status}")
            job.status = status
            job.attempts = (job.attempts or 0) + 1
            job.last_attempt = now
            if snapshot_path is not None:
                job.snapshot_path = snapshot_path
            job.error = error
            if status in TERMINAL_STATUSES:
                job.completed_at = now
                job.lease_owner = None
                job.lease_expires_at = None
            db.commit()
            return job

    def _finish_leased(self, job_id: str, status: str, owner: str, now: datetime,
                       snapshot_path: Optional[str], error: Optional[str]) -> ScheduledJob:
        if status not in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"{job_id}: a leased update must end in completed or failed, not {status}"
            )
        values = dict(
            status=status,
            attempts=ScheduledJob.attempts + 1,
            last_attempt=now,
            error=error,
            completed_at=now,
            lease_owner=None,
            lease_expires_at=None,
        )
        if snapshot_path is not None:
            values["snapshot_path"] = snapshot_path
        stmt = (
            update(ScheduledJob)
            .where(ScheduledJob.id == job_id, ScheduledJob.status == "running",
                   ScheduledJob.lease_owner == owner)
            .values(**values)
        )
        with self._session() as db:
            won = db.execute(stmt, execution_options={"synchronize_session": False}).rowcount == 1
            db.commit()
            job = db.get(ScheduledJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not won:
            raise LeaseLostError(
                f"{job_id}: lease not held by {owner} (status={job.status}, owner={job.lease_owner})"
            )
        return job

    def retry_job(self, job_id: str, new_scheduled_time: datetime) -> None:
        with self._session() as db:
            job = db.get(ScheduledJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job.status = "pending"
            job.scheduled_time = new_scheduled_time
            job.error = None
            job.lease_owner = None
            job.lease_expires_at = None
            db.commit()

    def set_snapshot_path(self, job_id: str, snapshot_path: str) -> None:
        with self._session() as db:
            job = db.get(ScheduledJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job.snapshot_path = snapshot_path
            db.commit()

    # -- queries ----------------------------------------------------------

    def get_jobs_for_fixture(self, fixture_id: str,
                             timing_offset: Optional[str] = None) -> List[ScheduledJob]:
        q = select(ScheduledJob).where(ScheduledJob.event_id == fixture_id)
        if timing_offset:
            q = q.where(ScheduledJob.timing_offset == timing_offset)
        with self._session() as db:
            return list(db.execute(q.order_by(ScheduledJob.scheduled_time)).scalars().all())

    def get_completed_jobs(self, league_id: str) -> List[ScheduledJob]:
        q = (
            select(ScheduledJob)
            .where(ScheduledJob.league_id == league_id,
                   ScheduledJob.status == "completed",
                   ScheduledJob.snapshot_path.is_not(None))
            .order_by(ScheduledJob.completed_at.asc(), ScheduledJob.id.asc())
        )
        with self._session() as db:
            return list(db.execute(q).scalars().all())

    def get_all_jobs(self) -> List[ScheduledJob]:
        with self._session() as db:
            return list(db.execute(
                select(ScheduledJob).order_by(ScheduledJob.created_at.desc())
            ).scalars().all())

    def cleanup_older_than(self, days: int = 90) -> int:
        cutoff = self._clock() - timedelta(days=days)
        stmt = delete(ScheduledJob).where(
            ScheduledJob.status.in_(TERMINAL_STATUSES),
            ScheduledJob.completed_at < cutoff,
        )
        with self._session() as db:
            n = db.execute(stmt, execution_options={"synchronize_session": False}).rowcount
            db.commit()
        return n

    def get_summary(self) -> QueueSummary:
        with self._session() as db:
            counts: Dict[str, int] = dict(db.execute(
                select(ScheduledJob.status, func.count()).group_by(ScheduledJob.status)
            ).all())
            next_time = db.execute(
                select(func.min(ScheduledJob.scheduled_time))
                .where(ScheduledJob.status == "pending")
            ).scalar()
        return QueueSummary(
            total_pending=counts.get("pending", 0),
            total_running=counts.get("running", 0),
            total_completed=counts.get("completed", 0),
            total_failed=counts.get("failed", 0),
            next_job_time=next_time,
        )

    # -- metrics ----------------------------------------------------------

    def record_metrics(self, m: MetricsRecord) -> None:
        """Adds the counters to the (date, league) row, creating it if needed."""
        with self._session() as db:
            row = db.execute(
                select(CollectionMetrics)
                .where(CollectionMetrics.date == m.date, CollectionMetrics.league_id == m.league_id)
            ).scalar_one_or_none()
            if row is None:
                row = CollectionMetrics(date=m.date, league_id=m.league_id,
                                        jobs_scheduled=0, jobs_completed=0, jobs_failed=0,
                                        api_requests=0, api_cost_tokens=0,
                                        created_at=self._clock())
                db.add(row)
            row.jobs_scheduled += m.jobs_scheduled
            row.jobs_completed += m.jobs_completed
            row.jobs_failed += m.jobs_failed
            row.api_requests += m.api_requests
            row.api_cost_tokens += m.api_cost_tokens
            db.commit()

    def get_metrics(self, start_date: str, end_date: str) -> List[CollectionMetrics]:
        q = (
            select(CollectionMetrics)
            .where(CollectionMetrics.date >= start_date, CollectionMetrics.date <= end_date)
            .order_by(CollectionMetrics.date.desc(), CollectionMetrics.league_id)
        )
        with self._session() as db:
            return list(db.execute(q).scalars().all())
