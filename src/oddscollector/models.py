from sqlalchemy import Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from .db import Base
from .utils.dates import utcnow

JOB_STATUSES = ("pending", "running", "completed", "failed")
TERMINAL_STATUSES = ("completed", "failed")


class ScheduledJob(Base):
    """
    One (fixture, timing offset) collection job. Fixture fields are copied
    onto the row at discovery, team names already normalized, and are not
    refreshed for the same fixture id afterwards.
    """
    __tablename__ = "scheduled_jobs"
    id = Column(String, primary_key=True)                  # {fixture_id}_{offset}
    league_id = Column(String, nullable=False)
    event_id = Column(String, nullable=False)              # provider fixture id
    home_team = Column(String, nullable=False)
    away_team = Column(String, nullable=False)
    match_date = Column(String(10), nullable=False)        # YYYY-MM-DD
    kickoff_time = Column(DateTime, nullable=False)
    timing_offset = Column(String, nullable=False)
    scheduled_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending|running|completed|failed
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt = Column(DateTime, nullable=True)
    snapshot_path = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    lease_owner = Column(String, nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_scheduled_time", "scheduled_time", "status"),
        Index("idx_event_offset", "event_id", "timing_offset"),
        Index("idx_match_date", "league_id", "match_date"),
    )

    def __repr__(self):
        return f"<ScheduledJob {self.id} {self.status} attempts={self.attempts}>"

    def to_dict(self) -> dict:
        out = {}
        for col in self.__table__.columns:
            val = getattr(self, col.name)
            out[col.name] = val.isoformat() if hasattr(val, "isoformat") else val
        return out


class CollectionMetrics(Base):
    __tablename__ = "collection_metrics"
    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(String(10), nullable=False)             # YYYY-MM-DD
    league_id = Column(String, nullable=False)
    jobs_scheduled = Column(Integer, nullable=False, default=0)
    jobs_completed = Column(Integer, nullable=False, default=0)
    jobs_failed = Column(Integer, nullable=False, default=0)
    api_requests = Column(Integer, nullable=False, default=0)
    api_cost_tokens = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("date", "league_id", name="uq_metrics_date_league"),
    )

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "league_id": self.league_id,
            "jobs_scheduled": self.jobs_scheduled,
            "jobs_completed": self.jobs_completed,
            "jobs_failed": self.jobs_failed,
            "api_requests": self.api_requests,
            "api_cost_tokens": self.api_cost_tokens,
        }
