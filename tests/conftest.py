"""
Shared fixtures: a throwaway sqlite queue, an in-memory blob store, a
controllable clock and sample provider payloads.
"""
from datetime import datetime, timedelta

import pytest

from oddscollector.db import init_db, make_engine, make_session_factory
from oddscollector.jobqueue import JobQueue, NewJob
from oddscollector.leagues import LEAGUES
from oddscollector.storage.blobs import MemoryBlobBackend
from oddscollector.storage.snapshots import SnapshotStore
from oddscollector.utils.paths import calculate_scheduled_time, generate_job_id

EPL = LEAGUES["england_premier_league"]
SERIE_A = LEAGUES["italy_serie_a"]


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_event(event_id="evt1", home="Arsenal FC", away="Chelsea FC",
               commence="2025-11-30T15:00:00Z", sport_key="soccer_epl"):
    return {
        "id": event_id,
        "sport_key": sport_key,
        "home_team": home,
        "away_team": away,
        "commence_time": commence,
    }


def make_odds(event_id="evt1", home="Arsenal FC", away="Chelsea FC",
              commence="2025-11-30T15:00:00Z", sport_key="soccer_epl"):
    ev = make_event(event_id, home, away, commence, sport_key)
    ev["bookmakers"] = [{
        "key": "pinnacle",
        "title": "Pinnacle",
        "last_update": "2025-11-29T14:58:00Z",
        "markets": [
            {"key": "h2h", "outcomes": [
                {"name": home, "price": 2.1},
                {"name": "Draw", "price": 3.4},
                {"name": away, "price": 3.6},
            ]},
            {"key": "btts", "outcomes": [
                {"name": "Yes", "price": 1.8},
                {"name": "No", "price": 2.0},
            ]},
            {"key": "spreads", "outcomes": [
                {"name": home, "price": 1.9, "point": -0.5},
            ]},
        ],
    }]
    return ev


def make_job(job_id=None, event_id="evt1", offset="closing", league_id=EPL.id,
             kickoff=datetime(2025, 11, 30, 15, 0), hours_before=1.5,
             home="Arsenal FC", away="Chelsea FC", scheduled=None) -> NewJob:
    return NewJob(
        id=job_id or generate_job_id(event_id, offset),
        league_id=league_id,
        event_id=event_id,
        home_team=home,
        away_team=away,
        match_date=kickoff.date().isoformat(),
        kickoff_time=kickoff,
        timing_offset=offset,
        scheduled_time=scheduled or calculate_scheduled_time(kickoff, hours_before),
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 11, 29, 12, 0))


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'queue.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def queue(engine, clock):
    return JobQueue(make_session_factory(engine), clock=clock)


@pytest.fixture
def backend():
    # small pages so every listing goes through pagination
    return MemoryBlobBackend(page_size=2)


@pytest.fixture
def store(backend):
    return SnapshotStore(backend, sleep=lambda s: None)
