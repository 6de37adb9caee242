import pytest
from fastapi.testclient import TestClient

from conftest import EPL, make_event, make_odds
from oddscollector import api
from oddscollector.collector import OddsCollector
from oddscollector.index_builder import IndexBuilder
from oddscollector.providers.base import OddsPayload, Snapshot, SnapshotMetadata
from oddscollector.providers.localjson import LocalJsonProvider
from oddscollector.timings import CLOSING, DAY_BEFORE


@pytest.fixture
def provider():
    return LocalJsonProvider({
        "fixtures": {"soccer_epl": [make_event("evt1")]},
        "odds": {"evt1": make_odds("evt1")},
    })


@pytest.fixture
def client(store, queue, clock, provider):
    collector = OddsCollector(provider, store, queue, leagues=[EPL], timings=[DAY_BEFORE, CLOSING],
                              sleep=lambda s: None, clock=clock, owner_id="api")
    api.app.dependency_overrides = {
        api.get_store: lambda: store,
        api.get_queue: lambda: queue,
        api.get_collector: lambda: collector,
        api.get_index_builder: lambda: IndexBuilder(store, clock=clock),
        api.get_trigger_token: lambda: "s3cret",
    }
    yield TestClient(api.app)
    api.app.dependency_overrides = {}


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["storage"] is True


def test_trigger_requires_bearer_token(client, provider):
    assert client.post("/trigger").status_code == 401
    assert client.post("/trigger", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert provider.calls == []


def test_trigger_runs_the_pipeline(client, provider, queue):
    r = client.post("/trigger", headers={"Authorization": "Bearer s3cret"})
    assert r.status_code == 202
    assert r.json() == {"accepted": True}
    assert provider.calls[0] == ("list_fixtures", "soccer_epl")
    assert queue.get_summary().total_pending == 2


def test_summary(client, queue):
    client.post("/trigger", headers={"Authorization": "Bearer s3cret"})
    body = client.get("/summary").json()
    assert body["queue"]["pending"] == 2
    assert body["queue"]["next_job_time"].startswith("2025-11-29T15:00:00")


def test_download(client, store):
    snap = Snapshot(
        metadata=SnapshotMetadata(
            timestamp="2025-11-30T13:30:00Z", date="2025-11-30", league=EPL.id,
            season="2025-2026", collection_method="event_based", snapshot_timing="closing",
            fixture_id="evt1", kickoff_time="2025-11-30T15:00:00Z",
        ),
        odds=OddsPayload.from_dict(make_odds("evt1")),
    )
    store.save_snapshot(EPL.id, "2025-2026", snap)

    r = client.get("/download/england_premier_league/2025-2026/evt1_closing_2025-11-30.json")
    assert r.status_code == 200
    assert r.json()["metadata"]["fixture_id"] == "evt1"
    assert "evt1_closing_2025-11-30.json" in r.headers["content-disposition"]

    assert client.get("/download/england_premier_league/2025-2026/nope_closing_2025-11-30").status_code == 404
    assert client.get("/download/england_premier_league/latest/evt1_closing_2025-11-30").status_code == 400
