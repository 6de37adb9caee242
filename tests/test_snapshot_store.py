import json
from datetime import datetime

import pytest

from conftest import make_odds
from oddscollector.errors import StorageError
from oddscollector.providers.base import OddsPayload, Snapshot, SnapshotMetadata
from oddscollector.storage.blobs import LocalBlobBackend, MemoryBlobBackend
from oddscollector.storage.snapshots import SnapshotStore

LEAGUE = "england_premier_league"
SEASON = "2025-2026"


def make_snapshot(event_id="evt1", timing="closing", match_date="2025-11-30"):
    return Snapshot(
        metadata=SnapshotMetadata(
            timestamp="2025-11-30T13:30:05Z",
            date=match_date,
            league=LEAGUE,
            season=SEASON,
            collection_method="event_based",
            snapshot_timing=timing,
            fixture_id=event_id,
            kickoff_time="2025-11-30T15:00:00Z",
        ),
        odds=OddsPayload.from_dict(make_odds(event_id)),
    )


class FlakyBackend(MemoryBlobBackend):
    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    def put(self, key, body, content_type="application/json", metadata=None):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("connection reset")
        super().put(key, body, content_type, metadata)


def test_absence_is_not_an_error(store):
    assert store.get_snapshot(LEAGUE, SEASON, "nope_closing_2025-11-30") is None
    assert store.snapshot_exists(LEAGUE, SEASON, "nope_closing_2025-11-30") is False
    assert store.get_index(LEAGUE, SEASON, "by_match") is None
    assert store.index_exists(LEAGUE, SEASON, "by_match") is False
    # deleting something absent is fine too
    store.delete_snapshot(LEAGUE, SEASON, "nope_closing_2025-11-30")


def test_save_and_load_snapshot(store, backend):
    snap = make_snapshot()
    key = store.save_snapshot(LEAGUE, SEASON, snap)
    assert key == "leagues/england_premier_league/2025-2026/evt1_closing_2025-11-30.json"
    assert backend.metadata[key]["timing"] == "closing"

    loaded = store.get_snapshot(LEAGUE, SEASON, "evt1_closing_2025-11-30")
    assert loaded.metadata == snap.metadata
    assert loaded.odds.market_keys() == ["btts", "h2h", "spreads"]
    assert loaded.odds.bookmakers[0].markets[2].outcomes[0].point == -0.5
    assert store.get_snapshot_by_key(key).snapshot_id == "evt1_closing_2025-11-30"


def test_same_identity_overwrites_in_place(store, backend):
    first = store.save_snapshot(LEAGUE, SEASON, make_snapshot())
    again = make_snapshot()
    again.metadata.timestamp = "2025-11-30T13:31:00Z"
    second = store.save_snapshot(LEAGUE, SEASON, again)

    assert first == second
    assert store.list_snapshots(LEAGUE, SEASON) == ["evt1_closing_2025-11-30"]
    assert json.loads(backend.blobs[first])["metadata"]["timestamp"] == "2025-11-30T13:31:00Z"


def test_listing_drains_every_page_and_skips_indexes(store):
    snaps = [make_snapshot(f"evt{i}") for i in range(5)]
    store.batch_save_snapshots((LEAGUE, SEASON, s) for s in snaps)
    store.save_index(LEAGUE, SEASON, "by_match", {"matches": {}})
    store.save_index(LEAGUE, SEASON, "by_date", {"dates": {}})
    # other season must not leak into the listing
    store.save_snapshot(LEAGUE, "2024-2025", make_snapshot("old"))

    ids = store.list_snapshots(LEAGUE, SEASON)
    assert sorted(ids) == [f"evt{i}_closing_2025-11-30" for i in range(5)]
    assert len(store.list_keys()) == 8


def test_indexes_roundtrip_and_clear(store):
    store.save_index(LEAGUE, SEASON, "by_team", {"teams": {"Arsenal_FC": {"match_count": 1}}})
    assert store.get_index(LEAGUE, SEASON, "by_team")["teams"]["Arsenal_FC"]["match_count"] == 1
    store.clear_indexes(LEAGUE, SEASON)
    assert not store.index_exists(LEAGUE, SEASON, "by_team")


def test_transient_failures_are_retried():
    sleeps = []
    store = SnapshotStore(FlakyBackend(failures=2), sleep=sleeps.append)
    store.save_snapshot(LEAGUE, SEASON, make_snapshot())
    assert sleeps == [1.0, 2.0]
    assert store.snapshot_exists(LEAGUE, SEASON, "evt1_closing_2025-11-30")


def test_exhausted_retries_raise_storage_error():
    sleeps = []
    store = SnapshotStore(FlakyBackend(failures=10), max_retries=3, sleep=sleeps.append)
    with pytest.raises(StorageError):
        store.save_snapshot(LEAGUE, SEASON, make_snapshot())
    assert len(sleeps) == 2


def test_corrupt_json_is_a_storage_error(store, backend):
    backend.put("leagues/england_premier_league/2025-2026/by_match.json", b"{not json")
    with pytest.raises(StorageError):
        store.get_index(LEAGUE, SEASON, "by_match")


def test_health_check(store):
    assert store.health_check() is True


def test_local_backend_writes_atomically_and_pages(tmp_path):
    backend = LocalBlobBackend(str(tmp_path / "data"), page_size=2)
    store = SnapshotStore(backend, sleep=lambda s: None)
    for i in range(3):
        store.save_snapshot(LEAGUE, SEASON, make_snapshot(f"evt{i}"))

    files = [p.name for p in (tmp_path / "data").rglob("*") if p.is_file()]
    assert not [f for f in files if f.endswith(".tmp")]
    assert sorted(store.list_snapshots(LEAGUE, SEASON)) == [
        "evt0_closing_2025-11-30", "evt1_closing_2025-11-30", "evt2_closing_2025-11-30",
    ]

    store.delete_snapshot(LEAGUE, SEASON, "evt0_closing_2025-11-30")
    assert backend.get("leagues/england_premier_league/2025-2026/evt0_closing_2025-11-30.json") is None
    assert len(store.list_snapshots(LEAGUE, SEASON)) == 2


def test_local_backend_rejects_escaping_keys(tmp_path):
    backend = LocalBlobBackend(str(tmp_path))
    with pytest.raises(ValueError):
        backend.put("../outside.json", b"{}")


def test_bad_keys_are_not_retried(tmp_path):
    sleeps = []
    store = SnapshotStore(LocalBlobBackend(str(tmp_path)), sleep=sleeps.append)
    with pytest.raises(StorageError) as exc:
        store.get_snapshot_by_key("../../etc/passwd")
    assert isinstance(exc.value.__cause__, ValueError)
    assert sleeps == []


class FakeS3Client:
    """list_objects_v2 with one key per page."""

    def __init__(self, keys):
        self.keys = keys
        self.calls = []

    def list_objects_v2(self, **kwargs):
        self.calls.append(kwargs)
        i = int(kwargs.get("ContinuationToken", 0))
        out = {"Contents": [{"Key": self.keys[i]}], "IsTruncated": i + 1 < len(self.keys)}
        if out["IsTruncated"]:
            out["NextContinuationToken"] = str(i + 1)
        return out

    def get_object(self, Bucket, Key):
        err = Exception("missing")
        err.response = {"Error": {"Code": "NoSuchKey"}, "ResponseMetadata": {"HTTPStatusCode": 404}}
        raise err


def test_s3_backend_drains_continuation_tokens_and_strips_base_path():
    from oddscollector.storage.blobs import S3BlobBackend

    client = FakeS3Client([
        "odds_data_v2/leagues/x/2025-2026/a_closing_2025-11-30.json",
        "odds_data_v2/leagues/x/2025-2026/b_closing_2025-11-30.json",
        "odds_data_v2/leagues/x/2025-2026/by_match.json",
    ])
    backend = S3BlobBackend("bucket", base_path="odds_data_v2", client=client)
    store = SnapshotStore(backend, sleep=lambda s: None)

    assert store.list_snapshots("x", "2025-2026") == [
        "a_closing_2025-11-30", "b_closing_2025-11-30",
    ]
    assert len(client.calls) == 3
    assert client.calls[0]["Prefix"] == "odds_data_v2/leagues/x/2025-2026/"
    assert store.get_snapshot("x", "2025-2026", "zzz_closing_2025-11-30") is None
