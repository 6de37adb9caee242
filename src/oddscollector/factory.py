# wires config.py into the pipeline components; the CLIs and the API share it
from datetime import timedelta
from typing import Optional

from . import config
from .collector import OddsCollector
from .db import make_session_factory
from .index_builder import IndexBuilder
from .jobqueue import JobQueue
from .leagues import resolve_leagues
from .providers.base import OddsProvider
from .providers.theoddsapi import TheOddsApiProvider
from .storage.blobs import BlobBackend, LocalBlobBackend, S3BlobBackend
from .storage.snapshots import SnapshotStore
from .timings import get_preset


def build_backend(backend: str = config.STORAGE_BACKEND) -> BlobBackend:
    if backend == "local":
        return LocalBlobBackend(config.STORAGE_PATH)
    if backend == "s3":
        if not config.S3_BUCKET:
            raise ValueError("S3_BUCKET missing in env")
        return S3BlobBackend(
            bucket=config.S3_BUCKET,
            endpoint_url=config.S3_ENDPOINT_URL,
            region=config.S3_REGION,
            access_key_id=config.S3_ACCESS_KEY_ID,
            secret_access_key=config.S3_SECRET_ACCESS_KEY,
            base_path=config.STORAGE_BASE_PATH,
        )
    raise ValueError(f"unknown STORAGE_BACKEND: {backend!r} (expected local or s3)")


def build_store(backend: Optional[BlobBackend] = None) -> SnapshotStore:
    return SnapshotStore(backend or build_backend(), max_retries=config.STORAGE_MAX_RETRIES)


def build_queue(engine=None) -> JobQueue:
    return JobQueue(make_session_factory(engine))


def build_provider() -> OddsProvider:
    return TheOddsApiProvider(
        api_key=config.ODDS_API_KEY,
        base_url=config.ODDS_API_BASE_URL,
        timeout=config.ODDS_API_TIMEOUT,
    )


def build_collector(provider: Optional[OddsProvider] = None,
                    store: Optional[SnapshotStore] = None,
                    queue: Optional[JobQueue] = None) -> OddsCollector:
    return OddsCollector(
        provider=provider or build_provider(),
        store=store or build_store(),
        queue=queue or build_queue(),
        leagues=resolve_leagues(config.LEAGUES),
        timings=get_preset(config.TIMING_PRESET),
        max_jobs_per_run=config.MAX_JOBS_PER_RUN,
        request_delay=config.REQUEST_DELAY_SECONDS,
        slack_window=timedelta(minutes=config.SLACK_WINDOW_MINUTES),
        regions=config.ODDS_REGIONS,
        lease=timedelta(minutes=config.LEASE_MINUTES),
    )


def build_index_builder(store: Optional[SnapshotStore] = None) -> IndexBuilder:
    return IndexBuilder(store or build_store())
