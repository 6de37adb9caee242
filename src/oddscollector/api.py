import logging
import re
from datetime import timedelta
from functools import lru_cache

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse

from . import config
from .collector import OddsCollector
from .errors import StorageError
from .factory import build_collector, build_index_builder, build_queue, build_store
from .index_builder import IndexBuilder
from .jobqueue import JobQueue
from .run_collector import run_once
from .storage.snapshots import SnapshotStore
from .utils.dates import utcnow

logger = logging.getLogger("oddscollector.api")

app = FastAPI(title="Odds Collector API v0.1")

_SAFE = re.compile(r"^[A-Za-z0-9_\-]+$")
_SEASON = re.compile(r"^\d{4}-\d{4}$")


# -- dependencies (overridable in tests) ----------------------------------

@lru_cache(maxsize=1)
def get_store() -> SnapshotStore:
    return build_store()


@lru_cache(maxsize=1)
def get_queue() -> JobQueue:
    return build_queue()


def get_collector() -> OddsCollector:
    return build_collector(store=get_store(), queue=get_queue())


def get_index_builder() -> IndexBuilder:
    return build_index_builder(get_store())


def get_trigger_token() -> str:
    return config.TRIGGER_TOKEN


def require_token(authorization: str = Header(default=""),
                  token: str = Depends(get_trigger_token)) -> None:
    if not token or authorization != f"Bearer {token}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def _run_in_background(collector: OddsCollector, builder: IndexBuilder) -> None:
    try:
        s = run_once(collector, builder)
        logger.info("triggered run done: %s", s)
    except Exception:
        logger.exception("triggered run failed")


# -- routes ---------------------------------------------------------------

@app.get("/health")
def health(store: SnapshotStore = Depends(get_store)):
    return {"ok": True, "storage": store.health_check(), "time": utcnow().isoformat() + "Z"}


@app.post("/trigger", status_code=202)
def trigger(background: BackgroundTasks,
            _: None = Depends(require_token),
            collector: OddsCollector = Depends(get_collector),
            builder: IndexBuilder = Depends(get_index_builder)):
    background.add_task(_run_in_background, collector, builder)
    return {"accepted": True}


@app.get("/summary")
def summary(days: int = 7, queue: JobQueue = Depends(get_queue)):
    today = utcnow().date()
    start = (today - timedelta(days=max(days, 0))).isoformat()
    metrics = queue.get_metrics(start, today.isoformat())
    return {
        "queue": queue.get_summary().to_dict(),
        "metrics": [m.to_dict() for m in metrics],
    }


@app.get("/download/{league_id}/{season}/{snapshot_id}")
def download(league_id: str, season: str, snapshot_id: str,
             store: SnapshotStore = Depends(get_store)):
    if snapshot_id.endswith(".json"):
        snapshot_id = snapshot_id[:-len(".json")]
    if not (_SAFE.match(league_id) and _SEASON.match(season) and _SAFE.match(snapshot_id)):
        raise HTTPException(status_code=400, detail="Invalid snapshot reference")
    try:
        snap = store.get_snapshot(league_id, season, snapshot_id)
    except StorageError as e:
        logger.error("download %s/%s/%s failed: %s", league_id, season, snapshot_id, e)
        raise HTTPException(status_code=503, detail="Storage unavailable")
    if snap is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return JSONResponse(
        content=snap.to_dict(),
        headers={"Content-Disposition": f'attachment; filename="{snapshot_id}.json"'},
    )
