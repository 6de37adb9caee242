import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..errors import StorageError
from ..providers.base import Snapshot
from ..utils.paths import (
    INDEX_TYPES, index_key, is_index_key, season_prefix, snapshot_key,
)
from ..utils.retry import with_retry
from .blobs import BlobBackend

logger = logging.getLogger("oddscollector.snapshots")


def _dumps(obj: Any) -> bytes:
    return json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False).encode("utf-8")


class SnapshotStore:
    """
    Snapshots and lookup indexes on top of a blob backend.

    Transient backend faults are retried with capped exponential backoff and
    raised as StorageError once exhausted. A missing artifact is never an
    error: getters return None, existence checks return False.
    """

    def __init__(self, backend: BlobBackend, max_retries: int = 3,
                 base_delay: float = 1.0, max_delay: float = 10.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.backend = backend
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def _retry(self, operation, name: str):
        return with_retry(operation, name, max_attempts=self.max_retries,
                          base_delay=self.base_delay, max_delay=self.max_delay,
                          sleep=self._sleep, error_cls=StorageError)

    def _get_json(self, key: str, name: str) -> Optional[Dict[str, Any]]:
        body = self._retry(lambda: self.backend.get(key), f"{name}({key})")
        if body is None:
            return None
        try:
            return json.loads(body)
        except ValueError as e:
            raise StorageError(f"{name}({key}): corrupt JSON: {e}") from e

    # -- snapshots --------------------------------------------------------

    def save_snapshot(self, league_id: str, season: str, snapshot: Snapshot) -> str:
        """Write a snapshot and return its key. Same (fixture, offset, date) overwrites."""
        snapshot_id = snapshot.snapshot_id
        key = snapshot_key(league_id, season, snapshot_id)
        body = _dumps(snapshot.to_dict())
        metadata = {
            "league": league_id,
            "season": season,
            "snapshot_id": snapshot_id,
            "timing": snapshot.metadata.snapshot_timing,
            "collected_at": snapshot.metadata.timestamp,
        }
        self._retry(lambda: self.backend.put(key, body, metadata=metadata),
                    f"save_snapshot({key})")
        return key

    def batch_save_snapshots(self, items: Iterable[Tuple[str, str, Snapshot]]) -> List[str]:
        return [self.save_snapshot(league_id, season, snap) for league_id, season, snap in items]

    def get_snapshot(self, league_id: str, season: str, snapshot_id: str) -> Optional[Snapshot]:
        data = self._get_json(snapshot_key(league_id, season, snapshot_id), "get_snapshot")
        return Snapshot.from_dict(data) if data is not None else None

    def get_snapshot_by_key(self, key: str) -> Optional[Snapshot]:
        data = self._get_json(key, "get_snapshot")
        return Snapshot.from_dict(data) if data is not None else None

    def snapshot_exists(self, league_id: str, season: str, snapshot_id: str) -> bool:
        return self.key_exists(snapshot_key(league_id, season, snapshot_id))

    def delete_snapshot(self, league_id: str, season: str, snapshot_id: str) -> None:
        key = snapshot_key(league_id, season, snapshot_id)
        self._retry(lambda: self.backend.delete(key), f"delete_snapshot({key})")

    def list_snapshots(self, league_id: str, season: str) -> List[str]:
        """Snapshot ids of one league/season, index files excluded."""
        prefix = season_prefix(league_id, season)
        ids = []
        for key in self.list_keys(prefix):
            rest = key[len(prefix):]
            if "/" in rest or not rest.endswith(".json") or is_index_key(key):
                continue
            ids.append(rest[:-len(".json")])
        return ids

    # -- indexes ----------------------------------------------------------

    def save_index(self, league_id: str, season: str, index_type: str,
                   index: Dict[str, Any]) -> str:
        key = index_key(league_id, season, index_type)
        body = _dumps(index)
        metadata = {
            "league": league_id,
            "season": season,
            "index_type": index_type,
            "last_updated": str(index.get("last_updated", "")),
        }
        self._retry(lambda: self.backend.put(key, body, metadata=metadata),
                    f"save_index({key})")
        return key

    def get_index(self, league_id: str, season: str, index_type: str) -> Optional[Dict[str, Any]]:
        return self._get_json(index_key(league_id, season, index_type), "get_index")

    def index_exists(self, league_id: str, season: str, index_type: str) -> bool:
        return self.key_exists(index_key(league_id, season, index_type))

    def delete_index(self, league_id: str, season: str, index_type: str) -> None:
        key = index_key(league_id, season, index_type)
        self._retry(lambda: self.backend.delete(key), f"delete_index({key})")

    def clear_indexes(self, league_id: str, season: str) -> None:
        for index_type in INDEX_TYPES:
            self.delete_index(league_id, season, index_type)

    # -- raw keys ---------------------------------------------------------

    def key_exists(self, key: str) -> bool:
        return self._retry(lambda: self.backend.exists(key), f"exists({key})")

    def list_keys(self, prefix: str = "") -> List[str]:
        """Every key under prefix; drains all pages before returning."""
        keys: List[str] = []
        token: Optional[str] = None
        while True:
            page, token = self._retry(
                lambda t=token: self.backend.list_page(prefix, t), f"list({prefix})",
            )
            keys.extend(page)
            if not token:
                return keys

    def health_check(self) -> bool:
        try:
            self.backend.list_page("")
            return True
        except Exception:
            logger.exception("storage health check failed")
            return False
