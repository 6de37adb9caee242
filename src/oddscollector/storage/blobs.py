"""
Blob backends: put/get/exists/delete bytes by key, plus a paginated listing.

`get` returns None and `exists` returns False for a missing key; any other
problem is raised so the snapshot store can retry it.
"""
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple

Page = Tuple[List[str], Optional[str]]   # keys, continuation token


class BlobBackend(ABC):
    @abstractmethod
    def put(self, key: str, body: bytes, content_type: str = "application/json",
            metadata: Optional[Dict[str, str]] = None) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def list_page(self, prefix: str = "", continuation_token: Optional[str] = None) -> Page:
        ...


class MemoryBlobBackend(BlobBackend):
    """Dict-backed backend; page_size forces multi-page listings."""

    def __init__(self, page_size: int = 1000):
        self.page_size = page_size
        self.blobs: Dict[str, bytes] = {}
        self.metadata: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def put(self, key, body, content_type="application/json", metadata=None):
        with self._lock:
            # replace the whole value at once, readers never see half a blob
            self.blobs[key] = bytes(body)
            self.metadata[key] = dict(metadata or {})

    def get(self, key):
        return self.blobs.get(key)

    def exists(self, key):
        return key in self.blobs

    def delete(self, key):
        with self._lock:
            self.blobs.pop(key, None)
            self.metadata.pop(key, None)

    def list_page(self, prefix="", continuation_token=None):
        keys = sorted(k for k in self.blobs if k.startswith(prefix))
        start = int(continuation_token) if continuation_token else 0
        page = keys[start:start + self.page_size]
        nxt = start + self.page_size
        return page, (str(nxt) if nxt < len(keys) else None)


class LocalBlobBackend(BlobBackend):
    """Filesystem backend. Writes go to a temp file and are published with os.replace."""

    def __init__(self, base_path: str, page_size: int = 1000):
        self.base = Path(base_path)
        self.base.mkdir(parents=True, exist_ok=True)
        self.page_size = page_size

    def _path(self, key: str) -> Path:
        p = (self.base / key).resolve()
        if self.base.resolve() not in p.parents:
            raise ValueError(f"key escapes storage root: {key!r}")
        return p

    def put(self, key, body, content_type="application/json", metadata=None):
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, key):
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None

    def exists(self, key):
        return self._path(key).is_file()

    def delete(self, key):
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def list_page(self, prefix="", continuation_token=None):
        keys = []
        for p in self.base.rglob("*"):
            if not p.is_file() or p.name.endswith(".tmp"):
                continue
            key = p.relative_to(self.base).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        keys.sort()
        if continuation_token:
            keys = [k for k in keys if k > continuation_token]
        page = keys[:self.page_size]
        more = len(keys) > self.page_size
        return page, (page[-1] if more else None)


class S3BlobBackend(BlobBackend):
    """
    S3-compatible object storage through boto3.
    A single PUT is atomic on these stores, so no temp object is needed.
    """

    def __init__(self, bucket: str, endpoint_url: str = "", region: str = "auto",
                 access_key_id: str = "", secret_access_key: str = "",
                 base_path: str = "", client=None, timeout: float = 30.0):
        self.bucket = bucket
        self.base_path = base_path.strip("/")
        if client is None:
            import boto3
            from botocore.config import Config

            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url or None,
                region_name=region,
                aws_access_key_id=access_key_id or None,
                aws_secret_access_key=secret_access_key or None,
                config=Config(connect_timeout=timeout, read_timeout=timeout,
                              retries={"max_attempts": 1}),
            )
        self.client = client

    def _key(self, key: str) -> str:
        return f"{self.base_path}/{key}" if self.base_path else key

    def _strip(self, full_key: str) -> str:
        if self.base_path and full_key.startswith(self.base_path + "/"):
            return full_key[len(self.base_path) + 1:]
        return full_key

    @staticmethod
    def _is_not_found(exc: Exception) -> bool:
        resp = getattr(exc, "response", None) or {}
        code = str(resp.get("Error", {}).get("Code", ""))
        status = resp.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return code in ("NoSuchKey", "NotFound", "404") or status == 404

    def put(self, key, body, content_type="application/json", metadata=None):
        self.client.put_object(
            Bucket=self.bucket, Key=self._key(key), Body=body,
            ContentType=content_type, Metadata=dict(metadata or {}),
        )

    def get(self, key):
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=self._key(key))
        except Exception as e:
            if self._is_not_found(e):
                return None
            raise
        return resp["Body"].read()

    def exists(self, key):
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._key(key))
            return True
        except Exception as e:
            if self._is_not_found(e):
                return False
            raise

    def delete(self, key):
        self.client.delete_object(Bucket=self.bucket, Key=self._key(key))

    def list_page(self, prefix="", continuation_token=None):
        kwargs = {"Bucket": self.bucket, "Prefix": self._key(prefix)}
        if continuation_token:
            kwargs["ContinuationToken"] = continuation_token
        resp = self.client.list_objects_v2(**kwargs)
        keys = [self._strip(o["Key"]) for o in resp.get("Contents", []) if o.get("Key")]
        token = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
        return keys, token
