import logging
import mimetypes
import os
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from io import BytesIO
from typing import Any, BinaryIO, Iterator, Protocol
from urllib.parse import quote

import boto3
from botocore.exceptions import ClientError

from settings import get_settings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectNotFoundError(KeyError):
    pass


def _safe_segment(value: str) -> str:
    return quote(str(value or "").strip(), safe="-._~")


def _safe_filename(value: str) -> str:
    name = os.path.basename(str(value or "").replace("\\", "/")).strip()
    return _safe_segment(name) or "file"


def _join_key(*parts: str) -> str:
    return "/".join([str(p).strip().strip("/") for p in parts if str(p or "").strip()])


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def key_for_character_sheet(user_id: str, character_id: str, level: int, filename: str) -> str:
    return _join_key(
        "characters",
        _safe_segment(user_id),
        _safe_segment(character_id),
        f"level-{int(level)}",
        f"{_timestamp_ms()}-{_safe_filename(filename)}",
    )


def character_prefix(user_id: str, character_id: str) -> str:
    return _join_key("characters", _safe_segment(user_id), _safe_segment(character_id)) + "/"


def key_for_document(filename: str) -> str:
    return _join_key("documents", f"{_timestamp_ms()}-{_safe_filename(filename)}")


def guess_content_type(filename: str, fallback: str = "application/octet-stream") -> str:
    guessed, _ = mimetypes.guess_type(str(filename or ""))
    return guessed or fallback


@dataclass
class StoredObject:
    """A blob fetched from the store. ``size`` is None when the store did not declare it."""

    key: str
    body: BinaryIO
    size: int | None
    content_type: str

    def read(self) -> bytes:
        try:
            return self.body.read()
        finally:
            self.close()

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.body.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        close = getattr(self.body, "close", None)
        if close:
            close()


class ObjectStore(Protocol):
    def ensure_bucket(self) -> None: ...

    def put_bytes(self, key: str, data: bytes, content_type: str | None = None) -> None: ...

    def get(self, key: str) -> StoredObject: ...

    def delete(self, key: str) -> None: ...

    def delete_prefix(self, prefix: str) -> int: ...

    def list_keys(self, prefix: str) -> list[str]: ...


class S3ObjectStore:
    """S3-compatible blob storage (MinIO, R2, AWS) through boto3."""

    def __init__(
        self,
        *,
        endpoint: str,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        region: str = "us-east-1",
        client: Any = None,
    ):
        self.bucket = bucket
        self.region = region
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint or None,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )

    def ensure_bucket(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code not in _MISSING_CODES and code != "NoSuchBucket":
                raise
            self._client.create_bucket(Bucket=self.bucket)
            logger.info("Created bucket: %s", self.bucket)

    def put_bytes(self, key: str, data: bytes, content_type: str | None = None) -> None:
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentLength": len(data),
        }
        if content_type:
            params["ContentType"] = content_type
        self._client.put_object(**params)

    def get(self, key: str) -> StoredObject:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise ObjectNotFoundError(key) from exc
            raise
        size = obj.get("ContentLength")
        return StoredObject(
            key=key,
            body=obj["Body"],
            size=int(size) if size is not None else None,
            content_type=obj.get("ContentType") or "application/octet-stream",
        )

    def delete(self, key: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=key)

    def list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(item["Key"] for item in page.get("Contents", []))
        return keys

    def delete_prefix(self, prefix: str) -> int:
        keys = self.list_keys(prefix)
        # DeleteObjects accepts at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            batch = keys[start : start + 1000]
            self._client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
        return len(keys)


class MemoryObjectStore:
    """Process-local store used by tests and `STORAGE_BACKEND=memory` dev runs."""

    def __init__(self):
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def ensure_bucket(self) -> None:
        return None

    def put_bytes(self, key: str, data: bytes, content_type: str | None = None) -> None:
        with self._lock:
            self._objects[key] = (bytes(data), content_type or guess_content_type(key))

    def get(self, key: str) -> StoredObject:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFoundError(key)
        data, content_type = entry
        return StoredObject(key=key, body=BytesIO(data), size=len(data), content_type=content_type)

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def list_keys(self, prefix: str) -> list[str]:
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._objects if k.startswith(prefix)]
            for key in doomed:
                del self._objects[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._objects.clear()


@lru_cache
def get_object_store() -> ObjectStore:
    cfg = get_settings()
    backend = cfg.storage_backend.strip().lower()
    if backend == "memory":
        return MemoryObjectStore()
    if backend != "s3":
        raise RuntimeError(f"Unsupported STORAGE_BACKEND: {cfg.storage_backend}")
    return S3ObjectStore(
        endpoint=cfg.s3_endpoint,
        bucket=cfg.s3_bucket,
        access_key_id=cfg.s3_access_key_id,
        secret_access_key=cfg.s3_secret_access_key,
        region=cfg.s3_region,
    )
