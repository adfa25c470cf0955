"""Blob storage buckets on the local filesystem.

Layout: <root>/<bucket>/<object path>. A sidecar "<object>.meta.json" keeps
the content type.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import structlog

from classroom.config.app_config import DATA_DIR_ENV, get_data_dir, load_app_config

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """Storage operation failed."""

    pass


class ObjectExistsError(StorageError):
    """Upload target already exists (uploads never overwrite)."""

    pass


class ObjectNotFoundError(StorageError):
    """Requested object does not exist."""

    pass


class BucketStore:
    """Bucket/object store rooted at a directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _object_path(self, bucket: str, path: str) -> Path:
        if not bucket or "/" in bucket or bucket in (".", ".."):
            raise StorageError(f"Invalid bucket name: {bucket!r}")
        parts = [p for p in path.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise StorageError(f"Invalid object path: {path!r}")
        return self.root.joinpath(bucket, *parts)

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Store an object.

        Returns:
            The object path inside the bucket

        Raises:
            ObjectExistsError: If the path is already taken
        """
        target = self._object_path(bucket, path)
        if target.exists():
            raise ObjectExistsError(f"Object already exists: {bucket}/{path}")

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        meta = target.with_name(target.name + ".meta.json")
        meta.write_text(json.dumps({"content_type": content_type}), encoding="utf-8")

        logger.info("storage.uploaded", bucket=bucket, path=path, size=len(data))
        return path

    def download(self, bucket: str, path: str) -> bytes:
        target = self._object_path(bucket, path)
        if not target.is_file():
            raise ObjectNotFoundError(f"Object not found: {bucket}/{path}")
        return target.read_bytes()

    def content_type(self, bucket: str, path: str) -> str | None:
        target = self._object_path(bucket, path)
        meta = target.with_name(target.name + ".meta.json")
        if not meta.is_file():
            return None
        return json.loads(meta.read_text(encoding="utf-8")).get("content_type")

    def exists(self, bucket: str, path: str) -> bool:
        return self._object_path(bucket, path).is_file()

    def remove(self, bucket: str, paths: list[str]) -> int:
        """Remove objects. Missing paths are skipped.

        Returns:
            Number of objects removed
        """
        removed = 0
        for path in paths:
            target = self._object_path(bucket, path)
            if target.is_file():
                target.unlink()
                target.with_name(target.name + ".meta.json").unlink(missing_ok=True)
                removed += 1
        logger.info("storage.removed", bucket=bucket, requested=len(paths), removed=removed)
        return removed


# Global instance
_bucket_store: BucketStore | None = None


def get_bucket_store() -> BucketStore:
    """Get the bucket store rooted at the configured storage directory."""
    global _bucket_store
    if _bucket_store is None:
        if os.environ.get(DATA_DIR_ENV):
            root = get_data_dir() / "storage"
        else:
            root = Path(load_app_config().paths.get("storage_dir", "data/storage"))
        _bucket_store = BucketStore(root)
    return _bucket_store


def reset_bucket_store() -> None:
    global _bucket_store
    _bucket_store = None
