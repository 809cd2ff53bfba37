"""
storage.py - Object/Blob Store

Bucketed key/blob storage behind a small upload/download/remove contract.
Blobs are addressed as {owner_id}/{session_timestamp}/{filename} inside a
bucket.

LocalBlobStore keeps each bucket as a directory under a root folder and
hands out file:// URLs as public locations.

Usage:
    store = LocalBlobStore("data/storage")
    url = store.upload("videos", "user-1/2026-10-17T12-00-00-000Z/video.mp4", data)
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import List, Sequence, Union

from .exceptions import StorageError

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Bucketed blob storage contract."""

    @abstractmethod
    def upload(self, bucket: str, path: str, data: bytes, upsert: bool = False) -> str:
        """Store bytes at bucket/path and return the blob's public URL."""

    @abstractmethod
    def download(self, bucket: str, path: str) -> bytes:
        """Return the bytes stored at bucket/path."""

    @abstractmethod
    def remove(self, bucket: str, paths: Sequence[str]) -> int:
        """Delete blobs; returns how many existed and were removed."""

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        """URL under which bucket/path is reachable."""


class LocalBlobStore(BlobStore):
    """
    Filesystem-backed blob store.

    Attributes:
        root (Path): Directory holding one sub-directory per bucket
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Blob store root: {self.root.absolute()}")

    def _resolve(self, bucket: str, path: str) -> Path:
        relative = PurePosixPath(path)
        if not bucket or relative.is_absolute() or '..' in relative.parts or not relative.parts:
            raise StorageError(f"Invalid blob address: {bucket}/{path}")
        return self.root / bucket / Path(*relative.parts)

    def upload(self, bucket: str, path: str, data: bytes, upsert: bool = False) -> str:
        target = self._resolve(bucket, path)
        if target.exists() and not upsert:
            raise StorageError(f"Blob already exists: {bucket}/{path}")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Error uploading file to {bucket}/{path}: {e}") from e

        logger.debug(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return self.public_url(bucket, path)

    def download(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return target.read_bytes()
        except OSError as e:
            raise StorageError(f"Error downloading {bucket}/{path}: {e}") from e

    def remove(self, bucket: str, paths: Sequence[str]) -> int:
        removed = 0
        for path in paths:
            target = self._resolve(bucket, path)
            try:
                target.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageError(f"Error removing {bucket}/{path}: {e}") from e
        if removed:
            logger.info(f"Removed {removed} blob(s) from bucket '{bucket}'")
        return removed

    def public_url(self, bucket: str, path: str) -> str:
        return self._resolve(bucket, path).absolute().as_uri()

    def list(self, bucket: str) -> List[str]:
        """All blob paths in a bucket, sorted."""
        bucket_dir = self.root / bucket
        if not bucket_dir.exists():
            return []
        return sorted(
            p.relative_to(bucket_dir).as_posix()
            for p in bucket_dir.rglob('*') if p.is_file()
        )

    def __repr__(self) -> str:
        return f"LocalBlobStore(root='{self.root}')"
