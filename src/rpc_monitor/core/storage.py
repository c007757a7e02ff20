"""Durable JSON blob store backed by a directory of files.

Each blob is written to ``{directory}/{key}.json`` through a temporary file
and an atomic rename, so readers never observe a partial blob. An optional
byte quota bounds the total size of all blobs; a write that would exceed it
raises StorageCapacityError, as does a full disk.
"""

from __future__ import annotations

import errno
import logging
import os
import re
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Final

from rpc_monitor.core.exceptions import StorageCapacityError, StorageError

__all__ = ["JsonFileStore", "MemoryStore"]

_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._-]+$")

logger = logging.getLogger(__name__)


def _validate_key(key: str) -> str:
    if not _KEY_PATTERN.fullmatch(key):
        msg = f"Invalid storage key: {key!r}"
        raise ValueError(msg)
    return key


class JsonFileStore:
    """Blob store writing one JSON file per key.

    Example:
        >>> store = JsonFileStore(Path("/var/lib/rpc-monitor"), quota_bytes=5_000_000)
        >>> store.write_many({"rpc-monitor-data-by-method": "{}"})
        >>> store.read("rpc-monitor-data-by-method")
        '{}'
    """

    def __init__(self, directory: Path, *, quota_bytes: int | None = None) -> None:
        """Initialize the store.

        Args:
            directory: Directory holding the blob files, created on first write
            quota_bytes: Maximum total size of all blobs, None for unbounded

        Raises:
            ValueError: If quota_bytes is not positive
        """
        if quota_bytes is not None and quota_bytes <= 0:
            msg = f"quota_bytes must be positive, got: {quota_bytes}"
            raise ValueError(msg)
        self.directory: Path = directory
        self.quota_bytes: int | None = quota_bytes

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_validate_key(key)}.json"

    def read(self, key: str) -> str | None:
        """Return the blob stored under ``key``, or None when absent.

        Raises:
            StorageError: If the file exists but cannot be read
        """
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            msg = f"Failed to read {path}: {e}"
            raise StorageError(msg) from e

    def write_many(self, blobs: Mapping[str, str]) -> None:
        """Write all blobs, checking the quota against the resulting total.

        Raises:
            StorageCapacityError: If the blobs exceed the quota or the disk is full
            StorageError: On any other I/O failure
        """
        encoded = {key: blob.encode("utf-8") for key, blob in blobs.items()}
        self._check_quota(encoded)

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"Failed to create storage directory {self.directory}: {e}"
            raise StorageError(msg) from e

        for key, data in encoded.items():
            self._write_atomic(self.path_for(key), data)

    def remove(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)

    def total_bytes(self) -> int:
        """Total size of all blobs currently stored."""
        if not self.directory.is_dir():
            return 0
        return sum(path.stat().st_size for path in self.directory.glob("*.json"))

    def _check_quota(self, encoded: Mapping[str, bytes]) -> None:
        if self.quota_bytes is None:
            return

        # Blobs not being rewritten keep their current size
        untouched = 0
        if self.directory.is_dir():
            rewritten = {f"{key}.json" for key in encoded}
            untouched = sum(
                path.stat().st_size for path in self.directory.glob("*.json") if path.name not in rewritten
            )

        required = untouched + sum(len(data) for data in encoded.values())
        if required > self.quota_bytes:
            msg = f"Storage quota exceeded: {required} bytes required, quota is {self.quota_bytes}"
            raise StorageCapacityError(msg, required_bytes=required, quota_bytes=self.quota_bytes)

    def _write_atomic(self, path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}-", suffix=".tmp")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                _ = f.write(data)
                f.flush()
                os.fsync(f.fileno())
            _ = tmp_path.replace(path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            if e.errno in (errno.ENOSPC, errno.EDQUOT):
                msg = f"No space left writing {path}: {e}"
                raise StorageCapacityError(msg, required_bytes=len(data)) from e
            msg = f"Failed to write {path}: {e}"
            raise StorageError(msg) from e
        logger.debug("Wrote blob", extra={"path": str(path), "size_bytes": len(data)})


class MemoryStore:
    """In-memory blob store with an optional byte quota.

    Used when no storage directory is configured; history then lives for the
    lifetime of the process only.
    """

    def __init__(self, *, quota_bytes: int | None = None) -> None:
        self.quota_bytes: int | None = quota_bytes
        self._blobs: dict[str, str] = {}

    def read(self, key: str) -> str | None:
        return self._blobs.get(key)

    def write_many(self, blobs: Mapping[str, str]) -> None:
        """Write all blobs or none.

        Raises:
            StorageCapacityError: If the resulting total exceeds the quota
        """
        merged = {**self._blobs, **blobs}
        if self.quota_bytes is not None:
            required = sum(len(blob.encode("utf-8")) for blob in merged.values())
            if required > self.quota_bytes:
                msg = f"Storage quota exceeded: {required} bytes required, quota is {self.quota_bytes}"
                raise StorageCapacityError(msg, required_bytes=required, quota_bytes=self.quota_bytes)
        self._blobs = merged

    def remove(self, key: str) -> None:
        _ = self._blobs.pop(key, None)
