"""File-backed key-value store for device-local state."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

from ..config import settings

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class StorageError(Exception):
    """Raised when the device store cannot read or write a value."""


class StorageQuotaExceeded(StorageError):
    """Raised when a write would push the store past its byte quota."""


class DeviceStorage:
    """Durable get/set/remove by key, one JSON document per key.

    Writes go to a temporary file that replaces the target atomically, so a
    reader never observes a half-written value. The quota is checked before
    anything touches disk.
    """

    def __init__(self, root: Path | None = None, quota_bytes: int | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.store_root = self.root / "device"
        self.store_root.mkdir(parents=True, exist_ok=True)
        self.quota_bytes = settings.storage_quota_bytes if quota_bytes is None else quota_bytes

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.store_root / f"{key}.json"

    def _used_bytes(self, excluding: Path | None = None) -> int:
        total = 0
        for path in self.store_root.glob("*.json"):
            if excluding is not None and path == excluding:
                continue
            total += path.stat().st_size
        return total

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read {key}: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        payload = json.dumps(value, ensure_ascii=False)
        encoded = payload.encode("utf-8")
        if self.quota_bytes and self._used_bytes(excluding=path) + len(encoded) > self.quota_bytes:
            raise StorageQuotaExceeded(
                f"Writing {key} ({len(encoded)} bytes) would exceed the {self.quota_bytes} byte quota"
            )
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with tmp_path.open("wb") as handle:
                handle.write(encoded)
            os.replace(tmp_path, path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {key}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to remove {key}: {exc}") from exc

    def keys(self) -> list[str]:
        return sorted(path.stem for path in self.store_root.glob("*.json"))

    def clear(self) -> None:
        for key in self.keys():
            self.remove(key)
