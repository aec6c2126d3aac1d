"""Local draft persistence with a per-record synchronisation flag.

Records are JSON documents stored under string keys in a small key/value
backend. Each record carries a ``syncStatus`` of ``synced``, ``pending`` or
``conflict``. New records start as ``pending``; only explicit calls to
:meth:`LocalDraftStore.update_sync_status` or :meth:`LocalDraftStore.update_item`
change the flag. No reconciliation with a remote copy happens here.

Reads degrade quietly (``None`` / ``False`` / empty lists, with the failure
logged) while :meth:`LocalDraftStore.set_item` raises
:class:`StorageUnavailableError` so callers know a write was lost.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

LOGGER = logging.getLogger(__name__)

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024
DRAFT_PREFIX = "draft_"
STORY_CONTENT_PREFIX = "story_content_"
_PROBE_KEY = "___test___"


class StorageUnavailableError(RuntimeError):
    """Raised when the draft storage cannot be written."""


class StorageFullError(StorageUnavailableError):
    """Raised by a storage backend when a write would exceed its quota."""


class SyncStatus(str, enum.Enum):
    SYNCED = "synced"
    PENDING = "pending"
    CONFLICT = "conflict"


class StorageBackend(Protocol):
    def get(self, key: str) -> Optional[str]:  # pragma: no cover - protocol
        ...

    def set(self, key: str, value: str) -> None:  # pragma: no cover - protocol
        ...

    def remove(self, key: str) -> None:  # pragma: no cover - protocol
        ...

    def keys(self) -> List[str]:  # pragma: no cover - protocol
        ...

    def clear(self) -> None:  # pragma: no cover - protocol
        ...


def _byte_size(value: str) -> int:
    return len(value.encode("utf-8"))


class MemoryStorage:
    """Dictionary-backed storage, optionally limited to ``quota_bytes``."""

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(_byte_size(v) for k, v in self._data.items() if k != key)
            if used + _byte_size(value) > self.quota_bytes:
                raise StorageFullError("Draft storage quota exceeded.")
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()


class JsonFileStorage:
    """Storage kept in a single JSON object on disk.

    Every operation re-reads the file and writes it back through a temporary
    file, so concurrent writers race and the last one wins.
    """

    def __init__(self, path: os.PathLike | str, quota_bytes: Optional[int] = None) -> None:
        self.path = Path(path)
        self.quota_bytes = quota_bytes

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"Draft storage file {self.path} does not contain a JSON object.")
        return {str(key): str(value) for key, value in data.items()}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".drafts-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        if self.quota_bytes is not None:
            used = sum(_byte_size(v) for k, v in data.items() if k != key)
            if used + _byte_size(value) > self.quota_bytes:
                raise StorageFullError("Draft storage quota exceeded.")
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self) -> List[str]:
        return list(self._read())

    def clear(self) -> None:
        self._write({})


@dataclass
class LocalStorageItem:
    key: str
    data: Any
    timestamp: str
    sync_status: SyncStatus = SyncStatus.PENDING
    version: str = ""
    meta: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "key": self.key,
            "data": self.data,
            "timestamp": self.timestamp,
            "syncStatus": self.sync_status.value,
            "version": self.version,
        }
        if self.meta is not None:
            payload["meta"] = self.meta
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "LocalStorageItem":
        return cls(
            key=payload["key"],
            data=payload.get("data"),
            timestamp=payload["timestamp"],
            sync_status=SyncStatus(payload["syncStatus"]),
            version=payload.get("version", ""),
            meta=payload.get("meta"),
        )


@dataclass
class StorageAvailability:
    available: bool
    remaining: int


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalDraftStore:
    """Keyed, versioned draft records over a :class:`StorageBackend`.

    One instance is created per application (see :func:`inkwell.create_app`)
    and handed to the code that needs it.
    """

    def __init__(self, storage: StorageBackend, *, total_budget_bytes: int = DEFAULT_QUOTA_BYTES) -> None:
        self.storage = storage
        self.total_budget_bytes = total_budget_bytes
        self._last_version_ms = 0

    def _next_version(self) -> str:
        now_ms = int(time.time() * 1000)
        if now_ms <= self._last_version_ms:
            now_ms = self._last_version_ms + 1
        self._last_version_ms = now_ms
        return f"local-{now_ms}"

    def _write(self, item: LocalStorageItem) -> None:
        self.storage.set(item.key, json.dumps(item.to_dict(), ensure_ascii=False))

    # ---------------- single records ----------------
    def get_item(self, key: str) -> Optional[LocalStorageItem]:
        try:
            raw = self.storage.get(key)
            if not raw:
                return None
            return LocalStorageItem.from_dict(json.loads(raw))
        except Exception as exc:
            LOGGER.error("Failed to read draft record '%s': %s", key, exc)
            return None

    def set_item(self, key: str, data: Any, meta: Optional[Dict[str, Any]] = None) -> LocalStorageItem:
        item = LocalStorageItem(
            key=key,
            data=data,
            timestamp=_utc_timestamp(),
            sync_status=SyncStatus.PENDING,
            version=self._next_version(),
            meta=meta,
        )
        try:
            self._write(item)
        except Exception as exc:
            LOGGER.error("Failed to save draft record '%s': %s", key, exc)
            raise StorageUnavailableError("Saving to local draft storage failed.") from exc
        return item

    def update_item(
        self,
        key: str,
        data: Any,
        sync_status: Optional[SyncStatus | str] = None,
    ) -> Optional[LocalStorageItem]:
        try:
            item = self.get_item(key)
            if item is None:
                return None
            item.data = data
            item.timestamp = _utc_timestamp()
            if sync_status is not None:
                item.sync_status = SyncStatus(sync_status)
            item.version = self._next_version()
            self._write(item)
            return item
        except Exception as exc:
            LOGGER.error("Failed to update draft record '%s': %s", key, exc)
            return None

    def remove_item(self, key: str) -> bool:
        try:
            self.storage.remove(key)
            return True
        except Exception as exc:
            LOGGER.error("Failed to remove draft record '%s': %s", key, exc)
            return False

    def update_sync_status(self, key: str, status: SyncStatus | str) -> bool:
        try:
            item = self.get_item(key)
            if item is None:
                return False
            item.sync_status = SyncStatus(status)
            item.timestamp = _utc_timestamp()
            self._write(item)
            return True
        except Exception as exc:
            LOGGER.error("Failed to update sync status for '%s': %s", key, exc)
            return False

    def clear_all(self) -> bool:
        try:
            self.storage.clear()
            return True
        except Exception as exc:
            LOGGER.error("Failed to clear draft storage: %s", exc)
            return False

    # ---------------- scans ----------------
    def _scan(self, keys: Iterable[str]) -> List[LocalStorageItem]:
        items: List[LocalStorageItem] = []
        for key in keys:
            item = self.get_item(key)
            if item is not None:
                items.append(item)
        return items

    def _items_with_status(self, status: SyncStatus) -> List[LocalStorageItem]:
        try:
            return [item for item in self._scan(self.storage.keys()) if item.sync_status == status]
        except Exception as exc:
            LOGGER.error("Failed to list %s draft records: %s", status.value, exc)
            return []

    def get_pending_items(self) -> List[LocalStorageItem]:
        return self._items_with_status(SyncStatus.PENDING)

    def get_conflict_items(self) -> List[LocalStorageItem]:
        return self._items_with_status(SyncStatus.CONFLICT)

    def get_all_drafts(self) -> List[LocalStorageItem]:
        try:
            return self._scan(key for key in self.storage.keys() if key.startswith(DRAFT_PREFIX))
        except Exception as exc:
            LOGGER.error("Failed to list drafts: %s", exc)
            return []

    # ---------------- story helpers ----------------
    def save_story_content(self, story_id: Any, content: Any, title: Optional[str] = None) -> LocalStorageItem:
        key = f"{STORY_CONTENT_PREFIX}{story_id}"
        return self.set_item(
            key,
            {"content": content, "title": title},
            {"type": "story_content", "storyId": str(story_id)},
        )

    def get_story_content(self, story_id: Any) -> Optional[LocalStorageItem]:
        return self.get_item(f"{STORY_CONTENT_PREFIX}{story_id}")

    def save_draft(self, draft_id: Any, content: Any, meta: Optional[Dict[str, Any]] = None) -> LocalStorageItem:
        draft_meta: Dict[str, Any] = {"type": "draft"}
        if meta:
            draft_meta.update(meta)
        return self.set_item(f"{DRAFT_PREFIX}{draft_id}", content, draft_meta)

    # ---------------- capacity ----------------
    def check_storage_availability(self) -> StorageAvailability:
        """Probe writability and estimate the space left in the budget.

        The estimate sums the UTF-8 size of every stored value against a
        fixed total; it is not a real quota query.
        """

        try:
            self.storage.set(_PROBE_KEY, "test")
            self.storage.remove(_PROBE_KEY)

            used = 0
            for key in self.storage.keys():
                value = self.storage.get(key)
                if value:
                    used += _byte_size(value)
            return StorageAvailability(available=True, remaining=self.total_budget_bytes - used)
        except Exception as exc:
            LOGGER.warning("Draft storage unavailable: %s", exc)
            return StorageAvailability(available=False, remaining=0)


__all__ = [
    "DEFAULT_QUOTA_BYTES",
    "DRAFT_PREFIX",
    "JsonFileStorage",
    "LocalDraftStore",
    "LocalStorageItem",
    "MemoryStorage",
    "StorageAvailability",
    "StorageFullError",
    "StorageUnavailableError",
    "SyncStatus",
]
