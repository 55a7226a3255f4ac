"""
Local persistence: key-value blob stores, draft pool records and a TTL cache

Usage:
    store = FileBlobStore("data/launchpad")
    drafts = DraftPoolStore(store)
    draft = drafts.add(name="Dog Coin", symbol="DOG", mint=str(mint))
"""

import json
import os
import random
import string
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol
from urllib.parse import quote

from launchpad.core.logger import get_logger
from launchpad.core.metrics import get_metrics
from launchpad.core.models import DraftPoolRecord


logger = get_logger(__name__)
metrics = get_metrics()


DRAFTS_KEY = "launchpad_pools"
DEFAULT_CACHE_TTL_S = 300


class BlobStore(Protocol):
    """Minimal key-value interface used for all local persistence"""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryBlobStore:
    """In-process blob store (tests, ephemeral sessions)"""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


class FileBlobStore:
    """
    One file per key under a directory

    Writes go to a temporary file in the same directory and are moved into
    place, so a crash never leaves a half-written value.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.blob"

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def set(self, key: str, value: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(value)
            os.replace(tmp_name, self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def _new_draft_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"pool_{int(time.time() * 1000)}_{suffix}"


class DraftPoolStore:
    """
    Draft pool records persisted as one JSON list

    Newest drafts come first. Drafts are only removed by remove()/clear().
    """

    def __init__(self, store: BlobStore, key: str = DRAFTS_KEY, clock: Callable[[], float] = time.time):
        self.store = store
        self.key = key
        self._clock = clock

    def list(self) -> List[DraftPoolRecord]:
        """Load all drafts; unreadable entries are logged and skipped"""
        raw = self.store.get(self.key)
        if raw is None:
            return []

        try:
            entries = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("draft_store_unreadable", key=self.key, error=str(e))
            metrics.increment_counter("draft_store_unreadable")
            return []

        if not isinstance(entries, list):
            logger.error("draft_store_unreadable", key=self.key, error="not a list")
            return []

        drafts = []
        for entry in entries:
            try:
                drafts.append(DraftPoolRecord.from_dict(entry))
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning("draft_record_skipped", error=str(e))
        return drafts

    def _save(self, drafts: List[DraftPoolRecord]) -> None:
        self.store.set(self.key, json.dumps([d.to_dict() for d in drafts]).encode())
        logger.debug("draft_store_saved", count=len(drafts))

    def add(self, name: str, symbol: str, mint: str, **fields: Any) -> DraftPoolRecord:
        """
        Create a draft and put it first

        A draft that already exists for the same mint is updated in place
        instead of duplicated.

        Returns:
            The stored draft
        """
        existing = self.get_by_mint(mint)
        if existing is not None:
            updated = self.update(existing.id, name=name, symbol=symbol, **fields)
            logger.info("draft_pool_replaced", draft_id=existing.id, mint=mint)
            return updated

        draft = DraftPoolRecord(
            id=_new_draft_id(),
            name=name,
            symbol=symbol,
            mint=mint,
            created_at=self._clock(),
            **fields
        )
        self._save([draft] + self.list())

        logger.info(
            "draft_pool_added",
            draft_id=draft.id,
            name=name,
            mint=mint,
            pool_address=draft.pool_address
        )
        metrics.increment_counter("draft_pools_added")
        return draft

    def update(self, draft_id: str, **changes: Any) -> Optional[DraftPoolRecord]:
        """Apply field changes to a draft; id and created_at are fixed"""
        changes.pop("id", None)
        changes.pop("created_at", None)

        drafts = self.list()
        for index, draft in enumerate(drafts):
            if draft.id == draft_id:
                values = draft.to_dict()
                values.update(changes)
                drafts[index] = DraftPoolRecord.from_dict(values)
                self._save(drafts)
                return drafts[index]

        logger.warning("draft_pool_not_found", draft_id=draft_id)
        return None

    def remove(self, draft_id: str) -> bool:
        drafts = self.list()
        remaining = [d for d in drafts if d.id != draft_id]
        if len(remaining) == len(drafts):
            return False
        self._save(remaining)
        logger.info("draft_pool_removed", draft_id=draft_id)
        return True

    def get_by_mint(self, mint: str) -> Optional[DraftPoolRecord]:
        return next((d for d in self.list() if d.mint == mint), None)

    def get_by_address(self, pool_address: str) -> Optional[DraftPoolRecord]:
        return next((d for d in self.list() if d.pool_address == pool_address), None)

    def clear(self) -> None:
        self.store.remove(self.key)
        logger.info("draft_store_cleared")


class AggregateCache:
    """
    JSON values with a timestamp and time-to-live on top of a blob store

    Expired entries are removed when read.
    """

    def __init__(
        self,
        store: BlobStore,
        default_ttl_s: float = DEFAULT_CACHE_TTL_S,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.default_ttl_s = default_ttl_s
        self._clock = clock

    def set(self, key: str, data: Any, ttl_s: Optional[float] = None) -> None:
        item = {
            "data": data,
            "timestamp": self._clock(),
            "ttl": ttl_s if ttl_s is not None else self.default_ttl_s,
        }
        self.store.set(key, json.dumps(item).encode())

    def _load(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            item = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("aggregate_cache_unreadable", key=key, error=str(e))
            self.store.remove(key)
            return None
        return item if isinstance(item, dict) and "timestamp" in item else None

    def get(self, key: str) -> Optional[Any]:
        item = self._load(key)
        if item is None:
            metrics.increment_counter("aggregate_cache_misses")
            return None

        if self._expired(item):
            self.store.remove(key)
            metrics.increment_counter("aggregate_cache_misses")
            return None

        metrics.increment_counter("aggregate_cache_hits")
        return item.get("data")

    def is_expired(self, key: str) -> bool:
        item = self._load(key)
        return item is None or self._expired(item)

    def age(self, key: str) -> Optional[float]:
        item = self._load(key)
        return None if item is None else self._clock() - item["timestamp"]

    def remove(self, key: str) -> None:
        self.store.remove(key)

    def _expired(self, item: Dict[str, Any]) -> bool:
        ttl = item.get("ttl")
        return bool(ttl) and self._clock() - item["timestamp"] > ttl
