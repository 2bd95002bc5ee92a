"""
Timestamped key/value caches.

Two implementations of the same small interface:

- MemoryCache: process-local dictionary, handy for tests and services
- DiskCache: one file per key in a directory; the store time is kept as
  the file's mtime so freshness survives process restarts

Both take a clock callable so freshness windows can be tested without
real time passing.
"""

import os
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Optional, Union
import logging

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now()


@dataclass(frozen=True)
class CacheEntry:
    value: bytes
    stored_at: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.stored_at

    def is_fresh(self, now: datetime, max_age: timedelta) -> bool:
        return self.age(now) < max_age

    def text(self, encoding: str = "utf-8") -> str:
        return self.value.decode(encoding)


class Cache:
    """Interface: get / put / invalidate keyed by string."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or system_clock

    def get(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def put(self, key: str, value: Union[bytes, str]) -> CacheEntry:
        raise NotImplementedError

    def invalidate(self, key: str) -> None:
        raise NotImplementedError

    def get_fresh(self, key: str, max_age: timedelta) -> Optional[CacheEntry]:
        """Entry for key if it is younger than max_age, else None."""
        entry = self.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self.clock(), max_age):
            logger.debug(f"Cache entry '{key}' is stale ({entry.age(self.clock())})")
            return None
        return entry


def _as_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class MemoryCache(Cache):
    """Thread-safe in-memory cache."""

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value: Union[bytes, str]) -> CacheEntry:
        entry = CacheEntry(_as_bytes(value), self.clock())
        with self._lock:
            self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


_UNSAFE_KEY_CHARS = re.compile(r'[^A-Za-z0-9_.-]')


class DiskCache(Cache):
    """
    File-per-key cache rooted at a directory.

    Usage:
        cache = DiskCache(Path(tempfile.gettempdir()) / "hcup_mapper_cache")
        cache.put("latest_version_diagnosis", "v2026.1")
        entry = cache.get_fresh("latest_version_diagnosis", timedelta(hours=6))
    """

    def __init__(self, directory: Union[str, Path], clock: Optional[Clock] = None):
        super().__init__(clock)
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def path_for(self, key: str) -> Path:
        return self.directory / _UNSAFE_KEY_CHARS.sub("_", key)

    def get(self, key: str) -> Optional[CacheEntry]:
        path = self.path_for(key)
        with self._lock:
            if not path.exists():
                return None
            try:
                value = path.read_bytes()
                stored_at = datetime.fromtimestamp(path.stat().st_mtime)
            except OSError as e:
                logger.warning(f"Could not read cache file {path}: {e}")
                return None
        return CacheEntry(value, stored_at)

    def put(self, key: str, value: Union[bytes, str]) -> CacheEntry:
        path = self.path_for(key)
        now = self.clock()
        data = _as_bytes(value)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            ts = now.timestamp()
            os.utime(path, (ts, ts))
        logger.debug(f"Cached '{key}' at {path}")
        return CacheEntry(data, now)

    def invalidate(self, key: str) -> None:
        path = self.path_for(key)
        with self._lock:
            if path.exists():
                path.unlink()
