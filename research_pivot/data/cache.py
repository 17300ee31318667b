"""
Content-addressed result cache on the local filesystem.

Layout under the cache root:

    stats.json              lifetime counters
    entries/<key>.json      one CacheEntry per normalized query

Keys are the first 32 hex chars of SHA-256 over the normalized query. Every
write is atomic. Any IO or decode failure is logged and treated as a cache
bypass; callers never see cache errors.
"""

import hashlib
import re
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog
from pydantic import ValidationError

from research_pivot.config import Settings, get_settings
from research_pivot.exceptions import CacheIOError
from research_pivot.models import CacheEntry
from research_pivot.monitoring_metrics import CACHE_EVICTIONS, CACHE_HITS, CACHE_MISSES
from research_pivot.utils.file_ops import atomic_write_json, read_json

logger = structlog.get_logger(__name__)

KEY_LENGTH = 32
EVICTION_FRACTION = 0.1

_PUNCT_RE = re.compile(r"[^\w\s]")


def normalize_query(query: str) -> str:
    """Lower-case, strip punctuation, collapse whitespace."""
    return " ".join(_PUNCT_RE.sub(" ", query.lower()).split())


def cache_key(query: str) -> str:
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()[:KEY_LENGTH]


class ResultCache:
    """Filesystem cache for classification results with TTL and LRU eviction."""

    def __init__(self, root: Optional[str] = None, settings: Optional[Settings] = None,
                 ttl_seconds: Optional[float] = None, max_entries: Optional[int] = None,
                 bypass_keywords: Optional[Sequence[str]] = None,
                 now: Callable[[], float] = time.time):
        settings = settings or get_settings()
        self.root = Path(root or settings.CACHE_DIR)
        self.entries_dir = self.root / "entries"
        self.stats_path = self.root / "stats.json"
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.cache_ttl_seconds
        self.max_entries = max_entries if max_entries is not None else settings.CACHE_MAX_ENTRIES
        keywords = bypass_keywords if bypass_keywords is not None else settings.CACHE_BYPASS_KEYWORDS
        self.bypass_keywords = [k.lower() for k in keywords if k]
        self.enabled = settings.CACHE_ENABLED
        self._now = now
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.bypassed = 0
        self.evictions = 0

    def should_bypass(self, query: str) -> bool:
        """Time-sensitive queries are never served from or written to the cache."""
        # Plain substring match on the raw query, so "FY2025" and "todays" bypass too
        q = query.lower()
        return any(k in q for k in self.bypass_keywords)

    def _entry_path(self, key: str) -> Path:
        return self.entries_dir / f"{key}.json"

    def _read_entry(self, path: Path) -> Optional[CacheEntry]:
        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            raise CacheIOError(f"Unreadable cache entry {path.name}: {e}") from e
        if data is None:
            return None
        try:
            return CacheEntry.model_validate(data)
        except ValidationError as e:
            raise CacheIOError(f"Invalid cache entry {path.name}: {e}") from e

    def _write_entry(self, entry: CacheEntry) -> None:
        try:
            atomic_write_json(self._entry_path(entry.key), entry.model_dump())
        except OSError as e:
            raise CacheIOError(f"Cannot write cache entry {entry.key}: {e}") from e

    def _touch(self, key: str) -> Optional[CacheEntry]:
        """Read an entry and persist its hit. Caller holds the lock."""
        path = self._entry_path(key)
        entry = self._read_entry(path)
        if entry is None:
            return None
        now = self._now()
        if entry.is_expired(now):
            path.unlink(missing_ok=True)
            logger.debug("cache_expired", key=key)
            return None
        entry.hits += 1
        entry.last_accessed_at = now
        self._write_entry(entry)
        return entry

    def get(self, query: str) -> Optional[Dict[str, Any]]:
        """Return the cached result for a query, or None on miss, expiry or bypass."""
        if not self.enabled or not query or not query.strip():
            return None
        if self.should_bypass(query):
            with self._lock:
                self.bypassed += 1
            logger.debug("cache_bypass", query=query[:50])
            return None

        key = cache_key(query)
        # The persisted hit counter is a read-modify-write; hold the lock across it
        with self._lock:
            try:
                entry = self._touch(key)
            except (CacheIOError, OSError) as e:
                logger.warning("cache_read_failed", key=key, error=str(e))
                entry = None
            if entry is None:
                self.misses += 1
            else:
                self.hits += 1

        if entry is None:
            CACHE_MISSES.inc()
            return None
        CACHE_HITS.inc()
        logger.debug("cache_hit", key=key, hits=entry.hits)
        return entry.result

    def set(self, query: str, result: Dict[str, Any]) -> bool:
        """Store a result. Returns False when bypassed, disabled or on IO failure."""
        if not self.enabled or not query or not query.strip() or self.should_bypass(query):
            return False

        key = cache_key(query)
        now = self._now()
        entry = CacheEntry(
            query=query,
            normalized_query=normalize_query(query),
            key=key,
            result=result,
            created_at=now,
            expires_at=now + self.ttl_seconds,
            last_accessed_at=now,
        )
        try:
            with self._lock:
                if not self._entry_path(key).exists():
                    self._evict_if_full()
                self._write_entry(entry)
                self._save_stats(sets=1)
        except (CacheIOError, OSError) as e:
            logger.warning("cache_write_failed", key=key, error=str(e))
            return False
        logger.debug("cache_set", key=key)
        return True

    def _entries(self) -> List[CacheEntry]:
        entries = []
        if not self.entries_dir.is_dir():
            return entries
        for path in self.entries_dir.glob("*.json"):
            try:
                entry = self._read_entry(path)
            except CacheIOError as e:
                logger.warning("cache_entry_dropped", path=path.name, error=str(e))
                path.unlink(missing_ok=True)
                continue
            if entry is not None:
                entries.append(entry)
        return entries

    def _evict_if_full(self) -> int:
        entries = self._entries()
        if len(entries) < self.max_entries:
            return 0
        count = max(1, int(len(entries) * EVICTION_FRACTION))
        entries.sort(key=lambda e: e.last_accessed_at)
        for entry in entries[:count]:
            self._entry_path(entry.key).unlink(missing_ok=True)
        self.evictions += count
        CACHE_EVICTIONS.inc(count)
        self._save_stats(evicted=count)
        logger.info("cache_evicted", count=count, remaining=len(entries) - count)
        return count

    def _save_stats(self, sets: int = 0, evicted: int = 0) -> None:
        try:
            stats = read_json(self.stats_path) or {}
        except (OSError, ValueError):
            stats = {}
        stats["total_sets"] = stats.get("total_sets", 0) + sets
        stats["total_evictions"] = stats.get("total_evictions", 0) + evicted
        stats.setdefault("created_at", self._now())
        stats["updated_at"] = self._now()
        try:
            atomic_write_json(self.stats_path, stats)
        except OSError as e:
            raise CacheIOError(f"Cannot write cache stats: {e}") from e

    def purge_expired(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        now = self._now()
        removed = 0
        with self._lock:
            for entry in self._entries():
                if entry.is_expired(now):
                    self._entry_path(entry.key).unlink(missing_ok=True)
                    removed += 1
        logger.info("cache_purged", removed=removed)
        return removed

    def clear(self) -> int:
        """Delete every entry and reset counters. Returns the number removed."""
        removed = 0
        with self._lock:
            if self.entries_dir.is_dir():
                for path in self.entries_dir.glob("*.json"):
                    path.unlink(missing_ok=True)
                    removed += 1
            self.stats_path.unlink(missing_ok=True)
            self.hits = self.misses = self.bypassed = self.evictions = 0
        logger.info("cache_cleared", removed=removed)
        return removed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = self._entries()
            try:
                persisted = read_json(self.stats_path) or {}
            except (OSError, ValueError):
                persisted = {}
            lookups = self.hits + self.misses
            return {
                "cache_dir": str(self.root),
                "enabled": self.enabled,
                "entries": len(entries),
                "max_entries": self.max_entries,
                "ttl_hours": round(self.ttl_seconds / 3600, 2),
                "hits": self.hits,
                "misses": self.misses,
                "bypassed": self.bypassed,
                "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
                "entry_hits": sum(e.hits for e in entries),
                "evictions": self.evictions,
                "total_sets": persisted.get("total_sets", 0),
                "total_evictions": persisted.get("total_evictions", 0),
            }
