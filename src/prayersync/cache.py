from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
import threading
from typing import Any, Dict, Iterator, Optional

from prayersync.cache_store import CacheStore
from prayersync.catalog import CalculationMethod, Madhab
from prayersync.errors import CacheIOError
from prayersync.models import Coordinates, PrayerTimeSet


DEFAULT_LOCATION_PRECISION = 2
DEFAULT_MEMORY_ENTRIES = 256
KEY_PREFIX = "prayer_"


@dataclass(frozen=True)
class CacheKey:
    date: date
    lat_rounded: float
    lon_rounded: float
    method_id: str
    madhab_id: str

    @classmethod
    def build(
        cls,
        day: date,
        coordinates: Coordinates,
        method: CalculationMethod,
        madhab: Madhab,
        precision: int = DEFAULT_LOCATION_PRECISION,
    ) -> "CacheKey":
        # Adding 0.0 turns -0.0 into 0.0 so both hemispheres of a rounding share a key.
        return cls(
            date=day,
            lat_rounded=round(coordinates.latitude, precision) + 0.0,
            lon_rounded=round(coordinates.longitude, precision) + 0.0,
            method_id=method.value,
            madhab_id=madhab.value,
        )

    @property
    def token(self) -> str:
        return (
            f"{KEY_PREFIX}{self.date.isoformat()}_{self.lat_rounded!r}_{self.lon_rounded!r}"
            f"_{self.method_id}_{self.madhab_id}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "lat_rounded": self.lat_rounded,
            "lon_rounded": self.lon_rounded,
            "method_id": self.method_id,
            "madhab_id": self.madhab_id,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CacheKey":
        return cls(
            date=date.fromisoformat(payload["date"]),
            lat_rounded=float(payload["lat_rounded"]),
            lon_rounded=float(payload["lon_rounded"]),
            method_id=str(payload["method_id"]),
            madhab_id=str(payload["madhab_id"]),
        )


@dataclass(frozen=True)
class CacheEntry:
    key: CacheKey
    times: PrayerTimeSet
    inserted_at: datetime
    fingerprint: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload = self.times.to_dict()
        payload.update(self.key.to_dict())
        payload["inserted_at"] = self.inserted_at.isoformat()
        payload["fingerprint"] = self.fingerprint
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=CacheKey.from_dict(payload),
            times=PrayerTimeSet.from_dict(payload),
            inserted_at=datetime.fromisoformat(payload["inserted_at"]),
            fingerprint=str(payload.get("fingerprint", "")),
        )


class MemoryTier:
    """Bounded LRU map living for the lifetime of the process."""

    def __init__(self, max_entries: int = DEFAULT_MEMORY_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    def put(self, key: CacheKey, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def prune(self, before: date) -> int:
        with self._lock:
            stale = [key for key in self._entries if key.date < before]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def remove(self, key: CacheKey) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries


class MultiTierCache:
    """Memory tier in front of an optional persisted tier.

    Entries are only ever addressed by their own key, so a settings change
    produces misses rather than purges. A failing persisted tier degrades the
    cache to memory-only for that call.
    """

    def __init__(
        self,
        memory: Optional[MemoryTier] = None,
        persisted: Optional[CacheStore] = None,
    ) -> None:
        self._memory = memory or MemoryTier()
        self._persisted = persisted
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def memory(self) -> MemoryTier:
        return self._memory

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        entry = self._memory.get(key)
        if entry is not None:
            return entry
        if self._persisted is None:
            return None

        payload = self._persisted.read(key.token)
        if payload is None:
            return None
        try:
            entry = CacheEntry.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            self._logger.warning("Ignoring unreadable cache entry %s: %s", key.token, exc)
            return None
        if entry.key != key:
            self._logger.warning("Cache entry %s does not match its key", key.token)
            return None

        self._memory.put(key, entry)
        return entry

    def put(self, key: CacheKey, entry: CacheEntry) -> None:
        if entry.key != key:
            raise ValueError(f"Entry for {entry.key.token} cannot be stored under {key.token}")
        self._memory.put(key, entry)
        if self._persisted is None:
            return
        try:
            self._persisted.write(key.token, entry.to_dict())
        except CacheIOError as exc:
            self._logger.warning("Persisted cache unavailable; kept %s in memory: %s", key.token, exc)

    def invalidate(self, key: CacheKey) -> None:
        self._memory.remove(key)
        if self._persisted is None:
            return
        try:
            self._persisted.delete(key.token)
        except CacheIOError as exc:
            self._logger.warning("Failed to purge persisted entry %s: %s", key.token, exc)
        self._logger.info("Invalidated %s", key.token)

    def prune(self, before: date) -> int:
        """Drop entries for days before ``before`` from both tiers.

        Returns how many persisted files were removed (memory entries when
        there is no persisted tier).
        """
        dropped = self._memory.prune(before)
        if self._persisted is None:
            self._logger.info("Pruned %s memory entries before %s", dropped, before)
            return dropped

        removed = 0
        for token in list(self._persisted.keys(prefix=KEY_PREFIX)):
            day = _token_date(token)
            if day is None or day >= before:
                continue
            try:
                if self._persisted.delete(token):
                    removed += 1
            except CacheIOError as exc:
                self._logger.warning("Failed to prune persisted entry %s: %s", token, exc)
        self._logger.info(
            "Pruned %s persisted and %s memory entries before %s", removed, dropped, before
        )
        return removed

    def persisted_entries(self) -> Iterator[CacheEntry]:
        if self._persisted is None:
            return
        for token in self._persisted.keys(prefix=KEY_PREFIX):
            payload = self._persisted.read(token)
            if payload is None:
                continue
            try:
                yield CacheEntry.from_dict(payload)
            except (KeyError, TypeError, ValueError) as exc:
                self._logger.warning("Skipping unreadable cache entry %s: %s", token, exc)

    def warm(self, since: Optional[date] = None) -> int:
        """Promote persisted entries (optionally only from ``since`` on) into memory."""
        count = 0
        for entry in self.persisted_entries():
            if since is not None and entry.key.date < since:
                continue
            self._memory.put(entry.key, entry)
            count += 1
        self._logger.info("Warmed %s cache entries from disk", count)
        return count


def _token_date(token: str) -> Optional[date]:
    stamp = token[len(KEY_PREFIX) : len(KEY_PREFIX) + 10]
    try:
        return date.fromisoformat(stamp)
    except ValueError:
        return None

def new_entry(key: CacheKey, times: PrayerTimeSet, fingerprint: str) -> CacheEntry:
    return CacheEntry(
        key=key,
        times=times,
        inserted_at=datetime.now(timezone.utc),
        fingerprint=fingerprint,
    )
