from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
import json
from pathlib import Path
import threading

import pytest

from prayersync.cache import CacheKey, MemoryTier, MultiTierCache, new_entry
from prayersync.cache_store import CacheStore
from prayersync.catalog import CalculationMethod, Madhab
from prayersync.errors import CacheIOError
from prayersync.models import Coordinates, PrayerTimeSet


SAN_FRANCISCO = Coordinates(37.7749, -122.4194)
DAY = date(2024, 6, 21)
MWL = CalculationMethod.MUSLIM_WORLD_LEAGUE


class FailingStore(CacheStore):
    def write(self, key, payload):
        raise CacheIOError("read-only filesystem")


def _times(method=CalculationMethod.MUSLIM_WORLD_LEAGUE, madhab=Madhab.SHAFI, shift=0):
    base = datetime(2024, 6, 21, 11, 0, tzinfo=timezone.utc) + timedelta(minutes=shift)
    return PrayerTimeSet(
        date=DAY,
        coordinates=SAN_FRANCISCO,
        method=method,
        madhab=madhab,
        fajr=base,
        sunrise=base + timedelta(hours=1, minutes=45),
        dhuhr=base + timedelta(hours=9),
        asr=base + timedelta(hours=13),
        sunset=base + timedelta(hours=16, minutes=30),
        maghrib=base + timedelta(hours=16, minutes=30),
        isha=base + timedelta(hours=18),
    )


def _key(method=CalculationMethod.MUSLIM_WORLD_LEAGUE, madhab=Madhab.SHAFI, day=DAY):
    return CacheKey.build(day, SAN_FRANCISCO, method, madhab)


def test_key_rounds_location_and_names_the_combination() -> None:
    key = _key()

    assert key.lat_rounded == 37.77
    assert key.lon_rounded == -122.42
    assert key.token == "prayer_2024-06-21_37.77_-122.42_MuslimWorldLeague_shafi"
    assert CacheKey.build(DAY, Coordinates(37.7712, -122.4249), MWL, Madhab.SHAFI) == key


def test_negative_zero_shares_a_key() -> None:
    west = CacheKey.build(DAY, Coordinates(0.001, -0.001), MWL, Madhab.SHAFI)
    east = CacheKey.build(DAY, Coordinates(0.001, 0.001), MWL, Madhab.SHAFI)

    assert west == east
    assert "-0.0" not in west.token


def test_entries_for_different_methods_coexist(tmp_path: Path) -> None:
    cache = MultiTierCache(persisted=CacheStore(tmp_path))
    key_a = _key()
    key_b = _key(method=CalculationMethod.EGYPTIAN)
    times_a = _times()
    times_b = _times(method=CalculationMethod.EGYPTIAN, shift=-10)

    cache.put(key_a, new_entry(key_a, times_a, "fp"))
    assert cache.get(key_b) is None

    cache.put(key_b, new_entry(key_b, times_b, "fp"))

    assert cache.get(key_a).times == times_a
    assert cache.get(key_b).times == times_b


def test_put_rejects_entry_under_foreign_key() -> None:
    cache = MultiTierCache()
    key_a = _key()

    with pytest.raises(ValueError):
        cache.put(_key(madhab=Madhab.HANAFI), new_entry(key_a, _times(), "fp"))


def test_disk_hit_is_promoted_to_memory(tmp_path: Path) -> None:
    key = _key()
    writer = MultiTierCache(persisted=CacheStore(tmp_path))
    writer.put(key, new_entry(key, _times(), "fp"))

    memory = MemoryTier()
    reader = MultiTierCache(memory=memory, persisted=CacheStore(tmp_path))
    entry = reader.get(key)

    assert entry is not None
    assert entry.fingerprint == "fp"
    assert entry.times == _times()
    assert key in memory


def test_persisted_schema_is_flat(tmp_path: Path) -> None:
    key = _key()
    MultiTierCache(persisted=CacheStore(tmp_path)).put(key, new_entry(key, _times(), "fp"))

    payload = json.loads((tmp_path / f"{key.token}.json").read_text(encoding="utf-8"))

    assert payload["method_id"] == "MuslimWorldLeague"
    assert payload["madhab_id"] == "shafi"
    assert payload["lat_rounded"] == 37.77
    assert payload["fajr"] == "2024-06-21T11:00:00+00:00"
    assert payload["midnight"] is None


def test_persisted_failure_degrades_to_memory(tmp_path: Path, caplog) -> None:
    cache = MultiTierCache(persisted=FailingStore(tmp_path))
    key = _key()

    cache.put(key, new_entry(key, _times(), "fp"))

    assert cache.get(key).times == _times()
    assert "kept" in caplog.text


def test_unreadable_disk_entry_is_a_miss(tmp_path: Path) -> None:
    key = _key()
    (tmp_path / f"{key.token}.json").write_text('{"date": "2024-06-21"}', encoding="utf-8")

    assert MultiTierCache(persisted=CacheStore(tmp_path)).get(key) is None


def test_invalidate_removes_both_tiers(tmp_path: Path) -> None:
    cache = MultiTierCache(persisted=CacheStore(tmp_path))
    key = _key()
    cache.put(key, new_entry(key, _times(), "fp"))

    cache.invalidate(key)

    assert cache.get(key) is None
    assert not (tmp_path / f"{key.token}.json").exists()


def test_memory_tier_evicts_least_recently_used() -> None:
    tier = MemoryTier(max_entries=2)
    first, second, third = (_key(day=DAY + timedelta(days=n)) for n in range(3))
    for key in (first, second):
        tier.put(key, new_entry(key, _times(), "fp"))

    tier.get(first)
    tier.put(third, new_entry(third, _times(), "fp"))

    assert first in tier
    assert second not in tier
    assert len(tier) == 2


def test_warm_loads_only_upcoming_days(tmp_path: Path) -> None:
    writer = MultiTierCache(persisted=CacheStore(tmp_path))
    for offset in (-1, 0, 1):
        key = _key(day=DAY + timedelta(days=offset))
        writer.put(key, new_entry(key, _times(), "fp"))

    memory = MemoryTier()
    warmed = MultiTierCache(memory=memory, persisted=CacheStore(tmp_path)).warm(since=DAY)

    assert warmed == 2
    assert _key(day=DAY - timedelta(days=1)) not in memory


def test_prune_drops_past_days_from_both_tiers(tmp_path: Path) -> None:
    store = CacheStore(tmp_path)
    cache = MultiTierCache(persisted=store)
    keys = {offset: _key(day=DAY + timedelta(days=offset)) for offset in (-3, -1, 0, 1)}
    for key in keys.values():
        cache.put(key, new_entry(key, _times(), "fp"))
    (tmp_path / "notes.json").write_text("{}", encoding="utf-8")

    removed = cache.prune(before=DAY - timedelta(days=1))

    assert removed == 1
    assert keys[-3] not in cache.memory
    assert store.read(keys[-3].token) is None
    for offset in (-1, 0, 1):
        assert cache.get(keys[offset]) is not None
    assert (tmp_path / "notes.json").exists()


def test_prune_without_persisted_tier_counts_memory() -> None:
    cache = MultiTierCache()
    old = _key(day=DAY - timedelta(days=2))
    cache.put(old, new_entry(old, _times(), "fp"))
    cache.put(_key(), new_entry(_key(), _times(), "fp"))

    assert cache.prune(before=DAY) == 1
    assert len(cache.memory) == 1


def test_concurrent_access_keeps_both_tiers_consistent(tmp_path: Path) -> None:
    cache = MultiTierCache(memory=MemoryTier(16), persisted=CacheStore(tmp_path))
    methods = [MWL, CalculationMethod.EGYPTIAN, CalculationMethod.KARACHI]
    keys = [
        _key(method=method, day=DAY + timedelta(days=offset))
        for method in methods
        for offset in range(4)
    ]
    errors = []

    def worker(index: int) -> None:
        try:
            for round_number in range(30):
                key = keys[(index + round_number) % len(keys)]
                cache.put(key, new_entry(key, _times(method=CalculationMethod(key.method_id)), "fp"))
                entry = cache.get(key)
                if entry is not None and entry.key != key:
                    errors.append(f"{key.token} returned {entry.key.token}")
                if round_number % 7 == 0:
                    cache.invalidate(key)
        except Exception as exc:
            errors.append(repr(exc))

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert len(cache.memory) <= 16
    for key in keys:
        cache.invalidate(key)
        cache.put(key, new_entry(key, _times(method=CalculationMethod(key.method_id)), "fp"))
    reread = MultiTierCache(memory=MemoryTier(), persisted=CacheStore(tmp_path))
    for key in keys:
        entry = reread.get(key)
        assert entry is not None
        assert entry.key == key
        assert entry.times.method is CalculationMethod(key.method_id)
    assert not list(tmp_path.glob("*.tmp"))
