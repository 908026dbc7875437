"""
Time-bounded in-memory map underlying every broker store.
Entries carry an absolute expiry; reads evict lazily, sweep() evicts in bulk.
Keys are spread over shards, each guarded by its own lock, so unrelated keys never contend
on a single global lock. pop() is the single atomic removal primitive shared by consume-once
reads and the sweep.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]

_DEFAULT_SHARDS = 16


@dataclass(frozen=True)
class _Entry(Generic[V]):
    value: V
    expires_at: float


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self):
        self.lock = threading.Lock()
        self.entries: dict = {}


class ClockedStore(Generic[K, V]):
    def __init__(self, ttl_seconds: float, *, clock: Clock = time.time, shards: int = _DEFAULT_SHARDS):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._shards = [_Shard() for _ in range(shards)]

    def _shard(self, key: K) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def now(self) -> float:
        return self._clock()

    def put(self, key: K, value: V, *, expires_at: float | None = None) -> float:
        """Insert or overwrite. Returns the absolute expiry used."""
        if expires_at is None:
            expires_at = self._clock() + self.ttl_seconds
        shard = self._shard(key)
        with shard.lock:
            shard.entries[key] = _Entry(value, expires_at)
        return expires_at

    def get(self, key: K, *, include_expired: bool = False) -> V | None:
        """
        Return the live value for key, or None. An expired entry is evicted on read
        unless include_expired is set (then it is returned as-is and left in place).
        """
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                return None
            if include_expired:
                return entry.value
            if self._clock() > entry.expires_at:
                del shard.entries[key]
                return None
            return entry.value

    def pop(self, key: K) -> V | None:
        """Atomically remove key. Returns the value only if it was present and unexpired."""
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.pop(key, None)
        if entry is None or self._clock() > entry.expires_at:
            return None
        return entry.value

    def update(self, key: K, fn: Callable[[V], V]) -> V | None:
        """Atomically replace a live value with fn(old); expiry is unchanged. None if absent or expired."""
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del shard.entries[key]
                return None
            new_value = fn(entry.value)
            shard.entries[key] = _Entry(new_value, entry.expires_at)
            return new_value

    def upsert(self, key: K, fn: Callable[[V | None], V], *, expires_at: float | None = None) -> V:
        """Atomically store fn(live value or None) under key with a fresh expiry."""
        if expires_at is None:
            expires_at = self._clock() + self.ttl_seconds
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            current = None if entry is None or self._clock() > entry.expires_at else entry.value
            new_value = fn(current)
            shard.entries[key] = _Entry(new_value, expires_at)
            return new_value

    def discard(self, key: K) -> bool:
        shard = self._shard(key)
        with shard.lock:
            return shard.entries.pop(key, None) is not None

    def sweep(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        return len(self.evict_if(None))

    def evict_if(self, predicate: Callable[[V], bool] | None) -> list[V]:
        """Remove expired entries and live entries matching predicate; returns the removed values."""
        removed: list[V] = []
        now = self._clock()
        for shard in self._shards:
            with shard.lock:
                doomed = [
                    k
                    for k, e in shard.entries.items()
                    if now > e.expires_at or (predicate is not None and predicate(e.value))
                ]
                for k in doomed:
                    removed.append(shard.entries.pop(k).value)
        return removed

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total
