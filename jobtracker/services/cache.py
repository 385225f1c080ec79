import time
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from ..config import REDIS_URL


class Cache(ABC):
    """Small key/value interface the dedup ledger sits on."""

    @abstractmethod
    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """Store ``value`` unless ``key`` is live. True if stored."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str, ttl: int) -> None:
        pass

    @abstractmethod
    def compare_and_set(self, key: str, expected: str, value: str, ttl: int) -> bool:
        """Replace ``key`` only if it currently holds ``expected``."""

    @abstractmethod
    def size(self) -> int:
        pass


class InMemoryCache(Cache):
    """Process-local store; expired entries are swept lazily on write."""

    def __init__(self, clock=time.time):
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _live(self, key: str, now: float) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            del self._data[key]
            return None
        return entry[0]

    def _sweep(self, now: float):
        expired = [k for k, (_, exp) in self._data.items() if exp <= now]
        for k in expired:
            del self._data[k]

    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            if self._live(key, now) is not None:
                return False
            self._data[key] = (value, now + ttl)
            return True

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key, self._clock())

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl)

    def compare_and_set(self, key: str, expected: str, value: str, ttl: int) -> bool:
        now = self._clock()
        with self._lock:
            if self._live(key, now) != expected:
                return False
            self._data[key] = (value, now + ttl)
            return True

    def size(self) -> int:
        with self._lock:
            self._sweep(self._clock())
            return len(self._data)


class RedisCache(Cache):
    """Shared store for when more than one process ingests submissions."""

    def __init__(self, url: str, prefix: str = "jobtracker:"):
        import redis  # type: ignore
        self.r = redis.Redis.from_url(url, decode_responses=True)
        self.prefix = prefix

    def _k(self, key: str) -> str:
        return self.prefix + key

    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        return bool(self.r.set(self._k(key), value, nx=True, ex=ttl))

    def get(self, key: str) -> Optional[str]:
        return self.r.get(self._k(key))

    def set(self, key: str, value: str, ttl: int) -> None:
        self.r.set(self._k(key), value, ex=ttl)

    def compare_and_set(self, key: str, expected: str, value: str, ttl: int) -> bool:
        import redis  # type: ignore
        k = self._k(key)
        with self.r.pipeline() as p:
            try:
                p.watch(k)
                if p.get(k) != expected:
                    p.unwatch()
                    return False
                p.multi()
                p.set(k, value, ex=ttl)
                p.execute()
                return True
            except redis.WatchError:
                return False

    def size(self) -> int:
        return sum(1 for _ in self.r.scan_iter(match=self.prefix + "*"))


def build_cache(url: Optional[str] = REDIS_URL) -> Cache:
    if url:
        return RedisCache(url)
    return InMemoryCache()
