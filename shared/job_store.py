"""
Job Store - storage primitives the followup queue is built on

The queue only needs a handful of single-key operations: hash fields, a
score-ordered set, counters, TTLs and a compare-and-set. Keeping them behind
this interface lets the queue run against Redis in production and against a
process-local store in development and tests.
"""
import fnmatch
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis

from utils.redis_atomic import AtomicRedisOperations

logger = logging.getLogger("job-store")


class JobStore(ABC):
    """Abstract interface for job persistence and ordering"""

    # Hashes
    @abstractmethod
    def hset(self, key: str, mapping: Dict[str, str]) -> int:
        pass

    @abstractmethod
    def hget(self, key: str, field: str) -> Optional[str]:
        pass

    @abstractmethod
    def hgetall(self, key: str) -> Dict[str, str]:
        pass

    @abstractmethod
    def hsetnx(self, key: str, field: str, value: str) -> bool:
        """Set field only if absent; True if this call created it"""
        pass

    @abstractmethod
    def hdel(self, key: str, *fields: str) -> int:
        pass

    @abstractmethod
    def hlen(self, key: str) -> int:
        pass

    # Keys
    @abstractmethod
    def expire(self, key: str, seconds: int) -> bool:
        pass

    @abstractmethod
    def delete(self, *keys: str) -> int:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def scan_keys(self, pattern: str) -> List[str]:
        pass

    # Sorted sets
    @abstractmethod
    def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        pass

    @abstractmethod
    def zrem(self, key: str, *members: str) -> int:
        pass

    @abstractmethod
    def zscore(self, key: str, member: str) -> Optional[float]:
        pass

    @abstractmethod
    def zcard(self, key: str) -> int:
        pass

    @abstractmethod
    def zrangebyscore(self, key: str, min_score: float, max_score: float,
                      start: Optional[int] = None, num: Optional[int] = None) -> List[str]:
        """Members with min <= score <= max in ascending score order"""
        pass

    @abstractmethod
    def zrevrangebyscore(self, key: str, max_score: float, min_score: float,
                         start: Optional[int] = None, num: Optional[int] = None) -> List[str]:
        """Members with min <= score <= max in descending score order"""
        pass

    @abstractmethod
    def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        """Remove members with min <= score <= max"""
        pass

    # Counters
    @abstractmethod
    def incr(self, key: str) -> int:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    # Atomic single-key updates
    @abstractmethod
    def compare_and_set(self, key: str, field: str, expected: str, new_value: str) -> bool:
        pass

    @abstractmethod
    def conditional_update(self, key: str, guard_field: str, expected: str,
                           updates: Dict[str, str]) -> bool:
        pass

    @abstractmethod
    def ping(self) -> bool:
        pass


class RedisJobStore(JobStore):
    """
    Redis-backed store. Store errors (redis.RedisError) are not caught here;
    deciding whether to retry a store call is the caller's business.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client
        self.atomic_ops = AtomicRedisOperations(redis_client)

    def hset(self, key, mapping):
        return self.redis_client.hset(key, mapping=mapping)

    def hget(self, key, field):
        return self.redis_client.hget(key, field)

    def hgetall(self, key):
        return self.redis_client.hgetall(key) or {}

    def hsetnx(self, key, field, value):
        return bool(self.redis_client.hsetnx(key, field, value))

    def hdel(self, key, *fields):
        if not fields:
            return 0
        return self.redis_client.hdel(key, *fields)

    def hlen(self, key):
        return self.redis_client.hlen(key)

    def expire(self, key, seconds):
        return bool(self.redis_client.expire(key, int(seconds)))

    def delete(self, *keys):
        if not keys:
            return 0
        return self.redis_client.delete(*keys)

    def exists(self, key):
        return bool(self.redis_client.exists(key))

    def scan_keys(self, pattern):
        return list(self.redis_client.scan_iter(match=pattern))

    def zadd(self, key, mapping):
        return self.redis_client.zadd(key, mapping)

    def zrem(self, key, *members):
        if not members:
            return 0
        return self.redis_client.zrem(key, *members)

    def zscore(self, key, member):
        return self.redis_client.zscore(key, member)

    def zcard(self, key):
        return self.redis_client.zcard(key)

    def zrangebyscore(self, key, min_score, max_score, start=None, num=None):
        if start is not None and num is not None:
            return self.redis_client.zrangebyscore(key, min_score, max_score, start=start, num=num)
        return self.redis_client.zrangebyscore(key, min_score, max_score)

    def zrevrangebyscore(self, key, max_score, min_score, start=None, num=None):
        if start is not None and num is not None:
            return self.redis_client.zrevrangebyscore(key, max_score, min_score, start=start, num=num)
        return self.redis_client.zrevrangebyscore(key, max_score, min_score)

    def zremrangebyscore(self, key, min_score, max_score):
        return self.redis_client.zremrangebyscore(key, min_score, max_score)

    def incr(self, key):
        return int(self.redis_client.incr(key))

    def get(self, key):
        return self.redis_client.get(key)

    def compare_and_set(self, key, field, expected, new_value):
        return self.atomic_ops.compare_and_set_field(key, field, expected, new_value)

    def conditional_update(self, key, guard_field, expected, updates):
        return self.atomic_ops.conditional_update(key, guard_field, expected, updates)

    def ping(self):
        return bool(self.redis_client.ping())


class InMemoryJobStore(JobStore):
    """
    Process-local store with the same semantics as RedisJobStore.

    TTLs are evaluated lazily against time.time(), so frozen clocks in tests
    control expiry. One lock guards every operation, which makes each call
    atomic the way a single Redis command is.
    """

    def __init__(self):
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}
        self._strings: Dict[str, str] = {}
        self._expiry: Dict[str, float] = {}
        self._lock = threading.RLock()

    def _evict_if_expired(self, key: str):
        deadline = self._expiry.get(key)
        if deadline is not None and time.time() >= deadline:
            self._drop(key)

    def _drop(self, key: str) -> bool:
        existed = False
        for space in (self._hashes, self._zsets, self._strings):
            if key in space:
                del space[key]
                existed = True
        self._expiry.pop(key, None)
        return existed

    def _all_keys(self) -> List[str]:
        keys = set(self._hashes) | set(self._zsets) | set(self._strings)
        for key in list(keys):
            self._evict_if_expired(key)
        return [k for k in keys if k in self._hashes or k in self._zsets or k in self._strings]

    def hset(self, key, mapping):
        with self._lock:
            self._evict_if_expired(key)
            bucket = self._hashes.setdefault(key, {})
            added = sum(1 for field in mapping if field not in bucket)
            bucket.update({field: str(value) for field, value in mapping.items()})
            return added

    def hget(self, key, field):
        with self._lock:
            self._evict_if_expired(key)
            return self._hashes.get(key, {}).get(field)

    def hgetall(self, key):
        with self._lock:
            self._evict_if_expired(key)
            return dict(self._hashes.get(key, {}))

    def hsetnx(self, key, field, value):
        with self._lock:
            self._evict_if_expired(key)
            bucket = self._hashes.setdefault(key, {})
            if field in bucket:
                return False
            bucket[field] = str(value)
            return True

    def hdel(self, key, *fields):
        with self._lock:
            self._evict_if_expired(key)
            bucket = self._hashes.get(key)
            if not bucket:
                return 0
            removed = 0
            for field in fields:
                if field in bucket:
                    del bucket[field]
                    removed += 1
            if not bucket:
                self._drop(key)
            return removed

    def hlen(self, key):
        with self._lock:
            self._evict_if_expired(key)
            return len(self._hashes.get(key, {}))

    def expire(self, key, seconds):
        with self._lock:
            self._evict_if_expired(key)
            if key not in self._hashes and key not in self._zsets and key not in self._strings:
                return False
            self._expiry[key] = time.time() + int(seconds)
            return True

    def delete(self, *keys):
        with self._lock:
            removed = 0
            for key in keys:
                self._evict_if_expired(key)
                if self._drop(key):
                    removed += 1
            return removed

    def exists(self, key):
        with self._lock:
            self._evict_if_expired(key)
            return key in self._hashes or key in self._zsets or key in self._strings

    def scan_keys(self, pattern):
        with self._lock:
            return sorted(k for k in self._all_keys() if fnmatch.fnmatchcase(k, pattern))

    def zadd(self, key, mapping):
        with self._lock:
            self._evict_if_expired(key)
            zset = self._zsets.setdefault(key, {})
            added = sum(1 for member in mapping if member not in zset)
            zset.update({member: float(score) for member, score in mapping.items()})
            return added

    def zrem(self, key, *members):
        with self._lock:
            self._evict_if_expired(key)
            zset = self._zsets.get(key)
            if not zset:
                return 0
            removed = 0
            for member in members:
                if member in zset:
                    del zset[member]
                    removed += 1
            if not zset:
                self._drop(key)
            return removed

    def zscore(self, key, member):
        with self._lock:
            self._evict_if_expired(key)
            return self._zsets.get(key, {}).get(member)

    def zcard(self, key):
        with self._lock:
            self._evict_if_expired(key)
            return len(self._zsets.get(key, {}))

    def _range(self, key, min_score, max_score, reverse, start, num):
        self._evict_if_expired(key)
        lo, hi = float(min_score), float(max_score)
        members = [
            (score, member) for member, score in self._zsets.get(key, {}).items()
            if lo <= score <= hi
        ]
        members.sort(reverse=reverse)
        ordered = [member for _, member in members]
        if start is not None and num is not None:
            ordered = ordered[start:start + num] if num >= 0 else ordered[start:]
        return ordered

    def zrangebyscore(self, key, min_score, max_score, start=None, num=None):
        with self._lock:
            return self._range(key, min_score, max_score, False, start, num)

    def zrevrangebyscore(self, key, max_score, min_score, start=None, num=None):
        with self._lock:
            return self._range(key, min_score, max_score, True, start, num)

    def zremrangebyscore(self, key, min_score, max_score):
        with self._lock:
            doomed = self._range(key, min_score, max_score, False, None, None)
            return self.zrem(key, *doomed) if doomed else 0

    def incr(self, key):
        with self._lock:
            self._evict_if_expired(key)
            value = int(self._strings.get(key, "0")) + 1
            self._strings[key] = str(value)
            return value

    def get(self, key):
        with self._lock:
            self._evict_if_expired(key)
            return self._strings.get(key)

    def compare_and_set(self, key, field, expected, new_value):
        with self._lock:
            self._evict_if_expired(key)
            bucket = self._hashes.get(key)
            if bucket is None or bucket.get(field) != expected:
                return False
            bucket[field] = str(new_value)
            return True

    def conditional_update(self, key, guard_field, expected, updates):
        with self._lock:
            self._evict_if_expired(key)
            bucket = self._hashes.get(key)
            if bucket is None or bucket.get(guard_field) != expected:
                return False
            bucket.update({field: str(value) for field, value in updates.items()})
            return True

    def ping(self):
        return True


def create_job_store(backend: Optional[str] = None, redis_client: Optional[redis.Redis] = None) -> JobStore:
    """
    Factory function to create the configured job store

    Args:
        backend: "redis" or "memory"; defaults to JOB_STORE_BACKEND
        redis_client: existing connection to wrap (redis backend only)
    """
    if backend is None:
        from config.settings import JOB_STORE_BACKEND
        backend = JOB_STORE_BACKEND

    if backend == "memory":
        logger.info("Using in-memory job store")
        return InMemoryJobStore()

    if backend != "redis":
        raise ValueError(f"Unknown job store backend: {backend}")

    if redis_client is None:
        from config.redis import create_redis_connection
        redis_client = create_redis_connection()
    return RedisJobStore(redis_client)
