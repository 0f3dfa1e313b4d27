"""
Redis-backed cache for attendance reports.

Entries are keyed by report name plus the scope that produced them (user
set or team, date range and filters) and expire after a fixed TTL, which is
the staleness policy for every report. The cache is handed to the report
service explicitly; when Redis is unreachable it behaves as an always-miss
cache and reports are computed uncached.
"""

import hashlib
import json
import logging
import pickle
from typing import Any, Callable, Dict, Iterable, Optional, Union

import redis

logger = logging.getLogger(__name__)

KEY_PREFIX = 'attendance'


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in sorted(value.items(), key=lambda item: str(item[0]))}
    if isinstance(value, (set, frozenset)):
        return sorted(_normalize(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def scope_digest(scope: Dict[str, Any]) -> str:
    """Stable digest of a report scope (same scope, same digest, any process)"""
    payload = json.dumps(_normalize(scope), sort_keys=True, separators=(',', ':'))
    return hashlib.sha1(payload.encode('utf-8')).hexdigest()


class ReportCache:
    """Scoped report cache with explicit TTL and invalidation"""

    def __init__(self, redis_url: Optional[str] = None, default_ttl: int = 30, client=None):
        """
        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379/0)
            default_ttl: seconds before a cached report is considered stale
            client: an existing redis client to use instead of connecting
        """
        self.default_ttl = default_ttl

        try:
            if client is not None:
                self.redis = client
            elif redis_url:
                self.redis = redis.from_url(redis_url, decode_responses=False)
            else:
                # Default to localhost for development
                self.redis = redis.Redis(host='localhost', port=6379, db=0, decode_responses=False)

            self.redis.ping()
            self.available = True
            logger.info("✅ Report cache connected to Redis")

        except Exception as e:
            logger.warning(f"⚠️ Redis not available: {str(e)}. Reports will be computed uncached.")
            self.available = False
            self.redis = None

    # ------------------------------------------------------------------ #
    # Keys
    # ------------------------------------------------------------------ #

    def make_key(self, report: str, scope: Dict[str, Any]) -> str:
        return f"{KEY_PREFIX}:{report}:{scope_digest(scope)}"

    @staticmethod
    def _user_index_key(user_id: str) -> str:
        return f"{KEY_PREFIX}:user:{user_id}"

    # ------------------------------------------------------------------ #
    # Basic operations
    # ------------------------------------------------------------------ #

    def get(self, key: str) -> Optional[Any]:
        if not self.available or not self.redis:
            return None

        try:
            data = self.redis.get(key)
            if data is None:
                logger.debug(f"Cache MISS for key: {key}")
                return None
            logger.debug(f"Cache HIT for key: {key}")
            return pickle.loads(data)
        except Exception as e:
            logger.error(f"Error getting from Redis cache: {str(e)}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None, user_ids: Iterable[str] = ()) -> bool:
        """
        Store value under key for ttl seconds. user_ids records which agents the
        entry covers so invalidate_user can find it later.
        """
        if not self.available or not self.redis:
            return False

        ttl = ttl if ttl is not None else self.default_ttl
        if ttl <= 0:
            logger.warning(f"⚠️ Not caching {key}: TTL must be positive, got {ttl}")
            return False
        try:
            result = self.redis.setex(key, ttl, pickle.dumps(value))
            for user_id in user_ids:
                index_key = self._user_index_key(user_id)
                self.redis.sadd(index_key, key)
                self.redis.expire(index_key, ttl)
            logger.debug(f"Cache SET for key: {key} (TTL: {ttl}s)")
            return bool(result)
        except Exception as e:
            logger.error(f"Error setting Redis cache: {str(e)}")
            return False

    def delete(self, key: str) -> bool:
        if not self.available or not self.redis:
            return False

        try:
            return self.redis.delete(key) > 0
        except Exception as e:
            logger.error(f"Error deleting from Redis cache: {str(e)}")
            return False

    def get_or_compute(self, report: str, scope: Dict[str, Any], compute: Callable[[], Any],
                       user_ids: Union[Iterable[str], Callable[[Any], Iterable[str]]] = (),
                       ttl: Optional[int] = None) -> Any:
        """
        Return the cached report for scope, computing and storing it on a miss.
        user_ids may be a callable that derives the covered agents from the
        computed value.
        """
        key = self.make_key(report, scope)
        cached = self.get(key)
        if cached is not None:
            return cached

        value = compute()
        if callable(user_ids):
            user_ids = user_ids(value)
        self.set(key, value, ttl=ttl, user_ids=user_ids)
        return value

    # ------------------------------------------------------------------ #
    # Invalidation
    # ------------------------------------------------------------------ #

    def invalidate_report(self, report: Optional[str] = None) -> int:
        """Drop every cached entry of one report, or of all reports"""
        if not self.available or not self.redis:
            return 0

        pattern = f"{KEY_PREFIX}:{report}:*" if report else f"{KEY_PREFIX}:*"
        try:
            keys = list(self.redis.scan_iter(match=pattern))
            if keys:
                self.redis.delete(*keys)
            logger.info(f"🗑️ Invalidated {len(keys)} cached report keys matching {pattern}")
            return len(keys)
        except Exception as e:
            logger.error(f"Error invalidating report cache: {str(e)}")
            return 0

    def invalidate_user(self, user_id: str) -> int:
        """Drop every cached entry that covers user_id"""
        if not self.available or not self.redis:
            return 0

        index_key = self._user_index_key(user_id)
        try:
            keys = list(self.redis.smembers(index_key))
            if keys:
                self.redis.delete(*keys)
            self.redis.delete(index_key)
            logger.info(f"🗑️ Invalidated {len(keys)} cached report keys for user {user_id}")
            return len(keys)
        except Exception as e:
            logger.error(f"Error invalidating user cache: {str(e)}")
            return 0

    def get_stats(self) -> Dict[str, Any]:
        if not self.available or not self.redis:
            return {"available": False, "error": "Redis not available"}

        try:
            info = self.redis.info()
            hits = info.get('keyspace_hits', 0)
            misses = info.get('keyspace_misses', 0)
            total = hits + misses
            return {
                "available": True,
                "default_ttl": self.default_ttl,
                "used_memory_human": info.get('used_memory_human', '0B'),
                "keyspace_hits": hits,
                "keyspace_misses": misses,
                "hit_rate": (hits / total * 100) if total > 0 else 0.0,
            }
        except Exception as e:
            return {"available": True, "error": str(e)}
