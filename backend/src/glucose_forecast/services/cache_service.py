"""
ML Cache Service
Short-lived caches for feature vectors and prediction results.

Entries expire after a fixed TTL and are evicted oldest-inserted-first at
capacity. Reads never refresh an entry's position.
"""
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

from pydantic import BaseModel

from ..config import MLSettings, get_settings
from ..models.schemas import FeatureVector, PredictionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached payload and the clock reading at insertion."""
    payload: T
    inserted_at: float

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.inserted_at > ttl_seconds


class CacheStats(BaseModel):
    """Snapshot of one cache instance."""
    enabled: bool
    size: int
    max_size: int
    ttl_seconds: float
    hits: int = 0
    misses: int = 0


class TTLCache(Generic[T]):
    """
    Bounded TTL cache with FIFO eviction.

    All operations take the instance lock, so concurrent callers see
    consistent entries.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry[T]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.is_expired(self._clock(), self.ttl_seconds):
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.payload

    def put(self, key: Hashable, value: T) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired_locked(now)

            # Re-inserting moves the key to the newest position
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)

            self._entries[key] = CacheEntry(payload=value, inserted_at=now)

    def remove(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        with self._lock:
            return self._purge_expired_locked(self._clock())

    def _purge_expired_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.is_expired(now, self.ttl_seconds)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock(), self.ttl_seconds)


class MLCacheService:
    """Feature and prediction caches with independent TTLs and switches."""

    def __init__(
        self,
        settings: Optional[MLSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = settings or get_settings()
        self.features_enabled = settings.enable_feature_caching
        self.predictions_enabled = settings.enable_prediction_caching

        self.features: TTLCache[FeatureVector] = TTLCache(
            ttl_seconds=settings.feature_cache_ttl_seconds,
            max_size=settings.max_cache_size,
            clock=clock,
        )
        self.predictions: TTLCache[PredictionResult] = TTLCache(
            ttl_seconds=settings.prediction_cache_ttl_seconds,
            max_size=settings.max_cache_size,
            clock=clock,
        )

    def get_features(self, key: str) -> Optional[FeatureVector]:
        if not self.features_enabled:
            return None
        return self.features.get(key)

    def put_features(self, key: str, vector: FeatureVector) -> None:
        if self.features_enabled:
            self.features.put(key, vector)

    def get_prediction(self, key: str) -> Optional[PredictionResult]:
        if not self.predictions_enabled:
            return None
        return self.predictions.get(key)

    def put_prediction(self, key: str, result: PredictionResult) -> None:
        if self.predictions_enabled:
            self.predictions.put(key, result)

    def clear_all(self) -> None:
        self.features.clear()
        self.predictions.clear()
        logger.info("ML caches cleared")

    def get_cache_stats(self) -> Dict[str, CacheStats]:
        return {
            "features": CacheStats(
                enabled=self.features_enabled,
                size=len(self.features),
                max_size=self.features.max_size,
                ttl_seconds=self.features.ttl_seconds,
                hits=self.features.hits,
                misses=self.features.misses,
            ),
            "predictions": CacheStats(
                enabled=self.predictions_enabled,
                size=len(self.predictions),
                max_size=self.predictions.max_size,
                ttl_seconds=self.predictions.ttl_seconds,
                hits=self.predictions.hits,
                misses=self.predictions.misses,
            ),
        }
