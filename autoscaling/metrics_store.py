"""
Retention-bounded, in-memory time series of metric samples per resource pool.
"""

import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional
import logging

from .models import MetricSample, PoolId, ScalingError, normalize_pool, utc_now

logger = logging.getLogger(__name__)


class InsufficientDataError(ScalingError):
    """Raised when a metric window holds no samples"""
    pass


class MetricsStore:
    """
    Append-only series of samples per pool.

    Every append prunes samples older than the retention period from that
    pool's series; this is the only garbage-collection trigger. Safe for any
    number of concurrent producers plus a periodic reader.
    """

    def __init__(self, retention_seconds: float = 24 * 60 * 60,
                 clock: Optional[Callable[[], datetime]] = None):
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")

        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock or utc_now
        self._series: Dict[str, Deque[MetricSample]] = defaultdict(deque)
        self._lock = threading.RLock()

    def record_metrics(self, pool: PoolId, sample: MetricSample) -> None:
        """Append a sample to the pool's series and prune expired samples"""
        pool_id = normalize_pool(pool)
        if not isinstance(sample, MetricSample):
            raise TypeError("sample must be a MetricSample")

        if not sample.is_well_formed:
            logger.debug(f"Recording out-of-range sample for {pool_id}: {sample}")

        with self._lock:
            series = self._series[pool_id]
            # Producers may deliver slightly out of order; keep the series sorted
            if series and sample.timestamp < series[-1].timestamp:
                ordered = sorted(list(series) + [sample], key=lambda s: s.timestamp)
                series.clear()
                series.extend(ordered)
            else:
                series.append(sample)
            self._prune(series)

    def _prune(self, series: Deque[MetricSample]) -> None:
        cutoff = self._clock() - self.retention
        while series and series[0].timestamp <= cutoff:
            series.popleft()

    def current_metrics(self, pool: PoolId) -> Optional[MetricSample]:
        """Most recent sample for a pool, or None"""
        pool_id = normalize_pool(pool)
        with self._lock:
            series = self._series.get(pool_id)
            return series[-1] if series else None

    def require_current(self, pool: PoolId) -> MetricSample:
        """
        Most recent sample for a pool.

        Raises:
            InsufficientDataError: If the pool has no samples
        """
        sample = self.current_metrics(pool)
        if sample is None:
            raise InsufficientDataError(f"No metrics recorded for {normalize_pool(pool)}")
        return sample

    def series_since(self, pool: PoolId, since: datetime) -> List[MetricSample]:
        """All samples at or after `since`, oldest first"""
        pool_id = normalize_pool(pool)
        with self._lock:
            series = self._series.get(pool_id)
            if not series:
                return []
            return [sample for sample in series if sample.timestamp >= since]

    def series(self, pool: PoolId) -> List[MetricSample]:
        """Every retained sample for a pool, oldest first"""
        pool_id = normalize_pool(pool)
        with self._lock:
            return list(self._series.get(pool_id, ()))

    def sample_count(self, pool: PoolId) -> int:
        """Number of retained samples for a pool"""
        pool_id = normalize_pool(pool)
        with self._lock:
            return len(self._series.get(pool_id, ()))

    def pools(self) -> List[str]:
        """Pools with at least one retained sample"""
        with self._lock:
            return [pool for pool, series in self._series.items() if series]

    def clear(self) -> None:
        """Drop every series"""
        with self._lock:
            self._series.clear()
