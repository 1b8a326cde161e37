"""
Offline replay of metric scenarios through the control loop.

A scenario is a YAML document with a `ticks` list; each entry maps pool names
to the metric values recorded just before that tick:

    ticks:
      - api_instances: {cpu: 75, memory: 40}
      - api_instances: {cpu: 82, memory: 45, response_time: 300}
"""

import threading
from datetime import datetime, timedelta
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .config import ConfigError
from .models import MetricSample, utc_now
from .scheduler import TickResult

TickMetrics = Dict[str, Dict[str, float]]

SAMPLE_FIELDS = {f.name for f in fields(MetricSample)} - {"timestamp"}


class ManualClock:
    """A clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or utc_now()
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float = 0.0, **kwargs: float) -> datetime:
        """Move forward by seconds (and/or timedelta keyword arguments)"""
        with self._lock:
            self._now += timedelta(seconds=seconds, **kwargs)
            return self._now

    def set(self, when: datetime) -> None:
        with self._lock:
            self._now = when


def load_scenario(path: Union[str, Path]) -> List[TickMetrics]:
    """
    Load a scenario file.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Scenario file not found: {path}")

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in scenario file {path}: {e}")

    ticks = data.get("ticks") if isinstance(data, dict) else None
    if not isinstance(ticks, list):
        raise ConfigError(f"Scenario file {path} must contain a 'ticks' list")

    for i, entry in enumerate(ticks):
        if not isinstance(entry, dict):
            raise ConfigError(f"Tick {i} must map pool names to metric values")
        for pool, values in entry.items():
            if not isinstance(values, dict):
                raise ConfigError(f"Tick {i}: metrics for {pool} must be a mapping")
            unknown = set(values) - SAMPLE_FIELDS
            if unknown:
                raise ConfigError(f"Tick {i}: unknown metrics for {pool}: {sorted(unknown)}")

    return ticks


def run_simulation(service: Any, ticks: List[TickMetrics], clock: ManualClock,
                   tick_count: Optional[int] = None,
                   interval_seconds: Optional[float] = None) -> List[TickResult]:
    """
    Feed scenario metrics into a service and tick it synchronously.

    The clock advances by the evaluation interval between ticks. When
    tick_count exceeds the scenario length the last entry repeats.
    """
    if not ticks:
        return []

    interval = interval_seconds or service.config.evaluation_interval_seconds
    total = tick_count if tick_count is not None else len(ticks)
    results = []

    for i in range(total):
        entry = ticks[min(i, len(ticks) - 1)]
        for pool, values in entry.items():
            service.record_metrics(pool, MetricSample(timestamp=clock(), **values))

        results.append(service.evaluate_now())
        clock.advance(interval)

    return results
