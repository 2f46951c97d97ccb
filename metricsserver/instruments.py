"""Small in-process metric instruments: gauges, histograms and a registry."""

from __future__ import annotations

import threading
from typing import Callable, Iterator, Sequence, TypeVar, Union

DEF_BUCKETS: tuple[float, ...] = (
    0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)


def _full_name(namespace: str, subsystem: str, name: str) -> str:
    return "_".join(part for part in (namespace, subsystem, name) if part)


class Gauge:
    """A single value that can go up and down."""

    def __init__(self, value: float = 0.0) -> None:
        self._lock = threading.Lock()
        self._value = float(value)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)


class GaugeVec:
    """A family of gauges partitioned by label values."""

    def __init__(
        self,
        name: str,
        label_names: Sequence[str],
        namespace: str = "",
        subsystem: str = "",
        help_text: str = "",
    ) -> None:
        self.name = name
        self.namespace = namespace
        self.subsystem = subsystem
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()
        self._children: dict[tuple[str, ...], Gauge] = {}

    @property
    def full_name(self) -> str:
        return _full_name(self.namespace, self.subsystem, self.name)

    def labels(self, *args: str) -> Gauge:
        """Return the gauge for the given label values, creating it if needed."""
        if len(args) != len(self.label_names):
            raise ValueError(
                f"{self.full_name}: expected {len(self.label_names)} label values, got {len(args)}"
            )
        key = tuple(str(arg) for arg in args)
        with self._lock:
            gauge = self._children.get(key)
            if gauge is None:
                gauge = self._children[key] = Gauge()
            return gauge

    def reset(self) -> None:
        """Drop every child gauge."""
        with self._lock:
            self._children.clear()

    def collect(self) -> list[tuple[dict[str, str], float]]:
        """Return (labels, value) pairs ordered by label values."""
        with self._lock:
            items = sorted(self._children.items())
        return [(dict(zip(self.label_names, key)), gauge.value) for key, gauge in items]


class Histogram:
    """Counts observations into cumulative buckets."""

    def __init__(
        self,
        name: str = "",
        namespace: str = "",
        subsystem: str = "",
        help_text: str = "",
        buckets: Sequence[float] = DEF_BUCKETS,
    ) -> None:
        bounds = tuple(float(b) for b in buckets)
        if any(lower >= upper for lower, upper in zip(bounds, bounds[1:])):
            raise ValueError("histogram buckets must be in strictly increasing order")
        self.name = name
        self.namespace = namespace
        self.subsystem = subsystem
        self.help_text = help_text
        self.buckets = bounds
        self._lock = threading.Lock()
        self._bucket_counts = [0] * len(bounds)
        self._count = 0
        self._sum = 0.0

    @property
    def full_name(self) -> str:
        return _full_name(self.namespace, self.subsystem, self.name)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    @property
    def bucket_counts(self) -> list[int]:
        """Cumulative counts, one per upper bound in ``buckets``."""
        with self._lock:
            return list(self._bucket_counts)

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += value
            for position, bound in enumerate(self.buckets):
                if value <= bound:
                    self._bucket_counts[position] += 1


Metric = Union[GaugeVec, Histogram]
_M = TypeVar("_M", GaugeVec, Histogram)


class Registry:
    """Holds metrics by their fully qualified names."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metrics: dict[str, Metric] = {}

    def register(self, metric: _M) -> _M:
        name = metric.full_name
        if not name:
            raise ValueError("cannot register a metric without a name")
        with self._lock:
            if name in self._metrics:
                raise ValueError(f"duplicate metrics collector registration attempted: {name}")
            self._metrics[name] = metric
        return metric

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._metrics

    def __getitem__(self, name: str) -> Metric:
        with self._lock:
            return self._metrics[name]

    def __iter__(self) -> Iterator[Metric]:
        with self._lock:
            return iter(list(self._metrics.values()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)


points_stored = GaugeVec(
    "points",
    ["type"],
    namespace="metrics_server",
    subsystem="storage",
    help_text="Number of metrics points stored.",
)


def register_storage_metrics(registration_func: Callable[[Metric], object]) -> object:
    """Register the gauge for the number of metric points stored."""
    return registration_func(points_stored)