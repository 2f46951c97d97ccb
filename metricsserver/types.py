"""Metric points, batches, resource quantities and API result objects."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

MAX_INT64 = 2**63 - 1

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"


class Format(str, Enum):
    """Serialization format of a quantity."""

    DECIMAL_EXPONENT = "DecimalExponent"
    BINARY_SI = "BinarySI"
    DECIMAL_SI = "DecimalSI"


@dataclass(frozen=True)
class Quantity:
    """An integer amount ``unscaled * 10**scale``."""

    unscaled: int
    scale: int = 0
    format: Format = Format.DECIMAL_SI

    def _ceil_at(self, scale: int) -> int:
        exponent = self.scale - scale
        if exponent >= 0:
            return self.unscaled * 10**exponent
        return -((-self.unscaled) // 10**-exponent)

    def value(self) -> int:
        """The amount in whole units, rounded up."""
        return self._ceil_at(0)

    def milli_value(self) -> int:
        """The amount in thousandths, rounded up."""
        return self._ceil_at(-3)


ResourceList = dict[str, Quantity]


@dataclass(frozen=True, order=True)
class NamespacedName:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class MetricsPoint:
    """A set of measurements at one point in time.

    ``start_time`` is when the container or node started (cumulative CPU was
    zero then); ``None`` means unknown. ``cumulative_cpu_used`` is in
    nanocore-seconds and ``memory_usage`` (working set) in bytes.
    """

    start_time: Optional[datetime]
    timestamp: datetime
    cumulative_cpu_used: int = 0
    memory_usage: int = 0


@dataclass
class PodMetricsPoint:
    containers: dict[str, MetricsPoint] = field(default_factory=dict)


@dataclass
class MetricsBatch:
    """One scrape's worth of node and pod metrics."""

    nodes: dict[str, MetricsPoint] = field(default_factory=dict)
    pods: dict[NamespacedName, PodMetricsPoint] = field(default_factory=dict)


@dataclass(frozen=True)
class TimeInfo:
    timestamp: datetime
    window: timedelta


class NodeAddressType(str, Enum):
    HOSTNAME = "Hostname"
    INTERNAL_IP = "InternalIP"
    EXTERNAL_IP = "ExternalIP"
    INTERNAL_DNS = "InternalDNS"
    EXTERNAL_DNS = "ExternalDNS"


@dataclass(frozen=True)
class NodeAddress:
    type: NodeAddressType
    address: str


@dataclass
class Node:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    addresses: list[NodeAddress] = field(default_factory=list)


@dataclass
class PodMetadata:
    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerMetrics:
    name: str
    usage: ResourceList


@dataclass
class NodeMetrics:
    name: str
    labels: dict[str, str]
    creation_timestamp: datetime
    timestamp: datetime
    window: timedelta
    usage: ResourceList


@dataclass
class PodMetrics:
    name: str
    namespace: str
    labels: dict[str, str]
    creation_timestamp: datetime
    timestamp: datetime
    window: timedelta
    containers: list[ContainerMetrics]


def resource_usage(last: MetricsPoint, prev: MetricsPoint) -> tuple[ResourceList, TimeInfo]:
    """CPU rate and memory usage between two points of the same series."""
    if last.cumulative_cpu_used < prev.cumulative_cpu_used:
        raise ValueError("unexpected decrease in cumulative CPU usage value")
    window = last.timestamp - prev.timestamp
    seconds = window.total_seconds()
    if seconds <= 0:
        raise ValueError("non-positive time window between metric points")
    cpu_usage = (last.cumulative_cpu_used - prev.cumulative_cpu_used) / seconds
    usage = {
        RESOURCE_CPU: uint64_quantity(int(cpu_usage), Format.DECIMAL_SI, -9),
        RESOURCE_MEMORY: uint64_quantity(last.memory_usage, Format.BINARY_SI, 0),
    }
    return usage, TimeInfo(timestamp=last.timestamp, window=window)


def uint64_quantity(val: int, fmt: Format, scale: int) -> Quantity:
    """Build a quantity from an unsigned 64-bit value.

    Values above the signed 64-bit range lose one decimal digit of precision.
    """
    if val < 0:
        raise ValueError(f"quantity value must not be negative: {val}")
    if val > MAX_INT64:
        logger.debug(
            "Found unexpectedly large resource value, losing precision to fit in scaled quantity: %d",
            val,
        )
        return Quantity(val // 10, scale + 1, fmt)
    return Quantity(val, scale, fmt)