"""Thread-safe storage of the last two metric batches for nodes and pods."""

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from metricsserver.instruments import points_stored
from metricsserver.types import (
    ContainerMetrics,
    MetricsBatch,
    MetricsPoint,
    NamespacedName,
    Node,
    NodeMetrics,
    PodMetadata,
    PodMetrics,
    PodMetricsPoint,
    TimeInfo,
    resource_usage,
)

logger = logging.getLogger(__name__)

# A fresh container needs at least this long between its start time and its
# first timestamp; shorter windows give inaccurate CPU rates.
FRESH_CONTAINER_MIN_METRICS_RESOLUTION = timedelta(seconds=10)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _before(moment: Optional[datetime], other: datetime) -> bool:
    """Whether ``moment`` precedes ``other``; an unknown moment precedes everything."""
    return moment is None or moment < other


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Storage(abc.ABC):
    """Stores metric batches and serves node and pod metrics from them."""

    @abc.abstractmethod
    def get_node_metrics(self, *nodes: Node) -> list[NodeMetrics]:
        """Metrics for the given nodes; nodes without enough data are left out."""

    @abc.abstractmethod
    def get_pod_metrics(self, *pods: PodMetadata) -> list[PodMetrics]:
        """Metrics for the given pods; pods without enough data are left out."""

    @abc.abstractmethod
    def store(self, batch: MetricsBatch) -> None:
        """Record a new batch of metric points."""

    @abc.abstractmethod
    def ready(self) -> bool:
        """Whether enough points have been stored to serve metrics."""


@dataclass
class _NodeStorage:
    """The last two points of every node."""

    last: dict[str, MetricsPoint] = field(default_factory=dict)
    prev: dict[str, MetricsPoint] = field(default_factory=dict)

    def get_metrics(self, nodes: tuple[Node, ...]) -> list[NodeMetrics]:
        results: list[NodeMetrics] = []
        for node in nodes:
            last = self.last.get(node.name)
            prev = self.prev.get(node.name)
            if last is None or prev is None:
                continue
            try:
                usage, time_info = resource_usage(last, prev)
            except ValueError as err:
                logger.error("Skipping node usage metric for node %s: %s", node.name, err)
                continue
            results.append(
                NodeMetrics(
                    name=node.name,
                    labels=node.labels,
                    creation_timestamp=_now(),
                    timestamp=time_info.timestamp,
                    window=time_info.window,
                    usage=usage,
                )
            )
        return results

    def store(self, batch: MetricsBatch) -> None:
        last_nodes: dict[str, MetricsPoint] = {}
        prev_nodes: dict[str, MetricsPoint] = {}
        for node_name, new_point in batch.nodes.items():
            last_nodes[node_name] = new_point
            stored_last = self.last.get(node_name)
            if stored_last is None:
                continue
            if new_point.timestamp > stored_last.timestamp:
                prev_nodes[node_name] = stored_last
                continue
            stored_prev = self.prev.get(node_name)
            if stored_prev is None:
                continue
            if stored_prev.timestamp < new_point.timestamp:
                prev_nodes[node_name] = stored_prev
            else:
                logger.debug(
                    "Found new node metrics point is older than stored previous, drop previous: "
                    "node=%s previousTimestamp=%s timestamp=%s",
                    node_name,
                    stored_prev.timestamp,
                    new_point.timestamp,
                )
        self.last = last_nodes
        self.prev = prev_nodes
        # Only count nodes for which metrics can be returned.
        points_stored.labels("node").set(len(prev_nodes))


@dataclass
class _PodStorage:
    """The last two points of every container of every pod."""

    metric_resolution: timedelta
    last: dict[NamespacedName, PodMetricsPoint] = field(default_factory=dict)
    prev: dict[NamespacedName, PodMetricsPoint] = field(default_factory=dict)

    def get_metrics(self, pods: tuple[PodMetadata, ...]) -> list[PodMetrics]:
        results: list[PodMetrics] = []
        for pod in pods:
            ref = NamespacedName(namespace=pod.namespace, name=pod.name)
            last_pod = self.last.get(ref)
            prev_pod = self.prev.get(ref)
            if last_pod is None or prev_pod is None:
                continue
            containers: list[ContainerMetrics] = []
            earliest: Optional[TimeInfo] = None
            all_present = True
            for container_name, last_container in last_pod.containers.items():
                prev_container = prev_pod.containers.get(container_name)
                if prev_container is None:
                    all_present = False
                    break
                try:
                    usage, time_info = resource_usage(last_container, prev_container)
                except ValueError as err:
                    logger.error(
                        "Skipping container usage metric for container %s in pod %s: %s",
                        container_name,
                        ref,
                        err,
                    )
                    continue
                containers.append(ContainerMetrics(name=container_name, usage=usage))
                if earliest is None or earliest.timestamp > time_info.timestamp:
                    earliest = time_info
            if not all_present:
                continue
            results.append(
                PodMetrics(
                    name=pod.name,
                    namespace=pod.namespace,
                    labels=pod.labels,
                    creation_timestamp=_now(),
                    timestamp=earliest.timestamp if earliest else _ZERO_TIME,
                    window=earliest.window if earliest else timedelta(0),
                    containers=containers,
                )
            )
        return results

    def _is_fresh(self, point: MetricsPoint) -> bool:
        if point.start_time is None or not point.start_time < point.timestamp:
            return False
        age = point.timestamp - point.start_time
        return FRESH_CONTAINER_MIN_METRICS_RESOLUTION <= age < self.metric_resolution

    def _previous_point(
        self, ref: NamespacedName, container_name: str, new_point: MetricsPoint
    ) -> Optional[MetricsPoint]:
        if self._is_fresh(new_point):
            return replace(new_point, timestamp=new_point.start_time, cumulative_cpu_used=0)
        stored_last_pod = self.last.get(ref)
        if stored_last_pod is None:
            return None
        stored_last = stored_last_pod.containers.get(container_name)
        # A start time after the stored timestamp means the container restarted.
        if stored_last is None or not _before(new_point.start_time, stored_last.timestamp):
            return None
        if new_point.timestamp > stored_last.timestamp:
            return stored_last
        stored_prev_pod = self.prev.get(ref)
        if stored_prev_pod is None:
            return None
        stored_prev = stored_prev_pod.containers.get(container_name)
        if stored_prev is None:
            return None
        if stored_prev.timestamp < new_point.timestamp:
            return stored_prev
        logger.debug(
            "Found new container metrics point is older than stored previous, drop previous: "
            "container=%s pod=%s previousTimestamp=%s timestamp=%s",
            container_name,
            ref,
            stored_prev.timestamp,
            new_point.timestamp,
        )
        return None

    def store(self, batch: MetricsBatch) -> None:
        last_pods: dict[NamespacedName, PodMetricsPoint] = {}
        prev_pods: dict[NamespacedName, PodMetricsPoint] = {}
        container_count = 0
        for pod_ref, new_pod in batch.pods.items():
            ref = NamespacedName(namespace=pod_ref.namespace, name=pod_ref.name)
            if ref in last_pods:
                logger.error("Got duplicate pod point for pod %s", ref)
                continue
            new_last = PodMetricsPoint(containers=dict(new_pod.containers))
            new_prev = PodMetricsPoint()
            for container_name, new_point in new_pod.containers.items():
                previous = self._previous_point(ref, container_name, new_point)
                if previous is not None:
                    new_prev.containers[container_name] = previous
            if new_prev.containers:
                prev_pods[ref] = new_prev
            last_pods[ref] = new_last
            # Only count containers for which metrics can be returned.
            container_count += len(new_prev.containers)
        self.last = last_pods
        self.prev = prev_pods
        points_stored.labels("container").set(container_count)


class MetricsStorage(Storage):
    """Thread-safe storage for node and pod metrics."""

    def __init__(self, metric_resolution: timedelta) -> None:
        self._lock = threading.Lock()
        self._nodes = _NodeStorage()
        self._pods = _PodStorage(metric_resolution=metric_resolution)

    def ready(self) -> bool:
        """True once enough points are stored to serve any metrics."""
        with self._lock:
            return bool(self._nodes.prev) or bool(self._pods.prev)

    def get_node_metrics(self, *nodes: Node) -> list[NodeMetrics]:
        with self._lock:
            return self._nodes.get_metrics(nodes)

    def get_pod_metrics(self, *pods: PodMetadata) -> list[PodMetrics]:
        with self._lock:
            return self._pods.get_metrics(pods)

    def store(self, batch: MetricsBatch) -> None:
        with self._lock:
            self._nodes.store(batch)
            self._pods.store(batch)