# metricsserver

Core logic of a cluster resource-metrics server. It keeps the last two
scrapes of node and container metric points and turns cumulative CPU
counters into usage rates. It also reports its own health through
readiness, liveness and health probes.

## Modules

- `metricsserver.types`
  - Metric points: `MetricsPoint`, `PodMetricsPoint`, `MetricsBatch`, keyed
    by node name or by `NamespacedName`.
  - Resource quantities: `Quantity`, with `value()` and `milli_value()`
    rounding up, and `Format`.
  - Results: `NodeMetrics`, `PodMetrics`, `ContainerMetrics`.
  - Objects to query with: `Node`, `PodMetadata`, `NodeAddress`,
    `NodeAddressType`.
  - `resource_usage(last, prev)` gives CPU rate and memory usage over the
    window between two points. It raises `ValueError` when the cumulative
    CPU value decreased or the window is not positive.
  - `uint64_quantity(val, fmt, scale)` builds a `Quantity` from an unsigned
    64-bit value. Above the signed 64-bit range it drops one decimal digit.
- `metricsserver.storage`: `MetricsStorage` is a thread-safe implementation
  of the abstract `Storage`.
  - `store(batch)` records a batch.
  - `get_node_metrics(*nodes)` and `get_pod_metrics(*pods)` return metrics.
    Nodes and pods without two usable points are left out.
  - `ready()` turns true once any node or container has a previous point.
  - A fresh container yields metrics from its first point. Fresh means it
    started at least 10 seconds before, and less than one resolution
    before, its timestamp.
  - A restarted container, one whose start time is after the stored
    timestamp, starts over.
- `metricsserver.buckets`: `buckets_for_scrape_duration(scrape_timeout)`
  returns the default histogram buckets plus entries around the scrape
  timeout. The timeout is given as a `timedelta` or in seconds.
- `metricsserver.addresses`: `PriorityNodeAddressResolver(type_priority)`
  picks a node's connection address by address-type priority.
  - The default order is Hostname, InternalDNS, InternalIP, ExternalDNS,
    ExternalIP.
  - `node_address(node)` raises `LookupError` when no address matches.
- `metricsserver.instruments`: `Gauge`, `GaugeVec`, `Histogram` and
  `Registry`. `register_storage_metrics(registration_func)` registers the
  `metrics_server_storage_points` gauge. The storage keeps that gauge up to
  date, labelled `node` and `container`.
- `metricsserver.health`
  - `NamedCheck` wraps a named check function.
  - `MetadataInformerSync`, made by
    `metadata_informer_sync_healthz(name, waiter)`, fails while any informer
    reported by the waiter's `wait_for_cache_sync` has not synced.
  - Failing checks raise `HealthCheckError`.
- `metricsserver.server`
  - `Server(nodes, pods, storage, scraper, resolution)` runs the
    scrape-and-store cycle. Call `tick()` for one cycle, or
    `run_until(stop_event)` to keep cycling once per resolution.
  - `register_probes(waiter)` installs the probes. `readyz()`, `livez()` and
    `healthz()` return `(passed, report)`, where the report has lines such
    as `[+]metric-storage-ready ok`.
  - `register_metrics(registry, resolution)` registers the
    `metrics_server_manager_tick_duration_seconds` histogram and the storage
    gauge.

## Example

```python
from datetime import datetime, timedelta

from metricsserver.storage import MetricsStorage
from metricsserver.types import MetricsBatch, MetricsPoint, Node

store = MetricsStorage(timedelta(seconds=60))
start = datetime.now()

store.store(MetricsBatch(nodes={
    "node1": MetricsPoint(start, start + timedelta(seconds=10), 10 * 10**9, 2 * 2**20),
}))
store.store(MetricsBatch(nodes={
    "node1": MetricsPoint(start, start + timedelta(seconds=20), 20 * 10**9, 3 * 2**20),
}))

assert store.ready()
(metrics,) = store.get_node_metrics(Node(name="node1"))
print(metrics.window, metrics.usage["cpu"].milli_value())  # 0:00:10 1000
```

## What it does not do

The package has no command and no HTTP server, so the metrics API and the
probe reports are not served over the network. It also does not talk to a
cluster: there is no client that scrapes nodes and no informer that watches
nodes or pods.

`Server` therefore takes these parts from the caller:

- a scraper, an object with `scrape(timeout)` that returns a `MetricsBatch`;
- node and pod controllers, objects with `run(stop_event)` and
  `has_synced()`;
- a cache-sync waiter for the informer health check.

## Running the tests

```
pip install -e ".[test]"
pytest
```