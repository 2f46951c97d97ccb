"""The scrape loop, its metrics and the health probes of the metrics server."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol, Union

from metricsserver.buckets import buckets_for_scrape_duration
from metricsserver.health import (
    HealthCheckError,
    MetadataInformerSync,
    NamedCheck,
    metadata_informer_sync_healthz,
)
from metricsserver.instruments import Histogram, Registry, register_storage_metrics
from metricsserver.storage import Storage
from metricsserver.types import MetricsBatch

logger = logging.getLogger(__name__)

_Check = Union[NamedCheck, MetadataInformerSync]

_CACHE_SYNC_POLL_SECONDS = 0.1

# Replaced by register_server_metrics; a no-op histogram until then.
tick_duration = Histogram()


class _Scraper(Protocol):
    def scrape(self, timeout: timedelta) -> MetricsBatch:
        ...


class _Controller(Protocol):
    def run(self, stop_event: threading.Event) -> Any:
        ...

    def has_synced(self) -> bool:
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def register_server_metrics(
    registration_func: Callable[[Histogram], object], resolution: timedelta
) -> object:
    """Create and register the histogram of tick durations."""
    global tick_duration
    tick_duration = Histogram(
        name="tick_duration_seconds",
        namespace="metrics_server",
        subsystem="manager",
        help_text="The total time spent collecting and storing metrics in seconds.",
        buckets=buckets_for_scrape_duration(resolution),
    )
    return registration_func(tick_duration)


def register_metrics(registry: Registry, metric_resolution: timedelta) -> None:
    """Register the server and storage metrics in ``registry``."""
    try:
        register_server_metrics(registry.register, metric_resolution)
    except ValueError as err:
        raise ValueError(f"unable to register server metrics: {err}") from err
    try:
        register_storage_metrics(registry.register)
    except ValueError as err:
        raise ValueError(f"unable to register storage metrics: {err}") from err


def _wait_for_cache_sync(stop_event: threading.Event, synced: Callable[[], bool]) -> bool:
    while not synced():
        if stop_event.wait(_CACHE_SYNC_POLL_SECONDS):
            return False
    return True


class Server:
    """Scrapes metrics periodically, stores them and exposes health probes."""

    def __init__(
        self,
        nodes: Optional[_Controller],
        pods: Optional[_Controller],
        storage: Storage,
        scraper: _Scraper,
        resolution: timedelta,
    ) -> None:
        self.nodes = nodes
        self.pods = pods
        self.storage = storage
        self.scraper = scraper
        self.resolution = resolution
        self._tick_lock = threading.Lock()
        # Start time of the last tick; None until the first tick begins.
        self._tick_last_start: Optional[datetime] = None
        self._readyz_checks: list[_Check] = []
        self._livez_checks: list[_Check] = []
        self._healthz_checks: list[_Check] = []

    def run_until(self, stop_event: threading.Event) -> None:
        """Start the informers and the scrape loop; return once ``stop_event`` is set."""
        for informer in (self.nodes, self.pods):
            threading.Thread(target=informer.run, args=(stop_event,), daemon=True).start()

        if not _wait_for_cache_sync(stop_event, self.nodes.has_synced):
            return
        if not _wait_for_cache_sync(stop_event, self.pods.has_synced):
            return

        scrape_thread = threading.Thread(
            target=self._run_scrape, args=(stop_event,), daemon=True
        )
        scrape_thread.start()
        stop_event.wait()
        scrape_thread.join()

    def _run_scrape(self, stop_event: threading.Event) -> None:
        period = self.resolution.total_seconds()
        self.tick(_now())
        next_tick = time.monotonic() + period
        while not stop_event.wait(max(0.0, next_tick - time.monotonic())):
            self.tick(_now())
            next_tick += period
            current = time.monotonic()
            if next_tick <= current:
                # Ticks that fell behind are dropped rather than queued.
                next_tick = current + period

    def tick(self, start_time: Optional[datetime] = None) -> None:
        """Run one scrape-and-store cycle that started at ``start_time``."""
        if start_time is None:
            start_time = _now()
        with self._tick_lock:
            self._tick_last_start = start_time

        logger.debug("Scraping metrics")
        data = self.scraper.scrape(self.resolution)

        logger.debug("Storing metrics")
        self.storage.store(data)

        collect_time = _now() - start_time
        tick_duration.observe(collect_time.total_seconds())
        logger.debug("Scraping cycle complete")

    @staticmethod
    def _add(checks: list[_Check], check: _Check) -> None:
        if any(existing.name == check.name for existing in checks):
            raise ValueError(f"unable to add because the check {check.name!r} is already installed")
        checks.append(check)

    def register_probes(self, waiter: Any) -> None:
        """Install the readiness, liveness and health checks."""
        self._add(self._readyz_checks, self.probe_metric_storage_ready("metric-storage-ready"))
        self._add(self._readyz_checks, self.probe_metric_cache_has_synced("metric-informer-sync"))
        self._add(
            self._livez_checks, self.probe_metric_collection_timely("metric-collection-timely")
        )
        health = metadata_informer_sync_healthz("metadata-informer-sync", waiter)
        for checks in (self._healthz_checks, self._livez_checks, self._readyz_checks):
            self._add(checks, health)

    def probe_metric_collection_timely(self, name: str) -> NamedCheck:
        """Fails if the last tick has been running for longer than 1.5 resolutions."""

        def check(_request: Optional[object]) -> None:
            with self._tick_lock:
                tick_last_start = self._tick_last_start
            if tick_last_start is None:
                return
            max_tick_wait = self.resolution * 1.5
            tick_wait = _now() - tick_last_start
            if tick_wait > max_tick_wait:
                err = HealthCheckError("metric collection didn't finish on time")
                logger.info(
                    "Failed probe %s: %s (duration=%s, maxDuration=%s)",
                    name,
                    err,
                    tick_wait,
                    max_tick_wait,
                )
                raise err

        return NamedCheck(name, check)

    def probe_metric_storage_ready(self, name: str) -> NamedCheck:
        """Fails until the storage holds metrics to serve."""

        def check(_request: Optional[object]) -> None:
            if not self.storage.ready():
                err = HealthCheckError("no metrics to serve")
                logger.info("Failed probe %s: %s", name, err)
                raise err

        return NamedCheck(name, check)

    def probe_metric_cache_has_synced(self, name: str) -> NamedCheck:
        """Fails until the node and pod informer caches have synced."""

        def check(_request: Optional[object]) -> None:
            if not self.nodes.has_synced():
                err = HealthCheckError("cache for node informer has not synced")
                logger.info("Failed probe %s: %s", name, err)
                raise err
            if not self.pods.has_synced():
                err = HealthCheckError("cache for pod informer has not synced")
                logger.info("Failed probe %s: %s", name, err)
                raise err

        return NamedCheck(name, check)

    @staticmethod
    def _run_checks(kind: str, checks: list[_Check]) -> tuple[bool, str]:
        lines = []
        passed = True
        for check in checks:
            try:
                check.check(None)
            except HealthCheckError as err:
                passed = False
                logger.info("%s check %s failed: %s", kind, check.name, err)
                lines.append(f"[-]{check.name} failed: reason withheld")
            else:
                lines.append(f"[+]{check.name} ok")
        lines.append(f"{kind} check {'passed' if passed else 'failed'}")
        return passed, "\n".join(lines) + "\n"

    def readyz(self) -> tuple[bool, str]:
        """Run the readiness checks; return whether all passed and a verbose report."""
        return self._run_checks("readyz", self._readyz_checks)

    def livez(self) -> tuple[bool, str]:
        """Run the liveness checks; return whether all passed and a verbose report."""
        return self._run_checks("livez", self._livez_checks)

    def healthz(self) -> tuple[bool, str]:
        """Run the health checks; return whether all passed and a verbose report."""
        return self._run_checks("healthz", self._healthz_checks)