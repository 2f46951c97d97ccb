import threading
from datetime import datetime, timedelta, timezone

import pytest

from metricsserver.health import HealthCheckError
from metricsserver.instruments import Registry
from metricsserver.server import Server, register_metrics, register_server_metrics
from metricsserver.types import MetricsBatch, MetricsPoint

RESOLUTION = timedelta(seconds=60)


def _now():
    return datetime.now(timezone.utc)


class _ScraperMock:
    def __init__(self, result):
        self.result = result
        self.err = None
        self.calls = 0

    def scrape(self, timeout):
        self.calls += 1
        return self.result


class _StorageMock:
    def __init__(self):
        self.is_ready = False
        self.batches = []
        self.stored = threading.Event()

    def store(self, batch):
        self.batches.append(batch)
        self.stored.set()

    def get_node_metrics(self, *nodes):
        return []

    def get_pod_metrics(self, *pods):
        return []

    def ready(self):
        return self.is_ready


class _Informer:
    def __init__(self, synced=True):
        self.synced = synced
        self.started = threading.Event()

    def run(self, stop_event):
        self.started.set()

    def has_synced(self):
        return self.synced


class _Waiter:
    def __init__(self, results):
        self.results = results

    def wait_for_cache_sync(self, stop_event):
        return self.results


@pytest.fixture
def scraper():
    return _ScraperMock(
        MetricsBatch(nodes={"node1": MetricsPoint(start_time=None, timestamp=_now())})
    )


@pytest.fixture
def store():
    return _StorageMock()


@pytest.fixture
def server(scraper, store):
    return Server(None, None, store, scraper, RESOLUTION)


def test_collection_timely_passes_before_first_tick(server):
    check = server.probe_metric_collection_timely("")
    assert check.check(None) is None
    assert check.name == ""


def test_collection_timely_passes_if_scrape_fails(server, scraper, store):
    scraper.err = RuntimeError("failed to scrape")
    server.tick(_now())
    assert store.batches == [scraper.result]
    assert server.probe_metric_collection_timely("").check(None) is None


def test_collection_timely_passes_if_scrape_succeeds(server, scraper):
    server.tick(_now() - RESOLUTION)
    assert scraper.calls == 1
    assert server.probe_metric_collection_timely("").check(None) is None


def test_collection_timely_fails_if_last_scrape_took_too_long(server):
    server.tick(_now() - 2 * RESOLUTION)
    check = server.probe_metric_collection_timely("")
    with pytest.raises(HealthCheckError, match="didn't finish on time"):
        check.check(None)


def test_storage_ready_fails_if_store_not_ready(server):
    check = server.probe_metric_storage_ready("")
    with pytest.raises(HealthCheckError, match="no metrics to serve"):
        check.check(None)


def test_storage_ready_passes_if_store_ready(server, store):
    store.is_ready = True
    assert server.probe_metric_storage_ready("").check(None) is None
    assert store.ready() is True


def test_cache_has_synced_reports_node_then_pod(scraper, store):
    nodes, pods = _Informer(synced=False), _Informer(synced=False)
    srv = Server(nodes, pods, store, scraper, RESOLUTION)
    check = srv.probe_metric_cache_has_synced("metric-informer-sync")
    with pytest.raises(HealthCheckError, match="node informer"):
        check.check(None)
    nodes.synced = True
    with pytest.raises(HealthCheckError, match="pod informer"):
        check.check(None)
    pods.synced = True
    assert check.check(None) is None


def test_tick_observes_duration():
    registered = []
    register_server_metrics(registered.append, RESOLUTION)
    assert len(registered) == 1
    histogram = registered[0]
    assert histogram.count == 0
    assert 60.0 in histogram.buckets
    srv = Server(None, None, _StorageMock(), _ScraperMock(MetricsBatch()), RESOLUTION)
    srv.tick(_now())
    assert histogram.count == 1


def test_register_metrics_registers_server_and_storage_metrics():
    registry = Registry()
    register_metrics(registry, RESOLUTION)
    assert "metrics_server_manager_tick_duration_seconds" in registry
    assert "metrics_server_storage_points" in registry
    assert len(registry) == 2


def test_register_metrics_twice_fails():
    registry = Registry()
    register_metrics(registry, RESOLUTION)
    with pytest.raises(ValueError, match="unable to register server metrics"):
        register_metrics(registry, RESOLUTION)


def test_readyz_and_livez_reports(scraper, store):
    srv = Server(_Informer(), _Informer(), store, scraper, RESOLUTION)
    srv.register_probes(_Waiter({"pods": True}))
    store.is_ready = True
    ok, text = srv.readyz()
    assert ok is True
    assert text == (
        "[+]metric-storage-ready ok\n"
        "[+]metric-informer-sync ok\n"
        "[+]metadata-informer-sync ok\n"
        "readyz check passed\n"
    )
    ok, text = srv.livez()
    assert ok is True
    assert text == (
        "[+]metric-collection-timely ok\n"
        "[+]metadata-informer-sync ok\n"
        "livez check passed\n"
    )


def test_readyz_fails_when_storage_not_ready(scraper, store):
    srv = Server(_Informer(), _Informer(), store, scraper, RESOLUTION)
    srv.register_probes(_Waiter({"pods": True}))
    ok, text = srv.readyz()
    assert ok is False
    assert "[-]metric-storage-ready failed" in text
    assert text.endswith("readyz check failed\n")


def test_healthz_fails_when_informer_not_started(scraper, store):
    srv = Server(_Informer(), _Informer(), store, scraper, RESOLUTION)
    srv.register_probes(_Waiter({"pods": False}))
    ok, text = srv.healthz()
    assert ok is False
    assert "[-]metadata-informer-sync failed" in text


def test_register_probes_twice_fails(server):
    server.register_probes(_Waiter({}))
    with pytest.raises(ValueError, match="already installed"):
        server.register_probes(_Waiter({}))


def test_run_until_returns_without_scraping_if_stopped_before_sync(scraper, store):
    srv = Server(_Informer(synced=False), _Informer(), store, scraper, RESOLUTION)
    stop = threading.Event()
    stop.set()
    srv.run_until(stop)
    assert scraper.calls == 0
    assert store.batches == []


def test_run_until_scrapes_and_stops(scraper, store):
    nodes, pods = _Informer(), _Informer()
    srv = Server(nodes, pods, store, scraper, timedelta(seconds=0.05))
    stop = threading.Event()
    runner = threading.Thread(target=srv.run_until, args=(stop,))
    runner.start()
    assert store.stored.wait(5)
    stop.set()
    runner.join(5)
    assert not runner.is_alive()
    assert nodes.started.is_set() and pods.started.is_set()
    assert store.batches[0] is scraper.result