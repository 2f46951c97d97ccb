"""Health checks: named probe functions and informer cache synchronisation."""

from __future__ import annotations

import threading
from typing import Any, Callable, Mapping, Optional, Protocol


class HealthCheckError(Exception):
    """Raised by a health check that does not pass."""


class _CacheSyncWaiter(Protocol):
    def wait_for_cache_sync(self, stop_event: threading.Event) -> Mapping[Any, bool]:
        ...


class NamedCheck:
    """A health check made of a name and a function that raises on failure."""

    def __init__(self, name: str, check_func: Callable[[Optional[object]], None]) -> None:
        self.name = name
        self._check_func = check_func

    def check(self, request: Optional[object] = None) -> None:
        """Run the check; raises HealthCheckError when it does not pass."""
        self._check_func(request)


class MetadataInformerSync:
    """Passes only when every informer of the waiter has synced."""

    def __init__(self, name: str, cache_sync_waiter: _CacheSyncWaiter) -> None:
        self.name = name
        self.cache_sync_waiter = cache_sync_waiter

    def check(self, request: Optional[object] = None) -> None:
        # An already-set stop event makes the waiter report the current state at once.
        stop_event = threading.Event()
        stop_event.set()
        results = self.cache_sync_waiter.wait_for_cache_sync(stop_event)
        not_started = [str(informer) for informer, started in results.items() if not started]
        if not_started:
            raise HealthCheckError(
                f"{len(not_started)} informers not started yet: [{' '.join(not_started)}]"
            )


def metadata_informer_sync_healthz(
    name: str, cache_sync_waiter: _CacheSyncWaiter
) -> MetadataInformerSync:
    """A check that passes only if all informers of the waiter have synced."""
    return MetadataInformerSync(name, cache_sync_waiter)