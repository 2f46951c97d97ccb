"""Resource metrics storage, usage calculation, instruments and health probes for a metrics server."""

__version__ = "0.1.0"

__all__ = [
    "addresses",
    "buckets",
    "health",
    "instruments",
    "server",
    "storage",
    "types",
]