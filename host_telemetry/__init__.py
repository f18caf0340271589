"""Request-triggered host telemetry exposed over HTTP."""
from importlib.metadata import PackageNotFoundError, version

from .aggregator import Aggregator
from .api import create_app
from .errors import AggregationFailed, SourceUnavailable
from .sampler import CounterSampler

__all__ = [
    "Aggregator",
    "AggregationFailed",
    "CounterSampler",
    "SourceUnavailable",
    "create_app",
    "__version__",
]

try:
    __version__ = version("host-telemetry-service")
except PackageNotFoundError:  # pragma: no cover - running from a source checkout
    __version__ = "0.0.0+unknown"
