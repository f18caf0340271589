"""Exception types raised while collecting telemetry."""
from __future__ import annotations


class SourceUnavailable(Exception):
    """A single telemetry source could not be read."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class AggregationFailed(Exception):
    """Building the snapshot failed outside of per-source isolation."""
