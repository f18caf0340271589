"""Fan-out over all telemetry sources and assembly of the snapshot."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import AggregationFailed
from .normalize import SOURCE_DEFAULTS, compose_snapshot
from .sampler import CounterSampler
from .sources import SOURCES, SourceResult, local_primitives, prime_current_load, run_source

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class _Fetch:
    """One in-flight run of a source, shared by every pass that asks for it."""

    def __init__(self, name: str, fetch: Callable[[], Any]) -> None:
        self.name = name
        self._fetch = fetch
        self.started = threading.Event()
        self.started_at = 0.0
        self.future: Optional[Future] = None

    def __call__(self) -> SourceResult:
        self.started_at = time.monotonic()
        self.started.set()
        return run_source(self.name, self._fetch)


class Aggregator:
    """Builds one telemetry snapshot per call.

    Sources run concurrently on a private thread pool. A source that raises
    or does not finish within ``fetch_timeout`` seconds of starting is
    replaced by its entry in :data:`SOURCE_DEFAULTS`.

    At most one fetch per source is in flight. Passes that overlap share it,
    and a fetch that is still stuck from an earlier pass is reported as timed
    out straight away instead of being started again, so a hung source holds
    a single worker.
    """

    def __init__(
        self,
        sampler: Optional[CounterSampler] = None,
        sources: Optional[Mapping[str, Callable[[], Any]]] = None,
        fetch_timeout: float = 5.0,
        max_workers: int = 10,
        local: Callable[[], Dict[str, Any]] = local_primitives,
    ) -> None:
        self.sampler = sampler or CounterSampler()
        if sources is None:
            prime_current_load()
        self.sources = dict(SOURCES if sources is None else sources)
        self.fetch_timeout = fetch_timeout
        self._local = local
        self._inflight: Dict[str, _Fetch] = {}
        self._inflight_lock = threading.Lock()
        # One worker per source keeps a fresh fetch from queueing behind others.
        workers = max(max_workers, len(self.sources), 1)
        self._exec = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="telemetry-source")

    def close(self) -> None:
        self._exec.shutdown(wait=False, cancel_futures=True)

    def _submit(self) -> Dict[str, _Fetch]:
        pending: Dict[str, _Fetch] = {}
        with self._inflight_lock:
            for name, fetch in self.sources.items():
                current = self._inflight.get(name)
                if current is None or current.future.done():
                    current = _Fetch(name, fetch)
                    current.future = self._exec.submit(current)
                    self._inflight[name] = current
                pending[name] = current
        return pending

    def _wait(self, pending: _Fetch) -> SourceResult:
        if not pending.started.wait(self.fetch_timeout):
            logger.warning("Source %s did not start within %.1fs", pending.name, self.fetch_timeout)
            return SourceResult(pending.name, reason="not started")
        remaining = pending.started_at + self.fetch_timeout - time.monotonic()
        try:
            return pending.future.result(timeout=max(0.0, remaining))
        except FutureTimeout:
            logger.warning("Source %s timed out after %.1fs", pending.name, self.fetch_timeout)
            return SourceResult(pending.name, reason="timeout")

    def _gather(self, pending: Mapping[str, _Fetch]) -> Dict[str, SourceResult]:
        return {name: self._wait(item) for name, item in pending.items()}

    def collect(self) -> Dict[str, SourceResult]:
        """Run every source once and wait for all of them to settle."""
        return self._gather(self._submit())

    def build_snapshot(self) -> Dict[str, Any]:
        pending = self._submit()
        try:
            usage = self.sampler.sample_utilization()
        except Exception:  # pylint: disable=broad-except
            logger.debug("CPU counter sampling failed", exc_info=True)
            usage = 0.0
        results = self._gather(pending)

        raw = {name: result.value_or(SOURCE_DEFAULTS.get(name)) for name, result in results.items()}
        for name, default in SOURCE_DEFAULTS.items():
            raw.setdefault(name, default)

        try:
            return compose_snapshot(raw, usage, self._local(), now_ms())
        except Exception as exc:
            raise AggregationFailed(str(exc) or type(exc).__name__) from exc
