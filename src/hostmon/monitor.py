"""Performance monitor: composes probe, cache, store and analyzer per action."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from queue import Queue

from hostmon.analyzer import analyze
from hostmon.cache import CacheRegistry, make_cache_key
from hostmon.config import HostmonConfig
from hostmon.errors import HostmonError, ProbeTimeoutError, StoreError, ValidationError
from hostmon.models import PerformanceResult, ProcessInfo, Snapshot
from hostmon.probe import Probe, PsutilProbe, collect_snapshot, utc_now
from hostmon.store import DEFAULT_WINDOW, MetricStore

logger = logging.getLogger(__name__)

PRUNE_INTERVAL = timedelta(hours=1)
PROBE_WORKERS = 6


class Action(str, Enum):
    """Actions understood by PerformanceMonitor.handle()."""

    CURRENT = "current"
    HISTORY = "history"
    PROCESSES = "processes"
    OPTIMIZE = "optimize"


class Metric(str, Enum):
    """Metric filters accepted by the actions."""

    CPU = "cpu"
    MEMORY = "memory"
    DISK = "disk"
    NETWORK = "network"
    ALL = "all"


def _parse_metric(metric: str | None) -> Metric | None:
    if metric is None:
        return None
    try:
        return Metric(metric)
    except ValueError:
        choices = ", ".join(m.value for m in Metric)
        raise ValidationError(f"Invalid metric {metric!r}; expected one of: {choices}") from None


class PerformanceMonitor:
    """
    Entry point for the current/history/processes/optimize actions.

    This is the error boundary of hostmon: every public action returns a
    PerformanceResult and never raises. The cache, store and probe are
    passed in so tests and callers control their lifetimes.
    """

    def __init__(
        self,
        probe: Probe,
        store: MetricStore,
        caches: CacheRegistry,
        config: HostmonConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._probe = probe
        self._store = store
        self._caches = caches
        self._config = config or HostmonConfig()
        self._clock = clock
        self._pool_lock = threading.Lock()
        self._executor = self._new_pool()
        self._last_prune: datetime | None = None

    @property
    def store(self) -> MetricStore:
        return self._store

    @property
    def caches(self) -> CacheRegistry:
        return self._caches

    def handle(
        self,
        action: str,
        time_range: str | None = None,
        metric: str | None = None,
    ) -> PerformanceResult:
        """Validate a request and dispatch it to the matching action."""
        try:
            parsed = Action(action)
        except ValueError:
            return PerformanceResult.fail(f"Invalid action: {action!r}")
        if time_range is not None and not isinstance(time_range, str):
            return PerformanceResult.fail("timeRange must be a string")

        if parsed is Action.CURRENT:
            return self.current(metric)
        if parsed is Action.HISTORY:
            return self.history(time_range, metric)
        if parsed is Action.PROCESSES:
            return self.processes(metric)
        return self.optimize()

    def _guard(self, action: str, operation: Callable[[], object]) -> PerformanceResult:
        try:
            return PerformanceResult.ok(operation())
        except HostmonError as exc:
            logger.warning("%s failed: %s", action, exc)
            return PerformanceResult.fail(str(exc))
        except Exception as exc:
            logger.exception("%s failed unexpectedly", action)
            return PerformanceResult.fail(str(exc) or type(exc).__name__)

    # -- actions -----------------------------------------------------------

    def current(self, metric: str | None = None) -> PerformanceResult:
        """Latest snapshot, optionally narrowed to one metric category."""
        try:
            parsed = _parse_metric(metric)
        except ValidationError as exc:
            return PerformanceResult.fail(str(exc))

        def run() -> object:
            snapshot = self.current_snapshot()
            if parsed is None or parsed is Metric.ALL:
                return snapshot
            return snapshot.project(parsed.value)

        return self._guard("current", run)

    def history(self, time_range: str | None = None, metric: str | None = None) -> PerformanceResult:
        """
        Stored snapshots within a named window, newest first.

        The metric filter is validated but does not narrow the rows.
        """
        try:
            _parse_metric(metric)
        except ValidationError as exc:
            return PerformanceResult.fail(str(exc))

        return self._guard(
            "history",
            lambda: self._store.query_window(time_range or DEFAULT_WINDOW, self._clock()),
        )

    def processes(self, metric: str | None = None) -> PerformanceResult:
        """Top processes, re-sorted by cpu or memory when asked."""
        try:
            parsed = _parse_metric(metric)
        except ValidationError as exc:
            return PerformanceResult.fail(str(exc))

        return self._guard("processes", lambda: self.top_processes(parsed))

    def optimize(self) -> PerformanceResult:
        """Suggestions computed from a fresh, uncached snapshot and process table."""

        def run() -> object:
            pool = self._probe_pool()
            try:
                processes = pool.submit(
                    self._probe.read_top_processes, self._config.optimize_process_limit
                )
                snapshot = collect_snapshot(
                    self._probe, pool, self._config.probe_timeout, self._clock
                )
                try:
                    table = processes.result(timeout=self._config.probe_timeout)
                except FutureTimeoutError as exc:
                    processes.cancel()
                    raise ProbeTimeoutError(
                        f"process probe timed out after {self._config.probe_timeout}s"
                    ) from exc
            except ProbeTimeoutError:
                self._replace_stuck_pool(pool)
                raise
            return analyze(snapshot, table)

        return self._guard("optimize", run)

    # -- building blocks ---------------------------------------------------

    def _new_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=PROBE_WORKERS, thread_name_prefix="hostmon-probe")

    def _probe_pool(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            return self._executor

    def _replace_stuck_pool(self, stuck: ThreadPoolExecutor) -> None:
        """
        Retire a pool whose worker is still inside a timed-out probe.

        A running probe cannot be interrupted, so later requests get a fresh
        pool instead of queueing behind the hung call.
        """
        with self._pool_lock:
            if self._executor is not stuck:
                return
            logger.warning("probe timed out; replacing the probe worker pool")
            self._executor = self._new_pool()
        stuck.shutdown(wait=False, cancel_futures=True)

    def _collect(self) -> Snapshot:
        pool = self._probe_pool()
        try:
            return collect_snapshot(self._probe, pool, self._config.probe_timeout, self._clock)
        except ProbeTimeoutError:
            self._replace_stuck_pool(pool)
            raise

    def current_snapshot(self) -> Snapshot:
        """
        Return the cached snapshot, probing and recording a new one on a miss.

        The append happens inside the cache producer, so the stored row is
        exactly the returned snapshot and a cache hit records nothing.
        """
        key = make_cache_key("metrics", {"type": "current"})
        return self._caches.metrics.get(key, self._sample_and_record)

    def _sample_and_record(self) -> Snapshot:
        snapshot = self._collect()
        self._store.append(snapshot)
        self._maybe_prune(snapshot.timestamp)
        return snapshot

    def _maybe_prune(self, now: datetime) -> None:
        retention = self._config.retention
        if retention is None:
            return
        if self._last_prune is not None and now - self._last_prune < PRUNE_INTERVAL:
            return
        self._last_prune = now
        try:
            self._store.prune_before(now - retention)
        except StoreError as exc:
            # The row is already committed; retention retries next interval.
            logger.warning("retention prune failed: %s", exc)

    def top_processes(self, metric: Metric | None = None) -> list[ProcessInfo]:
        key = make_cache_key("processes", {"metric": metric.value if metric else None})

        def fetch() -> tuple[ProcessInfo, ...]:
            procs = self._probe.read_top_processes(self._config.process_limit)
            if metric is Metric.CPU:
                procs = sorted(procs, key=lambda p: p.cpu, reverse=True)
            elif metric is Metric.MEMORY:
                procs = sorted(procs, key=lambda p: p.memory, reverse=True)
            return tuple(procs)

        return list(self._caches.processes.get(key, fetch))

    def close(self) -> None:
        self._probe_pool().shutdown(wait=False, cancel_futures=True)
        self._store.close()


def build_monitor(config: HostmonConfig | None = None) -> PerformanceMonitor:
    """Wire a PerformanceMonitor against the live system."""
    config = config or HostmonConfig.from_env()
    probe = PsutilProbe(disk_path=config.disk_path, disk_io_interval=config.disk_io_interval)
    store = MetricStore(config.db_path)
    return PerformanceMonitor(probe, store, CacheRegistry.from_config(config), config)


@dataclass(slots=True, frozen=True)
class SamplerUpdate:
    """Results of one sampling pass."""

    current: PerformanceResult
    processes: PerformanceResult


class Sampler:
    """
    Background recorder that samples the monitor on a fixed poll rate.

    Runs in a separate daemon thread and pushes updates to a thread-safe Queue.
    Each pass records a snapshot in the store through the current action.
    """

    def __init__(
        self,
        monitor: PerformanceMonitor,
        update_queue: Queue[SamplerUpdate],
        poll_rate: float = 5.0,
    ) -> None:
        """
        Initialize the Sampler.

        Args:
            monitor: The monitor whose actions are sampled.
            update_queue: Thread-safe queue to push updates to.
            poll_rate: How often to sample (in seconds). Default 5.0s.
        """
        self._monitor = monitor
        self._queue = update_queue
        self._poll_rate = max(0.1, poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the sampler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="Sampler",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampling thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def sample_once(self) -> SamplerUpdate:
        update = SamplerUpdate(
            current=self._monitor.current(),
            processes=self._monitor.processes(Metric.CPU.value),
        )
        if not update.current.is_success:
            logger.warning("sampling failed: %s", update.current.error)
        return update

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            self._queue.put(self.sample_once())

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)
