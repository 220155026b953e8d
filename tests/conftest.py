"""Shared fixtures: a scripted probe, manual clocks and snapshot builders."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from hostmon.cache import CacheRegistry
from hostmon.config import HostmonConfig
from hostmon.errors import ProbeError
from hostmon.models import (
    CpuMetrics,
    DiskMetrics,
    MemoryMetrics,
    NetworkMetrics,
    ProcessInfo,
    Snapshot,
)
from hostmon.monitor import PerformanceMonitor
from hostmon.store import MetricStore

START = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


class ManualTimer:
    """Monotonic seconds that only move when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualClock:
    """Wall clock returning aware datetimes, advanced by hand."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def build_snapshot(
    timestamp: datetime = START,
    *,
    cpu_overall: float = 25.0,
    per_core: tuple[float, ...] = (20.0, 30.0),
    pressure: float = 40.0,
    memory_total: int = 16 * 1024**3,
    memory_used: int = 8 * 1024**3,
    memory_available: int = 7 * 1024**3,
    swap_used: int = 0,
    swap_total: int = 4 * 1024**3,
    disk_total: int = 500 * 1024**3,
    disk_used: int = 200 * 1024**3,
    disk_available: int = 300 * 1024**3,
    temperature: dict[str, float] | None = None,
) -> Snapshot:
    return Snapshot(
        timestamp=timestamp,
        cpu=CpuMetrics(overall=cpu_overall, per_core=per_core, load_average=(1.5, 1.0, 0.5)),
        memory=MemoryMetrics(
            total=memory_total,
            used=memory_used,
            available=memory_available,
            pressure=pressure,
            swap_used=swap_used,
            swap_total=swap_total,
        ),
        disk=DiskMetrics(
            total=disk_total,
            used=disk_used,
            available=disk_available,
            read_bps=1024.0,
            write_bps=2048.0,
        ),
        network=NetworkMetrics(
            bytes_sent=1000, bytes_received=2000, packets_in=30, packets_out=40
        ),
        temperature=temperature,
    )


def build_process(pid: int, *, cpu: float = 1.0, memory: float = 1.0, name: str = "") -> ProcessInfo:
    return ProcessInfo(
        pid=pid,
        name=name or f"proc{pid}",
        cpu=cpu,
        memory=memory,
        memory_mb=memory * 160.0,
        user="tester",
        state="running",
    )


class FakeProbe:
    """Probe returning scripted readings and counting calls."""

    def __init__(self, snapshot: Snapshot | None = None, processes=None) -> None:
        self.snapshot = snapshot or build_snapshot()
        self.processes = list(processes or [])
        self.temperatures: dict[str, float] | None = {"cpu/Package": 55.0}
        self.fail_on: set[str] = set()
        self.calls: dict[str, int] = {}
        self._lock = threading.Lock()

    def _record(self, name: str) -> None:
        with self._lock:
            self.calls[name] = self.calls.get(name, 0) + 1
        if name in self.fail_on:
            raise ProbeError(f"{name} unavailable")

    def read_cpu(self) -> CpuMetrics:
        self._record("cpu")
        return self.snapshot.cpu

    def read_memory(self) -> MemoryMetrics:
        self._record("memory")
        return self.snapshot.memory

    def read_disk(self) -> DiskMetrics:
        self._record("disk")
        return self.snapshot.disk

    def read_network(self) -> NetworkMetrics:
        self._record("network")
        return self.snapshot.network

    def read_temperatures(self) -> dict[str, float]:
        self._record("temperatures")
        if self.temperatures is None:
            raise ProbeError("temperature requires elevated privileges")
        return dict(self.temperatures)

    def read_top_processes(self, limit: int) -> list[ProcessInfo]:
        self._record("processes")
        return sorted(self.processes, key=lambda p: p.cpu, reverse=True)[:limit]


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe(
        processes=[
            build_process(101, cpu=90.0, memory=12.0),
            build_process(102, cpu=10.0, memory=30.0),
            build_process(103, cpu=55.0, memory=2.0),
        ]
    )


@pytest.fixture
def store(tmp_path):
    metric_store = MetricStore(tmp_path / "hostmon" / "performance.db")
    yield metric_store
    metric_store.close()


@pytest.fixture
def monitor(probe, store, timer, clock):
    config = HostmonConfig(db_path=store.path)
    perf = PerformanceMonitor(
        probe, store, CacheRegistry.from_config(config, timer=timer), config, clock=clock
    )
    yield perf
    perf._probe_pool().shutdown(wait=True)
