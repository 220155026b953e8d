"""Probes that read live OS state, and snapshot assembly on top of them."""

import logging
import time
from collections.abc import Callable
from concurrent.futures import Executor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Protocol, TypeVar

import psutil

from hostmon.errors import ProbeError, ProbeTimeoutError
from hostmon.models import (
    CpuMetrics,
    DiskMetrics,
    MemoryMetrics,
    NetworkMetrics,
    ProcessInfo,
    Snapshot,
    truncate_to_ms,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Probe(Protocol):
    """One-shot readers for each category of live OS state."""

    def read_cpu(self) -> CpuMetrics: ...

    def read_memory(self) -> MemoryMetrics: ...

    def read_disk(self) -> DiskMetrics: ...

    def read_network(self) -> NetworkMetrics: ...

    def read_temperatures(self) -> dict[str, float]: ...

    def read_top_processes(self, limit: int) -> list[ProcessInfo]: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PsutilProbe:
    """
    Probe backed by psutil.

    Every psutil or OS failure surfaces as ProbeError. Processes that vanish,
    deny access or turn zombie during a scan are skipped.
    """

    PROCESS_ATTRS = [
        "pid",
        "name",
        "username",
        "status",
        "cpu_percent",
        "memory_percent",
        "memory_info",
    ]

    def __init__(
        self,
        disk_path: str = "/",
        disk_io_interval: float = 1.0,
        cpu_interval: float | None = None,
    ) -> None:
        """
        Initialize the PsutilProbe.

        Args:
            disk_path: Mount point whose capacity is reported.
            disk_io_interval: Seconds between the two I/O counter samples
                used to compute read/write rates.
            cpu_interval: Blocking interval for cpu_percent; None compares
                against the previous call.
        """
        self.disk_path = disk_path
        self.disk_io_interval = disk_io_interval
        self.cpu_interval = cpu_interval
        # Initialize CPU percent (first call returns 0.0)
        psutil.cpu_percent(percpu=True)
        # Same for per-process cpu_percent; psutil caches the Process objects
        for _ in psutil.process_iter(attrs=["cpu_percent"]):
            pass

    def read_cpu(self) -> CpuMetrics:
        try:
            per_core = psutil.cpu_percent(interval=self.cpu_interval, percpu=True)
            load_avg = psutil.getloadavg()
        except (psutil.Error, OSError) as exc:
            raise ProbeError(f"Failed to get CPU metrics: {exc}") from exc

        overall = sum(per_core) / len(per_core) if per_core else 0.0
        return CpuMetrics(
            overall=min(100.0, overall),
            per_core=tuple(per_core),
            load_average=(load_avg[0], load_avg[1], load_avg[2]),
        )

    def read_memory(self) -> MemoryMetrics:
        try:
            mem = psutil.virtual_memory()
            swap = psutil.swap_memory()
        except (psutil.Error, OSError) as exc:
            raise ProbeError(f"Failed to get memory metrics: {exc}") from exc

        return MemoryMetrics(
            total=mem.total,
            used=mem.used,
            available=mem.available,
            pressure=float(mem.percent),
            swap_used=swap.used,
            swap_total=swap.total,
        )

    def read_disk(self) -> DiskMetrics:
        try:
            usage = psutil.disk_usage(self.disk_path)
        except (psutil.Error, OSError) as exc:
            raise ProbeError(f"Failed to get disk metrics: {exc}") from exc

        read_bps, write_bps = self._disk_io_rates()
        return DiskMetrics(
            total=usage.total,
            used=usage.used,
            available=usage.free,
            read_bps=read_bps,
            write_bps=write_bps,
        )

    def _disk_io_rates(self) -> tuple[float, float]:
        """Sample the I/O counters twice and return bytes/s read and written."""
        try:
            before = psutil.disk_io_counters()
            time.sleep(self.disk_io_interval)
            after = psutil.disk_io_counters()
        except (psutil.Error, OSError) as exc:
            raise ProbeError(f"Failed to get disk I/O counters: {exc}") from exc

        # No counters on some containers and VMs
        if before is None or after is None or self.disk_io_interval <= 0:
            return 0.0, 0.0

        read = max(0, after.read_bytes - before.read_bytes) / self.disk_io_interval
        write = max(0, after.write_bytes - before.write_bytes) / self.disk_io_interval
        return read, write

    def read_network(self) -> NetworkMetrics:
        try:
            counters = psutil.net_io_counters()
        except (psutil.Error, OSError) as exc:
            raise ProbeError(f"Failed to get network metrics: {exc}") from exc

        if counters is None:
            return NetworkMetrics(bytes_sent=0, bytes_received=0, packets_in=0, packets_out=0)
        return NetworkMetrics(
            bytes_sent=counters.bytes_sent,
            bytes_received=counters.bytes_recv,
            packets_in=counters.packets_recv,
            packets_out=counters.packets_sent,
        )

    def read_temperatures(self) -> dict[str, float]:
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            raise ProbeError("Temperature sensors are not supported on this platform")
        try:
            readings = sensors()
        except (psutil.Error, OSError) as exc:
            raise ProbeError(f"Failed to read temperatures: {exc}") from exc

        temperatures: dict[str, float] = {}
        for chip, entries in readings.items():
            for index, entry in enumerate(entries):
                label = entry.label or str(index)
                temperatures[f"{chip}/{label}"] = float(entry.current)
        return temperatures

    def read_top_processes(self, limit: int) -> list[ProcessInfo]:
        """
        Collect the busiest processes, sorted by CPU usage descending.

        Uses psutil.process_iter() with oneshot() for efficient attribute access.
        """
        processes: list[ProcessInfo] = []

        try:
            iterator = psutil.process_iter(attrs=self.PROCESS_ATTRS)
            for proc in iterator:
                try:
                    with proc.oneshot():
                        info = proc.info

                        mem_info = info.get("memory_info")
                        memory_rss = mem_info.rss if mem_info else 0

                        processes.append(
                            ProcessInfo(
                                pid=info.get("pid", 0),
                                name=info.get("name") or "",
                                cpu=info.get("cpu_percent") or 0.0,
                                memory=info.get("memory_percent") or 0.0,
                                memory_mb=memory_rss / (1024 * 1024),
                                user=info.get("username") or "",
                                state=info.get("status") or "?",
                            )
                        )
                except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                    # Process died mid-scan or is not ours to inspect
                    continue
        except (psutil.Error, OSError) as exc:
            raise ProbeError(f"Failed to get top processes: {exc}") from exc

        processes.sort(key=lambda p: p.cpu, reverse=True)
        return processes[:limit]


def read_optional(reader: Callable[[], T]) -> T | None:
    """
    Run an optional probe and treat ProbeError as "absent".

    Only ProbeError is absorbed; anything else is a bug and propagates.
    """
    try:
        return reader()
    except ProbeError as exc:
        logger.debug("optional probe unavailable: %s", exc)
        return None


def collect_snapshot(
    probe: Probe,
    executor: Executor,
    timeout: float | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> Snapshot:
    """
    Read every metric category and assemble one Snapshot.

    CPU, memory, disk and network are independent and read concurrently on
    ``executor``; each is joined with ``timeout`` seconds. Temperature is
    optional and left as None when its probe fails.
    """
    futures = {
        "cpu": executor.submit(probe.read_cpu),
        "memory": executor.submit(probe.read_memory),
        "disk": executor.submit(probe.read_disk),
        "network": executor.submit(probe.read_network),
    }
    readings = {}
    try:
        for category, future in futures.items():
            try:
                readings[category] = future.result(timeout=timeout)
            except FutureTimeoutError as exc:
                raise ProbeTimeoutError(f"{category} probe timed out after {timeout}s") from exc
    finally:
        for future in futures.values():
            future.cancel()

    temperature = read_optional(probe.read_temperatures)

    return Snapshot(
        timestamp=truncate_to_ms(clock()),
        cpu=readings["cpu"],
        memory=readings["memory"],
        disk=readings["disk"],
        network=readings["network"],
        temperature=temperature or None,
    )
