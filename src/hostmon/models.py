"""Data models for hostmon."""

from collections.abc import Mapping
from dataclasses import dataclass, fields, is_dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def to_epoch_ms(moment: datetime) -> int:
    """Convert an aware datetime to integer milliseconds since the epoch."""
    return (moment - _EPOCH) // _MILLISECOND


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return _EPOCH + int(value) * _MILLISECOND


def truncate_to_ms(moment: datetime) -> datetime:
    """Drop sub-millisecond precision so a timestamp survives storage unchanged."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.replace(microsecond=moment.microsecond - moment.microsecond % 1000)


@dataclass(slots=True, frozen=True)
class CpuMetrics:
    """CPU utilisation at one instant."""

    overall: float  # 0.0 - 100.0
    per_core: tuple[float, ...]
    load_average: tuple[float, float, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall,
            "perCore": list(self.per_core),
            "loadAverage": list(self.load_average),
        }


@dataclass(slots=True, frozen=True)
class MemoryMetrics:
    """Physical memory and swap usage, in bytes."""

    total: int
    used: int
    available: int
    pressure: float  # 0.0 - 100.0
    swap_used: int
    swap_total: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "used": self.used,
            "available": self.available,
            "pressure": self.pressure,
            "swapUsed": self.swap_used,
            "swapTotal": self.swap_total,
        }


@dataclass(slots=True, frozen=True)
class DiskMetrics:
    """Disk capacity in bytes and I/O throughput in bytes per second."""

    total: int
    used: int
    available: int
    read_bps: float
    write_bps: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "used": self.used,
            "available": self.available,
            "readBytesPerSec": self.read_bps,
            "writeBytesPerSec": self.write_bps,
        }


@dataclass(slots=True, frozen=True)
class NetworkMetrics:
    """Cumulative network counters since boot."""

    bytes_sent: int
    bytes_received: int
    packets_in: int
    packets_out: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "bytesSent": self.bytes_sent,
            "bytesReceived": self.bytes_received,
            "packetsIn": self.packets_in,
            "packetsOut": self.packets_out,
        }


METRIC_CATEGORIES = ("cpu", "memory", "disk", "network")


@dataclass(slots=True, frozen=True)
class Snapshot:
    """One consistent point-in-time reading across all metric categories."""

    timestamp: datetime
    cpu: CpuMetrics
    memory: MemoryMetrics
    disk: DiskMetrics
    network: NetworkMetrics
    temperature: Mapping[str, float] | None = None

    def __post_init__(self) -> None:
        if self.temperature is not None:
            # read-only copy so a cached snapshot cannot be edited in place
            object.__setattr__(self, "temperature", MappingProxyType(dict(self.temperature)))

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready payload for this snapshot."""
        payload: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(timespec="milliseconds"),
            "cpu": self.cpu.to_dict(),
            "memory": self.memory.to_dict(),
            "disk": self.disk.to_dict(),
            "network": self.network.to_dict(),
        }
        if self.temperature is not None:
            payload["temperature"] = dict(self.temperature)
        return payload

    def project(self, metric: str) -> dict[str, Any]:
        """
        Narrow the payload down to a single metric category.

        The requested category keeps its values, every other category is
        reported as an empty mapping. Timestamp and temperature are kept.
        """
        if metric not in METRIC_CATEGORIES:
            raise ValueError(f"Unknown metric category: {metric!r}")
        payload = self.to_dict()
        for category in METRIC_CATEGORIES:
            if category != metric:
                payload[category] = {}
        return payload


@dataclass(slots=True, frozen=True)
class ProcessInfo:
    """One row of the process table, valid for a single sampling pass."""

    pid: int
    name: str
    cpu: float  # can exceed 100.0 on multi-core systems
    memory: float  # percent of total memory
    memory_mb: float
    user: str
    state: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "cpu": self.cpu,
            "memory": self.memory,
            "memoryMB": self.memory_mb,
            "user": self.user,
            "state": self.state,
        }


class SuggestionType(str, Enum):
    """Kinds of optimization suggestion."""

    QUIT_APP = "quit_app"
    CLEAR_CACHE = "clear_cache"
    DISABLE_STARTUP = "disable_startup"
    REDUCE_MEMORY = "reduce_memory"


class Impact(str, Enum):
    """Expected impact of acting on a suggestion."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(slots=True, frozen=True)
class OptimizationSuggestion:
    """Advisory remediation. The command is never executed by hostmon."""

    type: SuggestionType
    reason: str
    impact: Impact
    app: str | None = None
    command: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type.value,
            "reason": self.reason,
            "impact": self.impact.value,
        }
        if self.app is not None:
            payload["app"] = self.app
        if self.command is not None:
            payload["command"] = self.command
        return payload


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    if is_dataclass(value):
        return {f.name: _serialize(getattr(value, f.name)) for f in fields(value)}
    return value


@dataclass(slots=True, frozen=True)
class PerformanceResult:
    """Uniform success/error envelope returned by every monitor action."""

    status: str  # 'success' or 'error'
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any) -> "PerformanceResult":
        return cls(status="success", data=data)

    @classmethod
    def fail(cls, message: str) -> "PerformanceResult":
        return cls(status="error", error=message)

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready envelope."""
        if self.is_success:
            return {"status": self.status, "data": _serialize(self.data)}
        return {"status": self.status, "error": self.error}
