"""Append-only SQLite time-series store for metric snapshots."""

import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path

from hostmon.errors import StoreError
from hostmon.models import (
    CpuMetrics,
    DiskMetrics,
    MemoryMetrics,
    NetworkMetrics,
    Snapshot,
    from_epoch_ms,
    to_epoch_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = "1h"

TIME_WINDOWS: dict[str, timedelta] = {
    "1h": timedelta(milliseconds=3_600_000),
    "24h": timedelta(milliseconds=86_400_000),
    "7d": timedelta(milliseconds=604_800_000),
}

SCHEMA = """
CREATE TABLE IF NOT EXISTS metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    cpu_overall REAL,
    cpu_load_1 REAL,
    cpu_load_5 REAL,
    cpu_load_15 REAL,
    memory_used INTEGER,
    memory_total INTEGER,
    memory_available INTEGER,
    memory_pressure REAL,
    swap_used INTEGER,
    swap_total INTEGER,
    disk_used INTEGER,
    disk_total INTEGER,
    disk_available INTEGER,
    disk_read_bps REAL,
    disk_write_bps REAL,
    network_bytes_sent INTEGER,
    network_bytes_received INTEGER,
    network_packets_in INTEGER,
    network_packets_out INTEGER
);

CREATE INDEX IF NOT EXISTS idx_metrics_timestamp ON metrics(timestamp);
"""

COLUMNS = (
    "timestamp",
    "cpu_overall",
    "cpu_load_1",
    "cpu_load_5",
    "cpu_load_15",
    "memory_used",
    "memory_total",
    "memory_available",
    "memory_pressure",
    "swap_used",
    "swap_total",
    "disk_used",
    "disk_total",
    "disk_available",
    "disk_read_bps",
    "disk_write_bps",
    "network_bytes_sent",
    "network_bytes_received",
    "network_packets_in",
    "network_packets_out",
)

INSERT_SQL = (
    f"INSERT INTO metrics ({', '.join(COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in COLUMNS)})"
)


def resolve_window(name: str | None) -> timedelta:
    """Map a named time window to its span; unknown names fall back to 1h."""
    return TIME_WINDOWS.get(name or DEFAULT_WINDOW, TIME_WINDOWS[DEFAULT_WINDOW])


def _to_row(snapshot: Snapshot) -> tuple:
    cpu, memory, disk, network = snapshot.cpu, snapshot.memory, snapshot.disk, snapshot.network
    return (
        to_epoch_ms(snapshot.timestamp),
        cpu.overall,
        cpu.load_average[0],
        cpu.load_average[1],
        cpu.load_average[2],
        memory.used,
        memory.total,
        memory.available,
        memory.pressure,
        memory.swap_used,
        memory.swap_total,
        disk.used,
        disk.total,
        disk.available,
        disk.read_bps,
        disk.write_bps,
        network.bytes_sent,
        network.bytes_received,
        network.packets_in,
        network.packets_out,
    )


def _from_row(row: sqlite3.Row) -> Snapshot:
    # per-core usage and temperatures are not persisted
    return Snapshot(
        timestamp=from_epoch_ms(row["timestamp"]),
        cpu=CpuMetrics(
            overall=row["cpu_overall"],
            per_core=(),
            load_average=(row["cpu_load_1"], row["cpu_load_5"], row["cpu_load_15"]),
        ),
        memory=MemoryMetrics(
            total=row["memory_total"],
            used=row["memory_used"],
            available=row["memory_available"],
            pressure=row["memory_pressure"],
            swap_used=row["swap_used"],
            swap_total=row["swap_total"],
        ),
        disk=DiskMetrics(
            total=row["disk_total"],
            used=row["disk_used"],
            available=row["disk_available"],
            read_bps=row["disk_read_bps"],
            write_bps=row["disk_write_bps"],
        ),
        network=NetworkMetrics(
            bytes_sent=row["network_bytes_sent"],
            bytes_received=row["network_bytes_received"],
            packets_in=row["network_packets_in"],
            packets_out=row["network_packets_out"],
        ),
    )


class MetricStore:
    """
    Durable, append-only log of snapshots keyed by timestamp.

    A single connection is shared by the whole process and every statement
    runs under one lock, so appends from several threads never interleave.
    Rows are never updated; they are only removed by an explicit prune.
    """

    def __init__(self, path: str | Path) -> None:
        """
        Open (creating if needed) the store at ``path``.

        Args:
            path: SQLite database file. ``":memory:"`` keeps the log in RAM.
        """
        self.path = path if str(path) == ":memory:" else Path(path)
        self._lock = threading.Lock()
        try:
            if isinstance(self.path, Path):
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
        except (sqlite3.Error, OSError) as exc:
            raise StoreError(f"Failed to open metrics store at {path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self.initialize()
        logger.info("metrics store ready at %s", self.path)

    def initialize(self) -> None:
        """Create the schema. Safe to run on every start."""
        with self._lock:
            try:
                self._conn.executescript(SCHEMA)
                self._conn.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to initialize metrics store: {exc}") from exc

    def append(self, snapshot: Snapshot) -> None:
        """Durably record one snapshot."""
        with self._lock:
            try:
                self._conn.execute(INSERT_SQL, _to_row(snapshot))
                self._conn.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to store metrics: {exc}") from exc

    def query_range(self, start: datetime, end: datetime | None = None) -> list[Snapshot]:
        """Return snapshots with ``start <= timestamp <= end``, newest first."""
        sql = "SELECT * FROM metrics WHERE timestamp >= ?"
        params: list[int] = [to_epoch_ms(start)]
        if end is not None:
            sql += " AND timestamp <= ?"
            params.append(to_epoch_ms(end))
        sql += " ORDER BY timestamp DESC, id DESC"

        with self._lock:
            try:
                rows = self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to query metrics: {exc}") from exc
        return [_from_row(row) for row in rows]

    def query_window(self, window: str | None, now: datetime) -> list[Snapshot]:
        """Return the snapshots recorded within the named window before ``now``."""
        return self.query_range(now - resolve_window(window))

    def count(self) -> int:
        with self._lock:
            try:
                return self._conn.execute("SELECT COUNT(*) FROM metrics").fetchone()[0]
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to count metrics: {exc}") from exc

    def prune_before(self, cutoff: datetime) -> int:
        """Delete rows older than ``cutoff``; returns how many were removed."""
        with self._lock:
            try:
                cursor = self._conn.execute(
                    "DELETE FROM metrics WHERE timestamp < ?", (to_epoch_ms(cutoff),)
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to prune metrics: {exc}") from exc
        if cursor.rowcount:
            logger.info("pruned %d metric rows older than %s", cursor.rowcount, cutoff)
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "MetricStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
