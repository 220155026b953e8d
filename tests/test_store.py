"""Tests for the SQLite time-series store."""

import threading
from datetime import timedelta

import pytest
from conftest import START, build_snapshot

from hostmon.errors import StoreError
from hostmon.store import TIME_WINDOWS, MetricStore, resolve_window


class TestResolveWindow:
    """Tests for named time windows."""

    def test_known_windows(self):
        assert resolve_window("1h") == timedelta(milliseconds=3_600_000)
        assert resolve_window("24h") == timedelta(milliseconds=86_400_000)
        assert resolve_window("7d") == timedelta(milliseconds=604_800_000)

    @pytest.mark.parametrize("name", ["bogus-range", "", None, "30d", "1H"])
    def test_unknown_windows_fall_back_to_one_hour(self, name):
        assert resolve_window(name) == TIME_WINDOWS["1h"]


class TestMetricStore:
    """Tests for MetricStore append and range queries."""

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "performance.db"

        with MetricStore(path) as store:
            assert store.count() == 0

        assert path.exists()

    def test_initialize_is_idempotent(self, store, tmp_path):
        store.append(build_snapshot())

        store.initialize()
        store.initialize()
        with MetricStore(store.path) as reopened:
            assert reopened.count() == 1

    def test_round_trip_preserves_scalars(self, store):
        original = build_snapshot(per_core=(10.0, 20.0, 30.0, 40.0), temperature={"cpu": 60.0})

        store.append(original)
        (restored,) = store.query_range(START - timedelta(seconds=1))

        assert restored.timestamp == original.timestamp
        assert restored.cpu.overall == original.cpu.overall
        assert restored.cpu.load_average == original.cpu.load_average
        assert restored.memory == original.memory
        assert restored.disk == original.disk
        assert restored.network == original.network

    def test_per_core_and_temperature_are_not_persisted(self, store):
        store.append(build_snapshot(per_core=(99.0, 1.0), temperature={"cpu": 60.0}))

        (restored,) = store.query_range(START)

        assert restored.cpu.per_core == ()
        assert restored.temperature is None

    def test_query_is_newest_first(self, store):
        for minutes in (5, 1, 30, 10):
            store.append(build_snapshot(START + timedelta(minutes=minutes)))

        rows = store.query_range(START)

        stamps = [row.timestamp for row in rows]
        assert stamps == sorted(stamps, reverse=True)
        assert len(rows) == 4

    def test_range_bounds_are_inclusive(self, store):
        for minutes in range(5):
            store.append(build_snapshot(START + timedelta(minutes=minutes)))

        rows = store.query_range(START + timedelta(minutes=1), START + timedelta(minutes=3))

        assert [row.timestamp for row in rows] == [
            START + timedelta(minutes=3),
            START + timedelta(minutes=2),
            START + timedelta(minutes=1),
        ]

    def test_query_window(self, store):
        now = START + timedelta(days=10)
        store.append(build_snapshot(now - timedelta(minutes=30)))
        store.append(build_snapshot(now - timedelta(hours=5)))
        store.append(build_snapshot(now - timedelta(days=3)))
        store.append(build_snapshot(now - timedelta(days=9)))

        assert len(store.query_window("1h", now)) == 1
        assert len(store.query_window("24h", now)) == 2
        assert len(store.query_window("7d", now)) == 3
        assert store.query_window("bogus-range", now) == store.query_window("1h", now)

    def test_duplicate_timestamps_are_kept(self, store):
        snapshot = build_snapshot()

        store.append(snapshot)
        store.append(snapshot)

        assert store.count() == 2
        assert len(store.query_range(START)) == 2

    def test_concurrent_appends(self, store):
        def writer(offset: int) -> None:
            for index in range(25):
                store.append(build_snapshot(START + timedelta(seconds=offset * 100 + index)))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10.0)

        assert store.count() == 100
        assert len(store.query_range(START)) == 100

    def test_prune_before(self, store):
        store.append(build_snapshot(START - timedelta(days=40)))
        store.append(build_snapshot(START - timedelta(days=2)))
        store.append(build_snapshot(START))

        removed = store.prune_before(START - timedelta(days=30))

        assert removed == 1
        assert store.count() == 2

    def test_append_failure_raises_store_error(self, tmp_path):
        store = MetricStore(tmp_path / "performance.db")
        store.close()

        with pytest.raises(StoreError, match="Failed to store metrics"):
            store.append(build_snapshot())

    def test_query_failure_raises_store_error(self, tmp_path):
        store = MetricStore(tmp_path / "performance.db")
        store.close()

        with pytest.raises(StoreError, match="Failed to query metrics"):
            store.query_range(START)

    def test_unwritable_location_raises_store_error(self, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")

        with pytest.raises(StoreError):
            MetricStore(blocker / "performance.db")
