"""
Integration tests: reconciliation cycles through WatchService
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import numpy as np
import pytest
from PIL import Image

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.types import TILE_SIZE, TileCoordinate
from patterns.repository import PatternRepository
from watcher.config import WatchConfig
from watcher.service import RECONCILE, REFRESH, WatchService


RED = (237, 28, 36, 255)
BLUE = (64, 147, 228, 255)
T0 = datetime(2025, 8, 1, 12, 0, tzinfo=timezone.utc)


class FakeCanvas:
    """Tile server stand-in: tiles painted in memory, some can be made unreachable."""

    def __init__(self):
        self.tiles = {}
        self.down = set()
        self.calls = []

    def paint(self, gx, gy, w, h, color):
        for y in range(gy, gy + h):
            for x in range(gx, gx + w):
                coord = TileCoordinate(x // TILE_SIZE, y // TILE_SIZE)
                tile = self.tiles.setdefault(coord, np.zeros((TILE_SIZE, TILE_SIZE, 4), dtype=np.uint8))
                tile[y % TILE_SIZE, x % TILE_SIZE] = color

    def fetch(self, coord):
        self.calls.append(coord)
        if coord in self.down:
            return None
        tile = self.tiles.get(coord)
        return tile.copy() if tile is not None else np.zeros((TILE_SIZE, TILE_SIZE, 4), dtype=np.uint8)


@pytest.fixture
def pattern_dir(tmp_path):
    img = np.zeros((40, 40, 4), dtype=np.uint8)
    img[...] = RED
    Image.fromarray(img).save(tmp_path / "flag.5.5.980.980.png")
    return tmp_path


@pytest.fixture
def canvas():
    c = FakeCanvas()
    c.paint(5 * TILE_SIZE + 980, 5 * TILE_SIZE + 980, 40, 40, RED)
    return c


@pytest.fixture
def service(pattern_dir, canvas):
    cfg = WatchConfig(pattern_directory=str(pattern_dir), remind_time=3600, tile_workers=2)
    svc = WatchService(cfg, PatternRepository(str(pattern_dir)), canvas, Mock())
    assert svc.refresh_patterns()
    return svc


def flag_origin():
    return 5 * TILE_SIZE + 980, 5 * TILE_SIZE + 980


class TestReconciliationCycle:
    def test_clean_canvas(self, service, canvas):
        assert service.run_cycle(T0) == []
        assert set(canvas.calls) == {
            TileCoordinate(5, 5), TileCoordinate(6, 5), TileCoordinate(5, 6), TileCoordinate(6, 6),
        }
        service.dispatcher.dispatch.assert_not_called()

    def test_defaced_then_restored(self, service, canvas):
        gx, gy = flag_origin()
        service.run_cycle(T0)

        canvas.paint(gx + 30, gy + 30, 3, 1, BLUE)
        decisions = service.run_cycle(T0 + timedelta(minutes=1))
        assert [(d.reason, d.errors_before, d.errors_now) for d in decisions] == [("escalation", 0, 3)]
        decision, pattern = service.dispatcher.dispatch.call_args[0]
        assert pattern.name == "flag"
        assert decision.defaced_since == T0 + timedelta(minutes=1)

        # no change, inside the reminder interval
        assert service.run_cycle(T0 + timedelta(minutes=2)) == []

        canvas.paint(gx + 30, gy + 30, 3, 1, RED)
        decisions = service.run_cycle(T0 + timedelta(minutes=3))
        assert [(d.reason, d.errors_before, d.errors_now) for d in decisions] == [("restored", 3, 0)]
        assert service.dispatcher.dispatch.call_count == 2

    def test_reminder(self, service, canvas):
        gx, gy = flag_origin()
        canvas.paint(gx, gy, 3, 1, BLUE)
        assert len(service.run_cycle(T0)) == 1
        assert service.run_cycle(T0 + timedelta(minutes=30)) == []
        decisions = service.run_cycle(T0 + timedelta(hours=1))
        assert [d.reason for d in decisions] == ["reminder"]

    def test_unreachable_tile_is_not_defacement(self, service, canvas):
        gx, gy = flag_origin()
        canvas.paint(gx, gy, 3, 1, BLUE)  # on tile (5,5)
        service.run_cycle(T0)

        canvas.down.add(TileCoordinate(6, 6))
        assert service.run_cycle(T0 + timedelta(minutes=1)) == []
        row = service.status()["patterns"][0]
        assert row["errors"] == 3
        assert row["verified"] is False

    def test_status_rows_mirror_tracker_snapshot(self, service, canvas):
        gx, gy = flag_origin()
        canvas.paint(gx, gy, 2, 1, BLUE)
        service.run_cycle(T0)

        state = service.tracker.snapshot()[service.patterns["flag"].identity]
        row = service.status()["patterns"][0]
        assert row["errors"] == state.last_error_count == 2
        assert row["last_defaced_at"] == "2025-08-01T12:00:00.000Z"
        assert row["verified"] is True

    def test_refresh_drops_removed_pattern_state(self, service, pattern_dir, canvas):
        gx, gy = flag_origin()
        canvas.paint(gx, gy, 1, 1, BLUE)
        service.run_cycle(T0)
        assert len(service.tracker) == 1

        (pattern_dir / "flag.5.5.980.980.png").unlink()
        assert service.refresh_patterns()
        assert service.patterns == {}
        assert len(service.tracker) == 0

    def test_failed_refresh_keeps_previous_set(self, service, pattern_dir):
        before = service.patterns
        service.repository = PatternRepository(str(pattern_dir / "gone"))
        assert service.refresh_patterns() is False
        assert service.patterns is before


class TestEventLoop:
    def test_start_processes_initial_events(self, pattern_dir, canvas):
        cfg = WatchConfig(pattern_directory=str(pattern_dir), refresh_rate=3600, directory_refresh_rate=3600)
        svc = WatchService(cfg, PatternRepository(str(pattern_dir)), canvas, Mock())
        svc.start()
        try:
            svc._events.join()
            assert "flag" in svc.patterns
            assert svc.status()["cycles"] == 1
            svc.submit(RECONCILE)
            svc.submit(REFRESH)
            svc._events.join()
            assert svc.status()["cycles"] == 2
        finally:
            svc.stop()

    def test_worker_survives_failing_event(self, pattern_dir, canvas):
        cfg = WatchConfig(pattern_directory=str(pattern_dir), refresh_rate=3600, directory_refresh_rate=3600)
        svc = WatchService(cfg, PatternRepository(str(pattern_dir)), canvas, Mock())
        svc.dispatcher.dispatch.side_effect = RuntimeError("boom")
        canvas.paint(*flag_origin(), 1, 1, BLUE)
        svc.start()
        try:
            svc._events.join()
            svc.submit(RECONCILE)
            svc._events.join()
            assert svc.status()["cycles"] == 2
        finally:
            svc.stop()
