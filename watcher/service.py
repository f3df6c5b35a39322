from __future__ import annotations

"""
Watch service: keeps the pattern set fresh and runs reconciliation cycles.

Two timers (pattern directory refresh, canvas check) only enqueue events; a
single worker thread consumes them in arrival order, so the pattern snapshot
and the tracker state are never touched concurrently.

Examples:
  python -m watcher.service --config config/params.yaml
  CONFIG_FILE=config/params.yaml python -m watcher.service --once
"""

import argparse
import queue
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import uvicorn

from canvas.grid import required_tiles
from canvas.tiles import TileFetcher, fetch_all
from common.logging_setup import get_logger, setup_logging
from common.types import ComparisonResult, NotifyDecision, Pattern
from common.utils import Stopwatch, iso_ms, utc_now
from patterns.repository import PatternRepository, PatternRepositoryError
from watcher.compare import compare
from watcher.config import WatchConfig, load_config
from watcher.notify import WebhookDispatcher, load_template
from watcher.server import create_app
from watcher.tracker import DefacementTracker


log = get_logger("watcher")

REFRESH = "refresh"
RECONCILE = "reconcile"
_STOP = object()


class WatchService:
    def __init__(
        self,
        config: WatchConfig,
        repository: PatternRepository,
        fetcher: TileFetcher,
        dispatcher: WebhookDispatcher,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.repository = repository
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.clock = clock
        self.tracker = DefacementTracker(config.remind_interval)

        # replaced wholesale, never mutated in place
        self.patterns: Dict[str, Pattern] = {}
        self.last_result: ComparisonResult = {}
        self._status: Dict[str, Any] = {"patterns": [], "last_cycle": None, "cycles": 0}

        self._events: "queue.Queue[object]" = queue.Queue()
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    # -------- event handlers --------

    def refresh_patterns(self) -> bool:
        """Reload the pattern directory. On failure the previous set stays active."""
        try:
            fresh = self.repository.refresh()
        except PatternRepositoryError as e:
            log.error("Pattern refresh failed, keeping previous set: %s", e)
            return False

        self.patterns = fresh
        dropped = self.tracker.retain(p.identity for p in fresh.values())
        log.info("Patterns refreshed", extra={"extra": {"patterns": len(fresh), "dropped_states": dropped}})
        self._publish_status()
        return True

    def run_cycle(self, now: Optional[datetime] = None) -> List[NotifyDecision]:
        """One reconciliation pass: fetch required tiles, compare, track, notify."""
        sw = Stopwatch()
        patterns = self.patterns
        tiles = required_tiles(patterns.values(), skip_transparent=self.config.skip_transparent_tiles)
        fetched = fetch_all(self.fetcher, tiles, max_workers=self.config.tile_workers)
        failed = sum(1 for t in fetched.values() if not t.ok)

        result = compare(patterns.values(), fetched)
        now = now or self.clock()

        decisions: List[NotifyDecision] = []
        for pattern in patterns.values():
            cmp = result[pattern.identity]
            before = self.tracker.state(pattern.identity)
            log.info(
                "Pattern checked",
                extra={"extra": {
                    "pattern": pattern.name,
                    "errors_before": before.last_error_count if before else 0,
                    "errors": cmp.errors,
                    "unverified": cmp.unverified,
                }},
            )
            if not cmp.verified:
                log.warning(
                    "Pattern could not be fully verified",
                    extra={"extra": {"pattern": pattern.name, "unverified": cmp.unverified}},
                )
            decision = self.tracker.reconcile(pattern.identity, cmp.errors, now)
            if decision is not None:
                decisions.append(decision)

        self.last_result = result
        self._status = dict(self._status, last_cycle=iso_ms(now), cycles=self._status["cycles"] + 1)
        self._publish_status()

        for decision in decisions:
            self.dispatcher.dispatch(decision, patterns[decision.identity.name])

        log.info(
            "Cycle done",
            extra={"extra": {
                "tiles": len(tiles),
                "failed_tiles": failed,
                "notifications": len(decisions),
                "latency_ms": sw.ms(),
            }},
        )
        return decisions

    # -------- status (read from other threads) --------

    def _publish_status(self) -> None:
        states = self.tracker.snapshot()
        rows = []
        for pattern in self.patterns.values():
            state = states.get(pattern.identity)
            cmp = self.last_result.get(pattern.identity)
            rows.append({
                "name": pattern.name,
                "tile": [pattern.anchor_tile.x, pattern.anchor_tile.y],
                "offset": [pattern.anchor_offset.x, pattern.anchor_offset.y],
                "size": [pattern.width, pattern.height],
                "errors": state.last_error_count if state else None,
                "last_defaced_at": iso_ms(state.last_defaced_at) if state else None,
                "verified": cmp.verified if cmp else None,
            })
        # single reference swap; readers never see a half-built dict
        self._status = dict(self._status, patterns=rows)

    def status(self) -> Dict[str, Any]:
        return self._status

    # -------- event loop --------

    def submit(self, event: str) -> None:
        self._events.put(event)

    def _handle(self, event: object) -> None:
        if event == REFRESH:
            self.refresh_patterns()
        elif event == RECONCILE:
            self.run_cycle()
        else:
            log.warning("Unknown event %r", event)

    def _worker(self) -> None:
        while True:
            event = self._events.get()
            try:
                if event is _STOP:
                    break
                self._handle(event)
            except Exception:
                log.exception("Event %r failed", event)
            finally:
                self._events.task_done()

    def _ticker(self, event: str, period_s: float) -> None:
        while not self._stop.wait(period_s):
            self.submit(event)

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        self.submit(REFRESH)
        self.submit(RECONCILE)
        specs = [
            ("watch-worker", self._worker, ()),
            ("refresh-timer", self._ticker, (REFRESH, float(self.config.directory_refresh_rate))),
            ("reconcile-timer", self._ticker, (RECONCILE, float(self.config.refresh_rate))),
        ]
        for name, target, args in specs:
            t = threading.Thread(target=target, args=args, name=name, daemon=True)
            t.start()
            self._threads.append(t)
        log.info("Watch service started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self._events.put(_STOP)
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []
        log.info("Watch service stopped")


def build_service(cfg: WatchConfig) -> WatchService:
    repository = PatternRepository(cfg.pattern_directory)
    fetcher = TileFetcher(base_url=cfg.tile_base_url, timeout=cfg.tile_timeout)
    dispatcher = WebhookDispatcher(cfg.webhook_url, template=load_template(cfg.webhook_format))
    return WatchService(cfg, repository, fetcher, dispatcher)


def main() -> None:
    ap = argparse.ArgumentParser(description="Canvas watch - pattern defacement alerts")
    ap.add_argument("--config", default=None, help="YAML config (default: $CONFIG_FILE or config/params.yaml)")
    ap.add_argument("--once", action="store_true", help="Refresh patterns, run a single cycle and exit")
    args = ap.parse_args()

    cfg = load_config(args.config)
    setup_logging(cfg.log_level, force=True)
    service = build_service(cfg)

    if args.once:
        service.refresh_patterns()
        service.run_cycle()
        return

    service.start()
    try:
        if cfg.status_api.enabled:
            uvicorn.run(create_app(service), host=cfg.status_api.host, port=cfg.status_api.port)
        else:
            while True:
                time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()


if __name__ == "__main__":
    main()
