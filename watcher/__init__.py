"""
Watcher - defacement detection and alerting

This package provides:
- compare: pixel-level comparison of patterns against fetched tiles
- tracker: per-pattern escalation / restored / reminder decisions
- notify: webhook rendering and best-effort delivery
- service: timers + single worker running refreshes and check cycles
- server: read-only FastAPI status endpoints

Entry point:
    python -m watcher.service --config config/params.yaml
"""
from .compare import compare
from .tracker import DefacementTracker

__all__ = ["compare", "DefacementTracker"]
