from __future__ import annotations

"""
Read-only status API for a running watch service.

    GET /health    -> liveness + counts
    GET /patterns  -> per-pattern error count, last notification, verified flag
"""

from typing import TYPE_CHECKING

from fastapi import FastAPI, HTTPException

if TYPE_CHECKING:  # pragma: no cover
    from watcher.service import WatchService


def create_app(service: "WatchService") -> FastAPI:
    app = FastAPI(title="Canvas Watch Status API", version="1.0.0")

    @app.get("/health")
    def health():
        st = service.status()
        rows = st["patterns"]
        return {
            "status": "ok",
            "patterns": len(rows),
            "defaced": sum(1 for r in rows if r["errors"]),
            "unverified": sum(1 for r in rows if r["verified"] is False),
            "last_cycle": st["last_cycle"],
            "cycles": st["cycles"],
        }

    @app.get("/patterns")
    def patterns():
        return {"patterns": service.status()["patterns"]}

    @app.get("/patterns/{name}")
    def pattern(name: str):
        for row in service.status()["patterns"]:
            if row["name"] == name:
                return row
        raise HTTPException(status_code=404, detail="pattern_not_found")

    return app
