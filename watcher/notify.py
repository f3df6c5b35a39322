from __future__ import annotations

"""
Webhook notifications.

The body is a text template (usually JSON, e.g. a Discord webhook payload) with
`$name` placeholders:

    {"content": "**$pattern_name** ($reason): $errors_before -> $errors wrong pixels"}

Templates are expected to place placeholders inside JSON strings, so every value
is substituted JSON-escaped (quotes, backslashes, control characters); list and
dict metadata values are serialized to JSON first. Unknown placeholders are left
as-is. Delivery is best effort: failures are
logged, never raised and never retried.
"""

import json
import logging
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional

import requests

from common.types import NotifyDecision, Pattern
from common.utils import iso_ms


log = logging.getLogger(__name__)

DEFAULT_TEMPLATE = (
    '{"content": "Pattern **$pattern_name** at tile ($tile_x, $tile_y) pixel ($pos_x, $pos_y): '
    '$errors_before -> $errors wrong pixels ($reason)"}'
)


def _json_escape(value: Any) -> str:
    return json.dumps(str(value), ensure_ascii=False)[1:-1]


def template_vars(decision: NotifyDecision, pattern: Pattern) -> Dict[str, str]:
    ident = decision.identity
    values: Dict[str, Any] = {
        "pattern_name": ident.name,
        "errors": decision.errors_now,
        "errors_before": decision.errors_before,
        "tile_x": ident.anchor_tile.x,
        "tile_y": ident.anchor_tile.y,
        "pos_x": ident.anchor_offset.x,
        "pos_y": ident.anchor_offset.y,
        "reason": decision.reason,
        "defaced_since": iso_ms(decision.defaced_since),
    }
    for key, value in pattern.info.extra.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False)
        values[f"info_{key}"] = value
    return {k: _json_escape(v) for k, v in values.items()}


def render_body(template: str, decision: NotifyDecision, pattern: Pattern) -> str:
    return Template(template).safe_substitute(template_vars(decision, pattern))


def load_template(path: str) -> str:
    p = Path(path)
    if not p.exists():
        log.warning("Webhook template %s not found, using built-in default", path)
        return DEFAULT_TEMPLATE
    return p.read_text()


class WebhookDispatcher:
    def __init__(
        self,
        webhook_url: str,
        template: str = DEFAULT_TEMPLATE,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.webhook_url = webhook_url
        self.template = template
        self.timeout = float(timeout)
        self.session = session or requests.Session()

    def target_for(self, pattern: Pattern) -> str:
        return pattern.info.webhook_url or self.webhook_url

    def dispatch(self, decision: NotifyDecision, pattern: Pattern) -> bool:
        """Send one notification. Returns True on a 2xx answer."""
        url = self.target_for(pattern)
        if not url:
            log.warning("No webhook configured, dropping notification for %s", pattern.name)
            return False

        body = render_body(self.template, decision, pattern)
        log.info(
            "Sending webhook",
            extra={"extra": {"pattern": pattern.name, "reason": decision.reason, "errors": decision.errors_now}},
        )
        try:
            r = self.session.post(
                url,
                data=body.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.error("Unable to send webhook for %s: %s", pattern.name, e)
            return False

        if not 200 <= r.status_code < 300:
            log.error("Webhook rejected for %s: %s %s", pattern.name, r.status_code, r.text[:200])
            return False
        return True
