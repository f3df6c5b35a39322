from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from common.types import NotifyDecision, PatternIdentity, PatternState


ESCALATION = "escalation"
RESTORED = "restored"
REMINDER = "reminder"


class DefacementTracker:
    """
    Turns per-cycle error counts into notify / no-notify decisions.

    Per identity the pattern is clean (last count 0), newly defaced (count went
    up) or steadily defaced (already notified). Those states are derived from
    (before, current, now, last_defaced_at) on every call, not stored.

    Not thread-safe; owned by the single service worker.
    """

    def __init__(self, remind_interval: timedelta):
        if remind_interval <= timedelta(0):
            raise ValueError("remind_interval must be > 0")
        self.remind_interval = remind_interval
        self._states: Dict[PatternIdentity, PatternState] = {}

    def reconcile(self, identity: PatternIdentity, current_errors: int, now: datetime) -> Optional[NotifyDecision]:
        current_errors = max(0, int(current_errors))
        state = self._states.get(identity)
        if state is None:
            state = PatternState(last_error_count=0, last_defaced_at=now)
            self._states[identity] = state

        before = state.last_error_count
        reason: Optional[str] = None
        if current_errors > before:
            reason = ESCALATION
        elif current_errors == 0 and before != 0:
            reason = RESTORED
        elif current_errors > 0 and now >= state.last_defaced_at + self.remind_interval:
            reason = REMINDER

        state.last_error_count = current_errors
        if reason is None:
            return None

        state.last_defaced_at = now
        return NotifyDecision(
            identity=identity,
            errors_before=before,
            errors_now=current_errors,
            defaced_since=state.last_defaced_at,
            reason=reason,
        )

    def retain(self, identities: Iterable[PatternIdentity]) -> int:
        """Drop state for identities no longer active. Returns how many were dropped."""
        keep = set(identities)
        gone = [i for i in self._states if i not in keep]
        for i in gone:
            del self._states[i]
        return len(gone)

    def state(self, identity: PatternIdentity) -> Optional[PatternState]:
        return self._states.get(identity)

    def snapshot(self) -> Dict[PatternIdentity, PatternState]:
        return {k: PatternState(v.last_error_count, v.last_defaced_at) for k, v in self._states.items()}

    def __len__(self) -> int:
        return len(self._states)
