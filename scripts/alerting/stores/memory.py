"""In-process state store, used by tests and dry runs."""

from __future__ import annotations

from typing import Optional

from scripts.alerting.base_store import StateStore
from scripts.alerting.models import NotificationState


class InMemoryStateStore(StateStore):
    BACKEND_NAME = "memory"

    def __init__(self, initial: Optional[dict[str, NotificationState]] = None) -> None:
        self._states: dict[str, NotificationState] = dict(initial or {})
        self.writes = 0

    def read(self, channel_key: str) -> Optional[NotificationState]:
        return self._states.get(channel_key)

    def write(self, channel_key: str, state: NotificationState) -> None:
        self._states[channel_key] = state
        self.writes += 1

    def channels(self) -> list[str]:
        return sorted(self._states)
