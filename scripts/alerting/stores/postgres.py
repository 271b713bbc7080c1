"""PostgreSQL state store backed by the notification_state table."""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Optional

import psycopg2

from scripts.alerting.base_store import StateStore
from scripts.alerting.db import Database
from scripts.alerting.errors import StateCorruptionError, StatePersistenceError
from scripts.alerting.models import NotificationState

logger = logging.getLogger("alerting.stores.postgres")


class PostgresStateStore(StateStore):
    BACKEND_NAME = "postgres"

    def __init__(self, db: Database, ensure_schema: bool = True) -> None:
        self.db = db
        if ensure_schema:
            self.db.ensure_schema()

    def read(self, channel_key: str) -> Optional[NotificationState]:
        try:
            row = self.db.get_state_row(channel_key)
        except psycopg2.Error as exc:
            raise StateCorruptionError(f"Cannot load state for {channel_key}: {exc}") from exc
        if row is None:
            return None

        ids = row.get("notified_ids")
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise StateCorruptionError(f"notified_ids for {channel_key} is not a list of strings")
        return NotificationState(
            notified_ids=frozenset(ids),
            last_run=_as_utc(row.get("last_run")),
            last_notification=_as_utc(row.get("last_notification")),
        )

    def write(self, channel_key: str, state: NotificationState) -> None:
        try:
            self.db.upsert_state_row(
                channel_key,
                sorted(state.notified_ids),
                state.last_run,
                state.last_notification,
            )
        except psycopg2.Error as exc:
            raise StatePersistenceError(f"Cannot save state for {channel_key}: {exc}") from exc

    def channels(self) -> list[str]:
        return self.db.list_channel_keys()

    def close(self) -> None:
        self.db.close()


def _as_utc(value):
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
