"""Database helpers: connection pool, transactions, notification_state rows."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool

from scripts.alerting.config import DatabaseConfig

logger = logging.getLogger("alerting.db")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS notification_state (
    channel_key       TEXT PRIMARY KEY,
    notified_ids      JSONB NOT NULL DEFAULT '[]'::jsonb,
    last_run          TIMESTAMPTZ,
    last_notification TIMESTAMPTZ,
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


class Database:
    """Thin wrapper around a ThreadedConnectionPool with state helpers."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=config.min_connections,
            maxconn=config.max_connections,
            dsn=config.url,
        )

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Generator:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator:
        """Yield a cursor inside an auto-commit/rollback transaction."""
        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def ensure_schema(self) -> None:
        with self.transaction() as cur:
            cur.execute(SCHEMA_SQL)

    # ------------------------------------------------------------------
    # Notification state
    # ------------------------------------------------------------------

    def get_state_row(self, channel_key: str) -> Optional[dict[str, Any]]:
        """Fetch the notification_state row for a channel, or None."""
        with self.transaction() as cur:
            cur.execute(
                """SELECT channel_key, notified_ids, last_run, last_notification
                   FROM notification_state
                   WHERE channel_key = %s""",
                (channel_key,),
            )
            row = cur.fetchone()
            if row is None:
                return None
            cols = [d[0] for d in cur.description]
            return dict(zip(cols, row))

    def upsert_state_row(
        self,
        channel_key: str,
        notified_ids: list[str],
        last_run: Optional[Any],
        last_notification: Optional[Any],
    ) -> None:
        """Insert or replace the notification_state row for a channel."""
        with self.transaction() as cur:
            cur.execute(
                """INSERT INTO notification_state
                   (channel_key, notified_ids, last_run, last_notification)
                   VALUES (%s, %s, %s, %s)
                   ON CONFLICT (channel_key) DO UPDATE SET
                       notified_ids = EXCLUDED.notified_ids,
                       last_run = EXCLUDED.last_run,
                       last_notification = EXCLUDED.last_notification,
                       updated_at = NOW()""",
                (
                    channel_key,
                    psycopg2.extras.Json(notified_ids),
                    last_run,
                    last_notification,
                ),
            )

    def list_channel_keys(self) -> list[str]:
        with self.transaction() as cur:
            cur.execute("SELECT channel_key FROM notification_state ORDER BY channel_key")
            return [row[0] for row in cur.fetchall()]
