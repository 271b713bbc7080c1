"""JSON file state store: one document per channel in a directory."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from typing import Optional

from scripts.alerting.base_store import StateStore
from scripts.alerting.errors import StateCorruptionError, StatePersistenceError
from scripts.alerting.models import NotificationState

logger = logging.getLogger("alerting.stores.json_file")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileStateStore(StateStore):
    BACKEND_NAME = "file"

    def __init__(self, directory: str) -> None:
        self._directory = directory

    def path_for(self, channel_key: str) -> str:
        name = _UNSAFE_CHARS.sub("_", channel_key) or "_"
        return os.path.join(self._directory, f"{name}.json")

    def read(self, channel_key: str) -> Optional[NotificationState]:
        path = self.path_for(channel_key)
        try:
            with open(path, "rb") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StateCorruptionError(f"Cannot read {path}: {exc}") from exc

        # Bad encoding and runaway nesting count as corruption too
        try:
            return NotificationState.from_dict(json.loads(raw.decode("utf-8")))
        except (ValueError, TypeError, RecursionError) as exc:
            raise StateCorruptionError(f"Invalid state in {path}: {exc}") from exc

    def write(self, channel_key: str, state: NotificationState) -> None:
        path = self.path_for(channel_key)
        try:
            os.makedirs(self._directory, exist_ok=True)
            # Write to a sibling temp file and rename so readers never see half a document
            fd, tmp_path = tempfile.mkstemp(
                prefix=".state-", suffix=".json", dir=self._directory
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(state.to_dict(), f, indent=2, sort_keys=True)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            raise StatePersistenceError(f"Cannot write {path}: {exc}") from exc
        logger.debug("Wrote state to %s", path, extra={"channel": channel_key})

    def channels(self) -> list[str]:
        try:
            names = os.listdir(self._directory)
        except FileNotFoundError:
            return []
        return sorted(
            n[: -len(".json")]
            for n in names
            if n.endswith(".json") and not n.startswith(".")
        )
