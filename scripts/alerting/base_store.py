"""Abstract base class for notification state stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from scripts.alerting.models import NotificationState


class StateStore(ABC):
    """Persists one NotificationState per alert channel.

    ``read`` returns None when the channel has never been written and raises
    StateCorruptionError when stored data cannot be parsed. ``write`` raises
    StatePersistenceError when the state cannot be saved.
    """

    BACKEND_NAME: str = ""

    @abstractmethod
    def read(self, channel_key: str) -> Optional[NotificationState]:
        """Load the state for ``channel_key``."""

    @abstractmethod
    def write(self, channel_key: str, state: NotificationState) -> None:
        """Replace the state for ``channel_key``."""

    def channels(self) -> list[str]:
        """Channel keys with stored state, if the backend can list them."""
        return []

    def close(self) -> None:
        pass
