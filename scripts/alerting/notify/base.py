"""Notifier interface and the message handed to it."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from scripts.alerting.errors import NotifyError
from scripts.alerting.models import AlertDecision

logger = logging.getLogger("alerting.notify")


@dataclass(frozen=True)
class AlertMessage:
    channel_key: str
    title: str
    decision: AlertDecision
    generated_at: datetime


class Notifier(ABC):
    """Delivers an AlertMessage. ``send`` raises on any delivery failure."""

    CHANNEL: str = ""

    @abstractmethod
    def send(self, message: AlertMessage) -> None:
        """Compose and transmit the alert."""


class FanoutNotifier(Notifier):
    """Sends to every wrapped notifier; fails if any of them failed.

    All notifiers are attempted even after a failure. Because the gate only
    records a send that succeeded everywhere, a partial failure means the
    next run alerts every channel again.
    """

    CHANNEL = "fanout"

    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self.notifiers = tuple(notifiers)

    def send(self, message: AlertMessage) -> None:
        if not self.notifiers:
            raise NotifyError("No notifiers configured")
        failures: list[str] = []
        for notifier in self.notifiers:
            try:
                notifier.send(message)
            except Exception as exc:
                logger.error(
                    "Notifier %s failed: %s", notifier.CHANNEL, exc,
                    extra={"channel": message.channel_key},
                )
                failures.append(f"{notifier.CHANNEL}: {exc}")
        if failures:
            raise NotifyError("; ".join(failures))
