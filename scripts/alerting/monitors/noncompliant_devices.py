"""Non-compliant devices monitor."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from scripts.alerting.base_monitor import BaseMonitor
from scripts.alerting.models import Entity, FetchResult

logger = logging.getLogger("alerting.noncompliant_devices")

NONCOMPLIANT_STATES = frozenset({"noncompliant", "error", "conflict", "ingraceperiod"})

SELECT_FIELDS = [
    "id", "deviceName", "userPrincipalName", "operatingSystem", "complianceState",
]


class NoncompliantDevicesMonitor(BaseMonitor):
    CHANNEL_KEY = "noncompliant_devices"
    TITLE = "Non-compliant devices"

    def collect(self) -> FetchResult:
        logger.info("Fetching managed devices")
        return self.fetcher.fetch(
            self._url("v1.0", "deviceManagement/managedDevices"),
            params={"$select": ",".join(SELECT_FIELDS)},
        )

    def classify(self, entities: Sequence[Entity], now: datetime) -> list[Entity]:
        flagged: list[Entity] = []
        for e in entities:
            state = str(e.get("complianceState") or "").lower()
            if state not in NONCOMPLIANT_STATES:
                continue
            name = e.get("deviceName") or e.id
            flagged.append(self._annotate(
                e,
                summary=f"{name} ({e.get('operatingSystem') or 'unknown OS'}): {state}",
            ))
        return flagged
