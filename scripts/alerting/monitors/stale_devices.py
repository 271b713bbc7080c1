"""Stale devices monitor: managed devices that have not checked in for a while."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from scripts.alerting.base_monitor import BaseMonitor
from scripts.alerting.models import Entity, FetchResult, hours_between, parse_timestamp

logger = logging.getLogger("alerting.stale_devices")

SELECT_FIELDS = [
    "id", "deviceName", "userPrincipalName", "operatingSystem",
    "serialNumber", "lastSyncDateTime",
]


class StaleDevicesMonitor(BaseMonitor):
    CHANNEL_KEY = "stale_devices"
    TITLE = "Stale managed devices"

    def collect(self) -> FetchResult:
        logger.info("Fetching managed devices")
        return self.fetcher.fetch(
            self._url("v1.0", "deviceManagement/managedDevices"),
            params={"$select": ",".join(SELECT_FIELDS)},
        )

    def classify(self, entities: Sequence[Entity], now: datetime) -> list[Entity]:
        cutoff_hours = self.config.policy.stale_device_days * 24
        stale: list[Entity] = []
        for e in entities:
            last_sync = parse_timestamp(e.get("lastSyncDateTime"))
            if last_sync is None:
                continue
            idle_hours = hours_between(last_sync, now)
            if idle_hours < cutoff_hours:
                continue
            days = int(idle_hours // 24)
            name = e.get("deviceName") or e.id
            user = e.get("userPrincipalName") or "no user"
            stale.append(self._annotate(
                e,
                daysSinceSync=days,
                summary=f"{name} ({user}) last synced {days} days ago",
            ))
        logger.info("%d of %d devices are stale", len(stale), len(entities))
        return stale
