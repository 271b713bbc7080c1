"""Pending approvals monitor: multi-admin approval requests waiting for a decision.

Requests age while they wait. The gate escalates (alerts again) once a
request has waited longer than the escalation threshold, and marks the
alert urgent past the urgent threshold.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from scripts.alerting.base_monitor import BaseMonitor
from scripts.alerting.models import Entity, FetchResult, hours_between, parse_timestamp

logger = logging.getLogger("alerting.pending_approvals")

PENDING_STATUS = "needsapproval"


class PendingApprovalsMonitor(BaseMonitor):
    CHANNEL_KEY = "pending_approvals"
    TITLE = "Pending approval requests"

    def collect(self) -> FetchResult:
        logger.info("Fetching operation approval requests")
        return self.fetcher.fetch(
            self._url("beta", "deviceManagement/operationApprovalRequests"),
        )

    def classify(self, entities: Sequence[Entity], now: datetime) -> list[Entity]:
        pending: list[Entity] = []
        for e in entities:
            if str(e.get("status") or "").lower() != PENDING_STATUS:
                continue
            requested = parse_timestamp(e.get("requestDateTime"))
            age = hours_between(requested, now) if requested else None
            requestor = (
                ((e.get("requestor") or {}).get("user") or {}).get("displayName")
                or "unknown requestor"
            )
            justification = e.get("requestJustification") or "no justification"
            entity = self._annotate(
                e, summary=f"{requestor}: {justification}",
            )
            pending.append(entity.with_age(age))
        return pending
