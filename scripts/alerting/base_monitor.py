"""Abstract base class for all monitors."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Sequence

from scripts.alerting.base_store import StateStore
from scripts.alerting.config import AlertingConfig
from scripts.alerting.fetcher import PagedFetcher
from scripts.alerting.gate import GateOutcome, NotificationGate
from scripts.alerting.models import Entity, EscalationPolicy, FetchResult, utc_now
from scripts.alerting.notify.base import Notifier

logger = logging.getLogger("alerting.monitor")


@dataclass(frozen=True)
class MonitorReport:
    channel_key: str
    fetched: int
    relevant: int
    complete: bool
    outcome: GateOutcome
    duration_s: float

    @property
    def sent(self) -> bool:
        return self.outcome.sent


class BaseMonitor(ABC):
    """Each monitor overrides collect() and classify() and declares CHANNEL_KEY.

    A run is: read state, fetch, classify, hand the relevant entities to the
    notification gate. A partial fetch is logged and the run carries on with
    what arrived.
    """

    CHANNEL_KEY: str = ""
    TITLE: str = ""

    def __init__(
        self,
        config: AlertingConfig,
        fetcher: PagedFetcher,
        store: StateStore,
        notifier: Notifier,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.store = store
        self.notifier = notifier
        self._clock = clock
        self.gate = NotificationGate(
            store, self.CHANNEL_KEY, title=self.TITLE or self.CHANNEL_KEY, clock=clock,
        )

    @abstractmethod
    def collect(self) -> FetchResult:
        """Fetch the raw entities this monitor looks at."""

    @abstractmethod
    def classify(self, entities: Sequence[Entity], now: datetime) -> list[Entity]:
        """Keep the entities worth alerting on."""

    def policy(self, entities: Sequence[Entity], now: datetime) -> EscalationPolicy:
        p = self.config.policy
        return EscalationPolicy(
            urgent_threshold_hours=p.urgent_threshold_hours,
            escalation_threshold_hours=p.escalation_threshold_hours,
            force_notification=p.force_notification,
        )

    def run(self, force: bool = False) -> MonitorReport:
        started = time.monotonic()
        state = self.gate.load_state()

        result = self.collect()
        if not result.complete:
            logger.warning(
                "Continuing with partial data: %s", result.error,
                extra={"monitor": self.CHANNEL_KEY, "entities": len(result)},
            )

        now = self._clock()
        relevant = self.classify(result.entities, now)
        policy = self.policy(relevant, now)
        if force:
            policy = replace(policy, force_notification=True)

        outcome = self.gate.process(
            relevant, policy, self.notifier, state=state, complete=result.complete,
        )
        report = MonitorReport(
            channel_key=self.CHANNEL_KEY,
            fetched=len(result),
            relevant=len(relevant),
            complete=result.complete,
            outcome=outcome,
            duration_s=round(time.monotonic() - started, 3),
        )
        logger.info(
            "Monitor run complete",
            extra={
                "monitor": self.CHANNEL_KEY,
                "entities": report.relevant,
                "reason": outcome.decision.reason.value,
                "duration_s": report.duration_s,
            },
        )
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _url(self, version: str, path: str) -> str:
        return f"{self.config.graph.base_url}/{version}/{path.lstrip('/')}"

    @staticmethod
    def _merge_results(results: Sequence[FetchResult]) -> FetchResult:
        """Concatenate several fetches; the first error (if any) is kept."""
        entities: list[Entity] = []
        error = None
        for r in results:
            entities.extend(r.entities)
            if error is None and r.error is not None:
                error = r.error
        return FetchResult(
            entities=tuple(entities),
            error=error,
            pages=sum(r.pages for r in results),
            requests=sum(r.requests for r in results),
            rate_limit_waits=sum(r.rate_limit_waits for r in results),
        )

    @staticmethod
    def _annotate(entity: Entity, **attributes) -> Entity:
        return replace(entity, attributes={**entity.attributes, **attributes})
