"""Notification gate: decides whether a snapshot warrants an alert and remembers what was sent.

The gate owns one NotificationState per channel. It is read once at the
start of a run and written once, only after the alert was handed to the
notifier without error. A failed send leaves the state untouched, so the
next run makes the same decision and sends again (at-least-once).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from scripts.alerting.base_store import StateStore
from scripts.alerting.errors import StateCorruptionError, StatePersistenceError
from scripts.alerting.models import (
    AlertDecision,
    AlertReason,
    Entity,
    EscalationPolicy,
    NotificationState,
    entity_ids,
    utc_now,
)
from scripts.alerting.notify.base import AlertMessage, Notifier

logger = logging.getLogger("alerting.gate")


def _crosses(entity: Entity, threshold_hours: float) -> bool:
    return entity.age_hours is not None and entity.age_hours >= threshold_hours


def evaluate_triggers(
    current_entities: Sequence[Entity],
    policy: EscalationPolicy,
    state: NotificationState,
) -> tuple[AlertReason, ...]:
    """Return every reason that holds for this snapshot, highest priority first."""
    reasons: list[AlertReason] = []
    if any(e.id not in state.notified_ids for e in current_entities):
        reasons.append(AlertReason.NEW_ENTITIES)
    if any(_crosses(e, policy.escalation_threshold_hours) for e in current_entities):
        reasons.append(AlertReason.ESCALATION_CROSSED)
    if policy.expiring_soon:
        reasons.append(AlertReason.EXPIRING_SOON)
    if policy.force_notification:
        reasons.append(AlertReason.FORCED)
    return tuple(reasons)


def commit_state(
    state: NotificationState,
    current_entities: Sequence[Entity],
    now: datetime,
    complete: bool = True,
) -> NotificationState:
    """State to persist after a successful send.

    The notified set is replaced by the current snapshot, so an entity that
    drops out and later comes back alerts again. An incomplete snapshot is
    merged instead: missing entities may simply not have been fetched.
    """
    ids = entity_ids(current_entities)
    if not complete:
        ids = ids | state.notified_ids
    return NotificationState(notified_ids=ids, last_run=now, last_notification=now)


def decide(
    current_entities: Sequence[Entity],
    policy: EscalationPolicy,
    state: NotificationState,
    now: Optional[datetime] = None,
    complete: bool = True,
) -> tuple[AlertDecision, NotificationState]:
    """Decide whether to alert.

    Returns the decision and the state to commit once the alert has been
    delivered. When nothing is sent the returned state is ``state`` itself.
    """
    reasons = evaluate_triggers(current_entities, policy, state)
    if not reasons:
        return AlertDecision.suppress(), state

    now = now or utc_now()
    decision = AlertDecision(
        should_send=True,
        reason=reasons[0],
        reasons=reasons,
        entities_to_report=tuple(current_entities),
        urgent=any(_crosses(e, policy.urgent_threshold_hours) for e in current_entities),
    )
    return decision, commit_state(state, current_entities, now, complete=complete)


@dataclass(frozen=True)
class GateOutcome:
    decision: AlertDecision
    sent: bool
    state: NotificationState
    persisted: bool = False
    error: Optional[Exception] = None


class NotificationGate:
    """Binds decide() to a state store, a channel key and a notifier."""

    def __init__(
        self,
        store: StateStore,
        channel_key: str,
        title: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self.channel_key = channel_key
        self.title = title or channel_key
        self._clock = clock

    def load_state(self) -> NotificationState:
        """Read the channel's state. Missing or unreadable state counts as empty."""
        try:
            state = self._store.read(self.channel_key)
        except StateCorruptionError as exc:
            logger.warning(
                "Notification state unreadable, starting empty: %s", exc,
                extra={"channel": self.channel_key},
            )
            return NotificationState.empty()
        if state is None:
            logger.info(
                "No notification state yet, starting empty",
                extra={"channel": self.channel_key},
            )
            return NotificationState.empty()
        return state

    def process(
        self,
        current_entities: Sequence[Entity],
        policy: EscalationPolicy,
        notifier: Notifier,
        state: Optional[NotificationState] = None,
        complete: bool = True,
    ) -> GateOutcome:
        if state is None:
            state = self.load_state()
        now = self._clock()
        decision, pending = decide(current_entities, policy, state, now=now, complete=complete)

        if not decision.should_send:
            logger.info(
                "Nothing new to report",
                extra={"channel": self.channel_key, "entities": len(current_entities)},
            )
            return GateOutcome(decision=decision, sent=False, state=state)

        message = AlertMessage(
            channel_key=self.channel_key,
            title=self.title,
            decision=decision,
            generated_at=now,
        )
        try:
            notifier.send(message)
        except Exception as exc:
            logger.error(
                "Alert dispatch failed, state left unchanged: %s", exc,
                exc_info=True,
                extra={"channel": self.channel_key, "reason": decision.reason.value},
            )
            return GateOutcome(decision=decision, sent=False, state=state, error=exc)

        logger.info(
            "Alert sent",
            extra={
                "channel": self.channel_key,
                "reason": decision.reason.value,
                "entities": len(decision.entities_to_report),
            },
        )
        try:
            self._store.write(self.channel_key, pending)
        except StatePersistenceError as exc:
            # Alert already delivered; the next run may repeat it
            logger.error(
                "Could not save notification state: %s", exc,
                extra={"channel": self.channel_key},
            )
            return GateOutcome(decision=decision, sent=True, state=pending, error=exc)
        return GateOutcome(decision=decision, sent=True, state=pending, persisted=True)
