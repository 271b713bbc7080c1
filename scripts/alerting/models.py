"""Core data types: entities, pages, fetch results, notification state and decisions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

if TYPE_CHECKING:
    from scripts.alerting.errors import FetchError

_FRACTION_RE = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by Graph.

    Handles a trailing ``Z`` and the 7-digit fractional seconds Graph emits.
    Naive values are taken as UTC. Empty or unparsable input returns None.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


@dataclass(frozen=True)
class Entity:
    """One record from a collection endpoint.

    ``id`` must be stable across runs for the same underlying object.
    ``age_hours`` is the aging metric the escalation threshold is compared
    against; classifiers fill it in where the domain has one.
    """

    id: str
    attributes: Mapping[str, Any] = field(default_factory=dict, compare=False)
    age_hours: Optional[float] = field(default=None, compare=False)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def with_age(self, age_hours: Optional[float]) -> Entity:
        return replace(self, age_hours=age_hours)


@dataclass(frozen=True)
class Page:
    entities: tuple[Entity, ...]
    next_cursor: Optional[str] = None

    @property
    def is_last(self) -> bool:
        return not self.next_cursor


@dataclass(frozen=True)
class FetchResult:
    """All entities of one logical query, in page arrival order.

    When ``error`` is set the fetch stopped early and ``entities`` holds
    only what arrived before the failure.
    """

    entities: tuple[Entity, ...]
    error: Optional[FetchError] = None
    pages: int = 0
    requests: int = 0
    rate_limit_waits: int = 0

    @property
    def complete(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def __len__(self) -> int:
        return len(self.entities)

    def __iter__(self):
        return iter(self.entities)


@dataclass(frozen=True)
class NotificationState:
    notified_ids: frozenset[str] = frozenset()
    last_run: Optional[datetime] = None
    last_notification: Optional[datetime] = None

    @classmethod
    def empty(cls) -> NotificationState:
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "notified_ids": sorted(self.notified_ids),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_notification": (
                self.last_notification.isoformat() if self.last_notification else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NotificationState:
        """Build a state from its serialized form. Raises ValueError/TypeError on bad shape."""
        if not isinstance(data, Mapping):
            raise TypeError(f"Expected object, got {type(data).__name__}")
        ids = data.get("notified_ids", [])
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise ValueError("notified_ids must be a list of strings")
        return cls(
            notified_ids=frozenset(ids),
            last_run=_parse_optional(data.get("last_run"), "last_run"),
            last_notification=_parse_optional(
                data.get("last_notification"), "last_notification"
            ),
        )


def _parse_optional(value: Any, name: str) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{name} must be an ISO timestamp")
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"{name} is not a valid timestamp: {value!r}")
    return parsed


class AlertReason(str, Enum):
    """Why an alert is sent. Declaration order is priority order."""

    NEW_ENTITIES = "new_entities"
    ESCALATION_CROSSED = "escalation_crossed"
    EXPIRING_SOON = "expiring_soon"
    FORCED = "forced"
    NONE = "none"


@dataclass(frozen=True)
class EscalationPolicy:
    urgent_threshold_hours: float = 24.0
    escalation_threshold_hours: float = 72.0
    force_notification: bool = False
    # Secondary trigger computed by the caller over the whole entity set.
    expiring_soon: bool = False


@dataclass(frozen=True)
class AlertDecision:
    should_send: bool
    reason: AlertReason
    reasons: tuple[AlertReason, ...] = ()
    entities_to_report: tuple[Entity, ...] = ()
    urgent: bool = False

    @classmethod
    def suppress(cls) -> AlertDecision:
        return cls(should_send=False, reason=AlertReason.NONE)

    @property
    def entity_ids(self) -> list[str]:
        return [e.id for e in self.entities_to_report]


def entity_ids(entities: Sequence[Entity]) -> frozenset[str]:
    return frozenset(e.id for e in entities)
