"""Plain-text subject and body for alert messages."""

from __future__ import annotations

from scripts.alerting.models import AlertReason, Entity
from scripts.alerting.notify.base import AlertMessage

REASON_LABELS = {
    AlertReason.NEW_ENTITIES: "new items",
    AlertReason.ESCALATION_CROSSED: "escalation threshold crossed",
    AlertReason.EXPIRING_SOON: "expiring soon",
    AlertReason.FORCED: "scheduled report",
    AlertReason.NONE: "no change",
}

_NAME_KEYS = ("summary", "displayName", "deviceName", "organizationName", "name")


def describe_entity(entity: Entity) -> str:
    for key in _NAME_KEYS:
        value = entity.get(key)
        if value:
            text = str(value)
            break
    else:
        text = entity.id
    if entity.age_hours is not None:
        text += f" (age {entity.age_hours:.1f}h)"
    return text


def format_subject(message: AlertMessage) -> str:
    decision = message.decision
    count = len(decision.entities_to_report)
    noun = "item" if count == 1 else "items"
    subject = f"{message.title}: {count} {noun} - {REASON_LABELS[decision.reason]}"
    if decision.urgent:
        subject = "[URGENT] " + subject
    return subject


def format_body(message: AlertMessage) -> str:
    decision = message.decision
    reasons = ", ".join(REASON_LABELS[r] for r in decision.reasons) or "-"
    lines = [
        message.title,
        f"channel: {message.channel_key}",
        f"generated_at: {message.generated_at.isoformat()}",
        f"reasons: {reasons}",
        f"count: {len(decision.entities_to_report)}",
        "",
    ]
    for entity in decision.entities_to_report:
        lines.append(f"- {describe_entity(entity)} [{entity.id}]")
    return "\n".join(lines)
