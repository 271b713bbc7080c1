"""Webhook notifier: POSTs the alert as JSON."""

from __future__ import annotations

from typing import Any, Optional

import requests

from scripts.alerting.errors import NotifyError
from scripts.alerting.notify.base import AlertMessage, Notifier
from scripts.alerting.notify.formatter import format_body, format_subject


class WebhookNotifier(Notifier):
    CHANNEL = "webhook"

    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._url = url
        self._session = session or requests.Session()
        self._timeout = timeout_seconds

    def build_payload(self, message: AlertMessage) -> dict[str, Any]:
        decision = message.decision
        return {
            "title": format_subject(message),
            "text": format_body(message),
            "channel": message.channel_key,
            "reason": decision.reason.value,
            "reasons": [r.value for r in decision.reasons],
            "urgent": decision.urgent,
            "entity_ids": decision.entity_ids,
            "generated_at": message.generated_at.isoformat(),
        }

    def send(self, message: AlertMessage) -> None:
        try:
            resp = self._session.post(
                self._url, json=self.build_payload(message), timeout=self._timeout
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise NotifyError(f"Webhook delivery failed: {exc}") from exc
