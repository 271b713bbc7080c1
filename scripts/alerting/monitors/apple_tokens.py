"""Apple tokens monitor: VPP tokens, DEP tokens and the APNs certificate nearing expiry."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from scripts.alerting.base_monitor import BaseMonitor
from scripts.alerting.models import (
    Entity,
    EscalationPolicy,
    FetchResult,
    hours_between,
    parse_timestamp,
)

logger = logging.getLogger("alerting.apple_tokens")

# kind -> (api version, path, expiry field, name field)
TOKEN_SOURCES: dict[str, tuple[str, str, str, str]] = {
    "apns": ("v1.0", "deviceManagement/applePushNotificationCertificate",
             "expirationDateTime", "appleIdentifier"),
    "vpp": ("v1.0", "deviceAppManagement/vppTokens",
            "expirationDateTime", "organizationName"),
    "dep": ("beta", "deviceManagement/depOnboardingSettings",
            "tokenExpirationDateTime", "tokenName"),
}

KIND_LABELS = {
    "apns": "APNs certificate",
    "vpp": "VPP token",
    "dep": "DEP token",
}


class AppleTokensMonitor(BaseMonitor):
    CHANNEL_KEY = "apple_tokens"
    TITLE = "Apple tokens and certificates expiring"

    def collect(self) -> FetchResult:
        results = []
        for kind, (version, path, _, _) in TOKEN_SOURCES.items():
            logger.info("Fetching %s", KIND_LABELS[kind])
            result = self.fetcher.fetch(self._url(version, path))
            tagged = tuple(
                # Prefix ids so tokens of different kinds never collide
                replace(e, id=f"{kind}:{e.id}", attributes={**e.attributes, "kind": kind})
                for e in result.entities
            )
            results.append(replace(result, entities=tagged))
        return self._merge_results(results)

    def classify(self, entities: Sequence[Entity], now: datetime) -> list[Entity]:
        warning_days = self.config.policy.token_warning_days
        expiring: list[Entity] = []
        for e in entities:
            kind = e.get("kind")
            if kind not in TOKEN_SOURCES:
                continue
            _, _, expiry_field, name_field = TOKEN_SOURCES[kind]
            expires = parse_timestamp(e.get(expiry_field))
            if expires is None:
                continue
            days_left = hours_between(now, expires) / 24.0
            if days_left > warning_days:
                continue
            label = f"{KIND_LABELS[kind]} {e.get(name_field) or e.id}"
            if days_left < 0:
                summary = f"{label} expired on {expires.date().isoformat()}"
            else:
                summary = f"{label} expires in {int(days_left)} days ({expires.date().isoformat()})"
            expiring.append(self._annotate(e, daysLeft=days_left, summary=summary))
        return expiring

    def policy(self, entities: Sequence[Entity], now: datetime) -> EscalationPolicy:
        critical_days = self.config.policy.token_critical_days
        base = super().policy(entities, now)
        return replace(
            base,
            expiring_soon=any(e.get("daysLeft", critical_days + 1) <= critical_days for e in entities),
        )
