import json
from dataclasses import dataclass, field
from datetime import datetime, timezone

import requests

from scripts.alerting.config import AlertingConfig, GraphConfig, PolicyConfig
from scripts.alerting.fetcher import PagedFetcher
from scripts.alerting.models import AlertReason
from scripts.alerting.monitors.apple_tokens import AppleTokensMonitor
from scripts.alerting.monitors.noncompliant_devices import NoncompliantDevicesMonitor
from scripts.alerting.monitors.pending_approvals import PendingApprovalsMonitor
from scripts.alerting.monitors.stale_devices import StaleDevicesMonitor
from scripts.alerting.notify.base import Notifier
from scripts.alerting.stores.memory import InMemoryStateStore


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
GRAPH = "https://graph.microsoft.com"
DEVICES = f"{GRAPH}/v1.0/deviceManagement/managedDevices"
APPROVALS = f"{GRAPH}/beta/deviceManagement/operationApprovalRequests"
APNS = f"{GRAPH}/v1.0/deviceManagement/applePushNotificationCertificate"
VPP = f"{GRAPH}/v1.0/deviceAppManagement/vppTokens"
DEP = f"{GRAPH}/beta/deviceManagement/depOnboardingSettings"


def make_response(payload, status=200):
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(payload).encode("utf-8")
    resp.encoding = "utf-8"
    return resp


@dataclass
class FakeSession:
    """Returns a fixed response per URL, ignoring query params."""

    responses: dict
    calls: list = field(default_factory=list)

    def get(self, url, params=None, timeout=None):  # noqa: ANN001
        self.calls.append(url)
        return self.responses[url]


class RecordingNotifier(Notifier):
    CHANNEL = "recording"

    def __init__(self) -> None:
        self.sent = []

    def send(self, message):  # noqa: ANN001
        self.sent.append(message)


def build(monitor_cls, responses, policy=None, store=None):
    config = AlertingConfig(
        graph=GraphConfig(tenant_id="t", client_id="c", client_secret="s"),
        policy=policy or PolicyConfig(),
    )
    session = FakeSession(responses=responses)
    fetcher = PagedFetcher(session, sleep=lambda s: None)
    notifier = RecordingNotifier()
    store = store or InMemoryStateStore()
    monitor = monitor_cls(config, fetcher, store, notifier, clock=lambda: NOW)
    return monitor, notifier, store, session


DEVICE_PAGE = {
    "value": [
        {"id": "d1", "deviceName": "mac-old", "userPrincipalName": "a@corp",
         "lastSyncDateTime": "2026-01-01T08:00:00.1234567Z", "complianceState": "compliant"},
        {"id": "d2", "deviceName": "mac-new", "userPrincipalName": "b@corp",
         "lastSyncDateTime": "2026-03-01T08:00:00Z", "complianceState": "noncompliant"},
        {"id": "d3", "deviceName": "win-grace", "operatingSystem": "Windows",
         "lastSyncDateTime": "2026-03-02T08:00:00Z", "complianceState": "inGracePeriod"},
    ]
}


def test_stale_devices_alerts_once_then_suppresses() -> None:
    monitor, notifier, store, _ = build(StaleDevicesMonitor, {DEVICES: make_response(DEVICE_PAGE)})

    first = monitor.run()
    assert first.sent
    assert first.fetched == 3
    assert first.relevant == 1
    entity = notifier.sent[0].decision.entities_to_report[0]
    assert entity.id == "d1"
    assert entity.get("daysSinceSync") == 60
    assert store.read("stale_devices").notified_ids == {"d1"}

    second = monitor.run()
    assert not second.sent
    assert len(notifier.sent) == 1


def test_force_sends_unchanged_snapshot() -> None:
    monitor, notifier, _, _ = build(StaleDevicesMonitor, {DEVICES: make_response(DEVICE_PAGE)})
    monitor.run()

    report = monitor.run(force=True)

    assert report.sent
    assert report.outcome.decision.reason is AlertReason.FORCED
    assert len(notifier.sent) == 2


def test_noncompliant_devices_classification() -> None:
    monitor, notifier, _, _ = build(NoncompliantDevicesMonitor, {DEVICES: make_response(DEVICE_PAGE)})

    monitor.run()

    ids = notifier.sent[0].decision.entity_ids
    assert ids == ["d2", "d3"]


APPROVAL_PAGE = {
    "value": [
        {"id": "r1", "status": "needsApproval", "requestDateTime": "2026-02-26T09:00:00Z",
         "requestJustification": "wipe lost laptop",
         "requestor": {"user": {"displayName": "Alex"}}},
        {"id": "r2", "status": "approved", "requestDateTime": "2026-02-20T09:00:00Z"},
        {"id": "r3", "status": "needsApproval", "requestDateTime": "2026-03-02T07:00:00Z"},
    ]
}


def test_pending_approvals_escalate_after_threshold() -> None:
    monitor, notifier, store, _ = build(
        PendingApprovalsMonitor, {APPROVALS: make_response(APPROVAL_PAGE)},
    )

    first = monitor.run()
    assert first.outcome.decision.reason is AlertReason.NEW_ENTITIES
    assert first.outcome.decision.urgent is True
    ages = {e.id: e.age_hours for e in notifier.sent[0].decision.entities_to_report}
    assert ages == {"r1": 96.0, "r3": 2.0}

    # r1 is already notified but has waited past the 72h escalation threshold
    second = monitor.run()
    assert second.sent
    assert second.outcome.decision.reason is AlertReason.ESCALATION_CROSSED


def test_pending_approvals_below_threshold_are_not_repeated() -> None:
    page = {"value": [APPROVAL_PAGE["value"][2]]}
    monitor, notifier, _, _ = build(PendingApprovalsMonitor, {APPROVALS: make_response(page)})

    monitor.run()
    second = monitor.run()

    assert not second.sent
    assert len(notifier.sent) == 1


def test_apple_tokens_expiring_soon_and_prefixed_ids() -> None:
    responses = {
        APNS: make_response({"id": "apns-1", "appleIdentifier": "mdm@corp",
                             "expirationDateTime": "2026-03-06T00:00:00Z"}),
        VPP: make_response({"value": [
            {"id": "v1", "organizationName": "Corp", "expirationDateTime": "2026-03-20T00:00:00Z"},
            {"id": "v2", "organizationName": "Other", "expirationDateTime": "2027-01-01T00:00:00Z"},
        ]}),
        DEP: make_response({"value": [
            {"id": "d1", "tokenName": "ABM", "tokenExpirationDateTime": "2026-02-01T00:00:00Z"},
        ]}),
    }
    monitor, notifier, store, _ = build(AppleTokensMonitor, responses)

    first = monitor.run()
    decision = first.outcome.decision
    assert decision.entity_ids == ["apns:apns-1", "vpp:v1", "dep:d1"]
    assert AlertReason.EXPIRING_SOON in decision.reasons
    summaries = [e.get("summary") for e in decision.entities_to_report]
    assert summaries[2] == "DEP token ABM expired on 2026-02-01"

    # Still within the critical window: alert again even though nothing is new
    second = monitor.run()
    assert second.outcome.decision.reason is AlertReason.EXPIRING_SOON


def test_apple_tokens_outside_critical_window_only_alert_when_new() -> None:
    responses = {
        APNS: make_response({"id": "apns-1", "expirationDateTime": "2026-03-25T00:00:00Z"}),
        VPP: make_response({"value": []}),
        DEP: make_response({"value": []}),
    }
    monitor, notifier, _, _ = build(AppleTokensMonitor, responses)

    assert monitor.run().sent
    assert not monitor.run().sent


def test_partial_fetch_keeps_previously_notified_ids() -> None:
    monitor, notifier, store, _ = build(StaleDevicesMonitor, {DEVICES: make_response(DEVICE_PAGE)})
    monitor.run()

    failing_first_page = {
        "value": [
            {"id": "d9", "deviceName": "mac-9", "lastSyncDateTime": "2025-12-01T00:00:00Z"},
        ],
        "@odata.nextLink": f"{DEVICES}?$skiptoken=2",
    }
    session = monitor.fetcher.session
    session.responses[DEVICES] = make_response(failing_first_page)
    session.responses[f"{DEVICES}?$skiptoken=2"] = make_response({"error": {}}, status=500)

    report = monitor.run()

    assert not report.complete
    assert report.sent
    assert store.read("stale_devices").notified_ids == {"d1", "d9"}
