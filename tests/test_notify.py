from datetime import datetime, timezone

import pytest
import requests

from scripts.alerting.errors import NotifyError
from scripts.alerting.models import AlertDecision, AlertReason, Entity
from scripts.alerting.notify.base import AlertMessage, FanoutNotifier, Notifier
from scripts.alerting.notify.email import EmailNotifier
from scripts.alerting.notify.formatter import describe_entity, format_body, format_subject
from scripts.alerting.notify.webhook import WebhookNotifier


T = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def message(urgent=False, count=2):
    entities = tuple(
        Entity(id=f"id-{n}", attributes={"summary": f"device {n}"}, age_hours=30.0 if urgent else None)
        for n in range(count)
    )
    decision = AlertDecision(
        should_send=True,
        reason=AlertReason.NEW_ENTITIES,
        reasons=(AlertReason.NEW_ENTITIES, AlertReason.FORCED),
        entities_to_report=entities,
        urgent=urgent,
    )
    return AlertMessage(channel_key="stale_devices", title="Stale managed devices",
                        decision=decision, generated_at=T)


def test_subject_counts_items_and_marks_urgent() -> None:
    assert format_subject(message()) == "Stale managed devices: 2 items - new items"
    assert format_subject(message(urgent=True, count=1)).startswith("[URGENT] Stale managed devices: 1 item ")


def test_body_lists_full_snapshot_and_all_reasons() -> None:
    body = format_body(message())
    assert "reasons: new items, scheduled report" in body
    assert "- device 0 [id-0]" in body
    assert "- device 1 [id-1]" in body


def test_describe_entity_falls_back_to_id_and_shows_age() -> None:
    assert describe_entity(Entity(id="abc")) == "abc"
    assert describe_entity(Entity(id="abc", attributes={"deviceName": "mac-1"}, age_hours=2)) == "mac-1 (age 2.0h)"


class FakeSMTP:
    instances: list = []

    def __init__(self, host, port, timeout=None):  # noqa: ANN001
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):  # noqa: ANN001
        return None

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):  # noqa: ANN001
        self.logged_in = (user, password)

    def send_message(self, msg):  # noqa: ANN001
        self.messages.append(msg)


def test_email_notifier_sends_with_tls_login_and_priority(monkeypatch: pytest.MonkeyPatch) -> None:
    FakeSMTP.instances = []
    monkeypatch.setattr("smtplib.SMTP", FakeSMTP)
    notifier = EmailNotifier(
        smtp_host="smtp.example", sender="alerts@example", recipients=["a@example", "b@example"],
        username="alerts@example", password="pw",
    )

    notifier.send(message(urgent=True))

    client = FakeSMTP.instances[0]
    assert (client.host, client.port) == ("smtp.example", 587)
    assert client.started_tls
    assert client.logged_in == ("alerts@example", "pw")
    sent = client.messages[0]
    assert sent["To"] == "a@example, b@example"
    assert sent["X-Priority"] == "1"
    assert sent["Subject"].startswith("[URGENT]")


def test_email_notifier_without_recipients_fails() -> None:
    notifier = EmailNotifier(smtp_host="smtp.example", sender="a@example", recipients=[])
    with pytest.raises(NotifyError):
        notifier.send(message())


class FakePostSession:
    def __init__(self, status: int) -> None:
        self.status = status
        self.posts = []

    def post(self, url, json=None, timeout=None):  # noqa: ANN001
        self.posts.append((url, json))
        resp = requests.Response()
        resp.status_code = self.status
        resp.url = url
        resp._content = b"{}"
        return resp


def test_webhook_notifier_posts_json_payload() -> None:
    session = FakePostSession(200)
    WebhookNotifier("https://hooks.example/abc", session=session).send(message())

    url, payload = session.posts[0]
    assert url == "https://hooks.example/abc"
    assert payload["reason"] == "new_entities"
    assert payload["reasons"] == ["new_entities", "forced"]
    assert payload["entity_ids"] == ["id-0", "id-1"]
    assert payload["channel"] == "stale_devices"


def test_webhook_notifier_http_error_raises_notify_error() -> None:
    with pytest.raises(NotifyError):
        WebhookNotifier("https://hooks.example/abc", session=FakePostSession(502)).send(message())


class _Recorder(Notifier):
    CHANNEL = "rec"

    def __init__(self) -> None:
        self.count = 0

    def send(self, message):  # noqa: ANN001
        self.count += 1


class _Boom(Notifier):
    CHANNEL = "boom"

    def send(self, message):  # noqa: ANN001
        raise RuntimeError("down")


def test_fanout_tries_every_notifier_and_reports_failure() -> None:
    first, last = _Recorder(), _Recorder()
    fanout = FanoutNotifier([first, _Boom(), last])

    with pytest.raises(NotifyError, match="boom: down"):
        fanout.send(message())
    assert first.count == 1
    assert last.count == 1


def test_fanout_without_notifiers_fails() -> None:
    with pytest.raises(NotifyError):
        FanoutNotifier([]).send(message())
