import pytest

from scripts.alerting import config as config_module
from scripts.alerting.config import load_config


REQUIRED = {
    "GRAPH_TENANT_ID": "tenant",
    "GRAPH_CLIENT_ID": "client",
    "GRAPH_CLIENT_SECRET": "secret",
}

OPTIONAL = [
    "GRAPH_BASE_URL", "STATE_BACKEND", "STATE_DIR", "SMTP_HOST", "ALERT_RECIPIENTS",
    "SMTP_PASSWORD", "SMTP_USERNAME", "ALERT_FROM", "ALERT_WEBHOOK_URL",
    "FETCH_PAGE_DELAY_MS", "FETCH_RATE_LIMIT_BACKOFF_S", "FETCH_RATE_LIMIT_MAX_RETRIES",
    "ESCALATION_THRESHOLD_HOURS", "FORCE_NOTIFICATION", "DATABASE_URL",
]


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config_module, "load_dotenv", lambda: None)
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env) -> None:  # noqa: ANN001
    config = load_config()

    assert config.graph.tenant_id == "tenant"
    assert config.graph.base_url == "https://graph.microsoft.com"
    assert config.fetch.page_delay_seconds == pytest.approx(0.1)
    assert config.fetch.rate_limit_backoff_seconds == 60.0
    assert config.fetch.max_rate_limit_retries is None
    assert config.state.backend == "file"
    assert config.policy.escalation_threshold_hours == 72.0
    assert config.email is None
    assert config.webhook is None


def test_missing_credentials_are_reported(env) -> None:  # noqa: ANN001
    env.delenv("GRAPH_CLIENT_SECRET")
    env.delenv("GRAPH_TENANT_ID")

    with pytest.raises(ValueError, match="GRAPH_TENANT_ID, GRAPH_CLIENT_SECRET"):
        load_config()


def test_fetch_and_policy_overrides(env) -> None:  # noqa: ANN001
    env.setenv("FETCH_PAGE_DELAY_MS", "250")
    env.setenv("FETCH_RATE_LIMIT_MAX_RETRIES", "5")
    env.setenv("ESCALATION_THRESHOLD_HOURS", "48")
    env.setenv("FORCE_NOTIFICATION", "true")
    env.setenv("GRAPH_BASE_URL", "https://graph.example/")

    config = load_config()

    assert config.fetch.page_delay_seconds == pytest.approx(0.25)
    assert config.fetch.max_rate_limit_retries == 5
    assert config.policy.escalation_threshold_hours == 48.0
    assert config.policy.force_notification is True
    assert config.graph.base_url == "https://graph.example"


def test_email_and_webhook_notifiers(env) -> None:  # noqa: ANN001
    env.setenv("SMTP_HOST", "smtp.example")
    env.setenv("ALERT_RECIPIENTS", "a@example, b@example,")
    env.setenv("SMTP_USERNAME", "bot@example")
    env.setenv("SMTP_PASSWORD", "pw")
    env.setenv("ALERT_WEBHOOK_URL", "https://hooks.example/x")

    config = load_config()

    assert config.email.recipients == ["a@example", "b@example"]
    assert config.email.sender == "bot@example"
    assert config.email.password == "pw"
    assert config.webhook.url == "https://hooks.example/x"


def test_secret_references_are_resolved(env) -> None:  # noqa: ANN001
    env.setenv("GRAPH_CLIENT_SECRET", "aws-secret://graph#client_secret")
    env.setattr(config_module, "resolve_secret", lambda v: "resolved" if v.startswith("aws-secret://") else v)

    assert load_config().graph.client_secret == "resolved"


def test_unknown_state_backend(env) -> None:  # noqa: ANN001
    env.setenv("STATE_BACKEND", "redis")
    with pytest.raises(ValueError, match="STATE_BACKEND"):
        load_config()


def test_postgres_backend_builds_database_config(env) -> None:  # noqa: ANN001
    env.setenv("STATE_BACKEND", "postgres")
    env.setenv("DATABASE_URL", "postgresql://u:p@db/alerts")

    config = load_config()

    assert config.state.database.url == "postgresql://u:p@db/alerts"


def test_parse_reference() -> None:
    from scripts.alerting.secrets import SecretRef, parse_reference

    assert parse_reference("plain-value") is None
    assert parse_reference("https://hooks.example/x") is None
    assert parse_reference("aws-secret://graph#client_secret") == SecretRef(
        "aws-secret", "graph", "client_secret",
    )
    assert parse_reference("gcp-secret://smtp") == SecretRef("gcp-secret", "smtp", None)


def test_aws_reference_reads_json_field_once(monkeypatch: pytest.MonkeyPatch) -> None:
    from scripts.alerting import secrets

    calls = []

    def fake_secret_string(name):  # noqa: ANN001
        calls.append(name)
        return '{"client_secret": "s3cr3t"}'

    secrets._fetch.cache_clear()
    monkeypatch.setattr(secrets, "_aws_secret_string", fake_secret_string)

    assert secrets.resolve_secret("aws-secret://graph-app#client_secret") == "s3cr3t"
    assert secrets.resolve_secret("aws-secret://graph-app#client_secret") == "s3cr3t"
    assert calls == ["graph-app"]
    secrets._fetch.cache_clear()
