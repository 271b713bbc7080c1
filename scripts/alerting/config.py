"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables (local dev)
  - .env files
  - AWS Secrets Manager (aws-secret://name#key)
  - GCP Secret Manager (gcp-secret://name)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from scripts.alerting.secrets import resolve_database_url, resolve_secret


@dataclass(frozen=True)
class GraphConfig:
    tenant_id: str
    client_id: str
    client_secret: str
    base_url: str = "https://graph.microsoft.com"
    authority: str = "https://login.microsoftonline.com"


@dataclass(frozen=True)
class FetchConfig:
    page_delay_seconds: float = 0.1
    rate_limit_backoff_seconds: float = 60.0
    max_rate_limit_retries: Optional[int] = None  # None = retry until the throttle lifts
    backoff_multiplier: float = 1.0
    max_backoff_seconds: float = 900.0
    jitter_seconds: float = 0.0
    honor_retry_after: bool = False
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    min_connections: int = 1
    max_connections: int = 4


@dataclass(frozen=True)
class StateConfig:
    backend: str = "file"
    directory: str = "./state"
    database: Optional[DatabaseConfig] = None


@dataclass(frozen=True)
class EmailConfig:
    smtp_host: str
    sender: str
    recipients: list[str]
    smtp_port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True


@dataclass(frozen=True)
class WebhookConfig:
    url: str
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class PolicyConfig:
    urgent_threshold_hours: float = 24.0
    escalation_threshold_hours: float = 72.0
    force_notification: bool = False
    stale_device_days: int = 30
    token_warning_days: int = 30
    token_critical_days: int = 7


@dataclass(frozen=True)
class SchedulerConfig:
    stale_devices_interval_min: int = 1440
    noncompliant_devices_interval_min: int = 240
    pending_approvals_interval_min: int = 60
    apple_tokens_interval_min: int = 1440
    misfire_grace_time: int = 300


@dataclass(frozen=True)
class AlertingConfig:
    graph: GraphConfig
    fetch: FetchConfig = field(default_factory=FetchConfig)
    state: StateConfig = field(default_factory=StateConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    email: Optional[EmailConfig] = None
    webhook: Optional[WebhookConfig] = None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else None


def load_config() -> AlertingConfig:
    """Load configuration from environment variables. Unconfigured notifiers are skipped.

    In cloud environments, secrets are resolved via AWS Secrets Manager or
    GCP Secret Manager. Locally, plain env vars or .env files are used.
    """
    load_dotenv()

    tenant_id = os.environ.get("GRAPH_TENANT_ID", "")
    client_id = os.environ.get("GRAPH_CLIENT_ID", "")
    client_secret_raw = os.environ.get("GRAPH_CLIENT_SECRET", "")
    missing = [
        name for name, value in (
            ("GRAPH_TENANT_ID", tenant_id),
            ("GRAPH_CLIENT_ID", client_id),
            ("GRAPH_CLIENT_SECRET", client_secret_raw),
        ) if not value
    ]
    if missing:
        raise ValueError(f"Required environment variables not set: {', '.join(missing)}")

    graph = GraphConfig(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=resolve_secret(client_secret_raw),
        base_url=os.environ.get("GRAPH_BASE_URL", "https://graph.microsoft.com").rstrip("/"),
        authority=os.environ.get(
            "GRAPH_AUTHORITY", "https://login.microsoftonline.com"
        ).rstrip("/"),
    )

    fetch = FetchConfig(
        page_delay_seconds=_env_float("FETCH_PAGE_DELAY_MS", 100.0) / 1000.0,
        rate_limit_backoff_seconds=_env_float("FETCH_RATE_LIMIT_BACKOFF_S", 60.0),
        max_rate_limit_retries=_env_optional_int("FETCH_RATE_LIMIT_MAX_RETRIES"),
        backoff_multiplier=_env_float("FETCH_BACKOFF_MULTIPLIER", 1.0),
        max_backoff_seconds=_env_float("FETCH_MAX_BACKOFF_S", 900.0),
        jitter_seconds=_env_float("FETCH_JITTER_S", 0.0),
        honor_retry_after=_env_bool("FETCH_HONOR_RETRY_AFTER", False),
        timeout_seconds=_env_float("FETCH_TIMEOUT_S", 30.0),
    )

    # State backend: JSON files by default, PostgreSQL when asked for
    backend = os.environ.get("STATE_BACKEND", "file").strip().lower()
    if backend not in ("file", "postgres", "memory"):
        raise ValueError(f"Unknown STATE_BACKEND: {backend}")
    database = None
    if backend == "postgres":
        database = DatabaseConfig(
            url=resolve_database_url(),
            min_connections=_env_int("DB_MIN_CONNECTIONS", 1),
            max_connections=_env_int("DB_MAX_CONNECTIONS", 4),
        )
    state = StateConfig(
        backend=backend,
        directory=os.environ.get("STATE_DIR", "./state"),
        database=database,
    )

    policy = PolicyConfig(
        urgent_threshold_hours=_env_float("URGENT_THRESHOLD_HOURS", 24.0),
        escalation_threshold_hours=_env_float("ESCALATION_THRESHOLD_HOURS", 72.0),
        force_notification=_env_bool("FORCE_NOTIFICATION", False),
        stale_device_days=_env_int("STALE_DEVICE_DAYS", 30),
        token_warning_days=_env_int("TOKEN_WARNING_DAYS", 30),
        token_critical_days=_env_int("TOKEN_CRITICAL_DAYS", 7),
    )

    scheduler = SchedulerConfig(
        stale_devices_interval_min=_env_int("SCHEDULE_STALE_DEVICES_INTERVAL_MIN", 1440),
        noncompliant_devices_interval_min=_env_int(
            "SCHEDULE_NONCOMPLIANT_DEVICES_INTERVAL_MIN", 240
        ),
        pending_approvals_interval_min=_env_int(
            "SCHEDULE_PENDING_APPROVALS_INTERVAL_MIN", 60
        ),
        apple_tokens_interval_min=_env_int("SCHEDULE_APPLE_TOKENS_INTERVAL_MIN", 1440),
        misfire_grace_time=_env_int("SCHEDULER_MISFIRE_GRACE_S", 300),
    )

    # Email (optional)
    email = None
    smtp_host = os.environ.get("SMTP_HOST")
    recipients_raw = os.environ.get("ALERT_RECIPIENTS", "")
    recipients = [s.strip() for s in recipients_raw.split(",") if s.strip()]
    if smtp_host and recipients:
        username = os.environ.get("SMTP_USERNAME") or None
        password_raw = os.environ.get("SMTP_PASSWORD", "")
        email = EmailConfig(
            smtp_host=smtp_host,
            smtp_port=_env_int("SMTP_PORT", 587),
            sender=os.environ.get("ALERT_FROM") or username or f"alerts@{smtp_host}",
            recipients=recipients,
            username=username,
            password=resolve_secret(password_raw) if password_raw else None,
            use_tls=_env_bool("SMTP_USE_TLS", True),
        )

    # Webhook (optional) -- the URL embeds a token, so it may be a secret reference
    webhook = None
    webhook_raw = os.environ.get("ALERT_WEBHOOK_URL", "")
    if webhook_raw:
        webhook = WebhookConfig(url=resolve_secret(webhook_raw))

    return AlertingConfig(
        graph=graph,
        fetch=fetch,
        state=state,
        policy=policy,
        scheduler=scheduler,
        email=email,
        webhook=webhook,
    )
