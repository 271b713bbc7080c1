"""CLI entry point: run, scheduler, status."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import requests

from scripts.alerting.auth import ClientCredentialsAuth
from scripts.alerting.base_store import StateStore
from scripts.alerting.config import AlertingConfig, load_config
from scripts.alerting.errors import AuthenticationError, StateCorruptionError
from scripts.alerting.fetcher import PagedFetcher, RetryPolicy
from scripts.alerting.logging_config import configure_logging
from scripts.alerting.notify.base import FanoutNotifier, Notifier

logger = logging.getLogger("alerting.cli")

MONITOR_REGISTRY: dict[str, tuple[str, str]] = {
    # name -> (module_path, class_name)
    "stale_devices": ("scripts.alerting.monitors.stale_devices", "StaleDevicesMonitor"),
    "noncompliant_devices": (
        "scripts.alerting.monitors.noncompliant_devices", "NoncompliantDevicesMonitor",
    ),
    "pending_approvals": ("scripts.alerting.monitors.pending_approvals", "PendingApprovalsMonitor"),
    "apple_tokens": ("scripts.alerting.monitors.apple_tokens", "AppleTokensMonitor"),
}

MONITOR_CHOICES = ["all", *MONITOR_REGISTRY]


def build_store(config: AlertingConfig) -> StateStore:
    """Instantiate the configured state backend."""
    backend = config.state.backend
    if backend == "postgres":
        from scripts.alerting.db import Database
        from scripts.alerting.stores.postgres import PostgresStateStore

        if config.state.database is None:
            raise ValueError("STATE_BACKEND=postgres needs DATABASE_URL or PG_* settings")
        return PostgresStateStore(Database(config.state.database))
    if backend == "memory":
        from scripts.alerting.stores.memory import InMemoryStateStore

        logger.warning("Using in-memory state; alerts will repeat on every run")
        return InMemoryStateStore()

    from scripts.alerting.stores.json_file import JsonFileStateStore

    return JsonFileStateStore(config.state.directory)


def build_notifier(config: AlertingConfig) -> Notifier:
    """Instantiate every configured notifier behind one fan-out."""
    notifiers: list[Notifier] = []
    if config.email:
        from scripts.alerting.notify.email import EmailNotifier

        em = config.email
        notifiers.append(EmailNotifier(
            smtp_host=em.smtp_host,
            smtp_port=em.smtp_port,
            sender=em.sender,
            recipients=em.recipients,
            username=em.username,
            password=em.password,
            use_tls=em.use_tls,
        ))
    if config.webhook:
        from scripts.alerting.notify.webhook import WebhookNotifier

        notifiers.append(WebhookNotifier(
            config.webhook.url, timeout_seconds=config.webhook.timeout_seconds,
        ))
    if not notifiers:
        logger.warning("No notifiers configured; alerts cannot be delivered")
    return FanoutNotifier(notifiers)


def build_fetcher(config: AlertingConfig) -> PagedFetcher:
    """Authenticated fetcher with the configured pacing and backoff."""
    f = config.fetch
    session = requests.Session()
    session.auth = ClientCredentialsAuth(
        tenant_id=config.graph.tenant_id,
        client_id=config.graph.client_id,
        client_secret=config.graph.client_secret,
        scope=f"{config.graph.base_url}/.default",
        authority=config.graph.authority,
    )
    retry = RetryPolicy(
        backoff_seconds=f.rate_limit_backoff_seconds,
        multiplier=f.backoff_multiplier,
        max_backoff_seconds=f.max_backoff_seconds,
        jitter_seconds=f.jitter_seconds,
        max_retries=f.max_rate_limit_retries,
        honor_retry_after=f.honor_retry_after,
    )
    return PagedFetcher(
        session,
        retry_policy=retry,
        page_delay_seconds=f.page_delay_seconds,
        timeout_seconds=f.timeout_seconds,
    )


def _get_monitor(name: str, config: AlertingConfig, store: StateStore, notifier: Notifier,
                 fetcher: PagedFetcher):
    """Instantiate a monitor by name. Returns None if unknown."""
    import importlib

    entry = MONITOR_REGISTRY.get(name)
    if not entry:
        logger.warning("Unknown monitor %s, skipping", name)
        return None

    module_path, class_name = entry
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(config, fetcher, store, notifier)


def run_monitors(names: list[str], config: AlertingConfig, store: StateStore,
                 force: bool = False) -> dict[str, str]:
    """Run monitors in order. A failing monitor does not stop the others.

    Returns {monitor: status} where status is sent / suppressed / failed.
    """
    notifier = build_notifier(config)
    fetcher = build_fetcher(config)
    results: dict[str, str] = {}
    for name in names:
        monitor = _get_monitor(name, config, store, notifier, fetcher)
        if monitor is None:
            continue
        logger.info("Starting monitor %s", name)
        try:
            report = monitor.run(force=force)
        except AuthenticationError:
            raise
        except Exception as exc:
            logger.error("Monitor %s failed: %s", name, exc, exc_info=True,
                         extra={"monitor": name})
            results[name] = "failed"
            continue
        if report.outcome.error is not None and not report.sent:
            results[name] = "failed"
        else:
            results[name] = "sent" if report.sent else "suppressed"
    return results


def _selected(monitor: str) -> list[str]:
    return list(MONITOR_REGISTRY) if monitor == "all" else [monitor]


def cmd_run(args: argparse.Namespace) -> None:
    """Run one-shot monitor(s)."""
    config = load_config()
    store = build_store(config)
    try:
        results = run_monitors(_selected(args.monitor), config, store, force=args.force)
        logger.info("Run results: %s", results)
    except AuthenticationError as exc:
        logger.error("Authentication failed: %s", exc)
        sys.exit(2)
    finally:
        store.close()


def cmd_scheduler(args: argparse.Namespace) -> None:
    """Start the APScheduler-based scheduling loop."""
    from scripts.alerting.scheduler import start_scheduler

    config = load_config()
    store = build_store(config)
    try:
        start_scheduler(config, store)
    finally:
        store.close()


def cmd_status(args: argparse.Namespace) -> None:
    """Show persisted notification state per channel."""
    config = load_config()
    store = build_store(config)

    try:
        channels = _selected(args.monitor) if args.monitor != "all" else (
            store.channels() or list(MONITOR_REGISTRY)
        )
        fmt = "{:<24}  {:>8}  {:<25}  {:<25}"
        print(fmt.format("CHANNEL", "NOTIFIED", "LAST RUN", "LAST NOTIFICATION"))
        print("-" * 88)
        for channel in channels:
            try:
                state = store.read(channel)
            except StateCorruptionError as exc:
                logger.warning("State for %s is unreadable: %s", channel, exc,
                               extra={"channel": channel})
                print(fmt.format(channel, "corrupt", "-", "-"))
                continue
            if state is None:
                print(fmt.format(channel, "-", "never", "never"))
                continue
            print(fmt.format(
                channel,
                len(state.notified_ids),
                state.last_run.isoformat()[:19] if state.last_run else "never",
                state.last_notification.isoformat()[:19] if state.last_notification else "never",
            ))
    finally:
        store.close()


def main() -> None:
    """Main CLI entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    parser = argparse.ArgumentParser(
        prog="mdm-alerting",
        description="Device-management monitoring and alerting jobs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # run command
    run_parser = subparsers.add_parser("run", help="Run monitor(s) once")
    run_parser.add_argument(
        "--monitor", "-m",
        choices=MONITOR_CHOICES,
        default="all",
        help="Monitor to run (default: all)",
    )
    run_parser.add_argument(
        "--force",
        action="store_true",
        help="Send the current snapshot even if nothing changed",
    )
    run_parser.set_defaults(func=cmd_run)

    # scheduler command
    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled monitor loop")
    sched_parser.set_defaults(func=cmd_scheduler)

    # status command
    status_parser = subparsers.add_parser("status", help="Show notification state")
    status_parser.add_argument(
        "--monitor", "-m",
        choices=MONITOR_CHOICES,
        default="all",
        help="Filter by monitor",
    )
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()
    args.func(args)
