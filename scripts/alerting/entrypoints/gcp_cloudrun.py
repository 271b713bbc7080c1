"""GCP Cloud Run Job entry point for monitor runs.

Deployed as Cloud Run Jobs triggered by Cloud Scheduler.
The ALERT_MONITOR env var determines which monitor to run.

Usage:
  ALERT_MONITOR=stale_devices python -m scripts.alerting.entrypoints.gcp_cloudrun
  ALERT_MONITOR=all ALERT_FORCE=true python -m scripts.alerting.entrypoints.gcp_cloudrun
"""

from __future__ import annotations

import logging
import os
import sys

from scripts.alerting.config import load_config
from scripts.alerting.logging_config import configure_logging

logger = logging.getLogger("alerting.cloudrun")


def main() -> None:
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    from scripts.alerting.cli import MONITOR_REGISTRY, build_store, run_monitors

    monitor = os.environ.get("ALERT_MONITOR", "")
    if not monitor:
        logger.error("ALERT_MONITOR env var is required")
        sys.exit(1)

    logger.info("Cloud Run Job started for monitor=%s", monitor)

    config = load_config()
    store = build_store(config)
    names = list(MONITOR_REGISTRY) if monitor == "all" else [monitor]
    force = os.environ.get("ALERT_FORCE", "").lower() in ("1", "true", "yes")

    try:
        results = run_monitors(names, config, store, force=force)
        logger.info("Run complete for %s: %s", monitor, results)
    except Exception as exc:
        logger.error("Run failed for %s: %s", monitor, exc, exc_info=True)
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
