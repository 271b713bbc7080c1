"""AWS Lambda handler for monitor runs.

Deployed as Lambda functions triggered by EventBridge rules.
Each invocation runs a single monitor or all of them.

Event format:
  {"monitor": "pending_approvals"}
  {"monitor": "all", "force": true}
"""

from __future__ import annotations

import json
import logging
import os

from scripts.alerting.config import load_config
from scripts.alerting.logging_config import configure_logging

logger = logging.getLogger("alerting.lambda")


def handler(event: dict, context) -> dict:
    """Lambda entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    from scripts.alerting.cli import MONITOR_REGISTRY, build_store, run_monitors

    monitor = event.get("monitor", "")
    if not monitor:
        return {"statusCode": 400, "body": "Missing 'monitor' in event"}
    if monitor != "all" and monitor not in MONITOR_REGISTRY:
        return {"statusCode": 400, "body": f"Unknown monitor '{monitor}'"}

    logger.info("Lambda invoked for monitor=%s", monitor)

    config = load_config()
    store = build_store(config)
    names = list(MONITOR_REGISTRY) if monitor == "all" else [monitor]

    try:
        results = run_monitors(names, config, store, force=bool(event.get("force")))
        logger.info("Run complete for %s: %s", monitor, results)
        return {
            "statusCode": 200,
            "body": json.dumps({"monitor": monitor, "results": results}),
        }
    except Exception as exc:
        logger.error("Run failed for %s: %s", monitor, exc, exc_info=True)
        return {
            "statusCode": 500,
            "body": json.dumps({"monitor": monitor, "error": str(exc)}),
        }
    finally:
        store.close()
