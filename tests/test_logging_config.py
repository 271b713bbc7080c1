import json
import logging

from scripts.alerting.logging_config import JsonFormatter


def test_json_formatter_merges_extra_fields() -> None:
    record = logging.LogRecord(
        name="alerting.gate", level=logging.INFO, pathname=__file__, lineno=1,
        msg="Alert sent to %s", args=("ops",), exc_info=None,
    )
    record.channel = "pending_approvals"
    record.entities = 3

    entry = json.loads(JsonFormatter().format(record))

    assert entry["message"] == "Alert sent to ops"
    assert entry["logger"] == "alerting.gate"
    assert entry["level"] == "INFO"
    assert entry["channel"] == "pending_approvals"
    assert entry["entities"] == 3
    assert "reason" not in entry
