from datetime import datetime, timezone

import pytest

from scripts.alerting.models import Entity, NotificationState, parse_timestamp


@pytest.mark.parametrize("raw, expected", [
    ("2026-03-01T08:00:00Z", datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)),
    ("2026-03-01T08:00:00.1234567Z", datetime(2026, 3, 1, 8, 0, 0, 123456, tzinfo=timezone.utc)),
    ("2026-03-01T08:00:00", datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)),
    ("", None),
    ("not a date", None),
])
def test_parse_timestamp(raw, expected) -> None:  # noqa: ANN001
    assert parse_timestamp(raw) == expected


def test_entity_equality_is_by_id_only() -> None:
    assert Entity("a", {"x": 1}, age_hours=3) == Entity("a", {"x": 2})


def test_state_round_trips_through_dict() -> None:
    when = datetime(2026, 3, 1, tzinfo=timezone.utc)
    state = NotificationState(frozenset({"b", "a"}), last_run=when, last_notification=when)

    data = state.to_dict()

    assert data["notified_ids"] == ["a", "b"]
    assert NotificationState.from_dict(data) == state


@pytest.mark.parametrize("bad", [
    [],
    {"notified_ids": "abc"},
    {"notified_ids": [1, 2]},
    {"notified_ids": [], "last_run": "yesterday"},
])
def test_state_from_dict_rejects_bad_shapes(bad) -> None:  # noqa: ANN001
    with pytest.raises((TypeError, ValueError)):
        NotificationState.from_dict(bad)
