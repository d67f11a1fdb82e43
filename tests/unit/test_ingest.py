"""Tests for alert fingerprints and ingestion validation.

Every malformed shape must surface as MalformedEventError (or a per-event
error inside a batch), never as any other exception.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from fleetwatch.alerting.ingest import MalformedEventError, parse_alert_batch, parse_alert_event
from fleetwatch.models.alerts import AlertEvent, AlertStatus, fingerprint

_NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)


def _raw(**overrides) -> dict:
    raw = {
        "alertName": "HighCPU",
        "labels": {"instance": "10.0.1.5:9080", "severity": "warning"},
        "annotations": {"description": "CPU above 90%"},
        "startsAt": "2026-03-02T11:55:00Z",
    }
    raw.update(overrides)
    return raw


# =====================================================================
# Fingerprint
# =====================================================================


class TestFingerprint:
    def test_deterministic(self) -> None:
        labels = {"instance": "a", "job": "workload"}
        assert fingerprint("HighCPU", labels) == fingerprint("HighCPU", dict(labels))

    def test_label_order_does_not_matter(self) -> None:
        assert fingerprint("A", {"x": "1", "y": "2"}) == fingerprint("A", {"y": "2", "x": "1"})

    def test_alertname_label_not_hashed_twice(self) -> None:
        assert fingerprint("A", {"alertname": "A", "x": "1"}) == fingerprint("A", {"x": "1"})

    def test_name_and_labels_both_contribute(self) -> None:
        assert fingerprint("A", {"x": "1"}) != fingerprint("B", {"x": "1"})
        assert fingerprint("A", {"x": "1"}) != fingerprint("A", {"x": "2"})

    def test_key_value_boundaries_are_unambiguous(self) -> None:
        assert fingerprint("A", {"ab": "c"}) != fingerprint("A", {"a": "bc"})

    @given(st.dictionaries(st.text(min_size=1, max_size=6), st.text(max_size=6), max_size=6))
    def test_insertion_order_independent(self, labels: dict[str, str]) -> None:
        reversed_labels = dict(reversed(list(labels.items())))
        assert fingerprint("Alert", labels) == fingerprint("Alert", reversed_labels)

    def test_event_fingerprint_and_label_set(self) -> None:
        event = AlertEvent(alert_name="A", labels={"x": "1"}, annotations={}, starts_at=_NOW)
        assert event.fingerprint == fingerprint("A", {"x": "1"})
        assert event.label_set == {"x": "1", "alertname": "A"}


# =====================================================================
# parse_alert_event
# =====================================================================


class TestParseAlertEvent:
    def test_alert_name_field(self) -> None:
        event = parse_alert_event(_raw(), now=_NOW)
        assert event.alert_name == "HighCPU"
        assert event.labels == {"instance": "10.0.1.5:9080", "severity": "warning"}
        assert event.status == AlertStatus.FIRING
        assert event.starts_at == datetime(2026, 3, 2, 11, 55, tzinfo=UTC)

    def test_prometheus_push_format(self) -> None:
        raw = {
            "labels": {"alertname": "HighCPU", "instance": "a"},
            "startsAt": "2026-03-02T11:55:00Z",
            "endsAt": "2026-03-02T12:10:00Z",
        }
        event = parse_alert_event(raw, now=_NOW)
        assert event.alert_name == "HighCPU"
        assert "alertname" not in event.labels
        assert event.status == AlertStatus.FIRING
        assert event.ends_at == datetime(2026, 3, 2, 12, 10, tzinfo=UTC)

    def test_past_ends_at_means_resolved(self) -> None:
        event = parse_alert_event(_raw(endsAt="2026-03-02T11:59:00Z"), now=_NOW)
        assert event.status == AlertStatus.RESOLVED

    def test_explicit_status_wins(self) -> None:
        event = parse_alert_event(_raw(status="resolved"), now=_NOW)
        assert event.status == AlertStatus.RESOLVED

    def test_zero_ends_at_is_no_end(self) -> None:
        event = parse_alert_event(_raw(endsAt="0001-01-01T00:00:00Z"), now=_NOW)
        assert event.ends_at is None
        assert event.status == AlertStatus.FIRING

    def test_naive_timestamp_is_utc(self) -> None:
        event = parse_alert_event(_raw(startsAt="2026-03-02T11:55:00"), now=_NOW)
        assert event.starts_at.tzinfo is not None
        assert event.starts_at.utcoffset() == timedelta(0)

    def test_empty_label_values_dropped(self) -> None:
        event = parse_alert_event(_raw(labels={"instance": "a", "zone": ""}), now=_NOW)
        assert event.labels == {"instance": "a"}

    def test_unknown_fields_ignored(self) -> None:
        event = parse_alert_event(_raw(generatorURL="http://prometheus/graph"), now=_NOW)
        assert event.alert_name == "HighCPU"

    @pytest.mark.parametrize(
        "raw",
        [
            pytest.param("not an object", id="string"),
            pytest.param(["list"], id="list"),
            pytest.param({"labels": {}, "startsAt": "2026-03-02T11:55:00Z"}, id="no-name"),
            pytest.param({"alertName": "A", "labels": {}}, id="no-starts-at"),
            pytest.param({"alertName": "A", "startsAt": "yesterday"}, id="bad-timestamp"),
            pytest.param({"alertName": "A", "labels": {"x": 1}, "startsAt": "2026-03-02T11:55:00Z"}, id="int-label"),
            pytest.param({"alertName": "A", "labels": {"bad-name": "v"}, "startsAt": "2026-03-02T11:55:00Z"}, id="label-name"),
            pytest.param({"alertName": "A", "status": "pending", "startsAt": "2026-03-02T11:55:00Z"}, id="status"),
            pytest.param(
                {"alertName": "A", "labels": {"alertname": "B"}, "startsAt": "2026-03-02T11:55:00Z"},
                id="name-mismatch",
            ),
        ],
    )
    def test_malformed_events_rejected(self, raw: object) -> None:
        with pytest.raises(MalformedEventError):
            parse_alert_event(raw, now=_NOW)


# =====================================================================
# parse_alert_batch
# =====================================================================


class TestParseAlertBatch:
    def test_list_with_one_bad_event(self) -> None:
        batch = parse_alert_batch([_raw(), {"alertName": "Broken"}], now=_NOW)
        assert len(batch.events) == 1
        assert len(batch.errors) == 1
        assert batch.errors[0].startswith("[1]")

    def test_alerts_envelope(self) -> None:
        batch = parse_alert_batch({"alerts": [_raw(), _raw(alertName="DiskFull")]}, now=_NOW)
        assert [e.alert_name for e in batch.events] == ["HighCPU", "DiskFull"]
        assert batch.errors == []

    def test_single_event_object(self) -> None:
        batch = parse_alert_batch(_raw(), now=_NOW)
        assert len(batch.events) == 1

    def test_non_collection_body(self) -> None:
        batch = parse_alert_batch(42, now=_NOW)
        assert batch.events == []
        assert len(batch.errors) == 1

    @given(st.lists(st.one_of(st.none(), st.integers(), st.text(), st.dictionaries(st.text(), st.text())), max_size=5))
    def test_garbage_never_raises(self, body: list) -> None:
        batch = parse_alert_batch(body, now=_NOW)
        assert len(batch.events) + len(batch.errors) == len(body)
