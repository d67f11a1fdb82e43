"""Tests for inhibition rules and the Inhibitor."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from fleetwatch.alerting.inhibition import InhibitionRule, Inhibitor
from fleetwatch.alerting.matchers import build_matchers


def _service_down_rule() -> InhibitionRule:
    return InhibitionRule(
        source_matchers=build_matchers({"alertname": "ServiceDown"}),
        target_matchers=build_matchers(match_re={"alertname": "Service.*"}),
        equal_labels=("instance",),
    )


class TestServiceDownRule:
    def test_source_mutes_target_with_equal_instance(self) -> None:
        firing = {
            "down-x": {"alertname": "ServiceDown", "instance": "X"},
            "lat-x": {"alertname": "ServiceHighLatency", "instance": "X"},
            "lat-y": {"alertname": "ServiceHighLatency", "instance": "Y"},
        }
        muted = Inhibitor([_service_down_rule()]).inhibited(firing)
        assert muted == {"lat-x": "down-x"}

    def test_source_never_mutes_itself(self) -> None:
        firing = {"down-x": {"alertname": "ServiceDown", "instance": "X"}}
        assert Inhibitor([_service_down_rule()]).inhibited(firing) == {}

    def test_alerts_matching_both_sides_do_not_mute_each_other(self) -> None:
        firing = {
            "down-a": {"alertname": "ServiceDown", "instance": "X", "zone": "a"},
            "down-b": {"alertname": "ServiceDown", "instance": "X", "zone": "b"},
        }
        assert Inhibitor([_service_down_rule()]).inhibited(firing) == {}

    def test_nothing_muted_without_firing_source(self) -> None:
        firing = {"lat-x": {"alertname": "ServiceHighLatency", "instance": "X"}}
        assert Inhibitor([_service_down_rule()]).inhibited(firing) == {}

    def test_missing_equal_label_on_both_sides_counts_as_equal(self) -> None:
        firing = {
            "down": {"alertname": "ServiceDown"},
            "lat": {"alertname": "ServiceHighLatency"},
        }
        assert Inhibitor([_service_down_rule()]).inhibited(firing) == {"lat": "down"}

    @given(
        source_instance=st.text(min_size=1, max_size=8),
        target_instance=st.text(min_size=1, max_size=8),
    )
    def test_muted_iff_instances_equal(self, source_instance: str, target_instance: str) -> None:
        firing = {
            "down": {"alertname": "ServiceDown", "instance": source_instance},
            "lat": {"alertname": "ServiceHighLatency", "instance": target_instance},
        }
        muted = Inhibitor([_service_down_rule()]).inhibited(firing)
        assert ("lat" in muted) == (source_instance == target_instance)
        assert "down" not in muted


class TestInhibitor:
    def test_no_rules_mutes_nothing(self) -> None:
        firing = {"a": {"alertname": "ServiceDown"}, "b": {"alertname": "ServiceSlow"}}
        assert Inhibitor().inhibited(firing) == {}

    def test_first_matching_rule_reports_source(self) -> None:
        critical_rule = InhibitionRule(
            source_matchers=build_matchers({"severity": "critical"}),
            target_matchers=build_matchers({"severity": "warning"}),
            equal_labels=("alertname",),
        )
        inhibitor = Inhibitor([_service_down_rule(), critical_rule])
        firing = {
            "crit": {"alertname": "DiskFull", "severity": "critical"},
            "warn": {"alertname": "DiskFull", "severity": "warning"},
        }
        assert inhibitor.inhibited(firing) == {"warn": "crit"}
        assert inhibitor.rules[1] is critical_rule

    def test_str_renders_rule(self) -> None:
        rendered = str(_service_down_rule())
        assert 'source={alertname="ServiceDown"}' in rendered
        assert "equal=['instance']" in rendered
