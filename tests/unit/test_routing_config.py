"""Tests for routing configuration loading and validation."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from fleetwatch.alerting.config_loader import (
    NULL_RECEIVER,
    RoutingConfigError,
    default_routing_config,
    load_routing_config,
    parse_duration,
    parse_routing_config,
)

_YAML = """
global:
  resolve_timeout: 10m
  slack_api_url_file: /etc/fleetwatch/secrets/slack-webhook
route:
  receiver: team
  group_by: [alertname, severity]
  group_wait: 30s
  group_interval: 5m
  repeat_interval: 4h
  routes:
    - receiver: pager
      match:
        severity: critical
      group_wait: 10s
receivers:
  - name: team
    slack_configs:
      - channel: '#alerts'
        title: '{{ .Status | toUpper }}: {{ .CommonLabels.alertname }}'
  - name: pager
    webhook_configs:
      - url: https://pager.example.com/hook
        send_resolved: false
        headers:
          Authorization: Bearer abc
inhibit_rules:
  - source_match:
      alertname: ServiceDown
    target_match_re:
      alertname: 'Service.*'
    equal: [instance]
"""


def _minimal(**route) -> dict:
    return {"route": {"receiver": "team", **route}, "receivers": [{"name": "team"}]}


class TestParseDuration:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("30s", timedelta(seconds=30)),
            ("5m", timedelta(minutes=5)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("500ms", timedelta(milliseconds=500)),
            ("1d", timedelta(days=1)),
            ("2w", timedelta(weeks=2)),
            ("0", timedelta(0)),
            (90, timedelta(seconds=90)),
        ],
    )
    def test_valid(self, raw: object, expected: timedelta) -> None:
        assert parse_duration(raw, "x") == expected

    @pytest.mark.parametrize("raw", ["", "5", "5x", "m5", "1h 30m", "-1s", True, -3])
    def test_invalid(self, raw: object) -> None:
        with pytest.raises(RoutingConfigError):
            parse_duration(raw, "route.group_wait")


class TestLoadRoutingConfig:
    def test_full_file(self, tmp_path: Path) -> None:
        path = tmp_path / "alertmanager.yml"
        path.write_text(_YAML)

        config = load_routing_config(path)

        assert config.source == str(path)
        assert config.resolve_timeout == timedelta(minutes=10)
        assert config.slack_api_url_file == "/etc/fleetwatch/secrets/slack-webhook"
        assert sorted(config.receivers) == ["pager", "team"]
        assert config.route.group_by == ("alertname", "severity")
        (child,) = config.route.children
        assert child.receiver == "pager"
        assert child.group_wait == timedelta(seconds=10)
        assert child.group_by == ("alertname", "severity")
        assert child.repeat_interval == timedelta(hours=4)
        assert len(config.inhibit_rules) == 1
        assert config.inhibit_rules[0].equal_labels == ("instance",)

    def test_receivers_parsed(self, tmp_path: Path) -> None:
        path = tmp_path / "alertmanager.yml"
        path.write_text(_YAML)
        config = load_routing_config(path)

        team = config.receiver("team")
        assert team.send_resolved is True
        assert team.slack_configs[0].channel == "#alerts"
        assert team.slack_configs[0].username == "fleetwatch"
        pager = config.receiver("pager")
        assert pager.send_resolved is False
        assert pager.webhook_configs[0].headers == {"Authorization": "Bearer abc"}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(RoutingConfigError, match="cannot read"):
            load_routing_config(tmp_path / "absent.yml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yml"
        path.write_text("route: [unclosed\n")
        with pytest.raises(RoutingConfigError, match="invalid YAML"):
            load_routing_config(path)


class TestValidation:
    def test_undefined_receiver_reference(self) -> None:
        raw = _minimal(routes=[{"receiver": "nobody", "match": {"team": "x"}}])
        with pytest.raises(RoutingConfigError, match="undefined receiver"):
            parse_routing_config(raw)

    def test_missing_route(self) -> None:
        with pytest.raises(RoutingConfigError, match="route"):
            parse_routing_config({"receivers": [{"name": "team"}]})

    def test_not_a_mapping(self) -> None:
        with pytest.raises(RoutingConfigError):
            parse_routing_config(["route"])

    def test_root_must_not_have_matchers(self) -> None:
        with pytest.raises(RoutingConfigError, match="root route"):
            parse_routing_config(_minimal(match={"severity": "critical"}))

    def test_root_must_not_continue(self) -> None:
        with pytest.raises(RoutingConfigError, match="continue"):
            parse_routing_config(_minimal(**{"continue": True}))

    def test_invalid_child_regex(self) -> None:
        raw = _minimal(routes=[{"match_re": {"service": "(db"}}])
        with pytest.raises(RoutingConfigError, match="invalid regex"):
            parse_routing_config(raw)

    def test_invalid_label_name(self) -> None:
        raw = _minimal(routes=[{"match": {"bad-name": "x"}}])
        with pytest.raises(RoutingConfigError, match="invalid label name"):
            parse_routing_config(raw)

    def test_zero_group_interval(self) -> None:
        with pytest.raises(RoutingConfigError, match="group_interval"):
            parse_routing_config(_minimal(group_interval="0"))

    def test_non_positive_resolve_timeout(self) -> None:
        raw = {**_minimal(), "global": {"resolve_timeout": "0"}}
        with pytest.raises(RoutingConfigError, match="resolve_timeout"):
            parse_routing_config(raw)

    def test_duplicate_receiver(self) -> None:
        raw = {"route": {"receiver": "team"}, "receivers": [{"name": "team"}, {"name": "team"}]}
        with pytest.raises(RoutingConfigError, match="duplicate"):
            parse_routing_config(raw)

    def test_webhook_without_url(self) -> None:
        raw = {"route": {"receiver": "team"}, "receivers": [{"name": "team", "webhook_configs": [{}]}]}
        with pytest.raises(RoutingConfigError, match="url"):
            parse_routing_config(raw)

    def test_inhibit_rule_needs_both_sides(self) -> None:
        raw = {**_minimal(), "inhibit_rules": [{"source_match": {"alertname": "ServiceDown"}}]}
        with pytest.raises(RoutingConfigError, match="source and target"):
            parse_routing_config(raw)

    @pytest.mark.parametrize(
        ("key", "source"),
        [
            ("title", '{{ template "slack.default.title" . }}'),
            ("color", "{{ if eq .Status }}danger{{ end }}"),
            ("text", "{{ range .Alerts }}*Alert:* {{ .Labels.alertname }}"),
            ("title", "{{ .Status | printf }}"),
        ],
    )
    def test_unsupported_slack_template(self, key: str, source: str) -> None:
        raw = {
            "route": {"receiver": "team"},
            "receivers": [{"name": "team", "slack_configs": [{"api_url": "https://hooks.slack.com/x", key: source}]}],
        }
        with pytest.raises(RoutingConfigError, match=rf"receivers\[0\]\.slack_configs\[0\]\.{key}"):
            parse_routing_config(raw)

    def test_slack_text_template_kept(self) -> None:
        text = "{{ range .Alerts }}*Alert:* {{ .Labels.alertname }}{{ end }}"
        raw = {
            "route": {"receiver": "team"},
            "receivers": [{"name": "team", "slack_configs": [{"text": text}]}],
        }
        assert parse_routing_config(raw).receiver("team").slack_configs[0].text == text


class TestDefaults:
    def test_root_without_receiver_falls_back_to_null(self) -> None:
        config = parse_routing_config({"route": {"group_by": ["alertname"]}})
        assert config.route.receiver == NULL_RECEIVER
        assert config.receivers[NULL_RECEIVER].is_null

    def test_builtin_default(self) -> None:
        config = default_routing_config()
        assert config.route.receiver == NULL_RECEIVER
        assert config.route.group_by == ("alertname",)
        assert config.resolve_timeout == timedelta(minutes=5)

    def test_unknown_receiver_lookup_is_null(self) -> None:
        config = parse_routing_config(_minimal())
        assert config.receiver("ghost").is_null

    def test_receiver_level_send_resolved(self) -> None:
        raw = {
            "route": {"receiver": "team"},
            "receivers": [{"name": "team", "send_resolved": False, "webhook_configs": [{"url": "http://hook"}]}],
        }
        assert parse_routing_config(raw).receiver("team").send_resolved is False
