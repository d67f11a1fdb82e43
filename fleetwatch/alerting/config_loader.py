"""Routing configuration: route tree, receivers and inhibition rules.

The file uses the ``alertmanager.yml`` layout::

    global:
      resolve_timeout: 5m
      slack_api_url_file: /etc/fleetwatch/secrets/slack-webhook
    route:
      receiver: default
      group_by: [alertname, severity]
      group_wait: 30s
      group_interval: 5m
      repeat_interval: 4h
      routes:
        - receiver: critical
          match: {severity: critical}
    receivers:
      - name: default
        slack_configs: [{channel: '#alerts'}]
      - name: critical
        webhook_configs: [{url: https://pager.example.com/hook}]
    inhibit_rules:
      - source_match: {alertname: ServiceDown}
        target_match_re: {alertname: 'Service.*'}
        equal: [instance]

Any structural problem raises RoutingConfigError; the daemon refuses to
start on one, and a failed reload keeps the previous configuration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any

import structlog
import yaml

from fleetwatch.alerting.inhibition import InhibitionRule
from fleetwatch.alerting.matchers import Matcher, build_matchers, format_matchers
from fleetwatch.alerting.routing import RouteNode
from fleetwatch.alerting.templates import NotificationTemplate, TemplateError
from fleetwatch.models.config import ReceiverConfig, SlackChannelConfig, WebhookChannelConfig

_log = structlog.get_logger(component="alerting.config")

NULL_RECEIVER = "null"

_DURATION_PART = re.compile(r"(\d+)(ms|s|m|h|d|w)")
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}
_LABEL_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

_DEFAULT_GROUP_WAIT = timedelta(seconds=30)
_DEFAULT_GROUP_INTERVAL = timedelta(minutes=5)
_DEFAULT_REPEAT_INTERVAL = timedelta(hours=4)
_DEFAULT_RESOLVE_TIMEOUT = timedelta(minutes=5)


class RoutingConfigError(Exception):
    """The routing configuration is malformed or internally inconsistent."""


@dataclass(frozen=True)
class RoutingConfig:
    """Validated, ready-to-evaluate alerting configuration."""

    route: RouteNode
    receivers: dict[str, ReceiverConfig]
    inhibit_rules: tuple[InhibitionRule, ...] = ()
    resolve_timeout: timedelta = _DEFAULT_RESOLVE_TIMEOUT
    slack_api_url: str = ""
    slack_api_url_file: str = ""
    source: str = field(default="<builtin>", compare=False)

    def receiver(self, name: str) -> ReceiverConfig:
        return self.receivers.get(name) or ReceiverConfig(name=name)


def default_routing_config() -> RoutingConfig:
    """Every alert goes to the null receiver: evaluated, counted, never delivered."""
    return RoutingConfig(
        route=RouteNode(key="{}", receiver=NULL_RECEIVER, group_by=("alertname",)),
        receivers={NULL_RECEIVER: ReceiverConfig(name=NULL_RECEIVER)},
    )


def parse_duration(value: Any, where: str) -> timedelta:
    """Parse ``30s``, ``5m``, ``1h30m`` or a bare number of seconds."""
    if isinstance(value, bool):
        raise RoutingConfigError(f"{where}: invalid duration {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise RoutingConfigError(f"{where}: duration must not be negative")
        return timedelta(seconds=value)
    text = str(value).strip()
    if text == "0":
        return timedelta(0)
    pos = 0
    total = timedelta(0)
    for m in _DURATION_PART.finditer(text):
        if m.start() != pos:
            break
        total += int(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(text) or not text:
        raise RoutingConfigError(f"{where}: invalid duration {value!r}")
    return total


def load_routing_config(path: str | Path) -> RoutingConfig:
    """Read and validate a routing file.

    Raises:
        RoutingConfigError: unreadable file, invalid YAML or invalid content.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RoutingConfigError(f"cannot read routing config {path}: {exc}") from exc
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise RoutingConfigError(f"invalid YAML in {path}: {exc}") from exc
    config = parse_routing_config(raw, source=str(path))
    _log.info(
        "routing_config_loaded",
        path=str(path),
        receivers=sorted(config.receivers),
        routes=sum(1 for _ in config.route.walk()),
        inhibit_rules=len(config.inhibit_rules),
    )
    return config


def parse_routing_config(raw: Any, source: str = "<inline>") -> RoutingConfig:
    """Validate an already-decoded routing document."""
    if not isinstance(raw, dict):
        raise RoutingConfigError("routing config must be a mapping")

    global_cfg = _mapping(raw.get("global"), "global")
    resolve_timeout = parse_duration(
        global_cfg.get("resolve_timeout", "5m"),
        "global.resolve_timeout",
    )
    if resolve_timeout <= timedelta(0):
        raise RoutingConfigError("global.resolve_timeout must be positive")

    receivers = _parse_receivers(raw.get("receivers"))

    route_raw = raw.get("route")
    if not isinstance(route_raw, dict):
        raise RoutingConfigError("missing top-level 'route'")
    if route_raw.get("match") or route_raw.get("match_re"):
        raise RoutingConfigError("the root route must not have matchers")
    if route_raw.get("continue"):
        raise RoutingConfigError("the root route must not set 'continue'")

    root = _parse_route(route_raw, parent=None, key="{}", where="route")

    # A root without a receiver falls back to the null receiver.
    if root.receiver == NULL_RECEIVER and NULL_RECEIVER not in receivers:
        receivers[NULL_RECEIVER] = ReceiverConfig(name=NULL_RECEIVER)
    missing = root.receivers() - set(receivers)
    if missing:
        raise RoutingConfigError(f"route references undefined receiver(s): {sorted(missing)}")

    inhibit_rules = tuple(
        _parse_inhibit_rule(entry, f"inhibit_rules[{i}]")
        for i, entry in enumerate(_sequence(raw.get("inhibit_rules"), "inhibit_rules"))
    )

    return RoutingConfig(
        route=root,
        receivers=receivers,
        inhibit_rules=inhibit_rules,
        resolve_timeout=resolve_timeout,
        slack_api_url=str(global_cfg.get("slack_api_url", "") or ""),
        slack_api_url_file=str(global_cfg.get("slack_api_url_file", "") or ""),
        source=source,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mapping(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RoutingConfigError(f"{where} must be a mapping")
    return value


def _sequence(value: Any, where: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise RoutingConfigError(f"{where} must be a list")
    return value


def _label_map(value: Any, where: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for name, val in _mapping(value, where).items():
        if not _LABEL_NAME.match(str(name)):
            raise RoutingConfigError(f"{where}: invalid label name {name!r}")
        result[str(name)] = str(val)
    return result


def _label_names(value: Any, where: str) -> tuple[str, ...]:
    names = tuple(str(n) for n in _sequence(value, where))
    for name in names:
        if name != "..." and not _LABEL_NAME.match(name):
            raise RoutingConfigError(f"{where}: invalid label name {name!r}")
    return names


def _route_matchers(raw: dict[str, Any], where: str) -> tuple[Matcher, ...]:
    try:
        return build_matchers(
            _label_map(raw.get("match"), f"{where}.match"),
            _label_map(raw.get("match_re"), f"{where}.match_re"),
        )
    except ValueError as exc:
        raise RoutingConfigError(f"{where}: {exc}") from exc


def _parse_route(raw: Any, parent: RouteNode | None, key: str, where: str) -> RouteNode:
    raw = _mapping(raw, where)
    matchers = _route_matchers(raw, where)

    def inherit(name: str, default: timedelta) -> timedelta:
        if name in raw:
            return parse_duration(raw[name], f"{where}.{name}")
        return getattr(parent, name) if parent is not None else default

    group_wait = inherit("group_wait", _DEFAULT_GROUP_WAIT)
    group_interval = inherit("group_interval", _DEFAULT_GROUP_INTERVAL)
    repeat_interval = inherit("repeat_interval", _DEFAULT_REPEAT_INTERVAL)
    if group_interval <= timedelta(0):
        raise RoutingConfigError(f"{where}.group_interval must be positive")
    if repeat_interval <= timedelta(0):
        raise RoutingConfigError(f"{where}.repeat_interval must be positive")

    if "group_by" in raw:
        group_by = _label_names(raw["group_by"], f"{where}.group_by")
    else:
        group_by = parent.group_by if parent is not None else ()

    receiver = str(raw.get("receiver") or (parent.receiver if parent is not None else NULL_RECEIVER))

    node = RouteNode(
        key=key,
        receiver=receiver,
        matchers=matchers,
        continue_to_siblings=bool(raw.get("continue", False)),
        group_by=group_by,
        group_wait=group_wait,
        group_interval=group_interval,
        repeat_interval=repeat_interval,
    )

    children: list[RouteNode] = []
    seen_keys: dict[str, int] = {}
    for i, child_raw in enumerate(_sequence(raw.get("routes"), f"{where}.routes")):
        child_where = f"{where}.routes[{i}]"
        child_raw = _mapping(child_raw, child_where)
        child_key = f"{key}/{format_matchers(_route_matchers(child_raw, child_where))}"
        # Siblings with identical matchers still need distinct keys.
        dup = seen_keys.get(child_key, 0)
        seen_keys[child_key] = dup + 1
        if dup:
            child_key = f"{child_key}#{dup}"
        children.append(_parse_route(child_raw, parent=node, key=child_key, where=child_where))

    return replace(node, children=tuple(children))


def _template(raw: dict[str, Any], key: str, where: str) -> str:
    """Return the template source under *key*, rejecting unsupported syntax now."""
    source = str(raw.get(key, "") or "")
    if source:
        try:
            NotificationTemplate(source)
        except TemplateError as exc:
            raise RoutingConfigError(f"{where}.{key}: {exc}") from exc
    return source


def _parse_receivers(raw: Any) -> dict[str, ReceiverConfig]:
    receivers: dict[str, ReceiverConfig] = {}
    for i, entry in enumerate(_sequence(raw, "receivers")):
        where = f"receivers[{i}]"
        entry = _mapping(entry, where)
        name = str(entry.get("name") or "")
        if not name:
            raise RoutingConfigError(f"{where}: missing 'name'")
        if name in receivers:
            raise RoutingConfigError(f"{where}: duplicate receiver {name!r}")

        slack_raw = [_mapping(c, f"{where}.slack_configs") for c in _sequence(entry.get("slack_configs"), where)]
        webhook_raw = [_mapping(c, f"{where}.webhook_configs") for c in _sequence(entry.get("webhook_configs"), where)]

        slack = tuple(
            SlackChannelConfig(
                api_url=str(c.get("api_url", "") or ""),
                api_url_file=str(c.get("api_url_file", "") or ""),
                channel=str(c.get("channel", "") or ""),
                username=str(c.get("username", "fleetwatch") or "fleetwatch"),
                title=_template(c, "title", f"{where}.slack_configs[{j}]"),
                color=_template(c, "color", f"{where}.slack_configs[{j}]"),
                text=_template(c, "text", f"{where}.slack_configs[{j}]"),
            )
            for j, c in enumerate(slack_raw)
        )
        webhooks: list[WebhookChannelConfig] = []
        for j, c in enumerate(webhook_raw):
            url = str(c.get("url", "") or "")
            if not url:
                raise RoutingConfigError(f"{where}.webhook_configs[{j}]: missing 'url'")
            headers = {str(k): str(v) for k, v in _mapping(c.get("headers"), f"{where}.webhook_configs[{j}].headers").items()}
            webhooks.append(WebhookChannelConfig(url=url, headers=headers))

        if "send_resolved" in entry:
            send_resolved = bool(entry["send_resolved"])
        elif slack_raw or webhook_raw:
            send_resolved = any(bool(c.get("send_resolved", True)) for c in slack_raw + webhook_raw)
        else:
            send_resolved = True

        receivers[name] = ReceiverConfig(
            name=name,
            send_resolved=send_resolved,
            slack_configs=slack,
            webhook_configs=tuple(webhooks),
        )
    return receivers


def _parse_inhibit_rule(raw: Any, where: str) -> InhibitionRule:
    raw = _mapping(raw, where)
    try:
        source = build_matchers(
            _label_map(raw.get("source_match"), f"{where}.source_match"),
            _label_map(raw.get("source_match_re"), f"{where}.source_match_re"),
        )
        target = build_matchers(
            _label_map(raw.get("target_match"), f"{where}.target_match"),
            _label_map(raw.get("target_match_re"), f"{where}.target_match_re"),
        )
    except ValueError as exc:
        raise RoutingConfigError(f"{where}: {exc}") from exc
    if not source or not target:
        raise RoutingConfigError(f"{where}: both source and target matchers are required")
    return InhibitionRule(
        source_matchers=source,
        target_matchers=target,
        equal_labels=_label_names(raw.get("equal"), f"{where}.equal"),
    )
