"""Alertmanager-style notification templates.

Slack receivers in alertmanager.yml format their title, colour and text with
Go template actions. The subset those files use is supported::

    {{ .Status }}  {{ .Receiver }}  {{ .CommonLabels.alertname }}
    {{ .Status | toUpper }}  {{ .Labels.severity | default "info" }}
    {{ if eq .Status "firing" }}danger{{ else }}good{{ end }}
    {{ range .Alerts }} ... {{ end }}

Anything else is rejected with TemplateError when the template is compiled,
so a bad template fails the configuration load rather than every delivery.
Missing fields render as the empty string. Inside ``range`` the dot is the
current alert (``.Labels``, ``.Annotations``, ``.Status``).
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from fleetwatch.models.alerts import Notification

_ACTION = re.compile(r"\{\{(-?)\s*(.*?)\s*(-?)\}\}", re.DOTALL)
_TOKEN = re.compile(r'"(?:[^"\\]|\\.)*"|\||[^\s|]+')
_FIELD = re.compile(r"^(\.[A-Za-z_][A-Za-z0-9_]*)+$")

_UNARY_FUNCS: dict[str, Callable[[str], str]] = {
    "toUpper": str.upper,
    "toLower": str.lower,
    "title": str.title,
}


class TemplateError(ValueError):
    """A template uses syntax or functions outside the supported subset."""


@dataclass(frozen=True)
class _Literal:
    value: str


@dataclass(frozen=True)
class _Field:
    path: tuple[str, ...]


_Operand = _Literal | _Field


@dataclass(frozen=True)
class _Text:
    value: str


@dataclass(frozen=True)
class _Pipeline:
    operand: _Operand
    # (function, argument) pairs applied left to right.
    stages: tuple[tuple[str, _Operand | None], ...] = ()


@dataclass(frozen=True)
class _Compare:
    op: str  # "eq" | "ne"
    left: _Operand
    right: _Operand


@dataclass
class _If:
    condition: _Compare | _Pipeline
    then: list[Any] = field(default_factory=list)
    otherwise: list[Any] = field(default_factory=list)


@dataclass
class _Range:
    over: _Field
    body: list[Any] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def _lex(source: str) -> list[tuple[str, str]]:
    """Split *source* into ("text", ...) and ("action", ...) items, honouring ``{{-``/``-}}`` trims."""
    items: list[tuple[str, str]] = []
    pos = 0
    trim_next = False
    for m in _ACTION.finditer(source):
        text = source[pos : m.start()]
        if trim_next:
            text = text.lstrip()
        if m.group(1):
            text = text.rstrip()
        if text:
            items.append(("text", text))
        items.append(("action", m.group(2)))
        trim_next = bool(m.group(3))
        pos = m.end()
    tail = source[pos:]
    if trim_next:
        tail = tail.lstrip()
    if "{{" in tail:
        raise TemplateError("unterminated action: missing '}}'")
    if tail:
        items.append(("text", tail))
    return items


def _operand(token: str) -> _Operand:
    if token.startswith('"'):
        try:
            return _Literal(str(json.loads(token)))
        except json.JSONDecodeError as exc:
            raise TemplateError(f"bad string literal {token}") from exc
    if token == ".":
        return _Field(())
    if _FIELD.match(token):
        return _Field(tuple(token[1:].split(".")))
    raise TemplateError(f"unsupported operand {token!r}")


def _pipeline(body: str) -> _Pipeline:
    segments: list[list[str]] = [[]]
    for token in _TOKEN.findall(body):
        if token == "|":
            segments.append([])
        else:
            segments[-1].append(token)
    head, *rest = segments
    if len(head) != 1:
        raise TemplateError(f"unsupported action {{{{ {body} }}}}")
    stages: list[tuple[str, _Operand | None]] = []
    for segment in rest:
        if not segment:
            raise TemplateError(f"empty pipeline stage in {{{{ {body} }}}}")
        func, *args = segment
        if func in _UNARY_FUNCS and not args:
            stages.append((func, None))
        elif func == "default" and len(args) == 1:
            stages.append((func, _operand(args[0])))
        else:
            raise TemplateError(f"unsupported function {func!r} in {{{{ {body} }}}}")
    return _Pipeline(_operand(head[0]), tuple(stages))


def _condition(body: str) -> _Compare | _Pipeline:
    tokens = _TOKEN.findall(body)
    if tokens and tokens[0] in ("eq", "ne"):
        if len(tokens) != 3:
            raise TemplateError(f"{tokens[0]} takes two operands: {{{{ if {body} }}}}")
        return _Compare(tokens[0], _operand(tokens[1]), _operand(tokens[2]))
    return _pipeline(body)


def _parse(items: list[tuple[str, str]], pos: int, stop: tuple[str, ...]) -> tuple[list[Any], int, str]:
    nodes: list[Any] = []
    while pos < len(items):
        kind, body = items[pos]
        pos += 1
        if kind == "text":
            nodes.append(_Text(body))
            continue
        keyword, *tail = body.split(None, 1) or [""]
        rest = tail[0].strip() if tail else ""
        if keyword in stop:
            if rest:
                raise TemplateError(f"unsupported action {{{{ {body} }}}}")
            return nodes, pos, keyword
        if keyword == "if":
            node = _If(_condition(rest))
            node.then, pos, closed_by = _parse(items, pos, ("else", "end"))
            if closed_by == "else":
                node.otherwise, pos, _ = _parse(items, pos, ("end",))
            nodes.append(node)
        elif keyword == "range":
            over = _operand(rest)
            if not isinstance(over, _Field):
                raise TemplateError(f"range needs a field: {{{{ {body} }}}}")
            loop = _Range(over)
            loop.body, pos, _ = _parse(items, pos, ("end",))
            nodes.append(loop)
        elif keyword in ("else", "end"):
            raise TemplateError(f"unexpected {{{{ {keyword} }}}}")
        else:
            nodes.append(_pipeline(body))
    if stop:
        raise TemplateError("missing {{ end }}")
    return nodes, pos, ""


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value)


def _resolve(operand: _Operand, dot: Any) -> Any:
    if isinstance(operand, _Literal):
        return operand.value
    value = dot
    for name in operand.path:
        if not isinstance(value, Mapping):
            return ""
        value = value.get(name, "")
    return value


def _evaluate(pipeline: _Pipeline, dot: Any) -> Any:
    value = _resolve(pipeline.operand, dot)
    for func, arg in pipeline.stages:
        if func == "default":
            if not value:
                value = _resolve(arg, dot) if arg is not None else ""
        else:
            value = _UNARY_FUNCS[func](_text(value))
    return value


def _render(nodes: list[Any], dot: Any, out: list[str]) -> None:
    for node in nodes:
        if isinstance(node, _Text):
            out.append(node.value)
        elif isinstance(node, _Pipeline):
            out.append(_text(_evaluate(node, dot)))
        elif isinstance(node, _If):
            cond = node.condition
            if isinstance(cond, _Compare):
                same = _text(_resolve(cond.left, dot)) == _text(_resolve(cond.right, dot))
                truth = same if cond.op == "eq" else not same
            else:
                truth = bool(_evaluate(cond, dot))
            _render(node.then if truth else node.otherwise, dot, out)
        elif isinstance(node, _Range):
            items = _resolve(node.over, dot)
            for item in items if isinstance(items, list) else ():
                _render(node.body, item, out)


class NotificationTemplate:
    """A compiled template. Raises TemplateError on construction if unsupported."""

    def __init__(self, source: str) -> None:
        self.source = source
        self._nodes, _, _ = _parse(_lex(source), 0, ())

    def render(self, data: Mapping[str, Any]) -> str:
        out: list[str] = []
        _render(self._nodes, data, out)
        return "".join(out)


def template_data(notification: Notification) -> dict[str, Any]:
    """The dot of a top-level template, named as in Alertmanager."""
    return {
        "Status": notification.status.value,
        "Receiver": notification.receiver,
        "GroupKey": notification.group_key,
        "GroupLabels": dict(notification.group_labels),
        "CommonLabels": dict(notification.common_labels),
        "CommonAnnotations": dict(notification.common_annotations),
        "Alerts": [
            {
                "Status": alert.status.value,
                "Labels": dict(alert.labels),
                "Annotations": dict(alert.annotations),
                "StartsAt": alert.starts_at.isoformat(),
                "EndsAt": alert.ends_at.isoformat() if alert.ends_at else "",
                "Fingerprint": alert.fingerprint,
            }
            for alert in notification.alerts
        ],
    }
