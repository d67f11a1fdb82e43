"""Label matchers shared by the routing tree and inhibition rules."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Matcher:
    """``name="value"`` or, with ``is_regex``, ``name=~"value"``.

    Regular expressions are fully anchored. A missing label matches as the
    empty string.
    """

    name: str
    value: str
    is_regex: bool = False
    _pattern: re.Pattern[str] | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.is_regex:
            try:
                pattern = re.compile(self.value)
            except re.error as exc:
                raise ValueError(f"invalid regex for label {self.name!r}: {self.value!r}: {exc}") from exc
            object.__setattr__(self, "_pattern", pattern)

    def matches(self, labels: Mapping[str, str]) -> bool:
        actual = labels.get(self.name, "")
        if self._pattern is not None:
            return self._pattern.fullmatch(actual) is not None
        return actual == self.value

    def __str__(self) -> str:
        op = "=~" if self.is_regex else "="
        return f'{self.name}{op}"{self.value}"'


def build_matchers(
    match: Mapping[str, str] | None = None,
    match_re: Mapping[str, str] | None = None,
) -> tuple[Matcher, ...]:
    """Build a sorted matcher tuple from ``match``/``match_re`` config maps.

    Raises:
        ValueError: a regex does not compile.
    """
    matchers = [Matcher(str(k), str(v)) for k, v in (match or {}).items()]
    matchers += [Matcher(str(k), str(v), is_regex=True) for k, v in (match_re or {}).items()]
    return tuple(sorted(matchers, key=lambda m: (m.name, m.is_regex, m.value)))


def all_match(matchers: Iterable[Matcher], labels: Mapping[str, str]) -> bool:
    return all(m.matches(labels) for m in matchers)


def format_matchers(matchers: Iterable[Matcher]) -> str:
    return "{" + ",".join(str(m) for m in matchers) + "}"
