"""Inhibition: suppress notifications implied by a higher-priority alert.

Inhibited alerts are never removed from engine state; they are flagged and
left out of notification payloads until the source stops firing.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from fleetwatch.alerting.matchers import Matcher, all_match, format_matchers


@dataclass(frozen=True)
class InhibitionRule:
    """``source`` alerts firing with equal ``equal_labels`` mute ``target`` alerts."""

    source_matchers: tuple[Matcher, ...]
    target_matchers: tuple[Matcher, ...]
    equal_labels: tuple[str, ...] = ()

    def __str__(self) -> str:
        return (
            f"source={format_matchers(self.source_matchers)} "
            f"target={format_matchers(self.target_matchers)} "
            f"equal={list(self.equal_labels)}"
        )

    def inhibits(
        self,
        target_fp: str,
        target: Mapping[str, str],
        firing: Mapping[str, Mapping[str, str]],
    ) -> str | None:
        """Fingerprint of a firing alert that mutes *target* under this rule."""
        if not all_match(self.target_matchers, target):
            return None
        # An alert matching both sides may only be muted by a source that
        # does not itself match the target side.
        two_sided = all_match(self.source_matchers, target)
        for source_fp, source in firing.items():
            if source_fp == target_fp:
                continue
            if not all_match(self.source_matchers, source):
                continue
            if two_sided and all_match(self.target_matchers, source):
                continue
            if all(source.get(name, "") == target.get(name, "") for name in self.equal_labels):
                return source_fp
        return None


class Inhibitor:
    """Evaluates a rule set against the currently firing alerts."""

    def __init__(self, rules: Sequence[InhibitionRule] = ()) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[InhibitionRule, ...]:
        return self._rules

    def inhibited_by(
        self,
        target_fp: str,
        target: Mapping[str, str],
        firing: Mapping[str, Mapping[str, str]],
    ) -> str | None:
        for rule in self._rules:
            source_fp = rule.inhibits(target_fp, target, firing)
            if source_fp is not None:
                return source_fp
        return None

    def inhibited(self, firing: Mapping[str, Mapping[str, str]]) -> dict[str, str]:
        """Map each muted firing alert's fingerprint to the fingerprint muting it."""
        muted: dict[str, str] = {}
        if not self._rules:
            return muted
        for fp, labels in firing.items():
            source_fp = self.inhibited_by(fp, labels, firing)
            if source_fp is not None:
                muted[fp] = source_fp
        return muted
