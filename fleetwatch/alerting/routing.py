"""Routing tree evaluation.

The tree is built once by the config loader with parent options already
inherited into every child, so evaluation is a pure read-only walk that is
safe to run concurrently for any number of events.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import timedelta

from fleetwatch.alerting.matchers import Matcher, all_match

# ``group_by: ['...']`` groups by every label.
GROUP_BY_ALL = "..."


@dataclass(frozen=True)
class RouteNode:
    """One node of the routing tree.

    ``key`` identifies the node by its path of matchers from the root and is
    stable across reloads as long as that path is unchanged.
    """

    key: str
    receiver: str
    matchers: tuple[Matcher, ...] = ()
    continue_to_siblings: bool = False
    group_by: tuple[str, ...] = ()
    group_wait: timedelta = timedelta(seconds=30)
    group_interval: timedelta = timedelta(minutes=5)
    repeat_interval: timedelta = timedelta(hours=4)
    children: tuple[RouteNode, ...] = ()

    def match(self, labels: Mapping[str, str]) -> list[RouteNode]:
        """Return the nodes that handle *labels*, depth-first.

        The first matching child wins unless it sets ``continue``. When no
        child matches, this node handles the alert itself; the root always
        matches, so an alert is never left without a node.
        """
        if not all_match(self.matchers, labels):
            return []
        matched: list[RouteNode] = []
        for child in self.children:
            found = child.match(labels)
            if not found:
                continue
            matched.extend(found)
            if not child.continue_to_siblings:
                break
        if not matched:
            matched.append(self)
        return matched

    def group_labels(self, labels: Mapping[str, str]) -> dict[str, str]:
        """Project *labels* onto this node's ``group_by`` set."""
        if GROUP_BY_ALL in self.group_by:
            return dict(sorted(labels.items()))
        return {name: labels[name] for name in sorted(self.group_by) if labels.get(name)}

    def group_key(self, labels: Mapping[str, str]) -> str:
        projected = self.group_labels(labels)
        inner = ",".join(f"{k}={json.dumps(v, ensure_ascii=False)}" for k, v in projected.items())
        return f"{self.key}:{{{inner}}}"

    def equivalent_to(self, other: RouteNode) -> bool:
        """Same position, receiver and grouping; timers may carry over."""
        return (
            self.key == other.key
            and self.receiver == other.receiver
            and sorted(self.group_by) == sorted(other.group_by)
        )

    def walk(self, depth: int = 0) -> Iterator[tuple[int, RouteNode]]:
        yield depth, self
        for child in self.children:
            yield from child.walk(depth + 1)

    def receivers(self) -> set[str]:
        return {node.receiver for _, node in self.walk()}
