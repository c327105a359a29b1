"""Rule tree construction.

A page arrives as a flat rule list where each rule carries its depth. This module
rebuilds the forest those depths describe.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator

from grimoire.exceptions import TreeError
from grimoire.rules.schema import Rule


@dataclass(eq=False)
class RuleNode:
    """A rule plus its children, identified by construction order."""

    id: int
    rule: Rule
    children: list[RuleNode] = field(default_factory=list)

    @property
    def level(self) -> int:
        return self.rule.level

    def walk(self) -> Iterator[RuleNode]:
        """Yield this node and its descendants depth-first."""
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(eq=False)
class Page:
    """A named page and its root rule nodes."""

    name: str
    roots: list[RuleNode]

    def walk(self) -> Iterator[RuleNode]:
        for root in self.roots:
            yield from root.walk()


def treeify(rules: Iterable[Rule]) -> list[RuleNode]:
    """Arrange a leveled rule sequence into root nodes.

    Each rule becomes the next child of the last node seen one level up, or a new
    root at level 0.

    Raises:
        TreeError: if a rule is more than one level deeper than its predecessor.
    """
    roots: list[RuleNode] = []
    stack: list[RuleNode] = []

    for node_id, rule in enumerate(rules):
        if rule.level > len(stack):
            raise TreeError(
                f"rule at level {rule.level} has no parent at level {rule.level - 1}: "
                f"{rule.line or rule.description!r}"
            )

        node = RuleNode(id=node_id, rule=rule)
        if rule.level > 0:
            stack[rule.level - 1].children.append(node)
        else:
            roots.append(node)

        del stack[rule.level:]
        stack.append(node)

    return roots


def build_page(name: str, rules: Iterable[Rule]) -> Page:
    return Page(name=name, roots=treeify(rules))


def flatten(roots: Iterable[RuleNode]) -> list[tuple[int, int]]:
    """Return ``(level, id)`` for every node in depth-first order."""
    return [(node.level, node.id) for root in roots for node in root.walk()]


__all__ = ["Page", "RuleNode", "build_page", "flatten", "treeify"]
