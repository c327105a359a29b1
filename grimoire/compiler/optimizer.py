"""
Compile-time optimizations for page programs.

Provides the two optimizations the compiler applies while walking a page:
- Constant folding of every computed address
- Read de-duplication between a node and the node evaluated just before it

plus a summary of what they achieved over a compiled book.
"""

from __future__ import annotations

from typing import Any

from grimoire.rules.schema import Endianness, IntegerKind, Offset
from .expressions import Expression
from .ir import BookIR, CompileStats, PageIR, ReadStep
from .tree import RuleNode


def register_name(prefix: str, node: RuleNode) -> str:
    """Scratch register owned by ``node`` (``ra1f``, ``rc3``, ...)."""
    return f"{prefix}{node.id:x}"


class ReadReusePlanner:
    """Decides which reads can be served from an earlier node's register.

    The "previous" node is the previous sibling, or the parent for a first child.
    Either one has always run its reads by the time the current node runs, and
    registers are never written by any other node, so a reused register holds
    exactly what a fresh read would return.

    Offsets relative to the global offset are never reused: a sibling's subtree
    may have moved the global offset in between.
    """

    def __init__(self, stats: CompileStats):
        self._stats = stats
        self._pointers: dict[int, str] = {}
        self._values: dict[int, tuple[str, int, Endianness]] = {}

    @staticmethod
    def same_address(node: RuleNode, previous: RuleNode | None) -> bool:
        if previous is None:
            return False
        offset: Offset = node.rule.offset
        return offset == previous.rule.offset and not offset.references_global()

    def pointer_register(self, node: RuleNode, previous: RuleNode | None) -> tuple[str, bool]:
        """Register holding ``node``'s indirect pointer, and whether it is reused."""
        if self.same_address(node, previous) and previous.id in self._pointers:
            register = self._pointers[previous.id]
            self._pointers[node.id] = register
            self._stats.reads_elided += 1
            return register, True

        register = register_name("ra", node)
        self._pointers[node.id] = register
        self._stats.reads += 1
        return register, False

    def value_register(
        self,
        node: RuleNode,
        previous: RuleNode | None,
        kind: IntegerKind,
        endianness: Endianness,
    ) -> tuple[str, bool]:
        """Register holding ``node``'s integer value, and whether it is reused.

        Reuse needs the same address, width and byte order; the earlier node must
        itself be a non-wildcard integer rule.
        """
        if self.same_address(node, previous) and previous.id in self._values:
            register, width, order = self._values[previous.id]
            if width == kind.byte_width and order is endianness:
                self._values[node.id] = (register, width, order)
                self._stats.reads_elided += 1
                return register, True

        register = register_name("rc", node)
        self._values[node.id] = (register, kind.byte_width, endianness)
        self._stats.reads += 1
        return register, False


def fold_address(expression: Expression, stats: CompileStats) -> Expression:
    """Fold ``expression`` and count it if folding changed anything."""
    folded = expression.fold()
    if folded is not expression:
        stats.folded_expressions += 1
    return folded


def count_reads(page: PageIR) -> int:
    """Number of read steps actually present in a page program."""
    return sum(
        1 for node in page.walk() for step in node.steps if isinstance(step, ReadStep)
    )


def analyze_book(book: BookIR) -> dict[str, Any]:
    """Summarize a compiled book.

    Returns:
        Dict with totals and a per-entry-point breakdown
    """
    per_page = {
        page.entry_point: {
            "page": page.page,
            "swapped": page.swapped,
            **page.stats.model_dump(),
            "markers": len(page.markers),
        }
        for page in book.pages
    }
    totals = CompileStats()
    for page in book.pages:
        for field, value in page.stats.model_dump().items():
            setattr(totals, field, getattr(totals, field) + value)

    return {
        "entry_points": len(book.pages),
        "pages": len({page.page for page in book.pages}),
        **totals.model_dump(),
        "per_entry_point": per_page,
    }


__all__ = [
    "ReadReusePlanner",
    "analyze_book",
    "count_reads",
    "fold_address",
    "register_name",
]
