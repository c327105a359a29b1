"""
Spellbook compiler.

Walks each page's rule tree and produces the IR consumed by the matcher runtime
and the source emitter. Every page is compiled twice: once with the byte orders
written in the rules and once with every multi-byte read swapped.
"""

from __future__ import annotations

import logging
import time
from typing import Collection

from grimoire.core.config import get_settings
from grimoire.exceptions import CompilationError
from grimoire.rules.schema import (
    Adjustment,
    ClearKind,
    DefaultKind,
    DirectOffset,
    IndirectOffset,
    IntegerKind,
    NameKind,
    Rule,
    SearchKind,
    Spellbook,
    StringKind,
    UseKind,
)
from .expressions import Expression, Operator, add, binary, number, variable
from .ir import (
    BASE_POINTER,
    FAILING_OPS,
    GLOBAL_OFFSET,
    AlwaysFail,
    BookIR,
    CheckDefault,
    CompileStats,
    EmitLabel,
    IntegerTestStep,
    NodeIR,
    PageIR,
    ReadStep,
    RequireNonZero,
    RequireRead,
    SearchTestStep,
    SetGlobalOffset,
    SetMarker,
    Step,
    StringTestStep,
    TraceRule,
    UsePage,
)
from .optimizer import ReadReusePlanner, analyze_book, fold_address, register_name
from .tree import Page, RuleNode, build_page

logger = logging.getLogger(__name__)

ADJUSTMENT_OPERATORS = {
    Adjustment.ADD: Operator.ADD,
    Adjustment.SUB: Operator.SUB,
    Adjustment.MUL: Operator.MUL,
    Adjustment.DIV: Operator.DIV,
}


def page_symbol(page: str, swap_endian: bool = False, swapped_suffix: str = "__Swapped") -> str:
    """Symbol for a page: dash-separated tokens, each capitalized, concatenated."""
    symbol = "".join(token[:1].upper() + token[1:] for token in page.split("-"))
    if swap_endian:
        symbol += swapped_suffix
    return symbol


def entry_point_name(page: str, swap_endian: bool = False, swapped_suffix: str = "__Swapped") -> str:
    return "Identify" + page_symbol(page, swap_endian, swapped_suffix)


def _describe(rule: Rule) -> str:
    return repr(rule.line or rule.description)


class PageCompiler:
    """Compiles one page for one byte order.

    All state here (registers, markers, statistics) belongs to a single program.
    """

    def __init__(
        self,
        page: Page,
        swap_endian: bool,
        known_pages: Collection[str],
        chatty: bool = False,
        swapped_suffix: str = "__Swapped",
    ):
        self.page = page
        self.swap_endian = swap_endian
        self.known_pages = known_pages
        self.chatty = chatty
        self.swapped_suffix = swapped_suffix
        self.stats = CompileStats()
        self._markers: set[str] = set()
        self._reuse = ReadReusePlanner(self.stats)

    def compile(self) -> PageIR:
        nodes = [self.compile_node(root, None, None) for root in self.page.roots]
        return PageIR(
            page=self.page.name,
            symbol=page_symbol(self.page.name, self.swap_endian, self.swapped_suffix),
            entry_point=entry_point_name(self.page.name, self.swap_endian, self.swapped_suffix),
            swapped=self.swap_endian,
            nodes=nodes,
            markers=sorted(self._markers),
            stats=self.stats,
        )

    def compile_node(
        self,
        node: RuleNode,
        default_marker: str | None,
        previous: RuleNode | None,
    ) -> NodeIR:
        """Compile ``node`` and its subtree.

        Args:
            node: The rule node
            default_marker: Marker of the default group this node belongs to, if any
            previous: The node evaluated just before this one (previous sibling,
                or the parent for a first child), for read reuse

        Returns:
            The node's IR block
        """
        rule = node.rule
        kind = rule.kind
        steps: list[Step] = []
        self.stats.nodes += 1

        # Only track the global offset if a child is addressed relative to it.
        set_global = any(child.rule.offset.references_global() for child in node.children)

        address = self._resolve_address(node, previous, steps)

        if isinstance(kind, IntegerKind):
            if not kind.match_any:
                self._emit_integer_test(node, previous, kind, address, steps)
            if set_global:
                steps.append(SetGlobalOffset(value=self._fold(add(address, number(kind.byte_width)))))

        elif isinstance(kind, StringKind):
            register = register_name("rA", node)
            steps.append(
                StringTestStep(
                    target=register,
                    address=address,
                    pattern=kind.value,
                    flags=kind.flags,
                    negate=kind.negate,
                )
            )
            if set_global:
                steps.append(SetGlobalOffset(value=self._fold(add(address, variable(register)))))

        elif isinstance(kind, SearchKind):
            register = register_name("rA", node)
            steps.append(
                SearchTestStep(
                    target=register,
                    address=address,
                    max_len=kind.max_len,
                    pattern=kind.value,
                )
            )
            if set_global:
                end = add(variable(register), number(len(kind.value)))
                steps.append(SetGlobalOffset(value=self._fold(add(address, end))))

        elif isinstance(kind, UseKind):
            if kind.page not in self.known_pages:
                raise CompilationError(
                    f"page {self.page.name!r}: use of unknown page {kind.page!r} in {_describe(rule)}"
                )
            steps.append(
                UsePage(
                    page=kind.page,
                    entry_point=entry_point_name(kind.page, kind.swap_endian, self.swapped_suffix),
                    address=address,
                )
            )

        elif isinstance(kind, NameKind):
            pass

        elif isinstance(kind, ClearKind):
            if not default_marker:
                raise CompilationError(
                    f"page {self.page.name!r}: clear rule outside a default group: {_describe(rule)}"
                )
            steps.append(SetMarker(marker=default_marker, value=False))

        elif isinstance(kind, DefaultKind):
            if not default_marker:
                raise CompilationError(
                    f"page {self.page.name!r}: default rule outside a default group: {_describe(rule)}"
                )
            steps.append(CheckDefault(marker=default_marker))
            if set_global:
                steps.append(SetGlobalOffset(value=address))

        else:
            logger.debug("Unhandled kind %r in %s", kind.family, _describe(rule))
            steps.append(AlwaysFail(reason=f"unhandled kind {kind.family}"))

        if self.chatty:
            steps.append(TraceRule(line=rule.line))
        if rule.description:
            steps.append(EmitLabel(label=rule.description))

        children_marker = None
        if any(isinstance(child.rule.kind, DefaultKind) for child in node.children):
            children_marker = f"d{rule.level:x}"
            self._markers.add(children_marker)
            self.stats.default_groups += 1

        children = []
        previous_child = node
        for child in node.children:
            children.append(self.compile_node(child, children_marker, previous_child))
            previous_child = child

        return NodeIR(
            node_id=node.id,
            level=rule.level,
            line=rule.line,
            steps=steps,
            children_marker=children_marker,
            children=children,
            finalize_marker=None if isinstance(kind, ClearKind) else default_marker,
            can_fail=any(step.op in FAILING_OPS for step in steps),
        )

    def _fold(self, expression: Expression) -> Expression:
        return fold_address(expression, self.stats)

    def _resolve_address(
        self,
        node: RuleNode,
        previous: RuleNode | None,
        steps: list[Step],
    ) -> Expression:
        """Build the folded address expression, emitting any pointer reads."""
        offset = node.rule.offset

        if isinstance(offset, DirectOffset):
            anchor = GLOBAL_OFFSET if offset.is_relative else BASE_POINTER
            return self._fold(add(variable(anchor), number(offset.value)))

        return self._resolve_indirect(node, offset, previous, steps)

    def _resolve_indirect(
        self,
        node: RuleNode,
        offset: IndirectOffset,
        previous: RuleNode | None,
        steps: list[Step],
    ) -> Expression:
        endianness = offset.endianness.maybe_swapped(self.swap_endian)

        anchor = GLOBAL_OFFSET if offset.address_is_relative else BASE_POINTER
        pointer_address = self._fold(add(variable(anchor), number(offset.offset_address)))

        pointer, reused = self._reuse.pointer_register(node, previous)
        if not reused:
            steps.append(
                ReadStep(
                    target=pointer,
                    byte_width=offset.byte_width,
                    endianness=endianness,
                    address=pointer_address,
                )
            )
        steps.append(RequireRead(target=pointer))

        target: Expression = variable(pointer)
        if offset.adjustment_type is not Adjustment.NONE:
            operand: Expression = number(offset.adjustment_value)

            if offset.adjustment_is_relative:
                adjustment = register_name("rb", node)
                steps.append(
                    ReadStep(
                        target=adjustment,
                        byte_width=offset.byte_width,
                        endianness=endianness,
                        address=self._fold(add(pointer_address, number(offset.adjustment_value))),
                    )
                )
                steps.append(RequireRead(target=adjustment))
                self.stats.reads += 1
                operand = variable(adjustment)
                if offset.adjustment_type is Adjustment.DIV:
                    steps.append(RequireNonZero(target=adjustment))
            elif offset.adjustment_type is Adjustment.DIV and offset.adjustment_value == 0:
                raise CompilationError(
                    f"page {self.page.name!r}: indirect offset divides by zero in {_describe(node.rule)}"
                )

            target = binary(target, ADJUSTMENT_OPERATORS[offset.adjustment_type], operand)

        anchor = GLOBAL_OFFSET if offset.is_relative else BASE_POINTER
        return self._fold(add(variable(anchor), target))

    def _emit_integer_test(
        self,
        node: RuleNode,
        previous: RuleNode | None,
        kind: IntegerKind,
        address: Expression,
        steps: list[Step],
    ) -> None:
        if kind.adjustment_type is Adjustment.DIV and kind.adjustment_value == 0:
            raise CompilationError(
                f"page {self.page.name!r}: integer adjustment divides by zero in {_describe(node.rule)}"
            )

        endianness = kind.endianness.maybe_swapped(self.swap_endian)
        register, reused = self._reuse.value_register(node, previous, kind, endianness)
        if not reused:
            steps.append(
                ReadStep(
                    target=register,
                    byte_width=kind.byte_width,
                    endianness=endianness,
                    address=address,
                )
            )

        steps.append(
            IntegerTestStep(
                target=register,
                byte_width=kind.byte_width,
                integer_test=kind.integer_test,
                mask=kind.and_value if kind.do_and else None,
                adjustment_type=kind.adjustment_type,
                adjustment_value=kind.adjustment_value,
                value=kind.value,
            )
        )


class SpellCompiler:
    """Compiles a whole spellbook into a BookIR."""

    def __init__(self, chatty: bool | None = None, swapped_suffix: str | None = None):
        """Initialize the compiler.

        Args:
            chatty: Emit a trace step logging each evaluated rule's source line
                (defaults to ``Settings.chatty``)
            swapped_suffix: Suffix distinguishing swapped entry points
                (defaults to ``Settings.swapped_suffix``)
        """
        settings = get_settings()
        self.chatty = settings.chatty if chatty is None else chatty
        self.swapped_suffix = settings.swapped_suffix if swapped_suffix is None else swapped_suffix

    def compile_page(
        self,
        page: Page,
        swap_endian: bool = False,
        known_pages: Collection[str] | None = None,
    ) -> PageIR:
        """Compile one page for one byte order.

        Args:
            page: The page (already arranged into a tree)
            swap_endian: Swap every multi-byte read
            known_pages: Pages ``use`` rules may refer to (defaults to this page only)
        """
        if known_pages is None:
            known_pages = {page.name}
        compiler = PageCompiler(
            page,
            swap_endian,
            known_pages,
            chatty=self.chatty,
            swapped_suffix=self.swapped_suffix,
        )
        program = compiler.compile()
        logger.debug(
            "Compiled %s: %d node(s), %d read(s), %d elided",
            program.entry_point,
            program.stats.nodes,
            program.stats.reads,
            program.stats.reads_elided,
        )
        return program

    def compile_book(self, book: Spellbook) -> BookIR:
        """Compile every page, in sorted order, native then swapped.

        Raises:
            TreeError: if a page's levels do not form a tree
            CompilationError: if a rule cannot be compiled
        """
        start_time = time.perf_counter()

        programs: list[PageIR] = []
        for name in sorted(book):
            page = build_page(name, book[name])
            for swap_endian in (False, True):
                programs.append(self.compile_page(page, swap_endian, known_pages=book))

        result = BookIR(pages=programs)
        summary = analyze_book(result)
        logger.info(
            "Compiled %d page(s) into %d entry point(s) in %.3fs (%d read(s), %d elided)",
            summary["pages"],
            summary["entry_points"],
            time.perf_counter() - start_time,
            summary["reads"],
            summary["reads_elided"],
        )
        return result


def compile_book(book: Spellbook, chatty: bool | None = None) -> BookIR:
    """Convenience function to compile a spellbook."""
    return SpellCompiler(chatty=chatty).compile_book(book)


__all__ = [
    "PageCompiler",
    "SpellCompiler",
    "compile_book",
    "entry_point_name",
    "page_symbol",
]
