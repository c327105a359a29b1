"""
Python source emitter.

Renders a BookIR as a standalone Python module with one function per entry point:

    def IdentifyElf(tb, po, _depth=0):
        ...
        return out, None

Each node block that can fail becomes a ``while True: ... break`` block, so a
failing test breaks out of exactly one subtree and execution resumes at the next
sibling. Registers and default markers are plain local variables.
"""

from __future__ import annotations

import keyword
import logging
from types import ModuleType

from grimoire.compiler.ir import (
    AlwaysFail,
    BookIR,
    CheckDefault,
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
from grimoire.core.arith import width_mask
from grimoire.core.config import get_settings
from grimoire.core.logging_config import TRACE_LOGGER
from grimoire.exceptions import CompilationError
from grimoire.rules.schema import Adjustment, IntegerTest
from grimoire.runtime.reads import reader_name

logger = logging.getLogger(__name__)

INDENT = "    "

# CPython refuses more statically nested blocks than this in one function.
MAX_NESTED_BLOCKS = 20

_COMPARISONS = {
    IntegerTest.EQUAL: "==",
    IntegerTest.NOT_EQUAL: "!=",
    IntegerTest.LESS_THAN: "<",
    IntegerTest.GREATER_THAN: ">",
}

_ADJUSTMENT_OPERATORS = {
    Adjustment.ADD: "+",
    Adjustment.SUB: "-",
    Adjustment.MUL: "*",
}


class _SourceWriter:
    """Accumulates indented source lines."""

    def __init__(self):
        self.lines: list[str] = []
        self.depth = 0

    def line(self, text: str = "") -> None:
        self.lines.append(INDENT * self.depth + text if text else "")

    def indent(self) -> None:
        self.depth += 1

    def dedent(self) -> None:
        self.depth -= 1

    def render(self) -> str:
        return "\n".join(self.lines) + "\n"


def _comment(text: str) -> str:
    return " ".join(text.split())


def _check_identifier(name: str) -> None:
    if not name.isidentifier() or keyword.iskeyword(name):
        raise CompilationError(f"{name!r} is not a valid Python identifier")


def _block_depth(node: NodeIR) -> int:
    own = 1 if node.can_fail else 0
    return own + max((_block_depth(child) for child in node.children), default=0)


def integer_expression(step: IntegerTestStep) -> str:
    """Source of the value an integer test compares (see ``integer_operand``)."""
    expr = step.target
    if step.mask is not None:
        expr = f"({expr} & {step.mask:#x})"
    if step.adjustment_type is Adjustment.DIV:
        expr = f"truncated_div({expr}, {step.adjustment_value})"
    elif step.adjustment_type is not Adjustment.NONE:
        operator = _ADJUSTMENT_OPERATORS[step.adjustment_type]
        expr = f"({expr} {operator} {step.adjustment_value})"
    expr = f"({expr} & {width_mask(step.byte_width):#x})"
    if step.signed:
        expr = f"sign_extend({expr}, {step.byte_width * 8})"
    return expr


class ModuleRenderer:
    """Renders the entry points of one BookIR."""

    def __init__(self, book: BookIR, emit_comments: bool = False, max_use_depth: int = 32):
        self.book = book
        self.emit_comments = emit_comments
        self.max_use_depth = max_use_depth
        self.out = _SourceWriter()

    def render(self) -> str:
        for page in self.book.pages:
            _check_identifier(page.entry_point)

        readers = sorted(
            {
                reader_name(step.byte_width, step.endianness.value)
                for page in self.book.pages
                for node in page.walk()
                for step in node.steps
                if isinstance(step, ReadStep)
            }
        )

        w = self.out
        w.line('"""Matchers generated by grimoire. Do not edit."""')
        w.line()
        w.line("import logging")
        w.line()
        w.line("from grimoire.core.arith import sign_extend, truncated_div")
        w.line("from grimoire.runtime.primitives import search_test, string_test")
        if readers:
            w.line(f"from grimoire.runtime.reads import {', '.join(readers)}")
        w.line()
        w.line(f"MAX_USE_DEPTH = {self.max_use_depth}")
        w.line()
        w.line(f"_trace = logging.getLogger({TRACE_LOGGER!r})")

        for page in self.book.pages:
            w.line()
            w.line()
            self.render_page(page)

        w.line()
        w.line()
        w.line(f"__all__ = {self.book.entry_points()!r}")
        return w.render()

    def render_page(self, page: PageIR) -> None:
        depth = max((_block_depth(node) for node in page.nodes), default=0)
        if depth >= MAX_NESTED_BLOCKS:
            raise CompilationError(
                f"page {page.page!r} nests {depth} failable rules, too deep for generated source"
            )

        w = self.out
        w.line(f"def {page.entry_point}(tb, po, _depth=0):")
        w.indent()
        summary = f"Match page {page.page!r}" + (" (byte-swapped)." if page.swapped else ".")
        w.line(repr(summary))
        w.line("out = []")
        w.line("gf = po")
        for marker in page.markers:
            _check_identifier(marker)
            w.line(f"{marker} = False")
        for node in page.nodes:
            self.render_node(node)
        w.line("return out, None")
        w.dedent()

    def render_node(self, node: NodeIR) -> None:
        w = self.out
        if self.emit_comments:
            w.line(f"# {node.fail_label}: {_comment(node.line)}".rstrip())

        if node.can_fail:
            w.line("while True:")
            w.indent()

        for step in node.steps:
            self.render_step(step)

        if node.children_marker is not None:
            w.line(f"{node.children_marker} = False")
        for child in node.children:
            self.render_node(child)
        if node.finalize_marker is not None:
            w.line(f"{node.finalize_marker} = True")

        if node.can_fail:
            w.line("break")
            w.dedent()

    def render_step(self, step: Step) -> None:
        w = self.out

        if isinstance(step, ReadStep):
            reader = reader_name(step.byte_width, step.endianness.value)
            w.line(f"{step.target}, {step.target}_ok = {reader}(tb, {step.address.render()})")

        elif isinstance(step, RequireRead):
            w.line(f"if not {step.target}_ok:")
            w.line(f"{INDENT}break")

        elif isinstance(step, RequireNonZero):
            w.line(f"if {step.target} == 0:")
            w.line(f"{INDENT}break")

        elif isinstance(step, IntegerTestStep):
            expected = step.value if step.signed else step.value & width_mask(step.byte_width)
            comparison = _COMPARISONS[step.integer_test]
            w.line(
                f"if not ({step.target}_ok and "
                f"{integer_expression(step)} {comparison} {expected:#x}):"
            )
            w.line(f"{INDENT}break")

        elif isinstance(step, StringTestStep):
            w.line(
                f"{step.target} = string_test(tb, {step.address.render()}, "
                f"{step.pattern!r}, {step.flags})"
            )
            w.line(f"if {step.target} {'>=' if step.negate else '<'} 0:")
            w.line(f"{INDENT}break")

        elif isinstance(step, SearchTestStep):
            w.line(
                f"{step.target} = search_test(tb, {step.address.render()}, "
                f"{step.max_len}, {step.pattern!r})"
            )
            w.line(f"if {step.target} < 0:")
            w.line(f"{INDENT}break")

        elif isinstance(step, SetGlobalOffset):
            w.line(f"gf = {step.value.render()}")

        elif isinstance(step, UsePage):
            _check_identifier(step.entry_point)
            w.line("if _depth < MAX_USE_DEPTH:")
            w.line(f"{INDENT}out.extend({step.entry_point}(tb, {step.address.render()}, _depth + 1)[0])")

        elif isinstance(step, CheckDefault):
            w.line(f"if {step.marker}:")
            w.line(f"{INDENT}break")

        elif isinstance(step, SetMarker):
            w.line(f"{step.marker} = {step.value}")

        elif isinstance(step, EmitLabel):
            w.line(f"out.append({step.label!r})")

        elif isinstance(step, TraceRule):
            w.line(f"_trace.info('%s', {step.line!r})")

        elif isinstance(step, AlwaysFail):
            w.line(f"break  # {_comment(step.reason)}" if step.reason else "break")

        else:
            raise CompilationError(f"cannot render step {step.op!r}")


def render_module(
    book: BookIR,
    emit_comments: bool | None = None,
    max_use_depth: int | None = None,
) -> str:
    """Render a compiled book as Python source.

    Args:
        book: The compiled spellbook
        emit_comments: Precede each node block with its rule's source line
            (defaults to ``Settings.emit_comments``)
        max_use_depth: Deepest chain of ``use`` calls the generated functions
            follow (defaults to ``Settings.max_use_depth``)

    Returns:
        The module source

    Raises:
        CompilationError: if an entry point name is not a Python identifier or a
            page nests too deeply
    """
    settings = get_settings()
    renderer = ModuleRenderer(
        book,
        emit_comments=settings.emit_comments if emit_comments is None else emit_comments,
        max_use_depth=settings.max_use_depth if max_use_depth is None else max_use_depth,
    )
    source = renderer.render()
    logger.debug("Rendered %d entry point(s), %d line(s)", len(book.pages), source.count("\n"))
    return source


def load_module(book: BookIR, name: str = "grimoire_generated", **kwargs) -> ModuleType:
    """Render ``book`` and execute the source as a fresh module."""
    source = render_module(book, **kwargs)
    module = ModuleType(name)
    module.__dict__["__source__"] = source
    exec(compile(source, f"<{name}>", "exec"), module.__dict__)
    return module


__all__ = [
    "MAX_NESTED_BLOCKS",
    "ModuleRenderer",
    "integer_expression",
    "load_module",
    "render_module",
]
