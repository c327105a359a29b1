"""
Runtime executor for compiled spellbooks.

Turns a BookIR into callable matchers. Every node block becomes a closure that
returns False as soon as one of its steps fails; its parent simply moves on to the
next sibling. All mutable state of one invocation lives in an EvaluationFrame.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from grimoire.compiler.ir import (
    BASE_POINTER,
    GLOBAL_OFFSET,
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
from grimoire.core.arith import sign_extend, truncated_div, width_mask
from grimoire.core.config import get_settings
from grimoire.core.logging_config import TRACE_LOGGER
from grimoire.rules.schema import Adjustment, IntegerTest
from .primitives import search_test, string_test
from .reads import reader_for

logger = logging.getLogger(__name__)
trace_logger = logging.getLogger(TRACE_LOGGER)

MatchResult = tuple[list[str], Exception | None]
EntryPoint = Callable[..., MatchResult]
StepFn = Callable[["EvaluationFrame"], bool]


@dataclass
class EvaluationFrame:
    """State owned by one entry-point invocation."""

    buffer: bytes
    base_offset: int
    depth: int = 0
    values: dict[str, int] = field(default_factory=dict)
    """Base pointer, global offset and scratch registers, by name."""

    read_ok: dict[str, bool] = field(default_factory=dict)
    markers: dict[str, bool] = field(default_factory=dict)
    labels: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.values[BASE_POINTER] = self.base_offset
        self.values[GLOBAL_OFFSET] = self.base_offset


# =============================================================================
# Integer semantics
# =============================================================================

_COMPARATORS: dict[IntegerTest, Callable[[int, int], bool]] = {
    IntegerTest.EQUAL: lambda actual, expected: actual == expected,
    IntegerTest.NOT_EQUAL: lambda actual, expected: actual != expected,
    IntegerTest.LESS_THAN: lambda actual, expected: actual < expected,
    IntegerTest.GREATER_THAN: lambda actual, expected: actual > expected,
}

_ADJUSTMENTS: dict[Adjustment, Callable[[int, int], int]] = {
    Adjustment.ADD: lambda value, operand: value + operand,
    Adjustment.SUB: lambda value, operand: value - operand,
    Adjustment.MUL: lambda value, operand: value * operand,
    Adjustment.DIV: truncated_div,
}


def integer_operand(step: IntegerTestStep, raw: int) -> int:
    """Value compared by an integer test: mask, adjust, truncate, maybe sign-extend."""
    value = raw
    if step.mask is not None:
        value &= step.mask
    if step.adjustment_type is not Adjustment.NONE:
        value = _ADJUSTMENTS[step.adjustment_type](value, step.adjustment_value)
    value &= width_mask(step.byte_width)
    if step.signed:
        value = sign_extend(value, step.byte_width * 8)
    return value


def expected_value(step: IntegerTestStep) -> int:
    """The literal an integer test compares against, normalised to its width."""
    if step.signed:
        return step.value
    return step.value & width_mask(step.byte_width)


# =============================================================================
# Step builders
# =============================================================================

def _build_read(step: ReadStep, book: MagicBook) -> StepFn:
    read = reader_for(step.byte_width, step.endianness.value)
    register = step.target
    address = step.address

    def run(frame: EvaluationFrame) -> bool:
        value, ok = read(frame.buffer, address.evaluate(frame.values))
        frame.values[register] = value
        frame.read_ok[register] = ok
        return True

    return run


def _build_require_read(step: RequireRead, book: MagicBook) -> StepFn:
    register = step.target
    return lambda frame: frame.read_ok[register]


def _build_require_nonzero(step: RequireNonZero, book: MagicBook) -> StepFn:
    register = step.target
    return lambda frame: frame.values[register] != 0


def _build_integer_test(step: IntegerTestStep, book: MagicBook) -> StepFn:
    register = step.target
    compare = _COMPARATORS[step.integer_test]
    expected = expected_value(step)

    def run(frame: EvaluationFrame) -> bool:
        if not frame.read_ok[register]:
            return False
        return compare(integer_operand(step, frame.values[register]), expected)

    return run


def _build_string_test(step: StringTestStep, book: MagicBook) -> StepFn:
    register = step.target

    def run(frame: EvaluationFrame) -> bool:
        position = string_test(frame.buffer, step.address.evaluate(frame.values), step.pattern, step.flags)
        frame.values[register] = position
        return (position >= 0) != step.negate

    return run


def _build_search_test(step: SearchTestStep, book: MagicBook) -> StepFn:
    register = step.target

    def run(frame: EvaluationFrame) -> bool:
        position = search_test(frame.buffer, step.address.evaluate(frame.values), step.max_len, step.pattern)
        frame.values[register] = position
        return position >= 0

    return run


def _build_set_global(step: SetGlobalOffset, book: MagicBook) -> StepFn:
    value = step.value

    def run(frame: EvaluationFrame) -> bool:
        frame.values[GLOBAL_OFFSET] = value.evaluate(frame.values)
        return True

    return run


def _build_use(step: UsePage, book: MagicBook) -> StepFn:
    entry_point = step.entry_point
    address = step.address

    def run(frame: EvaluationFrame) -> bool:
        if frame.depth >= book.max_use_depth:
            logger.debug("Not entering %s: use depth %d reached", entry_point, frame.depth)
            return True
        labels, _ = book.entry_point(entry_point)(
            frame.buffer, address.evaluate(frame.values), depth=frame.depth + 1
        )
        frame.labels.extend(labels)
        return True

    return run


def _build_check_default(step: CheckDefault, book: MagicBook) -> StepFn:
    marker = step.marker
    return lambda frame: not frame.markers.get(marker, False)


def _build_set_marker(step: SetMarker, book: MagicBook) -> StepFn:
    marker = step.marker
    value = step.value

    def run(frame: EvaluationFrame) -> bool:
        frame.markers[marker] = value
        return True

    return run


def _build_emit(step: EmitLabel, book: MagicBook) -> StepFn:
    label = step.label

    def run(frame: EvaluationFrame) -> bool:
        frame.labels.append(label)
        return True

    return run


def _build_trace(step: TraceRule, book: MagicBook) -> StepFn:
    line = step.line

    def run(frame: EvaluationFrame) -> bool:
        trace_logger.info("%s", line)
        return True

    return run


def _build_fail(step: AlwaysFail, book: MagicBook) -> StepFn:
    return lambda frame: False


STEP_BUILDERS: dict[str, Callable[[Step, MagicBook], StepFn]] = {
    "read": _build_read,
    "require_read": _build_require_read,
    "require_nonzero": _build_require_nonzero,
    "integer_test": _build_integer_test,
    "string_test": _build_string_test,
    "search_test": _build_search_test,
    "set_global": _build_set_global,
    "use": _build_use,
    "check_default": _build_check_default,
    "set_marker": _build_set_marker,
    "emit": _build_emit,
    "trace": _build_trace,
    "fail": _build_fail,
}


def build_node(node: NodeIR, book: MagicBook) -> StepFn:
    """Turn a node block and its subtree into one closure."""
    steps = [STEP_BUILDERS[step.op](step, book) for step in node.steps]
    children = [build_node(child, book) for child in node.children]
    children_marker = node.children_marker
    finalize_marker = node.finalize_marker

    def run(frame: EvaluationFrame) -> bool:
        for step in steps:
            if not step(frame):
                return False
        if children_marker is not None:
            frame.markers[children_marker] = False
        for child in children:
            child(frame)
        if finalize_marker is not None:
            frame.markers[finalize_marker] = True
        return True

    return run


def build_entry_point(program: PageIR, book: MagicBook) -> EntryPoint:
    """Build the ``(buffer, base_offset) -> (labels, error)`` callable of a page."""
    nodes = [build_node(node, book) for node in program.nodes]

    def identify(buffer: bytes, base_offset: int = 0, *, depth: int = 0) -> MatchResult:
        if not isinstance(buffer, bytes):
            buffer = bytes(buffer)
        frame = EvaluationFrame(buffer=buffer, base_offset=base_offset, depth=depth)
        for node in nodes:
            node(frame)
        return frame.labels, None

    identify.__name__ = program.entry_point
    identify.__qualname__ = program.entry_point
    return identify


# =============================================================================
# Book
# =============================================================================

class MagicBook:
    """Callable matchers for every entry point of a compiled spellbook."""

    def __init__(self, book: BookIR, max_use_depth: int | None = None):
        """Build the matchers.

        Args:
            book: The compiled spellbook
            max_use_depth: Deepest chain of ``use`` calls followed
                (defaults to ``Settings.max_use_depth``)
        """
        self.ir = book
        self.max_use_depth = (
            get_settings().max_use_depth if max_use_depth is None else max_use_depth
        )
        self._entry_points: dict[str, EntryPoint] = {}
        self._pages: dict[tuple[str, bool], str] = {}
        for program in book.pages:
            self._entry_points[program.entry_point] = build_entry_point(program, self)
            self._pages[(program.page, program.swapped)] = program.entry_point

    def entry_point(self, name: str) -> EntryPoint:
        """Get an entry point by name (e.g. ``IdentifyElf``)."""
        try:
            return self._entry_points[name]
        except KeyError:
            raise KeyError(f"no entry point named {name!r}") from None

    def entry_points(self) -> list[str]:
        return list(self._entry_points)

    def identify(
        self,
        page: str,
        buffer: bytes,
        offset: int = 0,
        swapped: bool = False,
    ) -> list[str]:
        """Match ``buffer`` against a page and return the labels produced."""
        try:
            name = self._pages[(page, swapped)]
        except KeyError:
            raise KeyError(f"no page named {page!r}") from None
        labels, _ = self._entry_points[name](buffer, offset)
        return labels

    def __getattr__(self, name: str) -> EntryPoint:
        if name.startswith("Identify"):
            entry_points = self.__dict__.get("_entry_points", {})
            if name in entry_points:
                return entry_points[name]
        raise AttributeError(name)

    def __contains__(self, name: str) -> bool:
        return name in self._entry_points


def load_book(book: BookIR, max_use_depth: int | None = None) -> MagicBook:
    """Convenience function to build matchers for a compiled book."""
    return MagicBook(book, max_use_depth=max_use_depth)


__all__ = [
    "EvaluationFrame",
    "MagicBook",
    "STEP_BUILDERS",
    "build_entry_point",
    "build_node",
    "expected_value",
    "integer_operand",
    "load_book",
]
