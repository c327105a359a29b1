"""
Intermediate Representation (IR) for compiled spellbook pages.

Each rule node compiles to a NodeIR block: a linear sequence of steps followed by
its children. Any failing step ends the block early and control resumes at the next
sibling, so a failure skips exactly one subtree.

Registers are named after the node that writes them (``ra1f``, ``rc20``, ...) and
default markers after the level that owns them (``d0``, ``d1``, ...). Both are
local to one page program.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from grimoire.rules.schema import Adjustment, Endianness, IntegerTest, Pattern
from .expressions import Expression

BASE_POINTER = "po"
"""Offset the page was invoked at."""

GLOBAL_OFFSET = "gf"
"""Absolute address established by the last rule with relative children."""


# =============================================================================
# Steps
# =============================================================================

class ReadStep(BaseModel):
    """Bounds-checked read into ``target``; records whether it succeeded."""

    op: Literal["read"] = "read"
    target: str
    byte_width: int
    endianness: Endianness
    address: Expression


class RequireRead(BaseModel):
    """Fail unless the read into ``target`` succeeded."""

    op: Literal["require_read"] = "require_read"
    target: str


class RequireNonZero(BaseModel):
    """Fail if ``target`` holds zero (guards a division by a read value)."""

    op: Literal["require_nonzero"] = "require_nonzero"
    target: str


class IntegerTestStep(BaseModel):
    """Compare the integer in ``target`` against ``value``.

    The read value is masked, adjusted, truncated to ``byte_width`` and, for
    ordering tests, sign-extended before comparison. Fails if the read failed.
    """

    op: Literal["integer_test"] = "integer_test"
    target: str
    byte_width: int
    integer_test: IntegerTest
    mask: int | None = None
    adjustment_type: Adjustment = Adjustment.NONE
    adjustment_value: int = 0
    value: int

    @property
    def signed(self) -> bool:
        return self.integer_test in (IntegerTest.LESS_THAN, IntegerTest.GREATER_THAN)


class StringTestStep(BaseModel):
    """Match ``pattern`` at ``address``; the consumed length goes to ``target``."""

    op: Literal["string_test"] = "string_test"
    target: str
    address: Expression
    pattern: Pattern
    flags: int = 0
    negate: bool = False


class SearchTestStep(BaseModel):
    """Search ``pattern`` within ``max_len`` bytes; the position goes to ``target``."""

    op: Literal["search_test"] = "search_test"
    target: str
    address: Expression
    max_len: int
    pattern: Pattern


class SetGlobalOffset(BaseModel):
    op: Literal["set_global"] = "set_global"
    value: Expression


class UsePage(BaseModel):
    """Run another page's entry point at ``address`` and keep its labels."""

    op: Literal["use"] = "use"
    page: str
    entry_point: str
    address: Expression


class CheckDefault(BaseModel):
    """Fail if an earlier sibling of the default group already matched."""

    op: Literal["check_default"] = "check_default"
    marker: str


class SetMarker(BaseModel):
    op: Literal["set_marker"] = "set_marker"
    marker: str
    value: bool


class EmitLabel(BaseModel):
    op: Literal["emit"] = "emit"
    label: str


class TraceRule(BaseModel):
    """Log the rule's source line (chatty mode)."""

    op: Literal["trace"] = "trace"
    line: str


class AlwaysFail(BaseModel):
    op: Literal["fail"] = "fail"
    reason: str = ""


Step = Annotated[
    Union[
        ReadStep,
        RequireRead,
        RequireNonZero,
        IntegerTestStep,
        StringTestStep,
        SearchTestStep,
        SetGlobalOffset,
        UsePage,
        CheckDefault,
        SetMarker,
        EmitLabel,
        TraceRule,
        AlwaysFail,
    ],
    Field(discriminator="op"),
]

FAILING_OPS = frozenset(
    {
        "require_read",
        "require_nonzero",
        "integer_test",
        "string_test",
        "search_test",
        "check_default",
        "fail",
    }
)
"""Steps that can end a node block early."""


# =============================================================================
# Blocks
# =============================================================================

class CompileStats(BaseModel):
    """Counters gathered while compiling one page program."""

    nodes: int = 0
    reads: int = 0
    reads_elided: int = 0
    folded_expressions: int = 0
    default_groups: int = 0


class NodeIR(BaseModel):
    """The compiled block of one rule node."""

    node_id: int
    level: int
    line: str = ""

    steps: list[Step] = Field(default_factory=list)
    """Tests and side effects, in order. The first failing step ends the block."""

    children_marker: str | None = None
    """Default marker reset to False before the children run."""

    children: list[NodeIR] = Field(default_factory=list)

    finalize_marker: str | None = None
    """Default marker set to True once this node (and its children) ran."""

    can_fail: bool = False

    @property
    def fail_label(self) -> str:
        """Unique per-node label, used for block comments in generated source."""
        return f"f{self.node_id:x}"

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


class PageIR(BaseModel):
    """One entry point: a page compiled for one byte order."""

    page: str
    symbol: str
    entry_point: str
    swapped: bool = False
    nodes: list[NodeIR] = Field(default_factory=list)
    markers: list[str] = Field(default_factory=list)
    """Every default marker used by this program, sorted."""

    stats: CompileStats = Field(default_factory=CompileStats)

    def walk(self):
        for node in self.nodes:
            yield from node.walk()


class BookIR(BaseModel):
    """Complete compiled spellbook: two PageIR per page, in page-name order."""

    ir_version: int = 1
    pages: list[PageIR] = Field(default_factory=list)
    compiled_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def entry_points(self) -> list[str]:
        return [page.entry_point for page in self.pages]

    def get(self, entry_point: str) -> PageIR | None:
        for page in self.pages:
            if page.entry_point == entry_point:
                return page
        return None

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, json_str: str) -> BookIR:
        """Deserialize from JSON string."""
        return cls.model_validate_json(json_str)


NodeIR.model_rebuild()


__all__ = [
    "AlwaysFail",
    "BASE_POINTER",
    "BookIR",
    "CheckDefault",
    "CompileStats",
    "EmitLabel",
    "FAILING_OPS",
    "GLOBAL_OFFSET",
    "IntegerTestStep",
    "NodeIR",
    "PageIR",
    "ReadStep",
    "RequireNonZero",
    "RequireRead",
    "SearchTestStep",
    "SetGlobalOffset",
    "SetMarker",
    "Step",
    "StringTestStep",
    "TraceRule",
    "UsePage",
]
