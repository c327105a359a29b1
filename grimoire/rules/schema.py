"""Rule model for magic spellbooks.

These Pydantic models describe the already-parsed form of a magic rule database:
- Offsets (direct or indirect addressing)
- Kinds (the test performed at that offset)
- Rules (one test line, with its depth in the page's rule tree)

A Spellbook maps page names to their flat, level-annotated rule lists.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    Field,
    PlainSerializer,
    Tag,
)


# =============================================================================
# Enumerations
# =============================================================================

class Endianness(str, Enum):
    """Byte order of a multi-byte read."""

    LITTLE = "little"
    BIG = "big"

    def maybe_swapped(self, swap: bool) -> Endianness:
        """Return the opposite byte order when ``swap`` is set."""
        if not swap:
            return self
        return Endianness.BIG if self is Endianness.LITTLE else Endianness.LITTLE


class Adjustment(str, Enum):
    """Arithmetic applied to a read value before it is used."""

    NONE = "none"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"


class IntegerTest(str, Enum):
    """Comparison performed by an integer rule."""

    EQUAL = "eq"
    NOT_EQUAL = "ne"
    LESS_THAN = "lt"
    GREATER_THAN = "gt"


ByteWidth = Literal[1, 2, 4, 8]


# =============================================================================
# Byte patterns
# =============================================================================

def _parse_pattern(value: Any) -> Any:
    """Accept ``hex:``-prefixed strings or plain text for byte patterns."""
    if isinstance(value, str):
        if value.startswith("hex:"):
            return bytes.fromhex(value[4:])
        return value.encode("utf-8")
    return value


def _dump_pattern(value: bytes) -> str:
    return "hex:" + value.hex()


Pattern = Annotated[
    bytes,
    BeforeValidator(_parse_pattern),
    PlainSerializer(_dump_pattern, return_type=str, when_used="json"),
]
"""Raw bytes, serialized to JSON as ``hex:<digits>`` so arbitrary bytes survive."""


# =============================================================================
# Offsets
# =============================================================================

class DirectOffset(BaseModel):
    """A literal address, optionally relative to the global offset."""

    model_config = ConfigDict(frozen=True)

    offset_type: Literal["direct"] = "direct"
    value: int = 0
    is_relative: bool = False

    def references_global(self) -> bool:
        return self.is_relative


class IndirectOffset(BaseModel):
    """An address read from the buffer, optionally adjusted.

    The pointer is read at ``offset_address`` (relative to the global offset when
    ``address_is_relative``), combined with the adjustment and, when
    ``is_relative``, added to the global offset.
    """

    model_config = ConfigDict(frozen=True)

    offset_type: Literal["indirect"] = "indirect"
    byte_width: ByteWidth = 4
    endianness: Endianness = Endianness.LITTLE
    offset_address: int = 0
    address_is_relative: bool = False
    is_relative: bool = False

    adjustment_type: Adjustment = Adjustment.NONE
    adjustment_value: int = 0
    adjustment_is_relative: bool = False
    """When set, the adjustment operand is read at ``address + adjustment_value``."""

    def references_global(self) -> bool:
        return self.is_relative or self.address_is_relative


def _offset_tag(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("offset_type", "direct")
    return getattr(value, "offset_type", "direct")


Offset = Annotated[
    Union[
        Annotated[DirectOffset, Tag("direct")],
        Annotated[IndirectOffset, Tag("indirect")],
    ],
    Discriminator(_offset_tag),
]


# =============================================================================
# Kinds
# =============================================================================

class IntegerKind(BaseModel):
    """Compare an integer read at the offset against a value."""

    model_config = ConfigDict(frozen=True)

    family: Literal["integer"] = "integer"
    byte_width: ByteWidth = 4
    endianness: Endianness = Endianness.LITTLE
    integer_test: IntegerTest = IntegerTest.EQUAL
    do_and: bool = False
    and_value: int = 0
    adjustment_type: Adjustment = Adjustment.NONE
    adjustment_value: int = 0
    value: int = 0
    match_any: bool = False
    """Wildcard (``x``): never compares, only advances the global offset."""


class StringKind(BaseModel):
    """Match a byte pattern at the offset."""

    model_config = ConfigDict(frozen=True)

    family: Literal["string"] = "string"
    value: Pattern = b""
    flags: int = 0
    negate: bool = False


class SearchKind(BaseModel):
    """Search for a byte pattern within a window starting at the offset."""

    model_config = ConfigDict(frozen=True)

    family: Literal["search"] = "search"
    value: Pattern = b""
    max_len: int = Field(0, ge=0)


class UseKind(BaseModel):
    """Invoke another page's matcher at the offset."""

    model_config = ConfigDict(frozen=True)

    family: Literal["use"] = "use"
    page: str
    swap_endian: bool = False


class NameKind(BaseModel):
    """Marks the start of a named page. Does nothing when matching."""

    model_config = ConfigDict(frozen=True)

    family: Literal["name"] = "name"
    value: str = ""


class ClearKind(BaseModel):
    """Reset the enclosing default marker."""

    model_config = ConfigDict(frozen=True)

    family: Literal["clear"] = "clear"


class DefaultKind(BaseModel):
    """Succeed only if no earlier sibling in the group has matched."""

    model_config = ConfigDict(frozen=True)

    family: Literal["default"] = "default"


class UnknownKind(BaseModel):
    """A kind this compiler does not understand. Always fails."""

    model_config = ConfigDict(frozen=True, extra="allow")

    family: str = "unknown"


KNOWN_FAMILIES = frozenset(
    {"integer", "string", "search", "use", "name", "clear", "default"}
)


def _kind_tag(value: Any) -> str:
    if isinstance(value, dict):
        family = value.get("family")
    else:
        family = getattr(value, "family", None)
    return family if family in KNOWN_FAMILIES else "unknown"


Kind = Annotated[
    Union[
        Annotated[IntegerKind, Tag("integer")],
        Annotated[StringKind, Tag("string")],
        Annotated[SearchKind, Tag("search")],
        Annotated[UseKind, Tag("use")],
        Annotated[NameKind, Tag("name")],
        Annotated[ClearKind, Tag("clear")],
        Annotated[DefaultKind, Tag("default")],
        Annotated[UnknownKind, Tag("unknown")],
    ],
    Discriminator(_kind_tag),
]


# =============================================================================
# Rules
# =============================================================================

class Rule(BaseModel):
    """One test line of a page."""

    model_config = ConfigDict(frozen=True)

    level: int = Field(0, ge=0)
    """Depth in the page's rule tree (number of leading ``>``)."""

    offset: Offset = Field(default_factory=DirectOffset)
    kind: Kind
    description: str = ""
    """Label appended to the output when the rule's test chain succeeds."""

    line: str = ""
    """Original source text, for diagnostics only."""


Spellbook = dict[str, list[Rule]]
"""Page name -> ordered rule list."""


__all__ = [
    "Adjustment",
    "ByteWidth",
    "ClearKind",
    "DefaultKind",
    "DirectOffset",
    "Endianness",
    "IndirectOffset",
    "IntegerKind",
    "IntegerTest",
    "Kind",
    "KNOWN_FAMILIES",
    "NameKind",
    "Offset",
    "Pattern",
    "Rule",
    "SearchKind",
    "Spellbook",
    "StringKind",
    "UnknownKind",
    "UseKind",
]
