"""
Rule model and spellbook loading.

Provides the typed form of a magic rule database (rules, offsets, kinds) and a
loader for spellbooks serialized as YAML or JSON.
"""

from grimoire.rules.schema import (
    Adjustment,
    ClearKind,
    DefaultKind,
    DirectOffset,
    Endianness,
    IndirectOffset,
    IntegerKind,
    IntegerTest,
    Kind,
    NameKind,
    Offset,
    Rule,
    SearchKind,
    Spellbook,
    StringKind,
    UnknownKind,
    UseKind,
)
from grimoire.rules.loader import SpellbookLoader, dump_spellbook

__all__ = [
    # Enumerations
    "Adjustment",
    "Endianness",
    "IntegerTest",
    # Offsets
    "DirectOffset",
    "IndirectOffset",
    "Offset",
    # Kinds
    "ClearKind",
    "DefaultKind",
    "IntegerKind",
    "Kind",
    "NameKind",
    "SearchKind",
    "StringKind",
    "UnknownKind",
    "UseKind",
    # Rules
    "Rule",
    "Spellbook",
    # Loader
    "SpellbookLoader",
    "dump_spellbook",
]
