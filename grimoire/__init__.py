"""grimoire - compiles magic file-type rule databases into matchers.

A spellbook maps page names to leveled rule lists. Each page compiles into two
entry points (native and byte-swapped) that take a buffer and an offset and return
the labels of every rule chain that matched.

Environment Variables:
    GRIMOIRE_CHATTY: Log each evaluated rule's source line.
    GRIMOIRE_MAX_USE_DEPTH: Deepest chain of ``use`` calls followed.
"""

from .exceptions import (
    CompilationError,
    DuplicatePageError,
    GrimoireError,
    SpellbookLoadError,
    TreeError,
)
from .rules import Rule, SpellbookLoader
from .compiler import BookIR, SpellCompiler, compile_book
from .runtime import MagicBook, load_book
from .emitter import render_module

__version__ = "0.1.0"

__all__ = [
    # Errors
    "CompilationError",
    "DuplicatePageError",
    "GrimoireError",
    "SpellbookLoadError",
    "TreeError",
    # Rules
    "Rule",
    "SpellbookLoader",
    # Compiler
    "BookIR",
    "SpellCompiler",
    "compile_book",
    # Runtime
    "MagicBook",
    "load_book",
    # Emitter
    "render_module",
]
