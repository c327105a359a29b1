"""
Runtime package for grimoire.

Provides the matching side of a compiled spellbook:
- Bounds-checked integer reads
- String and search primitives
- Closure-based execution of a BookIR
"""

from grimoire.runtime.reads import read_uint, reader_for
from grimoire.runtime.primitives import StringTestFlags, search_test, string_test
from grimoire.runtime.executor import MagicBook, load_book

__all__ = [
    # Reads
    "read_uint",
    "reader_for",
    # Primitives
    "StringTestFlags",
    "search_test",
    "string_test",
    # Executor
    "MagicBook",
    "load_book",
]
