"""Exception hierarchy for spellbook compilation.

Only compile-time defects are raised. Match-time non-matches are control flow
inside the generated matchers and never surface as exceptions.
"""

from __future__ import annotations


class GrimoireError(Exception):
    """Base class for all grimoire errors."""


class TreeError(GrimoireError):
    """Raised when a page's rule levels cannot be arranged into a tree."""


class CompilationError(GrimoireError):
    """Raised when a rule cannot be compiled (bad scoping, unknown page, ...)."""


class SpellbookLoadError(GrimoireError):
    """Raised when a serialized spellbook cannot be read or validated."""


class DuplicatePageError(SpellbookLoadError):
    """Raised when two spellbook files define the same page."""


__all__ = [
    "GrimoireError",
    "TreeError",
    "CompilationError",
    "SpellbookLoadError",
    "DuplicatePageError",
]
