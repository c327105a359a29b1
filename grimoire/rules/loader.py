"""Serialized spellbook loader.

Reads spellbooks that an external magic-file parser has already turned into rule
lists, stored as YAML or JSON documents of the form ``{page: [rule, ...]}``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter, ValidationError

from grimoire.core.config import get_settings
from grimoire.exceptions import DuplicatePageError, SpellbookLoadError
from .schema import Rule, Spellbook

logger = logging.getLogger(__name__)

_RULES = TypeAdapter(list[Rule])

SPELLBOOK_SUFFIXES = (".yaml", ".yml", ".json")


class SpellbookLoader:
    """Loads and validates serialized spellbooks from files or directories."""

    def __init__(self, spellbook_dir: str | Path | None = None):
        self.spellbook_dir = Path(spellbook_dir) if spellbook_dir else None
        self._pages: Spellbook = {}
        self._sources: dict[str, Path] = {}

    def load_file(self, path: str | Path) -> Spellbook:
        """Load the pages of a single spellbook file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Spellbook file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                if path.suffix == ".json":
                    content = json.load(f)
                else:
                    content = yaml.safe_load(f)
            except (json.JSONDecodeError, yaml.YAMLError) as e:
                raise SpellbookLoadError(f"{path}: {e}") from e

        pages = self.parse(content, source=str(path))
        # Nothing from this file is kept unless every page name is new.
        for name in pages:
            if name in self._pages:
                raise DuplicatePageError(
                    f"{path}: page {name!r} already loaded from {self._sources[name]}"
                )
        for name, rules in pages.items():
            self._pages[name] = rules
            self._sources[name] = path

        logger.debug("Loaded %d page(s) from %s", len(pages), path)
        return pages

    def load_directory(self, path: str | Path | None = None) -> Spellbook:
        """Load every spellbook file in a directory.

        Files that fail to parse or validate are skipped with a warning. Duplicate
        page names are always an error. The directory defaults to the loader's own,
        then to ``Settings.spellbook_dir``.
        """
        path = Path(path or self.spellbook_dir or get_settings().spellbook_dir)
        if not path.exists():
            raise FileNotFoundError(f"Spellbook directory not found: {path}")

        pages: Spellbook = {}
        for book_file in sorted(path.iterdir()):
            if book_file.suffix not in SPELLBOOK_SUFFIXES:
                continue
            try:
                loaded = self.load_file(book_file)
            except DuplicatePageError:
                raise
            except SpellbookLoadError as e:
                logger.warning("Skipping %s: %s", book_file, e)
                continue
            pages.update(loaded)

        return pages

    @staticmethod
    def parse(content: Any, source: str = "<memory>") -> Spellbook:
        """Validate a decoded ``{page: [rule, ...]}`` mapping."""
        if content is None:
            return {}
        if not isinstance(content, dict):
            raise SpellbookLoadError(
                f"{source}: expected a mapping of page name to rules, "
                f"got {type(content).__name__}"
            )

        pages: Spellbook = {}
        for name, rules in content.items():
            try:
                pages[str(name)] = _RULES.validate_python(rules or [])
            except ValidationError as e:
                raise SpellbookLoadError(f"{source}: page {name!r}: {e}") from e
        return pages

    def get_spellbook(self) -> Spellbook:
        """Get all loaded pages."""
        return dict(self._pages)

    def get_page(self, name: str) -> list[Rule] | None:
        """Get a loaded page's rules by name."""
        return self._pages.get(name)


def dump_spellbook(book: Spellbook) -> str:
    """Serialize a spellbook to JSON, the inverse of ``SpellbookLoader.parse``."""
    return json.dumps(
        {name: _RULES.dump_python(rules, mode="json") for name, rules in book.items()},
        indent=2,
    )


__all__ = ["SpellbookLoader", "dump_spellbook", "SPELLBOOK_SUFFIXES"]
