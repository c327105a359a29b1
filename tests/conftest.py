"""Pytest fixtures for test suite."""

from typing import Any, Callable

import pytest

from grimoire.compiler import BookIR, SpellCompiler
from grimoire.core.config import get_settings
from grimoire.rules import Spellbook, SpellbookLoader
from grimoire.runtime import MagicBook


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Isolate tests from GRIMOIRE_* variables and the cached settings."""
    for name in ("CHATTY", "EMIT_COMMENTS", "SWAPPED_SUFFIX", "MAX_USE_DEPTH", "LOG_LEVEL", "SPELLBOOK_DIR"):
        monkeypatch.delenv(f"GRIMOIRE_{name}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def parse_book() -> Callable[[dict[str, Any]], Spellbook]:
    """Validate a ``{page: [rule, ...]}`` mapping written as plain data."""
    return SpellbookLoader.parse


@pytest.fixture
def compile_pages(parse_book) -> Callable[..., BookIR]:
    """Compile a plain-data spellbook into a BookIR."""

    def _compile(pages: dict[str, Any], chatty: bool = False) -> BookIR:
        return SpellCompiler(chatty=chatty).compile_book(parse_book(pages))

    return _compile


@pytest.fixture
def magic(compile_pages) -> Callable[..., MagicBook]:
    """Compile a plain-data spellbook and build its matchers."""

    def _magic(pages: dict[str, Any], chatty: bool = False, max_use_depth: int = 32) -> MagicBook:
        return MagicBook(compile_pages(pages, chatty=chatty), max_use_depth=max_use_depth)

    return _magic


# =============================================================================
# Sample Spellbooks
# =============================================================================


ELF_MAGIC = 0x7F454C46


@pytest.fixture
def elf_page() -> dict[str, Any]:
    """One-rule page testing the ELF magic as a little-endian dword."""
    return {
        "elf": [
            {
                "level": 0,
                "offset": {"value": 0},
                "kind": {"family": "integer", "byte_width": 4, "endianness": "little", "value": ELF_MAGIC},
                "description": "ELF",
                "line": "0 lelong 0x7f454c46 ELF",
            }
        ]
    }


@pytest.fixture
def default_group_page() -> dict[str, Any]:
    """A byte tag at 0 followed by two alternatives and a fallback at 1."""
    return {
        "tagged": [
            {"level": 0, "kind": {"family": "integer", "byte_width": 1, "value": 1}, "description": "tag"},
            {
                "level": 1,
                "offset": {"value": 1},
                "kind": {"family": "integer", "byte_width": 1, "value": 2},
                "description": "two",
            },
            {
                "level": 1,
                "offset": {"value": 1},
                "kind": {"family": "integer", "byte_width": 1, "value": 3},
                "description": "three",
            },
            {"level": 1, "kind": {"family": "default"}, "description": "fallback"},
        ]
    }
