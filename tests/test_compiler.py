"""
Tests for the compiler layer.

Tests entry-point naming, IR generation, read reuse and compile-time errors.
"""

import pytest
from pydantic import BaseModel

from grimoire.compiler import BookIR, SpellCompiler, analyze_book, build_page, page_symbol
from grimoire.compiler.compiler import PageCompiler, entry_point_name
from grimoire.compiler.optimizer import count_reads
from grimoire.compiler.ir import (
    AlwaysFail,
    CheckDefault,
    EmitLabel,
    IntegerTestStep,
    ReadStep,
    RequireNonZero,
    RequireRead,
    SearchTestStep,
    SetGlobalOffset,
    SetMarker,
    StringTestStep,
    TraceRule,
    UsePage,
)
from grimoire.exceptions import CompilationError, TreeError


def byte_rule(level: int, offset: int, value: int, description: str = "", **kind) -> dict:
    return {
        "level": level,
        "offset": {"value": offset},
        "kind": {"family": "integer", "byte_width": 1, "value": value, **kind},
        "description": description,
    }


STEP_MODELS = (
    ReadStep,
    RequireRead,
    RequireNonZero,
    IntegerTestStep,
    StringTestStep,
    SearchTestStep,
)


def steps_of(node, step_type):
    return [step for step in node.steps if isinstance(step, step_type)]


class TestNaming:
    """Test page symbols and entry point names."""

    def test_page_symbol(self):
        """Test dash-separated tokens are capitalized and joined."""
        assert page_symbol("elf") == "Elf"
        assert page_symbol("mach-o-header") == "MachOHeader"
        assert page_symbol("x86") == "X86"

    def test_swapped_suffix(self):
        """Test the swapped variant carries the suffix."""
        assert page_symbol("elf", swap_endian=True) == "Elf__Swapped"
        assert entry_point_name("elf", True) == "IdentifyElf__Swapped"

    def test_custom_suffix(self):
        """Test the suffix is configurable."""
        assert page_symbol("elf", True, swapped_suffix="_BE") == "Elf_BE"

    def test_book_has_two_entry_points_per_page(self, compile_pages, elf_page):
        """Test pages compile native then swapped, in sorted order."""
        pages = {"zip": elf_page["elf"], **elf_page}
        book = compile_pages(pages)
        assert book.entry_points() == [
            "IdentifyElf",
            "IdentifyElf__Swapped",
            "IdentifyZip",
            "IdentifyZip__Swapped",
        ]
        assert [page.swapped for page in book.pages] == [False, True, False, True]


class TestIntegerCompilation:
    """Test integer rules compile to a read and a test."""

    def test_read_and_test(self, compile_pages, elf_page):
        """Test a plain integer rule reads once and compares."""
        node = compile_pages(elf_page).pages[0].nodes[0]
        [read] = steps_of(node, ReadStep)
        [test] = steps_of(node, IntegerTestStep)
        assert read.byte_width == 4
        assert read.endianness.value == "little"
        assert read.address.render() == "po"
        assert test.target == read.target
        assert node.can_fail

    def test_swapped_program_flips_endianness(self, compile_pages, elf_page):
        """Test the swapped entry point reads big-endian."""
        node = compile_pages(elf_page).pages[1].nodes[0]
        [read] = steps_of(node, ReadStep)
        assert read.endianness.value == "big"

    def test_wildcard_does_not_read(self, compile_pages):
        """Test a match-any integer neither reads nor fails."""
        book = compile_pages({"p": [byte_rule(0, 0, 0, "any", match_any=True)]})
        node = book.pages[0].nodes[0]
        assert steps_of(node, ReadStep) == []
        assert not node.can_fail

    def test_mask_is_recorded(self, compile_pages):
        """Test the AND mask is carried only when enabled."""
        book = compile_pages({"p": [byte_rule(0, 0, 1, do_and=True, and_value=0xF0)]})
        [test] = steps_of(book.pages[0].nodes[0], IntegerTestStep)
        assert test.mask == 0xF0

    def test_division_by_zero_adjustment(self, compile_pages):
        """Test a constant zero divisor is rejected."""
        with pytest.raises(CompilationError, match="divides by zero"):
            compile_pages({"p": [byte_rule(0, 0, 1, adjustment_type="div", adjustment_value=0)]})


class TestGlobalOffset:
    """Test global offset updates are emitted only when needed."""

    def test_no_relative_children(self, compile_pages):
        """Test a node without relative children leaves the global offset alone."""
        book = compile_pages({"p": [byte_rule(0, 0, 1), byte_rule(1, 4, 2)]})
        assert steps_of(book.pages[0].nodes[0], SetGlobalOffset) == []

    def test_relative_child_sets_global(self, compile_pages):
        """Test an integer parent sets gf to its address plus width."""
        child = byte_rule(1, 2, 2)
        child["offset"]["is_relative"] = True
        book = compile_pages({"p": [byte_rule(0, 3, 1), child]})
        root = book.pages[0].nodes[0]
        [update] = steps_of(root, SetGlobalOffset)
        assert update.value.render() == "(po + 4)"
        [read] = steps_of(root.children[0], ReadStep)
        assert read.address.render() == "(gf + 2)"

    def test_string_parent_uses_match_length(self, compile_pages):
        """Test a string parent sets gf past the consumed bytes."""
        book = compile_pages(
            {
                "p": [
                    {"level": 0, "kind": {"family": "string", "value": "MZ"}},
                    {"level": 1, "offset": {"is_relative": True}, "kind": {"family": "name"}},
                ]
            }
        )
        [update] = steps_of(book.pages[0].nodes[0], SetGlobalOffset)
        assert update.value.render() == "(po + rA0)"


class TestReadReuse:
    """Test read elision between neighbouring nodes."""

    def test_sibling_with_same_offset_reuses_read(self, compile_pages, default_group_page):
        """Test the second of two equal-offset siblings does not read again."""
        book = compile_pages(default_group_page)
        two, three, _ = book.pages[0].nodes[0].children
        [read] = steps_of(two, ReadStep)
        assert steps_of(three, ReadStep) == []
        [test] = steps_of(three, IntegerTestStep)
        assert test.target == read.target
        assert book.pages[0].stats.reads_elided == 1

    def test_different_width_reads_again(self, compile_pages):
        """Test a sibling with another width performs its own read."""
        book = compile_pages(
            {
                "p": [
                    byte_rule(0, 0, 1),
                    byte_rule(1, 4, 1),
                    {"level": 1, "offset": {"value": 4}, "kind": {"family": "integer", "byte_width": 2, "value": 1}},
                ]
            }
        )
        first, second = book.pages[0].nodes[0].children
        assert len(steps_of(second, ReadStep)) == 1
        assert book.pages[0].stats.reads_elided == 0

    def test_relative_offsets_are_never_reused(self, compile_pages):
        """Test siblings addressed from the global offset always read."""
        rule = byte_rule(1, 0, 1)
        rule["offset"]["is_relative"] = True
        book = compile_pages({"p": [byte_rule(0, 0, 1), rule, dict(rule)]})
        first, second = book.pages[0].nodes[0].children
        assert len(steps_of(second, ReadStep)) == 1

    def test_first_child_reuses_parent_pointer(self, compile_pages):
        """Test a first child shares its parent's indirect pointer read."""
        indirect = {"offset_type": "indirect", "byte_width": 4, "offset_address": 8}
        book = compile_pages(
            {
                "p": [
                    {"level": 0, "offset": indirect, "kind": {"family": "string", "value": "PE"}},
                    {"level": 1, "offset": indirect, "kind": {"family": "string", "value": "PE\x00\x00"}},
                ]
            }
        )
        root = book.pages[0].nodes[0]
        assert len(steps_of(root, ReadStep)) == 1
        assert steps_of(root.children[0], ReadStep) == []


class TestIndirectOffsets:
    """Test indirect address computation."""

    def test_runtime_divisor_is_guarded(self, compile_pages):
        """Test dividing by a value read from the buffer checks it is non-zero."""
        offset = {
            "offset_type": "indirect",
            "byte_width": 1,
            "offset_address": 0,
            "adjustment_type": "div",
            "adjustment_value": 1,
            "adjustment_is_relative": True,
        }
        book = compile_pages({"p": [{"level": 0, "offset": offset, "kind": {"family": "name"}}]})
        node = book.pages[0].nodes[0]
        assert len(steps_of(node, ReadStep)) == 2
        assert len(steps_of(node, RequireNonZero)) == 1

    def test_constant_zero_divisor(self, compile_pages):
        """Test a constant zero divisor in an indirect offset is rejected."""
        offset = {"offset_type": "indirect", "adjustment_type": "div", "adjustment_value": 0}
        with pytest.raises(CompilationError, match="divides by zero"):
            compile_pages({"p": [{"level": 0, "offset": offset, "kind": {"family": "name"}}]})

    def test_constant_adjustment_is_folded(self, compile_pages):
        """Test a constant adjustment folds into the address expression."""
        offset = {"offset_type": "indirect", "offset_address": 4, "adjustment_type": "add", "adjustment_value": 0}
        book = compile_pages({"p": [{"level": 0, "offset": offset, "kind": {"family": "string", "value": "x"}}]})
        node = book.pages[0].nodes[0]
        [read] = steps_of(node, ReadStep)
        assert read.address.render() == "(po + 4)"
        assert node.steps[-1].address.render() == f"(po + {read.target})"

    def test_relative_pointer_and_target(self, compile_pages):
        """Test relative indirect offsets anchor both the pointer and the target on gf."""
        offset = {"offset_type": "indirect", "address_is_relative": True, "is_relative": True, "offset_address": 2}
        book = compile_pages(
            {"p": [byte_rule(0, 0, 9), {"level": 1, "offset": offset, "kind": {"family": "string", "value": "OK"}}]}
        )
        child = book.pages[0].nodes[0].children[0]
        [read] = steps_of(child, ReadStep)
        assert read.address.render() == "(gf + 2)"
        assert child.steps[-1].address.render() == f"(gf + {read.target})"


class TestDefaultGroups:
    """Test the default marker protocol in the IR."""

    def test_marker_allocated_for_parent_level(self, compile_pages, default_group_page):
        """Test children of a level-0 node share marker d0."""
        page = compile_pages(default_group_page).pages[0]
        root = page.nodes[0]
        assert root.children_marker == "d0"
        assert page.markers == ["d0"]
        assert [child.finalize_marker for child in root.children] == ["d0", "d0", "d0"]
        assert isinstance(root.children[2].steps[0], CheckDefault)

    def test_no_marker_without_default_child(self, compile_pages):
        """Test no marker is allocated when no child is a default rule."""
        page = compile_pages({"p": [byte_rule(0, 0, 1), byte_rule(1, 1, 1)]}).pages[0]
        assert page.nodes[0].children_marker is None
        assert page.markers == []

    def test_clear_resets_marker_without_finalizing(self, compile_pages):
        """Test a clear rule resets its group's marker and leaves it reset."""
        page = compile_pages(
            {
                "p": [
                    byte_rule(0, 0, 1),
                    {"level": 1, "kind": {"family": "clear"}},
                    {"level": 1, "kind": {"family": "default"}},
                ]
            }
        ).pages[0]
        clear = page.nodes[0].children[0]
        assert clear.steps == [SetMarker(marker="d0", value=False)]
        assert clear.finalize_marker is None

    @pytest.mark.parametrize("family", ["default", "clear"])
    def test_outside_group_is_an_error(self, compile_pages, family):
        """Test default and clear rules need an enclosing group."""
        with pytest.raises(CompilationError, match="outside a default group"):
            compile_pages({"p": [{"level": 0, "kind": {"family": family}}]})


class TestOtherKinds:
    """Test use, unknown and trace compilation."""

    def test_use_selects_entry_point(self, compile_pages):
        """Test use targets the native or swapped entry point by its own flag."""
        book = compile_pages(
            {
                "outer": [
                    {"level": 0, "kind": {"family": "use", "page": "inner"}},
                    {"level": 0, "kind": {"family": "use", "page": "inner", "swap_endian": True}},
                ],
                "inner": [],
            }
        )
        outer = book.get("IdentifyOuter")
        outer_swapped = book.get("IdentifyOuter__Swapped")
        for program in (outer, outer_swapped):
            targets = [steps_of(node, UsePage)[0].entry_point for node in program.nodes]
            assert targets == ["IdentifyInner", "IdentifyInner__Swapped"]

    def test_unknown_page(self, compile_pages):
        """Test use of a missing page is rejected."""
        with pytest.raises(CompilationError, match="unknown page 'nowhere'"):
            compile_pages({"p": [{"level": 0, "kind": {"family": "use", "page": "nowhere"}}]})

    def test_unknown_kind_always_fails(self, compile_pages):
        """Test an unrecognized family compiles to a failing block."""
        node = compile_pages({"p": [{"level": 0, "kind": {"family": "regex"}, "description": "r"}]}).pages[0].nodes[0]
        assert isinstance(node.steps[0], AlwaysFail)
        assert node.can_fail

    def test_chatty_trace_precedes_label(self, compile_pages, elf_page):
        """Test trace mode logs the rule line before its label."""
        node = compile_pages(elf_page, chatty=True).pages[0].nodes[0]
        assert isinstance(node.steps[-2], TraceRule)
        assert node.steps[-2].line == "0 lelong 0x7f454c46 ELF"
        assert node.steps[-1] == EmitLabel(label="ELF")

    def test_tree_error_propagates(self, compile_pages):
        """Test a level skip aborts compilation."""
        with pytest.raises(TreeError):
            compile_pages({"p": [byte_rule(0, 0, 1), byte_rule(2, 0, 1)]})


class TestSerialization:
    """Test IR serialization and statistics."""

    def test_json_round_trip(self, compile_pages, default_group_page):
        """Test a compiled book survives JSON serialization."""
        book = compile_pages(default_group_page)
        restored = BookIR.from_json(book.to_json())
        assert restored == book

    def test_step_fields_do_not_shadow_model_attributes(self):
        """Test no step field hides a BaseModel attribute."""
        for model in STEP_MODELS:
            assert not set(model.model_fields) & set(dir(BaseModel)), model.__name__

    def test_analyze_book(self, compile_pages, default_group_page, elf_page):
        """Test analysis totals cover every entry point."""
        book = compile_pages({**default_group_page, **elf_page})
        summary = analyze_book(book)
        assert summary["pages"] == 2
        assert summary["entry_points"] == 4
        assert summary["nodes"] == 10
        assert summary["default_groups"] == 2
        assert summary["reads_elided"] == 2
        assert summary["per_entry_point"]["IdentifyTagged"]["markers"] == 1

    def test_read_count_matches_stats(self, compile_pages, default_group_page):
        """Test the reads counted while compiling are the reads in the program."""
        for page in compile_pages(default_group_page).pages:
            assert count_reads(page) == page.stats.reads

    def test_compile_single_page(self):
        """Test compiling one page directly with PageCompiler."""
        from grimoire.rules import IntegerKind, Rule

        page = build_page("solo", [Rule(kind=IntegerKind(byte_width=2, value=0x5A4D), description="MZ")])
        program = PageCompiler(page, swap_endian=False, known_pages={"solo"}).compile()
        assert program.entry_point == "IdentifySolo"
        assert program.stats.nodes == 1
        assert program.stats.reads == 1

    def test_compiler_defaults_from_settings(self, monkeypatch):
        """Test chatty mode and suffix default to the settings."""
        from grimoire.core.config import get_settings

        monkeypatch.setenv("GRIMOIRE_CHATTY", "true")
        monkeypatch.setenv("GRIMOIRE_SWAPPED_SUFFIX", "_BE")
        get_settings.cache_clear()
        compiler = SpellCompiler()
        assert compiler.chatty is True
        assert compiler.swapped_suffix == "_BE"
