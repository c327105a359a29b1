"""
Tests for rule tree construction.
"""

import pytest

from grimoire.compiler.tree import build_page, flatten, treeify
from grimoire.exceptions import TreeError
from grimoire.rules import NameKind, Rule


def make_rules(levels: list[int]) -> list[Rule]:
    return [
        Rule(level=level, kind=NameKind(value=f"r{i}"), line=f"rule {i}")
        for i, level in enumerate(levels)
    ]


class TestTreeify:
    """Test arranging leveled rules into a forest."""

    def test_single_root(self):
        """Test a one-rule page becomes one root without children."""
        roots = treeify(make_rules([0]))
        assert len(roots) == 1
        assert roots[0].id == 0
        assert roots[0].children == []

    def test_children_attach_to_last_shallower_rule(self):
        """Test each rule becomes a child of the last rule one level up."""
        roots = treeify(make_rules([0, 1, 2, 1, 0, 1]))
        assert [root.id for root in roots] == [0, 4]
        assert [child.id for child in roots[0].children] == [1, 3]
        assert [child.id for child in roots[0].children[0].children] == [2]
        assert [child.id for child in roots[1].children] == [5]

    def test_ids_follow_input_order(self):
        """Test node ids are assigned in construction order."""
        page = build_page("p", make_rules([0, 1, 1, 2, 0]))
        assert [node.id for node in page.walk()] == [0, 1, 2, 3, 4]

    def test_empty_page(self):
        """Test an empty rule list yields no roots."""
        assert treeify([]) == []

    @pytest.mark.parametrize(
        "levels",
        [
            [0],
            [0, 0, 0],
            [0, 1, 2, 3, 2, 1, 0],
            [0, 1, 1, 2, 2, 3, 0, 1],
            [0, 1, 2, 3, 4, 5, 0, 1, 2, 1, 2, 3],
        ],
    )
    def test_flatten_round_trip(self, levels):
        """Test re-flattening a built tree reproduces the level sequence."""
        flat = flatten(treeify(make_rules(levels)))
        assert [level for level, _ in flat] == levels
        assert [node_id for _, node_id in flat] == list(range(len(levels)))

    def test_level_skip_raises(self):
        """Test a rule two levels deeper than its predecessor is rejected."""
        with pytest.raises(TreeError, match="level 2 has no parent at level 1"):
            treeify(make_rules([0, 2]))

    def test_first_rule_not_at_root_raises(self):
        """Test a page cannot start below level 0."""
        with pytest.raises(TreeError):
            treeify(make_rules([1]))

    def test_error_names_offending_rule(self):
        """Test the error message carries the rule's source line."""
        with pytest.raises(TreeError, match="rule 2"):
            treeify(make_rules([0, 1, 3]))
