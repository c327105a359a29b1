"""
Compiler package for grimoire.

Turns spellbook pages into an Intermediate Representation (IR) of straight-line
node blocks, with constant-folded addresses and de-duplicated reads.
"""

from grimoire.compiler.expressions import (
    BinaryOp,
    Expression,
    NumberLiteral,
    Operator,
    VariableAccess,
)
from grimoire.compiler.ir import (
    BookIR,
    CompileStats,
    NodeIR,
    PageIR,
    Step,
)
from grimoire.compiler.tree import Page, RuleNode, build_page, flatten, treeify
from grimoire.compiler.compiler import (
    PageCompiler,
    SpellCompiler,
    compile_book,
    entry_point_name,
    page_symbol,
)
from grimoire.compiler.optimizer import analyze_book

__all__ = [
    # Expressions
    "BinaryOp",
    "Expression",
    "NumberLiteral",
    "Operator",
    "VariableAccess",
    # IR Types
    "BookIR",
    "CompileStats",
    "NodeIR",
    "PageIR",
    "Step",
    # Trees
    "Page",
    "RuleNode",
    "build_page",
    "flatten",
    "treeify",
    # Compiler
    "PageCompiler",
    "SpellCompiler",
    "compile_book",
    "entry_point_name",
    "page_symbol",
    # Statistics
    "analyze_book",
]
