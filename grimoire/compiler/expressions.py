"""
Offset expressions.

A tiny arithmetic AST used only to compute effective addresses:
- NumberLiteral: a constant
- VariableAccess: the base pointer, the global offset, or a scratch register
- BinaryOp: add / sub / mul / div over two sub-expressions

Expressions are immutable. ``fold()`` evaluates every constant sub-tree at compile
time so the emitted address arithmetic stays minimal.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field

from grimoire.core.arith import truncated_div


class Operator(str, Enum):
    """Arithmetic operators allowed in offset expressions."""

    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"

    def apply(self, lhs: int, rhs: int) -> int:
        if self is Operator.ADD:
            return lhs + rhs
        if self is Operator.SUB:
            return lhs - rhs
        if self is Operator.MUL:
            return lhs * rhs
        return truncated_div(lhs, rhs)


class NumberLiteral(BaseModel):
    """An integer constant."""

    model_config = ConfigDict(frozen=True)

    node: Literal["number"] = "number"
    value: int

    def fold(self) -> Expression:
        return self

    def evaluate(self, env: Mapping[str, int]) -> int:
        return self.value

    def variables(self) -> frozenset[str]:
        return frozenset()

    def render(self) -> str:
        return str(self.value)

    def __str__(self) -> str:
        return self.render()


class VariableAccess(BaseModel):
    """A named value known only at match time."""

    model_config = ConfigDict(frozen=True)

    node: Literal["variable"] = "variable"
    name: str

    def fold(self) -> Expression:
        return self

    def evaluate(self, env: Mapping[str, int]) -> int:
        return env[self.name]

    def variables(self) -> frozenset[str]:
        return frozenset({self.name})

    def render(self) -> str:
        return self.name

    def __str__(self) -> str:
        return self.render()


class BinaryOp(BaseModel):
    """``lhs <operator> rhs``."""

    model_config = ConfigDict(frozen=True)

    node: Literal["binary"] = "binary"
    lhs: Expression
    operator: Operator
    rhs: Expression

    def fold(self) -> Expression:
        """Evaluate constant operands and drop identity operations.

        Division by a literal zero is left in place; it is never evaluated here.
        """
        lhs = self.lhs.fold()
        rhs = self.rhs.fold()
        op = self.operator

        lhs_value = lhs.value if isinstance(lhs, NumberLiteral) else None
        rhs_value = rhs.value if isinstance(rhs, NumberLiteral) else None

        if lhs_value is not None and rhs_value is not None:
            if not (op is Operator.DIV and rhs_value == 0):
                return NumberLiteral(value=op.apply(lhs_value, rhs_value))
        elif rhs_value == 0 and op in (Operator.ADD, Operator.SUB):
            return lhs
        elif rhs_value is not None and op in (Operator.ADD, Operator.SUB) and _is_displacement(lhs):
            # (x + a) + b  ->  x + (a + b)
            inner = lhs.rhs.value if lhs.operator is Operator.ADD else -lhs.rhs.value
            outer = rhs_value if op is Operator.ADD else -rhs_value
            return BinaryOp(lhs=lhs.lhs, operator=Operator.ADD, rhs=NumberLiteral(value=inner + outer)).fold()
        elif rhs_value == 1 and op in (Operator.MUL, Operator.DIV):
            return lhs
        elif lhs_value == 0 and op is Operator.ADD:
            return rhs
        elif lhs_value == 1 and op is Operator.MUL:
            return rhs

        if lhs is self.lhs and rhs is self.rhs:
            return self
        return BinaryOp(lhs=lhs, operator=op, rhs=rhs)

    def evaluate(self, env: Mapping[str, int]) -> int:
        return self.operator.apply(self.lhs.evaluate(env), self.rhs.evaluate(env))

    def variables(self) -> frozenset[str]:
        return self.lhs.variables() | self.rhs.variables()

    def render(self) -> str:
        if self.operator is Operator.DIV:
            return f"truncated_div({self.lhs.render()}, {self.rhs.render()})"
        return f"({self.lhs.render()} {self.operator.value} {self.rhs.render()})"

    def __str__(self) -> str:
        return self.render()


Expression = Annotated[
    Union[NumberLiteral, VariableAccess, BinaryOp],
    Field(discriminator="node"),
]

BinaryOp.model_rebuild()


def _is_displacement(expr: Expression) -> bool:
    """``x + c`` or ``x - c`` with a literal ``c``."""
    return (
        isinstance(expr, BinaryOp)
        and expr.operator in (Operator.ADD, Operator.SUB)
        and isinstance(expr.rhs, NumberLiteral)
    )


# Shorthands used by the compiler

def number(value: int) -> NumberLiteral:
    return NumberLiteral(value=value)


def variable(name: str) -> VariableAccess:
    return VariableAccess(name=name)


def binary(lhs: Expression, operator: Operator, rhs: Expression) -> BinaryOp:
    return BinaryOp(lhs=lhs, operator=operator, rhs=rhs)


def add(lhs: Expression, rhs: Expression) -> BinaryOp:
    return binary(lhs, Operator.ADD, rhs)


__all__ = [
    "BinaryOp",
    "Expression",
    "NumberLiteral",
    "Operator",
    "VariableAccess",
    "add",
    "binary",
    "number",
    "variable",
]
