"""Integer helpers shared by the compiler, the runtime and generated modules."""

from __future__ import annotations


def truncated_div(lhs: int, rhs: int) -> int:
    """Integer division rounding toward zero."""
    quotient = abs(lhs) // abs(rhs)
    return quotient if (lhs >= 0) == (rhs >= 0) else -quotient


def width_mask(width: int) -> int:
    """All-ones mask for ``width`` bytes."""
    return (1 << (width * 8)) - 1


def sign_extend(value: int, bits: int) -> int:
    """Sign extend ``value`` with ``bits`` significant bits."""
    value &= (1 << bits) - 1
    sign = 1 << (bits - 1)
    return (value ^ sign) - sign


__all__ = ["sign_extend", "truncated_div", "width_mask"]
