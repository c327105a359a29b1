"""Bounds-checked buffer reads used by compiled matchers.

Every reader returns a ``(value, ok)`` pair. A read fails, with value 0, unless the
buffer holds ``width`` bytes starting at ``offset``. Failure is ordinary control flow
for a matcher, so nothing here raises on short or negative offsets.
"""

from __future__ import annotations

from typing import Callable, Literal

from grimoire.core.arith import sign_extend, truncated_div, width_mask

ByteOrder = Literal["little", "big"]
Reader = Callable[[bytes, int], tuple[int, bool]]

WIDTHS = (1, 2, 4, 8)


def read_uint(buffer: bytes, offset: int, width: int, byte_order: ByteOrder = "little") -> tuple[int, bool]:
    """Return the unsigned ``width``-byte integer at ``offset`` and whether it fit."""
    if offset < 0 or offset + width > len(buffer):
        return 0, False
    if width == 1:
        return buffer[offset], True
    return int.from_bytes(buffer[offset : offset + width], byte_order), True


def read_u1(buffer: bytes, offset: int) -> tuple[int, bool]:
    return read_uint(buffer, offset, 1)


def read_u2le(buffer: bytes, offset: int) -> tuple[int, bool]:
    return read_uint(buffer, offset, 2, "little")


def read_u2be(buffer: bytes, offset: int) -> tuple[int, bool]:
    return read_uint(buffer, offset, 2, "big")


def read_u4le(buffer: bytes, offset: int) -> tuple[int, bool]:
    return read_uint(buffer, offset, 4, "little")


def read_u4be(buffer: bytes, offset: int) -> tuple[int, bool]:
    return read_uint(buffer, offset, 4, "big")


def read_u8le(buffer: bytes, offset: int) -> tuple[int, bool]:
    return read_uint(buffer, offset, 8, "little")


def read_u8be(buffer: bytes, offset: int) -> tuple[int, bool]:
    return read_uint(buffer, offset, 8, "big")


READERS: dict[tuple[int, str], Reader] = {
    (1, "little"): read_u1,
    (1, "big"): read_u1,
    (2, "little"): read_u2le,
    (2, "big"): read_u2be,
    (4, "little"): read_u4le,
    (4, "big"): read_u4be,
    (8, "little"): read_u8le,
    (8, "big"): read_u8be,
}


def reader_for(width: int, byte_order: ByteOrder) -> Reader:
    """Look up the reader for a width and byte order."""
    try:
        return READERS[(width, byte_order)]
    except KeyError:
        raise ValueError(f"unsupported read: {width} byte(s), {byte_order}") from None


def reader_name(width: int, byte_order: ByteOrder) -> str:
    """Name of the module-level reader function, for generated source."""
    return reader_for(width, byte_order).__name__


__all__ = [
    "ByteOrder",
    "READERS",
    "WIDTHS",
    "read_uint",
    "read_u1",
    "read_u2le",
    "read_u2be",
    "read_u4le",
    "read_u4be",
    "read_u8le",
    "read_u8be",
    "reader_for",
    "reader_name",
    "sign_extend",
    "truncated_div",
    "width_mask",
]
