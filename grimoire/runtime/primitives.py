"""Byte-pattern primitives called by compiled matchers.

Both functions share the contract compiled code depends on: they return a signed
position, and a negative result means no match.
"""

from __future__ import annotations

from enum import IntFlag

__all__ = ["StringTestFlags", "string_test", "search_test"]

_WHITESPACE = frozenset(b" \t\n\r\x0b\x0c")


class StringTestFlags(IntFlag):
    """Modifiers of a ``string`` rule (the ``/WwcCtbT`` suffixes)."""

    NONE = 0
    COMPACT_WHITESPACE = 1 << 0
    """``W``: one whitespace byte in the pattern matches a run in the buffer."""
    OPTIONAL_BLANKS = 1 << 1
    """``w``: whitespace in the pattern may be absent from the buffer."""
    LOWER_MATCHES_BOTH = 1 << 2
    """``c``: lowercase pattern letters match either case."""
    UPPER_MATCHES_BOTH = 1 << 3
    """``C``: uppercase pattern letters match either case."""
    FORCE_TEXT = 1 << 4
    FORCE_BINARY = 1 << 5
    TRIM = 1 << 6


def _is_lower(byte: int) -> bool:
    return 0x61 <= byte <= 0x7A


def _is_upper(byte: int) -> bool:
    return 0x41 <= byte <= 0x5A


def string_test(buffer: bytes, offset: int, pattern: bytes, flags: int = 0) -> int:
    """Match ``pattern`` at ``offset``.

    Returns the number of buffer bytes the match consumed (which differs from
    ``len(pattern)`` when whitespace flags apply), or -1.
    """
    if offset < 0 or offset > len(buffer):
        return -1

    flags = StringTestFlags(flags)
    size = len(buffer)
    target_index = offset
    pattern_index = 0

    while pattern_index < len(pattern):
        pattern_byte = pattern[pattern_index]

        if target_index >= size:
            if StringTestFlags.OPTIONAL_BLANKS in flags and pattern_byte in _WHITESPACE:
                pattern_index += 1
                continue
            return -1

        target_byte = buffer[target_index]
        consumed = True

        if pattern_byte == target_byte:
            pass
        elif StringTestFlags.OPTIONAL_BLANKS in flags and pattern_byte in _WHITESPACE:
            consumed = False
        elif (
            StringTestFlags.LOWER_MATCHES_BOTH in flags
            and _is_lower(pattern_byte)
            and _is_upper(target_byte)
            and target_byte + 0x20 == pattern_byte
        ):
            pass
        elif (
            StringTestFlags.UPPER_MATCHES_BOTH in flags
            and _is_upper(pattern_byte)
            and _is_lower(target_byte)
            and target_byte - 0x20 == pattern_byte
        ):
            pass
        else:
            return -1

        pattern_index += 1
        if not consumed:
            continue
        target_index += 1

        if StringTestFlags.COMPACT_WHITESPACE in flags and target_byte in _WHITESPACE:
            while target_index < size and buffer[target_index] in _WHITESPACE:
                target_index += 1

    return target_index - offset


def search_test(buffer: bytes, offset: int, max_len: int, pattern: bytes) -> int:
    """Find ``pattern`` entirely within ``buffer[offset:offset + max_len]``.

    Returns the match position relative to ``offset``, or -1.
    """
    if offset < 0 or offset >= len(buffer):
        return -1
    end = min(len(buffer), offset + max_len)
    position = buffer.find(pattern, offset, end)
    if position < 0:
        return -1
    return position - offset
