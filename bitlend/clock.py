"""
clock.py - Block Height Clock

Reference ClockSource: a logical height counter that only moves forward.
The engine never advances it; the host (or a test) does.
"""

from __future__ import annotations

from .core import is_uint, checked_add


class BlockHeightClock:
    """
    Non-decreasing block height counter.

    Implements the ClockSource protocol.

    Example:
        clock = BlockHeightClock(1000)
        clock.advance(52561)
        clock.current()  # 53561
    """

    def __init__(self, start: int = 0):
        if not is_uint(start):
            raise ValueError(f"start height must be an unsigned integer, got {start!r}")
        self._height = start

    def current(self) -> int:
        """Return the current height."""
        return self._height

    @property
    def height(self) -> int:
        return self._height

    def advance(self, blocks: int = 1) -> int:
        """
        Move the height forward by a number of blocks.

        Raises:
            ValueError: If blocks is negative or the height would overflow
        """
        if not is_uint(blocks):
            raise ValueError(f"blocks must be a non-negative integer, got {blocks!r}")
        new_height = checked_add(self._height, blocks)
        if new_height is None:
            raise ValueError("block height overflow")
        self._height = new_height
        return self._height

    def advance_to(self, height: int) -> int:
        """
        Move the height to an absolute value.

        Height can only move forward, never backward.

        Raises:
            ValueError: If height is before the current height
        """
        if not is_uint(height):
            raise ValueError(f"height must be an unsigned integer, got {height!r}")
        if height < self._height:
            raise ValueError(
                f"Cannot move height backwards: {height} < {self._height}"
            )
        self._height = height
        return self._height

    def __repr__(self) -> str:
        return f"BlockHeightClock(height={self._height})"
