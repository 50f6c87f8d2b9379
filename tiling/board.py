# tiling/board.py
from __future__ import annotations

from typing import List, Optional

from models import EMPTY, BoardRows, Orientation


class Board:
    """Square grid of piece ids stored row-major in a flat list.

    A cell holds ``EMPTY`` or the 1-based id of the piece covering it.  The
    board never checks for overlaps on its own; callers must ask
    :meth:`can_place` before :meth:`place` and undo with :meth:`remove` in
    last-in-first-out order.
    """

    __slots__ = ("size", "cells")

    def __init__(self, size: int, cells: Optional[List[int]] = None):
        self.size = int(size)
        if cells is None:
            cells = [EMPTY] * (self.size * self.size)
        self.cells = cells

    def can_place(self, orientation: Orientation, row: int, col: int) -> bool:
        n = self.size
        cells = self.cells
        for dr, dc in orientation.offsets:
            r = row + dr
            c = col + dc
            if r < 0 or c < 0 or r >= n or c >= n:
                return False
            if cells[r * n + c] != EMPTY:
                return False
        return True

    def place(self, orientation: Orientation, row: int, col: int, piece_id: int) -> None:
        n = self.size
        for dr, dc in orientation.offsets:
            self.cells[(row + dr) * n + col + dc] = piece_id

    def remove(self, orientation: Orientation, row: int, col: int) -> None:
        n = self.size
        for dr, dc in orientation.offsets:
            self.cells[(row + dr) * n + col + dc] = EMPTY

    def get(self, row: int, col: int) -> int:
        return self.cells[row * self.size + col]

    def is_full(self) -> bool:
        return EMPTY not in self.cells

    def copy(self) -> "Board":
        return Board(self.size, list(self.cells))

    def snapshot(self) -> BoardRows:
        n = self.size
        return tuple(tuple(self.cells[r * n:(r + 1) * n]) for r in range(n))

    @classmethod
    def from_rows(cls, rows) -> "Board":
        rows = [list(r) for r in rows]
        return cls(len(rows), [int(v) for row in rows for v in row])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Board):
            return NotImplemented
        return self.size == other.size and self.cells == other.cells

    def __repr__(self) -> str:
        return f"Board(size={self.size}, filled={sum(1 for v in self.cells if v != EMPTY)})"
