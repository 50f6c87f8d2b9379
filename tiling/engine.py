# tiling/engine.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from models import Orientation, Piece
from tiling.board import Board

AbortCheck = Callable[[], bool]
PlacementObserver = Callable[[Board], None]
PacingHook = Callable[[], None]
Placement = Tuple[Orientation, int, int]


@dataclass
class SearchStats:
    placements: int = 0
    backtracks: int = 0
    aborted: bool = False

    def as_dict(self):
        return {
            "placements": self.placements,
            "backtracks": self.backtracks,
            "aborted": self.aborted,
        }


def _never() -> bool:
    return False


def _noop(*_args) -> None:
    return None


def search(
    board: Board,
    pieces: Sequence[Piece],
    start_index: int = 0,
    should_abort: Optional[AbortCheck] = None,
    on_placement_change: Optional[PlacementObserver] = None,
    *,
    pace: Optional[PacingHook] = None,
    stats: Optional[SearchStats] = None,
) -> bool:
    """Place ``pieces[start_index:]`` on ``board`` by depth-first backtracking.

    Piece ``i`` is written to the board with id ``i + 1``.  For every piece the
    four orientations are tried in rotation order and, for each orientation,
    every cell is tried as the anchor in row-major order.  The piece order is
    never changed during the search.  The depth-first walk keeps its own
    stack of candidate iterators, so the piece count is not bounded by the
    interpreter recursion limit.

    ``should_abort`` is polled before each candidate placement and again after
    the placement has been made and the pacing hook has returned.  Once it
    reports true the search unwinds and returns ``False``; every frame removes
    its own placement on the way out, so an aborted board ends up as it was
    when the search started.

    On success the full tiling stays on the board, ``on_placement_change`` is
    called one last time with the finished board and ``True`` is returned.
    ``False`` with ``stats.aborted`` unset means the search space for this
    order is exhausted.
    """

    abort = should_abort or _never
    notify = on_placement_change or _noop
    pause = pace or _noop
    if stats is None:
        stats = SearchStats()

    n = board.size
    total = len(pieces)

    if start_index >= total:
        notify(board)
        return True

    def _candidates(index: int) -> Iterator[Placement]:
        # Lazy: each can_place runs against the board as it is when the
        # previous candidate has been undone.
        for orientation in pieces[index].orientations:
            for row in range(n):
                for col in range(n):
                    if board.can_place(orientation, row, col):
                        yield orientation, row, col

    # frames[d] walks the candidates of piece start_index + d; placed[d] is
    # the candidate frame d currently holds on the board.
    frames: List[Iterator[Placement]] = [_candidates(start_index)]
    placed: List[Placement] = []

    def _unwind() -> bool:
        stats.aborted = True
        while placed:
            board.remove(*placed.pop())
        return False

    while frames:
        if len(placed) == len(frames):
            # The deeper frame ran dry: undo this frame's placement.
            board.remove(*placed.pop())
            stats.backtracks += 1
            notify(board)
            pause()

        candidate = next(frames[-1], None)
        if candidate is None:
            frames.pop()
            continue
        if abort():
            return _unwind()

        index = start_index + len(frames) - 1
        orientation, row, col = candidate
        board.place(orientation, row, col, index + 1)
        placed.append(candidate)
        stats.placements += 1
        notify(board)
        pause()

        if abort():
            return _unwind()

        if index + 1 == total:
            notify(board)
            return True
        frames.append(_candidates(index + 1))

    return False


__all__ = ["search", "SearchStats", "AbortCheck", "PlacementObserver", "PacingHook"]
