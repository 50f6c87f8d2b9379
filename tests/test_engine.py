import itertools
import sys
from typing import List, Sequence

import pytest

from models import EMPTY, Piece
from pieces import catalog_piece
from checks import QUADRANTS_4X4, assert_valid_tiling, quadrant_partition
from tiling.board import Board
from tiling.engine import SearchStats, search


def _pieces(*names: str) -> List[Piece]:
    return [catalog_piece(n) for n in names]


def _brute_force_tiles(size: int, pieces: Sequence[Piece]) -> bool:
    """Independent exact-cover check: fill the first empty cell with any piece left."""

    board = [[False] * size for _ in range(size)]
    shapes = []
    for piece in pieces:
        seen = []
        for o in piece.orientations:
            cells = list(o.offsets)
            r0, c0 = cells[0]
            rel = tuple((r - r0, c - c0) for r, c in cells)
            if rel not in seen:
                seen.append(rel)
        shapes.append(seen)
    used = [False] * len(pieces)

    def first_empty():
        for r in range(size):
            for c in range(size):
                if not board[r][c]:
                    return r, c
        return None

    def rec() -> bool:
        spot = first_empty()
        if spot is None:
            return all(used)
        r, c = spot
        for i, rels in enumerate(shapes):
            if used[i]:
                continue
            for rel in rels:
                cells = [(r + dr, c + dc) for dr, dc in rel]
                if all(0 <= rr < size and 0 <= cc < size and not board[rr][cc] for rr, cc in cells):
                    for rr, cc in cells:
                        board[rr][cc] = True
                    used[i] = True
                    if rec():
                        return True
                    used[i] = False
                    for rr, cc in cells:
                        board[rr][cc] = False
        return False

    return rec()


def test_four_o_pieces_fill_quadrants_in_row_major_order():
    board = Board(4)
    assert search(board, _pieces("O", "O", "O", "O"))
    assert board.snapshot() == (
        (1, 1, 2, 2),
        (1, 1, 2, 2),
        (3, 3, 4, 4),
        (3, 3, 4, 4),
    )
    assert quadrant_partition(board.snapshot()) == QUADRANTS_4X4


def test_first_placement_is_orientation_zero_at_top_left():
    board = Board(4)
    seen = []
    search(board, _pieces("T", "T", "T", "T"), on_placement_change=lambda b: seen.append(b.snapshot()))
    first = seen[0]
    assert first[0][:3] == (1, 1, 1)
    assert first[1][1] == 1
    assert sum(v == 1 for row in first for v in row) == 4


@pytest.mark.parametrize(
    "names",
    [
        ("T", "T", "T", "T"),
        ("I", "O", "L", "L"),
        ("I", "I", "I", "I"),
        ("O", "I", "I", "O"),
    ],
)
def test_solved_boards_are_valid_tilings(names):
    pieces = _pieces(*names)
    board = Board(4)
    assert search(board, pieces)
    assert_valid_tiling(board.snapshot(), pieces)


@pytest.mark.parametrize(
    "size,names",
    [
        (4, ("O", "O", "O", "O")),
        (4, ("T", "T", "T", "T")),
        (4, ("S", "S", "S", "S")),
        (4, ("S", "Z", "S", "Z")),
        (4, ("I", "O", "L", "L")),
        (4, ("I", "O", "L", "J")),
        (4, ("T", "T", "L", "J")),
        (4, ("Z", "I", "J", "O")),
    ],
)
def test_engine_agrees_with_independent_search_for_every_order(size, names):
    pieces = _pieces(*names)
    expected = _brute_force_tiles(size, pieces)
    # a handful of distinct orders keeps the exhaustive runs short
    for order in sorted(set(itertools.permutations(names)))[:6]:
        board = Board(size)
        stats = SearchStats()
        got = search(board, _pieces(*order), stats=stats)
        assert got == expected, order
        assert not stats.aborted
        if not got:
            assert board == Board(size)


def test_tromino_board_exhaustion_leaves_board_empty():
    corner = Piece.from_rows("corner", [[1, 0], [1, 1]])
    board = Board(3)
    stats = SearchStats()
    assert not search(board, [corner, corner, corner], stats=stats)
    assert board.cells == [EMPTY] * 9
    assert stats.placements > 0
    assert stats.placements == stats.backtracks


def test_abort_before_first_placement_places_nothing():
    board = Board(4)
    seen = []
    stats = SearchStats()
    result = search(
        board,
        _pieces("O", "O", "O", "O"),
        should_abort=lambda: True,
        on_placement_change=lambda b: seen.append(b.snapshot()),
        stats=stats,
    )
    assert result is False
    assert stats.aborted
    assert stats.placements == 0
    assert seen == []
    assert board == Board(4)


@pytest.mark.parametrize("allowed_polls", [1, 2, 5, 9, 40])
def test_abort_mid_search_unwinds_every_frame(allowed_polls):
    polls = {"n": 0}

    def should_abort():
        polls["n"] += 1
        return polls["n"] > allowed_polls

    board = Board(4)
    stats = SearchStats()
    # Five O pieces can never all fit, so only the abort ends the search early.
    result = search(board, _pieces("O", "O", "O", "O", "O"), should_abort=should_abort, stats=stats)
    assert result is False
    assert stats.aborted
    assert board == Board(4)


def test_abort_is_polled_again_after_the_pacing_hook():
    flags = {"abort": False, "paced": 0}

    def pace():
        flags["paced"] += 1
        flags["abort"] = True

    board = Board(4)
    stats = SearchStats()
    assert not search(board, _pieces("O", "O"), should_abort=lambda: flags["abort"], pace=pace, stats=stats)
    assert flags["paced"] == 1
    assert stats.placements == 1
    assert stats.aborted
    assert board == Board(4)


def test_observer_sees_every_placement_and_removal():
    events = []
    paces = []
    board = Board(4)
    stats = SearchStats()
    pieces = _pieces("T", "T", "T", "T")
    assert search(
        board,
        pieces,
        on_placement_change=lambda b: events.append(b.snapshot()),
        pace=lambda: paces.append(1),
        stats=stats,
    )
    # one event per placement, one per removal, one for the finished board
    assert len(events) == stats.placements + stats.backtracks + 1
    assert len(paces) == stats.placements + stats.backtracks
    assert events[-1] == board.snapshot()


def test_start_index_skips_pieces_already_on_the_board():
    pieces = _pieces("O", "O", "O", "O")
    board = Board(4)
    o = pieces[0].orientations[0]
    board.place(o, 0, 0, 1)
    board.place(o, 2, 2, 2)
    assert search(board, pieces, start_index=2)
    assert board.get(0, 2) == 3
    assert board.get(2, 0) == 4


def test_empty_piece_list_succeeds_immediately():
    board = Board(2)
    calls = []
    assert search(board, [], on_placement_change=calls.append)
    assert calls == [board]


def test_piece_count_past_the_recursion_limit():
    mono = Piece.from_rows("mono", [[1]])
    size = 33
    assert size * size > sys.getrecursionlimit()
    board = Board(size)
    stats = SearchStats()

    assert search(board, [mono] * (size * size), stats=stats)
    assert board.is_full()
    assert board.get(0, 0) == 1
    assert board.get(size - 1, size - 1) == size * size
    assert stats.backtracks == 0


def test_abort_deep_in_a_large_search_leaves_the_board_empty():
    mono = Piece.from_rows("mono", [[1]])
    size = 33
    board = Board(size)
    polls = itertools.count()
    stats = SearchStats()

    # Two polls per placement: stop after 1050 pieces are down.
    assert not search(board, [mono] * (size * size), should_abort=lambda: next(polls) >= 2100, stats=stats)
    assert stats.aborted
    assert stats.placements == 1050
    assert board.snapshot() == Board(size).snapshot()
