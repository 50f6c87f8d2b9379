import unittest

from models import EMPTY, Piece
from pieces import catalog_piece
from tiling.board import Board


class BoardTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.board = Board(4)
        self.o = catalog_piece("O").orientations[0]
        self.i_flat = catalog_piece("I").orientations[0]
        self.i_tall = catalog_piece("I").orientations[1]

    def test_new_board_is_empty(self) -> None:
        self.assertEqual(self.board.cells, [EMPTY] * 16)
        self.assertFalse(self.board.is_full())

    def test_can_place_checks_bounds(self) -> None:
        self.assertTrue(self.board.can_place(self.o, 2, 2))
        self.assertFalse(self.board.can_place(self.o, 3, 2))
        self.assertFalse(self.board.can_place(self.o, 2, 3))
        self.assertTrue(self.board.can_place(self.i_flat, 3, 0))
        self.assertFalse(self.board.can_place(self.i_flat, 0, 1))
        self.assertFalse(self.board.can_place(self.i_tall, 1, 0))

    def test_can_place_rejects_overlap(self) -> None:
        self.board.place(self.o, 0, 0, 1)
        self.assertFalse(self.board.can_place(self.o, 1, 1))
        self.assertFalse(self.board.can_place(self.i_flat, 1, 0))
        self.assertTrue(self.board.can_place(self.o, 0, 2))

    def test_unoccupied_mask_cells_do_not_block(self) -> None:
        t = catalog_piece("T").orientations[0]
        self.board.place(self.o, 2, 0, 1)
        # T's bottom row is only filled in the middle, so (1, 0) stays free.
        self.board.place(t, 0, 0, 2)
        self.assertEqual(self.board.get(1, 0), EMPTY)
        self.assertEqual(self.board.get(1, 1), 2)

    def test_place_writes_id_and_can_place_has_no_side_effects(self) -> None:
        before = list(self.board.cells)
        self.board.can_place(self.o, 1, 1)
        self.assertEqual(self.board.cells, before)
        self.board.place(self.o, 1, 1, 7)
        self.assertEqual(
            self.board.snapshot(),
            ((0, 0, 0, 0), (0, 7, 7, 0), (0, 7, 7, 0), (0, 0, 0, 0)),
        )

    def test_place_then_remove_restores_board(self) -> None:
        self.board.place(self.i_tall, 0, 3, 1)
        self.board.place(self.o, 0, 0, 2)
        before = self.board.copy()
        l = catalog_piece("L").orientations[2]
        self.assertTrue(self.board.can_place(l, 2, 0))
        self.board.place(l, 2, 0, 3)
        self.assertNotEqual(self.board, before)
        self.board.remove(l, 2, 0)
        self.assertEqual(self.board, before)
        self.assertEqual(self.board.cells, before.cells)

    def test_lifo_undo_of_a_full_tiling(self) -> None:
        placed = []
        for pid, (r, c) in enumerate(((0, 0), (0, 2), (2, 0), (2, 2)), start=1):
            self.board.place(self.o, r, c, pid)
            placed.append((r, c))
        self.assertTrue(self.board.is_full())
        for r, c in reversed(placed):
            self.board.remove(self.o, r, c)
        self.assertEqual(self.board, Board(4))

    def test_from_rows_round_trips_snapshot(self) -> None:
        self.board.place(self.o, 0, 0, 1)
        clone = Board.from_rows(self.board.snapshot())
        self.assertEqual(clone, self.board)
        clone.place(self.o, 2, 2, 2)
        self.assertNotEqual(clone, self.board)

    def test_custom_piece_with_hole(self) -> None:
        ring = Piece.from_rows("ring", [[1, 1, 1], [1, 0, 1], [1, 1, 1]])
        board = Board(3)
        board.place(ring.orientations[0], 0, 0, 1)
        self.assertEqual(board.get(1, 1), EMPTY)
        dot = Piece.from_rows("dot", [[1]])
        self.assertTrue(board.can_place(dot.orientations[0], 1, 1))


if __name__ == "__main__":
    unittest.main()
