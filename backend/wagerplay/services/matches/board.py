"""Pure tic-tac-toe rules over a 9-cell board.

Cells are ``None``, ``'X'`` or ``'O'``; index 0 is top-left, 8 bottom-right.
"""
from typing import List, Optional

from wagerplay.errors import InvalidIndex

X = 'X'
O = 'O'
MARKS = (X, O)
SIZE = 9

LINES = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),  # rows
    (0, 3, 6), (1, 4, 7), (2, 5, 8),  # columns
    (0, 4, 8), (2, 4, 6),             # diagonals
)


def empty_board() -> List[Optional[str]]:
    return [None] * SIZE


def other_mark(mark: str) -> str:
    return O if mark == X else X


def winner(board) -> Optional[str]:
    """Return the mark owning the first complete line, or None."""
    for a, b, c in LINES:
        if board[a] is not None and board[a] == board[b] == board[c]:
            return board[a]
    return None


def is_full(board) -> bool:
    return all(cell is not None for cell in board)


def empty_cells(board) -> List[int]:
    return [i for i, cell in enumerate(board) if cell is None]


def check_index(index) -> int:
    # bool is an int subclass but never a valid cell
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < SIZE:
        raise InvalidIndex(index)
    return index


def is_legal_move(board, index) -> bool:
    return board[check_index(index)] is None
