"""Move selection for the house bot.

The bot is an ordinary player identity: whatever a strategy picks is
submitted through ``MatchStateMachine.apply_move`` like any human move.
"""
import random
from typing import Optional, Protocol

from . import board as rules

CENTRE = 4
CORNERS = (0, 2, 6, 8)
EDGES = (1, 3, 5, 7)


class BotStrategy(Protocol):
    def choose_move(self, board, mark) -> int:
        ...


def _completing_cell(board, mark) -> Optional[int]:
    for index in rules.empty_cells(board):
        trial = list(board)
        trial[index] = mark
        if rules.winner(trial) == mark:
            return index
    return None


class RandomStrategy:

    def __init__(self, rng=None):
        self.rng = rng or random.Random()

    def choose_move(self, board, mark) -> int:
        cells = rules.empty_cells(board)
        if not cells:
            raise ValueError('No empty cells left')
        return self.rng.choice(cells)


class StrategicStrategy:
    """Win, else block, else centre, else a corner, else an edge."""

    def __init__(self, rng=None):
        self.rng = rng or random.Random()

    def choose_move(self, board, mark) -> int:
        for candidate in (mark, rules.other_mark(mark)):
            index = _completing_cell(board, candidate)
            if index is not None:
                return index
        if board[CENTRE] is None:
            return CENTRE
        for group in (CORNERS, EDGES):
            free = [i for i in group if board[i] is None]
            if free:
                return self.rng.choice(free)
        raise ValueError('No empty cells left')


class MixedStrategy:
    """Plays strategically with probability ``strategic_probability``.

    ``coin`` draws the probability in [0, 1); it defaults to ``rng.random``.
    """

    def __init__(self, strategic_probability, rng=None, coin=None):
        if not 0.0 <= strategic_probability <= 1.0:
            raise ValueError('strategic_probability must be within [0, 1]')
        self.strategic_probability = strategic_probability
        self.rng = rng or random.Random()
        self.coin = coin or self.rng.random
        self._strategic = StrategicStrategy(self.rng)
        self._random = RandomStrategy(self.rng)

    def choose_move(self, board, mark) -> int:
        if self.coin() < self.strategic_probability:
            return self._strategic.choose_move(board, mark)
        return self._random.choose_move(board, mark)
