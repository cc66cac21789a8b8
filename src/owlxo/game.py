"""Core rules for OwlXO (classic 3x3 tic-tac-toe)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

Player = str  # "X" or "O"
EMPTY = " "
BOARD_SIZE = 9

# Scan order matters: when a malformed board holds two completed lines the
# first one listed here is reported.
WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)

CENTER = 4
CORNERS: Tuple[int, ...] = (0, 2, 6, 8)
EDGES: Tuple[int, ...] = (1, 3, 5, 7)


class GameMode(str, Enum):
    SINGLE = "single"
    TWO_PLAYER = "two_player"
    ONLINE = "online"


class ResultStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    WIN = "win"
    DRAW = "draw"


@dataclass(frozen=True)
class GameResult:
    status: ResultStatus
    winner: Optional[Player] = None
    line: Optional[Tuple[int, int, int]] = None

    @property
    def is_over(self) -> bool:
        return self.status is not ResultStatus.IN_PROGRESS


IN_PROGRESS = GameResult(ResultStatus.IN_PROGRESS)
DRAW = GameResult(ResultStatus.DRAW)


@dataclass(frozen=True)
class Move:
    index: int
    player: Player


def other(player: Player) -> Player:
    return "O" if player == "X" else "X"


def current_player(move_count: int) -> Player:
    """X moves on even move counts, O on odd ones."""
    return "X" if move_count % 2 == 0 else "O"


def empty_cells(cells: Sequence[str]) -> List[int]:
    return [i for i, c in enumerate(cells) if c == EMPTY]


def evaluate(cells: Sequence[str]) -> GameResult:
    """Classify a board as won, drawn, or still in progress.

    Lines are checked in ``WINNING_LINES`` order and the first complete one
    wins, so the result is stable even for boards that could not arise in
    play.
    """
    for a, b, c in WINNING_LINES:
        v = cells[a]
        if v != EMPTY and v == cells[b] == cells[c]:
            return GameResult(ResultStatus.WIN, winner=v, line=(a, b, c))
    if all(c != EMPTY for c in cells):
        return DRAW
    return IN_PROGRESS


def winning_cells(cells: Sequence[str], player: Player) -> List[int]:
    """Empty cells that would complete a line for ``player``."""
    out: List[int] = []
    for a, b, c in WINNING_LINES:
        trio = (cells[a], cells[b], cells[c])
        if trio.count(player) == 2 and trio.count(EMPTY) == 1:
            gap = (a, b, c)[trio.index(EMPTY)]
            if gap not in out:
                out.append(gap)
    return sorted(out)


# ---------- Board ----------


@dataclass
class Board:
    # 'X', 'O', or ' ' (space) for empty
    cells: List[str] = field(default_factory=lambda: [EMPTY] * BOARD_SIZE)

    def is_full(self) -> bool:
        return all(c != EMPTY for c in self.cells)

    def is_empty(self, idx: int) -> bool:
        return 0 <= idx < BOARD_SIZE and self.cells[idx] == EMPTY

    def move_count(self) -> int:
        return sum(1 for c in self.cells if c != EMPTY)

    def empty_cells(self) -> List[int]:
        return empty_cells(self.cells)

    def place(self, player: Player, idx: int) -> None:
        if not 0 <= idx < BOARD_SIZE:
            raise ValueError("Cell index out of range")
        if self.cells[idx] != EMPTY:
            raise ValueError("Cell already occupied")
        if evaluate(self.cells).is_over:
            raise ValueError("Board already resolved")
        self.cells[idx] = player

    def clear(self, idx: int) -> None:
        self.cells[idx] = EMPTY

    def result(self) -> GameResult:
        return evaluate(self.cells)

    def snapshot(self) -> Tuple[str, ...]:
        return tuple(self.cells)

    def clone(self) -> "Board":
        return Board(cells=self.cells.copy())


def new_board() -> Board:
    """An empty board with X to move."""
    return Board()
