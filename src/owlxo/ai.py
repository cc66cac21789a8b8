"""Difficulty-tuned move policy for OwlXO, backed by an alpha-beta minimax."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import math
import random

from .game import (
    CENTER,
    CORNERS,
    EDGES,
    EMPTY,
    Player,
    ResultStatus,
    empty_cells,
    evaluate,
    other,
    winning_cells,
)

logger = logging.getLogger(__name__)


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass(frozen=True)
class DifficultyProfile:
    """Tuning knobs and persona for one difficulty tier.

    Every ``*_chance`` is the probability that the matching policy layer
    fires when it is reached.
    """

    name: str
    avatar: str
    description: str
    blunder_chance: float
    target_win_rate: float
    think_delay_ms: Tuple[int, int]
    block_chance: float
    casual_block_chance: float
    deep_search_chance: float = 0.0


PROFILES: Dict[Difficulty, DifficultyProfile] = {
    Difficulty.EASY: DifficultyProfile(
        name="Friendly Bear",
        avatar="bear",
        description="A gentle bear who's still learning the game. Makes lots of friendly mistakes!",
        blunder_chance=0.15,
        target_win_rate=0.40,
        think_delay_ms=(600, 1000),
        block_chance=0.30,
        casual_block_chance=0.30,
    ),
    Difficulty.MEDIUM: DifficultyProfile(
        name="Smart Fox",
        avatar="fox",
        description="A clever fox with decent strategy. Balances offense and defense reasonably well.",
        blunder_chance=0.08,
        target_win_rate=0.60,
        think_delay_ms=(800, 1200),
        block_chance=0.85,
        casual_block_chance=0.40,
    ),
    Difficulty.HARD: DifficultyProfile(
        name="Master Owl",
        avatar="owl",
        description="A wise owl with excellent tactical skills. Very difficult to beat!",
        blunder_chance=0.03,
        target_win_rate=0.80,
        think_delay_ms=(1000, 1400),
        block_chance=0.95,
        casual_block_chance=0.50,
        deep_search_chance=0.90,
    ),
}

# Chance that a casual (not trying to win) move goes to an edge cell.
CASUAL_EDGE_CHANCE = 0.7

# Children are searched center, corners, edges: equal scores keep the first.
SEARCH_ORDER: Tuple[int, ...] = (CENTER,) + CORNERS + EDGES

# TT entry flags
EXACT, LOWER, UPPER = 0, 1, 2


def get_profile(difficulty: Difficulty) -> DifficultyProfile:
    return PROFILES[Difficulty(difficulty)]


@dataclass
class TTEntry:
    score: float
    flag: int
    best_move: Optional[int]


@dataclass
class MinimaxSearch:
    """Exhaustive alpha-beta search from ``player``'s point of view.

    Scores: a win for ``player`` is ``10 - depth``, a loss ``depth - 10`` and
    a draw ``0``, with depth counted in plies from the searched position.
    Transposition entries are keyed by the position, the side to move and
    the number of empty cells at the root, which together fix the depth.
    """

    player: Player
    nodes: int = field(default=0, repr=False)
    _tt: Dict[Tuple[Tuple[str, ...], bool, int], TTEntry] = field(
        default_factory=dict, repr=False
    )

    # ---- public API ----

    def best_move(self, cells: Sequence[str]) -> Optional[int]:
        _, move = self.search(cells)
        return move

    def search(self, cells: Sequence[str]) -> Tuple[float, Optional[int]]:
        work = list(cells)
        if evaluate(work).is_over:
            return 0.0, None
        root = len(empty_cells(work))
        return self._minimax(work, 0, root, -math.inf, math.inf, True)

    # ---- core search ----

    def _minimax(
        self,
        cells: List[str],
        depth: int,
        root: int,
        alpha: float,
        beta: float,
        maximizing: bool,
    ) -> Tuple[float, Optional[int]]:
        self.nodes += 1
        result = evaluate(cells)
        if result.status is ResultStatus.WIN:
            if result.winner == self.player:
                return float(10 - depth), None
            return float(depth - 10), None
        if result.status is ResultStatus.DRAW:
            return 0.0, None

        key = (tuple(cells), maximizing, root)
        alpha_orig, beta_orig = alpha, beta

        # TT probe
        tt_hit = self._tt.get(key)
        if tt_hit:
            if tt_hit.flag == EXACT:
                return tt_hit.score, tt_hit.best_move
            if tt_hit.flag == LOWER:
                alpha = max(alpha, tt_hit.score)
            elif tt_hit.flag == UPPER:
                beta = min(beta, tt_hit.score)
            if beta <= alpha:
                return tt_hit.score, tt_hit.best_move

        moves = [i for i in SEARCH_ORDER if cells[i] == EMPTY]
        if tt_hit and tt_hit.best_move in moves:
            pv = tt_hit.best_move
            moves.remove(pv)
            moves.insert(0, pv)

        mark = self.player if maximizing else other(self.player)
        best_move: Optional[int] = None

        if maximizing:
            value = -math.inf
            for move in moves:
                cells[move] = mark
                score, _ = self._minimax(cells, depth + 1, root, alpha, beta, False)
                cells[move] = EMPTY
                if score > value:
                    value, best_move = score, move
                alpha = max(alpha, value)
                if beta <= alpha:
                    break
        else:
            value = math.inf
            for move in moves:
                cells[move] = mark
                score, _ = self._minimax(cells, depth + 1, root, alpha, beta, True)
                cells[move] = EMPTY
                if score < value:
                    value, best_move = score, move
                beta = min(beta, value)
                if beta <= alpha:
                    break

        if value <= alpha_orig:
            flag = UPPER
        elif value >= beta_orig:
            flag = LOWER
        else:
            flag = EXACT
        self._tt[key] = TTEntry(score=value, flag=flag, best_move=best_move)
        return value, best_move


@dataclass(frozen=True)
class MoveDecision:
    index: int
    layer: str
    reasoning: str


class MovePolicy:
    """Layered move selection; each layer is gated by a profile probability.

    Layers run in order: blunder, casual play, win-now, block-now, deep
    search, strategic heuristic, fallback. The first layer that produces a
    move wins.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()
        self._searches: Dict[Player, MinimaxSearch] = {}

    def select_move(
        self,
        cells: Sequence[str],
        difficulty: Difficulty,
        move_count: int,
        wants_to_win: bool,
        ai_mark: Player = "O",
        rng: Optional[random.Random] = None,
    ) -> Optional[int]:
        decision = self.decide(cells, difficulty, move_count, wants_to_win, ai_mark, rng)
        return decision.index if decision else None

    def decide(
        self,
        cells: Sequence[str],
        difficulty: Difficulty,
        move_count: int,
        wants_to_win: bool,
        ai_mark: Player = "O",
        rng: Optional[random.Random] = None,
    ) -> Optional[MoveDecision]:
        rng = rng or self.rng
        profile = get_profile(difficulty)
        opp = other(ai_mark)
        empties = empty_cells(cells)
        if not empties:
            return None

        if rng.random() < profile.blunder_chance:
            return MoveDecision(rng.choice(empties), "blunder", "Oops, a random move")

        if not wants_to_win:
            threats = winning_cells(cells, opp)
            if threats and rng.random() < profile.casual_block_chance:
                return MoveDecision(threats[0], "casual-block", "Defensive block")
            return MoveDecision(self._weak_move(cells, rng), "casual", "Playing casually")

        wins = winning_cells(cells, ai_mark)
        if wins:
            return MoveDecision(wins[0], "win", "Winning move!")

        threats = winning_cells(cells, opp)
        if threats and rng.random() < profile.block_chance:
            return MoveDecision(threats[0], "block", "Blocking opponent")

        if profile.deep_search_chance > 0 and rng.random() < profile.deep_search_chance:
            search = self._search_for(ai_mark)
            before = search.nodes
            move = search.best_move(cells)
            logger.debug("minimax for %s visited %d nodes", ai_mark, search.nodes - before)
            if move is not None:
                return MoveDecision(move, "search", "Optimal move calculated")

        strategic = self._strategic_move(cells, ai_mark, move_count, rng)
        if strategic is not None:
            return MoveDecision(strategic, "strategic", "Strategic positioning")

        return MoveDecision(empties[0], "fallback", "Safe move")

    # ---- heuristics ----

    def _search_for(self, mark: Player) -> MinimaxSearch:
        search = self._searches.get(mark)
        if search is None:
            search = self._searches[mark] = MinimaxSearch(player=mark)
        return search

    def _weak_move(self, cells: Sequence[str], rng: random.Random) -> int:
        edges = [i for i in EDGES if cells[i] == EMPTY]
        if edges and rng.random() < CASUAL_EDGE_CHANCE:
            return rng.choice(edges)
        return rng.choice(empty_cells(cells))

    def _fork_cells(self, cells: Sequence[str], player: Player) -> List[int]:
        work = list(cells)
        forks: List[int] = []
        for move in empty_cells(work):
            work[move] = player
            if len(winning_cells(work, player)) >= 2:
                forks.append(move)
            work[move] = EMPTY
        return forks

    def _strategic_move(
        self,
        cells: Sequence[str],
        player: Player,
        move_count: int,
        rng: random.Random,
    ) -> Optional[int]:
        if cells[CENTER] == EMPTY:
            return CENTER

        corners = [i for i in CORNERS if cells[i] == EMPTY]
        # Opening reply to a center move: nothing to fork yet.
        if move_count <= 1 and corners:
            return rng.choice(corners)

        forks = self._fork_cells(cells, player)
        if forks:
            return rng.choice(forks)

        their_forks = self._fork_cells(cells, other(player))
        if their_forks:
            return rng.choice(their_forks)

        if corners:
            return rng.choice(corners)

        edges = [i for i in EDGES if cells[i] == EMPTY]
        if edges:
            return rng.choice(edges)
        return None


def select_move(
    cells: Sequence[str],
    difficulty: Difficulty,
    move_count: int,
    wants_to_win: bool,
    rng: Optional[random.Random] = None,
    ai_mark: Player = "O",
) -> Optional[int]:
    """Pick a move for ``ai_mark``; ``None`` when the board has no empty cell."""
    return MovePolicy(rng).select_move(cells, difficulty, move_count, wants_to_win, ai_mark)
