"""Tests for the OwlXO move policy and minimax search."""

import random

from owlxo.ai import Difficulty, MinimaxSearch, MovePolicy, select_move
from owlxo.game import EMPTY, evaluate


class FixedRandom:
    """RNG stub: every probability roll returns ``value``, choices take the first item."""

    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value

    def choice(self, seq):
        return seq[0]

    def uniform(self, a, b):
        return a + (b - a) * self.value


def _cells(text):
    return [" " if c == "_" else c for c in text]


def test_hard_opens_in_center():
    move = select_move(_cells("_________"), Difficulty.HARD, 0, True, rng=FixedRandom(0.5), ai_mark="X")
    assert move == 4


def test_takes_immediate_win():
    policy = MovePolicy(FixedRandom(0.5))
    decision = policy.decide(_cells("OO_XX____"), Difficulty.EASY, 4, True, ai_mark="O")
    assert decision.index == 2
    assert decision.layer == "win"


def test_block_now_fires_when_gate_passes():
    policy = MovePolicy(FixedRandom(0.5))
    decision = policy.decide(_cells("XX__O____"), Difficulty.MEDIUM, 3, True, ai_mark="O")
    assert decision.index == 2
    assert decision.layer == "block"


def test_block_now_skipped_when_gate_fails():
    policy = MovePolicy(FixedRandom(0.9))
    decision = policy.decide(_cells("XX__O____"), Difficulty.MEDIUM, 3, True, ai_mark="O")
    assert decision.layer == "strategic"


def test_blunder_ignores_strategy():
    policy = MovePolicy(FixedRandom(0.0))
    decision = policy.decide(_cells("OO_XX____"), Difficulty.HARD, 4, True, ai_mark="O")
    assert decision.layer == "blunder"
    assert decision.index == 2  # first empty cell from the stubbed choice


def test_casual_play_prefers_edges():
    policy = MovePolicy(FixedRandom(0.5))
    decision = policy.decide(_cells("X________"), Difficulty.MEDIUM, 1, False, ai_mark="O")
    assert decision.layer == "casual"
    assert decision.index == 1


def test_casual_play_can_still_block():
    policy = MovePolicy(FixedRandom(0.2))
    decision = policy.decide(_cells("XX__O____"), Difficulty.MEDIUM, 3, False, ai_mark="O")
    assert decision.layer == "casual-block"
    assert decision.index == 2


def test_no_move_on_full_board():
    assert select_move(_cells("XOXOXOOXO"), Difficulty.HARD, 9, True) is None


def test_strategic_prefers_fork():
    policy = MovePolicy(FixedRandom(0.5))
    cells = _cells("X___O___X")
    assert policy._fork_cells(cells, "X") == [2, 6]
    decision = policy.decide(cells, Difficulty.EASY, 3, True, ai_mark="X")
    assert decision.layer == "strategic"
    assert decision.index == 2


def test_strategic_blocks_opponent_fork():
    policy = MovePolicy(FixedRandom(0.5))
    # O has no fork of its own; X threatens one at 2 or 6.
    cells = _cells("X___O___X")
    decision = policy.decide(cells, Difficulty.MEDIUM, 3, True, ai_mark="O")
    assert decision.layer == "strategic"
    assert decision.index in (2, 6)


def test_minimax_prefers_faster_win():
    search = MinimaxSearch(player="O")
    # O wins at once on 2; any slower line scores lower.
    score, move = search.search(_cells("OO_XX_X__"))
    assert move == 2
    assert score == 9


def test_minimax_self_play_is_draw():
    searches = {"X": MinimaxSearch(player="X"), "O": MinimaxSearch(player="O")}
    cells = [EMPTY] * 9
    mark = "X"
    while not evaluate(cells).is_over:
        move = searches[mark].best_move(cells)
        assert cells[move] == EMPTY
        cells[move] = mark
        mark = "O" if mark == "X" else "X"
    assert evaluate(cells).winner is None


def test_minimax_never_loses_as_second_player():
    search = MinimaxSearch(player="O")

    def play(cells, to_move):
        result = evaluate(cells)
        if result.is_over:
            assert result.winner != "X"
            return
        if to_move == "X":
            for i, c in enumerate(cells):
                if c == EMPTY:
                    cells[i] = "X"
                    play(cells, "O")
                    cells[i] = EMPTY
        else:
            move = search.best_move(cells)
            cells[move] = "O"
            play(cells, "X")
            cells[move] = EMPTY

    play([EMPTY] * 9, "X")


def test_seeded_policy_is_reproducible():
    cells = _cells("X___O____")
    first = [
        MovePolicy(random.Random(7)).select_move(cells, Difficulty.EASY, 2, False)
        for _ in range(5)
    ]
    second = [
        MovePolicy(random.Random(7)).select_move(cells, Difficulty.EASY, 2, False)
        for _ in range(5)
    ]
    assert first == second
