"""Tests for the local turn controller state machine."""

import random

import pytest

from owlxo.ai import Difficulty
from owlxo.calibration import DifficultyCalibrator, MemoryStore
from owlxo.config import EngineSettings
from owlxo.events import EventChannel
from owlxo.game import EMPTY, GameMode, ResultStatus
from owlxo.scheduler import ManualScheduler
from owlxo.turns import (
    GAME_OVER,
    NOT_YOUR_TURN,
    NOTHING_TO_UNDO,
    OCCUPIED,
    OUT_OF_RANGE,
    TurnController,
    TurnKind,
)


class Harness:
    def __init__(self, mode=GameMode.SINGLE, difficulty=Difficulty.MEDIUM, human="X", seed=0):
        self.scheduler = ManualScheduler()
        self.events = EventChannel()
        self.ended = []
        self.events.subscribe(self.ended.append)
        self.calibrator = DifficultyCalibrator(MemoryStore(), rng=random.Random(seed))
        self.controller = TurnController(
            self.scheduler,
            mode,
            difficulty=difficulty,
            human_symbol=human,
            calibrator=self.calibrator,
            events=self.events,
            rng=random.Random(seed),
            settings=EngineSettings(),
        )


def _marks(snapshot):
    return sum(1 for c in snapshot.board if c != EMPTY)


def test_human_starts_with_turn_timer():
    h = Harness()
    snap = h.controller.snapshot()
    assert snap.turn.kind is TurnKind.HUMAN
    assert snap.turn.symbol == "X"
    assert snap.timer_remaining == pytest.approx(3.0)
    assert h.scheduler.pending() == 1


def test_human_move_hands_over_to_ai_after_thinking():
    h = Harness(difficulty=Difficulty.MEDIUM)
    assert h.controller.apply_human_move(0).ok

    snap = h.controller.snapshot()
    assert snap.turn.kind is TurnKind.AI
    assert snap.turn.symbol == "O"
    assert snap.ai_thinking
    assert h.scheduler.pending() == 1

    h.scheduler.advance(0.79)
    assert _marks(h.controller.snapshot()) == 1

    h.scheduler.advance(0.42)
    snap = h.controller.snapshot()
    assert _marks(snap) == 2
    assert snap.moves[-1].player == "O"
    assert snap.turn.kind is TurnKind.HUMAN
    assert snap.timer_remaining > 0


def test_turn_timeout_forfeits_once_without_placing():
    h = Harness()
    assert h.scheduler.advance(3.0) == 1

    snap = h.controller.snapshot()
    assert snap.forfeits == 1
    assert _marks(snap) == 0
    assert snap.turn.kind is TurnKind.AI
    assert snap.current_player == "O"


def test_two_player_timeout_passes_to_other_human():
    h = Harness(mode=GameMode.TWO_PLAYER)
    h.scheduler.advance(3.0)
    snap = h.controller.snapshot()
    assert snap.turn.kind is TurnKind.HUMAN
    assert snap.turn.symbol == "O"
    assert snap.forfeits == 1
    assert _marks(snap) == 0


def test_ai_moves_first_when_human_is_o():
    h = Harness(difficulty=Difficulty.HARD, human="O")
    snap = h.controller.snapshot()
    assert snap.turn.kind is TurnKind.AI
    assert snap.turn.symbol == "X"

    h.scheduler.advance(1.4)
    snap = h.controller.snapshot()
    assert snap.moves[0].player == "X"
    assert snap.turn.kind is TurnKind.HUMAN
    assert snap.turn.symbol == "O"


def test_illegal_moves_are_rejected_without_change():
    h = Harness()
    assert h.controller.apply_human_move(9).reason == OUT_OF_RANGE
    assert h.controller.apply_human_move(-1).reason == OUT_OF_RANGE

    assert h.controller.apply_human_move(4)
    outcome = h.controller.apply_human_move(5)
    assert not outcome
    assert outcome.reason == NOT_YOUR_TURN

    h.scheduler.advance(1.2)
    before = h.controller.snapshot().board
    assert h.controller.apply_human_move(4).reason == OCCUPIED
    assert h.controller.snapshot().board == before


def test_undo_after_ai_reply_removes_two_plies():
    h = Harness()
    h.controller.apply_human_move(0)
    h.scheduler.advance(1.2)
    assert len(h.controller.snapshot().moves) == 2

    assert h.controller.undo().ok
    snap = h.controller.snapshot()
    assert snap.moves == ()
    assert _marks(snap) == 0
    assert snap.turn.kind is TurnKind.HUMAN
    assert snap.turn.symbol == "X"
    assert h.scheduler.pending() == 1


def test_undo_while_ai_thinks_cancels_its_timer():
    h = Harness()
    h.controller.apply_human_move(0)
    assert h.controller.undo().ok
    assert h.scheduler.pending() == 1  # only the fresh turn timer

    h.scheduler.advance(2.9)
    snap = h.controller.snapshot()
    assert _marks(snap) == 0
    assert snap.turn.kind is TurnKind.HUMAN


def test_undo_with_nothing_to_take_back():
    assert Harness().controller.undo().reason == NOTHING_TO_UNDO
    # The AI's opening move alone is not the human's to undo.
    h = Harness(human="O")
    h.scheduler.advance(1.2)
    assert h.controller.undo().reason == NOTHING_TO_UNDO


def test_two_player_undo_removes_one_ply():
    h = Harness(mode=GameMode.TWO_PLAYER)
    h.controller.apply_human_move(0)
    h.controller.apply_human_move(4)
    assert h.controller.undo().ok

    snap = h.controller.snapshot()
    assert [m.index for m in snap.moves] == [0]
    assert snap.current_player == "O"
    assert snap.turn.symbol == "O"


def test_two_player_win_ends_game_and_cancels_timers():
    h = Harness(mode=GameMode.TWO_PLAYER)
    for index in (0, 3, 1, 4, 2):
        assert h.controller.apply_human_move(index)

    snap = h.controller.snapshot()
    assert snap.turn.kind is TurnKind.GAME_OVER
    assert snap.result.status is ResultStatus.WIN
    assert snap.result.winner == "X"
    assert snap.result.line == (0, 1, 2)
    assert h.scheduler.pending() == 0

    assert h.controller.apply_human_move(5).reason == GAME_OVER
    assert h.controller.undo().reason == GAME_OVER

    [event] = h.ended
    assert event.game_mode is GameMode.TWO_PLAYER
    assert event.outcome == "win"
    assert event.difficulty is None
    assert event.ply_count == 5


def test_single_game_end_is_recorded_for_calibration():
    h = Harness(difficulty=Difficulty.EASY, seed=3)
    rng = random.Random(5)
    while not h.controller.snapshot().result.is_over:
        snap = h.controller.snapshot()
        if snap.turn.kind is TurnKind.HUMAN:
            empties = [i for i, c in enumerate(snap.board) if c == EMPTY]
            assert h.controller.apply_human_move(rng.choice(empties))
        else:
            h.scheduler.advance(1.0)

    stats = h.calibrator.get_stats(Difficulty.EASY)
    assert stats.games_played == 1
    [event] = h.ended
    assert event.game_mode is GameMode.SINGLE
    assert event.difficulty is Difficulty.EASY
    assert event.ply_count == len(h.controller.snapshot().moves)


def test_reset_discards_pending_ai_move():
    h = Harness()
    h.controller.apply_human_move(0)
    h.controller.reset()

    h.scheduler.advance(2.0)
    snap = h.controller.snapshot()
    assert _marks(snap) == 0
    assert snap.turn.kind is TurnKind.HUMAN


def test_stale_ai_callback_is_a_no_op():
    h = Harness()
    h.controller.apply_human_move(0)
    stale_token = h.controller._epoch
    snapshot = h.controller.board.snapshot()
    h.scheduler.advance(1.2)
    moves_before = h.controller.snapshot().moves

    h.controller._on_ai_timer(stale_token, snapshot)
    assert h.controller.snapshot().moves == moves_before


def test_close_cancels_everything():
    h = Harness()
    h.controller.apply_human_move(0)
    h.controller.close()
    assert h.scheduler.pending() == 0
    h.scheduler.advance(10.0)
    assert len(h.controller.snapshot().moves) == 1
    assert h.controller.apply_human_move(1).reason == GAME_OVER


def test_online_mode_is_not_a_local_game():
    with pytest.raises(ValueError):
        TurnController(ManualScheduler(), GameMode.ONLINE)


def _ai_win_rate(difficulty, games, seed):
    h = Harness(difficulty=difficulty, seed=seed)
    rng = random.Random(seed + 1)
    for _ in range(games):
        while not h.controller.snapshot().result.is_over:
            snap = h.controller.snapshot()
            if snap.turn.kind is TurnKind.HUMAN:
                empties = [i for i, c in enumerate(snap.board) if c == EMPTY]
                h.controller.apply_human_move(rng.choice(empties))
            else:
                h.scheduler.advance(1.5)
        h.controller.reset()
    return h.calibrator.get_stats(difficulty).win_rate


def test_harder_tiers_win_more_against_random_play():
    easy = _ai_win_rate(Difficulty.EASY, 150, seed=11)
    hard = _ai_win_rate(Difficulty.HARD, 150, seed=11)
    assert hard > easy


# Realized AI win-rate after 1000 games against a uniformly random human
# who moves first. Medium and Hard settle below target: as O, even full
# search draws roughly one game in six against random play, which caps
# what the calibrator can reach.
@pytest.mark.parametrize(
    "difficulty, low, high",
    [
        (Difficulty.EASY, 0.35, 0.45),
        (Difficulty.MEDIUM, 0.52, 0.65),
        (Difficulty.HARD, 0.65, 0.78),
    ],
)
def test_calibrated_win_rate_with_real_policy(difficulty, low, high):
    realized = _ai_win_rate(difficulty, 1000, seed=7)
    assert low <= realized <= high
