"""Turn controller: whose turn it is, turn timers and the AI thinking pause."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple
import logging
import random

from .ai import Difficulty, MovePolicy, get_profile
from .calibration import DifficultyCalibrator
from .config import EngineSettings
from .events import EventChannel, GameEnded
from .game import (
    BOARD_SIZE,
    IN_PROGRESS,
    GameMode,
    GameResult,
    Move,
    Player,
    current_player,
    new_board,
    other,
)
from .scheduler import Scheduler, TimerSlot

logger = logging.getLogger(__name__)


class TurnKind(str, Enum):
    HUMAN = "human_turn"
    AI = "ai_turn"
    REMOTE = "remote_turn"
    GAME_OVER = "game_over"


@dataclass(frozen=True)
class TurnState:
    kind: TurnKind
    symbol: Optional[Player] = None
    result: Optional[GameResult] = None

    @classmethod
    def human(cls, symbol: Player) -> "TurnState":
        return cls(TurnKind.HUMAN, symbol)

    @classmethod
    def ai(cls, symbol: Player) -> "TurnState":
        return cls(TurnKind.AI, symbol)

    @classmethod
    def remote(cls, symbol: Player) -> "TurnState":
        return cls(TurnKind.REMOTE, symbol)

    @classmethod
    def game_over(cls, result: GameResult) -> "TurnState":
        return cls(TurnKind.GAME_OVER, result=result)


# Rejection reasons
OUT_OF_RANGE = "out_of_range"
GAME_OVER = "game_over"
NOT_YOUR_TURN = "not_your_turn"
OCCUPIED = "occupied"
NOTHING_TO_UNDO = "nothing_to_undo"
NO_GAME = "no_game"


@dataclass(frozen=True)
class MoveOutcome:
    ok: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


ACCEPTED = MoveOutcome(True)


def rejected(reason: str) -> MoveOutcome:
    return MoveOutcome(False, reason)


def game_outcome(winner: Optional[Player], player_one: Player) -> str:
    if winner is None:
        return "draw"
    return "win" if winner == player_one else "loss"


@dataclass(frozen=True)
class GameSnapshot:
    mode: GameMode
    board: Tuple[str, ...]
    turn: TurnState
    current_player: Player
    moves: Tuple[Move, ...]
    result: GameResult
    timer_remaining: float
    forfeits: int
    difficulty: Optional[Difficulty]
    human_symbol: Player
    ai_symbol: Optional[Player]

    @property
    def ai_thinking(self) -> bool:
        return self.turn.kind is TurnKind.AI


class TurnController:
    """State machine for one local game, either against the AI or two humans
    sharing a device.

    All waiting happens through ``scheduler`` and at most one timer is live at
    a time: the human turn countdown or the AI thinking pause. Each timer
    carries the epoch it was started in and does nothing if the game has
    moved on by the time it fires.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        mode: GameMode = GameMode.SINGLE,
        *,
        difficulty: Difficulty = Difficulty.MEDIUM,
        human_symbol: Player = "X",
        policy: Optional[MovePolicy] = None,
        calibrator: Optional[DifficultyCalibrator] = None,
        events: Optional[EventChannel] = None,
        rng: Optional[random.Random] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        mode = GameMode(mode)
        if mode is GameMode.ONLINE:
            raise ValueError("Online games are run by SessionSynchronizer")
        if human_symbol not in ("X", "O"):
            raise ValueError(f"Unknown symbol {human_symbol!r}")

        self.mode = mode
        self.difficulty = Difficulty(difficulty)
        self.human_symbol: Player = human_symbol
        self.ai_symbol: Optional[Player] = (
            other(human_symbol) if mode is GameMode.SINGLE else None
        )
        self.rng = rng or random.Random()
        self.policy = policy or MovePolicy(self.rng)
        self.calibrator = calibrator or DifficultyCalibrator(rng=self.rng)
        self.events = events
        self.settings = settings or EngineSettings()

        self.board = new_board()
        self.moves: List[Move] = []
        self.result: GameResult = IN_PROGRESS
        self.current_player: Player = "X"
        self.turn = TurnState.human("X")
        self.forfeits = 0
        self.wants_to_win = True

        self._timer = TimerSlot(scheduler)
        self._epoch = 0
        self._closed = False
        self.reset()

    # ---- public API ----

    def reset(self) -> None:
        """Start a fresh game; X always moves first."""
        self._cancel_timers()
        self._closed = False
        self.board = new_board()
        self.moves = []
        self.result = IN_PROGRESS
        self.current_player = "X"
        self.forfeits = 0
        if self.mode is GameMode.SINGLE:
            self.wants_to_win = self.calibrator.should_try_to_win(self.difficulty)
            logger.info(
                "New %s game: %s will %s",
                self.difficulty.value,
                get_profile(self.difficulty).name,
                "try to win" if self.wants_to_win else "play casually",
            )
        self._enter_turn()

    def apply_human_move(self, index: int) -> MoveOutcome:
        if self._closed or self.result.is_over:
            return self._reject(GAME_OVER, index)
        if not isinstance(index, int) or not 0 <= index < BOARD_SIZE:
            return self._reject(OUT_OF_RANGE, index)
        if self.turn.kind is not TurnKind.HUMAN:
            return self._reject(NOT_YOUR_TURN, index)
        if not self.board.is_empty(index):
            return self._reject(OCCUPIED, index)

        self._apply(index, self.current_player)
        return ACCEPTED

    def undo(self) -> MoveOutcome:
        """Take back the latest move, or against the AI the human's latest
        move together with the AI reply that followed it."""
        if self._closed or self.result.is_over:
            return rejected(GAME_OVER)

        if self.mode is GameMode.SINGLE:
            human_plies = [
                i for i, m in enumerate(self.moves) if m.player == self.human_symbol
            ]
            if not human_plies:
                return rejected(NOTHING_TO_UNDO)
            keep = human_plies[-1]
        else:
            if not self.moves:
                return rejected(NOTHING_TO_UNDO)
            keep = len(self.moves) - 1

        self._cancel_timers()
        for move in self.moves[keep:]:
            self.board.clear(move.index)
        removed = len(self.moves) - keep
        del self.moves[keep:]

        if self.mode is GameMode.SINGLE:
            self.current_player = self.human_symbol
        else:
            self.current_player = current_player(len(self.moves))
        logger.info("Undid %d move(s), %s to play", removed, self.current_player)
        self._enter_turn()
        return ACCEPTED

    def close(self) -> None:
        """Tear the game down; any timer still in flight becomes a no-op."""
        self._cancel_timers()
        self._closed = True

    def snapshot(self) -> GameSnapshot:
        return GameSnapshot(
            mode=self.mode,
            board=self.board.snapshot(),
            turn=self.turn,
            current_player=self.current_player,
            moves=tuple(self.moves),
            result=self.result,
            timer_remaining=self._timer.remaining(),
            forfeits=self.forfeits,
            difficulty=self.difficulty if self.mode is GameMode.SINGLE else None,
            human_symbol=self.human_symbol,
            ai_symbol=self.ai_symbol,
        )

    # ---- transitions ----

    def _is_ai(self, player: Player) -> bool:
        return self.mode is GameMode.SINGLE and player == self.ai_symbol

    def _cancel_timers(self) -> None:
        self._timer.cancel()
        self._epoch += 1

    def _enter_turn(self) -> None:
        player = self.current_player
        self._epoch += 1
        token = self._epoch

        if self._is_ai(player):
            self.turn = TurnState.ai(player)
            low, high = self.settings.think_delay(get_profile(self.difficulty).think_delay_ms)
            snapshot = self.board.snapshot()
            self._timer.start(
                self.rng.uniform(low, high),
                lambda: self._on_ai_timer(token, snapshot),
                label="ai",
            )
            return

        self.turn = TurnState.human(player)
        if self.settings.turn_time_limit > 0:
            self._timer.start(
                self.settings.turn_time_limit,
                lambda: self._on_turn_timeout(token),
                label="turn",
            )
        else:
            self._timer.cancel()

    def _is_stale(self, token: int, kind: TurnKind) -> bool:
        if self._closed or token != self._epoch or self.turn.kind is not kind:
            logger.debug("Ignoring stale %s timer", kind.value)
            return True
        return False

    def _on_ai_timer(self, token: int, snapshot: Tuple[str, ...]) -> None:
        if self._is_stale(token, TurnKind.AI):
            return
        player = self.current_player
        index = self.policy.select_move(
            snapshot,
            self.difficulty,
            len(self.moves),
            self.wants_to_win,
            ai_mark=player,
        )
        if index is None:
            logger.warning("AI found no move on a board that is still in progress")
            return
        logger.info("%s plays cell %d", get_profile(self.difficulty).name, index)
        self._apply(index, player)

    def _on_turn_timeout(self, token: int) -> None:
        if self._is_stale(token, TurnKind.HUMAN):
            return
        player = self.current_player
        self.forfeits += 1
        logger.info("%s ran out of time, turn passes to %s", player, other(player))
        self.current_player = other(player)
        self._enter_turn()

    def _apply(self, index: int, player: Player) -> None:
        self._timer.cancel()
        self.board.place(player, index)
        self.moves.append(Move(index, player))

        result = self.board.result()
        if result.is_over:
            self._finish(result)
            return
        self.current_player = other(player)
        self._enter_turn()

    def _finish(self, result: GameResult) -> None:
        self._cancel_timers()
        self.result = result
        self.turn = TurnState.game_over(result)
        logger.info(
            "Game over: %s",
            f"{result.winner} wins on {result.line}" if result.winner else "draw",
        )

        if self.mode is GameMode.SINGLE:
            self.calibrator.record_game_result(
                self.difficulty, result.winner, ai_mark=self.ai_symbol or "O"
            )
            player_one = self.human_symbol
        else:
            player_one = "X"

        if self.events is not None:
            self.events.publish(
                GameEnded(
                    game_mode=self.mode,
                    outcome=game_outcome(result.winner, player_one),
                    winner=result.winner,
                    difficulty=self.difficulty if self.mode is GameMode.SINGLE else None,
                    ply_count=len(self.moves),
                )
            )

    def _reject(self, reason: str, index: object) -> MoveOutcome:
        logger.debug("Rejected move %r: %s", index, reason)
        return rejected(reason)
