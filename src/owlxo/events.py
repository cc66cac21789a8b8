"""Game-ended notifications for reward and achievement bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional
import logging

from .ai import Difficulty
from .game import GameMode, Player

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GameEnded:
    game_mode: GameMode
    outcome: str  # "win", "loss" or "draw" from the first human player's side
    winner: Optional[Player]
    difficulty: Optional[Difficulty]
    ply_count: int


Listener = Callable[[GameEnded], None]


class EventChannel:
    """Fire-and-forget fan-out; a failing listener never reaches the game."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: GameEnded) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Game-ended listener %r failed", listener)
