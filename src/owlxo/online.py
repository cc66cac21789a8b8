"""Simulated online play: matchmaking and a latency-delayed random opponent.

Nothing here touches the network. Connecting, searching, the match-found
pause and the opponent's replies are all timers on the injected scheduler,
which makes :class:`SessionSynchronizer` the seam a real transport would
replace.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple, TypeVar
import logging
import random
import uuid

from .config import EngineSettings
from .events import EventChannel, GameEnded
from .game import (
    BOARD_SIZE,
    IN_PROGRESS,
    Board,
    GameMode,
    GameResult,
    Move,
    Player,
    new_board,
)
from .scheduler import Scheduler, TimerSlot
from .turns import (
    ACCEPTED,
    GAME_OVER,
    NO_GAME,
    NOT_YOUR_TURN,
    OCCUPIED,
    OUT_OF_RANGE,
    MoveOutcome,
    TurnState,
    game_outcome,
    rejected,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

HUMAN_SYMBOL: Player = "X"
REMOTE_SYMBOL: Player = "O"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class MatchStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SEARCHING = "searching"
    FOUND = "found"
    IN_GAME = "in_game"


@dataclass(frozen=True)
class PlayerIdentity:
    name: str
    avatar: str = "bear"


DEMO_OPPONENTS: Tuple[PlayerIdentity, ...] = (
    PlayerIdentity("Alex_Pro", "fox"),
    PlayerIdentity("Sarah_Strategic", "owl"),
    PlayerIdentity("Mike_Master", "bear"),
    PlayerIdentity("Emma_Expert", "rabbit"),
    PlayerIdentity("Chris_Champion", "deer"),
    PlayerIdentity("Luna_Legend", "cat"),
    PlayerIdentity("Max_Mighty", "dog"),
    PlayerIdentity("Zoe_Zen", "squirrel"),
)


@dataclass
class MatchSession:
    player: PlayerIdentity
    status: MatchStatus = MatchStatus.CONNECTING
    opponent: Optional[PlayerIdentity] = None
    room_id: Optional[str] = None
    symbol: Optional[Player] = None
    board: Board = field(default_factory=new_board)
    moves: List[Move] = field(default_factory=list)
    current_player: Player = "X"
    result: GameResult = IN_PROGRESS


@dataclass(frozen=True)
class OnlineSnapshot:
    player_id: str
    connection: ConnectionStatus
    matchmaking: MatchStatus
    opponent: Optional[PlayerIdentity]
    room_id: Optional[str]
    symbol: Optional[Player]
    board: Tuple[str, ...]
    moves: Tuple[Move, ...]
    turn: Optional[TurnState]
    result: GameResult
    reply_pending: bool


def _generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class SessionSynchronizer:
    """Owns the match session and the single timer driving it."""

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        rng: Optional[random.Random] = None,
        events: Optional[EventChannel] = None,
        settings: Optional[EngineSettings] = None,
        opponents: Tuple[PlayerIdentity, ...] = DEMO_OPPONENTS,
    ) -> None:
        self.rng = rng or random.Random()
        self.events = events
        self.settings = settings or EngineSettings()
        self.opponents = opponents
        self.player_id = _generate_id("player")
        self.connection = ConnectionStatus.DISCONNECTED

        self._session: Optional[MatchSession] = None
        self._timer = TimerSlot(scheduler)
        self._epoch = 0

        self._connection_listeners: List[Callable[[ConnectionStatus], None]] = []
        self._matchmaking_listeners: List[Callable[[MatchStatus], None]] = []
        self._match_found_listeners: List[
            Callable[[PlayerIdentity, str, Player], None]
        ] = []
        self._game_state_listeners: List[Callable[[OnlineSnapshot], None]] = []

    # ---- notifications ----

    def subscribe_connection(
        self, listener: Callable[[ConnectionStatus], None]
    ) -> Callable[[], None]:
        return self._subscribe(self._connection_listeners, listener)

    def subscribe_matchmaking(
        self, listener: Callable[[MatchStatus], None]
    ) -> Callable[[], None]:
        return self._subscribe(self._matchmaking_listeners, listener)

    def subscribe_match_found(
        self, listener: Callable[[PlayerIdentity, str, Player], None]
    ) -> Callable[[], None]:
        return self._subscribe(self._match_found_listeners, listener)

    def subscribe_game_state(
        self, listener: Callable[[OnlineSnapshot], None]
    ) -> Callable[[], None]:
        return self._subscribe(self._game_state_listeners, listener)

    @staticmethod
    def _subscribe(listeners: List[T], listener: T) -> Callable[[], None]:
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _notify(self, listeners: List[Callable[..., None]], *args: object) -> None:
        for listener in list(listeners):
            try:
                listener(*args)
            except Exception:
                logger.exception("Online listener %r failed", listener)

    # ---- state ----

    @property
    def status(self) -> MatchStatus:
        return self._session.status if self._session else MatchStatus.IDLE

    @property
    def session(self) -> Optional[MatchSession]:
        return self._session

    def snapshot(self) -> OnlineSnapshot:
        session = self._session
        board = session.board.snapshot() if session else new_board().snapshot()
        return OnlineSnapshot(
            player_id=self.player_id,
            connection=self.connection,
            matchmaking=self.status,
            opponent=session.opponent if session else None,
            room_id=session.room_id if session else None,
            symbol=session.symbol if session else None,
            board=board,
            moves=tuple(session.moves) if session else (),
            turn=self._turn_state(session),
            result=session.result if session else IN_PROGRESS,
            reply_pending=self._timer.label == "reply",
        )

    @staticmethod
    def _turn_state(session: Optional[MatchSession]) -> Optional[TurnState]:
        if session is None or session.status is not MatchStatus.IN_GAME:
            return None
        if session.result.is_over:
            return TurnState.game_over(session.result)
        if session.current_player == session.symbol:
            return TurnState.human(session.current_player)
        return TurnState.remote(session.current_player)

    def _set_connection(self, status: ConnectionStatus) -> None:
        if status is self.connection:
            return
        self.connection = status
        logger.info("Connection %s", status.value)
        self._notify(self._connection_listeners, status)

    def _set_status(self, session: MatchSession, status: MatchStatus) -> None:
        session.status = status
        logger.info("Matchmaking %s", status.value)
        self._notify(self._matchmaking_listeners, status)

    def _publish_state(self) -> None:
        self._notify(self._game_state_listeners, self.snapshot())

    def _arm(self) -> int:
        self._epoch += 1
        return self._epoch

    def _live_session(self, token: int, expected: MatchStatus) -> Optional[MatchSession]:
        """The current session, or None when the timer behind ``token`` is stale."""
        session = self._session
        if session is None or token != self._epoch or session.status is not expected:
            logger.debug("Ignoring stale timer, expected %s", expected.value)
            return None
        return session

    # ---- matchmaking ----

    def start_matchmaking(self, player: PlayerIdentity) -> bool:
        """Begin looking for an opponent; ignored unless currently idle."""
        if self._session is not None:
            logger.info("Already matchmaking (%s)", self._session.status.value)
            return False

        logger.info("Starting matchmaking for %s", player.name)
        session = self._session = MatchSession(player=player)
        if self.connection is ConnectionStatus.CONNECTED:
            self._begin_search(session)
            return True

        self._set_status(session, MatchStatus.CONNECTING)
        self._set_connection(ConnectionStatus.CONNECTING)
        token = self._arm()
        self._timer.start(
            self.settings.connect_delay, lambda: self._on_connected(token), "connect"
        )
        return True

    def _on_connected(self, token: int) -> None:
        session = self._live_session(token, MatchStatus.CONNECTING)
        if session is None:
            return
        self._set_connection(ConnectionStatus.CONNECTED)
        self._begin_search(session)

    def _begin_search(self, session: MatchSession) -> None:
        self._set_status(session, MatchStatus.SEARCHING)
        token = self._arm()
        self._timer.start(
            self.rng.uniform(*self.settings.search_delay),
            lambda: self._on_found(token),
            "search",
        )

    def _on_found(self, token: int) -> None:
        session = self._live_session(token, MatchStatus.SEARCHING)
        if session is None:
            return
        session.opponent = self.rng.choice(self.opponents)
        session.room_id = _generate_id("room")
        # The human always plays X so they always move first.
        session.symbol = HUMAN_SYMBOL
        logger.info("Match found: %s in %s", session.opponent.name, session.room_id)
        self._set_status(session, MatchStatus.FOUND)
        self._notify(
            self._match_found_listeners, session.opponent, session.room_id, session.symbol
        )

        token = self._arm()
        self._timer.start(
            self.settings.found_delay, lambda: self._on_game_start(token), "found"
        )

    def _on_game_start(self, token: int) -> None:
        session = self._live_session(token, MatchStatus.FOUND)
        if session is None:
            return
        self._new_board(session)
        self._set_status(session, MatchStatus.IN_GAME)
        self._publish_state()

    def cancel_matchmaking(self) -> None:
        self._teardown("Cancelling matchmaking")

    def leave(self) -> None:
        self._teardown("Leaving game")

    def disconnect(self) -> None:
        self._teardown("Disconnecting")
        self._set_connection(ConnectionStatus.DISCONNECTED)

    def _teardown(self, reason: str) -> None:
        self._timer.cancel()
        self._epoch += 1
        session, self._session = self._session, None
        if self.connection is ConnectionStatus.CONNECTING:
            self._set_connection(ConnectionStatus.DISCONNECTED)
        if session is not None:
            logger.info(reason)
            self._notify(self._matchmaking_listeners, MatchStatus.IDLE)

    # ---- game ----

    def _new_board(self, session: MatchSession) -> None:
        session.board = new_board()
        session.moves = []
        session.current_player = "X"
        session.result = IN_PROGRESS

    def reset_game(self) -> bool:
        """Restart the board of a running match; the human stays X."""
        session = self._session
        if session is None or session.status is not MatchStatus.IN_GAME:
            return False
        self._timer.cancel()
        self._epoch += 1
        self._new_board(session)
        logger.info("Online game reset")
        self._publish_state()
        return True

    def make_move(self, index: int) -> MoveOutcome:
        session = self._session
        if session is None or session.status is not MatchStatus.IN_GAME:
            return self._reject(NO_GAME, index)
        if not isinstance(index, int) or not 0 <= index < BOARD_SIZE:
            return self._reject(OUT_OF_RANGE, index)
        if session.result.is_over:
            return self._reject(GAME_OVER, index)
        if session.current_player != session.symbol:
            return self._reject(NOT_YOUR_TURN, index)
        if not session.board.is_empty(index):
            return self._reject(OCCUPIED, index)

        self._timer.cancel()
        self._apply(session, index, session.current_player)
        if session.result.is_over:
            return ACCEPTED

        token = self._arm()
        self._timer.start(
            self.settings.opponent_reply_delay,
            lambda: self._on_opponent_reply(token),
            "reply",
        )
        # Published after arming so the snapshot reports the pending reply.
        self._publish_state()
        return ACCEPTED

    def _on_opponent_reply(self, token: int) -> None:
        session = self._live_session(token, MatchStatus.IN_GAME)
        if session is None:
            return
        if session.result.is_over or session.current_player != REMOTE_SYMBOL:
            logger.debug("Opponent reply no longer needed")
            return
        empties = session.board.empty_cells()
        if not empties:
            return
        index = self.rng.choice(empties)
        name = session.opponent.name if session.opponent else "Opponent"
        logger.info("%s plays cell %d", name, index)
        self._apply(session, index, REMOTE_SYMBOL)
        if not session.result.is_over:
            self._publish_state()

    def _apply(self, session: MatchSession, index: int, player: Player) -> None:
        session.board.place(player, index)
        session.moves.append(Move(index, player))
        result = session.board.result()
        if not result.is_over:
            session.current_player = REMOTE_SYMBOL if player == HUMAN_SYMBOL else HUMAN_SYMBOL
            return

        session.result = result
        self._timer.cancel()
        self._epoch += 1
        logger.info(
            "Online game over: %s",
            f"{result.winner} wins on {result.line}" if result.winner else "draw",
        )
        self._publish_state()
        if self.events is not None:
            self.events.publish(
                GameEnded(
                    game_mode=GameMode.ONLINE,
                    outcome=game_outcome(result.winner, HUMAN_SYMBOL),
                    winner=result.winner,
                    difficulty=None,
                    ply_count=len(session.moves),
                )
            )

    def _reject(self, reason: str, index: object) -> MoveOutcome:
        logger.debug("Rejected online move %r: %s", index, reason)
        return rejected(reason)
