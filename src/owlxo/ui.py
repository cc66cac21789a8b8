"""FastAPI JSON service exposing the OwlXO engine."""

from __future__ import annotations

from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple
import logging
import math
import uuid

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .ai import Difficulty, get_profile
from .calibration import (
    DifficultyCalibrator,
    DifficultyStats,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
)
from .config import EngineSettings
from .events import EventChannel, GameEnded
from .game import GameMode, GameResult, Move
from .online import OnlineSnapshot, PlayerIdentity, SessionSynchronizer
from .scheduler import AsyncioScheduler
from .turns import GameSnapshot, MoveOutcome, TurnController, TurnKind, TurnState

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Shared collaborators for every game served by one app instance."""

    settings: EngineSettings
    calibrator: DifficultyCalibrator
    events: EventChannel
    scheduler: AsyncioScheduler = field(default_factory=AsyncioScheduler)
    games: Dict[str, TurnController] = field(default_factory=dict)
    online: Dict[str, SessionSynchronizer] = field(default_factory=dict)
    finished: Deque[GameEnded] = field(default_factory=lambda: deque(maxlen=100))

    def close(self) -> None:
        for controller in self.games.values():
            controller.close()
        for sync in self.online.values():
            sync.disconnect()
        self.games.clear()
        self.online.clear()


class NewGameRequest(BaseModel):
    """Request payload for starting a local game."""

    model_config = ConfigDict(populate_by_name=True)

    mode: GameMode = Field(default=GameMode.SINGLE, description="single or two_player")
    difficulty: Difficulty = Difficulty.MEDIUM
    player_goes_first: bool = Field(default=True, alias="playerGoesFirst")

    @field_validator("mode")
    @classmethod
    def ensure_local_mode(cls, value: GameMode) -> GameMode:
        if value is GameMode.ONLINE:
            raise ValueError("Online games are started through /api/online.")
        return value


class MoveRequest(BaseModel):
    """Request payload for claiming a cell."""

    model_config = ConfigDict(populate_by_name=True)

    cell_index: int = Field(alias="cellIndex", ge=0, le=8)


class MatchmakingRequest(BaseModel):
    name: str = Field(min_length=1, max_length=32)
    avatar: str = Field(default="bear", max_length=32)


def _serialize_result(result: GameResult) -> Dict[str, object]:
    return {
        "status": result.status.value,
        "winner": result.winner,
        "winningLine": list(result.line) if result.line else None,
    }


def _serialize_turn(turn: Optional[TurnState]) -> Optional[Dict[str, object]]:
    if turn is None:
        return None
    return {"kind": turn.kind.value, "symbol": turn.symbol}


def _serialize_moves(moves: Tuple[Move, ...]) -> List[Dict[str, object]]:
    return [{"player": m.player, "cellIndex": m.index} for m in moves]


def _serialize_game(game_id: str, snap: GameSnapshot) -> Dict[str, object]:
    state: Dict[str, object] = {
        "id": game_id,
        "mode": snap.mode.value,
        "board": [c if c in ("X", "O") else "" for c in snap.board],
        "currentPlayer": snap.current_player,
        "turn": _serialize_turn(snap.turn),
        "result": _serialize_result(snap.result),
        "moveLog": _serialize_moves(snap.moves),
        "timeLeft": (
            math.ceil(snap.timer_remaining) if snap.turn.kind is TurnKind.HUMAN else None
        ),
        "forfeits": snap.forfeits,
        "aiPending": snap.ai_thinking,
        "humanSymbol": snap.human_symbol,
        "aiSymbol": snap.ai_symbol,
        "difficulty": snap.difficulty.value if snap.difficulty else None,
    }
    if snap.difficulty is not None:
        profile = get_profile(snap.difficulty)
        state["opponent"] = {"name": profile.name, "avatar": profile.avatar}
    if snap.moves:
        last: Move = snap.moves[-1]
        state["lastMove"] = {"player": last.player, "cellIndex": last.index}
    return state


def _serialize_online(session_id: str, snap: OnlineSnapshot) -> Dict[str, object]:
    return {
        "id": session_id,
        "playerId": snap.player_id,
        "connection": snap.connection.value,
        "matchmaking": snap.matchmaking.value,
        "opponent": (
            {"name": snap.opponent.name, "avatar": snap.opponent.avatar}
            if snap.opponent
            else None
        ),
        "roomId": snap.room_id,
        "symbol": snap.symbol,
        "board": [c if c in ("X", "O") else "" for c in snap.board],
        "turn": _serialize_turn(snap.turn),
        "result": _serialize_result(snap.result),
        "moveLog": _serialize_moves(snap.moves),
        "opponentPending": snap.reply_pending,
    }


def _serialize_stats(
    difficulty: Difficulty, calibrator: DifficultyCalibrator
) -> Dict[str, object]:
    profile, stats, performance = calibrator.difficulty_info(difficulty)
    return {
        "difficulty": difficulty.value,
        "opponent": {
            "name": profile.name,
            "avatar": profile.avatar,
            "description": profile.description,
        },
        "targetWinRate": profile.target_win_rate,
        "performance": performance,
        **_stats_payload(stats),
    }


def _stats_payload(stats: DifficultyStats) -> Dict[str, object]:
    return {
        "gamesPlayed": stats.games_played,
        "aiWins": stats.ai_wins,
        "humanWins": stats.human_wins,
        "draws": stats.draws,
        "winRate": stats.win_rate,
    }


def _check(outcome: MoveOutcome) -> None:
    if not outcome.ok:
        raise HTTPException(status_code=400, detail=outcome.reason)


def create_app(
    settings: Optional[EngineSettings] = None,
    store: Optional[KeyValueStore] = None,
) -> FastAPI:
    """Build an app with its own engine instance (calibrator, games, sessions)."""

    settings = settings or EngineSettings.from_env()
    if store is None:
        store = JsonFileStore(settings.stats_path) if settings.stats_path else MemoryStore()
    engine = Engine(
        settings=settings,
        calibrator=DifficultyCalibrator(store),
        events=EventChannel(),
    )

    def _record(event: GameEnded) -> None:
        engine.finished.append(event)
        logger.info(
            "Game ended (%s): %s after %d plies",
            event.game_mode.value,
            event.outcome,
            event.ply_count,
        )

    engine.events.subscribe(_record)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        engine.close()

    app = FastAPI(
        title="OwlXO",
        description="Tic-tac-toe against calibrated AI opponents",
        lifespan=lifespan,
    )
    app.state.engine = engine

    def _get_game(game_id: str) -> TurnController:
        try:
            return engine.games[game_id]
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Game not found") from exc

    def _get_online(session_id: str) -> SessionSynchronizer:
        try:
            return engine.online[session_id]
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc

    # ---- local games ----

    @app.post("/api/game")
    async def create_game(request: NewGameRequest) -> Dict[str, object]:
        controller = TurnController(
            engine.scheduler,
            request.mode,
            difficulty=request.difficulty,
            human_symbol="X" if request.player_goes_first else "O",
            calibrator=engine.calibrator,
            events=engine.events,
            settings=engine.settings,
        )
        game_id = uuid.uuid4().hex
        engine.games[game_id] = controller
        return _serialize_game(game_id, controller.snapshot())

    @app.get("/api/game/{game_id}")
    async def get_game(game_id: str) -> Dict[str, object]:
        return _serialize_game(game_id, _get_game(game_id).snapshot())

    @app.post("/api/game/{game_id}/move")
    async def make_move(game_id: str, request: MoveRequest) -> Dict[str, object]:
        controller = _get_game(game_id)
        _check(controller.apply_human_move(request.cell_index))
        return _serialize_game(game_id, controller.snapshot())

    @app.post("/api/game/{game_id}/undo")
    async def undo_move(game_id: str) -> Dict[str, object]:
        controller = _get_game(game_id)
        _check(controller.undo())
        return _serialize_game(game_id, controller.snapshot())

    @app.post("/api/game/{game_id}/reset")
    async def reset_game(game_id: str) -> Dict[str, object]:
        controller = _get_game(game_id)
        controller.reset()
        return _serialize_game(game_id, controller.snapshot())

    @app.delete("/api/game/{game_id}")
    async def close_game(game_id: str) -> Dict[str, object]:
        controller = engine.games.pop(game_id, None)
        if controller is None:
            raise HTTPException(status_code=404, detail="Game not found")
        controller.close()
        return {"id": game_id, "closed": True}

    # ---- calibration stats ----

    @app.get("/api/stats")
    async def all_stats() -> Dict[str, object]:
        return {d.value: _serialize_stats(d, engine.calibrator) for d in Difficulty}

    @app.get("/api/stats/{difficulty}")
    async def difficulty_stats(difficulty: Difficulty) -> Dict[str, object]:
        return _serialize_stats(difficulty, engine.calibrator)

    @app.get("/api/results")
    async def recent_results() -> List[Dict[str, object]]:
        return [
            {
                "gameMode": e.game_mode.value,
                "outcome": e.outcome,
                "winner": e.winner,
                "difficulty": e.difficulty.value if e.difficulty else None,
                "plyCount": e.ply_count,
            }
            for e in engine.finished
        ]

    @app.delete("/api/stats")
    async def reset_stats(difficulty: Optional[Difficulty] = None) -> Dict[str, object]:
        engine.calibrator.reset_stats(difficulty)
        return {d.value: _serialize_stats(d, engine.calibrator) for d in Difficulty}

    # ---- simulated online play ----

    @app.post("/api/online")
    async def start_matchmaking(request: MatchmakingRequest) -> Dict[str, object]:
        sync = SessionSynchronizer(
            engine.scheduler, events=engine.events, settings=engine.settings
        )
        session_id = uuid.uuid4().hex
        engine.online[session_id] = sync
        sync.start_matchmaking(PlayerIdentity(name=request.name, avatar=request.avatar))
        return _serialize_online(session_id, sync.snapshot())

    @app.get("/api/online/{session_id}")
    async def get_online(session_id: str) -> Dict[str, object]:
        return _serialize_online(session_id, _get_online(session_id).snapshot())

    @app.post("/api/online/{session_id}/move")
    async def online_move(session_id: str, request: MoveRequest) -> Dict[str, object]:
        sync = _get_online(session_id)
        _check(sync.make_move(request.cell_index))
        return _serialize_online(session_id, sync.snapshot())

    @app.post("/api/online/{session_id}/reset")
    async def online_reset(session_id: str) -> Dict[str, object]:
        sync = _get_online(session_id)
        if not sync.reset_game():
            raise HTTPException(status_code=400, detail="No game in progress")
        return _serialize_online(session_id, sync.snapshot())

    @app.delete("/api/online/{session_id}")
    async def leave_online(session_id: str) -> Dict[str, object]:
        sync = engine.online.pop(session_id, None)
        if sync is None:
            raise HTTPException(status_code=404, detail="Session not found")
        sync.disconnect()
        return {"id": session_id, "left": True}

    return app


app = create_app()
