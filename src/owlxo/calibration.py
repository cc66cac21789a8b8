"""Win-rate calibration: steers each difficulty toward its target AI win-rate."""

from __future__ import annotations

from typing import Dict, Optional, Protocol, Tuple
import json
import logging
import os
import random
import threading

from pydantic import BaseModel, ValidationError

from .ai import PROFILES, Difficulty, DifficultyProfile, get_profile
from .game import Player

logger = logging.getLogger(__name__)

# Games needed before realized win-rate is trusted over the base target.
MIN_GAMES_FOR_ADJUSTMENT = 5
TOLERANCE = 0.1
CASUAL_TRY_CHANCE = 0.3
EAGER_TRY_CHANCE = 0.9


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self.data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore:
    """Keeps every key in one JSON object on disk."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def _write(self, data: Dict[str, str]) -> None:
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, sort_keys=True)
        os.replace(tmp, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)


class DifficultyStats(BaseModel):
    games_played: int = 0
    ai_wins: int = 0
    human_wins: int = 0
    draws: int = 0
    win_rate: float = 0.0

    def recompute(self) -> None:
        self.win_rate = self.ai_wins / self.games_played if self.games_played else 0.0


def stats_key(difficulty: Difficulty) -> str:
    return f"ai-stats-{Difficulty(difficulty).value}"


class DifficultyCalibrator:
    """Tracks realized AI win-rate per difficulty and decides, per game,
    whether the AI should play to win or play casually.

    Stats are loaded from ``store`` on construction and written back after
    every recorded game. Store failures are logged and otherwise ignored;
    the in-memory counters stay authoritative for the process.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store: KeyValueStore = store if store is not None else MemoryStore()
        self.rng = rng or random.Random()
        self._stats: Dict[Difficulty, DifficultyStats] = {
            difficulty: self._load(difficulty) for difficulty in Difficulty
        }

    # ---- persistence boundary ----

    def _load(self, difficulty: Difficulty) -> DifficultyStats:
        key = stats_key(difficulty)
        try:
            raw = self.store.get(key)
        except Exception as exc:
            logger.warning("Failed to read %s, starting from zero: %s", key, exc)
            return DifficultyStats()
        if raw is None:
            return DifficultyStats()
        try:
            stats = DifficultyStats.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Failed to parse %s, starting from zero: %s", key, exc)
            return DifficultyStats()
        stats.recompute()
        return stats

    def _save(self, difficulty: Difficulty) -> None:
        key = stats_key(difficulty)
        try:
            self.store.set(key, self._stats[difficulty].model_dump_json())
        except Exception as exc:
            logger.warning("Failed to persist %s, keeping it in memory: %s", key, exc)

    # ---- public API ----

    def should_try_to_win(self, difficulty: Difficulty) -> bool:
        difficulty = Difficulty(difficulty)
        target = get_profile(difficulty).target_win_rate
        stats = self._stats[difficulty]

        if stats.games_played < MIN_GAMES_FOR_ADJUSTMENT:
            chance = target
        elif stats.win_rate > target + TOLERANCE:
            chance = CASUAL_TRY_CHANCE
        elif stats.win_rate < target - TOLERANCE:
            chance = EAGER_TRY_CHANCE
        else:
            chance = target
        return self.rng.random() < chance

    def record_game_result(
        self,
        difficulty: Difficulty,
        winner: Optional[Player],
        ai_mark: Player = "O",
    ) -> DifficultyStats:
        """Count one finished game; ``winner=None`` records a draw."""
        difficulty = Difficulty(difficulty)
        stats = self._stats[difficulty]
        stats.games_played += 1
        if winner is None:
            stats.draws += 1
        elif winner == ai_mark:
            stats.ai_wins += 1
        else:
            stats.human_wins += 1
        stats.recompute()
        self._save(difficulty)

        logger.info(
            "AI stats for %s: %d games, win rate %.2f (target %.2f)",
            difficulty.value,
            stats.games_played,
            stats.win_rate,
            get_profile(difficulty).target_win_rate,
        )
        return stats.model_copy()

    def get_stats(self, difficulty: Difficulty) -> DifficultyStats:
        return self._stats[Difficulty(difficulty)].model_copy()

    def all_stats(self) -> Dict[Difficulty, DifficultyStats]:
        return {d: s.model_copy() for d, s in self._stats.items()}

    def reset_stats(self, difficulty: Optional[Difficulty] = None) -> None:
        targets = [Difficulty(difficulty)] if difficulty is not None else list(Difficulty)
        for d in targets:
            self._stats[d] = DifficultyStats()
            try:
                self.store.delete(stats_key(d))
            except Exception as exc:
                logger.warning("Failed to delete %s: %s", stats_key(d), exc)

    def target_win_rates(self) -> Dict[Difficulty, float]:
        return {d: p.target_win_rate for d, p in PROFILES.items()}

    def difficulty_info(
        self, difficulty: Difficulty
    ) -> Tuple[DifficultyProfile, DifficultyStats, str]:
        """Profile, stats and whether the AI runs below, on or above target."""
        profile = get_profile(difficulty)
        stats = self.get_stats(difficulty)
        performance = "on-target"
        if stats.games_played >= MIN_GAMES_FOR_ADJUSTMENT:
            diff = stats.win_rate - profile.target_win_rate
            if diff < -TOLERANCE:
                performance = "below"
            elif diff > TOLERANCE:
                performance = "above"
        return profile, stats, performance
