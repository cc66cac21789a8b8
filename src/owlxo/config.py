"""Timing and storage settings for the OwlXO engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple
import os


@dataclass(frozen=True)
class EngineSettings:
    turn_time_limit: float = 3.0  # seconds a human has before forfeiting
    think_delay_scale: float = 1.0  # 0 disables the AI thinking pause
    connect_delay: float = 1.0
    search_delay: Tuple[float, float] = (2.0, 4.0)
    found_delay: float = 1.0
    opponent_reply_delay: float = 1.0
    stats_path: Optional[str] = None  # None keeps stats in memory only

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        env = os.environ if environ is None else environ
        defaults = cls()
        search_min = float(env.get("OWLXO_SEARCH_DELAY_MIN", defaults.search_delay[0]))
        search_max = float(env.get("OWLXO_SEARCH_DELAY_MAX", defaults.search_delay[1]))
        if search_max < search_min:
            raise ValueError("OWLXO_SEARCH_DELAY_MAX must not be below OWLXO_SEARCH_DELAY_MIN")
        return cls(
            turn_time_limit=float(env.get("OWLXO_TURN_TIME_LIMIT", defaults.turn_time_limit)),
            think_delay_scale=float(
                env.get("OWLXO_THINK_DELAY_SCALE", defaults.think_delay_scale)
            ),
            connect_delay=float(env.get("OWLXO_CONNECT_DELAY", defaults.connect_delay)),
            search_delay=(search_min, search_max),
            found_delay=float(env.get("OWLXO_FOUND_DELAY", defaults.found_delay)),
            opponent_reply_delay=float(
                env.get("OWLXO_OPPONENT_REPLY_DELAY", defaults.opponent_reply_delay)
            ),
            stats_path=env.get("OWLXO_STATS_PATH") or None,
        )

    def think_delay(self, delay_ms: Tuple[int, int]) -> Tuple[float, float]:
        """Convert a profile's millisecond range into scaled seconds."""
        low, high = delay_ms
        return (low / 1000.0 * self.think_delay_scale, high / 1000.0 * self.think_delay_scale)
