"""OwlXO package exposing the rules, AI policy, turn machines and web service."""

from .ai import Difficulty, MovePolicy, select_move
from .calibration import DifficultyCalibrator
from .game import evaluate
from .online import SessionSynchronizer
from .turns import TurnController
from .ui import app, create_app

__all__ = [
    "Difficulty",
    "DifficultyCalibrator",
    "MovePolicy",
    "SessionSynchronizer",
    "TurnController",
    "app",
    "create_app",
    "evaluate",
    "select_move",
]
