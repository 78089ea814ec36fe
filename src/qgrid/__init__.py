"""
Package init - expose a clean, minimal API for end users.

Usage
-----
from qgrid import GridWorld, WorldSettings, TrainConfig
from qgrid import q_learning, q_step
from qgrid import utils    # Optional: seeding, persistence, plotting
"""

from .gridworld import (
    Action,
    CellType,
    ConfigurationError,
    Grid,
    GridWorld,
    WorldSettings,
    move_state,
    states_equal,
)
from .rl_algorithms import (
    TrainConfig, advance, q_learning, q_step, select_action, transition, q_update,
)

# Expose utils as a module so users can do: from qgrid import utils
from . import utils

__all__ = [
    "Action",
    "CellType",
    "ConfigurationError",
    "Grid",
    "GridWorld",
    "WorldSettings",
    "move_state",
    "states_equal",
    "TrainConfig",
    "advance",
    "q_learning",
    "q_step",
    "select_action",
    "transition",
    "q_update",
    "utils",
]

__version__ = "0.1.0"
