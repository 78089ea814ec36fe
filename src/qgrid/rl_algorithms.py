"""
rl_algorithms.py - Tabular Q-learning on the goal/teleporter GridWorld.

Implements the learning engine used throughout the project:

- transition / shaping_reward : (state, action, mode) -> (next state, reward)
- greedy_action / epsilon_greedy / select_action : the behaviour policy,
  masked so that it never steers the agent off the grid
- q_update  : one-step temporal-difference update of the Q-table
- q_step    : select + transition + update, one simulated step
- advance   : q_step from the agent's position plus episode bookkeeping
- q_learning: headless episode driver returning an EpisodeLog
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from .gridworld import (
    Action,
    CellType,
    ConfigurationError,
    Coord,
    Grid,
    GridWorld,
    StepResult,
    move_state,
)
from .utils import EpisodeLog, argmax_random_tie_break, max_value, set_seed

logger = logging.getLogger(__name__)


# =====================================================================
# Configuration dataclasses
# =====================================================================

@dataclass
class TrainConfig:
    """
    Hyperparameters and mode flags for the learning loop.

    Parameters
    ----------
    epochs : int
        Number of episodes to run. Negative means no limit.
    epsilon : float
        Exploration probability of the ε-greedy policy.
    alpha : float
        Learning rate of the TD update.
    gamma : float
        Discount factor.
    euclidean : bool
        Reward moves onto empty cells by how much closer they bring the
        agent to the goals.
    teleporter : bool
        Entering Teleporter 1 warps the agent to Teleporter 2.
    test : bool
        Greedy policy only; the Q-table is read, never written.
    load, save : str or None
        Q-table file to load before / save after the run.
    seed : int or None
        Seed for the NumPy Generator used by the policy.
    """
    epochs: int = -1
    epsilon: float = 0.01
    alpha: float = 0.1
    gamma: float = 0.9
    euclidean: bool = False
    teleporter: bool = False
    test: bool = False
    load: Optional[str] = None
    save: Optional[str] = None
    seed: Optional[int] = None

    def validate(self) -> None:
        """
        Raises
        ------
        ConfigurationError
            If epsilon, alpha or gamma lie outside [0, 1].
        """
        for name in ("epsilon", "alpha", "gamma"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ConfigurationError(f"{name} must be in [0, 1], got {value}")


# =====================================================================
# Reward & transition
# =====================================================================

def euclidean_distance(a: Coord, b: Coord) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def shaping_reward(grid: Grid, state: Coord, next_state: Coord) -> float:
    """
    Distance-based reward for a move onto an empty cell.

    The decrease in Euclidean distance to each goal, normalised by the
    grid diagonal, weighted by the goal's own reward (1000 for goal 1,
    50 for goal 2). Moving away gives a negative reward.
    """
    diagonal = euclidean_distance((0, 0), (grid.width - 1, grid.height - 1))
    if diagonal == 0:
        return 0.0
    reward = 0.0
    for goal in (CellType.GOAL_1, CellType.GOAL_2):
        target = grid.find(goal)
        progress = euclidean_distance(state, target) - euclidean_distance(next_state, target)
        reward += progress / diagonal * int(goal)
    return reward


def transition(grid: Grid, state: Coord, action: int,
               cfg: TrainConfig) -> Tuple[Coord, Optional[float]]:
    """
    Apply `action` from `state`.

    Parameters
    ----------
    grid : Grid
    state : tuple[int, int]
        Current (x, y).
    action : int
        One of `Action`.
    cfg : TrainConfig
        Uses the `teleporter`, `euclidean` and `test` flags.

    Returns
    -------
    next_state : tuple[int, int]
        The cell the move targets (a wall or off-grid cell included), or the
        Teleporter 2 cell when Teleporter 1 is entered with teleporters on.
    reward : float or None
        None in test mode.
    """
    next_state = move_state(state, action)
    cell = grid.lookup(next_state)

    if cfg.teleporter and cell == CellType.TELEPORTER_1:
        # no destination: Teleporter 1 behaves like a plain cell
        destination = grid.find(CellType.TELEPORTER_2)
        if destination is not None:
            next_state = destination

    if cfg.test:
        return next_state, None

    if cell == CellType.EMPTY:
        reward = shaping_reward(grid, state, next_state) if cfg.euclidean else 0.0
    elif cell in (CellType.WALL, CellType.GOAL_1, CellType.GOAL_2):
        reward = float(int(cell))
    else:
        # teleporter cells and off-grid moves
        reward = 0.0
    return next_state, reward


# =====================================================================
# Policy
# =====================================================================

def valid_actions(grid: Grid, state: Coord) -> List[int]:
    """Actions whose target cell lies on the grid."""
    return [
        int(a) for a in Action
        if grid.lookup(move_state(state, a)) != CellType.OUT_OF_BOUNDS
    ]


def greedy_action(Q: np.ndarray, grid: Grid, state: Coord,
                  rng: np.random.Generator, test: bool = False) -> int:
    """
    Greedy action at `state` with uniform tie-breaking among on-grid moves.

    The maximum is taken over all four values. If none of the maximising
    actions stays on the grid, the unconstrained arg-max is returned in
    training mode (exploration then replaces it by a uniform on-grid move)
    and the best on-grid action in test mode.
    """
    row = Q[grid.to_index(state)]
    valid = valid_actions(grid, state)
    if not valid:
        return argmax_random_tie_break(row, rng)

    maxv = np.max(row)
    ties = [a for a in valid if row[a] == maxv]
    if ties:
        return int(rng.choice(ties))
    if not test:
        return argmax_random_tie_break(row, rng)

    sub = row[valid]
    return valid[argmax_random_tie_break(sub, rng)]


def epsilon_greedy(grid: Grid, state: Coord, action: int, epsilon: float,
                   rng: np.random.Generator) -> int:
    """
    With probability ε (draw <= ε) replace `action` by a uniformly random
    on-grid action. An off-grid `action` is always replaced.
    """
    valid = valid_actions(grid, state)
    if not valid:
        return action
    if rng.random() <= epsilon or action not in valid:
        return int(rng.choice(valid))
    return action


def select_action(Q: np.ndarray, grid: Grid, state: Coord, epsilon: float,
                  test: bool, rng: np.random.Generator) -> int:
    """
    Behaviour policy: greedy with random tie-breaking, then ε-greedy
    exploration unless in test mode. Does not modify `Q`.
    """
    action = greedy_action(Q, grid, state, rng, test)
    if not test:
        action = epsilon_greedy(grid, state, action, epsilon, rng)
    return action


# =====================================================================
# Q-table update
# =====================================================================

def q_update(Q: np.ndarray, s: int, a: int, reward: float, s2: Optional[int],
             alpha: float, gamma: float) -> float:
    """
    Q(s,a) <- (1 - α) Q(s,a) + α (r + γ max_a' Q(s',a'))

    `s2` is None when the move left the grid; the bootstrap term is then 0.
    Updates `Q` in place and returns the new value.
    """
    bootstrap = 0.0 if s2 is None else max_value(Q, s2)
    Q[s, a] = (1.0 - alpha) * Q[s, a] + alpha * (reward + gamma * bootstrap)
    return float(Q[s, a])


def q_step(env: GridWorld, state: Coord, cfg: TrainConfig,
           rng: np.random.Generator) -> Coord:
    """
    One simulated step from `state`: choose an action, apply it and, unless
    in test mode, update the Q-table.

    Returns the next state as given by `transition` (a wall cell included;
    `GridWorld.apply` decides whether the agent actually moves there).
    """
    grid = env.grid
    action = select_action(env.q_table, grid, state, cfg.epsilon, cfg.test, rng)
    next_state, reward = transition(grid, state, action, cfg)

    if reward is not None:
        s2 = grid.to_index(next_state) if grid.check_state(next_state) else None
        q_update(env.q_table, grid.to_index(state), action, reward, s2,
                 cfg.alpha, cfg.gamma)
    return next_state


def advance(env: GridWorld, cfg: TrainConfig,
            rng: np.random.Generator) -> StepResult:
    """One q_step from the agent's position, then the episode bookkeeping."""
    previous = env.agent
    next_state = q_step(env, previous, cfg, rng)
    return env.apply(previous, next_state, cfg.test)


# =====================================================================
# Episode driver
# =====================================================================

def q_learning(env: GridWorld, cfg: TrainConfig,
               rng: Optional[np.random.Generator] = None,
               should_stop: Optional[Callable[[], bool]] = None,
               on_episode: Optional[Callable[[int, int, float], None]] = None) -> EpisodeLog:
    """
    Run episodes on `env` until `cfg.epochs` is reached or `should_stop()`
    returns True.

    In training mode the limit applies to `env.epoch`, so a loaded table
    resumes where it stopped. In test mode the epoch counter is frozen and
    the limit applies to the number of episodes completed by this call.

    Parameters
    ----------
    env : GridWorld
    cfg : TrainConfig
    rng : np.random.Generator or None
        Defaults to `set_seed(cfg.seed)`.
    should_stop : callable or None
        Polled before every step.
    on_episode : callable or None
        Called as on_episode(epoch, steps, ms) after every finished episode;
        `epoch` is the number of completed test episodes in test mode.

    Returns
    -------
    EpisodeLog
        Step count and wall time of every finished episode.
    """
    if rng is None:
        rng = set_seed(cfg.seed)
    log = EpisodeLog()

    def done() -> bool:
        if should_stop is not None and should_stop():
            return True
        if cfg.epochs < 0:
            return False
        count = len(log) if cfg.test else env.epoch
        return count >= cfg.epochs

    started = time.perf_counter()
    while not done():
        result = advance(env, cfg, rng)
        if not result.terminal:
            continue

        ms = (time.perf_counter() - started) * 1000.0
        log.append(result.steps, ms)
        epoch = len(log) if cfg.test else env.epoch
        logger.debug("Episode finished: epoch=%d steps=%d ms=%.1f", epoch, result.steps, ms)
        if on_episode is not None:
            on_episode(epoch, result.steps, ms)
        started = time.perf_counter()

    return log
