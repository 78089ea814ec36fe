"""
utils.py - Small, reusable helpers for the Q-table and experiment management.

Includes:
- Seeding and RNG utilities
- Arg-max with random tie-breaking
- Q-table construction and max-value lookup
- Text persistence of the Q-table and epoch counter
- Episode logging, smoothing and plotting of learning curves
- Value / greedy-policy plots for a trained table
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


# -----------------------------
# Reproducibility / RNG
# -----------------------------

def set_seed(seed: Optional[int] = None) -> np.random.Generator:
    """
    Create a NumPy Generator seeded with `seed`.

    Parameters
    ----------
    seed : int or None
        If None, uses unpredictable entropy; else deterministic.

    Returns
    -------
    np.random.Generator
    """
    return np.random.default_rng(seed)


# -----------------------------
# Action selection
# -----------------------------

def argmax_random_tie_break(x: np.ndarray, rng: np.random.Generator) -> int:
    """
    Argmax with uniform tie-breaking.

    Parameters
    ----------
    x : np.ndarray shape (A,)
    rng : np.random.Generator

    Returns
    -------
    int
        Index of the chosen maximum
    """
    maxv = np.max(x)
    ties = np.flatnonzero(x == maxv)
    return int(rng.choice(ties))


# -----------------------------
# Q-table helpers
# -----------------------------

def init_q_table(num_states: int, num_actions: int, init_value: float = 0.0) -> np.ndarray:
    """
    Create a tabular Q of shape (S, A) filled with `init_value`.
    """
    return np.full((num_states, num_actions), init_value, dtype=float)


def max_value(Q: np.ndarray, s: int) -> float:
    """
    max_a Q(s, a) over every stored action, including moves into walls or
    off the grid.
    """
    return float(np.max(Q[s]))


# -----------------------------
# Persistence
# -----------------------------

def save_q_table(Q: np.ndarray, epoch: int, path: str | Path) -> bool:
    """
    Write the epoch counter and the Q-table as text.

    Line 1 is the epoch; then one line per state in row-major order holding
    the four action values (Up, Down, Left, Right) separated by spaces.
    Values are written with `repr` so they read back bit-for-bit.

    Returns
    -------
    bool
        False if the file cannot be written.
    """
    lines = [str(int(epoch))]
    for row in np.asarray(Q, dtype=float):
        lines.append(" ".join(repr(float(v)) for v in row))
    try:
        with open(path, "w") as f:
            f.write("\n".join(lines) + "\n")
    except OSError as exc:
        logger.error("Failed to save Q-table to %s: %s", path, exc)
        return False
    logger.info("Saved Q-table to %s", path)
    return True


def load_q_table(path: str | Path,
                 shape: Tuple[int, int]) -> Optional[Tuple[np.ndarray, int]]:
    """
    Read a table written by `save_q_table`.

    Parameters
    ----------
    path : str or Path
        File to read.
    shape : tuple[int, int]
        Expected (S, A) shape of the table.

    Returns
    -------
    (np.ndarray, int) or None
        A fresh table and the epoch counter, or None when the file is
        missing, unreadable or malformed anywhere.
    """
    try:
        with open(path, "r") as f:
            lines = [line.strip() for line in f if line.strip()]
    except OSError as exc:
        logger.error("Failed to load Q-table from %s: %s", path, exc)
        return None

    if len(lines) != shape[0] + 1:
        logger.error("Failed to load Q-table from %s: expected %d lines, found %d",
                     path, shape[0] + 1, len(lines))
        return None

    try:
        epoch = int(lines[0])
        rows = [[float(v) for v in line.split()] for line in lines[1:]]
    except ValueError as exc:
        logger.error("Failed to load Q-table from %s: %s", path, exc)
        return None

    if any(len(row) != shape[1] for row in rows):
        logger.error("Failed to load Q-table from %s: each row needs %d values",
                     path, shape[1])
        return None

    logger.info("Loaded Q-table from %s (epoch %d)", path, epoch)
    return np.array(rows, dtype=float), epoch


# -----------------------------
# Logging / plotting
# -----------------------------

@dataclass
class EpisodeLog:
    """
    Per-episode metrics gathered while the driver runs
    """
    lengths: List[int] = field(default_factory=list)
    durations_ms: List[float] = field(default_factory=list)

    def append(self, L: int, ms: float) -> None:
        self.lengths.append(L)
        self.durations_ms.append(ms)

    def __len__(self) -> int:
        return len(self.lengths)


def rolling(x, k: int = 25) -> np.ndarray:
    """
    Rolling average:
    - uses 'valid' convolution
    - pads the front with the first smoothed value.

    This keeps the length equal to len(x).
    """
    x = np.asarray(x, dtype=float)
    if len(x) == 0:
        return np.array([])
    k = max(1, min(k, len(x)))
    y = np.convolve(x, np.ones(k)/k, mode="valid")
    pad = np.full(k-1, y[0])
    return np.concatenate([pad, y])


def plot_learning_curve(lengths: Sequence[int], window: int = 21,
                        title: str = "Steps per Epoch", show: bool = True):
    """
    Plot raw and smoothed episode lengths.
    """
    fig = plt.figure(figsize=(7.5, 4))
    r = np.asarray(lengths, dtype=float)
    rs = rolling(r, window)
    plt.plot(r, alpha=0.35, label="Steps (raw)")
    plt.plot(rs, linewidth=2.0, label=f"Steps (MA{window})")
    plt.xlabel("Epoch")
    plt.ylabel("Steps")
    plt.title(title)
    plt.legend()
    plt.tight_layout()
    if show:
        plt.show()
    return fig


# -----------------------------
# GridWorld-specific helpers
# -----------------------------

def value_grid(env, Q: np.ndarray) -> np.ndarray:
    """
    Map V(s) = max_a Q(s,a) onto a (height x width) grid.
    """
    V = np.max(Q, axis=1)
    return V.reshape(env.height, env.width)


def plot_value_and_policy(env, Q: np.ndarray,
                          title: str = "Value & Policy (Top-Left Origin)",
                          show: bool = True):
    """
    Visualize the value function as a heatmap + greedy policy arrows.
    Walls and goals get no arrow.
    """
    from .gridworld import CellType, MOVES

    H, W = env.height, env.width
    Vg = value_grid(env, Q)

    fig = plt.figure(figsize=(6.6, 6.6))
    plt.imshow(Vg, origin='upper')
    plt.colorbar(label="V(s) = maxₐ Q(s,a)")
    plt.title(title)
    plt.xticks(range(W))
    plt.yticks(range(H))

    X, Y, U, V = [], [], [], []
    for s in range(env.num_states):
        x, y = env.grid.to_state(s)
        if env.grid.lookup((x, y)) == CellType.WALL or env.is_terminal((x, y)):
            continue
        dx, dy = MOVES[int(np.argmax(Q[s]))]
        X.append(x)
        Y.append(y)
        U.append(dx)
        V.append(dy)

    plt.quiver(X, Y, U, V, scale=1, angles='xy', scale_units='xy', width=0.004)
    plt.grid(False)
    plt.tight_layout()
    if show:
        plt.show()
    return fig
