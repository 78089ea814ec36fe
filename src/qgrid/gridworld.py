"""
GridWorld: the static grid model, the action algebra and the episode object.

- Cell types double as their own reward magnitudes (walls -10, goals 1000/50)
- Optional one-way teleporter (Teleporter 1 -> Teleporter 2)
- Coordinates are (x, y) with x the column, y the row and (0, 0) at the
  top-left cell.

This file exposes:
    - CellType, Action, MOVES: enumerations of the grid and action spaces
    - move_state, states_equal: pure helpers on coordinates
    - Grid: dense, bounds-checked storage of the layout
    - WorldSettings: dataclass with environment configuration
    - GridWorld: the episode object owning the agent, counters and Q-table
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.colors import ListedColormap, BoundaryNorm

from .utils import init_q_table, save_q_table, load_q_table

Coord = Tuple[int, int]


class ConfigurationError(ValueError):
    """Raised when the grid or the hyperparameters cannot be used for learning."""


class CellType(IntEnum):
    """
    Cell markers of the grid.

    EMPTY, WALL, GOAL_1 and GOAL_2 are also the rewards for entering the cell.
    OUT_OF_BOUNDS is the sentinel returned for coordinates outside the grid and
    is never stored.
    """
    EMPTY = 0
    WALL = -10
    GOAL_1 = 1000
    GOAL_2 = 50
    TELEPORTER_1 = -1
    TELEPORTER_2 = -2
    OUT_OF_BOUNDS = -3


class Action(IntEnum):
    """The four moves, in the column order used by the Q-table."""
    UP = 0
    DOWN = 1
    LEFT = 2
    RIGHT = 3


# (dx, dy) per action
MOVES: Dict[Action, Coord] = {
    Action.UP: (0, -1),
    Action.DOWN: (0, 1),
    Action.LEFT: (-1, 0),
    Action.RIGHT: (1, 0),
}

_E = CellType.EMPTY
_W = CellType.WALL

# Reference 6x6 map, row-major (layout[y][x]).
DEFAULT_LAYOUT: Tuple[Tuple[int, ...], ...] = (
    (_E, _E, _E, _E, _E, CellType.GOAL_1),
    (CellType.GOAL_2, _E, _E, _E, CellType.TELEPORTER_2, _E),
    (_E, _E, _E, _E, _E, _E),
    (_E, _E, _W, _W, _W, _W),
    (_E, _E, _W, CellType.TELEPORTER_1, _E, _E),
    (_E, _E, _E, _E, _E, _E),
)

# Characters understood by WorldSettings.from_txt
TXT_CELLS: Dict[str, CellType] = {
    ".": CellType.EMPTY,
    "#": CellType.WALL,
    "A": CellType.GOAL_1,
    "B": CellType.GOAL_2,
    "T": CellType.TELEPORTER_1,
    "t": CellType.TELEPORTER_2,
    "S": CellType.EMPTY,
}


def move_state(state: Coord, action: int) -> Coord:
    """
    Apply an action to a coordinate. No clamping: the result may lie outside
    the grid, callers check it with `Grid.lookup` or `Grid.check_state`.
    """
    dx, dy = MOVES[Action(action)]
    return (state[0] + dx, state[1] + dy)


def states_equal(a: Coord, b: Coord) -> bool:
    """Pointwise equality of two coordinates."""
    return a[0] == b[0] and a[1] == b[1]


# =====================================================================
# Grid model
# =====================================================================

class Grid:
    """
    Immutable rectangular layout of cell types.

    Parameters
    ----------
    layout : sequence of sequences of int
        Row-major cell markers, `layout[y][x]`. All rows must have the same
        length and no cell may be OUT_OF_BOUNDS.
    """

    def __init__(self, layout: Sequence[Sequence[int]]) -> None:
        if len(layout) == 0 or len(layout[0]) == 0:
            raise ValueError("Grid cannot be empty")

        width = len(layout[0])
        allowed = {int(t) for t in CellType if t is not CellType.OUT_OF_BOUNDS}
        for y, row in enumerate(layout):
            if len(row) != width:
                raise ValueError(
                    f"Row {y} has length {len(row)}, expected {width}. "
                    "All rows must have the same length."
                )
            for x, value in enumerate(row):
                if int(value) not in allowed:
                    raise ValueError(f"Invalid cell value {value!r} at ({x}, {y})")

        self.cells: np.ndarray = np.array(layout, dtype=np.int64)
        self.cells.setflags(write=False)
        self.height: int = self.cells.shape[0]
        self.width: int = self.cells.shape[1]

    def check_state(self, state: Coord) -> bool:
        """True iff 0 <= x < width and 0 <= y < height."""
        x, y = state
        return 0 <= x < self.width and 0 <= y < self.height

    def lookup(self, state: Coord) -> CellType:
        """Cell type at `state`, OUT_OF_BOUNDS outside the grid."""
        if not self.check_state(state):
            return CellType.OUT_OF_BOUNDS
        x, y = state
        return CellType(int(self.cells[y, x]))

    def find(self, cell_type: CellType) -> Optional[Coord]:
        """
        First cell of `cell_type` in row-major order.

        Returns
        -------
        tuple[int, int] or None
            The (x, y) coordinate, or None when the type does not occur.
        """
        for y in range(self.height):
            for x in range(self.width):
                if self.cells[y, x] == int(cell_type):
                    return (x, y)
        return None

    def count(self, cell_type: CellType) -> int:
        return int(np.count_nonzero(self.cells == int(cell_type)))

    def to_index(self, state: Coord) -> int:
        """Row-major flat index y * width + x, used by the Q-table."""
        x, y = state
        return y * self.width + x

    def to_state(self, index: int) -> Coord:
        if not (0 <= index < self.width * self.height):
            raise ValueError(f"Index out of range: {index}")
        return (index % self.width, index // self.width)

    def layout(self) -> Tuple[Tuple[int, ...], ...]:
        return tuple(tuple(int(v) for v in row) for row in self.cells)

    def __repr__(self) -> str:
        return f"Grid(width={self.width}, height={self.height})"


@dataclass(frozen=True)
class WorldSettings:
    """
    WorldSettings
    -------------
    Immutable configuration for the GridWorld environment.

    Parameters
    ----------
    layout : tuple[tuple[int, ...], ...]
        Row-major cell markers (see `CellType`). Must contain exactly one
        GOAL_1 and one GOAL_2.
    start : tuple[int, int]
        Start cell (x, y). The agent returns here after every terminal step.
    teleporter : bool
        Keep the teleporter markers of the layout. When False they are
        replaced by EMPTY cells.
    """
    layout: Tuple[Tuple[int, ...], ...] = DEFAULT_LAYOUT
    start: Coord = (5, 5)
    teleporter: bool = False

    @classmethod
    def from_txt(cls, path: str | Path, teleporter: bool = False) -> "WorldSettings":
        """
        Load a map from a text file.

        '.' empty, '#' wall, 'A' goal 1, 'B' goal 2, 'T' teleporter 1,
        't' teleporter 2 and 'S' the start cell (stored as empty).

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        ValueError
            If the map uses unknown characters or has no start cell.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Map file not found: {path}")

        with open(path, "r") as f:
            lines = [line.rstrip("\n") for line in f.read().strip().splitlines()]

        start: Optional[Coord] = None
        layout = []
        for y, line in enumerate(lines):
            row = []
            for x, char in enumerate(line):
                if char not in TXT_CELLS:
                    raise ValueError(
                        f"Invalid character '{char}' at ({x}, {y}). "
                        f"Valid characters are: {sorted(TXT_CELLS)}"
                    )
                if char == "S":
                    start = (x, y)
                row.append(int(TXT_CELLS[char]))
            layout.append(tuple(row))

        if start is None:
            raise ValueError(f"Map {path} has no start cell 'S'")
        return cls(layout=tuple(layout), start=start, teleporter=teleporter)


def build_grid(settings: WorldSettings) -> Grid:
    """Build the grid, dropping the teleporter markers unless enabled."""
    layout = settings.layout
    if not settings.teleporter:
        teleporters = (CellType.TELEPORTER_1, CellType.TELEPORTER_2)
        layout = tuple(
            tuple(CellType.EMPTY if v in teleporters else v for v in row)
            for row in layout
        )
    return Grid(layout)


def validate_grid(grid: Grid, start: Coord) -> None:
    """
    Check that learning can run on `grid` from `start`.

    Raises
    ------
    ConfigurationError
        If a goal is missing or duplicated, the start is not an open cell, or
        the teleporter pair is incomplete.
    """
    for goal in (CellType.GOAL_1, CellType.GOAL_2):
        if grid.find(goal) is None:
            raise ConfigurationError(f"Goal {int(goal)} does not exist")
        n = grid.count(goal)
        if n > 1:
            raise ConfigurationError(f"Goal {int(goal)} appears {n} times, expected 1")

    if grid.lookup(start) in (CellType.OUT_OF_BOUNDS, CellType.WALL):
        raise ConfigurationError(f"Start {start} is not an open cell")

    for teleporter in (CellType.TELEPORTER_1, CellType.TELEPORTER_2):
        if grid.count(teleporter) > 1:
            raise ConfigurationError(f"Teleporter {int(teleporter)} appears more than once")
    if grid.count(CellType.TELEPORTER_1) and grid.find(CellType.TELEPORTER_2) is None:
        raise ConfigurationError("Teleporter 1 has no Teleporter 2 destination")


@dataclass
class StepResult:
    """Outcome of one `GridWorld.apply` call."""
    previous: Coord
    next_state: Coord
    terminal: bool
    steps: int


class GridWorld:
    """
    Episode object: the grid plus everything that changes while learning.

    The agent starts at `settings.start`, one `apply()` books one simulated
    step. Reaching either goal ends the episode: the agent is put back on the
    start cell, the step counter is cleared and, in training mode only, the
    epoch counter is incremented.

    Notes
    -----
    - Coordinate system uses (x, y) with (0, 0) at the top-left.
    - The Q-table has shape (width * height, 4), row-major, actions in
      `Action` order.
    """

    # ---------------------------------------------------------------------
    # Construction & basic properties
    # ---------------------------------------------------------------------
    def __init__(self, settings: WorldSettings) -> None:
        """
        Build and validate the grid, allocate a zero Q-table.

        Raises
        ------
        ConfigurationError
            If the grid cannot be used (see `validate_grid`).
        """
        self.settings: WorldSettings = settings
        self.grid: Grid = build_grid(settings)
        validate_grid(self.grid, settings.start)

        self.width: int = self.grid.width
        self.height: int = self.grid.height
        self.num_states: int = self.width * self.height
        self.num_actions: int = len(Action)

        self.goal_1: Coord = self.grid.find(CellType.GOAL_1)
        self.goal_2: Coord = self.grid.find(CellType.GOAL_2)

        self.q_table: np.ndarray = init_q_table(self.num_states, self.num_actions)
        self.start: Coord = settings.start
        self.agent: Coord = settings.start
        self.steps: int = 0
        self.epoch: int = 0

    def reset(self) -> Coord:
        """Put the agent back on the start cell and clear the step counter."""
        self.agent = self.start
        self.steps = 0
        return self.agent

    def is_terminal(self, state: Coord) -> bool:
        return states_equal(state, self.goal_1) or states_equal(state, self.goal_2)

    # --------------------------------------------------------
    # Public API
    # -------------------------------------------------------

    def apply(self, previous: Coord, next_state: Coord, test: bool = False) -> StepResult:
        """
        Book-keep one simulated step from `previous` to `next_state`.

        The agent does not enter walls: a wall hit leaves it in place. Reaching
        a goal ends the episode; the epoch counter only moves in training mode.

        Parameters
        ----------
        previous : tuple[int, int]
            Position the step started from.
        next_state : tuple[int, int]
            Target returned by the transition function.
        test : bool
            Test mode, the epoch counter is left alone.
        """
        if self.grid.lookup(next_state) != CellType.WALL:
            self.agent = next_state
        self.steps += 1

        steps = self.steps
        terminal = self.is_terminal(self.agent)
        if terminal:
            self.agent = self.start
            if not test:
                self.epoch += 1
            self.steps = 0
        return StepResult(previous, next_state, terminal, steps)

    def save(self, path: str | Path) -> bool:
        """Write the Q-table and epoch counter; False if the file cannot be written."""
        return save_q_table(self.q_table, self.epoch, path)

    def load(self, path: str | Path) -> bool:
        """
        Replace the Q-table and epoch counter with the contents of `path`.

        Nothing is modified unless the whole file parses.
        """
        loaded = load_q_table(path, self.q_table.shape)
        if loaded is None:
            return False
        table, epoch = loaded
        self.q_table[...] = table
        self.epoch = epoch
        return True

    def snapshot(self) -> Dict[str, Any]:
        """Read-only copies of what a renderer needs."""
        q = self.q_table.copy()
        q.setflags(write=False)
        return {
            "layout": self.grid.layout(),
            "agent": self.agent,
            "start": self.start,
            "q_table": q,
            "steps": self.steps,
            "epoch": self.epoch,
        }

    # ---------------------------------------------------------------------
    # Rendering (matplotlib)
    # ---------------------------------------------------------------------

    def render(self, show_agent: bool = True, title: str = "GridWorld Environment",
               ax=None, show: bool = True):
        """
        Render the grid with matplotlib.

        Walls are grey, goals green, teleporters purple; the start cell is a
        diamond and the agent a blue disc. Returns the axes.
        """
        codes = {
            CellType.EMPTY: 0,
            CellType.WALL: 1,
            CellType.GOAL_1: 2,
            CellType.GOAL_2: 3,
            CellType.TELEPORTER_1: 4,
            CellType.TELEPORTER_2: 4,
        }
        image = np.zeros((self.height, self.width))
        for y in range(self.height):
            for x in range(self.width):
                image[y, x] = codes[self.grid.lookup((x, y))]

        cmap = ListedColormap([
            '#eef8ea',  # 0 empty
            '#b0b0b0',  # 1 walls
            '#388e3c',  # 2 goal 1
            '#a5d6a7',  # 3 goal 2
            '#b39ddb',  # 4 teleporters
        ])
        norm = BoundaryNorm([0, 1, 2, 3, 4, 5], cmap.N)

        if ax is None:
            _, ax = plt.subplots(figsize=(6.5, 6.5))
        ax.imshow(image, cmap=cmap, norm=norm, origin='upper',
                  extent=[0, self.width, self.height, 0], interpolation="none")
        ax.set_xticks(np.arange(0, self.width + 1, 1))
        ax.set_yticks(np.arange(0, self.height + 1, 1))
        ax.grid(True, color='k', linewidth=0.4, alpha=0.15)
        ax.set_aspect('equal')

        labels = {CellType.GOAL_1: "G1", CellType.GOAL_2: "G2",
                  CellType.TELEPORTER_1: "T1", CellType.TELEPORTER_2: "T2"}
        for y in range(self.height):
            for x in range(self.width):
                label = labels.get(self.grid.lookup((x, y)))
                if label:
                    ax.text(x + 0.5, y + 0.5, label, ha='center', va='center',
                            fontsize=12, fontweight='bold')

        sx, sy = self.start
        ax.scatter(sx + 0.5, sy + 0.5, s=180, marker='D',
                   facecolors='#4fc3f7', edgecolors='black', label='Start', zorder=5)
        if show_agent:
            axx, axy = self.agent
            ax.scatter(axx + 0.5, axy + 0.5, s=220, marker='o',
                       facecolors='#1565c0', edgecolors='black', label='Agent', zorder=6)

        ax.set_title(f"{title} (epoch {self.epoch}, step {self.steps})")
        ax.legend(bbox_to_anchor=(1.02, 1), loc='upper left', frameon=True)
        if show:
            plt.tight_layout()
            plt.show()
        return ax

    def __repr__(self) -> str:
        return (
            f"GridWorld(width={self.width}, height={self.height}, "
            f"agent={self.agent}, epoch={self.epoch})"
        )
