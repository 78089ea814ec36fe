"""
tests/test_rl_algorithms.py

Unit tests for the learning engine defined in `rl_algorithms.py`.

The goals of this test suite are to verify that:

- The reward & transition function returns the documented rewards, warps
  through the teleporter and skips rewards in test mode.
- The euclidean shaping reward favours moves towards the goals.
- The policy never steers the agent off the grid and breaks ties randomly.
- The TD update is a convex combination of the old value and the target.
- One q_step next to goal 1 gives Q = 100 with alpha = 0.1.
- The episode driver stops on the epoch limit, in both modes, and shortens
  episodes on the reference map.
"""

import numpy as np
import pytest

from qgrid.gridworld import (
    Action, CellType, ConfigurationError, Grid, GridWorld, WorldSettings, build_grid,
)
from qgrid.rl_algorithms import (
    TrainConfig,
    epsilon_greedy,
    greedy_action,
    q_learning,
    q_step,
    q_update,
    select_action,
    shaping_reward,
    transition,
    valid_actions,
)
from qgrid.utils import init_q_table, set_seed


# ---------------------------------------------------------------------
# Fixtures: reference grids + default configs
# ---------------------------------------------------------------------

@pytest.fixture
def grid():
    """The reference 6x6 map without teleporters."""
    return build_grid(WorldSettings(teleporter=False))


@pytest.fixture
def tele_grid():
    """The reference 6x6 map with Teleporter 1 at (3, 4) and Teleporter 2 at (4, 1)."""
    return build_grid(WorldSettings(teleporter=True))


@pytest.fixture
def cfg():
    return TrainConfig(epsilon=0.0, alpha=0.1, gamma=0.9, seed=0)


# ---------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------

def test_train_config_defaults():
    c = TrainConfig()
    assert c.epochs == -1
    assert c.epsilon == pytest.approx(0.01)
    assert c.alpha == pytest.approx(0.1)
    assert c.gamma == pytest.approx(0.9)
    assert not (c.euclidean or c.teleporter or c.test)


def test_train_config_validate():
    TrainConfig().validate()
    with pytest.raises(ConfigurationError):
        TrainConfig(alpha=1.5).validate()
    with pytest.raises(ConfigurationError):
        TrainConfig(epsilon=-0.1).validate()


# ---------------------------------------------------------------------
# Reward & transition
# ---------------------------------------------------------------------

def test_transition_rewards(grid, cfg):
    """
    Goal 1 -> 1000, goal 2 -> 50, wall -> -10, empty -> 0.
    """
    assert transition(grid, (5, 1), Action.UP, cfg) == ((5, 0), 1000.0)
    assert transition(grid, (0, 2), Action.UP, cfg) == ((0, 1), 50.0)
    assert transition(grid, (2, 2), Action.DOWN, cfg) == ((2, 3), -10.0)
    assert transition(grid, (2, 2), Action.LEFT, cfg) == ((1, 2), 0.0)


def test_transition_test_mode_has_no_reward(grid):
    next_state, reward = transition(grid, (5, 1), Action.UP, TrainConfig(test=True))
    assert next_state == (5, 0)
    assert reward is None


def test_teleporter_warps_from_any_direction(tele_grid):
    """
    Entering Teleporter 1 lands on Teleporter 2 whatever the action.
    """
    cfg = TrainConfig(teleporter=True)
    t2 = tele_grid.find(CellType.TELEPORTER_2)
    # Teleporter 1 at (3, 4): reachable from the right and from below
    assert transition(tele_grid, (4, 4), Action.LEFT, cfg)[0] == t2
    assert transition(tele_grid, (3, 5), Action.UP, cfg)[0] == t2


def test_teleporter_is_one_way(tele_grid):
    cfg = TrainConfig(teleporter=True)
    # stepping on Teleporter 2 from (4, 2) has no special effect
    assert transition(tele_grid, (4, 2), Action.UP, cfg) == ((4, 1), 0.0)


def test_teleporter_ignored_when_flag_off(tele_grid):
    next_state, _ = transition(tele_grid, (4, 4), Action.LEFT, TrainConfig(teleporter=False))
    assert next_state == (3, 4)


def test_teleporter_without_destination_is_a_plain_cell():
    """
    An unvalidated grid with Teleporter 1 but no Teleporter 2 does not warp.
    """
    lone = Grid(((CellType.EMPTY, CellType.TELEPORTER_1, CellType.GOAL_1, CellType.GOAL_2),))
    cfg = TrainConfig(teleporter=True)
    assert transition(lone, (0, 0), Action.RIGHT, cfg) == ((1, 0), 0.0)


def test_shaping_reward_prefers_goal_1(grid):
    """
    Moving towards goal 1 is rewarded, moving away is penalised.
    """
    closer = shaping_reward(grid, (3, 2), (4, 2))
    farther = shaping_reward(grid, (3, 2), (2, 2))
    assert closer > 0
    assert farther < closer


def test_shaping_reward_value(grid):
    """
    Check the normalisation on a move straight up the right-hand column.
    """
    diag = np.hypot(5, 5)
    d = np.hypot
    g1 = (d(0, 2) - d(0, 1)) / diag * 1000
    g2 = (d(5, 1) - d(5, 0)) / diag * 50
    assert shaping_reward(grid, (5, 2), (5, 1)) == pytest.approx(g1 + g2)


def test_euclidean_mode_only_applies_to_empty_cells(grid):
    cfg = TrainConfig(euclidean=True)
    _, r_empty = transition(grid, (5, 2), Action.UP, cfg)
    assert r_empty == pytest.approx(shaping_reward(grid, (5, 2), (5, 1)))
    assert transition(grid, (5, 1), Action.UP, cfg)[1] == 1000.0
    assert transition(grid, (2, 2), Action.DOWN, cfg)[1] == -10.0


# ---------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------

def test_valid_actions_at_corner(grid):
    assert set(valid_actions(grid, (0, 0))) == {Action.DOWN, Action.RIGHT}
    assert set(valid_actions(grid, (5, 5))) == {Action.UP, Action.LEFT}
    assert len(valid_actions(grid, (2, 2))) == 4


def test_greedy_breaks_ties_among_on_grid_moves(grid):
    """
    With an all-zero table every on-grid move is chosen sometimes and
    off-grid moves never.
    """
    rng = set_seed(0)
    Q = init_q_table(36, 4)
    picks = {greedy_action(Q, grid, (0, 0), rng) for _ in range(100)}
    assert picks == {Action.DOWN, Action.RIGHT}


def test_greedy_falls_back_to_best_on_grid_move_in_test_mode(grid):
    """
    In test mode, if only off-grid moves attain the maximum, the best on-grid
    move wins.
    """
    rng = set_seed(0)
    Q = init_q_table(36, 4)
    s = grid.to_index((0, 0))
    Q[s] = [0.0, -5.0, 0.0, -1.0]   # Up and Left lead off the grid
    for _ in range(20):
        assert greedy_action(Q, grid, (0, 0), rng, test=True) == Action.RIGHT
        assert select_action(Q, grid, (0, 0), 0.0, True, rng) == Action.RIGHT


def test_greedy_off_grid_maximum_in_training_is_explored_uniformly(grid):
    """
    In training mode the off-grid arg-max is kept by greedy_action and then
    replaced by a uniform draw among the on-grid moves, even with epsilon 0.
    """
    rng = set_seed(0)
    Q = init_q_table(36, 4)
    s = grid.to_index((0, 0))
    Q[s] = [0.0, -5.0, 0.0, -1.0]

    assert greedy_action(Q, grid, (0, 0), rng) in (Action.UP, Action.LEFT)

    picks = {Action.DOWN: 0, Action.RIGHT: 0}
    for _ in range(400):
        picks[select_action(Q, grid, (0, 0), 0.0, False, rng)] += 1
    assert picks[Action.DOWN] > 100
    assert picks[Action.RIGHT] > 100


def test_epsilon_one_explores_only_on_grid(grid):
    rng = set_seed(1)
    picks = {epsilon_greedy(grid, (5, 5), Action.UP, 1.0, rng) for _ in range(200)}
    assert picks == {Action.UP, Action.LEFT}


def test_epsilon_zero_keeps_action(grid):
    rng = set_seed(1)
    for _ in range(20):
        assert epsilon_greedy(grid, (2, 2), Action.LEFT, 0.0, rng) == Action.LEFT


def test_select_action_never_leaves_grid(grid):
    """
    For every cell, random tables and exploration never pick an off-grid move.
    """
    rng = set_seed(3)
    for _ in range(20):
        Q = rng.normal(size=(36, 4))
        for s in range(36):
            state = grid.to_state(s)
            for test in (True, False):
                a = select_action(Q, grid, state, 0.5, test, rng)
                assert a in valid_actions(grid, state)


def test_select_action_does_not_modify_table(grid):
    rng = set_seed(0)
    Q = set_seed(5).normal(size=(36, 4))
    before = Q.copy()
    select_action(Q, grid, (2, 2), 0.3, False, rng)
    assert np.array_equal(Q, before)


# ---------------------------------------------------------------------
# Update rule
# ---------------------------------------------------------------------

def test_q_update_is_convex_combination():
    """
    The new value lies between the old value and the TD target.
    """
    rng = set_seed(7)
    for _ in range(50):
        Q = rng.normal(scale=100, size=(4, 4))
        alpha = float(rng.random())
        gamma = float(rng.random())
        reward = float(rng.normal(scale=100))
        old = Q[0, 1]
        target = reward + gamma * np.max(Q[2])
        new = q_update(Q, 0, 1, reward, 2, alpha, gamma)
        assert min(old, target) - 1e-9 <= new <= max(old, target) + 1e-9


def test_q_update_uses_floating_point_max():
    """
    Fractional Q-values in the next state are not truncated.
    """
    Q = init_q_table(2, 4)
    Q[1] = [0.75, 0.25, -3.0, 0.5]
    q_update(Q, 0, 0, 0.0, 1, 1.0, 1.0)
    assert Q[0, 0] == pytest.approx(0.75)


def test_q_update_off_grid_has_no_bootstrap():
    Q = init_q_table(2, 4)
    Q[1] = 100.0
    q_update(Q, 0, 0, -10.0, None, 0.5, 0.9)
    assert Q[0, 0] == pytest.approx(-5.0)


def test_first_update_next_to_goal_1(grid, cfg):
    """
    From (5, 1) moving Up onto goal 1 with a fresh table:
    (1 - 0.1) * 0 + 0.1 * (1000 + 0.9 * 0) = 100.
    """
    Q = init_q_table(36, 4)
    next_state, reward = transition(grid, (5, 1), Action.UP, cfg)
    new = q_update(Q, grid.to_index((5, 1)), Action.UP, reward,
                   grid.to_index(next_state), cfg.alpha, cfg.gamma)
    assert new == pytest.approx(100.0)


def test_q_step_next_to_goal_1(cfg):
    """
    q_step picks Up when it is the unique best move and writes Q = 100.
    """
    env = GridWorld(WorldSettings())
    s = env.grid.to_index((5, 1))
    env.q_table[s] = [1e-9, 0.0, 0.0, 0.0]

    next_state = q_step(env, (5, 1), cfg, set_seed(0))
    assert next_state == (5, 0)
    assert env.q_table[s, Action.UP] == pytest.approx(100.0)


def test_q_step_test_mode_is_read_only():
    env = GridWorld(WorldSettings())
    before = env.q_table.copy()
    q_step(env, (5, 5), TrainConfig(test=True), set_seed(0))
    assert np.array_equal(env.q_table, before)


# ---------------------------------------------------------------------
# Episode driver
# ---------------------------------------------------------------------

def test_q_learning_runs_requested_epochs():
    env = GridWorld(WorldSettings())
    cfg = TrainConfig(epochs=5, epsilon=0.1, seed=0)
    seen = []
    log = q_learning(env, cfg, on_episode=lambda e, steps, ms: seen.append(e))

    assert env.epoch == 5
    assert len(log) == 5
    assert seen == [1, 2, 3, 4, 5]
    assert all(L >= 1 for L in log.lengths)


def test_q_learning_shortens_episodes():
    """
    Training on the reference map makes late episodes much shorter than
    the early random walks, and a capped test run leaves the epoch alone.
    """
    env = GridWorld(WorldSettings())
    log = q_learning(env, TrainConfig(epochs=300, epsilon=0.1, seed=0))
    assert np.mean(log.lengths[-50:]) < np.mean(log.lengths[:50])

    env.reset()
    budget = {"steps": 0}

    def stop():
        budget["steps"] += 1
        return budget["steps"] > 200

    q_learning(env, TrainConfig(epochs=1, test=True, seed=0), should_stop=stop)
    assert env.epoch == 300


def test_q_learning_with_teleporter_and_shaping():
    env = GridWorld(WorldSettings(teleporter=True))
    cfg = TrainConfig(epochs=20, epsilon=0.1, euclidean=True, teleporter=True, seed=1)
    log = q_learning(env, cfg)
    assert len(log) == 20
    assert np.all(np.isfinite(env.q_table))


def test_q_learning_stops_on_request():
    env = GridWorld(WorldSettings())
    calls = {"n": 0}

    def stop():
        calls["n"] += 1
        return calls["n"] > 10

    log = q_learning(env, TrainConfig(epochs=-1, seed=0), should_stop=stop)
    assert calls["n"] == 11
    assert env.steps + sum(log.lengths) == 10
