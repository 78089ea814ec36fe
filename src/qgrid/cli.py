"""
Command-line shell around the learning engine.

Parses the parameters, builds the world, loads/saves the Q-table and runs
the episode driver until the epoch limit or Ctrl+C.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import List, Optional

from .gridworld import GridWorld, WorldSettings
from .rl_algorithms import TrainConfig, q_learning
from .utils import plot_learning_curve, plot_value_and_policy, set_seed

logger = logging.getLogger("qgrid")


def build_parser() -> argparse.ArgumentParser:
    defaults = TrainConfig()
    parser = argparse.ArgumentParser(
        prog="qgrid",
        description="Tabular Q-learning on a small grid with two goals and an optional teleporter.",
    )
    parser.add_argument("--epochs", type=int, default=defaults.epochs,
                        help="number of training/testing epochs (negative: no limit)")
    parser.add_argument("--epsilon", type=float, default=defaults.epsilon,
                        help="exploration rate")
    parser.add_argument("--alpha", type=float, default=defaults.alpha,
                        help="learning rate")
    parser.add_argument("--gamma", type=float, default=defaults.gamma,
                        help="discount factor")
    parser.add_argument("--euclidean", action="store_true",
                        help="reward moves by the distance gained towards the goals")
    parser.add_argument("--teleporter", action="store_true",
                        help="enable the teleporter")
    parser.add_argument("--test", action="store_true",
                        help="greedy policy only, the Q-table is not updated")
    parser.add_argument("--load", type=str, default=None,
                        help="load a saved Q-table from file")
    parser.add_argument("--save", type=str, default=None,
                        help="save the Q-table to file at the end of the run")
    parser.add_argument("--map", type=str, default=None,
                        help="text map to use instead of the built-in 6x6 grid")
    parser.add_argument("--seed", type=int, default=None,
                        help="random seed")
    parser.add_argument("--plot", action="store_true",
                        help="plot the learning curve and the learned policy at the end")
    parser.add_argument("--quiet", action="store_true",
                        help="do not print per-epoch information")
    return parser


def config_from_args(args: argparse.Namespace) -> TrainConfig:
    cfg = TrainConfig(
        epochs=args.epochs,
        epsilon=args.epsilon,
        alpha=args.alpha,
        gamma=args.gamma,
        euclidean=args.euclidean,
        teleporter=args.teleporter,
        test=args.test,
        load=args.load,
        save=args.save,
        seed=args.seed,
    )
    cfg.validate()
    return cfg


def print_params(cfg: TrainConfig) -> None:
    print("Parameters:")
    for name, value in vars(cfg).items():
        print(f"{name}: {value}")
    print()


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point; returns the process exit code."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(message)s",
    )

    try:
        cfg = config_from_args(args)
        if args.map is not None:
            settings = WorldSettings.from_txt(args.map, teleporter=cfg.teleporter)
        else:
            settings = WorldSettings(teleporter=cfg.teleporter)
        env = GridWorld(settings)
    except (ValueError, OSError) as exc:
        logger.error("%s", exc)
        return 1

    if not args.quiet:
        print_params(cfg)

    if cfg.load is not None and not env.load(cfg.load):
        logger.warning("Continuing with a zero-initialised Q-table")

    stop = {"flag": False}

    def handle_sigint(signum, frame):
        stop["flag"] = True

    def report(epoch: int, steps: int, ms: float) -> None:
        if args.quiet:
            return
        if cfg.test:
            print(f"{steps} steps")
        else:
            print(f"Epoch {epoch}/{cfg.epochs}\t{steps} steps\t{ms:.0f} ms")

    previous = signal.signal(signal.SIGINT, handle_sigint)
    try:
        log = q_learning(env, cfg, rng=set_seed(cfg.seed),
                         should_stop=lambda: stop["flag"], on_episode=report)
    finally:
        signal.signal(signal.SIGINT, previous)

    if cfg.save is not None:
        env.save(cfg.save)

    if args.plot:
        if len(log):
            plot_learning_curve(log.lengths)
        plot_value_and_policy(env, env.q_table)
    return 0


if __name__ == "__main__":
    sys.exit(main())
