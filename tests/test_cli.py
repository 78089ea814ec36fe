"""
tests/test_cli.py

End-to-end tests of the command-line shell: argument parsing, exit codes,
load/save around a short run and the per-epoch output.
"""

import numpy as np
import pytest

from qgrid.cli import build_parser, config_from_args, main
from qgrid.utils import load_q_table


def test_parser_defaults():
    args = build_parser().parse_args([])
    cfg = config_from_args(args)
    assert cfg.epochs == -1
    assert cfg.load is None and cfg.save is None
    assert not cfg.test


def test_train_and_save(tmp_path, capsys):
    path = tmp_path / "q.txt"
    code = main(["--epochs", "3", "--epsilon", "0.1", "--seed", "0", "--save", str(path)])
    assert code == 0

    out = capsys.readouterr().out
    assert "Parameters:" in out
    assert "Epoch 3/3" in out

    table, epoch = load_q_table(path, (36, 4))
    assert epoch == 3
    assert np.any(table != 0.0)


def test_resume_from_saved_table(tmp_path):
    path = tmp_path / "q.txt"
    assert main(["--epochs", "2", "--seed", "0", "--save", str(path), "--quiet"]) == 0
    assert main(["--epochs", "4", "--seed", "1", "--load", str(path),
                 "--save", str(path), "--quiet"]) == 0
    _, epoch = load_q_table(path, (36, 4))
    assert epoch == 4


def test_missing_load_file_is_not_fatal(tmp_path):
    code = main(["--epochs", "1", "--seed", "0", "--quiet",
                 "--load", str(tmp_path / "missing.txt")])
    assert code == 0


def test_map_without_goal_exits_non_zero(tmp_path):
    path = tmp_path / "map.txt"
    path.write_text("S..A\n....\n")
    assert main(["--epochs", "1", "--map", str(path), "--quiet"]) == 1


def test_unreadable_map_exits_non_zero(tmp_path):
    assert main(["--epochs", "1", "--map", str(tmp_path / "missing.txt"), "--quiet"]) == 1
    # a directory exists but cannot be opened as a map
    assert main(["--epochs", "1", "--map", str(tmp_path), "--quiet"]) == 1


def test_invalid_hyperparameter_exits_non_zero():
    assert main(["--alpha", "2.0", "--quiet"]) == 1


def test_custom_map_with_teleporter(tmp_path, capsys):
    path = tmp_path / "map.txt"
    path.write_text("B..A\n.t..\n##T#\nS...\n")
    assert main(["--epochs", "2", "--teleporter", "--euclidean", "--seed", "0",
                 "--map", str(path)]) == 0
    assert "Epoch 2/2" in capsys.readouterr().out


def test_unknown_option_exits():
    with pytest.raises(SystemExit):
        main(["--bogus"])
