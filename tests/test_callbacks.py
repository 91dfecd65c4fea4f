"""Tests for iteration callbacks."""

import logging
from types import SimpleNamespace

import numpy as np
import pytest

from pvc.algorithms.richardson_lucy import RichardsonLucy
from pvc.callbacks import NRMSECallback, SaveIterationCallback
from pvc.exceptions import ShapeMismatch
from pvc.operators.blurring import create_gaussian_blur
from pvc.volume import ScalarVolume


def _fake_algorithm(iteration, data):
    return SimpleNamespace(iteration=iteration, solution=ScalarVolume(data))


def test_nrmse_values_and_csv(tmp_path, caplog):
    truth = ScalarVolume(np.full((4, 4, 4), 2.0))
    output = tmp_path / "metrics" / "nrmse.csv"
    callback = NRMSECallback(truth, output_file=output, interval=2)

    with caplog.at_level(logging.INFO, logger="pvc"):
        for iteration in range(1, 5):
            callback(_fake_algorithm(iteration, np.full((4, 4, 4), 2.0 + iteration)))

    assert [it for it, _ in callback.nrmse_values] == [2, 4]
    assert callback.nrmse_values[0][1] == pytest.approx(1.0)
    assert callback.nrmse_values[1][1] == pytest.approx(2.0)

    lines = output.read_text().splitlines()
    assert lines[0] == "iteration,nrmse"
    assert [line.split(",")[0] for line in lines[1:]] == ["2", "4"]
    assert "Iteration 4: NRMSE" in caplog.text


def test_nrmse_shape_mismatch():
    callback = NRMSECallback(ScalarVolume(np.ones((4, 4, 4))), verbose=False)
    with pytest.raises(ShapeMismatch):
        callback(_fake_algorithm(1, np.ones((3, 4, 4))))


def test_save_iteration_schedule(tmp_path):
    callback = SaveIterationCallback(tmp_path / "iters", interval=10, save_first_n=3)
    saved = [i for i in range(1, 31) if callback.should_save(i)]
    assert saved == [1, 2, 3, 10, 20, 30]

    only_first = SaveIterationCallback(tmp_path / "first", interval=0, save_first_n=2)
    assert [i for i in range(1, 10) if only_first.should_save(i)] == [1, 2]


def test_save_iteration_writes_files(tmp_path, random_volume):
    pytest.importorskip("nibabel")
    blur_op = create_gaussian_blur((1.0, 1.0, 1.0), random_volume.spacing, "scipy")
    callback = SaveIterationCallback(tmp_path / "iters", interval=3, prefix="rl_iter", save_first_n=1)

    RichardsonLucy(random_volume, blur_op).run(iterations=6, callbacks=[callback])

    names = sorted(p.name for p in (tmp_path / "iters").iterdir())
    assert names == ["rl_iter_0001.nii.gz", "rl_iter_0003.nii.gz", "rl_iter_0006.nii.gz"]
    assert callback.saved[-1].name == "rl_iter_0006.nii.gz"
