"""Tests for Richardson-Lucy partial volume correction."""

import logging

import numpy as np
import pytest

from pvc.algorithms.richardson_lucy import DEFAULT_ITERATIONS, RichardsonLucy, deconvolve
from pvc.algorithms.simulate import simulate
from pvc.callbacks import NRMSECallback
from pvc.exceptions import InvalidInput, InvalidParameter, ShapeMismatch
from pvc.operators.blurring import create_gaussian_blur
from pvc.psf import fwhm_to_variance
from pvc.volume import ScalarVolume


def test_output_is_non_negative(random_volume):
    result = deconvolve(random_volume, fwhm_to_variance((6.0, 6.0, 6.0)), iterations=5, backend="scipy")
    assert result.shape == random_volume.shape
    assert result.spacing == random_volume.spacing
    assert np.all(result.as_array() >= 0)
    assert np.all(np.isfinite(result.as_array()))


def test_zero_background_stays_finite():
    data = np.zeros((16, 16, 16))
    data[6:10, 6:10, 6:10] = 10.0
    volume = ScalarVolume(data, (2.0, 2.0, 2.0))
    result = deconvolve(volume, fwhm_to_variance((4.0, 4.0, 4.0)), iterations=10, backend="scipy")
    arr = result.as_array()
    assert np.all(np.isfinite(arr))
    assert np.all(arr >= 0)
    assert arr[0, 0, 0] == 0.0


@pytest.mark.parametrize("iterations", [1, 3, 12])
def test_identity_under_zero_blur(random_volume, iterations):
    result = deconvolve(random_volume, (0.0, 0.0, 0.0), iterations=iterations, backend="scipy")
    np.testing.assert_array_equal(result.as_array(), random_volume.as_array())


def test_negative_input_rejected():
    data = np.ones((5, 5, 5))
    data[2, 2, 2] = -1.0
    with pytest.raises(InvalidInput, match="negative"):
        deconvolve(ScalarVolume(data), (1.0, 1.0, 1.0), iterations=2, backend="scipy")


@pytest.mark.parametrize("iterations", [0, -3, 2.5, True])
def test_invalid_iteration_count_rejected(random_volume, iterations):
    with pytest.raises(InvalidParameter, match="iterations"):
        deconvolve(random_volume, (1.0, 1.0, 1.0), iterations=iterations, backend="scipy")


def test_run_rejects_invalid_iteration_count(random_volume):
    rl = RichardsonLucy(random_volume, create_gaussian_blur((1.0, 1.0, 1.0), random_volume.spacing, "scipy"))
    with pytest.raises(InvalidParameter):
        rl.run(iterations=0)


def test_default_iteration_count(random_volume):
    calls = []
    deconvolve(random_volume, (1.0, 1.0, 1.0), backend="scipy", callbacks=[lambda alg: calls.append(alg.iteration)])
    assert calls == list(range(1, DEFAULT_ITERATIONS + 1))


def test_initial_estimate_geometry_checked(random_volume):
    blur_op = create_gaussian_blur((1.0, 1.0, 1.0), random_volume.spacing, "scipy")
    wrong = ScalarVolume(np.ones((3, 3, 3)), random_volume.spacing)
    with pytest.raises(ShapeMismatch):
        RichardsonLucy(random_volume, blur_op, initial_estimate=wrong)


def test_objective_is_non_increasing(sphere_phantom):
    truth, _, _ = sphere_phantom
    variance = fwhm_to_variance((6.0, 6.0, 6.0))
    observed = simulate(truth, variance, backend="scipy")
    rl = RichardsonLucy(observed, create_gaussian_blur(variance, observed.spacing, "scipy"))
    rl.run(iterations=15)
    assert len(rl.loss) == 15
    steps = np.diff(rl.loss)
    assert np.all(steps <= 1e-9 * abs(rl.loss[0]))


def test_mse_decreases_monotonically(sphere_phantom):
    truth, _, _ = sphere_phantom
    variance = fwhm_to_variance((6.0, 6.0, 6.0))
    observed = simulate(truth, variance, backend="scipy")
    callback = NRMSECallback(truth, verbose=False)

    deconvolve(observed, variance, iterations=20, backend="scipy", callbacks=[callback])

    iterations, nrmse = zip(*callback.nrmse_values)
    assert iterations == tuple(range(1, 21))
    observed_nrmse = np.sqrt(np.mean((observed.as_array() - truth.as_array()) ** 2)) / truth.as_array().max()
    assert nrmse[0] < observed_nrmse
    assert np.all(np.diff(nrmse) <= 1e-9)
    assert nrmse[-1] < nrmse[0]


def test_stopping_threshold_is_not_enforced(random_volume, caplog):
    blur_op = create_gaussian_blur((1.0, 1.0, 1.0), random_volume.spacing, "scipy")
    with caplog.at_level(logging.DEBUG, logger="pvc"):
        rl = RichardsonLucy(random_volume, blur_op, stopping_threshold=1e12)
    rl.run(iterations=4)
    assert rl.stopping_threshold == 1e12
    assert rl.iteration == 4
    assert "not enforced" in caplog.text


def test_objective_interval(random_volume):
    blur_op = create_gaussian_blur((1.0, 1.0, 1.0), random_volume.spacing, "scipy")
    rl = RichardsonLucy(random_volume, blur_op, update_objective_interval=2)
    rl.run(iterations=6)
    assert len(rl.loss) == 3


def test_mass_is_preserved(sphere_phantom):
    truth, _, _ = sphere_phantom
    variance = fwhm_to_variance((6.0, 6.0, 6.0))
    observed = simulate(truth, variance, backend="scipy")
    result = deconvolve(observed, variance, iterations=5, backend="scipy")
    assert result.sum() == pytest.approx(observed.sum(), rel=1e-6)


@pytest.mark.parametrize("bad_value", [np.inf, -np.inf, np.nan])
def test_non_finite_input_rejected(bad_value):
    data = np.ones((9, 9, 9))
    data[4, 4, 4] = bad_value
    with pytest.raises(InvalidInput, match="non-finite"):
        deconvolve(ScalarVolume(data), (1.0, 1.0, 1.0), iterations=2, backend="scipy")


def test_non_finite_initial_estimate_rejected(random_volume):
    blur_op = create_gaussian_blur((1.0, 1.0, 1.0), random_volume.spacing, "scipy")
    start = random_volume.as_array().copy()
    start[5, 5, 5] = np.inf
    with pytest.raises(InvalidInput, match="non-finite"):
        RichardsonLucy(random_volume, blur_op, initial_estimate=random_volume.with_data(start))


def test_operator_spacing_must_match_observed():
    observed = ScalarVolume(np.ones((8, 8, 8)), (2.0, 2.0, 2.0))
    blur_op = create_gaussian_blur((1.0, 1.0, 1.0), (1.0, 1.0, 1.0), "scipy")
    with pytest.raises(ShapeMismatch, match="voxel size"):
        RichardsonLucy(observed, blur_op)
