"""Tests for partial volume effect simulation."""

import numpy as np
import pytest

from pvc.algorithms.simulate import add_noise, simulate
from pvc.exceptions import InvalidParameter
from pvc.operators.blurring import blur
from pvc.psf import fwhm_to_variance


def test_simulate_is_a_single_blur(random_volume):
    variance = fwhm_to_variance((6.0, 6.0, 6.0))
    simulated = simulate(random_volume, variance, backend="scipy")
    expected = blur(random_volume, variance, backend="scipy")
    np.testing.assert_array_equal(simulated.as_array(), expected.as_array())
    assert simulated.spacing == random_volume.spacing


def test_simulate_spreads_hot_slab(hot_slab):
    simulated = simulate(hot_slab, fwhm_to_variance((8.0, 8.0, 8.0)), backend="scipy")
    arr = simulated.as_array()
    assert arr[:, :, 10].max() < 100.0
    assert arr[:, :, 11].min() > 0.0
    assert simulated.sum() == pytest.approx(hot_slab.sum(), rel=1e-10)


def test_poisson_noise_is_reproducible(hot_slab):
    blurred = simulate(hot_slab, fwhm_to_variance((8.0, 8.0, 8.0)), backend="scipy")
    a = add_noise(blurred, "poisson", poisson_scale=10.0, seed=5)
    b = add_noise(blurred, "poisson", poisson_scale=10.0, seed=5)
    np.testing.assert_array_equal(a.as_array(), b.as_array())
    assert np.all(a.as_array() >= 0)
    assert not np.array_equal(a.as_array(), blurred.as_array())
    # Poisson counts divided by the scale land on a 1/scale grid
    np.testing.assert_allclose(a.as_array() * 10.0, np.round(a.as_array() * 10.0), atol=1e-9)


def test_gaussian_noise_is_clipped(random_volume):
    noisy = add_noise(random_volume, "gaussian", gaussian_sigma=5.0, seed=1)
    assert np.all(noisy.as_array() >= 0)
    assert noisy.spacing == random_volume.spacing


def test_gaussian_noise_default_sigma(random_volume):
    noisy = add_noise(random_volume, "Gaussian", seed=3)
    residual = noisy.as_array() - random_volume.as_array()
    assert np.abs(residual).max() > 0


def test_unknown_noise_model(random_volume):
    with pytest.raises(InvalidParameter, match="noise model"):
        add_noise(random_volume, "speckle")


def test_invalid_poisson_scale(random_volume):
    with pytest.raises(InvalidParameter):
        add_noise(random_volume, "poisson", poisson_scale=0.0)
