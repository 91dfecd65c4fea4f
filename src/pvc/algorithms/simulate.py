"""Partial volume effect simulation by forward blurring."""

import logging

import numpy as np

from pvc.exceptions import InvalidParameter
from pvc.operators.blurring import create_gaussian_blur

LOGGER = logging.getLogger(__name__)

NOISE_MODELS = ("poisson", "gaussian")


def simulate(ground_truth, variance, backend=None):
    """Blur a ground-truth ScalarVolume once with the PSF."""
    blur_op = create_gaussian_blur(variance, ground_truth.spacing, backend)
    return blur_op.direct(ground_truth)


def add_noise(volume, model="poisson", poisson_scale=1e5, gaussian_sigma=None, seed=None):
    """
    Add noise to a simulated image.

    * Poisson noise: Y ~ Poisson(λ = poisson_scale * B), noisy = Y / poisson_scale.
    * Gaussian noise: N(0, σ²) added to B (σ = gaussian_sigma if given, else
      0.05 * max(B)), clipped at 0.

    Parameters
    ----------
    volume : ScalarVolume
        Noise-free (blurred) image B
    model : {'poisson', 'gaussian'}
    poisson_scale : float
        Counts per unit intensity for the Poisson model
    gaussian_sigma : float, optional
        Absolute standard deviation for the Gaussian model
    seed : int, optional
        Seed for ``numpy.random.default_rng``

    Returns
    -------
    ScalarVolume
    """
    rng = np.random.default_rng(seed)
    blurred = volume.as_array()
    model = model.lower()
    if model == "poisson":
        if not poisson_scale > 0:
            raise InvalidParameter(f"poisson_scale must be positive, got {poisson_scale}.")
        lam = np.clip(blurred * float(poisson_scale), 0.0, None)
        noisy = rng.poisson(lam).astype(np.float64) / float(poisson_scale)
    elif model == "gaussian":
        sigma_abs = (float(gaussian_sigma) if gaussian_sigma is not None
                     else 0.05 * float(np.max(blurred)))
        if sigma_abs < 0:
            raise InvalidParameter(f"gaussian_sigma must be non-negative, got {sigma_abs}.")
        noisy = np.clip(blurred + rng.normal(0.0, sigma_abs, size=blurred.shape), 0.0, None)
    else:
        raise InvalidParameter(
            f"noise model must be one of {', '.join(NOISE_MODELS)}, got {model!r}."
        )
    LOGGER.debug("Added %s noise (seed=%s)", model, seed)
    return volume.with_data(noisy)
