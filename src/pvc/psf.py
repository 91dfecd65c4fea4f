"""Gaussian point-spread function model."""

from typing import Sequence

import numpy as np

from pvc.exceptions import InvalidParameter

#: FWHM = FWHM_TO_SIGMA * sigma for a Gaussian.
FWHM_TO_SIGMA = 2.0 * np.sqrt(2.0 * np.log(2.0))


def _as_fwhm(fwhm: Sequence[float]) -> np.ndarray:
    values = np.asarray(fwhm, dtype=np.float64).reshape(-1)
    if values.size != 3:
        raise InvalidParameter(f"Expected three FWHM values (x, y, z), got {values.size}.")
    for axis, value in zip("xyz", values):
        if not np.isfinite(value):
            raise InvalidParameter(f"FWHM along {axis} is not a finite number: {value}.")
        if value < 0:
            raise InvalidParameter(f"FWHM along {axis} must be non-negative, got {value}.")
    return values


def fwhm_to_sigma(fwhm: Sequence[float]) -> np.ndarray:
    """Gaussian standard deviation per axis, in the units of ``fwhm``."""
    return _as_fwhm(fwhm) / FWHM_TO_SIGMA


def fwhm_to_variance(fwhm: Sequence[float]) -> np.ndarray:
    """
    Convert a per-axis FWHM into a per-axis Gaussian variance.

    Parameters
    ----------
    fwhm : sequence of float
        Full width at half maximum along x, y and z in mm. Zero means no
        blurring along that axis.

    Returns
    -------
    np.ndarray
        Variance per axis in mm^2.

    Raises
    ------
    InvalidParameter
        If a value is negative or not finite, or three values are not given.
    """
    return fwhm_to_sigma(fwhm) ** 2


def sigma_in_voxels(variance: Sequence[float], spacing: Sequence[float]) -> np.ndarray:
    """Standard deviation per axis in voxel units for a physical variance."""
    variance = np.asarray(variance, dtype=np.float64).reshape(-1)
    if variance.size != 3:
        raise InvalidParameter(f"Expected three variances (x, y, z), got {variance.size}.")
    if np.any(~np.isfinite(variance)) or np.any(variance < 0):
        raise InvalidParameter(f"PSF variance must be finite and non-negative, got {variance}.")
    return np.sqrt(variance) / np.asarray(spacing, dtype=np.float64)
