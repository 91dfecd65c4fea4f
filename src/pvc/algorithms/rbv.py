"""Region-based voxel-wise (RBV) partial volume correction."""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from scipy.linalg import lstsq

from pvc.exceptions import InvalidParameter
from pvc.operators.blurring import create_gaussian_blur
from pvc.utils import safe_divide
from pvc.volume import RegionMaskStack, ScalarVolume, check_same_geometry

LOGGER = logging.getLogger(__name__)

DEFAULT_EPSILON = 1e-10
REGION_ESTIMATORS = ("mean", "gtm")


@dataclass(frozen=True)
class RegionMeans:
    """Estimated activity per region, in mask-stack order."""

    values: np.ndarray
    degenerate: Tuple[int, ...] = ()


class RBVCorrector:
    """
    Region-based voxel-wise correction.

    The regional activities are painted back into a piecewise-constant
    synthetic image, which is blurred with the PSF. The ratio between the
    synthetic image and its blurred version is the voxel-wise recovery
    correction applied to the observed image:

        corrected = observed * synthetic / blur(synthetic)

    Parameters
    ----------
    variance : sequence of float
        PSF variance per axis in mm^2.
    backend : str, optional
        Blurring backend.
    epsilon : float, optional
        Region weights and blurred synthetic values at or below this are
        treated as zero.
    region_estimator : {'mean', 'gtm'}
        'mean' uses the mask-weighted mean of the observed image in each
        region. 'gtm' additionally undoes the spill-over between regions with
        the geometric transfer matrix, which recovers the true regional values
        exactly for piecewise-constant images. Only 'gtm' makes
        simulate-then-correct return a piecewise-constant truth exactly; with
        'mean' the spill-over between neighbouring regions remains in the
        region means.
    """

    def __init__(self, variance, backend=None, epsilon=DEFAULT_EPSILON, region_estimator="mean"):
        if region_estimator not in REGION_ESTIMATORS:
            raise InvalidParameter(
                f"Unknown region estimator {region_estimator!r}; "
                f"choose from {', '.join(REGION_ESTIMATORS)}."
            )
        if not epsilon > 0:
            raise InvalidParameter(f"epsilon must be positive, got {epsilon}.")
        self.variance = np.asarray(variance, dtype=np.float64)
        self.backend = backend
        self.epsilon = float(epsilon)
        self.region_estimator = region_estimator

    def estimate_region_means(self, observed, masks, blur_op=None):
        """
        Activity of every region of ``masks`` in ``observed``.

        Regions whose total weight is at most ``epsilon`` have no defined mean;
        they are reported as degenerate and given a value of 0.
        """
        check_same_geometry(observed, masks, name="region mask stack")
        flat_masks = masks.layers.reshape(masks.n_regions, -1)
        weights = masks.weights()
        valid = weights > self.epsilon
        degenerate = tuple(int(i) for i in np.flatnonzero(~valid))
        for index in degenerate:
            LOGGER.warning(
                "Degenerate region %d: total mask weight %.3g; its mean is set to 0",
                index,
                weights[index],
            )

        means = np.zeros(masks.n_regions, dtype=np.float64)
        means[valid] = flat_masks[valid] @ observed.as_array().ravel() / weights[valid]

        if self.region_estimator == "gtm" and np.any(valid):
            if blur_op is None:
                blur_op = create_gaussian_blur(self.variance, observed.spacing, self.backend)
            means[valid] = self._gtm_solve(masks, valid, weights, means, blur_op)

        LOGGER.debug("RBV: region means (%s) = %s", self.region_estimator, means.tolist())
        return RegionMeans(values=means, degenerate=degenerate)

    @staticmethod
    def _gtm_solve(masks, valid, weights, observed_means, blur_op):
        """Solve G t = m, G[i, j] = sum(mask_i * blur(mask_j)) / sum(mask_i)."""
        indices = np.flatnonzero(valid)
        flat_masks = masks.layers.reshape(masks.n_regions, -1)[indices]
        gtm = np.empty((indices.size, indices.size), dtype=np.float64)
        for col, j in enumerate(indices):
            spread = blur_op.direct(masks.layers[j]).ravel()
            gtm[:, col] = flat_masks @ spread
        gtm /= weights[indices][:, np.newaxis]
        solution, _, rank, _ = lstsq(gtm, observed_means[indices])
        if rank < indices.size:
            LOGGER.warning(
                "RBV: transfer matrix is rank deficient (%d of %d); using least-squares means",
                rank,
                indices.size,
            )
        return solution

    def synthetic_image(self, means, masks):
        """Piecewise-constant image sum_r mean_r * mask_r."""
        values = means.values if isinstance(means, RegionMeans) else np.asarray(means)
        synthetic = np.tensordot(values, masks.layers, axes=(0, 0))
        return ScalarVolume(synthetic, masks.spacing)

    def correct(self, observed, masks):
        """
        Apply RBV correction.

        Parameters
        ----------
        observed : ScalarVolume
        masks : RegionMaskStack
            Same dimensions and spacing as ``observed``.

        Returns
        -------
        ScalarVolume
            Corrected image with the dimensions and spacing of ``observed``.
        """
        check_same_geometry(observed, masks, name="region mask stack")
        blur_op = create_gaussian_blur(self.variance, observed.spacing, self.backend)
        means = self.estimate_region_means(observed, masks, blur_op=blur_op)
        synthetic = self.synthetic_image(means, masks)
        blurred_synthetic = blur_op.direct(synthetic)
        ratio = safe_divide(synthetic.as_array(), blurred_synthetic.as_array(), self.epsilon)
        LOGGER.info(
            "RBV: corrected %d region(s) (%d degenerate)",
            masks.n_regions,
            len(means.degenerate),
        )
        return observed.with_data(observed.as_array() * ratio)


def correct(observed, masks, variance, *, backend=None, epsilon=DEFAULT_EPSILON, region_estimator="mean"):
    """
    RBV partial volume correction of ``observed`` using the region mask stack ``masks``.

    With the default ``region_estimator="mean"`` the region means keep the
    spill-over between neighbouring regions, so correcting a blurred
    piecewise-constant image only approximates the truth. Use ``"gtm"`` to
    recover it exactly.
    """
    if not isinstance(masks, RegionMaskStack):
        masks = RegionMaskStack(masks, observed.spacing)
    return RBVCorrector(
        variance, backend=backend, epsilon=epsilon, region_estimator=region_estimator
    ).correct(observed, masks)
