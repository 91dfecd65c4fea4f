"""Richardson-Lucy deconvolution for partial volume correction."""

import logging

import numpy as np

from pvc.algorithms.base import IterativeAlgorithm
from pvc.exceptions import InvalidInput, InvalidParameter
from pvc.operators.blurring import create_gaussian_blur
from pvc.utils import get_array, safe_divide
from pvc.volume import ScalarVolume, check_same_geometry, check_spacing

LOGGER = logging.getLogger(__name__)

DEFAULT_ITERATIONS = 10
DEFAULT_EPSILON = 1e-10


class RichardsonLucy(IterativeAlgorithm):
    """
    Richardson-Lucy (RL) deconvolution algorithm.

    Each iteration refines the estimate x of the unblurred image by:
        x = x * A^T (y / Ax)

    where A is the Gaussian PSF blur and y the observed image. The PSF is
    symmetric, so A^T is the same blur. Voxels where Ax drops below
    ``epsilon`` get a ratio of 0. The update is multiplicative, so the
    estimate stays non-negative.

    Parameters
    ----------
    observed_data : ScalarVolume
        Observed (blurred) image. Must not contain negative values.
    blurring_operator : GaussianBlurringOperator
        Blurring operator (PSF)
    initial_estimate : ScalarVolume, optional
        Starting image (default: a copy of the observed image)
    epsilon : float, optional
        Denominators below this are treated as zero (default: 1e-10)
    stopping_threshold : float, optional
        Objective value at which iterations could stop early. Accepted and
        kept on the instance but not acted on: the algorithm always runs
        the requested number of iterations.
    update_objective_interval : int, optional
        Compute objective function every N iterations (default: 1, 0 disables)

    Attributes
    ----------
    x : ScalarVolume
        Current estimate
    loss : list
        Objective values: sum(Ax - y * log(Ax + eps))

    Examples
    --------
    >>> rl = RichardsonLucy(observed, create_gaussian_blur(variance, observed.spacing))
    >>> rl.run(iterations=10)
    >>> corrected = rl.solution
    """

    def __init__(
        self,
        observed_data,
        blurring_operator,
        initial_estimate=None,
        epsilon=DEFAULT_EPSILON,
        stopping_threshold=None,
        update_objective_interval=1,
    ):
        super().__init__(update_objective_interval=update_objective_interval)
        if not epsilon > 0:
            raise InvalidParameter(f"epsilon must be positive, got {epsilon}.")
        observed = get_array(observed_data)
        if np.any(~np.isfinite(observed)):
            raise InvalidInput("Observed image contains non-finite (NaN or inf) values.")
        if np.any(observed < 0):
            raise InvalidInput(
                f"Observed image contains {int(np.count_nonzero(observed < 0))} negative "
                f"voxel(s) (minimum {float(observed.min()):.6g}); RL needs non-negative counts."
            )

        if initial_estimate is None:
            initial_estimate = observed_data
        else:
            check_same_geometry(observed_data, initial_estimate, name="initial estimate")
            start = get_array(initial_estimate)
            if np.any(~np.isfinite(start)):
                raise InvalidInput("Initial estimate contains non-finite (NaN or inf) values.")
            if np.any(start < 0):
                raise InvalidInput("Initial estimate contains negative values.")
        if hasattr(blurring_operator, "spacing"):
            check_spacing(blurring_operator.spacing, observed_data.spacing, name="observed image")

        self.observed_data = observed_data
        self.blurring_operator = blurring_operator
        self.epsilon = float(epsilon)
        self.stopping_threshold = stopping_threshold
        if stopping_threshold is not None:
            LOGGER.debug(
                "RL: stopping threshold %g recorded but not enforced; "
                "running a fixed number of iterations",
                stopping_threshold,
            )

        self._y = np.asarray(observed, dtype=np.float64)
        self._x = np.array(get_array(initial_estimate), dtype=np.float64, copy=True)
        self.est_blur = self.blurring_operator.direct(self._x)

    @property
    def x(self):
        return ScalarVolume(self._x, self.observed_data.spacing)

    @property
    def solution(self):
        """Return current solution."""
        return self.x

    def update(self):
        """Perform one RL iteration."""
        ratio = safe_divide(self._y, self.est_blur, self.epsilon)
        correction = self.blurring_operator.adjoint(ratio)
        self._x *= correction

        # Update estimated blur for next iteration
        self.est_blur = self.blurring_operator.direct(self._x)
        LOGGER.debug(
            "RL: iteration %d, estimate sum %.6g, range [%.6g, %.6g]",
            self.iteration + 1,
            float(self._x.sum()),
            float(self._x.min()),
            float(self._x.max()),
        )

    def update_objective(self):
        """Compute and store the objective function (Poisson negative log-likelihood)."""
        obj = float(np.sum(self.est_blur - self._y * np.log(self.est_blur + self.epsilon)))
        self.loss.append(obj)

    def get_output(self):
        return self.x


def deconvolve(
    observed,
    variance,
    iterations=DEFAULT_ITERATIONS,
    *,
    backend=None,
    epsilon=DEFAULT_EPSILON,
    stopping_threshold=None,
    callbacks=None,
):
    """
    Richardson-Lucy partial volume correction of a ScalarVolume.

    Parameters
    ----------
    observed : ScalarVolume
        Observed image (non-negative)
    variance : sequence of float
        PSF variance per axis in mm^2 (see ``pvc.psf.fwhm_to_variance``)
    iterations : int, optional
        Number of RL iterations (default: 10)
    backend : str, optional
        Blurring backend
    epsilon : float, optional
        Denominator guard
    stopping_threshold : float, optional
        Recorded only; see ``RichardsonLucy``
    callbacks : list, optional
        Called with the algorithm after every iteration

    Returns
    -------
    ScalarVolume
        Corrected image with the dimensions and spacing of ``observed``
    """
    if isinstance(iterations, bool) or int(iterations) != iterations or iterations <= 0:
        raise InvalidParameter(f"Number of iterations must be a positive integer, got {iterations}.")
    blur_op = create_gaussian_blur(variance, observed.spacing, backend)
    rl = RichardsonLucy(
        observed,
        blur_op,
        epsilon=epsilon,
        stopping_threshold=stopping_threshold,
    )
    rl.run(iterations=iterations, callbacks=callbacks)
    LOGGER.info("RL: completed %d iteration(s)", rl.iteration)
    return rl.get_output()
