"""Callback utilities for the iterative correction algorithms."""

import logging
from pathlib import Path

import numpy as np

from pvc.exceptions import ShapeMismatch
from pvc.utils import get_array, save_image

LOGGER = logging.getLogger(__name__)


class NRMSECallback:
    """
    Callback to compute and save Normalized Root Mean Square Error (NRMSE) per iteration.

    NRMSE is computed as: sqrt(mean((reconstruction - ground_truth)^2)) / max(ground_truth)

    This is useful for quantitative evaluation when a ground truth is available,
    such as with simulated data.

    Parameters
    ----------
    ground_truth : ScalarVolume
        Ground truth image for comparison
    output_file : str or Path, optional
        Path to save NRMSE values (CSV format). Values are only kept in
        memory when omitted.
    interval : int, optional
        Compute NRMSE every N iterations (default: 1, i.e., every iteration)
    verbose : bool, optional
        If True, log NRMSE values at INFO level (default: True)

    Examples
    --------
    >>> callback = NRMSECallback(ground_truth, output_file="results/nrmse.csv")
    >>> algorithm.run(iterations=20, callbacks=[callback])
    """

    def __init__(self, ground_truth, output_file=None, interval=1, verbose=True):
        self.ground_truth_array = get_array(ground_truth)
        self.gt_max = float(np.max(np.abs(self.ground_truth_array))) or 1.0
        self.output_file = Path(output_file) if output_file is not None else None
        self.interval = interval
        self.verbose = verbose
        self.nrmse_values = []

        # Create output file with header
        if self.output_file is not None:
            self.output_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.output_file, 'w') as f:
                f.write("iteration,nrmse\n")

    def __call__(self, algorithm):
        if algorithm.iteration % self.interval != 0:
            return

        current_array = get_array(algorithm.solution)
        if current_array.shape != self.ground_truth_array.shape:
            raise ShapeMismatch(
                f"ground truth shape {self.ground_truth_array.shape} does not match "
                f"estimate shape {current_array.shape}."
            )
        mse = np.mean((current_array - self.ground_truth_array) ** 2)
        nrmse = float(np.sqrt(mse) / self.gt_max)

        self.nrmse_values.append((algorithm.iteration, nrmse))

        if self.output_file is not None:
            with open(self.output_file, 'a') as f:
                f.write(f"{algorithm.iteration},{nrmse:.8e}\n")

        if self.verbose:
            LOGGER.info("Iteration %d: NRMSE = %.6f", algorithm.iteration, nrmse)


class SaveIterationCallback:
    """
    Callback to save the estimate at specific iterations.

    Parameters
    ----------
    output_dir : str or Path
        Directory to save iteration files
    interval : int
        Save every N iterations
    prefix : str, optional
        Prefix for saved filenames (default: "iter")
    save_first_n : int, optional
        Save the first N iterations (default: 5)
    reference : nibabel image, optional
        Passed to ``save_image`` so snapshots keep the input orientation
    """

    def __init__(self, output_dir, interval=10, prefix="iter", save_first_n=5, reference=None):
        self.output_dir = Path(output_dir)
        self.interval = interval
        self.prefix = prefix
        self.save_first_n = save_first_n
        self.reference = reference
        self.saved = []

        self.output_dir.mkdir(parents=True, exist_ok=True)

    def should_save(self, iteration):
        # Save first N iterations (1, 2, 3, 4, 5)
        if iteration <= self.save_first_n:
            return True
        # Then save at regular intervals (10, 20, 30...)
        return self.interval > 0 and iteration % self.interval == 0

    def __call__(self, algorithm):
        if not self.should_save(algorithm.iteration):
            return
        output_path = self.output_dir / f"{self.prefix}_{algorithm.iteration:04d}.nii.gz"
        save_image(algorithm.solution, output_path, reference=self.reference)
        self.saved.append(output_path)
