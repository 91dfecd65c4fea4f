"""
pvc: partial volume correction for PET images.

This package compensates for the blurring of the scanner point-spread
function with:
- Richardson-Lucy (RL) iterative deconvolution
- Region-based voxel-wise (RBV) correction driven by a region mask stack
- Forward blurring to simulate the partial volume effect
"""

__version__ = "0.1.0"

from pvc.exceptions import InvalidInput, InvalidParameter, PVCError, ShapeMismatch
from pvc.psf import fwhm_to_sigma, fwhm_to_variance
from pvc.volume import RegionMaskStack, ScalarVolume, labels_to_mask_stack
from pvc.operators.blurring import GaussianBlurringOperator, blur, create_gaussian_blur
from pvc.algorithms.richardson_lucy import RichardsonLucy, deconvolve
from pvc.algorithms.rbv import RBVCorrector, correct
from pvc.algorithms.simulate import add_noise, simulate
from pvc.utils import get_array, load_image, load_mask_stack, save_image

__all__ = [
    "__version__",
    # Errors
    "PVCError",
    "InvalidParameter",
    "InvalidInput",
    "ShapeMismatch",
    # Data
    "ScalarVolume",
    "RegionMaskStack",
    "labels_to_mask_stack",
    # PSF and operators
    "fwhm_to_sigma",
    "fwhm_to_variance",
    "GaussianBlurringOperator",
    "blur",
    "create_gaussian_blur",
    # Algorithms
    "RichardsonLucy",
    "deconvolve",
    "RBVCorrector",
    "correct",
    "simulate",
    "add_noise",
    # Utils
    "get_array",
    "load_image",
    "load_mask_stack",
    "save_image",
]
