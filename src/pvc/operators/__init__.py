"""Operators for partial volume correction."""

from pvc.operators.blurring import (
    GaussianBlurringOperator,
    blur,
    create_gaussian_blur,
    gaussian_kernel_1d,
)

__all__ = [
    "GaussianBlurringOperator",
    "blur",
    "create_gaussian_blur",
    "gaussian_kernel_1d",
]
