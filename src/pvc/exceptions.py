"""Exceptions raised by the partial volume correction routines."""

from __future__ import annotations


class PVCError(ValueError):
    """Base class for pvc exceptions."""


class InvalidParameter(PVCError):
    """Raised for out-of-range configuration values (FWHM, iterations, backend...)."""


class InvalidInput(PVCError):
    """Raised when an image buffer cannot be processed (negative counts, bad rank)."""


class ShapeMismatch(PVCError):
    """Raised when two operands do not share dimensions or voxel spacing."""
