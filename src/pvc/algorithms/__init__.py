"""Partial volume correction algorithms."""

from pvc.algorithms.base import IterativeAlgorithm
from pvc.algorithms.richardson_lucy import RichardsonLucy, deconvolve
from pvc.algorithms.rbv import RBVCorrector, RegionMeans, correct
from pvc.algorithms.simulate import add_noise, simulate

__all__ = [
    "IterativeAlgorithm",
    "RichardsonLucy",
    "deconvolve",
    "RBVCorrector",
    "RegionMeans",
    "correct",
    "simulate",
    "add_noise",
]
