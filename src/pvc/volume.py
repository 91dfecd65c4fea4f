"""In-memory image containers used by the correction algorithms."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple

import numpy as np

from pvc.exceptions import InvalidInput, ShapeMismatch

_AXES = ("x", "y", "z")
_SPACING_TOL = 1e-6


def _as_spacing(spacing: Sequence[float]) -> Tuple[float, float, float]:
    values = tuple(float(s) for s in spacing)
    if len(values) != 3:
        raise InvalidInput(f"Expected three voxel sizes, got {len(values)}.")
    for axis, value in zip(_AXES, values):
        if not np.isfinite(value) or value <= 0:
            raise InvalidInput(f"Voxel size along {axis} must be positive, got {value}.")
    return values


def check_spacing(expected, actual, name: str = "operand") -> None:
    for axis, a, b in zip(_AXES, expected, actual):
        if not np.isclose(a, b, rtol=_SPACING_TOL, atol=_SPACING_TOL):
            raise ShapeMismatch(
                f"{name} has voxel size {b} along {axis}, expected {a}."
            )


def check_same_geometry(reference, other, name: str = "operand") -> None:
    """
    Raise ShapeMismatch unless ``other`` has the dimensions and spacing of ``reference``.

    Both arguments only need ``shape`` and ``spacing`` attributes, so volumes
    and mask stacks can be compared directly.
    """
    ref_shape, other_shape = tuple(reference.shape)[-3:], tuple(other.shape)[-3:]
    for axis, a, b in zip(_AXES, ref_shape, other_shape):
        if a != b:
            raise ShapeMismatch(
                f"{name} has {b} voxels along {axis}, expected {a} "
                f"(shape {other_shape} vs {ref_shape})."
            )
    check_spacing(reference.spacing, other.spacing, name=name)


@dataclass(frozen=True)
class ScalarVolume:
    """
    A 3-D image with its voxel spacing.

    Parameters
    ----------
    data : array_like
        Voxel intensities, indexed (x, y, z) as stored in NIfTI files.
    spacing : sequence of float
        Voxel size along each array axis, in mm.
    """

    data: np.ndarray
    spacing: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    def __post_init__(self):
        data = np.array(self.data, dtype=np.float64)
        if data.ndim != 3:
            raise InvalidInput(f"Expected a 3-D image, got {data.ndim} dimensions.")
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "spacing", _as_spacing(self.spacing))

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.data.shape

    def as_array(self) -> np.ndarray:
        return self.data

    def clone(self) -> "ScalarVolume":
        return ScalarVolume(self.data.copy(), self.spacing)

    def with_data(self, data) -> "ScalarVolume":
        """Return a new volume with the same spacing and the given voxel values."""
        new = ScalarVolume(data, self.spacing)
        check_same_geometry(self, new, name="replacement data")
        return new

    def sum(self) -> float:
        return float(self.data.sum())


@dataclass(frozen=True)
class RegionMaskStack:
    """
    Ordered stack of region weight maps.

    ``layers`` has shape ``(n_regions, nx, ny, nz)``. Each layer holds the
    (possibly fractional) membership of every voxel in one region; layers are
    independent and may overlap.
    """

    layers: np.ndarray
    spacing: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    def __post_init__(self):
        layers = np.array(self.layers, dtype=np.float64)
        if layers.ndim == 3:
            layers = layers[np.newaxis]
        if layers.ndim != 4:
            raise InvalidInput(
                f"Expected a 4-D region mask stack, got {layers.ndim} dimensions."
            )
        if layers.shape[0] == 0:
            raise InvalidInput("Region mask stack contains no regions.")
        object.__setattr__(self, "layers", layers)
        object.__setattr__(self, "spacing", _as_spacing(self.spacing))

    @classmethod
    def from_volumes(cls, volumes: Sequence[ScalarVolume]) -> "RegionMaskStack":
        if not volumes:
            raise InvalidInput("Region mask stack contains no regions.")
        first = volumes[0]
        for index, volume in enumerate(volumes[1:], start=1):
            check_same_geometry(first, volume, name=f"region mask {index}")
        return cls(np.stack([v.data for v in volumes]), first.spacing)

    @classmethod
    def from_last_axis(cls, array, spacing) -> "RegionMaskStack":
        """Build from an ``(nx, ny, nz, n_regions)`` array, the 4-D NIfTI layout."""
        array = np.asarray(array)
        if array.ndim == 3:
            return cls(array, spacing)
        return cls(np.moveaxis(array, -1, 0), spacing)

    @property
    def n_regions(self) -> int:
        return self.layers.shape[0]

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.layers.shape[1:]

    def __len__(self) -> int:
        return self.n_regions

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self.layers)

    def __getitem__(self, index) -> np.ndarray:
        return self.layers[index]

    def weights(self) -> np.ndarray:
        """Total mask weight of every region."""
        return self.layers.reshape(self.n_regions, -1).sum(axis=1)


def labels_to_mask_stack(labels, spacing, include_zero: bool = False) -> RegionMaskStack:
    """
    Convert an integer label map into a one-hot region mask stack.

    Regions are ordered by label value. Label 0 is treated as unlabelled
    background and skipped unless ``include_zero`` is set.
    """
    labels = np.rint(np.asarray(labels)).astype(np.int64)
    if labels.ndim != 3:
        raise InvalidInput(f"Expected a 3-D label image, got {labels.ndim} dimensions.")
    unique_labels = np.unique(labels)
    if not include_zero:
        unique_labels = unique_labels[unique_labels != 0]
    if unique_labels.size == 0:
        raise InvalidInput("Label image contains no labelled voxels.")
    layers = np.stack([(labels == label) for label in unique_labels]).astype(np.float64)
    return RegionMaskStack(layers, spacing)
