import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from pvc.volume import RegionMaskStack, ScalarVolume  # noqa: E402


def sphere_mask(shape, centre, radius):
    grid = np.indices(shape, dtype=np.float64)
    dist2 = sum((g - c) ** 2 for g, c in zip(grid, centre))
    return (dist2 <= radius ** 2).astype(np.float64)


@pytest.fixture
def rng():
    return np.random.default_rng(1337)


@pytest.fixture
def random_volume(rng):
    data = rng.random((12, 14, 10))
    data[:3] = 0.0
    return ScalarVolume(data, (2.0, 2.0, 3.0))


@pytest.fixture
def hot_slab():
    """A one-voxel-thick plane of activity 100 in a zero background, 2 mm voxels."""
    data = np.zeros((20, 20, 20))
    data[:, :, 10] = 100.0
    return ScalarVolume(data, (2.0, 2.0, 2.0))


@pytest.fixture
def sphere_phantom():
    """Piecewise-constant phantom: background 1, sphere 4, small hot sphere 8."""
    shape = (24, 24, 24)
    big = sphere_mask(shape, (12, 12, 12), 6)
    small = sphere_mask(shape, (12, 12, 8), 2)
    background = 1.0 - big
    big = big - small
    masks = RegionMaskStack(np.stack([background, big, small]), (2.0, 2.0, 2.0))
    values = np.array([1.0, 4.0, 8.0])
    truth = ScalarVolume(np.tensordot(values, masks.layers, axes=(0, 0)), masks.spacing)
    return truth, masks, values


@pytest.fixture
def write_nifti(tmp_path):
    nib = pytest.importorskip("nibabel")

    def _write(name, data, voxel_sizes=(2.0, 2.0, 2.0)):
        affine = np.diag([voxel_sizes[0], voxel_sizes[1], voxel_sizes[2], 1.0])
        path = tmp_path / name
        nib.save(nib.Nifti1Image(np.asarray(data, dtype=np.float32), affine), str(path))
        return path

    return _write
