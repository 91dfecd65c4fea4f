"""Utility functions for the pvc package."""

import logging
from pathlib import Path

import numpy as np

from pvc.exceptions import InvalidInput
from pvc.volume import RegionMaskStack, ScalarVolume

LOGGER = logging.getLogger(__name__)


def get_array(x):
    """
    Extract numpy array from various data containers.

    Parameters
    ----------
    x : object
        Data container (ScalarVolume, RegionMaskStack or numpy array)

    Returns
    -------
    np.ndarray
        Numpy array representation
    """
    if isinstance(x, RegionMaskStack):
        return x.layers
    elif hasattr(x, 'as_array'):
        return x.as_array()
    elif isinstance(x, np.ndarray):
        return x
    else:
        return np.asarray(x)


def safe_divide(numerator, denominator, epsilon):
    """
    Voxel-wise ``numerator / denominator`` with 0 wherever the denominator is below ``epsilon``.

    Background voxels routinely have a (near) zero denominator; they get a
    ratio of 0 instead of inf or NaN.
    """
    numerator = np.asarray(numerator, dtype=np.float64)
    denominator = np.asarray(denominator, dtype=np.float64)
    valid = denominator >= epsilon
    out = np.zeros(np.broadcast(numerator, denominator).shape, dtype=np.float64)
    np.divide(numerator, denominator, out=out, where=valid)
    guarded = out.size - int(np.count_nonzero(valid))
    if guarded:
        LOGGER.debug(
            "Numeric guard: %d voxel(s) with denominator below %g set to 0", guarded, epsilon
        )
    return out


def _is_nifti(filepath):
    name = Path(filepath).name.lower()
    return name.endswith('.nii') or name.endswith('.nii.gz')


def _unsupported(filepath):
    return ValueError(
        f"Unsupported file format: {Path(filepath).suffix}. "
        "Supported formats: .nii, .nii.gz"
    )


def _read_nifti(filepath):
    """Load a NIfTI file with nibabel and return (data, voxel sizes, image)."""
    import nibabel as nib
    from nibabel.filebasedimages import ImageFileError
    from nibabel.spatialimages import HeaderDataError

    if not _is_nifti(filepath):
        raise _unsupported(filepath)
    try:
        nii = nib.load(str(filepath))
        data = nii.get_fdata(dtype=np.float64)
    except (ImageFileError, HeaderDataError) as err:
        raise InvalidInput(f"Cannot read {filepath}: {err}") from err
    voxel_sizes = nib.affines.voxel_sizes(nii.affine)
    return data, tuple(float(v) for v in voxel_sizes[:3]), nii


def load_nifti(filepath):
    """
    Load a 3-D NIfTI file.

    Returns
    -------
    (ScalarVolume, nibabel.Nifti1Image)
        The volume (indexed x, y, z with spacing from the affine, in mm) and
        the loaded image, whose affine and header can be reused on output.
    """
    data, voxel_sizes, nii = _read_nifti(filepath)
    if data.ndim == 4 and data.shape[3] == 1:
        data = data[..., 0]
    if data.ndim != 3:
        raise InvalidInput(f"{filepath}: expected a 3-D image, got shape {data.shape}.")
    return ScalarVolume(data, voxel_sizes), nii


def load_image(filepath):
    """
    Load an image file (supports .nii, .nii.gz).

    Parameters
    ----------
    filepath : str or Path
        Path to image file

    Returns
    -------
    ScalarVolume
    """
    volume, _ = load_nifti(filepath)
    return volume


def load_mask_stack(filepath):
    """
    Load a region mask stack from a NIfTI file.

    A 4-D file holds one region per volume (last axis); a 3-D file is read as
    a single region.
    """
    data, voxel_sizes, _ = _read_nifti(filepath)
    if data.ndim not in (3, 4):
        raise InvalidInput(
            f"{filepath}: expected a 3-D or 4-D mask image, got shape {data.shape}."
        )
    return RegionMaskStack.from_last_axis(data, voxel_sizes)


def save_image(image, filepath, reference=None):
    """
    Save an image to file.

    Parameters
    ----------
    image : ScalarVolume or RegionMaskStack
    filepath : str or Path
        Output file path (.nii, .nii.gz)
    reference : nibabel image, optional
        Image whose affine and header are copied, so the output keeps the
        orientation of the input. Without it a diagonal affine is built from
        the voxel sizes.
    """
    import nibabel as nib

    if not _is_nifti(filepath):
        raise _unsupported(filepath)

    data = get_array(image)
    if isinstance(image, RegionMaskStack):
        data = np.moveaxis(data, 0, -1)
    data = np.asarray(data, dtype=np.float32)

    if reference is not None:
        header = reference.header.copy()
        header.set_data_dtype(np.float32)
        nii = nib.Nifti1Image(data, reference.affine, header)
    else:
        voxel_sizes = getattr(image, 'spacing', (1.0, 1.0, 1.0))
        affine = np.diag([voxel_sizes[0], voxel_sizes[1], voxel_sizes[2], 1.0])
        nii = nib.Nifti1Image(data, affine)

    Path(filepath).parent.mkdir(parents=True, exist_ok=True)
    nib.save(nii, str(filepath))
