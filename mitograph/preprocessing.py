import logging
from enum import Enum
from typing import Optional
import numpy as np
import SimpleITK as sitk

from .grid import VoxelGrid

logger = logging.getLogger(__name__)

MID_GRAY = 128


class NormalizationPolicy(Enum):
    """How a 16-bit volume is brought into the 0-255 range"""
    IDENTITY = 'identity'
    GLOBAL = 'global'
    PLANE = 'plane'
    BLOCK = 'block'
    GENTLE = 'gentle'


def _to_uint8(values: np.ndarray) -> np.ndarray:
    """Truncate to unsigned char the way a C cast does for values in [0, 255]"""
    return np.clip(np.floor(values), 0, 255).astype(np.uint8)


def _rescale(values: np.ndarray, vmin: float, vmax: float) -> np.ndarray:
    vrange = vmax - vmin
    if vrange <= 0:
        return np.full(values.shape, MID_GRAY, dtype=np.uint8)
    return _to_uint8(255.0 * (values - vmin) / vrange)


def normalize_global(data: np.ndarray) -> np.ndarray:
    """Global min-max scaling to 0-255"""
    data = data.astype(np.float64)
    return _rescale(data, data.min(), data.max())


def normalize_per_plane(data: np.ndarray) -> np.ndarray:
    """Min-max scaling of every z-plane on its own; uniform planes become mid-gray"""
    data = data.astype(np.float64)
    result = np.empty(data.shape, dtype=np.uint8)
    for z in range(data.shape[0]):
        plane = data[z]
        result[z] = _rescale(plane, plane.min(), plane.max())
    return result


def normalize_per_block(data: np.ndarray, block_size: int) -> np.ndarray:
    """Min-max scaling over z-blocks.

    Blocks whose range is below 10% of the global range are scaled with the
    global min and max instead.
    """
    data = data.astype(np.float64)
    global_min, global_max = data.min(), data.max()
    global_range = global_max - global_min
    result = np.empty(data.shape, dtype=np.uint8)

    for z_start in range(0, data.shape[0], block_size):
        block = data[z_start:z_start + block_size]
        block_min, block_max = block.min(), block.max()
        if block_max - block_min < 0.1 * global_range:
            block_min, block_max = global_min, global_max
        result[z_start:z_start + block_size] = _rescale(block, block_min, block_max)

    return result


def enhancement_factor(block_mean: float) -> float:
    """Contrast stretch factor for a block of the given mean brightness"""
    if block_mean < 20:
        return 3.0
    elif block_mean < 50:
        return 2.5
    elif block_mean < 100:
        return 1.5
    elif block_mean < 150:
        return 1.2
    return 1.1


def normalize_gentle(data: np.ndarray, block_size: int) -> np.ndarray:
    """Global scaling followed by a contrast stretch around each z-block mean"""
    result = normalize_global(data)

    for z_start in range(0, result.shape[0], block_size):
        block = result[z_start:z_start + block_size].astype(np.float64)
        if block.max() - block.min() <= 0:
            continue
        block_mean = block.mean()
        factor = enhancement_factor(block_mean)
        enhanced = np.clip(block_mean + factor * (block - block_mean), 0, 255)
        result[z_start:z_start + block_size] = _to_uint8(enhanced)

    return result


def normalize(grid: VoxelGrid, policy: NormalizationPolicy = NormalizationPolicy.GLOBAL,
              block_size: int = 8) -> Optional[VoxelGrid]:
    """Bring a volume into the 8-bit range.

    8-bit volumes are returned unchanged whatever the policy. 16-bit
    volumes are converted with the requested policy, except IDENTITY which
    keeps them as they are for inputs already in the working range. Any
    other bit depth is unsupported and yields None.
    """
    dtype = grid.data.dtype
    if dtype == np.uint8:
        return grid
    if dtype != np.uint16:
        logger.error(f"Unsupported bit depth: {dtype}")
        return None

    if policy == NormalizationPolicy.IDENTITY:
        return grid
    elif policy == NormalizationPolicy.GLOBAL:
        data = normalize_global(grid.data)
    elif policy == NormalizationPolicy.PLANE:
        data = normalize_per_plane(grid.data)
    elif policy == NormalizationPolicy.BLOCK:
        data = normalize_per_block(grid.data, max(1, block_size))
    elif policy == NormalizationPolicy.GENTLE:
        data = normalize_gentle(grid.data, max(1, block_size))
    else:
        raise ValueError(f"Unknown normalization policy: {policy}")

    return grid.with_data(data)


def sample_background_intensity(data: np.ndarray, n_samples: int = 1000,
                                rng: Optional[np.random.Generator] = None) -> float:
    """Smallest value among randomly drawn voxels"""
    rng = rng if rng is not None else np.random.default_rng()
    flat = data.ravel()
    return float(flat[rng.integers(0, flat.size, size=n_samples)].min())


def promote_2d_to_stack(grid: VoxelGrid, n_planes: int = 7,
                        rng: Optional[np.random.Generator] = None) -> VoxelGrid:
    """Turn a single-plane image into a thin 16-bit stack.

    The image fills the inner planes. The two outer planes on each side hold
    background plus Poisson noise and the XY border stays at background.
    """
    rng = rng if rng is not None else np.random.default_rng()
    plane = grid.data[0].astype(np.float64)
    background = sample_background_intensity(plane, rng=rng)
    ny, nx = plane.shape

    stack = np.full((n_planes, ny, nx), background, dtype=np.float64)
    for z in range(n_planes):
        if z < 2 or z > n_planes - 3:
            noise = background + 0.1 * rng.poisson(background, size=(ny - 2, nx - 2))
            stack[z, 1:-1, 1:-1] = noise
        else:
            stack[z, 1:-1, 1:-1] = plane[1:-1, 1:-1]

    logger.info(f"2D image promoted to a {n_planes}-plane stack (background {background:.3f})")
    return VoxelGrid(np.clip(stack, 0, 65535).astype(np.uint16), grid.spacing, grid.origin)


def resample_z(grid: VoxelGrid) -> VoxelGrid:
    """Linearly resample along z so that the z spacing matches the xy spacing.

    Args:
        grid: Volume with spacing (dxy, dxy, dz)

    Returns:
        Volume with spacing (dxy, dxy, dxy)
    """
    image = sitk.GetImageFromArray(grid.data)
    image.SetSpacing([float(s) for s in grid.spacing])

    dxy = float(grid.spacing[0])
    original_size = image.GetSize()
    new_spacing = [float(grid.spacing[0]), float(grid.spacing[1]), dxy]
    # Last output plane must not lie past the last input plane
    z_extent = (original_size[2] - 1) * float(grid.spacing[2])
    new_size = [
        original_size[0],
        original_size[1],
        int(np.floor(z_extent / dxy + 1e-9)) + 1,
    ]

    resample = sitk.ResampleImageFilter()
    resample.SetOutputSpacing(new_spacing)
    resample.SetSize(new_size)
    resample.SetOutputDirection(image.GetDirection())
    resample.SetOutputOrigin(image.GetOrigin())
    resample.SetTransform(sitk.Transform())
    resample.SetDefaultPixelValue(0)
    resample.SetInterpolator(sitk.sitkLinear)

    resampled = resample.Execute(image)
    logger.info(f"Resampled z from {original_size[2]} to {new_size[2]} planes")
    return VoxelGrid(sitk.GetArrayFromImage(resampled), tuple(new_spacing), grid.origin)
