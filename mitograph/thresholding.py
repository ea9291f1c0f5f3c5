import logging
from enum import Enum
import numpy as np

logger = logging.getLogger(__name__)


class BinarizationPolicy(Enum):
    """How the tubularity field is turned into a 0/255 mask"""
    FIXED = 'fixed'
    PLANE = 'plane'
    BLOCK = 'block'


def binarize_fixed(field: np.ndarray, threshold: float) -> np.ndarray:
    """Values above threshold become 255, the rest 0.

    A non-positive threshold rescales the field to 0-255 by its global range
    instead of binarizing it.
    """
    field = np.asarray(field, dtype=np.float64)
    if threshold > 0:
        return np.where(field > threshold, 255, 0).astype(np.uint8)

    vmin, vmax = field.min(), field.max()
    if vmax - vmin <= 0:
        return np.zeros(field.shape, dtype=np.uint8)
    return (255 * (field - vmin) / (vmax - vmin)).astype(np.uint8)


def plane_threshold(plane: np.ndarray, base_threshold: float) -> float:
    """Threshold mean + 2*base*std of one z-plane, pulled back into its range"""
    p_mean, p_std = plane.mean(), plane.std()
    p_min, p_max = plane.min(), plane.max()

    threshold = p_mean + p_std * base_threshold * 2.0
    if threshold > p_max:
        threshold = p_max * 0.8
    if threshold < p_min:
        threshold = p_min + (p_max - p_min) * 0.1
    return threshold


def binarize_plane_adaptive(field: np.ndarray, base_threshold: float) -> np.ndarray:
    """Binarize every z-plane with its own statistical threshold"""
    field = np.asarray(field, dtype=np.float64)
    binary = np.zeros(field.shape, dtype=np.uint8)
    for z in range(field.shape[0]):
        threshold = plane_threshold(field[z], base_threshold)
        logger.debug(f"Plane {z}: threshold {threshold:.5f}")
        binary[z][field[z] > threshold] = 255
    return binary


def block_threshold(block: np.ndarray, base_threshold: float, global_range: float) -> float:
    """Conservative threshold of one z-block.

    Very dark blocks (mean below 10% of the global range, or mean close to
    the block minimum) use mean + k*std with a small floor. Other blocks map
    the base threshold into the block range and nudge it by the block noise
    level. Each kind is then clamped into its own bounds.
    """
    b_mean, b_std = block.mean(), block.std()
    b_min, b_max = block.min(), block.max()

    b_range = b_max - b_min
    if b_range < 1e-6:
        b_range = 1.0

    brightness = (b_mean - b_min) / b_range
    cv = b_std / b_mean if b_mean > 0 else 0.0
    very_dark = (b_mean < global_range * 0.1) or (brightness < 0.2)

    if very_dark:
        threshold = b_mean + b_std * base_threshold * 2.0
        if b_mean < global_range * 0.05:
            threshold = b_mean + b_std * base_threshold * 1.5
        dark_floor = b_min + b_range * 0.01
        if threshold < dark_floor:
            threshold = dark_floor
        lower = b_min + b_range * 0.01
        upper = b_mean + b_std * 3.0
    else:
        adjustment = 0.0
        if cv > 0.5:
            adjustment = b_std * 0.2
        elif cv < 0.3:
            adjustment = -b_std * 0.1
        if brightness < 0.5:
            adjustment -= b_std * 0.1
        threshold = b_min + b_range * base_threshold + adjustment
        lower = b_min + b_range * (base_threshold * 0.3)
        upper = b_min + b_range * (base_threshold * 3.0)

    if threshold < lower:
        threshold = lower
    if threshold > upper:
        threshold = upper
    return threshold


def binarize_block_conservative(field: np.ndarray, base_threshold: float,
                                z_block_size: int) -> np.ndarray:
    """Binarize z-blocks of the field with conservative per-block thresholds"""
    field = np.asarray(field, dtype=np.float64)
    z_block_size = max(1, int(z_block_size))
    global_range = field.max() - field.min()
    binary = np.zeros(field.shape, dtype=np.uint8)

    for z_start in range(0, field.shape[0], z_block_size):
        block = field[z_start:z_start + z_block_size]
        threshold = block_threshold(block, base_threshold, global_range)
        logger.debug(f"Block at z={z_start}: threshold {threshold:.5f}")
        binary[z_start:z_start + z_block_size][block > threshold] = 255

    return binary


def binarize(field: np.ndarray, policy: BinarizationPolicy, threshold: float,
             z_block_size: int = 8) -> np.ndarray:
    if policy == BinarizationPolicy.FIXED:
        return binarize_fixed(field, threshold)
    elif policy == BinarizationPolicy.PLANE:
        return binarize_plane_adaptive(field, threshold)
    elif policy == BinarizationPolicy.BLOCK:
        return binarize_block_conservative(field, threshold, z_block_size)
    raise ValueError(f"Unknown binarization policy: {policy}")
