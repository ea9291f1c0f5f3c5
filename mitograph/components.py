import logging
from typing import List, Tuple
import numpy as np
from scipy.ndimage import label, generate_binary_structure, binary_fill_holes

from .data_structures import ComponentRecord

logger = logging.getLogger(__name__)

# scipy connectivity rank for each neighborhood size
CONNECTIVITY_RANK = {6: 1, 18: 2, 26: 3}


def label_components(field: np.ndarray, connectivity: int = 6,
                     threshold: float = 0.0) -> Tuple[np.ndarray, List[ComponentRecord]]:
    """Label the connected components of voxels above threshold

    Args:
        field: Scalar volume in (z, y, x) order
        connectivity: Neighborhood size (6, 18 or 26)
        threshold: Voxels strictly above this value are foreground

    Returns:
        labels: int array, 0 for background and component ids from 1
        records: One ComponentRecord per component, in id order
    """
    if connectivity not in CONNECTIVITY_RANK:
        raise ValueError(f"Unsupported connectivity: {connectivity}")

    structure = generate_binary_structure(3, CONNECTIVITY_RANK[connectivity])
    labels, num = label(np.asarray(field) > threshold, structure=structure)
    counts = np.bincount(labels.ravel(), minlength=num + 1)
    records = [ComponentRecord(i, int(counts[i])) for i in range(1, num + 1)]

    logger.info(f"Found {num} connected components")
    return labels, records


def filter_small_components(field: np.ndarray, labels: np.ndarray,
                            records: List[ComponentRecord], min_size: int) -> np.ndarray:
    """Zero the voxels of every component with min_size voxels or fewer.

    Nothing is removed when the volume holds at most one component.
    """
    result = np.array(field, copy=True)
    if len(records) <= 1:
        return result

    small_ids = [r.component_id for r in records if r.voxel_count <= min_size]
    if small_ids:
        result[np.isin(labels, small_ids)] = 0

    logger.info(f"Removed {len(small_ids)} components with {min_size} voxels or fewer")
    return result


def clean_boundaries(field: np.ndarray) -> np.ndarray:
    """Copy of the field with the outermost voxel layer set to zero"""
    result = np.array(field, copy=True)
    result[0, :, :] = result[-1, :, :] = 0
    result[:, 0, :] = result[:, -1, :] = 0
    result[:, :, 0] = result[:, :, -1] = 0
    return result


def fill_holes(binary: np.ndarray) -> np.ndarray:
    """Fill background cavities that cannot be reached from the volume border"""
    foreground = np.asarray(binary) > 0
    filled = binary_fill_holes(foreground, structure=generate_binary_structure(3, 1))
    logger.debug(f"Filled {int(np.sum(filled & ~foreground))} hole voxels")
    return np.where(filled, 255, 0).astype(np.uint8)
