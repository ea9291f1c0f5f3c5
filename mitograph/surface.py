import logging
import numpy as np
from skimage.measure import marching_cubes

from .data_structures import Surface

logger = logging.getLogger(__name__)


def extract_surface(field: np.ndarray, level: float) -> Surface:
    """Iso-surface of the field at the given level.

    Vertices are returned as (x, y, z) voxel coordinates. A level outside
    the open data range gives an empty surface.
    """
    field = np.asarray(field, dtype=np.float64)
    vmin, vmax = field.min(), field.max()
    if not (vmin < level < vmax):
        logger.warning(f"Iso-value {level} outside data range [{vmin}, {vmax}]")
        return Surface()

    verts, faces, _, _ = marching_cubes(field, level=level)
    surface = Surface(vertices=verts[:, ::-1].copy(), faces=faces)
    logger.info(f"Surface with {surface.n_points} points and {len(faces)} triangles")
    return surface
