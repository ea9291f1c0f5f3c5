import numpy as np
from dataclasses import dataclass, field
from typing import Tuple

# Neighbor offsets as (dx, dy, dz). The first 6 entries are the face
# neighbors, the next 12 the edge neighbors and the last 8 the corners.
NEIGHBOR_OFFSETS = np.array([
    ( 0,  0, -1), (-1,  0,  0), ( 0, -1,  0), ( 1,  0,  0), ( 0,  1,  0), ( 0,  0,  1),
    (-1,  0, -1), ( 0, -1, -1), ( 1,  0, -1), ( 0,  1, -1), (-1, -1,  0), ( 1, -1,  0),
    ( 1,  1,  0), (-1,  1,  0), (-1,  0,  1), ( 0, -1,  1), ( 1,  0,  1), ( 0,  1,  1),
    (-1, -1, -1), ( 1, -1, -1), ( 1,  1, -1), (-1,  1, -1), (-1, -1,  1), ( 1, -1,  1),
    ( 1,  1,  1), (-1,  1,  1),
], dtype=int)

FACE_OFFSETS = NEIGHBOR_OFFSETS[:6]


class GridIndexer:
    """Maps (x, y, z) voxel coordinates to linear ids and back.

    Linear ids follow x-fastest ordering, which is also the C-order ravel
    of an array stored as (z, y, x).
    """

    def __init__(self, dims: Tuple[int, int, int]):
        self.dims = tuple(int(d) for d in dims)

    @property
    def size(self) -> int:
        return self.dims[0] * self.dims[1] * self.dims[2]

    def to_id(self, x, y, z):
        dx, dy, _ = self.dims
        return x + y * dx + z * dx * dy

    def to_xyz(self, idx):
        dx, dy, _ = self.dims
        return idx % dx, (idx % (dx * dy)) // dx, idx // (dx * dy)

    def contains(self, x, y, z) -> bool:
        return 0 <= x < self.dims[0] and 0 <= y < self.dims[1] and 0 <= z < self.dims[2]

    def reflected_id(self, x: int, y: int, z: int) -> int:
        """Id of the voxel reflected across the grid center.

        Points in the lower half of an axis are shifted up by half the
        extent and points in the upper half are shifted down.
        """
        shifted = []
        for c, d in zip((x, y, z), self.dims):
            r = int(np.ceil(0.5 * d))
            s = -r if c - (r - 0.5) < 0 else d - r
            shifted.append(c - s)
        return self.to_id(*shifted)


@dataclass(frozen=True)
class VoxelGrid:
    """Dense scalar volume with physical geometry.

    data is stored in SimpleITK order (z, y, x); spacing and origin are
    given in (x, y, z) order.
    """
    data: np.ndarray
    spacing: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    origin: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    indexer: GridIndexer = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.data.ndim != 3:
            raise ValueError(f"VoxelGrid requires a 3D array, got shape {self.data.shape}")
        object.__setattr__(self, 'indexer', GridIndexer(self.dims))

    @property
    def dims(self) -> Tuple[int, int, int]:
        """Grid dimensions as (Dx, Dy, Dz)"""
        nz, ny, nx = self.data.shape
        return nx, ny, nz

    @property
    def voxel_volume(self) -> float:
        return float(self.spacing[0] * self.spacing[1] * self.spacing[2])

    def with_data(self, data: np.ndarray) -> 'VoxelGrid':
        """New grid with the same geometry and different samples"""
        if data.shape != self.data.shape:
            raise ValueError(f"Shape mismatch: {data.shape} != {self.data.shape}")
        return VoxelGrid(data, self.spacing, self.origin)

    def value(self, x: int, y: int, z: int):
        return self.data[z, y, x]


def scale_points(points: np.ndarray, spacing, origin) -> np.ndarray:
    """Convert (x, y, z) voxel coordinates to physical units"""
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    return np.asarray(spacing, dtype=float) * (points + np.asarray(origin, dtype=float))
