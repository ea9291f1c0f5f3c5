import logging
from typing import Optional, Sequence, Tuple
import numpy as np
from scipy.ndimage import gaussian_filter
from tqdm import tqdm

from .derivatives import hessian_components

logger = logging.getLogger(__name__)

EigenTriple = Tuple[np.ndarray, np.ndarray, np.ndarray]

# Frangi parameters
ALPHA = 0.5  # Controls sensitivity to Ra
BETA = 0.5   # Controls sensitivity to Rb
C = 500.0    # Controls sensitivity to S
EPSILON = 1e-10  # Small value to avoid division by zero

# Gaussian kernel support in standard deviations
KERNEL_RADIUS_FACTOR = 10.0


def _smoothed_hessian(image: np.ndarray, sigma: float):
    """Hessian matrices, trace mask and Frobenius norm of the smoothed image"""
    smoothed = gaussian_filter(np.asarray(image, dtype=np.float64), sigma=sigma, mode='nearest',
                               truncate=KERNEL_RADIUS_FACTOR)
    hessian = hessian_components(smoothed)

    H = np.empty(smoothed.shape + (3, 3), dtype=np.float64)
    H[..., 0, 0] = hessian['dxx']
    H[..., 0, 1] = H[..., 1, 0] = hessian['dxy']
    H[..., 0, 2] = H[..., 2, 0] = hessian['dxz']
    H[..., 1, 1] = hessian['dyy']
    H[..., 1, 2] = H[..., 2, 1] = hessian['dyz']
    H[..., 2, 2] = hessian['dzz']

    frobenius = np.sqrt(np.sum(H ** 2, axis=(-2, -1)))
    concave = (H[..., 0, 0] + H[..., 1, 1] + H[..., 2, 2]) < 0.0
    return H, concave, frobenius


def _sorted_eigenvalues(H: np.ndarray, concave: np.ndarray, batch_size: int = 100000) -> np.ndarray:
    """Eigenvalues of the concave voxels sorted by absolute value, zero elsewhere"""
    eigenvalues = np.zeros(concave.shape + (3,), dtype=np.float64)
    roi_indices = np.nonzero(concave)
    total_voxels = len(roi_indices[0])

    for i in range(0, total_voxels, batch_size):
        batch_indices = tuple(idx[i:i + batch_size] for idx in roi_indices)
        w_batch = np.linalg.eigvalsh(H[batch_indices])
        sort_idx = np.argsort(np.abs(w_batch), axis=1)
        eigenvalues[batch_indices] = np.take_along_axis(w_batch, sort_idx, axis=1)

    return eigenvalues


def _split(eigenvalues: np.ndarray) -> EigenTriple:
    return eigenvalues[..., 0], eigenvalues[..., 1], eigenvalues[..., 2]


def hessian_eigenvalues(image: np.ndarray, sigma: float) -> EigenTriple:
    """Hessian eigenvalues at scale sigma with a global noise floor.

    Voxels whose Frobenius norm is below the square root of the largest
    Frobenius norm in the volume are set to zero.

    Args:
        image: Intensity volume in (z, y, x) order
        sigma: Standard deviation of the Gaussian smoothing

    Returns:
        (l1, l2, l3) arrays with |l1| <= |l2| <= |l3|
    """
    H, concave, frobenius = _smoothed_hessian(image, sigma)
    eigenvalues = _sorted_eigenvalues(H, concave)

    floor = np.sqrt(frobenius.max()) if frobenius.size else 0.0
    eigenvalues[frobenius < floor] = 0.0
    return _split(eigenvalues)


def block_indices(length: int, n_blocks: int) -> np.ndarray:
    """Block index int(n * c / D) of every coordinate along an axis"""
    return (n_blocks * np.arange(length)) // length


def neighbor_mean(values: np.ndarray) -> np.ndarray:
    """Mean over the 6 face neighbors, 0 on the outermost voxel layer"""
    mean = np.zeros_like(values, dtype=np.float64)
    if min(values.shape) < 3:
        return mean
    core = (slice(1, -1),) * 3
    total = np.zeros_like(values[core], dtype=np.float64)
    for axis in range(3):
        for shift in (-1, 1):
            window = list(core)
            window[axis] = slice(1 + shift, values.shape[axis] - 1 + shift)
            total += values[tuple(window)]
    mean[core] = total / 6.0
    return mean


def hessian_eigenvalues_adaptive(image: np.ndarray, sigma: float, n_blocks: int) -> EigenTriple:
    """Hessian eigenvalues at scale sigma with a block-wise noise floor.

    The XY extent is split into n_blocks x n_blocks blocks. For every block
    and z-plane the floor is the square root of the largest Frobenius norm
    found there. A voxel survives when the mean Frobenius norm of its face
    neighbors is at least the floor of its own block and plane.
    """
    H, concave, frobenius = _smoothed_hessian(image, sigma)
    eigenvalues = _sorted_eigenvalues(H, concave)

    nz, ny, nx = frobenius.shape
    bx = block_indices(nx, n_blocks)
    by = block_indices(ny, n_blocks)

    floor = np.zeros_like(frobenius)
    for qy in range(n_blocks):
        ys = np.flatnonzero(by == qy)
        if ys.size == 0:
            continue
        for qx in range(n_blocks):
            xs = np.flatnonzero(bx == qx)
            if xs.size == 0:
                continue
            block = frobenius[:, ys[0]:ys[-1] + 1, xs[0]:xs[-1] + 1]
            plane_max = block.max(axis=(1, 2))
            floor[:, ys[0]:ys[-1] + 1, xs[0]:xs[-1] + 1] = np.sqrt(plane_max)[:, None, None]

    eigenvalues[neighbor_mean(frobenius) < floor] = 0.0
    return _split(eigenvalues)


def frangi_vesselness(l1: np.ndarray, l2: np.ndarray, l3: np.ndarray) -> np.ndarray:
    """Frangi tubularity, non-zero only where l2 < 0 and l3 < 0"""
    valid_voxels = (l2 < 0) & (l3 < 0)
    vesselness = np.zeros(np.shape(l1), dtype=np.float64)
    if not np.any(valid_voxels):
        return vesselness

    a1 = np.abs(l1[valid_voxels])
    a2 = np.abs(l2[valid_voxels])
    a3 = np.abs(l3[valid_voxels])

    Ra = a2 / (a3 + EPSILON)
    Rb = a1 / (np.sqrt(a2 * a3) + EPSILON)
    S2 = a1 ** 2 + a2 ** 2 + a3 ** 2

    exp_Ra = np.exp(-Ra ** 2 / (2 * ALPHA ** 2))
    exp_Rb = np.exp(-Rb ** 2 / (2 * BETA ** 2))
    exp_S = np.exp(-S2 / (2 * C ** 2))

    vesselness[valid_voxels] = (1 - exp_Ra) * exp_Rb * (1 - exp_S)
    return vesselness


def scale_range(sigma_min: float, sigma_max: float, count: int) -> list:
    """Evenly spaced scales from sigma_min up to sigma_max"""
    step = (sigma_max - sigma_min) / (count - 1) if count > 1 else sigma_max
    if step <= 0:
        return [sigma_min]
    scales = []
    sigma = sigma_min
    while sigma <= sigma_max + 0.5 * step:
        scales.append(sigma)
        sigma += step
    return scales


def multiscale_vesselness(image: np.ndarray, scales: Sequence[float],
                          n_blocks: Optional[int] = None) -> np.ndarray:
    """Pointwise maximum of the Frangi response over all scales

    Args:
        image: Intensity volume in (z, y, x) order
        scales: Gaussian scales to evaluate
        n_blocks: Use the block-wise noise floor with this many blocks per
            XY axis; the global floor when None

    Returns:
        float64 tubularity field
    """
    vesselness = np.zeros(np.shape(image), dtype=np.float64)

    for sigma in tqdm(scales, desc="Processing scales", leave=False):
        logger.debug(f"Running sigma = {sigma:.3f}")
        if n_blocks:
            l1, l2, l3 = hessian_eigenvalues_adaptive(image, sigma, n_blocks)
        else:
            l1, l2, l3 = hessian_eigenvalues(image, sigma)
        np.maximum(vesselness, frangi_vesselness(l1, l2, l3), out=vesselness)

    return vesselness


def divergence_filter(field: np.ndarray, offset: int = 2) -> np.ndarray:
    """Keep the negative divergence of the normalized gradient field.

    For every interior voxel with non-zero value the gradient is sampled
    at the six face points `offset` voxels away. Returns a new array with
    -div/6 where the divergence is negative and 0 everywhere else.
    """
    field = np.asarray(field, dtype=np.float64)
    result = np.zeros_like(field)
    s = offset
    if min(field.shape) <= 2 * s + 2:
        return result

    nz, ny, nx = field.shape
    zz, yy, xx = np.nonzero(field[s + 1:nz - s - 1, s + 1:ny - s - 1, s + 1:nx - s - 1])
    zz, yy, xx = zz + s + 1, yy + s + 1, xx + s + 1
    if zz.size == 0:
        return result

    # Gradient at the sample point (x, y, z) + s * d, as (gx, gy, gz)
    def unit_gradient(dx, dy, dz):
        cz, cy, cx = zz + s * dz, yy + s * dy, xx + s * dx
        g = np.stack([
            field[cz, cy, cx + 1] - field[cz, cy, cx - 1],
            field[cz, cy + 1, cx] - field[cz, cy - 1, cx],
            field[cz + 1, cy, cx] - field[cz - 1, cy, cx],
        ])
        norm = np.sqrt(np.sum(g ** 2, axis=0))
        nonzero = norm > 0
        g[:, nonzero] /= norm[nonzero]
        return g

    div = (unit_gradient(1, 0, 0)[0] - unit_gradient(-1, 0, 0)[0]
           + unit_gradient(0, 1, 0)[1] - unit_gradient(0, -1, 0)[1]
           + unit_gradient(0, 0, 1)[2] - unit_gradient(0, 0, -1)[2])

    result[zz, yy, xx] = np.where(div < 0, -div / 6.0, 0.0)
    return result
