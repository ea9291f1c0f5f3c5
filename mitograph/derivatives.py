import numpy as np
from typing import Dict, Union

# Array axis of each spatial direction for volumes stored as (z, y, x)
AXES = {'x': 2, 'y': 1, 'z': 0}


def image_derivative(array: np.ndarray, axis: Union[str, int]) -> np.ndarray:
    """First derivative of a volume along one axis.

    Interior samples use the central difference (f[i+1] - f[i-1]) / 2 and
    the two boundary samples use the one-sided difference against their
    only neighbor.

    Args:
        array: 3D volume in (z, y, x) order
        axis: 'x', 'y', 'z' or a numpy axis index

    Returns:
        float64 array with the same shape as the input
    """
    axis = AXES[axis] if isinstance(axis, str) else int(axis)
    array = np.asarray(array, dtype=np.float64)
    if array.shape[axis] < 2:
        return np.zeros_like(array)
    return np.gradient(array, axis=axis, edge_order=1)


def hessian_components(array: np.ndarray) -> Dict[str, np.ndarray]:
    """Six independent second partials obtained by differentiating twice"""
    dx = image_derivative(array, 'x')
    dy = image_derivative(array, 'y')
    dz = image_derivative(array, 'z')
    return {
        'dxx': image_derivative(dx, 'x'),
        'dyy': image_derivative(dy, 'y'),
        'dzz': image_derivative(dz, 'z'),
        'dxy': image_derivative(dy, 'x'),
        'dxz': image_derivative(dz, 'x'),
        'dyz': image_derivative(dz, 'y'),
    }
