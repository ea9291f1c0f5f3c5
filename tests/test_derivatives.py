import numpy as np

from mitograph.derivatives import image_derivative, hessian_components


def test_central_difference_inside_one_sided_at_boundaries():
    x = np.arange(5, dtype=float)
    volume = np.broadcast_to(x ** 2, (2, 3, 5)).copy()
    dx = image_derivative(volume, 'x')
    assert dx.shape == volume.shape
    assert np.allclose(dx[0, 0], [1.0, 2.0, 4.0, 6.0, 7.0])


def test_derivative_along_z_and_numeric_axis():
    z = np.arange(4, dtype=float)
    volume = np.broadcast_to((3 * z)[:, None, None], (4, 2, 2)).copy()
    assert np.allclose(image_derivative(volume, 'z'), 3.0)
    assert np.allclose(image_derivative(volume, 0), 3.0)
    assert np.allclose(image_derivative(volume, 'x'), 0.0)


def test_single_sample_axis_gives_zero_derivative():
    volume = np.random.default_rng(0).random((1, 4, 4))
    assert np.array_equal(image_derivative(volume, 'z'), np.zeros_like(volume))


def test_mixed_partial_of_bilinear_function():
    zz, yy, xx = np.meshgrid(np.arange(5.0), np.arange(6.0), np.arange(7.0), indexing='ij')
    hessian = hessian_components(xx * yy)
    assert np.allclose(hessian['dxy'], 1.0)
    assert np.allclose(hessian['dxx'], 0.0)
    assert np.allclose(hessian['dyy'], 0.0)
    assert np.allclose(hessian['dxz'], 0.0)
    assert np.allclose(hessian['dyz'], 0.0)
    assert np.allclose(hessian['dzz'], 0.0)
