import numpy as np
import pytest

from pycutfemx.integration import quadrature as q


def integrate(cell, degree, f):
    pts, wts = q.volume(cell, degree)
    return float(np.dot(wts, f(pts)))


def test_constant_volume():
    for cell, exact in [("interval", 1.0), ("tri", 0.5), ("quad", 1.0), ("tet", 1 / 6),
                        ("hex", 1.0)]:
        pts, wts = q.volume(cell, 3)
        assert np.isclose(wts.sum(), exact, rtol=1e-12)
        assert np.all(pts >= 0.0) and np.all(pts <= 1.0)


def test_polynomial_exactness():
    # ∫_T x^2 y = 2! 1! / 5!
    assert np.isclose(integrate("tri", 3, lambda p: p[:, 0] ** 2 * p[:, 1]), 1 / 60)
    assert np.isclose(integrate("quad", 5, lambda p: p[:, 0] ** 3 * p[:, 1] ** 2), 1 / 12)
    assert np.isclose(integrate("interval", 5, lambda p: p[:, 0] ** 5), 1 / 6)
    # ∫_K x y z = 1 / 720
    assert np.isclose(integrate("tet", 3, lambda p: p[:, 0] * p[:, 1] * p[:, 2]), 1 / 720)
    assert np.isclose(integrate("hex", 2, lambda p: p[:, 0] * p[:, 1] * p[:, 2]), 1 / 8)


def test_points_per_direction():
    assert q.num_points_1d(0) == 1
    assert q.num_points_1d(3) == 2
    assert q.num_points_1d(3, jacobian_degree=1) == 3
    with pytest.raises(ValueError):
        q.volume("tri", -1)


def test_rules_are_copies():
    pts, wts = q.volume("quad", 2)
    wts[:] = 0.0
    assert q.volume("quad", 2)[1].sum() == pytest.approx(1.0)


def test_point_rule():
    pts, wts = q.volume("point", 4)
    assert pts.shape == (1, 0) and wts.tolist() == [1.0]


def test_mapped_rules():
    ref_pts, ref_w = q.volume("tri", 2)
    pts, wts = q.map_simplex_rule(np.array([[0.0, 0.0], [2.0, 0.0], [0.0, 2.0]]), ref_pts, ref_w)
    assert np.isclose(wts.sum(), 2.0)
    assert np.isclose(np.dot(wts, pts[:, 0]), 4.0 / 3.0)

