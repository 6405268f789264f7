import numpy as np
import pytest

from pycutfemx.fem.element import LagrangeElement
from pycutfemx.integration.quadrature import volume
from pycutfemx.jit.kernels import EvaluationMode, create_kernel, default_degree, get_integrand

REF_TRI = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
P1 = LagrangeElement("triangle", 1)
P2 = LagrangeElement("triangle", 2)


def _compiled(name, element, c=(), w=()):
    k = create_kernel(name, P1, element)
    A = np.zeros(k.tensor_size)
    k.tabulate_tensor(A, np.asarray(w, dtype=float), np.asarray(c, dtype=float), REF_TRI)
    return k, A


def test_reference_stiffness_matrix():
    k, A = _compiled("stiffness", P1)
    K = A.reshape(3, 3)
    expected = 0.5 * np.array([[2.0, -1.0, -1.0], [-1.0, 1.0, 0.0], [-1.0, 0.0, 1.0]])
    assert np.allclose(K, expected)
    assert k.finite_element_deriv_orders == (1, 1)


def test_mass_matrices_sum_to_area():
    for el in (P1, P2):
        k, A = _compiled("mass", el)
        assert A.size == el.dim ** 2
        assert np.isclose(A.sum(), 0.5)
        assert np.allclose(A.reshape(el.dim, el.dim), A.reshape(el.dim, el.dim).T)
    k, A = _compiled("mass", P1)
    assert np.isclose(A[0], 1 / 12)


def test_functionals_and_vectors():
    _, A = _compiled("constant", P1, c=[3.0])
    assert np.isclose(A[0], 1.5)
    # f = x on the reference triangle
    _, A = _compiled("coefficient", P1, w=[0.0, 1.0, 0.0])
    assert np.isclose(A[0], 1 / 6)
    _, A = _compiled("source", P1, c=[1.0])
    assert np.allclose(A, 1 / 6)


def test_kernels_accumulate_into_the_tensor():
    k = create_kernel("constant", P1, P1)
    A = np.array([1.0])
    k.tabulate_tensor(A, np.zeros(0), np.array([1.0]), REF_TRI)
    assert np.isclose(A[0], 1.5)


def test_runtime_kernel_matches_compiled_kernel():
    compiled = create_kernel("stiffness", P1, P2)
    runtime = create_kernel("stiffness", P1, P2, EvaluationMode.runtime)
    assert runtime.quadrature is None
    assert runtime.finite_element_hashes == compiled.finite_element_hashes == (P1.hash(), P2.hash())

    coords = np.array([[0.0, 0.0], [2.0, 0.5], [0.3, 1.2]])
    points, weights = compiled.quadrature
    A = np.zeros(compiled.tensor_size)
    compiled.tabulate_tensor(A, np.zeros(0), np.zeros(0), coords)
    B = np.zeros(runtime.tensor_size)
    runtime.tabulate_tensor(B, np.zeros(0), np.zeros(0), coords, weights.size, points, weights,
                            P1.tabulate(1, points), P2.tabulate(1, points))
    assert np.allclose(A, B)
    assert np.allclose(B.reshape(6, 6).sum(axis=1), 0.0)


def test_quadrature_degree():
    assert default_degree("mass", P1, P2) == 4
    assert default_degree("stiffness", P1, P1) == 0
    Q2 = LagrangeElement("quadrilateral", 2)
    assert default_degree("constant", Q2, Q2) == 2
    k = create_kernel("constant", P1, P1, quadrature_degree=5)
    assert np.allclose(k.quadrature[1], volume("triangle", 5)[1])


def test_kernel_lookup_errors():
    with pytest.raises(KeyError):
        get_integrand("laplace")
    with pytest.raises(ValueError):
        create_kernel("mass", P1, LagrangeElement("quadrilateral", 1))
