"""pycutfemx.jit.kernels
Numba element kernels for a fixed family of integrands.

Every integrand has one core with the runtime signature

    tabulate_tensor(A, w, c, coordinate_dofs, num_points, points, weights,
                    cmap_tab, elem_tab)

where ``cmap_tab`` (1 + tdim, num_points, nodes) tabulates the coordinate
element with first derivatives and ``elem_tab`` (num_derivs, num_points,
ndofs) the argument / coefficient element. The result is *added* to ``A``
(flattened, row-major for matrices).

A kernel in ``EvaluationMode.compiled`` embeds its quadrature rule and
tabulations and is called as ``tabulate_tensor(A, w, c, coordinate_dofs)``.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable, Optional, Tuple

import numba as nb
import numpy as np

from pycutfemx.fem.element import LagrangeElement
from pycutfemx.integration.quadrature import volume

logger = logging.getLogger(__name__)


class EvaluationMode(Enum):
    compiled = "compiled"    # quadrature embedded in the kernel
    runtime = "runtime"      # quadrature passed in by the caller


# --------------------------------------------------------------------
#  Small dense helpers (hand-written for 1x1 .. 3x3)
# --------------------------------------------------------------------
@nb.njit(cache=True)
def _det(M):
    n = M.shape[0]
    if n == 1:
        return M[0, 0]
    if n == 2:
        return M[0, 0] * M[1, 1] - M[0, 1] * M[1, 0]
    return (M[0, 0] * (M[1, 1] * M[2, 2] - M[1, 2] * M[2, 1])
            - M[0, 1] * (M[1, 0] * M[2, 2] - M[1, 2] * M[2, 0])
            + M[0, 2] * (M[1, 0] * M[2, 1] - M[1, 1] * M[2, 0]))


@nb.njit(cache=True)
def _inv(M, out):
    n = M.shape[0]
    d = _det(M)
    if n == 1:
        out[0, 0] = 1.0 / d
    elif n == 2:
        out[0, 0] = M[1, 1] / d
        out[0, 1] = -M[0, 1] / d
        out[1, 0] = -M[1, 0] / d
        out[1, 1] = M[0, 0] / d
    else:
        out[0, 0] = (M[1, 1] * M[2, 2] - M[1, 2] * M[2, 1]) / d
        out[0, 1] = (M[0, 2] * M[2, 1] - M[0, 1] * M[2, 2]) / d
        out[0, 2] = (M[0, 1] * M[1, 2] - M[0, 2] * M[1, 1]) / d
        out[1, 0] = (M[1, 2] * M[2, 0] - M[1, 0] * M[2, 2]) / d
        out[1, 1] = (M[0, 0] * M[2, 2] - M[0, 2] * M[2, 0]) / d
        out[1, 2] = (M[0, 2] * M[1, 0] - M[0, 0] * M[1, 2]) / d
        out[2, 0] = (M[1, 0] * M[2, 1] - M[1, 1] * M[2, 0]) / d
        out[2, 1] = (M[0, 1] * M[2, 0] - M[0, 0] * M[2, 1]) / d
        out[2, 2] = (M[0, 0] * M[1, 1] - M[0, 1] * M[1, 0]) / d


@nb.njit(cache=True)
def _geometry(coordinate_dofs, cmap_tab, q, J, K):
    """Fill J (gdim, tdim) and its (pseudo-)inverse K at point q; return the measure factor."""
    gdim, tdim = J.shape
    nn = coordinate_dofs.shape[0]
    for i in range(gdim):
        for d in range(tdim):
            s = 0.0
            for k in range(nn):
                s += cmap_tab[1 + d, q, k] * coordinate_dofs[k, i]
            J[i, d] = s
    if gdim == tdim:
        _inv(J, K)
        return abs(_det(J))
    G = np.zeros((tdim, tdim))
    for a in range(tdim):
        for b in range(tdim):
            for i in range(gdim):
                G[a, b] += J[i, a] * J[i, b]
    Ginv = np.empty((tdim, tdim))
    _inv(G, Ginv)
    for a in range(tdim):
        for i in range(gdim):
            s = 0.0
            for b in range(tdim):
                s += Ginv[a, b] * J[i, b]
            K[a, i] = s
    return np.sqrt(_det(G))


# --------------------------------------------------------------------
#  Integrand cores
# --------------------------------------------------------------------
@nb.njit(cache=True)
def constant_functional(A, w, c, coordinate_dofs, num_points, points, weights, cmap_tab, elem_tab):
    """alpha * dx"""
    gdim = coordinate_dofs.shape[1]
    tdim = cmap_tab.shape[0] - 1
    J = np.empty((gdim, tdim))
    K = np.empty((tdim, gdim))
    acc = 0.0
    for q in range(num_points):
        acc += weights[q] * _geometry(coordinate_dofs, cmap_tab, q, J, K)
    A[0] += c[0] * acc


@nb.njit(cache=True)
def coefficient_functional(A, w, c, coordinate_dofs, num_points, points, weights, cmap_tab,
                           elem_tab):
    """f * dx"""
    gdim = coordinate_dofs.shape[1]
    tdim = cmap_tab.shape[0] - 1
    J = np.empty((gdim, tdim))
    K = np.empty((tdim, gdim))
    nd = elem_tab.shape[2]
    acc = 0.0
    for q in range(num_points):
        dx = weights[q] * _geometry(coordinate_dofs, cmap_tab, q, J, K)
        f = 0.0
        for i in range(nd):
            f += w[i] * elem_tab[0, q, i]
        acc += f * dx
    A[0] += acc


@nb.njit(cache=True)
def source_vector(A, w, c, coordinate_dofs, num_points, points, weights, cmap_tab, elem_tab):
    """alpha * v * dx"""
    gdim = coordinate_dofs.shape[1]
    tdim = cmap_tab.shape[0] - 1
    J = np.empty((gdim, tdim))
    K = np.empty((tdim, gdim))
    nd = elem_tab.shape[2]
    for q in range(num_points):
        dx = weights[q] * _geometry(coordinate_dofs, cmap_tab, q, J, K)
        for i in range(nd):
            A[i] += c[0] * elem_tab[0, q, i] * dx


@nb.njit(cache=True)
def mass_matrix(A, w, c, coordinate_dofs, num_points, points, weights, cmap_tab, elem_tab):
    """u * v * dx"""
    gdim = coordinate_dofs.shape[1]
    tdim = cmap_tab.shape[0] - 1
    J = np.empty((gdim, tdim))
    K = np.empty((tdim, gdim))
    nd = elem_tab.shape[2]
    for q in range(num_points):
        dx = weights[q] * _geometry(coordinate_dofs, cmap_tab, q, J, K)
        for i in range(nd):
            for j in range(nd):
                A[i * nd + j] += elem_tab[0, q, i] * elem_tab[0, q, j] * dx


@nb.njit(cache=True)
def stiffness_matrix(A, w, c, coordinate_dofs, num_points, points, weights, cmap_tab, elem_tab):
    """inner(grad u, grad v) * dx"""
    gdim = coordinate_dofs.shape[1]
    tdim = cmap_tab.shape[0] - 1
    J = np.empty((gdim, tdim))
    K = np.empty((tdim, gdim))
    nd = elem_tab.shape[2]
    G = np.empty((nd, gdim))
    for q in range(num_points):
        dx = weights[q] * _geometry(coordinate_dofs, cmap_tab, q, J, K)
        for i in range(nd):
            for k in range(gdim):
                s = 0.0
                for d in range(tdim):
                    s += K[d, k] * elem_tab[1 + d, q, i]
                G[i, k] = s
        for i in range(nd):
            for j in range(nd):
                s = 0.0
                for k in range(gdim):
                    s += G[i, k] * G[j, k]
                A[i * nd + j] += s * dx


@dataclass(frozen=True)
class Integrand:
    core: Callable
    rank: int
    deriv_order: int
    coefficients: Tuple[str, ...] = ()
    constants: Tuple[str, ...] = ()


INTEGRANDS = {
    "constant": Integrand(constant_functional, 0, 0, constants=("alpha",)),
    "coefficient": Integrand(coefficient_functional, 0, 0, coefficients=("f",)),
    "source": Integrand(source_vector, 1, 0, constants=("alpha",)),
    "mass": Integrand(mass_matrix, 2, 0),
    "stiffness": Integrand(stiffness_matrix, 2, 1),
}


def get_integrand(name: str) -> Integrand:
    try:
        return INTEGRANDS[name]
    except KeyError:
        raise KeyError(f"Unknown integrand '{name}'; available: {sorted(INTEGRANDS)}.") from None


def default_degree(name: str, cmap: LagrangeElement, element: LagrangeElement) -> int:
    """Quadrature degree integrating the integrand exactly on affine cells."""
    p = element.degree
    polynomial = {"constant": 0, "coefficient": p, "source": p,
                  "mass": 2 * p, "stiffness": 2 * (p - 1)}[name]
    return polynomial + (cmap.degree - 1) * cmap.tdim


# --------------------------------------------------------------------
#  Kernel objects
# --------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class IntegralKernel:
    """One integral of a form, in a fixed evaluation mode.

    ``finite_element_hashes`` / ``finite_element_deriv_orders`` list the
    coordinate element and the argument (or coefficient) element, in that
    order; tabulations handed to the kernel must come from elements with
    exactly these hashes.
    """
    name: str
    mode: EvaluationMode
    tabulate_tensor: Callable
    rank: int
    finite_element_hashes: Tuple[int, int]
    finite_element_deriv_orders: Tuple[int, int]
    num_dofs: int
    quadrature: Optional[Tuple[np.ndarray, np.ndarray]] = None

    @property
    def tensor_size(self) -> int:
        return self.num_dofs ** self.rank

    def __repr__(self):
        return (f"<IntegralKernel {self.name} {self.mode.value} rank={self.rank} "
                f"hashes={self.finite_element_hashes}>")


def _embed(core, points, weights, cmap_tab, elem_tab):
    n = int(weights.size)

    def tabulate_tensor(A, w, c, coordinate_dofs):
        core(A, w, c, coordinate_dofs, n, points, weights, cmap_tab, elem_tab)
    return tabulate_tensor


@lru_cache(maxsize=None)
def create_kernel(name: str, cmap: LagrangeElement, element: LagrangeElement,
                  mode: EvaluationMode = EvaluationMode.compiled,
                  quadrature_degree: Optional[int] = None) -> IntegralKernel:
    """Kernel for integrand ``name`` on cells mapped by ``cmap``.

    In compiled mode the kernel embeds a Gauss rule of ``quadrature_degree``
    (default: exact on affine cells) and the tabulations at its points.
    """
    entry = get_integrand(name)
    if cmap.cell_type != element.cell_type:
        raise ValueError(f"Element on {element.cell_type} cannot be used on "
                         f"{cmap.cell_type} cells.")
    hashes = (cmap.hash(), element.hash())
    derivs = (1, entry.deriv_order)

    if mode is EvaluationMode.runtime:
        return IntegralKernel(name, mode, entry.core, entry.rank, hashes, derivs, element.dim)

    degree = default_degree(name, cmap, element) if quadrature_degree is None \
        else int(quadrature_degree)
    points, weights = volume(cmap.cell_type, degree)
    cmap_tab = cmap.tabulate(1, points)
    elem_tab = element.tabulate(entry.deriv_order, points)
    logger.debug("compiled kernel '%s' on %s: degree %d, %d points", name, cmap.cell_type,
                 degree, weights.size)
    return IntegralKernel(name, mode, _embed(entry.core, points, weights, cmap_tab, elem_tab),
                          entry.rank, hashes, derivs, element.dim, (points, weights))
