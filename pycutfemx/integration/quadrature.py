"""pycutfemx.integration.quadrature
Gauss rules on the reference cells (any polynomial degree >= 0).

Reference cells are [0, 1]^d for intervals, quadrilaterals and hexahedra,
and the unit simplex for triangles and tetrahedra. Simplex rules are
collapsed (Duffy) tensor-product Gauss rules.
"""
from __future__ import annotations
import math
from functools import lru_cache
from typing import Tuple

import numpy as np
from numpy.polynomial.legendre import leggauss

from pycutfemx.core.cell_types import CellType, to_cell_type


# -------------------------------------------------------------------------
# 1-D Gauss-Legendre
# -------------------------------------------------------------------------
def gauss_legendre(npoints: int):
    if npoints < 1:
        raise ValueError(f"Gauss-Legendre needs at least one point, got {npoints}.")
    return leggauss(int(npoints))  # (points, weights) on [-1, 1]


@lru_cache(maxsize=None)
def _gl01(npoints: int):
    """Gauss-Legendre nodes and weights mapped to [0,1]."""
    xi, w = gauss_legendre(npoints)
    return 0.5 * (xi + 1.0), 0.5 * w


def _check_degree(degree: int) -> int:
    degree = int(degree)
    if degree < 0:
        raise ValueError(f"Quadrature degree must be non-negative, got {degree}.")
    return degree


def num_points_1d(degree: int, jacobian_degree: int = 0) -> int:
    """Gauss points per direction exact for ``degree`` times a factor of ``jacobian_degree``."""
    return max(1, math.ceil((_check_degree(degree) + jacobian_degree + 1) / 2))


# -------------------------------------------------------------------------
# Tensor-product and collapsed rules
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def interval_rule(degree: int):
    t, w = _gl01(num_points_1d(degree))
    return t.reshape(-1, 1), w.copy()


@lru_cache(maxsize=None)
def quad_rule(degree: int):
    t, w = _gl01(num_points_1d(degree))
    X, Y = np.meshgrid(t, t, indexing="ij")
    WX, WY = np.meshgrid(w, w, indexing="ij")
    return np.column_stack([X.ravel(), Y.ravel()]), (WX * WY).ravel()


@lru_cache(maxsize=None)
def hex_rule(degree: int):
    t, w = _gl01(num_points_1d(degree))
    X, Y, Z = np.meshgrid(t, t, t, indexing="ij")
    W = w[:, None, None] * w[None, :, None] * w[None, None, :]
    return np.column_stack([X.ravel(), Y.ravel(), Z.ravel()]), W.ravel()


@lru_cache(maxsize=None)
def tri_rule(degree: int):
    """Degree-exact rule built from square -> reference triangle mapping."""
    n = num_points_1d(degree, jacobian_degree=1)
    u, w_u = _gl01(n)
    pts, wts = [], []
    for i, ui in enumerate(u):
        for j, vj in enumerate(u):
            pts.append([ui, vj * (1.0 - ui)])
            wts.append(w_u[i] * w_u[j] * (1.0 - ui))
    return np.array(pts), np.array(wts)


@lru_cache(maxsize=None)
def tet_rule(degree: int):
    n = num_points_1d(degree, jacobian_degree=2)
    u, w_u = _gl01(n)
    pts, wts = [], []
    for i, a in enumerate(u):
        for j, b in enumerate(u):
            for k, c in enumerate(u):
                x = a
                y = b * (1.0 - a)
                z = c * (1.0 - a) * (1.0 - b)
                pts.append([x, y, z])
                wts.append(w_u[i] * w_u[j] * w_u[k] * (1.0 - a) ** 2 * (1.0 - b))
    return np.array(pts), np.array(wts)


_RULES = {
    CellType.interval: interval_rule,
    CellType.triangle: tri_rule,
    CellType.quadrilateral: quad_rule,
    CellType.tetrahedron: tet_rule,
    CellType.hexahedron: hex_rule,
}


def volume(cell_type, degree: int = 2) -> Tuple[np.ndarray, np.ndarray]:
    """Reference-cell rule exact for polynomials of total degree ``degree``."""
    ct = to_cell_type(cell_type)
    if ct == CellType.point:
        return np.zeros((1, 0)), np.ones(1)
    try:
        rule = _RULES[ct]
    except KeyError:
        raise KeyError(f"No quadrature for {cell_type}.") from None
    pts, wts = rule(_check_degree(degree))
    return pts.copy(), wts.copy()


# -------------------------------------------------------------------------
# Rules on affine simplices embedded in a reference cell
# -------------------------------------------------------------------------
def map_simplex_rule(P: np.ndarray, pts_ref: np.ndarray, w_ref: np.ndarray):
    """Push a unit-simplex rule onto the simplex with vertices P (k, d)."""
    P = np.asarray(P, dtype=float)
    E = (P[1:] - P[0]).T                          # (d, k-1)
    pts = P[0][None, :] + pts_ref @ E.T
    if E.shape[0] == E.shape[1]:
        scale = abs(np.linalg.det(E))
    else:
        scale = np.sqrt(abs(np.linalg.det(E.T @ E)))
    return pts, w_ref * scale
