# pycutfemx.fem.reference
"""
Order-agnostic reference-element factory.

Basis functions are built symbolically (sympy) once per (cell, degree) and
lambdified; derivatives are produced on demand and cached per multi-index.
"""
from functools import lru_cache
from math import comb
from typing import List, Tuple

import numpy as np
import sympy as sp

from pycutfemx.core.cell_types import CellType, to_cell_type, topological_dimension, is_simplex
from .simplex_pn import simplex_pn
from .tensor_qn import tensor_qn


@lru_cache(maxsize=None)
def derivative_multi_indices(tdim: int, nderivs: int) -> Tuple[Tuple[int, ...], ...]:
    """All derivative multi-indices of total order <= nderivs.

    Ordered by total order, then by decreasing order in x0. In 2-D this gives
    (0,0), (1,0), (0,1), (2,0), (1,1), (0,2), ...
    """
    out: List[Tuple[int, ...]] = []
    for k in range(nderivs + 1):
        if tdim == 1:
            out.append((k,))
        elif tdim == 2:
            for q in range(k + 1):
                out.append((k - q, q))
        elif tdim == 3:
            for j in range(k + 1):
                for r in range(j + 1):
                    out.append((k - j, j - r, r))
        else:
            raise ValueError(tdim)
    assert len(out) == comb(nderivs + tdim, tdim)
    return tuple(out)


class Ref:
    def __init__(self, cell_type: CellType, degree: int, symbols, nodes, basis):
        self.cell_type = cell_type
        self.degree = degree
        self.tdim = len(symbols)
        self._symbols = symbols
        self._basis = basis
        self.points = np.array([[float(c) for c in node] for node in nodes], dtype=float)
        self._lambdas = {}

    @property
    def ndofs(self) -> int:
        return len(self._basis)

    def _derivative_lambdas(self, alpha):
        fns = self._lambdas.get(alpha)
        if fns is None:
            fns = []
            for phi in self._basis:
                expr = phi
                for d, a in enumerate(alpha):
                    if a:
                        expr = sp.diff(expr, self._symbols[d], a)
                fns.append(sp.lambdify(self._symbols, expr, "numpy"))
            self._lambdas[alpha] = fns
        return fns

    def derivative(self, alpha, x: np.ndarray) -> np.ndarray:
        """D^alpha of every basis function at points x, shape (npts, ndofs)."""
        x = np.asarray(x, dtype=float).reshape(-1, self.tdim)
        coords = [x[:, d] for d in range(self.tdim)]
        npts = x.shape[0]
        out = np.empty((npts, self.ndofs), dtype=float)
        for i, f in enumerate(self._derivative_lambdas(tuple(alpha))):
            # constant expressions lambdify to scalars
            out[:, i] = np.broadcast_to(np.asarray(f(*coords), dtype=float), (npts,))
        return out

    def tabulate(self, nderivs: int, x: np.ndarray) -> np.ndarray:
        """Basis values and derivatives, shape (num_derivs, npts, ndofs)."""
        x = np.asarray(x, dtype=float).reshape(-1, self.tdim)
        alphas = derivative_multi_indices(self.tdim, int(nderivs))
        return np.stack([self.derivative(a, x) for a in alphas])


@lru_cache(maxsize=None)
def get_reference(cell_type, degree: int = 1) -> Ref:
    ct = to_cell_type(cell_type)
    tdim = topological_dimension(ct)
    if tdim == 0:
        raise KeyError("No Lagrange basis on a point cell.")
    if is_simplex(ct):
        X, nodes, basis = simplex_pn(tdim, int(degree))
    else:
        X, nodes, basis = tensor_qn(tdim, int(degree))
    return Ref(ct, int(degree), X, nodes, basis)
