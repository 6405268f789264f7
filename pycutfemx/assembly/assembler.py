"""pycutfemx.assembly.assembler
Assembly of forms and cut forms: scalars, vectors and sparse matrices.

Standard cell integrals call the compiled kernels; cut-cell and interface
integrals call the runtime kernels with the per-cell rules of the cut form.
Cells are visited in ascending local index and only owned cells
contribute. Scalars are summed over the ranks with a single allreduce.
"""
from __future__ import annotations
import logging
import os
from typing import Callable, Dict, Iterator, Tuple

import numpy as np
import scipy.sparse as sp
from mpi4py import MPI

from pycutfemx.core.errors import ElementHashMismatch
from pycutfemx.fem.forms import CutForm, Form, IntegralType
from pycutfemx.fem.transform import det_jacobian, facet_scale, jacobian
from pycutfemx.integration.runtime_quadrature import QuadratureRule
from pycutfemx.jit.kernels import EvaluationMode, IntegralKernel

logger = logging.getLogger(__name__)


def _jit_debug() -> bool:
    return os.getenv("PYCUTFEMX_JIT_DEBUG", "").lower() in {"1", "true", "yes"}


class TabulationCache:
    """Basis tabulations keyed by element hash, derivative order and point set."""

    def __init__(self):
        self._store: Dict[Tuple[int, int, str], np.ndarray] = {}
        self.hits = 0
        self.misses = 0

    def tabulate(self, element, nderivs: int, rule: QuadratureRule) -> np.ndarray:
        key = (element.hash(), int(nderivs), rule.cache_token)
        tab = self._store.get(key)
        if tab is None:
            self.misses += 1
            tab = np.ascontiguousarray(element.tabulate(nderivs, rule.points))
            self._store[key] = tab
        else:
            self.hits += 1
        return tab


def _check_hashes(kernel: IntegralKernel, hashes: Tuple[int, int], cell: int, itype) -> None:
    if tuple(kernel.finite_element_hashes) != tuple(hashes):
        raise ElementHashMismatch(
            f"{itype} integral, cell {cell}: kernel expects element hashes "
            f"{kernel.finite_element_hashes}, tabulated elements have {tuple(hashes)}.")


def _log_args(itype, integral_id, **arrays):
    shapes = {k: (np.shape(v), getattr(v, "dtype", type(v).__name__)) for k, v in arrays.items()}
    logger.info("kernel args [%s %d]: %s", itype, integral_id, shapes)


def _owned_cells(mesh, cells) -> np.ndarray:
    n_owned = mesh.num_cells(include_ghost=False)
    cells = np.asarray(cells, dtype=np.int64)
    return cells[cells < n_owned]


def _element_tensors(form: Form, cut_subdomains) -> Iterator[Tuple[int, np.ndarray]]:
    """Yield (cell, element tensor) for every contribution, in assembly order."""
    definition = form.definition
    mesh = form.mesh
    geometry = mesh.geometry
    cmap = geometry.cmap
    element = form.element()
    hashes = (cmap.hash(), element.hash())
    c = form.pack_constants()
    debug = _jit_debug()

    # standard cell integrals, compiled quadrature
    for integral_id in definition.integral_ids(IntegralType.cell):
        kernel = definition.kernel(IntegralType.cell, integral_id)
        if kernel.mode is not EvaluationMode.compiled:
            raise ValueError(f"Cell integral {integral_id} needs a compiled kernel.")
        cells = _owned_cells(mesh, form.integration_cells(integral_id))
        for n, cell in enumerate(cells):
            _check_hashes(kernel, hashes, int(cell), IntegralType.cell)
            coords = np.ascontiguousarray(mesh.cell_coordinates(cell))
            w = form.pack_coefficients(cell)
            A = np.zeros(kernel.tensor_size)
            if debug and n == 0:
                _log_args(IntegralType.cell, integral_id, A=A, w=w, c=c, coordinate_dofs=coords)
            kernel.tabulate_tensor(A, w, c, coords)
            yield int(cell), A

    # runtime integrals
    cache = TabulationCache()
    for itype, entries in cut_subdomains.items():
        for integral_id, rules in entries:
            kernel = definition.kernel(itype, integral_id)
            cmap_order, elem_order = kernel.finite_element_deriv_orders
            for n, cell in enumerate(_owned_cells(mesh, rules.cells())):
                rule = rules[int(cell)]
                if rule.num_points == 0:
                    continue
                _check_hashes(kernel, hashes, int(cell), itype)
                coords = np.ascontiguousarray(mesh.cell_coordinates(cell))
                cmap_tab = cache.tabulate(cmap, max(cmap_order, 1), rule)
                elem_tab = cache.tabulate(element, elem_order, rule)
                weights = rule.weights
                if rule.is_interface:
                    J = jacobian(cmap, coords, rule.points)
                    weights = weights * facet_scale(J, rule.normals) / det_jacobian(J)
                weights = np.ascontiguousarray(weights, dtype=float)
                w = form.pack_coefficients(cell)
                A = np.zeros(kernel.tensor_size)
                if debug and n == 0:
                    _log_args(itype, integral_id, A=A, w=w, c=c, coordinate_dofs=coords,
                              points=rule.points, weights=weights, cmap_tab=cmap_tab,
                              elem_tab=elem_tab)
                kernel.tabulate_tensor(A, w, c, coords, rule.num_points,
                                       np.ascontiguousarray(rule.points), weights,
                                       cmap_tab, elem_tab)
                yield int(cell), A
    logger.debug("tabulation cache: %d hits, %d misses", cache.hits, cache.misses)


def _split(form) -> Tuple[Form, Dict]:
    if isinstance(form, CutForm):
        return form.form, form.subdomains
    return form, {}


def _run(form, expected_rank: int, accumulate: Callable[[int, np.ndarray], None], what: str):
    base, cut = _split(form)
    if base.rank != expected_rank:
        raise ValueError(f"{what} assembly needs a rank-{expected_rank} form, got rank {base.rank}.")
    logger.info("%s assembly started (%d cut subdomain kinds)", what, len(cut))
    count = 0
    for cell, A in _element_tensors(base, cut):
        accumulate(cell, A)
        count += 1
    logger.info("%s assembly finished: %d element contributions", what, count)
    return base


def assemble_scalar(form) -> float:
    """Value of a functional (``Form`` or ``CutForm``) summed over all ranks (collective)."""
    total = [0.0]

    def add(cell, A):
        total[0] += float(A[0])

    base = _run(form, 0, add, "scalar")
    return float(base.mesh.comm.allreduce(total[0], op=MPI.SUM))


def assemble_vector(form) -> np.ndarray:
    """Local vector of a linear form (owned-cell contributions on this rank's dofs)."""
    base, _ = _split(form)
    V = base.function_spaces[0] if base.function_spaces else None
    if V is None:
        raise ValueError("Vector assembly needs a rank-1 form.")
    b = np.zeros(V.num_dofs)

    def add(cell, A):
        np.add.at(b, V.dofmap[cell], A)

    _run(form, 1, add, "vector")
    return b


def assemble_matrix(form) -> sp.csr_matrix:
    """Local sparse matrix of a bilinear form (owned-cell contributions)."""
    base, _ = _split(form)
    if len(base.function_spaces) != 2:
        raise ValueError("Matrix assembly needs a rank-2 form.")
    V = base.function_spaces[0]
    rows, cols, vals = [], [], []

    def add(cell, A):
        dofs = V.dofmap[cell]
        n = dofs.size
        rows.append(np.repeat(dofs, n))
        cols.append(np.tile(dofs, n))
        vals.append(A)

    _run(form, 2, add, "matrix")
    if not vals:
        return sp.csr_matrix((V.num_dofs, V.num_dofs))
    K = sp.coo_matrix((np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
                      shape=(V.num_dofs, V.num_dofs))
    return K.tocsr()
