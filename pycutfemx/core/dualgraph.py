"""pycutfemx.core.dualgraph
Vertex extraction and the cell-cell (dual) graph of a rank's owned cells.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import reverse_cuthill_mckee

from pycutfemx.core import cell_types as ct_
from pycutfemx.core.errors import TopologyError

logger = logging.getLogger(__name__)


def extract_topology(cell_type, dof_layout, cells: np.ndarray) -> np.ndarray:
    """Keep only the vertex nodes of every cell.

    ``cells`` holds the global node indices of each cell (including
    higher-order nodes), either as (num_cells, num_nodes) or flattened.
    For degree-1 geometry this is the identity. The layout is trusted: a
    layout that does not match the connectivity stride yields a wrong
    topology, not an error.
    """
    cells = np.asarray(cells, dtype=np.int64).reshape(-1, dof_layout.num_dofs)
    vdofs = dof_layout.vertex_dofs()
    if vdofs.size != ct_.num_vertices(cell_type):
        raise ValueError(f"Layout has {vdofs.size} vertex dofs, {cell_type} has "
                         f"{ct_.num_vertices(cell_type)} vertices.")
    return np.ascontiguousarray(cells[:, vdofs])


@dataclass
class DualGraph:
    """Facet adjacency between the owned cells of one rank.

    ``facet_cells[f]`` is ``(c0, c1)`` for an interior facet and ``(c0, None)``
    for a facet seen by a single owned cell (a candidate process-boundary
    or exterior facet).
    """
    graph: sp.csr_matrix
    facets: np.ndarray                              # (num_facets, num_facet_vertices), sorted rows
    facet_cells: List[Tuple[int, Optional[int]]]
    unmatched_facets: np.ndarray                    # rows of `facets` seen once
    boundary_vertices: np.ndarray                   # sorted, unique, no padding

    @property
    def num_nodes(self) -> int:
        return self.graph.shape[0]


def _facet_keys(cell_type, cells: np.ndarray) -> np.ndarray:
    """Sorted vertex tuple of every (cell, local facet), shape (nc*nf, nfv)."""
    tdim = ct_.topological_dimension(cell_type)
    table = np.array(ct_.sub_entities(cell_type, tdim - 1), dtype=np.int64)
    keys = cells[:, table]                          # (nc, nf, nfv)
    keys = np.sort(keys, axis=-1)
    return keys.reshape(-1, table.shape[1])


def build_local_dual_graph(cell_type, cells: np.ndarray) -> DualGraph:
    """Dual graph of ``cells`` (global vertex indices, one row per owned cell).

    Two cells are adjacent when they share a facet with the same vertex set.
    Facets seen exactly once are unmatched; their vertices are the
    candidate boundary vertices of this rank. Entries equal to -1 pad
    facets of mixed-topology input and are never treated as vertices.
    """
    cell_type = ct_.to_cell_type(cell_type)
    cells = np.asarray(cells, dtype=np.int64).reshape(-1, ct_.num_vertices(cell_type))
    num_cells = cells.shape[0]
    nf = ct_.num_sub_entities(cell_type, ct_.topological_dimension(cell_type) - 1)

    if num_cells == 0:
        empty = np.empty((0, ct_.num_facet_vertices(cell_type)), dtype=np.int64)
        return DualGraph(sp.csr_matrix((0, 0), dtype=np.int8), empty, [], empty,
                         np.empty(0, dtype=np.int64))

    keys = _facet_keys(cell_type, cells)
    owner_cell = np.repeat(np.arange(num_cells, dtype=np.int64), nf)
    facets, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = np.asarray(inverse).reshape(-1)

    if np.any(counts > 2):
        bad = facets[counts > 2][0]
        raise TopologyError(f"Facet {bad.tolist()} is shared by more than two cells.")

    order = np.argsort(inverse, kind="stable")
    starts = np.concatenate([[0], np.cumsum(counts)])
    rows, cols = [], []
    facet_cells: List[Tuple[int, Optional[int]]] = []
    for f in range(facets.shape[0]):
        attached = owner_cell[order[starts[f]:starts[f + 1]]]
        if attached.size == 2:
            c0, c1 = int(attached[0]), int(attached[1])
            facet_cells.append((c0, c1))
            rows += [c0, c1]
            cols += [c1, c0]
        else:
            facet_cells.append((int(attached[0]), None))

    data = np.ones(len(rows), dtype=np.int8)
    graph = sp.csr_matrix((data, (rows, cols)), shape=(num_cells, num_cells))

    unmatched = facets[counts == 1]
    bverts = np.unique(unmatched)
    bverts = bverts[bverts >= 0]
    logger.debug("dual graph: %d cells, %d facets, %d unmatched, %d boundary vertices",
                 num_cells, facets.shape[0], unmatched.shape[0], bverts.size)
    return DualGraph(graph, facets, facet_cells, unmatched, bverts)


def reorder_cells(graph: sp.csr_matrix) -> np.ndarray:
    """Bandwidth-reducing renumbering of the dual graph (reverse Cuthill-McKee).

    Returns ``remap`` with ``remap[old] = new``.
    """
    n = graph.shape[0]
    if n == 0:
        return np.empty(0, dtype=np.int32)
    perm = reverse_cuthill_mckee(sp.csr_matrix(graph), symmetric_mode=True)
    remap = np.empty(n, dtype=np.int32)
    remap[perm] = np.arange(n, dtype=np.int32)
    return remap
