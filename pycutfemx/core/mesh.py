"""pycutfemx.core.mesh
Distributed meshes: geometry + topology, and the construction entry points.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from pycutfemx.core import cell_types as ct_
from pycutfemx.core.cell_types import to_cell_type
from pycutfemx.core.dualgraph import build_local_dual_graph, extract_topology, reorder_cells
from pycutfemx.core.topology import Topology, create_topology
from pycutfemx.fem.element import LagrangeElement
from pycutfemx.utils.parallel import distribute_data, global_offset

logger = logging.getLogger(__name__)


@dataclass
class Geometry:
    """Node coordinates and the cell -> node dofmap of one rank.

    Nodes ``0 .. num_vertices-1`` coincide with the topology vertices (same
    local index); higher-order nodes follow.
    """
    x: np.ndarray                      # (num_nodes, gdim)
    dofmap: np.ndarray                 # (num_cells, nodes_per_cell), local node indices
    cmap: LagrangeElement
    input_global_indices: np.ndarray   # input global index of every local node

    @property
    def dim(self) -> int:
        return self.x.shape[1]

    @property
    def num_nodes(self) -> int:
        return self.x.shape[0]


class Mesh:
    def __init__(self, comm, topology: Topology, geometry: Geometry):
        self.comm = comm
        self.topology = topology
        self.geometry = geometry

    def __repr__(self):
        return (f"<Mesh {self.cell_type} cells={self.num_cells()} nodes={self.geometry.num_nodes} "
                f"gdim={self.gdim} rank={self.comm.rank}/{self.comm.size}>")

    @property
    def cell_type(self):
        return self.topology.cell_type

    @property
    def tdim(self) -> int:
        return self.topology.dim

    @property
    def gdim(self) -> int:
        return self.geometry.dim

    def num_cells(self, include_ghost: bool = True) -> int:
        return self.topology.num_entities(self.tdim, include_ghost)

    def cell_coordinates(self, cell: int) -> np.ndarray:
        """Coordinate dofs of one cell, shape (nodes_per_cell, gdim)."""
        return self.geometry.x[self.geometry.dofmap[cell]]

    def entity_nodes(self, dim: int) -> np.ndarray:
        """Geometry nodes of the vertices of every entity of dimension ``dim``."""
        if dim == self.tdim:
            vdofs = self.geometry.cmap.dof_layout.vertex_dofs()
            return self.geometry.dofmap[:, vdofs]
        if dim == 0:
            return np.arange(self.topology.index_map(0).size).reshape(-1, 1)
        self.topology.create_entities(dim)
        return self.topology.connectivity(dim, 0).as_2d().astype(np.int64)


def create_geometry(comm, topology: Topology, element: LagrangeElement, nodes: np.ndarray,
                    x, gdim: int) -> Geometry:
    """Fetch the coordinates of every node used by this rank's cells (collective).

    ``nodes`` are the input global node indices per cell; ``x`` is this
    rank's contiguous shard of the global coordinate array.
    """
    nodes = np.asarray(nodes, dtype=np.int64).reshape(-1, element.dim)
    vertex_ids = topology.input_vertex_indices
    others = np.setdiff1d(np.unique(nodes), vertex_ids)
    node_ids = np.concatenate([vertex_ids, others]).astype(np.int64)

    coords = distribute_data(comm, node_ids, x, gdim)

    sorter = np.argsort(node_ids, kind="stable")
    dofmap = sorter[np.searchsorted(node_ids, nodes, sorter=sorter)].astype(np.int32)
    logger.debug("geometry on rank %d: %d nodes (%d vertices), gdim=%d",
                 comm.rank, node_ids.size, vertex_ids.size, gdim)
    return Geometry(x=coords, dofmap=dofmap.reshape(nodes.shape), cmap=element,
                    input_global_indices=node_ids)


def create_mesh(comm, cells, element: LagrangeElement, x, xshape, reorder: bool = False) -> Mesh:
    """Distributed mesh from cells already distributed over the ranks (collective).

    ``cells`` are the input global node indices of this rank's cells (flat or
    one row per cell), ``x`` this rank's shard of the node coordinates with
    shape ``xshape = (num_local_nodes, gdim)``. Cells are used as given, no
    repartitioning; with ``reorder=True`` the owned cells are renumbered by
    reverse Cuthill-McKee on the local dual graph.
    """
    cells = np.asarray(cells, dtype=np.int64)
    x = np.asarray(x, dtype=float)
    ndofs = element.dim
    if cells.size % ndofs:
        raise ValueError(f"Connectivity length {cells.size} is not a multiple of the "
                         f"{ndofs} nodes per {element.cell_type} cell.")
    xshape = tuple(int(s) for s in xshape)
    if len(xshape) != 2 or x.size != xshape[0] * xshape[1]:
        raise ValueError(f"Coordinates of size {x.size} do not match shape {xshape}.")
    if xshape[1] < element.tdim:
        raise ValueError(f"Geometric dimension {xshape[1]} below topological dimension "
                         f"{element.tdim}.")
    cells = cells.reshape(-1, ndofs)
    x = x.reshape(xshape)

    cell_type = element.cell_type
    vertex_cells = extract_topology(cell_type, element.dof_layout, cells)
    dual = build_local_dual_graph(cell_type, vertex_cells)

    num_cells = cells.shape[0]
    original_idx = global_offset(comm, num_cells) + np.arange(num_cells, dtype=np.int64)
    if reorder:
        remap = reorder_cells(dual.graph)
        perm = np.argsort(remap)
        cells, vertex_cells, original_idx = cells[perm], vertex_cells[perm], original_idx[perm]

    topology = create_topology(comm, vertex_cells, original_idx, np.empty(0, dtype=np.int32),
                               cell_type, dual.boundary_vertices)

    layout = element.dof_layout
    for d in range(1, element.tdim):
        if layout.num_entity_dofs(d) > 0:
            topology.create_entities(d)
    if element.needs_dof_permutations:
        topology.create_entity_permutations()

    geometry = create_geometry(comm, topology, element, cells, x, xshape[1])
    mesh = Mesh(comm, topology, geometry)
    logger.debug("created %r", mesh)
    return mesh


def create_mesh_from_connectivity(comm, vertex_coordinates, connectivity: Sequence[Sequence[int]],
                                  cell_type, gdim: int) -> Mesh:
    """Degree-1 mesh from per-rank vertices and a ragged cell -> vertex list (collective).

    Vertex indices in ``connectivity`` index this rank's
    ``vertex_coordinates`` (flat, ``gdim`` values per vertex); they are
    shifted to a global numbering by the prefix sum of the vertex counts.
    """
    cell_type = to_cell_type(cell_type)
    nv = ct_.num_vertices(cell_type)
    coords = np.asarray(vertex_coordinates, dtype=float)
    if coords.size % gdim:
        raise ValueError(f"{coords.size} coordinate values do not form points of dimension {gdim}.")
    coords = coords.reshape(-1, gdim)
    for i, c in enumerate(connectivity):
        if len(c) != nv:
            raise ValueError(f"Cell {i} has {len(c)} vertices, {cell_type} needs {nv}.")
    flat = (np.concatenate([np.asarray(c, dtype=np.int64) for c in connectivity])
            if len(connectivity) else np.empty(0, dtype=np.int64))
    if flat.size and (flat.min() < 0 or flat.max() >= coords.shape[0]):
        raise ValueError("Connectivity references a vertex outside the coordinate array.")

    offset = global_offset(comm, coords.shape[0])
    element = LagrangeElement(cell_type, 1)
    return create_mesh(comm, flat + offset, element, coords, coords.shape)


def create_cut_mesh(comm, cut_cells) -> Tuple[Mesh, np.ndarray]:
    """Mesh of cut fragments plus the background (parent) cell of every cell (collective).

    ``cut_cells`` is a :class:`~pycutfemx.cutters.cut_cells.CutMesh` or a
    sequence of :class:`~pycutfemx.cutters.cut_cells.CutCell`. Ranks without
    fragments contribute no cells; the fragment type and geometric dimension
    are agreed over ``comm`` first.
    """
    from pycutfemx.cutters.cut_cells import CutMesh, merge_cut_cells

    if isinstance(cut_cells, CutMesh):
        local = {(str(cut_cells.cell_type), int(cut_cells.gdim))}
    else:
        cut_cells = list(cut_cells)
        local = {(str(cc.cell_type), int(cc.gdim)) for cc in cut_cells}
    kinds = set().union(*comm.allgather(local))
    if len(kinds) != 1:
        what = "No rank has cut fragments" if not kinds else \
            f"Cut fragments of mixed kinds {sorted(kinds)}"
        raise ValueError(f"{what}; cannot build a cut mesh.")
    cell_type, gdim = kinds.pop()

    if not isinstance(cut_cells, CutMesh):
        cut_cells = merge_cut_cells(cut_cells, cell_type=cell_type, gdim=gdim)
    mesh = create_mesh_from_connectivity(comm, cut_cells.vertex_coords, cut_cells.connectivity,
                                         cell_type, gdim)
    parent = np.asarray(cut_cells.parent_cell_index, dtype=np.int32)
    logger.debug("cut mesh on rank %d: %d cells from %d parents", comm.rank,
                 parent.size, np.unique(parent).size)
    return mesh, parent
