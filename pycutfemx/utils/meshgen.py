"""pycutfemx.utils.meshgen
Structured background meshes of rectangles, distributed over the ranks.
"""
from __future__ import annotations
import logging
from typing import Sequence, Tuple

import numpy as np
from mpi4py import MPI

from pycutfemx.core.cell_types import CellType, to_cell_type
from pycutfemx.core.mesh import Mesh, create_mesh
from pycutfemx.fem.element import LagrangeElement

logger = logging.getLogger(__name__)

__all__ = ["structured_rectangle", "create_rectangle", "create_unit_square"]


def structured_rectangle(p0: Sequence[float], p1: Sequence[float], nx: int, ny: int,
                         cell_type=CellType.triangle, degree: int = 1
                         ) -> Tuple[np.ndarray, np.ndarray]:
    """Global node coordinates and cells of a structured rectangle mesh.

    Every quad of the ``nx`` x ``ny`` grid is either kept or split into the
    triangles (v00, v10, v11) and (v00, v11, v01). Nodes lie on the
    ``degree``-refined lattice, numbered with x fastest; cell rows list them
    in the local node order of the Lagrange element.
    """
    cell_type = to_cell_type(cell_type)
    if cell_type not in (CellType.triangle, CellType.quadrilateral):
        raise KeyError(f"Rectangle meshes of {cell_type} cells are not available.")
    if nx < 1 or ny < 1:
        raise ValueError("Need at least one cell in each direction.")
    k = int(degree)
    element = LagrangeElement(cell_type, k)

    nfx, nfy = k * nx + 1, k * ny + 1
    xs = np.linspace(p0[0], p1[0], nfx)
    ys = np.linspace(p0[1], p1[1], nfy)
    X, Y = np.meshgrid(xs, ys)
    nodes = np.column_stack([X.ravel(), Y.ravel()])

    # fine-lattice offsets of the element nodes, in units of 1/k
    ref = np.rint(element.points * k).astype(np.int64)
    ey, ex = np.meshgrid(np.arange(ny), np.arange(nx), indexing="ij")
    base = np.column_stack([ex.ravel(), ey.ravel()]) * k            # (nx*ny, 2)

    if cell_type == CellType.quadrilateral:
        fine = base[:, None, :] + ref[None, :, :]
        cells = fine[..., 1] * nfx + fine[..., 0]
    else:
        # rows: V1 - V0 and V2 - V0 of the two triangles, in coarse units
        lower = np.array([[1, 0], [1, 1]])
        upper = np.array([[1, 1], [0, 1]])
        rows = []
        for M in (lower, upper):
            fine = base[:, None, :] + (ref @ M)[None, :, :]
            rows.append(fine[..., 1] * nfx + fine[..., 0])
        cells = np.stack(rows, axis=1).reshape(-1, element.dim)
    return nodes, cells.astype(np.int64)


def _block(n: int, rank: int, size: int) -> slice:
    return slice(rank * n // size, (rank + 1) * n // size)


def create_rectangle(comm, p0: Sequence[float], p1: Sequence[float], n: Sequence[int],
                     cell_type=CellType.triangle, degree: int = 1,
                     reorder: bool = False) -> Mesh:
    """Distributed structured mesh of the rectangle [p0, p1] (collective).

    Cells and node coordinates are split into contiguous blocks over the
    ranks; every rank generates the global grid, so this is meant for
    background meshes of moderate size.
    """
    nx, ny = int(n[0]), int(n[1])
    nodes, cells = structured_rectangle(p0, p1, nx, ny, cell_type, degree)
    element = LagrangeElement(cell_type, degree)
    my_cells = cells[_block(cells.shape[0], comm.rank, comm.size)]
    my_nodes = nodes[_block(nodes.shape[0], comm.rank, comm.size)]
    logger.debug("rectangle %dx%d %s P%d: rank %d holds %d cells, %d node coordinates",
                 nx, ny, cell_type, degree, comm.rank, my_cells.shape[0], my_nodes.shape[0])
    return create_mesh(comm, my_cells, element, my_nodes, my_nodes.shape, reorder=reorder)


def create_unit_square(comm, nx: int, ny: int, cell_type=CellType.triangle, degree: int = 1
                       ) -> Mesh:
    return create_rectangle(MPI.COMM_WORLD if comm is None else comm,
                            (0.0, 0.0), (1.0, 1.0), (nx, ny), cell_type, degree)
