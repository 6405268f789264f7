"""pycutfemx.fem.function
Lagrange function spaces on a mesh and nodal functions living on them.
"""
from __future__ import annotations
import logging
from typing import Callable, Optional

import numpy as np

from pycutfemx.fem.element import LagrangeElement
from pycutfemx.fem.transform import inverse_mapping

logger = logging.getLogger(__name__)


class FunctionSpace:
    """Continuous Lagrange space of the mesh's cell type.

    Two degrees are available: the degree of the coordinate element (dofs
    are the geometry nodes) and degree 1 (dofs are the vertices, which are
    the first geometry nodes).
    """

    def __init__(self, mesh, degree: Optional[int] = None):
        self.mesh = mesh
        cmap = mesh.geometry.cmap
        degree = cmap.degree if degree is None else int(degree)
        self.element = LagrangeElement(mesh.cell_type, degree)
        if degree == cmap.degree:
            self.dofmap = mesh.geometry.dofmap
            self.num_dofs = mesh.geometry.num_nodes
        elif degree == 1:
            self.dofmap = np.ascontiguousarray(
                mesh.geometry.dofmap[:, cmap.dof_layout.vertex_dofs()])
            self.num_dofs = mesh.topology.index_map(0).size
        else:
            raise ValueError(f"Degree {degree} space on a degree-{cmap.degree} mesh is not "
                             f"supported; use 1 or {cmap.degree}.")

    def __repr__(self):
        return f"<FunctionSpace {self.element!r} ndofs={self.num_dofs}>"

    def tabulate_dof_coordinates(self) -> np.ndarray:
        return self.mesh.geometry.x[:self.num_dofs]

    def cell_dofs(self, cell: int) -> np.ndarray:
        return self.dofmap[cell]


class Function:
    """Nodal values on a :class:`FunctionSpace` (one value per local dof)."""

    def __init__(self, V: FunctionSpace, name: str = "f", x: Optional[np.ndarray] = None):
        self.function_space = V
        self.name = name
        self.x = np.zeros(V.num_dofs) if x is None else np.asarray(x, dtype=float).copy()
        if self.x.shape != (V.num_dofs,):
            raise ValueError(f"Expected {V.num_dofs} values, got shape {self.x.shape}.")

    def __repr__(self):
        return f"<Function '{self.name}' on {self.function_space!r}>"

    @property
    def element(self) -> LagrangeElement:
        return self.function_space.element

    def interpolate(self, f: Callable[[np.ndarray], np.ndarray]) -> "Function":
        """Nodal interpolation of ``f`` (vectorised over points of shape (n, gdim))."""
        pts = self.function_space.tabulate_dof_coordinates()
        self.x[:] = np.asarray(f(pts), dtype=float).reshape(-1)
        return self

    def cell_values(self, cell: int) -> np.ndarray:
        return self.x[self.function_space.dofmap[cell]]

    def eval_reference(self, cell: int, X: np.ndarray) -> np.ndarray:
        """Values at reference points ``X`` of one cell."""
        phi = self.element.tabulate(0, np.atleast_2d(X))[0]
        return phi @ self.cell_values(cell)


def interpolate_from_parent(cut_function: Function, background_function: Function,
                            parent_cells) -> Function:
    """Evaluate a background field at the dofs of a cut-mesh function.

    Every cut-mesh cell lies inside its parent background cell, so its dof
    coordinates are pulled back into the parent's reference cell and the
    background basis is evaluated there.
    """
    Vc = cut_function.function_space
    Vb = background_function.function_space
    parent_cells = np.asarray(parent_cells, dtype=np.int64)
    num_cut_cells = Vc.dofmap.shape[0]
    if parent_cells.size != num_cut_cells:
        raise ValueError(f"{parent_cells.size} parents given for {num_cut_cells} cut cells.")

    bg_mesh = Vb.mesh
    cmap = bg_mesh.geometry.cmap
    xc = Vc.tabulate_dof_coordinates()
    for c in range(num_cut_cells):
        dofs = Vc.dofmap[c]
        coords = bg_mesh.cell_coordinates(int(parent_cells[c]))
        X = inverse_mapping(cmap, coords, xc[dofs, :bg_mesh.gdim])
        cut_function.x[dofs] = background_function.eval_reference(int(parent_cells[c]), X)
    logger.debug("interpolated '%s' onto %d cut cells", background_function.name, num_cut_cells)
    return cut_function
