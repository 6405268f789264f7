"""pycutfemx.fem.element
Lagrange finite elements and their degree-of-freedom layout.
"""
from __future__ import annotations
from dataclasses import dataclass
from functools import cached_property
from hashlib import blake2b
from typing import Dict, List, Tuple

import numpy as np

from pycutfemx.core import cell_types as ct_
from pycutfemx.core.cell_types import CellType, to_cell_type
from pycutfemx.fem.reference import get_reference


@dataclass(frozen=True)
class ElementDofLayout:
    """Which local dofs live on which sub-entity of the reference cell.

    ``entity_dofs[d][i]`` lists the local dofs in the interior of sub-entity
    ``i`` of dimension ``d``.
    """
    num_dofs: int
    entity_dofs: Tuple[Tuple[Tuple[int, ...], ...], ...]

    def num_entity_dofs(self, dim: int) -> int:
        ent = self.entity_dofs[dim]
        return len(ent[0]) if ent else 0

    def vertex_dofs(self) -> np.ndarray:
        """Position of each vertex in the local node ordering."""
        return np.array([d[0] for d in self.entity_dofs[0]], dtype=np.int64)


def _entity_of_point(cell_type: CellType, x: np.ndarray, tol: float = 1e-12) -> Tuple[int, int]:
    """(dim, index) of the lowest-dimensional sub-entity whose interior holds x."""
    X = ct_.reference_vertices(cell_type)
    tdim = ct_.topological_dimension(cell_type)
    if ct_.is_simplex(cell_type):
        lam = np.concatenate([[1.0 - x.sum()], x])
        verts = frozenset(int(v) for v in np.flatnonzero(lam > tol))
    else:
        # a vertex is in the closure of the entity if it agrees with x on every
        # coordinate where x sits on the boundary of [0,1]
        fixed = [(d, x[d]) for d in range(tdim) if abs(x[d]) <= tol or abs(x[d] - 1.0) <= tol]
        verts = frozenset(v for v in range(X.shape[0])
                          if all(abs(X[v, d] - val) <= tol for d, val in fixed))
    for dim in range(tdim + 1):
        for i, ent in enumerate(ct_.sub_entities(cell_type, dim)):
            if frozenset(ent) == verts:
                return dim, i
    raise RuntimeError(f"Point {x} not located on reference {cell_type}.")


class LagrangeElement:
    """Continuous Lagrange element of a given degree on one cell type.

    Degrees of freedom are point evaluations at an equispaced lattice; the
    lattice order is the local node order used by cell connectivity tables.
    """
    family = "P"

    def __init__(self, cell_type, degree: int = 1):
        self.cell_type = to_cell_type(cell_type)
        self.degree = int(degree)
        if self.degree < 1:
            raise ValueError("Lagrange degree must be >= 1.")
        self.tdim = ct_.topological_dimension(self.cell_type)
        self._ref = get_reference(self.cell_type, self.degree)

    def __repr__(self):
        return f"<LagrangeElement {self.family}{self.degree} on {self.cell_type}>"

    def __eq__(self, other):
        return isinstance(other, LagrangeElement) and self.hash() == other.hash()

    def __hash__(self):
        return self.hash()

    @property
    def dim(self) -> int:
        return self._ref.ndofs

    @property
    def points(self) -> np.ndarray:
        """Reference coordinates of the nodes, shape (dim, tdim)."""
        return self._ref.points

    def hash(self) -> int:
        """Stable 64-bit identifier of (family, cell, degree)."""
        h = blake2b(digest_size=8)
        h.update(f"{self.family}|{self.cell_type.value}|{self.degree}".encode())
        return int.from_bytes(h.digest(), "little") & 0x7FFFFFFFFFFFFFFF

    def tabulate(self, nderivs: int, points: np.ndarray) -> np.ndarray:
        """Tabulation of shape (num_derivs, num_points, dim)."""
        return self._ref.tabulate(nderivs, points)

    @cached_property
    def dof_layout(self) -> ElementDofLayout:
        entity: Dict[int, Dict[int, List[int]]] = {
            d: {i: [] for i in range(ct_.num_sub_entities(self.cell_type, d))}
            for d in range(self.tdim + 1)
        }
        for k, x in enumerate(self.points):
            d, i = _entity_of_point(self.cell_type, x)
            entity[d][i].append(k)
        dofs = tuple(tuple(tuple(entity[d][i]) for i in sorted(entity[d]))
                     for d in range(self.tdim + 1))
        return ElementDofLayout(num_dofs=self.dim, entity_dofs=dofs)

    @property
    def needs_dof_permutations(self) -> bool:
        """True when some shared sub-entity carries more than one dof.

        Such dofs must be reordered consistently between neighbouring cells,
        which requires entity permutation data on the topology.
        """
        layout = self.dof_layout
        return any(layout.num_entity_dofs(d) > 1 for d in range(1, self.tdim))
