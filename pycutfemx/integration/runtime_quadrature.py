"""pycutfemx.integration.runtime_quadrature
Quadrature rules generated at run time on the cut parts of background cells.

Rules live in the reference coordinates of their background cell. One
background cell may be cut into several fragments; their rules are merged
so that every cell carries a single rule.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from pycutfemx.core.cell_types import CellType
from pycutfemx.core.sideconvention import INTERFACE_TOL
from pycutfemx.cutters.cut_cells import CutCell, cut_reference_entities
from pycutfemx.cutters.element_cutter import locate_entities
from pycutfemx.fem.transform import det_jacobian, facet_scale, jacobian, x_mapping
from pycutfemx.integration.quadrature import interval_rule, map_simplex_rule, tri_rule
from pycutfemx.utils.bitset import array_cache_token

logger = logging.getLogger(__name__)


@dataclass
class QuadratureRule:
    points: np.ndarray                   # (num_points, tdim)
    weights: np.ndarray                  # (num_points,)
    normals: Optional[np.ndarray] = None  # (num_points, tdim), interface rules only

    @property
    def num_points(self) -> int:
        return int(self.weights.size)

    @property
    def is_interface(self) -> bool:
        return self.normals is not None

    @property
    def cache_token(self) -> str:
        return array_cache_token(self.points)

    def merge(self, other: "QuadratureRule") -> "QuadratureRule":
        if self.is_interface != other.is_interface:
            raise ValueError("Cannot merge an interface rule with a volume rule.")
        normals = None
        if self.is_interface:
            normals = np.concatenate([self.normals, other.normals])
        return QuadratureRule(np.concatenate([self.points, other.points]),
                              np.concatenate([self.weights, other.weights]), normals)


class QuadratureRules(Dict[int, QuadratureRule]):
    """Local cell index -> merged runtime rule of that cell."""

    def add(self, cell: int, rule: QuadratureRule) -> None:
        cell = int(cell)
        self[cell] = self[cell].merge(rule) if cell in self else rule

    def cells(self) -> np.ndarray:
        return np.array(sorted(self), dtype=np.int32)

    def num_points(self) -> int:
        return sum(r.num_points for r in self.values())

    def physical_points(self, mesh) -> Dict[int, np.ndarray]:
        return physical_points(self, mesh)

    def total_measure(self, mesh) -> float:
        return total_measure(self, mesh)


def empty_rule(tdim: int, interface: bool = False) -> QuadratureRule:
    return QuadratureRule(np.empty((0, tdim)), np.empty(0),
                          np.empty((0, tdim)) if interface else None)


def make_quadrature(cut_cell: CutCell, order: int) -> QuadratureRule:
    """Rule exact to degree ``order`` on the (affine) fragments of one cut cell."""
    P = cut_cell.vertex_coords
    tdim = cut_cell.gdim
    interface = cut_cell.normals is not None
    if cut_cell.cell_type == CellType.triangle:
        ref_pts, ref_w = tri_rule(int(order))
    elif cut_cell.cell_type == CellType.interval:
        ref_pts, ref_w = interval_rule(int(order))
    elif cut_cell.cell_type == CellType.point:
        ref_pts, ref_w = np.zeros((1, 0)), np.ones(1)
    else:
        raise KeyError(f"No runtime quadrature for {cut_cell.cell_type} fragments.")

    rule = empty_rule(tdim, interface)
    for f, verts in enumerate(cut_cell.connectivity):
        if cut_cell.cell_type == CellType.point:
            pts, wts = P[verts].copy(), ref_w.copy()
        else:
            pts, wts = map_simplex_rule(P[verts], ref_pts, ref_w)
        normals = np.tile(cut_cell.normals[f], (wts.size, 1)) if interface else None
        rule = rule.merge(QuadratureRule(pts, wts, normals))
    return rule


def runtime_quadrature(level_set, predicate: str, order: int, rules: QuadratureRules,
                       tol: float = INTERFACE_TOL) -> QuadratureRules:
    """Add rules for the part ``predicate`` of every intersected owned cell to ``rules``.

    ``"phi<0"`` / ``"phi>0"`` give volume rules, ``"phi=0"`` interface rules
    whose points carry the reference unit normal pointing to phi > 0.
    """
    mesh = level_set.function_space.mesh
    cells = locate_entities(level_set, mesh.tdim, "phi=0", include_ghost=False, tol=tol)
    cut = cut_reference_entities(level_set, cells, mesh.tdim, predicate, tol=tol)
    for cc in cut:
        rules.add(cc.parent, make_quadrature(cc, order))
    logger.debug("runtime quadrature '%s' order %d: %d cut cells, %d rules, %d points",
                 predicate, order, cells.size, len(rules), rules.num_points())
    return rules


def physical_points(rules: QuadratureRules, mesh) -> Dict[int, np.ndarray]:
    """Quadrature points of every rule mapped to physical coordinates."""
    cmap = mesh.geometry.cmap
    return {c: x_mapping(cmap, mesh.cell_coordinates(c), r.points)
            for c, r in sorted(rules.items()) if r.num_points}


def total_measure(rules: QuadratureRules, mesh) -> float:
    """Physical measure integrated by all rules (area, or length for interface rules)."""
    cmap = mesh.geometry.cmap
    total = 0.0
    for c, r in sorted(rules.items()):
        if r.num_points == 0:
            continue
        J = jacobian(cmap, mesh.cell_coordinates(c), r.points)
        scale = facet_scale(J, r.normals) if r.is_interface else det_jacobian(J)
        total += float(np.dot(r.weights, scale))
    return total
