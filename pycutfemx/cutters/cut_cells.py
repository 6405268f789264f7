"""pycutfemx.cutters.cut_cells
Linear cutting of 2-D cells (triangles, quadrilaterals) and their facets.

A cell is cut through the linear interpolant of its vertex level-set
values; quadrilaterals are first split into the reference triangles
(0, 1, 3) and (0, 3, 2). Fragments are returned in the reference
coordinates of the entity that was cut, or mapped to physical space by
:func:`cut_entities`. Interface segments carry the unit normal (in the
same coordinates) of the interpolant's gradient, i.e. pointing to phi > 0.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import cKDTree

from pycutfemx.core import cell_types as ct_
from pycutfemx.core.cell_types import CellType
from pycutfemx.core.sideconvention import INTERFACE_TOL, SIDE
from pycutfemx.fem.transform import x_mapping

logger = logging.getLogger(__name__)

# fragments with a measure below this fraction of the cut entity are dropped
DEGENERATE_TOL = 1e-14

_SPLIT = {
    CellType.triangle: ((0, 1, 2),),
    CellType.quadrilateral: ((0, 1, 3), (0, 3, 2)),
}


@dataclass
class CutCell:
    """All fragments cut out of one parent entity."""
    parent: int
    cell_type: CellType                  # type of the fragments
    vertex_coords: np.ndarray            # (num_vertices, gdim)
    connectivity: np.ndarray             # (num_fragments, vertices per fragment)
    normals: Optional[np.ndarray] = None  # (num_fragments, gdim), interface fragments only

    @property
    def gdim(self) -> int:
        return self.vertex_coords.shape[1]

    @property
    def num_fragments(self) -> int:
        return self.connectivity.shape[0]

    def fragment_measures(self) -> np.ndarray:
        P = self.vertex_coords[self.connectivity]          # (nf, nv, gdim)
        return np.array([_measure(p) for p in P])

    def volume(self) -> float:
        return float(self.fragment_measures().sum())


@dataclass
class CutMesh:
    """Fragments of many cells merged into one vertex set."""
    cell_type: CellType
    vertex_coords: np.ndarray            # (num_vertices, gdim)
    connectivity: List[List[int]]
    parent_cell_index: np.ndarray
    gdim: int


# --------------------------------------------------------------------
#  Geometry of simplices in any embedding dimension
# --------------------------------------------------------------------
def _measure(P: np.ndarray) -> float:
    """Length / area of a segment or triangle with vertices P (k, gdim)."""
    if P.shape[0] == 1:
        return 0.0
    E = (P[1:] - P[0]).T                                   # (gdim, k-1)
    G = E.T @ E
    vol = np.sqrt(max(np.linalg.det(G), 0.0))
    return vol / 2.0 if P.shape[0] == 3 else vol


def _edge_point(pa, pb, sa, sb):
    """Zero of the linear interpolant on [pa, pb]; independent of edge direction."""
    if sa > sb:
        pa, pb, sa, sb = pb, pa, sb, sa
    t = sa / (sa - sb)
    return pa + t * (pb - pa)


def _crosses(sa, sb) -> bool:
    return (sa < 0.0 < sb) or (sb < 0.0 < sa)


def _clip(P: np.ndarray, s: np.ndarray) -> np.ndarray:
    """Part of the polygon P (k, d) where the interpolant of s is <= 0."""
    out = []
    k = P.shape[0]
    for i in range(k):
        a, b = i, (i + 1) % k
        if s[a] <= 0.0:
            out.append(P[a])
        if _crosses(s[a], s[b]):
            out.append(_edge_point(P[a], P[b], s[a], s[b]))
    return np.array(out).reshape(-1, P.shape[1])


def _clip_segment(P: np.ndarray, s: np.ndarray) -> Optional[np.ndarray]:
    if s[0] <= 0.0 and s[1] <= 0.0:
        return P.copy()
    if _crosses(s[0], s[1]):
        x = _edge_point(P[0], P[1], s[0], s[1])
        return np.array([P[0], x]) if s[0] < 0.0 else np.array([x, P[1]])
    return None


def _gradient(P: np.ndarray, s: np.ndarray) -> np.ndarray:
    """Gradient of the linear interpolant on the triangle P (3, 2)."""
    M = np.array([P[1] - P[0], P[2] - P[0]])
    return np.linalg.solve(M, np.array([s[1] - s[0], s[2] - s[0]]))


def _interface_segment(P: np.ndarray, s: np.ndarray) -> Optional[np.ndarray]:
    """Zero level of the interpolant on triangle P, or None.

    A zero edge is kept only by the triangle whose third vertex is negative,
    so an interface running along a shared edge is produced once.
    """
    zero = s == 0.0
    if zero.all():
        return None
    if zero.sum() == 2:
        third = int(np.flatnonzero(~zero)[0])
        if s[third] > 0.0:
            return None
        return P[zero].copy()
    pts = [P[i] for i in range(3) if zero[i]]
    for a, b in ((0, 1), (1, 2), (2, 0)):
        if _crosses(s[a], s[b]):
            pts.append(_edge_point(P[a], P[b], s[a], s[b]))
    if len(pts) != 2:
        return None
    return np.array(pts)


# --------------------------------------------------------------------
#  Cutting one entity
# --------------------------------------------------------------------
def _cut_cell(cell_type: CellType, s: np.ndarray, side: str, parent: int) -> Optional[CutCell]:
    X = ct_.reference_vertices(cell_type)
    ref = ct_.reference_volume(cell_type)
    verts, conn, normals = [], [], []
    for tri in _SPLIT[cell_type]:
        P, st = X[list(tri)], s[list(tri)]
        if side == "phi=0":
            seg = _interface_segment(P, st)
            if seg is None:
                continue
            if _measure(seg) <= DEGENERATE_TOL:
                logger.debug("cell %d: dropped degenerate interface segment", parent)
                continue
            g = _gradient(P, st)
            conn.append([len(verts), len(verts) + 1])
            verts.extend(seg)
            normals.append(g / np.linalg.norm(g))
            continue
        poly = _clip(P, st if side == "phi<0" else -st)
        for i in range(1, poly.shape[0] - 1):
            t = np.array([poly[0], poly[i], poly[i + 1]])
            if _measure(t) <= DEGENERATE_TOL * ref:
                logger.debug("cell %d: dropped zero-area fragment", parent)
                continue
            conn.append([len(verts), len(verts) + 1, len(verts) + 2])
            verts.extend(t)
    if not conn:
        return None
    return CutCell(parent=parent,
                   cell_type=CellType.interval if side == "phi=0" else CellType.triangle,
                   vertex_coords=np.array(verts), connectivity=np.array(conn, dtype=np.int64),
                   normals=np.array(normals) if side == "phi=0" else None)


def _cut_segments(segments: Sequence[np.ndarray], values: Sequence[np.ndarray], side: str,
                  parent: int) -> Optional[CutCell]:
    """Cut straight segments (cell facets or mesh edges) given by their end points."""
    verts, conn = [], []
    for P, s in zip(segments, values):
        if side == "phi=0":
            if (s == 0.0).all():
                continue
            pts = [P[i] for i in range(2) if s[i] == 0.0]
            if _crosses(s[0], s[1]):
                pts.append(_edge_point(P[0], P[1], s[0], s[1]))
            for p in pts:
                conn.append([len(verts)])
                verts.append(p)
            continue
        seg = _clip_segment(P, s if side == "phi<0" else -s)
        if seg is None or _measure(seg) <= DEGENERATE_TOL * _measure(P):
            continue
        conn.append([len(verts), len(verts) + 1])
        verts.extend(seg)
    if not conn:
        return None
    ftype = CellType.point if side == "phi=0" else CellType.interval
    return CutCell(parent=parent, cell_type=ftype, vertex_coords=np.array(verts),
                   connectivity=np.array(conn, dtype=np.int64))


def _side(predicate: str) -> str:
    side = str(predicate).replace(" ", "")
    if side not in ("phi<0", "phi>0", "phi=0"):
        raise ValueError(f"Cannot cut with predicate '{predicate}'; "
                         f"use 'phi<0', 'phi>0' or 'phi=0'.")
    return side


def _vertex_values(level_set, dim: int, entities: np.ndarray, tol: float) -> np.ndarray:
    V = level_set.function_space
    if dim == V.mesh.tdim:
        vdofs = V.element.dof_layout.vertex_dofs()
        vals = level_set.x[V.dofmap[entities][:, vdofs]]
    else:
        vals = level_set.x[V.mesh.entity_nodes(dim)[entities]]
    return SIDE.snap(vals, tol)


def cut_reference_entities(level_set, entities, dim: int, predicate: str,
                           cut_facets: bool = False, tol: float = INTERFACE_TOL) -> List[CutCell]:
    """Fragments of ``entities`` on the side ``predicate``, in reference coordinates.

    ``dim`` is the mesh dimension (cells are cut, or with ``cut_facets`` their
    facets, in the cell's reference coordinates) or 1 (mesh edges, cut in
    the edge's reference interval [0, 1]). Entities yielding nothing are
    omitted from the result.

    Cells are cut through their vertex values only, so the level set must
    live on a degree-1 space; the classifier would otherwise report cells
    whose interior dofs change sign as intersected.
    """
    side = _side(predicate)
    V = level_set.function_space
    if V.element.degree != 1:
        raise ValueError(f"Cutting needs a degree-1 level set, got degree {V.element.degree}.")
    mesh = V.mesh
    tdim = mesh.tdim
    if tdim != 2:
        raise KeyError(f"Cutting of {mesh.cell_type} cells is not available.")
    entities = np.asarray(entities, dtype=np.int64).reshape(-1)
    values = _vertex_values(level_set, dim, entities, tol)
    cell_type = mesh.cell_type

    out: List[CutCell] = []
    if dim == tdim and not cut_facets:
        for e, s in zip(entities, values):
            cc = _cut_cell(cell_type, s, side, int(e))
            if cc is not None:
                out.append(cc)
    elif dim == tdim:
        X = ct_.reference_vertices(cell_type)
        facets = ct_.sub_entities(cell_type, tdim - 1)
        for e, s in zip(entities, values):
            cc = _cut_segments([X[list(f)] for f in facets], [s[list(f)] for f in facets],
                               side, int(e))
            if cc is not None:
                out.append(cc)
    elif dim == 1:
        X = ct_.reference_vertices(CellType.interval)
        for e, s in zip(entities, values):
            cc = _cut_segments([X], [s], side, int(e))
            if cc is not None:
                out.append(cc)
    else:
        raise ValueError(f"Cannot cut entities of dimension {dim}.")
    logger.debug("cut %d entities of dim %d on '%s': %d non-empty", entities.size, dim,
                 side, len(out))
    return out


def cut_entities(level_set, entities, dim: int, predicate: str, cut_facets: bool = False,
                 tol: float = INTERFACE_TOL) -> List[CutCell]:
    """Same fragments as :func:`cut_reference_entities`, in physical coordinates."""
    mesh = level_set.function_space.mesh
    ref = cut_reference_entities(level_set, entities, dim, predicate, cut_facets, tol)
    out = []
    for cc in ref:
        if dim == mesh.tdim:
            coords = mesh.cell_coordinates(cc.parent)
            x = x_mapping(mesh.geometry.cmap, coords, cc.vertex_coords)
        else:
            xv = mesh.geometry.x[mesh.entity_nodes(dim)[cc.parent]]
            t = cc.vertex_coords[:, :1]
            x = (1.0 - t) * xv[0] + t * xv[1]
        out.append(CutCell(parent=cc.parent, cell_type=cc.cell_type, vertex_coords=x,
                           connectivity=cc.connectivity, normals=None))
    return out


# --------------------------------------------------------------------
#  Merging into one mesh
# --------------------------------------------------------------------
def merge_cut_cells(cut_cells: Sequence[CutCell], tol: float = 1e-10,
                    cell_type=None, gdim: Optional[int] = None) -> CutMesh:
    """Merge fragments into a :class:`CutMesh`; vertices closer than ``tol`` coincide.

    Fragments that lose a vertex to the merge (slivers thinner than ``tol``)
    are dropped together with their parent entry. An empty ``cut_cells``
    gives an empty mesh of ``cell_type`` in ``gdim`` dimensions.
    """
    cut_cells = list(cut_cells)
    types = {cc.cell_type for cc in cut_cells}
    if cell_type is not None:
        types.add(ct_.to_cell_type(cell_type))
    if not types:
        raise ValueError("No cut cells to merge; the fragment type is undefined.")
    if len(types) != 1:
        raise ValueError(f"Cannot merge fragments of mixed types {sorted(map(str, types))}.")
    cell_type = types.pop()
    if cut_cells:
        gdim = cut_cells[0].gdim
    elif gdim is None:
        raise ValueError("No cut cells to merge; the geometric dimension is undefined.")
    if not cut_cells:
        return CutMesh(cell_type=cell_type, vertex_coords=np.empty((0, int(gdim))),
                       connectivity=[], parent_cell_index=np.empty(0, dtype=np.int32),
                       gdim=int(gdim))

    coords = np.concatenate([cc.vertex_coords for cc in cut_cells])
    shift = np.cumsum([0] + [cc.vertex_coords.shape[0] for cc in cut_cells[:-1]])
    conn = np.concatenate([cc.connectivity + o for cc, o in zip(cut_cells, shift)])
    parents = np.concatenate([np.full(cc.num_fragments, cc.parent, dtype=np.int32)
                              for cc in cut_cells])

    pairs = cKDTree(coords).query_pairs(r=tol, output_type="ndarray")
    n = coords.shape[0]
    graph = coo_matrix((np.ones(pairs.shape[0]), (pairs[:, 0], pairs[:, 1])), shape=(n, n))
    num_merged, label = connected_components(graph, directed=False)
    first = np.full(num_merged, -1, dtype=np.int64)
    for i in range(n - 1, -1, -1):
        first[label[i]] = i

    conn = label[conn]
    s = np.sort(conn, axis=1)
    keep = np.all(s[:, 1:] != s[:, :-1], axis=1)
    if not keep.all():
        logger.debug("dropped %d fragments collapsed by the merge", int((~keep).sum()))
    conn, parents = conn[keep], parents[keep]
    used, conn = np.unique(conn.ravel(), return_inverse=True)
    conn = conn.reshape(-1, s.shape[1])
    merged = coords[first[used]]
    logger.debug("merged %d fragment vertices into %d", n, merged.shape[0])
    return CutMesh(cell_type=cell_type, vertex_coords=merged, connectivity=conn.tolist(),
                   parent_cell_index=parents, gdim=gdim)
