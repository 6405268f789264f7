"""pycutfemx.core.topology
Distributed mesh topology: index maps, connectivities, entities, permutations.

Ownership of anything shared between ranks (vertices, edges, faces) is
decided from canonical keys published by every rank: the lowest rank that
holds the entity in one of its owned cells owns it. Local numbering puts
owned, unshared entities first, then owned shared ones, then ghosts.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from pycutfemx.core import cell_types as ct_
from pycutfemx.core.cell_types import CellType, to_cell_type
from pycutfemx.core.dualgraph import build_local_dual_graph
from pycutfemx.utils.parallel import (as_key, check_collectively, exchange_requests,
                                      global_offset, interior_conflicts, sharing_ranks)

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------
#  Index maps and adjacency lists
# --------------------------------------------------------------------
@dataclass
class IndexMap:
    """Owned range ``[local_range[0], local_range[1])`` plus ghost global indices."""
    local_range: Tuple[int, int]
    ghosts: np.ndarray
    owners: np.ndarray
    size_global: int
    _g2l: Optional[Dict[int, int]] = field(default=None, repr=False, compare=False)

    @property
    def size_local(self) -> int:
        return int(self.local_range[1] - self.local_range[0])

    @property
    def num_ghosts(self) -> int:
        return int(self.ghosts.size)

    @property
    def size(self) -> int:
        return self.size_local + self.num_ghosts

    def local_to_global(self, local) -> np.ndarray:
        local = np.asarray(local, dtype=np.int64)
        if np.any((local < 0) | (local >= self.size)):
            raise IndexError(f"Local index out of range [0, {self.size}).")
        out = local + self.local_range[0]
        ghost = local >= self.size_local
        out[ghost] = self.ghosts[local[ghost] - self.size_local]
        return out

    def global_to_local(self, gidx) -> np.ndarray:
        if self._g2l is None:
            g2l = {int(g): self.size_local + i for i, g in enumerate(self.ghosts)}
            self._g2l = g2l
        gidx = np.atleast_1d(np.asarray(gidx, dtype=np.int64))
        start, end = self.local_range
        out = np.empty(gidx.size, dtype=np.int64)
        for i, g in enumerate(gidx):
            if start <= g < end:
                out[i] = g - start
            elif int(g) in self._g2l:
                out[i] = self._g2l[int(g)]
            else:
                raise KeyError(f"Global index {int(g)} is neither owned nor a ghost on this rank.")
        return out


class Connectivity:
    """Adjacency list stored as a flat array with offsets."""

    def __init__(self, array, offsets):
        self.array = np.asarray(array, dtype=np.int32)
        self.offsets = np.asarray(offsets, dtype=np.int64)

    @classmethod
    def from_array(cls, a):
        a = np.asarray(a)
        n, w = a.shape
        return cls(a.reshape(-1), np.arange(n + 1, dtype=np.int64) * w)

    @property
    def num_nodes(self) -> int:
        return self.offsets.size - 1

    def links(self, i: int) -> np.ndarray:
        if i < 0 or i >= self.num_nodes:
            raise IndexError(f"Node {i} out of range [0, {self.num_nodes}).")
        return self.array[self.offsets[i]:self.offsets[i + 1]]

    def as_2d(self) -> np.ndarray:
        """Dense (num_nodes, width) view; only for constant-width lists."""
        widths = np.diff(self.offsets)
        if widths.size and np.any(widths != widths[0]):
            raise ValueError("Connectivity does not have a constant number of links.")
        w = int(widths[0]) if widths.size else 0
        return self.array.reshape(self.num_nodes, w)

    def __repr__(self):
        return f"<Connectivity nodes={self.num_nodes} links={self.array.size}>"


# --------------------------------------------------------------------
#  Ownership and numbering of (possibly) shared entities
# --------------------------------------------------------------------
@dataclass
class EntityNumbering:
    local: np.ndarray            # local index of every input key
    global_indices: np.ndarray   # in local order
    owners: np.ndarray           # in local order (== rank for owned)
    shared: np.ndarray           # in local order
    size_local: int
    offset: int


def reconcile_owners(rank: int, gathered, keys, in_owned, candidate):
    """Owner rank and shared flag of every key known from owned cells.

    Pure function. ``gathered[r]`` is the candidate list published by rank
    ``r``; a candidate's owner is the lowest publishing rank. Keys that are
    owned-cell entities but not candidates belong to ``rank``. Keys only
    seen through ghost cells get owner ``None``.
    """
    keys = [as_key(k) for k in keys]
    published = [k for k, c in zip(keys, candidate) if c]
    sharers = sharing_ranks(gathered, published)
    owners, shared = [], []
    for k, o, c in zip(keys, in_owned, candidate):
        if c:
            s = sharers[k] or [rank]
            owners.append(min(s))
            shared.append(len(s) > 1)
        else:
            owners.append(rank if o else None)
            shared.append(False)
    return owners, np.array(shared, dtype=bool)


def _number_entities(comm, keys, in_owned, candidate, ghost_source, plural,
                     check_interior=False) -> EntityNumbering:
    rank = comm.rank
    keys = [as_key(k) for k in keys]
    n = len(keys)
    in_owned = np.asarray(in_owned, dtype=bool)
    candidate = np.asarray(candidate, dtype=bool) & in_owned

    gathered = comm.allgather([k for k, c in zip(keys, candidate) if c])
    if check_interior:
        interior = [k for k, o, c in zip(keys, in_owned, candidate) if o and not c]
        conflicts = interior_conflicts(rank, gathered, interior)
        check_collectively(comm, bool(conflicts),
                           f"{plural.capitalize()} interior to rank {rank} are reported "
                           f"as boundary {plural} by another rank: {conflicts[:5]}",
                           summary=f"Interior {plural} of another rank are reported as "
                                   f"boundary {plural}")

    owner_list, shared = reconcile_owners(rank, gathered, keys, in_owned, candidate)
    is_owned = np.array([o == rank for o in owner_list], dtype=bool)
    owner = np.array([rank if o is None else o for o in owner_list], dtype=np.int32)

    group = np.where(is_owned & ~shared, 0,
                     np.where(is_owned, 1, np.where(in_owned, 2, 3)))
    order = np.lexsort((np.arange(n), group))
    local = np.empty(n, dtype=np.int64)
    local[order] = np.arange(n)

    n_owned = int(is_owned.sum())
    offset = global_offset(comm, n_owned)
    gidx = np.zeros(n, dtype=np.int64)
    gidx[is_owned] = offset + local[is_owned]
    table = {keys[i]: (int(gidx[i]), rank) for i in np.flatnonzero(is_owned)}

    # shared entities owned elsewhere: ask the owner
    ask = np.flatnonzero(in_owned & ~is_owned)
    replies = exchange_requests(comm, owner[ask], [keys[i] for i in ask],
                                lambda src, k: table.get(k), what=f"shared {plural}")
    for i, rep in zip(ask, replies):
        gidx[i] = rep[0]
        table[keys[i]] = (rep[0], int(owner[i]))

    # entities seen only in ghost cells: ask the owner of such a cell
    ask = np.flatnonzero(~in_owned)
    replies = exchange_requests(comm, np.asarray(ghost_source)[ask], [keys[i] for i in ask],
                                lambda src, k: table.get(k), what=f"ghost {plural}")
    for i, rep in zip(ask, replies):
        gidx[i], owner[i] = rep

    return EntityNumbering(local=local, global_indices=gidx[order], owners=owner[order],
                           shared=(shared | ~is_owned)[order], size_local=n_owned,
                           offset=offset)


def _index_map(comm, numbering: EntityNumbering) -> IndexMap:
    n = numbering.size_local
    start = numbering.offset
    return IndexMap(local_range=(start, start + n),
                    ghosts=numbering.global_indices[n:].copy(),
                    owners=numbering.owners[n:].copy(),
                    size_global=int(comm.allreduce(n)))


# --------------------------------------------------------------------
#  Entity permutations
# --------------------------------------------------------------------
def triangle_rotation_reflection(v) -> Tuple[int, int]:
    """(rotations, reflection) bringing the lowest global vertex of a triangle first."""
    rots = int(np.argmin(v))
    pre = v[2] if rots == 0 else v[rots - 1]
    post = v[0] if rots == 2 else v[rots + 1]
    return rots, int(post > pre)


def quadrilateral_rotation_reflection(v) -> Tuple[int, int]:
    """Same as above for a quadrilateral in tensor-product vertex order."""
    rots = int(np.argmin(v))
    pre, post = 2, 1
    if rots == 1:
        post, pre, rots = 3, 0, 1
    elif rots == 2:
        post, pre, rots = 0, 3, 3
    elif rots == 3:
        post, pre, rots = 2, 1, 2
    return rots, int(v[post] > v[pre])


class Topology:
    """Mesh topology of one rank: owned cells first, ghost cells appended."""

    def __init__(self, comm, cell_type: CellType, vertex_map: IndexMap, cell_map: IndexMap,
                 cell_vertices: np.ndarray, original_cell_index: np.ndarray,
                 ghost_owners: np.ndarray, input_vertex_indices: np.ndarray,
                 shared_vertices: np.ndarray):
        self.comm = comm
        self.cell_type = cell_type
        self.dim = ct_.topological_dimension(cell_type)
        self.original_cell_index = original_cell_index
        self.ghost_owners = ghost_owners
        self.input_vertex_indices = input_vertex_indices
        self._shared_vertices = shared_vertices
        self._index_maps: Dict[int, IndexMap] = {0: vertex_map, self.dim: cell_map}
        self._connectivity: Dict[Tuple[int, int], Connectivity] = {
            (self.dim, 0): Connectivity.from_array(cell_vertices),
            (0, 0): Connectivity.from_array(np.arange(vertex_map.size).reshape(-1, 1)),
        }
        self._cell_permutation_info: Optional[np.ndarray] = None
        self._facet_permutations: Optional[np.ndarray] = None

    def __repr__(self):
        cmap = self._index_maps[self.dim]
        return (f"<Topology {self.cell_type} cells={cmap.size_local}+{cmap.num_ghosts} "
                f"vertices={self._index_maps[0].size}>")

    # -- queries -----------------------------------------------------
    def _check_dim(self, dim: int):
        if dim < 0 or dim > self.dim:
            raise IndexError(f"Entity dimension {dim} out of range [0, {self.dim}].")

    def index_map(self, dim: int) -> Optional[IndexMap]:
        self._check_dim(dim)
        return self._index_maps.get(dim)

    def connectivity(self, d0: int, d1: int) -> Optional[Connectivity]:
        self._check_dim(d0)
        self._check_dim(d1)
        return self._connectivity.get((d0, d1))

    def num_entities(self, dim: int, include_ghost: bool = True) -> int:
        imap = self.index_map(dim)
        if imap is None:
            raise RuntimeError(f"Entities of dimension {dim} have not been created.")
        return imap.size if include_ghost else imap.size_local

    @property
    def cell_vertices(self) -> np.ndarray:
        return self._connectivity[(self.dim, 0)].as_2d()

    def vertex_global_indices(self) -> np.ndarray:
        return self._index_maps[0].local_to_global(np.arange(self._index_maps[0].size))

    # -- entity creation -----------------------------------------------
    def create_entities(self, dim: int) -> bool:
        """Create edges/faces of dimension ``dim`` (collective). False if they exist."""
        self._check_dim(dim)
        if dim in self._index_maps:
            return False

        table = np.array(ct_.sub_entities(self.cell_type, dim), dtype=np.int64)
        ne, nev = table.shape
        cv = self.cell_vertices.astype(np.int64)
        nc = cv.shape[0]
        gv = self.vertex_global_indices()
        cmap = self._index_maps[self.dim]

        occ_vertices = cv[:, table].reshape(-1, nev)           # local vertices per occurrence
        occ_keys = np.sort(gv[occ_vertices], axis=1)
        if occ_keys.shape[0]:
            keys, first, inverse = np.unique(occ_keys, axis=0, return_index=True,
                                             return_inverse=True)
            inverse = np.asarray(inverse).reshape(-1)
        else:
            keys = np.empty((0, nev), dtype=np.int64)
            first = inverse = np.empty(0, dtype=np.int64)
        occ_cell = np.repeat(np.arange(nc), ne)
        owned_occ = occ_cell < cmap.size_local

        in_owned = np.zeros(keys.shape[0], dtype=bool)
        in_owned[inverse[owned_occ]] = True
        candidate = np.zeros(keys.shape[0], dtype=bool)
        candidate[inverse] = self._shared_vertices[occ_vertices].all(axis=1)
        ghost_source = np.full(keys.shape[0], self.comm.rank, dtype=np.int32)
        ghost_occ = ~owned_occ
        ghost_source[inverse[ghost_occ]] = self.ghost_owners[occ_cell[ghost_occ] - cmap.size_local]

        numbering = _number_entities(self.comm, keys, in_owned, candidate, ghost_source,
                                     plural=f"dim-{dim} entities")
        imap = _index_map(self.comm, numbering)

        e2v = np.empty((keys.shape[0], nev), dtype=np.int64)
        lv = occ_vertices[first]
        lv = np.take_along_axis(lv, np.argsort(gv[lv], axis=1), axis=1)
        e2v[numbering.local] = lv
        c2e = numbering.local[inverse].reshape(nc, ne)

        self._index_maps[dim] = imap
        self._connectivity[(self.dim, dim)] = Connectivity.from_array(c2e)
        self._connectivity[(dim, 0)] = Connectivity.from_array(e2v)
        self._connectivity[(dim, dim)] = Connectivity.from_array(
            np.arange(imap.size).reshape(-1, 1))
        logger.debug("created %d entities of dim %d (%d owned, %d ghosts)",
                     imap.size, dim, imap.size_local, imap.num_ghosts)
        return True

    # -- permutations ------------------------------------------------------
    def create_entity_permutations(self) -> None:
        """Per-cell orientation of edges/faces relative to their global vertex order.

        Cell info bits: in 3-D, face ``i`` uses bit ``3i`` (reflection) and bits
        ``3i+1, 3i+2`` (rotations); edge reflections follow the face bits. In
        2-D the edge reflection bits start at 0. Facet permutations hold the
        reflection of a 2-D facet or ``2*rotations + reflection`` of a 3-D facet.
        """
        if self._cell_permutation_info is not None:
            return
        tdim = self.dim
        for d in range(1, tdim):
            self.create_entities(d)

        gv = self.vertex_global_indices()
        cv = self.cell_vertices
        nc = cv.shape[0]
        info = np.zeros(nc, dtype=np.uint32)
        nfacets = ct_.num_sub_entities(self.cell_type, tdim - 1) if tdim > 0 else 0
        facet_perm = np.zeros((nc, nfacets), dtype=np.uint8)

        face_bits = 0
        if tdim == 3:
            faces = ct_.sub_entities(self.cell_type, 2)
            face_bits = 3 * len(faces)
            for c in range(nc):
                for i, face in enumerate(faces):
                    v = gv[cv[c, list(face)]]
                    if len(face) == 3:
                        rots, refl = triangle_rotation_reflection(v)
                    else:
                        rots, refl = quadrilateral_rotation_reflection(v)
                    info[c] |= np.uint32(refl << (3 * i))
                    info[c] |= np.uint32(rots << (3 * i + 1))
                    facet_perm[c, i] = 2 * rots + refl

        if tdim >= 2:
            edges = np.array(ct_.sub_entities(self.cell_type, 1), dtype=np.int64)
            ge = gv[cv[:, edges]]                      # (nc, nedges, 2)
            refl = (ge[:, :, 0] > ge[:, :, 1]).astype(np.uint32)
            for j in range(edges.shape[0]):
                info |= refl[:, j] << np.uint32(face_bits + j)
            if tdim == 2:
                facet_perm[:] = refl.astype(np.uint8)

        self._cell_permutation_info = info
        self._facet_permutations = facet_perm

    def get_cell_permutation_info(self) -> np.ndarray:
        if self._cell_permutation_info is None:
            raise RuntimeError("Call create_entity_permutations() first.")
        return self._cell_permutation_info

    def get_facet_permutations(self) -> np.ndarray:
        if self._facet_permutations is None:
            raise RuntimeError("Call create_entity_permutations() first.")
        return self._facet_permutations


# --------------------------------------------------------------------
#  Construction
# --------------------------------------------------------------------
def create_topology(comm, cells, original_cell_index, ghost_owners, cell_type,
                    boundary_vertices=None) -> Topology:
    """Build the distributed topology (collective).

    ``cells`` holds the input global vertex indices of every local cell,
    owned cells first and ``len(ghost_owners)`` ghost cells last.
    ``boundary_vertices`` are the vertices of facets seen once among the
    owned cells; computed from the local dual graph when omitted.
    """
    cell_type = to_cell_type(cell_type)
    nv = ct_.num_vertices(cell_type)
    cells = np.asarray(cells, dtype=np.int64)
    if cells.size % nv:
        raise ValueError(f"Cell vertex list of length {cells.size} is not a multiple of {nv}.")
    cells = cells.reshape(-1, nv)
    original_cell_index = np.asarray(original_cell_index, dtype=np.int64).reshape(-1)
    ghost_owners = np.asarray(ghost_owners, dtype=np.int32).reshape(-1)
    if original_cell_index.size != cells.shape[0]:
        raise ValueError("One original cell index per cell is required.")
    n_owned = cells.shape[0] - ghost_owners.size
    if n_owned < 0:
        raise ValueError("More ghost owners than cells.")
    if np.any(cells < 0):
        raise ValueError("Negative vertex index in cell connectivity.")

    if boundary_vertices is None:
        boundary_vertices = build_local_dual_graph(cell_type, cells[:n_owned]).boundary_vertices
    bverts = np.unique(np.asarray(boundary_vertices, dtype=np.int64))
    bverts = bverts[bverts >= 0]

    # vertices
    vertex_ids = np.unique(cells)
    in_owned = np.isin(vertex_ids, cells[:n_owned])
    candidate = np.isin(vertex_ids, bverts) & in_owned
    ghost_source = np.full(vertex_ids.size, comm.rank, dtype=np.int32)
    for c in range(cells.shape[0] - 1, n_owned - 1, -1):
        ghost_source[np.searchsorted(vertex_ids, cells[c])] = ghost_owners[c - n_owned]

    vnum = _number_entities(comm, vertex_ids, in_owned, candidate, ghost_source,
                            plural="vertices", check_interior=True)
    vertex_map = _index_map(comm, vnum)
    input_vertex_indices = np.empty_like(vertex_ids)
    input_vertex_indices[vnum.local] = vertex_ids
    cell_vertices = vnum.local[np.searchsorted(vertex_ids, cells)]

    # cells
    offset = global_offset(comm, n_owned)
    owned_cells = {int(o): offset + i for i, o in enumerate(original_cell_index[:n_owned])}
    replies = exchange_requests(comm, ghost_owners,
                                [int(o) for o in original_cell_index[n_owned:]],
                                lambda src, k: owned_cells.get(k), what="ghost cells")
    cell_map = IndexMap(local_range=(offset, offset + n_owned),
                        ghosts=np.array(replies, dtype=np.int64).reshape(-1),
                        owners=ghost_owners.copy(),
                        size_global=int(comm.allreduce(n_owned)))

    logger.debug("topology on rank %d: %d cells (%d ghosts), %d vertices (%d owned, "
                 "%d boundary candidates)", comm.rank, cells.shape[0], ghost_owners.size,
                 vertex_map.size, vertex_map.size_local, int(candidate.sum()))
    return Topology(comm, cell_type, vertex_map, cell_map, cell_vertices,
                    original_cell_index, ghost_owners, input_vertex_indices, vnum.shared)
