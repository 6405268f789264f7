"""pycutfemx.cutters.element_cutter
Classification of mesh entities by the sign of a nodal level-set field.
"""
from __future__ import annotations
import logging
import re
from typing import FrozenSet

import numpy as np

from pycutfemx.core.sideconvention import INTERFACE_TOL, SIDE
from pycutfemx.utils.bitset import BitSet

logger = logging.getLogger(__name__)

INSIDE, INTERSECTED, OUTSIDE = -1, 0, 1

_ATOMS = {
    "phi<0": frozenset({INSIDE}),
    "phi>0": frozenset({OUTSIDE}),
    "phi=0": frozenset({INTERSECTED}),
    "phi<=0": frozenset({INSIDE, INTERSECTED}),
    "phi>=0": frozenset({OUTSIDE, INTERSECTED}),
}


def parse_predicate(predicate: str) -> FrozenSet[int]:
    """Classes selected by a predicate such as ``"phi<0 and phi=0"``.

    Terms joined by ``and`` select the union of their classes, so
    ``"phi<0 and phi=0"`` is the closed negative region.
    """
    terms = [t.replace(" ", "") for t in re.split(r"\band\b", str(predicate))]
    classes = set()
    for t in terms:
        if t not in _ATOMS:
            raise ValueError(f"Unknown level-set predicate '{t}' in '{predicate}'.")
        classes |= _ATOMS[t]
    return frozenset(classes)


def classify_values(values: np.ndarray, tol: float = INTERFACE_TOL) -> np.ndarray:
    """Class of each row of nodal values (shape (num_entities, nodes_per_entity)).

    All values below ``-tol`` -> INSIDE, all above ``tol`` -> OUTSIDE,
    anything else (mixed signs or a value within the band) -> INTERSECTED.
    """
    values = np.atleast_2d(np.asarray(values, dtype=float))
    out = np.full(values.shape[0], INTERSECTED, dtype=np.int8)
    if values.shape[1] == 0:
        return out
    out[SIDE.is_neg(values, tol).all(axis=1)] = INSIDE
    out[SIDE.is_pos(values, tol).all(axis=1)] = OUTSIDE
    return out


def entity_values(level_set, dim: int) -> np.ndarray:
    """Level-set values on the nodes of every local entity of dimension ``dim``.

    Cells use all dofs of the level-set element; lower-dimensional entities
    use the values at their vertices.
    """
    V = level_set.function_space
    mesh = V.mesh
    if dim == mesh.tdim:
        return level_set.x[V.dofmap]
    return level_set.x[mesh.entity_nodes(dim)]


def classify_entities(level_set, dim: int, include_ghost: bool = False,
                      tol: float = INTERFACE_TOL) -> np.ndarray:
    """INSIDE / INTERSECTED / OUTSIDE for the local entities of dimension ``dim``."""
    topology = level_set.function_space.mesh.topology
    if dim not in (0, topology.dim):
        # collective the first time edges/faces are needed
        topology.create_entities(dim)
    n = topology.num_entities(dim, include_ghost)
    return classify_values(entity_values(level_set, dim)[:n], tol)


def locate_entities(level_set, dim: int, predicate: str, include_ghost: bool = False,
                    tol: float = INTERFACE_TOL) -> np.ndarray:
    """Ascending local indices of the entities of dimension ``dim`` matching ``predicate``."""
    classes = parse_predicate(predicate)
    cls = classify_entities(level_set, dim, include_ghost, tol)
    selected = BitSet(np.zeros(cls.shape, dtype=bool))
    for c in sorted(classes):
        selected = selected | BitSet(cls == c)
    logger.debug("locate_entities(dim=%d, '%s'): %d of %d", dim, predicate,
                 selected.cardinality(), len(selected))
    return selected.to_indices()
