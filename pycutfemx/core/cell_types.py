"""pycutfemx.core.cell_types
Reference-cell tables: vertices, sub-entities and entity types.

Vertex and sub-entity numbering follows the usual simplex / tensor-product
conventions: for a triangle, edge *i* is opposite vertex *i*; quadrilateral
and hexahedron vertices are numbered lexicographically (x fastest).
"""
from __future__ import annotations
from enum import Enum
from functools import lru_cache
from typing import Tuple

import numpy as np


class CellType(str, Enum):
    point = "point"
    interval = "interval"
    triangle = "triangle"
    quadrilateral = "quadrilateral"
    tetrahedron = "tetrahedron"
    hexahedron = "hexahedron"

    def __str__(self):
        return self.value


_ALIASES = {
    "tri": CellType.triangle,
    "quad": CellType.quadrilateral,
    "tet": CellType.tetrahedron,
    "hex": CellType.hexahedron,
    "line": CellType.interval,
}


def to_cell_type(ct) -> CellType:
    """Accept a CellType, its value or one of the short names ('tri', 'quad', ...)."""
    if isinstance(ct, CellType):
        return ct
    name = str(ct).lower()
    if name in _ALIASES:
        return _ALIASES[name]
    try:
        return CellType(name)
    except ValueError:
        raise KeyError(f"Unknown cell type '{ct}'.") from None


_TDIM = {
    CellType.point: 0,
    CellType.interval: 1,
    CellType.triangle: 2,
    CellType.quadrilateral: 2,
    CellType.tetrahedron: 3,
    CellType.hexahedron: 3,
}

_VERTICES = {
    CellType.point: ((),),
    CellType.interval: ((0.0,), (1.0,)),
    CellType.triangle: ((0.0, 0.0), (1.0, 0.0), (0.0, 1.0)),
    CellType.quadrilateral: ((0.0, 0.0), (1.0, 0.0), (0.0, 1.0), (1.0, 1.0)),
    CellType.tetrahedron: ((0.0, 0.0, 0.0), (1.0, 0.0, 0.0),
                           (0.0, 1.0, 0.0), (0.0, 0.0, 1.0)),
    CellType.hexahedron: ((0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (1.0, 1.0, 0.0),
                          (0.0, 0.0, 1.0), (1.0, 0.0, 1.0), (0.0, 1.0, 1.0), (1.0, 1.0, 1.0)),
}

# Local vertex indices of every sub-entity of dimension 1 and 2.
_EDGE_TABLE = {
    CellType.interval: ((0, 1),),
    CellType.triangle: ((1, 2), (0, 2), (0, 1)),
    CellType.quadrilateral: ((0, 1), (0, 2), (1, 3), (2, 3)),
    CellType.tetrahedron: ((2, 3), (1, 3), (1, 2), (0, 3), (0, 2), (0, 1)),
    CellType.hexahedron: ((0, 1), (0, 2), (0, 4), (1, 3), (1, 5), (2, 3),
                          (2, 6), (3, 7), (4, 5), (4, 6), (5, 7), (6, 7)),
}

_FACE_TABLE = {
    CellType.triangle: ((0, 1, 2),),
    CellType.quadrilateral: ((0, 1, 2, 3),),
    CellType.tetrahedron: ((1, 2, 3), (0, 2, 3), (0, 1, 3), (0, 1, 2)),
    CellType.hexahedron: ((0, 1, 2, 3), (0, 1, 4, 5), (0, 2, 4, 6),
                          (1, 3, 5, 7), (2, 3, 6, 7), (4, 5, 6, 7)),
}


def topological_dimension(ct) -> int:
    return _TDIM[to_cell_type(ct)]


def num_vertices(ct) -> int:
    return len(_VERTICES[to_cell_type(ct)])


def is_simplex(ct) -> bool:
    ct = to_cell_type(ct)
    return ct in (CellType.point, CellType.interval, CellType.triangle, CellType.tetrahedron)


@lru_cache(maxsize=None)
def reference_vertices(ct) -> np.ndarray:
    ct = to_cell_type(ct)
    return np.array(_VERTICES[ct], dtype=float).reshape(num_vertices(ct), _TDIM[ct])


@lru_cache(maxsize=None)
def sub_entities(ct, dim: int) -> Tuple[Tuple[int, ...], ...]:
    """Local vertex lists of all sub-entities of dimension ``dim``."""
    ct = to_cell_type(ct)
    tdim = _TDIM[ct]
    if dim < 0 or dim > tdim:
        raise IndexError(f"Entity dimension {dim} out of range for {ct}.")
    if dim == 0:
        return tuple((v,) for v in range(num_vertices(ct)))
    if dim == tdim:
        return (tuple(range(num_vertices(ct))),)
    if dim == 1:
        return _EDGE_TABLE[ct]
    return _FACE_TABLE[ct]


def num_sub_entities(ct, dim: int) -> int:
    return len(sub_entities(ct, dim))


def num_facet_vertices(ct) -> int:
    ct = to_cell_type(ct)
    return len(sub_entities(ct, _TDIM[ct] - 1)[0])


def reference_volume(ct) -> float:
    ct = to_cell_type(ct)
    return {CellType.point: 1.0, CellType.interval: 1.0, CellType.triangle: 0.5,
            CellType.quadrilateral: 1.0, CellType.tetrahedron: 1.0 / 6.0,
            CellType.hexahedron: 1.0}[ct]
