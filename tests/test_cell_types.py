import numpy as np
import pytest

from pycutfemx.core import cell_types as ct


def test_aliases_and_dimensions():
    assert ct.to_cell_type("tri") is ct.CellType.triangle
    assert ct.to_cell_type("quadrilateral") is ct.CellType.quadrilateral
    assert ct.topological_dimension("hex") == 3
    assert ct.num_vertices("tet") == 4
    assert ct.is_simplex("interval") and not ct.is_simplex("quad")
    with pytest.raises(KeyError):
        ct.to_cell_type("pentagon")


def test_sub_entities():
    # edge i of a triangle is opposite vertex i
    assert ct.sub_entities("triangle", 1) == ((1, 2), (0, 2), (0, 1))
    assert ct.num_sub_entities("hexahedron", 1) == 12
    assert ct.num_sub_entities("tetrahedron", 2) == 4
    with pytest.raises(IndexError):
        ct.sub_entities("triangle", 3)


def test_reference_volume():
    for name, vol in [("interval", 1.0), ("triangle", 0.5), ("tet", 1 / 6), ("hex", 1.0)]:
        assert np.isclose(ct.reference_volume(name), vol)
