import numpy as np
import pytest

from pycutfemx.core.levelset import AffineLevelSet
from pycutfemx.cutters.element_cutter import (INSIDE, INTERSECTED, OUTSIDE, classify_entities,
                                              classify_values, locate_entities, parse_predicate)
from pycutfemx.fem.function import FunctionSpace
from pycutfemx.utils.meshgen import create_rectangle


def _two_quads(comm):
    """[0, 2] x [0, 1] split into two unit squares, phi = x - 1 along the shared facet."""
    mesh = create_rectangle(comm, (0, 0), (2, 1), (2, 1), "quadrilateral")
    V = FunctionSpace(mesh, 1)
    return mesh, AffineLevelSet(1.0, 0.0, -1.0).interpolate(V)


def test_parse_predicate():
    assert parse_predicate("phi<0") == {INSIDE}
    assert parse_predicate("phi <= 0") == {INSIDE, INTERSECTED}
    assert parse_predicate("phi<0 and phi=0") == {INSIDE, INTERSECTED}
    assert parse_predicate("phi>0 and phi<0") == {INSIDE, OUTSIDE}
    with pytest.raises(ValueError):
        parse_predicate("phi<<0")


def test_classify_values_with_tolerance():
    values = np.array([[-1.0, -2.0], [1.0, 2.0], [-1.0, 1.0], [-1.0, 1e-13], [1e-13, 1e-13]])
    assert classify_values(values).tolist() == [INSIDE, OUTSIDE, INTERSECTED, INTERSECTED,
                                                INTERSECTED]
    assert classify_values(values, tol=0.0)[3] == INTERSECTED
    assert classify_values(np.array([[-1.0, -1e-13]]), tol=0.0)[0] == INSIDE


def test_all_negative_level_set(comm):
    mesh = create_rectangle(comm, (0, 0), (1, 1), (3, 3), "triangle")
    phi = AffineLevelSet(0.0, 0.0, -1.0).interpolate(FunctionSpace(mesh, 1))
    assert np.all(classify_entities(phi, 2) == INSIDE)
    assert np.array_equal(locate_entities(phi, 2, "phi<0"), np.arange(mesh.num_cells()))
    assert locate_entities(phi, 2, "phi=0").size == 0
    assert locate_entities(phi, 1, "phi>0").size == 0


def test_level_set_vanishing_on_an_interior_facet(comm):
    mesh, phi = _two_quads(comm)
    assert locate_entities(phi, 2, "phi=0").tolist() == [0, 1]
    assert locate_entities(phi, 2, "phi<0").size == 0
    assert locate_entities(phi, 2, "phi<0 and phi=0").tolist() == [0, 1]

    # facets: left side inside, right side outside, the rest touch x = 1
    assert locate_entities(phi, 1, "phi<0").size == 1
    assert locate_entities(phi, 1, "phi>0").size == 1
    assert locate_entities(phi, 1, "phi=0").size == 5

    x = mesh.geometry.x
    on_line = locate_entities(phi, 0, "phi=0")
    assert np.allclose(x[on_line, 0], 1.0) and on_line.size == 2
    assert np.allclose(x[locate_entities(phi, 0, "phi<0"), 0], 0.0)
    assert np.allclose(x[locate_entities(phi, 0, "phi>0"), 0], 2.0)


def test_locate_returns_sorted_int32(comm):
    mesh = create_rectangle(comm, (-1, -1), (1, 1), (6, 6), "quadrilateral")
    phi = AffineLevelSet(1.0, 1.0, 0.1).interpolate(FunctionSpace(mesh, 1))
    cells = locate_entities(phi, 2, "phi>=0")
    assert cells.dtype == np.int32
    assert np.all(np.diff(cells) > 0)
    inside = locate_entities(phi, 2, "phi<0")
    assert np.intersect1d(cells, inside).size == 0
    assert cells.size + inside.size == mesh.num_cells()
