import numpy as np
import pytest

from pycutfemx.core.dualgraph import build_local_dual_graph, extract_topology, reorder_cells
from pycutfemx.core.errors import TopologyError
from pycutfemx.fem.element import LagrangeElement


def test_two_triangles_share_one_facet():
    dual = build_local_dual_graph("triangle", np.array([[0, 1, 2], [1, 3, 2]]))
    assert dual.num_nodes == 2
    assert dual.graph[0, 1] == 1 and dual.graph[1, 0] == 1
    assert dual.graph.nnz == 2
    assert (0, 1) in dual.facet_cells
    assert dual.unmatched_facets.shape == (4, 2)
    assert np.array_equal(dual.boundary_vertices, [0, 1, 2, 3])


def test_interior_vertex_is_not_a_boundary_vertex():
    # four triangles around vertex 4
    cells = np.array([[0, 1, 4], [1, 3, 4], [3, 2, 4], [2, 0, 4]])
    dual = build_local_dual_graph("triangle", cells)
    assert 4 not in dual.boundary_vertices
    assert np.array_equal(dual.boundary_vertices, [0, 1, 2, 3])
    assert dual.graph.nnz == 8


def test_facet_in_three_cells_is_rejected():
    with pytest.raises(TopologyError):
        build_local_dual_graph("triangle", np.array([[0, 1, 2], [1, 2, 3], [1, 2, 4]]))


def test_empty_cell_list():
    dual = build_local_dual_graph("quadrilateral", np.empty((0, 4), dtype=np.int64))
    assert dual.num_nodes == 0
    assert dual.boundary_vertices.size == 0


def test_extract_topology_keeps_vertex_nodes():
    P1 = LagrangeElement("triangle", 1)
    cells = np.array([[4, 5, 6], [6, 5, 7]])
    assert np.array_equal(extract_topology("triangle", P1.dof_layout, cells), cells)

    P2 = LagrangeElement("triangle", 2)
    nodes = np.arange(12).reshape(2, 6)
    vertex_nodes = extract_topology("triangle", P2.dof_layout, nodes.ravel())
    assert vertex_nodes.shape == (2, 3)
    assert np.array_equal(vertex_nodes, nodes[:, P2.dof_layout.vertex_dofs()])


def test_reorder_is_a_permutation():
    cells = np.array([[0, 1, 2], [1, 3, 2], [2, 3, 4], [3, 5, 4]])
    remap = reorder_cells(build_local_dual_graph("triangle", cells).graph)
    assert sorted(remap.tolist()) == [0, 1, 2, 3]
