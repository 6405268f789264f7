import numpy as np
import pytest

from pycutfemx.core.mesh import create_mesh, create_mesh_from_connectivity
from pycutfemx.fem.element import LagrangeElement
from pycutfemx.utils.meshgen import create_rectangle, create_unit_square, structured_rectangle


def _areas(mesh):
    out = []
    for c in range(mesh.num_cells()):
        P = mesh.cell_coordinates(c)
        vdofs = mesh.geometry.cmap.dof_layout.vertex_dofs()
        P = P[vdofs]
        e1, e2 = P[1] - P[0], P[2] - P[0]
        out.append(0.5 * abs(e1[0] * e2[1] - e1[1] * e2[0]))
    return np.array(out)


def test_structured_rectangle_counts():
    nodes, cells = structured_rectangle((0, 0), (1, 1), 2, 3, "triangle")
    assert nodes.shape == (12, 2) and cells.shape == (12, 3)
    nodes, cells = structured_rectangle((0, 0), (1, 1), 2, 3, "quadrilateral", degree=2)
    assert nodes.shape == (35, 2) and cells.shape == (6, 9)
    with pytest.raises(KeyError):
        structured_rectangle((0, 0), (1, 1), 1, 1, "tetrahedron")


def test_triangle_mesh_of_unit_square(comm):
    mesh = create_unit_square(comm, 2, 2)
    assert mesh.num_cells() == 8
    assert mesh.topology.index_map(0).size == 9
    assert mesh.geometry.x.shape == (9, 2)
    assert np.isclose(_areas(mesh).sum(), 1.0)


def test_geometry_matches_input(comm):
    nodes, cells = structured_rectangle((0, 0), (2, 1), 3, 2, "quadrilateral")
    mesh = create_rectangle(comm, (0, 0), (2, 1), (3, 2), "quadrilateral")
    g = mesh.geometry
    assert np.allclose(g.x, nodes[g.input_global_indices])
    for c in range(mesh.num_cells()):
        original = mesh.topology.original_cell_index[c]
        assert np.allclose(mesh.cell_coordinates(c), nodes[cells[original]])


def test_reordered_mesh_is_the_same_mesh(comm):
    nodes, cells = structured_rectangle((0, 0), (1, 1), 4, 4, "triangle")
    mesh = create_rectangle(comm, (0, 0), (1, 1), (4, 4), "triangle", reorder=True)
    assert sorted(mesh.topology.original_cell_index.tolist()) == list(range(32))
    for c in range(mesh.num_cells()):
        original = mesh.topology.original_cell_index[c]
        assert np.allclose(mesh.cell_coordinates(c), nodes[cells[original]])
    assert np.isclose(_areas(mesh).sum(), 1.0)


def test_p2_geometry_nodes_follow_vertices(comm):
    mesh = create_rectangle(comm, (0, 0), (1, 1), (2, 2), "triangle", degree=2)
    g = mesh.geometry
    assert g.num_nodes == 25
    nv = mesh.topology.index_map(0).size
    assert nv == 9
    # edges carry dofs, so they are created with the mesh
    assert mesh.topology.index_map(1).size == 16
    vdofs = g.cmap.dof_layout.vertex_dofs()
    assert np.array_equal(g.dofmap[:, vdofs], mesh.topology.cell_vertices)
    # vertex nodes sit on the coarse grid
    assert np.allclose(np.round(g.x[:nv] * 2), g.x[:nv] * 2)


def test_p3_mesh_has_permutation_info(comm):
    assert LagrangeElement("triangle", 3).needs_dof_permutations
    mesh = create_rectangle(comm, (0, 0), (1, 1), (1, 1), "triangle", degree=3)
    info = mesh.topology.get_cell_permutation_info()
    assert info.shape == (2,)
    assert mesh.topology.get_facet_permutations().shape == (2, 3)


def test_create_mesh_input_checks(comm):
    P1 = LagrangeElement("triangle", 1)
    x = np.array([[0, 0], [1, 0], [0, 1]], dtype=float)
    with pytest.raises(ValueError):
        create_mesh(comm, [0, 1, 2, 0], P1, x, x.shape)
    with pytest.raises(ValueError):
        create_mesh(comm, [0, 1, 2], P1, x[:, :1], (3, 1))
    with pytest.raises(ValueError):
        create_mesh(comm, [0, 1, 2], P1, x, (2, 2))


def test_mesh_from_connectivity(comm):
    coords = [0.0, 0.0, 1.0, 0.0, 1.0, 1.0, 0.0, 1.0]
    mesh = create_mesh_from_connectivity(comm, coords, [[0, 1, 2], [0, 2, 3]], "triangle", 2)
    assert mesh.num_cells() == 2
    assert mesh.topology.index_map(0).size == 4
    assert np.isclose(_areas(mesh).sum(), 1.0)
    with pytest.raises(ValueError):
        create_mesh_from_connectivity(comm, coords, [[0, 1, 2], [0, 2]], "triangle", 2)
    with pytest.raises(ValueError):
        create_mesh_from_connectivity(comm, coords, [[0, 1, 7]], "triangle", 2)
