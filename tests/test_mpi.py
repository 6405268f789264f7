import numpy as np
import pytest
from mpi4py import MPI

from pycutfemx.assembly import assemble_scalar
from pycutfemx.core.errors import TopologyError
from pycutfemx.core.levelset import CircleLevelSet
from pycutfemx.core.mesh import create_cut_mesh, create_mesh
from pycutfemx.cutters.cut_cells import cut_entities
from pycutfemx.cutters.element_cutter import locate_entities
from pycutfemx.fem.element import LagrangeElement
from pycutfemx.fem.forms import IntegralType, create_cut_form, create_form, form_definition
from pycutfemx.fem.function import FunctionSpace
from pycutfemx.integration.runtime_quadrature import QuadratureRules, runtime_quadrature
from pycutfemx.utils.meshgen import create_rectangle
from pycutfemx.utils.parallel import check_collectively, distribute_data, exchange_requests


def test_mpi_vertex_count_and_area(world):
    mesh = create_rectangle(world, (-1, -1), (1, 1), (6, 5), "triangle")
    vmap = mesh.topology.index_map(0)
    assert vmap.size_global == 7 * 6
    assert world.allreduce(vmap.size_local, op=MPI.SUM) == 7 * 6
    # shared vertices belong to the lowest rank holding them
    assert np.all(vmap.owners < world.rank)
    assert mesh.topology.index_map(2).size_global == 2 * 6 * 5

    d = form_definition("constant", mesh.geometry.cmap)
    area = assemble_scalar(create_form(d, mesh, constants={"alpha": 1.0}))
    assert np.isclose(area, 4.0)


def test_mpi_edges_have_one_global_index(world):
    mesh = create_rectangle(world, (0, 0), (1, 1), (4, 4), "quadrilateral")
    topology = mesh.topology
    topology.create_entities(1)
    emap = topology.index_map(1)
    assert emap.size_global == 2 * 4 * 5

    vglobal = topology.vertex_global_indices()
    edges = topology.connectivity(1, 0).as_2d()
    gidx = emap.local_to_global(np.arange(emap.size))
    local = {tuple(sorted(vglobal[e].tolist())): int(g) for e, g in zip(edges, gidx)}
    merged = {}
    for table in world.allgather(local):
        for key, g in table.items():
            assert merged.setdefault(key, g) == g
    assert sorted(merged.values()) == list(range(emap.size_global))


def test_mpi_interior_vertex_conflict_raises_on_every_rank(world):
    # vertex 0 is surrounded by rank 0's cells, but rank 1 also uses it
    if world.rank == 0:
        cells = np.array([[0, 1, 2], [0, 2, 3], [0, 3, 4], [0, 4, 1]])
        x = np.array([[0, 0], [1, 0], [0, 1], [-1, 0], [0, -1], [2, 2], [3, 2]], dtype=float)
    elif world.rank == 1:
        cells = np.array([[0, 5, 6]])
        x = np.zeros((0, 2))
    else:
        cells = np.zeros((0, 3), dtype=np.int64)
        x = np.zeros((0, 2))
    expected = "Vertices interior to rank 0" if world.rank == 0 else "reported by rank 0"
    with pytest.raises(TopologyError, match=expected):
        create_mesh(world, cells, LagrangeElement("triangle", 1), x, x.shape)


def test_mpi_distribute_data(world):
    n_local = world.rank + 1
    offset = world.rank * (world.rank + 1) // 2
    x = np.repeat(np.arange(offset, offset + n_local, dtype=float), 2).reshape(-1, 2)
    n_global = world.size * (world.size + 1) // 2

    wanted = np.arange(n_global)[::-1]
    rows = distribute_data(world, wanted, x, 2)
    assert np.allclose(rows[:, 0], wanted) and np.allclose(rows[:, 1], wanted)

    bad = [n_global] if world.rank == 0 else []
    with pytest.raises(TopologyError):
        distribute_data(world, bad, x, 2)


def test_mpi_exchange_requests(world):
    right = (world.rank + 1) % world.size
    replies = exchange_requests(world, [right, right], ["a", "b"],
                                lambda src, k: (k, src, world.rank))
    assert replies == [("a", world.rank, right), ("b", world.rank, right)]

    with pytest.raises(TopologyError):
        exchange_requests(world, [right], ["missing"],
                          lambda src, k: None if world.rank == 0 else k)


def test_mpi_cut_area_of_circle(world):
    mesh = create_rectangle(world, (-1, -1), (1, 1), (32, 32), "quadrilateral")
    phi = CircleLevelSet((0.0, 0.0), 0.5).interpolate(FunctionSpace(mesh, 1))
    d = form_definition("constant", mesh.geometry.cmap)
    inside = locate_entities(phi, 2, "phi<0")
    form = create_form(d, mesh, constants={"alpha": 1.0},
                       subdomains={IntegralType.cell: {0: inside}})
    rules = runtime_quadrature(phi, "phi<0", 2, QuadratureRules())
    area = assemble_scalar(create_cut_form(d, form, {IntegralType.cutcell: [(0, rules)]}))
    assert abs(area - np.pi / 4) < 1e-2


def test_mpi_cut_mesh_with_uncut_ranks(world):
    # only the upper rows of cells see the interface
    mesh = create_rectangle(world, (-1, -1), (1, 1), (8, 8), "triangle")
    phi = CircleLevelSet((0.0, 0.6), 0.3).interpolate(FunctionSpace(mesh, 1))
    fragments = cut_entities(phi, locate_entities(phi, 2, "phi=0"), 2, "phi<0")

    cut_mesh, parent = create_cut_mesh(world, fragments)
    assert parent.size == cut_mesh.num_cells()
    if not fragments:
        assert cut_mesh.num_cells() == 0
    n_cut = world.allreduce(parent.size, op=MPI.SUM)
    assert n_cut > 0
    assert cut_mesh.topology.index_map(2).size_global == n_cut


def test_mpi_check_collectively_names_failing_ranks(world):
    failed = world.rank == 1
    expected = "rank 1 is broken" if failed else r"something broke \(reported by rank 1\)"
    with pytest.raises(TopologyError, match=expected):
        check_collectively(world, failed, "rank 1 is broken", summary="something broke")
