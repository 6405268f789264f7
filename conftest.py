# conftest.py
import logging

import pytest
from mpi4py import MPI

from pycutfemx.core.levelset import CircleLevelSet
from pycutfemx.fem.function import FunctionSpace
from pycutfemx.utils.meshgen import create_rectangle


@pytest.fixture
def comm():
    """Tests build rank-local meshes; collective calls then involve a single rank."""
    return MPI.COMM_SELF


@pytest.fixture(autouse=True)
def quiet_numba():
    logging.getLogger("numba").setLevel(logging.WARNING)


@pytest.fixture
def circle_setup(comm):
    """Quadrilateral mesh of [-1, 1]^2 with a nodal circle of radius 0.5."""
    def make(n=32, cell_type="quadrilateral"):
        mesh = create_rectangle(comm, (-1.0, -1.0), (1.0, 1.0), (n, n), cell_type)
        V = FunctionSpace(mesh, 1)
        phi = CircleLevelSet((0.0, 0.0), 0.5).interpolate(V)
        return mesh, V, phi
    return make


@pytest.fixture
def world():
    """MPI.COMM_WORLD; run with ``mpirun -n 2 python -m pytest -k mpi``."""
    comm = MPI.COMM_WORLD
    if comm.size == 1:
        pytest.skip("needs more than one MPI rank")
    return comm
