import logging

import numpy as np
import pytest

from pycutfemx.assembly import assemble_matrix, assemble_scalar, assemble_vector
from pycutfemx.core.errors import ElementHashMismatch
from pycutfemx.cutters.element_cutter import locate_entities
from pycutfemx.fem.element import LagrangeElement
from pycutfemx.fem.forms import (IntegralType, compiled_quadrature_rules, create_cut_form,
                                 create_form, form_definition)
from pycutfemx.fem.function import Function, FunctionSpace
from pycutfemx.integration.runtime_quadrature import QuadratureRules, runtime_quadrature
from pycutfemx.utils.meshgen import create_rectangle, create_unit_square


def test_area_of_unit_square(comm):
    mesh = create_unit_square(comm, 4, 4)
    d = form_definition("constant", mesh.geometry.cmap)
    assert np.isclose(assemble_scalar(create_form(d, mesh, constants={"alpha": 1.0})), 1.0)
    assert np.isclose(assemble_scalar(create_form(d, mesh, constants={"alpha": 2.5})), 2.5)


def test_coefficient_integral_is_independent_of_cell_order(comm):
    values = []
    for reorder in (False, True):
        mesh = create_rectangle(comm, (0, 0), (1, 1), (5, 3), "triangle", reorder=reorder)
        V = FunctionSpace(mesh, 1)
        f = Function(V).interpolate(lambda x: 1.0 + x[:, 0] + 2.0 * x[:, 1])
        d = form_definition("coefficient", mesh.geometry.cmap, V.element)
        values.append(assemble_scalar(create_form(d, mesh, coefficients={"f": f})))
    assert np.isclose(values[0], 2.5)
    assert np.isclose(values[0], values[1], rtol=1e-12)


def test_vector_and_matrices(comm):
    mesh = create_rectangle(comm, (0, 0), (2, 1), (4, 2), "quadrilateral", degree=2)
    V = FunctionSpace(mesh)
    cmap = mesh.geometry.cmap

    b = assemble_vector(create_form(form_definition("source", cmap), mesh, (V,),
                                    constants={"alpha": 1.0}))
    assert b.shape == (V.num_dofs,)
    assert np.isclose(b.sum(), 2.0)

    M = assemble_matrix(create_form(form_definition("mass", cmap), mesh, (V, V)))
    K = assemble_matrix(create_form(form_definition("stiffness", cmap), mesh, (V, V)))
    assert M.shape == (V.num_dofs, V.num_dofs)
    assert np.isclose(M.sum(), 2.0)
    assert np.allclose(K @ np.ones(V.num_dofs), 0.0)
    x = V.tabulate_dof_coordinates()[:, 0]
    # ∫ |grad x|^2 = area
    assert np.isclose(x @ (K @ x), 2.0)


def test_form_checks(comm):
    mesh = create_unit_square(comm, 2, 2)
    V = FunctionSpace(mesh)
    cmap = mesh.geometry.cmap
    with pytest.raises(ValueError):
        create_form(form_definition("mass", cmap), mesh, (V,))
    with pytest.raises(ValueError):
        create_form(form_definition("constant", cmap), mesh)
    mass = create_form(form_definition("mass", cmap), mesh, (V, V))
    with pytest.raises(ValueError):
        assemble_vector(mass)
    with pytest.raises(ValueError):
        create_form(form_definition("constant", cmap), mesh, constants={"alpha": 1.0},
                    subdomains={IntegralType.cutcell: {0: [0]}})
    with pytest.raises(KeyError):
        form_definition("constant", cmap).kernel(IntegralType.interface, 0)


def test_element_hash_mismatch_is_reported(comm):
    mesh = create_unit_square(comm, 2, 2)
    V = FunctionSpace(mesh)
    d = form_definition("mass", mesh.geometry.cmap, LagrangeElement("triangle", 2))
    with pytest.raises(ElementHashMismatch, match="cell 0"):
        assemble_matrix(create_form(d, mesh, (V, V)))


def _circle_forms(mesh, phi, cell_ids=(0,), interface_ids=()):
    d = form_definition("constant", mesh.geometry.cmap, cell_ids=cell_ids,
                        interface_ids=interface_ids)
    inside = locate_entities(phi, mesh.tdim, "phi<0")
    form = create_form(d, mesh, constants={"alpha": 1.0},
                       subdomains={IntegralType.cell: {i: inside for i in cell_ids}})
    return d, form, inside


def test_cut_area_and_interface_length(circle_setup):
    mesh, V, phi = circle_setup(32)
    d, form, inside = _circle_forms(mesh, phi, interface_ids=(0,))
    rules = runtime_quadrature(phi, "phi<0", 2, QuadratureRules())
    cut = create_cut_form(d, form, {IntegralType.cutcell: [(0, rules)]})
    area = assemble_scalar(cut)
    expected = inside.size * (2.0 / 32) ** 2 + rules.total_measure(mesh)
    assert np.isclose(area, expected, rtol=1e-12)
    assert np.isclose(area, np.pi / 4, rtol=1e-2)

    d, form, _ = _circle_forms(mesh, phi, cell_ids=(), interface_ids=(0,))
    iface = runtime_quadrature(phi, "phi=0", 2, QuadratureRules())
    length = assemble_scalar(create_cut_form(d, form, {IntegralType.interface: [(0, iface)]}))
    assert np.isclose(length, iface.total_measure(mesh), rtol=1e-12)
    assert np.isclose(length, np.pi, rtol=2e-2)


def test_runtime_rules_reproduce_standard_assembly(comm):
    mesh = create_rectangle(comm, (0, 0), (1, 2), (3, 3), "triangle", degree=2)
    V = FunctionSpace(mesh)
    d = form_definition("mass", mesh.geometry.cmap)
    standard = assemble_matrix(create_form(d, mesh, (V, V)))

    cells = np.arange(mesh.num_cells(include_ghost=False))
    empty = create_form(d, mesh, (V, V), subdomains={IntegralType.cell: {0: []}})
    cut = create_cut_form(d, empty, {IntegralType.cutcell:
                                     [(0, compiled_quadrature_rules(d, cells))]})
    runtime = assemble_matrix(cut)
    assert np.allclose(runtime.toarray(), standard.toarray(), atol=1e-14)
    assert assemble_matrix(empty).nnz == 0


def test_cut_form_rejects_cell_integrals(comm):
    mesh = create_unit_square(comm, 1, 1)
    d = form_definition("constant", mesh.geometry.cmap)
    form = create_form(d, mesh, constants={"alpha": 1.0})
    with pytest.raises(ValueError):
        create_cut_form(d, form, {IntegralType.cell: [(0, QuadratureRules())]})


def test_jit_debug_logs_kernel_arguments(comm, monkeypatch, caplog):
    monkeypatch.setenv("PYCUTFEMX_JIT_DEBUG", "1")
    caplog.set_level(logging.INFO, logger="pycutfemx.assembly.assembler")
    mesh = create_unit_square(comm, 1, 1)
    d = form_definition("constant", mesh.geometry.cmap)
    assemble_scalar(create_form(d, mesh, constants={"alpha": 1.0}))
    assert any("kernel args" in r.getMessage() for r in caplog.records)
    assert any("scalar assembly finished" in r.getMessage() for r in caplog.records)
