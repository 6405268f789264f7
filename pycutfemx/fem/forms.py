"""pycutfemx.fem.forms
Form definitions (groups of integral kernels), forms bound to data, cut forms.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from pycutfemx.fem.element import LagrangeElement
from pycutfemx.fem.function import Function, FunctionSpace
from pycutfemx.integration.runtime_quadrature import QuadratureRule, QuadratureRules
from pycutfemx.jit.kernels import EvaluationMode, IntegralKernel, create_kernel, get_integrand

logger = logging.getLogger(__name__)


class IntegralType(str, Enum):
    cell = "cell"            # standard cell integral, compiled quadrature
    cutcell = "cutcell"      # runtime quadrature on the cut part of cells
    interface = "interface"  # runtime quadrature on the interface inside cells

    def __str__(self):
        return self.value


@dataclass
class FormDefinition:
    """Precompiled description of a form: its kernels and the data they need."""
    rank: int
    integrals: Dict[IntegralType, Dict[int, IntegralKernel]]
    coefficient_names: Tuple[str, ...] = ()
    constant_names: Tuple[str, ...] = ()
    coordinate_element: Optional[LagrangeElement] = None
    element: Optional[LagrangeElement] = None

    def integral_ids(self, itype: IntegralType) -> List[int]:
        return sorted(self.integrals.get(IntegralType(itype), {}))

    def kernel(self, itype: IntegralType, integral_id: int) -> IntegralKernel:
        try:
            return self.integrals[IntegralType(itype)][int(integral_id)]
        except KeyError:
            raise KeyError(f"Form has no {itype} integral with id {integral_id}.") from None


def form_definition(integrand: str, cmap: LagrangeElement, element: Optional[LagrangeElement] = None,
                    cell_ids: Sequence[int] = (0,), cutcell_ids: Sequence[int] = (0,),
                    interface_ids: Sequence[int] = (),
                    quadrature_degree: Optional[int] = None) -> FormDefinition:
    """Definition of ``integrand`` with compiled cell kernels and runtime cut kernels.

    ``element`` is the argument (or coefficient) element; the coordinate
    element is used when omitted.
    """
    entry = get_integrand(integrand)
    element = cmap if element is None else element
    compiled = create_kernel(integrand, cmap, element, EvaluationMode.compiled, quadrature_degree)
    runtime = create_kernel(integrand, cmap, element, EvaluationMode.runtime)
    integrals = {
        IntegralType.cell: {int(i): compiled for i in cell_ids},
        IntegralType.cutcell: {int(i): runtime for i in cutcell_ids},
        IntegralType.interface: {int(i): runtime for i in interface_ids},
    }
    return FormDefinition(rank=entry.rank, integrals={k: v for k, v in integrals.items() if v},
                          coefficient_names=entry.coefficients, constant_names=entry.constants,
                          coordinate_element=cmap, element=element)


@dataclass
class Form:
    definition: FormDefinition
    mesh: object
    function_spaces: Tuple[FunctionSpace, ...] = ()
    coefficients: Dict[str, Function] = field(default_factory=dict)
    constants: Dict[str, np.ndarray] = field(default_factory=dict)
    subdomains: Dict[IntegralType, Dict[int, np.ndarray]] = field(default_factory=dict)

    @property
    def rank(self) -> int:
        return self.definition.rank

    def integration_cells(self, integral_id: int) -> np.ndarray:
        """Owned cells of the standard cell integral ``integral_id``."""
        cells = self.subdomains.get(IntegralType.cell, {}).get(int(integral_id))
        if cells is None:
            return np.arange(self.mesh.num_cells(include_ghost=False), dtype=np.int32)
        return cells

    def element(self) -> LagrangeElement:
        """Element the kernels' basis tabulation comes from."""
        if self.function_spaces:
            return self.function_spaces[0].element
        if self.definition.coefficient_names:
            return self.coefficients[self.definition.coefficient_names[0]].element
        return self.mesh.geometry.cmap

    def pack_coefficients(self, cell: int) -> np.ndarray:
        if not self.definition.coefficient_names:
            return np.zeros(0)
        return np.concatenate([self.coefficients[n].cell_values(cell)
                               for n in self.definition.coefficient_names])

    def pack_constants(self) -> np.ndarray:
        if not self.definition.constant_names:
            return np.zeros(0)
        return np.concatenate([np.atleast_1d(np.asarray(self.constants[n], dtype=float))
                               for n in self.definition.constant_names])


def create_form(definition: FormDefinition, mesh, spaces: Sequence[FunctionSpace] = (),
                coefficients: Optional[Mapping[str, Function]] = None,
                constants: Optional[Mapping[str, float]] = None,
                subdomains: Optional[Mapping] = None) -> Form:
    """Bind a definition to a mesh, argument spaces, coefficients and constants.

    ``subdomains`` maps ``IntegralType.cell`` to ``{integral_id: cells}``;
    integrals without an entry run over all owned cells.
    """
    coefficients = dict(coefficients or {})
    constants = dict(constants or {})
    spaces = tuple(spaces)
    if len(spaces) != definition.rank:
        raise ValueError(f"Rank-{definition.rank} form needs {definition.rank} function "
                         f"space(s), got {len(spaces)}.")
    if len(spaces) == 2 and spaces[0].element != spaces[1].element:
        raise ValueError("Test and trial spaces must share one element.")
    missing = [n for n in definition.coefficient_names if n not in coefficients]
    missing += [n for n in definition.constant_names if n not in constants]
    if missing:
        raise ValueError(f"Missing coefficients/constants: {missing}.")
    sub = {}
    for itype, entries in (subdomains or {}).items():
        itype = IntegralType(itype)
        if itype is not IntegralType.cell:
            raise ValueError(f"Standard forms take cell subdomains only, got {itype}.")
        sub[itype] = {int(i): np.unique(np.asarray(c, dtype=np.int32)) for i, c in dict(entries).items()}
    return Form(definition, mesh, spaces, coefficients,
                {k: np.atleast_1d(np.asarray(v, dtype=float)) for k, v in constants.items()}, sub)


@dataclass
class CutForm:
    """A standard form plus runtime-quadrature integrals."""
    definition: FormDefinition
    form: Form
    subdomains: Dict[IntegralType, List[Tuple[int, QuadratureRules]]]

    @property
    def rank(self) -> int:
        return self.form.rank

    @property
    def mesh(self):
        return self.form.mesh


def create_cut_form(definition: FormDefinition, form: Form,
                    subdomains: Mapping[IntegralType, Sequence[Tuple[int, QuadratureRules]]]
                    ) -> CutForm:
    """Attach per-cell runtime rules to ``form``.

    ``subdomains`` maps ``IntegralType.cutcell`` / ``IntegralType.interface``
    to ``[(integral_id, rules), ...]``; each id must name a runtime kernel
    of ``definition``.
    """
    sub: Dict[IntegralType, List[Tuple[int, QuadratureRules]]] = {}
    for itype, entries in subdomains.items():
        itype = IntegralType(itype)
        if itype is IntegralType.cell:
            raise ValueError("Cell integrals use compiled quadrature; pass them to create_form.")
        pairs = []
        for integral_id, rules in entries:
            kernel = definition.kernel(itype, integral_id)
            if kernel.mode is not EvaluationMode.runtime:
                raise ValueError(f"{itype} integral {integral_id} needs a runtime kernel.")
            pairs.append((int(integral_id), rules))
        sub[itype] = sorted(pairs, key=lambda p: p[0])
    logger.debug("cut form: %s", {str(k): [i for i, _ in v] for k, v in sub.items()})
    return CutForm(definition, form, sub)


def compiled_quadrature_rules(definition: FormDefinition, cells, integral_id: int = 0
                              ) -> QuadratureRules:
    """Runtime rules reproducing the embedded rule of a compiled cell kernel."""
    kernel = definition.kernel(IntegralType.cell, integral_id)
    points, weights = kernel.quadrature
    rules = QuadratureRules()
    for c in np.asarray(cells, dtype=np.int64).reshape(-1):
        rules.add(int(c), QuadratureRule(points.copy(), weights.copy()))
    return rules
