# pycutfemx/core/sideconvention.py
from dataclasses import dataclass

import numpy as np

# Values with |phi| <= INTERFACE_TOL are treated as lying on the interface.
INTERFACE_TOL = 1e-12


@dataclass
class SideConvention:
    """
    Convention for classifying level-set values against the interface phi = 0.

    Values inside the tolerance band belong to neither signed side; the
    classifier reports them as "on the interface" and the cutter snaps them
    to zero before computing intersections.
    """
    # Tolerance for deciding whether a value is on the interface.
    tol: float = INTERFACE_TOL

    def _tol(self, tol):
        return self.tol if tol is None else float(tol)

    def is_zero(self, phi, tol: float = None):
        """Elementwise |phi| <= tol (works for scalars and arrays)."""
        return np.abs(phi) <= self._tol(tol)

    def is_pos(self, phi, tol: float = None):
        tol = self._tol(tol)
        phi = np.asarray(phi, dtype=float)
        return phi > tol

    def is_neg(self, phi, tol: float = None):
        tol = self._tol(tol)
        phi = np.asarray(phi, dtype=float)
        return phi < -tol

    def snap(self, phi, tol: float = None) -> np.ndarray:
        """Copy of ``phi`` with values inside the tolerance band set to exactly 0."""
        phi = np.array(phi, dtype=float)
        phi[self.is_zero(phi, tol)] = 0.0
        return phi


# Global, editable in one place:
SIDE = SideConvention(tol=INTERFACE_TOL)
