"""pycutfemx.core.levelset
Analytic level-set functions and their interpolation onto a mesh.
"""
from __future__ import annotations
from typing import Tuple

import numpy as np

from pycutfemx.fem.function import Function, FunctionSpace


class LevelSetFunction:
    """Abstract base class"""
    def __call__(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def interpolate(self, V: FunctionSpace, name: str = "phi") -> Function:
        """Nodal level-set field on ``V``."""
        return Function(V, name=name).interpolate(self)


class CircleLevelSet(LevelSetFunction):
    def __init__(self, center: Tuple[float, float] = (0., 0.), radius: float = 1.0):
        self.center = np.asarray(center, dtype=float)
        self.radius = float(radius)

    def __call__(self, x):
        """Signed distance; works for shape (..., gdim) or plain (gdim,)."""
        x = np.asarray(x, dtype=float)
        rel = x[..., :self.center.size] - self.center
        return np.linalg.norm(rel, axis=-1) - self.radius


class AffineLevelSet(LevelSetFunction):
    """phi(x) = a x + b y + c, or n . x + c for a given coefficient vector.

    ``AffineLevelSet(a, b, c)`` describes a straight line in 2-D; a = b = 0
    gives a constant field.
    """
    def __init__(self, *coefficients: float):
        if len(coefficients) < 2:
            raise ValueError("Need at least one slope and the offset.")
        self.slope = np.asarray(coefficients[:-1], dtype=float)
        self.offset = float(coefficients[-1])

    def __call__(self, x):
        pts = np.asarray(x, dtype=float)[..., :self.slope.size]
        return pts @ self.slope + self.offset
