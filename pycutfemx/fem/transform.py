"""pycutfemx.fem.transform
Reference -> physical mapping for (possibly higher-order) coordinate elements.

All functions work on the coordinate dofs of one cell, shape (num_nodes, gdim).
"""
import numpy as np

from pycutfemx.core.cell_types import is_simplex


def x_mapping(cmap, coordinate_dofs: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Physical coordinates of reference points X, shape (npts, gdim)."""
    phi = cmap.tabulate(0, X)[0]                   # (npts, nnodes)
    return phi @ np.asarray(coordinate_dofs, float)


def jacobian(cmap, coordinate_dofs: np.ndarray, X: np.ndarray) -> np.ndarray:
    """J[q] = dx/dX at every reference point, shape (npts, gdim, tdim)."""
    tab = cmap.tabulate(1, X)                      # (1+tdim, npts, nnodes)
    dphi = tab[1:]                                 # (tdim, npts, nnodes)
    x = np.asarray(coordinate_dofs, float)
    return np.einsum("dqk,ki->qid", dphi, x)


def det_jacobian(J: np.ndarray) -> np.ndarray:
    """|det J| per point; pseudo-determinant sqrt(det(J^T J)) for manifolds."""
    J = np.asarray(J, float)
    if J.shape[-1] == J.shape[-2]:
        return np.abs(np.linalg.det(J))
    JTJ = np.einsum("...ji,...jk->...ik", J, J)
    return np.sqrt(np.linalg.det(JTJ))


def facet_scale(J: np.ndarray, n_ref: np.ndarray) -> np.ndarray:
    """Ratio of physical to reference measure for a codimension-one manifold.

    Nanson's formula: ds = |det J| * |J^{-T} n_ref| dS for a square Jacobian.
    """
    J = np.asarray(J, float)
    n_ref = np.asarray(n_ref, float)
    K = np.linalg.inv(J)                           # (npts, tdim, gdim)
    KTn = np.einsum("qji,qj->qi", K, n_ref)
    return np.abs(np.linalg.det(J)) * np.linalg.norm(KTn, axis=-1)


def inverse_mapping(cmap, coordinate_dofs: np.ndarray, x: np.ndarray, tol=1e-12, maxiter=50):
    """Reference coordinates of physical points x (Newton iteration per point)."""
    x = np.atleast_2d(np.asarray(x, float))
    coords = np.asarray(coordinate_dofs, float)
    tdim = cmap.tdim
    X0 = np.full(tdim, 1.0 / (tdim + 1)) if is_simplex(cmap.cell_type) else np.full(tdim, 0.5)
    out = np.empty((x.shape[0], tdim))
    for p, xp in enumerate(x):
        Xi = X0.copy()
        for it in range(maxiter):
            r = xp - x_mapping(cmap, coords, Xi[None, :])[0]
            J = jacobian(cmap, coords, Xi[None, :])[0]
            try:
                delta = np.linalg.lstsq(J, r, rcond=None)[0]
            except np.linalg.LinAlgError:
                raise ValueError(f"Jacobian singular at iteration {it}, x={xp}")
            Xi += delta
            if np.linalg.norm(delta) < tol:
                break
        else:
            raise ValueError(f"Inverse mapping did not converge after {maxiter} iterations, "
                             f"x={xp}, residual={np.linalg.norm(r)}")
        out[p] = Xi
    return out
