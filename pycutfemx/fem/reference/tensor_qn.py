from functools import lru_cache
import sympy as sp


@lru_cache(maxsize=None)
def _lagrange_basis_1d(n: int):
    """1-D Lagrange polynomials on n+1 equispaced nodes of [0,1]."""
    x = sp.symbols("t")
    nodes = [sp.Rational(i, n) for i in range(n + 1)]
    L = []
    for i, xi in enumerate(nodes):
        num, den = sp.S(1), sp.S(1)
        for j, xj in enumerate(nodes):
            if i == j:
                continue
            num *= (x - xj)
            den *= (xi - xj)
        L.append(sp.expand(num / den))
    return x, nodes, L


@lru_cache(maxsize=None)
def tensor_qn(tdim: int, n: int):
    """
    Tensor-product Q_n on [0,1]^tdim.
    Stacking order is lexicographic with x0 fastest: index = i + (n+1)*j + (n+1)^2*k.

    Returns (symbols, nodes, basis) like ``simplex_pn``.
    """
    if n < 1:
        raise ValueError("Polynomial order n must be positive.")
    if tdim not in (1, 2, 3):
        raise ValueError(f"Unsupported tensor-product dimension {tdim}.")
    t, nodes1d, L = _lagrange_basis_1d(n)
    X = sp.symbols(f"x0:{tdim}")
    m = n + 1

    nodes, basis = [], []
    for flat in range(m ** tdim):
        idx = [(flat // m ** d) % m for d in range(tdim)]
        nodes.append(tuple(nodes1d[i] for i in idx))
        expr = sp.S(1)
        for d, i in enumerate(idx):
            expr *= L[i].subs(t, X[d])
        basis.append(sp.expand(expr))
    return X, nodes, basis
