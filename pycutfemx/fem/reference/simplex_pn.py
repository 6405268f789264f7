from functools import lru_cache
import sympy as sp


def lattice(tdim: int, n: int):
    """Equispaced Pn nodes on the reference simplex, last coordinate outermost."""
    if tdim == 1:
        return [(sp.Rational(i, n),) for i in range(n + 1)]
    if tdim == 2:
        return [(sp.Rational(i, n), sp.Rational(j, n))
                for j in range(n + 1) for i in range(n + 1 - j)]
    if tdim == 3:
        return [(sp.Rational(i, n), sp.Rational(j, n), sp.Rational(k, n))
                for k in range(n + 1) for j in range(n + 1 - k) for i in range(n + 1 - j - k)]
    raise ValueError(f"Unsupported simplex dimension {tdim}.")


@lru_cache(maxsize=None)
def simplex_pn(tdim: int, n: int):
    """
    Symbolic Lagrange basis of degree n on the reference simplex of dimension tdim.

    Args:
        tdim: 1 (interval), 2 (triangle) or 3 (tetrahedron).
        n: Polynomial order, n >= 1.

    Returns:
        tuple: (symbols, nodes, basis)
            - symbols: the reference coordinate symbols (x0, ..., x_{tdim-1}).
            - nodes: lattice points as tuples of sympy Rationals, in dof order.
            - basis: list of sympy expressions, basis[i](nodes[j]) = delta_ij.
    """
    if n < 1:
        raise ValueError("Polynomial order n must be positive.")
    X = sp.symbols(f"x0:{tdim}")
    nodes = lattice(tdim, n)

    # monomials of total degree <= n
    monomials = []
    for total in range(n + 1):
        if tdim == 1:
            monomials.append(X[0] ** total)
        elif tdim == 2:
            for b in range(total + 1):
                monomials.append(X[0] ** (total - b) * X[1] ** b)
        else:
            for j in range(total + 1):
                for c in range(j + 1):
                    monomials.append(X[0] ** (total - j) * X[1] ** (j - c) * X[2] ** c)

    num_nodes = len(nodes)
    if len(monomials) != num_nodes:
        raise RuntimeError(f"Internal error: {len(monomials)} monomials for "
                           f"{num_nodes} nodes (tdim={tdim}, n={n}).")

    # Vandermonde V[i, j] = m_j(node_i); basis coefficients are the columns of V^-1
    V = sp.zeros(num_nodes, num_nodes)
    for i, node in enumerate(nodes):
        subs = dict(zip(X, node))
        for j, m in enumerate(monomials):
            V[i, j] = m.subs(subs)
    try:
        C = V.inv()
    except ValueError as e:
        raise RuntimeError(f"Vandermonde matrix is singular for simplex P{n}.") from e

    mvec = sp.Matrix(monomials)
    basis = [sp.expand((C[:, k].T * mvec)[0, 0]) for k in range(num_nodes)]
    return X, nodes, basis
