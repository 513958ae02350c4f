"""
Shape functions of interface elements and point projection onto them.

Supported element shapes
------------------------
line2 : 2-node line, ξ ∈ [-1, 1]
    N = [(1 - ξ)/2, (1 + ξ)/2]
tri3 : 3-node triangle, ξ, η ≥ 0, ξ + η ≤ 1
    N = [1 - ξ - η, ξ, η]
quad4 : 4-node bilinear quadrilateral, ξ, η ∈ [-1, 1]
    N = 1/4 (1 ± ξ)(1 ± η), counter-clockwise node order

If every node of an element carries a NURBS weight w_i the basis becomes
rational:

    R_i = N_i w_i / Σ_j N_j w_j

Projection
----------
Mortar integration points live in an auxiliary plane. To evaluate shape
functions they are projected along the plane normal n onto each element by
solving x(ξ) + α n = p with Newton-Raphson (α is the signed distance).
"""

from typing import Optional, Tuple

import numpy as np

from MortarCore.Objects.Parameters import MortarConstants


REFERENCE_NODES = {
    'line2': np.array([[-1.0], [1.0]]),
    'tri3': np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]),
    'quad4': np.array([[-1.0, -1.0], [1.0, -1.0], [1.0, 1.0], [-1.0, 1.0]]),
}

REFERENCE_CENTER = {
    'line2': np.array([0.0]),
    'tri3': np.array([1.0 / 3.0, 1.0 / 3.0]),
    'quad4': np.array([0.0, 0.0]),
}


def parametric_dim(shape) -> int:
    return REFERENCE_NODES[shape].shape[1]


def evaluate_shape_functions(shape, xi, weights: Optional[np.ndarray] = None
                             ) -> Tuple[np.ndarray, np.ndarray]:
    """
    Shape functions and parametric derivatives at a point.

    Parameters
    ----------
    shape : str
        'line2', 'tri3' or 'quad4'
    xi : array_like
        Parametric coordinates (length 1 for lines, 2 for surfaces)
    weights : np.ndarray, optional
        NURBS weights per node; gives the rational basis when provided

    Returns
    -------
    N : np.ndarray
        Shape function values, shape (n_nodes,)
    dN : np.ndarray
        Derivatives dN_i/dξ_k, shape (n_nodes, parametric_dim)
    """
    xi = np.atleast_1d(np.asarray(xi, dtype=float))

    if shape == 'line2':
        s = xi[0]
        N = 0.5 * np.array([1.0 - s, 1.0 + s])
        dN = np.array([[-0.5], [0.5]])

    elif shape == 'tri3':
        s, t = xi[0], xi[1]
        N = np.array([1.0 - s - t, s, t])
        dN = np.array([[-1.0, -1.0],
                       [1.0, 0.0],
                       [0.0, 1.0]])

    elif shape == 'quad4':
        s, t = xi[0], xi[1]
        N = 0.25 * np.array([
            (1 - s) * (1 - t),
            (1 + s) * (1 - t),
            (1 + s) * (1 + t),
            (1 - s) * (1 + t),
        ])
        dN = 0.25 * np.array([
            [-(1 - t), -(1 - s)],
            [+(1 - t), -(1 + s)],
            [+(1 + t), +(1 + s)],
            [-(1 + t), +(1 - s)],
        ])

    else:
        raise ValueError(f"Unsupported element shape '{shape}'")

    if weights is not None:
        N, dN = _rational(N, dN, np.asarray(weights, dtype=float))

    return N, dN


def _rational(N, dN, w):
    W = N @ w
    dW = dN.T @ w
    R = N * w / W
    dR = (dN * w[:, None] * W - np.outer(N * w, dW)) / W ** 2
    return R, dR


def map_to_physical(coords: np.ndarray, shape, xi,
                    weights: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Position x(ξ) and tangents dx/dξ_k (rows) of an element."""
    N, dN = evaluate_shape_functions(shape, xi, weights)
    return N @ coords, dN.T @ coords


def unit_normal(coords: np.ndarray, shape, xi=None,
                weights: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Outward unit normal of an element at ξ (element center by default).

    Lines (in the x-y plane) use n = (t_y, -t_x, 0), surfaces n = t_1 × t_2.
    Returns a zero vector for degenerate elements.
    """
    if xi is None:
        xi = REFERENCE_CENTER[shape]
    _, tangents = map_to_physical(coords, shape, xi, weights)

    if parametric_dim(shape) == 1:
        t = tangents[0]
        n = np.array([t[1], -t[0], 0.0])
    else:
        n = np.cross(tangents[0], tangents[1])

    length = np.linalg.norm(n)
    if length <= MortarConstants.DEGENERATE_SIZE:
        return np.zeros(3)
    return n / length


def jacobian_determinant(coords: np.ndarray, shape, xi,
                         weights: Optional[np.ndarray] = None) -> float:
    """Length (lines) or area (surfaces) scaling of the parametric map at ξ."""
    _, tangents = map_to_physical(coords, shape, xi, weights)
    if parametric_dim(shape) == 1:
        return float(np.linalg.norm(tangents[0]))
    return float(np.linalg.norm(np.cross(tangents[0], tangents[1])))


def project_along_direction(coords: np.ndarray, shape, point: np.ndarray,
                            direction: np.ndarray,
                            weights: Optional[np.ndarray] = None,
                            tolerance: float = MortarConstants.PROJECTION_TOLERANCE,
                            max_iterations: int = MortarConstants.MAX_PROJECTION_ITERATIONS
                            ) -> Tuple[np.ndarray, float, bool]:
    """
    Project a point onto an element along a given direction.

    Solves x(ξ) + α d = p for the parametric coordinates ξ and the signed
    distance α with Newton-Raphson. Line elements are treated in the x-y
    plane (z is ignored).

    Parameters
    ----------
    coords : np.ndarray
        Element node coordinates, shape (n_nodes, 3)
    shape : str
        Element shape
    point : np.ndarray
        Point to project, shape (3,)
    direction : np.ndarray
        Projection direction (normal of the auxiliary plane)
    weights : np.ndarray, optional
        NURBS weights
    tolerance : float
        Convergence tolerance, relative to the element size
    max_iterations : int
        Maximum Newton iterations

    Returns
    -------
    xi : np.ndarray
        Parametric coordinates of the projection
    alpha : float
        Signed distance along ``direction``
    converged : bool
        True if the residual dropped below the tolerance

    Algorithm
    ---------
    Newton iteration on r(ξ, α) = x(ξ) + α d - p:

        J = [dx/dξ_1, ..., dx/dξ_k, d]   (columns)
        [δξ, δα] = -J⁻¹ r
    """
    pdim = parametric_dim(shape)
    ncomp = 2 if pdim == 1 else 3

    p = np.asarray(point, dtype=float)[:ncomp]
    d = np.asarray(direction, dtype=float)[:ncomp]
    X = np.asarray(coords, dtype=float)[:, :ncomp]

    size = np.max(np.linalg.norm(X - X.mean(axis=0), axis=1))
    tol = tolerance * size if size > 0 else tolerance

    xi = REFERENCE_CENTER[shape].copy()
    alpha = 0.0

    for _ in range(max_iterations + 1):
        N, dN = evaluate_shape_functions(shape, xi, weights)
        residual = N @ X + alpha * d - p

        if np.linalg.norm(residual) < tol:
            return xi, alpha, True

        J = np.column_stack([*(dN.T @ X), d])

        try:
            delta = np.linalg.solve(J, -residual)
        except np.linalg.LinAlgError:
            return xi, alpha, False

        xi = xi + delta[:pdim]
        alpha += delta[pdim]

    return xi, alpha, False


def is_inside_reference(shape, xi, tolerance: float = 1e-8) -> bool:
    """Check whether parametric coordinates lie inside the reference element."""
    xi = np.atleast_1d(xi)
    if shape == 'tri3':
        return (xi[0] >= -tolerance and xi[1] >= -tolerance
                and xi[0] + xi[1] <= 1.0 + tolerance)
    return bool(np.all(np.abs(xi) <= 1.0 + tolerance))
