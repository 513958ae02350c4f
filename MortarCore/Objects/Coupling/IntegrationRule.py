from dataclasses import dataclass
from typing import List, Tuple

import numpy as np


@dataclass
class IntegrationPoint:
    """
    Integration point of a mortar integration cell.

    Attributes
    ----------
    position : np.ndarray
        Physical coordinates (x, y, z) in the auxiliary plane
    weight : float
        Integration weight (includes the cell Jacobian)
    normal : np.ndarray
        Auxiliary plane normal, used as projection direction
    master_id : int
        Master element of the clip polygon the cell belongs to
    """
    position: np.ndarray
    weight: float
    normal: np.ndarray
    master_id: int = -1


def gauss_points_1d(order: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gauss-Legendre quadrature points and weights for interval [0, 1].

    Parameters
    ----------
    order : int
        Number of points; the rule is exact for polynomials of degree 2*order - 1

    Returns
    -------
    points : np.ndarray
        Gauss points in [0, 1]
    weights : np.ndarray
        Corresponding weights (sum to 1.0)
    """
    if order == 1:
        points = np.array([0.5])
        weights = np.array([1.0])

    elif order == 2:
        alpha = 1.0 / np.sqrt(3.0)
        points = np.array([0.5 - alpha / 2.0, 0.5 + alpha / 2.0])
        weights = np.array([0.5, 0.5])

    elif order == 3:
        alpha = np.sqrt(3.0 / 5.0)
        points = np.array([0.5 - alpha / 2.0, 0.5, 0.5 + alpha / 2.0])
        weights = np.array([5.0 / 18.0, 8.0 / 18.0, 5.0 / 18.0])

    elif order > 3:
        x, w = np.polynomial.legendre.leggauss(order)
        points = 0.5 * (x + 1.0)
        weights = 0.5 * w

    else:
        raise ValueError(f"Unsupported integration order: {order}")

    return points, weights


def gauss_points_2d_triangle(order: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gauss quadrature on the unit triangle (0,0), (1,0), (0,1).

    Parameters
    ----------
    order : int
        Polynomial degree integrated exactly

    Returns
    -------
    points : np.ndarray
        Points in natural coordinates (ξ, η), shape (n_points, 2)
    weights : np.ndarray
        Corresponding weights (sum to 0.5)

    Notes
    -----
    Orders 1, 2, 4 and 5 use symmetric rules with positive weights. Order 3
    is the 4-point rule with a negative centroid weight. Higher orders use
    a collapsed (Duffy) Gauss-Legendre product rule.
    """
    if order == 1:
        points = np.array([[1.0 / 3.0, 1.0 / 3.0]])
        weights = np.array([0.5])

    elif order == 2:
        points = np.array([
            [1.0 / 6.0, 1.0 / 6.0],
            [2.0 / 3.0, 1.0 / 6.0],
            [1.0 / 6.0, 2.0 / 3.0]
        ])
        weights = np.array([1.0 / 6.0, 1.0 / 6.0, 1.0 / 6.0])

    elif order == 3:
        a = 1.0 / 3.0
        b = 0.2
        c = 0.6
        points = np.array([[a, a], [b, b], [c, b], [b, c]])
        w1 = -27.0 / 96.0
        w2 = 25.0 / 96.0
        weights = np.array([w1, w2, w2, w2])

    elif order == 4:
        # 6-point rule (Dunavant)
        a = 0.445948490915965
        b = 0.091576213509771
        wa = 0.223381589678011 / 2.0
        wb = 0.109951743655322 / 2.0
        points = np.array([
            [a, a], [1.0 - 2.0 * a, a], [a, 1.0 - 2.0 * a],
            [b, b], [1.0 - 2.0 * b, b], [b, 1.0 - 2.0 * b],
        ])
        weights = np.array([wa, wa, wa, wb, wb, wb])

    elif order == 5:
        # 7-point rule (Dunavant)
        a = 0.470142064105115
        b = 0.101286507323456
        wa = 0.132394152788506 / 2.0
        wb = 0.125939180544827 / 2.0
        points = np.array([
            [1.0 / 3.0, 1.0 / 3.0],
            [a, a], [1.0 - 2.0 * a, a], [a, 1.0 - 2.0 * a],
            [b, b], [1.0 - 2.0 * b, b], [b, 1.0 - 2.0 * b],
        ])
        weights = np.array([0.225 / 2.0, wa, wa, wa, wb, wb, wb])

    elif order > 5:
        n = (order + 2) // 2
        u, wu = gauss_points_1d(n)
        pts, wts = [], []
        for ui, wi in zip(u, wu):
            for vj, wj in zip(u, wu):
                pts.append([ui, vj * (1.0 - ui)])
                wts.append(wi * wj * (1.0 - ui))
        points = np.array(pts)
        weights = np.array(wts)

    else:
        raise ValueError(f"Unsupported 2D integration order: {order}")

    return points, weights


def generate_cell_integration_points(cell, order: int, master_id: int = -1
                                     ) -> List[IntegrationPoint]:
    """
    Integration points of one integration cell.

    Parameters
    ----------
    cell : IntegrationCell
        Triangle (surface interfaces) or segment (line interfaces) in the
        auxiliary plane
    order : int
        Integration order
    master_id : int
        Master element the cell belongs to

    Returns
    -------
    List[IntegrationPoint]

    Notes
    -----
    For a triangle with vertices v0, v1, v2 and area A:
        x(ξ, η) = v0 + ξ (v1 - v0) + η (v2 - v0),   w_phys = w_ref · 2A

    For a segment v0-v1 of length L:
        x(ξ) = v0 + ξ (v1 - v0),   w_phys = w_ref · L
    """
    v = cell.vertices
    if len(v) == 2:
        xi, w = gauss_points_1d(order)
        positions = v[0] + np.outer(xi, v[1] - v[0])
        weights = w * cell.measure
    else:
        xi, w = gauss_points_2d_triangle(order)
        positions = v[0] + np.outer(xi[:, 0], v[1] - v[0]) + np.outer(xi[:, 1], v[2] - v[0])
        weights = w * 2.0 * cell.measure

    return [IntegrationPoint(position=x, weight=float(wi), normal=cell.normal,
                             master_id=master_id)
            for x, wi in zip(positions, weights)]
