"""
Shared fixtures for MortarCore tests.

This module provides simple, reusable interfaces and helpers for testing.
"""
import matplotlib

matplotlib.use('Agg')

import numpy as np
import pytest

from MortarCore.Objects.Parameters import MortarParameters
from MortarCore.Structures.Structure_Interface import CouplingInterface


# =============================================================================
# Mesh helpers
# =============================================================================

def quad_grid(nx, ny, origin=(0.0, 0.0), size=(1.0, 1.0), z=0.0):
    """Structured quad4 grid: coordinates (n, 3) and counter-clockwise connectivity."""
    xs = np.linspace(origin[0], origin[0] + size[0], nx + 1)
    ys = np.linspace(origin[1], origin[1] + size[1], ny + 1)
    coords = np.array([[x, y, z] for y in ys for x in xs])
    conn = []
    for j in range(ny):
        for i in range(nx):
            n0 = j * (nx + 1) + i
            conn.append([n0, n0 + 1, n0 + nx + 2, n0 + nx + 1])
    return coords, np.array(conn)


def line_mesh(x_start, x_end, n, y=0.0):
    """Straight line2 mesh along x from x_start to x_end (direction is kept)."""
    xs = np.linspace(x_start, x_end, n + 1)
    coords = np.array([[x, y] for x in xs])
    conn = np.array([[i, i + 1] for i in range(n)])
    return coords, conn


def make_quad_interface(slave=(1, 1), master=(1, 1), master_origin=(0.0, 0.0),
                        master_size=(1.0, 1.0), **options):
    """Surface interface: slave grid on the unit square, master grid anywhere."""
    params = MortarParameters(dim=3, **options)
    interface = CouplingInterface(params)
    s_coords, s_conn = quad_grid(*slave)
    m_coords, m_conn = quad_grid(*master, origin=master_origin, size=master_size)
    interface.add_mesh(s_coords, s_conn, 'quad4', 'slave')
    interface.add_mesh(m_coords, m_conn, 'quad4', 'master')
    return interface


def make_line_interface(slave=(0.0, 1.0, 1), master=(0.0, 1.0, 1), master_y=0.0, **options):
    """Line interface in 2D: (x_start, x_end, n_elements) per side."""
    params = MortarParameters(dim=2, **options)
    interface = CouplingInterface(params)
    s_coords, s_conn = line_mesh(*slave)
    m_coords, m_conn = line_mesh(*master, y=master_y)
    interface.add_mesh(s_coords, s_conn, 'line2', 'slave')
    interface.add_mesh(m_coords, m_conn, 'line2', 'master')
    return interface


def quad4_stiffness(X, E=1000.0, nu=0.3, t=1.0):
    """Plane stress stiffness of a bilinear quad (2x2 Gauss), dofs [u0, v0, u1, v1, ...]."""
    C = E / (1.0 - nu ** 2) * np.array([[1.0, nu, 0.0],
                                        [nu, 1.0, 0.0],
                                        [0.0, 0.0, (1.0 - nu) / 2.0]])
    g = 1.0 / np.sqrt(3.0)
    K = np.zeros((8, 8))
    for xi, eta in [(-g, -g), (g, -g), (g, g), (-g, g)]:
        dN = 0.25 * np.array([[-(1 - eta), (1 - eta), (1 + eta), -(1 + eta)],
                              [-(1 - xi), -(1 + xi), (1 + xi), (1 - xi)]])
        J = dN @ X
        dNx = np.linalg.solve(J, dN)
        B = np.zeros((3, 8))
        B[0, 0::2] = dNx[0]
        B[1, 1::2] = dNx[1]
        B[2, 0::2] = dNx[1]
        B[2, 1::2] = dNx[0]
        K += B.T @ C @ B * np.linalg.det(J) * t
    return K


# =============================================================================
# Interface Fixtures
# =============================================================================

@pytest.fixture
def offset_quads():
    """Slave unit quad, master unit quad shifted by (0.5, 0, 0)."""
    return make_quad_interface(master_origin=(0.5, 0.0))


@pytest.fixture
def nonmatching_patch():
    """Slave 2x2 and master 3x3 grids on the same unit square."""
    return make_quad_interface(slave=(2, 2), master=(3, 3))


@pytest.fixture
def conforming_lines():
    """One slave and one master line element on [0, 1] x {0}."""
    interface = make_line_interface()
    interface.make_dofs()
    return interface


# =============================================================================
# Helper Functions
# =============================================================================

def off_diagonal_ratio(matrix):
    """Largest off-diagonal entry relative to the largest diagonal entry."""
    A = matrix.toarray() if hasattr(matrix, 'toarray') else np.asarray(matrix)
    off = A - np.diag(np.diag(A))
    return np.abs(off).max() / np.abs(np.diag(A)).max()
