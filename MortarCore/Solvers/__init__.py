"""
MortarCore Solvers

StaticCondensed : linear solve of a condensed system with Dirichlet dofs
    - solve: condense, solve, recover
    - solve_active_set: repeated solve until the contact active set settles

Visualizer : interface plots and exports
    - plot_polygons: slave/master outlines with clip polygons
    - plot_distribution: elements per rank
    - export_polygons_vtk: integration cells to VTK
"""

from .Static import ConvergenceError, SingularSystemError, SolverConstants, StaticCondensed
from .Visualizer import PlotStyle, Visualizer

__all__ = [
    'StaticCondensed',
    'SolverConstants',
    'ConvergenceError',
    'SingularSystemError',
    'Visualizer',
    'PlotStyle',
]
