"""
MortarCore - Mortar Coupling of Non-Matching Interface Meshes

A Python framework for coupling two discretizations across a shared
interface with mortar methods:
- Geometric search: bounding volume trees over interface elements
- Segmentation: clipping of slave/master pairs in an auxiliary plane
- Assembly: mortar matrices D and M with standard or dual shape functions
- Condensation: elimination of the interface constraints from the global system

Main Components
---------------
Structures : Interface orchestration
    - CouplingInterface: nodes, elements, search, assembly, engine

Solvers : Host-side reference solvers and post-processing
    - StaticCondensed: condensed linear solve with recovery
    - Visualizer: polygon plots, distribution plots, VTK export

Parallel : Simulated distribution over ranks
    - Partition, RankView: ownership and ghosting
    - Redistributor: load balancing

Objects : Building blocks (import from MortarCore.Objects)
    - Interface: InterfaceNode, InterfaceElement, DofMap, ShapeFunction
    - Geometry: BoundingBox, BoundingVolumeTree, clip
    - Coupling: MortarAssembler, strategies, CondensationEngine

Quick Start
-----------
>>> from MortarCore import CouplingInterface, MortarParameters, StaticCondensed
>>>
>>> interface = CouplingInterface(MortarParameters(dim=2, shape_function='dual'))
>>> interface.add_mesh(slave_coords, [[0, 1], [1, 2]], 'line2', 'slave')
>>> interface.add_mesh(master_coords, [[0, 1]], 'line2', 'master')
>>> interface.make_dofs()
>>> interface.evaluate()
>>>
>>> result = StaticCondensed.solve(interface, K, f, fixed_dofs=[0, 1])
>>> result.multipliers

Version: 1.0
"""

# Version information
__version__ = '1.0.0'

# Objects package (available but typically imported from subpackages)
from MortarCore import Objects

from MortarCore.Objects import (
    # Configuration
    MortarParameters,
    MortarConstants,
    CouplingType,
    # Warnings and errors
    GeometryDegenerateWarning,
    SingularCondensationWarning,
    InconsistentPartitionError,
    MixedRoleConflictError,
    CondensationStateError,
    RecoveryError,
)

from MortarCore.Objects.Coupling import (
    CondensationEngine,
    CondensationState,
    MortarAssembler,
    MortarOperator,
    RecoveryResult,
)

# Parallel distribution
from MortarCore.Parallel import Partition, Redistributor, distribution_report

# Structure classes
from MortarCore.Structures import CouplingInterface

# Solver classes
from MortarCore.Solvers import (
    StaticCondensed,
    Visualizer,
    PlotStyle,
    ConvergenceError,
    SingularSystemError,
)

__all__ = [
    # Version
    '__version__',

    # Configuration
    'MortarParameters',
    'MortarConstants',
    'CouplingType',

    # Structures
    'CouplingInterface',

    # Assembly & condensation
    'MortarAssembler',
    'MortarOperator',
    'CondensationEngine',
    'CondensationState',
    'RecoveryResult',

    # Parallel
    'Partition',
    'Redistributor',
    'distribution_report',

    # Solvers & visualization
    'StaticCondensed',
    'Visualizer',
    'PlotStyle',

    # Warnings and errors
    'GeometryDegenerateWarning',
    'SingularCondensationWarning',
    'InconsistentPartitionError',
    'MixedRoleConflictError',
    'CondensationStateError',
    'RecoveryError',
    'ConvergenceError',
    'SingularSystemError',
]
