"""
MortarCore Objects

Interface data, geometry, and coupling building blocks.

Subpackages
-----------
Interface : Interface data model
    - InterfaceNode: node with gid, owner, coordinates, optional NURBS weight
    - InterfaceElement: line2 / tri3 / quad4 boundary element
    - DofMap: versioned node-to-dof mapping
    - ShapeFunction: shape functions, normals, point projection

Geometry : Geometric index and segmentation
    - BoundingBox, ConcreteBoundingBox: growing axis-aligned boxes
    - BoundingVolumeTree: hierarchy for overlap queries
    - clip: overlap polygons in the auxiliary plane

Coupling : Mortar assembly and condensation
    - MortarAssembler, MortarOperator: D and M matrices
    - MeshtyingCoupling, FrictionlessContactCoupling, PoroNoPenetrationCoupling
    - CondensationEngine: static condensation and recovery

Modules
-------
Parameters : MortarParameters and option enums
Exceptions : warning categories and fatal errors
"""

from .Exceptions import (CondensationStateError, GeometryDegenerateWarning,
                         InconsistentPartitionError, MixedRoleConflictError, RecoveryError,
                         SingularCondensationWarning)
from .Parameters import (ConsistentDual, CouplingType, GhostingStrategy, MortarConstants,
                         MortarParameters, ParallelRedistribution, SearchAlgorithm,
                         ShapeFunctionType, Triangulation)

__all__ = [
    'MortarParameters',
    'MortarConstants',
    'ShapeFunctionType',
    'ConsistentDual',
    'SearchAlgorithm',
    'Triangulation',
    'CouplingType',
    'GhostingStrategy',
    'ParallelRedistribution',
    'GeometryDegenerateWarning',
    'SingularCondensationWarning',
    'InconsistentPartitionError',
    'MixedRoleConflictError',
    'CondensationStateError',
    'RecoveryError',
]
