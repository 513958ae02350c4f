"""
Coupling Module for MortarCore

This module assembles mortar coupling operators between non-matching slave
and master interface meshes and eliminates the resulting constraints from
the global system.

Search
------
CandidatePair : Slave/master element pair with overlapping bounding boxes
find_candidate_pairs : Tree-based candidate search
find_candidate_pairs_bruteforce : Vectorized reference search

Assembly
--------
MortarAssembler : Segmentation and integration of D and M
MortarOperator : Immutable result of one assembly pass (D, M, normals, gaps)
IntegrationPoint : Integration point with position and weight

Coupling Strategies
-------------------
MeshtyingCoupling : All slave displacement components tied
FrictionlessContactCoupling : Normal contact with primal-dual active set
PoroNoPenetrationCoupling : Normal no-penetration for porous interfaces

Condensation
------------
CondensationEngine : Static condensation and multiplier recovery
CondensationState : States of the condensation state machine
RecoveryResult : Full solution, multipliers and interface forces

Usage
-----
>>> from MortarCore.Objects.Coupling import CondensationEngine, MortarAssembler
>>>
>>> assembler = MortarAssembler(parameters)
>>> operator = assembler.assemble(interface, pairs)
>>>
>>> engine = CondensationEngine('meshtying')
>>> engine.set_operator(operator)
>>> K_red, f_red = engine.condense(K, f)
>>> engine.set_solution(spsolve(K_red, f_red))
>>> result = engine.recover()
"""

from .BaseCoupling import ConstraintSet, CouplingStrategy
from .Condensation import (CondensationEngine, CondensationState, RecoveryResult,
                           create_coupling_strategy)
from .Contact import FrictionlessContactCoupling
from .IntegrationRule import IntegrationPoint, gauss_points_1d, gauss_points_2d_triangle
from .InterfaceDetection import (CandidatePair, find_candidate_pairs,
                                 find_candidate_pairs_bruteforce)
from .Meshtying import MeshtyingCoupling
from .Mortar import MortarAssembler, MortarOperator
from .PoroContact import PoroNoPenetrationCoupling

__all__ = [
    # Search
    'CandidatePair',
    'find_candidate_pairs',
    'find_candidate_pairs_bruteforce',

    # Assembly
    'MortarAssembler',
    'MortarOperator',
    'IntegrationPoint',
    'gauss_points_1d',
    'gauss_points_2d_triangle',

    # Strategies
    'CouplingStrategy',
    'ConstraintSet',
    'MeshtyingCoupling',
    'FrictionlessContactCoupling',
    'PoroNoPenetrationCoupling',
    'create_coupling_strategy',

    # Condensation
    'CondensationEngine',
    'CondensationState',
    'RecoveryResult',
]
