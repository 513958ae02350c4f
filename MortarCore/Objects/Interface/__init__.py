"""
Interface data model: nodes, boundary elements, shape functions, dof map.
"""

from .Node import InterfaceNode, Side, pad_to_3d
from .Element import InterfaceElement, ElementShape, PhysicsType
from .DofMap import DofMap
from . import ShapeFunction

__all__ = [
    'InterfaceNode',
    'InterfaceElement',
    'ElementShape',
    'PhysicsType',
    'Side',
    'DofMap',
    'ShapeFunction',
    'pad_to_3d',
]
