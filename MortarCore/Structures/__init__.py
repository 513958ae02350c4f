"""
MortarCore Structure Classes

CouplingInterface : one slave/master interface
    - Node and element tables by global id
    - Search trees, mortar assembly and condensation engine
    - Moving meshes through versioned positions

Usage
-----
>>> from MortarCore.Structures import CouplingInterface
>>> interface = CouplingInterface(MortarParameters(dim=3, shape_function='dual'))
"""

from .Structure_Interface import CouplingInterface

__all__ = ['CouplingInterface']
