"""
Geometric index and segmentation.

BoundingBox / ConcreteBoundingBox : growing axis-aligned boxes
BoundingVolumeTree : box hierarchy with top-down build and bottom-up refit
clip : slave/master overlap polygon in the auxiliary plane
"""

from .BoundingBox import BoundingBox, ConcreteBoundingBox
from .BoundingVolumeTree import BoundingVolumeTree
from .Clipping import (AuxiliaryPlane, IntegrationCell, IntersectionPolygon, VertexTag,
                       clip, signed_area)

__all__ = [
    'BoundingBox',
    'ConcreteBoundingBox',
    'BoundingVolumeTree',
    'AuxiliaryPlane',
    'IntegrationCell',
    'IntersectionPolygon',
    'VertexTag',
    'clip',
    'signed_area',
]
