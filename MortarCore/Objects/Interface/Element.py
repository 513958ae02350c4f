from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from MortarCore.Objects.Interface.Node import InterfaceNode, Side
from MortarCore.Objects.Interface import ShapeFunction as sf


class ElementShape(str, Enum):
    LINE2 = 'line2'
    TRI3 = 'tri3'
    QUAD4 = 'quad4'

    @property
    def n_nodes(self) -> int:
        return len(sf.REFERENCE_NODES[self.value])

    @property
    def parametric_dim(self) -> int:
        return sf.parametric_dim(self.value)


class PhysicsType(str, Enum):
    """Physical type of the bulk discretization an interface element belongs to."""
    STRUCTURE = 'structure'
    PORO = 'poro'


@dataclass
class InterfaceElement:
    """
    Boundary element on a coupling interface.

    Attributes
    ----------
    gid : int
        Global element id
    node_ids : tuple of int
        Ordered node gids (counter-clockwise for surfaces)
    shape : ElementShape
        line2, tri3 or quad4
    side : Side
        Slave or master
    owner : int
        Rank owning the element
    phys_type : PhysicsType
        Structure or poro
    """
    gid: int
    node_ids: Tuple[int, ...]
    shape: ElementShape
    side: Side
    owner: int = 0
    phys_type: PhysicsType = PhysicsType.STRUCTURE

    def __post_init__(self):
        self.shape = ElementShape(str(self.shape).lower()) \
            if not isinstance(self.shape, ElementShape) else self.shape
        self.side = Side.parse(self.side)
        self.phys_type = PhysicsType(self.phys_type)
        self.node_ids = tuple(int(n) for n in self.node_ids)

        if len(self.node_ids) != self.shape.n_nodes:
            raise ValueError(f"Element {self.gid}: {self.shape.value} needs "
                             f"{self.shape.n_nodes} nodes, got {len(self.node_ids)}")
        if len(set(self.node_ids)) != len(self.node_ids):
            raise ValueError(f"Element {self.gid}: repeated node ids {self.node_ids}")

    # =========================================================================
    # Geometry (coordinates are looked up in a node table)
    # =========================================================================

    def coordinates(self, nodes: Mapping[int, InterfaceNode]) -> np.ndarray:
        """Current node coordinates, shape (n_nodes, 3)."""
        return np.array([nodes[n].coords for n in self.node_ids])

    def weights(self, nodes: Mapping[int, InterfaceNode]) -> Optional[np.ndarray]:
        """NURBS weights if every node carries one, else None."""
        w = [nodes[n].weight for n in self.node_ids]
        if any(v is None for v in w):
            return None
        return np.array(w, dtype=float)

    def centroid(self, nodes: Mapping[int, InterfaceNode]) -> np.ndarray:
        return self.coordinates(nodes).mean(axis=0)

    def normal(self, nodes: Mapping[int, InterfaceNode], xi=None) -> np.ndarray:
        return sf.unit_normal(self.coordinates(nodes), self.shape.value, xi,
                              self.weights(nodes))

    def measure(self, nodes: Mapping[int, InterfaceNode]) -> float:
        """Length (line2) or area (tri3, quad4)."""
        return element_measure(self.coordinates(nodes), self.shape.value)

    def characteristic_size(self, nodes: Mapping[int, InterfaceNode]) -> float:
        """Longest edge of the element."""
        return characteristic_size(self.coordinates(nodes))

    def nodal_normals(self, nodes: Mapping[int, InterfaceNode]) -> Dict[int, np.ndarray]:
        """Unit normal evaluated at each node of the element."""
        X = self.coordinates(nodes)
        w = self.weights(nodes)
        ref = sf.REFERENCE_NODES[self.shape.value]
        return {gid: sf.unit_normal(X, self.shape.value, ref[i], w)
                for i, gid in enumerate(self.node_ids)}


def element_measure(coords: np.ndarray, shape) -> float:
    if shape == 'line2':
        return float(np.linalg.norm(coords[1] - coords[0]))
    if shape == 'tri3':
        return 0.5 * float(np.linalg.norm(np.cross(coords[1] - coords[0],
                                                   coords[2] - coords[0])))
    # Quad split along the 0-2 diagonal (exact for planar quads)
    a = np.cross(coords[1] - coords[0], coords[2] - coords[0])
    b = np.cross(coords[2] - coords[0], coords[3] - coords[0])
    return 0.5 * float(np.linalg.norm(a) + np.linalg.norm(b))


def characteristic_size(coords: np.ndarray) -> float:
    n = len(coords)
    edges = [np.linalg.norm(coords[(i + 1) % n] - coords[i]) for i in range(n)]
    return float(max(edges))
