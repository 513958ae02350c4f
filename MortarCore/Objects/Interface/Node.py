from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np


class Side(str, Enum):
    """Role of a node or element in the coupling."""
    SLAVE = 'slave'
    MASTER = 'master'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown side '{value}'. Valid options: slave, master") from None


@dataclass
class InterfaceNode:
    """
    Node on a coupling interface.

    Attributes
    ----------
    gid : int
        Global node id, stable over the whole simulation
    coords : np.ndarray
        Current position (x, y, z); 2D input is padded with z = 0
    side : Side
        Slave or master
    owner : int
        Rank owning the node
    weight : float, optional
        NURBS control point weight (None for Lagrange elements)
    """
    gid: int
    coords: np.ndarray
    side: Side
    owner: int = 0
    weight: Optional[float] = None
    reference_coords: np.ndarray = field(default=None, repr=False)

    def __post_init__(self):
        self.side = Side.parse(self.side)
        self.coords = pad_to_3d(self.coords)
        if self.reference_coords is None:
            self.reference_coords = self.coords.copy()
        else:
            self.reference_coords = pad_to_3d(self.reference_coords)
        if self.weight is not None and self.weight <= 0:
            raise ValueError(f"Node {self.gid}: NURBS weight must be positive, got {self.weight}")

    @property
    def displacement(self) -> np.ndarray:
        return self.coords - self.reference_coords


def pad_to_3d(coords) -> np.ndarray:
    """Return coordinates as a float array of length 3 (z = 0 for 2D input)."""
    x = np.asarray(coords, dtype=float).ravel()
    if x.size == 2:
        x = np.array([x[0], x[1], 0.0])
    elif x.size != 3:
        raise ValueError(f"Node coordinates must have 2 or 3 components, got {x.size}")
    return x
