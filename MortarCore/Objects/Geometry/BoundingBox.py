"""
Axis-aligned bounding boxes.

A box is stored as a 3x2 array [[xmin, xmax], [ymin, ymax], [zmin, zmax]].
It only grows: points and other boxes are added, nothing is removed. An
empty box overlaps nothing; a box built from a single point has zero size
and is still valid.
"""

from typing import Optional

import numpy as np


class BoundingBox:
    """
    Growing axis-aligned box in 3D.

    Attributes
    ----------
    box : np.ndarray
        Bounds, shape (3, 2)
    empty : bool
        True until the first point is added
    """

    n_axes = 3

    def __init__(self, points: Optional[np.ndarray] = None):
        self.box = np.zeros((3, 2))
        self.empty = True
        if points is not None:
            self.add_points(points)

    # =========================================================================
    # Growing
    # =========================================================================

    def _coords(self, point) -> np.ndarray:
        x = np.zeros(3)
        p = np.asarray(point, dtype=float).ravel()
        x[:p.size] = p
        return x

    def add_point(self, point):
        x = self._coords(point)
        if self.empty:
            self.box[:, 0] = x
            self.box[:, 1] = x
            self.empty = False
        else:
            self.box[:, 0] = np.minimum(self.box[:, 0], x)
            self.box[:, 1] = np.maximum(self.box[:, 1], x)

    def add_points(self, points):
        for p in np.atleast_2d(points):
            self.add_point(p)

    def assign(self, other: 'BoundingBox'):
        """Grow to enclose another box."""
        if other.empty:
            return
        self.add_point(other.box[:, 0])
        self.add_point(other.box[:, 1])

    def inflated(self, radius: float) -> 'BoundingBox':
        """Copy grown by ``radius`` on every active axis."""
        out = self.copy()
        if not out.empty:
            out.box[:self.n_axes, 0] -= radius
            out.box[:self.n_axes, 1] += radius
        return out

    def copy(self) -> 'BoundingBox':
        out = self.__class__.__new__(self.__class__)
        out.__dict__.update(self.__dict__)
        out.box = self.box.copy()
        return out

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def min(self) -> np.ndarray:
        return self.box[:, 0]

    @property
    def max(self) -> np.ndarray:
        return self.box[:, 1]

    @property
    def center(self) -> np.ndarray:
        return self.box.mean(axis=1)

    @property
    def extent(self) -> np.ndarray:
        return self.box[:, 1] - self.box[:, 0]

    def diagonal(self) -> float:
        if self.empty:
            return 0.0
        return float(np.linalg.norm(self.extent))

    def within(self, norm: float, other: 'BoundingBox') -> bool:
        """
        Check whether two boxes overlap.

        Parameters
        ----------
        norm : float
            Absolute tolerance added to this box before the test
        other : BoundingBox
            Box to test against

        Returns
        -------
        bool
            True if the intervals overlap on every active axis
        """
        if self.empty or other.empty:
            return False
        k = self.n_axes
        lower = self.box[:k, 0] - norm
        upper = self.box[:k, 1] + norm
        return bool(np.all(lower <= other.box[:k, 1]) and np.all(other.box[:k, 0] <= upper))

    def contains_point(self, point, norm: float = 0.0) -> bool:
        if self.empty:
            return False
        x = self._coords(point)[:self.n_axes]
        k = self.n_axes
        return bool(np.all(x >= self.box[:k, 0] - norm) and np.all(x <= self.box[:k, 1] + norm))

    def __repr__(self):
        if self.empty:
            return f"{self.__class__.__name__}(empty)"
        return f"{self.__class__.__name__}(min={self.min.tolist()}, max={self.max.tolist()})"


class ConcreteBoundingBox(BoundingBox):
    """
    Bounding box of a problem of given dimension.

    For 2D problems the z bounds are held at zero and ignored in overlap
    and point tests.
    """

    def __init__(self, probdim: int = 3, points: Optional[np.ndarray] = None):
        if probdim not in (2, 3):
            raise ValueError(f"probdim must be 2 or 3, got {probdim}")
        self.probdim = probdim
        self.n_axes = probdim
        super().__init__(points)

    def _coords(self, point) -> np.ndarray:
        x = super()._coords(point)
        if self.probdim == 2:
            x[2] = 0.0
        return x
