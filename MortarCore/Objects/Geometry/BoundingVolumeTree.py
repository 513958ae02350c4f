"""
Bounding volume hierarchy over interface elements.

Construction is top-down: the element set is split at the median of the
box centers along the longest axis until a leaf holds at most
``leaf_size`` elements. Moving meshes are handled bottom-up by
:meth:`BoundingVolumeTree.refit`, which recomputes all boxes from current
coordinates without touching the tree topology.
"""

from typing import Dict, List, Mapping, Optional, Set

import numpy as np

from MortarCore.Objects.Geometry.BoundingBox import ConcreteBoundingBox


class _TreeNode:
    __slots__ = ('box', 'left', 'right', 'items')

    def __init__(self, box, left=None, right=None, items=None):
        self.box = box
        self.left = left
        self.right = right
        self.items = items

    @property
    def is_leaf(self) -> bool:
        return self.items is not None


class BoundingVolumeTree:
    """
    Spatial index answering box overlap queries.

    Parameters
    ----------
    dim : int
        Problem dimension (2 or 3)
    leaf_size : int
        Maximum number of entries per leaf

    Example
    -------
    >>> tree = BoundingVolumeTree(dim=2)
    >>> tree.insert(7, np.array([[0.0, 0.0], [1.0, 0.0]]))
    >>> tree.query(ConcreteBoundingBox(2, np.array([[0.5, 0.0]])))
    {7}
    """

    def __init__(self, dim: int = 3, leaf_size: int = 4):
        self.dim = dim
        self.leaf_size = max(1, int(leaf_size))
        self._boxes: Dict[int, ConcreteBoundingBox] = {}
        self._root: Optional[_TreeNode] = None
        self._dirty = False

    def __len__(self) -> int:
        return len(self._boxes)

    def __contains__(self, gid) -> bool:
        return gid in self._boxes

    def items(self) -> Dict[int, ConcreteBoundingBox]:
        return dict(self._boxes)

    def box(self, gid: int) -> ConcreteBoundingBox:
        return self._boxes[gid]

    # =========================================================================
    # Building
    # =========================================================================

    def insert(self, gid: int, coords: np.ndarray):
        """Add an entity by the coordinates of its corners."""
        self._boxes[gid] = ConcreteBoundingBox(self.dim, coords)
        self._dirty = True

    def rebuild(self):
        """Top-down construction of the tree topology."""
        ids = sorted(self._boxes)
        self._root = self._build(ids) if ids else None
        self._dirty = False

    def _build(self, ids: List[int]) -> _TreeNode:
        box = ConcreteBoundingBox(self.dim)
        for gid in ids:
            box.assign(self._boxes[gid])

        if len(ids) <= self.leaf_size:
            return _TreeNode(box, items=list(ids))

        centers = np.array([self._boxes[gid].center for gid in ids])
        spread = centers.max(axis=0) - centers.min(axis=0)
        axis = int(np.argmax(spread[:self.dim]))

        # Stable sort keeps ties in gid order
        order = np.argsort(centers[:, axis], kind='stable')
        ordered = [ids[i] for i in order]
        mid = len(ordered) // 2

        return _TreeNode(box, left=self._build(ordered[:mid]),
                         right=self._build(ordered[mid:]))

    def refit(self, coordinates: Optional[Mapping[int, np.ndarray]] = None):
        """
        Update boxes for moved entities, keeping the topology.

        Parameters
        ----------
        coordinates : Mapping[int, np.ndarray], optional
            New corner coordinates per entity; entities not listed keep
            their current box
        """
        if coordinates:
            for gid, coords in coordinates.items():
                if gid in self._boxes:
                    self._boxes[gid] = ConcreteBoundingBox(self.dim, coords)

        if self._dirty or self._root is None:
            self.rebuild()
        else:
            self._refit_node(self._root)

    def _refit_node(self, node: _TreeNode) -> ConcreteBoundingBox:
        box = ConcreteBoundingBox(self.dim)
        if node.is_leaf:
            for gid in node.items:
                box.assign(self._boxes[gid])
        else:
            box.assign(self._refit_node(node.left))
            box.assign(self._refit_node(node.right))
        node.box = box
        return box

    # =========================================================================
    # Queries
    # =========================================================================

    def query(self, box: ConcreteBoundingBox, norm: float = 0.0) -> Set[int]:
        """
        All entities whose box overlaps ``box`` within ``norm``.

        An empty tree or an empty query box yields an empty set.
        """
        if self._dirty:
            self.rebuild()
        found: Set[int] = set()
        if self._root is None or box.empty:
            return found

        stack = [self._root]
        while stack:
            node = stack.pop()
            if not node.box.within(norm, box):
                continue
            if node.is_leaf:
                for gid in node.items:
                    if self._boxes[gid].within(norm, box):
                        found.add(gid)
            else:
                stack.append(node.left)
                stack.append(node.right)
        return found

    def depth(self) -> int:
        def _depth(node):
            if node is None:
                return 0
            if node.is_leaf:
                return 1
            return 1 + max(_depth(node.left), _depth(node.right))

        if self._dirty:
            self.rebuild()
        return _depth(self._root)
