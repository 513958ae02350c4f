from typing import Dict, Iterable, Sequence, Tuple

import numpy as np


class DofMap:
    """
    Versioned mapping from interface node gids to global dof ids.

    A DofMap is never modified. A new dof layout (remeshing, added fields,
    renumbering) is expressed by a new DofMap with an incremented version,
    so that consumers caching derived data (projection operator,
    transformation matrix) can detect the change by comparing versions.

    Attributes
    ----------
    version : int
        Layout version
    """

    def __init__(self, node_dofs: Dict[int, Sequence[int]], version: int = 0):
        self._node_dofs = {int(gid): tuple(int(d) for d in dofs)
                           for gid, dofs in node_dofs.items()}
        self._version = int(version)

        all_dofs = [d for dofs in self._node_dofs.values() for d in dofs]
        if len(all_dofs) != len(set(all_dofs)):
            raise ValueError("DofMap: a global dof is assigned to more than one node")

    @classmethod
    def from_nodes(cls, node_ids: Iterable[int], dofs_per_node: int,
                   offset: int = 0, version: int = 0) -> 'DofMap':
        """Consecutive numbering in node order, ``dofs_per_node`` dofs each."""
        node_dofs = {}
        for i, gid in enumerate(node_ids):
            start = offset + i * dofs_per_node
            node_dofs[gid] = tuple(range(start, start + dofs_per_node))
        return cls(node_dofs, version)

    @property
    def version(self) -> int:
        return self._version

    @property
    def n_dofs(self) -> int:
        return sum(len(d) for d in self._node_dofs.values())

    def dofs(self, gid: int) -> Tuple[int, ...]:
        try:
            return self._node_dofs[gid]
        except KeyError:
            raise KeyError(f"DofMap v{self._version}: node {gid} has no dofs") from None

    def component_dofs(self, node_ids: Iterable[int], n_components: int) -> np.ndarray:
        """First ``n_components`` dofs of each node, node-major order."""
        out = []
        for gid in node_ids:
            dofs = self.dofs(gid)
            if len(dofs) < n_components:
                raise ValueError(f"Node {gid} has {len(dofs)} dofs, "
                                 f"{n_components} displacement components required")
            out.extend(dofs[:n_components])
        return np.array(out, dtype=int)

    def updated(self, node_dofs: Dict[int, Sequence[int]]) -> 'DofMap':
        """New DofMap with the given layout and the next version number."""
        return DofMap(node_dofs, self._version + 1)

    def __contains__(self, gid) -> bool:
        return gid in self._node_dofs

    def __len__(self) -> int:
        return len(self._node_dofs)

    def __repr__(self) -> str:
        return f"DofMap(nodes={len(self)}, dofs={self.n_dofs}, version={self._version})"
