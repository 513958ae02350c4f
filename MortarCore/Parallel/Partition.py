"""
Distribution of an interface over ranks.

Ranks are simulated inside one process: a :class:`Partition` assigns every
interface element to an owning rank, and :meth:`Partition.build_views`
produces one :class:`RankView` per rank holding what that rank would store
locally in a distributed run:

- its owned slave elements (integrated by this rank only),
- the master elements it needs for the search (owned + ghosted),
- the column node set of all these elements.

Collective operations (ghost exchange, all-reduce of id offsets,
all-gather of roles) are plain functions over the views.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

import numpy as np

from MortarCore.Objects.Exceptions import InconsistentPartitionError
from MortarCore.Objects.Geometry.BoundingVolumeTree import BoundingVolumeTree
from MortarCore.Objects.Parameters import GhostingStrategy


@dataclass
class RankView:
    """
    Local data of one rank.

    Attributes
    ----------
    rank : int
        Rank id
    slave_elements : List[int]
        Owned slave elements
    master_elements : List[int]
        Owned and ghosted master elements
    ghost_slave_elements : List[int]
        Slave elements of other ranks held redundantly
    nodes : Set[int]
        Column node set (all nodes of the held elements)
    owned_nodes : Set[int]
        Nodes owned by this rank
    roles : Dict[str, Set]
        Physical types held per side ('slave', 'master')
    """
    rank: int
    slave_elements: List[int] = field(default_factory=list)
    master_elements: List[int] = field(default_factory=list)
    ghost_slave_elements: List[int] = field(default_factory=list)
    nodes: Set[int] = field(default_factory=set)
    owned_nodes: Set[int] = field(default_factory=set)
    roles: Dict[str, Set] = field(default_factory=lambda: {'slave': set(), 'master': set()})

    @property
    def n_held_masters(self) -> int:
        return len(self.master_elements)

    def check_consistency(self, interface):
        """
        Verify that every held element finds all its nodes locally.

        Raises
        ------
        InconsistentPartitionError
            If an element references a node missing from the column set or
            from the interface node table
        """
        held = self.slave_elements + self.ghost_slave_elements + self.master_elements
        for gid in held:
            element = interface.elements.get(gid)
            if element is None:
                raise InconsistentPartitionError(
                    f"Rank {self.rank}: element {gid} is not known to the interface")
            missing = [n for n in element.node_ids
                       if n not in self.nodes or n not in interface.nodes]
            if missing:
                raise InconsistentPartitionError(
                    f"Rank {self.rank}: element {gid} references missing node(s) {missing}")


class Partition:
    """
    Element-to-rank assignment of an interface.

    Parameters
    ----------
    n_ranks : int
        Number of ranks
    element_owner : Dict[int, int]
        Owning rank per element gid (slave and master)
    """

    def __init__(self, n_ranks: int, element_owner: Mapping[int, int]):
        if n_ranks < 1:
            raise ValueError(f"n_ranks must be positive, got {n_ranks}")
        bad = {gid: r for gid, r in element_owner.items() if not 0 <= r < n_ranks}
        if bad:
            raise ValueError(f"Element owners out of range [0, {n_ranks}): {bad}")
        self.n_ranks = n_ranks
        self.element_owner = dict(element_owner)

    @classmethod
    def block(cls, interface, n_ranks: int) -> 'Partition':
        """Contiguous blocks of ascending gids, per side."""
        owner = {}
        for ids in (interface.slave_elements, interface.master_elements):
            for rank, chunk in enumerate(np.array_split(np.array(ids, dtype=int), n_ranks)):
                for gid in chunk:
                    owner[int(gid)] = rank
        return cls(n_ranks, owner)

    @classmethod
    def single(cls, interface) -> 'Partition':
        return cls.block(interface, 1)

    def owned_elements(self, rank: int, ids: Optional[Iterable[int]] = None) -> List[int]:
        pool = self.element_owner if ids is None else ids
        return sorted(g for g in pool if self.element_owner.get(g) == rank)

    def node_owners(self, interface) -> Dict[int, int]:
        """A node is owned by the lowest rank among its adjacent elements."""
        owners: Dict[int, int] = {}
        for gid, element in interface.elements.items():
            rank = self.element_owner.get(gid, 0)
            for n in element.node_ids:
                owners[n] = min(rank, owners.get(n, rank))
        return owners

    def apply(self, interface):
        """Write element and node ownership into the interface."""
        for gid, element in interface.elements.items():
            element.owner = self.element_owner.get(gid, 0)
        for gid, rank in self.node_owners(interface).items():
            if gid in interface.nodes:
                interface.nodes[gid].owner = rank

    def build_views(self, interface, ghosting=GhostingStrategy.REDUNDANT_MASTER,
                    search_param: float = 0.0) -> List[RankView]:
        """
        Local data of every rank after ghosting.

        Parameters
        ----------
        interface : CouplingInterface
            Interface holding nodes and elements
        ghosting : GhostingStrategy or str
            'redundant_master': every rank holds all master elements
            'redundant_all': every rank holds all elements
            'proximity': master elements overlapping the inflated boxes of
            the owned slave elements
        search_param : float
            Inflation radius used by the proximity strategy
        """
        ghosting = GhostingStrategy.parse(ghosting)
        slaves = interface.slave_elements
        masters = interface.master_elements
        node_owner = self.node_owners(interface)

        master_tree = None
        if ghosting is GhostingStrategy.PROXIMITY:
            master_tree = BoundingVolumeTree(interface.parameters.dim,
                                             interface.parameters.leaf_size)
            for gid in masters:
                master_tree.insert(gid, interface.element_coordinates(gid))

        views = []
        for rank in range(self.n_ranks):
            owned_slaves = self.owned_elements(rank, slaves)
            ghost_slaves = []
            if ghosting is GhostingStrategy.REDUNDANT_ALL:
                ghost_slaves = [g for g in slaves if self.element_owner.get(g) != rank]

            if ghosting is GhostingStrategy.PROXIMITY:
                held = set(self.owned_elements(rank, masters))
                slave_tree = BoundingVolumeTree(interface.parameters.dim)
                for gid in owned_slaves:
                    slave_tree.insert(gid, interface.element_coordinates(gid))
                for gid in owned_slaves:
                    held |= master_tree.query(slave_tree.box(gid).inflated(search_param))
                held_masters = sorted(held)
            else:
                held_masters = list(masters)

            nodes: Set[int] = set()
            roles = {'slave': set(), 'master': set()}
            for gid in owned_slaves + ghost_slaves + held_masters:
                element = interface.elements[gid]
                nodes.update(element.node_ids)
            for gid in owned_slaves:
                roles['slave'].add(interface.elements[gid].phys_type)
            for gid in self.owned_elements(rank, masters):
                roles['master'].add(interface.elements[gid].phys_type)

            views.append(RankView(
                rank=rank, slave_elements=owned_slaves, master_elements=held_masters,
                ghost_slave_elements=ghost_slaves, nodes=nodes,
                owned_nodes={n for n in nodes if node_owner.get(n) == rank},
                roles=roles))
        return views

    def get_info(self) -> Dict:
        counts = np.bincount(list(self.element_owner.values()), minlength=self.n_ranks)
        return {'n_ranks': self.n_ranks, 'elements_per_rank': counts.tolist()}

    def __repr__(self) -> str:
        return f"Partition(n_ranks={self.n_ranks}, elements={len(self.element_owner)})"


# =============================================================================
# COLLECTIVES
# =============================================================================

def compute_gid_offset(local_max_ids: Sequence[int]) -> int:
    """
    Global id offset for a second mesh (all-reduce MAX over ranks, plus one).

    Parameters
    ----------
    local_max_ids : Sequence[int]
        Largest gid known on each rank (ranks without ids may pass -1)
    """
    if len(local_max_ids) == 0:
        return 0
    return int(max(local_max_ids)) + 1


def gather_roles(views: Sequence[RankView]) -> Dict[str, Set]:
    """Union of the physical types held per side over all ranks (all-gather)."""
    roles = {'slave': set(), 'master': set()}
    for view in views:
        for side in roles:
            roles[side] |= view.roles[side]
    return roles


def distribution_report(partition: Partition, views: Sequence[RankView],
                        title: str = 'interface') -> str:
    """Per-rank table of owned and ghosted elements and nodes."""
    lines = [f"Parallel distribution of {title} ({partition.n_ranks} rank(s))",
             f"{'rank':>5} | {'slaves':>7} | {'ghost slaves':>12} | {'masters':>8} | "
             f"{'owned nodes':>11} | {'column nodes':>12}",
             "-" * 72]
    for v in views:
        lines.append(f"{v.rank:>5} | {len(v.slave_elements):>7} | "
                     f"{len(v.ghost_slave_elements):>12} | {len(v.master_elements):>8} | "
                     f"{len(v.owned_nodes):>11} | {len(v.nodes):>12}")
    slave_counts = [len(v.slave_elements) for v in views]
    if slave_counts and max(slave_counts) > 0:
        mean = sum(slave_counts) / len(slave_counts)
        lines.append("-" * 72)
        lines.append(f"slave element imbalance (max/avg): {max(slave_counts) / mean:.3f}")
    return "\n".join(lines)
