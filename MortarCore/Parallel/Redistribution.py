"""
Load balancing of the interface distribution.

Slave elements are redistributed by weighted recursive coordinate
bisection of their centroids, master elements by unweighted bisection
over the same number of parts. Redistribution changes which rank
integrates which element, never the assembled operators.
"""

from typing import Dict, Mapping, Optional, Sequence

import numpy as np

from MortarCore.Objects.Parameters import MortarConstants, ParallelRedistribution
from MortarCore.Parallel.Partition import Partition


def recursive_coordinate_bisection(centroids: Mapping[int, np.ndarray], n_parts: int,
                                   weights: Optional[Mapping[int, float]] = None,
                                   dim: int = 3,
                                   imbalance_tol: Optional[float] = None) -> Dict[int, int]:
    """
    Split entities into ``n_parts`` spatially compact groups of similar weight.

    Parameters
    ----------
    centroids : Mapping[int, np.ndarray]
        Centroid per entity gid
    n_parts : int
        Number of parts
    weights : Mapping[int, float], optional
        Weight per gid (default 1)
    dim : int
        Number of coordinate axes used for splitting
    imbalance_tol : float, optional
        Accepted max/target weight ratio of a split. The longest axis is
        cut first; when its split exceeds the tolerance the other axes are
        tried and the best balanced cut is kept.

    Returns
    -------
    Dict[int, int]
        Part index per gid
    """
    ids = sorted(centroids)
    assignment: Dict[int, int] = {}
    if not ids:
        return assignment

    points = np.array([np.asarray(centroids[g], dtype=float)[:dim] for g in ids])
    w = np.array([1.0 if weights is None else float(weights.get(g, 1.0)) for g in ids])

    def _cut(index: np.ndarray, axis: int, n_left: int, n: int):
        order = index[np.argsort(points[index, axis], kind='stable')]
        cumulative = np.cumsum(w[order])
        total = cumulative[-1]
        target = total * n_left / n
        k = int(np.argmin(np.abs(cumulative - target))) + 1
        if len(order) > 1:
            k = min(max(k, 1), len(order) - 1)
        if total <= 0.0:
            return order, k, 1.0
        left = cumulative[k - 1]
        deviation = max(left / target, (total - left) / (total - target))
        return order, k, deviation

    def _split(index: np.ndarray, first: int, n: int):
        if n == 1 or len(index) == 0:
            for i in index:
                assignment[ids[i]] = first
            return

        n_left = n // 2
        pts = points[index]
        extent = pts.max(axis=0) - pts.min(axis=0)
        axes = np.argsort(-extent, kind='stable')
        order, k, deviation = _cut(index, int(axes[0]), n_left, n)
        if imbalance_tol is not None and deviation > imbalance_tol:
            for axis in axes[1:]:
                candidate = _cut(index, int(axis), n_left, n)
                if candidate[2] < deviation:
                    order, k, deviation = candidate

        _split(order[:k], first, n_left)
        _split(order[k:], first + n_left, n - n_left)

    _split(np.arange(len(ids)), 0, max(1, int(n_parts)))
    return assignment


class Redistributor:
    """
    Decides when and how to rebalance an interface partition.

    Parameters
    ----------
    strategy : ParallelRedistribution or str
        'none', 'static' (once, before the first evaluation) or 'dynamic'
        (again whenever the measured load is out of balance)
    imbalance_tol : float
        Accepted max/mean ratio of the per-rank load. A dynamic
        redistribution is skipped while the load stays within it, and the
        bisection looks for cuts meeting it.
    max_balance : float
        Max/min ratio of the measured per-rank load triggering a dynamic
        redistribution
    min_elements_per_rank : int
        Minimum number of slave elements per active rank (0 disables)
    verbose : bool
        Print redistribution decisions
    """

    def __init__(self, strategy=ParallelRedistribution.STATIC,
                 imbalance_tol: float = MortarConstants.IMBALANCE_TOL,
                 max_balance: float = MortarConstants.MAX_BALANCE,
                 min_elements_per_rank: int = MortarConstants.MIN_ELEMENTS_PER_RANK,
                 verbose: bool = False):
        self.strategy = ParallelRedistribution.parse(strategy)
        self.imbalance_tol = float(imbalance_tol)
        self.max_balance = float(max_balance)
        self.min_elements_per_rank = int(min_elements_per_rank)
        self.verbose = verbose

        self.n_redistributions = 0
        self.last_imbalance: Optional[float] = None

    @classmethod
    def from_parameters(cls, parameters, verbose: bool = False) -> 'Redistributor':
        return cls(parameters.parallel_redist, parameters.imbalance_tol,
                   parameters.max_balance, parameters.min_elements_per_rank, verbose)

    @staticmethod
    def load_ratio(load: Sequence[float]) -> float:
        """Max/min ratio of per-rank loads (inf if a rank is idle while others work)."""
        load = np.asarray(load, dtype=float)
        if load.size == 0 or load.max() <= 0.0:
            return 1.0
        if load.min() <= 0.0:
            return np.inf
        return float(load.max() / load.min())

    @staticmethod
    def imbalance(load: Sequence[float]) -> float:
        """Max/mean ratio of per-rank loads (1 for a perfect balance)."""
        load = np.asarray(load, dtype=float)
        if load.size == 0 or load.mean() <= 0.0:
            return 1.0
        return float(load.max() / load.mean())

    def needs_redistribution(self, load: Optional[Sequence[float]] = None) -> bool:
        if self.strategy is ParallelRedistribution.NONE:
            return False
        if self.n_redistributions == 0:
            return True
        if self.strategy is ParallelRedistribution.DYNAMIC and load is not None:
            return (self.load_ratio(load) > self.max_balance
                    and self.imbalance(load) > self.imbalance_tol)
        return False

    def redistribute(self, interface, partition: Partition,
                     load: Optional[Sequence[float]] = None) -> Partition:
        """
        New partition with balanced slave work.

        Parameters
        ----------
        interface : CouplingInterface
            Interface to distribute
        partition : Partition
            Current partition (defines the number of ranks and, with
            ``load``, the per-element weights)
        load : Sequence[float], optional
            Measured work per rank of ``partition``; spread evenly over the
            rank's slave elements to weight the bisection. Ignored when it
            was measured on a different number of ranks.

        Returns
        -------
        Partition
            Rebalanced partition over the same number of ranks
        """
        n_ranks = partition.n_ranks
        slaves = interface.slave_elements
        masters = interface.master_elements

        n_parts = n_ranks
        if self.min_elements_per_rank > 0:
            n_parts = max(1, min(n_ranks, len(slaves) // self.min_elements_per_rank))

        if load is not None and len(load) != n_ranks:
            load = None

        weights = None
        if load is not None:
            load = np.asarray(load, dtype=float)
            counts = np.zeros(n_ranks)
            for gid in slaves:
                counts[partition.element_owner.get(gid, 0)] += 1
            weights = {}
            for gid in slaves:
                rank = partition.element_owner.get(gid, 0)
                weights[gid] = load[rank] / counts[rank] if load[rank] > 0.0 else 1.0

        dim = interface.parameters.dim
        owner = recursive_coordinate_bisection(
            {g: interface.elements[g].centroid(interface.nodes) for g in slaves},
            n_parts, weights, dim, self.imbalance_tol)
        owner.update(recursive_coordinate_bisection(
            {g: interface.elements[g].centroid(interface.nodes) for g in masters},
            n_parts, None, dim))

        part_weight = np.zeros(n_parts)
        for gid in slaves:
            part_weight[owner[gid]] += 1.0 if weights is None else weights[gid]
        mean = part_weight.mean() if part_weight.size else 0.0
        self.last_imbalance = float(part_weight.max() / mean) if mean > 0.0 else 1.0
        self.n_redistributions += 1

        if self.verbose:
            status = "ok" if self.last_imbalance <= self.imbalance_tol else "above tolerance"
            print(f"Redistribution {self.n_redistributions}: {len(slaves)} slave elements "
                  f"over {n_parts}/{n_ranks} rank(s), imbalance {self.last_imbalance:.3f} "
                  f"({status})")

        return Partition(n_ranks, owner)

    def __repr__(self) -> str:
        return (f"Redistributor(strategy={self.strategy.value}, "
                f"redistributions={self.n_redistributions})")
