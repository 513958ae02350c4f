from typing import Iterable, List, Mapping, NamedTuple, Optional

import numpy as np

from MortarCore.Objects.Geometry.BoundingBox import BoundingBox
from MortarCore.Objects.Geometry.BoundingVolumeTree import BoundingVolumeTree


class CandidatePair(NamedTuple):
    """Slave/master element pair whose inflated boxes overlap."""
    slave_id: int
    master_id: int


def find_candidate_pairs(slave_tree: BoundingVolumeTree,
                         master_tree: BoundingVolumeTree,
                         inflation_radius: float,
                         slave_ids: Optional[Iterable[int]] = None) -> List[CandidatePair]:
    """
    Find slave/master element pairs that may overlap.

    Each slave box is inflated by ``inflation_radius`` and queried against
    the master tree. The trees are only read.

    Parameters
    ----------
    slave_tree : BoundingVolumeTree
        Tree over slave elements
    master_tree : BoundingVolumeTree
        Tree over (owned and ghosted) master elements
    inflation_radius : float
        Absolute search radius
    slave_ids : Iterable[int], optional
        Restrict the search to these slave elements (e.g. the ones a rank owns)

    Returns
    -------
    List[CandidatePair]
        Pairs sorted by slave id, then master id
    """
    slave_boxes = slave_tree.items()
    ids = sorted(slave_boxes) if slave_ids is None else sorted(slave_ids)

    pairs = []
    for sid in ids:
        query_box = slave_boxes[sid].inflated(inflation_radius)
        for mid in sorted(master_tree.query(query_box)):
            pairs.append(CandidatePair(sid, mid))
    return pairs


def find_candidate_pairs_bruteforce(slave_boxes: Mapping[int, BoundingBox],
                                    master_boxes: Mapping[int, BoundingBox],
                                    inflation_radius: float,
                                    slave_ids: Optional[Iterable[int]] = None
                                    ) -> List[CandidatePair]:
    """
    Reference search testing every slave box against every master box.

    Same result as :func:`find_candidate_pairs`, vectorized over the master
    elements with numpy.
    """
    ids = sorted(slave_boxes) if slave_ids is None else sorted(slave_ids)
    master_ids = np.array(sorted(master_boxes), dtype=int)
    if len(master_ids) == 0:
        return []

    boxes = [master_boxes[m] for m in master_ids]
    valid = np.array([not b.empty for b in boxes])
    lo = np.array([b.box[:, 0] for b in boxes])
    hi = np.array([b.box[:, 1] for b in boxes])

    pairs = []
    for sid in ids:
        sbox = slave_boxes[sid]
        if sbox.empty:
            continue
        k = sbox.n_axes
        query = sbox.inflated(inflation_radius)
        hit = valid & np.all(lo[:, :k] <= query.box[:k, 1], axis=1) \
            & np.all(query.box[:k, 0] <= hi[:, :k], axis=1)
        pairs.extend(CandidatePair(sid, int(m)) for m in master_ids[hit])
    return pairs
