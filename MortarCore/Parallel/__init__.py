"""
Simulated parallel distribution of interfaces.

Partition : element-to-rank assignment, node ownership and rank views
RankView : data held by one rank after ghosting
Redistributor : load balancing by weighted recursive coordinate bisection
"""

from .Partition import (Partition, RankView, compute_gid_offset, distribution_report,
                        gather_roles)
from .Redistribution import Redistributor, recursive_coordinate_bisection

__all__ = [
    'Partition',
    'RankView',
    'compute_gid_offset',
    'distribution_report',
    'gather_roles',
    'Redistributor',
    'recursive_coordinate_bisection',
]
