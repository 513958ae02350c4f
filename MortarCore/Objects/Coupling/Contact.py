"""
Frictionless unilateral contact with a primal-dual active set.

Weighted gap of slave node j (n_j: averaged nodal normal):

    g̃ⱼ = nⱼ · (Σₗ Mⱼₗ xₗ - Σₖ Dⱼₖ xₖ)

A node is active when the complementarity function predicts contact:

    λⱼ - c g̃ⱼ > 0

with λⱼ the normal multiplier of the previous iteration (0 initially) and
c > 0 the semi-smooth parameter. For active nodes the normal gap is closed,

    nⱼ · (Σₖ Dⱼₖ uₖ - Σₗ Mⱼₗ uₗ) = g̃ⱼ,

inactive nodes are left free. One Cartesian dof per active node (the one
with the largest normal component) is eliminated.
"""

from typing import Dict, List

import numpy as np

from MortarCore.Objects.Parameters import MortarConstants
from .BaseCoupling import ConstraintSet, CouplingStrategy


class FrictionlessContactCoupling(CouplingStrategy):
    """
    Frictionless contact strategy.

    Attributes
    ----------
    semi_smooth_c : float
        Complementarity parameter c
    active_nodes : List[int]
        Slave node gids of the current active set
    active_set_changed : bool
        Whether the last build changed the active set
    normal_multipliers : Dict[int, float]
        Normal multiplier per slave node from the last recovery
    """

    def __init__(self, semi_smooth_c: float = MortarConstants.SEMI_SMOOTH_C,
                 singular_tolerance: float = MortarConstants.SINGULAR_TOLERANCE):
        super().__init__(coupling_type='contact', singular_tolerance=singular_tolerance)
        if semi_smooth_c <= 0:
            raise ValueError(f"semi_smooth_c must be positive, got {semi_smooth_c}")
        self.semi_smooth_c = semi_smooth_c
        self.active_nodes: List[int] = []
        self.active_set_changed = True
        self.normal_multipliers: Dict[int, float] = {}

    def build_constraints(self, operator) -> ConstraintSet:
        self._require_dofs(operator)
        excluded = self.find_singular_nodes(operator)
        gap = operator.weighted_gap
        c = self.semi_smooth_c

        rows = []
        for i, gid in enumerate(operator.slave_nodes):
            if i in excluded:
                continue
            if self.normal_multipliers.get(gid, 0.0) - c * gap[i] > 0.0:
                rows.append(i)

        active = [operator.slave_nodes[i] for i in rows]
        self.active_set_changed = active != self.active_nodes
        self.active_nodes = active
        self.diagnostics['n_constraints'] = len(rows)
        self.diagnostics['n_active'] = len(rows)

        return self._normal_rows(operator, rows, gap)

    def update_multipliers(self, constraints: ConstraintSet, multipliers: np.ndarray):
        self.normal_multipliers = {int(gid): float(lam)
                                   for gid, lam in zip(constraints.row_nodes, multipliers)}

    def reset(self):
        """Forget the active set and multipliers (new load step from scratch)."""
        self.active_nodes = []
        self.active_set_changed = True
        self.normal_multipliers = {}

    def get_info(self) -> Dict:
        info = super().get_info()
        info['n_active'] = len(self.active_nodes)
        info['active_set_changed'] = self.active_set_changed
        return info
