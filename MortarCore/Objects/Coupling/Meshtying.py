import numpy as np
import scipy.sparse as sp

from MortarCore.Objects.Parameters import MortarConstants
from .BaseCoupling import ConstraintSet, CouplingStrategy


class MeshtyingCoupling(CouplingStrategy):
    """
    Mesh tying: every displacement component of every slave node is tied.

    Constraint per slave node j and component d:

        Σₖ Dⱼₖ u_k,d - Σₗ Mⱼₗ u_l,d = 0

    The dependent dofs are all slave dofs, so the condensed system is
    expressed in master and interior dofs only (u_s = P u_m with P = D⁻¹M).
    """

    def __init__(self, singular_tolerance: float = MortarConstants.SINGULAR_TOLERANCE):
        super().__init__(coupling_type='meshtying', singular_tolerance=singular_tolerance)

    def build_constraints(self, operator) -> ConstraintSet:
        self._require_dofs(operator)
        dim = operator.dim
        excluded = self.find_singular_nodes(operator)
        keep = [i for i in range(len(operator.slave_nodes)) if i not in excluded]

        identity = sp.identity(dim, format='csr')
        B_s = sp.kron(operator.D_nodal.tocsr()[keep, :], identity, format='csr')
        B_m = sp.kron(operator.M_nodal.tocsr()[keep, :], identity, format='csr')

        dependent = np.array([i * dim + d for i in keep for d in range(dim)], dtype=int)
        row_nodes = np.repeat(np.array([operator.slave_nodes[i] for i in keep], dtype=int), dim)
        row_normals = np.tile(np.eye(dim), (len(keep), 1))

        self.diagnostics['n_constraints'] = len(dependent)
        return ConstraintSet(
            B_slave=B_s, B_master=B_m, gap=np.zeros(len(dependent)),
            dependent=dependent,
            slave_dofs=operator.slave_dofs, master_dofs=operator.master_dofs,
            row_nodes=row_nodes, row_normals=row_normals,
            excluded_nodes=tuple(self.diagnostics['excluded_nodes']))
