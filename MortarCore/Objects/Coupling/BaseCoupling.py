import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

import numpy as np
import scipy.sparse as sp

from MortarCore.Objects.Exceptions import SingularCondensationWarning
from MortarCore.Objects.Parameters import MortarConstants


@dataclass
class ConstraintSet:
    """
    Linear interface constraint B_s u_s - B_m u_m = g.

    Every row eliminates exactly one slave dof (the dependent dof of the
    row). Columns of ``B_slave``/``B_master`` follow ``slave_dofs`` /
    ``master_dofs`` (global dof ids, node-major).

    Attributes
    ----------
    B_slave : sp.csr_matrix
        Slave block (n_rows × n_slave_dofs)
    B_master : sp.csr_matrix
        Master block (n_rows × n_master_dofs)
    gap : np.ndarray
        Right-hand side g
    dependent : np.ndarray
        Column of ``B_slave`` eliminated by each row
    slave_dofs, master_dofs : np.ndarray
        Global dof ids of the columns
    row_nodes : np.ndarray
        Slave node gid of each row
    row_normals : np.ndarray
        Direction of each row multiplier, shape (n_rows, dim)
    excluded_nodes : tuple of int
        Slave nodes left unconstrained (singular rows)
    """
    B_slave: sp.csr_matrix
    B_master: sp.csr_matrix
    gap: np.ndarray
    dependent: np.ndarray
    slave_dofs: np.ndarray
    master_dofs: np.ndarray
    row_nodes: np.ndarray
    row_normals: np.ndarray
    excluded_nodes: Tuple[int, ...] = ()

    @property
    def n_rows(self) -> int:
        return len(self.gap)

    @property
    def dependent_dofs(self) -> np.ndarray:
        return self.slave_dofs[self.dependent]

    def residual(self, u: np.ndarray) -> np.ndarray:
        """B_s u_s - B_m u_m - g for a full dof vector u."""
        return self.B_slave @ u[self.slave_dofs] - self.B_master @ u[self.master_dofs] - self.gap


class CouplingStrategy(ABC):
    """
    Abstract base class for mortar coupling strategies.

    A strategy turns an assembled :class:`MortarOperator` into a linear
    constraint set that the condensation engine eliminates. It may keep
    state between nonlinear iterations (e.g. the contact active set).

    Attributes
    ----------
    coupling_type : str
        Identifier: 'meshtying', 'contact' or 'poro'
    active : bool
        Whether the coupling is activated
    diagnostics : dict
        Counters of the last constraint build
    """

    def __init__(self, coupling_type: str, singular_tolerance: float = MortarConstants.SINGULAR_TOLERANCE):
        self.coupling_type = coupling_type
        self.singular_tolerance = singular_tolerance
        self.active = False

        self.diagnostics = {
            'n_constraints': 0,
            'excluded_nodes': [],
            'activation_errors': []
        }

    def validate(self, interface=None) -> bool:
        """Validate the interface for this strategy. Returns True if valid."""
        self.diagnostics['activation_errors'].clear()
        if interface is not None and not interface.slave_elements:
            self.diagnostics['activation_errors'].append("No slave elements on interface")
            return False
        return True

    def activate(self, interface=None):
        """Activate coupling after validation. Raises ValueError if invalid."""
        if not self.validate(interface):
            errors = ", ".join(self.diagnostics['activation_errors'])
            raise ValueError(f"Cannot activate coupling: {errors}")
        self.active = True

    def deactivate(self):
        self.active = False

    def get_info(self) -> Dict:
        return {
            'coupling_type': self.coupling_type,
            'active': self.active,
            'n_constraints': self.diagnostics['n_constraints'],
            'n_excluded_nodes': len(self.diagnostics['excluded_nodes']),
        }

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def find_singular_nodes(self, operator) -> Set[int]:
        """
        Slave rows whose D row vanishes (no projection onto the master side).

        Such nodes cannot be condensed. They are excluded from the
        constraint and reported with a SingularCondensationWarning.

        Returns
        -------
        Set[int]
            Row indices into ``operator.slave_nodes``
        """
        row_norm = np.asarray(abs(operator.D_nodal).sum(axis=1)).ravel()
        if row_norm.size == 0:
            return set()
        scale = row_norm.max()
        limit = self.singular_tolerance * scale if scale > 0 else 0.0
        rows = set(int(i) for i in np.flatnonzero(row_norm <= limit))

        if rows:
            gids = sorted(operator.slave_nodes[i] for i in rows)
            warnings.warn(f"{len(gids)} slave node(s) without mortar projection left "
                          f"unconstrained: {gids}", SingularCondensationWarning, stacklevel=3)
        self.diagnostics['excluded_nodes'] = sorted(operator.slave_nodes[i] for i in rows)
        return rows

    @staticmethod
    def _require_dofs(operator):
        if operator.dofmap_version < 0 or len(operator.slave_dofs) == 0:
            raise ValueError("Mortar operator has no dof map; call make_dofs() on the "
                             "interface before evaluating it")

    def _normal_rows(self, operator, rows, gap: Optional[np.ndarray]) -> ConstraintSet:
        """Constraint rows nⱼ · (Σ Dⱼₖ uₖ - Σ Mⱼₗ uₗ) = gⱼ for the given slave rows."""
        dim = operator.dim
        D = operator.D_nodal.tocsr()
        M = operator.M_nodal.tocsr()
        normals = operator.normals[:, :dim]

        bs_r, bs_c, bs_v = [], [], []
        bm_r, bm_c, bm_v = [], [], []
        dependent = []
        for r, i in enumerate(rows):
            n = normals[i]
            for k, val in zip(D.indices[D.indptr[i]:D.indptr[i + 1]],
                              D.data[D.indptr[i]:D.indptr[i + 1]]):
                for d in range(dim):
                    bs_r.append(r)
                    bs_c.append(k * dim + d)
                    bs_v.append(val * n[d])
            for l, val in zip(M.indices[M.indptr[i]:M.indptr[i + 1]],
                              M.data[M.indptr[i]:M.indptr[i + 1]]):
                for d in range(dim):
                    bm_r.append(r)
                    bm_c.append(l * dim + d)
                    bm_v.append(val * n[d])
            # Pivot on the dominant normal component
            dependent.append(i * dim + int(np.argmax(np.abs(n))))

        n_rows = len(rows)
        B_s = sp.coo_matrix((bs_v, (bs_r, bs_c)),
                            shape=(n_rows, len(operator.slave_nodes) * dim)).tocsr()
        B_m = sp.coo_matrix((bm_v, (bm_r, bm_c)),
                            shape=(n_rows, len(operator.master_nodes) * dim)).tocsr()
        g = np.zeros(n_rows) if gap is None else np.asarray(gap, dtype=float)[list(rows)]

        return ConstraintSet(
            B_slave=B_s, B_master=B_m, gap=g,
            dependent=np.array(dependent, dtype=int),
            slave_dofs=operator.slave_dofs, master_dofs=operator.master_dofs,
            row_nodes=np.array([operator.slave_nodes[i] for i in rows], dtype=int),
            row_normals=normals[list(rows)].reshape(-1, dim),
            excluded_nodes=tuple(self.diagnostics['excluded_nodes']))

    # =========================================================================
    # Strategy interface
    # =========================================================================

    @abstractmethod
    def build_constraints(self, operator) -> ConstraintSet:
        """Constraint set of the current iteration."""
        pass

    def update_multipliers(self, constraints: ConstraintSet, multipliers: np.ndarray):
        """Receive the recovered multipliers (used by stateful strategies)."""
        pass

    def check_interface(self, interface, roles=None):
        """Raise if the interface setup is not supported by the strategy."""
        pass

    def __repr__(self) -> str:
        status = "active" if self.active else "inactive"
        return (f"{self.__class__.__name__}(status={status}, "
                f"constraints={self.diagnostics['n_constraints']})")
