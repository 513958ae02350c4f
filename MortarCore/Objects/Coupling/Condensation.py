"""
Static condensation of mortar constraints and recovery after the solve.

Key Concepts
------------

**Constraint and dof split**:
    The strategy delivers B_s u_s - B_m u_m = g where every row owns one
    dependent slave dof. Splitting the slave dofs into dependent (d) and
    free (f) ones:

        u_d = B_sd⁻¹ (g + B_m u_m - B_sf u_sf)

**Transformation**:
    All other dofs stay independent, giving

        u_full = T u_red + c,    c_d = B_sd⁻¹ g

    and the condensed system

        K_red = Tᵀ K T,    f_red = Tᵀ (f - K c)

    For mesh tying (B_s = D, B_m = M, all slave dofs dependent) the
    dependent rows of T are the projection operator P = D⁻¹M.

**Recovery**:
    After the solve, u_full = T u_red + c and the Lagrange multipliers
    follow from the dependent rows of the saddle-point equilibrium
    K u + Cᵀ λ = f:

        λ = B_sd⁻ᵀ (f_d - (K u)_d)

State machine
-------------
    UNINITIALIZED --set_operator--> ASSEMBLED --condense--> CONDENSED
    CONDENSED --set_solution--> SOLVED --recover--> RECOVERED
    RECOVERED --begin_iteration--> ASSEMBLED
    any state --set_operator--> ASSEMBLED

Transitions hold the write side of a reader-writer lock; concurrent
readers enter ``with engine.reading():`` and see a consistent state.
"""

import threading
import warnings
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import scipy.linalg as la
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from MortarCore.Objects.Exceptions import (CondensationStateError, RecoveryError,
                                           SingularCondensationWarning)
from MortarCore.Objects.Parameters import CouplingType, MortarParameters
from .BaseCoupling import ConstraintSet, CouplingStrategy
from .Contact import FrictionlessContactCoupling
from .Meshtying import MeshtyingCoupling
from .Mortar import MortarOperator
from .PoroContact import PoroNoPenetrationCoupling


class CondensationState(Enum):
    UNINITIALIZED = 'uninitialized'
    ASSEMBLED = 'assembled'
    CONDENSED = 'condensed'
    SOLVED = 'solved'
    RECOVERED = 'recovered'


def create_coupling_strategy(coupling_type, parameters: Optional[MortarParameters] = None
                             ) -> CouplingStrategy:
    """Strategy instance for a coupling type ('meshtying', 'contact', 'poro')."""
    params = parameters or MortarParameters()
    kind = CouplingType.parse(coupling_type)
    if kind is CouplingType.MESHTYING:
        return MeshtyingCoupling(singular_tolerance=params.singular_tolerance)
    if kind is CouplingType.CONTACT:
        return FrictionlessContactCoupling(semi_smooth_c=params.semi_smooth_c,
                                           singular_tolerance=params.singular_tolerance)
    return PoroNoPenetrationCoupling(singular_tolerance=params.singular_tolerance)


@dataclass
class RecoveryResult:
    """
    Output of the recovery step.

    Attributes
    ----------
    displacement : np.ndarray
        Full dof vector u = T u_red + c
    multipliers : np.ndarray
        Lagrange multiplier per constraint row
    row_nodes : np.ndarray
        Slave node gid per multiplier
    row_normals : np.ndarray
        Direction of each multiplier (unit vector or nodal normal)
    slave_force : np.ndarray
        B_sᵀ λ on the operator slave dofs
    master_force : np.ndarray
        B_mᵀ λ on the operator master dofs
    """
    displacement: np.ndarray
    multipliers: np.ndarray
    row_nodes: np.ndarray
    row_normals: np.ndarray
    slave_force: np.ndarray
    master_force: np.ndarray

    def nodal_multipliers(self) -> Dict[int, np.ndarray]:
        """Multiplier vector per slave node (Σ over rows of λ times direction)."""
        out: Dict[int, np.ndarray] = {}
        for gid, lam, n in zip(self.row_nodes, self.multipliers, self.row_normals):
            out[int(gid)] = out.get(int(gid), np.zeros(len(n))) + lam * n
        return out


class _ReadWriteLock:
    """Single writer / multiple readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class CondensationEngine:
    """
    Eliminates interface constraints from a global linear system.

    Parameters
    ----------
    strategy : CouplingStrategy or str
        Coupling strategy or coupling type name
    verbose : bool
        Print a summary of each condensation

    Attributes
    ----------
    operator : MortarOperator
        Current mortar operator
    constraints : ConstraintSet
        Constraint set of the current iteration
    transformation_matrix : sp.csr_matrix
        T (n_full × n_reduced)
    offset : np.ndarray
        c (n_full)
    reduced_dofs : np.ndarray
        Global ids of the independent dofs, in reduced order
    """

    def __init__(self, strategy, verbose: bool = False):
        if not isinstance(strategy, CouplingStrategy):
            strategy = create_coupling_strategy(strategy)
        self.strategy = strategy
        self.verbose = verbose

        self._state = CondensationState.UNINITIALIZED
        self._lock = _ReadWriteLock()

        self.operator: Optional[MortarOperator] = None
        self.constraints: Optional[ConstraintSet] = None
        self.transformation_matrix: Optional[sp.csr_matrix] = None
        self.offset: Optional[np.ndarray] = None
        self.reduced_dofs: Optional[np.ndarray] = None
        self.last_result: Optional[RecoveryResult] = None

        self._projection: Optional[sp.csr_matrix] = None
        self._projection_versions: Optional[Tuple[int, int]] = None
        self._slave_solver = None
        self._pseudo_inverse = False
        self._B_sd: Optional[sp.csr_matrix] = None
        self._transformation = None
        self._transformation_key = None
        self._K = None
        self._f = None
        self._block = None
        self._u_red = None
        self._coupled = None

        self.diagnostics = {'n_projection_builds': 0, 'n_transformation_builds': 0,
                            'n_condensations': 0,
                            'pseudo_inverse_used': False}

    # =========================================================================
    # State handling
    # =========================================================================

    @property
    def state(self) -> CondensationState:
        return self._state

    @contextmanager
    def reading(self):
        """
        Hold the read side of the lock; state and results stay stable inside.

        Read :attr:`projection` once before entering when the operator may have
        changed: a stale projection is rebuilt under the write lock.
        """
        with self._lock.read():
            yield self

    def _require(self, action: str, allowed: Sequence[CondensationState]):
        if self._state not in allowed:
            names = ', '.join(s.name for s in allowed)
            raise CondensationStateError(f"Cannot {action} in state {self._state.name} "
                                         f"(allowed: {names})")

    def set_operator(self, operator: MortarOperator):
        """Install a freshly assembled operator (any state → ASSEMBLED)."""
        with self._lock.write():
            self.operator = operator
            if self._projection_versions != operator.versions:
                self._projection = None
            self._state = CondensationState.ASSEMBLED

    def begin_iteration(self):
        """Start a new nonlinear iteration with the current operator."""
        with self._lock.write():
            self._require('begin an iteration', (CondensationState.RECOVERED,
                                                 CondensationState.ASSEMBLED))
            self._state = CondensationState.ASSEMBLED

    # =========================================================================
    # Projection operator
    # =========================================================================

    @property
    def projection(self) -> sp.csr_matrix:
        """
        Nodal projection P = D⁻¹M (slave × master).

        Rows of slave nodes without projection are zero. Rebuilt only when
        the dof map or geometry version of the operator changes.
        """
        with self._lock.read():
            if self.operator is None:
                raise CondensationStateError("No mortar operator installed")
            if self._projection is not None and self._projection_versions == self.operator.versions:
                return self._projection

        # Stale or missing: rebuild on the write side, re-checking after the upgrade
        with self._lock.write():
            if self.operator is None:
                raise CondensationStateError("No mortar operator installed")
            if self._projection is None or self._projection_versions != self.operator.versions:
                self._projection = self._build_projection(self.operator)
                self._projection_versions = self.operator.versions
                self.diagnostics['n_projection_builds'] += 1
            return self._projection

    def _build_projection(self, operator: MortarOperator) -> sp.csr_matrix:
        D = operator.D_nodal.tocsr()
        M = operator.M_nodal.tocsr()
        row_norm = np.asarray(abs(D).sum(axis=1)).ravel()
        scale = row_norm.max() if row_norm.size else 0.0
        keep = np.flatnonzero(row_norm > self.strategy.singular_tolerance * scale)

        P = np.zeros(M.shape)
        if keep.size:
            P[keep], _ = self._solve_slave_block(D[keep][:, keep], M[keep])
        return sp.csr_matrix(P)

    # =========================================================================
    # Slave block solves
    # =========================================================================

    def _solve_slave_block(self, B_sd: sp.csr_matrix, rhs) -> Tuple[np.ndarray, bool]:
        """
        B_sd⁻¹ rhs with diagonal shortcut, sparse LU or least squares.

        Constraint sets eliminate one slave dof per row, so the blocks built
        during condensation are square and reach the pseudo-inverse only when
        the factorization fails. Rectangular blocks are solved in the
        least-squares sense.

        Returns the solution and whether the pseudo-inverse was used.
        """
        rhs = rhs.toarray() if sp.issparse(rhs) else np.asarray(rhs, dtype=float)
        n_rows, n_cols = B_sd.shape
        if n_rows == 0:
            return np.zeros((n_cols,) + rhs.shape[1:]), False

        if n_rows == n_cols:
            diag = B_sd.diagonal()
            off_diag = B_sd - sp.diags(diag)
            if np.all(diag != 0.0) and abs(off_diag).sum() == 0.0:
                return rhs / diag.reshape((-1,) + (1,) * (rhs.ndim - 1)), False
            try:
                return spla.splu(B_sd.tocsc()).solve(rhs), False
            except RuntimeError as exc:
                warnings.warn(f"Slave block factorization failed ({exc}), retrying with "
                              f"least-squares pseudo-inverse", SingularCondensationWarning,
                              stacklevel=3)
        else:
            warnings.warn(f"Slave block is not square ({n_rows}x{n_cols}), using "
                          f"least-squares pseudo-inverse", SingularCondensationWarning,
                          stacklevel=3)

        self.diagnostics['pseudo_inverse_used'] = True
        return la.lstsq(B_sd.toarray(), rhs)[0], True

    # =========================================================================
    # Condensation
    # =========================================================================

    def _build_transformation(self, constraints: ConstraintSet, n_dofs: int):
        dependent = constraints.dependent
        dep_dofs = constraints.slave_dofs[dependent]
        if np.any(dep_dofs >= n_dofs) or np.any(constraints.master_dofs >= n_dofs):
            raise ValueError(f"Interface dofs exceed system size {n_dofs}")
        if np.intersect1d(dep_dofs, constraints.master_dofs).size:
            raise ValueError("A dependent slave dof is also a master dof")

        n_slave = len(constraints.slave_dofs)
        free_cols = np.setdiff1d(np.arange(n_slave), dependent)

        B_sd = constraints.B_slave[:, dependent].tocsr()
        B_sf = constraints.B_slave[:, free_cols].tocsr()
        rhs = np.hstack([constraints.B_master.toarray(), -B_sf.toarray(),
                         constraints.gap.reshape(-1, 1)])

        Y, self._pseudo_inverse = self._solve_slave_block(B_sd, rhs)
        n_m = len(constraints.master_dofs)
        Y_m, Y_sf, y_g = Y[:, :n_m], Y[:, n_m:-1], Y[:, -1]

        independent = np.setdiff1d(np.arange(n_dofs), dep_dofs)
        red_index = np.full(n_dofs, -1, dtype=int)
        red_index[independent] = np.arange(len(independent))

        rows = list(independent)
        cols = list(range(len(independent)))
        vals = [1.0] * len(independent)

        col_dofs = np.concatenate([constraints.master_dofs,
                                   constraints.slave_dofs[free_cols]])
        coeffs = np.hstack([Y_m, Y_sf])
        for k, d in enumerate(dep_dofs):
            nz = np.flatnonzero(coeffs[k])
            rows.extend([d] * len(nz))
            cols.extend(red_index[col_dofs[nz]])
            vals.extend(coeffs[k, nz])

        T = sp.coo_matrix((vals, (rows, cols)), shape=(n_dofs, len(independent))).tocsr()
        c = np.zeros(n_dofs)
        c[dep_dofs] = y_g

        self._B_sd = B_sd
        self.diagnostics['n_transformation_builds'] += 1
        return T, c, independent

    def _cached_transformation(self, constraints: ConstraintSet, n_dofs: int):
        """
        T, c and the independent dofs of ``constraints``.

        The slave block solve is repeated only when the operator versions or
        the constraint layout (dependent, slave and master dofs) change.
        """
        key = (self.operator.versions, n_dofs, constraints.dependent_dofs.tobytes(),
               constraints.slave_dofs.tobytes(), constraints.master_dofs.tobytes())
        if self._transformation is None or self._transformation_key != key:
            self._transformation = self._build_transformation(constraints, n_dofs)
            self._transformation_key = key
        return self._transformation

    def condense(self, K, f) -> Tuple:
        """
        Condense the global system (ASSEMBLED → CONDENSED).

        Parameters
        ----------
        K : np.ndarray or sp.spmatrix
            Global matrix (n × n); interface dofs index into it
        f : np.ndarray
            Global right-hand side (n)

        Returns
        -------
        K_red : same kind as K
            Tᵀ K T
        f_red : np.ndarray
            Tᵀ (f - K c)
        """
        with self._lock.write():
            self._require('condense', (CondensationState.ASSEMBLED, CondensationState.RECOVERED))
            K_red, f_red = self._condense(K, f)
            self._block = None
            self._state = CondensationState.CONDENSED
        return K_red, f_red

    def _condense(self, K, f):
        dense = not sp.issparse(K)
        K_s = sp.csr_matrix(K) if dense else K.tocsr()
        f = np.asarray(f, dtype=float)
        n = K_s.shape[0]
        if K_s.shape != (n, n) or f.shape != (n,):
            raise ValueError(f"Inconsistent system sizes: K {K_s.shape}, f {f.shape}")

        constraints = self.strategy.build_constraints(self.operator)
        T, c, independent = self._cached_transformation(constraints, n)

        K_red = (T.T @ K_s @ T).tocsr()
        f_red = T.T @ (f - K_s @ c)

        self.constraints = constraints
        self.transformation_matrix = T
        self.offset = c
        self.reduced_dofs = independent
        self._K = K_s
        self._f = f
        self.diagnostics['n_condensations'] += 1

        if self.verbose:
            print(f"Condensed {n} -> {len(independent)} dofs "
                  f"({constraints.n_rows} constraints, "
                  f"{len(constraints.excluded_nodes)} excluded nodes)")

        return (K_red.toarray() if dense else K_red), f_red

    def condense_block(self, blocks: List[List], rhs: List[np.ndarray], field: int = 0):
        """
        Condense a multi-field block system on one field.

        Parameters
        ----------
        blocks : List[List]
            Square grid of blocks K_ij (matrices)
        rhs : List[np.ndarray]
            Right-hand side per field
        field : int
            Field carrying the interface dofs

        Returns
        -------
        blocks_red, rhs_red
            T_iᵀ K_ij T_j with T_i = T on ``field`` and identity elsewhere
        """
        with self._lock.write():
            self._require('condense', (CondensationState.ASSEMBLED, CondensationState.RECOVERED))
            n_fields = len(blocks)
            K_ff, f_ff = self._condense(blocks[field][field], rhs[field])
            T, c = self.transformation_matrix, self.offset

            blocks_red = [[None] * n_fields for _ in range(n_fields)]
            rhs_red = [None] * n_fields
            for i in range(n_fields):
                for j in range(n_fields):
                    K_ij = blocks[i][j]
                    if i == field and j == field:
                        blocks_red[i][j] = K_ff
                    elif i == field:
                        blocks_red[i][j] = T.T @ K_ij
                    elif j == field:
                        blocks_red[i][j] = K_ij @ T
                    else:
                        blocks_red[i][j] = K_ij
                rhs_red[i] = f_ff if i == field else np.asarray(rhs[i]) - blocks[i][field] @ c

            self._block = (field, [blocks[field][j] for j in range(n_fields)])
            self._state = CondensationState.CONDENSED
        return blocks_red, rhs_red

    # =========================================================================
    # Solve & recovery
    # =========================================================================

    def set_solution(self, u_reduced: np.ndarray, coupled_solutions: Optional[Dict[int, np.ndarray]] = None):
        """
        Provide the reduced solution (CONDENSED → SOLVED).

        ``coupled_solutions`` holds the solutions of the other fields after
        :meth:`condense_block`.
        """
        with self._lock.write():
            self._require('set a solution', (CondensationState.CONDENSED,))
            self._u_red = np.asarray(u_reduced, dtype=float)
            self._coupled = coupled_solutions or {}
            self._state = CondensationState.SOLVED

    def expand(self, u_reduced: np.ndarray) -> np.ndarray:
        """u_full = T u_red + c."""
        return self.transformation_matrix @ u_reduced + self.offset

    def recover(self) -> RecoveryResult:
        """
        Recover the full solution and the Lagrange multipliers (SOLVED → RECOVERED).

        Raises
        ------
        RecoveryError
            If the solution has the wrong size, is not finite, or the slave
            block cannot be solved
        """
        with self._lock.write():
            self._require('recover', (CondensationState.SOLVED,))
            result = self._recover()
            self.strategy.update_multipliers(self.constraints, result.multipliers)
            self.last_result = result
            self._state = CondensationState.RECOVERED
        return result

    def _recover(self) -> RecoveryResult:
        T, cs = self.transformation_matrix, self.constraints
        if self._u_red.shape != (T.shape[1],):
            raise RecoveryError(f"Reduced solution has shape {self._u_red.shape}, "
                                f"expected ({T.shape[1]},)")
        u = self.expand(self._u_red)
        if not np.all(np.isfinite(u)):
            raise RecoveryError("Recovered displacement is not finite")

        Ku = self._K @ u
        if self._block is not None:
            field, row_blocks = self._block
            for j, K_fj in enumerate(row_blocks):
                if j == field:
                    continue
                if j not in self._coupled:
                    raise RecoveryError(f"Solution of coupled field {j} missing")
                Ku = Ku + K_fj @ np.asarray(self._coupled[j], dtype=float)

        dep = cs.dependent_dofs
        rhs = self._f[dep] - Ku[dep]
        lam = self._solve_transposed(rhs)
        if not np.all(np.isfinite(lam)):
            raise RecoveryError("Lagrange multipliers are not finite")

        return RecoveryResult(displacement=u, multipliers=lam,
                              row_nodes=cs.row_nodes, row_normals=cs.row_normals,
                              slave_force=cs.B_slave.T @ lam,
                              master_force=cs.B_master.T @ lam)

    def _solve_transposed(self, rhs: np.ndarray) -> np.ndarray:
        B = self._B_sd
        if B.shape[0] == 0:
            return np.zeros(0)
        if self._pseudo_inverse or B.shape[0] != B.shape[1]:
            return la.lstsq(B.T.toarray(), rhs)[0]
        diag = B.diagonal()
        if np.all(diag != 0.0) and abs(B - sp.diags(diag)).sum() == 0.0:
            return rhs / diag
        try:
            return spla.splu(B.T.tocsc()).solve(rhs)
        except RuntimeError as exc:
            raise RecoveryError(f"Slave block cannot be factorized: {exc}") from exc

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def verify_constraints(self, u: np.ndarray) -> float:
        """Norm of the constraint residual B_s u_s - B_m u_m - g."""
        if self.constraints is None:
            raise CondensationStateError("No constraints built yet")
        return float(np.linalg.norm(self.constraints.residual(np.asarray(u))))

    def get_info(self) -> Dict:
        info = {
            'state': self._state.value,
            'strategy': self.strategy.coupling_type,
            'n_constraints': self.constraints.n_rows if self.constraints is not None else 0,
            'n_reduced_dofs': len(self.reduced_dofs) if self.reduced_dofs is not None else None,
            'operator_versions': self.operator.versions if self.operator is not None else None,
        }
        info.update(self.diagnostics)
        return info

    def __repr__(self) -> str:
        return (f"CondensationEngine(state={self._state.name}, "
                f"strategy={self.strategy.coupling_type})")
