"""
Static Solvers - Linear Solves on Condensed Systems
===================================================

Reference host-side solvers for systems with mortar interface
constraints. The interface constraints are eliminated by the condensation
engine of a :class:`CouplingInterface`; the remaining (reduced) system is
partitioned into free and fixed dofs and solved:

    [K_ff  K_fr] [u_f]   [f_f]
    [K_rf  K_rr] [u_r] = [f_r]

    u_f = K_ff⁻¹ (f_f - K_fr u_r)

The full displacement and the Lagrange multipliers are then recovered by
the engine.

**Contact**: the active set depends on the multipliers of the previous
solve, so the condensed solve is repeated until the active set no longer
changes (primal-dual active set iteration).
"""

import numpy as np
import scipy.linalg as la  # Dense Linear Algebra
import scipy.sparse as sp  # Sparse Matrix Storage
import scipy.sparse.linalg as spla  # Sparse Linear Algebra

from MortarCore.Objects.Coupling.Condensation import CondensationState, RecoveryResult


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class ConvergenceError(RuntimeError):
    """Raised when the active set iteration does not settle within max iterations."""
    pass


class SingularSystemError(RuntimeError):
    """Raised when the reduced stiffness matrix is singular and cannot be solved.

    This typically indicates:
    - Insufficient boundary conditions (rigid body modes)
    - Unconstrained slave nodes carrying no stiffness
    """
    pass


# =============================================================================
# SOLVER CONSTANTS
# =============================================================================

class SolverConstants:
    """Defaults of the reference solvers."""
    MAX_ACTIVE_SET_ITERATIONS = 20


# =============================================================================
# LINEAR SOLVER
# =============================================================================

class StaticCondensed:
    """
    Linear static solve of a system coupled through one mortar interface.
    """

    @staticmethod
    def _reduce_dirichlet(engine, fixed_dofs, prescribed):
        """Map fixed dofs of the full system onto the reduced numbering."""
        fixed_dofs = np.asarray([] if fixed_dofs is None else fixed_dofs, dtype=int)
        if prescribed is None:
            prescribed = np.zeros(len(fixed_dofs))
        prescribed = np.asarray(prescribed, dtype=float)
        if prescribed.shape != fixed_dofs.shape:
            raise ValueError("fixed_dofs and prescribed values differ in length")

        red_index = {int(d): i for i, d in enumerate(engine.reduced_dofs)}
        dependent = [d for d in fixed_dofs if int(d) not in red_index]
        if dependent:
            raise ValueError(f"Dofs {dependent} are eliminated by the interface "
                             f"constraint and cannot be fixed")
        return np.array([red_index[int(d)] for d in fixed_dofs], dtype=int), prescribed

    @staticmethod
    def solve(interface, K, f, fixed_dofs=None, prescribed=None,
              optimized: bool = True) -> RecoveryResult:
        """
        Condense, solve and recover.

        Args:
            interface: CouplingInterface with an evaluated operator.
            K: Global stiffness (dense or sparse, n × n).
            f: Global load vector (n).
            fixed_dofs: Global dofs with prescribed values.
            prescribed: Prescribed values (default 0).
            optimized (bool):
                If True, uses sparse slicing and spsolve (Fast).
                If False, uses dense numpy arrays and standard solve (Slow).

        Returns:
            RecoveryResult with full displacement and multipliers.
        """
        engine = interface.engine
        if engine.state is CondensationState.RECOVERED:
            engine.begin_iteration()

        K_red, f_red = engine.condense(K, f)
        fix, u_fix = StaticCondensed._reduce_dirichlet(engine, fixed_dofs, prescribed)
        free = np.setdiff1d(np.arange(len(f_red)), fix)

        u_red = np.zeros(len(f_red))
        u_red[fix] = u_fix

        # --- OPTIMIZED PATH (Sparse) ---
        if optimized:
            K_s = sp.csc_matrix(K_red)
            K_ff = K_s[free, :][:, free]
            K_fr = K_s[free, :][:, fix]
            rhs = f_red[free] - K_fr @ u_fix
            try:
                u_f = np.atleast_1d(spla.spsolve(K_ff, rhs)) if len(free) else np.zeros(0)
            except RuntimeError as e:
                raise SingularSystemError(f"Reduced system is singular or failed to solve: {e}")

        # --- STANDARD PATH (Dense) ---
        else:
            K_d = K_red.toarray() if sp.issparse(K_red) else np.asarray(K_red)
            K_ff = K_d[np.ix_(free, free)]
            K_fr = K_d[np.ix_(free, fix)]
            rhs = f_red[free] - K_fr @ u_fix
            try:
                u_f = la.solve(K_ff, rhs)
            except la.LinAlgError as e:
                raise SingularSystemError(f"Reduced system is singular: {e}")

        if not np.all(np.isfinite(u_f)):
            raise SingularSystemError("Solver returned NaNs. Reduced system is likely singular.")

        u_red[free] = u_f
        engine.set_solution(u_red)
        return engine.recover()

    @staticmethod
    def solve_active_set(interface, K, f, fixed_dofs=None, prescribed=None,
                         max_iterations: int = SolverConstants.MAX_ACTIVE_SET_ITERATIONS,
                         verbose: bool = False) -> RecoveryResult:
        """
        Repeat the condensed solve until the contact active set settles.

        Raises:
            ConvergenceError: active set still changing after max_iterations.
        """
        strategy = interface.strategy
        for iteration in range(1, max_iterations + 1):
            result = StaticCondensed.solve(interface, K, f, fixed_dofs, prescribed)
            changed = getattr(strategy, 'active_set_changed', False)
            if verbose:
                n_active = len(getattr(strategy, 'active_nodes', result.row_nodes))
                print(f"Active set iteration {iteration}: {n_active} active node(s), "
                      f"{'changed' if changed else 'converged'}")
            if not changed:
                return result
        raise ConvergenceError(f"Active set did not settle in {max_iterations} iterations")
