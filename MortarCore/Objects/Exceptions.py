"""
Exceptions and warning categories for mortar coupling.

Two kinds of problems show up while coupling non-matching meshes:

1. **Recoverable** conditions are reported with :func:`warnings.warn` and a
   dedicated category so that callers can filter or escalate them
   (``warnings.simplefilter("error", SingularCondensationWarning)``).
   The computation continues with a well defined fallback.

2. **Fatal** conditions raise a ``RuntimeError`` subclass. They indicate an
   inconsistent setup that would silently corrupt the coupled system if
   ignored.
"""


# =============================================================================
# WARNING CATEGORIES (recoverable)
# =============================================================================

class GeometryDegenerateWarning(UserWarning):
    """Issued when an element has zero size or an undefined normal.

    The affected slave/master pair is skipped and contributes nothing to
    the mortar matrices.
    """
    pass


class SingularCondensationWarning(UserWarning):
    """Issued when the slave block of the constraint cannot be inverted.

    This typically indicates:
    - Slave nodes without any projection onto the master side (zero D row);
      those rows are excluded and the nodes stay unconstrained
    - A singular or non-square slave block; a least-squares pseudo-inverse
      is used instead of the LU factorization
    """
    pass


# =============================================================================
# FATAL ERRORS
# =============================================================================

class InconsistentPartitionError(RuntimeError):
    """Raised when a rank references interface nodes it does not hold.

    Every element owned or ghosted on a rank must find all of its nodes in
    the rank's column node set. A violation means the ghosting step did not
    complete.
    """
    pass


class MixedRoleConflictError(RuntimeError):
    """Raised when structure and poro elements share one side of an interface."""
    pass


class CondensationStateError(RuntimeError):
    """Raised on an invalid transition of the condensation state machine.

    Example: calling ``recover()`` before a solution increment was provided.
    """
    pass


class RecoveryError(RuntimeError):
    """Raised when slave displacements or Lagrange multipliers cannot be recovered.

    Recovery runs after the global solve, when no fallback can restore a
    consistent state, so this error always aborts the current step.
    """
    pass
