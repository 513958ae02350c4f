from typing import Dict, Optional, Set

from MortarCore.Objects.Exceptions import MixedRoleConflictError
from MortarCore.Objects.Interface.Element import PhysicsType
from MortarCore.Objects.Parameters import MortarConstants
from .BaseCoupling import ConstraintSet, CouplingStrategy


class PoroNoPenetrationCoupling(CouplingStrategy):
    """
    No-penetration condition between a porous medium and a structure or a
    second porous medium.

    The normal component of the relative motion is tied for every slave
    node with a mortar projection:

        nⱼ · (Σₖ Dⱼₖ uₖ - Σₗ Mⱼₗ uₗ) = 0

    Tangential motion stays free. Each side must be either entirely
    structure or entirely poro; mixed sides are rejected.
    """

    def __init__(self, singular_tolerance: float = MortarConstants.SINGULAR_TOLERANCE):
        super().__init__(coupling_type='poro', singular_tolerance=singular_tolerance)
        self.slave_type = None
        self.master_type = None

    def check_interface(self, interface, roles: Optional[Dict[str, Set]] = None):
        """
        Check that no side mixes structure and poro elements.

        Parameters
        ----------
        interface : CouplingInterface
            Interface to check
        roles : Dict[str, Set], optional
            Physical types per side gathered over all ranks; computed from
            the interface elements when omitted

        Raises
        ------
        MixedRoleConflictError
            If one side holds both physical types
        """
        if roles is None:
            roles = {side: {interface.elements[e].phys_type for e in ids}
                     for side, ids in (('slave', interface.slave_elements),
                                       ('master', interface.master_elements))}
        for side in ('slave', 'master'):
            types: Set[PhysicsType] = set(roles.get(side, ()))
            if len(types) > 1:
                raise MixedRoleConflictError(
                    f"struct and poro {side} elements on the same interface - "
                    f"no mixed interface supported")
            setattr(self, f"{side}_type", types.pop() if types else None)

        if PhysicsType.PORO not in (self.slave_type, self.master_type):
            raise ValueError("Poro no-penetration coupling needs a poro side")

    def build_constraints(self, operator) -> ConstraintSet:
        self._require_dofs(operator)
        excluded = self.find_singular_nodes(operator)
        rows = [i for i in range(len(operator.slave_nodes)) if i not in excluded]
        self.diagnostics['n_constraints'] = len(rows)
        return self._normal_rows(operator, rows, None)

    def get_info(self) -> Dict:
        info = super().get_info()
        info['slave_type'] = self.slave_type.value if self.slave_type else None
        info['master_type'] = self.master_type.value if self.master_type else None
        return info
