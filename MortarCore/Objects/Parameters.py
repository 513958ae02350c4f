"""
Configuration of a mortar coupling interface.

All tunable options live in :class:`MortarParameters`. String options are
accepted case-insensitively and may use the aliases known from common
mortar input files (``'Dual'``, ``'std'``, ``'BinaryTree'`` ...).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Union


# =============================================================================
# OPTION ENUMS
# =============================================================================

class _Option(str, Enum):
    """Base class for string options with alias lookup."""

    @classmethod
    def _aliases(cls) -> Dict[str, str]:
        return {}

    @classmethod
    def parse(cls, value):
        """Convert an enum member, value or alias string to a member."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"{cls.__name__}: expected a string, got {value!r}")

        key = value.strip().lower().replace('-', '_').replace(' ', '_')
        key = cls._aliases().get(key, key)
        for member in cls:
            if member.value == key:
                return member

        valid = ', '.join(m.value for m in cls)
        raise ValueError(f"Unknown {cls.__name__} '{value}'. Valid options: {valid}")


class ShapeFunctionType(_Option):
    """Lagrange multiplier interpolation."""
    STANDARD = 'standard'
    DUAL = 'dual'

    @classmethod
    def _aliases(cls):
        return {'std': 'standard', 'lagrange': 'standard', 'biorthogonal': 'dual'}


class ConsistentDual(_Option):
    """Integration domain of the dual basis coefficients.

    - NONE: whole slave element
    - BOUNDARY: actual mortar overlap, only for partially projecting elements
    - ALL: actual mortar overlap for every element
    """
    NONE = 'none'
    BOUNDARY = 'boundary'
    ALL = 'all'

    @classmethod
    def _aliases(cls):
        return {'no': 'none', 'off': 'none', 'yes': 'all'}


class SearchAlgorithm(_Option):
    BINARY_TREE = 'binarytree'
    BRUTE_FORCE = 'bruteforce'

    @classmethod
    def _aliases(cls):
        return {'binary_tree': 'binarytree', 'tree': 'binarytree', 'bvh': 'binarytree',
                'brute_force': 'bruteforce', 'bruteforceelebased': 'bruteforce',
                'bruteforceeleb': 'bruteforce'}


class Triangulation(_Option):
    """Subdivision of clip polygons into integration triangles."""
    DELAUNAY = 'delaunay'
    CENTER = 'center'
    FAN = 'fan'

    @classmethod
    def _aliases(cls):
        return {'centre': 'center', 'centroid': 'center'}


class CouplingType(_Option):
    MESHTYING = 'meshtying'
    CONTACT = 'contact'
    PORO = 'poro'

    @classmethod
    def _aliases(cls):
        return {'tying': 'meshtying', 'mesh_tying': 'meshtying',
                'frictionless_contact': 'contact', 'frictionless': 'contact',
                'poro_no_penetration': 'poro', 'nopenetration': 'poro',
                'no_penetration': 'poro'}


class GhostingStrategy(_Option):
    """Which master elements a rank holds besides its own."""
    REDUNDANT_MASTER = 'redundant_master'
    REDUNDANT_ALL = 'redundant_all'
    PROXIMITY = 'proximity'

    @classmethod
    def _aliases(cls):
        return {'redundantmaster': 'redundant_master', 'redundantall': 'redundant_all',
                'binning': 'proximity', 'round_robin': 'proximity',
                'roundrobin': 'proximity'}


class ParallelRedistribution(_Option):
    """When the interface is rebalanced over ranks.

    - NONE: keep the initial distribution
    - STATIC: rebalance once, before the first evaluation
    - DYNAMIC: rebalance whenever the measured imbalance exceeds ``max_balance``
    """
    NONE = 'none'
    STATIC = 'static'
    DYNAMIC = 'dynamic'

    @classmethod
    def _aliases(cls):
        return {'no': 'none', 'off': 'none'}


# =============================================================================
# DEFAULTS
# =============================================================================

class MortarConstants:
    """Default tolerances and limits for mortar coupling.

    Relative tolerances are scaled with the characteristic size of the
    slave element they are applied to.
    """
    SEARCH_PARAM = 0.3                 # Bounding box inflation radius
    LEAF_SIZE = 4                      # Max elements per tree leaf
    INTEGRATION_ORDER = 4              # Gauss rule on integration cells
    MERGE_TOLERANCE = 1e-8             # Relative vertex merge distance
    AREA_TOLERANCE = 1e-10             # Relative minimum overlap area
    PROJECTION_TOLERANCE = 1e-12       # Newton projection residual
    MAX_PROJECTION_ITERATIONS = 10     # Newton projection iterations
    ORIENTATION_THRESHOLD = -0.1       # Max normal dot product for contact pairs
    SINGULAR_TOLERANCE = 1e-12         # Relative D row norm treated as zero
    DEGENERATE_SIZE = 1e-14            # Absolute element size treated as zero
    SEMI_SMOOTH_C = 1.0                # Complementarity parameter c_n
    IMBALANCE_TOL = 1.1                # Target max/avg load after rebalancing
    MAX_BALANCE = 2.0                  # max/min load ratio triggering rebalancing
    MIN_ELEMENTS_PER_RANK = 0          # 0: use every rank


# =============================================================================
# PARAMETERS
# =============================================================================

@dataclass
class MortarParameters:
    """
    Options of one mortar coupling interface.

    Attributes
    ----------
    dim : int
        Problem dimension (2: line interfaces, 3: surface interfaces)
    shape_function : ShapeFunctionType or str
        'standard' or 'dual' Lagrange multiplier basis
    consistent_dual : ConsistentDual or str
        Integration domain of the dual coefficients
    search_algorithm : SearchAlgorithm or str
        'binarytree' (default) or 'bruteforce'
    search_param : float
        Absolute bounding box inflation for the candidate search
    leaf_size : int
        Maximum number of elements in a tree leaf
    integration_order : int
        Gauss rule used on every integration cell
    triangulation : Triangulation or str
        'delaunay', 'center' or 'fan'
    merge_tolerance : float
        Relative distance below which clip vertices are merged
    area_tolerance : float
        Relative overlap area below which a pair is discarded
    projection_tolerance : float
        Residual tolerance of the Newton point projection
    check_orientation : bool
        Discard pairs whose normals are not opposed (contact)
    singular_tolerance : float
        Relative D row norm below which a slave node is left unconstrained
    coupling_type : CouplingType or str
        'meshtying', 'contact' or 'poro'
    semi_smooth_c : float
        Complementarity parameter of the contact active set
    ghosting : GhostingStrategy or str
        Master ghosting strategy for parallel evaluation
    parallel_redist : ParallelRedistribution or str
        Rebalancing strategy
    imbalance_tol : float
        Target max/avg load ratio of the rebalanced partition
    max_balance : float
        max/min load ratio above which dynamic rebalancing is triggered
    min_elements_per_rank : int
        Minimum number of slave elements per rank (0 disables the limit)
    print_distribution : bool
        Print the parallel distribution after each (re)partitioning
    """
    dim: int = 3
    shape_function: Union[ShapeFunctionType, str] = ShapeFunctionType.STANDARD
    consistent_dual: Union[ConsistentDual, str] = ConsistentDual.BOUNDARY
    search_algorithm: Union[SearchAlgorithm, str] = SearchAlgorithm.BINARY_TREE
    search_param: float = MortarConstants.SEARCH_PARAM
    leaf_size: int = MortarConstants.LEAF_SIZE
    integration_order: int = MortarConstants.INTEGRATION_ORDER
    triangulation: Union[Triangulation, str] = Triangulation.DELAUNAY
    merge_tolerance: float = MortarConstants.MERGE_TOLERANCE
    area_tolerance: float = MortarConstants.AREA_TOLERANCE
    projection_tolerance: float = MortarConstants.PROJECTION_TOLERANCE
    check_orientation: bool = False
    singular_tolerance: float = MortarConstants.SINGULAR_TOLERANCE
    coupling_type: Union[CouplingType, str] = CouplingType.MESHTYING
    semi_smooth_c: float = MortarConstants.SEMI_SMOOTH_C
    ghosting: Union[GhostingStrategy, str] = GhostingStrategy.REDUNDANT_MASTER
    parallel_redist: Union[ParallelRedistribution, str] = ParallelRedistribution.NONE
    imbalance_tol: float = MortarConstants.IMBALANCE_TOL
    max_balance: float = MortarConstants.MAX_BALANCE
    min_elements_per_rank: int = MortarConstants.MIN_ELEMENTS_PER_RANK
    print_distribution: bool = False

    def __post_init__(self):
        if self.dim not in (2, 3):
            raise ValueError(f"dim must be 2 or 3, got {self.dim}")

        self.shape_function = ShapeFunctionType.parse(self.shape_function)
        self.consistent_dual = ConsistentDual.parse(self.consistent_dual)
        self.search_algorithm = SearchAlgorithm.parse(self.search_algorithm)
        self.triangulation = Triangulation.parse(self.triangulation)
        self.coupling_type = CouplingType.parse(self.coupling_type)
        self.ghosting = GhostingStrategy.parse(self.ghosting)
        self.parallel_redist = ParallelRedistribution.parse(self.parallel_redist)

        if self.search_param < 0:
            raise ValueError(f"search_param must be non-negative, got {self.search_param}")
        if self.leaf_size < 1:
            raise ValueError(f"leaf_size must be at least 1, got {self.leaf_size}")
        if self.integration_order < 1:
            raise ValueError(f"integration_order must be positive, got {self.integration_order}")
        for name in ('merge_tolerance', 'area_tolerance', 'projection_tolerance',
                     'singular_tolerance'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.semi_smooth_c <= 0:
            raise ValueError(f"semi_smooth_c must be positive, got {self.semi_smooth_c}")
        if self.imbalance_tol < 1.0:
            raise ValueError(f"imbalance_tol must be >= 1.0, got {self.imbalance_tol}")
        if self.max_balance < 1.0:
            raise ValueError(f"max_balance must be >= 1.0, got {self.max_balance}")
        if self.min_elements_per_rank < 0:
            raise ValueError("min_elements_per_rank must be non-negative")

    @property
    def is_dual(self) -> bool:
        return self.shape_function is ShapeFunctionType.DUAL

    def get_info(self) -> Dict:
        """Options as plain values (for reports and HDF5 attributes)."""
        info = {}
        for name, value in self.__dict__.items():
            info[name] = value.value if isinstance(value, Enum) else value
        return info
