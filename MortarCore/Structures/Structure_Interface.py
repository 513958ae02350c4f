"""
Structure_Interface - One Mortar Coupling Interface
====================================================

This module holds the data of one slave/master interface and drives the
whole coupling pipeline for it.

Key Concepts:
-------------
1. **Interface data**: nodes and elements are stored by stable global id.
   Each element belongs to the slave or the master side. Positions can be
   updated between nonlinear steps (moving meshes); every update bumps the
   geometry version.

2. **Pipeline** (one call to :meth:`CouplingInterface.evaluate`):
   a. Partition the elements over (simulated) ranks, redistribute if asked
   b. Ghost master elements and check local completeness
   c. Search candidate pairs with the bounding volume trees
   d. Clip, integrate and assemble D and M per rank, sum the parts
   e. Hand the operator to the condensation engine

3. **Versions**: the mortar operator records the dof map version and the
   geometry version it was built from; the condensation engine rebuilds
   its cached projection whenever either changes.

Typical Usage:
    >>> interface = CouplingInterface(MortarParameters(dim=2))
    >>> interface.add_mesh(slave_coords, slave_lines, 'line2', 'slave')
    >>> interface.add_mesh(master_coords, master_lines, 'line2', 'master')
    >>> interface.make_dofs()
    >>> operator = interface.evaluate()
    >>> K_red, f_red = interface.engine.condense(K, f)
"""

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from MortarCore.Objects.Coupling.Condensation import CondensationEngine, create_coupling_strategy
from MortarCore.Objects.Coupling.InterfaceDetection import (CandidatePair, find_candidate_pairs,
                                                            find_candidate_pairs_bruteforce)
from MortarCore.Objects.Coupling.Mortar import MortarAssembler, MortarOperator
from MortarCore.Objects.Geometry.BoundingVolumeTree import BoundingVolumeTree
from MortarCore.Objects.Geometry.Clipping import IntersectionPolygon
from MortarCore.Objects.Interface.DofMap import DofMap
from MortarCore.Objects.Interface.Element import ElementShape, InterfaceElement, PhysicsType
from MortarCore.Objects.Interface.Node import InterfaceNode, Side, pad_to_3d
from MortarCore.Objects.Parameters import MortarParameters, SearchAlgorithm
from MortarCore.Parallel.Partition import (Partition, RankView, compute_gid_offset,
                                           distribution_report, gather_roles)
from MortarCore.Parallel.Redistribution import Redistributor


class CouplingInterface:
    """
    Slave/master interface with its search structures, strategy and engine.

    Parameters
    ----------
    parameters : MortarParameters, optional
        Mortar configuration (defaults to MortarParameters())
    name : str
        Label used in reports
    verbose : bool
        Print progress of each evaluation

    Attributes
    ----------
    nodes : Dict[int, InterfaceNode]
        Interface nodes by gid
    elements : Dict[int, InterfaceElement]
        Interface elements by gid
    geometry_version : int
        Incremented on every position update
    dofmap : DofMap
        Node-to-dof mapping (None until make_dofs/set_dofmap)
    strategy : CouplingStrategy
        Coupling strategy selected by ``parameters.coupling_type``
    engine : CondensationEngine
        Condensation engine bound to the strategy
    operator : MortarOperator
        Operator of the last evaluation
    partition : Partition
        Partition of the last evaluation
    """

    def __init__(self, parameters: Optional[MortarParameters] = None, name: str = 'interface',
                 verbose: bool = False):
        self.parameters = parameters or MortarParameters()
        self.name = name
        self.verbose = verbose

        self.nodes: Dict[int, InterfaceNode] = {}
        self.elements: Dict[int, InterfaceElement] = {}
        self.geometry_version = 0
        self.dofmap: Optional[DofMap] = None

        self.strategy = create_coupling_strategy(self.parameters.coupling_type, self.parameters)
        self.engine = CondensationEngine(self.strategy, verbose=verbose)
        self.assembler = MortarAssembler(self.parameters)
        self.redistributor = Redistributor.from_parameters(self.parameters, verbose=verbose)

        self._slave_tree: Optional[BoundingVolumeTree] = None
        self._master_tree: Optional[BoundingVolumeTree] = None

        self.operator: Optional[MortarOperator] = None
        self.partition: Optional[Partition] = None
        self.views: List[RankView] = []
        self.pairs: List[CandidatePair] = []
        self.polygons: List[IntersectionPolygon] = []
        self.rank_load: Optional[np.ndarray] = None
        self.diagnostics = {}

    # =========================================================================
    # Building
    # =========================================================================

    def add_node(self, gid: int, coords, side, weight: Optional[float] = None) -> InterfaceNode:
        if gid in self.nodes:
            raise ValueError(f"Node {gid} already exists on interface '{self.name}'")
        node = InterfaceNode(gid=int(gid), coords=coords, side=side, weight=weight)
        self.nodes[node.gid] = node
        self._mesh_changed()
        return node

    def add_element(self, gid: int, node_ids: Sequence[int], shape, side,
                    phys_type=PhysicsType.STRUCTURE) -> InterfaceElement:
        """
        Add an element by the gids of its nodes.

        The nodes may be added later; completeness is checked when the
        interface is evaluated.
        """
        if gid in self.elements:
            raise ValueError(f"Element {gid} already exists on interface '{self.name}'")
        element = InterfaceElement(gid=int(gid), node_ids=tuple(int(n) for n in node_ids),
                                   shape=shape, side=side, phys_type=phys_type)
        if self.parameters.dim == 2 and element.shape is not ElementShape.LINE2:
            raise ValueError(f"Element {gid}: 2D interfaces use line2 elements, "
                             f"got {element.shape.value}")
        if self.parameters.dim == 3 and element.shape is ElementShape.LINE2:
            raise ValueError(f"Element {gid}: 3D interfaces use tri3/quad4 elements")
        self.elements[element.gid] = element
        self._slave_tree = self._master_tree = None
        self._mesh_changed()
        return element

    def _mesh_changed(self):
        # Topology changes after an evaluation invalidate cached projections
        if self.operator is not None:
            self.geometry_version += 1

    def add_mesh(self, coords, connectivity, shape, side, phys_type=PhysicsType.STRUCTURE,
                 weights=None, node_offset: Optional[int] = None,
                 element_offset: Optional[int] = None) -> Tuple[List[int], List[int]]:
        """
        Add a whole side from coordinate and connectivity arrays.

        Gids are numbered from offsets agreed over all ranks, so meshes from
        different sources never collide.

        Parameters
        ----------
        coords : array_like
            Node coordinates (n_nodes × 2 or 3)
        connectivity : array_like
            Local node indices per element (n_elements × nodes per element)
        shape : ElementShape or str
            Element shape
        side : Side or str
            'slave' or 'master'
        phys_type : PhysicsType or str
            'structure' or 'poro'
        weights : array_like, optional
            NURBS weight per node
        node_offset, element_offset : int, optional
            First gid; defaults to one past the largest gid in use

        Returns
        -------
        node_ids, element_ids : List[int]
        """
        coords = np.asarray(coords, dtype=float)
        connectivity = np.atleast_2d(np.asarray(connectivity, dtype=int))
        if node_offset is None:
            node_offset = compute_gid_offset([max(self.nodes, default=-1)])
        if element_offset is None:
            element_offset = compute_gid_offset([max(self.elements, default=-1)])

        node_ids = []
        for i, x in enumerate(coords):
            w = None if weights is None else float(weights[i])
            node_ids.append(self.add_node(node_offset + i, x, side, w).gid)

        element_ids = []
        for k, conn in enumerate(connectivity):
            element_ids.append(self.add_element(element_offset + k,
                                                [node_ids[i] for i in conn],
                                                shape, side, phys_type).gid)
        return node_ids, element_ids

    def make_dofs(self, dofs_per_node: Optional[int] = None, offset: int = 0) -> DofMap:
        """Number the dofs node by node in ascending gid order."""
        dofs_per_node = dofs_per_node or self.parameters.dim
        version = 0 if self.dofmap is None else self.dofmap.version + 1
        self.dofmap = DofMap.from_nodes(sorted(self.nodes), dofs_per_node, offset, version)
        return self.dofmap

    def set_dofmap(self, dofmap: DofMap):
        self.dofmap = dofmap

    # =========================================================================
    # Queries
    # =========================================================================

    def _side_elements(self, side: Side) -> List[int]:
        return sorted(g for g, e in self.elements.items() if e.side is side)

    @property
    def slave_elements(self) -> List[int]:
        return self._side_elements(Side.SLAVE)

    @property
    def master_elements(self) -> List[int]:
        return self._side_elements(Side.MASTER)

    def _side_nodes(self, side: Side) -> List[int]:
        ids = set()
        for e in self.elements.values():
            if e.side is side:
                ids.update(e.node_ids)
        return sorted(ids)

    @property
    def slave_nodes(self) -> List[int]:
        return self._side_nodes(Side.SLAVE)

    @property
    def master_nodes(self) -> List[int]:
        return self._side_nodes(Side.MASTER)

    def element_coordinates(self, gid: int) -> np.ndarray:
        return self.elements[gid].coordinates(self.nodes)

    def nodal_normals(self) -> Dict[int, np.ndarray]:
        """Unit normals at slave nodes, averaged over the adjacent slave elements."""
        summed: Dict[int, np.ndarray] = {}
        for gid in self.slave_elements:
            for n, normal in self.elements[gid].nodal_normals(self.nodes).items():
                summed[n] = summed.get(n, np.zeros(3)) + normal
        normals = {}
        for n, v in summed.items():
            length = np.linalg.norm(v)
            normals[n] = v / length if length > 0.0 else v
        return normals

    # =========================================================================
    # Moving meshes
    # =========================================================================

    def update_positions(self, displacements: Optional[Mapping[int, np.ndarray]] = None,
                         coordinates: Optional[Mapping[int, np.ndarray]] = None):
        """
        Move nodes and refit the search trees.

        Parameters
        ----------
        displacements : Mapping[int, np.ndarray], optional
            Displacement from the reference position per node gid
        coordinates : Mapping[int, np.ndarray], optional
            New absolute position per node gid
        """
        moved = set()
        for gid, u in (displacements or {}).items():
            node = self.nodes[gid]
            node.coords = node.reference_coords + pad_to_3d(u)
            moved.add(gid)
        for gid, x in (coordinates or {}).items():
            self.nodes[gid].coords = pad_to_3d(x)
            moved.add(gid)
        if not moved:
            return

        self.geometry_version += 1
        touched = {g: self.element_coordinates(g) for g, e in self.elements.items()
                   if moved.intersection(e.node_ids)}
        for tree in (self._slave_tree, self._master_tree):
            if tree is not None:
                tree.refit({g: x for g, x in touched.items() if g in tree})

    # =========================================================================
    # Search
    # =========================================================================

    def build_trees(self):
        dim, leaf = self.parameters.dim, self.parameters.leaf_size
        self._slave_tree = BoundingVolumeTree(dim, leaf)
        self._master_tree = BoundingVolumeTree(dim, leaf)
        for gid, element in self.elements.items():
            tree = self._slave_tree if element.side is Side.SLAVE else self._master_tree
            tree.insert(gid, element.coordinates(self.nodes))
        self._slave_tree.rebuild()
        self._master_tree.rebuild()

    def search(self, slave_ids: Optional[Sequence[int]] = None) -> List[CandidatePair]:
        """Candidate pairs of the given (default: all) slave elements."""
        if self._slave_tree is None or self._master_tree is None:
            self.build_trees()
        radius = self.parameters.search_param
        if self.parameters.search_algorithm is SearchAlgorithm.BRUTE_FORCE:
            return find_candidate_pairs_bruteforce(self._slave_tree.items(),
                                                   self._master_tree.items(),
                                                   radius, slave_ids)
        return find_candidate_pairs(self._slave_tree, self._master_tree, radius, slave_ids)

    # =========================================================================
    # Evaluation
    # =========================================================================

    def distribute(self, n_ranks: int) -> Partition:
        """Initial block partition over ``n_ranks`` simulated ranks."""
        self.partition = Partition.block(self, n_ranks)
        return self.partition

    def evaluate(self, partition: Optional[Partition] = None) -> MortarOperator:
        """
        Run search, segmentation and assembly, install the operator.

        Parameters
        ----------
        partition : Partition, optional
            Element-to-rank assignment; defaults to the last partition or a
            single rank

        Returns
        -------
        MortarOperator
            Sum of the per-rank operators

        Raises
        ------
        InconsistentPartitionError
            If a rank misses a node of one of its elements
        MixedRoleConflictError
            If the strategy forbids the physical types on a side
        """
        partition = partition or self.partition or Partition.single(self)
        if self.redistributor.needs_redistribution(self.rank_load):
            partition = self.redistributor.redistribute(self, partition, self.rank_load)
        partition.apply(self)
        self.partition = partition

        params = self.parameters
        views = partition.build_views(self, params.ghosting, params.search_param)
        for view in views:
            view.check_consistency(self)
        self.strategy.check_interface(self, gather_roles(views))
        self.strategy.activate(self)
        self.views = views

        if params.print_distribution or self.verbose:
            print(distribution_report(partition, views, self.name))

        if self._slave_tree is None or self._master_tree is None:
            self.build_trees()
        parts = []
        load = []
        self.pairs = []
        self.polygons = []
        self.diagnostics = {'n_pairs': 0, 'n_segments': 0, 'skipped_points': 0,
                            'dual_fallbacks': 0}
        for view in views:
            held = set(view.master_elements)
            pairs = [p for p in self.search(view.slave_elements) if p.master_id in held]
            parts.append(self.assembler.assemble(self, pairs))
            load.append(len(pairs))
            self.pairs.extend(pairs)
            self.polygons.extend(self.assembler.polygons)
            for key in self.diagnostics:
                self.diagnostics[key] += self.assembler.diagnostics.get(key, 0)

        self.pairs.sort()
        self.rank_load = np.array(load, dtype=float)
        self.operator = MortarOperator.combine(parts)
        self.engine.set_operator(self.operator)

        if self.verbose:
            print(f"Interface '{self.name}': {len(self.pairs)} candidate pairs, "
                  f"{self.operator.n_segments} segments on {partition.n_ranks} rank(s)")
        return self.operator

    def get_info(self) -> Dict:
        return {
            'name': self.name,
            'n_nodes': len(self.nodes),
            'n_slave_elements': len(self.slave_elements),
            'n_master_elements': len(self.master_elements),
            'geometry_version': self.geometry_version,
            'dofmap_version': self.dofmap.version if self.dofmap is not None else None,
            'coupling': self.strategy.get_info(),
            'diagnostics': dict(self.diagnostics),
        }

    def __repr__(self) -> str:
        return (f"CouplingInterface(name='{self.name}', slave={len(self.slave_elements)}, "
                f"master={len(self.master_elements)}, "
                f"coupling={self.parameters.coupling_type.value})")
