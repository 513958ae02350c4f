"""
Mortar matrix assembly.

The Lagrange multiplier field on the slave side is discretized with the
basis Φ:

    λ_h = Σⱼ Φⱼ(x) λⱼ

and the interface constraint ∫_Γ λ_h · (u_slave - u_master) dΓ = 0 yields
two coupling matrices:

    D_jk = ∫_Γ Φⱼ · Nₖ^slave  dΓ        (slave × slave)
    M_jl = ∫_Γ Φⱼ · Nₗ^master dΓ        (slave × master)

The integrals are evaluated on the integration cells of every clip polygon
of a slave element. Since Σₖ Nₖ = 1 on both sides, the row sums of D and M
agree wherever the slave side is fully covered by the master side.

Dual basis
----------
With Φⱼ = Σₖ aⱼₖ Nₖ and A = Dₑ Mₑ⁻¹, where

    Mₑ = ∫ N Nᵀ,    Dₑ = diag(∫ N),

the bi-orthogonality ∫ Φⱼ Nₖ = δⱼₖ ∫ Nₖ makes D diagonal. The integrals
defining A are taken either over the whole slave element or over the
actually projecting part of it (consistent dual basis).
"""

import os
import warnings
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from MortarCore.Objects.Exceptions import GeometryDegenerateWarning
from MortarCore.Objects.Geometry.Clipping import IntersectionPolygon, clip
from MortarCore.Objects.Interface import ShapeFunction as sf
from MortarCore.Objects.Interface.Element import element_measure
from MortarCore.Objects.Parameters import ConsistentDual, MortarParameters, ShapeFunctionType
from .IntegrationRule import (gauss_points_1d, gauss_points_2d_triangle,
                              generate_cell_integration_points)
from .InterfaceDetection import CandidatePair


# =============================================================================
# ASSEMBLED OPERATOR
# =============================================================================

@dataclass(frozen=True, eq=False)
class MortarOperator:
    """
    Result of one assembly pass; never modified afterwards.

    Attributes
    ----------
    D_nodal : sp.csr_matrix
        Nodal D matrix (n_slave_nodes × n_slave_nodes)
    M_nodal : sp.csr_matrix
        Nodal M matrix (n_slave_nodes × n_master_nodes)
    slave_nodes, master_nodes : tuple of int
        Node gids of the rows / columns, ascending
    dim : int
        Number of displacement components per node
    slave_dofs, master_dofs : np.ndarray
        Global dof ids of the dof-level matrices (node-major), empty when
        no dof map was available
    slave_coords, master_coords : np.ndarray
        Node coordinates at assembly time, shape (n, 3)
    normals : np.ndarray
        Averaged unit nodal normals of the slave nodes, shape (n_slave, 3)
    row_owner : np.ndarray
        Owning rank of every slave node row
    dofmap_version : int
        Version of the dof map used (-1 without dof map)
    geometry_version : int
        Geometry version of the interface at assembly time
    shape_function : ShapeFunctionType
        Multiplier basis used
    n_segments : int
        Number of overlapping slave/master pairs integrated
    """
    D_nodal: sp.csr_matrix
    M_nodal: sp.csr_matrix
    slave_nodes: Tuple[int, ...]
    master_nodes: Tuple[int, ...]
    dim: int
    slave_dofs: np.ndarray
    master_dofs: np.ndarray
    slave_coords: np.ndarray
    master_coords: np.ndarray
    normals: np.ndarray
    row_owner: np.ndarray
    dofmap_version: int = -1
    geometry_version: int = 0
    shape_function: ShapeFunctionType = ShapeFunctionType.STANDARD
    n_segments: int = 0

    @property
    def D(self) -> sp.csr_matrix:
        """Dof-level D, one block per displacement component."""
        return sp.kron(self.D_nodal, sp.identity(self.dim), format='csr')

    @property
    def M(self) -> sp.csr_matrix:
        return sp.kron(self.M_nodal, sp.identity(self.dim), format='csr')

    @property
    def weighted_gap(self) -> np.ndarray:
        """g̃ⱼ = nⱼ · (Σₗ Mⱼₗ xₗ - Σₖ Dⱼₖ xₖ) per slave node."""
        diff = self.M_nodal @ self.master_coords - self.D_nodal @ self.slave_coords
        return np.einsum('ij,ij->i', self.normals, diff)

    @property
    def versions(self) -> Tuple[int, int]:
        return self.dofmap_version, self.geometry_version

    def slave_index(self) -> Dict[int, int]:
        return {gid: i for i, gid in enumerate(self.slave_nodes)}

    def master_index(self) -> Dict[int, int]:
        return {gid: i for i, gid in enumerate(self.master_nodes)}

    @classmethod
    def combine(cls, parts: Sequence['MortarOperator']) -> 'MortarOperator':
        """
        Sum partial operators assembled on different ranks.

        All parts must share node ordering and versions; only D, M and the
        segment count are added.
        """
        if not parts:
            raise ValueError("MortarOperator.combine: no parts given")
        first = parts[0]
        for p in parts[1:]:
            if p.slave_nodes != first.slave_nodes or p.master_nodes != first.master_nodes:
                raise ValueError("MortarOperator.combine: parts have different node layouts")
            if p.versions != first.versions:
                raise ValueError("MortarOperator.combine: parts have different versions")

        D = sum((p.D_nodal for p in parts[1:]), first.D_nodal.copy()).tocsr()
        M = sum((p.M_nodal for p in parts[1:]), first.M_nodal.copy()).tocsr()

        return cls(D_nodal=D, M_nodal=M, slave_nodes=first.slave_nodes,
                   master_nodes=first.master_nodes, dim=first.dim,
                   slave_dofs=first.slave_dofs, master_dofs=first.master_dofs,
                   slave_coords=first.slave_coords, master_coords=first.master_coords,
                   normals=first.normals, row_owner=first.row_owner,
                   dofmap_version=first.dofmap_version,
                   geometry_version=first.geometry_version,
                   shape_function=first.shape_function,
                   n_segments=sum(p.n_segments for p in parts))

    # =========================================================================
    # Export
    # =========================================================================

    def save(self, filename: str, dir_name: str = '', verbose: bool = False) -> str:
        """Write the operator to an HDF5 file (CSR arrays per matrix)."""
        import h5py

        if dir_name:
            os.makedirs(dir_name, exist_ok=True)
        full_path = os.path.join(dir_name, filename)

        with h5py.File(full_path, "w") as hf:
            for name, mat in (('D', self.D_nodal), ('M', self.M_nodal)):
                grp = hf.create_group(name)
                grp.create_dataset('data', data=mat.data)
                grp.create_dataset('indices', data=mat.indices)
                grp.create_dataset('indptr', data=mat.indptr)
                grp.attrs['shape'] = mat.shape
            hf.create_dataset('slave_nodes', data=np.array(self.slave_nodes, dtype=int))
            hf.create_dataset('master_nodes', data=np.array(self.master_nodes, dtype=int))
            hf.create_dataset('slave_dofs', data=self.slave_dofs)
            hf.create_dataset('master_dofs', data=self.master_dofs)
            hf.create_dataset('slave_coords', data=self.slave_coords)
            hf.create_dataset('master_coords', data=self.master_coords)
            hf.create_dataset('normals', data=self.normals)
            hf.create_dataset('row_owner', data=self.row_owner)
            hf.attrs['dim'] = self.dim
            hf.attrs['dofmap_version'] = self.dofmap_version
            hf.attrs['geometry_version'] = self.geometry_version
            hf.attrs['shape_function'] = self.shape_function.value
            hf.attrs['n_segments'] = self.n_segments

        if verbose:
            print(f"Mortar operator saved to: {full_path}")
        return full_path

    @classmethod
    def load(cls, path: str) -> 'MortarOperator':
        import h5py

        with h5py.File(path, "r") as hf:
            mats = {}
            for name in ('D', 'M'):
                grp = hf[name]
                mats[name] = sp.csr_matrix((grp['data'][()], grp['indices'][()],
                                            grp['indptr'][()]),
                                           shape=tuple(grp.attrs['shape']))
            return cls(D_nodal=mats['D'], M_nodal=mats['M'],
                       slave_nodes=tuple(int(g) for g in hf['slave_nodes'][()]),
                       master_nodes=tuple(int(g) for g in hf['master_nodes'][()]),
                       dim=int(hf.attrs['dim']),
                       slave_dofs=hf['slave_dofs'][()], master_dofs=hf['master_dofs'][()],
                       slave_coords=hf['slave_coords'][()],
                       master_coords=hf['master_coords'][()],
                       normals=hf['normals'][()], row_owner=hf['row_owner'][()],
                       dofmap_version=int(hf.attrs['dofmap_version']),
                       geometry_version=int(hf.attrs['geometry_version']),
                       shape_function=ShapeFunctionType(str(hf.attrs['shape_function'])),
                       n_segments=int(hf.attrs['n_segments']))

    def get_info(self) -> Dict:
        return {
            'shape_function': self.shape_function.value,
            'n_slave_nodes': len(self.slave_nodes),
            'n_master_nodes': len(self.master_nodes),
            'n_segments': self.n_segments,
            'D_nnz': int(self.D_nodal.nnz),
            'M_nnz': int(self.M_nodal.nnz),
            'D_sum': float(self.D_nodal.sum()),
            'M_sum': float(self.M_nodal.sum()),
            'dofmap_version': self.dofmap_version,
            'geometry_version': self.geometry_version,
        }

    def __repr__(self) -> str:
        return (f"MortarOperator(shape_function={self.shape_function.value}, "
                f"slave_nodes={len(self.slave_nodes)}, "
                f"master_nodes={len(self.master_nodes)}, "
                f"segments={self.n_segments}, "
                f"versions={self.versions})")


# =============================================================================
# ASSEMBLER
# =============================================================================

class MortarAssembler:
    """
    Builds D and M from candidate pairs in two phases.

    1. Segmentation: every candidate pair is clipped in the slave auxiliary
       plane; pairs without overlap are dropped.
    2. Integration: per slave element, all integration cells of all its clip
       polygons are integrated together (the dual basis coefficients depend
       on the whole element).

    Contributions are collected as COO triplets and summed on conversion,
    so the result does not depend on the order of the candidate pairs
    beyond round-off.

    Attributes
    ----------
    parameters : MortarParameters
        Shape function type, integration order, tolerances
    diagnostics : Dict
        Counters of the last assembly ('n_pairs', 'n_segments',
        'skipped_points', 'dual_fallbacks')
    """

    def __init__(self, parameters: Optional[MortarParameters] = None):
        self.parameters = parameters or MortarParameters()
        self.diagnostics = {}
        self.polygons: List[IntersectionPolygon] = []

    # -------------------------------------------------------------------------
    # Phase 1: segmentation
    # -------------------------------------------------------------------------

    def segment(self, interface, pairs: Iterable[CandidatePair]
                ) -> Dict[int, List[IntersectionPolygon]]:
        """Clip all pairs; polygons grouped by slave element."""
        grouped: Dict[int, List[IntersectionPolygon]] = {}
        n_pairs = 0
        for sid, mid in pairs:
            n_pairs += 1
            polygon = clip(interface.elements[sid], interface.elements[mid],
                           interface.nodes, self.parameters)
            if polygon is not None:
                grouped.setdefault(sid, []).append(polygon)
        self.diagnostics['n_pairs'] = n_pairs
        return grouped

    # -------------------------------------------------------------------------
    # Phase 2: integration
    # -------------------------------------------------------------------------

    def _evaluate_points(self, interface, slave, polygons):
        """Slave and master shape functions at every integration point."""
        nodes = interface.nodes
        Xs = slave.coordinates(nodes)
        ws = slave.weights(nodes)
        shape = slave.shape.value
        tol = self.parameters.projection_tolerance

        master_data = {}
        evaluations = []
        for polygon in polygons:
            mid = polygon.master_id
            if mid not in master_data:
                master = interface.elements[mid]
                master_data[mid] = (master, master.coordinates(nodes), master.weights(nodes))
            master, Xm, wm = master_data[mid]

            for cell in polygon.cells():
                for ip in generate_cell_integration_points(cell, self.parameters.integration_order,
                                                           mid):
                    xi_s, _, ok_s = sf.project_along_direction(Xs, shape, ip.position,
                                                               ip.normal, ws, tol)
                    xi_m, _, ok_m = sf.project_along_direction(Xm, master.shape.value,
                                                               ip.position, ip.normal, wm, tol)
                    if not (ok_s and ok_m):
                        self.diagnostics['skipped_points'] += 1
                        continue
                    Ns, _ = sf.evaluate_shape_functions(shape, xi_s, ws)
                    Nm, _ = sf.evaluate_shape_functions(master.shape.value, xi_m, wm)
                    evaluations.append((ip.weight, Ns, master.node_ids, Nm))
        return evaluations

    def _element_integrals(self, slave, nodes) -> Tuple[np.ndarray, np.ndarray]:
        """∫ N Nᵀ and ∫ N over the whole slave element."""
        Xs = slave.coordinates(nodes)
        ws = slave.weights(nodes)
        shape = slave.shape.value
        order = self.parameters.integration_order

        if shape == 'line2':
            t, w = gauss_points_1d(order)
            points = (2.0 * t - 1.0)[:, None]
            weights = 2.0 * w
        elif shape == 'tri3':
            points, weights = gauss_points_2d_triangle(order)
        else:
            t, w = gauss_points_1d(order)
            g = 2.0 * t - 1.0
            points = np.array([[a, b] for a in g for b in g])
            weights = np.array([4.0 * wa * wb for wa in w for wb in w])

        n = slave.shape.n_nodes
        Me = np.zeros((n, n))
        De = np.zeros(n)
        for xi, w in zip(points, weights):
            N, _ = sf.evaluate_shape_functions(shape, xi, ws)
            j = sf.jacobian_determinant(Xs, shape, xi, ws)
            Me += np.outer(N, N) * w * j
            De += N * w * j
        return Me, De

    def dual_coefficients(self, slave, nodes, evaluations, covered_area: float) -> np.ndarray:
        """
        Coefficient matrix A = Dₑ Mₑ⁻¹ of the dual basis Φ = A N.

        The integrals run over the projecting part of the element when the
        consistent dual option applies, otherwise over the whole element.
        """
        mode = self.parameters.consistent_dual
        measure = element_measure(slave.coordinates(nodes), slave.shape.value)
        partial = covered_area < measure * (1.0 - 1e-8)
        consistent = mode is ConsistentDual.ALL or (mode is ConsistentDual.BOUNDARY and partial)

        if consistent:
            n = slave.shape.n_nodes
            Me = np.zeros((n, n))
            De = np.zeros(n)
            for w, Ns, _, _ in evaluations:
                Me += np.outer(Ns, Ns) * w
                De += Ns * w
        else:
            Me, De = self._element_integrals(slave, nodes)

        try:
            return np.linalg.solve(Me, np.diag(De)).T
        except np.linalg.LinAlgError:
            self.diagnostics['dual_fallbacks'] += 1
            warnings.warn(f"Dual basis of slave element {slave.gid} is singular, "
                          f"using pseudo-inverse", GeometryDegenerateWarning, stacklevel=2)
            return np.diag(De) @ np.linalg.pinv(Me)

    def integrate_element(self, interface, slave, polygons: List[IntersectionPolygon]):
        """
        COO triplets of one slave element.

        Returns
        -------
        d_triplets, m_triplets : tuple of (rows, cols, values)
            Rows and columns are node gids
        """
        evaluations = self._evaluate_points(interface, slave, polygons)
        d_rows, d_cols, d_vals = [], [], []
        m_rows, m_cols, m_vals = [], [], []
        if not evaluations:
            return (d_rows, d_cols, d_vals), (m_rows, m_cols, m_vals)

        A = None
        if self.parameters.is_dual:
            covered = sum(p.area for p in polygons)
            A = self.dual_coefficients(slave, interface.nodes, evaluations, covered)

        s_ids = np.array(slave.node_ids)
        for w, Ns, m_nodes, Nm in evaluations:
            phi = A @ Ns if A is not None else Ns
            m_ids = np.array(m_nodes)

            block = w * np.outer(phi, Ns)
            d_rows.append(np.repeat(s_ids, len(s_ids)))
            d_cols.append(np.tile(s_ids, len(s_ids)))
            d_vals.append(block.ravel())

            block = w * np.outer(phi, Nm)
            m_rows.append(np.repeat(s_ids, len(m_ids)))
            m_cols.append(np.tile(m_ids, len(s_ids)))
            m_vals.append(block.ravel())

        return (d_rows, d_cols, d_vals), (m_rows, m_cols, m_vals)

    def assemble(self, interface, pairs: Iterable[CandidatePair]) -> MortarOperator:
        """
        Assemble D and M for the given candidate pairs.

        Parameters
        ----------
        interface : CouplingInterface
            Provides nodes, elements, node ordering, dof map and normals
        pairs : Iterable[CandidatePair]
            Candidate pairs (typically the slave elements owned by one rank)

        Returns
        -------
        MortarOperator
        """
        self.diagnostics = {'n_pairs': 0, 'n_segments': 0, 'skipped_points': 0,
                            'dual_fallbacks': 0}

        grouped = self.segment(interface, pairs)
        self.polygons = [p for sid in sorted(grouped) for p in grouped[sid]]
        self.diagnostics['n_segments'] = len(self.polygons)

        d_parts = ([], [], [])
        m_parts = ([], [], [])
        for sid in sorted(grouped):
            d, m = self.integrate_element(interface, interface.elements[sid], grouped[sid])
            for acc, new in zip(d_parts, d):
                acc.extend(new)
            for acc, new in zip(m_parts, m):
                acc.extend(new)

        slave_nodes = tuple(interface.slave_nodes)
        master_nodes = tuple(interface.master_nodes)
        s_index = {gid: i for i, gid in enumerate(slave_nodes)}
        m_index = {gid: i for i, gid in enumerate(master_nodes)}

        D = _to_csr(d_parts, s_index, s_index, (len(slave_nodes), len(slave_nodes)))
        M = _to_csr(m_parts, s_index, m_index, (len(slave_nodes), len(master_nodes)))

        dim = self.parameters.dim
        dofmap = interface.dofmap
        if dofmap is not None:
            slave_dofs = dofmap.component_dofs(slave_nodes, dim)
            master_dofs = dofmap.component_dofs(master_nodes, dim)
            dofmap_version = dofmap.version
        else:
            slave_dofs = np.zeros(0, dtype=int)
            master_dofs = np.zeros(0, dtype=int)
            dofmap_version = -1

        normals = interface.nodal_normals()
        nodes = interface.nodes
        return MortarOperator(
            D_nodal=D, M_nodal=M,
            slave_nodes=slave_nodes, master_nodes=master_nodes, dim=dim,
            slave_dofs=slave_dofs, master_dofs=master_dofs,
            slave_coords=np.array([nodes[g].coords for g in slave_nodes]).reshape(-1, 3),
            master_coords=np.array([nodes[g].coords for g in master_nodes]).reshape(-1, 3),
            normals=np.array([normals[g] for g in slave_nodes]).reshape(-1, 3),
            row_owner=np.array([nodes[g].owner for g in slave_nodes], dtype=int),
            dofmap_version=dofmap_version,
            geometry_version=interface.geometry_version,
            shape_function=self.parameters.shape_function,
            n_segments=len(self.polygons),
        )


def _to_csr(parts, row_index, col_index, shape) -> sp.csr_matrix:
    rows, cols, vals = parts
    if not vals:
        return sp.csr_matrix(shape)
    r = np.array([row_index[g] for g in np.concatenate(rows)], dtype=int)
    c = np.array([col_index[g] for g in np.concatenate(cols)], dtype=int)
    v = np.concatenate(vals)
    return sp.coo_matrix((v, (r, c)), shape=shape).tocsr()
