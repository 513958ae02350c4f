"""
Tests for mortar matrix assembly.

Tests cover:
- D and M values for simple overlaps
- Row sum consistency between D and M
- Projection operator reproducing constants (patch test)
- Dual basis and consistent dual integration
- Operator combination, versions and HDF5 export
"""
import h5py
import numpy as np
import pytest
import scipy.sparse as sp

from MortarCore.Objects.Coupling.IntegrationRule import (gauss_points_1d, gauss_points_2d_triangle,
                                                         generate_cell_integration_points)
from MortarCore.Objects.Coupling.Mortar import MortarAssembler, MortarOperator
from MortarCore.Objects.Parameters import ShapeFunctionType
from conftest import make_line_interface, make_quad_interface, off_diagonal_ratio


# =============================================================================
# Quadrature
# =============================================================================

@pytest.mark.unit
@pytest.mark.mortar
class TestQuadrature:

    @pytest.mark.parametrize("order", [1, 2, 3, 4, 7])
    def test_line_weights_sum_to_one(self, order):
        points, weights = gauss_points_1d(order)
        assert weights.sum() == pytest.approx(1.0)
        assert np.all((points > 0.0) & (points < 1.0))

    @pytest.mark.parametrize("order", [1, 2, 3, 4, 5, 6, 8])
    def test_triangle_weights_sum_to_half(self, order):
        _, weights = gauss_points_2d_triangle(order)
        assert weights.sum() == pytest.approx(0.5)

    @pytest.mark.parametrize("order", [2, 4, 5, 6])
    def test_triangle_rule_integrates_quadratic(self, order):
        # ∫ ξ² over the unit triangle = 1/12
        points, weights = gauss_points_2d_triangle(order)
        assert np.sum(weights * points[:, 0] ** 2) == pytest.approx(1.0 / 12.0)

    def test_invalid_order_raises(self):
        with pytest.raises(ValueError):
            gauss_points_1d(0)

    def test_cell_points_carry_master_id(self, offset_quads):
        offset_quads.evaluate()
        cell = offset_quads.polygons[0].cells()[0]
        points = generate_cell_integration_points(cell, 3, master_id=1)
        assert all(p.master_id == 1 for p in points)
        assert sum(p.weight for p in points) == pytest.approx(cell.measure)


# =============================================================================
# Standard basis
# =============================================================================

@pytest.mark.unit
@pytest.mark.mortar
class TestStandardAssembly:

    def test_offset_quads_row_sums(self, offset_quads):
        op = offset_quads.evaluate()
        d_rows = np.asarray(op.D_nodal.sum(axis=1)).ravel()
        m_rows = np.asarray(op.M_nodal.sum(axis=1)).ravel()

        x = op.slave_coords[:, 0]
        np.testing.assert_allclose(d_rows[x > 0.5], 0.1875, atol=1e-12)
        np.testing.assert_allclose(d_rows[x < 0.5], 0.0625, atol=1e-12)
        np.testing.assert_allclose(m_rows, d_rows, atol=1e-10)
        assert op.D_nodal.sum() == pytest.approx(0.5)
        assert op.n_segments == 1

    def test_conforming_lines_give_consistent_mass(self, conforming_lines):
        op = conforming_lines.evaluate()
        expected = np.array([[1.0 / 3.0, 1.0 / 6.0], [1.0 / 6.0, 1.0 / 3.0]])
        np.testing.assert_allclose(op.D_nodal.toarray(), expected, atol=1e-12)
        np.testing.assert_allclose(op.M_nodal.toarray(), expected, atol=1e-12)
        np.testing.assert_allclose(conforming_lines.engine.projection.toarray(),
                                   np.eye(2), atol=1e-12)

    def test_projection_reproduces_constants(self, nonmatching_patch):
        nonmatching_patch.evaluate()
        P = nonmatching_patch.engine.projection
        np.testing.assert_allclose(P @ np.ones(P.shape[1]), 1.0, atol=1e-10)

    def test_partial_overlap_projection(self, offset_quads):
        offset_quads.evaluate()
        P = offset_quads.engine.projection
        np.testing.assert_allclose(P @ np.ones(P.shape[1]), 1.0, atol=1e-10)

    def test_total_area_matches_overlap(self, nonmatching_patch):
        op = nonmatching_patch.evaluate()
        assert op.D_nodal.sum() == pytest.approx(1.0)
        assert op.M_nodal.sum() == pytest.approx(1.0)

    def test_pair_order_does_not_matter(self, nonmatching_patch):
        pairs = nonmatching_patch.search()
        assembler = MortarAssembler(nonmatching_patch.parameters)
        forward = assembler.assemble(nonmatching_patch, pairs)
        backward = assembler.assemble(nonmatching_patch, list(reversed(pairs)))
        np.testing.assert_allclose(forward.D_nodal.toarray(), backward.D_nodal.toarray(),
                                   atol=1e-14)
        np.testing.assert_allclose(forward.M_nodal.toarray(), backward.M_nodal.toarray(),
                                   atol=1e-14)

    @pytest.mark.parametrize("method", ['delaunay', 'center', 'fan'])
    def test_triangulation_does_not_change_result(self, method):
        reference = make_quad_interface(slave=(2, 2), master=(3, 3)).evaluate()
        other = make_quad_interface(slave=(2, 2), master=(3, 3),
                                    triangulation=method).evaluate()
        np.testing.assert_allclose(other.M_nodal.toarray(), reference.M_nodal.toarray(),
                                   atol=1e-12)

    def test_slave_node_outside_master_has_zero_row(self):
        interface = make_line_interface(slave=(0.0, 2.0, 2))
        op = interface.evaluate()
        rows = np.asarray(abs(op.D_nodal).sum(axis=1)).ravel()
        x = op.slave_coords[:, 0]
        assert rows[x == 2.0][0] == 0.0
        assert np.all(rows[x < 2.0] > 0.0)

    def test_tilted_master_line(self):
        # Projection along the slave normal onto a tilted master
        interface = make_line_interface(master=(0.0, 1.0, 1))
        interface.update_positions(coordinates={3: [1.0, 0.05]})
        op = interface.evaluate()
        np.testing.assert_allclose(np.asarray(op.M_nodal.sum(axis=1)).ravel(),
                                   np.asarray(op.D_nodal.sum(axis=1)).ravel(), atol=1e-10)


# =============================================================================
# Dual basis
# =============================================================================

@pytest.mark.unit
@pytest.mark.mortar
class TestDualAssembly:

    def test_dual_D_is_diagonal(self, nonmatching_patch):
        nonmatching_patch.parameters.shape_function = ShapeFunctionType.DUAL
        op = nonmatching_patch.evaluate()
        assert op.shape_function is ShapeFunctionType.DUAL
        assert off_diagonal_ratio(op.D_nodal) < 1e-10

    def test_dual_projection_reproduces_constants(self):
        interface = make_quad_interface(slave=(2, 2), master=(3, 3), shape_function='dual')
        interface.evaluate()
        P = interface.engine.projection
        np.testing.assert_allclose(P @ np.ones(P.shape[1]), 1.0, atol=1e-10)

    def test_dual_diagonal_equals_standard_row_sum(self):
        std = make_quad_interface(slave=(2, 2), master=(3, 3)).evaluate()
        dual = make_quad_interface(slave=(2, 2), master=(3, 3),
                                   shape_function='dual').evaluate()
        np.testing.assert_allclose(dual.D_nodal.diagonal(),
                                   np.asarray(std.D_nodal.sum(axis=1)).ravel(), atol=1e-12)

    def test_consistent_dual_on_partial_overlap(self):
        consistent = make_quad_interface(master_origin=(0.5, 0.0), shape_function='dual',
                                         consistent_dual='boundary').evaluate()
        assert off_diagonal_ratio(consistent.D_nodal) < 1e-10

        plain = make_quad_interface(master_origin=(0.5, 0.0), shape_function='dual',
                                    consistent_dual='none').evaluate()
        assert off_diagonal_ratio(plain.D_nodal) > 1e-3

    def test_dual_line_coefficients(self, conforming_lines):
        conforming_lines.parameters.shape_function = ShapeFunctionType.DUAL
        op = conforming_lines.evaluate()
        # Φ₁ = 2N₁ - N₂, Φ₂ = 2N₂ - N₁ on a line: D = diag(L/2)
        np.testing.assert_allclose(op.D_nodal.toarray(), 0.5 * np.eye(2), atol=1e-12)
        np.testing.assert_allclose(op.M_nodal.toarray(), 0.5 * np.eye(2), atol=1e-12)


# =============================================================================
# Operator
# =============================================================================

@pytest.mark.unit
@pytest.mark.mortar
class TestMortarOperator:

    def test_dof_level_matrices(self, conforming_lines):
        op = conforming_lines.evaluate()
        assert op.D.shape == (4, 4)
        assert op.M.shape == (4, 4)
        np.testing.assert_array_equal(op.slave_dofs, [0, 1, 2, 3])
        np.testing.assert_array_equal(op.master_dofs, [4, 5, 6, 7])
        assert op.D[0, 1] == 0.0
        assert op.D[0, 2] == pytest.approx(1.0 / 6.0)

    def test_versions_follow_interface(self, conforming_lines):
        op = conforming_lines.evaluate()
        assert op.versions == (0, 0)

        conforming_lines.update_positions(displacements={2: [0.0, 0.0]})
        conforming_lines.make_dofs()
        assert conforming_lines.evaluate().versions == (1, 1)

    def test_operator_without_dofmap(self, offset_quads):
        op = offset_quads.evaluate()
        assert op.dofmap_version == -1
        assert len(op.slave_dofs) == 0

    def test_combine_sums_parts(self, nonmatching_patch):
        assembler = MortarAssembler(nonmatching_patch.parameters)
        pairs = nonmatching_patch.search()
        half = len(pairs) // 2
        parts = [assembler.assemble(nonmatching_patch, pairs[:half]),
                 assembler.assemble(nonmatching_patch, pairs[half:])]
        whole = assembler.assemble(nonmatching_patch, pairs)
        combined = MortarOperator.combine(parts)
        np.testing.assert_allclose(combined.D_nodal.toarray(), whole.D_nodal.toarray(),
                                   atol=1e-14)
        assert combined.n_segments == whole.n_segments

    def test_combine_rejects_empty(self):
        with pytest.raises(ValueError):
            MortarOperator.combine([])

    def test_weighted_gap(self):
        interface = make_line_interface(slave=(1.0, 0.0, 1), master_y=0.2)
        op = interface.evaluate()
        np.testing.assert_allclose(op.weighted_gap, 0.1, atol=1e-12)

    def test_hdf5_round_trip(self, conforming_lines, tmp_path):
        op = conforming_lines.evaluate()
        path = op.save("operator.h5", dir_name=str(tmp_path))
        with h5py.File(path, "r") as hf:
            assert hf.attrs['dim'] == 2

        loaded = MortarOperator.load(path)
        assert loaded.slave_nodes == op.slave_nodes
        assert loaded.versions == op.versions
        assert loaded.shape_function is op.shape_function
        assert sp.issparse(loaded.D_nodal)
        np.testing.assert_allclose(loaded.D_nodal.toarray(), op.D_nodal.toarray())
        np.testing.assert_allclose(loaded.normals, op.normals)

    def test_get_info(self, offset_quads):
        info = offset_quads.evaluate().get_info()
        assert info['n_segments'] == 1
        assert info['D_sum'] == pytest.approx(info['M_sum'])
