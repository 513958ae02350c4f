"""
End-to-end tests of coupled systems.

Tests cover:
- Parameters, aliases and interface construction errors
- Dof maps and versioning
- Two bilinear quads tied through a non-matching interface
- Reference solver paths and error handling
- Plots and VTK export
"""
import os

import matplotlib.pyplot as plt
import meshio
import numpy as np
import pytest

from MortarCore import CouplingInterface, MortarParameters, StaticCondensed
from MortarCore.Objects.Interface.DofMap import DofMap
from MortarCore.Objects.Parameters import (ConsistentDual, GhostingStrategy, SearchAlgorithm,
                                           ShapeFunctionType, Triangulation)
from MortarCore.Parallel.Partition import Partition
from MortarCore.Solvers.Static import SingularSystemError
from MortarCore.Solvers.Visualizer import PlotStyle, Visualizer
from conftest import make_line_interface, quad4_stiffness


# =============================================================================
# Configuration
# =============================================================================

@pytest.mark.unit
class TestParameters:

    def test_defaults(self):
        params = MortarParameters()
        assert params.dim == 3
        assert params.shape_function is ShapeFunctionType.STANDARD
        assert params.consistent_dual is ConsistentDual.BOUNDARY
        assert params.search_algorithm is SearchAlgorithm.BINARY_TREE
        assert not params.is_dual

    @pytest.mark.parametrize("field, value, expected", [
        ('shape_function', 'Dual', ShapeFunctionType.DUAL),
        ('shape_function', 'std', ShapeFunctionType.STANDARD),
        ('search_algorithm', 'BinaryTree', SearchAlgorithm.BINARY_TREE),
        ('search_algorithm', 'BruteForceEleBased', SearchAlgorithm.BRUTE_FORCE),
        ('triangulation', 'Centre', Triangulation.CENTER),
        ('consistent_dual', 'off', ConsistentDual.NONE),
        ('ghosting', 'redundant-all', GhostingStrategy.REDUNDANT_ALL),
    ])
    def test_aliases(self, field, value, expected):
        params = MortarParameters(**{field: value})
        assert getattr(params, field) is expected

    @pytest.mark.parametrize("options", [
        {'dim': 1},
        {'shape_function': 'quadratic'},
        {'search_param': -0.1},
        {'leaf_size': 0},
        {'integration_order': 0},
        {'area_tolerance': -1.0},
        {'semi_smooth_c': 0.0},
        {'imbalance_tol': 0.5},
        {'max_balance': 0.9},
        {'min_elements_per_rank': -1},
    ])
    def test_invalid_options(self, options):
        with pytest.raises(ValueError):
            MortarParameters(**options)

    def test_get_info_is_plain(self):
        info = MortarParameters(shape_function='dual').get_info()
        assert info['shape_function'] == 'dual'
        assert info['dim'] == 3


# =============================================================================
# Interface construction
# =============================================================================

@pytest.mark.unit
class TestInterfaceConstruction:

    def test_duplicate_ids_rejected(self):
        interface = make_line_interface()
        with pytest.raises(ValueError, match="already exists"):
            interface.add_node(0, [0.0, 0.0], 'slave')
        with pytest.raises(ValueError, match="already exists"):
            interface.add_element(0, [0, 1], 'line2', 'slave')

    def test_shape_must_match_dimension(self):
        interface = make_line_interface()
        interface.add_node(10, [0.0, 1.0], 'slave')
        interface.add_node(11, [1.0, 1.0], 'slave')
        interface.add_node(12, [1.0, 2.0], 'slave')
        with pytest.raises(ValueError, match="line2"):
            interface.add_element(10, [10, 11, 12], 'tri3', 'slave')

        surface = CouplingInterface(MortarParameters(dim=3))
        with pytest.raises(ValueError, match="tri3/quad4"):
            surface.add_element(0, [0, 1], 'line2', 'slave')

    def test_bad_element_definition(self):
        interface = CouplingInterface(MortarParameters(dim=3))
        with pytest.raises(ValueError):
            interface.add_element(0, [0, 1, 2], 'quad4', 'slave')
        with pytest.raises(ValueError):
            interface.add_element(1, [0, 1, 1], 'tri3', 'slave')
        with pytest.raises(ValueError):
            interface.add_element(2, [0, 1, 2], 'tri3', 'left')

    def test_side_lists(self, conforming_lines):
        assert conforming_lines.slave_elements == [0]
        assert conforming_lines.master_elements == [1]
        assert conforming_lines.slave_nodes == [0, 1]
        assert conforming_lines.master_nodes == [2, 3]

    def test_nodal_normals_average(self):
        interface = CouplingInterface(MortarParameters(dim=2))
        interface.add_mesh([[0.0, 0.0], [1.0, 0.0], [2.0, 1.0]], [[1, 0], [2, 1]], 'line2',
                           'slave')
        normals = interface.nodal_normals()
        np.testing.assert_allclose(normals[0], [0.0, 1.0, 0.0], atol=1e-14)
        for n in normals.values():
            assert np.linalg.norm(n) == pytest.approx(1.0)
        assert normals[1][0] < 0.0 < normals[1][1]

    def test_nurbs_weights_stored(self):
        interface = CouplingInterface(MortarParameters(dim=2))
        interface.add_mesh([[0.0, 0.0], [1.0, 0.0]], [[0, 1]], 'line2', 'slave',
                           weights=[1.0, 0.5])
        np.testing.assert_allclose(interface.elements[0].weights(interface.nodes), [1.0, 0.5])
        with pytest.raises(ValueError, match="weight must be positive"):
            interface.add_node(5, [0.0, 0.0], 'slave', weight=0.0)

    def test_info_and_repr(self, conforming_lines):
        conforming_lines.evaluate()
        info = conforming_lines.get_info()
        assert info['n_slave_elements'] == 1
        assert info['dofmap_version'] == 0
        assert info['coupling']['coupling_type'] == 'meshtying'
        assert info['diagnostics']['n_segments'] == 1
        assert "coupling=meshtying" in repr(conforming_lines)


# =============================================================================
# Dof maps
# =============================================================================

@pytest.mark.unit
class TestDofMap:

    def test_from_nodes(self):
        dofmap = DofMap.from_nodes([5, 2, 9], 2, offset=10)
        assert dofmap.dofs(5) == (10, 11)
        assert dofmap.dofs(9) == (14, 15)
        assert dofmap.n_dofs == 6
        assert 2 in dofmap and 3 not in dofmap

    def test_component_dofs(self):
        dofmap = DofMap({1: (0, 1, 2), 4: (3, 4, 5)})
        np.testing.assert_array_equal(dofmap.component_dofs([4, 1], 2), [3, 4, 0, 1])
        with pytest.raises(ValueError):
            dofmap.component_dofs([1], 4)

    def test_duplicate_dof_rejected(self):
        with pytest.raises(ValueError):
            DofMap({0: (0, 1), 1: (1, 2)})

    def test_missing_node(self):
        with pytest.raises(KeyError, match="node 7"):
            DofMap({0: (0,)}).dofs(7)

    def test_updated_increments_version(self):
        dofmap = DofMap({0: (0, 1)}, version=3)
        assert dofmap.updated({0: (2, 3)}).version == 4
        assert dofmap.version == 3

    def test_make_dofs_versions(self):
        interface = make_line_interface()
        assert interface.make_dofs().version == 0
        assert interface.make_dofs(dofs_per_node=3).version == 1
        assert interface.dofmap.dofs(1) == (3, 4, 5)


# =============================================================================
# Two quads tied through a non-matching interface
# =============================================================================

LOWER = np.array([[0.0, -1.0], [1.0, -1.0], [1.0, 0.0], [0.0, 0.0]])
UPPER = np.array([[0.1, 0.0], [1.1, 0.0], [1.1, 1.0], [0.1, 1.0]])


def _tied_quads(**options):
    """Lower quad (nodes 0-3) tied to an upper quad (nodes 4-7) shifted by 0.1."""
    K = np.zeros((16, 16))
    K[:8, :8] = quad4_stiffness(LOWER)
    K[8:, 8:] = quad4_stiffness(UPPER)

    interface = CouplingInterface(MortarParameters(dim=2, **options), name='tied quads')
    for gid, x in ((2, LOWER[2]), (3, LOWER[3])):
        interface.add_node(gid, x, 'slave')
    for gid, x in ((4, UPPER[0]), (5, UPPER[1])):
        interface.add_node(gid, x, 'master')
    interface.add_element(0, [2, 3], 'line2', 'slave')
    interface.add_element(1, [4, 5], 'line2', 'master')
    interface.set_dofmap(DofMap({2: (4, 5), 3: (6, 7), 4: (8, 9), 5: (10, 11)}))

    f = np.zeros(16)
    f[[13, 15]] = -1.0
    return interface, K, f


@pytest.mark.integration
class TestTiedQuads:

    @pytest.mark.parametrize("shape_function", ['standard', 'dual'])
    def test_interface_forces_balance(self, shape_function):
        interface, K, f = _tied_quads(shape_function=shape_function)
        interface.evaluate()
        result = StaticCondensed.solve(interface, K, f, fixed_dofs=[0, 1, 2, 3])

        slave = result.slave_force.reshape(-1, 2).sum(axis=0)
        master = result.master_force.reshape(-1, 2).sum(axis=0)
        np.testing.assert_allclose(slave, master, atol=1e-10)
        assert interface.engine.verify_constraints(result.displacement) < 1e-12

    def test_reactions_balance_load(self):
        interface, K, f = _tied_quads()
        interface.evaluate()
        result = StaticCondensed.solve(interface, K, f, fixed_dofs=[0, 1, 2, 3])
        reaction = K @ result.displacement
        assert reaction[[1, 3]].sum() == pytest.approx(2.0)
        assert reaction[[0, 2]].sum() == pytest.approx(0.0, abs=1e-10)
        np.testing.assert_allclose(result.displacement[:4], 0.0)
        assert np.all(result.displacement[[13, 15]] < 0.0)

    def test_dense_and_sparse_paths_agree(self):
        interface, K, f = _tied_quads()
        interface.evaluate()
        sparse = StaticCondensed.solve(interface, K, f, fixed_dofs=[0, 1, 2, 3])
        dense = StaticCondensed.solve(interface, K, f, fixed_dofs=[0, 1, 2, 3],
                                      optimized=False)
        np.testing.assert_allclose(dense.displacement, sparse.displacement, atol=1e-12)
        np.testing.assert_allclose(dense.multipliers, sparse.multipliers, atol=1e-9)

    def test_prescribed_displacement(self):
        interface, K, f = _tied_quads()
        interface.evaluate()
        result = StaticCondensed.solve(interface, K, np.zeros(16), fixed_dofs=[0, 1, 2, 3],
                                       prescribed=[0.0, -0.01, 0.0, -0.01])
        # Rigid translation of both blocks
        np.testing.assert_allclose(result.displacement[1::2], -0.01, atol=1e-10)
        np.testing.assert_allclose(result.multipliers, 0.0, atol=1e-8)

    def test_parallel_evaluation_gives_same_solution(self):
        interface, K, f = _tied_quads()
        interface.evaluate()
        serial = StaticCondensed.solve(interface, K, f, fixed_dofs=[0, 1, 2, 3])

        other, K, f = _tied_quads(ghosting='proximity')
        other.evaluate(Partition(2, {0: 1, 1: 0}))
        parallel = StaticCondensed.solve(other, K, f, fixed_dofs=[0, 1, 2, 3])
        np.testing.assert_allclose(parallel.displacement, serial.displacement, atol=1e-12)

    def test_fixing_dependent_dof_rejected(self):
        interface, K, f = _tied_quads()
        interface.evaluate()
        with pytest.raises(ValueError, match="eliminated"):
            StaticCondensed.solve(interface, K, f, fixed_dofs=[4])

    def test_prescribed_length_mismatch(self):
        interface, K, f = _tied_quads()
        interface.evaluate()
        with pytest.raises(ValueError, match="differ in length"):
            StaticCondensed.solve(interface, K, f, fixed_dofs=[0, 1], prescribed=[0.0])

    @pytest.mark.parametrize("optimized", [True, False])
    def test_singular_system_raises(self, optimized):
        interface, _, f = _tied_quads()
        interface.evaluate()
        with pytest.raises(SingularSystemError):
            StaticCondensed.solve(interface, np.zeros((16, 16)), f, optimized=optimized)

    def test_moving_master_rebuilds_operator(self):
        interface, K, f = _tied_quads()
        first = interface.evaluate()
        interface.update_positions(displacements={4: [-0.1, 0.0], 5: [-0.1, 0.0]})
        second = interface.evaluate()
        assert second.geometry_version == first.geometry_version + 1
        assert second.M_nodal.sum() > first.M_nodal.sum()


# =============================================================================
# Output
# =============================================================================

@pytest.mark.integration
class TestOutput:

    def test_plot_polygons(self, nonmatching_patch):
        nonmatching_patch.evaluate()
        fig = Visualizer.plot_polygons(nonmatching_patch, style=PlotStyle.scientific())
        assert isinstance(fig, plt.Figure)
        plt.close(fig)

    def test_plot_line_polygons(self, conforming_lines, tmp_path):
        conforming_lines.evaluate()
        path = str(tmp_path / "lines.png")
        fig = Visualizer.plot_polygons(conforming_lines, show_cells=False, save_path=path)
        assert os.path.exists(path)
        plt.close(fig)

    def test_plot_distribution(self, nonmatching_patch):
        with pytest.raises(ValueError):
            Visualizer.plot_distribution(nonmatching_patch)
        nonmatching_patch.evaluate(Partition.block(nonmatching_patch, 2))
        fig = Visualizer.plot_distribution(nonmatching_patch)
        assert isinstance(fig, plt.Figure)
        plt.close(fig)

    def test_export_polygons_vtk(self, nonmatching_patch, tmp_path):
        nonmatching_patch.evaluate()
        path = Visualizer.export_polygons_vtk(nonmatching_patch.polygons, "cells.vtk",
                                              dir_name=str(tmp_path))
        assert os.path.exists(path)
        mesh = meshio.read(path)
        n_cells = sum(len(p.cells()) for p in nonmatching_patch.polygons)
        assert sum(len(block.data) for block in mesh.cells) == n_cells
        assert 'slave_id' in mesh.cell_data
