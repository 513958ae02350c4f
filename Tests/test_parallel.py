"""
Tests for the simulated parallel distribution.

Tests cover:
- Block partitions, node ownership and rank views
- Ghosting strategies and local completeness checks
- Collectives (gid offsets, role gathering, report)
- Recursive coordinate bisection and the redistributor
- Independence of the assembled operator from the rank count
"""
import numpy as np
import pytest

from MortarCore.Objects.Exceptions import InconsistentPartitionError
from MortarCore.Objects.Interface.Element import PhysicsType
from MortarCore.Objects.Parameters import ParallelRedistribution
from MortarCore.Parallel.Partition import (Partition, compute_gid_offset, distribution_report,
                                           gather_roles)
from MortarCore.Parallel.Redistribution import Redistributor, recursive_coordinate_bisection
from conftest import make_line_interface, make_quad_interface


def _shifted_patch(**options):
    return make_quad_interface(slave=(3, 3), master=(4, 4), master_origin=(0.05, 0.02),
                               **options)


# =============================================================================
# Partition
# =============================================================================

@pytest.mark.unit
@pytest.mark.parallel
class TestPartition:

    def test_block_partition_splits_each_side(self):
        interface = _shifted_patch()
        partition = Partition.block(interface, 2)
        slave_owners = [partition.element_owner[g] for g in interface.slave_elements]
        master_owners = [partition.element_owner[g] for g in interface.master_elements]
        assert slave_owners == [0] * 5 + [1] * 4
        assert master_owners == [0] * 8 + [1] * 8
        assert partition.get_info()['elements_per_rank'] == [13, 12]

    def test_invalid_ranks(self):
        with pytest.raises(ValueError):
            Partition(0, {})
        with pytest.raises(ValueError, match="out of range"):
            Partition(2, {0: 2})

    def test_node_owner_is_lowest_rank(self):
        interface = make_line_interface(slave=(0.0, 2.0, 2))
        partition = Partition(2, {0: 1, 1: 0, 2: 0})
        owners = partition.node_owners(interface)
        # Node 1 is shared by slave elements 0 (rank 1) and 1 (rank 0)
        assert owners[0] == 1
        assert owners[1] == 0
        assert owners[2] == 0

    def test_apply_writes_owners(self):
        interface = make_line_interface(slave=(0.0, 2.0, 2))
        Partition(2, {0: 1, 1: 0, 2: 1}).apply(interface)
        assert interface.elements[0].owner == 1
        assert interface.nodes[0].owner == 1
        assert interface.nodes[1].owner == 0

    def test_owned_elements(self):
        partition = Partition(3, {5: 2, 6: 0, 7: 2})
        assert partition.owned_elements(2) == [5, 7]
        assert partition.owned_elements(2, [7, 6]) == [7]


# =============================================================================
# Rank views and ghosting
# =============================================================================

@pytest.mark.unit
@pytest.mark.parallel
class TestRankViews:

    def test_redundant_master_holds_every_master(self):
        interface = _shifted_patch()
        views = Partition.block(interface, 3).build_views(interface, 'redundant_master')
        assert len(views) == 3
        for view in views:
            assert view.master_elements == interface.master_elements
            assert view.ghost_slave_elements == []
            view.check_consistency(interface)
        owned = sorted(g for v in views for g in v.slave_elements)
        assert owned == interface.slave_elements

    def test_redundant_all_ghosts_slaves(self):
        interface = _shifted_patch()
        views = Partition.block(interface, 2).build_views(interface, 'redundant_all')
        for view in views:
            held = sorted(view.slave_elements + view.ghost_slave_elements)
            assert held == interface.slave_elements

    def test_proximity_ghosting_is_local(self):
        interface = make_quad_interface(slave=(4, 1), master=(4, 1))
        views = Partition.block(interface, 2).build_views(interface, 'proximity', 0.0)
        for view in views:
            assert 0 < view.n_held_masters < len(interface.master_elements)
            view.check_consistency(interface)

    def test_owned_nodes_partition_column_nodes(self):
        interface = _shifted_patch()
        views = Partition.block(interface, 4).build_views(interface)
        owned = [n for v in views for n in v.owned_nodes]
        assert len(owned) == len(set(owned)) == len(interface.nodes)
        for view in views:
            assert view.owned_nodes <= view.nodes

    def test_missing_node_detected(self):
        interface = make_line_interface()
        interface.add_element(10, [1, 99], 'line2', 'slave')
        with pytest.raises(InconsistentPartitionError, match="missing node"):
            interface.evaluate()

    def test_unknown_element_detected(self):
        interface = make_line_interface()
        view = Partition.single(interface).build_views(interface)[0]
        view.slave_elements.append(42)
        with pytest.raises(InconsistentPartitionError, match="not known"):
            view.check_consistency(interface)


# =============================================================================
# Collectives
# =============================================================================

@pytest.mark.unit
@pytest.mark.parallel
class TestCollectives:

    def test_gid_offset(self):
        assert compute_gid_offset([3, 7, -1]) == 8
        assert compute_gid_offset([-1, -1]) == 0
        assert compute_gid_offset([]) == 0

    def test_add_mesh_uses_offsets(self):
        interface = make_line_interface()
        node_ids, element_ids = interface.add_mesh([[2.0, 0.0], [3.0, 0.0]], [[0, 1]],
                                                   'line2', 'master')
        assert node_ids == [4, 5]
        assert element_ids == [2]

        node_ids, _ = interface.add_mesh([[4.0, 0.0], [5.0, 0.0]], [[0, 1]], 'line2',
                                         'master', node_offset=100, element_offset=100)
        assert node_ids == [100, 101]

    def test_gather_roles(self):
        interface = make_line_interface(slave=(0.0, 2.0, 2))
        interface.elements[1].phys_type = PhysicsType.PORO
        views = Partition(2, {0: 0, 1: 1, 2: 0}).build_views(interface)
        assert views[0].roles['slave'] == {PhysicsType.STRUCTURE}
        assert views[1].roles['slave'] == {PhysicsType.PORO}
        roles = gather_roles(views)
        assert roles['slave'] == {PhysicsType.STRUCTURE, PhysicsType.PORO}
        assert roles['master'] == {PhysicsType.STRUCTURE}

    def test_distribution_report(self):
        interface = _shifted_patch()
        partition = Partition.block(interface, 2)
        report = distribution_report(partition, partition.build_views(interface), 'patch')
        lines = report.splitlines()
        assert lines[0] == "Parallel distribution of patch (2 rank(s))"
        assert "ghost slaves" in lines[1]
        assert lines[-1].startswith("slave element imbalance (max/avg): 1.111")

    def test_print_distribution(self, capsys):
        interface = _shifted_patch(print_distribution=True)
        interface.evaluate(Partition.block(interface, 2))
        assert "Parallel distribution of interface" in capsys.readouterr().out


# =============================================================================
# Redistribution
# =============================================================================

@pytest.mark.unit
@pytest.mark.parallel
class TestRedistribution:

    def test_rcb_splits_evenly(self):
        centroids = {g: np.array([float(g), 0.0, 0.0]) for g in range(8)}
        parts = recursive_coordinate_bisection(centroids, 2)
        assert [parts[g] for g in range(8)] == [0] * 4 + [1] * 4

    def test_rcb_uses_longest_axis(self):
        centroids = {g: np.array([g % 2 * 0.1, float(g // 2), 0.0]) for g in range(8)}
        parts = recursive_coordinate_bisection(centroids, 2)
        low = {g for g, p in parts.items() if p == 0}
        assert low == {0, 1, 2, 3}

    def test_rcb_respects_weights(self):
        centroids = {g: np.array([float(g), 0.0, 0.0]) for g in range(4)}
        parts = recursive_coordinate_bisection(centroids, 2, weights={0: 3.0})
        assert parts[0] == 0
        assert all(parts[g] == 1 for g in (1, 2, 3))

    def test_rcb_four_parts_in_2d(self):
        centroids = {g: np.array([g % 4, g // 4]) for g in range(16)}
        parts = recursive_coordinate_bisection(centroids, 4, dim=2)
        counts = np.bincount(list(parts.values()))
        assert counts.tolist() == [4, 4, 4, 4]

    def test_rcb_empty(self):
        assert recursive_coordinate_bisection({}, 3) == {}

    def test_rcb_tolerance_selects_balanced_axis(self):
        centroids = {0: np.array([0.0, 0.5]), 1: np.array([1.0, 0.0]),
                     2: np.array([2.0, 1.0]), 3: np.array([3.0, 0.9])}
        weights = {1: 3.0}
        longest = recursive_coordinate_bisection(centroids, 2, weights, dim=2)
        assert longest == {0: 0, 1: 0, 2: 1, 3: 1}

        balanced = recursive_coordinate_bisection(centroids, 2, weights, dim=2,
                                                  imbalance_tol=1.1)
        assert balanced == {0: 1, 1: 0, 2: 1, 3: 1}

    def test_load_ratio(self):
        assert Redistributor.load_ratio([]) == 1.0
        assert Redistributor.load_ratio([0.0, 0.0]) == 1.0
        assert Redistributor.load_ratio([2.0, 0.0]) == np.inf
        assert Redistributor.load_ratio([4.0, 2.0]) == 2.0

    def test_needs_redistribution(self):
        assert not Redistributor('none').needs_redistribution()

        static = Redistributor('static')
        assert static.needs_redistribution()
        static.n_redistributions = 1
        assert not static.needs_redistribution([10.0, 1.0])

        dynamic = Redistributor('dynamic', max_balance=2.0)
        dynamic.n_redistributions = 1
        assert dynamic.needs_redistribution([10.0, 1.0])
        assert not dynamic.needs_redistribution([3.0, 2.0])

    def test_imbalance_tol_controls_dynamic_trigger(self):
        assert Redistributor.imbalance([3.0, 1.0]) == 1.5
        assert Redistributor.imbalance([]) == 1.0

        loose = Redistributor('dynamic', imbalance_tol=2.0)
        strict = Redistributor('dynamic', imbalance_tol=1.1)
        loose.n_redistributions = strict.n_redistributions = 1
        assert not loose.needs_redistribution([3.0, 1.0])
        assert strict.needs_redistribution([3.0, 1.0])

    def test_redistribute_balances_slaves(self):
        interface = _shifted_patch()
        skewed = Partition(2, {g: 0 for g in interface.elements})
        redistributor = Redistributor('static')
        balanced = redistributor.redistribute(interface, skewed)
        counts = np.bincount([balanced.element_owner[g] for g in interface.slave_elements])
        assert sorted(counts.tolist()) == [4, 5]
        assert redistributor.n_redistributions == 1
        assert redistributor.last_imbalance == pytest.approx(10.0 / 9.0)

    def test_load_from_other_rank_count_is_ignored(self):
        interface = _shifted_patch()
        redistributor = Redistributor('static')
        partition = redistributor.redistribute(interface, Partition.block(interface, 4),
                                               load=[5.0, 1.0])
        counts = np.bincount([partition.element_owner[g] for g in interface.slave_elements])
        assert sorted(counts.tolist()) == [2, 2, 2, 3]

    def test_dynamic_redistribution_to_more_ranks(self):
        interface = _shifted_patch(parallel_redist='dynamic')
        interface.evaluate(Partition.block(interface, 2))
        interface.rank_load = np.array([10.0, 1.0])

        op = interface.evaluate(Partition.block(interface, 4))
        assert interface.partition.n_ranks == 4
        assert interface.redistributor.n_redistributions == 2
        assert len(interface.rank_load) == 4
        reference = _shifted_patch().evaluate()
        np.testing.assert_allclose(op.D_nodal.toarray(), reference.D_nodal.toarray(),
                                   atol=1e-12)

    def test_min_elements_per_rank(self):
        interface = _shifted_patch()
        redistributor = Redistributor('static', min_elements_per_rank=4)
        partition = redistributor.redistribute(interface, Partition.block(interface, 4))
        assert partition.n_ranks == 4
        assert {partition.element_owner[g] for g in interface.slave_elements} == {0, 1}

    def test_evaluate_redistributes_once(self):
        interface = _shifted_patch(parallel_redist='static')
        interface.evaluate(Partition(2, {g: 0 for g in interface.elements}))
        assert interface.redistributor.n_redistributions == 1
        assert len(interface.views[1].slave_elements) > 0

        interface.evaluate()
        assert interface.redistributor.n_redistributions == 1

    def test_parameters_build_redistributor(self):
        interface = _shifted_patch(parallel_redist='dynamic', max_balance=1.5)
        assert interface.redistributor.strategy is ParallelRedistribution.DYNAMIC
        assert interface.redistributor.max_balance == 1.5


# =============================================================================
# Rank count independence
# =============================================================================

@pytest.mark.integration
@pytest.mark.parallel
class TestRankInvariance:

    @pytest.fixture(scope='class')
    def serial(self):
        return _shifted_patch().evaluate()

    @pytest.mark.parametrize("n_ranks", [1, 2, 4])
    @pytest.mark.parametrize("options", [
        {'ghosting': 'redundant_master'},
        {'ghosting': 'proximity'},
        {'ghosting': 'redundant_all'},
        {'parallel_redist': 'static'},
        {'shape_function': 'dual', 'ghosting': 'proximity'},
    ])
    def test_operator_independent_of_ranks(self, serial, n_ranks, options):
        interface = _shifted_patch(**options)
        reference = serial if options.get('shape_function') != 'dual' \
            else _shifted_patch(shape_function='dual').evaluate()
        op = interface.evaluate(Partition.block(interface, n_ranks))
        np.testing.assert_allclose(op.D_nodal.toarray(), reference.D_nodal.toarray(),
                                   atol=1e-12)
        np.testing.assert_allclose(op.M_nodal.toarray(), reference.M_nodal.toarray(),
                                   atol=1e-12)
        assert op.n_segments == reference.n_segments

    def test_row_owner_follows_partition(self):
        interface = _shifted_patch()
        op = interface.evaluate(Partition.block(interface, 2))
        assert set(op.row_owner.tolist()) == {0, 1}
        assert len(interface.rank_load) == 2
