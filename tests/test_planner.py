"""Tests for access paths, partition pruning, join enumeration and sorts of the cost estimator."""
import datetime
import math
import unittest

from planadvisor import (
    AdvisorSettings,
    BottleneckKind,
    CostEstimator,
    FilterClause,
    Index,
    IntermediateOperator,
    JoinClause,
    JoinOperator,
    JoinOrderWarning,
    PruningFailure,
    QueryDescriptor,
    ScanOperator,
    SortKey,
    build_query,
    load_catalog,
    presets,
)

from tests import catalogs, regression_suite


def _plan(snapshot, descriptor: QueryDescriptor, settings: AdvisorSettings = None):
    return CostEstimator(snapshot, settings).estimate(build_query(descriptor, snapshot))


def _date(text: str) -> datetime.date:
    return datetime.date.fromisoformat(text)


class AccessPathTests(unittest.TestCase):
    def test_sequential_scan_without_filters(self) -> None:
        plan = _plan(catalogs.scenario_catalog(), QueryDescriptor(tables=["Users"]))
        scan = plan.scan_of("Users")
        self.assertEqual(scan.operator, ScanOperator.SequentialScan)
        self.assertEqual(scan.estimated_cost, 10_000)
        self.assertEqual(plan.bottlenecks, ())

    def test_index_scan(self) -> None:
        snapshot = catalogs.scenario_catalog(booking_indexes=[Index(("user_id",))])
        plan = _plan(snapshot, QueryDescriptor(filters=[FilterClause.of("Bookings.user_id", "=", "u1")]))
        scan = plan.scan_of("Bookings")
        self.assertEqual(scan.operator, ScanOperator.IndexScan)
        self.assertEqual(scan.index.columns, ("user_id",))
        self.assertAlmostEqual(scan.estimated_cost, 100_000 / 5_000 + 2)
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.UnindexedFilter)

    def test_index_only_scan(self) -> None:
        snapshot = catalogs.scenario_catalog()
        filters = [FilterClause.of("Users.email", "=", "someone@example.com")]

        covered = _plan(snapshot, QueryDescriptor(filters=filters, projection=["Users.email"]))
        self.assertEqual(covered.scan_of("Users").operator, ScanOperator.IndexOnlyScan)
        self.assertAlmostEqual(covered.total_cost, 3.0)

        uncovered = _plan(snapshot, QueryDescriptor(filters=filters))
        self.assertEqual(uncovered.scan_of("Users").operator, ScanOperator.IndexScan)

    def test_tie_favors_index(self) -> None:
        # 4 rows * 5/10 + overhead 2 equals the sequential scan
        snapshot = catalogs.composite_catalog(("c",), row_count=4)
        plan = _plan(snapshot, QueryDescriptor(filters=[FilterClause.of("T.c", "IN", 1, 2, 3, 4, 5)]))
        scan = plan.scan_of("T")
        self.assertEqual(scan.operator, ScanOperator.IndexScan)
        self.assertAlmostEqual(scan.estimated_cost, 4.0)

    def test_index_not_worth_it(self) -> None:
        snapshot = catalogs.composite_catalog(("c",), row_count=2)
        plan = _plan(snapshot, QueryDescriptor(filters=[FilterClause.of("T.c", "=", 1)]))
        self.assertEqual(plan.scan_of("T").operator, ScanOperator.SequentialScan)
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.UnindexedFilter)

    def test_unindexed_filter(self) -> None:
        snapshot = catalogs.scenario_catalog(partitioned=False)
        plan = _plan(snapshot, QueryDescriptor(filters=[FilterClause.of("Bookings.status", "=", "cancelled")]))
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.UnindexedFilter, "Bookings", "status")
        self.assertAlmostEqual(bottleneck.severity, 100_000 - 100_000 / 3)

    def test_second_index_column_is_a_miss(self) -> None:
        snapshot = catalogs.composite_catalog(("a", "b"))
        plan = _plan(snapshot, QueryDescriptor(filters=[FilterClause.of("T.b", "=", 1)]))
        self.assertEqual(plan.scan_of("T").operator, ScanOperator.SequentialScan)
        regression_suite.assert_has_bottleneck(plan, BottleneckKind.UnindexedFilter, "T", "b")

    def test_adding_an_index_never_increases_cost(self) -> None:
        descriptor = QueryDescriptor(filters=[FilterClause.of("T.a", "=", 1), FilterClause.of("T.b", ">", 10)])
        without_index = _plan(catalogs.composite_catalog(), descriptor)
        for index in [("a",), ("b",), ("a", "b"), ("b", "a"), ("c",)]:
            with_index = _plan(catalogs.composite_catalog(index), descriptor)
            regression_suite.assert_less_equal(with_index.total_cost, without_index.total_cost,
                                               f"Index {index} increased the plan cost")

    def test_plans_are_deterministic(self) -> None:
        snapshot = catalogs.chain_catalog()
        descriptor = QueryDescriptor(joins=[JoinClause.of("A.x", "B.x"), JoinClause.of("B.y", "C.y")])
        self.assertEqual(_plan(snapshot, descriptor), _plan(snapshot, descriptor))


class PartitionPruningTests(unittest.TestCase):
    def setUp(self) -> None:
        self.snapshot = catalogs.scenario_catalog()

    def _bookings_plan(self, *filters: FilterClause):
        return _plan(self.snapshot, QueryDescriptor(filters=list(filters)))

    def test_pruned_range(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", "BETWEEN", "2025-03-01", "2025-03-31"))
        scan = plan.scan_of("Bookings")
        self.assertEqual(scan.partitions, ("bookings_2025",))
        self.assertAlmostEqual(scan.estimated_cost, 100_000 / 3)
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.MissedPartitionPruning)

    def test_pruned_literal(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", "=", "2025-06-15"))
        self.assertEqual(plan.scan_of("Bookings").partitions, ("bookings_2025",))
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.MissedPartitionPruning)

    def test_no_key_predicate(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.status", "=", "confirmed"))
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.MissedPartitionPruning, "Bookings")
        self.assertEqual(bottleneck.reason, PruningFailure.NoKeyPredicate)
        self.assertEqual(bottleneck.columns, ("start_date",))
        self.assertAlmostEqual(bottleneck.severity, 100_000 - 100_000 / 3)

    def test_unbounded_range(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", ">=", "2025-01-01"))
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.MissedPartitionPruning, "Bookings")
        self.assertEqual(bottleneck.reason, PruningFailure.Unbounded)
        self.assertEqual(bottleneck.bounds, (_date("2025-01-01"), None))

    def test_range_over_all_partitions(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", "BETWEEN", "2024-02-01", "2026-05-01"))
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.MissedPartitionPruning, "Bookings")
        self.assertEqual(bottleneck.reason, PruningFailure.AllPartitions)
        self.assertEqual(plan.scan_of("Bookings").partitions, ())

    def test_range_outside_partitions(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", "BETWEEN", "2023-06-01", "2024-03-01"))
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.MissedPartitionPruning, "Bookings")
        self.assertEqual(bottleneck.reason, PruningFailure.Uncovered)
        self.assertEqual(bottleneck.uncovered, ((_date("2023-06-01"), _date("2024-01-01")),))
        self.assertAlmostEqual(bottleneck.severity, 100_000 - 100_000 / 3)

    def test_literal_outside_partitions(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", "=", "2030-01-01"))
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.MissedPartitionPruning, "Bookings")
        self.assertEqual(bottleneck.reason, PruningFailure.Uncovered)
        self.assertEqual(bottleneck.uncovered, ((_date("2030-01-01"), _date("2030-01-01")),))
        self.assertAlmostEqual(bottleneck.severity, 100_000)

    def test_half_open_range(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", ">=", "2025-01-01"),
                                   FilterClause.of("Bookings.start_date", "<", "2026-01-01"))
        scan = plan.scan_of("Bookings")
        self.assertEqual(scan.partitions, ("bookings_2025",))
        self.assertAlmostEqual(scan.estimated_cost, 100_000 / 3)
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.MissedPartitionPruning)

    def test_half_open_range_up_to_last_boundary(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", ">=", "2026-01-01"),
                                   FilterClause.of("Bookings.start_date", "<", "2027-01-01"))
        self.assertEqual(plan.scan_of("Bookings").partitions, ("bookings_2026",))
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.MissedPartitionPruning)

    def test_inclusive_upper_bound_on_boundary(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", ">=", "2026-01-01"),
                                   FilterClause.of("Bookings.start_date", "<=", "2027-01-01"))
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.MissedPartitionPruning, "Bookings")
        self.assertEqual(bottleneck.reason, PruningFailure.Uncovered)
        self.assertEqual(bottleneck.uncovered, ((_date("2027-01-01"), _date("2027-01-01")),))

    def test_empty_half_open_range(self) -> None:
        plan = self._bookings_plan(FilterClause.of("Bookings.start_date", ">=", "2025-01-01"),
                                   FilterClause.of("Bookings.start_date", "<", "2025-01-01"))
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.MissedPartitionPruning, "Bookings")
        self.assertEqual(bottleneck.reason, PruningFailure.Unbounded)

    def test_mixed_literals_on_text_key(self) -> None:
        descriptor = QueryDescriptor(filters=[FilterClause.of("Regions.code", "IN", "b", 5)])
        plan = _plan(catalogs.region_catalog(), descriptor)
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.MissedPartitionPruning, "Regions")
        self.assertEqual(bottleneck.reason, PruningFailure.Uncovered)
        self.assertEqual(bottleneck.bounds, ("5", "b"))
        self.assertEqual(bottleneck.uncovered, (("5", "5"),))

    def test_unfiltered_table_is_not_flagged(self) -> None:
        plan = _plan(self.snapshot, QueryDescriptor(tables=["Bookings"]))
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.MissedPartitionPruning)


class JoinTests(unittest.TestCase):
    def test_hash_join_with_unindexed_inner(self) -> None:
        plan = _plan(catalogs.pair_catalog(), QueryDescriptor(joins=[JoinClause.of("R.x", "S.x")]))
        join, = plan.joins()
        self.assertEqual(join.operator, JoinOperator.HashJoin)
        self.assertEqual(join.driving, ("R",))
        self.assertAlmostEqual(join.estimated_cost, 6_000)
        self.assertAlmostEqual(join.estimated_rows, 1_000 * 5_000 / 100)
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.UnindexedJoin, "S", "x")
        self.assertAlmostEqual(bottleneck.severity, 6_000 - 1_000 * 2)

    def test_nested_loop_without_memory(self) -> None:
        settings = AdvisorSettings(hash_join_memory_rows=2_000)
        plan = _plan(catalogs.pair_catalog(), QueryDescriptor(joins=[JoinClause.of("R.x", "S.x")]), settings)
        join, = plan.joins()
        self.assertEqual(join.operator, JoinOperator.NestedLoopJoin)
        self.assertAlmostEqual(join.estimated_cost, 1_000 * 5_000)
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.UnindexedJoin, "S", "x")
        self.assertAlmostEqual(bottleneck.severity, 5_000_000 - 2_000)

    def test_index_nested_loop_join(self) -> None:
        snapshot = catalogs.pair_catalog(s_indexes=[Index(("x",))])
        plan = _plan(snapshot, QueryDescriptor(joins=[JoinClause.of("R.x", "S.x")]))
        join, = plan.joins()
        self.assertEqual(join.operator, JoinOperator.IndexNestedLoopJoin)
        self.assertEqual(join.inner, ("S",))
        self.assertIsNone(plan.scan_of("S"))
        self.assertAlmostEqual(plan.total_cost, 1_000 + 1_000 * 2)
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.UnindexedJoin)

    def test_greedy_joins_smallest_pair_first(self) -> None:
        descriptor = QueryDescriptor(joins=[JoinClause.of("A.x", "B.x"), JoinClause.of("B.y", "C.y")])
        plan = _plan(catalogs.chain_catalog(), descriptor)
        self.assertEqual(plan.join_strategy, "greedy")
        self.assertEqual(plan.joins()[0].tables, ("B", "C"))
        self.assertEqual(len(plan.joins()), 2)

    def test_exhaustive_is_never_worse(self) -> None:
        snapshot = catalogs.chain_catalog()
        descriptor = QueryDescriptor(joins=[JoinClause.of("A.x", "B.x"), JoinClause.of("B.y", "C.y")])
        greedy = _plan(snapshot, descriptor)
        exhaustive = _plan(snapshot, descriptor, AdvisorSettings(join_strategy="exhaustive"))
        self.assertEqual(exhaustive.join_strategy, "exhaustive")
        regression_suite.assert_less_equal(exhaustive.total_cost, greedy.total_cost)

    def test_exhaustive_falls_back_for_large_queries(self) -> None:
        descriptor = QueryDescriptor(joins=[JoinClause.of("A.x", "B.x"), JoinClause.of("B.y", "C.y")])
        settings = AdvisorSettings(join_strategy="exhaustive", exhaustive_table_limit=2)
        self.assertEqual(_plan(catalogs.chain_catalog(), descriptor, settings).join_strategy, "greedy")

    def test_exhausted_budget_uses_query_order(self) -> None:
        descriptor = QueryDescriptor(joins=[JoinClause.of("A.x", "B.x"), JoinClause.of("B.y", "C.y")])
        with self.assertWarns(JoinOrderWarning):
            plan = _plan(catalogs.chain_catalog(), descriptor, AdvisorSettings(join_step_budget=0))
        self.assertEqual(plan.join_strategy, "query-order")
        self.assertEqual(set(plan.joins()[0].tables), {"A", "B"})

    def test_indexed_table_driving_intermediate_result(self) -> None:
        descriptor = QueryDescriptor(joins=[JoinClause.of("Bookings.user_id", "Users.user_id"),
                                            JoinClause.of("Bookings.booking_id", "Payments.booking_id")])
        plan = _plan(presets.fetch("booking"), descriptor)

        first_join, second_join = plan.joins()
        self.assertEqual(first_join.operator, JoinOperator.IndexNestedLoopJoin)
        self.assertEqual(first_join.driving, ("Payments",))
        self.assertEqual(second_join.operator, JoinOperator.HashJoin)
        self.assertEqual(second_join.driving, ("Users",))

        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.UnindexedJoin, "Bookings", "user_id")
        self.assertAlmostEqual(bottleneck.severity, 300_000 - 50_000 * 2)
        self.assertIsNone(regression_suite.find_bottleneck(plan, BottleneckKind.UnindexedJoin, "Users"))

    def test_join_on_indexed_columns_is_not_flagged(self) -> None:
        description = presets.describe("booking")
        bookings = next(table for table in description["tables"] if table["name"] == "Bookings")
        bookings["indexes"].append({"name": "bookings_user_id_idx", "columns": ["user_id"]})
        descriptor = QueryDescriptor(joins=[JoinClause.of("Bookings.user_id", "Users.user_id"),
                                            JoinClause.of("Bookings.booking_id", "Payments.booking_id")])
        plan = _plan(load_catalog(description), descriptor)
        self.assertEqual(plan.joins()[-1].operator, JoinOperator.HashJoin)
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.UnindexedJoin)

    def test_cross_product(self) -> None:
        descriptor = QueryDescriptor(tables=["C"], joins=[JoinClause.of("A.x", "B.x")])
        with self.assertWarns(JoinOrderWarning):
            plan = _plan(catalogs.chain_catalog(), descriptor)
        self.assertEqual(set(plan.joins()[0].tables), {"A", "B"})
        cross_product = plan.joins()[-1]
        self.assertEqual(cross_product.join_edges, ())
        self.assertEqual(cross_product.operator, JoinOperator.NestedLoopJoin)
        self.assertEqual(set(plan.join_order()), {"A", "B", "C"})


class SortTests(unittest.TestCase):
    def test_large_sort(self) -> None:
        snapshot = catalogs.scenario_catalog(booking_rows=1_000_000)
        plan = _plan(snapshot, QueryDescriptor(order_by=[SortKey.of("Bookings.total_price", False)]))
        sort, = plan.sorts()
        self.assertEqual(sort.operator, IntermediateOperator.Sort)
        self.assertAlmostEqual(sort.estimated_cost, 1_000_000 * math.log2(1_000_000))
        bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.LargeSort, "Bookings", "total_price")
        self.assertEqual(bottleneck.ascending, (False,))
        self.assertAlmostEqual(bottleneck.severity, 1_000_000)

    def test_small_sort_is_not_flagged(self) -> None:
        plan = _plan(catalogs.scenario_catalog(), QueryDescriptor(order_by=[SortKey.of("Users.country")]))
        self.assertEqual(len(plan.sorts()), 1)
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.LargeSort)

    def test_ordering_from_index(self) -> None:
        snapshot = catalogs.scenario_catalog(booking_indexes=[Index(("start_date",))])
        descriptor = QueryDescriptor(filters=[FilterClause.of("Bookings.start_date", "BETWEEN",
                                                              "2025-03-01", "2025-03-31")],
                                     order_by=[SortKey.of("Bookings.start_date", False)])
        plan = _plan(snapshot, descriptor)
        self.assertEqual(plan.scan_of("Bookings").operator, ScanOperator.IndexScan)
        self.assertEqual(plan.sorts(), ())

    def test_ordering_from_primary_key(self) -> None:
        snapshot = catalogs.scenario_catalog(booking_rows=1_000_000)
        for ascending in (True, False):
            plan = _plan(snapshot, QueryDescriptor(order_by=[SortKey.of("Bookings.booking_id", ascending)]))
            scan = plan.scan_of("Bookings")
            self.assertEqual(scan.operator, ScanOperator.IndexScan)
            self.assertEqual(scan.index.columns, ("booking_id",))
            self.assertEqual(plan.sorts(), ())
            self.assertAlmostEqual(plan.total_cost, 1_000_000 + 2)
            regression_suite.assert_no_bottleneck(plan, BottleneckKind.LargeSort)

    def test_ordered_index_not_used_by_join_order(self) -> None:
        descriptor = QueryDescriptor(joins=[JoinClause.of("Bookings.user_id", "Users.user_id")],
                                     order_by=[SortKey.of("Bookings.booking_id")])
        plan = _plan(catalogs.scenario_catalog(booking_rows=1_000_000), descriptor)
        self.assertEqual(len(plan.sorts()), 1)
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.LargeSort)

    def test_grouping_requires_sort(self) -> None:
        snapshot = catalogs.scenario_catalog(booking_rows=1_000_000)
        plan = _plan(snapshot, QueryDescriptor(group_by=["Bookings.status"]))
        self.assertEqual(len(plan.sorts()), 1)
        regression_suite.assert_has_bottleneck(plan, BottleneckKind.LargeSort, "Bookings", "status")

    def test_grouping_from_index(self) -> None:
        snapshot = catalogs.scenario_catalog(booking_rows=1_000_000, booking_indexes=[Index(("status",))],
                                             partitioned=False)
        descriptor = QueryDescriptor(filters=[FilterClause.of("Bookings.status", "=", "confirmed")],
                                     group_by=["Bookings.status"])
        plan = _plan(snapshot, descriptor)
        self.assertEqual(plan.scan_of("Bookings").index.columns, ("status",))
        self.assertEqual(plan.sorts(), ())

    def test_grouping_reduces_rows_for_ordering(self) -> None:
        snapshot = catalogs.scenario_catalog(booking_rows=1_000_000)
        descriptor = QueryDescriptor(group_by=["Bookings.status"], order_by=[SortKey.of("Bookings.user_id")])
        plan = _plan(snapshot, descriptor)
        group_sort, order_sort = plan.sorts()
        self.assertAlmostEqual(group_sort.estimated_rows, 1_000_000)
        self.assertAlmostEqual(order_sort.estimated_rows, 3)


if __name__ == "__main__":
    unittest.main()
