"""End-to-end regression tests on the Bookings/Users catalog.

Each scenario runs the full pipeline and checks the plan, its bottlenecks and the final recommendations.
"""
import math
import unittest

from planadvisor import (
    BottleneckKind,
    FilterClause,
    Index,
    JoinClause,
    JoinOperator,
    PruningFailure,
    QueryDescriptor,
    RecommendationKind,
    ScanOperator,
    SortKey,
    advise,
    presets,
)

from tests import catalogs, regression_suite

UserBookingsQuery = QueryDescriptor(filters=[FilterClause.of("Bookings.user_id", "=", "u1")],
                                    joins=[JoinClause.of("Bookings.user_id", "Users.user_id")])


class UserBookingsScenarioTests(unittest.TestCase):
    def test_unindexed_lookup(self) -> None:
        result = advise(UserBookingsQuery, catalogs.scenario_catalog())
        plan = result.plan

        bookings_scan = plan.scan_of("Bookings")
        self.assertEqual(bookings_scan.operator, ScanOperator.SequentialScan)
        self.assertAlmostEqual(bookings_scan.estimated_rows, 20)

        join, = plan.joins()
        self.assertEqual(join.operator, JoinOperator.IndexNestedLoopJoin)
        self.assertEqual(join.driving, ("Bookings",))
        self.assertIsNone(plan.scan_of("Users"))
        self.assertAlmostEqual(plan.total_cost, 100_040)

        filter_bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.UnindexedFilter, "Bookings",
                                                                   "user_id")
        self.assertAlmostEqual(filter_bottleneck.severity, 99_980)
        pruning_bottleneck = regression_suite.assert_has_bottleneck(plan, BottleneckKind.MissedPartitionPruning,
                                                                    "Bookings")
        self.assertEqual(pruning_bottleneck.reason, PruningFailure.NoKeyPredicate)

        self.assertEqual([(rec.kind, rec.columns) for rec in result.recommendations],
                         [(RecommendationKind.CreateIndex, ("user_id",)),
                          (RecommendationKind.RefinePredicate, ("start_date",))])
        self.assertAlmostEqual(result.recommendations[0].score, 99_980)

    def test_recommended_index_resolves_bottleneck(self) -> None:
        before = advise(UserBookingsQuery, catalogs.scenario_catalog())
        recommended = before.recommendations[0]
        snapshot = catalogs.scenario_catalog(booking_indexes=[Index(recommended.columns,
                                                                    ascending=recommended.ascending)])
        after = advise(UserBookingsQuery, snapshot)

        self.assertEqual(after.plan.scan_of("Bookings").operator, ScanOperator.IndexScan)
        regression_suite.assert_no_bottleneck(after.plan, BottleneckKind.UnindexedFilter)
        self.assertAlmostEqual(after.total_cost, 22 + 40)
        self.assertIsNone(regression_suite.find_recommendation(after.recommendations, RecommendationKind.CreateIndex,
                                                               "Bookings", ("user_id",)))


class PrunedRangeScenarioTests(unittest.TestCase):
    def test_single_partition_range(self) -> None:
        descriptor = QueryDescriptor(filters=[FilterClause.of("Bookings.start_date", "BETWEEN",
                                                              "2025-03-01", "2025-03-31")])
        result = advise(descriptor, catalogs.scenario_catalog())

        scan = result.plan.scan_of("Bookings")
        self.assertEqual(scan.partitions, ("bookings_2025",))
        self.assertAlmostEqual(scan.estimated_cost, 100_000 / 3)
        regression_suite.assert_no_bottleneck(result.plan, BottleneckKind.MissedPartitionPruning)

        bottleneck = regression_suite.assert_has_bottleneck(result.plan, BottleneckKind.UnindexedFilter, "Bookings",
                                                            "start_date")
        self.assertAlmostEqual(bottleneck.severity, 100_000 / 3 * 0.7)

        recommendation, = result.recommendations
        self.assertEqual(recommendation.kind, RecommendationKind.CreateIndex)
        self.assertEqual(recommendation.columns, ("start_date",))

    def test_last_year_half_open(self) -> None:
        descriptor = QueryDescriptor(filters=[FilterClause.of("Bookings.start_date", ">=", "2026-01-01"),
                                              FilterClause.of("Bookings.start_date", "<", "2027-01-01")])
        result = advise(descriptor, catalogs.scenario_catalog())
        self.assertEqual(result.plan.scan_of("Bookings").partitions, ("bookings_2026",))
        regression_suite.assert_no_bottleneck(result.plan, BottleneckKind.MissedPartitionPruning)
        self.assertIsNone(next((rec for rec in result.recommendations if rec.kind == RecommendationKind.AddPartition),
                               None))

    def test_range_before_first_partition(self) -> None:
        descriptor = QueryDescriptor(filters=[FilterClause.of("Bookings.start_date", "BETWEEN",
                                                              "2023-06-01", "2024-03-01")])
        result = advise(descriptor, catalogs.scenario_catalog())
        recommendation = next(rec for rec in result.recommendations if rec.kind == RecommendationKind.AddPartition)
        self.assertEqual(str(recommendation.boundaries[0]), "2023-06-01")
        self.assertEqual(str(recommendation.boundaries[1]), "2024-01-01")
        self.assertAlmostEqual(recommendation.score, 100_000 - 100_000 / 3)


class LargeSortScenarioTests(unittest.TestCase):
    def test_descending_sort(self) -> None:
        descriptor = QueryDescriptor(order_by=[SortKey.of("Bookings.total_price", ascending=False)])
        result = advise(descriptor, catalogs.scenario_catalog(booking_rows=1_000_000))

        sort, = result.plan.sorts()
        self.assertAlmostEqual(sort.estimated_cost, 1_000_000 * math.log2(1_000_000))
        self.assertAlmostEqual(result.total_cost, 1_000_000 + 1_000_000 * math.log2(1_000_000))

        recommendation, = result.recommendations
        self.assertEqual(recommendation.kind, RecommendationKind.CreateIndex)
        self.assertEqual(recommendation.columns, ("total_price",))
        self.assertEqual(recommendation.ascending, (False,))
        self.assertAlmostEqual(recommendation.score, 1_000_000)
        self.assertEqual(recommendation.sources, (BottleneckKind.LargeSort,))

    def test_primary_key_order(self) -> None:
        descriptor = QueryDescriptor(order_by=[SortKey.of("Bookings.booking_id")])
        result = advise(descriptor, catalogs.scenario_catalog(booking_rows=1_000_000))
        self.assertEqual(result.plan.scan_of("Bookings").operator, ScanOperator.IndexScan)
        self.assertEqual(result.plan.sorts(), ())
        self.assertEqual(result.bottlenecks, ())
        self.assertEqual(result.recommendations, ())

    def test_filter_and_sort_share_index(self) -> None:
        descriptor = QueryDescriptor(filters=[FilterClause.of("Bookings.total_price", ">", 100)],
                                     order_by=[SortKey.of("Bookings.total_price")])
        result = advise(descriptor, catalogs.scenario_catalog(booking_rows=1_000_000, partitioned=False))

        regression_suite.assert_has_bottleneck(result.plan, BottleneckKind.UnindexedFilter, "Bookings", "total_price")
        regression_suite.assert_has_bottleneck(result.plan, BottleneckKind.LargeSort, "Bookings", "total_price")

        recommendation, = result.recommendations
        self.assertEqual(recommendation.columns, ("total_price",))
        self.assertAlmostEqual(recommendation.score, 700_000 + 300_000)
        self.assertEqual(recommendation.sources, (BottleneckKind.LargeSort, BottleneckKind.UnindexedFilter))



class BookingDetailsScenarioTests(unittest.TestCase):
    """All bookings with their user, property and payment, ordered by booking."""

    def setUp(self) -> None:
        self.snapshot = presets.fetch("booking")
        self.descriptor = QueryDescriptor(joins=[JoinClause.of("Bookings.user_id", "Users.user_id"),
                                                 JoinClause.of("Bookings.property_id", "Properties.property_id"),
                                                 JoinClause.of("Bookings.booking_id", "Payments.booking_id")],
                                          order_by=[SortKey.of("Bookings.booking_id")])

    def test_unindexed_foreign_keys(self) -> None:
        result = advise(self.descriptor, self.snapshot)
        plan = result.plan
        self.assertEqual(set(plan.join_order()), {"Bookings", "Users", "Properties", "Payments"})

        user_join = regression_suite.assert_has_bottleneck(plan, BottleneckKind.UnindexedJoin, "Bookings", "user_id")
        self.assertAlmostEqual(user_join.severity, 300_000 - 50_000 * 2)
        property_join = regression_suite.assert_has_bottleneck(plan, BottleneckKind.UnindexedJoin, "Bookings",
                                                               "property_id")
        self.assertAlmostEqual(property_join.severity, 260_000 - 10_000 * 2)
        self.assertEqual(len(plan.bottlenecks_of(BottleneckKind.UnindexedJoin)), 2)
        regression_suite.assert_no_bottleneck(plan, BottleneckKind.LargeSort)

        recommendation, = result.recommendations
        self.assertEqual(recommendation.kind, RecommendationKind.CreateCompositeIndex)
        self.assertEqual(recommendation.table, "Bookings")
        self.assertEqual(recommendation.columns, ("user_id", "property_id"))
        self.assertAlmostEqual(recommendation.score, 200_000 + 240_000)

    def test_every_bottleneck_names_an_unindexed_column(self) -> None:
        plan = advise(self.descriptor, self.snapshot).plan
        for bottleneck in plan.bottlenecks_of(BottleneckKind.UnindexedJoin):
            table = self.snapshot.get_table(bottleneck.table)
            self.assertFalse(any(index.has_prefix(bottleneck.columns) for index in table.indexes), str(bottleneck))


if __name__ == "__main__":
    unittest.main()
