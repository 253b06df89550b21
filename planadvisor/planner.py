"""The cost estimator derives an annotated plan for a normalized query and detects its bottlenecks.

Estimation proceeds bottom-up: first, the row base of each table is restricted by partition pruning. Afterwards, the cheapest
access path is selected for each table. The resulting base relations are then combined by the join enumeration strategy
(greedy by default), which also selects the join operators. Finally, sorts are added for grouping and ordering requirements
that are not satisfied by the index that is used to access the driving table of the plan.

All decisions are deterministic: ties are always broken by the query order of the tables and the catalog order of the
indexes, such that the same query and catalog snapshot always produce the same plan.
"""
from __future__ import annotations

import itertools
import math
import time
import warnings
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional

from ._core import (
    Cardinality,
    ColumnReference,
    Cost,
    IntermediateOperator,
    JoinOperator,
    ScanOperator,
    SortKey,
    normalize,
)
from .catalog import CatalogSnapshot, Index, NoPartitionError, PartitionRange, PartitionScheme
from .joingraph import JoinGraph
from .plans import AccessPath, Bottleneck, BottleneckKind, Plan, PlanStep, PruningFailure
from .query import JoinEdge, NormalizedQuery, Predicate, PredicateKind
from .selectivity import SelectivityEstimator, supports_grouping
from .settings import AdvisorSettings
from .util import collections as collection_utils
from .util.errors import LogicError
from .util.logging import standard_logger


class JoinOrderWarning(UserWarning):
    """Indicates that the join order could only be determined in a degraded way, e.g. due to cross products."""
    pass


class _BudgetExhausted(Exception):
    pass


class _EnumerationBudget:
    """Keeps track of the join pairs that have been evaluated and the time that has been spent on enumeration."""

    def __init__(self, max_steps: Optional[int], max_seconds: Optional[float]) -> None:
        self.max_steps = max_steps
        self.max_seconds = max_seconds
        self.steps = 0
        self._start = time.perf_counter()

    def charge(self) -> None:
        self.steps += 1
        if self.max_steps is not None and self.steps > self.max_steps:
            raise _BudgetExhausted(f"step budget of {self.max_steps} join evaluations exceeded")
        if self.max_seconds is not None and time.perf_counter() - self._start > self.max_seconds:
            raise _BudgetExhausted(f"time budget of {self.max_seconds}s exceeded")


@dataclass(frozen=True)
class PruningResult:
    """The outcome of partition pruning for a single table.

    Attributes
    ----------
    rows : Cardinality
        The number of rows that have to be scanned
    partitions : tuple[PartitionRange, ...]
        The partitions that have to be scanned. Empty if the table is not partitioned or pruning failed.
    bottleneck : Optional[Bottleneck]
        The missed-partition-pruning bottleneck, if pruning failed
    """

    rows: Cardinality
    partitions: tuple[PartitionRange, ...] = ()
    bottleneck: Optional[Bottleneck] = None

    @property
    def pruned(self) -> bool:
        return bool(self.partitions)


@dataclass(frozen=True)
class _Relation:
    """A (possibly intermediate) input of the join enumeration.

    Base relations carry their access path, their scan step and the bottlenecks of the scan. If a base relation becomes
    the inner input of an index nested-loop join, its scan is replaced by index lookups and these parts are discarded.
    """

    tables: tuple[str, ...]
    rows: Cardinality
    cost: Cost
    steps: tuple[PlanStep, ...]
    position: int
    bottlenecks: tuple[Bottleneck, ...] = ()
    access: Optional[AccessPath] = None

    def is_base(self) -> bool:
        return self.access is not None


def _partition_label(partition: PartitionRange) -> str:
    return partition.name if partition.name else str(partition)


def _endpoint_in(edge: JoinEdge, tables: Sequence[str]) -> ColumnReference:
    return edge.left if any(edge.left.belongs_to(table) for table in tables) else edge.right


def _sort_cost(rows: Cardinality) -> Cost:
    return rows * math.log2(rows) if rows > 1 else 0.0


class CostEstimator:
    """Produces annotated plans for normalized queries.

    Parameters
    ----------
    catalog : CatalogSnapshot
        The catalog snapshot that provides row counts, statistics, indexes and partitioning. The same snapshot is used for
        the entire estimation.
    settings : Optional[AdvisorSettings], optional
        The cost model parameters. Uses the default settings if omitted.
    """

    def __init__(self, catalog: CatalogSnapshot, settings: Optional[AdvisorSettings] = None) -> None:
        self.catalog = catalog
        self.settings = settings if settings is not None else AdvisorSettings()
        self.selectivity = SelectivityEstimator(catalog, self.settings)
        self._log = standard_logger(self.settings.verbose)

    def estimate(self, query: NormalizedQuery) -> Plan:
        """Computes the plan for a query.

        Parameters
        ----------
        query : NormalizedQuery
            The query. It has to be built against the same catalog snapshot.

        Returns
        -------
        Plan
            The plan along with all detected bottlenecks

        Raises
        ------
        InvalidCatalogStateError
            If statistics that are required for the estimation are missing (and missing statistics are not tolerated)
        """
        join_graph = JoinGraph(query)
        if join_graph.contains_cross_products():
            warnings.warn(f"Query contains cross products between {list(join_graph.components())}",
                          category=JoinOrderWarning)

        base_relations = [self._base_relation(query, table, position) for position, table in enumerate(query.tables)]
        relation, strategy = self._enumerate_joins(query, join_graph, base_relations)
        steps, bottlenecks = self._add_sorts(query, relation)

        plan = Plan(steps, bottlenecks, strategy)
        self._log("Estimated plan", plan, "with total cost", plan.total_cost)
        return plan

    # partition pruning

    def prune_partitions(self, query: NormalizedQuery, table: str) -> PruningResult:
        """Determines the partitions of a table that have to be scanned for a query.

        Pruning is only attempted for partitioned tables that are filtered by the query. Equality and membership literals
        of the partition key are located directly, range predicates on the key are intersected into a single interval. If
        this identifies a strict subset of the partitions, only their rows have to be scanned. Otherwise the full table is
        scanned and a missed-partition-pruning bottleneck describes why pruning failed.
        """
        catalog_table = self.catalog.get_table(table)
        scheme = catalog_table.partitioning
        full_rows = float(catalog_table.row_count)
        predicates = query.filters_for(table)
        if scheme is None or not predicates:
            return PruningResult(full_rows)

        key_predicates = [pred for pred in predicates if normalize(pred.column.name) == normalize(scheme.key)]
        if not key_predicates:
            return self._missed_pruning(catalog_table.name, scheme, full_rows, PruningFailure.NoKeyPredicate)

        literals = [pred for pred in key_predicates
                    if pred.kind in (PredicateKind.Equality, PredicateKind.Membership) and pred.values]
        if literals:
            return self._prune_literals(catalog_table.name, scheme, full_rows, literals)

        low, high, upper_inclusive = self._key_interval(key_predicates)
        if low is None or high is None or high < low or (high == low and not upper_inclusive):
            return self._missed_pruning(catalog_table.name, scheme, full_rows, PruningFailure.Unbounded,
                                        bounds=(low, high))

        partitions = scheme.overlapping(low, high, upper_inclusive=upper_inclusive)
        uncovered = scheme.uncovered(low, high, upper_inclusive=upper_inclusive)
        if uncovered:
            return self._missed_pruning(catalog_table.name, scheme, full_rows, PruningFailure.Uncovered,
                                        bounds=(low, high), uncovered=uncovered, scanned=partitions)
        if len(partitions) == len(scheme.ranges):
            return self._missed_pruning(catalog_table.name, scheme, full_rows, PruningFailure.AllPartitions,
                                        bounds=(low, high))
        return PruningResult(self._partition_rows(scheme, full_rows, partitions), partitions)

    def _key_interval(self, key_predicates: Sequence[Predicate]) -> tuple[Any, Any, bool]:
        low, high, upper_inclusive = None, None, True
        for predicate in key_predicates:
            if predicate.kind != PredicateKind.Range:
                continue
            pred_low, pred_high = predicate.bounds()
            if pred_low is not None:
                low = pred_low if low is None else max(low, pred_low)
            if pred_high is None:
                continue
            if high is None or pred_high < high:
                high, upper_inclusive = pred_high, predicate.includes_upper_bound()
            elif pred_high == high:
                upper_inclusive = upper_inclusive and predicate.includes_upper_bound()
        return low, high, upper_inclusive

    def _prune_literals(self, table: str, scheme: PartitionScheme, full_rows: Cardinality,
                        literals: Sequence[Predicate]) -> PruningResult:
        # all literal predicates are conjunctive, so a partition has to qualify for each of them
        candidates: Optional[set[PartitionRange]] = None
        missing: list[Any] = []
        all_values: list[Any] = []
        for predicate in literals:
            located: set[PartitionRange] = set()
            for value in predicate.values:
                all_values.append(value)
                try:
                    located.add(scheme.locate(value))
                except NoPartitionError as e:
                    self._log("Partition lookup failed:", e)
                    missing.append(value)
            candidates = located if candidates is None else candidates & located

        bounds = (min(all_values), max(all_values))
        partitions = tuple(partition for partition in scheme.ranges if partition in candidates)
        if missing:
            uncovered = tuple((value, value) for value in sorted(set(missing)))
            return self._missed_pruning(table, scheme, full_rows, PruningFailure.Uncovered, bounds=bounds,
                                        uncovered=uncovered, scanned=partitions)
        if not partitions or len(partitions) == len(scheme.ranges):
            return self._missed_pruning(table, scheme, full_rows, PruningFailure.AllPartitions, bounds=bounds)
        return PruningResult(self._partition_rows(scheme, full_rows, partitions), partitions)

    def _partition_rows(self, scheme: PartitionScheme, full_rows: Cardinality,
                        partitions: Sequence[PartitionRange]) -> Cardinality:
        rows_per_partition = dict(zip(scheme.ranges, scheme.rows_per_partition(full_rows)))
        return sum(rows_per_partition[partition] for partition in partitions)

    def _missed_pruning(self, table: str, scheme: PartitionScheme, full_rows: Cardinality, reason: PruningFailure, *,
                        bounds: Optional[tuple[Any, Any]] = None, uncovered: tuple[tuple[Any, Any], ...] = (),
                        scanned: Sequence[PartitionRange] = ()) -> PruningResult:
        if reason == PruningFailure.Uncovered:
            severity = full_rows - self._partition_rows(scheme, full_rows, scanned)
        else:
            severity = full_rows - full_rows / len(scheme.ranges)
        bottleneck = Bottleneck(BottleneckKind.MissedPartitionPruning, table, (scheme.key,), severity, bounds=bounds,
                                uncovered=uncovered, reason=reason)
        return PruningResult(full_rows, (), bottleneck)

    # access paths

    def access_path(self, query: NormalizedQuery, table: str) -> tuple[AccessPath, tuple[Bottleneck, ...]]:
        """Selects the cheapest access path for a table and determines the bottlenecks of the scan.

        Each index that can evaluate at least one filter predicate of the table is compared against a sequential scan.
        Sequential scans cost one unit per row, index scans cost one unit per matched row plus the lookup overhead. Ties
        favor index scans, and the first index in catalog order among equally expensive indexes.

        For queries on a single table, an index that already provides the requested grouping or ordering is considered as
        well. It is used if scanning it is cheaper than the selected access path together with the sort it avoids.

        Returns
        -------
        tuple[AccessPath, tuple[Bottleneck, ...]]
            The access path and all bottlenecks (missed partition pruning as well as unindexed filters)
        """
        catalog_table = self.catalog.get_table(table)
        pruning = self.prune_partitions(query, table)
        bottlenecks = [pruning.bottleneck] if pruning.bottleneck is not None else []
        partitions = tuple(_partition_label(partition) for partition in pruning.partitions)
        base_rows = pruning.rows
        predicates = query.filters_for(table)

        best_index: Optional[Index] = None
        best_cost, rows_read = base_rows, base_rows
        for index in catalog_table.indexes:
            if not self.selectivity.matched_prefix(index, predicates):
                continue
            index_rows = self.selectivity.prefix_selectivity(index, predicates) * base_rows
            index_cost = index_rows + self.settings.index_lookup_overhead
            if index_cost < best_cost or (best_index is None and index_cost == best_cost):
                best_index, best_cost, rows_read = index, index_cost, index_rows

        selectivity = self.selectivity.conjunctive_selectivity(predicates)
        order_index = self._order_providing_index(query, catalog_table.name)
        if order_index is not None and order_index != best_index:
            order_rows = self.selectivity.prefix_selectivity(order_index, predicates) * base_rows
            order_cost = order_rows + self.settings.index_lookup_overhead
            if order_cost < best_cost + _sort_cost(selectivity * base_rows):
                best_index, best_cost, rows_read = order_index, order_cost, order_rows

        if best_index is None:
            operator = ScanOperator.SequentialScan
        elif self._index_only(query, catalog_table.name, best_index):
            operator = ScanOperator.IndexOnlyScan
        else:
            operator = ScanOperator.IndexScan

        access = AccessPath(catalog_table.name, operator, best_index, base_rows, selectivity, best_cost, partitions)
        bottlenecks.extend(self._unindexed_filters(catalog_table.name, predicates, base_rows, rows_read))
        self._log("Access path for", catalog_table.name, "is", operator.value, "using", best_index, "at cost", best_cost)
        return access, tuple(bottlenecks)

    def _order_providing_index(self, query: NormalizedQuery, table: str) -> Optional[Index]:
        if len(query.tables) != 1:
            return None
        if query.grouping:
            return self.selectivity.index_for_grouping(table, query.grouping)
        return self.selectivity.index_for_ordering(table, query.ordering)

    def _index_only(self, query: NormalizedQuery, table: str, index: Index) -> bool:
        if query.projection is None:
            return False
        index_columns = set(index.normalized_columns())
        return all(normalize(column.name) in index_columns for column in query.columns_of(table))

    def _unindexed_filters(self, table: str, predicates: Sequence[Predicate], base_rows: Cardinality,
                           rows_read: Cardinality) -> list[Bottleneck]:
        bottlenecks = []
        columns = list(dict.fromkeys(pred.column for pred in predicates))
        for column in columns:
            column_predicates = [pred for pred in predicates if pred.column == column]
            if any(not self.selectivity.estimate(pred, predicates).index_miss for pred in column_predicates):
                continue
            selectivity = self.selectivity.conjunctive_selectivity(column_predicates)
            severity = rows_read - selectivity * base_rows
            if severity > 0:
                bottlenecks.append(Bottleneck(BottleneckKind.UnindexedFilter, table, (column.name,), severity))
        return bottlenecks

    def _base_relation(self, query: NormalizedQuery, table: str, position: int) -> _Relation:
        access, bottlenecks = self.access_path(query, table)
        step = PlanStep(access.operator, (access.table,), access.output_rows, access.cost, table=access.table,
                        index=access.index, partitions=access.partitions)
        return _Relation((access.table,), access.output_rows, access.cost, (step,), position, bottlenecks, access)

    # joins

    def join_cardinality(self, driving_rows: Cardinality, inner_rows: Cardinality, edges: Sequence[JoinEdge]) -> Cardinality:
        """Estimates the output of a join as *Nd * Ni / max(distinct(left), distinct(right))* for each join edge.

        Inputs without any join edge are combined as a cross product.
        """
        rows = driving_rows * inner_rows
        for edge in edges:
            rows /= max(self.selectivity.distinct_values(edge.left), self.selectivity.distinct_values(edge.right))
        return rows

    def _join(self, query: NormalizedQuery, first: _Relation, second: _Relation,
              edges: Sequence[JoinEdge]) -> _Relation:
        first, second = sorted((first, second), key=lambda rel: rel.position)
        rows = self.join_cardinality(first.rows, second.rows, edges)
        forward = self._join_orientation(query, first, second, tuple(edges), rows)
        backward = self._join_orientation(query, second, first, tuple(edges), rows)
        return backward if backward.cost < forward.cost else forward

    def _join_orientation(self, query: NormalizedQuery, driving: _Relation, inner: _Relation,
                          edges: tuple[JoinEdge, ...], rows: Cardinality) -> _Relation:
        overhead = self.settings.index_lookup_overhead
        n_driving, n_inner = driving.rows, inner.rows
        tables = driving.tables + inner.tables
        position = min(driving.position, inner.position)

        index = self._inner_index(query, inner, edges)
        if index is not None:
            join_cost = n_driving * overhead
            step = PlanStep(JoinOperator.IndexNestedLoopJoin, tables, rows, join_cost, index=index, join_edges=edges,
                            driving=driving.tables, inner=inner.tables)
            return _Relation(tables, rows, driving.cost + join_cost, driving.steps + (step,), position,
                             driving.bottlenecks)

        nested_loop_cost = n_driving * n_inner
        hash_cost = n_driving + n_inner
        fits_memory = max(n_driving, n_inner) <= self.settings.hash_join_memory_rows
        if edges and fits_memory and hash_cost <= nested_loop_cost:
            operator, join_cost = JoinOperator.HashJoin, hash_cost
        else:
            operator, join_cost = JoinOperator.NestedLoopJoin, nested_loop_cost

        bottlenecks = driving.bottlenecks + inner.bottlenecks
        if edges and nested_loop_cost > self.settings.unindexed_join_ratio * hash_cost:
            severity = join_cost - n_driving * overhead
            column = self._unindexed_join_column(query, driving, inner, edges) if severity > 0 else None
            if column is not None:
                bottlenecks += (Bottleneck(BottleneckKind.UnindexedJoin, column.table, (column.name,), severity),)

        step = PlanStep(operator, tables, rows, join_cost, join_edges=edges, driving=driving.tables, inner=inner.tables)
        return _Relation(tables, rows, driving.cost + inner.cost + join_cost, driving.steps + inner.steps + (step,),
                         position, bottlenecks)

    def _inner_index(self, query: NormalizedQuery, inner: _Relation, edges: Sequence[JoinEdge]) -> Optional[Index]:
        if not inner.is_base():
            return None
        inner_table = inner.tables[0]
        for edge in edges:
            index = self.selectivity.index_for_join(edge.column_of(inner_table), query.filters_for(inner_table))
            if index is not None:
                return index
        return None

    def _unindexed_join_column(self, query: NormalizedQuery, driving: _Relation, inner: _Relation,
                               edges: Sequence[JoinEdge]) -> Optional[ColumnReference]:
        """Determines the join column that lacks an index, if any.

        A base inner relation is checked first, since an index on its join column enables an index nested-loop join right
        away. Afterwards, the join columns of intermediate results are checked, because an index there allows for a
        different join order. Columns that already have a usable index are never reported.
        """
        sides = [inner, driving] if inner.is_base() else sorted([inner, driving], key=lambda rel: rel.is_base())
        for relation in sides:
            for edge in edges:
                column = _endpoint_in(edge, relation.tables)
                if self.selectivity.index_for_join(column, query.filters_for(column.table)) is None:
                    return column
        return None

    def _enumerate_joins(self, query: NormalizedQuery, join_graph: JoinGraph,
                         relations: list[_Relation]) -> tuple[_Relation, str]:
        strategy = self.settings.join_strategy
        if len(relations) == 1:
            return relations[0], strategy

        budget = _EnumerationBudget(self.settings.join_step_budget, self.settings.join_time_budget)
        try:
            if strategy == "exhaustive" and len(relations) <= self.settings.exhaustive_table_limit:
                return self._exhaustive(query, join_graph, relations, budget), "exhaustive"
            if strategy == "exhaustive":
                self._log("Query has", len(relations), "tables, falling back to greedy join ordering")
            return self._greedy(query, join_graph, relations, budget), "greedy"
        except _BudgetExhausted as e:
            warnings.warn(f"Join enumeration aborted ({e}), joining tables in query order", category=JoinOrderWarning)
            return self._query_order(query, join_graph, relations), "query-order"

    def _greedy(self, query: NormalizedQuery, join_graph: JoinGraph, relations: list[_Relation],
                budget: _EnumerationBudget) -> _Relation:
        relations = sorted(relations, key=lambda rel: rel.position)
        while len(relations) > 1:
            candidates = [(first, second, join_graph.joins_between(first.tables, second.tables))
                          for first, second in collection_utils.pairs(relations)]
            connected = [candidate for candidate in candidates if candidate[2]]

            best_key, best_pair = None, None
            for first, second, edges in (connected if connected else candidates):
                budget.charge()
                key = (self.join_cardinality(first.rows, second.rows, edges), first.position, second.position)
                if best_key is None or key < best_key:
                    best_key, best_pair = key, (first, second, edges)

            first, second, edges = best_pair
            joined = self._join(query, first, second, edges)
            self._log("Greedy join of", first.tables, "and", second.tables, "produces", joined.rows, "rows")
            relations = [rel for rel in relations if rel is not first and rel is not second] + [joined]
            relations.sort(key=lambda rel: rel.position)
        return relations[0]

    def _exhaustive(self, query: NormalizedQuery, join_graph: JoinGraph, relations: list[_Relation],
                    budget: _EnumerationBudget) -> _Relation:
        allow_cross_products = join_graph.contains_cross_products()
        best: Optional[_Relation] = None
        for order in itertools.permutations(sorted(relations, key=lambda rel: rel.position)):
            current: Optional[_Relation] = order[0]
            for next_relation in order[1:]:
                edges = join_graph.joins_between(current.tables, next_relation.tables)
                if not edges and not allow_cross_products:
                    current = None
                    break
                budget.charge()
                current = self._join(query, current, next_relation, edges)
            if current is not None and (best is None or current.cost < best.cost):
                best = current
        if best is None:
            raise LogicError("Exhaustive enumeration did not produce any join order")
        return best

    def _query_order(self, query: NormalizedQuery, join_graph: JoinGraph, relations: list[_Relation]) -> _Relation:
        relations = sorted(relations, key=lambda rel: rel.position)
        current = relations[0]
        for next_relation in relations[1:]:
            current = self._join(query, current, next_relation,
                                 join_graph.joins_between(current.tables, next_relation.tables))
        return current

    # sorting and grouping

    def _add_sorts(self, query: NormalizedQuery,
                   relation: _Relation) -> tuple[tuple[PlanStep, ...], tuple[Bottleneck, ...]]:
        steps, bottlenecks = list(relation.steps), list(relation.bottlenecks)
        rows = relation.rows
        driving_table = relation.tables[0]
        driving_scan = next((step for step in steps if step.is_scan() and step.table == driving_table), None)
        if driving_scan is None:
            raise LogicError(f"No scan for driving table {driving_table}")
        driving_index = driving_scan.index

        current_order: tuple[SortKey, ...] = ()
        if driving_index is not None:
            current_order = tuple(SortKey(ColumnReference(driving_table, column), ascending)
                                  for column, ascending in zip(driving_index.columns, driving_index.ascending))

        if query.grouping:
            grouped = (driving_index is not None
                       and all(column.belongs_to(driving_table) for column in query.grouping)
                       and supports_grouping(driving_index, query.grouping))
            if not grouped:
                group_keys = tuple(SortKey(column) for column in query.grouping)
                self._sort(steps, bottlenecks, relation.tables, group_keys, rows)
                current_order = group_keys
            n_groups = 1.0
            for column in query.grouping:
                n_groups *= self.selectivity.distinct_values(column)
            rows = min(rows, n_groups)

        if query.ordering and not self._ordered_by(current_order, query.ordering):
            self._sort(steps, bottlenecks, relation.tables, query.ordering, rows)

        return tuple(steps), tuple(bottlenecks)

    def _ordered_by(self, current_order: Sequence[SortKey], ordering: Sequence[SortKey]) -> bool:
        if len(ordering) > len(current_order):
            return False
        prefix = current_order[:len(ordering)]
        if any(current.column != requested.column for current, requested in zip(prefix, ordering)):
            return False
        same_direction = all(current.ascending == requested.ascending for current, requested in zip(prefix, ordering))
        reversed_direction = all(current.ascending != requested.ascending for current, requested in zip(prefix, ordering))
        return same_direction or reversed_direction

    def _sort(self, steps: list[PlanStep], bottlenecks: list[Bottleneck], tables: tuple[str, ...],
              sort_keys: Sequence[SortKey], rows: Cardinality) -> None:
        sort_keys = tuple(sort_keys)
        steps.append(PlanStep(IntermediateOperator.Sort, tables, rows, _sort_cost(rows), sort_keys=sort_keys))
        if rows <= self.settings.large_sort_rows:
            return
        table = sort_keys[0].column.table
        table_keys = [key for key in sort_keys if key.column.belongs_to(table)]
        if self.selectivity.index_for_ordering(table, table_keys) is not None:
            # the existing index could not be used by the chosen join order
            return
        bottlenecks.append(Bottleneck(BottleneckKind.LargeSort, table, tuple(key.column.name for key in table_keys), rows,
                                      ascending=tuple(key.ascending for key in table_keys)))
