"""Models the annotated plans that are produced by the cost estimator, along with the detected bottlenecks."""
from __future__ import annotations

import collections
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ._core import (
    Cardinality,
    Cost,
    IntermediateOperator,
    JoinOperator,
    PhysicalOperator,
    ScanOperator,
    SortKey,
    normalize,
)
from .catalog import Index
from .query import JoinEdge
from .util.jsonize import jsondict


class BottleneckKind(Enum):
    """The patterns that the cost estimator flags as bottlenecks."""

    UnindexedFilter = "unindexed-filter"
    UnindexedJoin = "unindexed-join"
    LargeSort = "large-sort"
    MissedPartitionPruning = "missed-partition-pruning"

    def __json__(self) -> str:
        return self.value

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.value < other.value


class PruningFailure(Enum):
    """Describes why the partitions of a table could not be pruned.

    - *no-key-predicate*: the table is filtered, but not on its partition key
    - *unbounded*: the key predicates do not restrict the key to a closed range
    - *all-partitions*: the key range overlaps every partition
    - *uncovered*: parts of the key range (or some key literals) do not belong to any partition
    """

    NoKeyPredicate = "no-key-predicate"
    Unbounded = "unbounded"
    AllPartitions = "all-partitions"
    Uncovered = "uncovered"

    def __json__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Bottleneck:
    """A pattern in a plan that causes unnecessary work.

    Attributes
    ----------
    kind : BottleneckKind
        The pattern
    table : str
        The affected table
    columns : tuple[str, ...]
        The affected columns of the table. For sorts these are the sort columns in order, for missed partition pruning this
        is the partition key.
    severity : float
        The estimated number of rows that are processed unnecessarily
    ascending : tuple[bool, ...]
        The sort directions of the columns. Only set for large sorts.
    bounds : Optional[tuple[Any, Any]]
        The literal key range of the query. Only set for missed partition pruning, either end may be *None*.
    uncovered : tuple[tuple[Any, Any], ...]
        The parts of the key range that do not belong to any partition. Only set for missed partition pruning.
    reason : Optional[PruningFailure]
        Why pruning failed. Only set for missed partition pruning.
    """

    kind: BottleneckKind
    table: str
    columns: tuple[str, ...]
    severity: float
    ascending: tuple[bool, ...] = ()
    bounds: Optional[tuple[Any, Any]] = None
    uncovered: tuple[tuple[Any, Any], ...] = ()
    reason: Optional[PruningFailure] = None

    @property
    def column(self) -> str:
        """The first (and usually only) affected column."""
        return self.columns[0]

    def __json__(self) -> jsondict:
        return {
            "kind": self.kind,
            "table": self.table,
            "columns": list(self.columns),
            "severity": self.severity,
            "ascending": list(self.ascending),
            "bounds": list(self.bounds) if self.bounds is not None else None,
            "uncovered": [list(interval) for interval in self.uncovered],
            "reason": self.reason,
        }

    def __str__(self) -> str:
        columns = ", ".join(self.columns)
        return f"{self.kind.value} on {self.table}({columns}), severity={self.severity:.1f}"


@dataclass(frozen=True)
class AccessPath:
    """The chosen access path for a single base table.

    Attributes
    ----------
    table : str
        The scanned table
    operator : ScanOperator
        The scan operator
    index : Optional[Index]
        The index that is used by index and index-only scans
    base_rows : Cardinality
        The number of rows of the table after partition pruning
    selectivity : float
        The combined selectivity of all filter predicates
    cost : Cost
        The cost of the scan
    partitions : tuple[str, ...]
        The names of the scanned partitions, if the table is partitioned and pruning succeeded
    """

    table: str
    operator: ScanOperator
    index: Optional[Index]
    base_rows: Cardinality
    selectivity: float
    cost: Cost
    partitions: tuple[str, ...] = ()

    @property
    def output_rows(self) -> Cardinality:
        return self.base_rows * self.selectivity

    def __json__(self) -> jsondict:
        return {
            "table": self.table,
            "operator": self.operator,
            "index": self.index,
            "base_rows": self.base_rows,
            "selectivity": self.selectivity,
            "cost": self.cost,
            "partitions": list(self.partitions),
        }


@dataclass(frozen=True)
class PlanStep:
    """A single operator of a plan.

    Steps are listed in execution order: a join step consumes results of earlier steps, a sort step consumes the result
    of the preceding step.

    Attributes
    ----------
    operator : PhysicalOperator
        The scan, join or sort operator
    tables : tuple[str, ...]
        The tables that are contained in the result of the step
    estimated_rows : Cardinality
        The number of rows that the step produces
    estimated_cost : Cost
        The cost of this step alone (not including its inputs)
    table : Optional[str]
        The scanned table of a scan step
    index : Optional[Index]
        The index used by index scans and index nested-loop joins
    join_edges : tuple[JoinEdge, ...]
        The predicates of a join step. Empty for cross products.
    sort_keys : tuple[SortKey, ...]
        The sort order of a sort step
    partitions : tuple[str, ...]
        The scanned partitions of a pruned scan
    driving : tuple[str, ...]
        The tables of the outer (driving) input of a join
    inner : tuple[str, ...]
        The tables of the inner input of a join
    """

    operator: PhysicalOperator
    tables: tuple[str, ...]
    estimated_rows: Cardinality
    estimated_cost: Cost
    table: Optional[str] = None
    index: Optional[Index] = None
    join_edges: tuple[JoinEdge, ...] = ()
    sort_keys: tuple[SortKey, ...] = ()
    partitions: tuple[str, ...] = ()
    driving: tuple[str, ...] = ()
    inner: tuple[str, ...] = ()

    def is_scan(self) -> bool:
        return isinstance(self.operator, ScanOperator)

    def is_join(self) -> bool:
        return isinstance(self.operator, JoinOperator)

    def is_sort(self) -> bool:
        return isinstance(self.operator, IntermediateOperator)

    def __json__(self) -> jsondict:
        return {
            "operator": self.operator,
            "tables": list(self.tables),
            "estimated_rows": self.estimated_rows,
            "estimated_cost": self.estimated_cost,
            "table": self.table,
            "index": self.index,
            "join_edges": list(self.join_edges),
            "sort_keys": list(self.sort_keys),
            "partitions": list(self.partitions),
            "driving": list(self.driving),
            "inner": list(self.inner),
        }

    def __str__(self) -> str:
        if self.is_scan():
            target = f"{self.table} using {self.index}" if self.index is not None else f"{self.table}"
        elif self.is_join():
            target = f"{' ⋈ '.join(self.driving)} -> {' ⋈ '.join(self.inner)}"
        else:
            target = ", ".join(str(key) for key in self.sort_keys)
        return f"{self.operator.value}({target}) [rows={self.estimated_rows:.1f}, cost={self.estimated_cost:.1f}]"


@dataclass(frozen=True)
class Plan:
    """An annotated query plan.

    Attributes
    ----------
    steps : tuple[PlanStep, ...]
        All operators in execution order
    bottlenecks : tuple[Bottleneck, ...]
        All bottlenecks that were detected while estimating the plan
    join_strategy : str
        The enumeration strategy that produced the join order. Besides the configured strategies, this can be
        ``"query-order"`` if enumeration was aborted due to its budget.
    """

    steps: tuple[PlanStep, ...]
    bottlenecks: tuple[Bottleneck, ...] = ()
    join_strategy: str = "greedy"

    @property
    def total_cost(self) -> Cost:
        return sum(step.estimated_cost for step in self.steps)

    @property
    def estimated_rows(self) -> Cardinality:
        """The number of rows produced by the final step."""
        return self.steps[-1].estimated_rows if self.steps else 0.0

    def scans(self) -> tuple[PlanStep, ...]:
        return tuple(step for step in self.steps if step.is_scan())

    def joins(self) -> tuple[PlanStep, ...]:
        return tuple(step for step in self.steps if step.is_join())

    def sorts(self) -> tuple[PlanStep, ...]:
        return tuple(step for step in self.steps if step.is_sort())

    def scan_of(self, table: str) -> Optional[PlanStep]:
        """Provides the scan step of a table, or *None* if the table is accessed by an index nested-loop join instead."""
        key = normalize(table)
        return next((step for step in self.scans() if normalize(step.table) == key), None)

    def join_order(self) -> tuple[str, ...]:
        """Provides the tables in the order in which they are added to the plan."""
        order: list[str] = []
        for step in self.steps:
            for table in step.tables:
                if table not in order:
                    order.append(table)
        return tuple(order)

    def bottlenecks_of(self, kind: BottleneckKind) -> tuple[Bottleneck, ...]:
        return tuple(bottleneck for bottleneck in self.bottlenecks if bottleneck.kind == kind)

    def plan_summary(self) -> dict[str, object]:
        """Provides a quick summary of important properties of the plan, inspired by Panda's *describe* method."""
        return {
            "total_cost": round(self.total_cost, 3),
            "estimated_rows": round(self.estimated_rows, 3),
            "join_order": list(self.join_order()),
            "join_strategy": self.join_strategy,
            "phys_ops": collections.Counter(step.operator for step in self.steps),
            "bottlenecks": collections.Counter(bottleneck.kind for bottleneck in self.bottlenecks),
        }

    def __json__(self) -> jsondict:
        return {
            "steps": list(self.steps),
            "total_cost": self.total_cost,
            "bottlenecks": list(self.bottlenecks),
            "join_strategy": self.join_strategy,
        }

    def __len__(self) -> int:
        return len(self.steps)

    def __str__(self) -> str:
        return " -> ".join(str(step) for step in self.steps)
