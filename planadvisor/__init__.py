"""planadvisor - A query plan advisory engine for relational booking systems.

The advisor estimates the execution plan of a query, flags the patterns that make the plan expensive (so-called
*bottlenecks*) and recommends schema changes that would resolve them. It never executes queries and never modifies the
catalog: all results are purely advisory and are provided as structured data.

On a high level, the advisor is structured as follows:

- the `catalog` module describes the schema: tables, columns with their statistics, indexes and range partitioning. Catalog
  contents are immutable snapshots that are swapped atomically on reload.
- the `query` module contains the query descriptors that callers use to describe their queries, as well as the builder that
  validates and normalizes them. The `joingraph` module provides the join graph of a normalized query.
- the `selectivity` module estimates the selectivity of filter predicates and determines which indexes can be used according
  to the leftmost-prefix rule.
- the `planner` module contains the cost estimator. It prunes partitions, selects access paths, determines the join order and
  the join operators and adds sorts for grouping and ordering. While doing so, it detects the bottlenecks of the plan.
- the `recommendations` module turns bottlenecks into ranked index and partitioning recommendations
- the `advisor` module ties all stages together in a single `advise` call
- `settings` contains all tunable parameters of the cost model and `presets` provides ready-to-use catalogs
- the `util` package contains algorithms and types that are not specific to query planning

Most of the important types are available directly from the main package, so generally you just need to
``import planadvisor``. A quick start looks like this:

>>> catalog = planadvisor.Catalog(planadvisor.presets.fetch("booking"))
>>> result = planadvisor.advise({"filters": [{"column": "Bookings.user_id", "operator": "="}]}, catalog)
>>> for recommendation in result.recommendations:
...     print(recommendation)

All estimation heuristics degrade gracefully: missing literal values fall back to default selectivities and exhausted
enumeration budgets fall back to the query order of the tables. Degraded estimates are reported via the `EstimationWarning`
and `JoinOrderWarning` warning categories. In contrast, references to unknown tables or columns and inconsistent catalog
statistics are always reported as errors.
"""

from . import (
    advisor,
    catalog,
    joingraph,
    plans,
    planner,
    presets,
    query,
    recommendations,
    selectivity,
    settings,
    util,
)
from ._core import (
    Cardinality,
    ColumnKind,
    ColumnReference,
    Cost,
    IntermediateOperator,
    JoinOperator,
    PhysicalOperator,
    ScanOperator,
    SortKey,
)
from .advisor import PlanningResult, QueryAdvisor, advise
from .catalog import (
    Catalog,
    CatalogError,
    CatalogSnapshot,
    Column,
    Index,
    InvalidCatalogStateError,
    NoPartitionError,
    PartitionRange,
    PartitionScheme,
    Table,
    UnknownColumnError,
    UnknownTableError,
    load_catalog,
    read_catalog_json,
)
from .joingraph import JoinGraph
from .planner import CostEstimator, JoinOrderWarning
from .plans import AccessPath, Bottleneck, BottleneckKind, Plan, PlanStep, PruningFailure
from .query import (
    EmptyQueryError,
    FilterClause,
    FilterOperator,
    JoinClause,
    JoinEdge,
    NormalizedQuery,
    Predicate,
    PredicateKind,
    QueryDescriptor,
    QueryError,
    TypeMismatchError,
    build_query,
    read_query_json,
)
from .recommendations import Recommendation, RecommendationGenerator, RecommendationKind
from .selectivity import EstimationWarning, SelectivityEstimate, SelectivityEstimator
from .settings import AdvisorSettings, read_settings_json

__version__ = "0.1.0"

__all__ = [
    "advisor",
    "catalog",
    "joingraph",
    "plans",
    "planner",
    "presets",
    "query",
    "recommendations",
    "selectivity",
    "settings",
    "util",
    "Cardinality",
    "ColumnKind",
    "ColumnReference",
    "Cost",
    "IntermediateOperator",
    "JoinOperator",
    "PhysicalOperator",
    "ScanOperator",
    "SortKey",
    "PlanningResult",
    "QueryAdvisor",
    "advise",
    "Catalog",
    "CatalogError",
    "CatalogSnapshot",
    "Column",
    "Index",
    "InvalidCatalogStateError",
    "NoPartitionError",
    "PartitionRange",
    "PartitionScheme",
    "Table",
    "UnknownColumnError",
    "UnknownTableError",
    "load_catalog",
    "read_catalog_json",
    "JoinGraph",
    "CostEstimator",
    "JoinOrderWarning",
    "AccessPath",
    "Bottleneck",
    "BottleneckKind",
    "Plan",
    "PlanStep",
    "PruningFailure",
    "EmptyQueryError",
    "FilterClause",
    "FilterOperator",
    "JoinClause",
    "JoinEdge",
    "NormalizedQuery",
    "Predicate",
    "PredicateKind",
    "QueryDescriptor",
    "QueryError",
    "TypeMismatchError",
    "build_query",
    "read_query_json",
    "Recommendation",
    "RecommendationGenerator",
    "RecommendationKind",
    "EstimationWarning",
    "SelectivityEstimate",
    "SelectivityEstimator",
    "AdvisorSettings",
    "read_settings_json",
]
