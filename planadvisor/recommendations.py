"""Turns the bottlenecks of a plan into schema changes that would resolve them.

Recommendations are purely advisory: they are never applied to the catalog. Instead, they are checked against the current
catalog snapshot such that no index or partition is recommended that already exists.
"""
from __future__ import annotations

import collections
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ._core import ColumnReference, SortKey, normalize
from .catalog import CatalogSnapshot, Table
from .plans import Bottleneck, BottleneckKind
from .selectivity import supports_ordering
from .settings import AdvisorSettings
from .util.jsonize import jsondict
from .util.logging import standard_logger


class RecommendationKind(Enum):
    """The schema changes that the advisor can propose."""

    CreateIndex = "create-index"
    CreateCompositeIndex = "create-composite-index"
    AddPartition = "add-partition"
    RefinePredicate = "refine-predicate"

    def __json__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Recommendation:
    """A proposed schema change.

    Attributes
    ----------
    kind : RecommendationKind
        The type of the change
    table : str
        The affected table
    columns : tuple[str, ...]
        The index columns in index order, or the partition key for partition-related recommendations
    score : float
        The expected number of rows that are saved by the change
    ascending : tuple[bool, ...]
        The direction of each index column. Empty for partition-related recommendations.
    boundaries : Optional[tuple[Any, Any]]
        The key range of a new partition, bracketing the literal range of the query. Only set for *add-partition*.
    sources : tuple[BottleneckKind, ...]
        The kinds of bottlenecks that caused the recommendation
    """

    kind: RecommendationKind
    table: str
    columns: tuple[str, ...]
    score: float
    ascending: tuple[bool, ...] = ()
    boundaries: Optional[tuple[Any, Any]] = None
    sources: tuple[BottleneckKind, ...] = ()

    def merge_key(self) -> tuple:
        """Identifies recommendations that describe the same schema change."""
        return (self.kind, normalize(self.table), tuple(normalize(col) for col in self.columns), self.ascending,
                self.boundaries)

    def __json__(self) -> jsondict:
        return {
            "kind": self.kind,
            "table": self.table,
            "columns": list(self.columns),
            "score": self.score,
            "ascending": list(self.ascending),
            "boundaries": list(self.boundaries) if self.boundaries is not None else None,
            "sources": list(self.sources),
        }

    def __str__(self) -> str:
        if self.kind == RecommendationKind.AddPartition:
            low, high = self.boundaries
            return f"{self.kind.value} {self.table}.{self.columns[0]} in [{low}, {high}] (score={self.score:.1f})"
        columns = ", ".join(col if asc else f"{col} DESC" for col, asc in zip(self.columns, self.ascending)) \
            if self.ascending else ", ".join(self.columns)
        return f"{self.kind.value} {self.table}({columns}) (score={self.score:.1f})"


def _sort_key(recommendation: Recommendation) -> tuple:
    return (-recommendation.score, normalize(recommendation.table),
            tuple(normalize(col) for col in recommendation.columns), recommendation.kind.value,
            str(recommendation.boundaries))


class RecommendationGenerator:
    """Derives recommendations from bottlenecks.

    Unindexed filters and joins are resolved by new indexes. If a table has such bottlenecks on multiple columns, a single
    composite index is proposed instead, with columns ordered by their number of distinct values (most selective first).
    Large sorts are resolved by an index that matches the sort order exactly. Missed partition pruning is either resolved
    by new partitions for the key ranges that are not covered by the partitioning scheme, or by refining the predicate
    on the partition key.

    Parameters
    ----------
    catalog : CatalogSnapshot
        The catalog to check the recommendations against
    settings : Optional[AdvisorSettings], optional
        Only used to determine whether progress should be logged
    """

    def __init__(self, catalog: CatalogSnapshot, settings: Optional[AdvisorSettings] = None) -> None:
        self.catalog = catalog
        self.settings = settings if settings is not None else AdvisorSettings()
        self._log = standard_logger(self.settings.verbose)

    def generate(self, bottlenecks: Iterable[Bottleneck]) -> tuple[Recommendation, ...]:
        """Computes the recommendations for a list of bottlenecks.

        Returns
        -------
        tuple[Recommendation, ...]
            The recommendations, ordered by descending score. Ties are broken by table name and columns.
        """
        bottlenecks = list(bottlenecks)
        candidates: list[Recommendation] = []
        candidates.extend(self._index_recommendations(bottlenecks))
        candidates.extend(self._sort_recommendations(bottlenecks))
        candidates.extend(self._partition_recommendations(bottlenecks))

        merged: dict[tuple, Recommendation] = {}
        for candidate in candidates:
            if candidate.score <= 0 or self._exists(candidate):
                self._log("Skipping recommendation", candidate)
                continue
            key = candidate.merge_key()
            previous = merged.get(key)
            if previous is None:
                merged[key] = candidate
                continue
            sources = tuple(sorted(set(previous.sources) | set(candidate.sources), key=lambda kind: kind.value))
            merged[key] = Recommendation(previous.kind, previous.table, previous.columns, previous.score + candidate.score,
                                         previous.ascending, previous.boundaries, sources)

        return tuple(sorted(merged.values(), key=_sort_key))

    def _index_recommendations(self, bottlenecks: Sequence[Bottleneck]) -> list[Recommendation]:
        affected: dict[str, list[Bottleneck]] = collections.defaultdict(list)
        for bottleneck in bottlenecks:
            if bottleneck.kind in (BottleneckKind.UnindexedFilter, BottleneckKind.UnindexedJoin):
                affected[normalize(bottleneck.table)].append(bottleneck)

        recommendations = []
        for table_key, table_bottlenecks in affected.items():
            table = self.catalog.get_table(table_key)
            columns = list(dict.fromkeys(table.column(bottleneck.column).name for bottleneck in table_bottlenecks))
            score = sum(bottleneck.severity for bottleneck in table_bottlenecks)
            sources = tuple(sorted({bottleneck.kind for bottleneck in table_bottlenecks}, key=lambda kind: kind.value))

            if len(columns) == 1:
                recommendations.append(Recommendation(RecommendationKind.CreateIndex, table.name, tuple(columns), score,
                                                      (True,), sources=sources))
                continue

            columns.sort(key=lambda col: (-table.column(col).distinct_values, normalize(col)))
            recommendations.append(Recommendation(RecommendationKind.CreateCompositeIndex, table.name, tuple(columns),
                                                  score, tuple(True for _ in columns), sources=sources))
        return recommendations

    def _sort_recommendations(self, bottlenecks: Sequence[Bottleneck]) -> list[Recommendation]:
        recommendations = []
        for bottleneck in bottlenecks:
            if bottleneck.kind != BottleneckKind.LargeSort:
                continue
            table = self.catalog.get_table(bottleneck.table)
            columns = tuple(table.column(column).name for column in bottleneck.columns)
            ascending = bottleneck.ascending if bottleneck.ascending else tuple(True for _ in columns)
            recommendations.append(Recommendation(RecommendationKind.CreateIndex, table.name, columns,
                                                  bottleneck.severity, ascending, sources=(bottleneck.kind,)))
        return recommendations

    def _partition_recommendations(self, bottlenecks: Sequence[Bottleneck]) -> list[Recommendation]:
        recommendations = []
        for bottleneck in bottlenecks:
            if bottleneck.kind != BottleneckKind.MissedPartitionPruning:
                continue
            table = self.catalog.get_table(bottleneck.table)
            key = table.column(bottleneck.column).name
            if not bottleneck.uncovered:
                recommendations.append(Recommendation(RecommendationKind.RefinePredicate, table.name, (key,),
                                                      bottleneck.severity, sources=(bottleneck.kind,)))
                continue
            score = bottleneck.severity / len(bottleneck.uncovered)
            for interval in bottleneck.uncovered:
                recommendations.append(Recommendation(RecommendationKind.AddPartition, table.name, (key,), score,
                                                      boundaries=tuple(interval), sources=(bottleneck.kind,)))
        return recommendations

    def _exists(self, recommendation: Recommendation) -> bool:
        """Checks, whether the catalog already provides the recommended index or partition."""
        table = self.catalog.get_table(recommendation.table)
        match recommendation.kind:
            case RecommendationKind.CreateIndex | RecommendationKind.CreateCompositeIndex:
                return self._index_exists(table, recommendation)
            case RecommendationKind.AddPartition:
                scheme = table.partitioning
                return scheme is not None and scheme.covers(*recommendation.boundaries)
            case _:
                return False

    def _index_exists(self, table: Table, recommendation: Recommendation) -> bool:
        if BottleneckKind.LargeSort not in recommendation.sources:
            return any(index.has_prefix(recommendation.columns) for index in table.indexes)
        sort_keys = [SortKey(ColumnReference(table.name, column), ascending)
                     for column, ascending in zip(recommendation.columns, recommendation.ascending)]
        return any(supports_ordering(index, sort_keys) for index in table.indexes)
