"""Selectivity estimation and index applicability based on the leftmost-prefix rule.

All estimates are derived from the distinct value counts of the catalog. The estimator does not know about histograms or
most common values, range predicates therefore use a fixed default fraction.
"""
from __future__ import annotations

import warnings
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Optional

from ._core import ColumnReference, SortKey, normalize
from .catalog import CatalogSnapshot, Index, InvalidCatalogStateError
from .query import Predicate, PredicateKind
from .settings import AdvisorSettings
from .util.jsonize import jsondict


class EstimationWarning(UserWarning):
    """Indicates that an estimate is based on incomplete statistics."""
    pass


@dataclass(frozen=True)
class SelectivityEstimate:
    """The selectivity of a single predicate along with the index that can be used to evaluate it.

    Attributes
    ----------
    predicate : Predicate
        The estimated predicate
    selectivity : float
        The fraction of rows that pass the predicate, in *[0, 1]*
    index : Optional[Index]
        The index that can evaluate the predicate according to the leftmost-prefix rule. *None* indicates an index miss.
    """

    predicate: Predicate
    selectivity: float
    index: Optional[Index] = None

    @property
    def index_miss(self) -> bool:
        return self.index is None

    def __json__(self) -> jsondict:
        return {"predicate": self.predicate, "selectivity": self.selectivity, "index": self.index,
                "index_miss": self.index_miss}


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def supports_ordering(index: Index, sort_keys: Sequence[SortKey]) -> bool:
    """Checks, whether scanning an index produces tuples in the order of the given sort keys.

    The leading index columns have to match the sort columns exactly. The directions either have to match all sort keys,
    or have to be all reversed (in which case the index is scanned backwards).
    """
    if not sort_keys or not index.has_prefix([key.column.name for key in sort_keys]):
        return False
    index_directions = index.ascending[:len(sort_keys)]
    requested = tuple(key.ascending for key in sort_keys)
    reversed_directions = tuple(not asc for asc in requested)
    return index_directions == requested or index_directions == reversed_directions


def supports_grouping(index: Index, columns: Sequence[ColumnReference]) -> bool:
    """Checks, whether scanning an index produces tuples that are grouped by the given columns.

    Grouping does not require a specific order of the grouping columns, they just need to form the leading columns of the
    index.
    """
    group_columns = {normalize(col.name) for col in columns}
    if not group_columns or len(group_columns) > len(index.columns):
        return False
    return set(index.leading(len(group_columns))) == group_columns


class SelectivityEstimator:
    """Computes predicate selectivities and determines the indexes that can evaluate them.

    Parameters
    ----------
    catalog : CatalogSnapshot
        The catalog that provides distinct value counts and indexes
    settings : Optional[AdvisorSettings], optional
        The cost model parameters. Uses the default settings if omitted.
    """

    def __init__(self, catalog: CatalogSnapshot, settings: Optional[AdvisorSettings] = None) -> None:
        self.catalog = catalog
        self.settings = settings if settings is not None else AdvisorSettings()

    def distinct_values(self, column: ColumnReference) -> int:
        """Provides the number of distinct values of a column.

        Raises
        ------
        InvalidCatalogStateError
            If the catalog does not contain a positive distinct value count and missing statistics are not tolerated
        """
        distinct_values = self.catalog.column_of(column).distinct_values
        if distinct_values > 0:
            return distinct_values
        if not self.settings.tolerate_missing_statistics:
            raise InvalidCatalogStateError(f"Column {column} has no distinct value statistics ({distinct_values})")
        warnings.warn(f"Missing distinct value statistics for column {column}, assuming 1", category=EstimationWarning)
        return 1

    def selectivity(self, predicate: Predicate) -> float:
        """Estimates the fraction of rows that pass a predicate.

        Equality predicates match *hint / distinct values* of the rows, where the hint is the number of literal constants
        (1 if unknown). Membership predicates match *n / distinct values* for *n* literal constants, or the default
        selectivity if *n* is unknown. Range predicates always use the default selectivity.
        """
        match predicate.kind:
            case PredicateKind.Equality:
                hint = predicate.literal_count()
                hint = hint if hint is not None else 1
                return _clamp(hint / self.distinct_values(predicate.column))
            case PredicateKind.Membership:
                n_literals = predicate.literal_count()
                if n_literals is None:
                    return _clamp(self.settings.default_selectivity)
                return _clamp(n_literals / self.distinct_values(predicate.column))
            case _:
                return _clamp(self.settings.default_selectivity)

    def conjunctive_selectivity(self, predicates: Iterable[Predicate]) -> float:
        """Estimates the selectivity of a conjunction of predicates, assuming independence."""
        selectivity = 1.0
        for predicate in predicates:
            selectivity *= self.selectivity(predicate)
        return selectivity

    def matched_prefix(self, index: Index, predicates: Iterable[Predicate]) -> tuple[Predicate, ...]:
        """Determines the predicates that can be evaluated by an index according to the leftmost-prefix rule.

        The index columns are traversed in order. A column with an equality predicate is consumed and the traversal
        continues with the next column. A column with range or membership predicates is consumed as well, but ends the
        traversal. A column without any predicate ends the traversal immediately.

        Returns
        -------
        tuple[Predicate, ...]
            The usable predicates. Empty if the first index column is not restricted.
        """
        predicates = list(predicates)
        matched: list[Predicate] = []
        for column in index.normalized_columns():
            column_predicates = [pred for pred in predicates if normalize(pred.column.name) == column]
            if not column_predicates:
                break
            matched.extend(column_predicates)
            if not any(pred.kind == PredicateKind.Equality for pred in column_predicates):
                break
        return tuple(matched)

    def prefix_selectivity(self, index: Index, predicates: Iterable[Predicate]) -> float:
        """Estimates the fraction of rows that an index scan has to visit."""
        return self.conjunctive_selectivity(self.matched_prefix(index, predicates))

    def applicable_index(self, predicate: Predicate, predicates: Iterable[Predicate]) -> Optional[Index]:
        """Determines the index that can evaluate a predicate, given all other predicates on the same table.

        If multiple indexes qualify, the index that requires the fewest leading columns is chosen. Remaining ties are
        broken by the catalog order of the indexes.

        Returns
        -------
        Optional[Index]
            The index, or *None* if the predicate is an index miss
        """
        table_predicates = [pred for pred in predicates if pred.column.belongs_to(predicate.table)]
        if predicate not in table_predicates:
            table_predicates.append(predicate)
        column = normalize(predicate.column.name)

        best_index, best_position = None, None
        for index in self.catalog.get_table(predicate.table).indexes:
            if predicate not in self.matched_prefix(index, table_predicates):
                continue
            position = index.normalized_columns().index(column)
            if best_position is None or position < best_position:
                best_index, best_position = index, position
        return best_index

    def estimate(self, predicate: Predicate, predicates: Iterable[Predicate] = ()) -> SelectivityEstimate:
        """Computes selectivity and index applicability of a predicate in the context of the other `predicates`."""
        return SelectivityEstimate(predicate, self.selectivity(predicate), self.applicable_index(predicate, predicates))

    def index_for_join(self, column: ColumnReference, predicates: Iterable[Predicate] = ()) -> Optional[Index]:
        """Determines an index that supports lookups on a join column.

        An index qualifies if the join column is its first column, or if all columns in front of the join column are bound
        by equality predicates of the table. Indexes with fewer leading columns are preferred, then catalog order.
        """
        equality_columns = {normalize(pred.column.name) for pred in predicates
                            if pred.column.belongs_to(column.table) and pred.kind == PredicateKind.Equality}
        join_column = normalize(column.name)

        best_index, best_position = None, None
        for index in self.catalog.get_table(column.table).indexes:
            index_columns = index.normalized_columns()
            if join_column not in index_columns:
                continue
            position = index_columns.index(join_column)
            if not all(col in equality_columns for col in index_columns[:position]):
                continue
            if best_position is None or position < best_position:
                best_index, best_position = index, position
        return best_index

    def index_for_ordering(self, table: str, sort_keys: Sequence[SortKey]) -> Optional[Index]:
        """Determines an index that produces tuples in the requested order (see `supports_ordering`)."""
        if not sort_keys or not all(key.column.belongs_to(table) for key in sort_keys):
            return None
        return next((index for index in self.catalog.get_table(table).indexes if supports_ordering(index, sort_keys)), None)

    def index_for_grouping(self, table: str, columns: Sequence[ColumnReference]) -> Optional[Index]:
        """Determines an index that produces tuples grouped by the requested columns (see `supports_grouping`)."""
        if not columns or not all(col.belongs_to(table) for col in columns):
            return None
        return next((index for index in self.catalog.get_table(table).indexes if supports_grouping(index, columns)), None)
