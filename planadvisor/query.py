"""Query descriptors and their canonical, validated form.

The advisor does not parse SQL. Instead, callers describe their queries by means of a `QueryDescriptor`, which lists the
involved tables, filter and join clauses as well as ordering and grouping requirements. `build_query` validates such a
descriptor against a catalog snapshot and transforms it into a `NormalizedQuery`, which is the input of all estimation
steps.
"""
from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ._core import ColumnReference, SortKey, normalize
from .catalog import CatalogSnapshot, coerce_literal
from .util import collections as collection_utils
from .util.jsonize import jsondict


class QueryError(ValueError):
    """Base class for all errors that are caused by malformed query descriptors."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)


class TypeMismatchError(QueryError):
    """Indicates that a join connects columns of incompatible kinds.

    Parameters
    ----------
    left : ColumnReference
        The first join column
    right : ColumnReference
        The second join column
    message : str, optional
        Additional details
    """

    def __init__(self, left: ColumnReference, right: ColumnReference, message: str = "") -> None:
        msg = message if message else f"Cannot join {left} with {right}: incompatible column kinds"
        super().__init__(msg)
        self.left = left
        self.right = right


class EmptyQueryError(QueryError):
    """Indicates that a query does not reference any table."""

    def __init__(self, message: str = "Query does not reference any tables") -> None:
        super().__init__(message)


class PredicateKind(Enum):
    """Coarse classification of filter operators, which determines the selectivity formula."""

    Equality = "equality"
    Range = "range"
    Membership = "membership"

    def __json__(self) -> str:
        return self.value


class FilterOperator(Enum):
    """The filter operators that can appear in a query descriptor."""

    Equal = "="
    Less = "<"
    LessEqual = "<="
    Greater = ">"
    GreaterEqual = ">="
    Between = "BETWEEN"
    In = "IN"

    @property
    def kind(self) -> PredicateKind:
        if self == FilterOperator.Equal:
            return PredicateKind.Equality
        if self == FilterOperator.In:
            return PredicateKind.Membership
        return PredicateKind.Range

    @staticmethod
    def parse(text: str | FilterOperator) -> FilterOperator:
        """Determines the operator that corresponds to its SQL symbol, e.g. ``"<="`` or ``"between"``.

        Raises
        ------
        QueryError
            If the text is not a supported operator
        """
        if isinstance(text, FilterOperator):
            return text
        try:
            return FilterOperator(text.strip().upper())
        except ValueError as e:
            raise QueryError(f"Unsupported filter operator: '{text}'") from e

    def __json__(self) -> str:
        return self.value


@dataclass(frozen=True)
class FilterClause:
    """A filter clause of a query descriptor, e.g. *Bookings.user_id = 42*.

    Attributes
    ----------
    column : ColumnReference
        The filtered column
    operator : FilterOperator
        The comparison
    values : tuple[Any, ...]
        The literal values of the comparison, if they are known. *BETWEEN* expects two values, *IN* any number of values
        and all other operators at most one value.
    cardinality_hint : Optional[int]
        The number of literal constants the filter matches against. If omitted, the number of `values` is used. If neither
        is present, the selectivity is estimated using default fractions.
    """

    column: ColumnReference
    operator: FilterOperator
    values: tuple[Any, ...] = ()
    cardinality_hint: Optional[int] = None

    @staticmethod
    def of(column: ColumnReference | str, operator: FilterOperator | str, *values: Any,
           cardinality_hint: Optional[int] = None) -> FilterClause:
        """Creates a new filter clause. Columns can be given as ``"table.column"`` strings and operators as symbols."""
        column = ColumnReference.parse(column) if isinstance(column, str) else column
        return FilterClause(column, FilterOperator.parse(operator), tuple(values), cardinality_hint)


@dataclass(frozen=True)
class JoinClause:
    """An equality join clause of a query descriptor, e.g. *Bookings.user_id = Users.user_id*."""

    left: ColumnReference
    right: ColumnReference

    @staticmethod
    def of(left: ColumnReference | str, right: ColumnReference | str) -> JoinClause:
        left = ColumnReference.parse(left) if isinstance(left, str) else left
        right = ColumnReference.parse(right) if isinstance(right, str) else right
        return JoinClause(left, right)


@dataclass(frozen=True)
class QueryDescriptor:
    """Structured description of a query, as supplied by the caller of the advisor.

    Attributes
    ----------
    tables : tuple[str, ...]
        The tables of the query. Tables that are only mentioned in clauses are added automatically. The order of the tables
        is used to break ties during join ordering.
    filters : tuple[FilterClause, ...]
        The filter predicates. All filters are assumed to be combined by conjunction.
    joins : tuple[JoinClause, ...]
        The equality join predicates
    order_by : tuple[SortKey, ...]
        The requested output ordering, if any
    group_by : tuple[ColumnReference, ...]
        The grouping columns, if any
    projection : Optional[tuple[ColumnReference, ...]]
        The columns that are selected by the query. *None* denotes all columns (*SELECT \\**), which rules out index-only
        scans.
    """

    tables: tuple[str, ...] = ()
    filters: tuple[FilterClause, ...] = ()
    joins: tuple[JoinClause, ...] = ()
    order_by: tuple[SortKey, ...] = ()
    group_by: tuple[ColumnReference, ...] = ()
    projection: Optional[tuple[ColumnReference, ...]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", tuple(collection_utils.enlist(self.tables)))
        object.__setattr__(self, "filters", tuple(self.filters))
        object.__setattr__(self, "joins", tuple(self.joins))
        object.__setattr__(self, "order_by", tuple(SortKey.of(key) if isinstance(key, (str, ColumnReference)) else key
                                                   for key in self.order_by))
        object.__setattr__(self, "group_by", tuple(ColumnReference.parse(col) if isinstance(col, str) else col
                                                   for col in self.group_by))
        if self.projection is not None:
            object.__setattr__(self, "projection", tuple(ColumnReference.parse(col) if isinstance(col, str) else col
                                                         for col in self.projection))


@dataclass(frozen=True)
class Predicate:
    """A validated filter predicate on a single column.

    Predicates are immutable and always refer to columns in their catalog spelling. Literal values are already converted
    according to the column kind.
    """

    column: ColumnReference
    operator: FilterOperator
    values: tuple[Any, ...] = ()
    cardinality_hint: Optional[int] = None

    @property
    def kind(self) -> PredicateKind:
        return self.operator.kind

    @property
    def table(self) -> str:
        return self.column.table

    def literal_count(self) -> Optional[int]:
        """Provides the number of literal constants the predicate compares against, or *None* if this is unknown."""
        if self.cardinality_hint is not None:
            return self.cardinality_hint
        return len(self.values) if self.values else None

    def bounds(self) -> tuple[Optional[Any], Optional[Any]]:
        """Determines the interval *[low, high]* of column values that can satisfy the predicate.

        Unbounded or unknown ends are *None*. For *IN* predicates the interval spans the smallest and the largest value.
        A strict *>* is treated like its inclusive counterpart. Whether a strict *<* excludes the upper end is reported by
        `includes_upper_bound`.
        """
        if not self.values:
            return None, None
        match self.operator:
            case FilterOperator.Equal:
                return self.values[0], self.values[0]
            case FilterOperator.Between:
                return self.values[0], self.values[1]
            case FilterOperator.In:
                return min(self.values), max(self.values)
            case FilterOperator.Less | FilterOperator.LessEqual:
                return None, self.values[0]
            case FilterOperator.Greater | FilterOperator.GreaterEqual:
                return self.values[0], None
        return None, None

    def includes_upper_bound(self) -> bool:
        """Checks, whether the upper end of the `bounds` interval can itself satisfy the predicate."""
        return self.operator != FilterOperator.Less

    def __json__(self) -> jsondict:
        return {
            "column": self.column,
            "operator": self.operator,
            "values": list(self.values),
            "cardinality_hint": self.cardinality_hint,
        }

    def __str__(self) -> str:
        if self.operator == FilterOperator.Between and len(self.values) == 2:
            return f"{self.column} BETWEEN {self.values[0]!r} AND {self.values[1]!r}"
        if self.operator == FilterOperator.In:
            values = ", ".join(repr(v) for v in self.values) if self.values else "?"
            return f"{self.column} IN ({values})"
        value = repr(self.values[0]) if self.values else "?"
        return f"{self.column} {self.operator.value} {value}"


@dataclass(frozen=True)
class JoinEdge:
    """An equality join between two columns of different tables.

    Join edges are symmetric: the endpoints are stored in canonical (sorted) order, so *a = b* and *b = a* denote the same
    edge. Use `between` to create edges.
    """

    left: ColumnReference
    right: ColumnReference

    @staticmethod
    def between(first: ColumnReference, second: ColumnReference) -> JoinEdge:
        return JoinEdge(first, second) if first <= second else JoinEdge(second, first)

    def tables(self) -> tuple[str, str]:
        return self.left.table, self.right.table

    def column_of(self, table: str) -> ColumnReference:
        """Provides the join column that belongs to a specific table.

        Raises
        ------
        ValueError
            If the table is not an endpoint of the edge
        """
        if self.left.belongs_to(table):
            return self.left
        if self.right.belongs_to(table):
            return self.right
        raise ValueError(f"Table '{table}' is not part of join {self}")

    def connects(self, first: Iterable[str], second: Iterable[str]) -> bool:
        """Checks, whether the edge links a table of the `first` group with a table of the `second` group."""
        first = {normalize(tab) for tab in first}
        second = {normalize(tab) for tab in second}
        left, right = normalize(self.left.table), normalize(self.right.table)
        return (left in first and right in second) or (left in second and right in first)

    def __json__(self) -> jsondict:
        return {"left": self.left, "right": self.right}

    def __str__(self) -> str:
        return f"{self.left} = {self.right}"


@dataclass(frozen=True)
class NormalizedQuery:
    """The canonical form of a query descriptor.

    All tables and columns are validated against the catalog and use the catalog spelling. Duplicate predicates and joins
    are removed. Tables retain the order of the descriptor, which serves as the tie-breaker in join ordering.
    """

    tables: tuple[str, ...]
    predicates: tuple[Predicate, ...] = ()
    joins: tuple[JoinEdge, ...] = ()
    ordering: tuple[SortKey, ...] = ()
    grouping: tuple[ColumnReference, ...] = ()
    projection: Optional[tuple[ColumnReference, ...]] = None

    def filters_for(self, table: str) -> tuple[Predicate, ...]:
        """Provides all filter predicates on a specific table."""
        return tuple(pred for pred in self.predicates if pred.column.belongs_to(table))

    def joins_between(self, first: Iterable[str], second: Iterable[str]) -> tuple[JoinEdge, ...]:
        """Provides all join edges that link a table from the `first` group with a table from the `second` group."""
        first, second = list(first), list(second)
        return tuple(edge for edge in self.joins if edge.connects(first, second))

    def joins_of(self, table: str) -> tuple[JoinEdge, ...]:
        return tuple(edge for edge in self.joins if edge.left.belongs_to(table) or edge.right.belongs_to(table))

    def columns_of(self, table: str) -> set[ColumnReference]:
        """Provides all columns of a table that are used anywhere in the query.

        If the query does not specify a projection, only the columns from clauses are included. Callers that need to reason
        about all accessed columns have to check `projection` themselves.
        """
        used = [pred.column for pred in self.predicates]
        used += collection_utils.set_union((edge.left, edge.right) for edge in self.joins)
        used += [key.column for key in self.ordering]
        used += list(self.grouping)
        used += list(self.projection) if self.projection else []
        return {col for col in used if col.belongs_to(table)}

    def position(self, table: str) -> int:
        """Provides the index of a table in the query order."""
        key = normalize(table)
        for idx, candidate in enumerate(self.tables):
            if normalize(candidate) == key:
                return idx
        raise ValueError(f"Table '{table}' is not part of the query")

    def __json__(self) -> jsondict:
        return {
            "tables": list(self.tables),
            "predicates": list(self.predicates),
            "joins": list(self.joins),
            "ordering": list(self.ordering),
            "grouping": list(self.grouping),
            "projection": list(self.projection) if self.projection is not None else None,
        }


def _validate_values(clause: FilterClause) -> None:
    n_values = len(clause.values)
    if clause.operator == FilterOperator.Between and n_values not in (0, 2):
        raise QueryError(f"BETWEEN on {clause.column} requires exactly two values, got {n_values}")
    if clause.operator not in (FilterOperator.Between, FilterOperator.In) and n_values > 1:
        raise QueryError(f"Operator {clause.operator.value} on {clause.column} accepts at most one value")
    if clause.cardinality_hint is not None and clause.cardinality_hint < 0:
        raise QueryError(f"Negative cardinality hint for filter on {clause.column}")


def _build_predicate(clause: FilterClause, catalog: CatalogSnapshot) -> Predicate:
    _validate_values(clause)
    column = catalog.resolve(clause.column)
    kind = catalog.column_of(column).kind
    try:
        values = tuple(coerce_literal(value, kind) for value in clause.values)
    except ValueError as e:
        raise QueryError(f"Invalid literal for {column}: {e}") from e
    if any(value is None for value in values):
        raise QueryError(f"NULL literal in filter on {column}, comparisons with NULL never match")
    if clause.operator == FilterOperator.Between and values and values[1] < values[0]:
        raise QueryError(f"BETWEEN on {column} has an inverted range: {values[0]!r} > {values[1]!r}")
    return Predicate(column, clause.operator, values, clause.cardinality_hint)


def _build_join(clause: JoinClause, catalog: CatalogSnapshot) -> JoinEdge:
    left, right = catalog.resolve(clause.left), catalog.resolve(clause.right)
    if left == right:
        raise TypeMismatchError(left, right, f"Join {left} = {right} compares a column with itself")
    if normalize(left.table) == normalize(right.table):
        raise QueryError(f"Join {left} = {right} does not connect two different tables")
    left_kind, right_kind = catalog.column_of(left).kind, catalog.column_of(right).kind
    if left_kind != right_kind:
        raise TypeMismatchError(left, right,
                                f"Cannot join {left} ({left_kind.value}) with {right} ({right_kind.value})")
    return JoinEdge.between(left, right)


def _unique(items: Iterable[Any]) -> tuple[Any, ...]:
    return tuple(dict.fromkeys(items))


def build_query(descriptor: QueryDescriptor, catalog: CatalogSnapshot) -> NormalizedQuery:
    """Validates a query descriptor and transforms it into its canonical form.

    This is a purely structural transformation, no estimation takes place.

    Parameters
    ----------
    descriptor : QueryDescriptor
        The query
    catalog : CatalogSnapshot
        The catalog to resolve tables and columns against

    Returns
    -------
    NormalizedQuery
        The validated query

    Raises
    ------
    EmptyQueryError
        If the query does not reference any table
    UnknownTableError
        If the query references a table that is not part of the catalog
    UnknownColumnError
        If the query references a column that does not exist in its table
    TypeMismatchError
        If a join connects columns of different kinds
    QueryError
        If filters or joins are otherwise malformed
    """
    referenced_tables = list(descriptor.tables)
    referenced_tables += [clause.column.table for clause in descriptor.filters]
    for clause in descriptor.joins:
        referenced_tables += [clause.left.table, clause.right.table]
    referenced_tables += [key.column.table for key in descriptor.order_by]
    referenced_tables += [column.table for column in descriptor.group_by]
    if not referenced_tables:
        raise EmptyQueryError()

    tables = _unique(catalog.get_table(table).name for table in referenced_tables)
    predicates = _unique(_build_predicate(clause, catalog) for clause in descriptor.filters)
    joins = _unique(_build_join(clause, catalog) for clause in descriptor.joins)
    ordering = _unique(SortKey(catalog.resolve(key.column), key.ascending) for key in descriptor.order_by)
    grouping = _unique(catalog.resolve(column) for column in descriptor.group_by)
    projection = (_unique(catalog.resolve(column) for column in descriptor.projection)
                  if descriptor.projection is not None else None)

    known_tables = {normalize(table) for table in tables}
    if projection is not None:
        stray = [col for col in projection if normalize(col.table) not in known_tables]
        if stray:
            raise QueryError(f"Projection references tables that are not part of the query: {stray}")

    return NormalizedQuery(tables, predicates, joins, ordering, grouping, projection)


def _parse_column(value: Any) -> ColumnReference:
    if isinstance(value, Mapping):
        return ColumnReference(value["table"], value["name"])
    return ColumnReference.parse(value)


def _parse_filter(data: Mapping[str, Any]) -> FilterClause:
    values = data.get("values")
    if values is None:
        values = [data["value"]] if "value" in data else []
    hint = data.get("cardinality_hint")
    return FilterClause(_parse_column(data["column"]), FilterOperator.parse(data.get("operator", "=")),
                        tuple(collection_utils.enlist(values)), int(hint) if hint is not None else None)


def _parse_join(data: Mapping[str, Any] | Sequence[Any]) -> JoinClause:
    if isinstance(data, Mapping):
        return JoinClause(_parse_column(data["left"]), _parse_column(data["right"]))
    left, right = data
    return JoinClause(_parse_column(left), _parse_column(right))


def _parse_sort_key(data: Mapping[str, Any] | str) -> SortKey:
    if isinstance(data, Mapping):
        return SortKey(_parse_column(data["column"]), bool(data.get("ascending", True)))
    return SortKey.of(data)


def read_query_json(source: str | Mapping[str, Any]) -> QueryDescriptor:
    """Creates a query descriptor from JSON data (either raw text or an already decoded dictionary).

    The expected format is

    .. code-block:: json

        {"tables": ["Bookings", "Users"],
         "filters": [{"column": "Bookings.user_id", "operator": "=", "values": [42]},
                     {"column": "Bookings.start_date", "operator": "BETWEEN",
                      "values": ["2025-03-01", "2025-03-31"]}],
         "joins": [{"left": "Bookings.user_id", "right": "Users.user_id"}],
         "order_by": [{"column": "Bookings.start_date", "ascending": false}],
         "group_by": ["Bookings.status"],
         "projection": ["Bookings.booking_id"]}

    All keys are optional. Columns can also be given as ``{"table": ..., "name": ...}`` objects and joins as two-element
    lists.

    Raises
    ------
    QueryError
        If the data is malformed
    """
    data = json.loads(source) if isinstance(source, str) else source
    try:
        projection = data.get("projection")
        return QueryDescriptor(
            tables=tuple(collection_utils.enlist(data.get("tables", []))),
            filters=tuple(_parse_filter(clause) for clause in data.get("filters", [])),
            joins=tuple(_parse_join(clause) for clause in data.get("joins", [])),
            order_by=tuple(_parse_sort_key(key) for key in data.get("order_by", [])),
            group_by=tuple(_parse_column(col) for col in collection_utils.enlist(data.get("group_by", []))),
            projection=tuple(_parse_column(col) for col in projection) if projection is not None else None,
        )
    except (KeyError, TypeError, ValueError) as e:
        if isinstance(e, QueryError):
            raise
        raise QueryError(f"Malformed query description: {e}") from e
