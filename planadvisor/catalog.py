"""The catalog provides all schema information the advisor bases its estimates on.

The catalog is modelled in two layers: a `CatalogSnapshot` is an immutable collection of `Table` objects (including their
columns, indexes and partitioning). A `Catalog` merely holds the current snapshot and replaces it as a whole whenever the
metadata is refreshed. Planning always operates on a single snapshot, which guarantees that concurrent planning calls
observe a consistent state from start to finish, even if the catalog is reloaded in the meantime.

Catalog contents are usually obtained from a structured description (see `load_catalog`), e.g. derived from DDL files or
exported from a running database system. The advisor never parses SQL text itself.
"""
from __future__ import annotations

import datetime
import json
import threading
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from ._core import ColumnKind, ColumnReference, normalize
from .util.jsonize import jsondict


class CatalogError(ValueError):
    """Base class for all errors that are caused by missing or inconsistent catalog information."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)


class UnknownTableError(CatalogError):
    """Indicates that a table is referenced which is not part of the catalog.

    Parameters
    ----------
    table : str
        The name of the missing table
    """

    def __init__(self, table: str) -> None:
        super().__init__(f"Unknown table: '{table}'")
        self.table = table


class UnknownColumnError(CatalogError):
    """Indicates that a column is referenced which does not exist in its table.

    Parameters
    ----------
    table : str
        The table that was searched
    column : str
        The name of the missing column
    """

    def __init__(self, table: str, column: str) -> None:
        super().__init__(f"Unknown column '{column}' in table '{table}'")
        self.table = table
        self.column = column


class InvalidCatalogStateError(CatalogError):
    """Indicates that the catalog contents violate one of its integrity constraints.

    Examples include negative row counts, missing distinct value statistics, overlapping partitions or duplicate indexes.
    These faults are fatal to planning because no meaningful estimate can be derived from them.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)


class NoPartitionError(LookupError):
    """Indicates that a partition key value does not belong to any partition of its table.

    Parameters
    ----------
    key : str
        The partition key column
    value : Any
        The value that could not be located
    """

    def __init__(self, key: str, value: Any) -> None:
        super().__init__(f"No partition of key '{key}' contains value {value!r}")
        self.key = key
        self.value = value


def coerce_literal(value: Any, kind: ColumnKind) -> Any:
    """Converts a literal value into the Python type that corresponds to a column kind.

    Dates are accepted as `datetime.date` objects or as ISO-formatted strings. Numeric values are accepted as numbers or
    numeric strings. Booleans are accepted as `bool` or as the strings *true* and *false*. Text and UUID values are
    converted to their string representation, such that all literals of a column remain comparable with each other.

    Raises
    ------
    ValueError
        If the value cannot be interpreted for the given kind.
    """
    if value is None:
        return None
    match kind:
        case ColumnKind.Date:
            if isinstance(value, datetime.datetime):
                return value.date()
            if isinstance(value, datetime.date):
                return value
            if isinstance(value, str):
                return datetime.date.fromisoformat(value.strip())
            raise ValueError(f"Cannot interpret {value!r} as a date")
        case ColumnKind.Numeric:
            if isinstance(value, bool):
                raise ValueError(f"Cannot interpret {value!r} as a number")
            if isinstance(value, (int, float)):
                return value
            if isinstance(value, str):
                try:
                    return int(value)
                except ValueError:
                    return float(value)
            raise ValueError(f"Cannot interpret {value!r} as a number")
        case ColumnKind.Boolean:
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in ("true", "false"):
                return value.strip().lower() == "true"
            raise ValueError(f"Cannot interpret {value!r} as a boolean")
        case _:
            return str(value)


@dataclass(frozen=True)
class Column:
    """A column of a catalog table.

    Attributes
    ----------
    name : str
        The column name, unique within its table
    kind : ColumnKind
        The data kind of the column
    nullable : bool
        Whether the column may contain *NULL* values
    distinct_values : int
        Estimated number of distinct values. 0 indicates missing statistics, which is rejected during estimation unless
        missing statistics are explicitly tolerated.
    """

    name: str
    kind: ColumnKind
    nullable: bool = True
    distinct_values: int = 0

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidCatalogStateError("Column name is required")
        if self.distinct_values < 0:
            raise InvalidCatalogStateError(
                f"Column '{self.name}' has a negative distinct value count: {self.distinct_values}"
            )

    def __json__(self) -> jsondict:
        return {
            "name": self.name,
            "kind": self.kind,
            "nullable": self.nullable,
            "distinct_values": self.distinct_values,
        }


@dataclass(frozen=True)
class Index:
    """A (possibly composite) B-tree index.

    The order of the index columns matters: an index can only be used for a contiguous prefix of its columns, starting at
    the first one (leftmost-prefix rule).

    Attributes
    ----------
    columns : tuple[str, ...]
        The indexed columns, in index order
    unique : bool
        Whether the index enforces uniqueness (e.g. primary keys)
    ascending : tuple[bool, ...]
        The sort direction of each index column. Defaults to ascending for all columns.
    name : str
        An optional index name. It is informational only, indexes are identified by their columns.
    """

    columns: tuple[str, ...]
    unique: bool = False
    ascending: tuple[bool, ...] = ()
    name: str = ""

    def __post_init__(self) -> None:
        columns = tuple(self.columns)
        if not columns:
            raise InvalidCatalogStateError("Index requires at least one column")
        normalized = [normalize(col) for col in columns]
        if len(set(normalized)) != len(normalized):
            raise InvalidCatalogStateError(f"Index contains duplicate columns: {columns}")
        ascending = tuple(self.ascending) if self.ascending else tuple(True for _ in columns)
        if len(ascending) != len(columns):
            raise InvalidCatalogStateError(f"Index directions do not match the index columns: {columns}")
        object.__setattr__(self, "columns", columns)
        object.__setattr__(self, "ascending", ascending)

    def normalized_columns(self) -> tuple[str, ...]:
        """Provides the index columns in normalized spelling."""
        return tuple(normalize(col) for col in self.columns)

    def leading(self, n: int) -> tuple[str, ...]:
        """Provides the first `n` (normalized) index columns."""
        return self.normalized_columns()[:n]

    def has_prefix(self, columns: Sequence[str]) -> bool:
        """Checks, whether the given columns form a prefix of this index (in exactly this order)."""
        columns = tuple(normalize(col) for col in columns)
        return 0 < len(columns) <= len(self.columns) and self.leading(len(columns)) == columns

    def __json__(self) -> jsondict:
        return {
            "name": self.name,
            "columns": [{"name": col, "ascending": asc} for col, asc in zip(self.columns, self.ascending)],
            "unique": self.unique,
        }

    def __str__(self) -> str:
        cols = ", ".join(col if asc else f"{col} DESC" for col, asc in zip(self.columns, self.ascending))
        return f"{self.name or 'INDEX'}({cols})"


@dataclass(frozen=True)
class PartitionRange:
    """A single range partition, containing all key values in the half-open interval *[lower, upper)*.

    Attributes
    ----------
    lower : Any
        The smallest key value of the partition (inclusive)
    upper : Any
        The first key value after the partition (exclusive)
    name : str
        An optional partition name, e.g. the name of the child table
    row_count : Optional[int]
        The number of rows in the partition. If unknown, the rows of the table are distributed evenly among all partitions
        without explicit row counts.
    """

    lower: Any
    upper: Any
    name: str = ""
    row_count: Optional[int] = None

    def contains(self, value: Any) -> bool:
        """Checks, whether a key value belongs to this partition."""
        return self.lower <= value < self.upper

    def overlaps(self, low: Any, high: Any, *, upper_inclusive: bool = True) -> bool:
        """Checks, whether the interval *[low, high]* shares at least one value with this partition.

        If `upper_inclusive` is false, the interval is half-open, i.e. *[low, high)*.
        """
        below_high = self.lower <= high if upper_inclusive else self.lower < high
        return below_high and low < self.upper

    def __json__(self) -> jsondict:
        return {"name": self.name, "lower": self.lower, "upper": self.upper, "row_count": self.row_count}

    def __str__(self) -> str:
        label = self.name if self.name else "partition"
        return f"{label}[{self.lower}, {self.upper})"


@dataclass(frozen=True)
class PartitionScheme:
    """Range partitioning of a table.

    Attributes
    ----------
    key : str
        The partition key column
    ranges : tuple[PartitionRange, ...]
        The partitions, ordered by their key ranges. Ranges have to be disjoint and monotonically increasing. Gaps between
        ranges are permitted, but key values inside a gap do not belong to any partition.

    Raises
    ------
    InvalidCatalogStateError
        If the ranges are empty, overlapping, not ordered or contain incomparable boundaries.
    """

    key: str
    ranges: tuple[PartitionRange, ...]

    @staticmethod
    def from_boundaries(key: str, boundaries: Sequence[Any], *,
                        names: Optional[Sequence[str]] = None,
                        row_counts: Optional[Sequence[Optional[int]]] = None) -> PartitionScheme:
        """Creates a scheme of contiguous ranges from an ordered list of boundaries.

        The boundaries ``[b0, b1, b2]`` produce the partitions *[b0, b1)* and *[b1, b2)*.
        """
        if len(boundaries) < 2:
            raise InvalidCatalogStateError(f"At least two boundaries are required to partition by '{key}'")
        n_ranges = len(boundaries) - 1
        names = list(names) if names else [""] * n_ranges
        row_counts = list(row_counts) if row_counts else [None] * n_ranges
        if len(names) != n_ranges or len(row_counts) != n_ranges:
            raise InvalidCatalogStateError(f"Partition names/row counts do not match the boundaries of '{key}'")
        ranges = [PartitionRange(boundaries[i], boundaries[i + 1], names[i], row_counts[i]) for i in range(n_ranges)]
        return PartitionScheme(key, tuple(ranges))

    def __post_init__(self) -> None:
        ranges = tuple(self.ranges)
        if not ranges:
            raise InvalidCatalogStateError(f"Partitioning by '{self.key}' requires at least one range")
        try:
            for partition in ranges:
                if not partition.lower < partition.upper:
                    raise InvalidCatalogStateError(f"Empty or inverted partition range: {partition}")
                if partition.row_count is not None and partition.row_count < 0:
                    raise InvalidCatalogStateError(f"Negative row count for partition {partition}")
            for previous, current in zip(ranges, ranges[1:]):
                if current.lower < previous.upper:
                    raise InvalidCatalogStateError(
                        f"Partitions are overlapping or not monotonic: {previous} and {current}"
                    )
        except TypeError as e:
            raise InvalidCatalogStateError(f"Partition boundaries of '{self.key}' are not comparable") from e
        object.__setattr__(self, "ranges", ranges)

    def locate(self, value: Any) -> PartitionRange:
        """Determines the partition that contains a specific key value.

        Raises
        ------
        NoPartitionError
            If the value does not belong to any partition
        """
        for partition in self.ranges:
            if partition.contains(value):
                return partition
        raise NoPartitionError(self.key, value)

    def overlapping(self, low: Any, high: Any, *, upper_inclusive: bool = True) -> tuple[PartitionRange, ...]:
        """Provides all partitions that share at least one value with the interval *[low, high]*.

        If `upper_inclusive` is false, the half-open interval *[low, high)* is used instead.
        """
        return tuple(partition for partition in self.ranges
                     if partition.overlaps(low, high, upper_inclusive=upper_inclusive))

    def uncovered(self, low: Any, high: Any, *, upper_inclusive: bool = True) -> tuple[tuple[Any, Any], ...]:
        """Determines the parts of the interval *[low, high]* that do not belong to any partition.

        Each part is given as a *(start, end)* pair. Parts that end at the lower boundary of a partition exclude that boundary,
        the final part (if any) includes `high` unless `upper_inclusive` is false. In that case the interval is treated as
        half-open, i.e. *[low, high)*. An empty result indicates that the interval is fully covered.
        """
        if high < low or (not upper_inclusive and high == low):
            return ()
        gaps: list[tuple[Any, Any]] = []
        cursor = low
        for partition in self.ranges:
            if partition.upper <= cursor:
                continue
            if partition.lower > high or (not upper_inclusive and partition.lower == high):
                break
            if partition.lower > cursor:
                gaps.append((cursor, partition.lower))
            cursor = partition.upper
            if cursor > high or (not upper_inclusive and cursor == high):
                return tuple(gaps)
        gaps.append((cursor, high))
        return tuple(gaps)

    def covers(self, low: Any, high: Any, *, upper_inclusive: bool = True) -> bool:
        """Checks, whether every value of the interval *[low, high]* (or *[low, high)*) belongs to some partition."""
        return not self.uncovered(low, high, upper_inclusive=upper_inclusive)

    def rows_per_partition(self, table_rows: float) -> tuple[float, ...]:
        """Estimates the number of rows in each partition, in the order of `ranges`.

        Explicit row counts are used as-is. The remaining rows of the table are distributed evenly among all partitions
        without an explicit count.
        """
        known = sum(partition.row_count for partition in self.ranges if partition.row_count is not None)
        n_unknown = sum(1 for partition in self.ranges if partition.row_count is None)
        share = max(table_rows - known, 0) / n_unknown if n_unknown else 0.0
        return tuple(float(partition.row_count) if partition.row_count is not None else share
                     for partition in self.ranges)

    def __json__(self) -> jsondict:
        return {"key": self.key, "ranges": list(self.ranges)}


@dataclass(frozen=True)
class Table:
    """A catalog table along with its statistics and physical design.

    Attributes
    ----------
    name : str
        The table name, unique within the catalog
    columns : tuple[Column, ...]
        All columns of the table, in declaration order
    row_count : int
        The estimated number of rows
    indexes : tuple[Index, ...]
        The existing indexes. No two indexes may share the same column list.
    partitioning : Optional[PartitionScheme]
        The range partitioning of the table, if there is one
    """

    name: str
    columns: tuple[Column, ...]
    row_count: int = 0
    indexes: tuple[Index, ...] = ()
    partitioning: Optional[PartitionScheme] = None
    _column_map: dict[str, Column] = field(init=False, repr=False, compare=False, hash=False, default=None)

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidCatalogStateError("Table name is required")
        columns = tuple(self.columns)
        indexes = tuple(self.indexes)
        if self.row_count < 0:
            raise InvalidCatalogStateError(f"Table '{self.name}' has a negative row count: {self.row_count}")

        column_map: dict[str, Column] = {}
        for column in columns:
            key = normalize(column.name)
            if key in column_map:
                raise InvalidCatalogStateError(f"Duplicate column '{column.name}' in table '{self.name}'")
            column_map[key] = column

        seen_indexes: set[tuple[str, ...]] = set()
        for index in indexes:
            missing = [col for col in index.columns if normalize(col) not in column_map]
            if missing:
                raise InvalidCatalogStateError(f"Index {index} of table '{self.name}' references unknown columns {missing}")
            if index.normalized_columns() in seen_indexes:
                raise InvalidCatalogStateError(f"Duplicate index on {index.columns} for table '{self.name}'")
            seen_indexes.add(index.normalized_columns())

        if self.partitioning is not None and normalize(self.partitioning.key) not in column_map:
            raise InvalidCatalogStateError(
                f"Partition key '{self.partitioning.key}' is not a column of table '{self.name}'"
            )

        object.__setattr__(self, "columns", columns)
        object.__setattr__(self, "indexes", indexes)
        object.__setattr__(self, "_column_map", column_map)

    def column(self, name: str) -> Column:
        """Provides a specific column of the table.

        Raises
        ------
        UnknownColumnError
            If the table does not contain the column
        """
        column = self._column_map.get(normalize(name))
        if column is None:
            raise UnknownColumnError(self.name, name)
        return column

    def has_column(self, name: str) -> bool:
        return normalize(name) in self._column_map

    def reference(self, name: str) -> ColumnReference:
        """Creates a column reference for one of the table's columns, using the catalog spelling."""
        return ColumnReference(self.name, self.column(name).name)

    def indexes_on(self, column: str) -> tuple[Index, ...]:
        """Provides all indexes that contain a specific column at any position."""
        key = normalize(column)
        return tuple(index for index in self.indexes if key in index.normalized_columns())

    def with_row_count(self, row_count: int) -> Table:
        return replace(self, row_count=row_count)

    def __json__(self) -> jsondict:
        return {
            "name": self.name,
            "row_count": self.row_count,
            "columns": list(self.columns),
            "indexes": list(self.indexes),
            "partitioning": self.partitioning,
        }

    def __str__(self) -> str:
        return self.name


class CatalogSnapshot:
    """An immutable view on the catalog contents.

    Snapshots are never modified in-place. All update operations produce a new snapshot with an increased version number.
    Tables are looked up case-insensitively.

    Parameters
    ----------
    tables : Iterable[Table], optional
        The tables of the catalog
    version : int, optional
        A version number to distinguish subsequent snapshots of the same catalog

    Raises
    ------
    InvalidCatalogStateError
        If multiple tables share the same name
    """

    def __init__(self, tables: Iterable[Table] = (), *, version: int = 0) -> None:
        table_map: dict[str, Table] = {}
        for table in tables:
            key = normalize(table.name)
            if key in table_map:
                raise InvalidCatalogStateError(f"Duplicate table '{table.name}'")
            table_map[key] = table
        self._tables = table_map
        self._version = version

    @property
    def version(self) -> int:
        return self._version

    def get_table(self, name: str) -> Table:
        """Provides a specific table.

        Raises
        ------
        UnknownTableError
            If the catalog does not contain the table
        """
        table = self._tables.get(normalize(name))
        if table is None:
            raise UnknownTableError(name)
        return table

    def get_column(self, table: str, name: str) -> Column:
        """Provides a specific column of a specific table.

        Raises
        ------
        UnknownTableError
            If the catalog does not contain the table
        UnknownColumnError
            If the table does not contain the column
        """
        return self.get_table(table).column(name)

    def resolve(self, column: ColumnReference) -> ColumnReference:
        """Rewrites a column reference to use the exact spelling of the catalog.

        This also validates that the column actually exists.
        """
        return self.get_table(column.table).reference(column.name)

    def column_of(self, column: ColumnReference) -> Column:
        return self.get_column(column.table, column.name)

    def indexes_for(self, table: str) -> frozenset[Index]:
        return frozenset(self.get_table(table).indexes)

    def partition_scheme_for(self, table: str) -> Optional[PartitionScheme]:
        return self.get_table(table).partitioning

    def tables(self) -> tuple[Table, ...]:
        """Provides all tables in the order in which they have been registered."""
        return tuple(self._tables.values())

    def with_table(self, table: Table) -> CatalogSnapshot:
        """Creates a new snapshot where a table is added or replaced."""
        updated = dict(self._tables)
        updated[normalize(table.name)] = table
        return CatalogSnapshot(updated.values(), version=self._version + 1)

    def with_row_count(self, table: str, row_count: int) -> CatalogSnapshot:
        """Creates a new snapshot with an updated row count estimate for a specific table."""
        return self.with_table(self.get_table(table).with_row_count(row_count))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize(name) in self._tables

    def __iter__(self) -> Iterator[Table]:
        return iter(self._tables.values())

    def __len__(self) -> int:
        return len(self._tables)

    def __json__(self) -> jsondict:
        return {"version": self._version, "tables": list(self._tables.values())}

    def __repr__(self) -> str:
        return f"CatalogSnapshot(version={self._version}, tables={[t.name for t in self._tables.values()]})"

    def __str__(self) -> str:
        return f"Catalog v{self._version} ({len(self._tables)} tables)"


class Catalog:
    """Holds the current catalog snapshot and allows to replace it atomically.

    Readers should obtain a snapshot once via `current()` and use that snapshot for the entire planning process. Updates
    never modify a snapshot in-place, they rather swap the entire snapshot.

    Parameters
    ----------
    snapshot : Optional[CatalogSnapshot | Mapping[str, Any]], optional
        The initial catalog contents. Structured descriptions are passed to `load_catalog`. Defaults to an empty catalog.
    """

    def __init__(self, snapshot: Optional[CatalogSnapshot | Mapping[str, Any]] = None) -> None:
        self._lock = threading.Lock()
        if snapshot is None:
            snapshot = CatalogSnapshot()
        elif not isinstance(snapshot, CatalogSnapshot):
            snapshot = load_catalog(snapshot)
        self._snapshot = snapshot

    def current(self) -> CatalogSnapshot:
        """Provides the snapshot that is currently active."""
        return self._snapshot

    def reload(self, snapshot: CatalogSnapshot | Mapping[str, Any]) -> CatalogSnapshot:
        """Replaces the entire catalog contents.

        The new snapshot receives a version number that is larger than the version of the snapshot it replaces.

        Returns
        -------
        CatalogSnapshot
            The snapshot that is active now
        """
        if not isinstance(snapshot, CatalogSnapshot):
            snapshot = load_catalog(snapshot)
        with self._lock:
            version = max(snapshot.version, self._snapshot.version + 1)
            self._snapshot = CatalogSnapshot(snapshot.tables(), version=version)
            return self._snapshot

    def refresh_row_count(self, table: str, row_count: int) -> CatalogSnapshot:
        """Swaps in a new snapshot that contains an updated row count for a specific table."""
        with self._lock:
            self._snapshot = self._snapshot.with_row_count(table, row_count)
            return self._snapshot

    def get_table(self, name: str) -> Table:
        return self._snapshot.get_table(name)

    def get_column(self, table: str, name: str) -> Column:
        return self._snapshot.get_column(table, name)

    def indexes_for(self, table: str) -> frozenset[Index]:
        return self._snapshot.indexes_for(table)

    def partition_scheme_for(self, table: str) -> Optional[PartitionScheme]:
        return self._snapshot.partition_scheme_for(table)

    def __repr__(self) -> str:
        return f"Catalog({self._snapshot!r})"

    def __str__(self) -> str:
        return str(self._snapshot)


def _require(description: Mapping[str, Any], key: str, context: str) -> Any:
    if key not in description:
        raise InvalidCatalogStateError(f"Missing '{key}' in {context}")
    return description[key]


def _load_column(description: Mapping[str, Any] | str, table: str) -> Column:
    if isinstance(description, str):
        raise InvalidCatalogStateError(f"Column '{description}' of table '{table}' requires a kind")
    name = _require(description, "name", f"column of table '{table}'")
    kind = _require(description, "kind", f"column '{name}' of table '{table}'")
    try:
        kind = ColumnKind(str(kind).lower())
    except ValueError as e:
        raise InvalidCatalogStateError(f"Unknown column kind '{kind}' for column '{table}.{name}'") from e
    distinct_values = description.get("distinct_values")
    return Column(name, kind, nullable=bool(description.get("nullable", True)),
                  distinct_values=int(distinct_values) if distinct_values is not None else 0)


def _load_index(description: Mapping[str, Any] | Sequence[Any], table: str) -> Index:
    if not isinstance(description, Mapping):
        description = {"columns": description}
    columns, ascending = [], []
    for column in _require(description, "columns", f"index of table '{table}'"):
        if isinstance(column, Mapping):
            columns.append(_require(column, "name", f"index column of table '{table}'"))
            ascending.append(bool(column.get("ascending", True)))
        else:
            columns.append(column)
            ascending.append(True)
    return Index(tuple(columns), unique=bool(description.get("unique", False)), ascending=tuple(ascending),
                 name=description.get("name", "") or "")


def _load_partitioning(description: Mapping[str, Any], table: str, columns: Sequence[Column]) -> PartitionScheme:
    key = _require(description, "key", f"partitioning of table '{table}'")
    key_column = next((col for col in columns if normalize(col.name) == normalize(key)), None)
    if key_column is None:
        raise InvalidCatalogStateError(f"Partition key '{key}' is not a column of table '{table}'")

    def coerce(value: Any) -> Any:
        try:
            return coerce_literal(value, key_column.kind)
        except ValueError as e:
            raise InvalidCatalogStateError(f"Invalid partition boundary {value!r} for '{table}.{key}'") from e

    if "boundaries" in description:
        boundaries = [coerce(value) for value in description["boundaries"]]
        return PartitionScheme.from_boundaries(key_column.name, boundaries, names=description.get("names"),
                                               row_counts=description.get("row_counts"))

    ranges = []
    for partition in _require(description, "ranges", f"partitioning of table '{table}'"):
        lower = coerce(_require(partition, "lower", f"partition of table '{table}'"))
        upper = coerce(_require(partition, "upper", f"partition of table '{table}'"))
        row_count = partition.get("row_count")
        ranges.append(PartitionRange(lower, upper, partition.get("name", "") or "",
                                     int(row_count) if row_count is not None else None))
    return PartitionScheme(key_column.name, tuple(ranges))


def _load_table(description: Mapping[str, Any]) -> Table:
    name = _require(description, "name", "table description")
    columns = tuple(_load_column(col, name) for col in _require(description, "columns", f"table '{name}'"))
    indexes = tuple(_load_index(idx, name) for idx in description.get("indexes", []) or [])
    partitioning = description.get("partitioning")
    partitioning = _load_partitioning(partitioning, name, columns) if partitioning else None
    return Table(name, columns, row_count=int(description.get("row_count", 0) or 0), indexes=indexes,
                 partitioning=partitioning)


def load_catalog(description: Mapping[str, Any]) -> CatalogSnapshot:
    """Builds a catalog snapshot from a structured description.

    The description has the following format (all keys that are not marked as optional are required):

    .. code-block:: json

        {"version": 0,                                        // optional
         "tables": [
            {"name": "Bookings",
             "row_count": 100000,
             "columns": [{"name": "start_date", "kind": "date",
                          "nullable": false,                  // optional, defaults to true
                          "distinct_values": 1000}],          // optional, missing statistics otherwise
             "indexes": [{"columns": ["booking_id"], "unique": true},
                         {"columns": [{"name": "start_date", "ascending": false}], "name": "idx_start"}],
             "partitioning": {"key": "start_date",            // optional
                              "boundaries": ["2024-01-01", "2025-01-01", "2026-01-01"],
                              "names": ["bookings_2024", "bookings_2025"]}}]}

    Instead of `boundaries`, the partitioning can also list explicit `ranges` with `lower`, `upper`, and optional `name` and
    `row_count` keys. Partition boundaries are interpreted according to the kind of the key column, i.e. ISO strings
    become dates for date columns.

    Parameters
    ----------
    description : Mapping[str, Any]
        The catalog description

    Returns
    -------
    CatalogSnapshot
        The catalog contents

    Raises
    ------
    InvalidCatalogStateError
        If the description is malformed or violates any catalog invariant
    """
    tables = _require(description, "tables", "catalog description")
    return CatalogSnapshot((_load_table(table) for table in tables), version=int(description.get("version", 0) or 0))


def read_catalog_json(source: str | Path | Mapping[str, Any]) -> CatalogSnapshot:
    """Loads a catalog snapshot from JSON data.

    The source can be a path to a JSON file, the raw JSON text or an already decoded description. See `load_catalog` for
    the expected format.
    """
    if isinstance(source, Mapping):
        return load_catalog(source)
    if isinstance(source, Path) or not source.lstrip().startswith("{"):
        with open(source, "r") as json_file:
            return load_catalog(json.load(json_file))
    return load_catalog(json.loads(source))
