from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .util.jsonize import jsondict

Cost = float
"""Type alias for a cost estimate."""

Cardinality = float
"""Type alias for a row count estimate. Estimates are not rounded, so they can be fractional."""


class ScanOperator(Enum):
    """The access paths that the advisor distinguishes for base tables."""

    SequentialScan = "Seq. Scan"
    IndexScan = "Idx. Scan"
    IndexOnlyScan = "Idx-only Scan"

    def __json__(self) -> str:
        return self.value

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.value < other.value


class JoinOperator(Enum):
    """The join algorithms that the cost model distinguishes.

    Nested-loop joins without index support are only chosen if a hash join is either more expensive or not possible because
    one of the inputs exceeds the in-memory budget.
    """

    NestedLoopJoin = "NLJ"
    HashJoin = "Hash Join"
    IndexNestedLoopJoin = "Idx. NLJ"

    def __json__(self) -> str:
        return self.value

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.value < other.value


class IntermediateOperator(Enum):
    """Intermediate operators do not change the contents of their input relation, but only the order of its tuples."""

    Sort = "Sort"

    def __json__(self) -> str:
        return self.value


PhysicalOperator = ScanOperator | JoinOperator | IntermediateOperator
"""Supertype to model all physical operators that can appear in a plan."""


class ColumnKind(Enum):
    """The data kinds of catalog columns.

    Join partners have to share the same kind. Literal values for partition boundaries and predicates are interpreted
    according to the kind of their column.
    """

    Numeric = "numeric"
    Text = "text"
    Date = "date"
    Uuid = "uuid"
    Boolean = "boolean"

    def __json__(self) -> str:
        return self.value


def normalize(identifier: str) -> str:
    """Normalizes table and column names for lookups.

    Identifiers are compared case-insensitively, much like unquoted identifiers in Postgres. Surrounding whitespace is
    ignored as well.
    """
    return identifier.strip().lower()


@dataclass(frozen=True, order=True)
class ColumnReference:
    """A column reference denotes a specific column of a specific table.

    References that are produced by the query builder always use the spelling of the catalog. Column references can be
    sorted lexicographically (by table, then by column) and are designed as immutable data objects.

    Attributes
    ----------
    table : str
        The name of the table that provides the column
    name : str
        The name of the column
    """

    table: str
    name: str

    @staticmethod
    def parse(text: str) -> ColumnReference:
        """Creates a column reference from a ``"table.column"`` string.

        Raises
        ------
        ValueError
            If the text does not contain exactly one table qualifier.
        """
        table, sep, column = text.strip().partition(".")
        if not sep or not table or not column or "." in column:
            raise ValueError(f"Expected a qualified column of the form 'table.column', got '{text}'")
        return ColumnReference(table.strip(), column.strip())

    def belongs_to(self, table: str) -> bool:
        """Checks, whether the column is part of the given table (compared case-insensitively)."""
        return normalize(self.table) == normalize(table)

    def __json__(self) -> jsondict:
        return {"table": self.table, "name": self.name}

    def __str__(self) -> str:
        return f"{self.table}.{self.name}"


@dataclass(frozen=True)
class SortKey:
    """Sort keys describe how the tuples in a relation should be ordered.

    Attributes
    ----------
    column : ColumnReference
        The column that is used to sort the tuples.
    ascending : bool
        Whether the sorting is ascending or descending. Defaults to ascending.
    """

    column: ColumnReference
    ascending: bool = True

    @staticmethod
    def of(column: ColumnReference | str, ascending: bool = True) -> SortKey:
        """Creates a new sort key. Columns can be given as ``"table.column"`` strings."""
        column = ColumnReference.parse(column) if isinstance(column, str) else column
        return SortKey(column, ascending)

    def __json__(self) -> jsondict:
        return {"column": self.column, "ascending": self.ascending}

    def __str__(self) -> str:
        if self.ascending:
            return str(self.column)
        return f"{self.column} DESC"
