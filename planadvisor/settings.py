"""Tunable constants of the cost model and the join enumeration."""
from __future__ import annotations

import dataclasses
import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Optional

from .util.jsonize import jsondict

JoinStrategy = Literal["greedy", "exhaustive"]
"""The supported join enumeration strategies."""


@dataclass(frozen=True)
class AdvisorSettings:
    """Captures all parameters of the cost model and the enumeration process.

    All estimates are expressed in abstract cost units that roughly correspond to the number of rows that have to be touched.

    Attributes
    ----------
    index_lookup_overhead : float
        The cost of a single B-tree traversal. This is added to every index scan and charged for each driving row of an
        index nested-loop join.
    default_selectivity : float
        The fraction of rows that is assumed to pass a range predicate, or a membership predicate with an unknown number of
        literals. Must be in *[0, 1]*.
    unindexed_join_ratio : float
        A join without index support is flagged as a bottleneck if ``Nd * Ni > unindexed_join_ratio * (Nd + Ni)``
    hash_join_memory_rows : float
        The maximum number of rows of each input of a hash join. Larger inputs are assumed not to fit into memory.
    large_sort_rows : float
        Sorts over more rows than this are flagged as bottlenecks
    tolerate_missing_statistics : bool
        Whether a distinct value count of 0 is treated as 1 (with a warning) rather than raising an error
    join_strategy : JoinStrategy
        ``"greedy"`` joins the cheapest pair of inputs at each step. ``"exhaustive"`` evaluates all left-deep join orders if
        the query contains at most `exhaustive_table_limit` tables and falls back to the greedy strategy otherwise.
    exhaustive_table_limit : int
        The maximum number of tables for exhaustive enumeration
    join_step_budget : Optional[int]
        The maximum number of join pairs that may be evaluated during enumeration. If the budget is exhausted, the tables
        are joined in query order instead. *None* disables the budget.
    join_time_budget : Optional[float]
        The maximum time in seconds that may be spent on join enumeration, with the same fallback behavior as
        `join_step_budget`.
    verbose : bool
        Whether progress information should be logged to stderr
    """

    index_lookup_overhead: float = 2.0
    default_selectivity: float = 0.3
    unindexed_join_ratio: float = 10.0
    hash_join_memory_rows: float = 1_000_000
    large_sort_rows: float = 100_000
    tolerate_missing_statistics: bool = False
    join_strategy: JoinStrategy = "greedy"
    exhaustive_table_limit: int = 6
    join_step_budget: Optional[int] = None
    join_time_budget: Optional[float] = None
    verbose: bool = False

    def __post_init__(self) -> None:
        self._require_non_negative("index_lookup_overhead")
        if not 0 <= self.default_selectivity <= 1:
            raise ValueError(f"default_selectivity must be in [0, 1], not {self.default_selectivity}")
        self._require_non_negative("unindexed_join_ratio")
        self._require_non_negative("hash_join_memory_rows")
        self._require_non_negative("large_sort_rows")
        if self.join_strategy not in ("greedy", "exhaustive"):
            raise ValueError(f"Unknown join strategy: '{self.join_strategy}'")
        if self.exhaustive_table_limit < 1:
            raise ValueError(f"exhaustive_table_limit must be positive, not {self.exhaustive_table_limit}")
        if self.join_step_budget is not None and self.join_step_budget < 0:
            raise ValueError(f"join_step_budget must not be negative, not {self.join_step_budget}")
        if self.join_time_budget is not None and self.join_time_budget < 0:
            raise ValueError(f"join_time_budget must not be negative, not {self.join_time_budget}")

    def _require_non_negative(self, name: str) -> None:
        value = getattr(self, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value) or value < 0:
            raise ValueError(f"{name} must be a non-negative number, not {value!r}")

    @staticmethod
    def from_dict(options: Mapping[str, Any]) -> AdvisorSettings:
        """Creates settings from a (partial) dictionary. Missing options use their default values.

        Raises
        ------
        ValueError
            If the dictionary contains unknown options or invalid values
        """
        known = {setting.name for setting in dataclasses.fields(AdvisorSettings)}
        unknown = set(options) - known
        if unknown:
            raise ValueError(f"Unknown advisor settings: {sorted(unknown)}")
        return AdvisorSettings(**options)

    def with_options(self, **kwargs: Any) -> AdvisorSettings:
        """Creates a copy of the settings with some options replaced."""
        options = self.describe()
        options.update(kwargs)
        return AdvisorSettings.from_dict(options)

    def describe(self) -> jsondict:
        """Provides all settings as a dictionary."""
        return dataclasses.asdict(self)

    def __json__(self) -> jsondict:
        return self.describe()


def read_settings_json(source: str | Path | Mapping[str, Any]) -> AdvisorSettings:
    """Loads advisor settings from JSON data.

    The source can be a path to a JSON file, the raw JSON text or an already decoded dictionary.
    """
    if isinstance(source, Mapping):
        return AdvisorSettings.from_dict(source)
    if isinstance(source, Path) or not source.lstrip().startswith("{"):
        with open(source, "r") as json_file:
            return AdvisorSettings.from_dict(json.load(json_file))
    return AdvisorSettings.from_dict(json.loads(source))
