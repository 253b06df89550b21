"""The advisor combines all estimation stages into a single pipeline.

Typical usage looks like this:

>>> catalog = planadvisor.Catalog(planadvisor.presets.fetch("booking"))
>>> query = planadvisor.QueryDescriptor(filters=[planadvisor.FilterClause.of("Bookings.user_id", "=")],
...                                     joins=[planadvisor.JoinClause.of("Bookings.user_id", "Users.user_id")])
>>> result = planadvisor.advise(query, catalog)
>>> result.recommendations

Each planning call obtains the current catalog snapshot once and uses it throughout, such that concurrent catalog reloads
never affect a running estimation.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

import pandas as pd

from .catalog import Catalog, CatalogSnapshot
from .planner import CostEstimator
from .plans import Bottleneck, Plan
from .query import NormalizedQuery, QueryDescriptor, build_query, read_query_json
from .recommendations import Recommendation, RecommendationGenerator
from .settings import AdvisorSettings
from .util import df as df_utils, jsonize
from .util.errors import StateError
from .util.jsonize import jsondict
from .util.logging import standard_logger


@dataclass(frozen=True)
class PlanningResult:
    """The output of a single planning call.

    Attributes
    ----------
    query : NormalizedQuery
        The validated query
    plan : Plan
        The annotated plan
    bottlenecks : tuple[Bottleneck, ...]
        All bottlenecks of the plan
    recommendations : tuple[Recommendation, ...]
        The ranked schema recommendations
    catalog_version : int
        The version of the catalog snapshot that was used for planning
    settings : AdvisorSettings
        The settings that were used for planning
    """

    query: NormalizedQuery
    plan: Plan
    bottlenecks: tuple[Bottleneck, ...]
    recommendations: tuple[Recommendation, ...]
    catalog_version: int = 0
    settings: AdvisorSettings = AdvisorSettings()

    @property
    def total_cost(self) -> float:
        return self.plan.total_cost

    def steps_frame(self) -> pd.DataFrame:
        """Provides the plan steps as a data frame, one row per step in execution order."""
        records = [{"step": idx,
                    "operator": step.operator.value,
                    "tables": ", ".join(step.tables),
                    "index": str(step.index) if step.index is not None else None,
                    "estimated_rows": step.estimated_rows,
                    "estimated_cost": step.estimated_cost}
                   for idx, step in enumerate(self.plan.steps)]
        return df_utils.as_df(records, columns=["step", "operator", "tables", "index", "estimated_rows", "estimated_cost"])

    def bottlenecks_frame(self) -> pd.DataFrame:
        """Provides the bottlenecks as a data frame."""
        records = [{"kind": bottleneck.kind.value,
                    "table": bottleneck.table,
                    "columns": ", ".join(bottleneck.columns),
                    "severity": bottleneck.severity}
                   for bottleneck in self.bottlenecks]
        return df_utils.as_df(records, columns=["kind", "table", "columns", "severity"])

    def recommendations_frame(self) -> pd.DataFrame:
        """Provides the recommendations as a data frame, in ranking order."""
        records = [{"kind": recommendation.kind.value,
                    "table": recommendation.table,
                    "columns": ", ".join(recommendation.columns),
                    "score": recommendation.score}
                   for recommendation in self.recommendations]
        return df_utils.as_df(records, columns=["kind", "table", "columns", "score"])

    def to_json(self, **kwargs) -> str:
        """Serializes the entire result. Keyword arguments are passed to `json.dumps`."""
        return jsonize.to_json(self, **kwargs)

    def __json__(self) -> jsondict:
        return {
            "catalog_version": self.catalog_version,
            "query": self.query,
            "plan": self.plan,
            "bottlenecks": list(self.bottlenecks),
            "recommendations": list(self.recommendations),
            "settings": self.settings,
        }


def _snapshot_of(catalog: Catalog | CatalogSnapshot) -> CatalogSnapshot:
    return catalog.current() if isinstance(catalog, Catalog) else catalog


def advise(query: QueryDescriptor | Mapping[str, Any] | str, catalog: Catalog | CatalogSnapshot,
           settings: Optional[AdvisorSettings] = None) -> PlanningResult:
    """Runs the complete advisory pipeline for a query.

    The query is validated and normalized, its plan is estimated and the bottlenecks of the plan are turned into
    recommendations.

    Parameters
    ----------
    query : QueryDescriptor | Mapping[str, Any] | str
        The query. Dictionaries and JSON text are parsed by `read_query_json`.
    catalog : Catalog | CatalogSnapshot
        The catalog. If a `Catalog` is given, its current snapshot is used for the entire planning call.
    settings : Optional[AdvisorSettings], optional
        The cost model parameters. Uses the default settings if omitted.

    Returns
    -------
    PlanningResult
        The plan, its bottlenecks and the recommendations

    Raises
    ------
    StateError
        If the catalog does not contain any tables
    CatalogError
        If the query references unknown tables or columns, or the catalog statistics are invalid
    QueryError
        If the query is malformed
    """
    settings = settings if settings is not None else AdvisorSettings()
    log = standard_logger(settings.verbose)
    snapshot = _snapshot_of(catalog)
    if not len(snapshot):
        raise StateError("Catalog is empty, load the catalog before planning")

    descriptor = query if isinstance(query, QueryDescriptor) else read_query_json(query)
    normalized = build_query(descriptor, snapshot)
    log("Planning query over tables", list(normalized.tables), "using catalog version", snapshot.version)

    plan = CostEstimator(snapshot, settings).estimate(normalized)
    recommendations = RecommendationGenerator(snapshot, settings).generate(plan.bottlenecks)
    log("Found", len(plan.bottlenecks), "bottlenecks and", len(recommendations), "recommendations")
    return PlanningResult(normalized, plan, plan.bottlenecks, recommendations, snapshot.version, settings)


class QueryAdvisor:
    """Binds a catalog and settings for repeated planning calls.

    Parameters
    ----------
    catalog : Catalog | CatalogSnapshot
        The catalog. Each call to `advise` uses the snapshot that is current at the time of the call.
    settings : Optional[AdvisorSettings], optional
        The cost model parameters. Uses the default settings if omitted.
    """

    def __init__(self, catalog: Catalog | CatalogSnapshot, settings: Optional[AdvisorSettings] = None) -> None:
        self.catalog = catalog
        self.settings = settings if settings is not None else AdvisorSettings()

    def advise(self, query: QueryDescriptor | Mapping[str, Any] | str) -> PlanningResult:
        """Runs the advisory pipeline for a query, see `advise`."""
        return advise(query, self.catalog, self.settings)

    def plan(self, query: QueryDescriptor | Mapping[str, Any] | str) -> Plan:
        """Estimates the plan for a query without generating recommendations."""
        snapshot = _snapshot_of(self.catalog)
        descriptor = query if isinstance(query, QueryDescriptor) else read_query_json(query)
        return CostEstimator(snapshot, self.settings).estimate(build_query(descriptor, snapshot))

    def __repr__(self) -> str:
        return f"QueryAdvisor(catalog={self.catalog!r}, settings={self.settings!r})"
