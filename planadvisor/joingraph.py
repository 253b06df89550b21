"""Provides the join graph of a normalized query."""
from __future__ import annotations

import collections
from collections.abc import Iterable

import networkx as nx

from ._core import normalize
from .query import JoinEdge, NormalizedQuery


class JoinGraph:
    """The join graph models the join structure of a query.

    Each table of the query is a node of the graph. Two tables are connected by an edge if the query contains at least one
    join predicate between them. The edge stores all join edges between the two tables in its ``joins`` attribute, in the
    order in which they appear in the query. Tables without any join partner are still part of the graph, such that cross
    products show up as disconnected components.

    The graph is a read-only view. Join enumeration operates on its own relations and merely uses the graph to look up the
    predicates that link them.

    Parameters
    ----------
    query : NormalizedQuery
        The query for which the join graph should be generated
    """

    def __init__(self, query: NormalizedQuery) -> None:
        self.query = query
        graph = nx.Graph()
        graph.add_nodes_from(query.tables)

        predicate_map: dict[frozenset[str], list[JoinEdge]] = collections.defaultdict(list)
        for edge in query.joins:
            predicate_map[frozenset(edge.tables())].append(edge)
        for tables, joins in predicate_map.items():
            first_tab, second_tab = sorted(tables)
            graph.add_edge(first_tab, second_tab, joins=tuple(joins))

        self._graph = graph

    def tables(self) -> tuple[str, ...]:
        """Provides all tables of the graph in query order."""
        return self.query.tables

    def joins_between(self, first: Iterable[str], second: Iterable[str]) -> tuple[JoinEdge, ...]:
        """Provides all join edges that link any table of the `first` group with any table of the `second` group.

        Parameters
        ----------
        first : Iterable[str]
            The tables of the first join partner, e.g. an intermediate result
        second : Iterable[str]
            The tables of the second join partner

        Returns
        -------
        tuple[JoinEdge, ...]
            The join edges, ordered as they appear in the query. Empty if the groups are not connected directly.
        """
        first = {normalize(tab) for tab in first}
        second = {normalize(tab) for tab in second}
        joins: list[JoinEdge] = []
        for first_tab, second_tab, edges in self._graph.edges.data("joins"):
            first_key, second_key = normalize(first_tab), normalize(second_tab)
            if (first_key in first and second_key in second) or (first_key in second and second_key in first):
                joins.extend(edges)
        order = {edge: idx for idx, edge in enumerate(self.query.joins)}
        return tuple(sorted(joins, key=order.get))

    def is_connected(self) -> bool:
        """Checks, whether all tables can be joined without cross products."""
        return self._graph.number_of_nodes() > 0 and nx.is_connected(self._graph)

    def contains_cross_products(self) -> bool:
        return not self.is_connected()

    def neighbors(self, table: str) -> tuple[str, ...]:
        """Provides all tables that have a join predicate with the given table, in query order."""
        node = self._node(table)
        partners = set(self._graph.neighbors(node))
        return tuple(tab for tab in self.query.tables if tab in partners)

    def components(self) -> tuple[tuple[str, ...], ...]:
        """Provides the connected components of the graph.

        Each component is a group of tables that can be joined without any cross product. The tables of each component are
        given in query order and the components are ordered by their first table.
        """
        components = []
        for component in nx.connected_components(self._graph):
            components.append(tuple(tab for tab in self.query.tables if tab in component))
        return tuple(sorted(components, key=lambda tabs: self.query.position(tabs[0])))

    def nx_graph(self) -> nx.Graph:
        """Provides the underlying NetworkX graph."""
        return self._graph

    def _node(self, table: str) -> str:
        key = normalize(table)
        for node in self._graph.nodes:
            if normalize(node) == key:
                return node
        raise ValueError(f"Table '{table}' is not part of the join graph")

    def __contains__(self, table: object) -> bool:
        return isinstance(table, str) and any(normalize(node) == normalize(table) for node in self._graph.nodes)

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        edges = [str(edge) for edge in self.query.joins]
        return f"JoinGraph(tables={list(self.query.tables)}, joins={edges})"
