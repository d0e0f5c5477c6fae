"""
Column lineage tracker.

This module defines the ColumnLineageTracker class, which enumerates the
column-edge paths that lead into (upstream) and out of (downstream) one
column. Paths are enumerated with an explicit stack; a column already on the
current path is never revisited, paths stop at the depth ceiling, and the
number of paths per direction is capped.
"""

from typing import List, Optional, Tuple

from sql_flow.graph.lineage_graph import LineageGraph
from sql_flow.models.config import MAX_DEPTH_CEILING, FlowConfig
from sql_flow.models.identity import NodeKey, NodeKind
from sql_flow.models.lineage import ColumnEdge
from sql_flow.models.results import (
    ColumnLineageHop,
    ColumnLineagePath,
    ColumnLineageResult,
)
from sql_flow.utils.logging import get_logger
from sql_flow.utils.similarity import find_similar_names

logger = get_logger(__name__)

_Frame = Tuple[NodeKey, Tuple[NodeKey, ...], Tuple[ColumnLineageHop, ...]]


class ColumnLineageTracker:
    """Traces one column through renames, aggregations and expressions.

    Example:
        >>> tracker = ColumnLineageTracker(graph)
        >>> result = tracker.get_full_column_lineage("customer_orders", "count")
        >>> result.upstream[0].hops[-1].node_id
        'column:orders.id'
    """

    def __init__(self, graph: LineageGraph, config: Optional[FlowConfig] = None) -> None:
        self.graph = graph
        self.config = config or FlowConfig()

    def get_full_column_lineage(self, table: str, column: str) -> ColumnLineageResult:
        """Return upstream and downstream column paths.

        Unknown tables or columns produce an empty result with a warning and
        similar names; no exception is raised.
        """
        graph = self.graph
        table = (table or "").strip()
        column = (column or "").strip()
        result = ColumnLineageResult(table=table, column=column)
        if not table or not column:
            result.warning = "Both a table name and a column name are required."
            return result

        relation, _ = graph.resolve_node(table)
        if relation is None or relation.kind is NodeKind.COLUMN:
            result.similar_names = graph.find_similar_names(
                table, self.config.suggestion_limit
            )
            result.warning = f"Table '{table}' was not found in the workspace."
            return result

        key = NodeKey.column(relation, column)
        result.table = relation.qualified_name
        if key not in graph:
            result.similar_names = find_similar_names(
                column,
                [node.name for node in graph.columns_of(relation)],
                limit=self.config.suggestion_limit,
            )
            result.warning = (
                f"Column '{column}' was not found in '{relation.qualified_name}'."
            )
            return result

        result.column = key.column_name
        result.upstream = self._paths(graph, key, upstream=True)
        result.downstream = self._paths(graph, key, upstream=False)
        logger.debug(
            "Column lineage of %s: %d upstream, %d downstream paths",
            key.node_id,
            len(result.upstream),
            len(result.downstream),
        )
        return result

    def _hop(
        self, key: NodeKey, edge: Optional[ColumnEdge] = None
    ) -> ColumnLineageHop:
        return ColumnLineageHop(
            node_id=key.node_id,
            table=key.table_name,
            column=key.column_name,
            transform=edge.transform.value if edge else None,
            expression=edge.expression if edge else None,
        )

    def _paths(
        self, graph: LineageGraph, start: NodeKey, upstream: bool
    ) -> List[ColumnLineagePath]:
        neighbours = graph.incoming if upstream else graph.outgoing
        limit = self.config.max_column_paths
        paths: List[ColumnLineagePath] = []

        stack: List[_Frame] = [(start, (start,), (self._hop(start),))]
        while stack and len(paths) < limit:
            current, visited, hops = stack.pop()
            nexts = [
                (neighbour, edge)
                for neighbour, edge in neighbours(current)
                if isinstance(edge, ColumnEdge) and neighbour not in visited
            ]
            if not nexts or len(hops) - 1 >= MAX_DEPTH_CEILING:
                if len(hops) > 1:
                    paths.append(ColumnLineagePath(hops=list(hops)))
                continue
            for neighbour, edge in reversed(nexts):
                stack.append(
                    (
                        neighbour,
                        visited + (neighbour,),
                        hops + (self._hop(neighbour, edge),),
                    )
                )
        if stack:
            logger.warning(
                "Column lineage of %s truncated at %d paths", start.node_id, limit
            )
        return paths


def get_full_column_lineage(
    graph: LineageGraph,
    table: str,
    column: str,
    config: Optional[FlowConfig] = None,
) -> ColumnLineageResult:
    """Return the full column lineage of ``table.column``."""
    return ColumnLineageTracker(graph, config).get_full_column_lineage(table, column)
