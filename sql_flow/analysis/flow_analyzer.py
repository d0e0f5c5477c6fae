"""
Flow analyzer: bounded upstream / downstream reachability.

This module defines the FlowAnalyzer class, which walks the lineage graph
breadth-first from one node. Each call captures the graph reference once and
keeps its visited set and worklist local, so calls never share state.
"""

import math
from collections import deque
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from sql_flow.exceptions import NodeNotFoundError
from sql_flow.graph.lineage_graph import AnyEdge, LineageGraph
from sql_flow.models.config import MAX_DEPTH_CEILING, FlowConfig
from sql_flow.models.identity import NodeKey, NodeKind
from sql_flow.models.lineage import ColumnEdge, LineageEdge
from sql_flow.models.results import FlowPath, FlowResult
from sql_flow.utils.logging import get_logger

logger = get_logger(__name__)

UNBOUNDED = -1


class Direction(str, Enum):
    UPSTREAM = "upstream"
    DOWNSTREAM = "downstream"
    BOTH = "both"


def normalize_depth(
    value: object, default: int, ceiling: int = MAX_DEPTH_CEILING
) -> int:
    """Normalize a caller-supplied traversal depth.

    -1 means unbounded. Non-numeric, non-finite, zero and negative values
    (other than -1) fall back to ``default``. Fractions are floored and every
    bounded result is clamped to ``ceiling``.

    Example:
        >>> normalize_depth(2.7, default=5)
        2
        >>> normalize_depth(0, default=5)
        5
        >>> normalize_depth(99, default=5)
        20
    """
    ceiling = min(ceiling, MAX_DEPTH_CEILING)
    if default != UNBOUNDED:
        default = max(1, min(default, ceiling))

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if isinstance(value, float) and not math.isfinite(value):
        return default
    if value == UNBOUNDED:
        return UNBOUNDED
    depth = math.floor(value)
    if depth < 1:
        return default
    return min(depth, ceiling)


class FlowAnalyzer:
    """Computes upstream and downstream lineage of a node.

    Attributes:
        graph: Lineage graph to traverse.
        config: Depth defaults and external-node handling.

    Example:
        >>> analyzer = FlowAnalyzer(graph)
        >>> result = analyzer.get_upstream("view:customer_orders")
        >>> sorted(result.node_ids)
        ['table:customers', 'table:orders']
    """

    def __init__(self, graph: LineageGraph, config: Optional[FlowConfig] = None) -> None:
        self.graph = graph
        self.config = config or FlowConfig()

    def get_upstream(
        self,
        node_id: Union[str, NodeKey],
        max_depth: object = None,
        exclude_external: Optional[bool] = None,
    ) -> FlowResult:
        """Return everything that feeds ``node_id``.

        Raises:
            NodeNotFoundError: If the node is not in the graph.
        """
        return self.get_lineage(
            node_id, Direction.UPSTREAM, max_depth, exclude_external
        )

    def get_downstream(
        self,
        node_id: Union[str, NodeKey],
        max_depth: object = None,
        exclude_external: Optional[bool] = None,
    ) -> FlowResult:
        """Return everything fed by ``node_id``.

        Raises:
            NodeNotFoundError: If the node is not in the graph.
        """
        return self.get_lineage(
            node_id, Direction.DOWNSTREAM, max_depth, exclude_external
        )

    def get_lineage(
        self,
        node_id: Union[str, NodeKey],
        direction: Union[str, Direction] = Direction.BOTH,
        max_depth: object = None,
        exclude_external: Optional[bool] = None,
    ) -> FlowResult:
        """Return upstream, downstream, or both merged.

        Raises:
            NodeNotFoundError: If the node is not in the graph.
            ValueError: If ``direction`` is not upstream, downstream or both.
        """
        direction = Direction(direction)
        graph = self.graph
        key = self._resolve(graph, node_id)
        depth = normalize_depth(
            self.config.default_depth if max_depth is None else max_depth,
            self.config.default_depth,
            self.config.max_depth,
        )
        if exclude_external is None:
            exclude_external = not self.config.include_external

        if direction is Direction.BOTH:
            upstream = self.traverse(graph, key, Direction.UPSTREAM, depth, exclude_external)
            downstream = self.traverse(
                graph, key, Direction.DOWNSTREAM, depth, exclude_external
            )
            return merge_results(upstream, downstream)
        return self.traverse(graph, key, direction, depth, exclude_external)

    def _resolve(self, graph: LineageGraph, node_id: Union[str, NodeKey]) -> NodeKey:
        if isinstance(node_id, NodeKey):
            if node_id in graph:
                return node_id
            text = node_id.node_id
        else:
            text = str(node_id)
            key, _ = graph.resolve_node(text)
            if key is not None:
                return key
        raise NodeNotFoundError(
            f"Node '{text}' not found in the lineage graph.",
            node_id=text,
            similar_names=graph.find_similar_names(text, self.config.suggestion_limit),
        )

    @staticmethod
    def traverse(
        graph: LineageGraph,
        start: NodeKey,
        direction: Direction,
        depth: int,
        exclude_external: bool = False,
    ) -> FlowResult:
        """Breadth-first traversal from ``start`` in one direction.

        Column nodes follow column edges, relations follow lineage edges.
        ``depth`` is a normalized depth (-1 for unbounded).
        """
        edge_type = ColumnEdge if start.kind is NodeKind.COLUMN else LineageEdge
        neighbours = graph.incoming if direction is Direction.UPSTREAM else graph.outgoing

        distances: Dict[NodeKey, int] = {start: 0}
        parents: Dict[NodeKey, Tuple[NodeKey, AnyEdge]] = {}
        reached: List[NodeKey] = []
        edges: Dict[str, AnyEdge] = {}
        closing: Optional[Tuple[NodeKey, AnyEdge]] = None

        queue = deque([start])
        while queue:
            current = queue.popleft()
            distance = distances[current]
            if depth != UNBOUNDED and distance >= depth:
                continue
            for neighbour, edge in neighbours(current):
                if not isinstance(edge, edge_type):
                    continue
                edges.setdefault(edge.id, edge)
                if neighbour == start:
                    if closing is None:
                        closing = (current, edge)
                    continue
                if neighbour not in distances:
                    distances[neighbour] = distance + 1
                    parents[neighbour] = (current, edge)
                    reached.append(neighbour)
                    queue.append(neighbour)

        paths = [_path_to(graph, start, key, parents) for key in reached]
        if closing is not None:
            previous, edge = closing
            cycle = _path_to(graph, start, previous, parents)
            cycle.nodes.append(graph.node(start))
            cycle.edges.append(edge)
            distances[start] = cycle.depth
            reached.insert(0, start)
            paths.insert(0, cycle)

        result = FlowResult(
            nodes=[graph.node(key) for key in reached],
            edges=list(edges.values()),
            paths=paths,
        )
        if exclude_external:
            _drop_external(result)
        result.distances = {
            node.id: distances[node.key] for node in result.nodes
        }
        result.depth = max(result.distances.values(), default=0)
        logger.debug(
            "%s traversal from %s reached %d nodes",
            direction.value,
            start.node_id,
            len(result.nodes),
        )
        return result


def _path_to(
    graph: LineageGraph,
    start: NodeKey,
    key: NodeKey,
    parents: Dict[NodeKey, Tuple[NodeKey, AnyEdge]],
) -> FlowPath:
    nodes = [key]
    edges: List[AnyEdge] = []
    current = key
    while current != start:
        parent, edge = parents[current]
        edges.append(edge)
        nodes.append(parent)
        current = parent
    nodes.reverse()
    edges.reverse()
    return FlowPath(nodes=[graph.node(k) for k in nodes], edges=edges)


def _drop_external(result: FlowResult) -> None:
    """Remove external nodes, their columns and the edges and paths reaching them."""
    dropped = {
        node.key
        for node in result.nodes
        if node.kind is NodeKind.EXTERNAL
        or (node.parent is not None and node.parent.kind is NodeKind.EXTERNAL)
    }
    result.nodes = [node for node in result.nodes if node.key not in dropped]
    result.edges = [
        edge
        for edge in result.edges
        if edge.source not in dropped
        and edge.target not in dropped
        and NodeKind.EXTERNAL not in (edge.source.kind, edge.target.kind)
    ]
    result.paths = [path for path in result.paths if path.nodes[-1].key not in dropped]


def merge_results(*results: FlowResult) -> FlowResult:
    """Merge traversal results, deduplicating nodes, edges and paths."""
    merged = FlowResult()
    seen_nodes = set()
    seen_edges = set()
    seen_paths = set()
    for result in results:
        for node in result.nodes:
            if node.id not in seen_nodes:
                seen_nodes.add(node.id)
                merged.nodes.append(node)
        for edge in result.edges:
            if edge.id not in seen_edges:
                seen_edges.add(edge.id)
                merged.edges.append(edge)
        for path in result.paths:
            if path.signature not in seen_paths:
                seen_paths.add(path.signature)
                merged.paths.append(path)
        for node_id, distance in result.distances.items():
            if node_id not in merged.distances or distance < merged.distances[node_id]:
                merged.distances[node_id] = distance
    merged.depth = max(merged.distances.values(), default=0)
    return merged
