"""
Workspace lineage graph.

This module defines the LineageGraph class, a read-only view over a frozen
networkx MultiDiGraph whose nodes are NodeKey values. Every node carries its
LineageNode under the "node" attribute and every edge its LineageEdge or
ColumnEdge under the "edge" attribute. Parallel edges are keyed by edge type,
so the same relationship recorded twice collapses into one edge.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import networkx as nx

from sql_flow.models.identity import (
    RELATION_LOOKUP_ORDER,
    NodeKey,
    NodeKind,
    normalize_name,
    split_qualified_name,
)
from sql_flow.models.lineage import (
    ColumnEdge,
    LineageEdge,
    LineageNode,
    TableReferenceRecord,
)
from sql_flow.utils.logging import get_logger
from sql_flow.utils.similarity import find_similar_names

logger = get_logger(__name__)

AnyEdge = Union[LineageEdge, ColumnEdge]

_INTERCHANGEABLE = {NodeKind.TABLE: NodeKind.VIEW, NodeKind.VIEW: NodeKind.TABLE}


class LineageGraph:
    """Workspace-wide lineage of tables, views, CTEs and columns.

    Instances are immutable: the builder publishes a frozen graph and rebuilds
    produce a new LineageGraph.

    Attributes:
        graph: Frozen networkx MultiDiGraph keyed by NodeKey.
        references: Every table reference seen while building.
        default_schema: Schema assumed for unqualified lookups.

    Example:
        >>> graph = build_lineage_graph([FileInventory.from_sql("a.sql", sql)])
        >>> key, _ = graph.resolve_relation("orders")
        >>> graph.node(key).name
        'orders'
    """

    def __init__(
        self,
        graph: Optional[nx.MultiDiGraph] = None,
        references: Sequence[TableReferenceRecord] = (),
        default_schema: Optional[str] = None,
    ) -> None:
        self.graph = nx.freeze(graph if graph is not None else nx.MultiDiGraph())
        self.references: Tuple[TableReferenceRecord, ...] = tuple(references)
        self.default_schema = default_schema
        self._columns: Dict[NodeKey, List[NodeKey]] = {}
        for key, node in self.graph.nodes(data="node"):
            if node.parent is not None:
                self._columns.setdefault(node.parent, []).append(key)

    # ========== Accessors ==========

    def __contains__(self, key: object) -> bool:
        return key in self.graph

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    def node(self, key: NodeKey) -> Optional[LineageNode]:
        if key not in self.graph:
            return None
        return self.graph.nodes[key]["node"]

    def nodes(self, kind: Optional[NodeKind] = None) -> List[LineageNode]:
        """Return nodes, optionally of one kind, sorted by identity."""
        nodes = [
            node
            for _, node in self.graph.nodes(data="node")
            if kind is None or node.kind is kind
        ]
        return sorted(nodes, key=lambda node: node.id)

    def relations(self) -> List[LineageNode]:
        return [node for node in self.nodes() if node.kind.is_relation()]

    def edges(self) -> List[LineageEdge]:
        return [
            edge
            for _, _, edge in self.graph.edges(data="edge")
            if isinstance(edge, LineageEdge)
        ]

    def column_edges(self) -> List[ColumnEdge]:
        return [
            edge
            for _, _, edge in self.graph.edges(data="edge")
            if isinstance(edge, ColumnEdge)
        ]

    def columns_of(self, relation: NodeKey) -> List[LineageNode]:
        """Return the column nodes owned by a relation."""
        return [self.graph.nodes[key]["node"] for key in self._columns.get(relation, [])]

    def outgoing(self, key: NodeKey) -> List[Tuple[NodeKey, AnyEdge]]:
        """Return (target, edge) pairs leaving ``key``, in a stable order."""
        if key not in self.graph:
            return []
        pairs = [
            (target, edge)
            for _, target, edge in self.graph.out_edges(key, data="edge")
        ]
        return sorted(pairs, key=lambda pair: pair[1].id)

    def incoming(self, key: NodeKey) -> List[Tuple[NodeKey, AnyEdge]]:
        """Return (source, edge) pairs entering ``key``, in a stable order."""
        if key not in self.graph:
            return []
        pairs = [
            (source, edge)
            for source, _, edge in self.graph.in_edges(key, data="edge")
        ]
        return sorted(pairs, key=lambda pair: pair[1].id)

    # ========== Lookup ==========

    def resolve_node(self, node_id: str) -> Tuple[Optional[NodeKey], bool]:
        """Resolve a public node identity string.

        Accepts "<kind>:<name>" identities and bare relation names.

        Returns:
            (key, fallback_used). ``key`` is None when nothing matches.
            ``fallback_used`` is True when a "table:" request was answered
            with a view (or the reverse).
        """
        text = (node_id or "").strip()
        if not text:
            return None, False
        if ":" not in text:
            return self.resolve_relation(text)
        try:
            key = NodeKey.parse(text)
        except ValueError:
            return None, False
        if key.kind is NodeKind.COLUMN:
            if key in self.graph:
                return key, False
            table, _, column = key.qualified_name.rpartition(".")
            return self.resolve_column(table, column), False
        if key in self.graph:
            return key, False
        if key.kind in _INTERCHANGEABLE:
            alternate = key.with_kind(_INTERCHANGEABLE[key.kind])
            if alternate in self.graph:
                logger.debug(
                    "Lookup of %s answered with %s", key.node_id, alternate.node_id
                )
                return alternate, True
        return self.resolve_relation(key.qualified_name, kinds=(key.kind,))

    def resolve_relation(
        self,
        name: str,
        kinds: Iterable[NodeKind] = RELATION_LOOKUP_ORDER,
    ) -> Tuple[Optional[NodeKey], bool]:
        """Resolve a relation name to a node key.

        The exact normalized name is tried first for each kind, then the
        default schema, then a unique same-named relation in any schema.

        Returns:
            (key, fallback_used); ``key`` is None when nothing matches.
        """
        kinds = tuple(kinds)
        qualified = normalize_name(name)
        if not qualified:
            return None, False
        candidates = [qualified]
        schema, base = split_qualified_name(qualified)
        if schema is None and self.default_schema:
            candidates.append(normalize_name(base, self.default_schema))
        elif schema is not None and schema == self.default_schema:
            candidates.append(base)

        for candidate in candidates:
            for kind in kinds:
                key = NodeKey(kind, candidate)
                if key in self.graph:
                    return key, False

        matches = [
            key
            for key in self.graph.nodes
            if key.kind in kinds
            and split_qualified_name(key.qualified_name)[1] == base
            and (schema is None or split_qualified_name(key.qualified_name)[0] is None)
        ]
        if len(matches) == 1:
            return matches[0], False
        return None, False

    def resolve_column(self, table: str, column: str) -> Optional[NodeKey]:
        """Resolve a (relation name, column name) pair to a column key."""
        relation, _ = self.resolve_relation(table)
        if relation is None or not column:
            return None
        key = NodeKey.column(relation, column)
        return key if key in self.graph else None

    def relation_names(self) -> List[str]:
        return sorted({node.key.qualified_name for node in self.relations()})

    def find_similar_names(self, name: str, limit: int = 3) -> List[str]:
        """Return relation names similar to ``name`` (column nodes excluded)."""
        text = name.split(":", 1)[1] if ":" in name else name
        return find_similar_names(text, self.relation_names(), limit=limit)

    # ========== Graph queries ==========

    def _relation_digraph(self) -> nx.DiGraph:
        relations = [key for key in self.graph.nodes if key.kind.is_relation()]
        return nx.DiGraph(self.graph.subgraph(relations))

    def find_root_sources(self) -> List[LineageNode]:
        """Relations that feed others but are fed by nothing."""
        digraph = self._relation_digraph()
        return sorted(
            (
                self.graph.nodes[key]["node"]
                for key in digraph.nodes
                if digraph.in_degree(key) == 0 and digraph.out_degree(key) > 0
            ),
            key=lambda node: node.id,
        )

    def find_terminal_nodes(self) -> List[LineageNode]:
        """Relations that are fed by others but feed nothing."""
        digraph = self._relation_digraph()
        return sorted(
            (
                self.graph.nodes[key]["node"]
                for key in digraph.nodes
                if digraph.out_degree(key) == 0 and digraph.in_degree(key) > 0
            ),
            key=lambda node: node.id,
        )

    def detect_cycles(self) -> List[List[str]]:
        """Return relation-level cycles as lists of node ids (self-loops included)."""
        cycles = [
            [key.node_id for key in cycle]
            for cycle in nx.simple_cycles(self._relation_digraph())
        ]
        return sorted(cycles)

    def get_paths_between(
        self, source: NodeKey, target: NodeKey, max_depth: int = 10
    ) -> List[List[str]]:
        """Return simple relation paths from ``source`` to ``target``."""
        digraph = self._relation_digraph()
        if source not in digraph or target not in digraph:
            return []
        return sorted(
            [key.node_id for key in path]
            for path in nx.all_simple_paths(digraph, source, target, cutoff=max_depth)
        )

    # ========== Export ==========

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "nodes": [node.to_dict() for node in self.nodes()],
            "edges": [edge.to_dict() for edge in self.edges()],
            "column_edges": [edge.to_dict() for edge in self.column_edges()],
        }

    def get_statistics(self) -> Dict[str, int]:
        """Return node and edge counts by kind, plus cycle count and max depth.

        ``max_depth`` is the longest relation path, or -1 when the relation
        graph has cycles.
        """
        stats: Dict[str, int] = {
            "total_nodes": self.graph.number_of_nodes(),
            "total_edges": len(self.edges()),
            "column_edges": len(self.column_edges()),
            "references": len(self.references),
        }
        for kind in NodeKind:
            stats[f"{kind.value}_nodes"] = len(self.nodes(kind))

        digraph = self._relation_digraph()
        cycles = self.detect_cycles()
        stats["cycles"] = len(cycles)
        stats["max_depth"] = (
            nx.dag_longest_path_length(digraph) if not cycles else -1
        )
        return stats

    def to_dot(self, include_columns: bool = False) -> str:
        """Export the graph to Graphviz DOT format."""
        shapes = {
            NodeKind.TABLE: "box",
            NodeKind.VIEW: "box3d",
            NodeKind.CTE: "component",
            NodeKind.EXTERNAL: "note",
            NodeKind.COLUMN: "ellipse",
        }
        lines = ["digraph lineage {", "  rankdir=LR;"]
        for node in self.nodes():
            if node.kind is NodeKind.COLUMN and not include_columns:
                continue
            lines.append(
                f'  "{node.id}" [label="{node.name}", shape={shapes[node.kind]}];'
            )
        edges: List[AnyEdge] = list(self.edges())
        if include_columns:
            edges.extend(self.column_edges())
        for edge in edges:
            label = (
                edge.edge_type.value
                if isinstance(edge, LineageEdge)
                else edge.transform.value
            )
            lines.append(
                f'  "{edge.source.node_id}" -> "{edge.target.node_id}" [label="{label}"];'
            )
        lines.append("}")
        return "\n".join(lines)
