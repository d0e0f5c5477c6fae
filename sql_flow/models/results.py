"""
Analyzer result value objects.

FlowResult, ImpactReport and ColumnLineageResult hold copies of the nodes
and edges they report and never reference the lineage graph, so they remain
valid after the graph is rebuilt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from sql_flow.models.lineage import ColumnEdge, LineageEdge, LineageNode

AnyEdge = Union[LineageEdge, ColumnEdge]


@dataclass
class FlowPath:
    """A concrete path from the traversal start to one reached node.

    Attributes:
        nodes: Ordered nodes, starting with the traversal start.
        edges: Ordered edges between consecutive nodes.
    """

    nodes: List[LineageNode] = field(default_factory=list)
    edges: List[AnyEdge] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.edges)

    @property
    def signature(self) -> Tuple[str, ...]:
        """Ordered node-id sequence identifying the path."""
        return tuple(node.id for node in self.nodes)

    def to_string(self, use_ascii: bool = False) -> str:
        separator = " -> " if use_ascii else " → "
        return separator.join(node.id for node in self.nodes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.to_string(use_ascii=True),
            "depth": self.depth,
            "nodes": [node.id for node in self.nodes],
            "edges": [edge.id for edge in self.edges],
        }


@dataclass
class FlowResult:
    """Output of a Flow Analyzer traversal.

    Attributes:
        nodes: Reached nodes, deduplicated by identity, in discovery order.
        edges: Traversed edges, deduplicated by identity.
        paths: One shortest concrete path per reached node.
        depth: Largest hop distance among reached nodes.
        distances: Hop distance of each reported node id.
    """

    nodes: List[LineageNode] = field(default_factory=list)
    edges: List[AnyEdge] = field(default_factory=list)
    paths: List[FlowPath] = field(default_factory=list)
    depth: int = 0
    distances: Dict[str, int] = field(default_factory=dict)

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
            "paths": [path.to_dict() for path in self.paths],
            "depth": self.depth,
            "distances": dict(self.distances),
        }


class ChangeType(str, Enum):
    """Kinds of proposed schema change."""

    MODIFY = "modify"
    RENAME = "rename"
    DROP = "drop"
    ADD_COLUMN = "add_column"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class Severity(str, Enum):
    """Impact severity, ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def highest(cls, *levels: Severity) -> Severity:
        return max(levels, key=lambda level: level.rank, default=cls.LOW)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


@dataclass
class ImpactTarget:
    kind: str
    name: str
    table_name: Optional[str] = None
    node_id: Optional[str] = None


@dataclass
class ImpactItem:
    """One affected node.

    Attributes:
        node: Affected node.
        impact_type: "direct" (hop 1) or "transitive".
        distance: Hop distance from the changed object.
        relationship: Type of the edge through which the node was reached.
        reason: Human-readable explanation.
        file_path: Where the affected object is defined or referenced.
        line_number: Line in ``file_path``.
        severity: Severity of this item.
    """

    node: LineageNode
    impact_type: str
    distance: int
    relationship: Optional[str]
    reason: str
    file_path: Optional[str]
    line_number: Optional[int]
    severity: Severity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node.id,
            "name": self.node.name,
            "type": self.node.kind.value,
            "impact_type": self.impact_type,
            "distance": self.distance,
            "relationship": self.relationship,
            "reason": self.reason,
            "file_path": self.file_path,
            "line_number": self.line_number,
            "severity": self.severity.value,
        }


@dataclass
class ImpactSummary:
    total_affected: int = 0
    tables_affected: int = 0
    views_affected: int = 0
    queries_affected: int = 0
    files_affected: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_affected": self.total_affected,
            "tables_affected": self.tables_affected,
            "views_affected": self.views_affected,
            "queries_affected": self.queries_affected,
            "files_affected": self.files_affected,
        }


@dataclass
class ImpactReport:
    """Blast radius of a proposed table or column change."""

    change_type: ChangeType
    target: ImpactTarget
    severity: Severity = Severity.LOW
    summary: ImpactSummary = field(default_factory=ImpactSummary)
    direct_impacts: List[ImpactItem] = field(default_factory=list)
    transitive_impacts: List[ImpactItem] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    warning: Optional[str] = None
    similar_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "change_type": self.change_type.value,
            "target": {
                "type": self.target.kind,
                "name": self.target.name,
                "table_name": self.target.table_name,
                "node_id": self.target.node_id,
            },
            "severity": self.severity.value,
            "summary": self.summary.to_dict(),
            "direct_impacts": [item.to_dict() for item in self.direct_impacts],
            "transitive_impacts": [
                item.to_dict() for item in self.transitive_impacts
            ],
            "suggestions": list(self.suggestions),
            "warning": self.warning,
            "similar_names": list(self.similar_names),
        }


@dataclass
class ColumnLineageHop:
    """One column on a column-lineage path.

    ``transform`` and ``expression`` describe the edge that connects this hop
    to the previous one; both are None on the first hop.
    """

    node_id: str
    table: str
    column: str
    transform: Optional[str] = None
    expression: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "table": self.table,
            "column": self.column,
            "transform": self.transform,
            "expression": self.expression,
        }


@dataclass
class ColumnLineagePath:
    hops: List[ColumnLineageHop] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return max(0, len(self.hops) - 1)

    @property
    def node_ids(self) -> List[str]:
        return [hop.node_id for hop in self.hops]

    def to_string(self, use_ascii: bool = False) -> str:
        if not self.hops:
            return "(empty path)"
        separator = " <- " if use_ascii else " ← "
        return separator.join(f"{hop.table}.{hop.column}" for hop in self.hops)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depth": self.depth,
            "path": self.to_string(use_ascii=True),
            "hops": [hop.to_dict() for hop in self.hops],
        }


@dataclass
class ColumnLineageResult:
    table: str
    column: str
    upstream: List[ColumnLineagePath] = field(default_factory=list)
    downstream: List[ColumnLineagePath] = field(default_factory=list)
    warning: Optional[str] = None
    similar_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "column": self.column,
            "upstream": [path.to_dict() for path in self.upstream],
            "downstream": [path.to_dict() for path in self.downstream],
            "warning": self.warning,
            "similar_names": list(self.similar_names),
        }


@dataclass
class LookupFailure:
    """Structured lookup failure returned at the public boundary."""

    node_id: str
    message: str
    similar_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "lookup_failure",
            "node_id": self.node_id,
            "message": self.message,
            "similar_names": list(self.similar_names),
        }


@dataclass
class CallerError:
    """Structured caller-input error returned at the public boundary."""

    message: str
    field_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "invalid_request",
            "message": self.message,
            "field": self.field_name,
        }
