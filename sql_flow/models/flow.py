"""
Per-statement execution-flow graph model.

A FlowGraph describes how one statement moves rows through pipeline stages.
Nodes are FlowNode values (table scans, joins, filters, aggregates, ...) and
edges are FlowEdge values that remember the clause which produced them, so a
consumer can explain why an edge exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class FlowNodeType(str, Enum):
    """Pipeline node kinds."""

    TABLE = "table"
    FILTER = "filter"
    JOIN = "join"
    AGGREGATE = "aggregate"
    SORT = "sort"
    LIMIT = "limit"
    PROJECTION = "projection"
    RESULT = "result"
    CTE = "cte"
    SET_OPERATION = "set_operation"
    SUBQUERY = "subquery"
    WINDOW = "window"
    CASE = "case"


class ClauseType(str, Enum):
    """Clause that produced a flow edge."""

    JOIN = "join"
    WHERE = "where"
    HAVING = "having"
    ON = "on"
    FILTER = "filter"
    FLOW = "flow"


@dataclass
class JoinDetail:
    join_type: str
    condition: Optional[str] = None


@dataclass
class AggregateFunctionDetail:
    name: str
    expression: str
    alias: Optional[str] = None


@dataclass
class AggregateDetail:
    functions: List[AggregateFunctionDetail] = field(default_factory=list)
    group_by: List[str] = field(default_factory=list)
    having: Optional[str] = None


@dataclass
class WindowFunctionDetail:
    name: str
    partition_by: List[str] = field(default_factory=list)
    order_by: List[str] = field(default_factory=list)
    frame: Optional[str] = None
    alias: Optional[str] = None


@dataclass
class CaseConditionDetail:
    when: str
    then: str


@dataclass
class CaseDetail:
    conditions: List[CaseConditionDetail] = field(default_factory=list)
    else_value: Optional[str] = None
    alias: Optional[str] = None


@dataclass
class FlowNode:
    """One pipeline stage of a statement.

    Attributes:
        id: Identity, unique within the statement (including nested graphs).
        type: Pipeline node kind.
        label: Short human label ("orders", "LEFT JOIN", "WHERE").
        description: Optional longer description.
        details: Free-form detail lines.
        start_line: First source line of the originating clause.
        end_line: Last source line of the originating clause.
        join: Join type and condition for join nodes.
        aggregate: Aggregate functions and group keys for aggregate nodes.
        windows: Window functions computed by this node.
        cases: CASE expressions computed by this node.
        columns: Output columns of projection nodes.
        children: Nested pipeline of a CTE or subquery body.
        table_category: "physical", "derived" or "cte_reference" for sources.
        access_mode: "read", "write" or "derived".
        operation_type: Statement operation of result nodes.
    """

    id: str
    type: FlowNodeType
    label: str
    description: Optional[str] = None
    details: List[str] = field(default_factory=list)
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    join: Optional[JoinDetail] = None
    aggregate: Optional[AggregateDetail] = None
    windows: List[WindowFunctionDetail] = field(default_factory=list)
    cases: List[CaseDetail] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    children: Optional["FlowGraph"] = None
    table_category: Optional[str] = None
    access_mode: Optional[str] = None
    operation_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "label": self.label,
            "description": self.description,
            "details": list(self.details),
            "start_line": self.start_line,
            "end_line": self.end_line,
        }
        if self.join:
            data["join"] = {
                "join_type": self.join.join_type,
                "condition": self.join.condition,
            }
        if self.aggregate:
            data["aggregate"] = {
                "functions": [
                    {"name": f.name, "expression": f.expression, "alias": f.alias}
                    for f in self.aggregate.functions
                ],
                "group_by": list(self.aggregate.group_by),
                "having": self.aggregate.having,
            }
        if self.windows:
            data["windows"] = [
                {
                    "name": w.name,
                    "partition_by": list(w.partition_by),
                    "order_by": list(w.order_by),
                    "frame": w.frame,
                    "alias": w.alias,
                }
                for w in self.windows
            ]
        if self.cases:
            data["cases"] = [
                {
                    "conditions": [
                        {"when": c.when, "then": c.then} for c in case.conditions
                    ],
                    "else": case.else_value,
                    "alias": case.alias,
                }
                for case in self.cases
            ]
        if self.columns:
            data["columns"] = list(self.columns)
        if self.children is not None:
            data["children"] = self.children.to_dict()
        for key in ("table_category", "access_mode", "operation_type"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class FlowEdge:
    """Directed data-flow connection between two nodes of one statement."""

    id: str
    source: str
    target: str
    label: Optional[str] = None
    sql_clause: Optional[str] = None
    clause_type: ClauseType = ClauseType.FLOW
    start_line: Optional[int] = None
    end_line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "label": self.label,
            "sql_clause": self.sql_clause,
            "clause_type": self.clause_type.value,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }


@dataclass
class FlowGraph:
    """Execution-flow graph of one statement (or of a nested CTE/subquery body).

    Attributes:
        nodes: Nodes in creation order (which follows logical execution order).
        edges: Data-flow edges.
        root: Id of the terminal node (the result node of a statement, or the
            projection of a nested body).
        statement_kind: Kind of the statement this graph was built from.
        statement_index: Position of the statement in its batch.
        warnings: Non-fatal issues found while building.
    """

    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    root: Optional[str] = None
    statement_kind: Optional[str] = None
    statement_index: int = 0
    warnings: List[str] = field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def nodes_of_type(self, node_type: FlowNodeType) -> List[FlowNode]:
        return [node for node in self.nodes if node.type == node_type]

    def incoming(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.target == node_id]

    def outgoing(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root,
            "statement_kind": self.statement_kind,
            "statement_index": self.statement_index,
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
            "warnings": list(self.warnings),
        }


@dataclass
class PartialFailure:
    """A statement that was adapted but whose flow graph could not be built.

    Attributes:
        statement_index: Position of the statement in its batch.
        message: Why building failed.
        partial: Whatever part of the graph was built before the failure.
    """

    statement_index: int
    message: str
    partial: Optional[FlowGraph] = None


FlowBuildOutcome = Union[FlowGraph, PartialFailure]


@dataclass
class StatementResult:
    """Outcome of one statement of a batch."""

    index: int
    sql: str
    start_line: int
    graph: Optional[FlowGraph] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": f"query-{self.index + 1}",
            "index": self.index,
            "sql": self.sql,
            "start_line": self.start_line,
            "success": self.success,
            "error": self.error,
            "graph": self.graph.to_dict() if self.graph else None,
        }


@dataclass
class BatchResult:
    """Outcome of processing a multi-statement script."""

    statements: List[StatementResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.statements)

    @property
    def successful(self) -> int:
        return sum(1 for s in self.statements if s.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "statements": [s.to_dict() for s in self.statements],
        }
