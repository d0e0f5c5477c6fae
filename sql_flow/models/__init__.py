"""
Data models for flow and lineage analysis.

This package contains the intermediate statement form produced by the AST
adapter, the per-statement flow graph model, the workspace lineage graph
model, configuration, and analyzer result value objects.
"""

from sql_flow.models.config import MAX_DEPTH_CEILING, ErrorMode, FlowConfig
from sql_flow.models.flow import (
    BatchResult,
    ClauseType,
    FlowEdge,
    FlowGraph,
    FlowNode,
    FlowNodeType,
    PartialFailure,
    StatementResult,
)
from sql_flow.models.identity import NodeKey, NodeKind, normalize_name
from sql_flow.models.lineage import (
    ColumnEdge,
    EdgeType,
    FileInventory,
    LineageEdge,
    LineageNode,
    ReferenceType,
    SchemaDefinition,
    TableReferenceRecord,
)
from sql_flow.models.results import (
    CallerError,
    ChangeType,
    ColumnLineageHop,
    ColumnLineagePath,
    ColumnLineageResult,
    FlowPath,
    FlowResult,
    ImpactItem,
    ImpactReport,
    ImpactSummary,
    ImpactTarget,
    LookupFailure,
    Severity,
)
from sql_flow.models.statement import (
    ColumnTransform,
    SelectQuery,
    SetOperationQuery,
    SourceKind,
    Statement,
    StatementKind,
    TableReference,
)

__all__ = [
    "MAX_DEPTH_CEILING",
    "ErrorMode",
    "FlowConfig",
    "BatchResult",
    "ClauseType",
    "FlowEdge",
    "FlowGraph",
    "FlowNode",
    "FlowNodeType",
    "PartialFailure",
    "StatementResult",
    "NodeKey",
    "NodeKind",
    "normalize_name",
    "ColumnEdge",
    "EdgeType",
    "FileInventory",
    "LineageEdge",
    "LineageNode",
    "ReferenceType",
    "SchemaDefinition",
    "TableReferenceRecord",
    "CallerError",
    "ChangeType",
    "ColumnLineageHop",
    "ColumnLineagePath",
    "ColumnLineageResult",
    "FlowPath",
    "FlowResult",
    "ImpactItem",
    "ImpactReport",
    "ImpactSummary",
    "ImpactTarget",
    "LookupFailure",
    "Severity",
    "ColumnTransform",
    "SelectQuery",
    "SetOperationQuery",
    "SourceKind",
    "Statement",
    "StatementKind",
    "TableReference",
]
