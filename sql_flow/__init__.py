"""
sql-flow v1.0

Execution-flow graphs for single SQL statements and workspace-wide lineage
across many SQL files: upstream/downstream reachability, impact analysis of
schema changes and column lineage.

Example:
    >>> from sql_flow import Workspace
    >>> workspace = Workspace()
    >>> workspace.rebuild([("models.sql", sql_script)])
    >>> workspace.analyze_table_change("orders", "drop").severity.value
    'critical'
"""

import logging

from sql_flow.version import __version__, __version_info__

__author__ = "sql-flow Contributors"

from sql_flow.analysis.column_lineage import (
    ColumnLineageTracker,
    get_full_column_lineage,
)
from sql_flow.analysis.flow_analyzer import Direction, FlowAnalyzer, normalize_depth
from sql_flow.analysis.impact_analyzer import ImpactAnalyzer
from sql_flow.exceptions import (
    GraphBuildError,
    InvalidImpactRequestError,
    NodeNotFoundError,
    SqlFlowError,
    StatementParseError,
    UnresolvedReferenceError,
)
from sql_flow.flow.builder import FlowGraphBuilder, build_batch, build_flow_graph
from sql_flow.graph.lineage_builder import LineageGraphBuilder, build_lineage_graph
from sql_flow.graph.lineage_graph import LineageGraph
from sql_flow.models.config import ErrorMode, FlowConfig
from sql_flow.models.flow import BatchResult, FlowGraph, PartialFailure
from sql_flow.models.identity import NodeKey, NodeKind
from sql_flow.models.lineage import FileInventory
from sql_flow.models.results import (
    CallerError,
    ChangeType,
    ColumnLineageResult,
    FlowResult,
    ImpactReport,
    LookupFailure,
    Severity,
)
from sql_flow.parser.script_reader import read_statements
from sql_flow.parser.script_splitter import ScriptSplitter
from sql_flow.workspace import RebuildReport, Workspace

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Version info
    "__version__",
    "__version_info__",
    # Workspace
    "Workspace",
    "RebuildReport",
    # Flow graphs
    "FlowGraphBuilder",
    "build_flow_graph",
    "build_batch",
    "FlowGraph",
    "PartialFailure",
    "BatchResult",
    # Lineage graph
    "LineageGraph",
    "LineageGraphBuilder",
    "build_lineage_graph",
    "FileInventory",
    "NodeKey",
    "NodeKind",
    # Analysis
    "FlowAnalyzer",
    "Direction",
    "normalize_depth",
    "ImpactAnalyzer",
    "ColumnLineageTracker",
    "get_full_column_lineage",
    # Results
    "FlowResult",
    "ImpactReport",
    "ChangeType",
    "Severity",
    "ColumnLineageResult",
    "LookupFailure",
    "CallerError",
    # Configuration
    "FlowConfig",
    "ErrorMode",
    # Parser
    "ScriptSplitter",
    "read_statements",
    # Exceptions
    "SqlFlowError",
    "StatementParseError",
    "NodeNotFoundError",
    "InvalidImpactRequestError",
    "UnresolvedReferenceError",
    "GraphBuildError",
]
