"""
Workspace facade.

This module defines the Workspace class, which owns the published lineage
graph of a set of SQL files and exposes the public string-keyed operations.
Rebuilds construct a complete new graph before the published reference is
swapped, so readers never observe a half-built graph and a failed rebuild
keeps the previous one.

Lookup failures and invalid caller input never escape as exceptions from the
public methods; they are returned as LookupFailure and CallerError values.
"""

from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterable,
    Dict,
    Iterable,
    List,
    Optional,
    Tuple,
    Union,
)

from sql_flow.analysis.column_lineage import ColumnLineageTracker
from sql_flow.analysis.flow_analyzer import Direction, FlowAnalyzer
from sql_flow.analysis.impact_analyzer import ImpactAnalyzer
from sql_flow.exceptions import (
    InvalidImpactRequestError,
    NodeNotFoundError,
    SqlFlowError,
    StatementParseError,
)
from sql_flow.flow.builder import FlowGraphBuilder, build_batch
from sql_flow.graph.lineage_builder import LineageGraphBuilder
from sql_flow.graph.lineage_graph import LineageGraph
from sql_flow.models.config import FlowConfig
from sql_flow.models.flow import BatchResult, FlowGraph, PartialFailure
from sql_flow.models.lineage import FileInventory
from sql_flow.models.results import (
    CallerError,
    ChangeType,
    ColumnLineageResult,
    FlowResult,
    ImpactReport,
    LookupFailure,
)
from sql_flow.parser.script_reader import parse_chunk
from sql_flow.parser.script_splitter import ScriptSplitter
from sql_flow.utils.logging import get_logger

logger = get_logger(__name__)

SourceFile = Union[FileInventory, Tuple[str, str]]


@dataclass
class RebuildReport:
    """Outcome of a workspace rebuild.

    Attributes:
        success: True if a new graph was published.
        error: Why the rebuild failed (the previous graph stays published).
        files: Number of files folded into the graph.
        statements: Number of statements adapted.
        parse_errors: Per-statement parse errors, prefixed with the file path.
        statistics: Node and edge counts of the published graph.
    """

    success: bool
    error: Optional[str] = None
    files: int = 0
    statements: int = 0
    parse_errors: List[str] = field(default_factory=list)
    statistics: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "files": self.files,
            "statements": self.statements,
            "parse_errors": list(self.parse_errors),
            "statistics": dict(self.statistics),
        }


class Workspace:
    """Lineage workspace over a set of SQL files.

    Attributes:
        config: Analysis configuration shared by every operation.
        graph: The currently published lineage graph (empty until the first
            successful rebuild).

    Example:
        >>> workspace = Workspace()
        >>> workspace.rebuild([("models.sql", sql)]).success
        True
        >>> workspace.get_upstream("view:customer_orders").node_ids
        ['table:customers', 'table:orders']
    """

    def __init__(self, config: Optional[FlowConfig] = None) -> None:
        self.config = config or FlowConfig()
        self._graph = LineageGraph(default_schema=self.config.default_schema)

    @property
    def graph(self) -> LineageGraph:
        return self._graph

    # ========== Rebuild ==========

    def rebuild(self, files: Iterable[SourceFile]) -> RebuildReport:
        """Build a new lineage graph and publish it.

        ``files`` holds FileInventory objects or (path, sql) pairs. On failure
        the previous graph stays published and the report carries the error.
        """
        try:
            inventories = [self._inventory(source) for source in files]
            graph = LineageGraphBuilder(self.config).build(inventories)
        except SqlFlowError as e:
            logger.error("Rebuild failed, keeping previous graph: %s", e)
            return RebuildReport(success=False, error=str(e))

        self._graph = graph
        report = RebuildReport(
            success=True,
            files=len(inventories),
            statements=sum(len(inv.statements) for inv in inventories),
            parse_errors=[
                f"{inv.path}: {error}" for inv in inventories for error in inv.errors
            ],
            statistics=graph.get_statistics(),
        )
        logger.info(
            "Published lineage graph: %d files, %d nodes, %d parse errors",
            report.files,
            len(graph),
            len(report.parse_errors),
        )
        return report

    async def rebuild_async(
        self, source: AsyncIterable[Tuple[str, str]]
    ) -> RebuildReport:
        """Gather (path, sql) pairs from an async source, then rebuild."""
        files = [(path, sql) async for path, sql in source]
        return self.rebuild(files)

    def _inventory(self, source: SourceFile) -> FileInventory:
        if isinstance(source, FileInventory):
            return source
        path, sql = source
        return FileInventory.from_sql(path, sql, dialect=self.config.dialect)

    # ========== Flow graphs ==========

    def build_flow_graph(
        self, sql: str
    ) -> Union[FlowGraph, PartialFailure, CallerError]:
        """Build the flow graph of the first statement of ``sql``."""
        chunks = ScriptSplitter().split(sql or "", self.config.dialect)
        if not chunks:
            return CallerError("SQL text is empty", field_name="sql")
        try:
            statement = parse_chunk(chunks[0], self.config.dialect)
        except StatementParseError as e:
            return PartialFailure(statement_index=e.statement_index, message=str(e))
        return FlowGraphBuilder().build(statement)

    def build_batch(self, script: str) -> BatchResult:
        """Build the flow graph of every statement of ``script``."""
        return build_batch(script or "", dialect=self.config.dialect)

    # ========== Lineage ==========

    def get_upstream(
        self,
        node_id: str,
        max_depth: object = None,
        exclude_external: Optional[bool] = None,
    ) -> Union[FlowResult, LookupFailure, CallerError]:
        return self.get_lineage(
            node_id, Direction.UPSTREAM, max_depth, exclude_external
        )

    def get_downstream(
        self,
        node_id: str,
        max_depth: object = None,
        exclude_external: Optional[bool] = None,
    ) -> Union[FlowResult, LookupFailure, CallerError]:
        return self.get_lineage(
            node_id, Direction.DOWNSTREAM, max_depth, exclude_external
        )

    def get_lineage(
        self,
        node_id: str,
        direction: Union[str, Direction] = Direction.BOTH,
        max_depth: object = None,
        exclude_external: Optional[bool] = None,
    ) -> Union[FlowResult, LookupFailure, CallerError]:
        analyzer = FlowAnalyzer(self._graph, self.config)
        try:
            return analyzer.get_lineage(node_id, direction, max_depth, exclude_external)
        except NodeNotFoundError as e:
            return LookupFailure(
                node_id=e.node_id, message=e.message, similar_names=e.similar_names
            )
        except ValueError as e:
            return CallerError(str(e), field_name="direction")

    # ========== Impact ==========

    def analyze_table_change(
        self, table_name: str, change_type: Union[str, ChangeType]
    ) -> Union[ImpactReport, CallerError]:
        try:
            return ImpactAnalyzer(self._graph, self.config).analyze_table_change(
                table_name, change_type
            )
        except InvalidImpactRequestError as e:
            return CallerError(e.message, field_name=e.field_name)

    def analyze_column_change(
        self,
        table_name: str,
        column_name: str,
        change_type: Union[str, ChangeType],
    ) -> Union[ImpactReport, CallerError]:
        try:
            return ImpactAnalyzer(self._graph, self.config).analyze_column_change(
                table_name, column_name, change_type
            )
        except InvalidImpactRequestError as e:
            return CallerError(e.message, field_name=e.field_name)

    # ========== Column lineage ==========

    def get_full_column_lineage(self, table: str, column: str) -> ColumnLineageResult:
        return ColumnLineageTracker(self._graph, self.config).get_full_column_lineage(
            table, column
        )
