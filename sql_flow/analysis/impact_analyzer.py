"""
Impact analyzer: blast radius of proposed schema changes.

This module defines the ImpactAnalyzer class. A change to a table, view or
column is resolved to a lineage node, its downstream closure is computed with
the flow analyzer, and every affected node is classified as a direct (one hop)
or transitive impact with a severity. The report closes with remediation
suggestions.
"""

from typing import Dict, List, Optional, Set, Tuple, Union

from sql_flow.analysis.flow_analyzer import UNBOUNDED, Direction, FlowAnalyzer
from sql_flow.exceptions import InvalidImpactRequestError
from sql_flow.graph.lineage_graph import LineageGraph
from sql_flow.models.config import FlowConfig
from sql_flow.models.identity import NodeKey, NodeKind
from sql_flow.models.lineage import LineageEdge, LineageNode
from sql_flow.models.results import (
    ChangeType,
    FlowResult,
    ImpactItem,
    ImpactReport,
    ImpactSummary,
    ImpactTarget,
    Severity,
)
from sql_flow.utils.logging import get_logger
from sql_flow.utils.similarity import find_similar_names

logger = get_logger(__name__)

# (direct, transitive) severity per change type
SEVERITY_TABLE: Dict[ChangeType, Tuple[Severity, Severity]] = {
    ChangeType.DROP: (Severity.CRITICAL, Severity.HIGH),
    ChangeType.MODIFY: (Severity.HIGH, Severity.MEDIUM),
    ChangeType.RENAME: (Severity.HIGH, Severity.MEDIUM),
    ChangeType.ADD_COLUMN: (Severity.LOW, Severity.LOW),
}

# (minimum affected count, severity floor), highest first
COUNT_FLOORS = (
    (20, Severity.CRITICAL),
    (10, Severity.HIGH),
    (3, Severity.MEDIUM),
)


def count_floor(total: int) -> Severity:
    """Return the severity floor implied by the number of affected nodes."""
    for minimum, severity in COUNT_FLOORS:
        if total >= minimum:
            return severity
    return Severity.LOW


def parse_change_type(change_type: Union[str, ChangeType]) -> ChangeType:
    """Parse a change type, raising InvalidImpactRequestError when unknown."""
    if isinstance(change_type, ChangeType):
        return change_type
    try:
        return ChangeType(str(change_type).strip().lower())
    except ValueError as e:
        raise InvalidImpactRequestError(
            f"Invalid change type '{change_type}'. "
            f"Must be one of {ChangeType.values()}",
            field_name="change_type",
        ) from e


def _require(value: Optional[str], field_name: str, label: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidImpactRequestError(f"{label} is required", field_name=field_name)
    return str(value).strip()


class ImpactAnalyzer:
    """Assesses the impact of modify / rename / drop / add_column changes.

    Example:
        >>> report = ImpactAnalyzer(graph).analyze_table_change("orders", "drop")
        >>> report.severity.value
        'critical'
    """

    def __init__(self, graph: LineageGraph, config: Optional[FlowConfig] = None) -> None:
        self.graph = graph
        self.config = config or FlowConfig()

    def analyze_table_change(
        self, table_name: str, change_type: Union[str, ChangeType]
    ) -> ImpactReport:
        """Analyze a change to a table or view.

        Raises:
            InvalidImpactRequestError: If the name is blank or the change type
                is unknown.
        """
        name = _require(table_name, "table_name", "Table name")
        change = parse_change_type(change_type)
        graph = self.graph

        key, _ = graph.resolve_node(name)
        if key is None or key.kind is NodeKind.COLUMN:
            return self._unknown_target(graph, change, "table", name)

        report = ImpactReport(
            change_type=change,
            target=ImpactTarget(
                kind=key.kind.value, name=key.qualified_name, node_id=key.node_id
            ),
        )
        self._fill(graph, report, key, relation=key)
        return report

    def analyze_column_change(
        self,
        table_name: str,
        column_name: str,
        change_type: Union[str, ChangeType],
    ) -> ImpactReport:
        """Analyze a change to one column.

        An unknown column falls back to the table-level analysis, with a
        warning on the report.

        Raises:
            InvalidImpactRequestError: If the owning table or the column name
                is blank, or the change type is unknown. Checked before any
                graph access.
        """
        table = _require(table_name, "table_name", "Owning table name")
        column = _require(column_name, "column_name", "Column name")
        change = parse_change_type(change_type)
        graph = self.graph

        relation, _ = graph.resolve_node(table)
        if relation is None or relation.kind is NodeKind.COLUMN:
            return self._unknown_target(graph, change, "table", table)

        key = NodeKey.column(relation, column)
        if key not in graph:
            report = self.analyze_table_change(relation.node_id, change)
            report.warning = (
                f"Column '{column}' was not found in '{relation.qualified_name}'; "
                "showing table-level impact instead."
            )
            report.similar_names = self._similar_columns(graph, relation, column)
            return report

        report = ImpactReport(
            change_type=change,
            target=ImpactTarget(
                kind=NodeKind.COLUMN.value,
                name=key.column_name,
                table_name=relation.qualified_name,
                node_id=key.node_id,
            ),
        )
        self._fill(graph, report, key, relation=relation)
        return report

    # ========== Helpers ==========

    def _unknown_target(
        self, graph: LineageGraph, change: ChangeType, kind: str, name: str
    ) -> ImpactReport:
        similar = graph.find_similar_names(name, self.config.suggestion_limit)
        warning = f"Table '{name}' was not found in the workspace."
        if similar:
            warning += " Did you mean: " + ", ".join(f'"{s}"' for s in similar) + "?"
        logger.debug("Impact target %s not found", name)
        return ImpactReport(
            change_type=change,
            target=ImpactTarget(kind=kind, name=name),
            severity=Severity.LOW,
            warning=warning,
            similar_names=similar,
            suggestions=[f"Check the spelling of '{name}'."],
        )

    def _similar_columns(
        self, graph: LineageGraph, relation: NodeKey, column: str
    ) -> List[str]:
        names = [node.name for node in graph.columns_of(relation)]
        return find_similar_names(column, names, limit=self.config.suggestion_limit)

    def _fill(
        self,
        graph: LineageGraph,
        report: ImpactReport,
        key: NodeKey,
        relation: NodeKey,
    ) -> None:
        result = FlowAnalyzer.traverse(graph, key, Direction.DOWNSTREAM, UNBOUNDED)
        direct_severity, transitive_severity = SEVERITY_TABLE[report.change_type]

        for node, path_edge in self._affected(result, key):
            distance = result.distances[node.id]
            direct = distance == 1
            item = ImpactItem(
                node=node,
                impact_type="direct" if direct else "transitive",
                distance=distance,
                relationship=self._relationship(path_edge),
                reason=self._reason(node, key, distance, path_edge),
                file_path=node.file_path or getattr(path_edge, "file_path", None),
                line_number=node.line_number or getattr(path_edge, "line_number", None),
                severity=direct_severity if direct else transitive_severity,
            )
            if direct:
                report.direct_impacts.append(item)
            else:
                report.transitive_impacts.append(item)

        items = report.direct_impacts + report.transitive_impacts
        report.summary = self._summary(graph, items, relation)
        report.severity = Severity.highest(
            count_floor(report.summary.total_affected),
            *(item.severity for item in items),
        )
        report.suggestions = self._suggestions(report, items)

    def _affected(self, result: FlowResult, key: NodeKey):
        last_edges = {path.nodes[-1].id: path.edges[-1] for path in result.paths if path.edges}
        for node in result.nodes:
            if node.key == key:
                continue
            yield node, last_edges.get(node.id)

    def _relationship(self, edge) -> Optional[str]:
        if edge is None:
            return None
        if isinstance(edge, LineageEdge):
            return edge.edge_type.value
        return edge.transform.value

    def _reason(
        self, node: LineageNode, key: NodeKey, distance: int, edge
    ) -> str:
        relationship = self._relationship(edge) or "lineage"
        if distance == 1:
            return f"{node.kind.value} '{node.name}' reads {key.node_id} ({relationship})"
        return (
            f"{node.kind.value} '{node.name}' depends on {key.node_id} "
            f"through {distance - 1} intermediate object(s)"
        )

    def _summary(
        self, graph: LineageGraph, items: List[ImpactItem], relation: NodeKey
    ) -> ImpactSummary:
        relations: Set[NodeKey] = {relation}
        kinds: Dict[NodeKey, NodeKind] = {}
        for item in items:
            owner = item.node.parent if item.node.kind is NodeKind.COLUMN else item.node.key
            if owner is not None:
                relations.add(owner)
                kinds[owner] = owner.kind

        queries = set()
        files = set()
        for record in graph.references:
            if record.key in relations:
                queries.add((record.file_path, record.statement_index))
                files.add(record.file_path)
        for item in items:
            if item.file_path:
                files.add(item.file_path)

        return ImpactSummary(
            total_affected=len(items),
            tables_affected=sum(
                1 for kind in kinds.values() if kind in (NodeKind.TABLE, NodeKind.EXTERNAL)
            ),
            views_affected=sum(1 for kind in kinds.values() if kind is NodeKind.VIEW),
            queries_affected=len(queries),
            files_affected=len(files),
        )

    def _suggestions(self, report: ImpactReport, items: List[ImpactItem]) -> List[str]:
        target = report.target
        name = (
            f"{target.table_name}.{target.name}" if target.table_name else target.name
        )
        change = report.change_type
        suggestions: List[str] = []

        if not items:
            return [f"No dependents found: the change to '{name}' appears isolated."]

        views = sorted(
            {
                (item.node.parent.qualified_name if item.node.parent else item.node.name)
                for item in items
                if (item.node.parent or item.node.key).kind is NodeKind.VIEW
            }
        )
        if views:
            shown = ", ".join(views[:5])
            if len(views) > 5:
                shown += f" and {len(views) - 5} more"
            suggestions.append(
                f"Review view definitions that reference '{name}': {shown}."
            )
        if change is ChangeType.RENAME and report.summary.files_affected > 1:
            suggestions.append(
                f"Update all references to '{name}' across "
                f"{report.summary.files_affected} files before renaming."
            )
        if change is ChangeType.DROP:
            suggestions.append(
                f"Deprecate '{name}' first and migrate its "
                f"{len(report.direct_impacts)} direct dependent(s) before dropping it."
            )
        if change is ChangeType.ADD_COLUMN:
            suggestions.append(
                f"Review SELECT * consumers of '{name}' that will pick up the new column."
            )
        if target.kind == NodeKind.COLUMN.value:
            suggestions.append(
                f"Verify the queries that consume column '{name}' still produce "
                "the expected results."
            )
        if report.severity in (Severity.HIGH, Severity.CRITICAL):
            suggestions.append(
                "Schedule the change in a maintenance window and prepare a rollback plan."
            )
        return suggestions
