"""
Flow graph builder.

This module defines the FlowGraphBuilder class, which turns one adapted
Statement into a FlowGraph of pipeline stages in logical execution order:
sources, joins, WHERE, aggregation, HAVING, ORDER BY, LIMIT, projection and
result. CTE and subquery bodies become nested graphs attached to their node.
"""

from typing import Dict, List, Optional, Union

from sql_flow.exceptions import StatementParseError
from sql_flow.models.flow import (
    AggregateDetail,
    AggregateFunctionDetail,
    BatchResult,
    CaseConditionDetail,
    CaseDetail,
    ClauseType,
    FlowEdge,
    FlowGraph,
    FlowNode,
    FlowNodeType,
    JoinDetail,
    PartialFailure,
    StatementResult,
    WindowFunctionDetail,
)
from sql_flow.models.statement import (
    JoinSpec,
    LineSpan,
    PredicateSpec,
    Query,
    SelectQuery,
    SetOperationQuery,
    SourceKind,
    Statement,
    StatementKind,
    TableReference,
)
from sql_flow.parser.ast_adapter import AstAdapter
from sql_flow.parser.script_reader import parse_chunk
from sql_flow.parser.script_splitter import ScriptSplitter
from sql_flow.utils.logging import get_logger

logger = get_logger(__name__)

CteNodes = Dict[str, str]


class FlowGraphBuilder:
    """Builds the execution-flow graph of one statement.

    Node ids are "<type>_<n>" and are unique within the statement, nested
    graphs included.

    Usage:
        builder = FlowGraphBuilder()
        outcome = builder.build(statement)
        if isinstance(outcome, FlowGraph):
            print(outcome.root)
    """

    def __init__(self) -> None:
        self._node_counter = 0
        self._edge_counter = 0

    def build(self, statement: Statement) -> Union[FlowGraph, PartialFailure]:
        """Build the flow graph of an adapted statement.

        Returns:
            The FlowGraph, or a PartialFailure carrying whatever was built
            when construction fails.
        """
        self._node_counter = 0
        self._edge_counter = 0
        graph = FlowGraph(
            statement_kind=statement.kind.value,
            statement_index=statement.index,
        )
        try:
            self._build_statement(graph, statement)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Flow graph of statement %d failed: %s", statement.index + 1, e
            )
            return PartialFailure(
                statement_index=statement.index,
                message=f"Failed to build flow graph: {e}",
                partial=graph,
            )
        return graph

    # ========== Node and edge helpers ==========

    def _add_node(
        self,
        graph: FlowGraph,
        node_type: FlowNodeType,
        label: str,
        span: Optional[LineSpan] = None,
        **kwargs,
    ) -> FlowNode:
        self._node_counter += 1
        node = FlowNode(
            id=f"{node_type.value}_{self._node_counter}",
            type=node_type,
            label=label,
            start_line=span.start if span else None,
            end_line=span.end if span else None,
            **kwargs,
        )
        graph.nodes.append(node)
        return node

    def _connect(
        self,
        graph: FlowGraph,
        source: str,
        target: str,
        clause_type: ClauseType = ClauseType.FLOW,
        sql_clause: Optional[str] = None,
        label: Optional[str] = None,
        span: Optional[LineSpan] = None,
    ) -> FlowEdge:
        self._edge_counter += 1
        edge = FlowEdge(
            id=f"edge_{self._edge_counter}",
            source=source,
            target=target,
            label=label,
            sql_clause=sql_clause,
            clause_type=clause_type,
            start_line=span.start if span else None,
            end_line=span.end if span else None,
        )
        graph.edges.append(edge)
        return edge

    # ========== Statements ==========

    def _build_statement(self, graph: FlowGraph, statement: Statement) -> None:
        kind = statement.kind
        tail: Optional[str] = None

        if kind in (StatementKind.UPDATE, StatementKind.DELETE, StatementKind.MERGE):
            tail = self._build_dml_pipeline(graph, statement)
        elif statement.query is not None:
            tail = self._build_query(graph, statement.query, {})
        elif kind is StatementKind.INSERT and statement.values_rows:
            rows = statement.values_rows
            tail = self._add_node(
                graph,
                FlowNodeType.TABLE,
                f"VALUES ({rows} row{'s' if rows != 1 else ''})",
                span=statement.span,
                table_category="derived",
                access_mode="derived",
            ).id
        elif kind is StatementKind.OTHER:
            graph.warnings.append("Statement kind has no flow model")

        result = self._add_node(
            graph,
            FlowNodeType.RESULT,
            self._result_label(statement),
            span=statement.span,
            access_mode="read" if kind is StatementKind.SELECT else "write",
            operation_type=kind.value.upper(),
            columns=self._result_columns(statement),
        )
        if statement.target is not None:
            result.description = statement.target.qualified_name
        if tail is not None:
            self._connect(graph, tail, result.id)
        graph.root = result.id

    def _result_label(self, statement: Statement) -> str:
        target = statement.target.display_name if statement.target else None
        labels = {
            StatementKind.SELECT: "Result",
            StatementKind.INSERT: f"INSERT INTO {target}",
            StatementKind.UPDATE: f"UPDATE {target}",
            StatementKind.DELETE: f"DELETE FROM {target}",
            StatementKind.MERGE: f"MERGE INTO {target}",
            StatementKind.CREATE_TABLE: f"CREATE TABLE {target}",
            StatementKind.CREATE_TABLE_AS: f"CREATE TABLE {target}",
            StatementKind.CREATE_VIEW: f"CREATE VIEW {target}",
            StatementKind.DROP: f"DROP {target}",
        }
        return labels.get(statement.kind, "Statement")

    def _result_columns(self, statement: Statement) -> List[str]:
        if statement.columns:
            return [column.name for column in statement.columns]
        if statement.target_columns:
            return list(statement.target_columns)
        if statement.assignments:
            return [item.output_name for item in statement.assignments]
        return []

    def _build_dml_pipeline(self, graph: FlowGraph, statement: Statement) -> str:
        """UPDATE / DELETE / MERGE: start at the target, then sources and WHERE."""
        target = statement.target
        tail = self._add_node(
            graph,
            FlowNodeType.TABLE,
            target.display_name,
            span=LineSpan.single(target.line) if target.line else None,
            description=target.qualified_name,
            table_category="physical",
            access_mode="write",
        ).id

        for source in statement.sources:
            right = self._source_node(graph, source, {})
            join = self._add_node(
                graph,
                FlowNodeType.JOIN,
                source.clause.value.upper(),
                join=JoinDetail(join_type=source.clause.value.upper()),
            )
            self._connect(graph, tail, join.id, ClauseType.JOIN)
            self._connect(graph, right, join.id, ClauseType.JOIN)
            tail = join.id

        for spec in statement.joins:
            tail = self._add_join(graph, tail, spec, {})

        if statement.where is not None:
            label = "ON" if statement.kind is StatementKind.MERGE else "WHERE"
            tail = self._add_filter(
                graph, tail, statement.where, label, ClauseType.WHERE, {}
            )
        return tail

    # ========== Queries ==========

    def _build_query(self, graph: FlowGraph, query: Query, ctes: CteNodes) -> str:
        """Add the pipeline of a query to ``graph`` and return its tail node id."""
        ctes = dict(ctes)
        for cte in query.ctes:
            node = self._add_node(
                graph,
                FlowNodeType.CTE,
                cte.name,
                span=cte.span,
                details=["RECURSIVE"] if cte.recursive else [],
                columns=list(cte.columns),
                children=self._build_nested(cte.query),
                table_category="derived",
                access_mode="derived",
            )
            ctes[cte.name] = node.id

        if isinstance(query, SetOperationQuery):
            tail = self._build_set_operation(graph, query, ctes)
            return self._add_sort_and_limit(graph, tail, query)
        return self._build_select(graph, query, ctes)

    def _build_nested(self, query: Query) -> FlowGraph:
        nested = FlowGraph()
        nested.root = self._build_query(nested, query, {})
        return nested

    def _build_set_operation(
        self, graph: FlowGraph, query: SetOperationQuery, ctes: CteNodes
    ) -> str:
        left = self._build_query(graph, query.left, ctes)
        right = self._build_query(graph, query.right, ctes)
        node = self._add_node(
            graph, FlowNodeType.SET_OPERATION, query.operator, span=query.span
        )
        self._connect(graph, left, node.id, label="left")
        self._connect(graph, right, node.id, label="right")
        return node.id

    def _build_select(
        self, graph: FlowGraph, query: SelectQuery, ctes: CteNodes
    ) -> str:
        tail: Optional[str] = None
        for source in query.sources:
            node_id = self._source_node(graph, source, ctes)
            if tail is None:
                tail = node_id
                continue
            join = self._add_node(
                graph,
                FlowNodeType.JOIN,
                "CROSS JOIN",
                join=JoinDetail(join_type="CROSS JOIN"),
            )
            self._connect(graph, tail, join.id, ClauseType.JOIN)
            self._connect(graph, node_id, join.id, ClauseType.JOIN)
            tail = join.id

        for spec in query.joins:
            if tail is None:
                tail = self._source_node(graph, spec.source, ctes)
            else:
                tail = self._add_join(graph, tail, spec, ctes)

        if query.where is not None:
            tail = self._add_filter(
                graph, tail, query.where, "WHERE", ClauseType.WHERE, ctes
            )

        if query.aggregate is not None:
            aggregate = query.aggregate
            node = self._add_node(
                graph,
                FlowNodeType.AGGREGATE,
                "GROUP BY" if aggregate.group_by else "AGGREGATE",
                span=aggregate.span,
                details=list(aggregate.group_by),
                aggregate=AggregateDetail(
                    functions=[
                        AggregateFunctionDetail(
                            name=call.function,
                            expression=call.expression,
                            alias=call.alias,
                        )
                        for call in aggregate.functions
                    ],
                    group_by=list(aggregate.group_by),
                    having=query.having.text if query.having else None,
                ),
            )
            if tail is not None:
                self._connect(graph, tail, node.id)
            tail = node.id

        if query.having is not None:
            tail = self._add_filter(
                graph, tail, query.having, "HAVING", ClauseType.HAVING, ctes
            )

        tail = self._add_sort_and_limit(graph, tail, query)

        label = "SELECT DISTINCT" if query.distinct else "SELECT"
        projection = self._add_node(
            graph,
            FlowNodeType.PROJECTION,
            label,
            span=query.span,
            details=[item.expression for item in query.projection],
            columns=[item.output_name for item in query.projection],
            windows=[
                WindowFunctionDetail(
                    name=window.function,
                    partition_by=list(window.partition_by),
                    order_by=list(window.order_by),
                    frame=window.frame,
                    alias=window.alias,
                )
                for window in query.windows
            ],
            cases=[
                CaseDetail(
                    conditions=[
                        CaseConditionDetail(when=branch.when, then=branch.then)
                        for branch in case.branches
                    ],
                    else_value=case.else_value,
                    alias=case.alias,
                )
                for case in query.cases
            ],
        )
        if tail is not None:
            self._connect(graph, tail, projection.id)
        return projection.id

    def _add_sort_and_limit(
        self, graph: FlowGraph, tail: Optional[str], query: Query
    ) -> Optional[str]:
        if query.order_by:
            node = self._add_node(
                graph,
                FlowNodeType.SORT,
                "ORDER BY",
                span=query.order_span,
                details=list(query.order_by),
            )
            if tail is not None:
                self._connect(graph, tail, node.id)
            tail = node.id
        if query.limit is not None:
            node = self._add_node(
                graph,
                FlowNodeType.LIMIT,
                f"LIMIT {query.limit}",
                span=query.limit_span,
            )
            if tail is not None:
                self._connect(graph, tail, node.id)
            tail = node.id
        return tail

    # ========== Sources, joins and filters ==========

    def _source_node(
        self, graph: FlowGraph, source: TableReference, ctes: CteNodes
    ) -> str:
        span = LineSpan.single(source.line) if source.line else None
        if source.source_kind is SourceKind.CTE:
            cte_id = ctes.get(source.name.lower())
            if cte_id is not None:
                return cte_id
            return self._add_node(
                graph,
                FlowNodeType.TABLE,
                source.display_name,
                span=span,
                description=source.name.lower(),
                table_category="cte_reference",
                access_mode="read",
            ).id
        if source.source_kind is SourceKind.SUBQUERY:
            return self._add_node(
                graph,
                FlowNodeType.SUBQUERY,
                source.alias or source.name,
                span=span,
                children=self._build_nested(source.query),
                table_category="derived",
                access_mode="derived",
            ).id
        if source.source_kind in (SourceKind.FUNCTION, SourceKind.VALUES):
            label = source.display_name
            if source.source_kind is SourceKind.FUNCTION:
                label = f"{source.name}()"
            return self._add_node(
                graph,
                FlowNodeType.TABLE,
                label,
                span=span,
                table_category="derived",
                access_mode="derived",
            ).id
        return self._add_node(
            graph,
            FlowNodeType.TABLE,
            source.display_name,
            span=span,
            description=source.qualified_name,
            table_category="physical",
            access_mode="read",
        ).id

    def _add_join(
        self, graph: FlowGraph, tail: str, spec: JoinSpec, ctes: CteNodes
    ) -> str:
        right = self._source_node(graph, spec.source, ctes)
        node = self._add_node(
            graph,
            FlowNodeType.JOIN,
            spec.join_type,
            span=spec.span,
            details=[spec.condition] if spec.condition else [],
            join=JoinDetail(join_type=spec.join_type, condition=spec.condition),
        )
        self._connect(graph, tail, node.id, ClauseType.JOIN, span=spec.span)
        self._connect(
            graph,
            right,
            node.id,
            ClauseType.ON if spec.condition else ClauseType.JOIN,
            sql_clause=spec.condition,
            span=spec.span,
        )
        return node.id

    def _add_filter(
        self,
        graph: FlowGraph,
        tail: Optional[str],
        predicate: PredicateSpec,
        label: str,
        clause_type: ClauseType,
        ctes: CteNodes,
    ) -> str:
        node = self._add_node(
            graph,
            FlowNodeType.FILTER,
            label,
            span=predicate.span,
            details=[predicate.text],
        )
        if tail is not None:
            self._connect(
                graph,
                tail,
                node.id,
                clause_type,
                sql_clause=predicate.text,
                span=predicate.span,
            )
        for subquery in predicate.subqueries:
            nested = self._add_node(
                graph,
                FlowNodeType.SUBQUERY,
                "subquery",
                span=subquery.span,
                children=self._build_nested(subquery),
                table_category="derived",
                access_mode="derived",
            )
            self._connect(graph, nested.id, node.id, ClauseType.FILTER)
        return node.id


def build_flow_graph(statement: Statement) -> Union[FlowGraph, PartialFailure]:
    """Build the flow graph of one adapted statement."""
    return FlowGraphBuilder().build(statement)


def build_batch(script: str, dialect: Optional[str] = None) -> BatchResult:
    """Parse, adapt and build every statement of a script independently.

    A statement that fails to parse or build is recorded with its error and
    position; processing continues with the next statement.
    """
    adapter = AstAdapter(dialect=dialect)
    builder = FlowGraphBuilder()
    batch = BatchResult()
    for chunk in ScriptSplitter().split(script, dialect):
        result = StatementResult(
            index=chunk.index, sql=chunk.sql, start_line=chunk.start_line
        )
        try:
            statement = parse_chunk(chunk, dialect, adapter)
        except StatementParseError as e:
            logger.warning("Skipping unparsable %s", e)
            result.error = str(e)
            batch.statements.append(result)
            continue

        outcome = builder.build(statement)
        if isinstance(outcome, PartialFailure):
            result.error = outcome.message
            result.graph = outcome.partial
        else:
            result.graph = outcome
        batch.statements.append(result)

    logger.debug(
        "Batch processed: %d statements, %d failed", batch.total, batch.failed
    )
    return batch
