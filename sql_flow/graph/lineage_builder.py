"""
Lineage graph builder.

This module defines the LineageGraphBuilder class, which folds the definitions
and statements of many files into one LineageGraph:

1. Pass 1 registers every CREATE TABLE / VIEW definition and its columns.
2. Pass 2 turns each statement's table references into lineage edges into
   the statement's output relation, builds CTE nodes, records every reference,
   and derives column edges from projections.

Construction happens on a private networkx graph that is frozen only when
complete, so a published LineageGraph is never partially populated.
"""

import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

import networkx as nx

from sql_flow.exceptions import GraphBuildError, UnresolvedReferenceError
from sql_flow.models.config import ErrorMode, FlowConfig
from sql_flow.models.identity import NodeKey, NodeKind, normalize_name, split_qualified_name
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
from sql_flow.models.statement import (
    ColumnSource,
    ColumnTransform,
    ProjectionItem,
    Query,
    ReferenceClause,
    SetOperationQuery,
    SourceKind,
    Statement,
    StatementKind,
    TableReference,
    iter_query_ctes,
    query_projection,
)
from sql_flow.graph.lineage_graph import LineageGraph
from sql_flow.utils.logging import get_logger

logger = get_logger(__name__)

_DML_EDGE_TYPES = {
    StatementKind.INSERT: EdgeType.INSERT,
    StatementKind.UPDATE: EdgeType.UPDATE,
    StatementKind.DELETE: EdgeType.DELETE,
}

_DML_REFERENCE_TYPES = {
    StatementKind.INSERT: ReferenceType.INSERT,
    StatementKind.UPDATE: ReferenceType.UPDATE,
    StatementKind.DELETE: ReferenceType.DELETE,
}

# (column key, transform of the hops folded into it, expression of those hops)
ResolvedColumn = Tuple[NodeKey, ColumnTransform, Optional[str]]


@dataclass
class _Read:
    """A relation read by a statement or CTE body."""

    reference: TableReference
    nested: bool


class LineageGraphBuilder:
    """Builds a LineageGraph from file inventories.

    Usage:
        builder = LineageGraphBuilder(FlowConfig(default_schema="public"))
        graph = builder.build([FileInventory.from_sql("models.sql", sql)])
    """

    def __init__(self, config: Optional[FlowConfig] = None) -> None:
        self.config = config or FlowConfig()

    def build(self, files: Sequence[FileInventory]) -> LineageGraph:
        """Build a new lineage graph.

        Raises:
            UnresolvedReferenceError: If a reference has no definition and the
                configuration asks for unresolved references to be fatal.
            GraphBuildError: If a statement cannot be folded into the graph.
        """
        self._graph = nx.MultiDiGraph()
        self._records: List[TableReferenceRecord] = []
        self._defined: Dict[str, NodeKey] = {}
        self._by_base_name: Dict[str, List[NodeKey]] = {}
        self._column_order: Dict[NodeKey, List[str]] = {}
        self._warned: Set[str] = set()

        for inventory in files:
            for definition in inventory.definitions:
                self._register_definition(definition)

        for inventory in files:
            for statement in inventory.statements:
                try:
                    self._fold_statement(inventory.path, statement)
                except (AttributeError, KeyError, TypeError, ValueError) as e:
                    raise GraphBuildError(
                        f"Cannot fold statement {statement.index + 1} of "
                        f"{inventory.path}: {e}"
                    ) from e

        logger.debug(
            "Lineage graph built from %d files: %d nodes, %d edges",
            len(files),
            self._graph.number_of_nodes(),
            self._graph.number_of_edges(),
        )
        return LineageGraph(self._graph, self._records, self.config.default_schema)

    # ========== Pass 1: definitions ==========

    def _register_definition(self, definition: SchemaDefinition) -> None:
        qualified = normalize_name(definition.name, definition.schema)
        existing = self._defined.get(qualified)
        if existing is not None:
            node = self._graph.nodes[existing]["node"]
            files = node.metadata.setdefault("definition_files", [])
            if definition.file_path not in files:
                files.append(definition.file_path)
            warnings.warn(
                f"Relation '{qualified}' is redefined in {definition.file_path}"
                f" (line {definition.line_number}); keeping the definition from"
                f" {node.file_path} (line {node.line_number}).",
                UserWarning,
            )
            return

        key = NodeKey(definition.kind, qualified)
        self._defined[qualified] = key
        self._by_base_name.setdefault(split_qualified_name(qualified)[1], []).append(key)
        self._add_node(
            LineageNode(
                key=key,
                name=qualified,
                file_path=definition.file_path,
                line_number=definition.line_number,
                metadata={
                    "schema": definition.schema.lower() if definition.schema else None,
                    "definition_files": [definition.file_path],
                    "column_count": len(definition.columns),
                },
            )
        )
        if not self.config.include_columns:
            return
        for column in definition.columns:
            column_key = NodeKey.column(key, column.name)
            self._add_node(
                LineageNode(
                    key=column_key,
                    name=column_key.column_name,
                    parent=key,
                    file_path=definition.file_path,
                    line_number=definition.line_number,
                    data_type=column.data_type,
                    nullable=column.nullable,
                    primary_key=column.primary_key,
                )
            )

    # ========== Node and edge helpers ==========

    def _add_node(self, node: LineageNode) -> None:
        if node.key not in self._graph:
            self._graph.add_node(node.key, node=node)
            if node.parent is not None:
                self._column_order.setdefault(node.parent, []).append(
                    node.key.column_name
                )

    def _ensure_column(self, parent: NodeKey, name: str, path: str, line) -> NodeKey:
        key = NodeKey.column(parent, name)
        self._add_node(
            LineageNode(
                key=key,
                name=key.column_name,
                parent=parent,
                file_path=path,
                line_number=line,
            )
        )
        return key

    def _add_edge(self, edge) -> None:
        key = (
            edge.edge_type.value
            if isinstance(edge, LineageEdge)
            else f"column:{edge.transform.value}"
        )
        if not self._graph.has_edge(edge.source, edge.target, key=key):
            self._graph.add_edge(edge.source, edge.target, key=key, edge=edge)

    def _known_columns(self, relation: NodeKey) -> List[str]:
        return self._column_order.get(relation, [])

    # ========== Relation resolution ==========

    def _resolve_table(
        self, name: str, schema: Optional[str], path: str, line: Optional[int]
    ) -> Optional[NodeKey]:
        """Resolve a written table name to a defined or external node."""
        qualified = normalize_name(name, schema)
        key = self._defined.get(qualified)
        if key is not None:
            return key

        default_schema = self.config.default_schema
        base = split_qualified_name(qualified)[1]
        if schema is None and default_schema:
            key = self._defined.get(normalize_name(base, default_schema))
        elif schema is not None and schema.lower() == default_schema:
            key = self._defined.get(base)
        if key is not None:
            return key

        candidates = [
            candidate
            for candidate in self._by_base_name.get(base, [])
            if schema is None or split_qualified_name(candidate.qualified_name)[0] is None
        ]
        if len(candidates) == 1:
            return candidates[0]

        return self._external(qualified, path, line)

    def _external(
        self, qualified: str, path: str, line: Optional[int]
    ) -> Optional[NodeKey]:
        mode = self.config.on_unresolved
        if mode is ErrorMode.FAIL:
            raise UnresolvedReferenceError(
                f"Table '{qualified}' is referenced in {path} but never defined",
                reference=qualified,
                file_path=path,
                line=line,
            )
        if qualified not in self._warned:
            self._warned.add(qualified)
            log = logger.warning if mode is ErrorMode.WARN else logger.debug
            log("Table '%s' referenced in %s has no definition", qualified, path)
        if not self.config.include_external:
            return None

        key = NodeKey(NodeKind.EXTERNAL, qualified)
        self._add_node(
            LineageNode(
                key=key,
                name=qualified,
                file_path=path,
                line_number=line,
                metadata={"schema": split_qualified_name(qualified)[0]},
            )
        )
        return key

    def _resolve_reference(
        self, reference: TableReference, path: str
    ) -> Optional[NodeKey]:
        if reference.source_kind is SourceKind.CTE:
            key = NodeKey(NodeKind.CTE, normalize_name(reference.name))
            return key if key in self._graph else None
        if reference.source_kind is SourceKind.TABLE:
            return self._resolve_table(
                reference.name, reference.schema, path, reference.line
            )
        return None

    # ========== Pass 2: statements ==========

    def _fold_statement(self, path: str, statement: Statement) -> None:
        kind = statement.kind
        if kind is StatementKind.MERGE or kind is StatementKind.OTHER:
            return

        output: Optional[NodeKey] = None
        if statement.target is not None and (
            kind.defines_relation() or kind in _DML_EDGE_TYPES
        ):
            output = self._resolve_table(
                statement.target.name,
                statement.target.schema,
                path,
                statement.target.line,
            )
            if kind in _DML_REFERENCE_TYPES and output is not None:
                self._records.append(
                    TableReferenceRecord(
                        key=output,
                        reference_type=_DML_REFERENCE_TYPES[kind],
                        file_path=path,
                        line_number=statement.target.line,
                        statement_index=statement.index,
                    )
                )

        if statement.query is not None:
            ctes = list(iter_query_ctes(statement.query))
            for cte in ctes:
                self._add_cte_node(path, statement, cte)
            for cte in ctes:
                self._fold_cte(path, statement, cte)

        reads = self._statement_reads(statement)
        for read in reads:
            source = self._resolve_reference(read.reference, path)
            if source is None:
                continue
            self._records.append(
                TableReferenceRecord(
                    key=source,
                    reference_type=self._reference_type(kind, read),
                    file_path=path,
                    line_number=read.reference.line,
                    statement_index=statement.index,
                )
            )
            if output is not None:
                self._add_edge(
                    LineageEdge(
                        source=source,
                        target=output,
                        edge_type=self._edge_type(kind, read),
                        file_path=path,
                        line_number=read.reference.line or statement.span.start,
                    )
                )

        if output is not None and self.config.include_columns:
            self._fold_statement_columns(path, statement, output)

    def _add_cte_node(self, path: str, statement: Statement, cte) -> None:
        key = NodeKey(NodeKind.CTE, normalize_name(cte.name))
        self._add_node(
            LineageNode(
                key=key,
                name=key.qualified_name,
                file_path=path,
                line_number=cte.span.start if cte.span else statement.span.start,
                metadata={"recursive": cte.recursive},
            )
        )

    def _fold_cte(self, path: str, statement: Statement, cte) -> None:
        key = NodeKey(NodeKind.CTE, normalize_name(cte.name))
        line = cte.span.start if cte.span else statement.span.start
        for read in self._query_reads(cte.query):
            source = self._resolve_reference(read.reference, path)
            if source is None:
                continue
            edge_type = (
                EdgeType.JOIN
                if read.reference.clause is ReferenceClause.JOIN
                else EdgeType.DIRECT_SELECT
            )
            self._add_edge(
                LineageEdge(
                    source=source,
                    target=key,
                    edge_type=edge_type,
                    file_path=path,
                    line_number=read.reference.line or line,
                )
            )

        if self.config.include_columns:
            names = list(cte.columns)
            self._fold_query_columns(path, cte.query, key, names, line)

    def _edge_type(self, kind: StatementKind, read: _Read) -> EdgeType:
        if read.reference.clause is ReferenceClause.JOIN:
            return EdgeType.JOIN
        return _DML_EDGE_TYPES.get(kind, EdgeType.DIRECT_SELECT)

    def _reference_type(self, kind: StatementKind, read: _Read) -> ReferenceType:
        if kind in _DML_REFERENCE_TYPES:
            return _DML_REFERENCE_TYPES[kind]
        if read.reference.clause is ReferenceClause.JOIN:
            return ReferenceType.JOIN
        if read.nested:
            return ReferenceType.SUBQUERY
        return ReferenceType.SELECT

    def _statement_reads(self, statement: Statement) -> List[_Read]:
        reads: List[_Read] = []
        if statement.query is not None:
            reads.extend(self._query_reads(statement.query))
        for reference in statement.sources:
            reads.extend(self._reference_reads(reference, nested=False))
        for join in statement.joins:
            reads.extend(self._reference_reads(join.source, nested=False))
        if statement.where is not None:
            for subquery in statement.where.subqueries:
                reads.extend(self._query_reads(subquery, nested=True))
        return reads

    def _reference_reads(self, reference: TableReference, nested: bool) -> List[_Read]:
        if reference.source_kind is SourceKind.SUBQUERY and reference.query is not None:
            return self._query_reads(reference.query, nested=True)
        return [_Read(reference, nested)]

    def _query_reads(self, query: Query, nested: bool = False) -> List[_Read]:
        """Collect relations read by a query, excluding CTE bodies."""
        reads: List[_Read] = []
        pending: List[Tuple[Query, bool]] = [(query, nested)]
        while pending:
            current, is_nested = pending.pop()
            if isinstance(current, SetOperationQuery):
                pending.append((current.right, is_nested))
                pending.append((current.left, is_nested))
                continue
            for reference in current.references():
                if reference.source_kind is SourceKind.SUBQUERY:
                    if reference.query is not None:
                        pending.append((reference.query, True))
                    continue
                reads.append(_Read(reference, is_nested))
            for predicate in (current.where, current.having):
                if predicate is not None:
                    pending.extend((sub, True) for sub in predicate.subqueries)
        return reads

    # ========== Column lineage ==========

    def _fold_statement_columns(
        self, path: str, statement: Statement, output: NodeKey
    ) -> None:
        line = statement.span.start
        if statement.kind is StatementKind.UPDATE:
            scope = (
                [statement.target]
                + statement.sources
                + [join.source for join in statement.joins]
            )
            for item in statement.assignments:
                target = self._ensure_column(output, item.output_name, path, line)
                self._add_item_edges(path, item, target, scope, line)
            return

        if statement.query is None:
            return
        if statement.kind is StatementKind.INSERT:
            names = list(statement.target_columns)
            known = self._known_columns(output)
            width = len(query_projection(statement.query))
            if not names and output.kind is not NodeKind.EXTERNAL and len(known) == width:
                names = list(known)
        else:
            names = [column.name for column in statement.columns]
        self._fold_query_columns(path, statement.query, output, names, line)

    def _fold_query_columns(
        self,
        path: str,
        query: Query,
        output: NodeKey,
        names: List[str],
        line: Optional[int],
    ) -> None:
        """Add column edges from each branch of ``query`` into ``output``.

        ``names`` renames output columns positionally (view column lists,
        INSERT column lists); otherwise projection output names are used.
        """
        branches = (
            query.branches() if isinstance(query, SetOperationQuery) else [query]
        )
        leading = query_projection(query)
        for branch in branches:
            scope = branch.references()
            for position, item in enumerate(branch.projection):
                if item.is_star:
                    self._add_star_edges(path, item, output, scope, line)
                    continue
                if position < len(names):
                    name = names[position]
                elif position < len(leading):
                    name = leading[position].output_name
                else:
                    name = item.output_name
                target = self._ensure_column(output, name, path, line)
                self._add_item_edges(path, item, target, scope, line)

    def _add_item_edges(
        self,
        path: str,
        item: ProjectionItem,
        target: NodeKey,
        scope: List[TableReference],
        line: Optional[int],
    ) -> None:
        for source in item.sources:
            for column, inner, inner_expression in self._resolve_source(
                path, source, scope
            ):
                transform = item.transform.combine(inner)
                expression = (
                    item.expression
                    if item.transform
                    in (ColumnTransform.CALCULATED, ColumnTransform.AGGREGATED)
                    else inner_expression
                )
                if transform is ColumnTransform.PASSTHROUGH and (
                    column.column_name != target.column_name
                ):
                    transform = ColumnTransform.RENAMED
                self._add_edge(
                    ColumnEdge(
                        source=column,
                        target=target,
                        transform=transform,
                        expression=expression,
                        file_path=path,
                        line_number=line,
                    )
                )

    def _add_star_edges(
        self,
        path: str,
        item: ProjectionItem,
        output: NodeKey,
        scope: List[TableReference],
        line: Optional[int],
    ) -> None:
        references = (
            [item.sources[0].reference]
            if item.star_qualifier and item.sources and item.sources[0].reference
            else scope
        )
        for reference in references:
            for name in self._reference_columns(reference, path):
                source = ColumnSource(column=name, reference=reference)
                target = self._ensure_column(output, name, path, line)
                for column, inner, expression in self._resolve_source(
                    path, source, [reference]
                ):
                    self._add_edge(
                        ColumnEdge(
                            source=column,
                            target=target,
                            transform=inner,
                            expression=expression,
                            file_path=path,
                            line_number=line,
                        )
                    )

    def _reference_columns(self, reference: TableReference, path: str) -> List[str]:
        """Return the column names a scope reference is known to expose."""
        if reference.source_kind is SourceKind.SUBQUERY and reference.query is not None:
            return [
                item.output_name
                for item in query_projection(reference.query)
                if not item.is_star
            ]
        key = self._peek_reference(reference)
        return list(self._known_columns(key)) if key is not None else []

    def _peek_reference(self, reference: TableReference) -> Optional[NodeKey]:
        """Resolve a reference without creating external nodes."""
        if reference.source_kind is SourceKind.CTE:
            return NodeKey(NodeKind.CTE, normalize_name(reference.name))
        if reference.source_kind is not SourceKind.TABLE:
            return None
        qualified = normalize_name(reference.name, reference.schema)
        key = self._defined.get(qualified)
        if key is None:
            key = NodeKey(NodeKind.EXTERNAL, qualified)
        return key if key in self._graph else None

    def _resolve_source(
        self, path: str, source: ColumnSource, scope: List[TableReference]
    ) -> List[ResolvedColumn]:
        """Resolve a source column to upstream column nodes.

        FROM subqueries are looked through: their projection is followed to
        the columns it reads and the transforms are combined on the way.
        """
        reference = source.reference
        if reference is None:
            if source.qualifier is not None:
                return []
            owners = [
                candidate
                for candidate in scope
                if source.column in self._reference_columns(candidate, path)
            ]
            if len(owners) != 1:
                return []
            reference = owners[0]

        if reference.source_kind is SourceKind.SUBQUERY:
            return self._resolve_through_subquery(path, source.column, reference)

        relation = self._resolve_reference(reference, path)
        if relation is None:
            return []
        column = self._ensure_column(relation, source.column, path, reference.line)
        return [(column, ColumnTransform.PASSTHROUGH, None)]

    def _resolve_through_subquery(
        self, path: str, column: str, reference: TableReference
    ) -> List[ResolvedColumn]:
        query = reference.query
        if query is None:
            return []
        branches = (
            query.branches() if isinstance(query, SetOperationQuery) else [query]
        )
        leading = query_projection(query)
        position = next(
            (i for i, item in enumerate(leading) if item.output_name == column), None
        )

        resolved: List[ResolvedColumn] = []
        for branch in branches:
            scope = branch.references()
            if position is not None and position < len(branch.projection):
                item = branch.projection[position]
                if not item.is_star:
                    resolved.extend(self._fold_item(path, item, scope))
                    continue
            for star in (item for item in branch.projection if item.is_star):
                qualifier = star.star_qualifier
                star_scope = (
                    [star.sources[0].reference]
                    if qualifier and star.sources and star.sources[0].reference
                    else scope
                )
                resolved.extend(
                    self._resolve_source(
                        path, ColumnSource(column=column), star_scope
                    )
                )
        return resolved

    def _fold_item(
        self, path: str, item: ProjectionItem, scope: List[TableReference]
    ) -> List[ResolvedColumn]:
        resolved: List[ResolvedColumn] = []
        for source in item.sources:
            for column, inner, inner_expression in self._resolve_source(
                path, source, scope
            ):
                expression = (
                    item.expression
                    if item.transform
                    in (ColumnTransform.CALCULATED, ColumnTransform.AGGREGATED)
                    else inner_expression
                )
                resolved.append((column, item.transform.combine(inner), expression))
        return resolved


def build_lineage_graph(
    files: Sequence[FileInventory], config: Optional[FlowConfig] = None
) -> LineageGraph:
    """Build a workspace lineage graph from file inventories."""
    return LineageGraphBuilder(config).build(files)
