"""
AST adapter: sqlglot expression -> Statement.

This module defines the AstAdapter class, which normalizes one parsed statement
into the intermediate form of sql_flow.models.statement. Everything downstream
(the flow graph builder and the lineage graph builder) reads only that form,
so all knowledge of sqlglot's AST shapes lives here.
"""

from typing import FrozenSet, Iterator, List, Optional, Sequence

import sqlglot
from sqlglot import expressions as exp
from sqlglot.errors import TokenError
from sqlglot.tokens import Token

from sql_flow.exceptions import StatementParseError
from sql_flow.models.statement import (
    AggregateCall,
    AggregateSpec,
    CaseBranch,
    CaseSpec,
    ColumnDefinition,
    ColumnSource,
    ColumnTransform,
    CteDefinition,
    JoinSpec,
    LineSpan,
    PredicateSpec,
    ProjectionItem,
    Query,
    ReferenceClause,
    SelectQuery,
    SetOperationQuery,
    SourceKind,
    Statement,
    StatementKind,
    TableReference,
    WindowSpec,
)
from sql_flow.parser.statement_classifier import QUERY_TYPES, StatementClassifier

SET_OPERATION_TYPES = (exp.Union, exp.Intersect, exp.Except)
NESTED_QUERY_TYPES = (exp.Select, exp.Subquery) + SET_OPERATION_TYPES


def _arg(node: exp.Expression, *keys: str):
    """Return the first present arg among ``keys``.

    sqlglot releases differ in a few arg names ("from" / "from_").
    """
    for key in keys:
        value = node.args.get(key)
        if value is not None:
            return value
    return None


def _scope_nodes(node: exp.Expression) -> Iterator[exp.Expression]:
    """Yield ``node`` and its descendants without entering nested queries."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        children = [
            child
            for child in current.iter_expressions()
            if not isinstance(child, NESTED_QUERY_TYPES)
        ]
        stack.extend(reversed(children))


def _nested_queries(node: exp.Expression) -> Iterator[exp.Expression]:
    """Yield the outermost queries nested in ``node`` (subquery wrappers removed)."""
    stack = [node]
    while stack:
        current = stack.pop()
        for child in current.iter_expressions():
            if isinstance(child, exp.Subquery):
                yield child.this
            elif isinstance(child, NESTED_QUERY_TYPES):
                yield child
            else:
                stack.append(child)


def _is_plain_aggregate(node: exp.Expression) -> bool:
    return isinstance(node, exp.AggFunc) and not isinstance(node.parent, exp.Window)


def function_name(node: exp.Expression) -> str:
    """Return the upper-case SQL name of a function call."""
    if isinstance(node, exp.Anonymous):
        return str(node.name).upper()
    if isinstance(node, exp.Func):
        return node.sql_name()
    return node.key.upper()


def infer_transform(expression: exp.Expression, output_name: str) -> ColumnTransform:
    """Infer how an output column derives from its source columns.

    A bare column keeping its name is a passthrough, a bare column under a new
    name is a rename, anything containing a non-window aggregate is an
    aggregate, and everything else is a calculation.
    """
    if any(_is_plain_aggregate(node) for node in _scope_nodes(expression)):
        return ColumnTransform.AGGREGATED
    if isinstance(expression, exp.Column) and not isinstance(
        expression.this, exp.Star
    ):
        if expression.name.lower() == output_name.lower():
            return ColumnTransform.PASSTHROUGH
        return ColumnTransform.RENAMED
    return ColumnTransform.CALCULATED


def projection_name(item: exp.Expression, dialect: Optional[str] = None) -> str:
    """Return the output column name of a SELECT list item.

    Aliased items use the alias, bare columns their name, and unaliased
    function calls the lower-cased function name (COUNT(x) -> "count").
    """
    if isinstance(item, exp.Alias):
        return item.alias.lower()
    if isinstance(item, exp.Column):
        return item.name.lower()
    inner = item.this if isinstance(item, exp.Window) else item
    if isinstance(inner, exp.Func):
        return function_name(inner).lower()
    return item.sql(dialect=dialect).lower()


class LineLocator:
    """Maps AST nodes of one statement to 1-based script lines.

    sqlglot records the line of identifiers (and, in recent releases, other
    leaf nodes) in ``meta``; those lines are relative to the statement text and
    are shifted by the statement's start line. When a node carries no position
    the statement's token stream is searched for its name.
    """

    def __init__(self, tokens: Sequence[Token], start_line: int = 1) -> None:
        self._tokens = list(tokens)
        self._offset = start_line - 1

    @classmethod
    def from_sql(
        cls, sql: str, dialect: Optional[str] = None, start_line: int = 1
    ) -> "LineLocator":
        try:
            tokens = sqlglot.tokenize(sql, read=dialect)
        except TokenError:
            tokens = []
        return cls(tokens, start_line)

    def _relative_lines(self, node: exp.Expression) -> List[int]:
        lines = []
        for child in node.find_all(exp.Expression):
            line = child.meta.get("line") if child.meta else None
            if isinstance(line, int):
                lines.append(line)
        return lines

    def line_of(self, node: Optional[exp.Expression]) -> Optional[int]:
        if node is None:
            return None
        lines = self._relative_lines(node)
        if lines:
            return min(lines) + self._offset
        name = str(getattr(node, "name", "") or "").lower()
        if name:
            for token in self._tokens:
                if token.text.lower() == name:
                    return token.line + self._offset
        return None

    def span_of(self, node: Optional[exp.Expression]) -> Optional[LineSpan]:
        if node is None:
            return None
        lines = self._relative_lines(node)
        if not lines:
            line = self.line_of(node)
            return LineSpan.single(line) if line is not None else None
        return LineSpan(min(lines) + self._offset, max(lines) + self._offset)


class _Scope:
    """Table references visible to the columns of one SELECT block."""

    def __init__(self, references: List[TableReference]) -> None:
        self.references = references

    def resolve(self, qualifier: Optional[str]) -> Optional[TableReference]:
        """Resolve a column qualifier: aliases first, then table names.

        Unqualified columns resolve only when the scope has a single source.
        """
        if not qualifier:
            return self.references[0] if len(self.references) == 1 else None
        wanted = qualifier.lower()
        for reference in self.references:
            if reference.alias and reference.alias.lower() == wanted:
                return reference
        for reference in self.references:
            if reference.name.lower() == wanted:
                return reference
        return None


class AstAdapter:
    """Adapts parsed sqlglot expressions to Statement objects.

    Usage:
        adapter = AstAdapter(dialect="postgres")
        statement = adapter.adapt(sqlglot.parse_one(sql), sql, index=0)
    """

    def __init__(self, dialect: Optional[str] = None) -> None:
        self.dialect = dialect
        self.classifier = StatementClassifier()
        self._locator = LineLocator([])
        self._subquery_counter = 0

    def adapt(
        self,
        ast: exp.Expression,
        raw_sql: str,
        index: int = 0,
        start_line: int = 1,
        end_line: Optional[int] = None,
    ) -> Statement:
        """Adapt one statement.

        Args:
            ast: Parsed statement.
            raw_sql: Original statement text.
            index: 0-based position of the statement in its batch.
            start_line: 1-based script line where the statement starts.
            end_line: 1-based script line where it ends (derived from the
                text when omitted).

        Returns:
            The adapted Statement.

        Raises:
            StatementParseError: If the statement has a shape the adapter
                cannot represent.
        """
        if end_line is None:
            end_line = start_line + raw_sql.strip().count("\n")
        self._locator = LineLocator.from_sql(raw_sql, self.dialect, start_line)
        self._subquery_counter = 0

        kind = self.classifier.classify(ast)
        statement = Statement(
            kind=kind,
            index=index,
            sql=raw_sql,
            span=LineSpan(start_line, end_line),
        )
        try:
            if kind is StatementKind.SELECT:
                statement.query = self._adapt_query(ast, frozenset())
            elif kind.defines_relation():
                self._adapt_create(ast, statement)
            elif kind is StatementKind.INSERT:
                self._adapt_insert(ast, statement)
            elif kind is StatementKind.UPDATE:
                self._adapt_update(ast, statement)
            elif kind is StatementKind.DELETE:
                self._adapt_delete(ast, statement)
            elif kind is StatementKind.MERGE:
                self._adapt_merge(ast, statement)
            elif kind is StatementKind.DROP:
                if isinstance(ast.this, exp.Table):
                    statement.target = self._table_reference(
                        ast.this, frozenset(), ReferenceClause.TARGET
                    )
        except (AttributeError, TypeError, ValueError) as e:
            raise StatementParseError(
                f"Unsupported {kind.value} statement shape: {e}",
                statement_index=index,
                line=start_line,
                sql=raw_sql,
            ) from e
        return statement

    # ========== Text helpers ==========

    def _sql(self, node: Optional[exp.Expression]) -> str:
        return node.sql(dialect=self.dialect) if node is not None else ""

    # ========== Queries ==========

    def _adapt_query(self, node: exp.Expression, cte_names: FrozenSet[str]) -> Query:
        while isinstance(node, exp.Subquery):
            node = node.this

        ctes, cte_names = self._adapt_ctes(node, cte_names)

        if isinstance(node, SET_OPERATION_TYPES):
            query: Query = SetOperationQuery(
                operator=self._set_operator(node),
                left=self._adapt_query(node.this, cte_names),
                right=self._adapt_query(node.expression, cte_names),
                ctes=ctes,
                span=self._locator.span_of(node),
            )
        elif isinstance(node, exp.Select):
            query = self._adapt_select(node, cte_names)
            query.ctes = ctes
        else:
            raise ValueError(f"expected a query, got {node.key}")

        order = node.args.get("order")
        if order is not None:
            query.order_by = [self._sql(e) for e in order.expressions]
            query.order_span = self._locator.span_of(order)
        limit = node.args.get("limit")
        if limit is not None:
            query.limit = self._sql(_arg(limit, "expression", "this") or limit)
            query.limit_span = self._locator.span_of(limit)
        return query

    def _adapt_ctes(self, node: exp.Expression, cte_names: FrozenSet[str]):
        """Adapt the WITH clause of ``node``.

        Returns the CTE definitions and the CTE names visible to the body.
        A CTE sees the CTEs defined before it, plus itself when recursive.
        """
        with_ = _arg(node, "with", "with_")
        if with_ is None:
            return [], cte_names

        recursive = bool(with_.args.get("recursive"))
        definitions: List[CteDefinition] = []
        visible = set(cte_names)
        for cte in with_.expressions:
            name = cte.alias.lower()
            scope = frozenset(visible | {name}) if recursive else frozenset(visible)
            alias = cte.args.get("alias")
            columns = [col.name.lower() for col in alias.columns] if alias else []
            definitions.append(
                CteDefinition(
                    name=name,
                    query=self._adapt_query(cte.this, scope),
                    recursive=recursive,
                    columns=columns,
                    span=self._locator.span_of(cte),
                )
            )
            visible.add(name)
        return definitions, frozenset(visible)

    def _set_operator(self, node: exp.Expression) -> str:
        if isinstance(node, exp.Intersect):
            operator = "INTERSECT"
        elif isinstance(node, exp.Except):
            operator = "EXCEPT"
        else:
            operator = "UNION"
        if node.args.get("distinct") is False:
            operator += " ALL"
        return operator

    def _adapt_select(
        self, select: exp.Select, cte_names: FrozenSet[str]
    ) -> SelectQuery:
        query = SelectQuery(
            distinct=bool(select.args.get("distinct")),
            span=self._locator.span_of(select),
        )

        from_ = _arg(select, "from", "from_")
        if from_ is not None:
            for source in [from_.this] + list(from_.expressions or []):
                if source is not None:
                    query.sources.append(
                        self._source_reference(source, cte_names, ReferenceClause.FROM)
                    )
        query.joins = self._adapt_joins(select.args.get("joins") or [], cte_names)
        scope = _Scope(query.references())

        where = select.args.get("where")
        if where is not None:
            query.where = self._predicate(where, cte_names)

        projections = list(select.expressions)
        calls = self._aggregate_calls(projections)
        group = select.args.get("group")
        if group is not None or calls:
            query.aggregate = AggregateSpec(
                functions=calls,
                group_by=[self._sql(e) for e in group.expressions] if group else [],
                span=self._locator.span_of(group) if group is not None else None,
            )

        having = select.args.get("having")
        if having is not None:
            query.having = self._predicate(having, cte_names)

        for item in projections:
            query.projection.append(self._projection_item(item, scope))
            query.windows.extend(self._windows(item))
            query.cases.extend(self._cases(item))
        return query

    # ========== Sources and joins ==========

    def _source_reference(
        self,
        node: exp.Expression,
        cte_names: FrozenSet[str],
        clause: ReferenceClause,
    ) -> TableReference:
        line = self._locator.line_of(node)
        if isinstance(node, exp.Table) and isinstance(node.this, exp.Identifier):
            return self._table_reference(node, cte_names, clause)
        if isinstance(node, exp.Subquery):
            self._subquery_counter += 1
            alias = node.alias or f"subquery_{self._subquery_counter}"
            return TableReference(
                name=alias,
                alias=node.alias or None,
                source_kind=SourceKind.SUBQUERY,
                clause=clause,
                query=self._adapt_query(node.this, cte_names),
                line=line,
            )
        if isinstance(node, exp.Values):
            return TableReference(
                name=node.alias or "values",
                alias=node.alias or None,
                source_kind=SourceKind.VALUES,
                clause=clause,
                line=line,
            )
        # Table-valued functions, UNNEST, LATERAL and similar
        target = node.this if isinstance(node, exp.Table) else node
        name = function_name(target).lower() if target is not None else node.key
        return TableReference(
            name=name,
            alias=node.alias or None,
            source_kind=SourceKind.FUNCTION,
            clause=clause,
            line=line,
        )

    def _table_reference(
        self,
        table: exp.Table,
        cte_names: FrozenSet[str],
        clause: ReferenceClause,
    ) -> TableReference:
        schema = ".".join(part for part in (table.catalog, table.db) if part) or None
        name = table.name
        kind = SourceKind.TABLE
        if schema is None and name.lower() in cte_names:
            kind = SourceKind.CTE
        return TableReference(
            name=name,
            schema=schema,
            alias=table.alias or None,
            source_kind=kind,
            clause=clause,
            line=self._locator.line_of(table),
        )

    def _adapt_joins(
        self, joins: Sequence[exp.Expression], cte_names: FrozenSet[str]
    ) -> List[JoinSpec]:
        specs: List[JoinSpec] = []
        for join in joins:
            source = self._source_reference(join.this, cte_names, ReferenceClause.JOIN)
            specs.append(
                JoinSpec(
                    join_type=self._join_type(join),
                    source=source,
                    condition=self._join_condition(join),
                    span=self._locator.span_of(join),
                )
            )
        return specs

    def _join_type(self, join: exp.Join) -> str:
        parts = [
            str(part).upper()
            for part in (join.args.get("method"), join.side, join.kind)
            if part
        ]
        if not parts and join.args.get("on") is None and not join.args.get("using"):
            # Comma-separated FROM list
            parts = ["CROSS"]
        return " ".join(parts + ["JOIN"])

    def _join_condition(self, join: exp.Join) -> Optional[str]:
        on = join.args.get("on")
        if on is not None:
            return self._sql(on)
        using = join.args.get("using")
        if using:
            return "USING (" + ", ".join(self._sql(col) for col in using) + ")"
        return None

    # ========== Clauses ==========

    def _predicate(
        self, clause: exp.Expression, cte_names: FrozenSet[str]
    ) -> PredicateSpec:
        return PredicateSpec(
            text=self._sql(clause.this),
            span=self._locator.span_of(clause),
            subqueries=[
                self._adapt_query(query, cte_names)
                for query in _nested_queries(clause)
            ],
        )

    def _aggregate_calls(self, projections: List[exp.Expression]) -> List[AggregateCall]:
        calls: List[AggregateCall] = []
        for item in projections:
            inner = item.this if isinstance(item, exp.Alias) else item
            alias = item.alias.lower() if isinstance(item, exp.Alias) else None
            for node in _scope_nodes(inner):
                if _is_plain_aggregate(node):
                    calls.append(
                        AggregateCall(
                            function=function_name(node),
                            expression=self._sql(node),
                            alias=alias if node is inner else None,
                        )
                    )
        return calls

    def _windows(self, item: exp.Expression) -> List[WindowSpec]:
        inner = item.this if isinstance(item, exp.Alias) else item
        alias = item.alias.lower() if isinstance(item, exp.Alias) else None
        windows: List[WindowSpec] = []
        for node in _scope_nodes(inner):
            if not isinstance(node, exp.Window):
                continue
            order = node.args.get("order")
            spec = node.args.get("spec")
            windows.append(
                WindowSpec(
                    function=function_name(node.this),
                    partition_by=[
                        self._sql(e) for e in node.args.get("partition_by") or []
                    ],
                    order_by=[self._sql(e) for e in order.expressions] if order else [],
                    frame=self._sql(spec) if spec is not None else None,
                    alias=alias if node is inner else None,
                )
            )
        return windows

    def _cases(self, item: exp.Expression) -> List[CaseSpec]:
        inner = item.this if isinstance(item, exp.Alias) else item
        alias = item.alias.lower() if isinstance(item, exp.Alias) else None
        cases: List[CaseSpec] = []
        for node in _scope_nodes(inner):
            if not isinstance(node, exp.Case):
                continue
            default = node.args.get("default")
            cases.append(
                CaseSpec(
                    branches=[
                        CaseBranch(
                            when=self._sql(branch.this),
                            then=self._sql(branch.args.get("true")),
                        )
                        for branch in node.args.get("ifs") or []
                    ],
                    else_value=self._sql(default) if default is not None else None,
                    alias=alias if node is inner else None,
                )
            )
        return cases

    # ========== Projection ==========

    def _projection_item(self, item: exp.Expression, scope: _Scope) -> ProjectionItem:
        if isinstance(item, exp.Star):
            return ProjectionItem(output_name="*", expression="*", is_star=True)
        if isinstance(item, exp.Column) and isinstance(item.this, exp.Star):
            qualifier = item.table or None
            reference = scope.resolve(qualifier)
            return ProjectionItem(
                output_name="*",
                expression=self._sql(item),
                is_star=True,
                star_qualifier=qualifier,
                sources=[ColumnSource("*", qualifier, reference)],
            )

        inner = item.this if isinstance(item, exp.Alias) else item
        output_name = projection_name(item, self.dialect)
        return ProjectionItem(
            output_name=output_name,
            expression=self._sql(inner),
            sources=self._column_sources(inner, scope),
            transform=infer_transform(inner, output_name),
        )

    def _column_sources(
        self, expression: exp.Expression, scope: _Scope
    ) -> List[ColumnSource]:
        sources: List[ColumnSource] = []
        seen = set()
        for node in _scope_nodes(expression):
            if not isinstance(node, exp.Column) or isinstance(node.this, exp.Star):
                continue
            qualifier = node.table or None
            key = ((qualifier or "").lower(), node.name.lower())
            if key in seen:
                continue
            seen.add(key)
            sources.append(
                ColumnSource(
                    column=node.name.lower(),
                    qualifier=qualifier,
                    reference=scope.resolve(qualifier),
                )
            )
        return sources

    # ========== DDL / DML ==========

    def _target(self, node: exp.Expression) -> TableReference:
        table = node.this if isinstance(node, exp.Schema) else node
        if not isinstance(table, exp.Table):
            raise ValueError(f"unsupported target {node.key}")
        return self._table_reference(table, frozenset(), ReferenceClause.TARGET)

    def _adapt_create(self, ast: exp.Create, statement: Statement) -> None:
        statement.target = self._target(ast.this)
        statement.is_temporary = self.classifier.is_temporary(ast)
        if isinstance(ast.this, exp.Schema):
            statement.columns = self._column_definitions(ast.this)
        query = self.classifier.create_query(ast)
        if query is not None:
            statement.query = self._adapt_query(query, frozenset())

    def _column_definitions(self, schema: exp.Schema) -> List[ColumnDefinition]:
        columns: List[ColumnDefinition] = []
        primary_keys = set()
        for node in schema.expressions:
            if isinstance(node, exp.PrimaryKey):
                primary_keys.update(
                    (e.this if isinstance(e, exp.Ordered) else e).name.lower()
                    for e in node.expressions
                )
            elif isinstance(node, exp.ColumnDef):
                kind = node.args.get("kind")
                constraints = [c.args.get("kind") for c in node.args.get("constraints") or []]
                columns.append(
                    ColumnDefinition(
                        name=node.name.lower(),
                        data_type=self._sql(kind) if kind is not None else None,
                        nullable=not any(
                            isinstance(c, exp.NotNullColumnConstraint)
                            and not c.args.get("allow_null")
                            for c in constraints
                        ),
                        primary_key=any(
                            isinstance(c, exp.PrimaryKeyColumnConstraint)
                            for c in constraints
                        ),
                    )
                )
            elif isinstance(node, (exp.Identifier, exp.Column)):
                # View column list
                columns.append(ColumnDefinition(name=node.name.lower()))

        for column in columns:
            if column.name in primary_keys:
                column.primary_key = True
            if column.primary_key:
                column.nullable = False
        return columns

    def _adapt_insert(self, ast: exp.Insert, statement: Statement) -> None:
        statement.target = self._target(ast.this)
        if isinstance(ast.this, exp.Schema):
            statement.target_columns = [e.name.lower() for e in ast.this.expressions]

        ctes, cte_names = self._adapt_ctes(ast, frozenset())
        source = ast.expression
        if isinstance(source, exp.Values):
            statement.values_rows = len(source.expressions)
        elif isinstance(source, QUERY_TYPES):
            query = self._adapt_query(source, cte_names)
            query.ctes = ctes + query.ctes
            statement.query = query

    def _adapt_update(self, ast: exp.Update, statement: Statement) -> None:
        statement.target = self._target(ast.this)
        from_ = _arg(ast, "from", "from_")
        if from_ is not None:
            for source in [from_.this] + list(from_.expressions or []):
                if source is not None:
                    statement.sources.append(
                        self._source_reference(source, frozenset(), ReferenceClause.FROM)
                    )
        joins = list(ast.args.get("joins") or [])
        if from_ is not None:
            joins.extend(from_.args.get("joins") or [])
        statement.joins = self._adapt_joins(joins, frozenset())

        scope = _Scope(
            [statement.target]
            + statement.sources
            + [join.source for join in statement.joins]
        )
        for assignment in ast.expressions:
            column = assignment.this
            value = assignment.expression
            if not isinstance(column, exp.Column) or value is None:
                continue
            output_name = column.name.lower()
            statement.assignments.append(
                ProjectionItem(
                    output_name=output_name,
                    expression=self._sql(value),
                    sources=self._column_sources(value, scope),
                    transform=infer_transform(value, output_name),
                )
            )
        self._adapt_dml_where(ast, statement)

    def _adapt_delete(self, ast: exp.Delete, statement: Statement) -> None:
        statement.target = self._target(ast.this)
        for source in ast.args.get("using") or []:
            statement.sources.append(
                self._source_reference(source, frozenset(), ReferenceClause.USING)
            )
        self._adapt_dml_where(ast, statement)

    def _adapt_merge(self, ast: exp.Merge, statement: Statement) -> None:
        statement.target = self._target(ast.this)
        using = ast.args.get("using")
        if using is not None:
            statement.sources.append(
                self._source_reference(using, frozenset(), ReferenceClause.USING)
            )
        on = ast.args.get("on")
        if on is not None:
            statement.where = PredicateSpec(
                text=self._sql(on), span=self._locator.span_of(on)
            )

    def _adapt_dml_where(self, ast: exp.Expression, statement: Statement) -> None:
        where = ast.args.get("where")
        if where is not None:
            statement.where = self._predicate(where, frozenset())
