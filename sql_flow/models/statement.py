"""
Intermediate form of a parsed SQL statement.

The AST adapter turns one sqlglot expression into a Statement built from the
types in this module. Queries are a tagged sum type (SelectQuery or
SetOperationQuery) and table sources are TableReference values tagged with a
SourceKind, so consumers dispatch on explicit variants instead of sniffing AST
shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Union

from sql_flow.models.identity import normalize_name


class StatementKind(str, Enum):
    """SQL statement kinds recognized by the adapter."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    MERGE = "merge"
    CREATE_TABLE = "create_table"
    CREATE_TABLE_AS = "create_table_as"
    CREATE_VIEW = "create_view"
    DROP = "drop"
    OTHER = "other"

    def defines_relation(self) -> bool:
        """Check if this statement kind defines a table or view."""
        return self in (
            StatementKind.CREATE_TABLE,
            StatementKind.CREATE_TABLE_AS,
            StatementKind.CREATE_VIEW,
        )

    def writes_target(self) -> bool:
        """Check if data flows into the statement's target."""
        return self in (
            StatementKind.INSERT,
            StatementKind.UPDATE,
            StatementKind.DELETE,
            StatementKind.MERGE,
            StatementKind.CREATE_TABLE_AS,
            StatementKind.CREATE_VIEW,
        )


class SourceKind(str, Enum):
    """What a table reference points at."""

    TABLE = "table"
    CTE = "cte"
    SUBQUERY = "subquery"
    FUNCTION = "function"
    VALUES = "values"


class ReferenceClause(str, Enum):
    """Clause in which a table reference appears."""

    FROM = "from"
    JOIN = "join"
    SUBQUERY = "subquery"
    TARGET = "target"
    USING = "using"


class ColumnTransform(str, Enum):
    """How an output column is derived from its source columns.

    Attributes:
        PASSTHROUGH: Bare column reference keeping its name.
        RENAMED: Bare column reference under a different name.
        AGGREGATED: Expression containing an aggregate function.
        CALCULATED: Any other expression (arithmetic, functions, CASE, window).
    """

    PASSTHROUGH = "passthrough"
    RENAMED = "renamed"
    AGGREGATED = "aggregated"
    CALCULATED = "calculated"

    @property
    def rank(self) -> int:
        """Strength of the transformation, used when composing hops."""
        return _TRANSFORM_RANK[self]

    def combine(self, inner: ColumnTransform) -> ColumnTransform:
        """Compose this (outer) transformation with an inner one.

        The stronger transformation wins, so an aggregate read through a
        passthrough subquery column stays an aggregate.
        """
        return self if self.rank >= inner.rank else inner


_TRANSFORM_RANK = {
    ColumnTransform.PASSTHROUGH: 0,
    ColumnTransform.RENAMED: 1,
    ColumnTransform.CALCULATED: 2,
    ColumnTransform.AGGREGATED: 3,
}


@dataclass(frozen=True)
class LineSpan:
    """1-based, inclusive source line range."""

    start: int
    end: int

    @classmethod
    def single(cls, line: int) -> LineSpan:
        return cls(line, line)


@dataclass
class TableReference:
    """A table-like source or target within a statement.

    Attributes:
        name: Relation name as written (without schema), or the alias of a
            subquery.
        schema: Schema qualifier, if written.
        alias: Alias, if any.
        source_kind: What the reference points at.
        clause: Clause the reference appears in.
        query: Body of a FROM subquery (source_kind SUBQUERY).
        line: 1-based line of the reference in the script.
    """

    name: str
    schema: Optional[str] = None
    alias: Optional[str] = None
    source_kind: SourceKind = SourceKind.TABLE
    clause: ReferenceClause = ReferenceClause.FROM
    query: Optional["Query"] = None
    line: Optional[int] = None

    @property
    def qualified_name(self) -> str:
        """Normalized schema-qualified name."""
        return normalize_name(self.name, self.schema)

    @property
    def reference_name(self) -> str:
        """Name other clauses use to refer to this source (alias first)."""
        return (self.alias or self.name).lower()

    @property
    def display_name(self) -> str:
        base = f"{self.schema}.{self.name}" if self.schema else self.name
        if self.alias and self.alias.lower() != self.name.lower():
            return f"{base} {self.alias}"
        return base


@dataclass
class ColumnSource:
    """A source column read by a projection item.

    Attributes:
        column: Column name (lower-cased).
        qualifier: Qualifier as written (alias or table name), if any.
        reference: Scope reference the qualifier resolved to. None when the
            column is unqualified and the scope has several sources.
    """

    column: str
    qualifier: Optional[str] = None
    reference: Optional[TableReference] = None


@dataclass
class ProjectionItem:
    """One output column of a query."""

    output_name: str
    expression: str
    sources: List[ColumnSource] = field(default_factory=list)
    transform: ColumnTransform = ColumnTransform.PASSTHROUGH
    is_star: bool = False
    star_qualifier: Optional[str] = None


@dataclass
class JoinSpec:
    """A JOIN clause: the joined source and its condition."""

    join_type: str
    source: TableReference
    condition: Optional[str] = None
    span: Optional[LineSpan] = None


@dataclass
class PredicateSpec:
    """A WHERE or HAVING predicate."""

    text: str
    span: Optional[LineSpan] = None
    subqueries: List["Query"] = field(default_factory=list)


@dataclass
class AggregateCall:
    function: str
    expression: str
    alias: Optional[str] = None


@dataclass
class AggregateSpec:
    """GROUP BY keys and the aggregate calls of a query."""

    functions: List[AggregateCall] = field(default_factory=list)
    group_by: List[str] = field(default_factory=list)
    span: Optional[LineSpan] = None


@dataclass
class WindowSpec:
    function: str
    partition_by: List[str] = field(default_factory=list)
    order_by: List[str] = field(default_factory=list)
    frame: Optional[str] = None
    alias: Optional[str] = None


@dataclass
class CaseBranch:
    when: str
    then: str


@dataclass
class CaseSpec:
    branches: List[CaseBranch] = field(default_factory=list)
    else_value: Optional[str] = None
    alias: Optional[str] = None


@dataclass
class CteDefinition:
    """A WITH clause entry."""

    name: str
    query: "Query"
    recursive: bool = False
    columns: List[str] = field(default_factory=list)
    span: Optional[LineSpan] = None


@dataclass
class SelectQuery:
    """A single SELECT block."""

    sources: List[TableReference] = field(default_factory=list)
    joins: List[JoinSpec] = field(default_factory=list)
    where: Optional[PredicateSpec] = None
    aggregate: Optional[AggregateSpec] = None
    having: Optional[PredicateSpec] = None
    projection: List[ProjectionItem] = field(default_factory=list)
    windows: List[WindowSpec] = field(default_factory=list)
    cases: List[CaseSpec] = field(default_factory=list)
    order_by: List[str] = field(default_factory=list)
    order_span: Optional[LineSpan] = None
    limit: Optional[str] = None
    limit_span: Optional[LineSpan] = None
    distinct: bool = False
    ctes: List[CteDefinition] = field(default_factory=list)
    span: Optional[LineSpan] = None

    def references(self) -> List[TableReference]:
        """FROM sources followed by joined sources."""
        return self.sources + [join.source for join in self.joins]


@dataclass
class SetOperationQuery:
    """UNION / INTERSECT / EXCEPT of two queries."""

    operator: str
    left: "Query"
    right: "Query"
    order_by: List[str] = field(default_factory=list)
    order_span: Optional[LineSpan] = None
    limit: Optional[str] = None
    limit_span: Optional[LineSpan] = None
    ctes: List[CteDefinition] = field(default_factory=list)
    span: Optional[LineSpan] = None

    def branches(self) -> List[SelectQuery]:
        """Flatten nested set operations into their SELECT branches."""
        result: List[SelectQuery] = []
        pending: List[Query] = [self]
        while pending:
            current = pending.pop()
            if isinstance(current, SetOperationQuery):
                pending.append(current.right)
                pending.append(current.left)
            else:
                result.append(current)
        return result


Query = Union[SelectQuery, SetOperationQuery]


@dataclass
class ColumnDefinition:
    """A declared column of a CREATE TABLE / VIEW."""

    name: str
    data_type: Optional[str] = None
    nullable: bool = True
    primary_key: bool = False


@dataclass
class Statement:
    """One adapted SQL statement.

    Attributes:
        kind: Statement kind.
        index: 0-based position in the batch.
        sql: Raw statement text.
        span: Lines the statement occupies in its script.
        target: Written relation (CREATE/INSERT/UPDATE/DELETE/MERGE target).
        query: SELECT part, if any.
        columns: Declared columns (CREATE TABLE) or view column list.
        target_columns: Explicit INSERT column list.
        assignments: UPDATE SET items, as projection items named after the
            assigned column.
        where: WHERE predicate of UPDATE/DELETE.
        sources: UPDATE ... FROM / DELETE ... USING sources.
        joins: Joins attached to UPDATE ... FROM.
        is_temporary: CREATE TEMPORARY TABLE.
        values_rows: Number of VALUES rows of an INSERT ... VALUES.
    """

    kind: StatementKind
    index: int
    sql: str
    span: LineSpan
    target: Optional[TableReference] = None
    query: Optional[Query] = None
    columns: List[ColumnDefinition] = field(default_factory=list)
    target_columns: List[str] = field(default_factory=list)
    assignments: List[ProjectionItem] = field(default_factory=list)
    where: Optional[PredicateSpec] = None
    sources: List[TableReference] = field(default_factory=list)
    joins: List[JoinSpec] = field(default_factory=list)
    is_temporary: bool = False
    values_rows: int = 0


def query_projection(query: Query) -> List[ProjectionItem]:
    """Return the output columns of a query.

    For set operations, output names come from the leftmost branch.
    """
    while isinstance(query, SetOperationQuery):
        query = query.left
    return query.projection


def iter_query_ctes(query: Query) -> Iterator[CteDefinition]:
    """Yield the CTE definitions attached to a query and its nested parts."""
    pending: List[Query] = [query]
    while pending:
        current = pending.pop()
        yield from current.ctes
        for cte in current.ctes:
            pending.append(cte.query)
        if isinstance(current, SetOperationQuery):
            pending.extend([current.left, current.right])
        else:
            for ref in current.references():
                if ref.query is not None:
                    pending.append(ref.query)
            for predicate in (current.where, current.having):
                if predicate is not None:
                    pending.extend(predicate.subqueries)


def iter_select_blocks(query: Query) -> Iterator[SelectQuery]:
    """Yield every SELECT block of a query, excluding CTE bodies.

    Includes set operation branches, FROM subqueries and WHERE/HAVING
    subqueries.
    """
    pending: List[Query] = [query]
    while pending:
        current = pending.pop()
        if isinstance(current, SetOperationQuery):
            pending.extend([current.right, current.left])
            continue
        yield current
        for ref in current.references():
            if ref.query is not None:
                pending.append(ref.query)
        for predicate in (current.where, current.having):
            if predicate is not None:
                pending.extend(predicate.subqueries)
