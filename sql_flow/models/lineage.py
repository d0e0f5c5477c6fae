"""
Workspace lineage graph model.

This module defines the nodes and edges of the workspace lineage graph and the
per-file inventory the graph is built from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sql_flow.models.identity import NodeKey, NodeKind
from sql_flow.models.statement import (
    ColumnDefinition,
    ColumnTransform,
    Statement,
    StatementKind,
    query_projection,
)


class EdgeType(str, Enum):
    """Relationship recorded by a table-level lineage edge."""

    DIRECT_SELECT = "direct_select"
    JOIN = "join"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    def is_mutation(self) -> bool:
        return self in (EdgeType.INSERT, EdgeType.UPDATE, EdgeType.DELETE)


@dataclass
class LineageNode:
    """A node of the lineage graph.

    Attributes:
        key: Typed identity.
        name: Display name ("sales.orders", "id").
        parent: Owning relation of a column node.
        file_path: File of the definition, if any.
        line_number: Line of the definition, if any.
        data_type: Column data type.
        nullable: Column nullability.
        primary_key: Column is (part of) the primary key.
        metadata: Additional attributes (schema, definition files, ...).
    """

    key: NodeKey
    name: str
    parent: Optional[NodeKey] = None
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    data_type: Optional[str] = None
    nullable: Optional[bool] = None
    primary_key: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.key.node_id

    @property
    def kind(self) -> NodeKind:
        return self.key.kind

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "name": self.name,
            "file_path": self.file_path,
            "line_number": self.line_number,
            "metadata": dict(self.metadata),
        }
        if self.kind is NodeKind.COLUMN:
            data["parent_id"] = self.parent.node_id if self.parent else None
            data["data_type"] = self.data_type
            data["nullable"] = self.nullable
            data["primary_key"] = self.primary_key
        return data


@dataclass(frozen=True)
class LineageEdge:
    """Table-level data flow from ``source`` into ``target``."""

    source: NodeKey
    target: NodeKey
    edge_type: EdgeType
    file_path: Optional[str] = None
    line_number: Optional[int] = None

    @property
    def id(self) -> str:
        return f"{self.source.node_id}->{self.target.node_id}:{self.edge_type.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.node_id,
            "target": self.target.node_id,
            "type": self.edge_type.value,
            "file_path": self.file_path,
            "line_number": self.line_number,
        }


@dataclass(frozen=True)
class ColumnEdge:
    """Column-level data flow from ``source`` into ``target``."""

    source: NodeKey
    target: NodeKey
    transform: ColumnTransform
    expression: Optional[str] = None
    file_path: Optional[str] = None
    line_number: Optional[int] = None

    @property
    def id(self) -> str:
        return f"{self.source.node_id}->{self.target.node_id}:{self.transform.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.node_id,
            "target": self.target.node_id,
            "type": self.transform.value,
            "expression": self.expression,
            "file_path": self.file_path,
            "line_number": self.line_number,
        }


class ReferenceType(str, Enum):
    """How a statement touches a referenced relation."""

    SELECT = "select"
    JOIN = "join"
    SUBQUERY = "subquery"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class TableReferenceRecord:
    """A relation reference found in a statement, kept for impact counts."""

    key: NodeKey
    reference_type: ReferenceType
    file_path: str
    line_number: Optional[int]
    statement_index: int


@dataclass
class SchemaDefinition:
    """A table or view definition found in a file.

    Attributes:
        name: Relation name without schema.
        kind: NodeKind.TABLE or NodeKind.VIEW.
        schema: Schema qualifier, if written.
        columns: Declared or derived columns.
        file_path: Defining file.
        line_number: Line of the CREATE statement.
        sql: Statement text.
    """

    name: str
    kind: NodeKind = NodeKind.TABLE
    schema: Optional[str] = None
    columns: List[ColumnDefinition] = field(default_factory=list)
    file_path: str = ""
    line_number: Optional[int] = None
    sql: Optional[str] = None


@dataclass
class FileInventory:
    """Everything the lineage builder needs from one file.

    Attributes:
        path: File path.
        definitions: Table and view definitions with line numbers.
        statements: Adapted statements of the file.
        errors: Per-statement parse errors (kept, never fatal).
    """

    path: str
    definitions: List[SchemaDefinition] = field(default_factory=list)
    statements: List[Statement] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_sql(
        cls, path: str, sql: str, dialect: Optional[str] = None
    ) -> FileInventory:
        """Parse a file's SQL text into an inventory.

        Statements that fail to parse are recorded in ``errors`` and skipped.
        """
        from sql_flow.parser.script_reader import read_statements

        statements, errors = read_statements(sql, dialect=dialect)
        definitions = [
            definition_from_statement(statement, path)
            for statement in statements
            if statement.kind.defines_relation() and statement.target is not None
        ]
        return cls(
            path=path,
            definitions=definitions,
            statements=statements,
            errors=[str(error) for error in errors],
        )


def definition_from_statement(statement: Statement, path: str) -> SchemaDefinition:
    """Build the SchemaDefinition declared by a CREATE statement.

    View and CTAS columns come from the explicit column list when present,
    otherwise from the query's output names.
    """
    if statement.target is None:
        raise ValueError("statement has no target")

    kind = (
        NodeKind.VIEW
        if statement.kind is StatementKind.CREATE_VIEW
        else NodeKind.TABLE
    )
    columns = list(statement.columns)
    if not columns and statement.query is not None:
        seen = set()
        for item in query_projection(statement.query):
            if item.is_star or item.output_name in seen:
                continue
            seen.add(item.output_name)
            columns.append(ColumnDefinition(name=item.output_name))

    return SchemaDefinition(
        name=statement.target.name,
        kind=kind,
        schema=statement.target.schema,
        columns=columns,
        file_path=path,
        line_number=statement.span.start,
        sql=statement.sql,
    )
