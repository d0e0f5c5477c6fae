"""
Node identity for the lineage graph.

Every lineage node is identified by a NodeKey: a node kind plus a
schema-normalized qualified name. String identities such as "table:orders" or
"column:orders.id" are only produced and parsed here, at the public boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class NodeKind(str, Enum):
    """Kinds of lineage graph nodes."""

    TABLE = "table"
    VIEW = "view"
    CTE = "cte"
    COLUMN = "column"
    EXTERNAL = "external"

    def is_relation(self) -> bool:
        """Check if nodes of this kind hold rows (everything but columns)."""
        return self is not NodeKind.COLUMN


# Owner prefix of CTE column names: "column:cte:recent.total".
CTE_COLUMN_PREFIX = "cte:"

# Lookup order used when a relation name is requested without a kind.
RELATION_LOOKUP_ORDER: Tuple[NodeKind, ...] = (
    NodeKind.TABLE,
    NodeKind.VIEW,
    NodeKind.CTE,
    NodeKind.EXTERNAL,
)


def normalize_name(name: str, schema: Optional[str] = None) -> str:
    """Return the normalized qualified name of a relation.

    Names are lower-cased, stripped of identifier quotes, and prefixed with the
    schema when one is known.

    Args:
        name: Relation name, optionally already qualified ("sales.orders").
        schema: Optional schema name.

    Returns:
        Normalized qualified name.

    Example:
        >>> normalize_name("Orders", "Sales")
        'sales.orders'
        >>> normalize_name('"public"."Orders"')
        'public.orders'
    """
    parts = [_strip_quotes(part) for part in name.split(".") if part.strip()]
    if schema:
        schema_parts = [_strip_quotes(part) for part in schema.split(".")]
        parts = schema_parts + parts[-1:]
    return ".".join(part.lower() for part in parts)


def split_qualified_name(name: str) -> Tuple[Optional[str], str]:
    """Split a qualified relation name into (schema, name).

    Anything before the last dot is treated as the schema (which may itself
    contain a catalog prefix).

    Example:
        >>> split_qualified_name("public.orders")
        ('public', 'orders')
        >>> split_qualified_name("orders")
        (None, 'orders')
    """
    if "." not in name:
        return (None, name)
    schema, _, base = name.rpartition(".")
    return (schema or None, base)


def _strip_quotes(part: str) -> str:
    part = part.strip()
    if len(part) >= 2 and part[0] == part[-1] and part[0] in "\"`'":
        return part[1:-1]
    if len(part) >= 2 and part[0] == "[" and part[-1] == "]":
        return part[1:-1]
    return part


@dataclass(frozen=True, order=True)
class NodeKey:
    """Typed identity of a lineage node.

    Attributes:
        kind: Node kind.
        qualified_name: Normalized name. For columns this is
            "<table_normalized_name>.<column_name>"; columns of a CTE are
            prefixed with "cte:" so they never collide with a relation of
            the same name.

    Example:
        >>> NodeKey.relation(NodeKind.TABLE, "Orders").node_id
        'table:orders'
        >>> NodeKey.parse("column:orders.id").column_name
        'id'
    """

    kind: NodeKind
    qualified_name: str

    @classmethod
    def relation(
        cls, kind: NodeKind, name: str, schema: Optional[str] = None
    ) -> NodeKey:
        """Build the key of a table/view/cte/external node."""
        if kind is NodeKind.COLUMN:
            raise ValueError("use NodeKey.column() for column keys")
        return cls(kind, normalize_name(name, schema))

    @classmethod
    def column(cls, parent: NodeKey, column_name: str) -> NodeKey:
        """Build the key of a column owned by ``parent``."""
        if parent.kind is NodeKind.COLUMN:
            raise ValueError("a column cannot own another column")
        owner = parent.qualified_name
        if parent.kind is NodeKind.CTE:
            owner = f"{CTE_COLUMN_PREFIX}{owner}"
        return cls(
            NodeKind.COLUMN,
            f"{owner}.{_strip_quotes(column_name).lower()}",
        )

    @classmethod
    def parse(cls, node_id: str) -> NodeKey:
        """Parse a "<kind>:<name>" identity string.

        Raises:
            ValueError: If the string has no known kind prefix.
        """
        kind_text, sep, name = node_id.partition(":")
        if not sep or not name:
            raise ValueError(f"Invalid node id '{node_id}'")
        try:
            kind = NodeKind(kind_text.strip().lower())
        except ValueError as e:
            raise ValueError(f"Unknown node kind in '{node_id}'") from e
        if kind is NodeKind.COLUMN:
            return cls(kind, name.strip().lower())
        return cls(kind, normalize_name(name))

    @property
    def node_id(self) -> str:
        """Return the public "<kind>:<name>" identity string."""
        return f"{self.kind.value}:{self.qualified_name}"

    @property
    def table_name(self) -> str:
        """Return the owning relation name for columns, or the name itself."""
        if self.kind is NodeKind.COLUMN:
            return self.qualified_name.rpartition(".")[0]
        return self.qualified_name

    @property
    def column_name(self) -> Optional[str]:
        """Return the column part of a column key, None for relations."""
        if self.kind is NodeKind.COLUMN:
            return self.qualified_name.rpartition(".")[2]
        return None

    def with_kind(self, kind: NodeKind) -> NodeKey:
        """Return the same relation name under a different kind."""
        return NodeKey(kind, self.qualified_name)

    def __str__(self) -> str:
        return self.node_id
