"""
Statement classifier for SQL statements.

This module defines the StatementClassifier class, which maps a parsed sqlglot
expression to a StatementKind and answers the few structural questions the AST
adapter needs before adapting it (temporary tables, CREATE ... AS queries).
"""

from typing import Optional

import sqlglot
from sqlglot import expressions

from sql_flow.models.statement import StatementKind

QUERY_TYPES = (
    expressions.Select,
    expressions.Union,
    expressions.Intersect,
    expressions.Except,
    expressions.Subquery,
)


class StatementClassifier:
    """SQL statement classifier.

    Usage:
        classifier = StatementClassifier()
        kind = classifier.classify(sqlglot.parse_one("CREATE VIEW v AS SELECT 1"))
        # kind == StatementKind.CREATE_VIEW
    """

    def classify(self, ast: sqlglot.Expression) -> StatementKind:
        """Classify a SQL statement.

        Args:
            ast: sqlglot AST object.

        Returns:
            StatementKind of the statement. Statements the adapter does not
            model (procedures, grants, commands) are StatementKind.OTHER.
        """
        if isinstance(ast, QUERY_TYPES):
            return StatementKind.SELECT

        if isinstance(ast, expressions.Create):
            kind = (ast.args.get("kind") or "").upper()
            if kind == "VIEW":
                return StatementKind.CREATE_VIEW
            if kind == "TABLE":
                if self.create_query(ast) is not None:
                    return StatementKind.CREATE_TABLE_AS
                return StatementKind.CREATE_TABLE
            return StatementKind.OTHER

        if isinstance(ast, expressions.Insert):
            return StatementKind.INSERT
        if isinstance(ast, expressions.Update):
            return StatementKind.UPDATE
        if isinstance(ast, expressions.Delete):
            return StatementKind.DELETE
        if isinstance(ast, expressions.Merge):
            return StatementKind.MERGE
        if isinstance(ast, expressions.Drop):
            return StatementKind.DROP

        return StatementKind.OTHER

    def create_query(
        self, create_ast: sqlglot.Expression
    ) -> Optional[sqlglot.Expression]:
        """Extract the AS query of CREATE TABLE AS / CREATE VIEW, if any."""
        query = create_ast.args.get("expression")
        if isinstance(query, QUERY_TYPES):
            return query
        return None

    def is_temporary(self, create_ast: sqlglot.Expression) -> bool:
        """Check if a CREATE statement creates a temporary table."""
        # sqlglot marks temporary tables with a TemporaryProperty
        properties = create_ast.args.get("properties")
        if properties and hasattr(properties, "expressions"):
            for prop in properties.expressions:
                if isinstance(prop, expressions.TemporaryProperty):
                    return True
        return False
