"""
Custom exception classes for flow and lineage analysis.

This module defines all custom exceptions used throughout the sql_flow
package. Public operations on the Workspace never let these escape; they are
converted into structured error values at that boundary.
"""

from typing import Optional


class SqlFlowError(Exception):
    """Base exception class for all sql_flow errors.

    Attributes:
        message: Human-readable error message describing the error.
    """

    def __init__(self, message: str) -> None:
        """Initialize a SqlFlowError with a message.

        Args:
            message: Error message describing what went wrong.
        """
        self.message = message
        super().__init__(self.message)


class StatementParseError(SqlFlowError):
    """Exception raised when a single statement of a batch cannot be parsed.

    The error is keyed to the statement's position in the batch so that a
    batch result can report it without aborting the remaining statements.

    Attributes:
        message: Error message from the parser.
        statement_index: 0-based position of the statement in the batch.
        line: 1-based line where the statement starts, if known.
        sql: The raw statement text.
    """

    def __init__(
        self,
        message: str,
        statement_index: int,
        line: Optional[int] = None,
        sql: Optional[str] = None,
    ) -> None:
        self.statement_index = statement_index
        self.line = line
        self.sql = sql
        super().__init__(message)

    def __str__(self) -> str:
        location = f"statement {self.statement_index + 1}"
        if self.line is not None:
            location += f" (line {self.line})"
        return f"{location}: {self.message}"


class NodeNotFoundError(SqlFlowError):
    """Exception raised when a node identity is absent from the lineage graph.

    Attributes:
        message: Error message describing the failed lookup.
        node_id: The requested node identity or name.
        similar_names: Ranked list of known names similar to the request.
    """

    def __init__(
        self,
        message: str,
        node_id: str,
        similar_names: Optional[list[str]] = None,
    ) -> None:
        self.node_id = node_id
        self.similar_names = similar_names or []

        if self.similar_names:
            quoted = ", ".join(f'"{name}"' for name in self.similar_names)
            message = f"{message} Did you mean: {quoted}?"

        super().__init__(message)


class InvalidImpactRequestError(SqlFlowError, ValueError):
    """Exception raised when an impact request is missing required fields.

    Raised before any graph access, e.g. when a column change is requested
    without the owning table name.

    Attributes:
        message: Error message describing the invalid request.
        field_name: Name of the missing or invalid field.
    """

    def __init__(self, message: str, field_name: str) -> None:
        super().__init__(message)
        self.field_name = field_name


class UnresolvedReferenceError(SqlFlowError):
    """Exception raised when a table reference has no workspace definition.

    Only raised when the configuration asks for unresolved references to be
    fatal (``on_unresolved=ErrorMode.FAIL``).

    Attributes:
        message: Error message describing the unresolved reference.
        reference: The unresolved table name.
        file_path: File containing the reference.
        line: Line of the reference, if known.
    """

    def __init__(
        self,
        message: str,
        reference: str,
        file_path: Optional[str] = None,
        line: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.reference = reference
        self.file_path = file_path
        self.line = line


class GraphBuildError(SqlFlowError):
    """Exception raised when a lineage graph cannot be constructed."""
