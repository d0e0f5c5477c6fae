"""
Configuration model for flow and lineage analysis.

This module defines the FlowConfig class and ErrorMode enum, which control
parsing dialect, traversal depth defaults and limits, and how unresolved
references are handled while building the lineage graph.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Hard ceiling on bounded traversal depth. Callers can lower it, never raise it.
MAX_DEPTH_CEILING = 20


class ErrorMode(str, Enum):
    """Enumeration of error handling modes for unresolved references.

    Attributes:
        FAIL: Raise UnresolvedReferenceError, aborting the graph build.
        WARN: Log a warning and keep the reference as an external node.
        IGNORE: Keep the reference as an external node silently.

    Example:
        >>> ErrorMode.values()
        ['fail', 'warn', 'ignore']
    """

    FAIL = "fail"
    WARN = "warn"
    IGNORE = "ignore"

    @classmethod
    def values(cls) -> list[str]:
        """Return a list of all possible error mode values."""
        return [member.value for member in cls]


@dataclass
class FlowConfig:
    """Configuration settings for flow and lineage analysis.

    Attributes:
        dialect: sqlglot dialect name used for parsing (None lets sqlglot use
            its default dialect).
        default_depth: Depth used when a caller supplies an invalid depth.
            Defaults to 5.
        max_depth: Ceiling applied to every bounded depth. Values above
            MAX_DEPTH_CEILING are clamped to it. Defaults to 20.
        include_external: If True, references to tables with no definition in
            the workspace become external nodes. Defaults to True.
        include_columns: If True, column nodes and column edges are built.
            Defaults to True.
        default_schema: Schema assumed for unqualified names when matching
            them against schema-qualified definitions.
        suggestion_limit: Maximum number of similar names returned for a failed
            lookup. Defaults to 3.
        max_column_paths: Maximum number of paths enumerated in each direction
            by the column lineage tracker. Defaults to 200.
        on_unresolved: Handling of references to undefined tables. Defaults
            to ErrorMode.WARN.

    Example:
        >>> config = FlowConfig(default_depth=3, dialect="postgres")
        >>> config.max_depth
        20
        >>> FlowConfig(max_depth=50).max_depth
        20
    """

    dialect: Optional[str] = None
    default_depth: int = 5
    max_depth: int = MAX_DEPTH_CEILING
    include_external: bool = True
    include_columns: bool = True
    default_schema: Optional[str] = None
    suggestion_limit: int = 3
    max_column_paths: int = 200
    on_unresolved: ErrorMode = ErrorMode.WARN

    def __post_init__(self) -> None:
        """Validate configuration settings."""
        if not isinstance(self.default_depth, int) or isinstance(
            self.default_depth, bool
        ):
            raise TypeError("default_depth must be an integer")
        if not isinstance(self.max_depth, int) or isinstance(self.max_depth, bool):
            raise TypeError("max_depth must be an integer")
        if self.max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        if self.default_depth < 1 and self.default_depth != -1:
            raise ValueError("default_depth must be positive or -1")
        if not isinstance(self.include_external, bool):
            raise TypeError("include_external must be a boolean")
        if not isinstance(self.include_columns, bool):
            raise TypeError("include_columns must be a boolean")
        if self.suggestion_limit < 0:
            raise ValueError("suggestion_limit cannot be negative")
        if self.max_column_paths < 1:
            raise ValueError("max_column_paths must be at least 1")
        if not isinstance(self.on_unresolved, ErrorMode):
            raise TypeError("on_unresolved must be an ErrorMode instance")

        self.max_depth = min(self.max_depth, MAX_DEPTH_CEILING)
        if self.default_depth != -1:
            self.default_depth = min(self.default_depth, self.max_depth)
        if self.default_schema:
            self.default_schema = self.default_schema.lower()
