"""
Analyses over the workspace lineage graph.
"""

from sql_flow.analysis.column_lineage import (
    ColumnLineageTracker,
    get_full_column_lineage,
)
from sql_flow.analysis.flow_analyzer import (
    UNBOUNDED,
    Direction,
    FlowAnalyzer,
    merge_results,
    normalize_depth,
)
from sql_flow.analysis.impact_analyzer import (
    ImpactAnalyzer,
    count_floor,
    parse_change_type,
)

__all__ = [
    "ColumnLineageTracker",
    "get_full_column_lineage",
    "UNBOUNDED",
    "Direction",
    "FlowAnalyzer",
    "merge_results",
    "normalize_depth",
    "ImpactAnalyzer",
    "count_floor",
    "parse_change_type",
]
