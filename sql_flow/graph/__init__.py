"""
Workspace lineage graph.

This package contains the LineageGraph query object and the builder that
folds file inventories into it.
"""

from sql_flow.graph.lineage_builder import LineageGraphBuilder, build_lineage_graph
from sql_flow.graph.lineage_graph import LineageGraph

__all__ = [
    "LineageGraph",
    "LineageGraphBuilder",
    "build_lineage_graph",
]
