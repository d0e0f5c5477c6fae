"""
Per-statement execution-flow graphs.
"""

from sql_flow.flow.builder import FlowGraphBuilder, build_batch, build_flow_graph

__all__ = [
    "FlowGraphBuilder",
    "build_batch",
    "build_flow_graph",
]
