"""
Utility functions for sql_flow.
"""

from sql_flow.utils.logging import get_logger, setup_logging
from sql_flow.utils.similarity import edit_distance, find_similar_names

__all__ = [
    "get_logger",
    "setup_logging",
    "edit_distance",
    "find_similar_names",
]
