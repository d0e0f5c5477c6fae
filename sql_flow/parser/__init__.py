"""
SQL parsing for sql_flow.

This package splits scripts into statements, parses them with sqlglot and
adapts each parsed statement into the intermediate Statement form.
"""

from sql_flow.parser.ast_adapter import AstAdapter, LineLocator
from sql_flow.parser.script_reader import parse_chunk, read_statements
from sql_flow.parser.script_splitter import ScriptChunk, ScriptSplitter
from sql_flow.parser.statement_classifier import StatementClassifier

__all__ = [
    "AstAdapter",
    "LineLocator",
    "parse_chunk",
    "read_statements",
    "ScriptChunk",
    "ScriptSplitter",
    "StatementClassifier",
]
