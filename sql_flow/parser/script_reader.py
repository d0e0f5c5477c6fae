"""
Script reader: SQL text -> adapted statements.

Splits a script into statements, parses each one with sqlglot and adapts it.
A statement that fails to parse is reported as a StatementParseError keyed to
its position in the batch; the remaining statements are still read.
"""

from typing import List, Optional, Tuple

import sqlglot
from sqlglot.errors import SqlglotError

from sql_flow.exceptions import StatementParseError
from sql_flow.models.statement import Statement
from sql_flow.parser.ast_adapter import AstAdapter
from sql_flow.parser.script_splitter import ScriptChunk, ScriptSplitter
from sql_flow.utils.logging import get_logger

logger = get_logger(__name__)


def parse_chunk(
    chunk: ScriptChunk,
    dialect: Optional[str] = None,
    adapter: Optional[AstAdapter] = None,
) -> Statement:
    """Parse and adapt one statement chunk.

    Raises:
        StatementParseError: If sqlglot rejects the statement or the adapter
            cannot represent it.
    """
    adapter = adapter or AstAdapter(dialect=dialect)
    try:
        ast = sqlglot.parse_one(chunk.sql, read=dialect)
    except SqlglotError as e:
        message = str(e).splitlines()[0] if str(e) else type(e).__name__
        raise StatementParseError(
            message,
            statement_index=chunk.index,
            line=chunk.start_line,
            sql=chunk.sql,
        ) from e
    if ast is None:
        raise StatementParseError(
            "Statement is empty",
            statement_index=chunk.index,
            line=chunk.start_line,
            sql=chunk.sql,
        )
    return adapter.adapt(
        ast,
        chunk.sql,
        index=chunk.index,
        start_line=chunk.start_line,
        end_line=chunk.end_line,
    )


def read_statements(
    sql: str, dialect: Optional[str] = None
) -> Tuple[List[Statement], List[StatementParseError]]:
    """Read every statement of a script.

    Args:
        sql: Script text.
        dialect: sqlglot dialect name.

    Returns:
        (statements, errors): adapted statements in script order, and one
        StatementParseError per statement that could not be read.
    """
    adapter = AstAdapter(dialect=dialect)
    statements: List[Statement] = []
    errors: List[StatementParseError] = []
    for chunk in ScriptSplitter().split(sql, dialect):
        try:
            statements.append(parse_chunk(chunk, dialect, adapter))
        except StatementParseError as e:
            logger.warning("Skipping unparsable %s", e)
            errors.append(e)
    return statements, errors
