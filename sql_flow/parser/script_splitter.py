"""
Script splitter for SQL scripts.

This module defines the ScriptSplitter class, which splits SQL scripts containing
multiple statements into individual statement chunks, preserving the original
text and the lines each statement occupies in the script.
"""

from dataclasses import dataclass
from typing import List, Optional

import sqlglot
from sqlglot.errors import TokenError
from sqlglot.tokens import Token, TokenType

from sql_flow.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ScriptChunk:
    """One statement cut out of a script.

    Attributes:
        index: 0-based position of the statement in the script.
        sql: Original statement text, without the terminating semicolon.
        start_line: 1-based line where the statement starts.
        end_line: 1-based line where the statement ends.
    """

    index: int
    sql: str
    start_line: int
    end_line: int


class ScriptSplitter:
    """SQL script splitter.

    Responsibilities:
    1. Split SQL scripts on top-level semicolons using the sqlglot tokenizer,
       so semicolons inside strings, comments and parentheses are ignored
    2. Preserve original text and line positions of each statement

    Usage:
        splitter = ScriptSplitter()
        chunks = splitter.split("SELECT 1;\\nSELECT 2;")
        # chunks[1].sql == "SELECT 2", chunks[1].start_line == 2
    """

    def split(self, script: str, dialect: Optional[str] = None) -> List[ScriptChunk]:
        """Split a SQL script.

        Args:
            script: SQL script text (may contain multiple statements).
            dialect: SQL dialect (None for the sqlglot default).

        Returns:
            List of ScriptChunk objects in script order. Empty or comment-only
            scripts yield an empty list.
        """
        if not script or not script.strip():
            return []

        try:
            tokens = sqlglot.tokenize(script, read=dialect)
        except TokenError as e:
            logger.debug("Tokenizing failed (%s); splitting on raw semicolons", e)
            return self._split_fallback(script, dialect)

        chunks: List[ScriptChunk] = []
        current: List[Token] = []
        depth = 0
        for token in tokens:
            if token.token_type == TokenType.L_PAREN:
                depth += 1
            elif token.token_type == TokenType.R_PAREN:
                depth = max(0, depth - 1)
            elif token.token_type == TokenType.SEMICOLON and depth == 0:
                self._append_chunk(chunks, script, current)
                current = []
                continue
            current.append(token)

        self._append_chunk(chunks, script, current)
        return chunks

    def _append_chunk(
        self, chunks: List[ScriptChunk], script: str, tokens: List[Token]
    ) -> None:
        if not tokens:
            return
        start = tokens[0].start
        end = tokens[-1].end + 1
        chunks.append(
            ScriptChunk(
                index=len(chunks),
                sql=script[start:end],
                start_line=_line_at(script, start),
                end_line=_line_at(script, end - 1),
            )
        )

    def _split_fallback(
        self, script: str, dialect: Optional[str]
    ) -> List[ScriptChunk]:
        """Split a script the tokenizer rejects as a whole.

        Pieces between raw semicolons are grown until they tokenize; when a
        piece never does (e.g. an unterminated string), the rest of the script
        becomes one chunk so only that statement fails to parse.
        """
        chunks: List[ScriptChunk] = []
        begin = 0
        position = script.find(";")
        while position != -1:
            piece = script[begin:position]
            try:
                sqlglot.tokenize(piece, read=dialect)
            except TokenError:
                position = script.find(";", position + 1)
                continue
            self._append_text(chunks, script, begin, position)
            begin = position + 1
            position = script.find(";", begin)

        self._append_text(chunks, script, begin, len(script))
        return chunks

    def _append_text(
        self, chunks: List[ScriptChunk], script: str, begin: int, end: int
    ) -> None:
        piece = script[begin:end]
        if not piece.strip():
            return
        start = begin + (len(piece) - len(piece.lstrip()))
        stop = begin + len(piece.rstrip())
        chunks.append(
            ScriptChunk(
                index=len(chunks),
                sql=script[start:stop],
                start_line=_line_at(script, start),
                end_line=_line_at(script, stop - 1),
            )
        )


def _line_at(script: str, offset: int) -> int:
    """Return the 1-based line of a character offset."""
    return script.count("\n", 0, max(0, offset)) + 1
