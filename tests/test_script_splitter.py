"""
Unit tests for ScriptSplitter and the script reader.
"""

from sql_flow.exceptions import StatementParseError
from sql_flow.parser.script_reader import read_statements
from sql_flow.parser.script_splitter import ScriptSplitter


class TestScriptSplitter:
    """Test ScriptSplitter class."""

    def setup_method(self):
        """Create splitter for each test."""
        self.splitter = ScriptSplitter()

    def test_split_simple_statements(self):
        """Test splitting two statements."""
        chunks = self.splitter.split("SELECT 1;\nSELECT 2;")

        assert len(chunks) == 2
        assert chunks[0].sql == "SELECT 1"
        assert chunks[1].sql == "SELECT 2"
        assert [c.index for c in chunks] == [0, 1]

    def test_line_numbers(self):
        """Test statements keep their start and end lines."""
        script = "SELECT 1;\n\nSELECT a\nFROM t;\n"
        chunks = self.splitter.split(script)

        assert chunks[0].start_line == 1
        assert chunks[1].start_line == 3
        assert chunks[1].end_line == 4

    def test_semicolon_inside_string(self):
        """Test semicolons inside string literals do not split."""
        chunks = self.splitter.split("SELECT 'a;b' AS x FROM t; SELECT 2")

        assert len(chunks) == 2
        assert "'a;b'" in chunks[0].sql

    def test_missing_final_semicolon(self):
        """Test the last statement does not need a semicolon."""
        chunks = self.splitter.split("SELECT 1; SELECT 2")

        assert len(chunks) == 2
        assert chunks[1].sql == "SELECT 2"

    def test_empty_script(self):
        """Test empty and blank scripts."""
        assert self.splitter.split("") == []
        assert self.splitter.split("   \n  ") == []

    def test_unterminated_string_stays_local(self):
        """Test a tokenizer failure only affects the broken statement."""
        chunks = self.splitter.split("SELECT 1 FROM a;\nSELECT 'oops FROM b;")

        assert len(chunks) >= 2
        assert chunks[0].sql.strip() == "SELECT 1 FROM a"
        assert chunks[0].start_line == 1


class TestReadStatements:
    """Test read_statements()."""

    def test_parse_error_is_isolated(self):
        """Test a broken statement is reported and the others are kept."""
        statements, errors = read_statements(
            "SELECT a FROM t;\nSELECT * FROM t WHERE;\nSELECT b FROM u;"
        )

        assert len(statements) == 2
        assert len(errors) == 1
        assert isinstance(errors[0], StatementParseError)
        assert errors[0].statement_index == 1
        assert errors[0].line == 2
        assert "statement 2" in str(errors[0])

    def test_statement_indexes(self):
        """Test statements keep their batch positions."""
        statements, _ = read_statements("SELECT 1; SELECT 2; SELECT 3")

        assert [s.index for s in statements] == [0, 1, 2]
