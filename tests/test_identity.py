"""
Unit tests for node identity, name suggestions and configuration.
"""

import pytest

from sql_flow import ErrorMode, FlowConfig, NodeKey, NodeKind
from sql_flow.models.identity import normalize_name, split_qualified_name
from sql_flow.utils.similarity import edit_distance, find_similar_names


class TestNodeKey:
    """Test NodeKey class."""

    def test_normalize_name(self):
        """Test case folding, quotes and schema prefixes."""
        assert normalize_name("Orders") == "orders"
        assert normalize_name("Orders", "Sales") == "sales.orders"
        assert normalize_name('"Public"."Orders"') == "public.orders"
        assert normalize_name("[dbo].[Orders]") == "dbo.orders"

    def test_split_qualified_name(self):
        """Test splitting on the last dot."""
        assert split_qualified_name("orders") == (None, "orders")
        assert split_qualified_name("db.sales.orders") == ("db.sales", "orders")

    def test_parse_and_node_id(self):
        """Test identity strings round through NodeKey."""
        key = NodeKey.parse("View:Sales.Summary")

        assert key.kind is NodeKind.VIEW
        assert key.node_id == "view:sales.summary"
        assert str(key) == "view:sales.summary"

    def test_parse_invalid(self):
        """Test malformed identities raise ValueError."""
        with pytest.raises(ValueError):
            NodeKey.parse("orders")
        with pytest.raises(ValueError):
            NodeKey.parse("index:orders")
        with pytest.raises(ValueError):
            NodeKey.parse("table:")

    def test_column_keys(self):
        """Test column keys carry their owning relation."""
        parent = NodeKey.relation(NodeKind.TABLE, "orders", "sales")
        key = NodeKey.column(parent, '"Amount"')

        assert key.node_id == "column:sales.orders.amount"
        assert key.table_name == "sales.orders"
        assert key.column_name == "amount"
        assert parent.column_name is None

    def test_cte_column_keys(self):
        """Test CTE columns never share a key with a same-named table."""
        cte = NodeKey(NodeKind.CTE, "orders")
        table = NodeKey.relation(NodeKind.TABLE, "orders")
        key = NodeKey.column(cte, "amount")

        assert key.node_id == "column:cte:orders.amount"
        assert key != NodeKey.column(table, "amount")
        assert key.column_name == "amount"
        assert NodeKey.parse(key.node_id) == key

    def test_column_key_errors(self):
        """Test column keys cannot nest or be built as relations."""
        column = NodeKey.parse("column:orders.id")

        with pytest.raises(ValueError):
            NodeKey.column(column, "x")
        with pytest.raises(ValueError):
            NodeKey.relation(NodeKind.COLUMN, "orders")

    def test_with_kind(self):
        """Test swapping the kind keeps the name."""
        key = NodeKey.parse("table:orders").with_kind(NodeKind.VIEW)

        assert key == NodeKey.parse("view:orders")


class TestSimilarity:
    """Test similar-name suggestions."""

    def test_edit_distance(self):
        """Test Levenshtein distances."""
        assert edit_distance("", "abc") == 3
        assert edit_distance("kitten", "sitting") == 3
        assert edit_distance("same", "same") == 0

    def test_typo_ranks_first(self):
        """Test a one-letter typo is the best match."""
        names = ["orders", "customers", "customer_orders"]

        assert find_similar_names("custmers", names)[0] == "customers"

    def test_substring_matches(self):
        """Test substrings match regardless of distance."""
        names = ["customer_orders", "orders", "products"]

        assert find_similar_names("orders", names) == ["customer_orders", "orders"]

    def test_contained_short_name_ranks_first(self):
        """Test a name contained in the query scores 0 even when very short."""
        assert find_similar_names("custmers", ["customers", "s"]) == ["s", "customers"]

    def test_limit_and_threshold(self):
        """Test results are limited and distant names dropped."""
        names = ["aa1", "aa2", "aa3", "aa4", "zzzzzzzz"]

        assert find_similar_names("aa", names, limit=3) == ["aa1", "aa2", "aa3"]
        assert find_similar_names("qqqqqqqq", names) == []
        assert find_similar_names("  ", names) == []


class TestFlowConfig:
    """Test FlowConfig class."""

    def test_defaults(self):
        """Test default settings."""
        config = FlowConfig()

        assert config.default_depth == 5
        assert config.max_depth == 20
        assert config.include_external is True
        assert config.on_unresolved is ErrorMode.WARN

    def test_clamping(self):
        """Test depths are clamped to the ceiling."""
        config = FlowConfig(max_depth=50, default_depth=30)

        assert config.max_depth == 20
        assert config.default_depth == 20

    def test_default_schema_lowercased(self):
        """Test the default schema is normalized."""
        assert FlowConfig(default_schema="Public").default_schema == "public"

    def test_invalid_values(self):
        """Test invalid settings are rejected."""
        with pytest.raises(ValueError):
            FlowConfig(max_depth=0)
        with pytest.raises(ValueError):
            FlowConfig(default_depth=-2)
        with pytest.raises(TypeError):
            FlowConfig(on_unresolved="warn")
        with pytest.raises(ValueError):
            FlowConfig(max_column_paths=0)

    def test_error_mode_values(self):
        """Test the error mode values."""
        assert ErrorMode.values() == ["fail", "warn", "ignore"]
