"""
Tests for schema change impact analysis.
"""

import pytest

from sql_flow import ImpactAnalyzer
from sql_flow.analysis import count_floor, parse_change_type
from sql_flow.exceptions import InvalidImpactRequestError
from sql_flow.models.results import ChangeType, Severity


class TestHelpers:
    """Test count_floor() and parse_change_type()."""

    def test_count_floor(self):
        """Test the affected-count thresholds."""
        assert count_floor(0) is Severity.LOW
        assert count_floor(2) is Severity.LOW
        assert count_floor(3) is Severity.MEDIUM
        assert count_floor(10) is Severity.HIGH
        assert count_floor(25) is Severity.CRITICAL

    def test_parse_change_type(self):
        """Test change types are case-insensitive."""
        assert parse_change_type("DROP") is ChangeType.DROP
        assert parse_change_type(ChangeType.RENAME) is ChangeType.RENAME

    def test_invalid_change_type(self):
        """Test unknown change types name the offending field."""
        with pytest.raises(InvalidImpactRequestError) as exc_info:
            parse_change_type("explode")

        assert exc_info.value.field_name == "change_type"
        assert isinstance(exc_info.value, ValueError)


class TestTableChange:
    """Test analyze_table_change()."""

    def test_drop_table(self, customer_graph):
        """Test dropping a table read by a view is critical."""
        report = ImpactAnalyzer(customer_graph).analyze_table_change("orders", "drop")

        assert report.severity is Severity.CRITICAL
        assert [item.node.id for item in report.direct_impacts] == [
            "view:customer_orders"
        ]
        assert report.transitive_impacts == []
        assert report.direct_impacts[0].relationship == "join"
        assert report.summary.views_affected == 1
        assert any("Review view definitions" in s for s in report.suggestions)

    def test_transitive_impacts(self, pipeline_graph):
        """Test direct and transitive impacts of a pipeline source."""
        report = ImpactAnalyzer(pipeline_graph).analyze_table_change(
            "raw_sales", ChangeType.MODIFY
        )

        assert [i.node.id for i in report.direct_impacts] == ["table:clean_sales"]
        assert {i.node.id for i in report.transitive_impacts} == {
            "view:region_totals",
            "view:top_regions",
        }
        assert all(i.severity is Severity.MEDIUM for i in report.transitive_impacts)
        assert report.direct_impacts[0].severity is Severity.HIGH
        assert report.severity is Severity.HIGH
        assert report.summary.total_affected == 3
        assert report.summary.tables_affected == 1
        assert report.summary.views_affected == 2

    def test_add_column_is_low(self, pipeline_graph):
        """Test adding a column with few dependents stays low."""
        report = ImpactAnalyzer(pipeline_graph).analyze_table_change(
            "region_totals", "add_column"
        )

        assert report.severity is Severity.LOW
        assert any("SELECT *" in s for s in report.suggestions)

    def test_isolated_table(self, customer_graph):
        """Test a table with no dependents."""
        report = ImpactAnalyzer(customer_graph).analyze_table_change(
            "customer_orders", "drop"
        )

        assert report.direct_impacts == []
        assert report.severity is Severity.LOW
        assert "isolated" in report.suggestions[0]

    def test_unknown_table(self, customer_graph):
        """Test unknown tables produce a low report with suggestions."""
        report = ImpactAnalyzer(customer_graph).analyze_table_change("ordrs", "drop")

        assert report.severity is Severity.LOW
        assert "orders" in report.similar_names
        assert "not found" in report.warning

    def test_blank_table(self, customer_graph):
        """Test a blank table name is rejected."""
        with pytest.raises(InvalidImpactRequestError) as exc_info:
            ImpactAnalyzer(customer_graph).analyze_table_change("   ", "drop")

        assert exc_info.value.field_name == "table_name"


class TestColumnChange:
    """Test analyze_column_change()."""

    def test_rename_column(self, customer_graph):
        """Test a column feeding a view column."""
        report = ImpactAnalyzer(customer_graph).analyze_column_change(
            "orders", "id", "rename"
        )

        assert report.target.kind == "column"
        assert report.target.table_name == "orders"
        assert [i.node.id for i in report.direct_impacts] == [
            "column:customer_orders.count"
        ]
        assert report.direct_impacts[0].relationship == "aggregated"
        assert report.severity is Severity.HIGH
        assert report.summary.views_affected == 1
        assert any("column 'orders.id'" in s for s in report.suggestions)

    def test_unknown_column_falls_back(self, customer_graph):
        """Test an unknown column reports table-level impact with a warning."""
        report = ImpactAnalyzer(customer_graph).analyze_column_change(
            "orders", "idd", "drop"
        )

        assert "showing table-level impact" in report.warning
        assert "id" in report.similar_names
        assert report.target.node_id == "table:orders"
        assert len(report.direct_impacts) == 1

    def test_blank_column(self, customer_graph):
        """Test blank names are rejected before the graph is read."""
        analyzer = ImpactAnalyzer(customer_graph)

        with pytest.raises(InvalidImpactRequestError) as exc_info:
            analyzer.analyze_column_change("orders", "", "drop")
        assert exc_info.value.field_name == "column_name"

        with pytest.raises(InvalidImpactRequestError) as exc_info:
            analyzer.analyze_column_change(None, "id", "drop")
        assert exc_info.value.field_name == "table_name"
