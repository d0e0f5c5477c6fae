"""
Tests for upstream / downstream flow analysis.
"""

import pytest

from sql_flow import FileInventory, FlowAnalyzer, FlowConfig, build_lineage_graph
from sql_flow.analysis import UNBOUNDED, Direction, merge_results, normalize_depth
from sql_flow.exceptions import NodeNotFoundError

from tests.conftest import RECURSIVE_SQL, SHADOWING_CTE_SQL


class TestNormalizeDepth:
    """Test normalize_depth()."""

    def test_valid_values(self):
        """Test integers, fractions and the unbounded marker."""
        assert normalize_depth(3, default=5) == 3
        assert normalize_depth(2.7, default=5) == 2
        assert normalize_depth(UNBOUNDED, default=5) == UNBOUNDED

    def test_fallback_to_default(self):
        """Test invalid values use the default."""
        assert normalize_depth(0, default=5) == 5
        assert normalize_depth(-3, default=5) == 5
        assert normalize_depth("deep", default=5) == 5
        assert normalize_depth(True, default=5) == 5
        assert normalize_depth(float("inf"), default=5) == 5
        assert normalize_depth(float("nan"), default=4) == 4

    def test_ceiling(self):
        """Test large depths are clamped."""
        assert normalize_depth(99, default=5) == 20
        assert normalize_depth(99, default=5, ceiling=8) == 8


class TestUpstream:
    """Test get_upstream()."""

    def test_view_sources(self, customer_graph):
        """Test a view's upstream is exactly its two tables."""
        result = FlowAnalyzer(customer_graph).get_upstream("view:customer_orders")

        assert sorted(result.node_ids) == ["table:customers", "table:orders"]
        assert result.depth == 1
        assert all(path.depth == 1 for path in result.paths)

    def test_bare_name_lookup(self, customer_graph):
        """Test bare relation names resolve."""
        result = FlowAnalyzer(customer_graph).get_upstream("customer_orders")

        assert len(result.nodes) == 2

    def test_table_lookup_falls_back_to_view(self, customer_graph):
        """Test a table: identity finds a view of the same name."""
        result = FlowAnalyzer(customer_graph).get_upstream("table:customer_orders")

        assert len(result.nodes) == 2

    def test_depth_limits(self, pipeline_graph):
        """Test depth bounds the traversal."""
        analyzer = FlowAnalyzer(pipeline_graph)

        assert analyzer.get_upstream("view:top_regions", max_depth=1).node_ids == [
            "view:region_totals"
        ]
        assert analyzer.get_upstream("view:top_regions", max_depth=UNBOUNDED).node_ids == [
            "view:region_totals",
            "table:clean_sales",
            "table:raw_sales",
        ]

    def test_depth_is_monotonic(self, pipeline_graph):
        """Test a larger depth never reaches fewer nodes."""
        analyzer = FlowAnalyzer(pipeline_graph)
        previous = set()
        for depth in (1, 2, 3, UNBOUNDED):
            reached = set(analyzer.get_upstream("view:top_regions", max_depth=depth).node_ids)
            assert previous <= reached
            previous = reached

    def test_column_upstream(self, customer_graph):
        """Test column nodes follow column edges."""
        result = FlowAnalyzer(customer_graph).get_upstream(
            "column:customer_orders.count"
        )

        assert result.node_ids == ["column:orders.id"]

    def test_unknown_node(self, customer_graph):
        """Test unknown nodes raise with suggestions."""
        with pytest.raises(NodeNotFoundError) as exc_info:
            FlowAnalyzer(customer_graph).get_upstream("table:custmers")

        assert exc_info.value.node_id == "table:custmers"
        assert exc_info.value.similar_names[0] == "customers"
        assert "Did you mean" in str(exc_info.value)


class TestDownstream:
    """Test get_downstream()."""

    def test_column_not_its_own_downstream(self):
        """Test a CTE named like its source table does not loop a column onto itself."""
        graph = build_lineage_graph([FileInventory.from_sql("s.sql", SHADOWING_CTE_SQL)])
        result = FlowAnalyzer(graph).get_downstream("column:orders.id", max_depth=UNBOUNDED)

        assert sorted(result.node_ids) == ["column:big.id", "column:cte:orders.id"]

    def test_distances_and_paths(self, pipeline_graph):
        """Test hop distances and one path per reached node."""
        result = FlowAnalyzer(pipeline_graph).get_downstream(
            "table:raw_sales", max_depth=UNBOUNDED
        )

        assert result.distances == {
            "table:clean_sales": 1,
            "view:region_totals": 2,
            "view:top_regions": 3,
        }
        assert result.depth == 3
        assert result.paths[-1].signature == (
            "table:raw_sales",
            "table:clean_sales",
            "view:region_totals",
            "view:top_regions",
        )

    def test_every_edge_is_reachable(self, pipeline_graph):
        """Test every lineage edge target is downstream of its source."""
        analyzer = FlowAnalyzer(pipeline_graph)
        for edge in pipeline_graph.edges():
            result = analyzer.get_downstream(edge.source, max_depth=UNBOUNDED)
            assert edge.target.node_id in result.node_ids

    def test_exclude_external(self):
        """Test external nodes can be dropped from results."""
        graph = build_lineage_graph(
            [FileInventory.from_sql("v.sql", "CREATE VIEW v AS SELECT a FROM raw_events;")]
        )
        analyzer = FlowAnalyzer(graph)

        assert analyzer.get_upstream("view:v").node_ids == ["external:raw_events"]
        result = analyzer.get_upstream("view:v", exclude_external=True)
        assert result.nodes == []
        assert result.edges == []
        assert result.paths == []

    def test_exclude_external_columns(self):
        """Test columns of external tables are dropped along with the tables."""
        graph = build_lineage_graph(
            [FileInventory.from_sql("v.sql", "CREATE VIEW v AS SELECT a FROM raw_events;")]
        )
        analyzer = FlowAnalyzer(graph)

        assert analyzer.get_upstream("column:v.a").node_ids == ["column:raw_events.a"]
        result = analyzer.get_upstream("column:v.a", exclude_external=True)
        assert result.nodes == []
        assert result.edges == []
        assert result.paths == []
        assert result.distances == {}

    def test_config_excludes_external(self):
        """Test include_external=False in the config drops external results."""
        graph = build_lineage_graph(
            [FileInventory.from_sql("v.sql", "CREATE VIEW v AS SELECT a FROM raw_events;")]
        )
        analyzer = FlowAnalyzer(graph, FlowConfig(include_external=False))

        assert analyzer.get_upstream("view:v").nodes == []


class TestLineage:
    """Test get_lineage() in both directions."""

    def test_both_directions(self, pipeline_graph):
        """Test both directions are merged."""
        result = FlowAnalyzer(pipeline_graph).get_lineage("table:clean_sales")

        assert set(result.node_ids) == {
            "table:raw_sales",
            "view:region_totals",
            "view:top_regions",
        }

    def test_direction_strings(self, pipeline_graph):
        """Test directions may be given as strings."""
        result = FlowAnalyzer(pipeline_graph).get_lineage("table:clean_sales", "upstream")

        assert result.node_ids == ["table:raw_sales"]

    def test_invalid_direction(self, pipeline_graph):
        """Test unknown directions raise ValueError."""
        with pytest.raises(ValueError):
            FlowAnalyzer(pipeline_graph).get_lineage("table:clean_sales", "sideways")

    def test_cycle_reports_start(self):
        """Test a self-referencing CTE reports itself with a closing path."""
        graph = build_lineage_graph([FileInventory.from_sql("r.sql", RECURSIVE_SQL)])
        result = FlowAnalyzer(graph).get_upstream("cte:seq", max_depth=UNBOUNDED)

        assert result.node_ids == ["cte:seq"]
        assert result.paths[0].signature == ("cte:seq", "cte:seq")

    def test_merge_keeps_smallest_distance(self, pipeline_graph):
        """Test merged results keep the shortest distance per node."""
        first = FlowAnalyzer.traverse(
            pipeline_graph,
            pipeline_graph.resolve_node("table:raw_sales")[0],
            Direction.DOWNSTREAM,
            UNBOUNDED,
        )
        second = FlowAnalyzer.traverse(
            pipeline_graph,
            pipeline_graph.resolve_node("table:clean_sales")[0],
            Direction.DOWNSTREAM,
            UNBOUNDED,
        )
        merged = merge_results(first, second)

        assert merged.distances["view:region_totals"] == 1
        assert len(merged.nodes) == 3
