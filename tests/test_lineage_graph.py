"""
Tests for the workspace lineage graph and its builder.
"""

import warnings

import pytest

from sql_flow import (
    ErrorMode,
    FileInventory,
    FlowConfig,
    NodeKey,
    NodeKind,
    build_lineage_graph,
)
from sql_flow.exceptions import UnresolvedReferenceError
from sql_flow.models.lineage import EdgeType, ReferenceType
from sql_flow.models.statement import ColumnTransform

from tests.conftest import RECURSIVE_SQL, SHADOWING_CTE_SQL


def graph_of(*files, config=None):
    inventories = [FileInventory.from_sql(path, sql) for path, sql in files]
    return build_lineage_graph(inventories, config)


def edge_types(graph, source, target):
    return {
        edge.edge_type
        for edge in graph.edges()
        if edge.source.node_id == source and edge.target.node_id == target
    }


class TestNodes:
    """Test definition nodes."""

    def test_tables_and_views(self, customer_graph):
        """Test tables and views become nodes with columns."""
        ids = {node.id for node in customer_graph.relations()}

        assert ids == {"table:customers", "table:orders", "view:customer_orders"}
        columns = {n.name for n in customer_graph.columns_of(NodeKey.parse("table:customers"))}
        assert columns == {"id", "name"}

    def test_column_attributes(self, customer_graph):
        """Test column nodes carry type, nullability and primary key."""
        node = customer_graph.node(NodeKey.parse("column:customers.id"))

        assert node.primary_key
        assert node.nullable is False
        assert node.data_type == "INT"
        assert node.parent == NodeKey.parse("table:customers")

    def test_definition_metadata(self, customer_graph):
        """Test relation nodes record file, line and metadata."""
        node = customer_graph.node(NodeKey.parse("table:orders"))

        assert node.file_path == "schema.sql"
        assert node.line_number is not None
        assert node.metadata["column_count"] == 2
        assert node.metadata["definition_files"] == ["schema.sql"]

    def test_duplicate_definition_keeps_first(self):
        """Test redefinitions warn and record every defining file."""
        with pytest.warns(UserWarning, match="redefined"):
            graph = graph_of(
                ("a.sql", "CREATE TABLE t (x INT);"),
                ("b.sql", "CREATE TABLE t (x INT, y INT);"),
            )
        node = graph.node(NodeKey.parse("table:t"))

        assert node.file_path == "a.sql"
        assert node.metadata["definition_files"] == ["a.sql", "b.sql"]
        assert len(graph.columns_of(node.key)) == 1


class TestEdges:
    """Test lineage edge types."""

    def test_view_edges(self, customer_graph):
        """Test FROM yields direct_select and JOIN yields join."""
        assert edge_types(customer_graph, "table:customers", "view:customer_orders") == {
            EdgeType.DIRECT_SELECT
        }
        assert edge_types(customer_graph, "table:orders", "view:customer_orders") == {
            EdgeType.JOIN
        }

    def test_dml_edges(self):
        """Test INSERT, UPDATE and DELETE edge types."""
        graph = graph_of(
            (
                "etl.sql",
                """
                CREATE TABLE src (id INT, v INT);
                CREATE TABLE dst (id INT, v INT);
                CREATE TABLE banned (id INT);
                INSERT INTO dst SELECT id, v FROM src;
                UPDATE dst SET v = src.v FROM src WHERE dst.id = src.id;
                DELETE FROM dst WHERE id IN (SELECT id FROM banned);
                """,
            )
        )

        assert edge_types(graph, "table:src", "table:dst") == {
            EdgeType.INSERT,
            EdgeType.UPDATE,
        }
        assert edge_types(graph, "table:banned", "table:dst") == {EdgeType.DELETE}

    def test_external_nodes(self):
        """Test undefined tables become external nodes."""
        graph = graph_of(("v.sql", "CREATE VIEW v AS SELECT a FROM raw_events;"))

        assert NodeKey.parse("external:raw_events") in graph
        assert edge_types(graph, "external:raw_events", "view:v") == {
            EdgeType.DIRECT_SELECT
        }

    def test_external_nodes_disabled(self):
        """Test include_external=False drops undefined tables."""
        graph = graph_of(
            ("v.sql", "CREATE VIEW v AS SELECT a FROM raw_events;"),
            config=FlowConfig(include_external=False, on_unresolved=ErrorMode.IGNORE),
        )

        assert graph.nodes(NodeKind.EXTERNAL) == []
        assert graph.edges() == []

    def test_unresolved_fail_mode(self):
        """Test ErrorMode.FAIL aborts the build."""
        with pytest.raises(UnresolvedReferenceError) as exc_info:
            graph_of(
                ("v.sql", "CREATE VIEW v AS SELECT a FROM raw_events;"),
                config=FlowConfig(on_unresolved=ErrorMode.FAIL),
            )

        assert exc_info.value.reference == "raw_events"

    def test_select_references_recorded(self):
        """Test plain reads are kept as reference records."""
        graph = graph_of(
            ("schema.sql", "CREATE TABLE t (a INT);"),
            ("q.sql", "SELECT a FROM t;"),
        )

        assert graph.edges() == []
        assert [r.reference_type for r in graph.references] == [ReferenceType.SELECT]
        assert graph.references[0].file_path == "q.sql"

    def test_cte_nodes(self):
        """Test CTE bodies produce cte nodes between source and output."""
        graph = graph_of(
            (
                "v.sql",
                "CREATE TABLE t (a INT);\n"
                "CREATE VIEW v AS WITH tmp AS (SELECT a FROM t) SELECT a FROM tmp;",
            )
        )

        assert edge_types(graph, "table:t", "cte:tmp") == {EdgeType.DIRECT_SELECT}
        assert edge_types(graph, "cte:tmp", "view:v") == {EdgeType.DIRECT_SELECT}
        assert edge_types(graph, "table:t", "view:v") == set()

    def test_recursive_cte_self_cycle(self):
        """Test a recursive CTE yields a real self-cycle."""
        graph = graph_of(("r.sql", RECURSIVE_SQL))

        assert edge_types(graph, "cte:seq", "cte:seq") == {EdgeType.DIRECT_SELECT}
        assert ["cte:seq"] in graph.detect_cycles()

    def test_schema_normalization(self):
        """Test schema.name and bare name resolve to one node when unique."""
        graph = graph_of(
            ("a.sql", "CREATE TABLE sales.orders (id INT);"),
            ("b.sql", "CREATE VIEW v AS SELECT id FROM orders;"),
        )

        assert edge_types(graph, "table:sales.orders", "view:v") == {
            EdgeType.DIRECT_SELECT
        }
        assert graph.nodes(NodeKind.EXTERNAL) == []

    def test_schema_ambiguity_stays_distinct(self):
        """Test an ambiguous bare name does not merge."""
        graph = graph_of(
            ("a.sql", "CREATE TABLE a.orders (id INT);\nCREATE TABLE b.orders (id INT);"),
            ("v.sql", "CREATE VIEW v AS SELECT id FROM orders;"),
        )

        assert NodeKey.parse("external:orders") in graph

    def test_default_schema(self):
        """Test the default schema resolves bare names."""
        graph = graph_of(
            ("a.sql", "CREATE TABLE public.orders (id INT);\nCREATE TABLE x.orders (id INT);"),
            ("v.sql", "CREATE VIEW v AS SELECT id FROM orders;"),
            config=FlowConfig(default_schema="public"),
        )

        assert edge_types(graph, "table:public.orders", "view:v") == {
            EdgeType.DIRECT_SELECT
        }


class TestColumnEdges:
    """Test column-level edges."""

    def test_transforms(self, pipeline_graph):
        """Test passthrough, renamed, aggregated and calculated edges."""
        transforms = {
            (edge.source.node_id, edge.target.node_id): edge.transform
            for edge in pipeline_graph.column_edges()
        }

        assert (
            transforms[("column:raw_sales.id", "column:clean_sales.id")]
            is ColumnTransform.PASSTHROUGH
        )
        assert (
            transforms[("column:raw_sales.amount", "column:clean_sales.net_amount")]
            is ColumnTransform.RENAMED
        )
        assert (
            transforms[("column:clean_sales.net_amount", "column:region_totals.total")]
            is ColumnTransform.AGGREGATED
        )
        assert (
            transforms[("column:region_totals.total", "column:top_regions.doubled")]
            is ColumnTransform.CALCULATED
        )

    def test_expression_recorded(self, customer_graph):
        """Test aggregated edges keep the expression text."""
        edge = next(
            e
            for e in customer_graph.column_edges()
            if e.target.node_id == "column:customer_orders.count"
        )

        assert edge.source.node_id == "column:orders.id"
        assert edge.expression == "COUNT(o.id)"

    def test_star_expansion(self):
        """Test SELECT * maps every known column."""
        graph = graph_of(
            ("t.sql", "CREATE TABLE t (a INT, b INT);\nCREATE VIEW v AS SELECT * FROM t;")
        )
        targets = {e.target.node_id for e in graph.column_edges()}

        assert targets == {"column:v.a", "column:v.b"}

    def test_subquery_lookthrough(self):
        """Test columns are traced through FROM subqueries."""
        graph = graph_of(
            (
                "t.sql",
                "CREATE TABLE t (a INT);\n"
                "CREATE VIEW v AS SELECT s.x FROM (SELECT a * 2 AS x FROM t) AS s;",
            )
        )
        edge = next(e for e in graph.column_edges() if e.target.node_id == "column:v.x")

        assert edge.source.node_id == "column:t.a"
        assert edge.transform is ColumnTransform.CALCULATED

    def test_unqualified_column_resolved_by_known_columns(self):
        """Test unqualified columns resolve through known source columns."""
        graph = graph_of(
            (
                "t.sql",
                "CREATE TABLE a (id INT, x INT);\nCREATE TABLE b (id INT, y INT);\n"
                "CREATE VIEW v AS SELECT y FROM a JOIN b ON a.id = b.id;",
            )
        )
        sources = {
            e.source.node_id for e in graph.column_edges() if e.target.node_id == "column:v.y"
        }

        assert sources == {"column:b.y"}

    def test_reserved_word_alias_over_real_table(self):
        """Test a reserved-word alias wins over a defined table of that name."""
        graph = graph_of(
            (
                "t.sql",
                'CREATE TABLE orders (id INT);\nCREATE TABLE "select" (id INT);\n'
                'CREATE VIEW v AS SELECT "select".id FROM orders AS "select";',
            )
        )
        sources = {
            e.source.node_id for e in graph.column_edges() if e.target.node_id == "column:v.id"
        }

        assert NodeKey.parse("table:select") in graph
        assert sources == {"column:orders.id"}
        assert edge_types(graph, "table:orders", "view:v") == {EdgeType.DIRECT_SELECT}
        assert edge_types(graph, "table:select", "view:v") == set()

    def test_cte_shadowing_table_keeps_columns_apart(self):
        """Test a CTE named like its source table gets its own column nodes."""
        graph = graph_of(("s.sql", SHADOWING_CTE_SQL))

        assert edge_types(graph, "table:orders", "cte:orders") == {
            EdgeType.DIRECT_SELECT
        }
        assert edge_types(graph, "cte:orders", "view:big") == {EdgeType.DIRECT_SELECT}
        assert [c.id for c in graph.columns_of(NodeKey.parse("cte:orders"))] == [
            "column:cte:orders.id",
            "column:cte:orders.amount",
        ]
        assert [c.id for c in graph.columns_of(NodeKey.parse("table:orders"))] == [
            "column:orders.id",
            "column:orders.amount",
        ]
        assert all(e.source != e.target for e in graph.column_edges())

        edge = next(
            e for e in graph.column_edges() if e.target.node_id == "column:cte:orders.amount"
        )
        assert edge.source.node_id == "column:orders.amount"
        assert edge.transform is ColumnTransform.CALCULATED

    def test_columns_disabled(self):
        """Test include_columns=False builds no column nodes."""
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            graph = graph_of(
                ("t.sql", "CREATE TABLE t (a INT);\nCREATE VIEW v AS SELECT a FROM t;"),
                config=FlowConfig(include_columns=False),
            )

        assert graph.nodes(NodeKind.COLUMN) == []
        assert graph.column_edges() == []


class TestGraphQueries:
    """Test LineageGraph queries."""

    def test_resolve_node(self, customer_graph):
        """Test identity strings and bare names resolve."""
        assert customer_graph.resolve_node("orders") == (
            NodeKey.parse("table:orders"),
            False,
        )
        key, fallback = customer_graph.resolve_node("table:customer_orders")
        assert key == NodeKey.parse("view:customer_orders")
        assert fallback is True
        assert customer_graph.resolve_node("column:orders.id")[0] == NodeKey.parse(
            "column:orders.id"
        )
        assert customer_graph.resolve_node("nothing")[0] is None

    def test_similar_names(self, customer_graph):
        """Test misspelled names suggest the closest relation first."""
        assert customer_graph.find_similar_names("custmers")[0] == "customers"

    def test_roots_and_terminals(self, pipeline_graph):
        """Test root sources and terminal nodes."""
        assert [n.id for n in pipeline_graph.find_root_sources()] == ["table:raw_sales"]
        assert [n.id for n in pipeline_graph.find_terminal_nodes()] == ["view:top_regions"]

    def test_paths_between(self, pipeline_graph):
        """Test simple paths between relations."""
        paths = pipeline_graph.get_paths_between(
            NodeKey.parse("table:raw_sales"), NodeKey.parse("view:top_regions")
        )

        assert paths == [
            ["table:raw_sales", "table:clean_sales", "view:region_totals", "view:top_regions"]
        ]

    def test_statistics(self, pipeline_graph):
        """Test statistics counts and depth."""
        stats = pipeline_graph.get_statistics()

        assert stats["table_nodes"] == 2
        assert stats["view_nodes"] == 2
        assert stats["total_edges"] == 3
        assert stats["cycles"] == 0
        assert stats["max_depth"] == 3

    def test_export(self, customer_graph):
        """Test dict and DOT export."""
        data = customer_graph.to_dict()
        dot = customer_graph.to_dot()

        assert {n["id"] for n in data["nodes"]} >= {"table:orders", "view:customer_orders"}
        assert dot.startswith("digraph lineage {")
        assert '"table:orders" -> "view:customer_orders" [label="join"];' in dot

    def test_rebuild_is_idempotent(self):
        """Test rebuilding from unchanged inventories gives the same graph."""
        from tests.conftest import customer_files

        first = build_lineage_graph(customer_files())
        second = build_lineage_graph(customer_files())

        assert first.to_dict() == second.to_dict()

    def test_graph_is_frozen(self, customer_graph):
        """Test the published networkx graph cannot be modified."""
        import networkx as nx

        assert nx.is_frozen(customer_graph.graph)
