"""
Unit tests for the AST adapter.
"""

import sqlglot

from sql_flow.models.statement import (
    ColumnTransform,
    SelectQuery,
    SetOperationQuery,
    SourceKind,
    StatementKind,
)
from sql_flow.parser.ast_adapter import AstAdapter
from sql_flow.parser.statement_classifier import StatementClassifier


def adapt(sql, start_line=1):
    return AstAdapter().adapt(sqlglot.parse_one(sql), sql, start_line=start_line)


class TestStatementClassifier:
    """Test StatementClassifier class."""

    def setup_method(self):
        """Create classifier for each test."""
        self.classifier = StatementClassifier()

    def classify(self, sql):
        return self.classifier.classify(sqlglot.parse_one(sql))

    def test_classify_kinds(self):
        """Test the statement kinds."""
        assert self.classify("SELECT 1") is StatementKind.SELECT
        assert self.classify("SELECT 1 UNION SELECT 2") is StatementKind.SELECT
        assert self.classify("INSERT INTO t SELECT * FROM s") is StatementKind.INSERT
        assert self.classify("UPDATE t SET a = 1") is StatementKind.UPDATE
        assert self.classify("DELETE FROM t WHERE a = 1") is StatementKind.DELETE
        assert self.classify("DROP TABLE t") is StatementKind.DROP

    def test_classify_create(self):
        """Test CREATE TABLE, CREATE TABLE AS and CREATE VIEW."""
        assert self.classify("CREATE TABLE t (a INT)") is StatementKind.CREATE_TABLE
        assert (
            self.classify("CREATE TABLE t AS SELECT a FROM s")
            is StatementKind.CREATE_TABLE_AS
        )
        assert (
            self.classify("CREATE VIEW v AS SELECT a FROM s")
            is StatementKind.CREATE_VIEW
        )


class TestProjection:
    """Test projection items and transforms."""

    def test_passthrough_and_rename(self):
        """Test bare columns keep or change their name."""
        statement = adapt("SELECT a, b AS c FROM t")
        items = statement.query.projection

        assert [i.output_name for i in items] == ["a", "c"]
        assert items[0].transform is ColumnTransform.PASSTHROUGH
        assert items[1].transform is ColumnTransform.RENAMED

    def test_aggregate_and_calculated(self):
        """Test aggregates and expressions."""
        statement = adapt("SELECT SUM(a) AS total, a * 2 AS doubled FROM t")
        items = statement.query.projection

        assert items[0].transform is ColumnTransform.AGGREGATED
        assert items[1].transform is ColumnTransform.CALCULATED
        assert items[1].sources[0].column == "a"

    def test_unaliased_function_named_after_function(self):
        """Test COUNT(x) without alias is named count."""
        statement = adapt("SELECT COUNT(o.id) FROM orders o")

        assert statement.query.projection[0].output_name == "count"

    def test_window_is_not_aggregate(self):
        """Test an aggregate inside OVER() is a calculation."""
        statement = adapt(
            "SELECT SUM(amount) OVER (PARTITION BY region ORDER BY id) AS running FROM t"
        )
        query = statement.query

        assert query.projection[0].transform is ColumnTransform.CALCULATED
        assert query.aggregate is None
        assert len(query.windows) == 1
        assert query.windows[0].partition_by == ["region"]
        assert query.windows[0].alias == "running"

    def test_case_branches(self):
        """Test CASE expressions become CASE specs."""
        statement = adapt(
            "SELECT CASE WHEN a > 1 THEN 'big' ELSE 'small' END AS size FROM t"
        )
        case = statement.query.cases[0]

        assert len(case.branches) == 1
        assert case.else_value == "'small'"
        assert case.alias == "size"

    def test_qualifier_resolves_alias_first(self):
        """Test column qualifiers resolve through aliases."""
        statement = adapt(
            "SELECT c.name FROM customers c JOIN orders o ON c.id = o.customer_id"
        )
        source = statement.query.projection[0].sources[0]

        assert source.qualifier == "c"
        assert source.reference.name == "customers"

    def test_reserved_word_alias_is_not_a_table(self):
        """Test a quoted reserved-word alias resolves to the aliased table."""
        statement = adapt('SELECT "select".id FROM orders AS "select"')
        source = statement.query.projection[0].sources[0]

        assert source.qualifier == "select"
        assert source.reference.name == "orders"
        assert source.reference.alias == "select"

    def test_alias_wins_over_same_named_table(self):
        """Test an alias shadows a joined table of the same name."""
        statement = adapt(
            'SELECT "select".id FROM orders AS "select" '
            'JOIN "select" AS s ON s.id = "select".id'
        )
        source = statement.query.projection[0].sources[0]

        assert source.reference.name == "orders"
        assert [r.name for r in statement.query.references()] == ["orders", "select"]

    def test_unqualified_column_with_two_sources(self):
        """Test unqualified columns stay unresolved when ambiguous."""
        statement = adapt("SELECT name FROM a JOIN b ON a.id = b.id")

        assert statement.query.projection[0].sources[0].reference is None


class TestQueries:
    """Test query shapes."""

    def test_joins_and_clauses(self):
        """Test joins, WHERE, GROUP BY, HAVING, ORDER BY and LIMIT."""
        statement = adapt(
            "SELECT c.name, COUNT(*) AS n FROM customers c "
            "LEFT JOIN orders o ON c.id = o.customer_id "
            "WHERE c.active = 1 GROUP BY c.name HAVING COUNT(*) > 2 "
            "ORDER BY n DESC LIMIT 10"
        )
        query = statement.query

        assert isinstance(query, SelectQuery)
        assert query.joins[0].join_type == "LEFT JOIN"
        assert query.joins[0].condition == "c.id = o.customer_id"
        assert query.where.text == "c.active = 1"
        assert query.aggregate.group_by == ["c.name"]
        assert query.having is not None
        assert query.order_by == ["n DESC"]
        assert query.limit == "10"

    def test_set_operation(self):
        """Test UNION ALL becomes a SetOperationQuery."""
        statement = adapt("SELECT a FROM t1 UNION ALL SELECT a FROM t2")
        query = statement.query

        assert isinstance(query, SetOperationQuery)
        assert query.operator == "UNION ALL"
        assert [b.sources[0].name for b in query.branches()] == ["t1", "t2"]

    def test_cte_references(self):
        """Test CTE references are tagged as CTE sources."""
        statement = adapt("WITH tmp AS (SELECT a FROM t) SELECT a FROM tmp")
        query = statement.query

        assert query.ctes[0].name == "tmp"
        assert query.sources[0].source_kind is SourceKind.CTE
        assert query.ctes[0].query.sources[0].source_kind is SourceKind.TABLE

    def test_recursive_cte_sees_itself(self):
        """Test a recursive CTE body references the CTE."""
        statement = adapt(
            "WITH RECURSIVE r AS (SELECT 1 AS n UNION ALL SELECT n + 1 FROM r) "
            "SELECT n FROM r"
        )
        cte = statement.query.ctes[0]

        assert cte.recursive
        right = cte.query.branches()[1]
        assert right.sources[0].source_kind is SourceKind.CTE

    def test_from_subquery(self):
        """Test FROM subqueries carry their body."""
        statement = adapt("SELECT x FROM (SELECT a AS x FROM t) AS sub")
        source = statement.query.sources[0]

        assert source.source_kind is SourceKind.SUBQUERY
        assert source.alias == "sub"
        assert source.query.sources[0].name == "t"

    def test_where_subquery(self):
        """Test WHERE subqueries are collected."""
        statement = adapt("SELECT a FROM t WHERE a IN (SELECT b FROM u)")

        assert len(statement.query.where.subqueries) == 1
        assert statement.query.where.subqueries[0].sources[0].name == "u"

    def test_schema_qualified_table(self):
        """Test schema-qualified references."""
        statement = adapt("SELECT a FROM Sales.Orders")
        source = statement.query.sources[0]

        assert source.schema == "Sales"
        assert source.qualified_name == "sales.orders"


class TestDdlAndDml:
    """Test DDL and DML statements."""

    def test_create_table_columns(self):
        """Test column types, nullability and primary keys."""
        statement = adapt(
            "CREATE TABLE customers (id INT PRIMARY KEY, name VARCHAR(100) NOT NULL, note TEXT)"
        )
        columns = {c.name: c for c in statement.columns}

        assert statement.target.name == "customers"
        assert columns["id"].primary_key
        assert not columns["id"].nullable
        assert not columns["name"].nullable
        assert columns["note"].nullable
        assert columns["note"].data_type == "TEXT"

    def test_insert_select(self):
        """Test INSERT ... SELECT with a column list."""
        statement = adapt("INSERT INTO target (a, b) SELECT x, y FROM source")

        assert statement.kind is StatementKind.INSERT
        assert statement.target.name == "target"
        assert statement.target_columns == ["a", "b"]
        assert statement.query.sources[0].name == "source"

    def test_insert_values(self):
        """Test INSERT ... VALUES counts rows."""
        statement = adapt("INSERT INTO t (a) VALUES (1), (2)")

        assert statement.values_rows == 2
        assert statement.query is None

    def test_update_assignments(self):
        """Test UPDATE SET items become assignments."""
        statement = adapt("UPDATE accounts SET balance = balance * 2 WHERE id = 1")

        assert statement.assignments[0].output_name == "balance"
        assert statement.assignments[0].transform is ColumnTransform.CALCULATED
        assert statement.where.text == "id = 1"

    def test_delete_where(self):
        """Test DELETE keeps its target and predicate."""
        statement = adapt("DELETE FROM logs WHERE created < 10")

        assert statement.target.name == "logs"
        assert statement.where is not None

    def test_start_line_offset(self):
        """Test reference lines are shifted by the statement start line."""
        statement = adapt("SELECT a\nFROM t", start_line=5)

        assert statement.span.start == 5
        assert statement.query.sources[0].line == 6
