"""
Shared SQL fixtures for the sql_flow test suite.
"""

import pytest

from sql_flow import FileInventory, Workspace, build_lineage_graph

SCHEMA_SQL = """
CREATE TABLE customers (
    id INT PRIMARY KEY,
    name VARCHAR(100) NOT NULL
);
CREATE TABLE orders (
    id INT PRIMARY KEY,
    customer_id INT
);
"""

VIEW_SQL = """
CREATE VIEW customer_orders AS
SELECT c.name, COUNT(o.id)
FROM customers c
LEFT JOIN orders o ON c.id = o.customer_id
GROUP BY c.name;
"""

PIPELINE_SQL = """
CREATE TABLE raw_sales (id INT, amount INT, region VARCHAR(20));

CREATE TABLE clean_sales AS
SELECT id, amount AS net_amount, region FROM raw_sales WHERE amount > 0;

CREATE VIEW region_totals AS
SELECT region, SUM(net_amount) AS total FROM clean_sales GROUP BY region;

CREATE VIEW top_regions AS
SELECT region, total * 2 AS doubled FROM region_totals ORDER BY total DESC LIMIT 3;
"""

RECURSIVE_SQL = """
CREATE VIEW numbers AS
WITH RECURSIVE seq AS (
    SELECT 1 AS n
    UNION ALL
    SELECT n + 1 FROM seq WHERE n < 10
)
SELECT n FROM seq;
"""

# The CTE reuses the name of the table it reads.
SHADOWING_CTE_SQL = """
CREATE TABLE orders (id INT, amount INT);
CREATE VIEW big AS
WITH orders AS (
    SELECT id, amount * 2 AS amount FROM orders
)
SELECT id, amount FROM orders;
"""


def customer_files():
    return [
        FileInventory.from_sql("schema.sql", SCHEMA_SQL),
        FileInventory.from_sql("views.sql", VIEW_SQL),
    ]


@pytest.fixture
def customer_graph():
    """Lineage graph of customers, orders and the customer_orders view."""
    return build_lineage_graph(customer_files())


@pytest.fixture
def pipeline_graph():
    """Lineage graph of a four-stage sales pipeline."""
    return build_lineage_graph([FileInventory.from_sql("pipeline.sql", PIPELINE_SQL)])


@pytest.fixture
def customer_workspace():
    """Workspace published from the customer fixture files."""
    workspace = Workspace()
    workspace.rebuild([("schema.sql", SCHEMA_SQL), ("views.sql", VIEW_SQL)])
    return workspace
