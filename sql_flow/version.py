"""Version information."""

__version__ = "1.0.0"
__version_info__ = (1, 0, 0)

# Version history
CHANGELOG = """
# Changelog

## v1.0.0

**Statement flow graphs**

- Per-statement pipeline graphs (table, join, filter, aggregate, sort, limit,
  projection, result)
- Nested CTE and subquery graphs
- Window function and CASE details on projection nodes
- Batch processing with per-statement error isolation

**Workspace lineage**

- Table, view, CTE, column and external nodes
- direct_select / join / insert / update / delete edges
- Column edges (passthrough, renamed, aggregated, calculated)
- CTE columns keyed `column:cte:<name>.<column>`, apart from same-named tables
- Build-then-swap rebuilds

**Analysis**

- Upstream / downstream reachability with depth clamping
- Impact analysis with severity and suggestions
- Column lineage tracing

### Known Limitations

- MERGE statements are classified but produce no lineage edges
- CTE names are not scoped per statement
"""
