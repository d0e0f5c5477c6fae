"""
Command-line interface for sql-flow.

This module provides the ``sql-flow`` command, which builds the lineage graph
of a set of SQL files and renders flow graphs, upstream/downstream lineage,
impact reports and column lineage as colored text, tables or JSON.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from colorama import Fore, Style, init
from tabulate import tabulate

from sql_flow.exceptions import SqlFlowError
from sql_flow.models.config import FlowConfig
from sql_flow.models.flow import BatchResult, FlowGraph
from sql_flow.models.identity import NodeKind
from sql_flow.models.results import (
    CallerError,
    ChangeType,
    ColumnLineageResult,
    FlowResult,
    ImpactReport,
    LookupFailure,
)
from sql_flow.utils.logging import setup_logging
from sql_flow.version import __version__
from sql_flow.workspace import Workspace

USE_COLOR = True
QUIET = False

_SEVERITY_COLORS = {
    "low": Fore.GREEN,
    "medium": Fore.YELLOW,
    "high": Fore.MAGENTA,
    "critical": Fore.RED,
}


def _paint(text: str, color: str) -> str:
    if not USE_COLOR:
        return text
    return f"{color}{text}{Style.RESET_ALL}"


def _emit(glyph: str, tag: str, msg: str, color: str, stream=None) -> None:
    stream = stream or sys.stdout
    prefix = glyph if USE_COLOR else tag
    try:
        print(_paint(f"{prefix} {msg}", color), file=stream)
    except UnicodeEncodeError:
        # Windows consoles without UTF-8 cannot print the glyphs
        print(_paint(f"{tag} {msg}", color), file=stream)


def print_success(msg: str) -> None:
    """Print success message."""
    if not QUIET:
        _emit("✓", "[OK]", msg, Fore.GREEN)


def print_error(msg: str) -> None:
    """Print error message."""
    _emit("✗", "[ERROR]", msg, Fore.RED, stream=sys.stderr)


def print_warning(msg: str) -> None:
    """Print warning message."""
    _emit("⚠", "[WARN]", msg, Fore.YELLOW, stream=sys.stderr if QUIET else None)


def print_info(msg: str) -> None:
    """Print info message."""
    if not QUIET:
        print(_paint(msg, Fore.CYAN))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sql-flow",
        description=f"SQL execution-flow and workspace lineage analyzer - v{__version__}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Summarize the lineage of a set of files
  %(prog)s models/*.sql

  # Execution flow of every statement
  %(prog)s query.sql --flow

  # Everything feeding a view, two hops deep
  %(prog)s models/*.sql --upstream view:customer_orders --depth 2

  # Impact of dropping a table
  %(prog)s models/*.sql --impact orders --change drop

  # Column lineage
  %(prog)s models/*.sql --column customer_orders.count

  # Export the lineage graph
  %(prog)s models/*.sql --export lineage.json
        """,
    )

    # === Input parameters ===
    input_group = parser.add_argument_group("Input Options")
    input_group.add_argument("files", nargs="+", metavar="FILE", help="SQL files")
    input_group.add_argument("--dialect", "-d", help="sqlglot dialect (e.g. postgres)")
    input_group.add_argument(
        "--default-schema", help="Schema assumed for unqualified table names"
    )

    # === Query parameters ===
    query_group = parser.add_argument_group("Query Options")
    query_group.add_argument(
        "--flow", action="store_true", help="Show the execution flow of each statement"
    )
    query_group.add_argument(
        "--upstream", "-u", metavar="NODE", help="Show what feeds NODE"
    )
    query_group.add_argument(
        "--downstream", "-D", metavar="NODE", help="Show what NODE feeds"
    )
    query_group.add_argument(
        "--depth",
        type=int,
        default=None,
        help="Traversal depth (-1 for unbounded, default from configuration)",
    )
    query_group.add_argument(
        "--include-external",
        action="store_true",
        help="Keep tables with no definition in lineage results",
    )
    query_group.add_argument(
        "--impact",
        "-i",
        metavar="TARGET",
        help="Impact of a change to TABLE or TABLE.COLUMN",
    )
    query_group.add_argument(
        "--change",
        "-c",
        choices=ChangeType.values(),
        default=ChangeType.MODIFY.value,
        help="Change type for --impact (default: modify)",
    )
    query_group.add_argument(
        "--column", metavar="TABLE.COLUMN", help="Trace a column through the workspace"
    )
    query_group.add_argument(
        "--list-nodes", action="store_true", help="List tables, views and CTEs"
    )
    query_group.add_argument(
        "--cycles", action="store_true", help="Report relation-level cycles"
    )

    # === Output parameters ===
    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--format",
        "-f",
        choices=["pretty", "table", "json"],
        default="pretty",
        help="Output format (default: pretty)",
    )
    output_group.add_argument(
        "--export",
        "-o",
        metavar="FILE",
        help="Export the lineage graph (.dot for Graphviz, JSON otherwise)",
    )
    output_group.add_argument(
        "--no-color", action="store_true", help="Disable colored output"
    )
    output_group.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI main entry point.

    Returns:
        Process exit code: 0 on success, 1 on errors and failed lookups.
    """
    global USE_COLOR, QUIET

    args = build_parser().parse_args(argv)
    USE_COLOR = not args.no_color
    QUIET = args.format == "json"
    if USE_COLOR:
        init()
    setup_logging("DEBUG" if args.verbose else "WARNING")

    try:
        sources = read_sources(args.files)
        if sources is None:
            return 1

        config = FlowConfig(
            dialect=args.dialect,
            default_schema=args.default_schema,
        )
        workspace = Workspace(config)
        print_info(f"Building lineage for {len(sources)} file(s)...")
        report = workspace.rebuild(sources)
        if not report.success:
            print_error(f"Lineage build failed: {report.error}")
            return 1
        print_success(
            f"Lineage graph built: {report.statistics.get('total_nodes', 0)} nodes, "
            f"{report.statistics.get('total_edges', 0)} edges."
        )
        for error in report.parse_errors:
            print_warning(error)

        exclude_external = not args.include_external
        status = 0
        if args.flow:
            status = handle_flow(workspace, sources, args.format)
        elif args.upstream:
            status = handle_lineage(
                workspace.get_upstream(args.upstream, args.depth, exclude_external),
                args.upstream,
                "upstream",
                args.format,
            )
        elif args.downstream:
            status = handle_lineage(
                workspace.get_downstream(args.downstream, args.depth, exclude_external),
                args.downstream,
                "downstream",
                args.format,
            )
        elif args.impact:
            status = handle_impact(workspace, args.impact, args.change, args.format)
        elif args.column:
            status = handle_column(workspace, args.column, args.format)
        elif args.list_nodes:
            handle_list_nodes(workspace, args.format)
        elif args.cycles:
            handle_cycles(workspace, args.format)
        else:
            handle_summary(workspace, args.format)

        if args.export:
            handle_export(workspace, args.export)
        return status

    except SqlFlowError as e:
        print_error(f"Analysis failed: {e}")
        return 1
    except OSError as e:
        print_error(f"I/O error: {e}")
        return 1


def read_sources(files: List[str]) -> Optional[List[Tuple[str, str]]]:
    """Read every file as (path, sql); None if a file is missing."""
    sources = []
    for name in files:
        path = Path(name)
        if not path.is_file():
            print_error(f"File not found: {name}")
            return None
        sources.append((str(path), path.read_text(encoding="utf-8")))
    return sources


def split_column_ref(ref: str) -> Tuple[str, str]:
    """
    Split "table.column" (or "schema.table.column") at the last dot.

    Raises:
        ValueError: If there is no dot.
    """
    table, sep, column = ref.strip().rpartition(".")
    if not sep or not table or not column:
        raise ValueError(
            f"Invalid column reference: '{ref}'. Expected format: 'table.column'"
        )
    return table, column


def _dump(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _report_error(error) -> int:
    print_error(error.message)
    return 1


# ========== Handlers ==========


def handle_flow(workspace: Workspace, sources: List[Tuple[str, str]], fmt: str) -> int:
    batches = [(path, workspace.build_batch(sql)) for path, sql in sources]
    if fmt == "json":
        _dump({path: batch.to_dict() for path, batch in batches})
    else:
        for path, batch in batches:
            _print_batch(path, batch, fmt)
    return 1 if any(batch.failed for _, batch in batches) else 0


def _print_batch(path: str, batch: BatchResult, fmt: str) -> None:
    print_info(
        f"\n{path}: {batch.total} statement(s), "
        f"{batch.successful} built, {batch.failed} failed"
    )
    for result in batch.statements:
        title = f"Statement {result.index + 1} (line {result.start_line})"
        if result.error:
            print_warning(f"{title}: {result.error}")
        if result.graph is None:
            continue
        print(_paint(f"\n{title}: {result.graph.statement_kind}", Style.BRIGHT))
        _print_flow_graph(result.graph, fmt)


def _print_flow_graph(graph: FlowGraph, fmt: str, indent: str = "  ") -> None:
    if fmt == "table":
        rows = [
            [node.id, node.type.value, node.label, node.start_line]
            for node in graph.nodes
        ]
        print(tabulate(rows, headers=["Id", "Type", "Label", "Line"], tablefmt="simple"))
        return
    for node in graph.nodes:
        print(f"{indent}{_paint(node.id, Fore.CYAN)} [{node.type.value}] {node.label}")
        if node.children is not None:
            _print_flow_graph(node.children, fmt, indent + "    ")
    for edge in graph.edges:
        clause = f" ({edge.clause_type.value})" if edge.clause_type.value != "flow" else ""
        print(f"{indent}{edge.source} -> {edge.target}{clause}")


def handle_lineage(result, node_id: str, direction: str, fmt: str) -> int:
    if isinstance(result, (LookupFailure, CallerError)):
        return _report_error(result)
    assert isinstance(result, FlowResult)

    if fmt == "json":
        _dump(result.to_dict())
        return 0
    if not result.nodes:
        print_warning(f"No {direction} lineage found for {node_id}")
        return 0

    print_success(f"Found {len(result.nodes)} {direction} node(s) of {node_id}:\n")
    if fmt == "table":
        rows = [
            [node.id, node.kind.value, result.distances.get(node.id), node.file_path]
            for node in result.nodes
        ]
        print(tabulate(rows, headers=["Node", "Kind", "Distance", "File"]))
        return 0
    for path in result.paths:
        print(f"  {path.to_string()}")
    return 0


def handle_impact(workspace: Workspace, target: str, change: str, fmt: str) -> int:
    key, _ = workspace.graph.resolve_node(target)
    if key is None and "." in target:
        table, column = split_column_ref(target)
        report = workspace.analyze_column_change(table, column, change)
    else:
        report = workspace.analyze_table_change(target, change)
    if isinstance(report, CallerError):
        return _report_error(report)
    assert isinstance(report, ImpactReport)

    if fmt == "json":
        _dump(report.to_dict())
        return 0

    severity = report.severity.value
    print_info(f"\nImpact of {report.change_type.value} on {report.target.name}\n")
    if report.warning:
        print_warning(report.warning)
    print(f"Severity: {_paint(severity.upper(), _SEVERITY_COLORS[severity])}")
    summary = report.summary
    print(
        f"Affected: {summary.total_affected} node(s), {summary.tables_affected} "
        f"table(s), {summary.views_affected} view(s), "
        f"{summary.queries_affected} query(ies), {summary.files_affected} file(s)\n"
    )

    items = report.direct_impacts + report.transitive_impacts
    if items:
        rows = [
            [
                item.node.id,
                item.impact_type,
                item.distance,
                item.severity.value,
                item.relationship,
            ]
            for item in items
        ]
        print(
            tabulate(
                rows,
                headers=["Node", "Impact", "Distance", "Severity", "Relationship"],
                tablefmt="simple" if fmt == "table" else "plain",
            )
        )
        print()
    for suggestion in report.suggestions:
        print(f"  - {suggestion}")
    return 0


def handle_column(workspace: Workspace, ref: str, fmt: str) -> int:
    try:
        table, column = split_column_ref(ref)
    except ValueError as e:
        print_error(str(e))
        return 1
    result = workspace.get_full_column_lineage(table, column)
    assert isinstance(result, ColumnLineageResult)

    if fmt == "json":
        _dump(result.to_dict())
        return 0 if result.warning is None else 1
    if result.warning:
        print_error(result.warning)
        if result.similar_names:
            print_info("Did you mean: " + ", ".join(result.similar_names))
        return 1

    print_info(f"\nColumn lineage of {result.table}.{result.column}\n")
    for title, paths in (("Upstream", result.upstream), ("Downstream", result.downstream)):
        print(_paint(f"{title} ({len(paths)} path(s)):", Style.BRIGHT))
        if fmt == "table":
            rows = [
                [i, hop.node_id, hop.transform, hop.expression]
                for i, path in enumerate(paths, 1)
                for hop in path.hops[1:]
            ]
            if rows:
                print(tabulate(rows, headers=["Path", "Column", "Transform", "Expression"]))
            continue
        for path in paths:
            print(f"  {path.to_string()}")
    return 0


def handle_list_nodes(workspace: Workspace, fmt: str) -> None:
    graph = workspace.graph
    relations = graph.relations()
    if fmt == "json":
        _dump([node.to_dict() for node in relations])
        return
    rows = [
        [node.id, node.kind.value, len(graph.columns_of(node.key)), node.file_path]
        for node in relations
    ]
    print(tabulate(rows, headers=["Node", "Kind", "Columns", "File"]))


def handle_cycles(workspace: Workspace, fmt: str) -> None:
    cycles = workspace.graph.detect_cycles()
    if fmt == "json":
        _dump(cycles)
        return
    if not cycles:
        print_success("No cycles found.")
        return
    print_warning(f"{len(cycles)} cycle(s) found:")
    for i, cycle in enumerate(cycles, 1):
        print(f"  {i}. {' -> '.join(cycle + cycle[:1])}")


def handle_summary(workspace: Workspace, fmt: str) -> None:
    """Show lineage graph statistics."""
    stats = workspace.graph.get_statistics()
    if fmt == "json":
        _dump(stats)
        return

    print_info("\n" + "=" * 60)
    print_info("Lineage Summary")
    print_info("=" * 60 + "\n")
    rows = [[name.replace("_", " "), value] for name, value in stats.items()]
    print(tabulate(rows, headers=["Metric", "Value"], tablefmt="simple"))

    graph = workspace.graph
    if fmt == "pretty":
        roots = [node.id for node in graph.find_root_sources()]
        terminals = [node.id for node in graph.find_terminal_nodes()]
        externals = [node.id for node in graph.nodes(NodeKind.EXTERNAL)]
        print()
        print(f"Root sources: {', '.join(roots) or '-'}")
        print(f"Terminal nodes: {', '.join(terminals) or '-'}")
        if externals:
            print_warning(f"Undefined tables: {', '.join(externals)}")


def handle_export(workspace: Workspace, output_file: str) -> None:
    """Export the lineage graph to JSON or Graphviz DOT."""
    output_path = Path(output_file)
    print_info(f"\nExporting lineage to: {output_path}")
    if output_path.suffix.lower() == ".dot":
        text = workspace.graph.to_dot(include_columns=False)
    else:
        text = json.dumps(workspace.graph.to_dict(), indent=2, ensure_ascii=False)
    output_path.write_text(text, encoding="utf-8")
    print_success(f"Exported to {output_path}")


if __name__ == "__main__":
    sys.exit(main())
