"""Command-line interface for llm-context."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from enum import IntEnum
from pathlib import Path
from typing import Optional

from llm_context.config import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    LlmContextConfig,
    load_config,
)
from llm_context.dependencies import (
    analyze_impact,
    build_dependency_graph,
    build_dependency_index,
    find_entry_points,
    load_dependency_index,
    write_dependency_index,
)
from llm_context.errors import AnalysisIOError
from llm_context.graph_store import GraphRecord, GraphStoreError, read_graph
from llm_context.incremental import preview_changes, run_analysis
from llm_context.languages import language_breakdown
from llm_context.query import (
    GraphIndex,
    called_by,
    calls_to,
    find_function,
    functions_in_file,
    get_stats,
    read_manifest,
    trace,
    with_side_effects,
)

MAX_LISTED = 20

CONFIG_TEMPLATE = """# llm-context configuration

version: "1.0"

# file: re-analyze whole files that changed
# unit: re-analyze only the functions that changed
granularity: file

incremental:
  enabled: true
  hash_algorithm: sha256
  store_source: false
  detect_renames: false
  similarity_threshold: 0.85

analysis:
  track_dependencies: true
  max_call_depth: 10
  entry_point_max_callers: 2
  max_calls: 50
  workers: 1

patterns:
  extensions: [.py, .js, .mjs, .cjs, .jsx, .ts, .tsx]
  exclude: []
  use_gitignore: true

output:
  directory: .llm-context
"""


class ExitCode(IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    CONFIG_ERROR = 1
    FILE_SYSTEM_ERROR = 2
    PARTIAL_SUCCESS = 3


def _get_config(config_path: Optional[str]) -> LlmContextConfig:
    """Load config from an explicit path, else llm-context.yaml in the cwd, else defaults."""
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}", file=config_path, error_type="config_missing")
        return load_config(path)
    return load_config(Path.cwd() / DEFAULT_CONFIG_PATH)


def _print_records(records: list[GraphRecord]) -> None:
    print(f"\nFound {len(records)} results:\n")
    for i, record in enumerate(records[:MAX_LISTED], start=1):
        print(f"  {i}. {record.name or record.id} ({record.file}:{record.line})")
        if record.calls:
            print(f"     Calls: {', '.join(record.calls[:5])}")
        if record.effects:
            print(f"     Effects: {', '.join(record.effects)}")
    if len(records) > MAX_LISTED:
        print(f"  ... and {len(records) - MAX_LISTED} more")


def _print_names(names: list[str]) -> None:
    print(f"\nFound {len(names)} results:\n")
    for i, name in enumerate(names[:MAX_LISTED], start=1):
        print(f"  {i}. {name}")
    if len(names) > MAX_LISTED:
        print(f"  ... and {len(names) - MAX_LISTED} more")


def _load_records(config: LlmContextConfig, root: Path) -> Optional[list[GraphRecord]]:
    graph_path = config.graph_path(root)
    if not graph_path.exists():
        print(f"Graph not found at {graph_path}. Run 'llm-context analyze' first.")
        return None
    try:
        return read_graph(graph_path)
    except GraphStoreError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        print(f"Graph at {graph_path} is malformed. Run 'llm-context analyze' to rebuild it.")
        return None


def cmd_init(args: argparse.Namespace) -> int:
    """Create a config file and the output directory."""
    root = Path.cwd()
    config_path = Path(args.config) if args.config else root / DEFAULT_CONFIG_PATH

    print("Initializing llm-context...")

    if config_path.exists():
        print(f"  Config already exists: {config_path}")
    else:
        config_path.write_text(CONFIG_TEMPLATE, encoding="utf-8")
        print(f"  Created {config_path}")

    try:
        config = load_config(config_path)
    except ConfigError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    output_dir = config.output_dir(root)
    output_dir.mkdir(parents=True, exist_ok=True)
    print(f"  Created {output_dir}/")

    # Keep generated artifacts out of version control
    gitignore_path = root / ".gitignore"
    pattern = f"{config.output.directory.rstrip('/')}/"
    if gitignore_path.exists():
        content = gitignore_path.read_text(encoding="utf-8")
        if pattern not in content.splitlines():
            with open(gitignore_path, "a", encoding="utf-8") as f:
                f.write(f"\n# llm-context output\n{pattern}\n")
            print(f"  Added {pattern} to .gitignore")
    else:
        gitignore_path.write_text(f"# llm-context output\n{pattern}\n", encoding="utf-8")
        print(f"  Created .gitignore with {pattern}")

    print("\nNext steps:")
    print("  1. Edit llm-context.yaml to choose file or unit granularity")
    print("  2. Run 'llm-context analyze' to build the graph")
    print("  3. Query with 'llm-context query stats'")
    return ExitCode.SUCCESS


def cmd_analyze(args: argparse.Namespace) -> int:
    """Run a full or incremental analysis."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    root = Path.cwd()

    try:
        result = run_analysis(root, config, full=args.full)
    except AnalysisIOError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.FILE_SYSTEM_ERROR

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        label = "Full analysis" if result.mode == "full" else "Incremental analysis"
        print(f"{label} ({result.granularity} granularity)")
        if result.reason:
            print(f"  Reason: {result.reason}")
        if result.changes is not None:
            summary = result.changes.summary()
            print(
                f"  Files: {summary['added']} added, {summary['modified']} modified, "
                f"{summary['deleted']} deleted, {summary['unchanged']} unchanged "
                f"({summary['percentSkipped']}% skipped)"
            )
            if not result.changes.has_changes:
                print("  No changes since last analysis")
        unit_summary = result.unit_summary
        if unit_summary:
            print(
                f"  Units: {unit_summary['added']} added, {unit_summary['modified']} modified, "
                f"{unit_summary['deleted']} deleted, {unit_summary['renamed']} renamed, "
                f"{unit_summary['unchanged']} unchanged ({unit_summary['percentSkipped']}% skipped)"
            )
        print(f"  Analyzed {len(result.analyzed)} files")
        if result.failures:
            print(f"  Skipped {len(result.failures)} files due to parse errors")
            for path, reason in result.failures.items():
                print(f"    {path}: {reason}")
        print(f"  Graph: {result.total_records} functions")
        if result.dependency_stats:
            stats = result.dependency_stats
            print(
                f"  Dependencies: {stats['totalDependencies']} edges, "
                f"{stats['entryPoints']} entry points, {stats['cycles']} cycles"
            )
        print(f"  Completed in {result.duration:.2f}s")

    if result.partial:
        return ExitCode.PARTIAL_SUCCESS
    return ExitCode.SUCCESS


def cmd_check_changes(args: argparse.Namespace) -> int:
    """Show what the next incremental run would re-analyze."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    root = Path.cwd()

    try:
        preview = preview_changes(root, config)
    except AnalysisIOError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.FILE_SYSTEM_ERROR

    if preview is None:
        print("No previous analysis found. The next run will analyze everything.")
        return ExitCode.SUCCESS

    report, unit_reports = preview

    if args.json:
        data = {
            "added": report.added,
            "modified": report.modified,
            "deleted": report.deleted,
            "summary": report.summary(),
            "units": [r.to_dict() for r in unit_reports],
        }
        print(json.dumps(data, indent=2))
        return ExitCode.SUCCESS

    if not report.has_changes:
        print("No changes detected")
        return ExitCode.SUCCESS

    for label, paths in (("Added", report.added), ("Modified", report.modified), ("Deleted", report.deleted)):
        if paths:
            print(f"{label} ({len(paths)}):")
            for path in paths:
                print(f"  {path}")

    for unit_report in unit_reports:
        counts = unit_report.counts()
        print(
            f"{unit_report.file_path}: {counts['modified']} modified, {counts['added']} added, "
            f"{counts['deleted']} deleted, {counts['renamed']} renamed, {counts['unchanged']} unchanged"
        )
        for rename in unit_report.renames:
            print(f"  {rename.old_name} -> {rename.new_name} ({rename.similarity:.0%} similar, {rename.size_delta:+d} bytes)")

    print(f"\n{report.percent_skipped}% of files unchanged")
    return ExitCode.SUCCESS


def cmd_deps(args: argparse.Namespace) -> int:
    """Build the dependency index from the current graph."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    root = Path.cwd()
    records = _load_records(config, root)
    if records is None:
        return ExitCode.FILE_SYSTEM_ERROR

    print("Analyzing dependencies...")
    graph = build_dependency_graph(records)
    index = build_dependency_index(graph, len(records), config.analysis.entry_point_max_callers)

    deps_path = config.dependencies_path(root)
    try:
        write_dependency_index(index, deps_path)
    except OSError as e:
        print(json.dumps(AnalysisIOError(f"Cannot write {deps_path}: {e}").to_json()), file=sys.stderr)
        return ExitCode.FILE_SYSTEM_ERROR

    stats = index["stats"]
    print(f"  Functions: {stats['totalFunctions']}")
    print(f"  Dependencies: {stats['totalDependencies']}")
    print(f"  Entry points: {stats['entryPoints']}")
    for entry in index["entryPoints"][:5]:
        print(f"    {entry['name']} (depth {entry['depth']})")
    print(f"  Leaf functions: {stats['leafFunctions']}")
    print(f"  Cycles: {stats['cycles']}")
    for cycle in index["cycles"][:5]:
        print(f"    {' -> '.join(cycle)}")
    print(f"Output: {deps_path}")
    return ExitCode.SUCCESS


def cmd_impact(args: argparse.Namespace) -> int:
    """Show which units are affected by changes to the named units."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    root = Path.cwd()
    records = _load_records(config, root)
    if records is None:
        return ExitCode.FILE_SYSTEM_ERROR

    max_depth = args.depth if args.depth is not None else config.analysis.max_call_depth
    report = analyze_impact(args.names, build_dependency_graph(records), max_depth)

    if args.json:
        print(json.dumps(report, indent=2))
        return ExitCode.SUCCESS

    for name, impact in report["perFunctionImpact"].items():
        print(f"{name}:")
        print(f"  Direct callers: {', '.join(impact['directCallers']) or 'none'}")
        print(f"  Impacted: {impact['totalImpacted']}")
        for impacted in impact["impactedFunctions"][:MAX_LISTED]:
            print(f"    {impacted}")
    print(f"\nTotal impacted: {len(report['totalImpacted'])}")
    return ExitCode.SUCCESS


QUERY_COMMANDS = (
    "find-function",
    "functions-in-file",
    "calls-to",
    "called-by",
    "side-effects",
    "entry-points",
    "trace",
    "stats",
)


def cmd_query(args: argparse.Namespace) -> int:
    """Query the graph."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    root = Path.cwd()
    records = _load_records(config, root)
    if records is None:
        return ExitCode.FILE_SYSTEM_ERROR

    index = GraphIndex(records)
    command = args.query_command
    argument = " ".join(args.args)

    needs_argument = command in ("find-function", "functions-in-file", "calls-to", "called-by", "trace")
    if needs_argument and not argument:
        print(f"Query '{command}' needs an argument", file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    if command == "find-function":
        _print_records(find_function(index, argument, args.file))
    elif command == "functions-in-file":
        _print_records(functions_in_file(index, argument))
    elif command == "calls-to":
        _print_names(calls_to(index, argument))
    elif command == "called-by":
        _print_names(called_by(index, argument))
    elif command == "side-effects":
        _print_records(with_side_effects(index, argument or None))
    elif command == "entry-points":
        graph = build_dependency_graph(records)
        entry_points = find_entry_points(graph, config.analysis.entry_point_max_callers)
        _print_names([f"{ep['name']} ({ep['callers']} callers)" for ep in entry_points])
    elif command == "trace":
        tree = trace(index, argument, args.depth)
        if tree is None:
            print(f"Function not found: {argument}")
        else:
            print(json.dumps(tree, indent=2))
    else:
        print(json.dumps(get_stats(index), indent=2))

    return ExitCode.SUCCESS


def cmd_status(args: argparse.Namespace) -> int:
    """Show the state of the persisted analysis."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        print(json.dumps(e.to_json()), file=sys.stderr)
        return ExitCode.CONFIG_ERROR

    root = Path.cwd()

    print("llm-context Status")
    print("=" * 40)

    manifest_path = config.manifest_path(root)
    manifest = read_manifest(manifest_path)
    if manifest:
        stats = manifest.global_stats
        print(f"\nManifest: {manifest_path}")
        print(f"  Generated: {manifest.generated}")
        print(f"  Granularity: {manifest.granularity}")
        print(f"  Files: {stats.get('totalFiles', len(manifest.files))}")
        print(f"  Functions: {stats.get('totalFunctions', 0)}")
        print(f"  Calls: {stats.get('totalCalls', 0)}")
        print("  By language:")
        for language, count in sorted(language_breakdown(manifest.files).items()):
            print(f"    {language}: {count}")
        if manifest.granularity != config.granularity:
            print(f"  Configured granularity is {config.granularity}; the next run will rebuild")
    else:
        print("\nManifest: NOT FOUND")
        print(f"  Expected at: {manifest_path}")

    deps_path = config.dependencies_path(root)
    deps_index = load_dependency_index(deps_path)
    if deps_index:
        stats = deps_index.get("stats", {})
        print(f"\nDependency Index: {deps_path}")
        print(f"  Generated: {deps_index.get('generated', 'unknown')}")
        print(f"  Dependencies: {stats.get('totalDependencies', 0)}")
        print(f"  Cycles: {stats.get('cycles', 0)}")
    else:
        print("\nDependency Index: NOT FOUND")
        print(f"  Expected at: {deps_path}")

    if not manifest:
        print("\nNo analysis found. Run 'llm-context analyze' to create it.")

    return ExitCode.SUCCESS


def _add_config_arg(parser: argparse.ArgumentParser) -> None:
    """Add --config argument to a parser."""
    parser.add_argument(
        "--config",
        "-c",
        help=f"Path to config file (default: {DEFAULT_CONFIG_PATH})",
    )


def _add_json_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="llm-context",
        description="Incremental semantic code graph for LLM context",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Create llm-context.yaml and the output directory",
    )
    _add_config_arg(init_parser)

    # analyze command
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Build or incrementally update the graph",
    )
    _add_config_arg(analyze_parser)
    _add_json_arg(analyze_parser)
    analyze_parser.add_argument(
        "--full",
        action="store_true",
        help="Ignore the manifest and re-analyze everything",
    )

    # check-changes command
    check_parser = subparsers.add_parser(
        "check-changes",
        help="Show files and units changed since the last analysis",
    )
    _add_config_arg(check_parser)
    _add_json_arg(check_parser)

    # deps command
    deps_parser = subparsers.add_parser(
        "deps",
        help="Build the dependency index from the graph",
    )
    _add_config_arg(deps_parser)

    # impact command
    impact_parser = subparsers.add_parser(
        "impact",
        help="Show functions affected by changes to the given functions",
    )
    _add_config_arg(impact_parser)
    _add_json_arg(impact_parser)
    impact_parser.add_argument("names", nargs="+", help="Changed function names")
    impact_parser.add_argument("--depth", type=int, help="Maximum caller depth (default: analysis.max_call_depth)")

    # query command
    query_parser = subparsers.add_parser(
        "query",
        help="Query the graph",
    )
    _add_config_arg(query_parser)
    query_parser.add_argument("query_command", choices=QUERY_COMMANDS, help="Query to run")
    query_parser.add_argument("args", nargs="*", help="Query argument (function name or file path)")
    query_parser.add_argument("--file", help="Restrict find-function to files containing this text")
    query_parser.add_argument("--depth", type=int, default=3, help="Depth for trace (default: 3)")

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show analysis status",
    )
    _add_config_arg(status_parser)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "init": cmd_init,
        "analyze": cmd_analyze,
        "check-changes": cmd_check_changes,
        "deps": cmd_deps,
        "impact": cmd_impact,
        "query": cmd_query,
        "status": cmd_status,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
