"""Command-line interface for npmgraph: build dependency graphs, inspect packages and manifests."""

from __future__ import annotations

import argparse
import json
import re
import shutil
import subprocess
import sys
import threading
from pathlib import Path

from npmgraph.config import Settings
from npmgraph.core.graph import DEFAULT_MAX_DEPTH, DEFAULT_MAX_NODES, GraphData, GraphNode
from npmgraph.core.manifest import (
    DEFAULT_SEED_TYPES,
    DEPENDENCY_TYPES,
    default_seed_names,
    find_manifest_folder,
    read_manifest,
)
from npmgraph.core.service import BuildStatus, GraphService
from npmgraph.core.unused import find_unused_dependencies
from npmgraph.logging import configure_logging

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TIMED_OUT = 2
EXIT_STOPPED = 130

_EXIT_CODES = {
    BuildStatus.COMPLETED: EXIT_OK,
    BuildStatus.ERRORED: EXIT_ERROR,
    BuildStatus.TIMED_OUT: EXIT_TIMED_OUT,
    BuildStatus.STOPPED: EXIT_STOPPED,
}


def _print_graph_text(graph: GraphData) -> None:
    """Print a graph as indented text, one tree per seed.

    A node already printed with its dependencies is repeated as ``(*)`` without
    them; a dependency leading back up the current branch is marked ``[cycle]``.
    """
    expanded: set[str] = set()

    def _walk(node: GraphNode, prefix: str, is_last: bool, path: set[str], top: bool) -> None:
        marker = "" if top else ("└── " if is_last else "├── ")
        children = graph.children_of(node.id)
        suffix = ""
        if node.id in path:
            suffix = " [cycle]"
            children = []
        elif node.id in expanded and children:
            suffix = " (*)"
            children = []
        print(f"{prefix}{marker}{node.id}{suffix}")
        expanded.add(node.id)

        child_prefix = prefix if top else prefix + ("    " if is_last else "│   ")
        for i, child in enumerate(children):
            _walk(child, child_prefix, i == len(children) - 1, path | {node.id}, False)

    for root in graph.roots():
        _walk(root, "", True, set(), True)


def _generate_dot(graph: GraphData, title: str | None = None, highlight_roots: bool = True) -> str:
    """Generate DOT (Graphviz) format from a dependency graph."""
    lines = [
        "digraph dependencies {",
        "    rankdir=LR;",
        '    node [shape=box, style=rounded, fontname="sans-serif"];',
    ]
    if title:
        lines.insert(1, f'    label="{title}";')
        lines.insert(2, "    labelloc=t;")

    for node in graph.nodes:
        if highlight_roots and node.level == 0:
            lines.append(f'    "{node.id}" [style="rounded,filled", fillcolor=lightblue];')
        else:
            lines.append(f'    "{node.id}";')

    for edge in graph.edges:
        lines.append(f'    "{edge.from_id}" -> "{edge.to_id}";')

    lines.append("}")
    return "\n".join(lines)


def _generate_mermaid(graph: GraphData, title: str | None = None, highlight_roots: bool = True) -> str:
    """Generate Mermaid format from a dependency graph."""
    lines = ["graph LR"]
    if title:
        lines[0] = f"---\ntitle: {title}\n---\ngraph LR"

    for node in graph.nodes:
        lines.append(f'    {_mermaid_id(node.id)}["{node.id}"]')
        if highlight_roots and node.level == 0:
            lines.append(f"    style {_mermaid_id(node.id)} fill:#lightblue")

    for edge in graph.edges:
        lines.append(f"    {_mermaid_id(edge.from_id)} --> {_mermaid_id(edge.to_id)}")

    return "\n".join(lines)


def _mermaid_id(node_id: str) -> str:
    """Convert a node id (``@scope/name@1.2.3``) to a valid Mermaid node ID."""
    return re.sub(r"[^A-Za-z0-9_]", "_", node_id)


def _check_graphviz() -> bool:
    """Check if Graphviz (dot) is available."""
    return shutil.which("dot") is not None


def _render_dot(dot_content: str, output_path: Path, format: str) -> bool:
    """Render DOT content to an image file using Graphviz."""
    if not _check_graphviz():
        print(
            "Error: Graphviz not found. Install it with:\n"
            "  Ubuntu/Debian: sudo apt install graphviz\n"
            "  macOS: brew install graphviz\n"
            "  Or download from: https://graphviz.org/download/",
            file=sys.stderr,
        )
        return False

    try:
        result = subprocess.run(
            ["dot", f"-T{format}", "-o", str(output_path)],
            input=dot_content,
            capture_output=True,
            text=True,
            timeout=60,
        )
    except subprocess.TimeoutExpired:
        print("Error: Graphviz timed out (graph may be too large)", file=sys.stderr)
        return False
    except OSError as e:
        print(f"Error running Graphviz: {e}", file=sys.stderr)
        return False
    if result.returncode != 0:
        print(f"Graphviz error: {result.stderr}", file=sys.stderr)
        return False
    return True


def _open_file(path: Path) -> bool:
    """Open a file with the system default application."""
    import platform

    system = platform.system()
    try:
        if system == "Darwin":  # macOS
            subprocess.run(["open", str(path)], check=True)
        elif system == "Windows":
            subprocess.run(["start", "", str(path)], shell=True, check=True)
        else:  # Linux and others
            subprocess.run(["xdg-open", str(path)], check=True)
        return True
    except (OSError, subprocess.CalledProcessError) as e:
        print(f"Could not open file: {e}", file=sys.stderr)
        return False


def _render_path(output: str | None, seeds: list[str], render_format: str) -> Path:
    """Image path for --render: --output with the right suffix, else named after the seed."""
    if output:
        out_path = Path(output)
        if out_path.suffix.lower() != f".{render_format}":
            out_path = out_path.with_suffix(f".{render_format}")
        return out_path
    base_name = seeds[0].lstrip("@").replace("/", "_") if len(seeds) == 1 else "npm_deps"
    return Path(f"{base_name}.{render_format}")


def _make_service(args: argparse.Namespace) -> GraphService:
    """GraphService from environment settings, with CLI overrides applied."""
    overrides: dict = {}
    if getattr(args, "timeout", None) is not None:
        overrides["build_timeout"] = args.timeout
    if getattr(args, "jobs", None) is not None:
        overrides["fetch_workers"] = args.jobs
    return GraphService(Settings(**overrides))


def _resolve_seeds(args: argparse.Namespace) -> list[str]:
    """Seeds from the command line, or the default selection of the nearest package.json."""
    if args.packages:
        return list(args.packages)
    start = Path(args.manifest) if args.manifest else Path.cwd()
    folder = find_manifest_folder(start)
    if folder is None:
        return []
    manifest = read_manifest(folder)
    if manifest is None:
        return []
    types = tuple(args.type) if args.type else DEFAULT_SEED_TYPES
    return default_seed_names(manifest, types)


def cmd_graph(args: argparse.Namespace) -> int:
    """Build a dependency graph and print it as text, DOT, Mermaid or JSON."""
    seeds = _resolve_seeds(args)
    if not seeds:
        print(
            "No packages to graph. Name packages or run inside a project with a package.json.",
            file=sys.stderr,
        )
        return EXIT_ERROR

    cancel_event = threading.Event()
    try:
        with _make_service(args) as service:
            result = service.build_graph(
                seeds,
                max_depth=args.depth,
                max_nodes=args.max_nodes,
                clear_cache=args.refresh,
                cancel_event=cancel_event,
            )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        cancel_event.set()
        print("Graph build stopped: Operation cancelled", file=sys.stderr)
        return EXIT_STOPPED

    if result.status is not BuildStatus.COMPLETED:
        print(f"Graph build {result.status.value}: {result.message}", file=sys.stderr)
        if not result.graph.nodes:
            return _EXIT_CODES[result.status]

    if args.no_title:
        title = None
    elif len(seeds) == 1:
        title = f"{seeds[0]} dependencies"
    else:
        title = f"Dependencies of {len(seeds)} packages"

    render_format = getattr(args, "render", None)
    if render_format:
        if args.format in ("mermaid", "json"):
            print(
                f"Error: --render only works with DOT output (not {args.format}). "
                "Drop -f or use -f dot.",
                file=sys.stderr,
            )
            return EXIT_ERROR
        out_path = _render_path(args.output, seeds, render_format)
        print(f"Rendering graph to {out_path}...", file=sys.stderr)
        if not _render_dot(_generate_dot(result.graph, title=title), out_path, render_format):
            return EXIT_ERROR
        print(f"Graph image saved to: {out_path}", file=sys.stderr)
        if getattr(args, "open", False):
            _open_file(out_path)
        return _EXIT_CODES[result.status]

    if args.format == "json":
        output = json.dumps(result.to_dict(), indent=2)
    elif args.format == "dot":
        output = _generate_dot(result.graph, title=title)
    elif args.format == "mermaid":
        output = _generate_mermaid(result.graph, title=title)
    else:
        output = None

    if output is None:
        if args.output:
            print("Error: --output needs -f dot, mermaid or json.", file=sys.stderr)
            return EXIT_ERROR
        if not result.graph.nodes:
            print("No packages could be resolved.")
        _print_graph_text(result.graph)
    elif args.output:
        Path(args.output).write_text(output + "\n")
        print(f"Graph written to: {args.output}", file=sys.stderr)
    else:
        print(output)

    print(
        f"{result.graph.node_count} node(s), {len(result.graph.edges)} edge(s) in {result.elapsed:.1f}s",
        file=sys.stderr,
    )
    return _EXIT_CODES[result.status]


def cmd_info(args: argparse.Namespace) -> int:
    """Show registry metadata for one package."""
    with _make_service(args) as service:
        info = service.get_package_info(args.package)
    if info is None:
        print(f"Package not found or registry unavailable: {args.package}", file=sys.stderr)
        return EXIT_ERROR

    if args.json:
        print(json.dumps(info.to_dict(), indent=2))
        return EXIT_OK
    print(f"{info.name}@{info.latest_version}")
    if info.description:
        print(f"  {info.description}")
    if not info.dependencies:
        print("  No dependencies.")
    else:
        print(f"  Dependencies ({len(info.dependencies)}):")
        for name, spec in info.dependencies.items():
            print(f"    - {name} {spec}")
    return EXIT_OK


def cmd_manifest(args: argparse.Namespace) -> int:
    """List the dependencies declared in the nearest package.json."""
    start = Path(args.path) if args.path else Path.cwd()
    folder = find_manifest_folder(start)
    manifest = read_manifest(folder) if folder is not None else None
    if manifest is None:
        print(f"No readable package.json found from: {start}", file=sys.stderr)
        return EXIT_ERROR

    selection = set(default_seed_names(manifest))
    if args.json:
        data = manifest.to_dict()
        data["default_selection"] = sorted(selection)
        print(json.dumps(data, indent=2))
        return EXIT_OK

    if not manifest.packages:
        print(f"{manifest.project_name}: no dependencies declared.")
        return EXIT_OK
    print(f"{manifest.project_name} ({len(manifest.packages)} package(s)):\n")
    for dep_type, packages in manifest.by_type().items():
        print(f"  {dep_type} ({len(packages)})")
        for pkg in packages:
            mark = "*" if pkg.name in selection else " "
            print(f"   {mark} {pkg.name} {pkg.version}")
        print()
    print("* = selected by default for 'npmgraph graph'")
    return EXIT_OK


def cmd_unused(args: argparse.Namespace) -> int:
    """Report dependencies in package.json that no source file imports."""
    start = Path(args.path) if args.path else Path.cwd()
    folder = find_manifest_folder(start)
    report = find_unused_dependencies(folder) if folder is not None else None
    if report is None:
        print(f"No readable package.json found from: {start}", file=sys.stderr)
        return EXIT_ERROR

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return EXIT_OK

    print(f"Project: {report.project_path}")
    print(f"Dependencies checked: {report.total_dependencies}")
    print(f"Source files scanned: {report.scanned_files}")
    if not report.unused:
        print("No unused dependencies found.")
        return EXIT_OK
    print(f"Unused dependencies: {len(report.unused)}\n")
    for heading, packages in (
        ("dependencies", report.dependencies),
        ("devDependencies", report.dev_dependencies),
    ):
        if not packages:
            continue
        print(f"  {heading} ({len(packages)})")
        for pkg in packages:
            print(f"    - {pkg.name} ({pkg.version})")
    return EXIT_OK


def cmd_tui(args: argparse.Namespace) -> int:

    """Launch the interactive TUI."""
    from npmgraph.tui.app import DepGraphApp

    path = getattr(args, "path", None)
    app = DepGraphApp(start_path=Path(path) if path else None)
    app.run()
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the npmgraph CLI."""
    from npmgraph import __version__

    parser = argparse.ArgumentParser(
        prog="npmgraph",
        description="Explore npm package dependency graphs from the command line.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug output to stderr",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Log as JSON lines instead of human-readable text",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # npmgraph graph
    graph_parser = subparsers.add_parser(
        "graph",
        help="Build a dependency graph (text/DOT/Mermaid/JSON)",
        description=(
            "Build the dependency graph of npm packages from the registry. "
            "Without package names, uses the production dependencies of the nearest package.json."
        ),
    )
    graph_parser.add_argument(
        "packages",
        nargs="*",
        help="Package names to start from (optional; default: from package.json)",
    )
    graph_parser.add_argument(
        "-m",
        "--manifest",
        metavar="PATH",
        help="Project folder (or package.json) to read seeds from (default: current directory)",
    )
    graph_parser.add_argument(
        "-t",
        "--type",
        action="append",
        choices=DEPENDENCY_TYPES,
        help="Dependency sections to seed from (can be repeated; default: dependencies)",
    )
    graph_parser.add_argument(
        "-d",
        "--depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help=f"Maximum graph depth (default: {DEFAULT_MAX_DEPTH})",
    )
    graph_parser.add_argument(
        "-n",
        "--max-nodes",
        type=int,
        default=DEFAULT_MAX_NODES,
        help=f"Maximum number of nodes (default: {DEFAULT_MAX_NODES})",
    )
    graph_parser.add_argument(
        "-f",
        "--format",
        choices=["text", "dot", "mermaid", "json"],
        default="text",
        help="Output format (default: text)",
    )
    graph_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output file (default: stdout)",
    )
    graph_parser.add_argument(
        "--no-title",
        action="store_true",
        help="Don't include a title in the graph",
    )
    graph_parser.add_argument(
        "--render",
        choices=["png", "svg", "pdf"],
        help="Render to image (png, svg, pdf). Requires Graphviz installed.",
    )
    graph_parser.add_argument(
        "--open",
        action="store_true",
        help="Open the rendered image after creation (use with --render)",
    )
    graph_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Wall-clock budget for the whole build in seconds (default: 30)",
    )
    graph_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Concurrent registry fetches per package (default: 1)",
    )
    graph_parser.add_argument(
        "--refresh",
        action="store_true",
        help="Ignore cached registry responses",
    )
    graph_parser.set_defaults(func=cmd_graph)

    # npmgraph info
    info_parser = subparsers.add_parser(
        "info",
        help="Show registry metadata for a package",
        description="Fetch the latest version of a package and its declared dependencies.",
    )
    info_parser.add_argument("package", help="Package name (e.g. express or @types/node)")
    info_parser.add_argument("--json", action="store_true", help="Output as JSON")
    info_parser.set_defaults(func=cmd_info)

    # npmgraph manifest
    manifest_parser = subparsers.add_parser(
        "manifest",
        help="List dependencies declared in package.json",
        description="Read the nearest package.json and list its dependencies by section.",
    )
    manifest_parser.add_argument(
        "path",
        nargs="?",
        help="Project folder or package.json (default: current directory)",
    )
    manifest_parser.add_argument("--json", action="store_true", help="Output as JSON")
    manifest_parser.set_defaults(func=cmd_manifest)

    # npmgraph unused
    unused_parser = subparsers.add_parser(
        "unused",
        help="Find declared dependencies that are never imported",
        description=(
            "Scan the project's .js/.ts sources for import, export-from and require "
            "statements and list dependencies and devDependencies that none of them use."
        ),
    )
    unused_parser.add_argument(
        "path",
        nargs="?",
        help="Project folder or package.json (default: current directory)",
    )
    unused_parser.add_argument("--json", action="store_true", help="Output as JSON")
    unused_parser.set_defaults(func=cmd_unused)


    # npmgraph tui (default if no command)
    tui_parser = subparsers.add_parser(
        "tui",
        help="Launch the interactive terminal UI",
        description="Start the interactive TUI for selecting packages and browsing their graph.",
    )
    tui_parser.add_argument(
        "path",
        nargs="?",
        help="Optional: project folder whose package.json to load",
    )
    tui_parser.set_defaults(func=cmd_tui)

    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose, log_json=args.log_json)

    # Default to TUI if no command specified
    if args.command is None:
        return cmd_tui(argparse.Namespace(path=None))

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
