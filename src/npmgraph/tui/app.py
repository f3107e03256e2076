"""Textual TUI for selecting npm packages and browsing their dependency graph."""

from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Vertical
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Input, LoadingIndicator, Static, Tree
from textual.widgets.tree import TreeNode
from textual.worker import Worker, WorkerState

from npmgraph.config import Settings
from npmgraph.core.graph import GraphData, GraphNode
from npmgraph.core.manifest import Manifest, default_seed_names, find_manifest_folder, read_manifest
from npmgraph.core.service import BuildEvent, BuildEventKind, BuildStatus, GraphResult, GraphService

# Welcome banner: NPMGRAPH (all lines must be same length for proper centering)
WELCOME_BANNER = """\
[bold cyan]
███╗   ██╗██████╗ ███╗   ███╗ ██████╗ ██████╗  █████╗ ██████╗ ██╗  ██╗
████╗  ██║██╔══██╗████╗ ████║██╔════╝ ██╔══██╗██╔══██╗██╔══██╗██║  ██║
██╔██╗ ██║██████╔╝██╔████╔██║██║  ███╗██████╔╝███████║██████╔╝███████║
██║╚██╗██║██╔═══╝ ██║╚██╔╝██║██║   ██║██╔══██╗██╔══██║██╔═══╝ ██╔══██║
██║ ╚████║██║     ██║ ╚═╝ ██║╚██████╔╝██║  ██║██║  ██║██║     ██║  ██║
╚═╝  ╚═══╝╚═╝     ╚═╝     ╚═╝ ╚═════╝ ╚═╝  ╚═╝╚═╝  ╚═╝╚═╝     ╚═╝  ╚═╝
[/bold cyan]"""

WELCOME_DESC = """[dim]Pick packages from your package.json and explore their dependency graph.
Metadata comes from the npm registry; responses are cached for ten minutes.
Stop a slow build at any time, or refresh to bypass the cache.[/]"""

# Graph limits for interactive builds
TUI_MAX_DEPTH = 2
TUI_MAX_NODES = 50
MAX_TREE_NODES = 500
EXPAND_DEPTH_DEFAULT = 2

# Colors: dependency sections and tree
COLOR_SECTION = {
    "dependencies": "bold green",
    "devDependencies": "bold yellow",
    "peerDependencies": "bold cyan",
    "optionalDependencies": "dim",
}
COLOR_HEADER = "bold magenta"
COLOR_PKG = "white"
COLOR_SELECTED = "bold green"
COLOR_STATS = "cyan"


@dataclass
class GraphTreeItem:
    """A graph node placed in a tree view; ``marker`` flags repeats and cycles."""

    node: GraphNode
    children: list[GraphTreeItem] = field(default_factory=list)
    marker: str = ""

    @property
    def name(self) -> str:
        return self.node.id


def _graph_to_tree(graph: GraphData) -> list[GraphTreeItem]:
    """
    Unfold a graph into one tree per seed.

    A node whose dependencies were already shown elsewhere is repeated with
    marker "(*)" and no children; an edge back up the branch gets "(cycle)".
    """
    expanded: set[str] = set()

    def _unfold(node: GraphNode, path: frozenset[str]) -> GraphTreeItem:
        children = graph.children_of(node.id)
        if node.id in path:
            return GraphTreeItem(node, marker="(cycle)")
        if node.id in expanded and children:
            return GraphTreeItem(node, marker="(*)")
        expanded.add(node.id)
        item = GraphTreeItem(node)
        for child in children:
            item.children.append(_unfold(child, path | {node.id}))
        return item

    return [_unfold(root, frozenset()) for root in graph.roots()]


def _count_nodes(node: Any) -> int:
    """Count nodes in tree (for cap)."""
    n = 1
    for c in getattr(node, "children", []):
        n += _count_nodes(c)
    return n


def _node_stats(node: Any) -> tuple[int, int, int]:
    """Return (direct_children, total_descendants, max_depth) for a node."""
    children = getattr(node, "children", []) or []
    direct = len(children)
    total = 0
    max_d = 0
    for c in children:
        sub_direct, sub_total, sub_depth = _node_stats(c)
        total += 1 + sub_total
        max_d = max(max_d, 1 + sub_depth)
    return direct, total, max_d


def _item_label(item: GraphTreeItem) -> str:
    marker = f" [dim]{item.marker}[/]" if item.marker else ""
    return f"[{COLOR_PKG}]{item.node.label}[/] [dim]v{item.node.version}[/]{marker}"


def _populate_textual_tree(
    tn: TreeNode,
    item: GraphTreeItem,
    *,
    max_nodes: int = MAX_TREE_NODES,
    node_count: list[int] | None = None,
) -> None:
    """Recursively add GraphTreeItem children; cap total nodes."""
    if node_count is None:
        node_count = [0]
    for child in item.children:
        if node_count[0] >= max_nodes:
            tn.add_leaf(f"[dim]… truncated ({max_nodes} nodes max)[/]")
            return
        node_count[0] += 1
        if child.children:
            child_tn = tn.add(_item_label(child), data=child, expand=False)
            _populate_textual_tree(child_tn, child, max_nodes=max_nodes, node_count=node_count)
        else:
            tn.add_leaf(_item_label(child), data=child)


def _expand_to_depth(tn: TreeNode, depth: int, current: int = 0) -> None:
    """Expand tree nodes up to given depth (0 = root only)."""
    if current >= depth:
        return
    tn.expand()
    for child in tn.children:
        _expand_to_depth(child, depth, current + 1)


class SearchScreen(ModalScreen[str | None]):
    """Modal to search for packages in the tree. Keyboard-only."""

    BINDINGS = [
        Binding("escape", "cancel", "Cancel", show=True),
    ]

    DEFAULT_CSS = """
    SearchScreen {
        align: center middle;
        padding: 2 4;
    }
    SearchScreen #search_title {
        text-align: center;
        padding-bottom: 1;
    }
    SearchScreen #search_input {
        width: 60;
        margin: 1 0;
    }
    SearchScreen #search_hint {
        text-align: center;
        padding-top: 1;
    }
    """

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static(
                "[bold cyan]Search[/]\n\nType a package name or partial match to find in the tree.",
                id="search_title",
                markup=True,
            )
            yield Input(placeholder="package name...", id="search_input")
            yield Static(
                "[dim]Enter[/] = Search  ·  [dim]Escape[/] = Cancel\n"
                "[dim]After search: [bold]n[/bold] = next match, [bold]N[/bold] = previous[/]",
                id="search_hint",
                markup=True,
            )

    def on_mount(self) -> None:
        self.query_one("#search_input", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "search_input":
            return
        value = event.value.strip()
        self.dismiss(value if value else None)

    def action_cancel(self) -> None:
        self.dismiss(None)


class AddPackageScreen(ModalScreen[str | None]):
    """Modal to add a registry package to the selection by name."""

    BINDINGS = [
        Binding("escape", "cancel", "Cancel", show=True),
    ]

    DEFAULT_CSS = """
    AddPackageScreen {
        align: center middle;
        padding: 2 4;
    }
    AddPackageScreen #add_package_title {
        text-align: center;
        padding-bottom: 1;
    }
    AddPackageScreen #add_package_input {
        width: 60;
        margin: 1 0;
    }
    """

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static(
                "[bold cyan]Add package[/]\n\n"
                "Type an npm package name (e.g. express or @types/node).",
                id="add_package_title",
                markup=True,
            )
            yield Input(placeholder="package name", id="add_package_input")
            yield Static("[dim]Enter[/] = Add  ·  [dim]Escape[/] = Cancel", markup=True)

    def on_mount(self) -> None:
        self.query_one("#add_package_input", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "add_package_input":
            return
        value = event.value.strip()
        if value and any(c.isspace() for c in value):
            self.notify("Package names cannot contain spaces", severity="warning", timeout=3)
            return
        self.dismiss(value or None)

    def action_cancel(self) -> None:
        self.dismiss(None)


class DepGraphApp(App[None]):
    """Terminal UI to build and explore npm dependency graphs."""

    TITLE = "npmgraph"
    BINDINGS = [
        Binding("escape", "back", "Back", show=True),
        Binding("b", "back", "Back", show=False),
        Binding("g", "build", "Build graph"),
        Binding("s", "stop", "Stop"),
        Binding("r", "refresh", "Refresh"),
        Binding("a", "add_package", "Add package"),
        Binding("/", "search", "Search"),
        Binding("n", "next_match", "Next match", show=False),
        Binding("N", "prev_match", "Prev match", show=False),
        Binding("d", "toggle_details", "Details"),
        Binding("e", "expand_all", "Expand all"),
        Binding("c", "collapse_all", "Collapse"),
        Binding("q", "quit", "Quit"),
    ]

    DEFAULT_CSS = """
    /* Welcome screen styles */
    #welcome_container {
        align: center middle;
        width: 100%;
        height: 100%;
    }
    #welcome_banner {
        text-align: center;
        content-align: center middle;
        width: 100%;
    }
    #welcome_desc {
        text-align: center;
        padding: 2 4;
    }
    #welcome_hint {
        text-align: center;
        padding-top: 1;
    }
    /* Main view styles */
    #main_container {
        display: none;
    }
    #building {
        display: none;
        height: 3;
    }
    #building.active {
        display: block;
    }
    #details {
        padding: 1 2;
        border: solid $primary;
        height: auto;
        min-height: 8;
    }
    """

    def __init__(
        self,
        start_path: Path | None = None,
        *,
        service: GraphService | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._start_path = start_path
        self._service = service
        self._owns_service = service is None
        self._manifest: Manifest | None = None
        self._selection: list[str] = []
        self._versions: dict[str, str] = {}
        self._main_started = False
        self._viewing_graph = False
        self._result: GraphResult | None = None
        self._cancel_event: threading.Event | None = None
        self._build_worker: Worker | None = None
        self._search_matches: list[TreeNode] = []
        self._search_index: int = 0
        self._details_visible: bool = True

    @property
    def service(self) -> GraphService:
        if self._service is None:
            self._service = GraphService(Settings())
        return self._service

    def compose(self) -> ComposeResult:
        yield Header(show_clock=False)
        # Welcome view (initial)
        with Container(id="welcome_container"):
            yield Static(WELCOME_BANNER, id="welcome_banner", markup=True)
            yield Static(WELCOME_DESC, id="welcome_desc", markup=True)
            yield Static(
                "[cyan]Enter[/] to explore  ·  [dim]q[/] to quit",
                id="welcome_hint",
                markup=True,
            )
        # Main view (hidden initially)
        with Container(id="main_container"):
            with Container(id="building"):
                yield LoadingIndicator()
            yield Tree("Packages", id="dep_tree")
            yield Static(
                "[dim]↑/↓[/] move  ·  [dim]Enter[/] toggle package  ·  [dim]g[/] build graph",
                id="details",
            )
        yield Footer()

    def on_mount(self) -> None:
        self.sub_title = "Dependency Graph Explorer"
        folder = find_manifest_folder(self._start_path or Path.cwd())
        if folder is not None:
            self._manifest = read_manifest(folder)
        if self._manifest is not None:
            self._selection = default_seed_names(self._manifest)

    def on_unmount(self) -> None:
        if self._cancel_event is not None:
            self._cancel_event.set()
        if self._owns_service and self._service is not None:
            self._service.close()

    def on_key(self, event: Any) -> None:
        """Handle Enter on the welcome screen."""
        if not self._main_started and event.key == "enter":
            event.prevent_default()
            event.stop()
            self.action_start_main()

    def action_start_main(self) -> None:
        """Transition from welcome screen to main view."""
        if self._main_started:
            return
        self._main_started = True
        self.query_one("#welcome_container").styles.display = "none"
        self.query_one("#main_container").styles.display = "block"
        self._show_packages()

    def _clear_tree(self, tree: Tree) -> None:
        while tree.root.children:
            tree.root.children[0].remove()

    def _package_label(self, name: str, version: str) -> str:
        color = COLOR_SELECTED if name in self._selection else COLOR_PKG
        mark = "✓" if name in self._selection else " "
        return f"[{color}]{mark} {name}[/] [dim]{version}[/]"

    def _show_packages(self) -> None:
        """Package list: manifest dependencies by section plus manually added names."""
        self._viewing_graph = False
        tree = self.query_one("#dep_tree", Tree)
        self._clear_tree(tree)
        manifest = self._manifest
        title = manifest.project_name if manifest else "No package.json"
        tree.root.label = f"[{COLOR_HEADER}]{title}[/]"
        known: set[str] = set()
        if manifest is not None:
            for dep_type, packages in manifest.by_type().items():
                color = COLOR_SECTION.get(dep_type, COLOR_PKG)
                section = tree.root.add(f"[{color}]{dep_type} ({len(packages)})[/]", expand=True)
                for pkg in packages:
                    known.add(pkg.name)
                    self._versions[pkg.name] = pkg.version
                    section.add_leaf(self._package_label(pkg.name, pkg.version), data=pkg.name)
        extra = [name for name in self._selection if name not in known]
        if extra:
            section = tree.root.add(f"[{COLOR_HEADER}]added ({len(extra)})[/]", expand=True)
            for name in extra:
                section.add_leaf(self._package_label(name, "latest"), data=name)
        tree.root.expand()
        if manifest is None and not extra:
            self._set_details(
                "No package.json found. Start with [bold]npmgraph tui PATH[/] "
                "or press [dim]a[/] to add a package by name."
            )
        else:
            self._set_details(self._selection_summary())
        tree.focus()

    def _selection_summary(self) -> str:
        picked = ", ".join(self._selection[:8]) or "(none)"
        more = f" … and {len(self._selection) - 8} more" if len(self._selection) > 8 else ""
        return (
            f"[{COLOR_HEADER}]Selection[/]  [{COLOR_STATS}]{len(self._selection)}[/] package(s)\n"
            f"  {picked}{more}\n\n"
            "[dim]Enter[/] toggle  ·  [dim]g[/] build graph  ·  [dim]a[/] add package  ·  [dim]r[/] refresh"
        )

    def _toggle(self, name: str, tn: TreeNode) -> None:
        if name in self._selection:
            self._selection.remove(name)
        else:
            self._selection.append(name)
        tn.set_label(self._package_label(name, self._versions.get(name, "latest")))
        self._set_details(self._selection_summary())

    def action_build(self, clear_cache: bool = False) -> None:
        """Build the graph for the current selection; supersedes a build in progress."""
        if not self._main_started:
            return
        seeds = list(self._selection)
        if not seeds:
            self.notify("Select at least one package first", severity="warning", timeout=2)
            return
        if self._cancel_event is not None:
            self._cancel_event.set()
        cancel_event = threading.Event()
        self._cancel_event = cancel_event

        def _work() -> GraphResult:
            return self.service.build_graph(
                seeds,
                TUI_MAX_DEPTH,
                TUI_MAX_NODES,
                cancel_event=cancel_event,
                clear_cache=clear_cache,
                on_event=lambda ev: self.call_from_thread(self._on_build_event, ev, cancel_event),
            )

        self._build_worker = self.run_worker(_work, thread=True, group="build", name="build")

    def _on_build_event(self, event: BuildEvent, cancel_event: threading.Event) -> None:
        if cancel_event is not self._cancel_event:
            return  # superseded build
        building = self.query_one("#building")
        if event.kind is BuildEventKind.STARTED:
            building.add_class("active")
            self._set_details("[dim]Building dependency graph…  [bold]s[/bold] = stop[/]")
        else:
            building.remove_class("active")

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Show the result of the latest build."""
        if event.worker is not self._build_worker:
            return
        if event.state == WorkerState.SUCCESS:
            self._cancel_event = None
            self._show_result(event.worker.result)
        elif event.state == WorkerState.ERROR:
            self._cancel_event = None
            self.query_one("#building").remove_class("active")
            self._set_details(f"[red]Error building graph: {event.worker.error!s}[/]")

    def _show_result(self, result: GraphResult) -> None:
        self._result = result
        if result.status is BuildStatus.STOPPED:
            self.notify(result.message or "Operation cancelled", severity="information", timeout=2)
            self._set_details(f"[yellow]Build stopped.[/]\n\n{self._selection_summary()}")
            return
        if result.status is BuildStatus.ERRORED:
            self._set_details(f"[red]Failed to build graph: {result.message}[/]")
            return

        self._viewing_graph = True
        tree = self.query_one("#dep_tree", Tree)
        self._clear_tree(tree)
        tree.root.label = f"[{COLOR_HEADER}]Dependency graph[/]"
        node_count = [0]
        for item in _graph_to_tree(result.graph):
            root_tn = tree.root.add(_item_label(item), data=item, expand=False)
            _populate_textual_tree(root_tn, item, node_count=node_count)
        if not result.graph.nodes:
            tree.root.add_leaf("[dim]No packages could be resolved[/]")
        _expand_to_depth(tree.root, EXPAND_DEPTH_DEFAULT)

        summary = (
            f"[{COLOR_HEADER}]Graph[/]  [{COLOR_STATS}]{result.graph.node_count}[/] nodes  ·  "
            f"[{COLOR_STATS}]{len(result.graph.edges)}[/] edges  ·  {result.elapsed:.1f}s"
        )
        if result.cycles:
            summary += f"\n  Cycles through: {', '.join(result.cycles)}"
        if result.status is BuildStatus.TIMED_OUT:
            summary = f"[red]{result.message}[/] (partial graph)\n\n" + summary
        self._set_details(summary + "\n\n[dim]Esc[/]/[dim]b[/] = back to packages  ·  [dim]r[/] = refresh")
        tree.focus()

    def _format_item(self, item: GraphTreeItem) -> str:
        node = item.node
        direct, total_desc, max_depth = _node_stats(item)
        lines = [
            f"[{COLOR_HEADER}]Package[/]",
            f"  [{COLOR_PKG}]{node.label}[/]  [dim]v{node.version}[/]",
            "",
            f"[{COLOR_HEADER}]Stats[/]",
            f"  First seen at level:   [{COLOR_STATS}]{node.level}[/]",
            f"  Direct dependencies:   [{COLOR_STATS}]{direct}[/]",
            f"  Total descendants:     [{COLOR_STATS}]{total_desc}[/] [dim](shown here)[/]",
            f"  Max depth from here:   [{COLOR_STATS}]{max_depth}[/] [dim]levels[/]",
        ]
        if item.marker:
            lines += ["", f"[dim]{item.marker}: dependencies shown elsewhere in the tree[/]"]
        return "\n".join(lines)

    def _set_details(self, text: str) -> None:
        self.query_one("#details", Static).update(text)

    def on_tree_node_selected(self, event: Tree.NodeSelected) -> None:
        data = event.node.data
        if isinstance(data, GraphTreeItem):
            self._set_details(self._format_item(data))
        elif isinstance(data, str) and not self._viewing_graph:
            self._toggle(data, event.node)

    def action_stop(self) -> None:
        """Cancel the build in progress."""
        if self._cancel_event is None:
            self.notify("No build in progress", severity="information", timeout=2)
            return
        self._cancel_event.set()

    def action_back(self) -> None:
        """Return to the package list (only when viewing a graph)."""
        if not self._main_started or not self._viewing_graph:
            return
        self._show_packages()

    def action_refresh(self) -> None:
        """Clear cached registry responses and rebuild."""
        if not self._main_started:
            return
        if self._viewing_graph or self._result is not None:
            self.action_build(clear_cache=True)
        else:
            self.service.clear_cache()
            self.notify("Registry cache cleared", severity="information", timeout=2)

    def action_add_package(self) -> None:
        if not self._main_started:
            return
        self.push_screen(AddPackageScreen(), self._on_add_package_done)

    def _on_add_package_done(self, name: str | None) -> None:
        if name is None:
            return
        if name in self._selection:
            self.notify("Package already selected", severity="information", timeout=2)
            return
        self._selection.append(name)
        self.notify(f"Added: {name}", severity="information", timeout=2)
        if not self._viewing_graph:
            self._show_packages()

    def action_expand_all(self) -> None:
        self.query_one("#dep_tree", Tree).root.expand_all()

    def action_collapse_all(self) -> None:
        tree = self.query_one("#dep_tree", Tree)
        tree.root.collapse_all()
        tree.root.expand()

    def action_search(self) -> None:
        """Open search modal."""
        if not self._main_started:
            return
        self.push_screen(SearchScreen(), self._on_search_done)

    def _on_search_done(self, query: str | None) -> None:
        if not query:
            return
        self._search_matches = []
        self._search_index = 0
        tree = self.query_one("#dep_tree", Tree)
        self._collect_matches(tree.root, query.lower())
        if not self._search_matches:
            self.notify(f"No matches for '{query}'", severity="warning", timeout=2)
            return
        self.notify(
            f"Found {len(self._search_matches)} match(es) for '{query}'",
            severity="information",
            timeout=2,
        )
        self._goto_match(0)

    def _collect_matches(self, node: TreeNode, query: str) -> None:
        """Recursively collect nodes matching the search query."""
        data = node.data
        if isinstance(data, GraphTreeItem):
            text = data.node.id.lower()
        elif isinstance(data, str):
            text = data.lower()
        else:
            text = ""
        if text and query in text:
            self._search_matches.append(node)
        for child in node.children:
            self._collect_matches(child, query)

    def _goto_match(self, index: int) -> None:
        """Navigate to and select a specific match."""
        if not self._search_matches:
            return
        self._search_index = index % len(self._search_matches)
        match_node = self._search_matches[self._search_index]
        parent = match_node.parent
        while parent is not None:
            parent.expand()
            parent = parent.parent
        tree = self.query_one("#dep_tree", Tree)
        tree.select_node(match_node)
        tree.scroll_to_node(match_node)

    def action_next_match(self) -> None:
        if not self._search_matches:
            self.notify("No active search. Press / to search.", severity="information", timeout=2)
            return
        self._goto_match(self._search_index + 1)

    def action_prev_match(self) -> None:
        if not self._search_matches:
            self.notify("No active search. Press / to search.", severity="information", timeout=2)
            return
        self._goto_match(self._search_index - 1)

    def action_toggle_details(self) -> None:
        """Toggle visibility of the details panel."""
        self._details_visible = not self._details_visible
        details = self.query_one("#details", Static)
        details.styles.display = "block" if self._details_visible else "none"


def main() -> None:
    """Entry point for the npmgraph TUI."""
    start = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    DepGraphApp(start_path=start).run()


if __name__ == "__main__":
    main()
