"""npmgraph: explore npm package dependency graphs (library, TUI, CLI)."""

from importlib.metadata import version, PackageNotFoundError

from npmgraph.api import (
    build_graph,
    clear_cache,
    get_package_info,
    load_manifest,
    BuildStatus,
    GraphResult,
)

__all__ = [
    "build_graph",
    "clear_cache",
    "get_package_info",
    "load_manifest",
    "BuildStatus",
    "GraphResult",
    "__version__",
]

try:
    __version__ = version("npmgraph")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"  # Not installed as package
