"""Public API: use npmgraph from Python or from other tools."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from pathlib import Path

from npmgraph.config import Settings
from npmgraph.core.graph import DEFAULT_MAX_DEPTH, DEFAULT_MAX_NODES
from npmgraph.core.manifest import Manifest, find_manifest_folder, read_manifest
from npmgraph.core.registry import PackageDescriptor
from npmgraph.core.service import (
    BuildStatus,
    EventCallback,
    GraphResult,
    GraphService,
)

__all__ = [
    "BuildStatus",
    "GraphResult",
    "build_graph",
    "clear_cache",
    "get_default_service",
    "get_package_info",
    "load_manifest",
]

_default_service: GraphService | None = None
_default_lock = threading.Lock()


def get_default_service() -> GraphService:
    """
    Process-wide GraphService built from NPMGRAPH_* environment settings.

    Created on first use, so the registry cache is shared by every call made
    through this module.
    """
    global _default_service
    with _default_lock:
        if _default_service is None:
            _default_service = GraphService(Settings())
        return _default_service


def build_graph(
    seed_names: Iterable[str],
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_nodes: int = DEFAULT_MAX_NODES,
    *,
    cancel_event: threading.Event | None = None,
    clear_cache: bool = False,
    on_event: EventCallback | None = None,
) -> GraphResult:
    """
    Build the dependency graph of one or more npm packages.

    Args:
        seed_names: Package names to start from (e.g. ["express", "@types/node"]).
        max_depth: Deepest level to expand; 0 = seeds only.
        max_nodes: Hard ceiling on the number of nodes.
        cancel_event: Optional threading.Event; set it to stop the build.
        clear_cache: If True, drop cached registry responses first.
        on_event: Optional callback receiving BuildEvent notifications.

    Returns:
        GraphResult with the status (completed/stopped/timed_out/errored)
        and the graph accumulated.
    """
    return get_default_service().build_graph(
        seed_names,
        max_depth,
        max_nodes,
        cancel_event=cancel_event,
        clear_cache=clear_cache,
        on_event=on_event,
    )


def clear_cache() -> None:
    """Invalidate every cached registry response."""
    get_default_service().clear_cache()


def get_package_info(package_name: str) -> PackageDescriptor | None:
    """
    Get registry metadata for one package: latest version and its dependencies.

    Returns None if the registry has no such package or cannot be reached.
    """
    return get_default_service().get_package_info(package_name)


def load_manifest(start: Path | None = None) -> Manifest | None:
    """
    Read the package.json nearest to ``start`` (default: current directory).

    Returns None if no package.json is found or it cannot be parsed.
    """
    folder = find_manifest_folder(start if start is not None else Path.cwd())
    if folder is None:
        return None
    return read_manifest(folder)
