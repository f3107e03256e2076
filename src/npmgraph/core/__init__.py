"""Core library: registry client, response cache, graph builder, manifest reading, unused dependency scan."""

from npmgraph.core.cache import ResponseCache
from npmgraph.core.graph import (
    GraphBuilder,
    GraphData,
    GraphEdge,
    GraphNode,
    build_dependency_graph,
)
from npmgraph.core.manifest import Manifest, ManifestPackage, default_seed_names, read_manifest
from npmgraph.core.registry import PackageDescriptor, RegistryClient
from npmgraph.core.unused import UnusedReport, find_unused_dependencies

__all__ = [
    "ResponseCache",
    "GraphBuilder",
    "GraphData",
    "GraphEdge",
    "GraphNode",
    "build_dependency_graph",
    "Manifest",
    "ManifestPackage",
    "default_seed_names",
    "read_manifest",
    "PackageDescriptor",
    "RegistryClient",
    "UnusedReport",
    "find_unused_dependencies",
]
