"""Tests for TUI utility functions (non-interactive parts)."""

from __future__ import annotations

from npmgraph.core.graph import GraphData, GraphEdge, GraphNode
from npmgraph.core.service import GraphService
from npmgraph.tui.app import (
    DepGraphApp,
    GraphTreeItem,
    _count_nodes,
    _graph_to_tree,
    _item_label,
    _node_stats,
)

from conftest import FakeRegistry


def _node(name: str, level: int = 0, version: str = "1.0.0") -> GraphNode:
    return GraphNode(f"{name}@{version}", name, version, level)


def _graph(edges: list[tuple[str, str]], roots: tuple[str, ...] = ("a",)) -> GraphData:
    names = list(dict.fromkeys([*roots, *(n for e in edges for n in e)]))
    return GraphData(
        nodes=[_node(n, 0 if n in roots else 1) for n in names],
        edges=[GraphEdge(f"{a}@1.0.0", f"{b}@1.0.0") for a, b in edges],
    )


def _names(item: GraphTreeItem) -> list[str]:
    return [c.node.label for c in item.children]


class TestGraphToTree:
    """Tests for _graph_to_tree."""

    def test_single_root(self) -> None:
        trees = _graph_to_tree(_graph([]))
        assert len(trees) == 1
        assert trees[0].name == "a@1.0.0"
        assert trees[0].children == []

    def test_one_tree_per_seed(self) -> None:
        trees = _graph_to_tree(_graph([("a", "c"), ("b", "c")], roots=("a", "b")))
        assert [t.node.label for t in trees] == ["a", "b"]
        assert _names(trees[0]) == ["c"]
        assert _names(trees[1]) == ["c"]

    def test_cycle_is_marked(self) -> None:
        trees = _graph_to_tree(_graph([("a", "b"), ("b", "a")]))
        b = trees[0].children[0]
        assert b.node.label == "b"
        back = b.children[0]
        assert back.node.label == "a"
        assert back.marker == "(cycle)"
        assert back.children == []

    def test_repeated_subtree_is_marked(self) -> None:
        trees = _graph_to_tree(_graph([("a", "b"), ("a", "c"), ("b", "d"), ("c", "d"), ("d", "e")]))
        b, c = trees[0].children
        assert _names(b.children[0]) == ["e"]
        repeated = c.children[0]
        assert repeated.node.label == "d"
        assert repeated.marker == "(*)"
        assert repeated.children == []

    def test_leaf_repeats_are_not_marked(self) -> None:
        trees = _graph_to_tree(_graph([("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")]))
        b, c = trees[0].children
        assert b.children[0].marker == ""
        assert c.children[0].marker == ""

    def test_empty_graph(self) -> None:
        assert _graph_to_tree(GraphData()) == []


class TestItemLabel:
    """Tests for _item_label."""

    def test_plain(self) -> None:
        label = _item_label(GraphTreeItem(_node("left-pad", version="1.3.0")))
        assert "left-pad" in label
        assert "v1.3.0" in label

    def test_marker(self) -> None:
        label = _item_label(GraphTreeItem(_node("a"), marker="(cycle)"))
        assert "(cycle)" in label


class MockNode:
    """Mock node for testing utility functions."""

    def __init__(self, name: str, children: list | None = None) -> None:
        self.name = name
        self.children = children or []


class TestCountNodes:
    """Tests for _count_nodes helper."""

    def test_single_node(self) -> None:
        assert _count_nodes(MockNode("root")) == 1

    def test_nested_children(self) -> None:
        node = MockNode(
            "root",
            children=[
                MockNode("child", children=[MockNode("grandchild1"), MockNode("grandchild2")]),
                MockNode("sibling"),
            ],
        )
        assert _count_nodes(node) == 5

    def test_graph_tree(self) -> None:
        trees = _graph_to_tree(_graph([("a", "b"), ("a", "c"), ("b", "d"), ("c", "d"), ("d", "e")]))
        # a, b, d, e, c, d(*)
        assert _count_nodes(trees[0]) == 6


class TestNodeStats:
    """Tests for _node_stats helper."""

    def test_leaf_node(self) -> None:
        assert _node_stats(MockNode("leaf")) == (0, 0, 0)

    def test_deep_tree(self) -> None:
        node = MockNode("level0")
        current = node
        for i in range(1, 5):
            child = MockNode(f"level{i}")
            current.children = [child]
            current = child
        assert _node_stats(node) == (1, 4, 4)

    def test_graph_tree(self) -> None:
        trees = _graph_to_tree(_graph([("a", "b"), ("a", "c"), ("b", "d")]))
        assert _node_stats(trees[0]) == (2, 3, 2)


class TestDepGraphApp:
    """Construction without running the app."""

    def test_injected_service(self) -> None:
        service = GraphService(client=FakeRegistry({}))
        app = DepGraphApp(service=service)
        assert app.service is service
