"""Tests for assembler.graph module."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import CycleDetected, DuplicateName
from assembler.graph import DependencyEdge, DependencyGraph


def _graph(*names):
    """Helper to build a graph of string nodes."""
    graph = DependencyGraph()
    for name in names:
        graph.add_node(name)
    return graph


class TestAddNode:
    """Tests for node registration."""

    def test_add_and_get(self):
        graph = _graph('a', 'b')
        assert len(graph) == 2
        assert 'a' in graph
        assert graph.get_node('b') == 'b'

    def test_duplicate_raises(self):
        graph = _graph('a')
        with pytest.raises(DuplicateName):
            graph.add_node('a')
        assert len(graph) == 1

    def test_unknown_node_raises_key_error(self):
        with pytest.raises(KeyError):
            _graph().get_node('missing')


class TestLink:
    """Tests for edge creation and cycle rejection."""

    def test_link_returns_edge(self):
        graph = _graph('a', 'b')
        edge = graph.link('a', 'b')
        assert isinstance(edge, DependencyEdge)
        assert edge.source == 'a'
        assert edge.target == 'b'
        assert 'a -> b' in repr(edge)

    def test_relink_is_noop(self):
        graph = _graph('a', 'b')
        graph.link('a', 'b')
        assert graph.link('a', 'b') is None
        assert len(graph.edges) == 1

    def test_edges_listed_in_link_order(self):
        graph = _graph('a', 'b', 'c')
        graph.link('b', 'c')
        graph.link('a', 'b')
        graph.link('a', 'c')
        assert [(e.source, e.target) for e in graph.edges] == [('b', 'c'), ('a', 'b'), ('a', 'c')]

    def test_unknown_endpoint_raises(self):
        graph = _graph('a')
        with pytest.raises(KeyError):
            graph.link('a', 'ghost')

    def test_self_loop_rejected(self):
        graph = _graph('a')
        with pytest.raises(CycleDetected):
            graph.link('a', 'a')
        assert graph.edges == []

    def test_cycle_rejected_and_graph_unchanged(self):
        graph = _graph('c', 'a', 'b')
        graph.link('c', 'a')
        graph.link('a', 'b')

        with pytest.raises(CycleDetected) as exc_info:
            graph.link('b', 'c')

        assert exc_info.value.path == ['c', 'a', 'b', 'c']
        assert [(e.source, e.target) for e in graph.edges] == [('c', 'a'), ('a', 'b')]
        assert [n for n in graph.create_order()] == ['c', 'a', 'b']

    def test_diamond_is_allowed(self):
        graph = _graph('top', 'left', 'right', 'bottom')
        graph.link('top', 'left')
        graph.link('top', 'right')
        graph.link('left', 'bottom')
        graph.link('right', 'bottom')
        assert len(graph.edges) == 4


class TestTraversal:
    """Tests for neighbours, ancestors and descendants."""

    @pytest.fixture
    def chain(self):
        graph = _graph('vpc', 'cluster', 'app', 'svc', 'db')
        graph.link('vpc', 'cluster')
        graph.link('cluster', 'app')
        graph.link('app', 'svc')
        graph.link('vpc', 'db')
        return graph

    def test_predecessors_and_successors(self, chain):
        assert chain.predecessors('cluster') == ['vpc']
        assert chain.successors('vpc') == ['cluster', 'db']

    def test_descendants(self, chain):
        assert chain.descendants('cluster') == ['app', 'svc']
        assert chain.descendants('svc') == []

    def test_ancestors(self, chain):
        assert chain.ancestors('svc') == ['app', 'cluster', 'vpc']

    def test_find_path(self, chain):
        assert chain.find_path('vpc', 'svc') == ['vpc', 'cluster', 'app', 'svc']
        assert chain.find_path('db', 'svc') is None


class TestOrdering:
    """Tests for create and destroy orderings."""

    def test_declaration_order_without_edges(self):
        graph = _graph('x', 'y', 'z')
        assert graph.create_order() == ['x', 'y', 'z']

    def test_dependencies_first(self):
        graph = _graph('workload', 'db', 'vpc')
        graph.link('vpc', 'db')
        graph.link('db', 'workload')
        assert graph.create_order() == ['vpc', 'db', 'workload']

    def test_stable_among_ready_nodes(self):
        graph = _graph('a', 'b', 'c', 'd')
        graph.link('c', 'b')
        # a and c are ready first; b is released by c; d was ready from the start
        assert graph.create_order() == ['a', 'c', 'b', 'd']

    def test_every_edge_respected(self):
        graph = _graph('n1', 'n2', 'n3', 'n4', 'n5')
        graph.link('n5', 'n1')
        graph.link('n4', 'n2')
        graph.link('n1', 'n3')
        graph.link('n2', 'n3')
        order = graph.create_order()
        position = {name: i for i, name in enumerate(order)}
        for edge in graph.edges:
            assert position[edge.source] < position[edge.target]

    def test_destroy_is_reverse_of_create(self):
        graph = _graph('vpc', 'cluster', 'app')
        graph.link('vpc', 'cluster')
        graph.link('cluster', 'app')
        assert graph.destroy_order() == ['app', 'cluster', 'vpc']

    def test_named_objects_as_nodes(self):
        class Node:
            def __init__(self, name):
                self.name = name

        graph = DependencyGraph()
        a, b = graph.add_node(Node('a')), graph.add_node(Node('b'))
        graph.link(b, a)
        assert [n.name for n in graph.create_order()] == ['b', 'a']
