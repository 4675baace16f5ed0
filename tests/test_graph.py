"""Tests for graph walking helpers."""

import pytest

from models.nodes import WorkflowEdge
from services.execution.exceptions import InvalidWorkflowError
from services.execution.graph import WorkflowGraph, branch_allows, find_edge

from conftest import edge, node


def _graph():
    nodes = [node("t", "manual", "trigger"), node("a", "email"), node("b", "slack"), node("c", "database")]
    edges = [edge("t", "b"), edge("t", "a"), edge("a", "c")]
    return WorkflowGraph.build(1, nodes, edges)


def test_start_nodes_have_no_incoming_edges():
    """Only nodes that are never an edge target start the run"""
    assert [n.id for n in _graph().start_nodes()] == ["t"]


def test_children_follow_edge_declaration_order():
    """Children come back in the order their edges were declared"""
    children = _graph().children("t")
    assert [child.id for child, _ in children] == ["b", "a"]
    assert [e.target for _, e in children] == ["b", "a"]


def test_leaf_has_no_children():
    assert _graph().children("c") == []


def test_edges_to_unknown_nodes_are_ignored():
    """Dangling edges do not produce children"""
    graph = WorkflowGraph.build(1, [node("a", "email")], [edge("a", "ghost")])
    assert graph.children("a") == []


def test_editor_shape_nodes_are_flattened():
    """Nodes nested under data validate into the flat shape"""
    graph = WorkflowGraph.build(1, [{
        "id": "n1",
        "type": "trigger",
        "data": {"subtype": "schedule", "label": "Every 5", "config": {"interval": 5}},
    }], [])
    built = graph.get_node("n1")
    assert built.subtype == "schedule"
    assert built.name == "Every 5"
    assert built.config == {"interval": 5}


def test_branch_allows():
    """Labeled edges gate on the boolean condition result"""
    true_edge = WorkflowEdge(source="c", target="a", label="True")
    false_edge = WorkflowEdge(source="c", target="b", label="False")
    plain_edge = WorkflowEdge(source="c", target="d")

    assert branch_allows(true_edge, {"conditionResult": True})
    assert not branch_allows(true_edge, {"conditionResult": False})
    assert branch_allows(false_edge, {"conditionResult": False})
    assert not branch_allows(false_edge, {"conditionResult": None})
    assert not branch_allows(true_edge, {"success": True})
    assert branch_allows(plain_edge, {"conditionResult": False})
    assert branch_allows(None, {})


def test_find_edge():
    edges = [WorkflowEdge(id="e1", source="a", target="b")]
    assert find_edge(edges, "a", "b").id == "e1"
    assert find_edge(edges, "b", "a") is None


def _reachable_from_start(graph):
    seen = set()
    pending = [n.id for n in graph.start_nodes()]
    while pending:
        node_id = pending.pop()
        if node_id in seen:
            continue
        seen.add(node_id)
        pending.extend(child.id for child, _ in graph.children(node_id))
    return seen


@pytest.mark.parametrize("ids,edges", [
    ("tabc", [edge("t", "b"), edge("t", "a"), edge("a", "c")]),
    ("sabc", [edge("s", "a"), edge("s", "b"), edge("a", "c"), edge("b", "c")]),
    ("xyz", [edge("x", "z"), edge("y", "z")]),
    ("pqr", [edge("p", "q"), edge("q", "r"), edge("r", "q")]),
    ("solo", [edge("s", "o"), edge("o", "l"), edge("s", "l")]),
])
def test_start_nodes_reach_every_node(ids, edges):
    """Start nodes plus everything reachable from them cover a connected workflow"""
    graph = WorkflowGraph.build(1, [node(node_id, "action") for node_id in dict.fromkeys(ids)], edges)
    assert _reachable_from_start(graph) == {n.id for n in graph.nodes}


def test_invalid_stored_nodes_raise_structure_error():
    with pytest.raises(InvalidWorkflowError, match="Invalid workflow 7"):
        WorkflowGraph.build(7, [{"type": "action", "subtype": "email"}], [])
    with pytest.raises(InvalidWorkflowError):
        WorkflowGraph.build(7, [node("a", "email")], [{"source": "a"}])
