"""Graph walking over workflow nodes and edges.

Pure functions with no engine state. WorkflowGraph is the immutable
snapshot an execution runs against, so edits to the stored workflow during
a run do not affect it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from models.nodes import WorkflowEdge, WorkflowNode
from .exceptions import InvalidWorkflowError

BRANCH_TRUE = "True"
BRANCH_FALSE = "False"


def find_start_nodes(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> List[WorkflowNode]:
    """Nodes with no incoming edges, in node order."""
    targets = {edge.target for edge in edges}
    return [node for node in nodes if node.id not in targets]


def find_child_nodes(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge],
                     node_id: str) -> List[WorkflowNode]:
    """Targets of edges leaving node_id, in edge-declaration order."""
    by_id = {node.id: node for node in nodes}
    return [by_id[edge.target] for edge in edges
            if edge.source == node_id and edge.target in by_id]


def find_edge(edges: Iterable[WorkflowEdge], source: str, target: str) -> Optional[WorkflowEdge]:
    """First edge connecting source to target."""
    for edge in edges:
        if edge.source == source and edge.target == target:
            return edge
    return None


def branch_allows(edge: Optional[WorkflowEdge], output: Any) -> bool:
    """Whether a child behind this edge runs for the parent's output.

    Unlabeled edges always run. "True" and "False" labels require the
    parent's conditionResult to be exactly that boolean.
    """
    if edge is None or not edge.label:
        return True
    condition_result = output.get("conditionResult") if isinstance(output, dict) else None
    if edge.label == BRANCH_TRUE:
        return condition_result is True
    if edge.label == BRANCH_FALSE:
        return condition_result is False
    return True


@dataclass(frozen=True)
class WorkflowGraph:
    """Snapshot of a workflow's nodes and edges with a child index."""

    workflow_id: Any
    nodes: Tuple[WorkflowNode, ...]
    edges: Tuple[WorkflowEdge, ...]
    _children: Dict[str, Tuple[Tuple[WorkflowNode, WorkflowEdge], ...]] = field(
        default_factory=dict, repr=False, compare=False)

    @classmethod
    def build(cls, workflow_id: Any, nodes: Iterable[Dict[str, Any]],
              edges: Iterable[Dict[str, Any]]) -> "WorkflowGraph":
        """Validate raw node/edge dicts and index children.

        Raises:
            InvalidWorkflowError: If a node or edge does not validate
        """
        try:
            node_models = tuple(
                node if isinstance(node, WorkflowNode) else WorkflowNode.model_validate(node)
                for node in nodes or []
            )
            edge_models = tuple(
                edge if isinstance(edge, WorkflowEdge) else WorkflowEdge.model_validate(edge)
                for edge in edges or []
            )
        except ValidationError as e:
            raise InvalidWorkflowError(f"Invalid workflow {workflow_id}: {e}") from e

        by_id = {node.id: node for node in node_models}
        children: Dict[str, List[Tuple[WorkflowNode, WorkflowEdge]]] = {}
        for edge in edge_models:
            if edge.target in by_id:
                children.setdefault(edge.source, []).append((by_id[edge.target], edge))
        return cls(
            workflow_id=workflow_id,
            nodes=node_models,
            edges=edge_models,
            _children={key: tuple(value) for key, value in children.items()},
        )

    @classmethod
    def from_workflow(cls, workflow) -> "WorkflowGraph":
        return cls.build(workflow.id, workflow.nodes, workflow.edges)

    def start_nodes(self) -> List[WorkflowNode]:
        return find_start_nodes(self.nodes, self.edges)

    def children(self, node_id: str) -> List[Tuple[WorkflowNode, WorkflowEdge]]:
        """(child, connecting edge) pairs in edge-declaration order."""
        return list(self._children.get(node_id, ()))

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None
