"""Execution engine exception hierarchy."""

from typing import Sequence


class WorkflowEngineError(Exception):
    """Base exception for all engine errors."""


class WorkflowStructureError(WorkflowEngineError):
    """The workflow graph cannot be executed as defined.

    Structural errors fail the execution regardless of node error policies.
    """


class NoStartNodesError(WorkflowStructureError):
    """No node without incoming edges."""

    def __init__(self, message: str = "No start nodes found in workflow"):
        super().__init__(message)


class InvalidWorkflowError(WorkflowStructureError):
    """Stored nodes or edges do not validate."""


class CycleDetectedError(WorkflowStructureError):
    """A node was reached again along its own execution path."""

    def __init__(self, node_id: str, path: Sequence[str]):
        self.node_id = node_id
        self.path = list(path)
        cycle = " -> ".join([*self.path, node_id])
        super().__init__(f"Cycle detected at node {node_id}: {cycle}")


class WorkflowNotFoundError(WorkflowEngineError):
    """Requested workflow does not exist."""

    def __init__(self, workflow_id):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class ScheduleRegistrationError(WorkflowEngineError):
    """A timer could not be registered (bad cron expression, past date)."""


class IntegrationError(WorkflowEngineError):
    """An integration call failed."""


class IntegrationNotFoundError(IntegrationError):
    """No handler registered for a subtype."""

    def __init__(self, subtype: str):
        self.subtype = subtype
        super().__init__(f"No integration registered for subtype: {subtype}")
