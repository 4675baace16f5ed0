"""Execution engine package.

Workflow execution with:
- Depth-first node traversal from an explicit work-list with cycle detection
- Condition and loop control flow, True/False branch gating
- Per-node error policies (abort, continue, retry with linear backoff)
- Template interpolation and a restricted condition-expression evaluator
"""

from .models import (
    ExecutionStatus,
    NodeStatus,
    WorkflowState,
    RetryPolicy,
)
from .exceptions import (
    WorkflowEngineError,
    WorkflowStructureError,
    NoStartNodesError,
    InvalidWorkflowError,
    CycleDetectedError,
    WorkflowNotFoundError,
    ScheduleRegistrationError,
    IntegrationError,
    IntegrationNotFoundError,
)
from .interpolation import (
    MISSING,
    interpolate,
    resolve_config,
    resolve_path,
)
from .conditions import (
    evaluate_expression,
    get_nested_value,
)
from .graph import (
    WorkflowGraph,
    branch_allows,
    find_child_nodes,
    find_edge,
    find_start_nodes,
)
from .triggers import (
    build_trigger_output,
    calculate_next_run,
    describe_schedule,
)
from .node_executor import NodeExecutor
from .workflow_executor import WorkflowExecutor

__all__ = [
    # Models
    "ExecutionStatus",
    "NodeStatus",
    "WorkflowState",
    "RetryPolicy",
    # Exceptions
    "WorkflowEngineError",
    "WorkflowStructureError",
    "NoStartNodesError",
    "InvalidWorkflowError",
    "CycleDetectedError",
    "WorkflowNotFoundError",
    "ScheduleRegistrationError",
    "IntegrationError",
    "IntegrationNotFoundError",
    # Interpolation
    "MISSING",
    "interpolate",
    "resolve_config",
    "resolve_path",
    # Conditions
    "evaluate_expression",
    "get_nested_value",
    # Graph
    "WorkflowGraph",
    "branch_allows",
    "find_child_nodes",
    "find_edge",
    "find_start_nodes",
    # Triggers
    "build_trigger_output",
    "calculate_next_run",
    "describe_schedule",
    # Executors
    "NodeExecutor",
    "WorkflowExecutor",
]
