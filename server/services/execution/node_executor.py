"""Node Executor - node execution, control flow and error policies.

Walks a node's subtree depth-first from an explicit work-list instead of
native recursion. Every frame carries the ids of its ancestors so a node that
reappears on its own path fails fast with CycleDetectedError.

Dispatch uses a registry: control-flow subtypes (condition, loop) have
handlers here, trigger nodes record what fired them, and everything else
goes to the integration invoker. Unknown subtypes pass data through.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from pydantic import ValidationError

from core.logging import get_logger
from constants import (
    DEFAULT_LOOP_COLLECTION_PATH,
    DEFAULT_LOOP_COUNT,
    DEFAULT_MAX_ITERATIONS,
    ERROR_HANDLING_CONTINUE,
    ERROR_HANDLING_RETRY,
    LOOP_TYPES,
    NODE_CATEGORY_TRIGGER,
    RETRY_COUNT_KEY,
)
from models.database import NodeExecution, WorkflowExecution
from models.nodes import WorkflowNode, validate_node_config
from .conditions import evaluate_expression, get_nested_value
from .exceptions import CycleDetectedError, WorkflowStructureError
from .graph import WorkflowGraph, branch_allows
from .interpolation import resolve_config
from .models import NodeStatus, RetryPolicy
from .triggers import as_positive_int, build_trigger_output

if TYPE_CHECKING:
    from services.integrations import IntegrationInvoker
    from services.trace_store import TraceStore

logger = get_logger(__name__)

ControlHandler = Callable[
    [WorkflowGraph, WorkflowExecution, WorkflowNode, Dict[str, Any], Tuple[str, ...]],
    Awaitable[Dict[str, Any]],
]


@dataclass
class _Frame:
    """Pending node on the work-list."""
    node: WorkflowNode
    data: Dict[str, Any]
    path: Tuple[str, ...] = ()


@dataclass
class NodeOutcome:
    """Data a node hands on, and the children to walk with it."""
    data: Dict[str, Any]
    children: List[WorkflowNode] = field(default_factory=list)


def with_retry_count(data: Dict[str, Any], node_id: str, count: int) -> Dict[str, Any]:
    retry_counts = {**data.get(RETRY_COUNT_KEY, {}), node_id: count}
    return {**data, RETRY_COUNT_KEY: retry_counts}


class NodeExecutor:
    """Executes nodes against a trace store and an integration invoker."""

    def __init__(
        self,
        store: "TraceStore",
        invoker: "IntegrationInvoker",
        retry_policy: Optional[RetryPolicy] = None,
        default_max_iterations: int = DEFAULT_MAX_ITERATIONS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.invoker = invoker
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_max_iterations = default_max_iterations
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handlers = self._build_handler_registry()

    def _build_handler_registry(self) -> Dict[str, ControlHandler]:
        """Control-flow handlers keyed by subtype."""
        return {
            'condition': self._handle_condition,
            'loop': self._handle_loop,
        }

    def register_handler(self, subtype: str, handler: ControlHandler) -> None:
        self._handlers[subtype] = handler

    # =========================================================================
    # TRAVERSAL
    # =========================================================================

    async def execute_node(
        self,
        graph: WorkflowGraph,
        execution: WorkflowExecution,
        node: WorkflowNode,
        data: Dict[str, Any],
        path: Tuple[str, ...] = (),
    ) -> Dict[str, Any]:
        """Execute a node and all of its descendants, depth-first.

        Args:
            graph: Snapshot of the workflow being executed
            execution: Execution record that owns the node records
            node: Node to start from
            data: Data context at node entry
            path: Ancestor node ids (set by loops running their body)

        Returns:
            The data context after the subtree: data plus the output of every
            node that ran, keyed by node id. A node reached on several paths
            keeps its last output. Data is returned unchanged if the node was
            skipped, continued past or exhausted its retries.

        Raises:
            CycleDetectedError: If a node is reached again along its own path
            Exception: The node's error when its policy is abort
        """
        stack: List[_Frame] = [_Frame(node, data, tuple(path))]
        context: Optional[Dict[str, Any]] = None

        while stack:
            frame = stack.pop()
            if frame.node.id in frame.path:
                raise CycleDetectedError(frame.node.id, frame.path)

            outcome = await self._run_node(graph, execution, frame.node, frame.data, frame.path)
            # Each child sees only its ancestors' outputs; the result collects all of them
            context = outcome.data if context is None else {**context, **outcome.data}

            child_path = frame.path + (frame.node.id,)
            for child in reversed(outcome.children):
                stack.append(_Frame(child, outcome.data, child_path))

        return context

    # =========================================================================
    # SINGLE NODE
    # =========================================================================

    async def _run_node(
        self,
        graph: WorkflowGraph,
        execution: WorkflowExecution,
        node: WorkflowNode,
        data: Dict[str, Any],
        path: Tuple[str, ...],
    ) -> NodeOutcome:
        """Run one node with its error policy. Does not walk children."""
        if node.skip_execution:
            logger.debug("Skipping node", node_id=node.id)
            return NodeOutcome(data)

        self._check_config(node)
        policy = node.error_handling
        attempt_data = data
        attempt = 0

        while True:
            record = await self.store.create_node_execution(NodeExecution(
                execution_id=execution.id,
                node_id=node.id,
                node_name=node.name,
                status=NodeStatus.RUNNING.value,
                started_at=self._clock(),
                input=dict(attempt_data),
            ))
            start_time = time.monotonic()
            logger.info("Executing node", node_id=node.id, subtype=node.subtype, attempt=attempt)

            try:
                output = await self._dispatch(graph, execution, node, attempt_data, path)

            except WorkflowStructureError as e:
                await self._finish(record, NodeStatus.FAILED, start_time, error=str(e))
                raise

            except Exception as e:
                retrying = policy == ERROR_HANDLING_RETRY and self.retry_policy.should_retry(attempt + 1)
                exhausted = policy == ERROR_HANDLING_RETRY and not retrying
                status = NodeStatus.RETRY_EXHAUSTED if exhausted else NodeStatus.FAILED
                await self._finish(record, status, start_time, error=str(e))

                if retrying:
                    attempt += 1
                    delay = self.retry_policy.calculate_delay(attempt)
                    logger.warning("Node failed, retrying", node_id=node.id, attempt=attempt,
                                   delay_seconds=delay, error=str(e))
                    await asyncio.sleep(delay)
                    attempt_data = with_retry_count(attempt_data, node.id, attempt)
                    continue

                if exhausted:
                    logger.error("Node retries exhausted, continuing", node_id=node.id,
                                 attempts=attempt + 1, error=str(e))
                    return NodeOutcome(data)

                if policy == ERROR_HANDLING_CONTINUE:
                    logger.warning("Node failed, continuing", node_id=node.id, error=str(e))
                    return NodeOutcome(data)

                logger.error("Node failed, aborting", node_id=node.id, error=str(e))
                raise

            await self._finish(record, NodeStatus.COMPLETED, start_time, output=output)
            updated_data = {**attempt_data, node.id: output}

            # A loop's children are its body and already ran per iteration
            if node.subtype == 'loop':
                return NodeOutcome(updated_data)

            children = [child for child, edge in graph.children(node.id)
                        if branch_allows(edge, output)]
            return NodeOutcome(updated_data, children)

    async def _dispatch(self, graph, execution, node, data, path) -> Dict[str, Any]:
        """Dispatch to a control handler, trigger output or integration."""
        handler = self._handlers.get(node.subtype)
        if handler:
            return await handler(graph, execution, node, data, path)

        if node.type == NODE_CATEGORY_TRIGGER:
            return build_trigger_output(node.subtype, node.config, data, self._clock())

        if self.invoker.supports(node.subtype):
            config = resolve_config(node.config, data)
            result = await self.invoker.invoke(node.subtype, config, data)
            return result if isinstance(result, dict) else {"success": True, "result": result}

        logger.warning("Unknown node subtype, passing data through",
                       node_id=node.id, subtype=node.subtype)
        return dict(data)

    async def _finish(self, record: NodeExecution, status: NodeStatus, start_time: float,
                      output: Optional[Dict[str, Any]] = None, error: Optional[str] = None) -> None:
        """Finalize a node record, addressed by its own id."""
        fields: Dict[str, Any] = {
            "status": status.value,
            "completed_at": self._clock(),
            "duration": int(round((time.monotonic() - start_time) * 1000)),
        }
        if output is not None:
            fields["output"] = output
        if error is not None:
            fields["error"] = error
        await self.store.update_node_execution(record.id, **fields)

    def _check_config(self, node: WorkflowNode) -> None:
        try:
            validate_node_config(node.subtype, node.config)
        except ValidationError as e:
            logger.warning("Node config validation warning", node_id=node.id,
                           subtype=node.subtype, errors=str(e))

    # =========================================================================
    # CONTROL FLOW
    # =========================================================================

    async def _handle_condition(self, graph, execution, node, data, path) -> Dict[str, Any]:
        condition = node.config.get('condition')
        if not condition:
            return {"conditionResult": False, "error": "No condition specified"}
        return {"conditionResult": evaluate_expression(condition, data)}

    async def _handle_loop(self, graph, execution, node, data, path) -> Dict[str, Any]:
        """Run the loop body (all children) once per iteration.

        collection: one iteration per item, data gets currentItem and index
        count: fixed number of iterations, data gets index
        while: iterate while whileCondition holds, threading body results
        """
        config = node.config
        loop_type = config.get('loopType') or 'collection'
        if loop_type not in LOOP_TYPES:
            return {"iterations": 0, "results": [], "error": f"Unsupported loop type: {loop_type}"}

        max_iterations = as_positive_int(config.get('maxIterations'), self.default_max_iterations)
        body = [child for child, _ in graph.children(node.id)]
        body_path = path + (node.id,)
        results: List[Dict[str, Any]] = []

        async def run_body(iteration_data: Dict[str, Any]) -> List[Dict[str, Any]]:
            return [await self.execute_node(graph, execution, child, iteration_data, body_path)
                    for child in body]

        if loop_type == 'collection':
            collection_path = config.get('collection') or DEFAULT_LOOP_COLLECTION_PATH
            collection = get_nested_value(data, collection_path)
            if not isinstance(collection, list):
                logger.warning("Loop collection is not a list", node_id=node.id, path=collection_path)
                return {"iterations": 0, "results": [], "error": "Collection not found or not an array"}

            iterations = min(len(collection), max_iterations)
            for index in range(iterations):
                results.extend(await run_body({**data, "currentItem": collection[index], "index": index}))
            return {"iterations": iterations, "results": results}

        if loop_type == 'count':
            iterations = min(as_positive_int(config.get('count'), DEFAULT_LOOP_COUNT), max_iterations)
            for index in range(iterations):
                results.extend(await run_body({**data, "index": index}))
            return {"iterations": iterations, "results": results}

        condition = config.get('whileCondition')
        if not condition:
            return {"iterations": 0, "results": [], "error": "No while condition specified"}

        current = dict(data)
        iterations = 0
        while iterations < max_iterations and evaluate_expression(condition, current):
            iterations += 1
            current = {**current, "index": iterations - 1}
            for child in body:
                result = await self.execute_node(graph, execution, child, current, body_path)
                results.append(result)
                current = {**current, **result}

        if iterations == max_iterations and evaluate_expression(condition, current):
            logger.warning("While loop reached iteration cap", node_id=node.id,
                           max_iterations=max_iterations)
        return {"iterations": iterations, "results": results}
