"""Centralized node type and engine constants.

Node subtypes are grouped into frozensets so membership checks stay O(1) and
the groupings can be shared by the executor, the scheduler and validation.
"""

from typing import FrozenSet

# =============================================================================
# NODE CATEGORIES
# =============================================================================

NODE_CATEGORY_TRIGGER = "trigger"
NODE_CATEGORY_LOGIC = "logic"
NODE_CATEGORY_ACTION = "action"

NODE_CATEGORIES: FrozenSet[str] = frozenset([
    NODE_CATEGORY_TRIGGER,
    NODE_CATEGORY_LOGIC,
    NODE_CATEGORY_ACTION,
])

# =============================================================================
# NODE SUBTYPES
# =============================================================================

# Subtypes that start a workflow
TRIGGER_SUBTYPES: FrozenSet[str] = frozenset([
    'webhook',
    'schedule',
    'manual',
    'api',
])

# Control-flow subtypes handled inside the node executor
CONTROL_SUBTYPES: FrozenSet[str] = frozenset([
    'condition',
    'loop',
])

# Side-effecting subtypes dispatched to the integration invoker
INTEGRATION_SUBTYPES: FrozenSet[str] = frozenset([
    'email',
    'webhook',
    'database',
    'slack',
])

SCHEDULE_SUBTYPE = "schedule"

# =============================================================================
# NODE CONFIG
# =============================================================================

ERROR_HANDLING_ABORT = "abort"
ERROR_HANDLING_CONTINUE = "continue"
ERROR_HANDLING_RETRY = "retry"

ERROR_HANDLING_POLICIES: FrozenSet[str] = frozenset([
    ERROR_HANDLING_ABORT,
    ERROR_HANDLING_CONTINUE,
    ERROR_HANDLING_RETRY,
])

# Reserved key in the data context tracking retry attempts per node id
RETRY_COUNT_KEY = "_retryCount"

LOOP_TYPES: FrozenSet[str] = frozenset(['collection', 'count', 'while'])
DEFAULT_LOOP_COLLECTION_PATH = "data.items"
DEFAULT_LOOP_COUNT = 5
DEFAULT_MAX_ITERATIONS = 100

# =============================================================================
# SCHEDULING
# =============================================================================

SCHEDULE_TYPES: FrozenSet[str] = frozenset(['interval', 'cron', 'fixed'])
INTERVAL_UNITS: FrozenSet[str] = frozenset(['seconds', 'minutes', 'hours', 'days'])

# Applied when a schedule trigger leaves these keys unset
DEFAULT_SCHEDULE_TYPE = "interval"
DEFAULT_SCHEDULE_INTERVAL = 5
DEFAULT_INTERVAL_UNIT = "minutes"

SCHEDULER_SOURCE = "scheduler"
SCHEDULER_TICK_JOB_ID = "schedule_manager_tick"


def schedule_job_key(workflow_id, node_id: str) -> str:
    """Job identity for a schedule trigger node."""
    return f"workflow_{workflow_id}_node_{node_id}"


def is_schedule_trigger(node_type: str, subtype: str) -> bool:
    """Check if a node is a schedule trigger."""
    return node_type == NODE_CATEGORY_TRIGGER and subtype == SCHEDULE_SUBTYPE
