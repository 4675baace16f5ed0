"""Execution engine state models.

Status values are stored as plain strings on the trace records; the enums
here are the single source of those strings.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional


class ExecutionStatus(str, Enum):
    """Workflow execution states.

    State transitions:
        PENDING -> RUNNING -> COMPLETED
                           -> FAILED
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeStatus(str, Enum):
    """Node execution states.

    RETRY_EXHAUSTED marks the final attempt of a retried node that never
    succeeded. Execution continues past it with the pre-node data.
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY_EXHAUSTED = "retry_exhausted"


class WorkflowState(str, Enum):
    """Lifecycle state of a stored workflow."""
    DRAFT = "draft"
    ACTIVE = "active"
    ERROR = "error"


@dataclass
class RetryPolicy:
    """Retry configuration for nodes with errorHandling=retry.

    Linear backoff: delay before retry n (1-indexed) is base_delay * n.
    """
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number `attempt` (1-indexed)."""
        return self.base_delay * attempt

    def should_retry(self, attempt: int) -> bool:
        """Whether retry number `attempt` (1-indexed) is allowed."""
        return attempt <= self.max_attempts

    def to_dict(self) -> Dict[str, Any]:
        return {"max_attempts": self.max_attempts, "base_delay": self.base_delay}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RetryPolicy":
        data = data or {}
        return cls(
            max_attempts=data.get("max_attempts", 3),
            base_delay=data.get("base_delay", 1.0),
        )
