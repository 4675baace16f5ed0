"""Pydantic models for workflow graphs and node configuration.

Node configuration is a discriminated union keyed by node subtype. Known
subtypes validate into their own model, unknown subtypes fall back to
PassthroughConfig so new integrations can be stored before they are modeled.
"""

from typing import Literal, Union, Annotated, Optional, Dict, Any, List
from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from constants import (
    DEFAULT_LOOP_COLLECTION_PATH,
    DEFAULT_LOOP_COUNT,
    DEFAULT_MAX_ITERATIONS,
    CONTROL_SUBTYPES,
    ERROR_HANDLING_ABORT,
    ERROR_HANDLING_POLICIES,
    INTEGRATION_SUBTYPES,
    NODE_CATEGORIES,
    TRIGGER_SUBTYPES,
)


# =============================================================================
# BASE MODELS
# =============================================================================

class BaseNodeConfig(BaseModel):
    """Cross-cutting keys accepted by every node."""
    model_config = {"extra": "allow", "populate_by_name": True}

    error_handling: Literal["abort", "continue", "retry"] = Field(
        default=ERROR_HANDLING_ABORT, alias="errorHandling")
    skip_execution: bool = Field(default=False, alias="skipExecution")
    timeout: Optional[float] = Field(default=None, ge=0)  # advisory only


# =============================================================================
# LOGIC NODE MODELS
# =============================================================================

class ConditionConfig(BaseNodeConfig):
    subtype: Literal["condition"]
    condition: Optional[str] = None


class LoopConfig(BaseNodeConfig):
    subtype: Literal["loop"]
    loop_type: Literal["collection", "count", "while"] = Field(default="collection", alias="loopType")
    collection: str = DEFAULT_LOOP_COLLECTION_PATH
    count: Optional[Union[int, str]] = DEFAULT_LOOP_COUNT
    while_condition: Optional[str] = Field(default=None, alias="whileCondition")
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, alias="maxIterations", ge=1)


# =============================================================================
# TRIGGER NODE MODELS
# =============================================================================

class ScheduleConfig(BaseNodeConfig):
    """Schedule trigger. Interval units below a minute run on a plain timer."""
    subtype: Literal["schedule"]
    schedule_type: Literal["interval", "cron", "fixed"] = Field(default="interval", alias="scheduleType")
    interval: Optional[int] = Field(default=None, ge=1)
    interval_unit: Literal["seconds", "minutes", "hours", "days"] = Field(default="minutes", alias="intervalUnit")
    cron: Optional[str] = None
    fixed_time: Optional[str] = Field(default=None, alias="fixedTime")
    timezone: str = "UTC"


class ManualTriggerConfig(BaseNodeConfig):
    subtype: Literal["manual", "api"]


# =============================================================================
# INTEGRATION NODE MODELS
# =============================================================================

class EmailConfig(BaseNodeConfig):
    subtype: Literal["email"]
    recipient: str = ""
    subject: str = ""
    body: str = ""
    service: str = "smtp"


class WebhookConfig(BaseNodeConfig):
    """Outbound HTTP call, or an inbound webhook when used as a trigger."""
    subtype: Literal["webhook"]
    url: Optional[str] = None
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    headers: Optional[Union[Dict[str, str], str]] = None
    body: Optional[Any] = None
    response_mapping: Optional[str] = Field(default=None, alias="responseMapping")

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v):
        return v.upper() if isinstance(v, str) else v


class DatabaseConfig(BaseNodeConfig):
    subtype: Literal["database"]
    operation: str = "query"
    query: Optional[str] = None
    table: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    where: Optional[Dict[str, Any]] = None


class SlackConfig(BaseNodeConfig):
    subtype: Literal["slack"]
    channel: str = ""
    message: str = ""
    username: str = "Workflow Bot"


class PassthroughConfig(BaseNodeConfig):
    """Unrecognized subtype. Keys are kept as-is."""
    subtype: str


# =============================================================================
# DISCRIMINATED UNION
# =============================================================================

KnownNodeConfig = Annotated[
    Union[
        ConditionConfig,
        LoopConfig,
        ScheduleConfig,
        ManualTriggerConfig,
        EmailConfig,
        WebhookConfig,
        DatabaseConfig,
        SlackConfig,
    ],
    Field(discriminator="subtype")
]

_known_config_adapter = TypeAdapter(KnownNodeConfig)

KNOWN_CONFIG_SUBTYPES = TRIGGER_SUBTYPES | CONTROL_SUBTYPES | INTEGRATION_SUBTYPES


def validate_node_config(subtype: str, config: Dict[str, Any]) -> BaseNodeConfig:
    """Validate node configuration using the model for its subtype.

    Known subtypes raise pydantic.ValidationError on bad values. Unknown
    subtypes validate leniently into PassthroughConfig.
    """
    config_with_subtype = {**(config or {}), "subtype": subtype}
    if subtype in KNOWN_CONFIG_SUBTYPES:
        return _known_config_adapter.validate_python(config_with_subtype)
    return PassthroughConfig(**config_with_subtype)


# =============================================================================
# GRAPH MODELS
# =============================================================================

class WorkflowNode(BaseModel):
    """A node in a workflow graph.

    Accepts both the flat shape and the editor shape where subtype, label
    and config live under a nested "data" key.
    """
    model_config = {"extra": "ignore", "frozen": True}

    id: str
    type: str = "action"
    subtype: str = ""
    label: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, float]] = None

    @model_validator(mode="before")
    @classmethod
    def flatten_editor_shape(cls, values: Any) -> Any:
        if isinstance(values, dict) and isinstance(values.get("data"), dict):
            nested = values["data"]
            values = {**values}
            for key in ("subtype", "label", "config"):
                if key not in values and key in nested:
                    values[key] = nested[key]
            if "type" in nested and nested["type"] in NODE_CATEGORIES:
                values["type"] = nested["type"]
        return values

    @property
    def name(self) -> str:
        return self.label or self.subtype or self.id

    @property
    def error_handling(self) -> str:
        policy = self.config.get("errorHandling")
        return policy if policy in ERROR_HANDLING_POLICIES else ERROR_HANDLING_ABORT

    @property
    def skip_execution(self) -> bool:
        return bool(self.config.get("skipExecution", False))


class WorkflowEdge(BaseModel):
    """A directed connection, optionally labeled for conditional branching."""
    model_config = {"extra": "ignore", "frozen": True}

    id: str = ""
    source: str
    target: str
    label: Optional[str] = None


class WorkflowGraphModel(BaseModel):
    """Validated node/edge lists of a workflow."""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_edge_endpoints(self):
        node_ids = {node.id for node in self.nodes}
        for edge in self.edges:
            if edge.source not in node_ids or edge.target not in node_ids:
                raise ValueError(
                    f"Edge {edge.id or edge.source + '->' + edge.target} references a node outside the workflow")
        return self
