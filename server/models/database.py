"""SQLModel database models and tables."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from sqlalchemy import func


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on read; stored timestamps are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Workflow(SQLModel, table=True):
    """Workflow definitions. Nodes and edges are embedded in the record."""

    __tablename__ = "workflows"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: str = Field(default="draft", max_length=20, index=True)
    nodes: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    edges: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class WorkflowExecution(SQLModel, table=True):
    """One run of a workflow."""

    __tablename__ = "workflow_executions"

    id: Optional[int] = Field(default=None, primary_key=True)
    workflow_id: int = Field(foreign_key="workflows.id", index=True)
    status: str = Field(default="pending", max_length=20)
    started_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True)
    )
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    duration: Optional[int] = Field(default=None)  # seconds
    error: Optional[str] = Field(default=None, max_length=2000)
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))


class NodeExecution(SQLModel, table=True):
    """Record of a single node invocation within an execution."""

    __tablename__ = "node_executions"

    id: Optional[int] = Field(default=None, primary_key=True)
    execution_id: int = Field(foreign_key="workflow_executions.id", index=True)
    node_id: str = Field(max_length=255)
    node_name: str = Field(default="", max_length=255)
    status: str = Field(default="pending", max_length=20)
    started_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True))
    )
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    duration: Optional[int] = Field(default=None)  # milliseconds
    input: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    output: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    error: Optional[str] = Field(default=None, max_length=2000)
