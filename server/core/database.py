"""Async database service with SQLModel and SQLAlchemy 2.0.

Durable implementation of the TraceStore protocol.
"""

import logging
from typing import Any, List, Optional
from sqlmodel import SQLModel, select
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager

from core.config import Settings
from models.database import Workflow, WorkflowExecution, NodeExecution, utc_now
from core.logging import get_logger

logger = get_logger(__name__)


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            logging.getLogger("aiosqlite").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

            self.engine = create_async_engine(
                self.settings.database_url,
                echo=self.settings.database_echo,
                future=True
            )

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.async_session = None
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def _add(self, record):
        async with self.get_session() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    async def _update(self, model, record_id: int, fields: dict):
        async with self.get_session() as session:
            record = await session.get(model, record_id)
            if record is None:
                return None
            for key, value in fields.items():
                if not hasattr(record, key):
                    raise AttributeError(f"{model.__name__} has no field '{key}'")
                setattr(record, key, value)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    # ============================================================================
    # Workflows
    # ============================================================================

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        workflow = await self._add(workflow)
        logger.debug("Workflow created", workflow_id=workflow.id, name=workflow.name)
        return workflow

    async def get_workflow(self, workflow_id: int) -> Optional[Workflow]:
        async with self.get_session() as session:
            return await session.get(Workflow, workflow_id)

    async def list_workflows(self, status: Optional[str] = None) -> List[Workflow]:
        async with self.get_session() as session:
            stmt = select(Workflow).order_by(Workflow.id)
            if status is not None:
                stmt = stmt.where(Workflow.status == status)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_workflow(self, workflow_id: int, **fields: Any) -> Optional[Workflow]:
        fields.setdefault("updated_at", utc_now())
        return await self._update(Workflow, workflow_id, fields)

    async def delete_workflow(self, workflow_id: int) -> bool:
        async with self.get_session() as session:
            workflow = await session.get(Workflow, workflow_id)
            if workflow is None:
                return False
            execution_ids = select(WorkflowExecution.id).where(WorkflowExecution.workflow_id == workflow_id)
            await session.execute(delete(NodeExecution).where(NodeExecution.execution_id.in_(execution_ids)))
            await session.execute(delete(WorkflowExecution).where(WorkflowExecution.workflow_id == workflow_id))
            await session.delete(workflow)
            await session.commit()
            logger.info("Workflow deleted", workflow_id=workflow_id)
            return True

    # ============================================================================
    # Workflow executions
    # ============================================================================

    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        return await self._add(execution)

    async def get_execution(self, execution_id: int) -> Optional[WorkflowExecution]:
        async with self.get_session() as session:
            return await session.get(WorkflowExecution, execution_id)

    async def list_executions(self) -> List[WorkflowExecution]:
        async with self.get_session() as session:
            result = await session.execute(select(WorkflowExecution).order_by(WorkflowExecution.id))
            return list(result.scalars().all())

    async def update_execution(self, execution_id: int, **fields: Any) -> Optional[WorkflowExecution]:
        return await self._update(WorkflowExecution, execution_id, fields)

    async def delete_execution(self, execution_id: int) -> bool:
        async with self.get_session() as session:
            execution = await session.get(WorkflowExecution, execution_id)
            if execution is None:
                return False
            await session.execute(delete(NodeExecution).where(NodeExecution.execution_id == execution_id))
            await session.delete(execution)
            await session.commit()
            return True

    async def list_recent_executions(self, limit: int = 10) -> List[WorkflowExecution]:
        async with self.get_session() as session:
            stmt = (select(WorkflowExecution)
                    .order_by(WorkflowExecution.started_at.desc(), WorkflowExecution.id.desc())
                    .limit(limit))
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_executions_by_workflow(self, workflow_id: int) -> List[WorkflowExecution]:
        async with self.get_session() as session:
            stmt = (select(WorkflowExecution)
                    .where(WorkflowExecution.workflow_id == workflow_id)
                    .order_by(WorkflowExecution.id))
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ============================================================================
    # Node executions
    # ============================================================================

    async def create_node_execution(self, node_execution: NodeExecution) -> NodeExecution:
        return await self._add(node_execution)

    async def get_node_execution(self, node_execution_id: int) -> Optional[NodeExecution]:
        async with self.get_session() as session:
            return await session.get(NodeExecution, node_execution_id)

    async def update_node_execution(self, node_execution_id: int, **fields: Any) -> Optional[NodeExecution]:
        return await self._update(NodeExecution, node_execution_id, fields)

    async def list_node_executions(self, execution_id: int) -> List[NodeExecution]:
        async with self.get_session() as session:
            stmt = (select(NodeExecution)
                    .where(NodeExecution.execution_id == execution_id)
                    .order_by(NodeExecution.id))
            result = await session.execute(stmt)
            return list(result.scalars().all())
