"""Dependency injection container for the engine."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from services.execution import NodeExecutor, RetryPolicy, WorkflowExecutor
from services.integrations import create_default_registry
from services.schedule_manager import ScheduleManager
from services.scheduler import SchedulerRegistry
from services.workflow import WorkflowService


class Container(containers.DeclarativeContainer):
    """Engine dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Durable trace store
    database = providers.Singleton(
        Database,
        settings=settings
    )

    # Integrations
    integrations = providers.Singleton(
        create_default_registry,
        settings=settings
    )

    retry_policy = providers.Singleton(
        RetryPolicy,
        max_attempts=settings.provided.max_retry_attempts,
        base_delay=settings.provided.retry_base_delay,
    )

    # Execution engine
    node_executor = providers.Singleton(
        NodeExecutor,
        store=database,
        invoker=integrations,
        retry_policy=retry_policy,
        default_max_iterations=settings.provided.default_max_iterations,
    )

    workflow_executor = providers.Singleton(
        WorkflowExecutor,
        store=database,
        node_executor=node_executor,
    )

    # Scheduling
    scheduler_registry = providers.Singleton(
        SchedulerRegistry,
        timezone=settings.provided.scheduler_timezone,
    )

    schedule_manager = providers.Singleton(
        ScheduleManager,
        store=database,
        executor=workflow_executor,
        registry=scheduler_registry,
        settings=settings,
    )

    # Services
    workflow_service = providers.Singleton(
        WorkflowService,
        store=database,
        executor=workflow_executor,
        schedule_manager=schedule_manager,
    )


container = Container()
