"""Composition root: build stores, executor, and scheduler from settings.

Example::

    container = build_container(FlowSettings(database_path="flowspine.db"))
    run = container.executor.start_run(workflow_id, {"amount": 50})
    container.scheduler.tick()
    container.close()
"""

from __future__ import annotations

from dataclasses import dataclass

from flowspine.core.connection import SqliteConnection, open_database
from flowspine.core.logging import get_logger
from flowspine.core.settings import FlowSettings
from flowspine.engine.config import ExecutionConfig, ExecutionConfigHolder
from flowspine.engine.executor import WorkflowExecutor
from flowspine.engine.models import Clock, utcnow
from flowspine.engine.registry import StepExecutorRegistry, get_default_registry
from flowspine.scheduling.lock import DatabaseSweepLock, MemorySweepLock, SweepLock
from flowspine.scheduling.scheduler import WorkflowScheduler
from flowspine.store.base import Stores
from flowspine.store.memory import create_memory_stores
from flowspine.store.sqlite import create_sqlite_stores

logger = get_logger(__name__)


@dataclass
class Container:
    """Everything an entry point (CLI command, API app) needs."""

    settings: FlowSettings
    stores: Stores
    registry: StepExecutorRegistry
    config: ExecutionConfigHolder
    executor: WorkflowExecutor
    scheduler: WorkflowScheduler
    connection: SqliteConnection | None = None

    def close(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None


def build_container(
    settings: FlowSettings | None = None,
    *,
    registry: StepExecutorRegistry | None = None,
    memory: bool = False,
    clock: Clock = utcnow,
    instance_id: str | None = None,
) -> Container:
    """Wire a container.

    Args:
        settings: Defaults to ``FlowSettings()`` (environment)
        registry: Step executors; defaults to the process-wide registry
        memory: Use in-memory stores and lease instead of SQLite
        clock: Time source shared by executor, scheduler, and lease
        instance_id: Sweep lease owner id (random by default)
    """
    settings = settings or FlowSettings()
    registry = registry or get_default_registry()

    connection: SqliteConnection | None = None
    lock: SweepLock
    if memory:
        stores = create_memory_stores()
        lock = MemorySweepLock(instance_id, clock)
    else:
        connection = open_database(settings.database_path)
        stores = create_sqlite_stores(connection)
        lock = DatabaseSweepLock(connection, instance_id, clock)

    config = ExecutionConfigHolder(ExecutionConfig.from_settings(settings))
    executor = WorkflowExecutor(stores, registry, config=config, clock=clock)
    scheduler = WorkflowScheduler(
        stores,
        executor,
        lock,
        page_size=settings.scheduler_page_size,
        signal_page_size=settings.signal_page_size,
        lock_ttl_seconds=settings.sweep_lock_ttl_seconds,
        clock=clock,
    )
    logger.debug(
        "container_built",
        backend="memory" if memory else "sqlite",
        database=None if memory else settings.database_path,
    )
    return Container(
        settings=settings,
        stores=stores,
        registry=registry,
        config=config,
        executor=executor,
        scheduler=scheduler,
        connection=connection,
    )
