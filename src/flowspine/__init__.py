"""
flowspine: durable workflow orchestration.

A workflow is a DAG of typed nodes. The :class:`~flowspine.engine.executor.WorkflowExecutor`
walks it for one run at a time, persisting every transition; the
:class:`~flowspine.scheduling.scheduler.WorkflowScheduler` resumes runs
whose retry backoff or timer has elapsed and delivers pending signals.

Quick start::

    from flowspine.container import build_container

    container = build_container(memory=True)
    container.stores.definitions.save(definition)
    run = container.executor.start_run(definition.id, {"amount": 50})
"""

__version__ = "0.1.0"
