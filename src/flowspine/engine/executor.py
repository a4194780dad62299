"""Workflow executor: advances one run node by node.

The executor walks a run's DAG from its current node until it reaches a
suspension point (``delay`` → awaiting_timer, ``wait_for_signal`` →
awaiting_signal), a failure (retrying, or failed + dead-letter), or the end
of the graph (completed).

Durability rules:
    - The run is persisted before each node is dispatched, so a crash resumes
      from the last persisted ``current_node_id``.
    - Every persist is a compare-and-set on ``status = running``; losing it
      (an operator cancelled the run mid-flight) aborts the loop silently.
    - A node with a ``completed`` step log for this run is never dispatched
      again; its logged output is reused.

ARCHITECTURE
────────────
::

    WorkflowExecutor(stores, registry, config, evaluator, clock)
      ├── .start_run(workflow_id, trigger_data)    ─ create + execute
      ├── .execute(run)                            ─ advance a running run
      ├── .resume(run_id, signal_data, expected)   ─ CAS claim + advance
      ├── .cancel(run_id)                          ─ operator cancel
      ├── .compensate(run_id)                      ─ undo completed steps
      ├── .dry_run(workflow_id)                    ─ validation preview
      └── .record_invocation_failure(run_id, err)  ─ scheduler safety net
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from flowspine.core.errors import (
    DefinitionError,
    FlowError,
    ResumeRejectedError,
    RunDeadlineExceeded,
    RunNotFoundError,
    StepExecutionError,
    StepTimeoutError,
    WorkflowNotFoundError,
)
from flowspine.core.logging import LogContext, get_logger
from flowspine.engine.conditions import ConditionEvaluator, default_evaluator
from flowspine.engine.config import ExecutionConfig, ExecutionConfigHolder
from flowspine.engine.models import (
    Clock,
    CompensationStatus,
    DeadLetterEntry,
    Node,
    NodeType,
    RunStatus,
    StepLogEntry,
    StepStatus,
    WorkflowDefinition,
    WorkflowRun,
    new_id,
    utcnow,
)
from flowspine.engine.registry import StepExecutorRegistry
from flowspine.engine.retry import MIN_DELAY_SECONDS, RetryPolicy
from flowspine.engine.timeout import TimeoutExpired, run_with_timeout
from flowspine.store.base import Stores

logger = get_logger(__name__)

DEFAULT_DELAY_SECONDS = 60.0
DEFAULT_SIGNAL_TYPE = "default"

_DELAY_UNITS = {
    "milliseconds": 0.001,
    "seconds": 1.0,
    "minutes": 60.0,
    "hours": 3600.0,
    "days": 86400.0,
}


def _duration_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


def delay_seconds(config: Mapping[str, Any]) -> float:
    """Total delay configured on a ``delay`` node.

    Unit keys are summed (``{"minutes": 5, "seconds": 30}`` is 330s).
    A node with no unit keys waits one minute.
    """
    found = False
    total = 0.0
    for key, factor in _DELAY_UNITS.items():
        if key in config and config[key] is not None:
            found = True
            try:
                total += float(config[key]) * factor
            except (TypeError, ValueError) as e:
                raise DefinitionError(f"Delay '{key}' must be a number, got {config[key]!r}") from e
    if not found:
        return DEFAULT_DELAY_SECONDS
    if total < 0:
        raise DefinitionError(f"Delay must not be negative, got {total}s")
    return total


def signal_type_of(node: Node) -> str:
    """Signal type a ``wait_for_signal`` node waits for; ``default`` when unset."""
    signal_type = node.config.get("signalType") or node.config.get("signal_type")
    return str(signal_type) if signal_type else DEFAULT_SIGNAL_TYPE


class WorkflowExecutor:
    """Advances workflow runs against a set of stores.

    Args:
        stores: Persistence bundle
        registry: StepExecutor lookup for non built-in node types
        config: Execution config holder (or a fixed snapshot); read once per call
        evaluator: Condition evaluator for condition nodes and edges
        clock: Injectable time source
    """

    def __init__(
        self,
        stores: Stores,
        registry: StepExecutorRegistry,
        *,
        config: ExecutionConfigHolder | ExecutionConfig | None = None,
        evaluator: ConditionEvaluator | None = None,
        clock: Clock = utcnow,
    ) -> None:
        if isinstance(config, ExecutionConfig):
            config = ExecutionConfigHolder(config)
        self.stores = stores
        self.registry = registry
        self.config = config or ExecutionConfigHolder()
        self.evaluator = evaluator or default_evaluator
        self.clock = clock

    # =========================================================================
    # Entry points
    # =========================================================================

    def start_run(
        self,
        workflow_id: str,
        trigger_data: dict[str, Any] | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> WorkflowRun:
        """Create a run for ``workflow_id`` and execute it up to its first stop."""
        definition = self._get_definition(workflow_id)
        if not definition.enabled:
            raise ResumeRejectedError(f"Workflow '{definition.name}' is disabled")

        cfg = self.config.snapshot()
        policy = self._policy_for(definition, cfg)
        now = self.clock()
        deadline = now + timedelta(seconds=cfg.run_ttl_seconds) if cfg.run_ttl_seconds else None
        run = WorkflowRun.create(
            definition,
            trigger_data,
            max_retries=policy.max_retries,
            deadline_at=deadline,
            now=now,
            context=context,
        )
        self.stores.runs.create(run)
        logger.info("run_started", run_id=run.id, workflow_id=definition.id, workflow=definition.name)
        return self._advance_from(run, definition, cfg, start_at=None)

    def execute(self, run: WorkflowRun, trigger_data: dict[str, Any] | None = None) -> WorkflowRun:
        """Advance a run that is already ``running`` (fresh, or recovered after a crash).

        ``trigger_data`` replaces the run's payload only before the trigger node ran.
        """
        if run.status != RunStatus.RUNNING:
            raise ResumeRejectedError(
                f"Run '{run.id}' is {run.status.value}; execute requires running"
            )
        definition = self._get_definition(run.workflow_id)
        if trigger_data is not None and run.current_node_id is None:
            run.trigger_data = dict(trigger_data)
            run.context["trigger"] = dict(trigger_data)
        return self._advance_from(run, definition, self.config.snapshot(), start_at=run.current_node_id)

    def resume(
        self,
        run_id: str,
        signal_data: dict[str, Any] | None = None,
        *,
        expected_status: RunStatus | None = None,
    ) -> WorkflowRun:
        """Claim a suspended run and continue it.

        Retrying runs re-execute their current node. Timer and signal runs
        continue from the node after the suspension point; for signal runs
        ``signal_data`` is merged into ``context[current_node_id]`` first.

        Raises:
            RunNotFoundError: Unknown run
            ResumeRejectedError: Run is not resumable, not in ``expected_status``,
                or was claimed by someone else first. State is left untouched.
        """
        run = self.stores.runs.get(run_id)
        if run is None:
            raise RunNotFoundError(f"Run '{run_id}' not found")
        status = expected_status or run.status
        if not status.is_resumable or run.status != status:
            raise ResumeRejectedError(
                f"Run '{run_id}' is {run.status.value}; cannot resume"
                + (f" (expected {expected_status.value})" if expected_status else "")
            )

        claimed = self.stores.runs.claim(run_id, status)
        if claimed is None:
            raise ResumeRejectedError(f"Run '{run_id}' was claimed or changed concurrently")
        logger.info("run_resumed", run_id=run_id, from_status=status.value, node_id=claimed.current_node_id)

        cfg = self.config.snapshot()
        definition = self.stores.definitions.get(claimed.workflow_id)
        if definition is None:
            error = DefinitionError(f"Workflow '{claimed.workflow_id}' no longer exists")
            return self._dead_letter(claimed, None, error, f"Fatal: {error.message}")

        if status == RunStatus.RETRYING:
            return self._advance_from(claimed, definition, cfg, start_at=claimed.current_node_id)

        # Suspension node already completed; continue after it.
        node_id = claimed.current_node_id
        if status == RunStatus.AWAITING_SIGNAL and signal_data and node_id:
            merged = dict(claimed.context.get(node_id) or {})
            merged.update(signal_data)
            claimed.context[node_id] = merged
        with LogContext(run_id=claimed.id, workflow_id=claimed.workflow_id):
            try:
                if node_id is None:
                    raise DefinitionError(f"Run '{claimed.id}' has no current node to resume after")
                node = definition.get_node(node_id)
                next_id = self._next_node_id(definition, node, claimed.context)
            except DefinitionError as e:
                return self._dead_letter(claimed, definition, e, f"Fatal: {e.message}")
            if next_id is None:
                return self._complete(claimed, definition)
            return self._advance(claimed, definition, cfg, next_id)

    def cancel(self, run_id: str, reason: str | None = None) -> WorkflowRun:
        """Cancel a non-terminal run. An in-flight executor loop aborts at its next persist."""
        for _ in range(3):
            run = self.stores.runs.get(run_id)
            if run is None:
                raise RunNotFoundError(f"Run '{run_id}' not found")
            if run.is_terminal:
                raise ResumeRejectedError(f"Run '{run_id}' is already {run.status.value}")
            prior = run.status
            now = self.clock()
            run.transition_to(RunStatus.CANCELLED)
            run.completed_at = now
            run.duration_ms = _duration_ms(run.started_at, now)
            run.current_node_id = None
            run.next_retry_at = None
            run.awaiting_signal_type = None
            run.error_message = reason or "Cancelled by operator"
            if self.stores.runs.update(run, expected_status=prior):
                logger.info("run_cancelled", run_id=run_id, from_status=prior.value)
                return run
        raise ResumeRejectedError(f"Run '{run_id}' kept changing state; cancel not applied")

    def compensate(self, run_id: str) -> WorkflowRun:
        """Run recorded compensations in reverse order for a terminal run."""
        run = self.stores.runs.get(run_id)
        if run is None:
            raise RunNotFoundError(f"Run '{run_id}' not found")
        if not run.is_terminal:
            raise ResumeRejectedError(f"Run '{run_id}' is {run.status.value}; only finished runs compensate")
        if run.compensation_status == CompensationStatus.RUNNING:
            raise ResumeRejectedError(f"Run '{run_id}' is already compensating")
        if not run.compensations:
            raise ResumeRejectedError(f"Run '{run_id}' has no recorded compensations")

        run.compensation_status = CompensationStatus.RUNNING
        if not self.stores.runs.update(run, expected_status=run.status):
            raise ResumeRejectedError(f"Run '{run_id}' changed concurrently")

        cfg = self.config.snapshot()
        failures = 0
        with LogContext(run_id=run.id, workflow_id=run.workflow_id):
            for record in reversed(run.compensations):
                action = record["action"]
                node = Node(
                    id=f"{record['nodeId']}:compensate",
                    type=action,
                    name=f"Compensate {record.get('nodeName') or record['nodeId']}",
                    config=dict(record.get("input") or {}),
                )
                try:
                    self._run_logged(run, node, lambda n=node: self._dispatch(n, run.context, cfg))
                except FlowError as e:
                    failures += 1
                    logger.warning("compensation_failed", node_id=record["nodeId"], action=action, error=e.message)

        run.compensation_status = CompensationStatus.PARTIAL if failures else CompensationStatus.COMPLETED
        run.compensations = []
        self.stores.runs.update(run)
        logger.info("run_compensated", run_id=run.id, status=run.compensation_status.value, failures=failures)
        return run

    def dry_run(self, workflow_id: str) -> dict[str, Any]:
        """Validate a definition and preview its nodes without side effects."""
        definition = self._get_definition(workflow_id)
        errors: list[str] = []
        try:
            definition.validate()
        except DefinitionError as e:
            return {
                "workflow_id": definition.id,
                "name": definition.name,
                "valid": False,
                "errors": [e.message],
                "nodes": [],
            }

        nodes = []
        for node in definition.traversal_order():
            builtin = node.kind in NodeType.BUILTIN
            registered = builtin or self.registry.has(node.type)
            if not registered:
                errors.append(f"No StepExecutor registered for node '{node.id}' (type '{node.type}')")
            if node.compensation and not self.registry.has(node.compensation):
                errors.append(f"No StepExecutor registered for compensation '{node.compensation}' of '{node.id}'")
            nodes.append({
                "id": node.id,
                "type": node.type,
                "name": node.name,
                "builtin": builtin,
                "executor_registered": registered,
                "compensation": node.compensation,
            })
        errors.extend(self.config_errors(definition))

        return {
            "workflow_id": definition.id,
            "name": definition.name,
            "valid": not errors,
            "errors": errors,
            "nodes": nodes,
        }

    def record_invocation_failure(self, run_id: str, error: BaseException) -> WorkflowRun | None:
        """Apply the retry ceiling to a run whose resume blew up outside the step loop.

        A run left ``running`` by the failed invocation is treated as a step
        failure (retrying, or failed + dead-letter). A ``retrying`` run whose
        budget is already spent is dead-lettered. Anything else is left alone.
        """
        run = self.stores.runs.get(run_id)
        if run is None:
            return None
        flow_error = error if isinstance(error, FlowError) else StepExecutionError(
            f"Invocation failed: {error}", cause=error
        )
        definition = self.stores.definitions.get(run.workflow_id)
        with LogContext(run_id=run.id, workflow_id=run.workflow_id):
            if run.status == RunStatus.RUNNING:
                cfg = self.config.snapshot()
                policy = self._policy_for(definition, cfg)
                return self._handle_failure(run, definition, flow_error, policy)
            if run.status == RunStatus.RETRYING and run.retry_count >= run.max_retries:
                return self._dead_letter(
                    run,
                    definition,
                    flow_error,
                    self._ceiling_reason(run),
                    expected_status=RunStatus.RETRYING,
                )
        return run

    # =========================================================================
    # Loop
    # =========================================================================

    def _advance_from(
        self,
        run: WorkflowRun,
        definition: WorkflowDefinition,
        cfg: ExecutionConfig,
        start_at: str | None,
    ) -> WorkflowRun:
        if start_at is None:
            try:
                start_at = definition.trigger_node().id
            except DefinitionError as e:
                with LogContext(run_id=run.id, workflow_id=run.workflow_id):
                    return self._dead_letter(run, definition, e, f"Fatal: {e.message}")
        return self._advance(run, definition, cfg, start_at)

    def _advance(
        self,
        run: WorkflowRun,
        definition: WorkflowDefinition,
        cfg: ExecutionConfig,
        node_id: str,
    ) -> WorkflowRun:
        policy = self._policy_for(definition, cfg)
        with LogContext(run_id=run.id, workflow_id=run.workflow_id):
            current: str | None = node_id
            while current is not None:
                now = self.clock()
                if run.deadline_at is not None and now >= run.deadline_at:
                    error = RunDeadlineExceeded(f"Run deadline {run.deadline_at.isoformat()} exceeded")
                    return self._dead_letter(run, definition, error, f"Fatal: {error.message}")

                try:
                    node = definition.get_node(current)
                except DefinitionError as e:
                    return self._dead_letter(run, definition, e, f"Fatal: {e.message}")

                run.current_node_id = node.id
                if not self._save(run):
                    return self._aborted(run)

                replayed = self.stores.step_logs.find_completed(run.id, node.id)
                if replayed is not None:
                    output = dict(replayed.output_snapshot or {})
                    logger.info("step_replayed", node_id=node.id, step_log_id=replayed.id)
                else:
                    try:
                        output = self._run_logged(
                            run, node, lambda n=node: self._dispatch(n, run.context, cfg, run=run)
                        )
                    except FlowError as e:
                        e.with_context(run_id=run.id, workflow_id=run.workflow_id, node_id=node.id, node_type=node.type)
                        return self._handle_failure(run, definition, e, policy)

                run.context[node.id] = output
                self._record_compensation(run, node, output)

                if node.kind == NodeType.DELAY:
                    seconds = max(MIN_DELAY_SECONDS, delay_seconds(node.config))
                    return self._suspend(
                        run,
                        RunStatus.AWAITING_TIMER,
                        next_retry_at=self.clock() + timedelta(seconds=seconds),
                    )
                if node.kind == NodeType.WAIT_FOR_SIGNAL:
                    return self._suspend(
                        run,
                        RunStatus.AWAITING_SIGNAL,
                        awaiting_signal_type=output["signalType"],
                    )

                try:
                    current = self._next_node_id(definition, node, run.context)
                except DefinitionError as e:
                    return self._dead_letter(run, definition, e, f"Fatal: {e.message}")

            return self._complete(run, definition)

    # =========================================================================
    # Step dispatch
    # =========================================================================

    def _run_logged(self, run: WorkflowRun, node: Node, call) -> dict[str, Any]:
        """Append a running step log, call ``call()``, and record the outcome on that row."""
        started = self.clock()
        entry = StepLogEntry(
            id=new_id(),
            run_id=run.id,
            node_id=node.id,
            node_type=node.type,
            node_name=node.name,
            status=StepStatus.RUNNING,
            attempt=self.stores.step_logs.count_attempts(run.id, node.id) + 1,
            input_snapshot={"config": copy.deepcopy(node.config), "context": copy.deepcopy(run.context)},
            started_at=started,
        )
        self.stores.step_logs.append(entry)
        logger.debug("step_started", node_id=node.id, node_type=node.type, attempt=entry.attempt)

        try:
            output = call()
        except Exception as e:
            error = e if isinstance(e, FlowError) else StepExecutionError(
                f"Step '{node.id}' ({node.type}) failed: {e}", cause=e
            )
            entry.status = StepStatus.FAILED
            entry.error_message = error.message
            entry.completed_at = self.clock()
            entry.duration_ms = _duration_ms(started, entry.completed_at)
            self.stores.step_logs.update(entry)
            logger.warning(
                "step_failed",
                node_id=node.id,
                node_type=node.type,
                attempt=entry.attempt,
                error=error.message,
                retryable=error.retryable,
            )
            if error is e:
                raise
            raise error from e

        entry.status = StepStatus.COMPLETED
        entry.output_snapshot = output
        entry.completed_at = self.clock()
        entry.duration_ms = _duration_ms(started, entry.completed_at)
        self.stores.step_logs.update(entry)
        logger.info("step_completed", node_id=node.id, node_type=node.type, duration_ms=entry.duration_ms)
        return output

    def _dispatch(
        self,
        node: Node,
        context: dict[str, Any],
        cfg: ExecutionConfig,
        *,
        run: WorkflowRun | None = None,
    ) -> dict[str, Any]:
        kind = node.kind
        if kind == NodeType.TRIGGER:
            return dict(run.trigger_data) if run is not None else {}
        if kind == NodeType.DELAY:
            delay_seconds(node.config)
            return {"delayed": True}
        if kind == NodeType.CONDITION:
            expression = self._condition_expression(node)
            return {"conditionMet": self.evaluator.test(expression, context)}
        if kind == NodeType.WAIT_FOR_SIGNAL:
            return {"signalType": signal_type_of(node)}

        executor = self.registry.get(node.type)
        timeout = node.timeout_seconds if node.timeout_seconds is not None else cfg.step_timeout_seconds
        try:
            output = run_with_timeout(
                executor.execute,
                timeout,
                node.type,
                copy.deepcopy(node.config),
                copy.deepcopy(context),
                operation=f"step:{node.id}",
            )
        except TimeoutExpired as e:
            raise StepTimeoutError(
                f"Step '{node.id}' ({node.type}) timed out after {e.timeout}s", timeout=e.timeout, cause=e
            ) from e
        if output is None:
            return {}
        if not isinstance(output, Mapping):
            raise StepExecutionError(
                f"Step '{node.id}' ({node.type}) returned {type(output).__name__}, expected a mapping"
            )
        return dict(output)

    @staticmethod
    def _condition_expression(node: Node) -> str:
        expression = node.config.get("expression") or node.config.get("condition")
        if not expression:
            raise DefinitionError(f"Condition node '{node.id}' has no expression")
        return str(expression)

    def config_errors(self, definition: WorkflowDefinition) -> list[str]:
        """Problems in built-in node configs and edge conditions that would fail a run.

        Unregistered StepExecutor types are not reported here; executors may
        be registered after the definition is.
        """
        errors: list[str] = []
        for node in definition.nodes:
            try:
                self._check_node_config(node)
            except DefinitionError as e:
                errors.append(e.message)
        for edge in definition.edges:
            if edge.condition and edge.condition.strip().lower() not in ("true", "yes", "false", "no", "else"):
                try:
                    self.evaluator.check(edge.condition)
                except DefinitionError as e:
                    errors.append(f"Edge '{edge.id}': {e.message}")
        return errors

    def _check_node_config(self, node: Node) -> None:
        if node.kind == NodeType.DELAY:
            delay_seconds(node.config)
        elif node.kind == NodeType.CONDITION:
            self.evaluator.check(self._condition_expression(node))

    def _next_node_id(self, definition: WorkflowDefinition, node: Node, context: dict[str, Any]) -> str | None:
        """First outgoing edge (declaration order) whose condition holds."""
        output = context.get(node.id)
        for edge in definition.outgoing_edges(node.id):
            if self.evaluator.edge_matches(edge.condition, context, output if isinstance(output, Mapping) else None):
                return edge.target_node_id
        return None

    def _record_compensation(self, run: WorkflowRun, node: Node, output: dict[str, Any]) -> None:
        if not node.compensation:
            return
        if any(record["nodeId"] == node.id for record in run.compensations):
            return
        run.compensations.append({
            "nodeId": node.id,
            "nodeName": node.name,
            "action": node.compensation,
            "input": {"config": copy.deepcopy(node.config), "output": copy.deepcopy(output)},
        })

    # =========================================================================
    # Status transitions
    # =========================================================================

    def _save(self, run: WorkflowRun, expected_status: RunStatus = RunStatus.RUNNING) -> bool:
        return self.stores.runs.update(run, expected_status=expected_status)

    def _aborted(self, run: WorkflowRun) -> WorkflowRun:
        current = self.stores.runs.get(run.id)
        logger.info(
            "run_advance_aborted",
            run_id=run.id,
            status=current.status.value if current else None,
        )
        return current or run

    def _suspend(
        self,
        run: WorkflowRun,
        status: RunStatus,
        *,
        next_retry_at: datetime | None = None,
        awaiting_signal_type: str | None = None,
    ) -> WorkflowRun:
        run.transition_to(status)
        run.next_retry_at = next_retry_at
        run.awaiting_signal_type = awaiting_signal_type
        if not self._save(run):
            return self._aborted(run)
        logger.info(
            "run_suspended",
            status=status.value,
            node_id=run.current_node_id,
            next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
            awaiting_signal_type=awaiting_signal_type,
        )
        return run

    def _complete(self, run: WorkflowRun, definition: WorkflowDefinition) -> WorkflowRun:
        now = self.clock()
        run.transition_to(RunStatus.COMPLETED)
        run.completed_at = now
        run.duration_ms = _duration_ms(run.started_at, now)
        run.current_node_id = None
        run.next_retry_at = None
        run.awaiting_signal_type = None
        if not self._save(run):
            return self._aborted(run)
        self.stores.definitions.record_outcome(definition.id, success=True, at=now)
        logger.info("run_completed", duration_ms=run.duration_ms)
        return run

    def _handle_failure(
        self,
        run: WorkflowRun,
        definition: WorkflowDefinition | None,
        error: FlowError,
        policy: RetryPolicy,
    ) -> WorkflowRun:
        if not error.retryable:
            return self._dead_letter(run, definition, error, f"Fatal: {error.message}")

        run.retry_count = min(run.retry_count + 1, run.max_retries)
        run.error_message = error.message
        if run.retry_count < run.max_retries:
            delay = policy.next_delay(run.retry_count - 1)
            run.transition_to(RunStatus.RETRYING)
            run.next_retry_at = self.clock() + timedelta(seconds=delay)
            if not self._save(run):
                return self._aborted(run)
            logger.info(
                "run_retry_scheduled",
                node_id=run.current_node_id,
                retry_count=run.retry_count,
                max_retries=run.max_retries,
                delay_seconds=round(delay, 3),
            )
            return run
        return self._dead_letter(run, definition, error, self._ceiling_reason(run))

    @staticmethod
    def _ceiling_reason(run: WorkflowRun) -> str:
        return f"Retry limit reached: {run.retry_count}/{run.max_retries} attempts exhausted"

    def _dead_letter(
        self,
        run: WorkflowRun,
        definition: WorkflowDefinition | None,
        error: FlowError,
        reason: str,
        *,
        expected_status: RunStatus = RunStatus.RUNNING,
    ) -> WorkflowRun:
        now = self.clock()
        failed_at = run.current_node_id
        run.transition_to(RunStatus.FAILED)
        run.error_message = error.message
        run.completed_at = now
        run.duration_ms = _duration_ms(run.started_at, now)
        run.current_node_id = None
        run.next_retry_at = None
        run.awaiting_signal_type = None
        if not self._save(run, expected_status):
            return self._aborted(run)

        entry = DeadLetterEntry(
            id=new_id(),
            run_id=run.id,
            workflow_id=run.workflow_id,
            workflow_name=definition.name if definition else None,
            failure_reason=reason,
            last_error=error.message,
            failed_at_node=failed_at,
            context_snapshot=copy.deepcopy(run.context),
            trigger_data=copy.deepcopy(run.trigger_data),
            retry_count=run.retry_count,
            created_at=now,
        )
        self.stores.dead_letters.add(entry)
        if definition is not None:
            self.stores.definitions.record_outcome(definition.id, success=False, at=now)
        logger.error(
            "run_dead_lettered",
            node_id=failed_at,
            reason=reason,
            error=error,
            retry_count=run.retry_count,
        )
        return run

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_definition(self, workflow_id: str) -> WorkflowDefinition:
        definition = self.stores.definitions.get(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
        return definition

    @staticmethod
    def _policy_for(definition: WorkflowDefinition | None, cfg: ExecutionConfig) -> RetryPolicy:
        if definition is not None and definition.retry_policy is not None:
            return definition.retry_policy
        return cfg.retry_policy
