"""Step executor registry: node type → StepExecutor lookup.

The Executor resolves every non built-in node type (``send_email``,
``webhook``, ``ai_analysis``...) through a :class:`StepExecutorRegistry`.
Registration happens at startup; resolution happens at dispatch time.
Tests pass an isolated registry instead of touching the process default.

ARCHITECTURE
────────────
::

    StepExecutorRegistry
      ├── .register(node_type, executor)   ─ StepExecutor or plain callable
      ├── .get(node_type)                  ─ lookup, DefinitionError if missing
      ├── .has(node_type)                  ─ existence check
      └── .list_types()                    ─ registered keys with metadata

    step(node_type, registry=None)         ─ decorator for plain callables
    get_default_registry() / reset_default_registry()
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from flowspine.core.errors import DefinitionError

StepFunction = Callable[[dict[str, Any], dict[str, Any]], dict[str, Any] | None]


@runtime_checkable
class StepExecutor(Protocol):
    """Pluggable unit of work for one node type.

    ``execute`` returns the node's output (merged into the run context under
    the node id) or raises to signal failure.
    """

    def execute(self, node_type: str, config: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]: ...


class FunctionStepExecutor:
    """Adapt ``func(config, context) -> dict`` to the StepExecutor protocol."""

    def __init__(self, func: StepFunction) -> None:
        self.func = func

    def execute(self, node_type: str, config: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        return self.func(config, context) or {}

    def __repr__(self) -> str:
        return f"FunctionStepExecutor({getattr(self.func, '__name__', self.func)!r})"


class StepExecutorRegistry:
    """Injectable StepExecutor registry.

    Example:
        >>> registry = StepExecutorRegistry()
        >>>
        >>> @step("send_email", registry=registry)
        ... def send_email(config, context):
        ...     return {"sent": True, "to": config["to"]}
        >>>
        >>> registry.get("send_email").execute("send_email", {"to": "a@b.c"}, {})
        {'sent': True, 'to': 'a@b.c'}
    """

    def __init__(self) -> None:
        self._executors: dict[str, StepExecutor] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

    def register(
        self,
        node_type: str,
        executor: StepExecutor | StepFunction,
        description: str | None = None,
    ) -> None:
        if not isinstance(executor, StepExecutor):
            executor = FunctionStepExecutor(executor)
        self._executors[node_type] = executor
        self._metadata[node_type] = {"node_type": node_type, "description": description}

    def get(self, node_type: str) -> StepExecutor:
        """Return the executor for ``node_type``.

        Raises:
            DefinitionError: If nothing is registered (retrying cannot help)
        """
        try:
            return self._executors[node_type]
        except KeyError:
            available = sorted(self._executors) or "none"
            raise DefinitionError(
                f"No StepExecutor registered for node type '{node_type}'. Available: {available}"
            ) from None

    def has(self, node_type: str) -> bool:
        return node_type in self._executors

    def unregister(self, node_type: str) -> bool:
        self._metadata.pop(node_type, None)
        return self._executors.pop(node_type, None) is not None

    def list_types(self) -> list[dict[str, Any]]:
        return [dict(self._metadata[key]) for key in sorted(self._metadata)]

    def clear(self) -> None:
        self._executors.clear()
        self._metadata.clear()

    def __contains__(self, node_type: str) -> bool:
        return self.has(node_type)

    def __len__(self) -> int:
        return len(self._executors)


# =============================================================================
# Built-in utility steps
# =============================================================================


def _noop(config: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    return {}


def _echo(config: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    return dict(config)


def register_builtin_steps(registry: StepExecutorRegistry) -> StepExecutorRegistry:
    """Register the ``noop`` and ``echo`` steps used by demos and dry runs."""
    registry.register("noop", _noop, description="Does nothing; output {}")
    registry.register("echo", _echo, description="Outputs its own config")
    return registry


# =============================================================================
# Global default registry
# =============================================================================

_default_registry: StepExecutorRegistry | None = None


def get_default_registry() -> StepExecutorRegistry:
    """Process-wide registry, created lazily with the built-in steps."""
    global _default_registry
    if _default_registry is None:
        _default_registry = register_builtin_steps(StepExecutorRegistry())
    return _default_registry


def reset_default_registry() -> None:
    global _default_registry
    _default_registry = None


def step(node_type: str, registry: StepExecutorRegistry | None = None, description: str | None = None):
    """Decorator registering ``func(config, context)`` as the executor for ``node_type``."""

    def decorator(func: StepFunction) -> StepFunction:
        (registry or get_default_registry()).register(node_type, func, description=description or func.__doc__)
        return func

    return decorator
