"""
Shared pytest fixtures for flowspine tests.

This module provides:
- A controllable clock injected into executor, scheduler, and lease
- A scripted StepExecutor registered for the common step types
- In-memory and SQLite containers wired with both

Usage:
    def test_something(container, clock, steps):
        steps.script("send_email", RuntimeError("smtp down"), {"sent": True})
        ...
"""

from __future__ import annotations

from pathlib import Path

import pytest

from flowspine.container import Container, build_container
from flowspine.engine.models import WorkflowDefinition
from flowspine.engine.registry import StepExecutorRegistry
from tests._support.workflows import STEP_TYPES, FakeClock, ScriptedStepExecutor, make_settings


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    root = Path(__file__).parent
    for item in items:
        test_path = Path(item.fspath).relative_to(root).as_posix()
        markers = {mark.name for mark in item.iter_markers()}
        if markers.intersection({"unit", "integration"}):
            continue
        if test_path.startswith(("api/", "cli/")) or "sqlite" in test_path:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def steps() -> ScriptedStepExecutor:
    return ScriptedStepExecutor()


@pytest.fixture()
def registry(steps: ScriptedStepExecutor) -> StepExecutorRegistry:
    registry = StepExecutorRegistry()
    for node_type in STEP_TYPES:
        registry.register(node_type, steps)
    return registry


@pytest.fixture()
def container(clock: FakeClock, registry: StepExecutorRegistry) -> Container:
    """In-memory container sharing the fake clock and scripted steps."""
    return build_container(make_settings(), registry=registry, memory=True, clock=clock, instance_id="test-1")


@pytest.fixture()
def sqlite_container(clock: FakeClock, registry: StepExecutorRegistry, tmp_path: Path):
    settings = make_settings(database_path=str(tmp_path / "flowspine.db"))
    container = build_container(settings, registry=registry, clock=clock, instance_id="test-1")
    yield container
    container.close()


@pytest.fixture()
def save(container: Container):
    """Store a definition in the in-memory container and return it."""

    def _save(definition: WorkflowDefinition) -> WorkflowDefinition:
        container.stores.definitions.save(definition)
        return definition

    return _save
