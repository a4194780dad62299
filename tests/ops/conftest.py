"""Fixtures for operation-layer tests."""

from __future__ import annotations

import pytest

from flowspine.ops.context import OperationContext


@pytest.fixture()
def ctx(container):
    return OperationContext(container=container, caller="test")


@pytest.fixture()
def dry_ctx(container):
    return OperationContext(container=container, caller="test", dry_run=True)
