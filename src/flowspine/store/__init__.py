"""Persistence: abstract stores with in-memory and SQLite implementations."""

from flowspine.store.base import (
    DeadLetterStore,
    DefinitionStore,
    RunStore,
    SignalStore,
    StepLogStore,
    Stores,
)

__all__ = [
    "DeadLetterStore",
    "DefinitionStore",
    "RunStore",
    "SignalStore",
    "StepLogStore",
    "Stores",
]
