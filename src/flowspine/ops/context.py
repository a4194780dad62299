"""Who is calling an operation, and against which engine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from flowspine.container import Container
from flowspine.core.logging import LogContext


def _new_request_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass
class OperationContext:
    """First argument of every ``flowspine.ops`` function.

    ``caller`` is ``"api"``, ``"cli"``, ``"sdk"`` or ``"test"``. With
    ``dry_run`` set, mutating operations validate and report what they would
    do but leave the stores untouched.
    """

    container: Container
    caller: str = "sdk"
    dry_run: bool = False
    request_id: str = field(default_factory=_new_request_id)

    def logging(self) -> LogContext:
        """Bind request_id and caller onto log events inside a ``with`` block."""
        return LogContext(request_id=self.request_id, caller=self.caller)
