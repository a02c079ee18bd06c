from __future__ import annotations

from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class SideEffectFailure:
    operation: str
    ticket_id: str | None
    tenant_id: str | None
    error: Exception


SideEffectSink = Callable[[SideEffectFailure], None]


class SideEffects:
    """Runs secondary writes whose failure must not abort the primary mutation.

    Failures are kept in a bounded buffer and forwarded to ``sink``; the HTTP
    layer installs a sink that logs them.
    """

    def __init__(self, sink: SideEffectSink | None = None, keep: int = 200) -> None:
        self.sink = sink
        self.recent: deque[SideEffectFailure] = deque(maxlen=keep)

    def report(self, failure: SideEffectFailure) -> None:
        self.recent.append(failure)
        if self.sink is not None:
            self.sink(failure)

    def report_error(
        self,
        operation: str,
        error: Exception,
        *,
        ticket_id: str | None = None,
        tenant_id: str | None = None,
    ) -> None:
        self.report(SideEffectFailure(operation, ticket_id, tenant_id, error))

    async def run(
        self,
        operation: str,
        action: Awaitable[T],
        *,
        ticket_id: str | None = None,
        tenant_id: str | None = None,
    ) -> T | None:
        try:
            return await action
        except Exception as exc:
            self.report(SideEffectFailure(operation, ticket_id, tenant_id, exc))
            return None

    def failures_for(self, operation: str) -> list[SideEffectFailure]:
        return [item for item in self.recent if item.operation == operation]
