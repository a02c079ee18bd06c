from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from core.errors import AuthorizationError, TicketingError, ValidationError
from services.payloads import Actor, TicketPatch
from services.ticket_service import TicketService, parse_ticket_id


@dataclass(slots=True, frozen=True)
class BulkItemFailure:
    ticket_id: str
    reason: str
    error: Exception | None = None


@dataclass(slots=True)
class BulkResult:
    """Outcome of a batch. Only ``success_count`` is returned to clients."""

    operation: str
    success_count: int = 0
    failures: list[BulkItemFailure] = field(default_factory=list)


class BulkOperationExecutor:
    """Applies one lifecycle operation per ticket id with per-item isolation.

    Items run sequentially; a failing item is recorded and skipped, and items
    already committed stay committed if a later one fails or the batch is
    cancelled.
    """

    def __init__(self, tickets: TicketService) -> None:
        self.tickets = tickets

    async def bulk_assign(self, ticket_ids: Iterable[str], assignee_user_id: str, actor: Actor) -> BulkResult:
        return await self._run(
            "assign",
            ticket_ids,
            actor,
            lambda ticket_id: self.tickets.assign_ticket(ticket_id, assignee_user_id, actor),
        )

    async def bulk_change_status(self, ticket_ids: Iterable[str], status: str, actor: Actor) -> BulkResult:
        return await self._run(
            "status",
            ticket_ids,
            actor,
            lambda ticket_id: self.tickets.change_status(ticket_id, status, actor),
        )

    async def bulk_change_priority(self, ticket_ids: Iterable[str], priority: str, actor: Actor) -> BulkResult:
        return await self._run(
            "priority",
            ticket_ids,
            actor,
            lambda ticket_id: self.tickets.update_ticket(ticket_id, TicketPatch(priority=priority), actor),
        )

    async def bulk_transfer(self, ticket_ids: Iterable[str], department_id: str, actor: Actor) -> BulkResult:
        return await self._run(
            "transfer",
            ticket_ids,
            actor,
            lambda ticket_id: self.tickets.transfer_ticket(ticket_id, department_id, actor),
        )

    async def bulk_delete(self, ticket_ids: Iterable[str], actor: Actor) -> BulkResult:
        return await self._run(
            "delete",
            ticket_ids,
            actor,
            lambda ticket_id: self.tickets.delete_ticket(ticket_id, actor),
        )

    async def _run(
        self,
        operation: str,
        ticket_ids: Iterable[str],
        actor: Actor,
        action: Callable[[str], Awaitable[Any]],
    ) -> BulkResult:
        if not actor.is_agent:
            raise AuthorizationError("Only agents can run bulk operations.")
        result = BulkResult(operation=operation)
        for raw_id in dict.fromkeys(ticket_ids):
            try:
                ticket_id = parse_ticket_id(raw_id)
            except ValidationError as exc:
                result.failures.append(BulkItemFailure(str(raw_id), "malformed_id", exc))
                continue
            try:
                await action(ticket_id)
            except TicketingError as exc:
                result.failures.append(BulkItemFailure(ticket_id, type(exc).__name__, exc))
                continue
            except Exception as exc:
                result.failures.append(BulkItemFailure(ticket_id, "unexpected_error", exc))
                continue
            result.success_count += 1
        return result
