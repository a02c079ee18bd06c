from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from core.errors import InvalidTransitionError
from utils.constants import CUSTOMER_TRANSITIONS, TICKET_STATUSES

if TYPE_CHECKING:
    from conftest import HelpdeskEnv

CUSTOMER_ALLOWED = {
    ("resolved", "reopened"),
    ("resolved", "closed"),
    ("pending", "open"),
    ("open", "cancelled"),
}


def test_customer_table_matches_documented_rules() -> None:
    flattened = {(source, target) for source, targets in CUSTOMER_TRANSITIONS.items() for target in targets}
    assert flattened == CUSTOMER_ALLOWED


@pytest.mark.asyncio
@pytest.mark.parametrize("is_agent", [True, False])
@pytest.mark.parametrize("source", TICKET_STATUSES)
async def test_every_transition(env: HelpdeskEnv, source: str, is_agent: bool) -> None:
    actor = env.agent if is_agent else env.customer
    for target in TICKET_STATUSES:
        ticket = await env.open_ticket(subject=f"{source} -> {target}")
        ticket.status = source
        assert await env.deps.ticket_repo.update(ticket)

        allowed = is_agent or (source, target) in CUSTOMER_ALLOWED
        if allowed:
            changed = await env.tickets.change_status(ticket.id, target, actor)
            assert changed.status == target
            assert (await env.reload(ticket.id)).status == target
        else:
            with pytest.raises(InvalidTransitionError):
                await env.tickets.change_status(ticket.id, target, actor)
            assert (await env.reload(ticket.id)).status == source
            assert "status_changed" not in await env.history_actions(ticket.id)
