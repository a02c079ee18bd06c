from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from core.errors import AuthorizationError, CapacityError, ConflictError, NotFoundError

if TYPE_CHECKING:
    from conftest import HelpdeskEnv


@pytest.mark.asyncio
async def test_assign_rejects_full_agent(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    await env.add_agent("agent-a", max_tickets=1)
    first = await env.open_ticket()
    second = await env.open_ticket()

    await env.tickets.assign_ticket(first.id, "agent-a", env.agent)
    with pytest.raises(CapacityError):
        await env.tickets.assign_ticket(second.id, "agent-a", env.agent)

    assert (await env.agent_row("agent-a")).current_tickets == 1
    assert (await env.reload(second.id)).assigned_to_id is None


@pytest.mark.asyncio
async def test_concurrent_assignments_never_exceed_capacity(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    await env.add_agent("agent-a", max_tickets=3)
    tickets = [await env.open_ticket(subject=f"Issue {idx}") for idx in range(8)]

    results = await asyncio.gather(
        *(env.tickets.assign_ticket(ticket.id, "agent-a", env.agent) for ticket in tickets),
        return_exceptions=True,
    )
    assigned = [item for item in results if not isinstance(item, Exception)]
    assert len(assigned) == 3
    assert all(isinstance(item, CapacityError) for item in results if isinstance(item, Exception))
    assert (await env.agent_row("agent-a")).current_tickets == 3


@pytest.mark.asyncio
async def test_assign_unknown_agent_or_as_customer(env: HelpdeskEnv) -> None:
    ticket = await env.open_ticket()
    with pytest.raises(NotFoundError):
        await env.tickets.assign_ticket(ticket.id, "ghost", env.agent)
    await env.add_agent("agent-a")
    with pytest.raises(AuthorizationError):
        await env.tickets.assign_ticket(ticket.id, "agent-a", env.customer)


@pytest.mark.asyncio
async def test_reassignment_moves_workload_and_records_names(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    await env.add_agent("agent-a", "Ann")
    await env.add_agent("agent-b", "Bob")
    ticket = await env.open_ticket()

    await env.tickets.assign_ticket(ticket.id, "agent-a", env.agent)
    await env.tickets.assign_ticket(ticket.id, "agent-b", env.agent)

    assert (await env.agent_row("agent-a")).current_tickets == 0
    assert (await env.agent_row("agent-b")).current_tickets == 1
    entries = [entry for entry in await env.tickets.list_history(ticket.id, env.agent) if entry.action == "assigned"]
    assert {(entry.old_value, entry.new_value) for entry in entries} == {(None, "Ann"), ("Ann", "Bob")}


@pytest.mark.asyncio
async def test_assignment_resolves_missing_sla(env: HelpdeskEnv) -> None:
    env.config.sla.enabled = False
    env.config.tickets.auto_assign_enabled = False
    await env.add_agent("agent-a")
    ticket = await env.open_ticket()
    assert ticket.first_response_due is None

    env.config.sla.enabled = True
    assigned = await env.tickets.assign_ticket(ticket.id, "agent-a", env.agent)
    assert assigned.first_response_due is not None
    assert assigned.resolution_due is not None


@pytest.mark.asyncio
async def test_stale_write_releases_reserved_slot(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    await env.add_agent("agent-a")
    ticket = await env.open_ticket()

    original_get = env.deps.ticket_repo.get_by_id

    async def stale_get(tenant_id: str, ticket_id: str, include_deleted: bool = False):
        stale = await original_get(tenant_id, ticket_id, include_deleted)
        fresh = await original_get(tenant_id, ticket_id, include_deleted)
        assert fresh is not None
        fresh.subject = "edited elsewhere"
        await env.deps.ticket_repo.update(fresh)
        return stale

    env.deps.ticket_repo.get_by_id = stale_get  # type: ignore[method-assign]
    with pytest.raises(ConflictError):
        await env.tickets.assign_ticket(ticket.id, "agent-a", env.agent)
    env.deps.ticket_repo.get_by_id = original_get  # type: ignore[method-assign]

    assert (await env.agent_row("agent-a")).current_tickets == 0
    assert (await env.reload(ticket.id)).assigned_to_id is None


@pytest.mark.asyncio
async def test_auto_assign_picks_least_loaded_department_agent(env: HelpdeskEnv) -> None:
    department = await env.add_department()
    other = await env.add_department("Elsewhere")
    await env.add_agent("agent-busy", department_ids=[department.id])
    await env.add_agent("agent-idle", department_ids=[department.id])
    await env.add_agent("agent-other", department_ids=[other.id])
    await env.add_agent("agent-away", department_ids=[department.id], status="away")
    await env.deps.agent_repo.increment_ticket_count("tenant-a", "agent-busy")

    ticket = await env.open_ticket(department_id=department.id)

    assert ticket.assigned_to_id == "agent-idle"
    assert ticket.assigned_by_id == "system"
    assert ticket.status == "open"
    assert (await env.agent_row("agent-idle")).current_tickets == 1
    entries = await env.tickets.list_history(ticket.id, env.agent)
    auto = [entry for entry in entries if entry.action == "auto_assigned"]
    assert len(auto) == 1
    assert auto[0].changed_by == "system"
    assert auto[0].changed_by_name == "System"


@pytest.mark.asyncio
async def test_auto_assign_without_candidates_leaves_ticket_unassigned(env: HelpdeskEnv) -> None:
    department = await env.add_department()
    await env.add_agent("agent-full", department_ids=[department.id], max_tickets=0)

    ticket = await env.open_ticket(department_id=department.id)

    assert ticket.assigned_to_id is None
    assert (await env.tickets.list_unassigned(env.agent)).total == 1
    assert env.side_effects.failures_for("auto_assign") == []


@pytest.mark.asyncio
async def test_auto_assign_skips_agent_filled_concurrently(env: HelpdeskEnv) -> None:
    department = await env.add_department()
    await env.add_agent("agent-a", department_ids=[department.id], max_tickets=1)
    await env.add_agent("agent-b", department_ids=[department.id], max_tickets=1)
    env.config.tickets.auto_assign_enabled = False
    ticket = await env.open_ticket(department_id=department.id)

    original = env.deps.agent_repo.find_available

    async def stale_candidates(tenant_id: str, department_id: str | None = None):
        candidates = await original(tenant_id, department_id)
        # Someone else grabs agent-a's only slot after the candidate list was read.
        await env.deps.agent_repo.reserve_capacity(tenant_id, "agent-a")
        return candidates

    env.deps.agent_repo.find_available = stale_candidates  # type: ignore[method-assign]
    assigned = await env.tickets.assignment.auto_assign(ticket)

    assert assigned is not None
    assert assigned.assigned_to_id == "agent-b"
    assert (await env.agent_row("agent-a")).current_tickets == 1
    assert (await env.agent_row("agent-b")).current_tickets == 1


@pytest.mark.asyncio
async def test_transfer_to_missing_department_changes_nothing(env: HelpdeskEnv) -> None:
    department = await env.add_department()
    ticket = await env.open_ticket(department_id=department.id)
    before = await env.reload(ticket.id)

    with pytest.raises(NotFoundError):
        await env.tickets.transfer_ticket(ticket.id, "no-such-department", env.agent)

    after = await env.reload(ticket.id)
    assert after == before
    assert await env.history_actions(ticket.id) == ["created"]


@pytest.mark.asyncio
async def test_transfer_with_explicit_assignee(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    support = await env.add_department("Support")
    billing = await env.add_department("Billing")
    await env.add_agent("agent-a", department_ids=[support.id])
    await env.add_agent("agent-b", department_ids=[billing.id])
    ticket = await env.open_ticket(department_id=support.id)
    await env.tickets.assign_ticket(ticket.id, "agent-a", env.agent)

    moved = await env.tickets.transfer_ticket(ticket.id, billing.id, env.agent, assignee_user_id="agent-b")

    assert moved.department_id == billing.id
    assert moved.assigned_to_id == "agent-b"
    assert (await env.agent_row("agent-a")).current_tickets == 0
    assert (await env.agent_row("agent-b")).current_tickets == 1
    assert (await env.department_row(support.id)).open_tickets == 0
    assert (await env.department_row(billing.id)).open_tickets == 1
    assert "transferred" in await env.history_actions(ticket.id)


@pytest.mark.asyncio
async def test_failed_chained_assignment_keeps_transfer(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    billing = await env.add_department("Billing")
    ticket = await env.open_ticket()

    moved = await env.tickets.transfer_ticket(ticket.id, billing.id, env.agent, assignee_user_id="ghost")

    assert moved.department_id == billing.id
    assert moved.assigned_to_id is None
    failures = env.side_effects.failures_for("transfer_assign")
    assert len(failures) == 1
    assert isinstance(failures[0].error, NotFoundError)
