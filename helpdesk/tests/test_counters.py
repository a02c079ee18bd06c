from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from services.payloads import TicketPatch

if TYPE_CHECKING:
    from conftest import HelpdeskEnv

TENANT = "tenant-a"


async def _assert_conserved(env: HelpdeskEnv, department_ids: list[str], agent_ids: list[str]) -> None:
    for department_id in department_ids:
        department = await env.department_row(department_id)
        expected = await env.deps.ticket_repo.count_open_in_department(TENANT, department_id)
        assert department.open_tickets == expected, department.name
    for user_id in agent_ids:
        agent = await env.agent_row(user_id)
        expected = await env.deps.ticket_repo.count_open_for_agent(TENANT, user_id)
        assert agent.current_tickets == expected, user_id


@pytest.mark.asyncio
async def test_counters_follow_a_mixed_sequence(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    support = await env.add_department("Support")
    billing = await env.add_department("Billing")
    await env.add_agent("agent-a", department_ids=[support.id])
    await env.add_agent("agent-b", department_ids=[billing.id])
    departments = [support.id, billing.id]
    agents = ["agent-a", "agent-b"]

    t1 = await env.open_ticket(department_id=support.id)
    t2 = await env.open_ticket(department_id=support.id)
    t3 = await env.open_ticket(department_id=billing.id)
    await _assert_conserved(env, departments, agents)

    await env.tickets.assign_ticket(t1.id, "agent-a", env.agent)
    await env.tickets.assign_ticket(t2.id, "agent-a", env.agent)
    await env.tickets.assign_ticket(t3.id, "agent-b", env.agent)
    await _assert_conserved(env, departments, agents)

    await env.tickets.assign_ticket(t2.id, "agent-b", env.agent)
    await _assert_conserved(env, departments, agents)

    await env.tickets.transfer_ticket(t1.id, billing.id, env.agent)
    await _assert_conserved(env, departments, agents)

    await env.tickets.change_status(t3.id, "resolved", env.agent)
    await env.tickets.change_status(t3.id, "closed", env.agent)
    await _assert_conserved(env, departments, agents)

    await env.tickets.change_status(t3.id, "reopened", env.agent)
    await _assert_conserved(env, departments, agents)

    await env.tickets.change_status(t2.id, "closed", env.agent)
    await _assert_conserved(env, departments, agents)

    await env.tickets.update_ticket(t2.id, TicketPatch(department_id=billing.id), env.agent)
    await _assert_conserved(env, departments, agents)

    await env.tickets.delete_ticket(t3.id, env.agent)
    await env.tickets.delete_ticket(t2.id, env.agent)
    await _assert_conserved(env, departments, agents)

    assert (await env.department_row(support.id)).total_tickets == 2
    assert (await env.department_row(billing.id)).total_tickets == 3


@pytest.mark.asyncio
async def test_resolve_then_close_decrements_once(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    department = await env.add_department()
    await env.add_agent("agent-a")
    ticket = await env.open_ticket(department_id=department.id)
    await env.tickets.assign_ticket(ticket.id, "agent-a", env.agent)

    await env.tickets.change_status(ticket.id, "resolved", env.agent)
    await env.tickets.change_status(ticket.id, "closed", env.agent)

    assert (await env.department_row(department.id)).open_tickets == 0
    assert (await env.agent_row("agent-a")).current_tickets == 0


@pytest.mark.asyncio
async def test_counters_never_go_negative(env: HelpdeskEnv) -> None:
    department = await env.add_department()
    await env.deps.department_repo.decrement_open_tickets(TENANT, department.id)
    await env.add_agent("agent-a")
    await env.deps.agent_repo.decrement_ticket_count(TENANT, "agent-a")

    assert (await env.department_row(department.id)).open_tickets == 0
    assert (await env.agent_row("agent-a")).current_tickets == 0


@pytest.mark.asyncio
async def test_auto_assign_on_transfer_of_finished_ticket_holds_no_capacity(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    support = await env.add_department("Support")
    billing = await env.add_department("Billing")
    await env.add_agent("agent-b", department_ids=[billing.id])
    ticket = await env.open_ticket(department_id=support.id)
    await env.tickets.change_status(ticket.id, "resolved", env.agent)

    env.config.tickets.auto_assign_enabled = True
    transferred = await env.tickets.transfer_ticket(ticket.id, billing.id, env.agent)
    assert transferred.assigned_to_id == "agent-b"
    assert env.side_effects.failures_for("auto_assign") == []
    assert (await env.agent_row("agent-b")).current_tickets == 0
    await _assert_conserved(env, [support.id, billing.id], ["agent-b"])

    await env.tickets.change_status(ticket.id, "reopened", env.agent)
    assert (await env.agent_row("agent-b")).current_tickets == 1

    await env.tickets.change_status(ticket.id, "closed", env.agent)
    assert (await env.agent_row("agent-b")).current_tickets == 0
    await _assert_conserved(env, [support.id, billing.id], ["agent-b"])


@pytest.mark.asyncio
async def test_bulk_transfer_of_closed_tickets_holds_no_capacity(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    support = await env.add_department("Support")
    billing = await env.add_department("Billing")
    await env.add_agent("agent-b", department_ids=[billing.id])
    first = await env.open_ticket(department_id=support.id)
    second = await env.open_ticket(department_id=support.id)
    for ticket in (first, second):
        await env.tickets.change_status(ticket.id, "closed", env.agent)

    env.config.tickets.auto_assign_enabled = True
    await env.bulk.bulk_transfer([first.id, second.id], billing.id, env.agent)

    assert (await env.reload(first.id)).assigned_to_id == "agent-b"
    assert (await env.agent_row("agent-b")).current_tickets == 0
    await _assert_conserved(env, [support.id, billing.id], ["agent-b"])
