from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from core.errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from database.models import SLATarget
from services.payloads import (
    AgentCreateRequest,
    AgentUpdate,
    CannedResponseCreateRequest,
    CategoryCreateRequest,
    DepartmentCreateRequest,
    MessageCreateRequest,
    SLAPolicyRequest,
)

if TYPE_CHECKING:
    from conftest import HelpdeskEnv


@pytest.mark.asyncio
async def test_agent_defaults_and_duplicates(env: HelpdeskEnv) -> None:
    department = await env.admin.create_department(DepartmentCreateRequest(name="Support"), env.admin_actor)
    agent = await env.admin.create_agent(
        AgentCreateRequest("agent-a", "Ann", "ann@example.com", department_ids=[department.id, "missing"]),
        env.admin_actor,
    )

    assert agent.role == "agent"
    assert agent.status == "offline"
    assert agent.max_tickets == 20
    assert agent.current_tickets == 0
    assert agent.department_ids == [department.id]
    assert (await env.department_row(department.id)).agent_ids == ["agent-a"]

    with pytest.raises(ValidationError):
        await env.admin.create_agent(AgentCreateRequest("agent-a", "Ann", "ann@example.com"), env.admin_actor)
    with pytest.raises(ValidationError):
        await env.admin.create_agent(AgentCreateRequest("agent-b", "B", "b@example.com", role="boss"), env.admin_actor)


@pytest.mark.asyncio
async def test_configuration_needs_admin_role(env: HelpdeskEnv) -> None:
    with pytest.raises(AuthorizationError):
        await env.admin.create_agent(AgentCreateRequest("agent-a", "Ann", "ann@example.com"), env.agent)
    with pytest.raises(AuthorizationError):
        await env.admin.create_department(DepartmentCreateRequest(name="Support"), env.customer)
    with pytest.raises(AuthorizationError):
        await env.admin.list_agents(env.customer)


@pytest.mark.asyncio
async def test_agent_status_by_self_or_admin(env: HelpdeskEnv) -> None:
    await env.admin.create_agent(AgentCreateRequest("agent-1", "Alice", "alice@example.com"), env.admin_actor)
    agent = await env.admin.set_agent_status("agent-1", "available", env.agent)
    assert agent.status == "available"
    assert agent.is_online is True

    await env.admin.create_agent(AgentCreateRequest("agent-2", "Bob", "bob@example.com"), env.admin_actor)
    with pytest.raises(AuthorizationError):
        await env.admin.set_agent_status("agent-2", "available", env.agent)
    with pytest.raises(ValidationError):
        await env.admin.set_agent_status("agent-1", "sleeping", env.agent)

    updated = await env.admin.update_agent("agent-2", AgentUpdate(max_tickets=3, role="supervisor"), env.admin_actor)
    assert updated.max_tickets == 3
    assert (await env.agent_row("agent-2")).role == "supervisor"


@pytest.mark.asyncio
async def test_agent_with_open_tickets_cannot_be_deleted(env: HelpdeskEnv) -> None:
    env.config.tickets.auto_assign_enabled = False
    department = await env.add_department()
    await env.add_agent("agent-a", department_ids=[department.id])
    await env.admin.add_agent_to_department(department.id, "agent-a", env.admin_actor)
    ticket = await env.open_ticket(department_id=department.id)
    await env.tickets.assign_ticket(ticket.id, "agent-a", env.agent)

    with pytest.raises(InvalidStateError):
        await env.admin.delete_agent("agent-a", env.admin_actor)

    await env.tickets.change_status(ticket.id, "resolved", env.agent)
    await env.admin.delete_agent("agent-a", env.admin_actor)
    with pytest.raises(NotFoundError):
        await env.admin.get_agent("agent-a", env.admin_actor)
    assert "agent-a" not in (await env.department_row(department.id)).agent_ids


@pytest.mark.asyncio
async def test_department_hierarchy_and_deletion(env: HelpdeskEnv) -> None:
    parent = await env.admin.create_department(DepartmentCreateRequest(name="Customer Care"), env.admin_actor)
    child = await env.admin.create_department(
        DepartmentCreateRequest(name="Billing & Refunds", parent_id=parent.id, default_priority="high"),
        env.admin_actor,
    )

    assert parent.slug == "customer-care"
    assert parent.default_priority == "medium"
    assert child.path == "customer-care/billing-refunds"
    assert child.level == 1
    assert child.parent_id == parent.id

    with pytest.raises(NotFoundError):
        await env.admin.create_department(DepartmentCreateRequest(name="Orphan", parent_id="nope"), env.admin_actor)

    ticket = await env.open_ticket(department_id=child.id)
    assert ticket.priority == "high"
    with pytest.raises(InvalidStateError):
        await env.admin.delete_department(child.id, env.admin_actor)

    await env.tickets.change_status(ticket.id, "closed", env.agent)
    await env.admin.delete_department(child.id, env.admin_actor)
    with pytest.raises(NotFoundError):
        await env.admin.get_department(child.id, env.admin_actor)


@pytest.mark.asyncio
async def test_private_categories_hidden_from_customers(env: HelpdeskEnv) -> None:
    await env.admin.create_category(CategoryCreateRequest(name="Hardware"), env.admin_actor)
    await env.admin.create_category(CategoryCreateRequest(name="Escalations", is_public=False), env.admin_actor)

    assert {item.name for item in await env.admin.list_categories(env.agent)} == {"Hardware", "Escalations"}
    assert [item.name for item in await env.admin.list_categories(env.customer)] == ["Hardware"]


@pytest.mark.asyncio
async def test_only_one_default_sla_policy(env: HelpdeskEnv) -> None:
    first = await env.admin.create_sla_policy(
        SLAPolicyRequest("Gold", is_default=True, priorities=[SLATarget("high", 30, 240)]), env.admin_actor
    )
    second = await env.admin.create_sla_policy(
        SLAPolicyRequest("Silver", is_default=True, priorities=[SLATarget("high", 60, 480)]), env.admin_actor
    )

    assert (await env.admin.get_sla_policy(first.id, env.agent)).is_default is False
    assert (await env.admin.get_sla_policy(second.id, env.agent)).is_default is True
    with pytest.raises(InvalidStateError):
        await env.admin.delete_sla_policy(second.id, env.admin_actor)
    await env.admin.delete_sla_policy(first.id, env.admin_actor)
    assert [policy.id for policy in await env.admin.list_sla_policies(env.agent)] == [second.id]


@pytest.mark.asyncio
async def test_sla_targets_are_validated(env: HelpdeskEnv) -> None:
    with pytest.raises(ValidationError):
        await env.admin.create_sla_policy(
            SLAPolicyRequest("Bad", priorities=[SLATarget("high", 30, 60), SLATarget("high", 10, 20)]),
            env.admin_actor,
        )
    with pytest.raises(ValidationError):
        await env.admin.create_sla_policy(SLAPolicyRequest("Bad", priorities=[SLATarget("soon", 30, 60)]), env.admin_actor)
    with pytest.raises(ValidationError):
        await env.admin.create_sla_policy(SLAPolicyRequest("Bad", priorities=[SLATarget("low", 0, 60)]), env.admin_actor)


@pytest.mark.asyncio
async def test_canned_responses(env: HelpdeskEnv) -> None:
    response = await env.admin.create_canned_response(
        CannedResponseCreateRequest("Greeting", "Hello, thanks for reaching out.", shortcut="/hi"), env.agent
    )
    assert response.is_global is True

    with pytest.raises(ValidationError):
        await env.admin.create_canned_response(CannedResponseCreateRequest("Again", "Hi", shortcut="/hi"), env.agent)
    with pytest.raises(AuthorizationError):
        await env.admin.list_canned_responses(env.customer)

    found = await env.admin.get_canned_by_shortcut("/hi", env.agent)
    assert found.id == response.id

    ticket = await env.open_ticket()
    await env.tickets.add_reply(ticket.id, MessageCreateRequest(canned_response_id=response.id), env.agent)
    assert (await env.deps.canned_repo.get_by_id("tenant-a", response.id)).usage_count == 1

    await env.admin.delete_canned_response(response.id, env.agent)
    with pytest.raises(NotFoundError):
        await env.admin.get_canned_by_shortcut("/hi", env.agent)
