from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

import pytest_asyncio

from core.config import AppConfig
from database.base import Database
from database.migrations.runner import run_migrations
from database.models import Agent, BusinessHours, Department, SLAPolicy, SLATarget, Ticket
from database.repositories import (
    AgentRepository,
    CannedResponseRepository,
    CategoryRepository,
    DepartmentRepository,
    HistoryRepository,
    MessageRepository,
    SLAPolicyRepository,
    TicketRepository,
)
from services.admin_service import AdminService, AdminServiceDeps
from services.bulk_service import BulkOperationExecutor
from services.payloads import Actor, TicketCreateRequest
from services.side_effects import SideEffects
from services.sla_service import SLABreachMonitor
from services.ticket_service import TicketService, TicketServiceDeps
from utils.time import to_iso, utc_now

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "database" / "migrations"
TENANT = "tenant-a"


@dataclass
class HelpdeskEnv:
    db: Database
    config: AppConfig
    deps: TicketServiceDeps
    side_effects: SideEffects
    tickets: TicketService
    bulk: BulkOperationExecutor
    admin: AdminService
    monitor: SLABreachMonitor

    customer: Actor
    other_customer: Actor
    agent: Actor
    admin_actor: Actor

    async def add_department(
        self,
        name: str = "Support",
        *,
        sla_policy_id: str | None = None,
        default_priority: str | None = None,
        business_hours: BusinessHours | None = None,
        tenant_id: str = TENANT,
    ) -> Department:
        now_iso = to_iso(utc_now())
        department = Department(
            id=str(uuid4()),
            tenant_id=tenant_id,
            name=name,
            slug=name.lower(),
            path=name.lower(),
            default_priority=default_priority,
            sla_policy_id=sla_policy_id,
            business_hours=business_hours,
            created_at=now_iso,
            updated_at=now_iso,
        )
        await self.deps.department_repo.create(department)
        return department

    async def add_agent(
        self,
        user_id: str,
        name: str | None = None,
        *,
        department_ids: list[str] | None = None,
        max_tickets: int = 20,
        status: str = "available",
        tenant_id: str = TENANT,
    ) -> Agent:
        now_iso = to_iso(utc_now())
        agent = Agent(
            id=str(uuid4()),
            tenant_id=tenant_id,
            user_id=user_id,
            name=name or user_id.title(),
            email=f"{user_id}@example.com",
            department_ids=list(department_ids or []),
            status=status,
            is_online=status != "offline",
            max_tickets=max_tickets,
            created_at=now_iso,
            updated_at=now_iso,
        )
        await self.deps.agent_repo.create(agent)
        return agent

    async def add_policy(
        self,
        targets: list[SLATarget],
        *,
        is_default: bool = False,
        use_business_hours: bool = False,
        tenant_id: str = TENANT,
    ) -> SLAPolicy:
        now_iso = to_iso(utc_now())
        policy = SLAPolicy(
            id=str(uuid4()),
            tenant_id=tenant_id,
            name="Standard",
            is_default=is_default,
            priorities=targets,
            use_business_hours=use_business_hours,
            created_at=now_iso,
            updated_at=now_iso,
        )
        await self.deps.sla_repo.create(policy)
        return policy

    async def open_ticket(
        self,
        actor: Actor | None = None,
        *,
        subject: str = "Printer is on fire",
        department_id: str | None = None,
        priority: str | None = None,
        category_id: str | None = None,
    ) -> Ticket:
        request = TicketCreateRequest(
            subject=subject,
            description="It started smoking after the update.",
            department_id=department_id,
            priority=priority,
            category_id=category_id,
        )
        return await self.tickets.create_ticket(request, actor or self.customer)

    async def reload(self, ticket_id: str) -> Ticket:
        ticket = await self.deps.ticket_repo.get_by_id(TENANT, ticket_id, include_deleted=True)
        assert ticket is not None
        return ticket

    async def agent_row(self, user_id: str) -> Agent:
        agent = await self.deps.agent_repo.get_by_user_id(TENANT, user_id)
        assert agent is not None
        return agent

    async def department_row(self, department_id: str) -> Department:
        department = await self.deps.department_repo.get_by_id(TENANT, department_id)
        assert department is not None
        return department

    async def history_actions(self, ticket_id: str) -> list[str]:
        entries = await self.deps.history_repo.list_by_ticket(TENANT, ticket_id)
        return [entry.action for entry in entries]


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncIterator[Database]:
    db = Database(url=f"sqlite:///{tmp_path / 'helpdesk.db'}")
    await db.connect()
    await run_migrations(db, MIGRATIONS_DIR)
    try:
        yield db
    finally:
        await db.close()


@pytest_asyncio.fixture
async def env(database: Database) -> HelpdeskEnv:
    config = AppConfig()
    side_effects = SideEffects()
    deps = TicketServiceDeps(
        ticket_repo=TicketRepository(database),
        message_repo=MessageRepository(database),
        history_repo=HistoryRepository(database),
        department_repo=DepartmentRepository(database),
        category_repo=CategoryRepository(database),
        agent_repo=AgentRepository(database),
        sla_repo=SLAPolicyRepository(database),
        canned_repo=CannedResponseRepository(database),
        side_effects=side_effects,
    )
    tickets = TicketService(config, deps)
    admin = AdminService(
        AdminServiceDeps(
            agent_repo=deps.agent_repo,
            department_repo=deps.department_repo,
            category_repo=deps.category_repo,
            sla_repo=deps.sla_repo,
            canned_repo=deps.canned_repo,
            ticket_repo=deps.ticket_repo,
        )
    )
    return HelpdeskEnv(
        db=database,
        config=config,
        deps=deps,
        side_effects=side_effects,
        tickets=tickets,
        bulk=BulkOperationExecutor(tickets),
        admin=admin,
        monitor=SLABreachMonitor(deps.ticket_repo, deps.history_repo, side_effects),
        customer=Actor(TENANT, "cust-1", "Carol", "carol@example.com"),
        other_customer=Actor(TENANT, "cust-2", "Dave", "dave@example.com"),
        agent=Actor(TENANT, "agent-1", "Alice", "alice@example.com", role="agent"),
        admin_actor=Actor(TENANT, "admin-1", "Root", "root@example.com", role="admin"),
    )
