from __future__ import annotations

import re
from dataclasses import dataclass
from uuid import uuid4

from core.errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from database.models import Agent, CannedResponse, Category, Department, SLAPolicy, SLATarget
from database.repositories import (
    AgentRepository,
    CannedResponseRepository,
    CategoryRepository,
    DepartmentRepository,
    SLAPolicyRepository,
    TicketRepository,
)
from services.payloads import (
    Actor,
    AgentCreateRequest,
    AgentUpdate,
    CannedResponseCreateRequest,
    CategoryCreateRequest,
    DepartmentCreateRequest,
    DepartmentUpdate,
    SLAPolicyRequest,
)
from utils.constants import (
    AGENT_ROLES,
    AGENT_STATUSES,
    AUTO_ASSIGN_TYPES,
    DEFAULT_AGENT_MAX_TICKETS,
    DEFAULT_PRIORITY,
    PRIORITY_LEVELS,
)
from utils.time import to_iso, utc_now

ADMIN_ROLES = frozenset({"admin", "manager"})


@dataclass(slots=True)
class AdminServiceDeps:
    agent_repo: AgentRepository
    department_repo: DepartmentRepository
    category_repo: CategoryRepository
    sla_repo: SLAPolicyRepository
    canned_repo: CannedResponseRepository
    ticket_repo: TicketRepository


def slugify(name: str) -> str:
    name = name.strip().lower()
    name = re.sub(r"[^a-z0-9-]+", "-", name)
    name = re.sub(r"-{2,}", "-", name).strip("-")
    return name[:64] or "item"


def _require_admin(actor: Actor) -> None:
    if actor.role not in ADMIN_ROLES:
        raise AuthorizationError("Administrator role required.")


def _require_agent(actor: Actor) -> None:
    if not actor.is_agent:
        raise AuthorizationError("Only agents can perform this action.")


class AdminService:
    """Configuration of agents, departments, categories, SLA policies and canned responses."""

    def __init__(self, deps: AdminServiceDeps) -> None:
        self.deps = deps

    # -- agents ---------------------------------------------------------

    async def create_agent(self, request: AgentCreateRequest, actor: Actor) -> Agent:
        _require_admin(actor)
        if not request.user_id.strip() or not request.name.strip() or not request.email.strip():
            raise ValidationError("user_id, name and email are required.")
        if request.role is not None and request.role not in AGENT_ROLES:
            raise ValidationError(f"Invalid role. Use: {', '.join(AGENT_ROLES)}")
        if request.max_tickets is not None and request.max_tickets < 0:
            raise ValidationError("max_tickets must not be negative.")
        if await self.deps.agent_repo.get_by_user_id(actor.tenant_id, request.user_id) is not None:
            raise ValidationError("Agent already exists.")

        departments: list[Department] = []
        for department_id in request.department_ids:
            department = await self.deps.department_repo.get_by_id(actor.tenant_id, department_id)
            if department is not None:
                departments.append(department)

        now_iso = to_iso(utc_now())
        agent = Agent(
            id=str(uuid4()),
            tenant_id=actor.tenant_id,
            user_id=request.user_id,
            name=request.name.strip(),
            email=request.email.strip(),
            role=request.role or "agent",
            department_ids=[department.id for department in departments],
            team_id=request.team_id,
            status="offline",
            max_tickets=DEFAULT_AGENT_MAX_TICKETS if request.max_tickets is None else request.max_tickets,
            skills=list(request.skills),
            languages=list(request.languages),
            created_at=now_iso,
            updated_at=now_iso,
        )
        await self.deps.agent_repo.create(agent)
        for department in departments:
            if agent.user_id not in department.agent_ids:
                department.agent_ids.append(agent.user_id)
                department.updated_at = now_iso
                await self.deps.department_repo.update(department)
        return agent

    async def get_agent(self, user_id: str, actor: Actor) -> Agent:
        _require_agent(actor)
        agent = await self.deps.agent_repo.get_by_user_id(actor.tenant_id, user_id)
        if agent is None:
            raise NotFoundError("Agent not found.")
        return agent

    async def list_agents(self, actor: Actor, department_id: str | None = None) -> list[Agent]:
        _require_agent(actor)
        return await self.deps.agent_repo.list_by_tenant(actor.tenant_id, department_id)

    async def update_agent(self, user_id: str, update: AgentUpdate, actor: Actor) -> Agent:
        _require_admin(actor)
        agent = await self.get_agent(user_id, actor)
        if update.role is not None and update.role not in AGENT_ROLES:
            raise ValidationError(f"Invalid role. Use: {', '.join(AGENT_ROLES)}")
        if update.max_tickets is not None and update.max_tickets < 0:
            raise ValidationError("max_tickets must not be negative.")
        for name in ("name", "email", "role", "team_id", "max_tickets", "skills", "languages", "is_active"):
            value = getattr(update, name)
            if value is not None:
                setattr(agent, name, value)
        agent.updated_at = to_iso(utc_now())
        await self.deps.agent_repo.update(agent)
        return agent

    async def set_agent_status(self, user_id: str, status: str, actor: Actor) -> Agent:
        if actor.user_id != user_id:
            _require_admin(actor)
        if status not in AGENT_STATUSES:
            raise ValidationError(f"Invalid agent status. Use: {', '.join(AGENT_STATUSES)}")
        agent = await self.get_agent(user_id, actor)
        agent.status = status
        agent.is_online = status != "offline"
        agent.updated_at = to_iso(utc_now())
        await self.deps.agent_repo.update(agent)
        return agent

    async def delete_agent(self, user_id: str, actor: Actor) -> None:
        _require_admin(actor)
        agent = await self.get_agent(user_id, actor)
        if await self.deps.ticket_repo.count_open_for_agent(actor.tenant_id, agent.user_id) > 0:
            raise InvalidStateError("Reassign the agent's open tickets before deleting the agent.")
        now_iso = to_iso(utc_now()) or ""
        for department_id in agent.department_ids:
            department = await self.deps.department_repo.get_by_id(actor.tenant_id, department_id)
            if department is not None and agent.user_id in department.agent_ids:
                department.agent_ids = [item for item in department.agent_ids if item != agent.user_id]
                department.updated_at = now_iso
                await self.deps.department_repo.update(department)
        await self.deps.agent_repo.soft_delete(actor.tenant_id, agent.user_id, now_iso)

    # -- departments ----------------------------------------------------

    async def create_department(self, request: DepartmentCreateRequest, actor: Actor) -> Department:
        _require_admin(actor)
        if not request.name.strip():
            raise ValidationError("Department name is required.")
        if request.default_priority is not None and request.default_priority not in PRIORITY_LEVELS:
            raise ValidationError(f"Invalid priority. Use: {', '.join(PRIORITY_LEVELS)}")
        if request.auto_assign_type is not None and request.auto_assign_type not in AUTO_ASSIGN_TYPES:
            raise ValidationError(f"Invalid auto assign type. Use: {', '.join(AUTO_ASSIGN_TYPES)}")

        slug = slugify(request.slug or request.name)
        path, level, parent_id = slug, 0, None
        if request.parent_id:
            parent = await self.deps.department_repo.get_by_id(actor.tenant_id, request.parent_id)
            if parent is None:
                raise NotFoundError("Parent department not found.")
            path, level, parent_id = f"{parent.path}/{slug}", parent.level + 1, parent.id

        now_iso = to_iso(utc_now())
        department = Department(
            id=str(uuid4()),
            tenant_id=actor.tenant_id,
            name=request.name.strip(),
            slug=slug,
            path=path,
            level=level,
            parent_id=parent_id,
            description=request.description,
            email=request.email,
            auto_assign=request.auto_assign,
            auto_assign_type=request.auto_assign_type or "load_balanced",
            default_priority=request.default_priority or DEFAULT_PRIORITY,
            business_hours=request.business_hours,
            created_at=now_iso,
            updated_at=now_iso,
        )
        if request.manager_id:
            manager = await self.deps.agent_repo.get_by_user_id(actor.tenant_id, request.manager_id)
            if manager is not None:
                department.manager_id = manager.user_id
                department.manager_name = manager.name
        if request.sla_policy_id:
            policy = await self.deps.sla_repo.get_by_id(actor.tenant_id, request.sla_policy_id)
            if policy is not None:
                department.sla_policy_id = policy.id
        await self.deps.department_repo.create(department)
        return department

    async def get_department(self, department_id: str, actor: Actor) -> Department:
        department = await self.deps.department_repo.get_by_id(actor.tenant_id, department_id)
        if department is None:
            raise NotFoundError("Department not found.")
        return department

    async def list_departments(self, actor: Actor, active_only: bool = False) -> list[Department]:
        return await self.deps.department_repo.list_by_tenant(actor.tenant_id, active_only=active_only)

    async def update_department(self, department_id: str, update: DepartmentUpdate, actor: Actor) -> Department:
        _require_admin(actor)
        department = await self.get_department(department_id, actor)
        if update.default_priority is not None and update.default_priority not in PRIORITY_LEVELS:
            raise ValidationError(f"Invalid priority. Use: {', '.join(PRIORITY_LEVELS)}")
        if update.auto_assign_type is not None and update.auto_assign_type not in AUTO_ASSIGN_TYPES:
            raise ValidationError(f"Invalid auto assign type. Use: {', '.join(AUTO_ASSIGN_TYPES)}")
        if update.name is not None and update.name.strip():
            department.name = update.name.strip()
        for name in ("description", "email", "auto_assign", "auto_assign_type", "default_priority", "is_active"):
            value = getattr(update, name)
            if value is not None:
                setattr(department, name, value)
        if update.business_hours is not None:
            department.business_hours = update.business_hours
        if update.manager_id is not None:
            manager = await self.deps.agent_repo.get_by_user_id(actor.tenant_id, update.manager_id)
            if manager is not None:
                department.manager_id = manager.user_id
                department.manager_name = manager.name
        if update.sla_policy_id is not None:
            policy = await self.deps.sla_repo.get_by_id(actor.tenant_id, update.sla_policy_id)
            if policy is not None:
                department.sla_policy_id = policy.id
        department.updated_at = to_iso(utc_now())
        await self.deps.department_repo.update(department)
        return department

    async def delete_department(self, department_id: str, actor: Actor) -> None:
        _require_admin(actor)
        department = await self.get_department(department_id, actor)
        if department.open_tickets > 0:
            raise InvalidStateError("Cannot delete a department with open tickets.")
        await self.deps.department_repo.soft_delete(actor.tenant_id, department.id, to_iso(utc_now()) or "")

    async def add_agent_to_department(self, department_id: str, user_id: str, actor: Actor) -> Department:
        _require_admin(actor)
        department = await self.get_department(department_id, actor)
        agent = await self.get_agent(user_id, actor)
        now_iso = to_iso(utc_now())
        if department.id not in agent.department_ids:
            agent.department_ids.append(department.id)
            agent.updated_at = now_iso
            await self.deps.agent_repo.update(agent)
        if agent.user_id not in department.agent_ids:
            department.agent_ids.append(agent.user_id)
            department.updated_at = now_iso
            await self.deps.department_repo.update(department)
        return department

    async def remove_agent_from_department(self, department_id: str, user_id: str, actor: Actor) -> Department:
        _require_admin(actor)
        department = await self.get_department(department_id, actor)
        agent = await self.get_agent(user_id, actor)
        now_iso = to_iso(utc_now())
        if department.id in agent.department_ids:
            agent.department_ids = [item for item in agent.department_ids if item != department.id]
            agent.updated_at = now_iso
            await self.deps.agent_repo.update(agent)
        if agent.user_id in department.agent_ids:
            department.agent_ids = [item for item in department.agent_ids if item != agent.user_id]
            department.updated_at = now_iso
            await self.deps.department_repo.update(department)
        return department

    # -- categories -----------------------------------------------------

    async def create_category(self, request: CategoryCreateRequest, actor: Actor) -> Category:
        _require_admin(actor)
        if not request.name.strip():
            raise ValidationError("Category name is required.")
        if request.default_priority is not None and request.default_priority not in PRIORITY_LEVELS:
            raise ValidationError(f"Invalid priority. Use: {', '.join(PRIORITY_LEVELS)}")
        slug = slugify(request.slug or request.name)
        path, level, parent_id = slug, 0, None
        if request.parent_id:
            parent = await self.deps.category_repo.get_by_id(actor.tenant_id, request.parent_id)
            if parent is None:
                raise NotFoundError("Parent category not found.")
            path, level, parent_id = f"{parent.path}/{slug}", parent.level + 1, parent.id
        department_id = None
        if request.department_id:
            department = await self.deps.department_repo.get_by_id(actor.tenant_id, request.department_id)
            department_id = department.id if department is not None else None

        now_iso = to_iso(utc_now())
        category = Category(
            id=str(uuid4()),
            tenant_id=actor.tenant_id,
            name=request.name.strip(),
            slug=slug,
            path=path,
            level=level,
            parent_id=parent_id,
            description=request.description,
            department_id=department_id,
            default_priority=request.default_priority,
            sort_order=request.sort_order,
            is_public=request.is_public,
            created_at=now_iso,
            updated_at=now_iso,
        )
        await self.deps.category_repo.create(category)
        return category

    async def list_categories(self, actor: Actor, department_id: str | None = None) -> list[Category]:
        return await self.deps.category_repo.list_by_tenant(
            actor.tenant_id, department_id=department_id, public_only=not actor.is_agent
        )

    # -- SLA policies ---------------------------------------------------

    @staticmethod
    def _validate_targets(targets: list[SLATarget]) -> None:
        seen: set[str] = set()
        for target in targets:
            if target.priority not in PRIORITY_LEVELS:
                raise ValidationError(f"Invalid priority {target.priority!r} in SLA policy.")
            if target.priority in seen:
                raise ValidationError(f"Duplicate SLA target for priority {target.priority!r}.")
            if target.first_response_mins <= 0 or target.resolution_mins <= 0:
                raise ValidationError("SLA targets must be positive minute counts.")
            seen.add(target.priority)

    async def create_sla_policy(self, request: SLAPolicyRequest, actor: Actor) -> SLAPolicy:
        _require_admin(actor)
        if not request.name.strip():
            raise ValidationError("Policy name is required.")
        self._validate_targets(request.priorities)
        now_iso = to_iso(utc_now()) or ""
        policy = SLAPolicy(
            id=str(uuid4()),
            tenant_id=actor.tenant_id,
            name=request.name.strip(),
            description=request.description,
            is_default=request.is_default,
            is_active=request.is_active,
            priorities=list(request.priorities),
            use_business_hours=request.use_business_hours,
            created_at=now_iso,
            updated_at=now_iso,
        )
        await self.deps.sla_repo.create(policy)
        if policy.is_default:
            await self.deps.sla_repo.clear_default(actor.tenant_id, policy.id, now_iso)
        return policy

    async def get_sla_policy(self, policy_id: str, actor: Actor) -> SLAPolicy:
        _require_agent(actor)
        policy = await self.deps.sla_repo.get_by_id(actor.tenant_id, policy_id)
        if policy is None:
            raise NotFoundError("SLA policy not found.")
        return policy

    async def list_sla_policies(self, actor: Actor) -> list[SLAPolicy]:
        _require_agent(actor)
        return await self.deps.sla_repo.list_by_tenant(actor.tenant_id)

    async def update_sla_policy(self, policy_id: str, request: SLAPolicyRequest, actor: Actor) -> SLAPolicy:
        _require_admin(actor)
        policy = await self.get_sla_policy(policy_id, actor)
        if not request.name.strip():
            raise ValidationError("Policy name is required.")
        self._validate_targets(request.priorities)
        now_iso = to_iso(utc_now()) or ""
        policy.name = request.name.strip()
        policy.description = request.description
        policy.is_default = request.is_default
        policy.is_active = request.is_active
        policy.priorities = list(request.priorities)
        policy.use_business_hours = request.use_business_hours
        policy.updated_at = now_iso
        await self.deps.sla_repo.update(policy)
        if policy.is_default:
            await self.deps.sla_repo.clear_default(actor.tenant_id, policy.id, now_iso)
        return policy

    async def delete_sla_policy(self, policy_id: str, actor: Actor) -> None:
        _require_admin(actor)
        policy = await self.get_sla_policy(policy_id, actor)
        if policy.is_default:
            raise InvalidStateError("The default SLA policy cannot be deleted.")
        await self.deps.sla_repo.soft_delete(actor.tenant_id, policy.id, to_iso(utc_now()) or "")

    # -- canned responses -----------------------------------------------

    async def create_canned_response(self, request: CannedResponseCreateRequest, actor: Actor) -> CannedResponse:
        _require_agent(actor)
        if not request.title.strip() or not request.content.strip():
            raise ValidationError("Title and content are required.")
        shortcut = request.shortcut.strip() if request.shortcut else None
        if shortcut and await self.deps.canned_repo.get_by_shortcut(actor.tenant_id, shortcut) is not None:
            raise ValidationError(f"Shortcut {shortcut!r} is already in use.")
        department_id = None
        if request.department_id:
            department = await self.deps.department_repo.get_by_id(actor.tenant_id, request.department_id)
            department_id = department.id if department is not None else None

        now_iso = to_iso(utc_now())
        response = CannedResponse(
            id=str(uuid4()),
            tenant_id=actor.tenant_id,
            title=request.title.strip(),
            content=request.content,
            created_by=actor.user_id,
            shortcut=shortcut,
            category=request.category,
            tags=list(request.tags),
            is_global=request.is_global or department_id is None,
            department_id=department_id,
            created_at=now_iso,
            updated_at=now_iso,
        )
        await self.deps.canned_repo.create(response)
        return response

    async def list_canned_responses(self, actor: Actor, department_id: str | None = None) -> list[CannedResponse]:
        _require_agent(actor)
        return await self.deps.canned_repo.list_by_tenant(actor.tenant_id, department_id)

    async def get_canned_by_shortcut(self, shortcut: str, actor: Actor) -> CannedResponse:
        _require_agent(actor)
        response = await self.deps.canned_repo.get_by_shortcut(actor.tenant_id, shortcut)
        if response is None:
            raise NotFoundError("Canned response not found.")
        return response

    async def delete_canned_response(self, response_id: str, actor: Actor) -> None:
        _require_agent(actor)
        response = await self.deps.canned_repo.get_by_id(actor.tenant_id, response_id)
        if response is None:
            raise NotFoundError("Canned response not found.")
        if response.created_by != actor.user_id:
            _require_admin(actor)
        await self.deps.canned_repo.soft_delete(actor.tenant_id, response.id, to_iso(utc_now()) or "")
