from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.app import HelpdeskApp, log_bulk_result
from core.errors import AuthorizationError, TicketingError
from database.models import BusinessHours, DaySchedule, SLATarget, TicketFilter
from services.admin_service import ADMIN_ROLES
from services.bulk_service import BulkResult
from services.payloads import (
    Actor,
    AgentCreateRequest,
    AgentUpdate,
    AttachmentInput,
    CannedResponseCreateRequest,
    CategoryCreateRequest,
    DepartmentCreateRequest,
    DepartmentUpdate,
    MessageCreateRequest,
    SLAPolicyRequest,
    TicketCreateRequest,
    TicketPatch,
)
from utils.rate_limit import ticket_create_key

LOGGER = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# request bodies
# ----------------------------------------------------------------------


class AttachmentBody(BaseModel):
    name: str
    url: str
    size: int = 0
    mime_type: str = ""

    def to_input(self) -> AttachmentInput:
        return AttachmentInput(name=self.name, url=self.url, size=self.size, mime_type=self.mime_type)


class TicketCreateBody(BaseModel):
    subject: str
    description: str
    type: str | None = None
    priority: str | None = None
    source: str | None = None
    department_id: str | None = None
    category_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    attachments: list[AttachmentBody] = Field(default_factory=list)
    cc_emails: list[str] = Field(default_factory=list)
    parent_ticket_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class TicketPatchBody(BaseModel):
    subject: str | None = None
    description: str | None = None
    type: str | None = None
    priority: str | None = None
    department_id: str | None = None
    category_id: str | None = None
    tags: list[str] | None = None
    custom_fields: dict[str, Any] | None = None
    cc_emails: list[str] | None = None
    escalation_level: int | None = None


class StatusBody(BaseModel):
    status: str
    comment: str | None = None


class AssignBody(BaseModel):
    assignee_id: str
    comment: str | None = None


class TransferBody(BaseModel):
    department_id: str
    assignee_id: str | None = None
    comment: str | None = None


class MessageBody(BaseModel):
    content: str = ""
    content_html: str | None = None
    type: str | None = None
    is_private: bool = False
    attachments: list[AttachmentBody] = Field(default_factory=list)
    canned_response_id: str | None = None


class MessageEditBody(BaseModel):
    content: str


class RatingBody(BaseModel):
    rating: int
    comment: str | None = None


class WatcherBody(BaseModel):
    watcher_id: str


class BulkAssignBody(BaseModel):
    ticket_ids: list[str]
    assignee_id: str


class BulkStatusBody(BaseModel):
    ticket_ids: list[str]
    status: str


class BulkPriorityBody(BaseModel):
    ticket_ids: list[str]
    priority: str


class BulkTransferBody(BaseModel):
    ticket_ids: list[str]
    department_id: str


class BulkDeleteBody(BaseModel):
    ticket_ids: list[str]


class AgentCreateBody(BaseModel):
    user_id: str
    name: str
    email: str
    role: str | None = None
    department_ids: list[str] = Field(default_factory=list)
    team_id: str | None = None
    max_tickets: int | None = None
    skills: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)


class AgentUpdateBody(BaseModel):
    name: str | None = None
    email: str | None = None
    role: str | None = None
    team_id: str | None = None
    max_tickets: int | None = None
    skills: list[str] | None = None
    languages: list[str] | None = None
    is_active: bool | None = None


class AgentStatusBody(BaseModel):
    status: str


class DayScheduleBody(BaseModel):
    day: int = Field(ge=0, le=6)
    is_work_day: bool = True
    start_time: str = "09:00"
    end_time: str = "17:00"


class BusinessHoursBody(BaseModel):
    enabled: bool = False
    timezone: str = "UTC"
    schedule: list[DayScheduleBody] = Field(default_factory=list)
    holidays: list[str] = Field(default_factory=list)

    def to_model(self) -> BusinessHours:
        return BusinessHours(
            enabled=self.enabled,
            timezone=self.timezone,
            schedule=[DaySchedule(**item.model_dump()) for item in self.schedule],
            holidays=list(self.holidays),
        )


class DepartmentCreateBody(BaseModel):
    name: str
    slug: str | None = None
    description: str = ""
    email: str = ""
    parent_id: str | None = None
    manager_id: str | None = None
    auto_assign: bool = False
    auto_assign_type: str | None = None
    default_priority: str | None = None
    sla_policy_id: str | None = None
    business_hours: BusinessHoursBody | None = None


class DepartmentUpdateBody(BaseModel):
    name: str | None = None
    description: str | None = None
    email: str | None = None
    manager_id: str | None = None
    auto_assign: bool | None = None
    auto_assign_type: str | None = None
    default_priority: str | None = None
    sla_policy_id: str | None = None
    business_hours: BusinessHoursBody | None = None
    is_active: bool | None = None


class CategoryCreateBody(BaseModel):
    name: str
    slug: str | None = None
    description: str = ""
    parent_id: str | None = None
    department_id: str | None = None
    default_priority: str | None = None
    sort_order: int = 0
    is_public: bool = True


class SLATargetBody(BaseModel):
    priority: str
    first_response_mins: int
    resolution_mins: int
    next_response_mins: int = 0
    escalation_enabled: bool = False
    escalation_after_mins: int = 0


class SLAPolicyBody(BaseModel):
    name: str
    description: str = ""
    is_default: bool = False
    is_active: bool = True
    priorities: list[SLATargetBody] = Field(default_factory=list)
    use_business_hours: bool = False

    def to_request(self) -> SLAPolicyRequest:
        return SLAPolicyRequest(
            name=self.name,
            description=self.description,
            is_default=self.is_default,
            is_active=self.is_active,
            priorities=[SLATarget(**item.model_dump()) for item in self.priorities],
            use_business_hours=self.use_business_hours,
        )


class CannedResponseBody(BaseModel):
    title: str
    content: str
    shortcut: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    is_global: bool = True
    department_id: str | None = None


# ----------------------------------------------------------------------
# app factory
# ----------------------------------------------------------------------


def _auth(x_api_key: str | None, expected: str, detail: str = "Unauthorized") -> None:
    if not expected:
        return
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail=detail)


def _bulk_response(result: BulkResult) -> dict[str, int]:
    log_bulk_result(result)
    return {"success_count": result.success_count}


def create_api_app(helpdesk: HelpdeskApp) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await helpdesk.start()
        helpdesk.start_worker()
        try:
            yield
        finally:
            await helpdesk.close()

    app = FastAPI(title="Helpdesk API", version="1.0.0", lifespan=lifespan)

    @app.exception_handler(TicketingError)
    async def ticketing_error_handler(request: Request, exc: TicketingError) -> JSONResponse:
        locale = helpdesk.i18n.negotiate(request.headers.get("accept-language"))
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "message": helpdesk.i18n.t(exc.message_key, locale),
                "detail": exc.detail,
            },
        )

    async def require_api_key(request: Request, x_api_key: str | None = Header(default=None)) -> None:
        locale = helpdesk.i18n.negotiate(request.headers.get("accept-language"))
        _auth(x_api_key, helpdesk.config.api.api_key, helpdesk.i18n.t("error.unauthorized", locale))

    async def current_actor(
        request: Request,
        x_tenant_id: str | None = Header(default=None),
        x_user_id: str | None = Header(default=None),
        x_user_name: str = Header(default=""),
        x_user_email: str = Header(default=""),
        x_user_role: str = Header(default="customer"),
    ) -> Actor:
        if not x_tenant_id or not x_user_id:
            locale = helpdesk.i18n.negotiate(request.headers.get("accept-language"))
            raise HTTPException(status_code=401, detail=helpdesk.i18n.t("error.missing_identity", locale))
        return Actor(
            tenant_id=x_tenant_id,
            user_id=x_user_id,
            name=x_user_name,
            email=x_user_email,
            role=x_user_role.strip().lower() or "customer",
        )

    async def require_admin(actor: Actor = Depends(current_actor)) -> Actor:
        if actor.role not in ADMIN_ROLES:
            raise AuthorizationError("Administrator role required.")
        return actor

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    router = APIRouter(prefix="/api/v1", dependencies=[Depends(require_api_key)])

    # -- tickets: fixed paths first so they win over /tickets/{ticket_id} --

    @router.post("/tickets", status_code=201)
    async def create_ticket(
        body: TicketCreateBody, request: Request, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        limits = helpdesk.config.rate_limit
        if limits.enabled and not actor.is_agent:
            result = await helpdesk.rate_limiter.hit(
                ticket_create_key(actor.tenant_id, actor.user_id),
                limit=limits.requests_per_minute,
                window_seconds=60,
            )
            if not result.allowed:
                LOGGER.info("Rate limited ticket creation for %s/%s", actor.tenant_id, actor.user_id)
                locale = helpdesk.i18n.negotiate(request.headers.get("accept-language"))
                raise HTTPException(
                    status_code=429,
                    detail=helpdesk.i18n.t("error.rate_limited", locale, seconds=result.retry_after),
                    headers={"Retry-After": str(result.retry_after)},
                )
        payload = TicketCreateRequest(
            subject=body.subject,
            description=body.description,
            type=body.type,
            priority=body.priority,
            source=body.source,
            department_id=body.department_id,
            category_id=body.category_id,
            tags=list(body.tags),
            custom_fields=dict(body.custom_fields),
            attachments=[item.to_input() for item in body.attachments],
            cc_emails=list(body.cc_emails),
            parent_ticket_id=body.parent_ticket_id,
            metadata=dict(body.metadata),
        )
        ticket = await helpdesk.ticket_service.create_ticket(payload, actor)
        return asdict(ticket)

    @router.get("/tickets")
    async def list_tickets(
        actor: Actor = Depends(current_actor),
        status: list[str] = Query(default=[]),
        priority: list[str] = Query(default=[]),
        ticket_type: str | None = Query(default=None, alias="type"),
        source: str | None = None,
        department_id: str | None = None,
        category_id: str | None = None,
        assigned_to_id: str | None = None,
        customer_id: str | None = None,
        unassigned: bool = False,
        sla_breached: bool | None = None,
        tag: list[str] = Query(default=[]),
        search: str | None = None,
        created_from: str | None = None,
        created_to: str | None = None,
        include_deleted: bool = False,
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
        sort_by: str = "created_at",
        sort_desc: bool = True,
    ) -> dict[str, Any]:
        query = TicketFilter(
            tenant_id=actor.tenant_id,
            statuses=status,
            priorities=priority,
            type=ticket_type,
            source=source,
            department_id=department_id,
            category_id=category_id,
            assigned_to_id=assigned_to_id,
            customer_id=customer_id,
            unassigned=unassigned,
            sla_breached=sla_breached,
            tags=tag,
            search=search,
            created_from=created_from,
            created_to=created_to,
            include_deleted=include_deleted,
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_desc=sort_desc,
        )
        return asdict(await helpdesk.ticket_service.list_tickets(query, actor))

    @router.get("/tickets/mine")
    async def my_tickets(
        actor: Actor = Depends(current_actor),
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
    ) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.list_customer_tickets(actor, page, page_size))

    @router.get("/tickets/assigned")
    async def assigned_tickets(
        actor: Actor = Depends(current_actor),
        status: list[str] = Query(default=[]),
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
    ) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.list_agent_tickets(actor, status, page, page_size))

    @router.get("/tickets/unassigned")
    async def unassigned_tickets(
        actor: Actor = Depends(current_actor),
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
    ) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.list_unassigned(actor, page, page_size))

    @router.get("/tickets/sla-breached")
    async def sla_breached_tickets(
        actor: Actor = Depends(current_actor),
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=20, ge=1, le=100),
    ) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.list_sla_breached(actor, page, page_size))

    @router.get("/tickets/due-soon")
    async def due_soon_tickets(actor: Actor = Depends(current_actor), hours: int = 4) -> dict[str, Any]:
        tickets = await helpdesk.ticket_service.list_due_soon(actor, hours)
        return {"items": [asdict(ticket) for ticket in tickets]}

    @router.get("/tickets/stats")
    async def ticket_stats(actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.get_stats(actor))

    @router.get("/tickets/number/{ticket_number}")
    async def ticket_by_number(ticket_number: str, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.get_ticket_by_number(ticket_number, actor))

    @router.get("/tickets/{ticket_id}")
    async def get_ticket(ticket_id: str, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.get_ticket(ticket_id, actor))

    @router.patch("/tickets/{ticket_id}")
    async def update_ticket(
        ticket_id: str, body: TicketPatchBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        patch = TicketPatch(**body.model_dump())
        return asdict(await helpdesk.ticket_service.update_ticket(ticket_id, patch, actor))

    @router.delete("/tickets/{ticket_id}", status_code=204)
    async def delete_ticket(ticket_id: str, actor: Actor = Depends(current_actor)) -> None:
        await helpdesk.ticket_service.delete_ticket(ticket_id, actor)

    @router.post("/tickets/{ticket_id}/status")
    async def change_status(
        ticket_id: str, body: StatusBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        ticket = await helpdesk.ticket_service.change_status(ticket_id, body.status, actor, body.comment)
        return asdict(ticket)

    @router.post("/tickets/{ticket_id}/assign")
    async def assign_ticket(
        ticket_id: str, body: AssignBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        ticket = await helpdesk.ticket_service.assign_ticket(ticket_id, body.assignee_id, actor, body.comment)
        return asdict(ticket)

    @router.post("/tickets/{ticket_id}/transfer")
    async def transfer_ticket(
        ticket_id: str, body: TransferBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        ticket = await helpdesk.ticket_service.transfer_ticket(
            ticket_id, body.department_id, actor, body.assignee_id, body.comment
        )
        return asdict(ticket)

    @router.post("/tickets/{ticket_id}/messages", status_code=201)
    async def add_message(
        ticket_id: str, body: MessageBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        request = MessageCreateRequest(
            content=body.content,
            content_html=body.content_html,
            type=body.type,
            is_private=body.is_private,
            attachments=[item.to_input() for item in body.attachments],
            canned_response_id=body.canned_response_id,
        )
        return asdict(await helpdesk.ticket_service.add_reply(ticket_id, request, actor))

    @router.get("/tickets/{ticket_id}/messages")
    async def list_messages(ticket_id: str, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        messages = await helpdesk.ticket_service.list_messages(ticket_id, actor)
        return {"items": [asdict(message) for message in messages]}

    @router.get("/tickets/{ticket_id}/history")
    async def list_history(ticket_id: str, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        entries = await helpdesk.ticket_service.list_history(ticket_id, actor)
        return {"items": [asdict(entry) for entry in entries]}

    @router.post("/tickets/{ticket_id}/rating")
    async def rate_ticket(
        ticket_id: str, body: RatingBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.rate_ticket(ticket_id, body.rating, body.comment, actor))

    @router.post("/tickets/{ticket_id}/watchers")
    async def add_watcher(
        ticket_id: str, body: WatcherBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.add_watcher(ticket_id, body.watcher_id, actor))

    @router.delete("/tickets/{ticket_id}/watchers/{watcher_id}")
    async def remove_watcher(
        ticket_id: str, watcher_id: str, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.remove_watcher(ticket_id, watcher_id, actor))

    @router.patch("/messages/{message_id}")
    async def edit_message(
        message_id: str, body: MessageEditBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        return asdict(await helpdesk.ticket_service.edit_message(message_id, body.content, actor))

    @router.delete("/messages/{message_id}", status_code=204)
    async def delete_message(message_id: str, actor: Actor = Depends(current_actor)) -> None:
        await helpdesk.ticket_service.delete_message(message_id, actor)

    # -- bulk -------------------------------------------------------------

    @router.post("/bulk/assign")
    async def bulk_assign(body: BulkAssignBody, actor: Actor = Depends(current_actor)) -> dict[str, int]:
        return _bulk_response(await helpdesk.bulk_service.bulk_assign(body.ticket_ids, body.assignee_id, actor))

    @router.post("/bulk/status")
    async def bulk_status(body: BulkStatusBody, actor: Actor = Depends(current_actor)) -> dict[str, int]:
        return _bulk_response(await helpdesk.bulk_service.bulk_change_status(body.ticket_ids, body.status, actor))

    @router.post("/bulk/priority")
    async def bulk_priority(body: BulkPriorityBody, actor: Actor = Depends(current_actor)) -> dict[str, int]:
        return _bulk_response(
            await helpdesk.bulk_service.bulk_change_priority(body.ticket_ids, body.priority, actor)
        )

    @router.post("/bulk/transfer")
    async def bulk_transfer(body: BulkTransferBody, actor: Actor = Depends(current_actor)) -> dict[str, int]:
        return _bulk_response(
            await helpdesk.bulk_service.bulk_transfer(body.ticket_ids, body.department_id, actor)
        )

    @router.post("/bulk/delete")
    async def bulk_delete(body: BulkDeleteBody, actor: Actor = Depends(current_actor)) -> dict[str, int]:
        return _bulk_response(await helpdesk.bulk_service.bulk_delete(body.ticket_ids, actor))

    # -- agents -----------------------------------------------------------

    @router.post("/agents", status_code=201)
    async def create_agent(body: AgentCreateBody, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        request = AgentCreateRequest(**body.model_dump())
        return asdict(await helpdesk.admin_service.create_agent(request, actor))

    @router.get("/agents")
    async def list_agents(
        actor: Actor = Depends(current_actor), department_id: str | None = None
    ) -> dict[str, Any]:
        agents = await helpdesk.admin_service.list_agents(actor, department_id)
        return {"items": [asdict(agent) for agent in agents]}

    @router.get("/agents/{user_id}")
    async def get_agent(user_id: str, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        return asdict(await helpdesk.admin_service.get_agent(user_id, actor))

    @router.patch("/agents/{user_id}")
    async def update_agent(
        user_id: str, body: AgentUpdateBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        update = AgentUpdate(**body.model_dump())
        return asdict(await helpdesk.admin_service.update_agent(user_id, update, actor))

    @router.post("/agents/{user_id}/status")
    async def set_agent_status(
        user_id: str, body: AgentStatusBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        return asdict(await helpdesk.admin_service.set_agent_status(user_id, body.status, actor))

    @router.delete("/agents/{user_id}", status_code=204)
    async def delete_agent(user_id: str, actor: Actor = Depends(current_actor)) -> None:
        await helpdesk.admin_service.delete_agent(user_id, actor)

    # -- departments ------------------------------------------------------

    @router.post("/departments", status_code=201)
    async def create_department(
        body: DepartmentCreateBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        values = body.model_dump(exclude={"business_hours"})
        request = DepartmentCreateRequest(
            **values,
            business_hours=body.business_hours.to_model() if body.business_hours else None,
        )
        return asdict(await helpdesk.admin_service.create_department(request, actor))

    @router.get("/departments")
    async def list_departments(actor: Actor = Depends(current_actor), active_only: bool = False) -> dict[str, Any]:
        departments = await helpdesk.admin_service.list_departments(actor, active_only)
        return {"items": [asdict(department) for department in departments]}

    @router.get("/departments/{department_id}")
    async def get_department(department_id: str, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        return asdict(await helpdesk.admin_service.get_department(department_id, actor))

    @router.patch("/departments/{department_id}")
    async def update_department(
        department_id: str, body: DepartmentUpdateBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        values = body.model_dump(exclude={"business_hours"})
        update = DepartmentUpdate(
            **values,
            business_hours=body.business_hours.to_model() if body.business_hours else None,
        )
        return asdict(await helpdesk.admin_service.update_department(department_id, update, actor))

    @router.delete("/departments/{department_id}", status_code=204)
    async def delete_department(department_id: str, actor: Actor = Depends(current_actor)) -> None:
        await helpdesk.admin_service.delete_department(department_id, actor)

    @router.put("/departments/{department_id}/agents/{user_id}")
    async def add_department_agent(
        department_id: str, user_id: str, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        return asdict(await helpdesk.admin_service.add_agent_to_department(department_id, user_id, actor))

    @router.delete("/departments/{department_id}/agents/{user_id}")
    async def remove_department_agent(
        department_id: str, user_id: str, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        return asdict(await helpdesk.admin_service.remove_agent_from_department(department_id, user_id, actor))

    # -- categories -------------------------------------------------------

    @router.post("/categories", status_code=201)
    async def create_category(body: CategoryCreateBody, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        request = CategoryCreateRequest(**body.model_dump())
        return asdict(await helpdesk.admin_service.create_category(request, actor))

    @router.get("/categories")
    async def list_categories(
        actor: Actor = Depends(current_actor), department_id: str | None = None
    ) -> dict[str, Any]:
        categories = await helpdesk.admin_service.list_categories(actor, department_id)
        return {"items": [asdict(category) for category in categories]}

    # -- SLA policies -----------------------------------------------------

    @router.post("/sla-policies", status_code=201)
    async def create_sla_policy(body: SLAPolicyBody, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        return asdict(await helpdesk.admin_service.create_sla_policy(body.to_request(), actor))

    @router.get("/sla-policies")
    async def list_sla_policies(actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        policies = await helpdesk.admin_service.list_sla_policies(actor)
        return {"items": [asdict(policy) for policy in policies]}

    @router.get("/sla-policies/{policy_id}")
    async def get_sla_policy(policy_id: str, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        return asdict(await helpdesk.admin_service.get_sla_policy(policy_id, actor))

    @router.put("/sla-policies/{policy_id}")
    async def update_sla_policy(
        policy_id: str, body: SLAPolicyBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        return asdict(await helpdesk.admin_service.update_sla_policy(policy_id, body.to_request(), actor))

    @router.delete("/sla-policies/{policy_id}", status_code=204)
    async def delete_sla_policy(policy_id: str, actor: Actor = Depends(current_actor)) -> None:
        await helpdesk.admin_service.delete_sla_policy(policy_id, actor)

    @router.post("/sla/sweep")
    async def sweep_sla(actor: Actor = Depends(require_admin)) -> dict[str, int]:
        flagged = await helpdesk.breach_monitor.sweep(actor.tenant_id)
        return {"flagged": flagged}

    # -- canned responses -------------------------------------------------

    @router.post("/canned-responses", status_code=201)
    async def create_canned_response(
        body: CannedResponseBody, actor: Actor = Depends(current_actor)
    ) -> dict[str, Any]:
        request = CannedResponseCreateRequest(**body.model_dump())
        return asdict(await helpdesk.admin_service.create_canned_response(request, actor))

    @router.get("/canned-responses")
    async def list_canned_responses(
        actor: Actor = Depends(current_actor), department_id: str | None = None
    ) -> dict[str, Any]:
        responses = await helpdesk.admin_service.list_canned_responses(actor, department_id)
        return {"items": [asdict(response) for response in responses]}

    @router.get("/canned-responses/shortcut/{shortcut}")
    async def canned_by_shortcut(shortcut: str, actor: Actor = Depends(current_actor)) -> dict[str, Any]:
        return asdict(await helpdesk.admin_service.get_canned_by_shortcut(shortcut, actor))

    @router.delete("/canned-responses/{response_id}", status_code=204)
    async def delete_canned_response(response_id: str, actor: Actor = Depends(current_actor)) -> None:
        await helpdesk.admin_service.delete_canned_response(response_id, actor)

    app.include_router(router)
    return app
