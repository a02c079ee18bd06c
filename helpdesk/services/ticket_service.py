from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from core.config import AppConfig
from core.errors import (
    AuthorizationError,
    CapacityError,
    ConflictError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from database.models import (
    Attachment,
    Department,
    Ticket,
    TicketFilter,
    TicketHistory,
    TicketMessage,
    TicketPage,
    TicketStats,
)
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
from services.assignment_service import AssignmentEngine
from services.payloads import (
    Actor,
    AttachmentInput,
    MessageCreateRequest,
    TicketCreateRequest,
    TicketPatch,
)
from services.side_effects import SideEffects
from services.sla_service import SLAResolver
from utils.constants import (
    CUSTOMER_TRANSITIONS,
    DEFAULT_PRIORITY,
    DEFAULT_SOURCE,
    DEFAULT_TYPE,
    FINISHED_STATUSES,
    MESSAGE_TYPES,
    PRIORITY_LEVELS,
    SENDER_TYPES,
    SYSTEM_ACTOR_ID,
    SYSTEM_ACTOR_NAME,
    TICKET_SOURCES,
    TICKET_STATUS_CLOSED,
    TICKET_STATUS_IN_PROGRESS,
    TICKET_STATUS_OPEN,
    TICKET_STATUS_PENDING,
    TICKET_STATUS_REOPENED,
    TICKET_STATUS_RESOLVED,
    TICKET_STATUSES,
    TICKET_TYPES,
)
from utils.time import to_iso, utc_now


@dataclass(slots=True)
class TicketServiceDeps:
    ticket_repo: TicketRepository
    message_repo: MessageRepository
    history_repo: HistoryRepository
    department_repo: DepartmentRepository
    category_repo: CategoryRepository
    agent_repo: AgentRepository
    sla_repo: SLAPolicyRepository
    canned_repo: CannedResponseRepository
    side_effects: SideEffects


@dataclass(slots=True, frozen=True)
class _Placement:
    """Where a ticket sits for counter purposes."""

    department_id: str | None
    agent_id: str | None
    counted: bool


def _placement(ticket: Ticket) -> _Placement:
    return _Placement(
        department_id=ticket.department_id,
        agent_id=ticket.assigned_to_id,
        counted=not ticket.is_deleted and ticket.status not in FINISHED_STATUSES,
    )


def parse_ticket_id(value: str) -> str:
    try:
        return str(UUID(str(value)))
    except ValueError as exc:
        raise ValidationError(f"Malformed ticket id: {value!r}") from exc


def _history_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"), sort_keys=True)


def _clean_tags(tags: list[str]) -> list[str]:
    return sorted({tag.strip().lower() for tag in tags if tag.strip()})


class TicketService:
    """Ticket lifecycle engine.

    Owns status transitions, assignment and transfer bookkeeping and the
    denormalized department/agent counters. Every state-affecting operation
    writes a history entry. Counter updates, history writes and chained
    assignment are secondary effects: their failures are reported through
    ``SideEffects`` and never undo the ticket write that preceded them.
    """

    def __init__(self, config: AppConfig, deps: TicketServiceDeps) -> None:
        self.config = config
        self.deps = deps
        self.side_effects = deps.side_effects
        self.sla = SLAResolver(config.sla, deps.sla_repo, deps.department_repo, deps.side_effects)
        self.assignment = AssignmentEngine(
            deps.agent_repo, deps.ticket_repo, deps.history_repo, deps.side_effects
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _load(self, ticket_id: str, actor: Actor) -> Ticket:
        ticket = await self.deps.ticket_repo.get_by_id(actor.tenant_id, parse_ticket_id(ticket_id))
        if ticket is None:
            raise NotFoundError("Ticket not found.")
        return ticket

    async def _load_owned(self, ticket_id: str, actor: Actor) -> Ticket:
        ticket = await self._load(ticket_id, actor)
        if not actor.is_agent and ticket.customer_id != actor.user_id:
            raise AuthorizationError("You can only access your own tickets.")
        return ticket

    @staticmethod
    def _require_agent(actor: Actor) -> None:
        if not actor.is_agent:
            raise AuthorizationError("Only agents can perform this action.")

    async def _save(self, ticket: Ticket) -> None:
        if not await self.deps.ticket_repo.update(ticket):
            raise ConflictError()

    async def _resolve_department(self, tenant_id: str, department_id: str | None) -> Department | None:
        if not department_id:
            return None
        department = await self.deps.department_repo.get_by_id(tenant_id, department_id)
        if department is None or not department.is_active:
            return None
        return department

    async def _record(
        self,
        ticket: Ticket,
        actor_id: str,
        actor_name: str,
        action: str,
        *,
        field: str | None = None,
        old: Any = None,
        new: Any = None,
        comment: str | None = None,
    ) -> None:
        entry = TicketHistory(
            id=str(uuid4()),
            tenant_id=ticket.tenant_id,
            ticket_id=ticket.id,
            action=action,
            field=field,
            old_value=_history_value(old),
            new_value=_history_value(new),
            changed_by=actor_id,
            changed_by_name=actor_name,
            comment=comment,
            created_at=to_iso(utc_now()),
        )
        await self.side_effects.run(
            "history", self.deps.history_repo.add(entry), ticket_id=ticket.id, tenant_id=ticket.tenant_id
        )

    async def _move_counters(
        self,
        tenant_id: str,
        ticket_id: str,
        before: _Placement,
        after: _Placement,
        *,
        agent_reserved: bool = False,
    ) -> None:
        """Reconcile department and agent counters for one ticket move.

        A counter changes only when the ticket starts or stops counting
        toward it. ``agent_reserved`` means the new agent's slot was already
        taken by a capacity reservation.
        """
        dept, agents = self.deps.department_repo, self.deps.agent_repo

        async def effect(operation: str, action: Any) -> None:
            await self.side_effects.run(operation, action, ticket_id=ticket_id, tenant_id=tenant_id)

        dept_changed = before.department_id != after.department_id
        if before.department_id and before.counted and (dept_changed or not after.counted):
            await effect("department_decrement", dept.decrement_open_tickets(tenant_id, before.department_id))
        if after.department_id and dept_changed:
            await effect(
                "department_increment",
                dept.increment_ticket_count(tenant_id, after.department_id, count_open=after.counted),
            )
        elif after.department_id and after.counted and not before.counted:
            await effect("department_increment", dept.increment_open_tickets(tenant_id, after.department_id))

        agent_changed = before.agent_id != after.agent_id
        if before.agent_id and before.counted and (agent_changed or not after.counted):
            await effect("agent_decrement", agents.decrement_ticket_count(tenant_id, before.agent_id))
        if after.agent_id and after.counted and (agent_changed or not before.counted) and not agent_reserved:
            await effect("agent_increment", agents.increment_ticket_count(tenant_id, after.agent_id))

    def _validate_choice(self, field: str, value: str | None, allowed: tuple[str, ...]) -> None:
        if value is not None and value not in allowed:
            raise ValidationError(f"Invalid {field} {value!r}. Use: {', '.join(allowed)}")

    def _build_attachments(self, items: list[AttachmentInput], uploader: str, at: str | None) -> list[Attachment]:
        if len(items) > self.config.tickets.max_attachments:
            raise ValidationError(f"At most {self.config.tickets.max_attachments} attachments are allowed.")
        result: list[Attachment] = []
        for item in items:
            if not item.url.strip():
                raise ValidationError("Attachment url is required.")
            result.append(
                Attachment(
                    id=str(uuid4()),
                    name=item.name,
                    url=item.url,
                    size=item.size,
                    mime_type=item.mime_type,
                    uploaded_by=uploader,
                    uploaded_at=at,
                )
            )
        return result

    def _validate_text(self, subject: str | None, description: str | None) -> None:
        if subject is not None:
            if not subject.strip():
                raise ValidationError("Subject is required.")
            if len(subject) > self.config.tickets.max_subject_length:
                raise ValidationError("Subject is too long.")
        if description is not None:
            if not description.strip():
                raise ValidationError("Description is required.")
            if len(description) > self.config.tickets.max_description_length:
                raise ValidationError("Description is too long.")

    # ------------------------------------------------------------------
    # create / read
    # ------------------------------------------------------------------

    async def create_ticket(self, request: TicketCreateRequest, actor: Actor) -> Ticket:
        if request.subject is None or request.description is None:
            raise ValidationError("Subject and description are required.")
        self._validate_text(request.subject, request.description)
        self._validate_choice("priority", request.priority, PRIORITY_LEVELS)
        self._validate_choice("type", request.type, TICKET_TYPES)
        self._validate_choice("source", request.source, TICKET_SOURCES)

        now = utc_now()
        now_iso = to_iso(now)
        attachments = self._build_attachments(request.attachments, actor.user_id, now_iso)
        ticket_number = await self.deps.ticket_repo.next_ticket_number(actor.tenant_id)

        department = await self._resolve_department(actor.tenant_id, request.department_id)
        category = None
        if request.category_id:
            category = await self.deps.category_repo.get_by_id(actor.tenant_id, request.category_id)

        priority = request.priority
        if priority is None and category is not None and category.default_priority in PRIORITY_LEVELS:
            priority = category.default_priority
        if priority is None and department is not None and department.default_priority in PRIORITY_LEVELS:
            priority = department.default_priority

        ticket = Ticket(
            id=str(uuid4()),
            tenant_id=actor.tenant_id,
            ticket_number=ticket_number,
            subject=request.subject.strip(),
            description=request.description,
            type=request.type or DEFAULT_TYPE,
            status=TICKET_STATUS_OPEN,
            priority=priority or DEFAULT_PRIORITY,
            source=request.source or DEFAULT_SOURCE,
            customer_id=actor.user_id,
            customer_name=actor.name,
            customer_email=actor.email,
            department_id=department.id if department else None,
            department_name=department.name if department else None,
            category_id=category.id if category else None,
            category_name=category.name if category else None,
            parent_ticket_id=request.parent_ticket_id,
            attachments=attachments,
            tags=_clean_tags(request.tags),
            custom_fields=dict(request.custom_fields),
            cc_emails=list(request.cc_emails),
            metadata=dict(request.metadata),
            created_at=now_iso,
            updated_at=now_iso,
            last_activity_at=now_iso,
        )
        await self.sla.resolve(ticket, department, now)
        await self.deps.ticket_repo.create(ticket)

        if department is not None:
            await self.side_effects.run(
                "department_increment",
                self.deps.department_repo.increment_ticket_count(ticket.tenant_id, department.id),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
        await self._record(ticket, actor.user_id, actor.name, "created", new=ticket.ticket_number)

        if self.config.tickets.auto_assign_enabled and department is not None:
            assigned = await self.side_effects.run(
                "auto_assign",
                self.assignment.auto_assign(ticket),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
            if assigned is not None:
                ticket = assigned
        return ticket

    async def get_ticket(self, ticket_id: str, actor: Actor) -> Ticket:
        return await self._load_owned(ticket_id, actor)

    async def get_ticket_by_number(self, ticket_number: str, actor: Actor) -> Ticket:
        ticket = await self.deps.ticket_repo.get_by_number(actor.tenant_id, ticket_number)
        if ticket is None:
            raise NotFoundError("Ticket not found.")
        if not actor.is_agent and ticket.customer_id != actor.user_id:
            raise AuthorizationError("You can only access your own tickets.")
        return ticket

    # ------------------------------------------------------------------
    # update / status
    # ------------------------------------------------------------------

    async def update_ticket(self, ticket_id: str, patch: TicketPatch, actor: Actor) -> Ticket:
        ticket = await self._load_owned(ticket_id, actor)
        self._validate_text(patch.subject, patch.description)
        self._validate_choice("priority", patch.priority, PRIORITY_LEVELS)
        self._validate_choice("type", patch.type, TICKET_TYPES)
        if patch.escalation_level is not None and not 0 <= patch.escalation_level <= 10:
            raise ValidationError("Escalation level must be between 0 and 10.")

        before = _placement(ticket)
        changes: list[tuple[str, Any, Any]] = []

        def apply(field: str, new_value: Any) -> None:
            old_value = getattr(ticket, field)
            if new_value is None or new_value == old_value:
                return
            setattr(ticket, field, new_value)
            changes.append((field, old_value, new_value))

        apply("subject", patch.subject.strip() if patch.subject is not None else None)
        apply("description", patch.description)
        apply("type", patch.type)
        apply("priority", patch.priority)
        apply("tags", _clean_tags(patch.tags) if patch.tags is not None else None)
        apply("custom_fields", dict(patch.custom_fields) if patch.custom_fields is not None else None)
        apply("cc_emails", list(patch.cc_emails) if patch.cc_emails is not None else None)
        apply("escalation_level", patch.escalation_level)

        department = None
        if patch.department_id and patch.department_id != ticket.department_id:
            department = await self._resolve_department(ticket.tenant_id, patch.department_id)
            if department is not None:
                changes.append(("department", ticket.department_name, department.name))
                ticket.department_id = department.id
                ticket.department_name = department.name

        if patch.category_id and patch.category_id != ticket.category_id:
            category = await self.deps.category_repo.get_by_id(ticket.tenant_id, patch.category_id)
            if category is not None:
                changes.append(("category", ticket.category_name, category.name))
                ticket.category_id = category.id
                ticket.category_name = category.name

        if not changes:
            return ticket

        if any(field == "priority" for field, _, _ in changes):
            await self.sla.resolve(ticket, department)

        now_iso = to_iso(utc_now())
        ticket.updated_at = now_iso
        ticket.last_activity_at = now_iso
        await self._save(ticket)

        await self._move_counters(ticket.tenant_id, ticket.id, before, _placement(ticket))
        for field, old_value, new_value in changes:
            await self._record(ticket, actor.user_id, actor.name, "updated", field=field, old=old_value, new=new_value)
        return ticket

    def check_transition(self, current: str, target: str, is_agent: bool) -> None:
        if is_agent:
            return
        if target not in CUSTOMER_TRANSITIONS.get(current, frozenset()):
            raise InvalidTransitionError(f"Cannot change status from {current} to {target}.")

    async def change_status(
        self, ticket_id: str, new_status: str, actor: Actor, comment: str | None = None
    ) -> Ticket:
        self._validate_choice("status", new_status, TICKET_STATUSES)
        ticket = await self._load_owned(ticket_id, actor)
        old_status = ticket.status
        self.check_transition(old_status, new_status, actor.is_agent)

        before = _placement(ticket)
        now_iso = to_iso(utc_now())
        ticket.status = new_status
        ticket.updated_at = now_iso
        ticket.last_activity_at = now_iso
        if new_status == TICKET_STATUS_RESOLVED:
            ticket.resolved_at = now_iso
        elif new_status == TICKET_STATUS_CLOSED:
            ticket.closed_at = now_iso
        elif new_status == TICKET_STATUS_REOPENED:
            ticket.resolved_at = None
            ticket.closed_at = None
            ticket.reopen_count += 1
        await self._save(ticket)

        if new_status == TICKET_STATUS_RESOLVED and old_status != TICKET_STATUS_RESOLVED and ticket.assigned_to_id:
            await self.side_effects.run(
                "agent_resolved",
                self.deps.agent_repo.increment_resolved(ticket.tenant_id, ticket.assigned_to_id),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
        await self._move_counters(ticket.tenant_id, ticket.id, before, _placement(ticket))
        await self._record(
            ticket,
            actor.user_id,
            actor.name,
            "status_changed",
            field="status",
            old=old_status,
            new=new_status,
            comment=comment,
        )
        return ticket

    # ------------------------------------------------------------------
    # assignment / transfer
    # ------------------------------------------------------------------

    async def assign_ticket(
        self, ticket_id: str, assignee_user_id: str, actor: Actor, comment: str | None = None
    ) -> Ticket:
        self._require_agent(actor)
        ticket = await self._load(ticket_id, actor)
        agent = await self.deps.agent_repo.get_by_user_id(actor.tenant_id, assignee_user_id)
        if agent is None or not agent.is_active:
            raise NotFoundError("Agent not found.")
        before = _placement(ticket)
        reserved = False
        # Re-assigning the current holder takes no new slot.
        if ticket.assigned_to_id != agent.user_id:
            if before.counted:
                reserved = await self.deps.agent_repo.reserve_capacity(actor.tenant_id, agent.user_id)
                if not reserved:
                    raise CapacityError(f"{agent.name} is at maximum capacity.")
            elif agent.current_tickets >= agent.max_tickets:
                raise CapacityError(f"{agent.name} is at maximum capacity.")

        old_name = ticket.assigned_to_name
        now_iso = to_iso(utc_now())
        ticket.assigned_to_id = agent.user_id
        ticket.assigned_to_name = agent.name
        ticket.assigned_to_email = agent.email
        ticket.assigned_at = now_iso
        ticket.assigned_by_id = actor.user_id
        ticket.updated_at = now_iso
        ticket.last_activity_at = now_iso
        if ticket.first_response_due is None and ticket.resolution_due is None:
            await self.sla.resolve(ticket)
        if ticket.status == TICKET_STATUS_OPEN:
            ticket.status = TICKET_STATUS_IN_PROGRESS

        try:
            await self._save(ticket)
        except ConflictError:
            if reserved:
                await self.side_effects.run(
                    "agent_release",
                    self.deps.agent_repo.decrement_ticket_count(actor.tenant_id, agent.user_id),
                    ticket_id=ticket.id,
                    tenant_id=ticket.tenant_id,
                )
            raise

        await self._move_counters(
            ticket.tenant_id, ticket.id, before, _placement(ticket), agent_reserved=reserved
        )
        await self._record(
            ticket,
            actor.user_id,
            actor.name,
            "assigned",
            field="assignee",
            old=old_name,
            new=agent.name,
            comment=comment,
        )
        return ticket

    async def transfer_ticket(
        self,
        ticket_id: str,
        department_id: str,
        actor: Actor,
        assignee_user_id: str | None = None,
        comment: str | None = None,
    ) -> Ticket:
        self._require_agent(actor)
        ticket = await self._load(ticket_id, actor)
        department = await self.deps.department_repo.get_by_id(actor.tenant_id, department_id)
        if department is None:
            raise NotFoundError("Department not found.")

        before = _placement(ticket)
        old_department = ticket.department_name
        now_iso = to_iso(utc_now())
        ticket.department_id = department.id
        ticket.department_name = department.name
        ticket.assigned_to_id = None
        ticket.assigned_to_name = None
        ticket.assigned_to_email = None
        ticket.assigned_at = None
        ticket.assigned_by_id = None
        ticket.updated_at = now_iso
        ticket.last_activity_at = now_iso
        await self._save(ticket)

        await self._move_counters(ticket.tenant_id, ticket.id, before, _placement(ticket))
        await self._record(
            ticket,
            actor.user_id,
            actor.name,
            "transferred",
            field="department",
            old=old_department,
            new=department.name,
            comment=comment,
        )

        if assignee_user_id:
            assigned = await self.side_effects.run(
                "transfer_assign",
                self.assign_ticket(ticket.id, assignee_user_id, actor),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
        elif self.config.tickets.auto_assign_enabled:
            assigned = await self.side_effects.run(
                "auto_assign",
                self.assignment.auto_assign(ticket),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
        else:
            assigned = None
        return assigned or ticket

    # ------------------------------------------------------------------
    # messages
    # ------------------------------------------------------------------

    async def add_reply(
        self,
        ticket_id: str,
        request: MessageCreateRequest,
        actor: Actor,
        sender_type: str | None = None,
    ) -> TicketMessage:
        sender_type = sender_type or ("agent" if actor.is_agent else "customer")
        self._validate_choice("sender type", sender_type, SENDER_TYPES)
        self._validate_choice("message type", request.type, MESSAGE_TYPES)
        if request.is_private and not actor.is_agent:
            raise AuthorizationError("Only agents can add internal notes.")
        ticket = await self._load_owned(ticket_id, actor)

        content = request.content
        if request.canned_response_id:
            canned = await self.deps.canned_repo.get_by_id(actor.tenant_id, request.canned_response_id)
            if canned is None:
                raise NotFoundError("Canned response not found.")
            content = content.strip() or canned.content
            await self.side_effects.run(
                "canned_usage",
                self.deps.canned_repo.increment_usage(actor.tenant_id, canned.id),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
        if not content or not content.strip():
            raise ValidationError("Message content is required.")

        now_iso = to_iso(utc_now())
        assert now_iso is not None
        message = TicketMessage(
            id=str(uuid4()),
            tenant_id=ticket.tenant_id,
            ticket_id=ticket.id,
            type="internal_note" if request.is_private else (request.type or "reply"),
            content=content,
            content_html=request.content_html,
            sender_type=sender_type,
            sender_id=actor.user_id,
            sender_name=actor.name,
            sender_email=actor.email,
            attachments=self._build_attachments(request.attachments, actor.user_id, now_iso),
            is_private=request.is_private,
            created_at=now_iso,
            updated_at=now_iso,
        )
        await self.deps.message_repo.create(message)

        from_customer = sender_type == "customer"
        await self.side_effects.run(
            "message_counters",
            self.deps.ticket_repo.record_reply(
                ticket.tenant_id,
                ticket.id,
                at=now_iso,
                is_private=message.is_private,
                from_customer=from_customer,
            ),
            ticket_id=ticket.id,
            tenant_id=ticket.tenant_id,
        )
        await self._record(
            ticket,
            actor.user_id,
            actor.name,
            "message_added",
            field="message",
            new=message.type,
        )

        if from_customer and ticket.status == TICKET_STATUS_PENDING:
            reopened = await self.side_effects.run(
                "pending_reopen",
                self.deps.ticket_repo.transition_if_status(
                    ticket.tenant_id, ticket.id, TICKET_STATUS_PENDING, TICKET_STATUS_OPEN, now_iso
                ),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
            if reopened:
                await self._record(
                    ticket,
                    SYSTEM_ACTOR_ID,
                    SYSTEM_ACTOR_NAME,
                    "status_changed",
                    field="status",
                    old=TICKET_STATUS_PENDING,
                    new=TICKET_STATUS_OPEN,
                    comment="Customer replied",
                )
        return message

    async def list_messages(self, ticket_id: str, actor: Actor) -> list[TicketMessage]:
        ticket = await self._load_owned(ticket_id, actor)
        return await self.deps.message_repo.list_by_ticket(
            ticket.tenant_id, ticket.id, include_private=actor.is_agent
        )

    async def _load_message(self, message_id: str, actor: Actor) -> tuple[Ticket, TicketMessage]:
        message = await self.deps.message_repo.get_by_id(actor.tenant_id, message_id)
        if message is None or (message.is_private and not actor.is_agent):
            raise NotFoundError("Message not found.")
        if not actor.is_agent and message.sender_id != actor.user_id:
            raise AuthorizationError("You can only change your own messages.")
        ticket = await self._load(message.ticket_id, actor)
        return ticket, message

    async def edit_message(self, message_id: str, content: str, actor: Actor) -> TicketMessage:
        if not content or not content.strip():
            raise ValidationError("Message content is required.")
        ticket, message = await self._load_message(message_id, actor)
        now_iso = to_iso(utc_now())
        if message.original_content is None:
            message.original_content = message.content
        message.content = content
        message.content_html = None
        message.is_edited = True
        message.edited_at = now_iso
        message.edited_by = actor.user_id
        message.updated_at = now_iso
        await self.deps.message_repo.update(message)
        await self._record(ticket, actor.user_id, actor.name, "message_edited", field="message", new=message.id)
        return message

    async def delete_message(self, message_id: str, actor: Actor) -> None:
        ticket, message = await self._load_message(message_id, actor)
        now_iso = to_iso(utc_now())
        message.is_deleted = True
        message.deleted_at = now_iso
        message.deleted_by = actor.user_id
        message.updated_at = now_iso
        await self.deps.message_repo.update(message)
        await self.side_effects.run(
            "message_counters",
            self.deps.ticket_repo.forget_reply(ticket.tenant_id, ticket.id, is_private=message.is_private),
            ticket_id=ticket.id,
            tenant_id=ticket.tenant_id,
        )
        await self._record(ticket, actor.user_id, actor.name, "message_deleted", field="message", old=message.id)

    # ------------------------------------------------------------------
    # rating / watchers / delete
    # ------------------------------------------------------------------

    async def rate_ticket(self, ticket_id: str, rating: int, comment: str | None, actor: Actor) -> Ticket:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5.")
        ticket = await self._load(ticket_id, actor)
        if ticket.customer_id != actor.user_id:
            raise AuthorizationError("Only the ticket's customer can rate it.")
        if ticket.status not in FINISHED_STATUSES:
            raise InvalidStateError("Only resolved or closed tickets can be rated.")

        old_rating = ticket.satisfaction_rating
        now_iso = to_iso(utc_now())
        ticket.satisfaction_rating = rating
        ticket.satisfaction_comment = comment
        ticket.rated_at = now_iso
        ticket.updated_at = now_iso
        await self._save(ticket)

        if ticket.assigned_to_id and old_rating != rating:
            if old_rating is None:
                update = self.deps.agent_repo.apply_rating(ticket.tenant_id, ticket.assigned_to_id, rating)
            else:
                update = self.deps.agent_repo.adjust_rating(
                    ticket.tenant_id, ticket.assigned_to_id, old_rating, rating
                )
            await self.side_effects.run(
                "agent_rating",
                update,
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
        await self._record(
            ticket,
            actor.user_id,
            actor.name,
            "rated",
            field="satisfaction_rating",
            old=str(old_rating) if old_rating is not None else None,
            new=str(rating),
            comment=comment,
        )
        return ticket

    async def add_watcher(self, ticket_id: str, watcher_id: str, actor: Actor) -> Ticket:
        ticket = await self._load_owned(ticket_id, actor)
        if watcher_id in ticket.watcher_ids:
            return ticket
        ticket.watcher_ids = [*ticket.watcher_ids, watcher_id]
        ticket.updated_at = to_iso(utc_now())
        await self._save(ticket)
        await self._record(ticket, actor.user_id, actor.name, "watcher_added", field="watchers", new=watcher_id)
        return ticket

    async def remove_watcher(self, ticket_id: str, watcher_id: str, actor: Actor) -> Ticket:
        ticket = await self._load_owned(ticket_id, actor)
        if watcher_id not in ticket.watcher_ids:
            return ticket
        ticket.watcher_ids = [item for item in ticket.watcher_ids if item != watcher_id]
        ticket.updated_at = to_iso(utc_now())
        await self._save(ticket)
        await self._record(ticket, actor.user_id, actor.name, "watcher_removed", field="watchers", old=watcher_id)
        return ticket

    async def delete_ticket(self, ticket_id: str, actor: Actor) -> None:
        self._require_agent(actor)
        ticket = await self._load(ticket_id, actor)
        before = _placement(ticket)
        now_iso = to_iso(utc_now())
        ticket.is_deleted = True
        ticket.deleted_by = actor.user_id
        ticket.deleted_at = now_iso
        ticket.updated_at = now_iso
        await self._save(ticket)

        await self._move_counters(ticket.tenant_id, ticket.id, before, _placement(ticket))
        await self._record(ticket, actor.user_id, actor.name, "deleted")

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def list_tickets(self, query: TicketFilter, actor: Actor) -> TicketPage:
        query.tenant_id = actor.tenant_id
        if not actor.is_agent:
            query.customer_id = actor.user_id
            query.include_deleted = False
        return await self.deps.ticket_repo.list_filtered(query)

    async def list_customer_tickets(self, actor: Actor, page: int = 1, page_size: int = 20) -> TicketPage:
        query = TicketFilter(tenant_id=actor.tenant_id, customer_id=actor.user_id, page=page, page_size=page_size)
        return await self.deps.ticket_repo.list_filtered(query)

    async def list_agent_tickets(
        self, actor: Actor, statuses: list[str] | None = None, page: int = 1, page_size: int = 20
    ) -> TicketPage:
        self._require_agent(actor)
        query = TicketFilter(
            tenant_id=actor.tenant_id,
            assigned_to_id=actor.user_id,
            statuses=list(statuses or []),
            page=page,
            page_size=page_size,
        )
        return await self.deps.ticket_repo.list_filtered(query)

    async def list_unassigned(self, actor: Actor, page: int = 1, page_size: int = 20) -> TicketPage:
        self._require_agent(actor)
        query = TicketFilter(
            tenant_id=actor.tenant_id,
            unassigned=True,
            statuses=[status for status in TICKET_STATUSES if status not in FINISHED_STATUSES],
            page=page,
            page_size=page_size,
            sort_desc=False,
        )
        return await self.deps.ticket_repo.list_filtered(query)

    async def list_sla_breached(self, actor: Actor, page: int = 1, page_size: int = 20) -> TicketPage:
        self._require_agent(actor)
        query = TicketFilter(
            tenant_id=actor.tenant_id,
            sla_breached=True,
            page=page,
            page_size=page_size,
        )
        return await self.deps.ticket_repo.list_filtered(query)

    async def list_due_soon(self, actor: Actor, hours: int = 4) -> list[Ticket]:
        self._require_agent(actor)
        if hours <= 0:
            raise ValidationError("Hours must be positive.")
        now = utc_now()
        return await self.deps.ticket_repo.list_due_soon(
            actor.tenant_id, to_iso(now) or "", to_iso(now + timedelta(hours=hours)) or ""
        )

    async def list_history(self, ticket_id: str, actor: Actor) -> list[TicketHistory]:
        ticket = await self._load_owned(ticket_id, actor)
        return await self.deps.history_repo.list_by_ticket(ticket.tenant_id, ticket.id)

    async def get_stats(self, actor: Actor) -> TicketStats:
        self._require_agent(actor)
        return await self.deps.ticket_repo.get_stats(actor.tenant_id)
