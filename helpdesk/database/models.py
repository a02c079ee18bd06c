from __future__ import annotations

from dataclasses import dataclass, field
from typing import TypeAlias

JSONValue: TypeAlias = "str | int | float | bool | None | list[JSONValue] | dict[str, JSONValue]"
JSONObject: TypeAlias = "dict[str, JSONValue]"


@dataclass(slots=True)
class Attachment:
    id: str
    name: str
    url: str
    size: int = 0
    mime_type: str = ""
    uploaded_by: str = ""
    uploaded_at: str | None = None


@dataclass(slots=True)
class Ticket:
    id: str
    tenant_id: str
    ticket_number: str
    subject: str
    description: str
    type: str
    status: str
    priority: str
    source: str
    customer_id: str
    customer_name: str = ""
    customer_email: str = ""
    department_id: str | None = None
    department_name: str | None = None
    category_id: str | None = None
    category_name: str | None = None
    assigned_to_id: str | None = None
    assigned_to_name: str | None = None
    assigned_to_email: str | None = None
    assigned_at: str | None = None
    assigned_by_id: str | None = None
    sla_policy_id: str | None = None
    first_response_due: str | None = None
    resolution_due: str | None = None
    first_responded_at: str | None = None
    sla_breached: bool = False
    response_sla_breached: bool = False
    resolve_sla_breached: bool = False
    parent_ticket_id: str | None = None
    related_ticket_ids: list[str] = field(default_factory=list)
    merged_into_id: str | None = None
    merged_ticket_ids: list[str] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    custom_fields: JSONObject = field(default_factory=dict)
    message_count: int = 0
    internal_notes: int = 0
    reopen_count: int = 0
    escalation_level: int = 0
    satisfaction_rating: int | None = None
    satisfaction_comment: str | None = None
    rated_at: str | None = None
    watcher_ids: list[str] = field(default_factory=list)
    cc_emails: list[str] = field(default_factory=list)
    metadata: JSONObject = field(default_factory=dict)
    is_deleted: bool = False
    deleted_by: str | None = None
    deleted_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    resolved_at: str | None = None
    closed_at: str | None = None
    last_activity_at: str | None = None
    last_customer_reply_at: str | None = None
    last_agent_reply_at: str | None = None
    version: int = 1


@dataclass(slots=True)
class TicketMessage:
    id: str
    tenant_id: str
    ticket_id: str
    type: str
    content: str
    sender_type: str
    sender_id: str
    sender_name: str = ""
    sender_email: str = ""
    content_html: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    is_private: bool = False
    is_edited: bool = False
    edited_at: str | None = None
    edited_by: str | None = None
    original_content: str | None = None
    is_deleted: bool = False
    deleted_at: str | None = None
    deleted_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class TicketHistory:
    id: str
    tenant_id: str
    ticket_id: str
    action: str
    changed_by: str
    changed_by_name: str = ""
    field: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    comment: str | None = None
    created_at: str | None = None


@dataclass(slots=True)
class DaySchedule:
    day: int
    is_work_day: bool = True
    start_time: str = "09:00"
    end_time: str = "17:00"


@dataclass(slots=True)
class BusinessHours:
    enabled: bool = False
    timezone: str = "UTC"
    schedule: list[DaySchedule] = field(default_factory=list)
    holidays: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Department:
    id: str
    tenant_id: str
    name: str
    slug: str
    path: str
    description: str = ""
    email: str = ""
    parent_id: str | None = None
    level: int = 0
    manager_id: str | None = None
    manager_name: str | None = None
    agent_ids: list[str] = field(default_factory=list)
    auto_assign: bool = False
    auto_assign_type: str = "load_balanced"
    default_priority: str | None = None
    sla_policy_id: str | None = None
    business_hours: BusinessHours | None = None
    open_tickets: int = 0
    total_tickets: int = 0
    is_active: bool = True
    is_deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class Category:
    id: str
    tenant_id: str
    name: str
    slug: str
    path: str
    description: str = ""
    parent_id: str | None = None
    level: int = 0
    department_id: str | None = None
    default_priority: str | None = None
    sort_order: int = 0
    is_active: bool = True
    is_public: bool = True
    is_deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class Agent:
    id: str
    tenant_id: str
    user_id: str
    name: str
    email: str = ""
    role: str = "agent"
    department_ids: list[str] = field(default_factory=list)
    team_id: str | None = None
    status: str = "offline"
    is_online: bool = False
    current_tickets: int = 0
    tickets_today: int = 0
    tickets_this_week: int = 0
    tickets_this_month: int = 0
    max_tickets: int = 20
    skills: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)
    avg_rating: float = 0.0
    total_resolved: int = 0
    is_active: bool = True
    is_deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class SLATarget:
    priority: str
    first_response_mins: int
    resolution_mins: int
    next_response_mins: int = 0
    escalation_enabled: bool = False
    escalation_after_mins: int = 0


@dataclass(slots=True)
class SLAPolicy:
    id: str
    tenant_id: str
    name: str
    description: str = ""
    is_default: bool = False
    is_active: bool = True
    priorities: list[SLATarget] = field(default_factory=list)
    use_business_hours: bool = False
    is_deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    def target_for(self, priority: str) -> SLATarget | None:
        for target in self.priorities:
            if target.priority == priority:
                return target
        return None


@dataclass(slots=True)
class CannedResponse:
    id: str
    tenant_id: str
    title: str
    content: str
    created_by: str
    shortcut: str | None = None
    category: str | None = None
    tags: list[str] = field(default_factory=list)
    is_global: bool = True
    department_id: str | None = None
    usage_count: int = 0
    is_active: bool = True
    is_deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class TicketFilter:
    tenant_id: str
    statuses: list[str] = field(default_factory=list)
    priorities: list[str] = field(default_factory=list)
    type: str | None = None
    source: str | None = None
    department_id: str | None = None
    category_id: str | None = None
    assigned_to_id: str | None = None
    customer_id: str | None = None
    unassigned: bool = False
    sla_breached: bool | None = None
    tags: list[str] = field(default_factory=list)
    search: str | None = None
    created_from: str | None = None
    created_to: str | None = None
    include_deleted: bool = False
    page: int = 1
    page_size: int = 20
    sort_by: str = "created_at"
    sort_desc: bool = True


@dataclass(slots=True)
class TicketPage:
    items: list[Ticket]
    total: int
    page: int
    page_size: int


@dataclass(slots=True)
class TicketStats:
    total_tickets: int = 0
    open_tickets: int = 0
    pending_tickets: int = 0
    resolved_tickets: int = 0
    closed_tickets: int = 0
    unassigned_tickets: int = 0
    sla_breached: int = 0
    by_priority: dict[str, int] = field(default_factory=dict)
    by_department: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
