from __future__ import annotations

from dataclasses import dataclass, field

from database.models import BusinessHours, JSONObject, SLATarget
from utils.constants import AGENT_ROLES


@dataclass(slots=True, frozen=True)
class Actor:
    """Tenant-scoped identity of whoever invokes a lifecycle operation."""

    tenant_id: str
    user_id: str
    name: str = ""
    email: str = ""
    role: str = "customer"

    @property
    def is_agent(self) -> bool:
        return self.role in AGENT_ROLES


@dataclass(slots=True)
class AttachmentInput:
    name: str
    url: str
    size: int = 0
    mime_type: str = ""


@dataclass(slots=True)
class TicketCreateRequest:
    subject: str
    description: str
    type: str | None = None
    priority: str | None = None
    source: str | None = None
    department_id: str | None = None
    category_id: str | None = None
    tags: list[str] = field(default_factory=list)
    custom_fields: JSONObject = field(default_factory=dict)
    attachments: list[AttachmentInput] = field(default_factory=list)
    cc_emails: list[str] = field(default_factory=list)
    parent_ticket_id: str | None = None
    metadata: JSONObject = field(default_factory=dict)


@dataclass(slots=True)
class TicketPatch:
    """Partial update; ``None`` means leave the field as it is."""

    subject: str | None = None
    description: str | None = None
    type: str | None = None
    priority: str | None = None
    department_id: str | None = None
    category_id: str | None = None
    tags: list[str] | None = None
    custom_fields: JSONObject | None = None
    cc_emails: list[str] | None = None
    escalation_level: int | None = None


@dataclass(slots=True)
class MessageCreateRequest:
    content: str = ""
    content_html: str | None = None
    type: str | None = None
    is_private: bool = False
    attachments: list[AttachmentInput] = field(default_factory=list)
    canned_response_id: str | None = None


@dataclass(slots=True)
class AgentCreateRequest:
    user_id: str
    name: str
    email: str
    role: str | None = None
    department_ids: list[str] = field(default_factory=list)
    team_id: str | None = None
    max_tickets: int | None = None
    skills: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AgentUpdate:
    name: str | None = None
    email: str | None = None
    role: str | None = None
    team_id: str | None = None
    max_tickets: int | None = None
    skills: list[str] | None = None
    languages: list[str] | None = None
    is_active: bool | None = None


@dataclass(slots=True)
class DepartmentCreateRequest:
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
    business_hours: BusinessHours | None = None


@dataclass(slots=True)
class DepartmentUpdate:
    name: str | None = None
    description: str | None = None
    email: str | None = None
    manager_id: str | None = None
    auto_assign: bool | None = None
    auto_assign_type: str | None = None
    default_priority: str | None = None
    sla_policy_id: str | None = None
    business_hours: BusinessHours | None = None
    is_active: bool | None = None


@dataclass(slots=True)
class CategoryCreateRequest:
    name: str
    slug: str | None = None
    description: str = ""
    parent_id: str | None = None
    department_id: str | None = None
    default_priority: str | None = None
    sort_order: int = 0
    is_public: bool = True


@dataclass(slots=True)
class SLAPolicyRequest:
    name: str
    description: str = ""
    is_default: bool = False
    is_active: bool = True
    priorities: list[SLATarget] = field(default_factory=list)
    use_business_hours: bool = False


@dataclass(slots=True)
class CannedResponseCreateRequest:
    title: str
    content: str
    shortcut: str | None = None
    category: str | None = None
    tags: list[str] = field(default_factory=list)
    is_global: bool = True
    department_id: str | None = None
