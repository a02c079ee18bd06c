from __future__ import annotations

TICKET_STATUS_OPEN = "open"
TICKET_STATUS_IN_PROGRESS = "in_progress"
TICKET_STATUS_PENDING = "pending"
TICKET_STATUS_ON_HOLD = "on_hold"
TICKET_STATUS_RESOLVED = "resolved"
TICKET_STATUS_CLOSED = "closed"
TICKET_STATUS_REOPENED = "reopened"
TICKET_STATUS_ESCALATED = "escalated"
TICKET_STATUS_CANCELLED = "cancelled"

TICKET_STATUSES = (
    TICKET_STATUS_OPEN,
    TICKET_STATUS_IN_PROGRESS,
    TICKET_STATUS_PENDING,
    TICKET_STATUS_ON_HOLD,
    TICKET_STATUS_RESOLVED,
    TICKET_STATUS_CLOSED,
    TICKET_STATUS_REOPENED,
    TICKET_STATUS_ESCALATED,
    TICKET_STATUS_CANCELLED,
)

# Statuses that no longer count toward department open counts or agent load.
FINISHED_STATUSES = frozenset({TICKET_STATUS_RESOLVED, TICKET_STATUS_CLOSED})

# Transitions a customer may request; agents are unrestricted.
CUSTOMER_TRANSITIONS: dict[str, frozenset[str]] = {
    TICKET_STATUS_RESOLVED: frozenset({TICKET_STATUS_REOPENED, TICKET_STATUS_CLOSED}),
    TICKET_STATUS_PENDING: frozenset({TICKET_STATUS_OPEN}),
    TICKET_STATUS_OPEN: frozenset({TICKET_STATUS_CANCELLED}),
}

PRIORITY_LEVELS = ("low", "medium", "high", "urgent", "critical")
TICKET_SOURCES = ("web", "email", "api", "phone", "chat", "mobile", "internal")
TICKET_TYPES = (
    "question",
    "incident",
    "problem",
    "feature_request",
    "bug",
    "task",
    "complaint",
    "feedback",
)

DEFAULT_PRIORITY = "medium"
DEFAULT_SOURCE = "web"
DEFAULT_TYPE = "question"

MESSAGE_TYPES = ("reply", "internal_note", "system", "auto_reply")
SENDER_TYPES = ("customer", "agent", "system", "bot")

AGENT_ROLES = ("agent", "supervisor", "manager", "admin")
AGENT_STATUSES = ("available", "busy", "away", "offline", "on_break")
DEFAULT_AGENT_MAX_TICKETS = 20

AUTO_ASSIGN_TYPES = ("round_robin", "load_balanced", "skill_based", "manual")

SYSTEM_ACTOR_ID = "system"
SYSTEM_ACTOR_NAME = "System"

TICKET_NUMBER_FORMAT = "TKT-{:06d}"

HISTORY_ACTIONS = {
    "created",
    "updated",
    "status_changed",
    "assigned",
    "auto_assigned",
    "transferred",
    "message_added",
    "message_edited",
    "message_deleted",
    "rated",
    "watcher_added",
    "watcher_removed",
    "sla_breached",
    "deleted",
}
