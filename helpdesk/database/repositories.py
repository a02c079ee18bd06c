from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

from database.base import Database
from database.models import (
    Agent,
    Attachment,
    BusinessHours,
    CannedResponse,
    Category,
    DaySchedule,
    Department,
    SLAPolicy,
    SLATarget,
    Ticket,
    TicketFilter,
    TicketHistory,
    TicketMessage,
    TicketPage,
    TicketStats,
)
from utils.constants import TICKET_NUMBER_FORMAT


def _json_load(value: str | None, default: Any) -> Any:
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"), sort_keys=True)


def _attachments_dump(items: list[Attachment]) -> str:
    return _json_dump([asdict(item) for item in items])


def _attachments_load(value: str | None) -> list[Attachment]:
    rows = _json_load(value, [])
    result: list[Attachment] = []
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        result.append(
            Attachment(
                id=str(row.get("id", "")),
                name=str(row.get("name", "")),
                url=str(row.get("url", "")),
                size=int(row.get("size") or 0),
                mime_type=str(row.get("mime_type", "")),
                uploaded_by=str(row.get("uploaded_by", "")),
                uploaded_at=row.get("uploaded_at"),
            )
        )
    return result


def _insert_sql(table: str, columns: list[str]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table}({', '.join(columns)}) VALUES ({placeholders});"


# --------------------------------------------------------------------------
# Tickets
# --------------------------------------------------------------------------

# Written only through dedicated atomic statements, never by a full update.
_TICKET_ATOMIC_COLUMNS = frozenset(
    {
        "message_count",
        "internal_notes",
        "first_responded_at",
        "last_customer_reply_at",
        "last_agent_reply_at",
        "sla_breached",
        "response_sla_breached",
        "resolve_sla_breached",
    }
)
_TICKET_IMMUTABLE_COLUMNS = frozenset({"id", "tenant_id", "ticket_number", "created_at", "version"})

_TICKET_SORT_COLUMNS = {
    "created_at",
    "updated_at",
    "priority",
    "status",
    "ticket_number",
    "resolution_due",
    "first_response_due",
    "last_activity_at",
}

_BREACH_FLAGS = {
    "response": "response_sla_breached",
    "resolution": "resolve_sla_breached",
}


def _ticket_to_row(ticket: Ticket) -> dict[str, Any]:
    return {
        "id": ticket.id,
        "tenant_id": ticket.tenant_id,
        "ticket_number": ticket.ticket_number,
        "subject": ticket.subject,
        "description": ticket.description,
        "type": ticket.type,
        "status": ticket.status,
        "priority": ticket.priority,
        "source": ticket.source,
        "customer_id": ticket.customer_id,
        "customer_name": ticket.customer_name,
        "customer_email": ticket.customer_email,
        "department_id": ticket.department_id,
        "department_name": ticket.department_name,
        "category_id": ticket.category_id,
        "category_name": ticket.category_name,
        "assigned_to_id": ticket.assigned_to_id,
        "assigned_to_name": ticket.assigned_to_name,
        "assigned_to_email": ticket.assigned_to_email,
        "assigned_at": ticket.assigned_at,
        "assigned_by_id": ticket.assigned_by_id,
        "sla_policy_id": ticket.sla_policy_id,
        "first_response_due": ticket.first_response_due,
        "resolution_due": ticket.resolution_due,
        "first_responded_at": ticket.first_responded_at,
        "sla_breached": ticket.sla_breached,
        "response_sla_breached": ticket.response_sla_breached,
        "resolve_sla_breached": ticket.resolve_sla_breached,
        "parent_ticket_id": ticket.parent_ticket_id,
        "related_ticket_ids_json": _json_dump(ticket.related_ticket_ids),
        "merged_into_id": ticket.merged_into_id,
        "merged_ticket_ids_json": _json_dump(ticket.merged_ticket_ids),
        "attachments_json": _attachments_dump(ticket.attachments),
        "tags_json": _json_dump(ticket.tags),
        "custom_fields_json": _json_dump(ticket.custom_fields),
        "message_count": ticket.message_count,
        "internal_notes": ticket.internal_notes,
        "reopen_count": ticket.reopen_count,
        "escalation_level": ticket.escalation_level,
        "satisfaction_rating": ticket.satisfaction_rating,
        "satisfaction_comment": ticket.satisfaction_comment,
        "rated_at": ticket.rated_at,
        "watcher_ids_json": _json_dump(ticket.watcher_ids),
        "cc_emails_json": _json_dump(ticket.cc_emails),
        "metadata_json": _json_dump(ticket.metadata),
        "is_deleted": ticket.is_deleted,
        "deleted_by": ticket.deleted_by,
        "deleted_at": ticket.deleted_at,
        "created_at": ticket.created_at,
        "updated_at": ticket.updated_at,
        "resolved_at": ticket.resolved_at,
        "closed_at": ticket.closed_at,
        "last_activity_at": ticket.last_activity_at,
        "last_customer_reply_at": ticket.last_customer_reply_at,
        "last_agent_reply_at": ticket.last_agent_reply_at,
        "version": ticket.version,
    }


def _row_to_ticket(row: dict[str, Any]) -> Ticket:
    return Ticket(
        id=row["id"],
        tenant_id=row["tenant_id"],
        ticket_number=row["ticket_number"],
        subject=row["subject"],
        description=row["description"],
        type=row["type"],
        status=row["status"],
        priority=row["priority"],
        source=row["source"],
        customer_id=row["customer_id"],
        customer_name=row["customer_name"],
        customer_email=row["customer_email"],
        department_id=row["department_id"],
        department_name=row["department_name"],
        category_id=row["category_id"],
        category_name=row["category_name"],
        assigned_to_id=row["assigned_to_id"],
        assigned_to_name=row["assigned_to_name"],
        assigned_to_email=row["assigned_to_email"],
        assigned_at=row["assigned_at"],
        assigned_by_id=row["assigned_by_id"],
        sla_policy_id=row["sla_policy_id"],
        first_response_due=row["first_response_due"],
        resolution_due=row["resolution_due"],
        first_responded_at=row["first_responded_at"],
        sla_breached=bool(row["sla_breached"]),
        response_sla_breached=bool(row["response_sla_breached"]),
        resolve_sla_breached=bool(row["resolve_sla_breached"]),
        parent_ticket_id=row["parent_ticket_id"],
        related_ticket_ids=[str(x) for x in _json_load(row["related_ticket_ids_json"], [])],
        merged_into_id=row["merged_into_id"],
        merged_ticket_ids=[str(x) for x in _json_load(row["merged_ticket_ids_json"], [])],
        attachments=_attachments_load(row["attachments_json"]),
        tags=[str(x) for x in _json_load(row["tags_json"], [])],
        custom_fields=dict(_json_load(row["custom_fields_json"], {})),
        message_count=int(row["message_count"]),
        internal_notes=int(row["internal_notes"]),
        reopen_count=int(row["reopen_count"]),
        escalation_level=int(row["escalation_level"]),
        satisfaction_rating=row["satisfaction_rating"],
        satisfaction_comment=row["satisfaction_comment"],
        rated_at=row["rated_at"],
        watcher_ids=[str(x) for x in _json_load(row["watcher_ids_json"], [])],
        cc_emails=[str(x) for x in _json_load(row["cc_emails_json"], [])],
        metadata=dict(_json_load(row["metadata_json"], {})),
        is_deleted=bool(row["is_deleted"]),
        deleted_by=row["deleted_by"],
        deleted_at=row["deleted_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        resolved_at=row["resolved_at"],
        closed_at=row["closed_at"],
        last_activity_at=row["last_activity_at"],
        last_customer_reply_at=row["last_customer_reply_at"],
        last_agent_reply_at=row["last_agent_reply_at"],
        version=int(row["version"]),
    )


class TicketRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def next_ticket_number(self, tenant_id: str) -> str:
        row = await self.db.execute_returning(
            """
            INSERT INTO ticket_counters(tenant_id, counter)
            VALUES (?, 1)
            ON CONFLICT(tenant_id) DO UPDATE SET counter = ticket_counters.counter + 1
            RETURNING counter;
            """,
            [tenant_id],
        )
        assert row is not None
        return TICKET_NUMBER_FORMAT.format(int(row["counter"]))

    async def create(self, ticket: Ticket) -> None:
        row = _ticket_to_row(ticket)
        columns = list(row)
        await self.db.execute(_insert_sql("tickets", columns), [row[col] for col in columns])

    async def get_by_id(self, tenant_id: str, ticket_id: str, include_deleted: bool = False) -> Ticket | None:
        row = await self.db.fetchone(
            "SELECT * FROM tickets WHERE tenant_id = ? AND id = ?;",
            [tenant_id, ticket_id],
        )
        if not row:
            return None
        ticket = _row_to_ticket(row)
        if ticket.is_deleted and not include_deleted:
            return None
        return ticket

    async def get_by_number(self, tenant_id: str, ticket_number: str) -> Ticket | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM tickets
            WHERE tenant_id = ? AND ticket_number = ? AND is_deleted = FALSE;
            """,
            [tenant_id, ticket_number],
        )
        if not row:
            return None
        return _row_to_ticket(row)

    async def update(self, ticket: Ticket) -> bool:
        """Write every mutable column if ``ticket.version`` is still current.

        On success the in-memory version is bumped to match storage.
        """
        row = _ticket_to_row(ticket)
        columns = [
            col for col in row if col not in _TICKET_ATOMIC_COLUMNS and col not in _TICKET_IMMUTABLE_COLUMNS
        ]
        assignments = ", ".join(f"{col} = ?" for col in columns)
        affected = await self.db.execute(
            f"""
            UPDATE tickets
            SET {assignments}, version = version + 1
            WHERE tenant_id = ? AND id = ? AND version = ?;
            """,
            [row[col] for col in columns] + [ticket.tenant_id, ticket.id, ticket.version],
        )
        if affected:
            ticket.version += 1
        return affected > 0

    async def record_reply(
        self,
        tenant_id: str,
        ticket_id: str,
        *,
        at: str,
        is_private: bool,
        from_customer: bool,
    ) -> None:
        sets = [
            "message_count = message_count + 1",
            "last_activity_at = ?",
            "updated_at = ?",
        ]
        params: list[Any] = [at, at]
        if is_private:
            sets.append("internal_notes = internal_notes + 1")
        if from_customer:
            sets.append("last_customer_reply_at = ?")
            params.append(at)
        elif not is_private:
            sets.append("last_agent_reply_at = ?")
            sets.append("first_responded_at = COALESCE(first_responded_at, ?)")
            params.extend([at, at])
        await self.db.execute(
            f"UPDATE tickets SET {', '.join(sets)} WHERE tenant_id = ? AND id = ?;",
            params + [tenant_id, ticket_id],
        )

    async def forget_reply(self, tenant_id: str, ticket_id: str, *, is_private: bool) -> None:
        sets = ["message_count = CASE WHEN message_count > 0 THEN message_count - 1 ELSE 0 END"]
        if is_private:
            sets.append("internal_notes = CASE WHEN internal_notes > 0 THEN internal_notes - 1 ELSE 0 END")
        await self.db.execute(
            f"UPDATE tickets SET {', '.join(sets)} WHERE tenant_id = ? AND id = ?;",
            [tenant_id, ticket_id],
        )

    async def transition_if_status(
        self, tenant_id: str, ticket_id: str, expected: str, new_status: str, at: str
    ) -> bool:
        affected = await self.db.execute(
            """
            UPDATE tickets
            SET status = ?, updated_at = ?, last_activity_at = ?, version = version + 1
            WHERE tenant_id = ? AND id = ? AND status = ? AND is_deleted = FALSE;
            """,
            [new_status, at, at, tenant_id, ticket_id, expected],
        )
        return affected > 0

    async def flag_breach(self, tenant_id: str, ticket_id: str, kind: str) -> bool:
        column = _BREACH_FLAGS[kind]
        affected = await self.db.execute(
            f"""
            UPDATE tickets
            SET {column} = TRUE, sla_breached = TRUE
            WHERE tenant_id = ? AND id = ? AND {column} = FALSE;
            """,
            [tenant_id, ticket_id],
        )
        return affected > 0

    async def list_breach_candidates(self, now_iso: str, tenant_id: str | None = None) -> list[Ticket]:
        clauses = [
            "is_deleted = FALSE",
            "status <> 'cancelled'",
            """(
                (response_sla_breached = FALSE AND first_response_due IS NOT NULL AND (
                    (first_responded_at IS NULL AND first_response_due < ?
                        AND status NOT IN ('resolved', 'closed'))
                    OR first_responded_at > first_response_due))
                OR
                (resolve_sla_breached = FALSE AND resolution_due IS NOT NULL AND
                    COALESCE(resolved_at, closed_at, ?) > resolution_due)
            )""",
        ]
        params: list[Any] = [now_iso, now_iso]
        if tenant_id is not None:
            clauses.append("tenant_id = ?")
            params.append(tenant_id)
        rows = await self.db.fetchall(
            f"SELECT * FROM tickets WHERE {' AND '.join(clauses)} ORDER BY created_at ASC;",
            params,
        )
        return [_row_to_ticket(row) for row in rows]

    def _filter_clauses(self, query: TicketFilter) -> tuple[list[str], list[Any]]:
        clauses = ["tenant_id = ?"]
        params: list[Any] = [query.tenant_id]
        if not query.include_deleted:
            clauses.append("is_deleted = FALSE")
        if query.statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in query.statuses)})")
            params.extend(query.statuses)
        if query.priorities:
            clauses.append(f"priority IN ({', '.join('?' for _ in query.priorities)})")
            params.extend(query.priorities)
        for column in ("type", "source", "department_id", "category_id", "assigned_to_id", "customer_id"):
            value = getattr(query, column)
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        if query.unassigned:
            clauses.append("assigned_to_id IS NULL")
        if query.sla_breached is not None:
            clauses.append("sla_breached = ?")
            params.append(query.sla_breached)
        for tag in query.tags:
            clauses.append("tags_json LIKE ?")
            params.append(f"%{json.dumps(tag)}%")
        if query.search:
            needle = f"%{query.search.lower()}%"
            clauses.append("(LOWER(subject) LIKE ? OR LOWER(description) LIKE ? OR LOWER(ticket_number) LIKE ?)")
            params.extend([needle, needle, needle])
        if query.created_from:
            clauses.append("created_at >= ?")
            params.append(query.created_from)
        if query.created_to:
            clauses.append("created_at <= ?")
            params.append(query.created_to)
        return clauses, params

    async def list_filtered(self, query: TicketFilter) -> TicketPage:
        clauses, params = self._filter_clauses(query)
        where = " AND ".join(clauses)
        total = await self.db.fetchval(f"SELECT COUNT(*) AS total FROM tickets WHERE {where};", params, 0)

        sort_by = query.sort_by if query.sort_by in _TICKET_SORT_COLUMNS else "created_at"
        direction = "DESC" if query.sort_desc else "ASC"
        page = max(query.page, 1)
        page_size = min(max(query.page_size, 1), 100)
        rows = await self.db.fetchall(
            f"""
            SELECT * FROM tickets
            WHERE {where}
            ORDER BY {sort_by} {direction}, id ASC
            LIMIT ? OFFSET ?;
            """,
            params + [page_size, (page - 1) * page_size],
        )
        return TicketPage(
            items=[_row_to_ticket(row) for row in rows],
            total=int(total),
            page=page,
            page_size=page_size,
        )

    async def list_due_soon(self, tenant_id: str, now_iso: str, cutoff_iso: str, limit: int = 100) -> list[Ticket]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM tickets
            WHERE tenant_id = ? AND is_deleted = FALSE AND sla_breached = FALSE
              AND status NOT IN ('resolved', 'closed', 'cancelled')
              AND (
                (resolution_due IS NOT NULL AND resolution_due >= ? AND resolution_due <= ?)
                OR (first_responded_at IS NULL AND first_response_due IS NOT NULL
                    AND first_response_due >= ? AND first_response_due <= ?)
              )
            ORDER BY resolution_due ASC
            LIMIT ?;
            """,
            [tenant_id, now_iso, cutoff_iso, now_iso, cutoff_iso, limit],
        )
        return [_row_to_ticket(row) for row in rows]

    async def count_open_in_department(self, tenant_id: str, department_id: str) -> int:
        value = await self.db.fetchval(
            """
            SELECT COUNT(*) AS total FROM tickets
            WHERE tenant_id = ? AND department_id = ? AND is_deleted = FALSE
              AND status NOT IN ('resolved', 'closed');
            """,
            [tenant_id, department_id],
            0,
        )
        return int(value)

    async def count_open_for_agent(self, tenant_id: str, agent_user_id: str) -> int:
        value = await self.db.fetchval(
            """
            SELECT COUNT(*) AS total FROM tickets
            WHERE tenant_id = ? AND assigned_to_id = ? AND is_deleted = FALSE
              AND status NOT IN ('resolved', 'closed');
            """,
            [tenant_id, agent_user_id],
            0,
        )
        return int(value)

    async def get_stats(self, tenant_id: str) -> TicketStats:
        row = await self.db.fetchone(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN status = 'open' THEN 1 ELSE 0 END) AS open_count,
                SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) AS pending_count,
                SUM(CASE WHEN status = 'resolved' THEN 1 ELSE 0 END) AS resolved_count,
                SUM(CASE WHEN status = 'closed' THEN 1 ELSE 0 END) AS closed_count,
                SUM(CASE WHEN assigned_to_id IS NULL THEN 1 ELSE 0 END) AS unassigned_count,
                SUM(CASE WHEN sla_breached = TRUE THEN 1 ELSE 0 END) AS breached_count
            FROM tickets
            WHERE tenant_id = ? AND is_deleted = FALSE;
            """,
            [tenant_id],
        )
        row = row or {}
        stats = TicketStats(
            total_tickets=int(row.get("total") or 0),
            open_tickets=int(row.get("open_count") or 0),
            pending_tickets=int(row.get("pending_count") or 0),
            resolved_tickets=int(row.get("resolved_count") or 0),
            closed_tickets=int(row.get("closed_count") or 0),
            unassigned_tickets=int(row.get("unassigned_count") or 0),
            sla_breached=int(row.get("breached_count") or 0),
        )
        stats.by_priority = await self._group_count(tenant_id, "priority")
        stats.by_type = await self._group_count(tenant_id, "type")
        stats.by_department = await self._group_count(tenant_id, "COALESCE(department_name, 'none')")
        return stats

    async def _group_count(self, tenant_id: str, expression: str) -> dict[str, int]:
        rows = await self.db.fetchall(
            f"""
            SELECT {expression} AS bucket, COUNT(*) AS total
            FROM tickets
            WHERE tenant_id = ? AND is_deleted = FALSE
            GROUP BY {expression};
            """,
            [tenant_id],
        )
        return {str(row["bucket"]): int(row["total"]) for row in rows}


# --------------------------------------------------------------------------
# Messages and history
# --------------------------------------------------------------------------


class MessageRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, message: TicketMessage) -> None:
        await self.db.execute(
            """
            INSERT INTO ticket_messages(
                id, tenant_id, ticket_id, type, content, content_html, sender_type,
                sender_id, sender_name, sender_email, attachments_json, is_private,
                is_edited, edited_at, edited_by, original_content, is_deleted,
                deleted_at, deleted_by, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                message.id,
                message.tenant_id,
                message.ticket_id,
                message.type,
                message.content,
                message.content_html,
                message.sender_type,
                message.sender_id,
                message.sender_name,
                message.sender_email,
                _attachments_dump(message.attachments),
                message.is_private,
                message.is_edited,
                message.edited_at,
                message.edited_by,
                message.original_content,
                message.is_deleted,
                message.deleted_at,
                message.deleted_by,
                message.created_at,
                message.updated_at,
            ],
        )

    async def get_by_id(self, tenant_id: str, message_id: str) -> TicketMessage | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM ticket_messages
            WHERE tenant_id = ? AND id = ? AND is_deleted = FALSE;
            """,
            [tenant_id, message_id],
        )
        if not row:
            return None
        return self._row_to_message(row)

    async def update(self, message: TicketMessage) -> None:
        await self.db.execute(
            """
            UPDATE ticket_messages
            SET content = ?, content_html = ?, is_edited = ?, edited_at = ?, edited_by = ?,
                original_content = ?, is_deleted = ?, deleted_at = ?, deleted_by = ?, updated_at = ?
            WHERE tenant_id = ? AND id = ?;
            """,
            [
                message.content,
                message.content_html,
                message.is_edited,
                message.edited_at,
                message.edited_by,
                message.original_content,
                message.is_deleted,
                message.deleted_at,
                message.deleted_by,
                message.updated_at,
                message.tenant_id,
                message.id,
            ],
        )

    async def list_by_ticket(
        self, tenant_id: str, ticket_id: str, include_private: bool = False
    ) -> list[TicketMessage]:
        private_clause = "" if include_private else "AND is_private = FALSE"
        rows = await self.db.fetchall(
            f"""
            SELECT * FROM ticket_messages
            WHERE tenant_id = ? AND ticket_id = ? AND is_deleted = FALSE {private_clause}
            ORDER BY created_at ASC, id ASC;
            """,
            [tenant_id, ticket_id],
        )
        return [self._row_to_message(row) for row in rows]

    def _row_to_message(self, row: dict[str, Any]) -> TicketMessage:
        return TicketMessage(
            id=row["id"],
            tenant_id=row["tenant_id"],
            ticket_id=row["ticket_id"],
            type=row["type"],
            content=row["content"],
            content_html=row["content_html"],
            sender_type=row["sender_type"],
            sender_id=row["sender_id"],
            sender_name=row["sender_name"],
            sender_email=row["sender_email"],
            attachments=_attachments_load(row["attachments_json"]),
            is_private=bool(row["is_private"]),
            is_edited=bool(row["is_edited"]),
            edited_at=row["edited_at"],
            edited_by=row["edited_by"],
            original_content=row["original_content"],
            is_deleted=bool(row["is_deleted"]),
            deleted_at=row["deleted_at"],
            deleted_by=row["deleted_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class HistoryRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, entry: TicketHistory) -> None:
        await self.db.execute(
            """
            INSERT INTO ticket_history(
                id, tenant_id, ticket_id, action, field, old_value, new_value,
                changed_by, changed_by_name, comment, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                entry.id,
                entry.tenant_id,
                entry.ticket_id,
                entry.action,
                entry.field,
                entry.old_value,
                entry.new_value,
                entry.changed_by,
                entry.changed_by_name,
                entry.comment,
                entry.created_at,
            ],
        )

    async def list_by_ticket(self, tenant_id: str, ticket_id: str) -> list[TicketHistory]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM ticket_history
            WHERE tenant_id = ? AND ticket_id = ?
            ORDER BY created_at ASC, id ASC;
            """,
            [tenant_id, ticket_id],
        )
        return [
            TicketHistory(
                id=row["id"],
                tenant_id=row["tenant_id"],
                ticket_id=row["ticket_id"],
                action=row["action"],
                field=row["field"],
                old_value=row["old_value"],
                new_value=row["new_value"],
                changed_by=row["changed_by"],
                changed_by_name=row["changed_by_name"],
                comment=row["comment"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


# --------------------------------------------------------------------------
# Departments and categories
# --------------------------------------------------------------------------


def _business_hours_dump(value: BusinessHours | None) -> str | None:
    if value is None:
        return None
    return _json_dump(asdict(value))


def _business_hours_load(value: str | None) -> BusinessHours | None:
    payload = _json_load(value, None)
    if not isinstance(payload, dict):
        return None
    return BusinessHours(
        enabled=bool(payload.get("enabled", False)),
        timezone=str(payload.get("timezone") or "UTC"),
        schedule=[
            DaySchedule(
                day=int(item.get("day", 0)),
                is_work_day=bool(item.get("is_work_day", True)),
                start_time=str(item.get("start_time", "09:00")),
                end_time=str(item.get("end_time", "17:00")),
            )
            for item in payload.get("schedule", [])
            if isinstance(item, dict)
        ],
        holidays=[str(day) for day in payload.get("holidays", [])],
    )


class DepartmentRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, department: Department) -> None:
        await self.db.execute(
            """
            INSERT INTO departments(
                id, tenant_id, name, slug, description, email, parent_id, path, level,
                manager_id, manager_name, agent_ids_json, auto_assign, auto_assign_type,
                default_priority, sla_policy_id, business_hours_json, open_tickets,
                total_tickets, is_active, is_deleted, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                department.id,
                department.tenant_id,
                department.name,
                department.slug,
                department.description,
                department.email,
                department.parent_id,
                department.path,
                department.level,
                department.manager_id,
                department.manager_name,
                _json_dump(department.agent_ids),
                department.auto_assign,
                department.auto_assign_type,
                department.default_priority,
                department.sla_policy_id,
                _business_hours_dump(department.business_hours),
                department.open_tickets,
                department.total_tickets,
                department.is_active,
                department.is_deleted,
                department.created_at,
                department.updated_at,
            ],
        )

    async def get_by_id(self, tenant_id: str, department_id: str) -> Department | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM departments
            WHERE tenant_id = ? AND id = ? AND is_deleted = FALSE;
            """,
            [tenant_id, department_id],
        )
        if not row:
            return None
        return self._row_to_department(row)

    async def list_by_tenant(self, tenant_id: str, active_only: bool = False) -> list[Department]:
        active_clause = "AND is_active = TRUE" if active_only else ""
        rows = await self.db.fetchall(
            f"""
            SELECT * FROM departments
            WHERE tenant_id = ? AND is_deleted = FALSE {active_clause}
            ORDER BY path ASC;
            """,
            [tenant_id],
        )
        return [self._row_to_department(row) for row in rows]

    async def update(self, department: Department) -> None:
        # Counters are left to the atomic mutators below.
        await self.db.execute(
            """
            UPDATE departments
            SET name = ?, slug = ?, description = ?, email = ?, parent_id = ?, path = ?, level = ?,
                manager_id = ?, manager_name = ?, agent_ids_json = ?, auto_assign = ?,
                auto_assign_type = ?, default_priority = ?, sla_policy_id = ?,
                business_hours_json = ?, is_active = ?, updated_at = ?
            WHERE tenant_id = ? AND id = ?;
            """,
            [
                department.name,
                department.slug,
                department.description,
                department.email,
                department.parent_id,
                department.path,
                department.level,
                department.manager_id,
                department.manager_name,
                _json_dump(department.agent_ids),
                department.auto_assign,
                department.auto_assign_type,
                department.default_priority,
                department.sla_policy_id,
                _business_hours_dump(department.business_hours),
                department.is_active,
                department.updated_at,
                department.tenant_id,
                department.id,
            ],
        )

    async def soft_delete(self, tenant_id: str, department_id: str, at: str) -> None:
        await self.db.execute(
            """
            UPDATE departments
            SET is_deleted = TRUE, is_active = FALSE, updated_at = ?
            WHERE tenant_id = ? AND id = ?;
            """,
            [at, tenant_id, department_id],
        )

    async def increment_ticket_count(self, tenant_id: str, department_id: str, count_open: bool = True) -> None:
        """A ticket enters the department: bump total, and open unless it is finished."""
        await self.db.execute(
            """
            UPDATE departments
            SET open_tickets = open_tickets + ?, total_tickets = total_tickets + 1
            WHERE tenant_id = ? AND id = ?;
            """,
            [1 if count_open else 0, tenant_id, department_id],
        )

    async def increment_open_tickets(self, tenant_id: str, department_id: str) -> None:
        await self.db.execute(
            "UPDATE departments SET open_tickets = open_tickets + 1 WHERE tenant_id = ? AND id = ?;",
            [tenant_id, department_id],
        )

    async def decrement_open_tickets(self, tenant_id: str, department_id: str) -> None:
        await self.db.execute(
            """
            UPDATE departments
            SET open_tickets = open_tickets - 1
            WHERE tenant_id = ? AND id = ? AND open_tickets > 0;
            """,
            [tenant_id, department_id],
        )

    def _row_to_department(self, row: dict[str, Any]) -> Department:
        return Department(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            slug=row["slug"],
            description=row["description"],
            email=row["email"],
            parent_id=row["parent_id"],
            path=row["path"],
            level=int(row["level"]),
            manager_id=row["manager_id"],
            manager_name=row["manager_name"],
            agent_ids=[str(x) for x in _json_load(row["agent_ids_json"], [])],
            auto_assign=bool(row["auto_assign"]),
            auto_assign_type=row["auto_assign_type"],
            default_priority=row["default_priority"],
            sla_policy_id=row["sla_policy_id"],
            business_hours=_business_hours_load(row["business_hours_json"]),
            open_tickets=int(row["open_tickets"]),
            total_tickets=int(row["total_tickets"]),
            is_active=bool(row["is_active"]),
            is_deleted=bool(row["is_deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class CategoryRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, category: Category) -> None:
        await self.db.execute(
            """
            INSERT INTO categories(
                id, tenant_id, name, slug, description, parent_id, path, level,
                department_id, default_priority, sort_order, is_active, is_public,
                is_deleted, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                category.id,
                category.tenant_id,
                category.name,
                category.slug,
                category.description,
                category.parent_id,
                category.path,
                category.level,
                category.department_id,
                category.default_priority,
                category.sort_order,
                category.is_active,
                category.is_public,
                category.is_deleted,
                category.created_at,
                category.updated_at,
            ],
        )

    async def get_by_id(self, tenant_id: str, category_id: str) -> Category | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM categories
            WHERE tenant_id = ? AND id = ? AND is_deleted = FALSE;
            """,
            [tenant_id, category_id],
        )
        if not row:
            return None
        return self._row_to_category(row)

    async def list_by_tenant(
        self, tenant_id: str, department_id: str | None = None, public_only: bool = False
    ) -> list[Category]:
        clauses = ["tenant_id = ?", "is_deleted = FALSE", "is_active = TRUE"]
        params: list[Any] = [tenant_id]
        if department_id:
            clauses.append("(department_id = ? OR department_id IS NULL)")
            params.append(department_id)
        if public_only:
            clauses.append("is_public = TRUE")
        rows = await self.db.fetchall(
            f"SELECT * FROM categories WHERE {' AND '.join(clauses)} ORDER BY sort_order ASC, path ASC;",
            params,
        )
        return [self._row_to_category(row) for row in rows]

    def _row_to_category(self, row: dict[str, Any]) -> Category:
        return Category(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            slug=row["slug"],
            description=row["description"],
            parent_id=row["parent_id"],
            path=row["path"],
            level=int(row["level"]),
            department_id=row["department_id"],
            default_priority=row["default_priority"],
            sort_order=int(row["sort_order"]),
            is_active=bool(row["is_active"]),
            is_public=bool(row["is_public"]),
            is_deleted=bool(row["is_deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


# --------------------------------------------------------------------------
# Agents
# --------------------------------------------------------------------------


class AgentRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, agent: Agent) -> None:
        await self.db.execute(
            """
            INSERT INTO agents(
                id, tenant_id, user_id, name, email, role, department_ids_json, team_id,
                status, is_online, current_tickets, tickets_today, tickets_this_week,
                tickets_this_month, max_tickets, skills_json, languages_json, avg_rating,
                total_resolved, is_active, is_deleted, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                agent.id,
                agent.tenant_id,
                agent.user_id,
                agent.name,
                agent.email,
                agent.role,
                _json_dump(agent.department_ids),
                agent.team_id,
                agent.status,
                agent.is_online,
                agent.current_tickets,
                agent.tickets_today,
                agent.tickets_this_week,
                agent.tickets_this_month,
                agent.max_tickets,
                _json_dump(agent.skills),
                _json_dump(agent.languages),
                float(agent.avg_rating),
                agent.total_resolved,
                agent.is_active,
                agent.is_deleted,
                agent.created_at,
                agent.updated_at,
            ],
        )

    async def get_by_user_id(self, tenant_id: str, user_id: str) -> Agent | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM agents
            WHERE tenant_id = ? AND user_id = ? AND is_deleted = FALSE;
            """,
            [tenant_id, user_id],
        )
        if not row:
            return None
        return self._row_to_agent(row)

    async def list_by_tenant(self, tenant_id: str, department_id: str | None = None) -> list[Agent]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM agents
            WHERE tenant_id = ? AND is_deleted = FALSE
            ORDER BY name ASC;
            """,
            [tenant_id],
        )
        agents = [self._row_to_agent(row) for row in rows]
        if department_id:
            agents = [agent for agent in agents if department_id in agent.department_ids]
        return agents

    async def find_available(self, tenant_id: str, department_id: str | None = None) -> list[Agent]:
        """Assignable agents ordered least-loaded first."""
        rows = await self.db.fetchall(
            """
            SELECT * FROM agents
            WHERE tenant_id = ? AND is_deleted = FALSE AND is_active = TRUE
              AND status = 'available' AND current_tickets < max_tickets
            ORDER BY current_tickets ASC, created_at ASC, id ASC;
            """,
            [tenant_id],
        )
        agents = [self._row_to_agent(row) for row in rows]
        if department_id:
            agents = [agent for agent in agents if department_id in agent.department_ids]
        return agents

    async def update(self, agent: Agent) -> None:
        # Workload and rating columns are owned by the atomic mutators.
        await self.db.execute(
            """
            UPDATE agents
            SET name = ?, email = ?, role = ?, department_ids_json = ?, team_id = ?, status = ?,
                is_online = ?, max_tickets = ?, skills_json = ?, languages_json = ?,
                is_active = ?, updated_at = ?
            WHERE tenant_id = ? AND id = ?;
            """,
            [
                agent.name,
                agent.email,
                agent.role,
                _json_dump(agent.department_ids),
                agent.team_id,
                agent.status,
                agent.is_online,
                agent.max_tickets,
                _json_dump(agent.skills),
                _json_dump(agent.languages),
                agent.is_active,
                agent.updated_at,
                agent.tenant_id,
                agent.id,
            ],
        )

    async def soft_delete(self, tenant_id: str, user_id: str, at: str) -> None:
        await self.db.execute(
            """
            UPDATE agents
            SET is_deleted = TRUE, is_active = FALSE, status = 'offline', is_online = FALSE, updated_at = ?
            WHERE tenant_id = ? AND user_id = ?;
            """,
            [at, tenant_id, user_id],
        )

    async def reserve_capacity(self, tenant_id: str, user_id: str) -> bool:
        """Take one workload slot if the agent is still under capacity."""
        affected = await self.db.execute(
            """
            UPDATE agents
            SET current_tickets = current_tickets + 1,
                tickets_today = tickets_today + 1,
                tickets_this_week = tickets_this_week + 1,
                tickets_this_month = tickets_this_month + 1
            WHERE tenant_id = ? AND user_id = ? AND is_deleted = FALSE
              AND current_tickets < max_tickets;
            """,
            [tenant_id, user_id],
        )
        return affected > 0

    async def increment_ticket_count(self, tenant_id: str, user_id: str) -> None:
        """Unconditional workload bump for a ticket that is already assigned."""
        await self.db.execute(
            """
            UPDATE agents
            SET current_tickets = current_tickets + 1
            WHERE tenant_id = ? AND user_id = ?;
            """,
            [tenant_id, user_id],
        )

    async def decrement_ticket_count(self, tenant_id: str, user_id: str) -> None:
        await self.db.execute(
            """
            UPDATE agents
            SET current_tickets = current_tickets - 1
            WHERE tenant_id = ? AND user_id = ? AND current_tickets > 0;
            """,
            [tenant_id, user_id],
        )

    async def increment_resolved(self, tenant_id: str, user_id: str) -> None:
        await self.db.execute(
            "UPDATE agents SET total_resolved = total_resolved + 1 WHERE tenant_id = ? AND user_id = ?;",
            [tenant_id, user_id],
        )

    async def apply_rating(self, tenant_id: str, user_id: str, rating: int) -> None:
        # Incremental mean over total_resolved, treating zero resolved as one.
        await self.db.execute(
            """
            UPDATE agents
            SET avg_rating = (
                avg_rating * (CASE WHEN total_resolved > 0 THEN total_resolved ELSE 1 END - 1) + ?
            ) / (CASE WHEN total_resolved > 0 THEN total_resolved ELSE 1 END)
            WHERE tenant_id = ? AND user_id = ?;
            """,
            [float(rating), tenant_id, user_id],
        )

    async def adjust_rating(self, tenant_id: str, user_id: str, old_rating: int, new_rating: int) -> None:
        # Swap one rating inside the mean without changing its weight.
        await self.db.execute(
            """
            UPDATE agents
            SET avg_rating = avg_rating + (? - ?) / (CASE WHEN total_resolved > 0 THEN total_resolved ELSE 1 END)
            WHERE tenant_id = ? AND user_id = ?;
            """,
            [float(new_rating), float(old_rating), tenant_id, user_id],
        )

    async def reset_daily_counters(self) -> int:
        return await self.db.execute("UPDATE agents SET tickets_today = 0 WHERE tickets_today <> 0;")

    def _row_to_agent(self, row: dict[str, Any]) -> Agent:
        return Agent(
            id=row["id"],
            tenant_id=row["tenant_id"],
            user_id=row["user_id"],
            name=row["name"],
            email=row["email"],
            role=row["role"],
            department_ids=[str(x) for x in _json_load(row["department_ids_json"], [])],
            team_id=row["team_id"],
            status=row["status"],
            is_online=bool(row["is_online"]),
            current_tickets=int(row["current_tickets"]),
            tickets_today=int(row["tickets_today"]),
            tickets_this_week=int(row["tickets_this_week"]),
            tickets_this_month=int(row["tickets_this_month"]),
            max_tickets=int(row["max_tickets"]),
            skills=[str(x) for x in _json_load(row["skills_json"], [])],
            languages=[str(x) for x in _json_load(row["languages_json"], [])],
            avg_rating=float(row["avg_rating"]),
            total_resolved=int(row["total_resolved"]),
            is_active=bool(row["is_active"]),
            is_deleted=bool(row["is_deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


# --------------------------------------------------------------------------
# SLA policies and canned responses
# --------------------------------------------------------------------------


def _targets_load(value: str | None) -> list[SLATarget]:
    result: list[SLATarget] = []
    for item in _json_load(value, []):
        if not isinstance(item, dict):
            continue
        result.append(
            SLATarget(
                priority=str(item.get("priority", "")),
                first_response_mins=int(item.get("first_response_mins") or 0),
                resolution_mins=int(item.get("resolution_mins") or 0),
                next_response_mins=int(item.get("next_response_mins") or 0),
                escalation_enabled=bool(item.get("escalation_enabled", False)),
                escalation_after_mins=int(item.get("escalation_after_mins") or 0),
            )
        )
    return result


class SLAPolicyRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, policy: SLAPolicy) -> None:
        await self.db.execute(
            """
            INSERT INTO sla_policies(
                id, tenant_id, name, description, is_default, is_active, priorities_json,
                use_business_hours, is_deleted, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                policy.id,
                policy.tenant_id,
                policy.name,
                policy.description,
                policy.is_default,
                policy.is_active,
                _json_dump([asdict(target) for target in policy.priorities]),
                policy.use_business_hours,
                policy.is_deleted,
                policy.created_at,
                policy.updated_at,
            ],
        )

    async def get_by_id(self, tenant_id: str, policy_id: str) -> SLAPolicy | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM sla_policies
            WHERE tenant_id = ? AND id = ? AND is_deleted = FALSE;
            """,
            [tenant_id, policy_id],
        )
        if not row:
            return None
        return self._row_to_policy(row)

    async def get_default(self, tenant_id: str) -> SLAPolicy | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM sla_policies
            WHERE tenant_id = ? AND is_default = TRUE AND is_active = TRUE AND is_deleted = FALSE
            ORDER BY created_at ASC
            LIMIT 1;
            """,
            [tenant_id],
        )
        if not row:
            return None
        return self._row_to_policy(row)

    async def list_by_tenant(self, tenant_id: str) -> list[SLAPolicy]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM sla_policies
            WHERE tenant_id = ? AND is_deleted = FALSE
            ORDER BY is_default DESC, name ASC;
            """,
            [tenant_id],
        )
        return [self._row_to_policy(row) for row in rows]

    async def update(self, policy: SLAPolicy) -> None:
        await self.db.execute(
            """
            UPDATE sla_policies
            SET name = ?, description = ?, is_default = ?, is_active = ?, priorities_json = ?,
                use_business_hours = ?, updated_at = ?
            WHERE tenant_id = ? AND id = ?;
            """,
            [
                policy.name,
                policy.description,
                policy.is_default,
                policy.is_active,
                _json_dump([asdict(target) for target in policy.priorities]),
                policy.use_business_hours,
                policy.updated_at,
                policy.tenant_id,
                policy.id,
            ],
        )

    async def clear_default(self, tenant_id: str, keep_id: str, at: str) -> None:
        await self.db.execute(
            """
            UPDATE sla_policies
            SET is_default = FALSE, updated_at = ?
            WHERE tenant_id = ? AND id <> ? AND is_default = TRUE;
            """,
            [at, tenant_id, keep_id],
        )

    async def soft_delete(self, tenant_id: str, policy_id: str, at: str) -> None:
        await self.db.execute(
            """
            UPDATE sla_policies
            SET is_deleted = TRUE, is_active = FALSE, updated_at = ?
            WHERE tenant_id = ? AND id = ? AND is_default = FALSE;
            """,
            [at, tenant_id, policy_id],
        )

    def _row_to_policy(self, row: dict[str, Any]) -> SLAPolicy:
        return SLAPolicy(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            description=row["description"],
            is_default=bool(row["is_default"]),
            is_active=bool(row["is_active"]),
            priorities=_targets_load(row["priorities_json"]),
            use_business_hours=bool(row["use_business_hours"]),
            is_deleted=bool(row["is_deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class CannedResponseRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, response: CannedResponse) -> None:
        await self.db.execute(
            """
            INSERT INTO canned_responses(
                id, tenant_id, title, content, shortcut, category, tags_json, created_by,
                is_global, department_id, usage_count, is_active, is_deleted, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                response.id,
                response.tenant_id,
                response.title,
                response.content,
                response.shortcut,
                response.category,
                _json_dump(response.tags),
                response.created_by,
                response.is_global,
                response.department_id,
                response.usage_count,
                response.is_active,
                response.is_deleted,
                response.created_at,
                response.updated_at,
            ],
        )

    async def get_by_id(self, tenant_id: str, response_id: str) -> CannedResponse | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM canned_responses
            WHERE tenant_id = ? AND id = ? AND is_deleted = FALSE;
            """,
            [tenant_id, response_id],
        )
        if not row:
            return None
        return self._row_to_response(row)

    async def get_by_shortcut(self, tenant_id: str, shortcut: str) -> CannedResponse | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM canned_responses
            WHERE tenant_id = ? AND shortcut = ? AND is_deleted = FALSE;
            """,
            [tenant_id, shortcut],
        )
        if not row:
            return None
        return self._row_to_response(row)

    async def list_by_tenant(self, tenant_id: str, department_id: str | None = None) -> list[CannedResponse]:
        clauses = ["tenant_id = ?", "is_deleted = FALSE", "is_active = TRUE"]
        params: list[Any] = [tenant_id]
        if department_id:
            clauses.append("(is_global = TRUE OR department_id = ?)")
            params.append(department_id)
        else:
            clauses.append("is_global = TRUE")
        rows = await self.db.fetchall(
            f"""
            SELECT * FROM canned_responses
            WHERE {' AND '.join(clauses)}
            ORDER BY usage_count DESC, title ASC;
            """,
            params,
        )
        return [self._row_to_response(row) for row in rows]

    async def increment_usage(self, tenant_id: str, response_id: str) -> None:
        await self.db.execute(
            "UPDATE canned_responses SET usage_count = usage_count + 1 WHERE tenant_id = ? AND id = ?;",
            [tenant_id, response_id],
        )

    async def soft_delete(self, tenant_id: str, response_id: str, at: str) -> None:
        await self.db.execute(
            """
            UPDATE canned_responses
            SET is_deleted = TRUE, is_active = FALSE, updated_at = ?
            WHERE tenant_id = ? AND id = ?;
            """,
            [at, tenant_id, response_id],
        )

    def _row_to_response(self, row: dict[str, Any]) -> CannedResponse:
        return CannedResponse(
            id=row["id"],
            tenant_id=row["tenant_id"],
            title=row["title"],
            content=row["content"],
            shortcut=row["shortcut"],
            category=row["category"],
            tags=[str(x) for x in _json_load(row["tags_json"], [])],
            created_by=row["created_by"],
            is_global=bool(row["is_global"]),
            department_id=row["department_id"],
            usage_count=int(row["usage_count"]),
            is_active=bool(row["is_active"]),
            is_deleted=bool(row["is_deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
