from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from uuid import uuid4

from core.config import SLAConfig
from database.models import BusinessHours, Department, SLAPolicy, Ticket, TicketHistory
from database.repositories import DepartmentRepository, HistoryRepository, SLAPolicyRepository, TicketRepository
from services.side_effects import SideEffects
from utils.constants import FINISHED_STATUSES, SYSTEM_ACTOR_ID, SYSTEM_ACTOR_NAME
from utils.time import add_business_minutes, from_iso, parse_clock, to_iso, utc_now


@dataclass(slots=True, frozen=True)
class SLADeadlines:
    policy_id: str | None
    first_response_due: datetime
    resolution_due: datetime


class SLAResolver:
    """Computes first-response and resolution deadlines for a ticket.

    Lookup order: the department's policy, then the tenant default policy,
    then the static hour offsets from configuration. Store or schedule
    problems degrade to the next fallback and are reported, never raised.
    """

    def __init__(
        self,
        config: SLAConfig,
        policy_repo: SLAPolicyRepository,
        department_repo: DepartmentRepository,
        side_effects: SideEffects,
    ) -> None:
        self.config = config
        self.policy_repo = policy_repo
        self.department_repo = department_repo
        self.side_effects = side_effects

    async def resolve(
        self,
        ticket: Ticket,
        department: Department | None = None,
        now: datetime | None = None,
    ) -> SLADeadlines | None:
        if not self.config.enabled:
            return None
        now = now or utc_now()
        if department is None and ticket.department_id:
            department = await self.side_effects.run(
                "sla_department_lookup",
                self.department_repo.get_by_id(ticket.tenant_id, ticket.department_id),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )

        policy = await self._find_policy(ticket, department)
        target = policy.target_for(ticket.priority) if policy else None
        if policy is not None and target is not None:
            deadlines = SLADeadlines(
                policy_id=policy.id,
                first_response_due=self._add(now, target.first_response_mins, policy, department, ticket),
                resolution_due=self._add(now, target.resolution_mins, policy, department, ticket),
            )
        else:
            deadlines = SLADeadlines(
                policy_id=None,
                first_response_due=now + timedelta(hours=self.config.default_response_hours),
                resolution_due=now + timedelta(hours=self.config.default_resolve_hours),
            )

        ticket.sla_policy_id = deadlines.policy_id
        ticket.first_response_due = to_iso(deadlines.first_response_due)
        ticket.resolution_due = to_iso(deadlines.resolution_due)
        return deadlines

    async def _find_policy(self, ticket: Ticket, department: Department | None) -> SLAPolicy | None:
        if department is not None and department.sla_policy_id:
            policy = await self.side_effects.run(
                "sla_policy_lookup",
                self.policy_repo.get_by_id(ticket.tenant_id, department.sla_policy_id),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
            if policy is not None and policy.is_active:
                return policy
        return await self.side_effects.run(
            "sla_default_policy_lookup",
            self.policy_repo.get_default(ticket.tenant_id),
            ticket_id=ticket.id,
            tenant_id=ticket.tenant_id,
        )

    def _add(
        self,
        start: datetime,
        minutes: int,
        policy: SLAPolicy,
        department: Department | None,
        ticket: Ticket,
    ) -> datetime:
        if not policy.use_business_hours:
            return start + timedelta(minutes=minutes)
        hours = department.business_hours if department is not None else None
        try:
            if hours is not None and hours.enabled:
                windows, holidays = _department_windows(hours)
                return add_business_minutes(start, minutes, windows, hours.timezone, holidays)
            return add_business_minutes(start, minutes, self._default_windows())
        except (ValueError, KeyError, LookupError) as exc:
            self.side_effects.report_error("sla_business_hours", exc, ticket_id=ticket.id, tenant_id=ticket.tenant_id)
            return start + timedelta(minutes=minutes)

    def _default_windows(self) -> dict[int, tuple[time, time]]:
        opens = time(hour=self.config.business_hours_start)
        closes = time(hour=self.config.business_hours_end) if self.config.business_hours_end < 24 else time.max
        return {day: (opens, closes) for day in self.config.work_days}


def _department_windows(hours: BusinessHours) -> tuple[dict[int, tuple[time, time]], set[date]]:
    windows = {
        entry.day: (parse_clock(entry.start_time), parse_clock(entry.end_time))
        for entry in hours.schedule
        if entry.is_work_day
    }
    holidays = {date.fromisoformat(value[:10]) for value in hours.holidays}
    return windows, holidays


class SLABreachMonitor:
    """Polling breach detector: flags tickets whose milestones missed their due dates."""

    def __init__(
        self,
        ticket_repo: TicketRepository,
        history_repo: HistoryRepository,
        side_effects: SideEffects,
    ) -> None:
        self.ticket_repo = ticket_repo
        self.history_repo = history_repo
        self.side_effects = side_effects

    async def sweep(self, tenant_id: str | None = None, now: datetime | None = None) -> int:
        now = now or utc_now()
        now_iso = to_iso(now)
        assert now_iso is not None
        flagged = 0
        for ticket in await self.ticket_repo.list_breach_candidates(now_iso, tenant_id):
            for kind in breached_milestones(ticket, now):
                if not await self.ticket_repo.flag_breach(ticket.tenant_id, ticket.id, kind):
                    continue
                flagged += 1
                await self.side_effects.run(
                    "history",
                    self.history_repo.add(
                        TicketHistory(
                            id=str(uuid4()),
                            tenant_id=ticket.tenant_id,
                            ticket_id=ticket.id,
                            action="sla_breached",
                            field=f"{kind}_due",
                            new_value=ticket.first_response_due if kind == "response" else ticket.resolution_due,
                            changed_by=SYSTEM_ACTOR_ID,
                            changed_by_name=SYSTEM_ACTOR_NAME,
                            created_at=now_iso,
                        )
                    ),
                    ticket_id=ticket.id,
                    tenant_id=ticket.tenant_id,
                )
        return flagged


def breached_milestones(ticket: Ticket, now: datetime) -> list[str]:
    kinds: list[str] = []
    response_due = from_iso(ticket.first_response_due)
    responded_at = from_iso(ticket.first_responded_at)
    if not ticket.response_sla_breached and response_due is not None:
        if responded_at is not None:
            if responded_at > response_due:
                kinds.append("response")
        elif now > response_due and ticket.status not in FINISHED_STATUSES:
            kinds.append("response")

    resolution_due = from_iso(ticket.resolution_due)
    if not ticket.resolve_sla_breached and resolution_due is not None:
        finished_at = from_iso(ticket.resolved_at) or from_iso(ticket.closed_at) or now
        if finished_at > resolution_due:
            kinds.append("resolution")
    return kinds
