from __future__ import annotations

from dataclasses import replace
from uuid import uuid4

from core.errors import ConflictError
from database.models import Agent, Ticket, TicketHistory
from database.repositories import AgentRepository, HistoryRepository, TicketRepository
from services.side_effects import SideEffects
from utils.constants import FINISHED_STATUSES, SYSTEM_ACTOR_ID, SYSTEM_ACTOR_NAME
from utils.time import to_iso, utc_now


class AssignmentEngine:
    """Least-loaded agent selection for tickets that enter a queue unassigned.

    Candidates are reserved with a conditional update, so an agent filled by a
    concurrent writer is skipped in favour of the next one.
    """

    def __init__(
        self,
        agent_repo: AgentRepository,
        ticket_repo: TicketRepository,
        history_repo: HistoryRepository,
        side_effects: SideEffects,
    ) -> None:
        self.agent_repo = agent_repo
        self.ticket_repo = ticket_repo
        self.history_repo = history_repo
        self.side_effects = side_effects

    async def pick_candidates(self, tenant_id: str, department_id: str | None) -> list[Agent]:
        return await self.agent_repo.find_available(tenant_id, department_id)

    async def auto_assign(self, ticket: Ticket) -> Ticket | None:
        """Assign ``ticket`` to the least-busy available agent.

        Returns the updated ticket, or ``None`` when nobody qualifies.
        """
        # Finished or deleted tickets hold no capacity until they are reopened.
        counted = not ticket.is_deleted and ticket.status not in FINISHED_STATUSES
        for agent in await self.pick_candidates(ticket.tenant_id, ticket.department_id):
            if counted:
                if not await self.agent_repo.reserve_capacity(ticket.tenant_id, agent.user_id):
                    continue
            elif agent.current_tickets >= agent.max_tickets:
                continue
            now_iso = to_iso(utc_now())
            assigned = replace(
                ticket,
                assigned_to_id=agent.user_id,
                assigned_to_name=agent.name,
                assigned_to_email=agent.email,
                assigned_at=now_iso,
                assigned_by_id=SYSTEM_ACTOR_ID,
                updated_at=now_iso,
                last_activity_at=now_iso,
            )
            if not await self.ticket_repo.update(assigned):
                if counted:
                    await self.agent_repo.decrement_ticket_count(ticket.tenant_id, agent.user_id)
                raise ConflictError("Ticket changed while auto-assigning.")

            await self.side_effects.run(
                "history",
                self.history_repo.add(
                    TicketHistory(
                        id=str(uuid4()),
                        tenant_id=ticket.tenant_id,
                        ticket_id=ticket.id,
                        action="auto_assigned",
                        field="assignee",
                        old_value=None,
                        new_value=agent.name,
                        changed_by=SYSTEM_ACTOR_ID,
                        changed_by_name=SYSTEM_ACTOR_NAME,
                        created_at=now_iso,
                    )
                ),
                ticket_id=ticket.id,
                tenant_id=ticket.tenant_id,
            )
            return assigned
        return None
