from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path

import pytest

from core.app import HelpdeskApp
from core.config import AppConfig
from services.payloads import Actor, TicketCreateRequest
from utils.time import to_iso, utc_now

ROOT = Path(__file__).resolve().parents[1]


@pytest.mark.asyncio
async def test_maintenance_flags_breaches_and_resets_daily_counters(tmp_path: Path) -> None:
    config = AppConfig()
    config.database.url = f"sqlite:///{tmp_path / 'app.db'}"
    customer = Actor("tenant-a", "cust-1", "Carol")

    async with HelpdeskApp(config, root_dir=ROOT) as app:
        assert await app.run_maintenance() == 0

        ticket = await app.ticket_service.create_ticket(TicketCreateRequest("Late", "Nobody answered"), customer)
        stored = await app.ticket_repo.get_by_id("tenant-a", ticket.id)
        assert stored is not None
        stored.first_response_due = to_iso(utc_now() - timedelta(minutes=1))
        assert await app.ticket_repo.update(stored)

        app._last_daily_reset = date(2000, 1, 1)
        assert await app.run_maintenance() == 1
        assert app._last_daily_reset == utc_now().date()

        flagged = await app.ticket_repo.get_by_id("tenant-a", ticket.id)
        assert flagged is not None
        assert flagged.sla_breached is True
