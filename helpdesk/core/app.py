from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path
from types import TracebackType

from core.config import AppConfig
from database.base import Database
from database.migrations.runner import run_migrations
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
from services.admin_service import AdminService, AdminServiceDeps
from services.bulk_service import BulkOperationExecutor, BulkResult
from services.cache import CacheBackend, build_cache
from services.side_effects import SideEffectFailure, SideEffects
from services.sla_service import SLABreachMonitor
from services.ticket_service import TicketService, TicketServiceDeps
from utils.i18n import I18N
from utils.rate_limit import DistributedRateLimiter
from utils.time import utc_now

LOGGER = logging.getLogger(__name__)


def log_side_effect_failure(failure: SideEffectFailure) -> None:
    LOGGER.warning(
        "Side effect %s failed for ticket %s: %s",
        failure.operation,
        failure.ticket_id,
        failure.error,
        extra={
            "operation": failure.operation,
            "ticket_id": failure.ticket_id,
            "tenant_id": failure.tenant_id,
            "error_type": type(failure.error).__name__,
        },
    )


def log_bulk_result(result: BulkResult) -> None:
    if not result.failures:
        return
    LOGGER.warning(
        "Bulk %s finished with %s success and %s failures",
        result.operation,
        result.success_count,
        len(result.failures),
    )
    for failure in result.failures:
        LOGGER.info(
            "Bulk %s skipped ticket %s (%s)",
            result.operation,
            failure.ticket_id,
            failure.reason,
            extra={"operation": result.operation, "ticket_id": failure.ticket_id, "reason": failure.reason},
        )


class HelpdeskApp:
    """Owns the store connection and builds every repository and service."""

    def __init__(self, config: AppConfig, root_dir: Path | None = None) -> None:
        self.config = config
        self.root_dir = root_dir or Path(__file__).resolve().parent.parent
        self.database = Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )
        self.cache: CacheBackend | None = None
        self.i18n = I18N(
            self.root_dir / "config" / "locales",
            config.i18n.default_locale,
            config.i18n.supported_locales,
        )
        self.side_effects = SideEffects(sink=log_side_effect_failure)
        self._worker: asyncio.Task[None] | None = None
        self._last_daily_reset: date | None = None

        # Repositories and services are initialized during start.
        self.ticket_repo: TicketRepository
        self.message_repo: MessageRepository
        self.history_repo: HistoryRepository
        self.department_repo: DepartmentRepository
        self.category_repo: CategoryRepository
        self.agent_repo: AgentRepository
        self.sla_repo: SLAPolicyRepository
        self.canned_repo: CannedResponseRepository

        self.rate_limiter: DistributedRateLimiter
        self.ticket_service: TicketService
        self.bulk_service: BulkOperationExecutor
        self.admin_service: AdminService
        self.breach_monitor: SLABreachMonitor

    async def start(self) -> None:
        await self.database.connect()
        await run_migrations(self.database, self.root_dir / "database" / "migrations")
        self.cache = await build_cache(self.config.redis)
        self.rate_limiter = DistributedRateLimiter(self.cache)

        self.ticket_repo = TicketRepository(self.database)
        self.message_repo = MessageRepository(self.database)
        self.history_repo = HistoryRepository(self.database)
        self.department_repo = DepartmentRepository(self.database)
        self.category_repo = CategoryRepository(self.database)
        self.agent_repo = AgentRepository(self.database)
        self.sla_repo = SLAPolicyRepository(self.database)
        self.canned_repo = CannedResponseRepository(self.database)

        deps = TicketServiceDeps(
            ticket_repo=self.ticket_repo,
            message_repo=self.message_repo,
            history_repo=self.history_repo,
            department_repo=self.department_repo,
            category_repo=self.category_repo,
            agent_repo=self.agent_repo,
            sla_repo=self.sla_repo,
            canned_repo=self.canned_repo,
            side_effects=self.side_effects,
        )
        self.ticket_service = TicketService(self.config, deps)
        self.bulk_service = BulkOperationExecutor(self.ticket_service)
        self.admin_service = AdminService(
            AdminServiceDeps(
                agent_repo=self.agent_repo,
                department_repo=self.department_repo,
                category_repo=self.category_repo,
                sla_repo=self.sla_repo,
                canned_repo=self.canned_repo,
                ticket_repo=self.ticket_repo,
            )
        )
        self.breach_monitor = SLABreachMonitor(self.ticket_repo, self.history_repo, self.side_effects)
        LOGGER.info("Helpdesk started (driver=%s)", self.database.driver)

    def start_worker(self) -> None:
        if self._worker is None and self.config.sla.enabled:
            self._worker = asyncio.create_task(self._maintenance_worker(), name="helpdesk-maintenance")

    async def run_maintenance(self) -> int:
        """One pass of the periodic jobs; returns the number of breaches flagged."""
        today = utc_now().date()
        if self._last_daily_reset != today:
            if self._last_daily_reset is not None:
                reset = await self.agent_repo.reset_daily_counters()
                LOGGER.info("Reset daily ticket counters for %s agents", reset)
            self._last_daily_reset = today
        flagged = await self.breach_monitor.sweep()
        if flagged:
            LOGGER.info("Flagged %s SLA breaches", flagged)
        return flagged

    async def _maintenance_worker(self) -> None:
        interval = max(1, self.config.sla.breach_check_interval_seconds)
        while True:
            try:
                await self.run_maintenance()
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Maintenance worker pass failed")
            await asyncio.sleep(interval)

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.database.close()
        if self.cache:
            await self.cache.close()
        LOGGER.info("Helpdesk stopped")

    async def __aenter__(self) -> HelpdeskApp:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.close()
