"""
Polling sync scheduler.

A global APScheduler tick (SYNC_TICK_MINUTES) walks every tenant with sync
enabled; each tenant is polled only when its own interval has elapsed since
its last successful pass. Polling is the safety net for missed webhooks, so it
always reconciles toward the remote state (duplicate action "update").

One scheduler object is built per process by the service registry; nothing
here is a module-level singleton.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from app.core.config import Settings, get_settings
from app.core.enums import DuplicateAction, LedgerDirection, LedgerStatus, SyncType
from app.core.exceptions import RemoteAPIError, SyncError
from app.core.utils import ensure_aware, isoformat_utc, utc_now
from app.models.sync_settings import SyncSettings
from app.services.settings_service import SyncSettingsService, get_sync_settings
from app.services.sync_ledger import SyncLedger
from app.services.woocommerce.client import client_for_settings
from app.services.woocommerce.importer import OrderImporter

logger = logging.getLogger(__name__)


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.debug(f"Job {event.job_id} executed at {utc_now().isoformat()}")


class PollingSyncScheduler:
    JOB_ID = "order_polling_tick"

    def __init__(
        self,
        session_factory,
        client_factory: Callable[[Any], Any] = client_for_settings,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.settings = settings or get_settings()
        self.scheduler: Optional[AsyncIOScheduler] = None

    # --- Due check ---

    def interval_for(self, sync_settings: SyncSettings) -> timedelta:
        minutes = sync_settings.sync_interval_minutes or self.settings.DEFAULT_SYNC_INTERVAL_MINUTES
        return timedelta(minutes=max(1, minutes))

    def is_due(self, sync_settings: SyncSettings, now: Optional[datetime] = None) -> bool:
        if sync_settings.last_sync_at is None:
            return True
        now = now or utc_now()
        return now - ensure_aware(sync_settings.last_sync_at) >= self.interval_for(sync_settings)

    # --- Passes ---

    async def tick(self) -> Dict[str, Any]:
        """One global tick: poll every enabled tenant that is due, each independently."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncSettings.company_id).where(SyncSettings.sync_enabled.is_(True))
            )
            company_ids: List[str] = list(result.scalars().all())

        if not company_ids:
            return {}

        outcomes = await asyncio.gather(
            *(self.run_tenant(company_id, triggered_by="scheduler") for company_id in company_ids),
            return_exceptions=True,
        )
        summary = {}
        for company_id, outcome in zip(company_ids, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Polling pass for {company_id} crashed: {outcome}", exc_info=outcome)
                summary[company_id] = {"status": "error", "error": str(outcome)}
            else:
                summary[company_id] = outcome
        return summary

    async def run_tenant(self, company_id: str, force: bool = False, triggered_by: str = "scheduler") -> Dict[str, Any]:
        """
        Run one polling pass for a tenant.

        Without force the pass is skipped (silently) when the tenant is not
        due. Per-order failures are counted and last_sync_at still advances;
        a pass-level remote failure leaves last_sync_at alone so the same
        window is retried at the next tick.
        """
        async with self.session_factory() as db:
            sync_settings = await get_sync_settings(db, company_id)
            if sync_settings is None:
                if force:
                    raise SyncError(f"No store is configured for company {company_id}")
                return {"status": "not_configured"}
            if not sync_settings.sync_enabled or not sync_settings.direction.allows_import:
                if force:
                    raise SyncError(f"Import sync is disabled for company {company_id}")
                return {"status": "disabled"}

            pass_start = utc_now()
            if not force and not self.is_due(sync_settings, pass_start):
                logger.debug(f"Polling for {company_id} not due yet (last sync {sync_settings.last_sync_at})")
                return {"status": "skipped"}

            settings_id = sync_settings.id
            since = ensure_aware(sync_settings.last_sync_at) or (
                pass_start - timedelta(hours=self.settings.POLL_INITIAL_LOOKBACK_HOURS)
            )
            overrides = sync_settings.status_mapping
            client = self.client_factory(sync_settings)
            importer = OrderImporter(db, company_id, settings=self.settings, store_url=sync_settings.store_url)
            ledger = SyncLedger(db)
            # No transaction stays open across remote calls
            await db.commit()

            stats = {"imported": 0, "updated": 0, "skipped": 0, "failed": 0, "pages": 0}
            errors: List[Dict[str, Any]] = []
            try:
                await self._poll(client, importer, since, overrides, triggered_by, stats, errors)
            except RemoteAPIError as e:
                logger.error(f"Polling pass for {company_id} failed: {e}")
                sync_settings = await db.get(SyncSettings, settings_id)
                sync_settings.last_sync_status = LedgerStatus.FAILED.value
                sync_settings.last_sync_error = str(e)[:2000]
                await db.commit()
                await ledger.record(
                    company_id, SyncType.POLLING, LedgerDirection.FROM_REMOTE,
                    success_count=stats["imported"] + stats["updated"],
                    failed_count=stats["failed"],
                    triggered_by=triggered_by,
                    error_message=str(e),
                    details={"since": since.isoformat(), **stats},
                    status=LedgerStatus.FAILED,
                )
                return {"status": "failed", "error": str(e), **stats}

            succeeded = stats["imported"] + stats["updated"]
            status = LedgerStatus.SUCCESS if stats["failed"] == 0 else (
                LedgerStatus.PARTIAL if succeeded or stats["skipped"] else LedgerStatus.FAILED
            )

            sync_settings = await db.get(SyncSettings, settings_id)
            sync_settings.last_sync_at = pass_start
            sync_settings.last_sync_status = status.value
            sync_settings.last_sync_error = errors[0]["message"] if errors else None
            await db.commit()

            if succeeded + stats["failed"] > 0:
                await ledger.record(
                    company_id, SyncType.POLLING, LedgerDirection.FROM_REMOTE,
                    success_count=succeeded,
                    failed_count=stats["failed"],
                    triggered_by=triggered_by,
                    details={"since": since.isoformat(), "skipped": stats["skipped"], "pages": stats["pages"],
                             "errors": errors[:20]},
                    status=status,
                )

            logger.info(
                f"Polling pass for {company_id}: imported={stats['imported']} updated={stats['updated']} "
                f"skipped={stats['skipped']} failed={stats['failed']} pages={stats['pages']}"
            )
            return {"status": status.value, **stats}

    async def _poll(self, client, importer: OrderImporter, since: datetime, overrides, triggered_by: str,
                    stats: Dict[str, int], errors: List[Dict[str, Any]]) -> None:
        page_size = self.settings.POLL_PAGE_SIZE
        for page in range(1, self.settings.POLL_MAX_PAGES + 1):
            remote_page = await client.list("orders", {
                "modified_after": isoformat_utc(since),
                "dates_are_gmt": "true",
                "orderby": "modified",
                "order": "asc",
                "per_page": page_size,
                "page": page,
            })
            if not remote_page.items:
                break

            stats["pages"] += 1
            batch = await importer.import_batch(
                remote_page.items,
                duplicate_action=DuplicateAction.UPDATE,
                status_overrides=overrides,
                triggered_by=triggered_by,
            )
            for key in ("imported", "updated", "skipped", "failed"):
                stats[key] += batch[key]
            errors.extend(batch["errors"])

            last_page = len(remote_page.items) < page_size or (
                remote_page.total_pages is not None and page >= remote_page.total_pages
            )
            if last_page:
                break
        else:
            logger.warning(f"Polling for {importer.company_id} stopped at the {self.settings.POLL_MAX_PAGES}-page limit")

    async def set_interval(self, company_id: str, minutes: int) -> SyncSettings:
        async with self.session_factory() as db:
            return await SyncSettingsService(db, self.client_factory, self.settings).set_interval(company_id, minutes)

    # --- Lifecycle ---

    def start(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            return
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(minutes=self.settings.SYNC_TICK_MINUTES),
            id=self.JOB_ID,
            name="Poll remote orders",
            replace_existing=True,
            max_instances=1,  # Only one tick at a time
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Polling scheduler started (tick every {self.settings.SYNC_TICK_MINUTES} minutes)")

    def stop(self) -> None:
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Polling scheduler stopped")
        self.scheduler = None

    def status(self) -> Dict[str, Any]:
        if self.scheduler is None:
            return {"status": "not_started", "jobs": []}
        jobs_info = []
        for job in self.scheduler.get_jobs():
            jobs_info.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            })
        return {
            "status": "running" if self.scheduler.running else "stopped",
            "jobs": jobs_info,
        }
