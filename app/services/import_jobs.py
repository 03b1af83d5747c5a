"""
Resumable batch import of every historical remote order.

The import_jobs row is the source of truth: this runner only keeps asyncio
task handles in memory, every status check in the driver loop re-reads the
row, and recover_jobs() re-spawns drivers for jobs left running by a
previous process.

Checkpoint (ImportJob.progress):
    currentPage     next page to fetch; persisted before the fetch so a crash
                    re-processes the in-flight page instead of skipping it
    currentBatch    batches completed
    totalBatches    ceil(grandTotal / batch size)
    processedCount  orders seen so far, never decreases
    grandTotal      remote order count from the initial count request
    imported / updated / skipped / failed   running counters

State machine:
    pending -> running -> completed
    running -> paused -> running
    running -> failed -> running
    pending | running | paused | failed -> cancelled
Pause and cancel are honoured between batches only.
"""

import asyncio
import logging
import math
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from app.core.config import Settings, get_settings
from app.core.enums import DuplicateAction, ImportJobStatus, LedgerDirection, LedgerStatus, SyncType
from app.core.exceptions import ImportJobError, ImportJobNotFoundError, SyncError
from app.core.utils import isoformat_utc, utc_now
from app.models.import_job import ImportJob, empty_checkpoint
from app.services.settings_service import get_sync_settings
from app.services.sync_ledger import SyncLedger
from app.services.woocommerce.client import client_for_settings
from app.services.woocommerce.importer import OrderImporter

logger = logging.getLogger(__name__)

CANCELLABLE = (
    ImportJobStatus.PENDING,
    ImportJobStatus.RUNNING,
    ImportJobStatus.PAUSED,
    ImportJobStatus.FAILED,
)


class ImportJobRunner:

    def __init__(
        self,
        session_factory,
        client_factory: Callable[[Any], Any] = client_for_settings,
        publisher=None,
        settings: Optional[Settings] = None,
        batch_size: Optional[int] = None,
        page_delay: Optional[float] = None,
    ):
        """
        Args:
            session_factory: async_sessionmaker used for every unit of work
            client_factory: builds a remote client from a SyncSettings row
            publisher: object with `async publish(company_id, message)`, e.g. the websocket ConnectionManager
            batch_size: default page size when a job does not set one
            page_delay: courtesy sleep between pages, in seconds
        """
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.publisher = publisher
        self.settings = settings or get_settings()
        self.batch_size = batch_size or self.settings.IMPORT_BATCH_SIZE
        self.page_delay = self.settings.IMPORT_PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self._tasks: Dict[str, asyncio.Task] = {}

    # --- Queries ---

    async def _load(self, db: AsyncSession, company_id: str, job_id: str) -> ImportJob:
        job = await db.get(ImportJob, job_id)
        if job is None or job.company_id != company_id:
            raise ImportJobNotFoundError(f"Import job {job_id} not found")
        return job

    async def get_job(self, company_id: str, job_id: str) -> ImportJob:
        async with self.session_factory() as db:
            return await self._load(db, company_id, job_id)

    async def list_jobs(self, company_id: str, limit: int = 50) -> List[ImportJob]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ImportJob)
                .where(ImportJob.company_id == company_id)
                .order_by(ImportJob.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    def is_active(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    # --- Transitions ---

    async def create_job(self, company_id: str, options: Optional[Dict[str, Any]] = None) -> ImportJob:
        async with self.session_factory() as db:
            if await get_sync_settings(db, company_id) is None:
                raise SyncError(f"No store is configured for company {company_id}")
            options = dict(options or {})
            options.setdefault("batch_size", self.batch_size)
            options.setdefault("duplicate_action", DuplicateAction.SKIP.value)
            job = ImportJob(
                company_id=company_id,
                job_type="orders",
                status=ImportJobStatus.PENDING.value,
                options=options,
                progress=empty_checkpoint(),
            )
            db.add(job)
            await db.commit()
            logger.info(f"Created import job {job.id} for {company_id} with options {options}")
            return job

    async def _transition(
        self,
        company_id: str,
        job_id: str,
        allowed_from,
        target: ImportJobStatus,
    ) -> ImportJob:
        async with self.session_factory() as db:
            job = await self._load(db, company_id, job_id)
            current = ImportJobStatus(job.status)
            if current not in allowed_from:
                raise ImportJobError(f"Cannot move import job {job_id} from {current.value} to {target.value}")
            job.status = target.value
            now = utc_now()
            if target == ImportJobStatus.RUNNING:
                job.started_at = job.started_at or now
                job.error_message = None
            elif target == ImportJobStatus.CANCELLED:
                job.completed_at = now
            await db.commit()
            logger.info(f"Import job {job_id} for {company_id}: {current.value} -> {target.value}")
            return job

    async def start_job(self, company_id: str, job_id: str, spawn: bool = True) -> ImportJob:
        job = await self._transition(company_id, job_id, (ImportJobStatus.PENDING,), ImportJobStatus.RUNNING)
        await self._publish(job, "Import started")
        if spawn:
            self._spawn(job_id)
        return job

    async def pause_job(self, company_id: str, job_id: str) -> ImportJob:
        job = await self._transition(company_id, job_id, (ImportJobStatus.RUNNING,), ImportJobStatus.PAUSED)
        await self._publish(job, "Import paused, the current batch will finish first")
        return job

    async def resume_job(self, company_id: str, job_id: str, spawn: bool = True) -> ImportJob:
        job = await self._transition(
            company_id, job_id, (ImportJobStatus.PAUSED, ImportJobStatus.FAILED), ImportJobStatus.RUNNING
        )
        await self._publish(job, f"Import resumed from page {job.progress.get('currentPage', 1)}")
        if spawn:
            self._spawn(job_id)
        return job

    async def cancel_job(self, company_id: str, job_id: str) -> ImportJob:
        job = await self._transition(company_id, job_id, CANCELLABLE, ImportJobStatus.CANCELLED)
        await self._publish(job, "Import cancelled")
        return job

    # --- Driver ---

    def _spawn(self, job_id: str) -> asyncio.Task:
        previous = self._tasks.get(job_id)

        async def _drive():
            # A paused driver may still be finishing its batch
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            try:
                await self.run_job(job_id)
            except Exception:
                logger.exception(f"Import job driver {job_id} crashed")

        task = asyncio.create_task(_drive(), name=f"import-job-{job_id}")
        self._tasks[job_id] = task

        def _forget(done: asyncio.Task):
            if self._tasks.get(job_id) is done:
                self._tasks.pop(job_id, None)

        task.add_done_callback(_forget)
        return task

    async def wait_for(self, job_id: str) -> None:
        """Wait until the job's driver (if any) has returned."""
        while True:
            task = self._tasks.get(job_id)
            if task is None:
                return
            await asyncio.wait([task])
            if self._tasks.get(job_id) is task:
                self._tasks.pop(job_id, None)

    async def _current_status(self, db: AsyncSession, job_id: str) -> Optional[ImportJobStatus]:
        value = await db.scalar(select(ImportJob.status).where(ImportJob.id == job_id))
        return ImportJobStatus(value) if value else None

    async def _save_progress(self, db: AsyncSession, job_id: str, progress: Dict[str, Any]) -> None:
        job = await db.get(ImportJob, job_id)
        job.progress = dict(progress)
        flag_modified(job, "progress")
        await db.commit()

    async def _finish(self, db: AsyncSession, job_id: str, target: ImportJobStatus,
                      error_message: Optional[str] = None) -> bool:
        """Move a running job to a final state; a concurrent cancel or pause wins."""
        result = await db.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == ImportJobStatus.RUNNING.value)
            .values(
                status=target.value,
                error_message=error_message[:2000] if error_message else None,
                completed_at=utc_now() if target == ImportJobStatus.COMPLETED else None,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1

    async def run_job(self, job_id: str) -> Optional[ImportJob]:
        """
        Driver loop. Runs while the job row says running, starting from the
        persisted checkpoint, and returns the job row as it was left.
        """
        async with self.session_factory() as db:
            job = await db.get(ImportJob, job_id)
            if job is None:
                raise ImportJobNotFoundError(f"Import job {job_id} not found")
            if job.status != ImportJobStatus.RUNNING.value:
                logger.info(f"Import job {job_id} is {job.status}, driver not started")
                return job

            company_id = job.company_id
            options = dict(job.options or {})
            progress = {**empty_checkpoint(), **(job.progress or {})}
            batch_size = int(options.get("batch_size") or self.batch_size)
            duplicate_action = DuplicateAction(options.get("duplicate_action") or DuplicateAction.SKIP.value)

            try:
                sync_settings = await get_sync_settings(db, company_id)
                if sync_settings is None:
                    raise SyncError(f"No store is configured for company {company_id}")
                client = self.client_factory(sync_settings)
                overrides = sync_settings.status_mapping
                importer = OrderImporter(db, company_id, settings=self.settings, store_url=sync_settings.store_url)
                await db.commit()

                query = {"orderby": "id", "order": "asc"}
                if options.get("order_status"):
                    query["status"] = options["order_status"]
                if options.get("after"):
                    query["after"] = options["after"]

                if progress.get("grandTotal") is None:
                    grand_total = await client.count("orders", query)
                    progress["grandTotal"] = grand_total
                    progress["totalBatches"] = math.ceil(grand_total / batch_size) if grand_total else 0
                    await self._save_progress(db, job_id, progress)
                    logger.info(f"Import job {job_id}: {grand_total} remote orders in {progress['totalBatches']} batches")

                has_more = True
                while has_more:
                    status = await self._current_status(db, job_id)
                    if status != ImportJobStatus.RUNNING:
                        logger.info(f"Import job {job_id} stopped at page {progress['currentPage']} ({status.value if status else 'gone'})")
                        return await db.get(ImportJob, job_id, populate_existing=True)

                    # Checkpoint before the fetch: a crash here resumes this same page
                    await self._save_progress(db, job_id, progress)
                    page_number = progress["currentPage"]
                    page = await client.list("orders", {**query, "page": page_number, "per_page": batch_size})
                    items = page.items
                    if not items:
                        break
                    if len(items) < batch_size:
                        has_more = False

                    batch = await importer.import_batch(
                        items,
                        duplicate_action=duplicate_action,
                        status_overrides=overrides,
                        triggered_by=f"import_job:{job_id}",
                    )
                    for key in ("imported", "updated", "skipped", "failed"):
                        progress[key] += batch[key]
                    progress["processedCount"] += len(items)
                    progress["currentBatch"] += 1
                    progress["currentPage"] = page_number + 1
                    await self._save_progress(db, job_id, progress)

                    logger.info(
                        f"Import job {job_id}: page {page_number} done, "
                        f"{progress['processedCount']}/{progress['grandTotal']} processed"
                    )
                    await self._publish_progress(
                        company_id, job_id, ImportJobStatus.RUNNING.value, progress,
                        f"Processed {progress['processedCount']} of {progress['grandTotal']} orders "
                        f"(batch {progress['currentBatch']}/{progress['totalBatches']})",
                    )

                    if has_more and self.page_delay:
                        await asyncio.sleep(self.page_delay)

                if await self._finish(db, job_id, ImportJobStatus.COMPLETED):
                    logger.info(f"Import job {job_id} completed: {progress}")
                    await self._ledger(db, company_id, job_id, progress)
                    await self._publish_progress(
                        company_id, job_id, ImportJobStatus.COMPLETED.value, progress,
                        f"Import completed: {progress['imported']} imported, {progress['updated']} updated, "
                        f"{progress['skipped']} skipped, {progress['failed']} failed",
                    )
            except Exception as e:
                logger.error(f"Import job {job_id} failed at page {progress['currentPage']}: {e}", exc_info=True)
                await db.rollback()
                if await self._finish(db, job_id, ImportJobStatus.FAILED, error_message=str(e)):
                    await self._ledger(db, company_id, job_id, progress, error_message=str(e))
                    await self._publish_progress(
                        company_id, job_id, ImportJobStatus.FAILED.value, progress, f"Import failed: {e}"
                    )

            return await db.get(ImportJob, job_id, populate_existing=True)

    async def _ledger(self, db: AsyncSession, company_id: str, job_id: str, progress: Dict[str, Any],
                      error_message: Optional[str] = None) -> None:
        await SyncLedger(db).record(
            company_id,
            SyncType.BATCH_IMPORT,
            LedgerDirection.FROM_REMOTE,
            success_count=progress["imported"] + progress["updated"],
            failed_count=progress["failed"],
            triggered_by=f"import_job:{job_id}",
            error_message=error_message,
            details={"job_id": job_id, "progress": progress},
            status=LedgerStatus.FAILED if error_message else None,
        )

    # --- Progress channel ---

    async def _publish_progress(self, company_id: str, job_id: str, status: str,
                                progress: Dict[str, Any], message: str) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish(company_id, {
                "type": "import_job.progress",
                "jobId": job_id,
                "status": status,
                "progress": dict(progress),
                "message": message,
                "timestamp": isoformat_utc(utc_now()),
            })
        except Exception as e:
            logger.warning(f"Could not publish progress for import job {job_id}: {e}")

    async def _publish(self, job: ImportJob, message: str) -> None:
        await self._publish_progress(job.company_id, job.id, job.status, job.progress or {}, message)

    # --- Process lifecycle ---

    async def recover_jobs(self) -> Dict[str, List[str]]:
        """Re-spawn drivers for jobs a previous process left running; report paused ones."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(ImportJob.id, ImportJob.status).where(
                    ImportJob.status.in_([ImportJobStatus.RUNNING.value, ImportJobStatus.PAUSED.value])
                )
            )
            rows = result.all()

        recovered = {"resumed": [], "paused": []}
        for job_id, status in rows:
            if status == ImportJobStatus.RUNNING.value:
                if not self.is_active(job_id):
                    self._spawn(job_id)
                recovered["resumed"].append(job_id)
            else:
                recovered["paused"].append(job_id)

        if rows:
            logger.info(
                f"Recovered import jobs: {len(recovered['resumed'])} resumed, {len(recovered['paused'])} paused"
            )
        return recovered

    async def shutdown(self) -> None:
        """Stop drivers; their jobs stay running in storage and are recovered at next start."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
