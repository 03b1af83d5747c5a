# app/services/sync_ledger.py
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import LedgerDirection, LedgerStatus, SyncType
from app.core.exceptions import SyncError
from app.core.utils import ensure_aware, utc_now
from app.models.sync_log import SyncLog

logger = logging.getLogger(__name__)


def derive_ledger_status(success_count: int, failed_count: int, error_message: Optional[str] = None) -> LedgerStatus:
    if failed_count == 0 and not error_message:
        return LedgerStatus.SUCCESS
    if success_count > 0:
        return LedgerStatus.PARTIAL
    return LedgerStatus.FAILED


class SyncLedger:
    """
    Append-only record of sync attempts.

    An entry is opened in_progress when an operation starts and completed
    exactly once. Entries are committed as they are written so they survive
    a rollback of the work they describe.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def start(
        self,
        company_id: str,
        sync_type: SyncType,
        direction: LedgerDirection,
        triggered_by: Optional[str] = None,
        total_items: int = 0,
    ) -> SyncLog:
        entry = SyncLog(
            company_id=company_id,
            sync_type=SyncType(sync_type).value,
            sync_direction=LedgerDirection(direction).value,
            status=LedgerStatus.IN_PROGRESS.value,
            triggered_by=triggered_by,
            total_items=total_items,
            started_at=utc_now(),
        )
        self.db.add(entry)
        await self.db.commit()
        logger.debug(f"Ledger entry {entry.id} opened: {entry.sync_type} {entry.sync_direction} for {company_id}")
        return entry

    async def complete(
        self,
        entry: SyncLog,
        success_count: int = 0,
        failed_count: int = 0,
        total_items: Optional[int] = None,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status: Optional[LedgerStatus] = None,
    ) -> SyncLog:
        """
        Close an entry. Status is derived from the counts unless given.

        Raises:
            SyncError: the entry was already completed
        """
        # The work being ledgered may have rolled back the session
        await self.db.refresh(entry)
        if entry.completed_at is not None:
            raise SyncError(f"Sync log {entry.id} is already completed")

        now = utc_now()
        entry.success_count = success_count
        entry.failed_count = failed_count
        entry.total_items = total_items if total_items is not None else success_count + failed_count
        entry.status = (status or derive_ledger_status(success_count, failed_count, error_message)).value
        entry.error_message = error_message[:2000] if error_message else None
        entry.details = details
        entry.completed_at = now
        entry.duration_ms = int((now - ensure_aware(entry.started_at)).total_seconds() * 1000)
        await self.db.commit()

        logger.info(
            f"Sync {entry.sync_type} ({entry.sync_direction}) for {entry.company_id}: {entry.status} "
            f"ok={success_count} failed={failed_count} in {entry.duration_ms}ms"
        )
        return entry

    async def record(
        self,
        company_id: str,
        sync_type: SyncType,
        direction: LedgerDirection,
        success_count: int = 0,
        failed_count: int = 0,
        triggered_by: Optional[str] = None,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status: Optional[LedgerStatus] = None,
    ) -> SyncLog:
        """Open and complete an entry in one go, for operations that are already finished."""
        entry = await self.start(company_id, sync_type, direction, triggered_by=triggered_by)
        return await self.complete(
            entry,
            success_count=success_count,
            failed_count=failed_count,
            error_message=error_message,
            details=details,
            status=status,
        )

    async def list_entries(
        self,
        company_id: str,
        page: int = 1,
        page_size: int = 20,
        sync_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Tuple[List[SyncLog], int]:
        page = max(1, page)
        page_size = max(1, min(page_size, 100))

        conditions = [SyncLog.company_id == company_id]
        if sync_type:
            conditions.append(SyncLog.sync_type == sync_type)
        if status:
            conditions.append(SyncLog.status == status)

        total = await self.db.scalar(select(func.count(SyncLog.id)).where(*conditions))
        result = await self.db.execute(
            select(SyncLog)
            .where(*conditions)
            .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0
