# app/services/order_sync_service.py
"""
Operator-triggered order sync: import a list of raw remote orders, or push
selected local orders to the store. Each call is one ledger entry.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import Settings, get_settings
from app.core.enums import DuplicateAction, LedgerDirection, SyncType
from app.core.exceptions import SyncError
from app.models.order import Order
from app.services.settings_service import get_sync_settings, require_sync_settings
from app.services.sync_ledger import SyncLedger
from app.services.woocommerce.client import client_for_settings
from app.services.woocommerce.exporter import OrderExporter
from app.services.woocommerce.importer import OrderImporter

logger = logging.getLogger(__name__)


class OrderSyncService:

    def __init__(
        self,
        db: AsyncSession,
        client_factory: Callable[[Any], Any] = client_for_settings,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.client_factory = client_factory
        self.settings = settings or get_settings()
        self.ledger = SyncLedger(db)

    async def import_orders(
        self,
        company_id: str,
        orders: List[Dict[str, Any]],
        duplicate_action: DuplicateAction = DuplicateAction.SKIP,
        triggered_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Import raw remote order payloads supplied by the caller.

        Raises:
            SyncError: the tenant's settings disable importing
        """
        sync_settings = await get_sync_settings(self.db, company_id)
        overrides = None
        store_url = None
        if sync_settings is not None:
            if not sync_settings.direction.allows_import:
                raise SyncError(f"Sync direction '{sync_settings.sync_direction}' does not allow import")
            overrides = sync_settings.status_mapping
            store_url = sync_settings.store_url

        entry = await self.ledger.start(
            company_id, SyncType.MANUAL_IMPORT, LedgerDirection.FROM_REMOTE,
            triggered_by=triggered_by, total_items=len(orders),
        )
        importer = OrderImporter(self.db, company_id, settings=self.settings, store_url=store_url)
        stats = await importer.import_batch(
            orders,
            duplicate_action=duplicate_action,
            status_overrides=overrides,
            triggered_by=triggered_by,
        )
        entry = await self.ledger.complete(
            entry,
            success_count=stats["imported"] + stats["updated"] + stats["skipped"],
            failed_count=stats["failed"],
            total_items=len(orders),
            details={
                "imported": stats["imported"],
                "updated": stats["updated"],
                "skipped": stats["skipped"],
                "errors": stats["errors"][:20],
            },
        )
        stats["status"] = entry.status
        return stats

    async def export_orders(
        self,
        company_id: str,
        order_ids: List[str],
        triggered_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Push local orders to the store. Every order gets its own outcome; an
        ineligible or failing order never stops the others.
        """
        sync_settings = await require_sync_settings(self.db, company_id)
        exporter = OrderExporter(self.db, self.client_factory(sync_settings), sync_settings)

        entry = await self.ledger.start(
            company_id, SyncType.EXPORT, LedgerDirection.TO_REMOTE,
            triggered_by=triggered_by, total_items=len(order_ids),
        )

        results = []
        for raw_id in order_ids:
            outcome = {"order_id": str(raw_id), "success": False}
            try:
                order = await self._load_order(company_id, raw_id)
                if order is None:
                    outcome["error"] = "Order not found"
                else:
                    exported = await exporter.export_one(order)
                    outcome.update(success=True, status=exported.status, external_id=order.external_id)
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Export of order {raw_id} for {company_id} failed: {e}")
                outcome["error"] = str(e)
            results.append(outcome)

        succeeded = sum(1 for r in results if r["success"])
        entry = await self.ledger.complete(
            entry,
            success_count=succeeded,
            failed_count=len(results) - succeeded,
            details={"results": results[:50]},
        )
        return {"status": entry.status, "results": results}

    async def _load_order(self, company_id: str, raw_id: Any) -> Optional[Order]:
        try:
            order_id = int(raw_id)
        except (TypeError, ValueError):
            return None
        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.customer), selectinload(Order.items))
            .where(Order.id == order_id, Order.company_id == company_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()
