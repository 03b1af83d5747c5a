"""
Sync control API: manual import/export, immediate polling pass, the sync
ledger, the polling interval and the store settings.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BaseServiceError
from app.core.security import get_company_id, get_current_username
from app.dependencies import get_db
from app.routes.responses import error_response, ok, service_error_response
from app.schemas.sync import (
    ExportOrdersRequest,
    ImportOrdersRequest,
    ImportOrdersResult,
    SetIntervalRequest,
    SyncLogPage,
    SyncLogRead,
    SyncSettingsPayload,
    SyncSettingsRead,
)
from app.services.order_sync_service import OrderSyncService
from app.services.registry import ServiceRegistry, get_registry
from app.services.settings_service import SyncSettingsService
from app.services.sync_ledger import SyncLedger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


def _dump(schema) -> dict:
    return schema.model_dump(by_alias=True, mode="json")


@router.post("/orders/import")
async def import_orders(
    request: ImportOrdersRequest,
    company_id: str = Depends(get_company_id),
    username: str = Depends(get_current_username),
    db: AsyncSession = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    """Import raw remote order payloads supplied in the request body."""
    try:
        service = OrderSyncService(db, registry.client_factory, registry.settings)
        stats = await service.import_orders(company_id, request.orders, request.duplicate_action, triggered_by=username)
    except BaseServiceError as e:
        return service_error_response(e)
    except Exception as e:
        logger.error(f"Error importing orders for {company_id}: {str(e)}")
        return error_response(500, str(e))

    result = ImportOrdersResult(**{k: stats[k] for k in ("imported", "updated", "skipped", "failed", "errors")})
    return ok(
        f"Imported {stats['imported']}, updated {stats['updated']}, skipped {stats['skipped']}, failed {stats['failed']}",
        data=_dump(result),
        status=stats["status"],
    )


@router.post("/orders/export")
async def export_orders(
    request: ExportOrdersRequest,
    company_id: str = Depends(get_company_id),
    username: str = Depends(get_current_username),
    db: AsyncSession = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    """Push local orders to the store; one outcome per order id."""
    try:
        service = OrderSyncService(db, registry.client_factory, registry.settings)
        outcome = await service.export_orders(company_id, request.order_ids, triggered_by=username)
    except BaseServiceError as e:
        return service_error_response(e)
    except Exception as e:
        logger.error(f"Error exporting orders for {company_id}: {str(e)}")
        return error_response(500, str(e))

    succeeded = sum(1 for r in outcome["results"] if r["success"])
    return ok(
        f"Exported {succeeded} of {len(outcome['results'])} orders",
        data={"results": outcome["results"]},
        status=outcome["status"],
    )


@router.post("/auto-sync")
async def trigger_auto_sync(
    company_id: str = Depends(get_company_id),
    username: str = Depends(get_current_username),
    registry: ServiceRegistry = Depends(get_registry),
):
    """Run one polling pass for the caller's store right now, due or not."""
    try:
        logger.info(f"User {username} triggered an immediate sync for {company_id}")
        result = await registry.scheduler.run_tenant(company_id, force=True, triggered_by=username)
    except BaseServiceError as e:
        return service_error_response(e)
    except Exception as e:
        logger.error(f"Error running sync for {company_id}: {str(e)}")
        return error_response(500, str(e))

    if result["status"] == "failed":
        return ok(f"Sync failed: {result.get('error')}", data=result, status="failed")
    return ok(
        f"Sync finished: {result['imported']} imported, {result['updated']} updated, {result['failed']} failed",
        data=result,
        status=result["status"],
    )


@router.get("/sync-logs")
async def list_sync_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    sync_type: Optional[str] = Query(None, alias="syncType"),
    status: Optional[str] = None,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
):
    entries, total = await SyncLedger(db).list_entries(company_id, page, page_size, sync_type, status)
    result = SyncLogPage(
        items=[SyncLogRead.model_validate(entry) for entry in entries],
        total=total,
        page=page,
        page_size=page_size,
    )
    return ok(f"{total} sync log entries", data=_dump(result))


@router.post("/scheduler/set-interval")
async def set_sync_interval(
    request: SetIntervalRequest,
    company_id: str = Depends(get_company_id),
    registry: ServiceRegistry = Depends(get_registry),
):
    """Set how often the caller's store is polled."""
    try:
        sync_settings = await registry.scheduler.set_interval(company_id, request.minutes)
    except BaseServiceError as e:
        return service_error_response(e)
    return ok(
        f"Polling interval set to {request.minutes} minutes",
        data={"syncIntervalMinutes": sync_settings.sync_interval_minutes},
    )


@router.get("/scheduler/status")
async def scheduler_status(registry: ServiceRegistry = Depends(get_registry)):
    return ok("Scheduler status", data=registry.scheduler.status())


# --- Store settings ---

@router.get("/settings")
async def get_sync_settings(
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
):
    sync_settings = await SyncSettingsService(db).get(company_id)
    if sync_settings is None:
        return ok("No store configured", data=None)
    return ok("Store settings", data=_dump(SyncSettingsRead.from_settings(sync_settings)))


@router.put("/settings")
async def save_sync_settings(
    payload: SyncSettingsPayload,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    """Save store settings; credentials are tested against the store before anything is stored."""
    try:
        service = SyncSettingsService(db, registry.client_factory, registry.settings)
        sync_settings = await service.save(company_id, payload)
    except BaseServiceError as e:
        return service_error_response(e)
    except Exception as e:
        logger.error(f"Error saving settings for {company_id}: {str(e)}")
        return error_response(500, str(e))
    return ok("Settings saved", data=_dump(SyncSettingsRead.from_settings(sync_settings)))


@router.post("/settings/test-connection")
async def test_store_connection(
    payload: Optional[SyncSettingsPayload] = None,
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    """Check the store with the given (or stored) credentials without saving anything."""
    try:
        service = SyncSettingsService(db, registry.client_factory, registry.settings)
        info = await service.test_connection(company_id, payload)
    except BaseServiceError as e:
        return service_error_response(e)
    return ok("Connection successful", data=info)


@router.post("/webhooks/setup")
async def setup_webhooks(
    base_url: Optional[str] = Query(None, alias="baseUrl"),
    company_id: str = Depends(get_company_id),
    db: AsyncSession = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    """Register the order webhooks on the store, pointing back at this service."""
    try:
        service = SyncSettingsService(db, registry.client_factory, registry.settings)
        result = await service.register_webhooks(company_id, base_url)
    except BaseServiceError as e:
        return service_error_response(e)
    except Exception as e:
        logger.error(f"Error registering webhooks for {company_id}: {str(e)}")
        return error_response(500, str(e))

    if result["failed"] and not result["registered"]:
        return ok("Webhook registration failed", data=result, status="failed")
    if result["failed"]:
        return ok("Some webhooks could not be registered", data=result, status="partial")
    return ok("Webhooks registered", data=result)
