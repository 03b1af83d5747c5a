"""
Processes order webhooks pushed by the remote store.

Per delivery: received -> signature-checked -> topic-dispatched -> applied.

The store retries any delivery that does not get a 2xx, so everything past
the signature check answers 200; failures are visible only in the sync
ledger, the webhook inbox and the logs. The only non-200 answer is 401 for a
missing or invalid signature when the tenant has a secret configured.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.enums import DuplicateAction, ImportOutcome, LedgerDirection, OrderStatus, SyncType, WebhookTopic
from app.core.security import verify_webhook_signature
from app.core.utils import utc_now
from app.models.order import OrderStatusHistory
from app.models.webhook import WebhookEvent
from app.services.settings_service import get_sync_settings
from app.services.sync_ledger import SyncLedger
from app.services.woocommerce.importer import OrderImporter, classify_import_error, derive_order_number

logger = logging.getLogger(__name__)

REMOTE_DELETED_STATUS = "deleted"


@dataclass
class WebhookResult:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, success: bool = True, **extra) -> "WebhookResult":
        return cls(200, {"success": success, "message": message, **extra})


class WebhookProcessor:

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def process(
        self,
        company_id: str,
        topic: Optional[str],
        raw_body: bytes,
        signature: Optional[str],
    ) -> WebhookResult:
        sync_settings = await get_sync_settings(self.db, company_id)
        if sync_settings is None:
            logger.info(f"Webhook for unknown company {company_id} ignored")
            return WebhookResult.ok("Store not configured, webhook ignored")
        if not sync_settings.webhook_enabled or not sync_settings.sync_enabled:
            logger.info(f"Webhooks disabled for {company_id}, delivery ignored")
            return WebhookResult.ok("Webhooks are disabled, nothing to do")

        secret = sync_settings.webhook_secret
        if secret:
            if not signature:
                logger.warning(f"Rejected webhook for {company_id}: signature missing")
                return WebhookResult(401, {"success": False, "message": "Missing webhook signature"})
            if not verify_webhook_signature(raw_body, signature, secret):
                logger.warning(f"Rejected webhook for {company_id}: invalid signature")
                return WebhookResult(401, {"success": False, "message": "Invalid webhook signature"})

        topic = (topic or "").strip().lower()
        try:
            topic_enum = WebhookTopic(topic)
        except ValueError:
            # Includes the ping the store sends when a webhook is first saved
            logger.info(f"Ignoring webhook topic {topic!r} for {company_id}")
            return WebhookResult.ok(f"Topic '{topic}' ignored")

        if not sync_settings.direction.allows_import:
            logger.info(f"Sync direction for {company_id} is {sync_settings.sync_direction}, webhook ignored")
            return WebhookResult.ok("Import direction is disabled, webhook ignored")

        overrides = sync_settings.status_mapping
        store_url = sync_settings.store_url
        ledger = SyncLedger(self.db)

        try:
            payload = json.loads(raw_body or b"{}")
            if not isinstance(payload, dict):
                raise ValueError("Webhook body must be a JSON object")
        except ValueError as e:
            logger.error(f"Unparseable {topic} webhook for {company_id}: {e}")
            await ledger.record(
                company_id, SyncType.WEBHOOK, LedgerDirection.FROM_REMOTE,
                failed_count=1, triggered_by=f"webhook:{topic}", error_message=f"Invalid payload: {e}",
            )
            return WebhookResult.ok("Invalid payload", success=False)

        external_id = payload.get("id")
        event = WebhookEvent(
            company_id=company_id,
            topic=topic,
            external_id=str(external_id) if external_id is not None else None,
            payload=payload,
        )
        self.db.add(event)
        await self.db.commit()
        event_id = event.id

        entry = await ledger.start(
            company_id, SyncType.WEBHOOK, LedgerDirection.FROM_REMOTE, triggered_by=f"webhook:{topic}", total_items=1
        )
        importer = OrderImporter(self.db, company_id, settings=self.settings, store_url=store_url)

        try:
            if topic_enum == WebhookTopic.ORDER_DELETED:
                outcome, message = await self._apply_delete(importer, payload)
            else:
                outcome, message = await self._apply_upsert(importer, topic_enum, payload, overrides)
        except Exception as e:
            category = classify_import_error(e)
            logger.error(f"Webhook {topic} for {company_id} order {external_id} failed ({category}): {e}")
            await ledger.complete(
                entry, failed_count=1, error_message=str(e),
                details={"topic": topic, "external_id": external_id, "category": category},
            )
            await self._close_event(event_id, processed=False, result=f"{category}: {e}")
            return WebhookResult.ok(f"Webhook received but processing failed: {e}", success=False)

        await ledger.complete(
            entry, success_count=1,
            details={"topic": topic, "external_id": external_id, "outcome": outcome},
        )
        await self._close_event(event_id, processed=True, result=outcome)
        logger.info(f"Webhook {topic} for {company_id} order {external_id}: {outcome}")
        return WebhookResult.ok(message, outcome=outcome)

    async def _apply_upsert(
        self,
        importer: OrderImporter,
        topic: WebhookTopic,
        payload: Dict[str, Any],
        overrides: Any,
    ):
        # The importer matches by external id or order number and creates the order when neither matches
        action = DuplicateAction.UPDATE if topic == WebhookTopic.ORDER_UPDATED else DuplicateAction.SKIP
        result = await importer.import_one(
            payload,
            duplicate_action=action,
            status_overrides=overrides,
            triggered_by="webhook",
            source_type="woocommerce_webhook",
        )
        if topic == WebhookTopic.ORDER_UPDATED and result.status == ImportOutcome.IMPORTED:
            logger.info(f"Update for unknown order {payload.get('id')}, created it (missed created event)")
        return result.status.value, f"Order {result.order.order_number} {result.status.value}"

    async def _apply_delete(self, importer: OrderImporter, payload: Dict[str, Any]):
        external_id = payload.get("id")
        if external_id in (None, ""):
            raise ValueError("Delete webhook without an order id")

        order_number = derive_order_number(payload, self.settings.ORDER_NUMBER_PREFIX)
        order = await importer.find_existing(external_id, order_number)
        if order is None:
            return "not_found", f"Order {external_id} is not known locally"

        old_status = order.status
        order.status = OrderStatus.CANCELLED.value
        order.external_status = REMOTE_DELETED_STATUS
        order.last_sync_at = utc_now()
        if old_status != order.status:
            self.db.add(OrderStatusHistory(
                order_id=order.id,
                status=order.status,
                old_status=old_status,
                changed_by="system",
                user_name="webhook",
                reason="Deleted in WooCommerce",
            ))
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return "cancelled", f"Order {order.order_number} cancelled"

    async def _close_event(self, event_id: int, processed: bool, result: str) -> None:
        event = await self.db.get(WebhookEvent, event_id)
        if event is None:
            return
        event.processed = processed
        event.result = result[:2000]
        event.processed_at = utc_now()
        await self.db.commit()
