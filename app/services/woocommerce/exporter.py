# app/services/woocommerce/exporter.py
"""
Local Order -> WooCommerce order.

One-directional denormalisation of a local order into the remote payload, then
create-or-update on the store and record the linkage (external id / key /
status) plus what was pushed, which the importer uses to recognise echoes.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import RemoteAPIError, RemoteNotFoundError, SyncError
from app.core.utils import safe_int, utc_now
from app.models.order import Order, OrderItem
from app.models.sync_settings import SyncSettings
from app.services.woocommerce import status_mapping

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")


@dataclass
class ExportResult:
    status: str  # created | updated
    remote_order: Dict[str, Any]
    order: Optional[Order] = None


def valid_email(value: Any) -> Optional[str]:
    if not value:
        return None
    email = str(value).strip()
    return email if EMAIL_PATTERN.match(email) else None


def split_name(full_name: Optional[str]) -> Tuple[str, str]:
    """Split on the first space: "Mona Ali Hassan" -> ("Mona", "Ali Hassan")."""
    if not full_name or not full_name.strip():
        return "", ""
    parts = full_name.strip().split(" ", 1)
    return parts[0], parts[1].strip() if len(parts) > 1 else ""


def item_display_name(item: OrderItem) -> str:
    extras = [v for v in (item.product_color, item.product_size, item.product_details) if v and str(v).strip()]
    if not extras:
        return item.product_name
    return f"{item.product_name} - {' - '.join(str(v).strip() for v in extras)}"


def build_billing(order: Order, default_country: str) -> Dict[str, Any]:
    """Billing identity: customer record first, then the order's name snapshot, then empty."""
    customer = order.customer
    first_name, last_name = "", ""
    if customer is not None and customer.first_name:
        first_name, last_name = customer.first_name, customer.last_name or ""
    else:
        first_name, last_name = split_name(order.customer_name)

    email = valid_email(order.customer_email) or valid_email(customer.email if customer is not None else None)
    phone = order.customer_phone or (customer.phone if customer is not None else None) or ""

    billing = {
        "first_name": first_name,
        "last_name": last_name,
        "address_1": order.customer_address or "",
        "city": order.city or "",
        "state": order.governorate or "",
        "country": default_country,
        "phone": phone,
    }
    # Invalid emails are omitted, never sent malformed
    if email:
        billing["email"] = email
    return billing


def build_shipping(order: Order, billing: Dict[str, Any]) -> Dict[str, Any]:
    if order.shipping_address:
        try:
            parsed = json.loads(order.shipping_address)
            if isinstance(parsed, dict) and parsed:
                return parsed
        except ValueError:
            logger.warning(f"Order {order.order_number}: shipping address is not valid JSON, using billing")
    return {k: v for k, v in billing.items() if k not in ("email", "phone")}


def build_line_items(items: List[OrderItem]) -> List[Dict[str, Any]]:
    lines = []
    for item in items:
        line = {
            "name": item_display_name(item),
            "quantity": item.quantity,
            "subtotal": str(item.total),
            "total": str(item.total),
        }
        if item.product_sku:
            line["sku"] = item.product_sku

        product_id = safe_int(item.external_product_id)
        if not product_id and item.product is not None:
            product_id = safe_int(item.product.external_id)
        if product_id:
            line["product_id"] = product_id
        if item.variant is not None:
            variation_id = safe_int(item.variant.external_variation_id)
            if variation_id:
                line["variation_id"] = variation_id
        lines.append(line)
    return lines


def build_remote_payload(
    order: Order,
    overrides: Any = None,
    default_country: Optional[str] = None,
    include_items: bool = True,
) -> Dict[str, Any]:
    """
    Remote order payload for a local order. Line items are only sent on
    create; re-sending them on update would append duplicate lines remotely.
    """
    default_country = default_country or get_settings().DEFAULT_COUNTRY_CODE
    billing = build_billing(order, default_country)
    payload: Dict[str, Any] = {
        "status": status_mapping.to_external(order.status, overrides),
        "currency": order.currency or get_settings().DEFAULT_CURRENCY,
        "billing": billing,
        "shipping": build_shipping(order, billing),
        "customer_note": order.notes or "",
        "meta_data": [
            {"key": "_local_order_id", "value": str(order.id)},
            {"key": "_local_order_number", "value": order.order_number},
            {"key": "_synced_from_local", "value": "true"},
        ],
    }
    if include_items:
        payload["line_items"] = build_line_items(order.items or [])
        if order.shipping and order.shipping > 0:
            payload["shipping_lines"] = [
                {"method_id": "flat_rate", "method_title": "Shipping", "total": str(order.shipping)}
            ]
    return payload


class OrderExporter:
    """Pushes local orders of one tenant to the remote store."""

    def __init__(self, db: AsyncSession, client, sync_settings: SyncSettings):
        self.db = db
        self.client = client
        self.sync_settings = sync_settings

    def check_eligible(self) -> None:
        if not self.sync_settings.sync_enabled:
            raise SyncError("Sync is disabled for this store")
        if not self.sync_settings.direction.allows_export:
            raise SyncError(f"Sync direction '{self.sync_settings.sync_direction}' does not allow export")

    async def _ensure_loaded(self, order: Order) -> None:
        unloaded = sa_inspect(order).unloaded
        missing = [name for name in ("customer", "items") if name in unloaded]
        if missing:
            await self.db.refresh(order, attribute_names=missing)
        for item in order.items:
            unloaded_refs = [name for name in ("product", "variant") if name in sa_inspect(item).unloaded]
            if unloaded_refs:
                await self.db.refresh(item, attribute_names=unloaded_refs)

    async def export_one(self, order: Order) -> ExportResult:
        """
        Create or update the remote order for a local order.

        A linked order whose remote copy answers 404/400 is treated as gone and
        re-created; any other remote error propagates.
        """
        if order.company_id != self.sync_settings.company_id:
            raise SyncError(f"Order {order.id} does not belong to company {self.sync_settings.company_id}")
        self.check_eligible()
        await self._ensure_loaded(order)

        overrides = self.sync_settings.status_mapping
        exists_remotely = False
        if order.external_id:
            # No transaction may stay open across the remote calls
            await self.db.commit()
            try:
                await self.client.get("orders", order.external_id)
                exists_remotely = True
            except RemoteNotFoundError:
                logger.info(f"Remote order {order.external_id} for {order.order_number} no longer exists, recreating")
            except RemoteAPIError as e:
                if e.status_code != 400:
                    raise
                logger.info(f"Remote order {order.external_id} rejected as invalid, recreating")

        payload = build_remote_payload(order, overrides, include_items=not exists_remotely)
        await self.db.commit()

        if exists_remotely:
            remote_order = await self.client.update("orders", order.external_id, payload)
            outcome = "updated"
        else:
            remote_order = await self.client.create("orders", payload)
            outcome = "created"

        self._record_linkage(order, remote_order, payload["status"])
        await self.db.commit()
        logger.info(f"Exported order {order.order_number} -> remote {order.external_id} ({outcome})")
        return ExportResult(status=outcome, remote_order=remote_order, order=order)

    def _record_linkage(self, order: Order, remote_order: Dict[str, Any], pushed_status: str) -> None:
        now = utc_now()
        if remote_order.get("id") is not None:
            order.external_id = str(remote_order["id"])
        if remote_order.get("order_key"):
            order.external_order_key = remote_order["order_key"]
        order.external_status = remote_order.get("status") or pushed_status
        if self.sync_settings.store_url and order.external_id:
            order.external_url = (
                f"{self.sync_settings.store_url.rstrip('/')}/wp-admin/post.php?post={order.external_id}&action=edit"
            )
        # Linkage direction is set once, by whichever side linked the order first
        if not order.synced_from_external:
            order.synced_to_external = True
        order.last_sync_at = now
        order.last_pushed_status = order.external_status
        order.last_pushed_at = now
