# app/services/woocommerce/importer.py
"""
WooCommerce Order Importer - maps remote order payloads onto local
Order / Customer / OrderItem rows.

This is the one place the dedup and mapping rules live: webhooks, the polling
scheduler, the manual import endpoint and batch import jobs all come through
here.

An order is "existing" when its remote id matches a stored external_id, or its
derived order number matches a stored order_number (orders created locally and
exported later carry their local number back in meta_data).

The batch path pre-fetches every Order / Customer / Product / Variant whose
key appears anywhere in the batch, then works against in-memory maps; entities
created while processing are written back into the maps so two orders in one
batch referencing the same new customer share one Customer row.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.enums import (
    DuplicateAction,
    ImportOutcome,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from app.core.exceptions import OrderValidationError, RemoteConnectionError
from app.core.utils import (
    clean_location_name,
    ensure_aware,
    parse_datetime,
    safe_decimal,
    safe_int,
    utc_now,
)
from app.models.customer import Customer
from app.models.order import Order, OrderItem, OrderStatusHistory
from app.models.product import Product, ProductVariant
from app.services.woocommerce import status_mapping

logger = logging.getLogger(__name__)

MONEY_TOLERANCE = Decimal("0.05")
MIN_EMAIL_LENGTH = 3
MIN_PHONE_LENGTH = 5

COLOR_META_KEYS = ("color", "pa_color", "اللون")
SIZE_META_KEYS = ("size", "pa_size", "المقاس", "السعة")

PAYMENT_KEYWORDS = (
    (("cod", "cash"), PaymentMethod.CASH),
    (("bank", "bacs"), PaymentMethod.BANK_TRANSFER),
    (("paypal",), PaymentMethod.PAYPAL),
    (("stripe", "card"), PaymentMethod.CREDIT_CARD),
)

# Error categories reported for per-order failures
ERROR_CONSTRAINT = "constraint"
ERROR_TRANSIENT = "transient"
ERROR_VALIDATION = "validation"
ERROR_UNKNOWN = "unknown"

_CONFLICT_PATTERNS = (
    re.compile(r"UNIQUE constraint failed: ([\w.]+(?:, [\w.]+)*)"),  # sqlite
    re.compile(r"Key \(([^)]+)\)="),  # postgres detail
    re.compile(r'unique constraint "(\w+)"'),
)


def classify_import_error(exc: BaseException) -> str:
    """Bucket a per-order failure into constraint / transient / validation / unknown."""
    if isinstance(exc, IntegrityError):
        return ERROR_CONSTRAINT
    if isinstance(exc, (RemoteConnectionError, OperationalError, asyncio.TimeoutError)):
        return ERROR_TRANSIENT
    if isinstance(exc, (OrderValidationError, ValueError, KeyError, TypeError, InvalidOperation)):
        return ERROR_VALIDATION
    return ERROR_UNKNOWN


def extract_conflicting_field(exc: BaseException) -> Optional[str]:
    """Best-effort name of the column behind a unique-constraint violation."""
    message = str(getattr(exc, "orig", None) or exc)
    for pattern in _CONFLICT_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


# --- Pure payload mapping ---

def derive_order_number(order_data: Dict[str, Any], prefix: str) -> str:
    """Local order number for a remote order: the local number it was exported with, else PREFIX-<id>."""
    local_number = _meta_value(order_data.get("meta_data"), "_local_order_number")
    if local_number:
        return str(local_number)
    return f"{prefix}-{order_data.get('id')}"


def map_payment_method(method: Any, title: Any = None) -> PaymentMethod:
    text = f"{method or ''} {title or ''}".lower()
    for keywords, mapped in PAYMENT_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return mapped
    return PaymentMethod.CASH


def extract_item_attributes(meta_data: Any) -> Tuple[Optional[str], Optional[str]]:
    """Colour and size from a line item's meta_data entries."""
    color = None
    size = None
    for entry in meta_data or []:
        if not isinstance(entry, dict):
            continue
        key = str(entry.get("key") or entry.get("display_key") or "").lower()
        value = entry.get("display_value") or entry.get("value")
        if value is None or isinstance(value, (dict, list)):
            continue
        value = str(value).strip()
        if not value:
            continue
        if color is None and any(k in key for k in COLOR_META_KEYS):
            color = value
        elif size is None and any(k in key for k in SIZE_META_KEYS):
            size = value
    return color, size


def clean_item_name(name: Any) -> str:
    """The remote appends variation attributes after " - "; keep the product name only."""
    text = str(name or "").strip()
    if " - " in text:
        text = text.split(" - ", 1)[0].strip()
    return text or "Item"


def build_address(billing: Dict[str, Any]) -> Optional[str]:
    parts = [
        billing.get("address_1"),
        billing.get("address_2"),
        clean_location_name(billing.get("city")),
        clean_location_name(billing.get("state")),
        billing.get("country"),
    ]
    joined = ", ".join(str(p).strip() for p in parts if p and str(p).strip())
    return joined or None


def _meta_value(meta_data: Any, key: str) -> Optional[Any]:
    for entry in meta_data or []:
        if isinstance(entry, dict) and entry.get("key") == key:
            return entry.get("value")
    return None


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def calculate_totals(order_data: Dict[str, Any]) -> Dict[str, Decimal]:
    """
    Money fields for an order payload.

    total == subtotal + shipping + tax - discount; subtotal is derived when
    the payload does not carry one.
    """
    total = safe_decimal(order_data.get("total"))
    shipping = safe_decimal(order_data.get("shipping_total"))
    tax = safe_decimal(order_data.get("total_tax"))
    discount = safe_decimal(order_data.get("discount_total"))

    derived = total - shipping - tax + discount
    if order_data.get("subtotal") not in (None, ""):
        subtotal = safe_decimal(order_data.get("subtotal"))
        if abs(subtotal - derived) > MONEY_TOLERANCE:
            raise OrderValidationError(
                f"Order {order_data.get('id')}: subtotal {subtotal} does not reconcile with total {total}"
            )
    else:
        subtotal = derived

    amounts = {"subtotal": subtotal, "shipping": shipping, "tax": tax, "discount": discount, "total": total}
    negative = [name for name, amount in amounts.items() if amount < 0]
    if negative:
        raise OrderValidationError(
            f"Order {order_data.get('id')}: negative amount for {', '.join(negative)}"
        )
    return amounts


def map_external_order(
    order_data: Dict[str, Any],
    overrides: Any = None,
    settings: Optional[Settings] = None,
    store_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Map a remote order payload to local order-level fields.

    Returns a dict with the order column values plus "customer" (identity used
    for lookup-or-create) and "items" (line dicts, unresolved).

    Raises:
        OrderValidationError: payload without an id, malformed blocks or bad money
    """
    settings = settings or get_settings()
    if not isinstance(order_data, dict):
        raise OrderValidationError("Order payload must be an object")
    if order_data.get("id") in (None, ""):
        raise OrderValidationError("Order payload is missing 'id'")

    billing = order_data.get("billing") or {}
    shipping_block = order_data.get("shipping") or {}
    line_items = order_data.get("line_items") or []
    if not isinstance(billing, dict) or not isinstance(shipping_block, dict):
        raise OrderValidationError(f"Order {order_data.get('id')}: billing/shipping must be objects")
    if not isinstance(line_items, list):
        raise OrderValidationError(f"Order {order_data.get('id')}: line_items must be a list")

    external_id = str(order_data["id"])
    remote_status = _clean(order_data.get("status")) or status_mapping.DEFAULT_REMOTE_STATUS
    first_name = _clean(billing.get("first_name"))
    last_name = _clean(billing.get("last_name"))
    full_name = " ".join(p for p in (first_name, last_name) if p) or None

    fields = {
        "order_number": derive_order_number(order_data, settings.ORDER_NUMBER_PREFIX),
        "status": status_mapping.to_local(remote_status, overrides).value,
        "payment_method": map_payment_method(
            order_data.get("payment_method"), order_data.get("payment_method_title")
        ).value,
        "payment_status": (PaymentStatus.PAID if order_data.get("date_paid") else PaymentStatus.PENDING).value,
        "currency": _clean(order_data.get("currency")) or settings.DEFAULT_CURRENCY,
        "customer_name": full_name,
        "customer_email": _clean(billing.get("email")),
        "customer_phone": _clean(billing.get("phone")),
        "customer_address": build_address(billing),
        "city": clean_location_name(billing.get("city")),
        "governorate": clean_location_name(billing.get("state")),
        "shipping_address": json.dumps(shipping_block, ensure_ascii=False) if shipping_block else None,
        "notes": _clean(order_data.get("customer_note")),
        "external_id": external_id,
        "external_order_key": _clean(order_data.get("order_key")),
        "external_status": remote_status,
        "external_date_created": parse_datetime(
            order_data.get("date_created_gmt") or order_data.get("date_created")
        ),
    }
    fields.update(calculate_totals(order_data))

    if store_url:
        fields["external_url"] = f"{store_url.rstrip('/')}/wp-admin/post.php?post={external_id}&action=edit"

    items = []
    for line in line_items:
        if not isinstance(line, dict):
            raise OrderValidationError(f"Order {external_id}: malformed line item")
        color, size = extract_item_attributes(line.get("meta_data"))
        quantity = safe_int(line.get("quantity"), 0)
        line_total = safe_decimal(line.get("total"))
        price = safe_decimal(line.get("price"), default=None)
        if price is None:
            price = (line_total / quantity).quantize(Decimal("0.01")) if quantity else line_total
        image = line.get("image") if isinstance(line.get("image"), dict) else {}
        items.append({
            "product_name": clean_item_name(line.get("name")),
            "product_color": color,
            "product_size": size,
            "product_sku": _clean(line.get("sku")),
            "product_image": _clean(image.get("src")),
            "external_product_id": _clean(line.get("product_id")) if safe_int(line.get("product_id")) else None,
            "external_variation_id": _clean(line.get("variation_id")) if safe_int(line.get("variation_id")) else None,
            "quantity": quantity,
            "price": price,
            "total": line_total,
            "extraction_source": "meta_data" if (color or size) else None,
        })

    fields["customer"] = {
        "first_name": first_name,
        "last_name": last_name,
        "email": fields["customer_email"],
        "phone": fields["customer_phone"],
    }
    fields["items"] = items
    return fields


def _usable_email(email: Optional[str]) -> Optional[str]:
    if email and len(email) > MIN_EMAIL_LENGTH:
        return email.lower()
    return None


def _usable_phone(phone: Optional[str]) -> Optional[str]:
    if phone and len(phone) > MIN_PHONE_LENGTH:
        return phone
    return None


# --- Lookup maps ---

@dataclass(frozen=True)
class CatalogMatch:
    product_id: Optional[int]
    variant_id: Optional[int]
    image: Optional[str] = None


@dataclass
class LookupMaps:
    """
    Pre-fetched keys -> ids for one batch.

    Only ids and plain values are stored: a failed order rolls back the
    session, which expires every loaded instance.
    """
    orders_by_external_id: Dict[str, int] = field(default_factory=dict)
    orders_by_number: Dict[str, int] = field(default_factory=dict)
    customers_by_email: Dict[str, int] = field(default_factory=dict)
    customers_by_phone: Dict[str, int] = field(default_factory=dict)
    products_by_sku: Dict[str, CatalogMatch] = field(default_factory=dict)
    products_by_external_id: Dict[str, CatalogMatch] = field(default_factory=dict)
    variants_by_sku: Dict[str, CatalogMatch] = field(default_factory=dict)
    variants_by_external_id: Dict[str, CatalogMatch] = field(default_factory=dict)

    def find_order_id(self, external_id: str, order_number: str) -> Optional[int]:
        return self.orders_by_external_id.get(external_id) or self.orders_by_number.get(order_number)

    def find_customer_id(self, email: Optional[str], phone: Optional[str]) -> Optional[int]:
        if email and email in self.customers_by_email:
            return self.customers_by_email[email]
        if phone and phone in self.customers_by_phone:
            return self.customers_by_phone[phone]
        return None

    def remember_order(self, order: Order) -> None:
        if order.external_id:
            self.orders_by_external_id[order.external_id] = order.id
        self.orders_by_number[order.order_number] = order.id

    def remember_customer(self, customer_id: int, email: Optional[str], phone: Optional[str]) -> None:
        if email:
            self.customers_by_email.setdefault(email, customer_id)
        if phone:
            self.customers_by_phone.setdefault(phone, customer_id)

    def resolve_item(self, item: Dict[str, Any]) -> CatalogMatch:
        """SKU first (variant, then product), then remote variation / product id."""
        sku = item.get("product_sku")
        if sku:
            if sku in self.variants_by_sku:
                return self.variants_by_sku[sku]
            if sku in self.products_by_sku:
                return self.products_by_sku[sku]
        variation_id = item.get("external_variation_id")
        if variation_id and variation_id in self.variants_by_external_id:
            return self.variants_by_external_id[variation_id]
        product_id = item.get("external_product_id")
        if product_id and product_id in self.products_by_external_id:
            return self.products_by_external_id[product_id]
        return CatalogMatch(product_id=None, variant_id=None)


@dataclass
class ImportResult:
    status: ImportOutcome
    order: Optional[Order] = None
    message: Optional[str] = None


class OrderImporter:
    """Imports remote orders for one tenant."""

    def __init__(
        self,
        db: AsyncSession,
        company_id: str,
        settings: Optional[Settings] = None,
        store_url: Optional[str] = None,
    ):
        self.db = db
        self.company_id = company_id
        self.settings = settings or get_settings()
        self.store_url = store_url

    # --- Public API ---

    async def import_one(
        self,
        order_data: Dict[str, Any],
        duplicate_action: DuplicateAction = DuplicateAction.SKIP,
        status_overrides: Any = None,
        triggered_by: Optional[str] = None,
        source_type: str = "woocommerce",
    ) -> ImportResult:
        """
        Import a single remote order.

        Raises on failure (the transaction is rolled back first); callers that
        must not fail classify the error with classify_import_error.
        """
        mapped = map_external_order(order_data, status_overrides, self.settings, self.store_url)
        maps = await self.prefetch([mapped])
        result = await self._import_mapped(mapped, maps, DuplicateAction(duplicate_action), triggered_by, source_type)
        await self._end_read()
        return result

    async def import_batch(
        self,
        orders: List[Dict[str, Any]],
        duplicate_action: DuplicateAction = DuplicateAction.SKIP,
        status_overrides: Any = None,
        triggered_by: Optional[str] = None,
        source_type: str = "woocommerce",
    ) -> Dict[str, Any]:
        """
        Import a page of remote orders. One order's failure never aborts the batch.

        Returns:
            {"imported", "updated", "skipped", "failed", "errors": [...]}
        """
        stats = {"imported": 0, "updated": 0, "skipped": 0, "failed": 0, "errors": []}
        duplicate_action = DuplicateAction(duplicate_action)

        mapped_orders: List[Tuple[Dict[str, Any], Optional[Dict[str, Any]]]] = []
        for order_data in orders or []:
            try:
                mapped_orders.append((order_data, map_external_order(
                    order_data, status_overrides, self.settings, self.store_url
                )))
            except Exception as e:
                self._record_failure(stats, order_data, e)

        maps = await self.prefetch(mapped for _, mapped in mapped_orders)
        logger.info(
            f"Batch import for {self.company_id}: {len(mapped_orders)} orders, "
            f"{len(maps.orders_by_external_id)} already linked, {len(maps.customers_by_email)} known emails"
        )

        for order_data, mapped in mapped_orders:
            try:
                result = await self._import_mapped(mapped, maps, duplicate_action, triggered_by, source_type)
                stats[result.status.value] += 1
            except Exception as e:
                self._record_failure(stats, order_data, e)

        logger.info(
            f"Batch import for {self.company_id} done: imported={stats['imported']} "
            f"updated={stats['updated']} skipped={stats['skipped']} failed={stats['failed']}"
        )
        await self._end_read()
        return stats

    async def find_existing(self, external_id: Any, order_number: Optional[str] = None) -> Optional[Order]:
        """Order linked to a remote id, or carrying its derived order number."""
        external_id = str(external_id)
        order_number = order_number or f"{self.settings.ORDER_NUMBER_PREFIX}-{external_id}"
        result = await self.db.execute(
            select(Order)
            .where(
                Order.company_id == self.company_id,
                or_(Order.external_id == external_id, Order.order_number == order_number),
            )
            .order_by(Order.id)
        )
        return result.scalars().first()

    async def prefetch(self, mapped_orders: Iterable[Dict[str, Any]]) -> LookupMaps:
        """
        Load every existing entity whose key appears in the batch.

        Four lookups: orders, customers, products, variants. They run one after
        the other because an AsyncSession cannot run statements concurrently.
        """
        external_ids, numbers, emails, phones = set(), set(), set(), set()
        skus, product_ids, variation_ids = set(), set(), set()
        for mapped in mapped_orders:
            external_ids.add(mapped["external_id"])
            numbers.add(mapped["order_number"])
            email = _usable_email(mapped["customer"]["email"])
            phone = _usable_phone(mapped["customer"]["phone"])
            if email:
                emails.add(email)
            if phone:
                phones.add(phone)
            for item in mapped["items"]:
                if item["product_sku"]:
                    skus.add(item["product_sku"])
                if item["external_product_id"]:
                    product_ids.add(item["external_product_id"])
                if item["external_variation_id"]:
                    variation_ids.add(item["external_variation_id"])

        maps = LookupMaps()

        if external_ids or numbers:
            result = await self.db.execute(
                select(Order).where(
                    Order.company_id == self.company_id,
                    or_(Order.external_id.in_(external_ids), Order.order_number.in_(numbers)),
                ).order_by(Order.id)
            )
            for order in result.scalars().all():
                if order.external_id:
                    maps.orders_by_external_id.setdefault(order.external_id, order.id)
                maps.orders_by_number.setdefault(order.order_number, order.id)

        if emails or phones:
            conditions = []
            if emails:
                conditions.append(Customer.email.in_(emails))
            if phones:
                conditions.append(Customer.phone.in_(phones))
            result = await self.db.execute(
                select(Customer.id, Customer.email, Customer.phone)
                .where(Customer.company_id == self.company_id, or_(*conditions))
                .order_by(Customer.id)
            )
            for customer_id, email, phone in result.all():
                maps.remember_customer(customer_id, _usable_email(email), _usable_phone(phone))

        if skus or product_ids:
            result = await self.db.execute(
                select(Product.id, Product.sku, Product.external_id, Product.images).where(
                    Product.company_id == self.company_id,
                    or_(Product.sku.in_(skus), Product.external_id.in_(product_ids)),
                )
            )
            for product_id, sku, external_id, images in result.all():
                match = CatalogMatch(product_id, None, images[0] if isinstance(images, list) and images else None)
                if sku:
                    maps.products_by_sku[sku] = match
                if external_id:
                    maps.products_by_external_id[external_id] = match

        if skus or variation_ids:
            result = await self.db.execute(
                select(ProductVariant.id, ProductVariant.product_id, ProductVariant.sku,
                       ProductVariant.external_variation_id, Product.images)
                .join(Product, Product.id == ProductVariant.product_id)
                .where(
                    Product.company_id == self.company_id,
                    or_(ProductVariant.sku.in_(skus), ProductVariant.external_variation_id.in_(variation_ids)),
                )
            )
            for variant_id, product_id, sku, variation_id, images in result.all():
                match = CatalogMatch(product_id, variant_id, images[0] if isinstance(images, list) and images else None)
                if sku:
                    maps.variants_by_sku[sku] = match
                if variation_id:
                    maps.variants_by_external_id[variation_id] = match

        return maps

    # --- Internals ---

    async def _end_read(self) -> None:
        # Skipped orders leave the prefetch transaction open; close it before the caller talks to the store
        if self.db.in_transaction():
            await self.db.commit()

    async def _import_mapped(
        self,
        mapped: Dict[str, Any],
        maps: LookupMaps,
        duplicate_action: DuplicateAction,
        triggered_by: Optional[str],
        source_type: str,
    ) -> ImportResult:
        existing_id = maps.find_order_id(mapped["external_id"], mapped["order_number"])
        try:
            if existing_id is not None:
                order = await self.db.get(Order, existing_id)
                if order is None or order.company_id != self.company_id:
                    raise OrderValidationError(f"Order {existing_id} vanished during import")
                if duplicate_action == DuplicateAction.SKIP:
                    return ImportResult(ImportOutcome.SKIPPED, order, "Order already exists")
                if self.is_echo(order, mapped["external_status"]):
                    logger.info(
                        f"Skipping echo of our own push for order {order.order_number} "
                        f"(remote status {mapped['external_status']})"
                    )
                    return ImportResult(ImportOutcome.SKIPPED, order, "Echo of a recent push")
                self._apply_update(order, mapped, triggered_by)
                await self.db.commit()
                maps.remember_order(order)
                return ImportResult(ImportOutcome.UPDATED, order)

            customer_id, created_customer = await self._resolve_customer(mapped["customer"], maps)
            order = self._build_order(mapped, maps, customer_id, source_type)
            self.db.add(order)
            await self.db.flush()
            self.db.add(OrderStatusHistory(
                order_id=order.id,
                status=order.status,
                old_status=None,
                changed_by="system",
                user_name=triggered_by,
                reason="Imported from WooCommerce",
            ))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        maps.remember_order(order)
        if created_customer:
            maps.remember_customer(
                customer_id,
                _usable_email(mapped["customer"]["email"]),
                _usable_phone(mapped["customer"]["phone"]),
            )
        return ImportResult(ImportOutcome.IMPORTED, order)

    def is_echo(self, order: Order, remote_status: Optional[str]) -> bool:
        """True when the payload just reflects the status this engine pushed moments ago."""
        if not order.last_pushed_status or not order.last_pushed_at:
            return False
        if status_mapping.normalize_status(remote_status) != status_mapping.normalize_status(order.last_pushed_status):
            return False
        window = timedelta(seconds=self.settings.ECHO_SUPPRESSION_SECONDS)
        return utc_now() - ensure_aware(order.last_pushed_at) < window

    async def _resolve_customer(self, identity: Dict[str, Any], maps: LookupMaps) -> Tuple[int, bool]:
        email = _usable_email(identity.get("email"))
        phone = _usable_phone(identity.get("phone"))
        customer_id = maps.find_customer_id(email, phone)
        if customer_id is not None:
            return customer_id, False

        customer = Customer(
            company_id=self.company_id,
            first_name=identity.get("first_name") or "Customer",
            last_name=identity.get("last_name"),
            email=email,
            phone=phone,
            notes="Created by WooCommerce order sync",
        )
        self.db.add(customer)
        await self.db.flush()
        return customer.id, True

    def _build_order(
        self,
        mapped: Dict[str, Any],
        maps: LookupMaps,
        customer_id: Optional[int],
        source_type: str,
    ) -> Order:
        now = utc_now()
        items = []
        for item in mapped["items"]:
            match = maps.resolve_item(item)
            items.append(OrderItem(
                product_id=match.product_id,
                variant_id=match.variant_id,
                product_name=item["product_name"],
                product_color=item["product_color"],
                product_size=item["product_size"],
                product_sku=item["product_sku"],
                product_image=item["product_image"] or match.image,
                external_product_id=item["external_product_id"],
                quantity=item["quantity"],
                price=item["price"],
                total=item["total"],
                extraction_source=item["extraction_source"],
            ))

        columns = {k: v for k, v in mapped.items() if k not in ("customer", "items")}
        return Order(
            company_id=self.company_id,
            customer_id=customer_id,
            source_type=source_type,
            synced_from_external=True,
            synced_to_external=False,
            last_sync_at=now,
            items=items,
            **columns,
        )

    def _apply_update(self, order: Order, mapped: Dict[str, Any], triggered_by: Optional[str]) -> None:
        old_status = order.status
        for column in (
            "status", "external_status", "currency", "payment_method",
            "subtotal", "shipping", "discount", "tax", "total",
            "customer_name", "customer_email", "customer_phone", "customer_address",
            "city", "governorate", "shipping_address", "notes",
            "external_id", "external_order_key", "external_date_created", "external_url",
        ):
            if column in mapped and mapped[column] is not None:
                setattr(order, column, mapped[column])

        # Never downgrade a paid order
        if order.payment_status != PaymentStatus.PAID.value:
            order.payment_status = mapped["payment_status"]
        if not order.synced_to_external:
            order.synced_from_external = True
        order.last_sync_at = utc_now()

        if old_status != order.status:
            self.db.add(OrderStatusHistory(
                order_id=order.id,
                status=order.status,
                old_status=old_status,
                changed_by="system",
                user_name=triggered_by,
                reason="Synced from WooCommerce",
            ))

    def _record_failure(self, stats: Dict[str, Any], order_data: Any, exc: Exception) -> None:
        category = classify_import_error(exc)
        conflict = extract_conflicting_field(exc) if category == ERROR_CONSTRAINT else None
        external_id = order_data.get("id") if isinstance(order_data, dict) else None
        stats["failed"] += 1
        stats["errors"].append({
            "external_id": external_id,
            "category": category,
            "field": conflict,
            "message": str(exc)[:500],
        })
        if conflict:
            logger.error(f"Failed to import order {external_id} ({category} on {conflict}): {exc}")
        else:
            logger.error(f"Failed to import order {external_id} ({category}): {exc}")
