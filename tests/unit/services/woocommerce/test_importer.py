# Order importer tests
import pytest
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.enums import DuplicateAction, ImportOutcome, OrderStatus, PaymentMethod, PaymentStatus
from app.core.exceptions import OrderValidationError, RemoteConnectionError
from app.core.utils import utc_now
from app.models.customer import Customer
from app.models.order import Order, OrderStatusHistory
from app.models.product import Product, ProductVariant
from app.services.woocommerce.importer import (
    ERROR_CONSTRAINT,
    ERROR_TRANSIENT,
    ERROR_VALIDATION,
    OrderImporter,
    calculate_totals,
    classify_import_error,
    derive_order_number,
    extract_conflicting_field,
    extract_item_attributes,
    map_external_order,
    map_payment_method,
)
from tests.mocks.fake_store import COMPANY_ID, OTHER_COMPANY_ID, STORE_URL, make_remote_order


async def count_rows(db, column, *conditions):
    return await db.scalar(select(func.count(column)).where(*conditions))


"""
1. Payload mapping
"""

def test_map_external_order_fields(settings):
    mapped = map_external_order(make_remote_order(101, email="Mona@Example.com"), settings=settings, store_url=STORE_URL)

    assert mapped["order_number"] == "EXT-101"
    assert mapped["external_id"] == "101"
    assert mapped["external_order_key"] == "wc_order_101"
    assert mapped["status"] == OrderStatus.PROCESSING.value
    assert mapped["external_status"] == "processing"
    assert mapped["payment_method"] == PaymentMethod.CASH.value
    assert mapped["payment_status"] == PaymentStatus.PENDING.value
    assert mapped["customer_name"] == "Mona Hassan"
    assert mapped["governorate"] == "Giza"
    assert mapped["city"] == "Cairo"
    assert mapped["subtotal"] == Decimal("200.00")
    assert mapped["shipping"] == Decimal("30.00")
    assert mapped["total"] == Decimal("230.00")
    assert mapped["external_url"] == f"{STORE_URL}/wp-admin/post.php?post=101&action=edit"
    assert mapped["customer"]["email"] == "Mona@Example.com"

    [item] = mapped["items"]
    assert item["product_name"] == "Linen Shirt"
    assert item["product_color"] == "Blue"
    assert item["product_size"] == "L"
    assert item["external_product_id"] == "501"
    assert item["external_variation_id"] is None
    assert item["quantity"] == 2
    assert item["price"] == Decimal("100.00")
    assert item["extraction_source"] == "meta_data"


def test_order_number_comes_back_from_local_meta():
    order = make_remote_order(55, meta_data=[{"key": "_local_order_number", "value": "ORD-0042"}])
    assert derive_order_number(order, "EXT") == "ORD-0042"
    assert derive_order_number(make_remote_order(55), "EXT") == "EXT-55"


def test_map_rejects_payload_without_id(settings):
    with pytest.raises(OrderValidationError):
        map_external_order({"status": "processing"}, settings=settings)


def test_map_rejects_malformed_line_items(settings):
    with pytest.raises(OrderValidationError):
        map_external_order(make_remote_order(1, line_items="not a list"), settings=settings)


def test_totals_reconcile():
    totals = calculate_totals({"id": 1, "total": "110.00", "shipping_total": "20", "total_tax": "5", "discount_total": "15"})
    assert totals["subtotal"] == Decimal("100.00")
    assert totals["subtotal"] + totals["shipping"] + totals["tax"] - totals["discount"] == totals["total"]


def test_totals_mismatch_is_rejected():
    with pytest.raises(OrderValidationError):
        calculate_totals({"id": 1, "total": "100.00", "shipping_total": "10", "subtotal": "50.00"})


def test_negative_amounts_are_rejected():
    with pytest.raises(OrderValidationError):
        calculate_totals({"id": 1, "total": "-5.00"})


@pytest.mark.parametrize("amount", ["1e30", "Infinity", "NaN", "10000000000.00"])
def test_unstorable_amounts_are_rejected(amount):
    with pytest.raises(OrderValidationError):
        calculate_totals({"id": 1, "total": amount})


def test_unparseable_amount_falls_back_to_zero():
    totals = calculate_totals({"id": 1, "total": "12.50", "shipping_total": "n/a"})
    assert totals["shipping"] == Decimal("0")
    assert totals["subtotal"] == Decimal("12.50")


@pytest.mark.parametrize("method,title,expected", [
    ("cod", "Cash on delivery", PaymentMethod.CASH),
    ("bacs", "Direct bank transfer", PaymentMethod.BANK_TRANSFER),
    ("ppcp-gateway", "PayPal", PaymentMethod.PAYPAL),
    ("stripe", "Credit card", PaymentMethod.CREDIT_CARD),
    ("", None, PaymentMethod.CASH),
])
def test_payment_method_mapping(method, title, expected):
    assert map_payment_method(method, title) == expected


def test_item_attributes_accept_arabic_keys():
    color, size = extract_item_attributes([
        {"key": "اللون", "value": "أحمر"},
        {"key": "المقاس", "value": "XL"},
        {"key": "_reduced_stock", "value": "1"},
    ])
    assert (color, size) == ("أحمر", "XL")


def test_classify_import_errors():
    integrity = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: orders.company_id, orders.external_id"))
    assert classify_import_error(integrity) == ERROR_CONSTRAINT
    assert extract_conflicting_field(integrity) == "orders.company_id, orders.external_id"
    assert classify_import_error(RemoteConnectionError("timeout")) == ERROR_TRANSIENT
    assert classify_import_error(OrderValidationError("bad")) == ERROR_VALIDATION


"""
2. Single-order import
"""

@pytest.mark.asyncio
async def test_import_creates_order_customer_items_and_history(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings, store_url=STORE_URL)

    result = await importer.import_one(make_remote_order(101), triggered_by="tester")

    assert result.status == ImportOutcome.IMPORTED
    order = result.order
    assert order.order_number == "EXT-101"
    assert order.synced_from_external is True
    assert order.source_type == "woocommerce"
    assert len(order.items) == 1
    assert order.items[0].product_sku == "SHIRT-001"

    customer = await db_session.get(Customer, order.customer_id)
    assert customer.email == "customer101@example.com"
    assert customer.first_name == "Mona"

    history = (await db_session.execute(
        select(OrderStatusHistory).where(OrderStatusHistory.order_id == order.id)
    )).scalars().all()
    assert [(h.old_status, h.status, h.reason) for h in history] == [
        (None, OrderStatus.PROCESSING.value, "Imported from WooCommerce")
    ]


@pytest.mark.asyncio
async def test_reimport_with_skip_is_a_noop(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)
    first = await importer.import_one(make_remote_order(101))

    second = await importer.import_one(make_remote_order(101, status="completed"))

    assert second.status == ImportOutcome.SKIPPED
    assert not db_session.in_transaction()
    assert second.order.id == first.order.id
    assert await count_rows(db_session, Order.id) == 1
    refreshed = await db_session.get(Order, first.order.id, populate_existing=True)
    assert refreshed.status == OrderStatus.PROCESSING.value


@pytest.mark.asyncio
async def test_update_writes_history_only_on_status_change(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)
    first = await importer.import_one(make_remote_order(101))
    order_id = first.order.id

    same = await importer.import_one(make_remote_order(101), duplicate_action=DuplicateAction.UPDATE)
    assert same.status == ImportOutcome.UPDATED
    assert await count_rows(db_session, OrderStatusHistory.id, OrderStatusHistory.order_id == order_id) == 1

    changed = await importer.import_one(
        make_remote_order(101, status="completed"), duplicate_action=DuplicateAction.UPDATE
    )
    assert changed.status == ImportOutcome.UPDATED
    assert changed.order.status == OrderStatus.DELIVERED.value
    assert changed.order.external_status == "completed"
    assert await count_rows(db_session, Order.id) == 1
    assert await count_rows(db_session, OrderStatusHistory.id, OrderStatusHistory.order_id == order_id) == 2


@pytest.mark.asyncio
async def test_order_created_locally_is_matched_by_order_number(db_session, settings):
    db_session.add(Order(company_id=COMPANY_ID, order_number="ORD-0042", status=OrderStatus.CONFIRMED.value))
    await db_session.commit()

    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)
    result = await importer.import_one(
        make_remote_order(77, meta_data=[{"key": "_local_order_number", "value": "ORD-0042"}]),
        duplicate_action=DuplicateAction.UPDATE,
    )

    assert result.status == ImportOutcome.UPDATED
    assert result.order.order_number == "ORD-0042"
    assert result.order.external_id == "77"
    assert await count_rows(db_session, Order.id) == 1


@pytest.mark.asyncio
async def test_paid_orders_are_never_downgraded(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)
    await importer.import_one(make_remote_order(101, date_paid="2024-03-01T10:00:00"))

    result = await importer.import_one(make_remote_order(101), duplicate_action=DuplicateAction.UPDATE)

    assert result.order.payment_status == PaymentStatus.PAID.value


@pytest.mark.asyncio
async def test_echo_of_recent_push_is_skipped(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)
    imported = await importer.import_one(make_remote_order(101))
    order = imported.order
    order.last_pushed_status = "completed"
    order.last_pushed_at = utc_now()
    await db_session.commit()

    echo = await importer.import_one(make_remote_order(101, status="completed"), duplicate_action=DuplicateAction.UPDATE)
    assert echo.status == ImportOutcome.SKIPPED

    order.last_pushed_at = utc_now() - timedelta(seconds=settings.ECHO_SUPPRESSION_SECONDS + 60)
    await db_session.commit()
    later = await importer.import_one(make_remote_order(101, status="completed"), duplicate_action=DuplicateAction.UPDATE)
    assert later.status == ImportOutcome.UPDATED


@pytest.mark.asyncio
async def test_orders_are_scoped_per_company(db_session, settings):
    await OrderImporter(db_session, COMPANY_ID, settings=settings).import_one(make_remote_order(101))

    other = await OrderImporter(db_session, OTHER_COMPANY_ID, settings=settings).import_one(make_remote_order(101))

    assert other.status == ImportOutcome.IMPORTED
    assert await count_rows(db_session, Order.id) == 2
    assert await count_rows(db_session, Customer.id) == 2


@pytest.mark.asyncio
async def test_line_items_resolve_against_catalog(db_session, settings):
    product = Product(company_id=COMPANY_ID, name="Linen Shirt", sku="SHIRT-001", external_id="501",
                      images=["https://cdn.example.com/shirt.jpg"])
    db_session.add(product)
    await db_session.flush()
    variant = ProductVariant(product_id=product.id, sku="SHIRT-001-BL", external_variation_id="601")
    db_session.add(variant)
    await db_session.commit()

    order = make_remote_order(300, line_items=[
        {"name": "Linen Shirt", "product_id": 501, "variation_id": 601, "quantity": 1,
         "price": 100, "total": "100.00", "sku": "SHIRT-001-BL"},
        {"name": "Linen Shirt", "product_id": 501, "variation_id": 0, "quantity": 1,
         "price": 100, "total": "100.00", "sku": ""},
        {"name": "Gift wrap", "product_id": 0, "variation_id": 0, "quantity": 1,
         "price": 0, "total": "0.00", "sku": "UNKNOWN"},
    ])
    result = await OrderImporter(db_session, COMPANY_ID, settings=settings).import_one(order)

    by_position = result.order.items
    assert (by_position[0].product_id, by_position[0].variant_id) == (product.id, variant.id)
    assert by_position[0].product_image == "https://cdn.example.com/shirt.jpg"
    assert (by_position[1].product_id, by_position[1].variant_id) == (product.id, None)
    assert (by_position[2].product_id, by_position[2].variant_id) == (None, None)


"""
3. Batch import
"""

@pytest.mark.asyncio
async def test_batch_shares_new_customer_between_orders(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)

    stats = await importer.import_batch([
        make_remote_order(201, email="Shared@Example.com", phone="01000000001"),
        make_remote_order(202, email="shared@example.com", phone="01000000002"),
    ])

    assert stats["imported"] == 2
    assert await count_rows(db_session, Customer.id) == 1
    customer_ids = (await db_session.execute(select(Order.customer_id))).scalars().all()
    assert len(set(customer_ids)) == 1


@pytest.mark.asyncio
async def test_batch_matches_customer_by_phone_when_email_missing(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)

    await importer.import_batch([
        make_remote_order(211, email="", phone="01099999999"),
        make_remote_order(212, email="", phone="01099999999"),
    ])

    assert await count_rows(db_session, Customer.id) == 1


@pytest.mark.asyncio
async def test_batch_isolates_failures(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)

    stats = await importer.import_batch([
        make_remote_order(401),
        make_remote_order(402, subtotal="1.00"),
        make_remote_order(403),
    ])

    assert stats["imported"] == 2
    assert stats["failed"] == 1
    [error] = stats["errors"]
    assert error["external_id"] == 402
    assert error["category"] == ERROR_VALIDATION
    assert await count_rows(db_session, Order.id) == 2


@pytest.mark.asyncio
async def test_batch_fails_order_with_overflowing_total(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)

    stats = await importer.import_batch([make_remote_order(411, total="1e30"), make_remote_order(412)])

    assert stats["imported"] == 1
    [error] = stats["errors"]
    assert error["external_id"] == 411
    assert error["category"] == ERROR_VALIDATION
    assert "out of range" in error["message"]


@pytest.mark.asyncio
async def test_batch_rolls_back_failed_order_and_continues(db_session, settings, mocker):
    original = OrderImporter._resolve_customer
    calls = {"count": 0}

    async def flaky_resolve(self, identity, maps):
        calls["count"] += 1
        if calls["count"] == 1:
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: customers.email"))
        return await original(self, identity, maps)

    mocker.patch.object(OrderImporter, "_resolve_customer", flaky_resolve)
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)

    stats = await importer.import_batch([make_remote_order(501), make_remote_order(502)])

    assert stats["imported"] == 1
    assert stats["failed"] == 1
    assert stats["errors"][0]["category"] == ERROR_CONSTRAINT
    assert stats["errors"][0]["field"] == "customers.email"
    numbers = (await db_session.execute(select(Order.order_number))).scalars().all()
    assert numbers == ["EXT-502"]


@pytest.mark.asyncio
async def test_batch_rerun_skips_everything(db_session, settings):
    importer = OrderImporter(db_session, COMPANY_ID, settings=settings)
    orders = [make_remote_order(i) for i in (601, 602, 603)]
    await importer.import_batch(orders)

    stats = await importer.import_batch(orders)

    assert (stats["imported"], stats["skipped"], stats["failed"]) == (0, 3, 0)
    assert not db_session.in_transaction()
    assert await count_rows(db_session, Order.id) == 3
    assert await count_rows(db_session, OrderStatusHistory.id) == 3
