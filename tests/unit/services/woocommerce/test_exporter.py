# Order exporter tests
import json
import pytest
from decimal import Decimal

from app.core.enums import OrderStatus, SyncDirection
from app.core.exceptions import RemoteAPIError, RemoteNotFoundError, SyncError
from app.models.customer import Customer
from app.models.order import Order, OrderItem
from app.services.woocommerce.exporter import (
    OrderExporter,
    build_billing,
    build_remote_payload,
    item_display_name,
    split_name,
    valid_email,
)
from tests.mocks.fake_store import COMPANY_ID, STORE_URL, make_remote_order


async def make_local_order(db, with_customer=True, **overrides):
    customer_id = None
    if with_customer:
        customer = Customer(company_id=COMPANY_ID, first_name="Sara", last_name="Adel",
                            email="sara@example.com", phone="01011112222")
        db.add(customer)
        await db.flush()
        customer_id = customer.id

    values = dict(
        company_id=COMPANY_ID,
        order_number="ORD-0001",
        customer_id=customer_id,
        status=OrderStatus.CONFIRMED.value,
        subtotal=Decimal("150.00"),
        shipping=Decimal("25.00"),
        total=Decimal("175.00"),
        customer_name="Sara Adel",
        customer_phone="01011112222",
        customer_address="5 Tahrir Sq",
        city="Cairo",
        governorate="Giza",
        source_type="local",
        items=[OrderItem(
            product_name="Linen Shirt",
            product_color="Blue",
            product_size="L",
            product_sku="SHIRT-001",
            external_product_id="501",
            quantity=1,
            price=Decimal("150.00"),
            total=Decimal("150.00"),
        )],
    )
    values.update(overrides)
    order = Order(**values)
    db.add(order)
    await db.commit()
    return order


"""
1. Payload building
"""

def test_split_name():
    assert split_name("Mona Ali Hassan") == ("Mona", "Ali Hassan")
    assert split_name("Cher") == ("Cher", "")
    assert split_name("  ") == ("", "")
    assert split_name(None) == ("", "")


def test_valid_email():
    assert valid_email(" sara@example.com ") == "sara@example.com"
    assert valid_email("not-an-email") is None
    assert valid_email("") is None


def test_item_display_name_appends_attributes():
    item = OrderItem(product_name="Linen Shirt", product_color="Blue", product_size="L")
    assert item_display_name(item) == "Linen Shirt - Blue - L"
    assert item_display_name(OrderItem(product_name="Mug")) == "Mug"


def test_billing_falls_back_to_name_snapshot_and_drops_bad_email():
    order = Order(order_number="X", customer_name="Omar El Sayed", customer_email="omar@@bad", customer_phone="0123")

    billing = build_billing(order, "EG")

    assert billing["first_name"] == "Omar"
    assert billing["last_name"] == "El Sayed"
    assert billing["country"] == "EG"
    assert "email" not in billing


@pytest.mark.asyncio
async def test_remote_payload_for_new_order(db_session):
    order = await make_local_order(db_session, shipping_address=json.dumps({"first_name": "Gift", "city": "Alex"}))
    await db_session.refresh(order, attribute_names=["customer"])

    payload = build_remote_payload(order, overrides=None, default_country="EG")

    assert payload["status"] == "processing"
    assert payload["billing"]["first_name"] == "Sara"
    assert payload["billing"]["email"] == "sara@example.com"
    assert payload["shipping"] == {"first_name": "Gift", "city": "Alex"}
    assert payload["line_items"] == [{
        "name": "Linen Shirt - Blue - L",
        "quantity": 1,
        "subtotal": "150.00",
        "total": "150.00",
        "sku": "SHIRT-001",
        "product_id": 501,
    }]
    assert payload["shipping_lines"][0]["total"] == "25.00"
    meta = {m["key"]: m["value"] for m in payload["meta_data"]}
    assert meta["_local_order_number"] == "ORD-0001"
    assert meta["_local_order_id"] == str(order.id)


@pytest.mark.asyncio
async def test_update_payload_has_no_line_items(db_session):
    order = await make_local_order(db_session, with_customer=False)

    payload = build_remote_payload(order, overrides={"wc-ready": "CONFIRMED"}, include_items=False)

    assert "line_items" not in payload
    assert "shipping_lines" not in payload
    assert payload["status"] == "wc-ready"


"""
2. Create / update against the store
"""

@pytest.mark.asyncio
async def test_export_without_link_creates_remote_order(db_session, tenant, fake_store):
    order = await make_local_order(db_session)

    result = await OrderExporter(db_session, fake_store, tenant).export_one(order)

    assert result.status == "created"
    [create_call] = fake_store.calls_of("create")
    assert create_call[1] == "orders"
    assert len(create_call[2]["line_items"]) == 1
    assert not fake_store.calls_of("get")

    stored = await db_session.get(Order, order.id, populate_existing=True)
    assert stored.external_id == str(fake_store.next_id)
    assert stored.external_order_key == f"wc_order_{fake_store.next_id}"
    assert stored.synced_to_external is True
    assert stored.last_pushed_status == "processing"
    assert stored.last_pushed_at is not None
    assert stored.external_url == f"{STORE_URL}/wp-admin/post.php?post={stored.external_id}&action=edit"


@pytest.mark.asyncio
async def test_export_of_linked_order_updates_without_items(db_session, tenant, fake_store):
    fake_store.add(make_remote_order(777, status="pending"))
    order = await make_local_order(db_session, external_id="777", status=OrderStatus.SHIPPED.value)

    result = await OrderExporter(db_session, fake_store, tenant).export_one(order)

    assert result.status == "updated"
    [update_call] = fake_store.calls_of("update")
    assert update_call[2] == "777"
    assert "line_items" not in update_call[3]
    assert update_call[3]["status"] == "completed"
    assert not fake_store.calls_of("create")
    assert order.external_status == "completed"


@pytest.mark.asyncio
async def test_export_of_imported_order_keeps_its_direction(db_session, tenant, fake_store):
    fake_store.add(make_remote_order(778, status="processing"))
    order = await make_local_order(
        db_session, order_number="EXT-778", external_id="778",
        synced_from_external=True, synced_to_external=False,
    )

    await OrderExporter(db_session, fake_store, tenant).export_one(order)

    assert order.synced_from_external is True
    assert order.synced_to_external is False


@pytest.mark.asyncio
async def test_export_recreates_order_deleted_remotely(db_session, tenant, fake_store):
    order = await make_local_order(db_session, external_id="404404")

    result = await OrderExporter(db_session, fake_store, tenant).export_one(order)

    assert result.status == "created"
    assert order.external_id == str(fake_store.next_id)


@pytest.mark.asyncio
async def test_export_recreates_when_store_rejects_the_id(db_session, tenant, fake_store):
    fake_store.fail_get_with = RemoteAPIError("Invalid ID", status_code=400)
    order = await make_local_order(db_session, external_id="abc")

    result = await OrderExporter(db_session, fake_store, tenant).export_one(order)

    assert result.status == "created"


@pytest.mark.asyncio
async def test_export_propagates_other_remote_errors(db_session, tenant, fake_store):
    fake_store.fail_get_with = RemoteAPIError("Server error", status_code=500)
    order = await make_local_order(db_session, external_id="777")

    with pytest.raises(RemoteAPIError):
        await OrderExporter(db_session, fake_store, tenant).export_one(order)

    assert not fake_store.calls_of("create")
    assert not fake_store.calls_of("update")


@pytest.mark.asyncio
async def test_export_refused_for_import_only_store(db_session, tenant, fake_store):
    tenant.sync_direction = SyncDirection.IMPORT_ONLY.value
    await db_session.commit()
    order = await make_local_order(db_session)

    with pytest.raises(SyncError):
        await OrderExporter(db_session, fake_store, tenant).export_one(order)

    assert fake_store.calls == []


@pytest.mark.asyncio
async def test_export_refused_when_sync_disabled(db_session, tenant, fake_store):
    tenant.sync_enabled = False
    await db_session.commit()
    order = await make_local_order(db_session)

    with pytest.raises(SyncError):
        await OrderExporter(db_session, fake_store, tenant).export_one(order)


def test_remote_not_found_is_an_api_error():
    # The exporter relies on this to fall through its recreate branch
    assert issubclass(RemoteNotFoundError, RemoteAPIError)
