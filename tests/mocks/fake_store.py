"""
In-memory stand-in for the WooCommerce REST client.

Implements the same list/count/get/create/update/test_connection surface as
WooCommerceClient and records every call for assertions.
"""

import copy
from typing import Any, Dict, List, Optional

from app.core.exceptions import RemoteAPIError, RemoteNotFoundError
from app.services.woocommerce.client import RemotePage

COMPANY_ID = "acme"
OTHER_COMPANY_ID = "globex"
STORE_URL = "https://shop.example.com"


def make_remote_order(
    order_id: int,
    status: str = "processing",
    email: Optional[str] = None,
    phone: Optional[str] = "01001234567",
    first_name: str = "Mona",
    last_name: str = "Hassan",
    total: str = "230.00",
    shipping_total: str = "30.00",
    line_items: Optional[List[Dict[str, Any]]] = None,
    **extra,
) -> Dict[str, Any]:
    """A remote order payload shaped like the store's REST responses."""
    order = {
        "id": order_id,
        "number": str(order_id),
        "order_key": f"wc_order_{order_id}",
        "status": status,
        "currency": "EGP",
        "date_created": "2024-03-01T10:00:00",
        "date_created_gmt": "2024-03-01T08:00:00",
        "date_modified_gmt": "2024-03-01T09:00:00",
        "discount_total": "0.00",
        "shipping_total": shipping_total,
        "total_tax": "0.00",
        "total": total,
        "customer_note": "",
        "payment_method": "cod",
        "payment_method_title": "Cash on delivery",
        "date_paid": None,
        "billing": {
            "first_name": first_name,
            "last_name": last_name,
            "address_1": "12 Nile St",
            "address_2": "",
            "city": "Cairo",
            "state": "12:Giza",
            "country": "EG",
            "email": email if email is not None else f"customer{order_id}@example.com",
            "phone": phone,
        },
        "shipping": {
            "first_name": first_name,
            "last_name": last_name,
            "address_1": "12 Nile St",
            "city": "Cairo",
            "state": "Giza",
            "country": "EG",
        },
        "line_items": line_items if line_items is not None else [
            {
                "id": order_id * 10,
                "name": "Linen Shirt - Blue, L",
                "product_id": 501,
                "variation_id": 0,
                "quantity": 2,
                "price": 100,
                "total": "200.00",
                "sku": "SHIRT-001",
                "meta_data": [
                    {"key": "pa_color", "value": "Blue"},
                    {"key": "pa_size", "value": "L"},
                ],
            }
        ],
        "meta_data": [],
    }
    order.update(extra)
    return order


class FakeWooStore:
    def __init__(self, orders: Optional[List[Dict[str, Any]]] = None):
        self.orders: Dict[int, Dict[str, Any]] = {}
        self.webhooks: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.next_id = 9000
        self.fail_list_with: Optional[Exception] = None
        self.fail_list_on_page: Optional[int] = None
        self.fail_get_with: Optional[Exception] = None
        self.fail_connection_with: Optional[Exception] = None
        for order in orders or []:
            self.add(order)

    def add(self, order: Dict[str, Any]) -> Dict[str, Any]:
        self.orders[int(order["id"])] = copy.deepcopy(order)
        return order

    def _filtered(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        orders = [self.orders[k] for k in sorted(self.orders)]
        if params.get("status"):
            orders = [o for o in orders if o.get("status") == params["status"]]
        if params.get("modified_after"):
            cutoff = params["modified_after"]
            orders = [o for o in orders if (o.get("date_modified_gmt") or "") > cutoff]
        return orders

    async def list(self, resource: str, params: Optional[Dict] = None) -> RemotePage:
        params = dict(params or {})
        self.calls.append(("list", resource, params))
        page = int(params.get("page", 1))
        if self.fail_list_with is not None and self.fail_list_on_page in (None, page):
            raise self.fail_list_with

        per_page = int(params.get("per_page", 10))
        items = self._filtered(params) if resource == "orders" else []
        total = len(items)
        start = (page - 1) * per_page
        return RemotePage(
            items=copy.deepcopy(items[start:start + per_page]),
            page=page,
            total=total,
            total_pages=(total + per_page - 1) // per_page if per_page else None,
        )

    async def count(self, resource: str, params: Optional[Dict] = None) -> int:
        self.calls.append(("count", resource, dict(params or {})))
        return len(self._filtered(dict(params or {})))

    async def get(self, resource: str, resource_id: Any, params: Optional[Dict] = None) -> Dict:
        self.calls.append(("get", resource, resource_id))
        if self.fail_get_with is not None:
            raise self.fail_get_with
        try:
            return copy.deepcopy(self.orders[int(resource_id)])
        except (KeyError, ValueError):
            raise RemoteNotFoundError(f"Resource not found: {resource}/{resource_id}", status_code=404)

    async def create(self, resource: str, data: Dict) -> Dict:
        self.calls.append(("create", resource, copy.deepcopy(data)))
        if resource == "webhooks":
            webhook = {"id": len(self.webhooks) + 1, **data}
            self.webhooks.append(webhook)
            return webhook
        self.next_id += 1
        order = {"id": self.next_id, "order_key": f"wc_order_{self.next_id}", **copy.deepcopy(data)}
        self.orders[self.next_id] = order
        return copy.deepcopy(order)

    async def update(self, resource: str, resource_id: Any, data: Dict) -> Dict:
        self.calls.append(("update", resource, resource_id, copy.deepcopy(data)))
        key = int(resource_id)
        if key not in self.orders:
            raise RemoteAPIError("Invalid ID", status_code=400)
        self.orders[key].update(copy.deepcopy(data))
        return copy.deepcopy(self.orders[key])

    async def test_connection(self) -> Dict:
        self.calls.append(("test_connection",))
        if self.fail_connection_with is not None:
            raise self.fail_connection_with
        return {"connected": True, "store_url": "https://shop.example.com", "version": "8.5.0"}

    def calls_of(self, kind: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == kind]
