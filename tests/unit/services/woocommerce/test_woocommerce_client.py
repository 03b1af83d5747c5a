# API client unit tests
import pytest
import httpx
from unittest.mock import AsyncMock

from app.core.exceptions import RemoteAPIError, RemoteAuthError, RemoteConnectionError, RemoteNotFoundError
from app.services.woocommerce.client import RemotePage, WooCommerceClient


def make_client(**kwargs):
    options = dict(max_retries=3, retry_base_delay=0, timeout=5)
    options.update(kwargs)
    return WooCommerceClient("https://shop.example.com/", "ck_test", "cs_test", **options)


def make_response(mocker, status_code=200, payload=None, headers=None, text=""):
    response = mocker.MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.headers = headers or {}
    response.content = b"x" if payload is not None else b""
    response.text = text
    return response


def patch_http(mocker, *responses):
    """Patch httpx.AsyncClient so successive requests return the given responses / raise the given errors."""
    mock_client = mocker.patch("httpx.AsyncClient")
    request = AsyncMock(side_effect=list(responses))
    mock_client.return_value.__aenter__.return_value.request = request
    return mock_client, request


"""
1. Request basics
"""

@pytest.mark.asyncio
async def test_request_uses_basic_auth_and_v3_base_url(mocker):
    _, request = patch_http(mocker, make_response(mocker, payload={"id": 1}))

    client = make_client()
    result = await client.get("orders", 1)

    _, kwargs = request.call_args
    assert kwargs["method"] == "GET"
    assert kwargs["url"] == "https://shop.example.com/wp-json/wc/v3/orders/1"
    assert kwargs["auth"] == ("ck_test", "cs_test")
    assert kwargs["headers"]["Accept"] == "application/json"
    assert result == {"id": 1}


@pytest.mark.asyncio
async def test_list_reads_pagination_headers(mocker):
    orders = [{"id": 1}, {"id": 2}]
    _, request = patch_http(
        mocker, make_response(mocker, payload=orders, headers={"X-WP-Total": "5", "X-WP-TotalPages": "3"})
    )

    page = await make_client().list("orders", {"page": 2, "per_page": 2})

    assert isinstance(page, RemotePage)
    assert page.items == orders
    assert page.page == 2
    assert page.total == 5
    assert page.total_pages == 3
    assert page.has_next is True
    assert request.call_args.kwargs["params"] == {"page": 2, "per_page": 2}


@pytest.mark.asyncio
async def test_count_requests_one_item(mocker):
    _, request = patch_http(
        mocker, make_response(mocker, payload=[{"id": 1}], headers={"X-WP-Total": "137", "X-WP-TotalPages": "137"})
    )

    total = await make_client().count("orders", {"status": "processing"})

    assert total == 137
    assert request.call_args.kwargs["params"] == {"status": "processing", "per_page": 1, "page": 1}


@pytest.mark.asyncio
async def test_create_and_update_send_json(mocker):
    _, request = patch_http(
        mocker,
        make_response(mocker, status_code=201, payload={"id": 77}),
        make_response(mocker, payload={"id": 77, "status": "completed"}),
    )
    client = make_client()

    created = await client.create("orders", {"status": "pending"})
    updated = await client.update("orders", 77, {"status": "completed"})

    first, second = request.call_args_list
    assert first.kwargs["method"] == "POST"
    assert first.kwargs["json"] == {"status": "pending"}
    assert second.kwargs["method"] == "PUT"
    assert second.kwargs["url"].endswith("/orders/77")
    assert created["id"] == 77
    assert updated["status"] == "completed"


"""
2. Error handling and retries
"""

@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [401, 403])
async def test_auth_errors_are_not_retried(mocker, status_code):
    _, request = patch_http(mocker, make_response(mocker, status_code=status_code, text="bad key"))

    with pytest.raises(RemoteAuthError) as exc_info:
        await make_client().get("orders", 1)

    assert exc_info.value.status_code == status_code
    assert request.call_count == 1


@pytest.mark.asyncio
async def test_not_found(mocker):
    patch_http(mocker, make_response(mocker, status_code=404, text="no such order"))

    with pytest.raises(RemoteNotFoundError):
        await make_client().get("orders", 999)


@pytest.mark.asyncio
async def test_other_client_errors_raise_api_error(mocker):
    _, request = patch_http(mocker, make_response(mocker, status_code=400, text="invalid id"))

    with pytest.raises(RemoteAPIError) as exc_info:
        await make_client().get("orders", "abc")

    assert exc_info.value.status_code == 400
    assert not isinstance(exc_info.value, RemoteConnectionError)
    assert request.call_count == 1


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_succeed(mocker):
    sleep = mocker.patch("app.services.woocommerce.client.asyncio.sleep", new=AsyncMock())
    _, request = patch_http(
        mocker,
        make_response(mocker, status_code=503, text="busy"),
        httpx.ConnectError("connection refused"),
        make_response(mocker, payload={"id": 5}),
    )

    result = await make_client().get("orders", 5)

    assert result == {"id": 5}
    assert request.call_count == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_retries_exhausted_raise_connection_error(mocker):
    mocker.patch("app.services.woocommerce.client.asyncio.sleep", new=AsyncMock())
    _, request = patch_http(
        mocker,
        httpx.ReadTimeout("timed out"),
        httpx.ReadTimeout("timed out"),
        httpx.ReadTimeout("timed out"),
    )

    with pytest.raises(RemoteConnectionError):
        await make_client().list("orders")

    assert request.call_count == 3


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after(mocker):
    sleep = mocker.patch("app.services.woocommerce.client.asyncio.sleep", new=AsyncMock())
    patch_http(
        mocker,
        make_response(mocker, status_code=429, headers={"Retry-After": "7"}),
        make_response(mocker, payload=[]),
    )

    await make_client(retry_base_delay=1).list("orders")

    sleep.assert_awaited_once_with(7.0)


def test_backoff_is_exponential():
    client = make_client(retry_base_delay=0.5)
    assert [client._backoff(attempt) for attempt in range(3)] == [0.5, 1.0, 2.0]


"""
3. Connection test
"""

@pytest.mark.asyncio
async def test_connection_reports_store_version(mocker):
    _, request = patch_http(mocker, make_response(mocker, payload={"environment": {"version": "8.5.1"}}))

    info = await make_client().test_connection()

    assert request.call_args.kwargs["url"] == "https://shop.example.com/wp-json/wc/v3/system_status"

    assert info == {"connected": True, "store_url": "https://shop.example.com", "version": "8.5.1"}


@pytest.mark.asyncio
async def test_connection_falls_back_to_orders(mocker):
    _, request = patch_http(
        mocker,
        make_response(mocker, status_code=404),
        make_response(mocker, payload=[]),
    )

    info = await make_client().test_connection()

    assert info["connected"] is True
    assert info["version"] is None
    assert request.call_args.kwargs["url"].endswith("/orders")
