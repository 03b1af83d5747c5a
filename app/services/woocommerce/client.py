import asyncio
import json
import logging
import httpx
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.core.config import get_settings
from app.core.exceptions import (
    RemoteAPIError,
    RemoteAuthError,
    RemoteConnectionError,
    RemoteNotFoundError,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass
class RemotePage:
    """One page of a list call plus the pagination headers that came with it."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    page: int = 1
    total: Optional[int] = None
    total_pages: Optional[int] = None

    @property
    def has_next(self) -> bool:
        if self.total_pages is None:
            return False
        return self.page < self.total_pages


class WooCommerceClient:
    """
    Async client for the WooCommerce REST API (v3).

    Thin wrapper exposing list/get/create/update over any resource, with
    pagination-header introspection (X-WP-Total / X-WP-TotalPages), a request
    timeout and retries for transient failures.

    Documentation: https://woocommerce.github.io/woocommerce-rest-api-docs/
    """

    API_PATH = "/wp-json/wc/v3"

    def __init__(
        self,
        store_url: str,
        consumer_key: str,
        consumer_secret: str,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        """
        Args:
            store_url: Base URL of the store, e.g. https://shop.example.com
            consumer_key: REST API consumer key
            consumer_secret: REST API consumer secret
            timeout: Per-request timeout in seconds
            max_retries: Attempts for transient failures (network, 429, 5xx)
            retry_base_delay: Exponential backoff base in seconds
        """
        settings = get_settings()
        self.store_url = (store_url or "").rstrip("/")
        self.BASE_URL = f"{self.store_url}{self.API_PATH}"
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.timeout = timeout if timeout is not None else settings.REMOTE_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries if max_retries is not None else settings.REMOTE_MAX_RETRIES)
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.REMOTE_RETRY_BASE_DELAY
        )

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _backoff(self, attempt: int, retry_after: Optional[str] = None) -> float:
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                pass
        return self.retry_base_delay * (2 ** attempt)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> httpx.Response:
        """
        Make a request to the store API, retrying transient failures.

        Returns:
            httpx.Response: the successful response

        Raises:
            RemoteAuthError: 401/403
            RemoteNotFoundError: 404
            RemoteConnectionError: network errors, timeouts, 429/5xx after retries
            RemoteAPIError: any other non-2xx response
        """
        url = f"{self.BASE_URL}/{endpoint.lstrip('/')}"
        logger.debug(f"Making {method} request to {url}")
        if params:
            logger.debug(f"Params: {params}")
        if data:
            logger.debug(f"Data: {json.dumps(data, default=str)[:500]}...")

        last_error: Optional[RemoteAPIError] = None
        for attempt in range(self.max_retries):
            retry_after = None
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(
                        method=method,
                        url=url,
                        headers=self._get_headers(),
                        auth=(self.consumer_key, self.consumer_secret),
                        json=data,
                        params=params,
                    )
            except httpx.TimeoutException as e:
                logger.warning(f"Timeout calling {method} {endpoint} (attempt {attempt + 1}/{self.max_retries}): {e}")
                last_error = RemoteConnectionError(f"Request timed out: {str(e)}")
            except httpx.RequestError as e:
                logger.warning(f"Network error calling {method} {endpoint} (attempt {attempt + 1}/{self.max_retries}): {e}")
                last_error = RemoteConnectionError(f"Network error: {str(e)}")
            else:
                status_code = response.status_code
                if status_code in (200, 201, 202, 204):
                    return response

                if status_code in (401, 403):
                    raise RemoteAuthError(
                        f"Authentication failed ({status_code}): {response.text[:500]}",
                        status_code=status_code,
                        response_text=response.text,
                    )
                if status_code == 404:
                    raise RemoteNotFoundError(
                        f"Resource not found: {endpoint}",
                        status_code=status_code,
                        response_text=response.text,
                    )
                if status_code not in RETRYABLE_STATUS_CODES:
                    logger.error(f"Store API error {status_code}: {response.text[:500]}")
                    raise RemoteAPIError(
                        f"Request failed ({status_code}): {response.text[:500]}",
                        status_code=status_code,
                        response_text=response.text,
                    )

                logger.warning(
                    f"Store API returned {status_code} for {method} {endpoint} "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                retry_after = response.headers.get("Retry-After")
                last_error = RemoteConnectionError(
                    f"Request failed ({status_code}): {response.text[:500]}",
                    status_code=status_code,
                    response_text=response.text,
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self._backoff(attempt, retry_after))

        raise last_error

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise RemoteAPIError(
                "Failed to decode JSON response",
                status_code=response.status_code,
                response_text=response.text,
            )

    @staticmethod
    def _header_int(response: httpx.Response, name: str) -> Optional[int]:
        value = response.headers.get(name)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    # --- Resource operations ---

    async def list(self, resource: str, params: Optional[Dict] = None) -> RemotePage:
        """
        Fetch one page of a collection.

        Args:
            resource: Collection name, e.g. "orders"
            params: Query params (page, per_page, modified_after, status, ...)
        """
        params = dict(params or {})
        response = await self._make_request("GET", resource, params=params)
        items = self._json(response)
        if not isinstance(items, list):
            items = []
        return RemotePage(
            items=items,
            page=int(params.get("page", 1)),
            total=self._header_int(response, "X-WP-Total"),
            total_pages=self._header_int(response, "X-WP-TotalPages"),
        )

    async def count(self, resource: str, params: Optional[Dict] = None) -> int:
        """Count-only request: one item per page, total read from X-WP-Total."""
        count_params = dict(params or {})
        count_params.update({"per_page": 1, "page": 1})
        page = await self.list(resource, count_params)
        if page.total is not None:
            return page.total
        return len(page.items)

    async def get(self, resource: str, resource_id: Any = None, params: Optional[Dict] = None) -> Dict:
        """Fetch one item, or a singleton resource such as system_status when no id is given."""
        endpoint = resource if resource_id is None else f"{resource}/{resource_id}"
        response = await self._make_request("GET", endpoint, params=params)
        return self._json(response)

    async def create(self, resource: str, data: Dict) -> Dict:
        response = await self._make_request("POST", resource, data=data)
        return self._json(response)

    async def update(self, resource: str, resource_id: Any, data: Dict) -> Dict:
        response = await self._make_request("PUT", f"{resource}/{resource_id}", data=data)
        return self._json(response)

    async def test_connection(self) -> Dict:
        """
        Check the store with the configured credentials.

        Raises RemoteAuthError for rejected credentials and RemoteConnectionError
        when the store cannot be reached.
        """
        try:
            status = await self.get("system_status")
            environment = status.get("environment", {}) if isinstance(status, dict) else {}
            return {
                "connected": True,
                "store_url": self.store_url,
                "version": environment.get("version"),
            }
        except RemoteNotFoundError:
            # system_status can be disabled; fall back to the orders collection
            await self.list("orders", {"per_page": 1})
            return {"connected": True, "store_url": self.store_url, "version": None}


def client_for_settings(sync_settings) -> WooCommerceClient:
    """Build a client from a tenant's SyncSettings row."""
    return WooCommerceClient(
        store_url=sync_settings.store_url,
        consumer_key=sync_settings.consumer_key,
        consumer_secret=sync_settings.consumer_secret,
    )
