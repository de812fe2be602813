"""LiveDataNow online-order API client."""

import json
import logging
from typing import Any, Optional

import httpx

from storefront.config import Config
from storefront.exceptions import (
    StorageUnavailableError,
    UpstreamError,
    UpstreamTransportError,
    ValidationError,
)
from storefront.storage import AUTH_TOKEN_KEY, KeyValueStore

logger = logging.getLogger(__name__)


def extract_error_message(response: httpx.Response) -> str:
    """
    Pull a readable message out of an upstream error response: the JSON
    'error' or 'message' field, else the raw body, else the status line.
    """
    text = response.text
    try:
        data = json.loads(text)
    except ValueError:
        data = None

    if isinstance(data, dict):
        for field in ("error", "message"):
            value = data.get(field)
            if isinstance(value, str) and value:
                return value
    if text:
        return text
    return response.reason_phrase or f"HTTP {response.status_code}"


class _Resource:
    def __init__(self, client: "LiveDataNowClient"):
        self._client = client


class AuthApi(_Resource):
    async def login(self, phone: str, store_id: Optional[str] = None) -> Any:
        body = {"phone": phone}
        if store_id:
            body["storeId"] = store_id
        return await self._client.request("POST", "/auth/login", json=body)

    async def verify_otp(self, phone: str, otp: str, store_id: Optional[str] = None) -> Any:
        body = {"phone": phone, "otp": otp}
        if store_id:
            body["storeId"] = store_id
        return await self._client.request("POST", "/auth/verify-otp", json=body)


class ProfileApi(_Resource):
    async def get(self) -> Any:
        return await self._client.request("GET", "/profile")

    async def update(self, data: dict) -> Any:
        return await self._client.request("PUT", "/profile", json=data)


class StoreApi(_Resource):
    async def get_by_subdomain(self, hostname: str) -> Any:
        return await self._client.request("GET", "/store/by-subdomain", params={"hostname": hostname})


class DepartmentApi(_Resource):
    async def list(self, store_id: str, page: int = 1, limit: int = 50) -> Any:
        params = {"storeId": store_id, "page": page, "limit": limit}
        return await self._client.request("GET", "/department", params=params)


class KitchenApi(_Resource):
    async def list(self, store_id: str, page: int = 1, limit: int = 50) -> Any:
        params = {"storeId": store_id, "page": page, "limit": limit}
        return await self._client.request("GET", "/kitchen", params=params)


class ProductApi(_Resource):
    async def list(
        self,
        store_id: str,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        department: Optional[str] = None,
        kitchen: Optional[str] = None,
        order: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Any:
        """List products; filters left as None are not sent"""
        if order is not None and order not in ("asc", "desc"):
            raise ValidationError("order must be 'asc' or 'desc'")
        params = {
            "storeId": store_id,
            "page": page,
            "limit": limit,
            "department": department,
            "kitchen": kitchen,
            "order": order,
            "search": search,
        }
        params = {key: value for key, value in params.items() if value is not None}
        return await self._client.request("GET", "/product", params=params)

    async def get_by_id(self, product_id: str) -> Any:
        return await self._client.request("GET", f"/product/{product_id}")


class ModifierApi(_Resource):
    async def list_groups(self, store_id: str, page: int = 1, limit: int = 10) -> Any:
        params = {"storeId": store_id, "page": page, "limit": limit}
        return await self._client.request("GET", "/modifier-group", params=params)

    async def list_by_group(self, modifier_group_id: str, page: int = 1, limit: int = 10) -> Any:
        params = {"page": page, "limit": limit, "modifierGroupId": modifier_group_id}
        return await self._client.request("GET", "/modifier", params=params)


class OrderApi(_Resource):
    async def place(self, order: dict) -> Any:
        return await self._client.request("POST", "/order/place-order", json=order)

    async def get_my_orders(self, page: int = 1, limit: int = 50) -> Any:
        return await self._client.request("GET", "/order/my-orders", params={"page": page, "limit": limit})


class PaymentApi(_Resource):
    async def make_payment(self, record: dict) -> Any:
        return await self._client.request("POST", "/payment/make-payment", json=record)


class LiveDataNowClient:
    """Client for the LiveDataNow online-order API."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            store: Device store the bearer token is read from (optional)
            base_url: API root, defaults to Config.UPSTREAM_BASE_URL
            http_client: Shared httpx client; one is created when omitted
        """
        self.token_store = store
        self.base_url = (base_url or Config.UPSTREAM_BASE_URL).rstrip("/")
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=Config.UPSTREAM_TIMEOUT_SECONDS)

        self.auth = AuthApi(self)
        self.profile = ProfileApi(self)
        self.store = StoreApi(self)
        self.department = DepartmentApi(self)
        self.kitchen = KitchenApi(self)
        self.product = ProductApi(self)
        self.modifier = ModifierApi(self)
        self.order = OrderApi(self)
        self.payment = PaymentApi(self)

    def _token(self) -> Optional[str]:
        if self.token_store is None:
            return None
        try:
            return self.token_store.get(AUTH_TOKEN_KEY)
        except StorageUnavailableError:
            return None

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json: Optional[Any] = None,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            UpstreamError: Upstream answered with a non-2xx status
            UpstreamTransportError: Network failure or unreadable body
        """
        headers = {"Content-Type": "application/json"}
        token = self._token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{self.base_url}{endpoint}"
        try:
            response = await self.http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{method} {endpoint} failed: {type(e).__name__}: {e}")
            raise UpstreamTransportError(f"Request to {endpoint} failed", e)

        if not response.is_success:
            message = extract_error_message(response)
            logger.warning(f"{method} {endpoint} returned {response.status_code}: {message}")
            raise UpstreamError(response.status_code, message)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamTransportError(f"Invalid JSON from {endpoint}", e)

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "LiveDataNowClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
