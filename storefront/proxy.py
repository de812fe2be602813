"""
Proxy routes forwarding browser requests to the upstream order API and
the payment gateway.
"""
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from storefront.api_client import extract_error_message
from storefront.config import Config

logger = logging.getLogger(__name__)

router = APIRouter()

EXTERNAL_API_FAILURE = "Failed to fetch from external API"
MY_ORDERS_FAILURE = "Failed to fetch orders"
PAYMENT_GATEWAY_FAILURE = "Failed to fetch from payment gateway"


_http_client: Optional[httpx.AsyncClient] = None

def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared upstream HTTP client (singleton)"""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=Config.UPSTREAM_TIMEOUT_SECONDS)
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


async def forward(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    failure_message: str,
    authorization: Optional[str] = None,
    auth: Optional[httpx.Auth] = None,
    body: Optional[bytes] = None,
) -> JSONResponse:
    """
    Send one request upstream and relay the outcome as JSON.

    Non-2xx answers become {"error": message} at the upstream status;
    transport or decoding failures become a 500 with failure_message.
    """
    headers = {"Content-Type": "application/json"}
    if authorization:
        headers["Authorization"] = authorization

    logger.info(f"Proxy {method}: {url}")
    try:
        response = await http.request(method, url, headers=headers, content=body, auth=auth)

        if not response.is_success:
            message = extract_error_message(response)
            logger.error(f"Proxy {method} error ({response.status_code}): {message}")
            return JSONResponse(status_code=response.status_code, content={"error": message})

        data = response.json()
        logger.debug(f"Proxy {method} response: {response.text[:200]}")
        return JSONResponse(content=data)

    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Proxy {method} exception: {type(e).__name__}: {e}")
        return JSONResponse(status_code=500, content={"error": failure_message})


def _upstream_url(path: str, query: str = "") -> str:
    url = f"{Config.UPSTREAM_BASE_URL}/{path.lstrip('/')}"
    return f"{url}?{query}" if query else url


async def _proxy(request: Request, path: str, http: httpx.AsyncClient) -> JSONResponse:
    authorization = request.headers.get("authorization")
    if request.method == "GET":
        return await forward(
            http,
            "GET",
            _upstream_url(path, request.url.query),
            failure_message=EXTERNAL_API_FAILURE,
            authorization=authorization,
        )

    return await forward(
        http,
        request.method,
        _upstream_url(path),
        failure_message=EXTERNAL_API_FAILURE,
        authorization=authorization,
        body=await request.body(),
    )


@router.api_route("/api/proxy/{path:path}", methods=["GET", "POST", "PUT"])
async def proxy_route(path: str, request: Request, http: httpx.AsyncClient = Depends(get_http_client)):
    """Forward to the upstream online-order API"""
    return await _proxy(request, path, http)


@router.api_route("/api/online-order/{path:path}", methods=["GET", "POST", "PUT"])
async def online_order_route(path: str, request: Request, http: httpx.AsyncClient = Depends(get_http_client)):
    """Forward to the upstream online-order API"""
    return await _proxy(request, path, http)


@router.get("/api/my-orders")
async def my_orders(request: Request, http: httpx.AsyncClient = Depends(get_http_client)):
    """Orders fetched with the server-held web order token"""
    token = Config.WEB_ORDER_TOKEN
    if not token:
        return JSONResponse(status_code=500, content={"error": "WEB_ORDER_TOKEN is not set"})

    return await forward(
        http,
        "GET",
        _upstream_url("order/my-orders", request.url.query),
        failure_message=MY_ORDERS_FAILURE,
        authorization=f"Bearer {token}",
    )


@router.post("/api/payment/acquire-api-key")
async def acquire_api_key(http: httpx.AsyncClient = Depends(get_http_client)):
    """Acquire an initial API key from the payment gateway"""
    if not (Config.PAYMENT_USERNAME and Config.PAYMENT_PASSWORD):
        logger.error("Payment gateway credentials are not configured")
        return JSONResponse(status_code=500, content={"error": "Payment gateway credentials are not set"})

    return await forward(
        http,
        "POST",
        Config.PAYMENT_GATEWAY_URL,
        failure_message=PAYMENT_GATEWAY_FAILURE,
        auth=httpx.BasicAuth(Config.PAYMENT_USERNAME, Config.PAYMENT_PASSWORD),
    )
