"""
FastAPI application for the storefront: upstream proxy routes plus the
device cart, session and checkout endpoints.
"""
import time
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from storefront.api_client import LiveDataNowClient
from storefront.auth_session import AuthSessionManager
from storefront.cart_engine import CartEngine
from storefront.cart_observer import CartObserver, cart_event_stream
from storefront.checkout import CheckoutOrchestrator
from storefront.config import Config
from storefront.events import ChannelRegistry
from storefront.exceptions import (
    StorageUnavailableError,
    UpstreamError,
    UpstreamTransportError,
    ValidationError,
)
from storefront.middleware import RequestLoggingMiddleware
from storefront.models import (
    Cart,
    CartItem,
    CheckoutOptions,
    CheckoutResult,
    CheckoutStatus,
    LoginRequest,
    OtpVerification,
    QuantityUpdateRequest,
    SessionResponse,
    Store,
    UserUpdate,
    VerifyOtpRequest,
)
from storefront.proxy import close_http_client, get_http_client, router as proxy_router
from storefront.storage import (
    DeviceStore,
    KeyValueStore,
    NullStore,
    RedisStore,
    get_backend_store,
)
from storefront.store_resolver import resolve_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_http_client()


app = FastAPI(
    title="Storefront API",
    description="Food ordering storefront backed by the LiveDataNow order API",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(proxy_router)

channels = ChannelRegistry()

CHECKOUT_STATUS_CODES = {
    CheckoutStatus.PLACED: 200,
    CheckoutStatus.PLACED_WITH_WARNING: 200,
    CheckoutStatus.LOGIN_REQUIRED: 401,
    CheckoutStatus.PROFILE_INCOMPLETE: 409,
    CheckoutStatus.INVALID_CARD: 400,
    CheckoutStatus.EMPTY_CART: 400,
    CheckoutStatus.FAILED: 502,
}


# Dependencies

def get_device_id(
    device_id: str = Header(..., alias="X-Device-ID", description="Browsing device identifier")
) -> str:
    if not device_id or not device_id.strip():
        raise HTTPException(status_code=400, detail="Device ID is required")
    return device_id.strip()


def get_storage_backend() -> KeyValueStore:
    try:
        return get_backend_store()
    except StorageUnavailableError as e:
        logger.warning(f"Storage backend unavailable: {e}")
        return NullStore()


def get_device_store(
    device_id: str = Depends(get_device_id),
    backend: KeyValueStore = Depends(get_storage_backend),
) -> DeviceStore:
    return DeviceStore(backend, device_id)


def get_cart_engine(
    device_id: str = Depends(get_device_id),
    store: DeviceStore = Depends(get_device_store),
):
    yield CartEngine(store, channel=channels.for_device(device_id))
    channels.discard_idle()


def get_api_client(
    store: DeviceStore = Depends(get_device_store),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> LiveDataNowClient:
    return LiveDataNowClient(store=store, http_client=http)


def get_auth_session(
    store: DeviceStore = Depends(get_device_store),
    client: LiveDataNowClient = Depends(get_api_client),
) -> AuthSessionManager:
    return AuthSessionManager(store, client)


def get_checkout(
    engine: CartEngine = Depends(get_cart_engine),
    auth: AuthSessionManager = Depends(get_auth_session),
    client: LiveDataNowClient = Depends(get_api_client),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(engine, auth, client)


def _session_response(auth: AuthSessionManager) -> SessionResponse:
    return SessionResponse(
        state=auth.state.value,
        authenticated=auth.is_authenticated,
        user=auth.user,
        error=auth.error,
    )


# Health check endpoint for ALB
@app.get("/health")
async def health_check(backend: KeyValueStore = Depends(get_storage_backend)):
    """
    Health check endpoint for ALB.
    Always returns HTTP 200 if the application is running.
    """
    storage_status = "healthy"
    storage_latency_ms = None

    if isinstance(backend, NullStore):
        storage_status = "unhealthy"
    elif isinstance(backend, RedisStore):
        ping_start = time.time()
        if not backend.redis.ping():
            storage_status = "unhealthy"
        storage_latency_ms = round((time.time() - ping_start) * 1000, 2)

    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": "storefront-api",
            "storage": {
                "backend": Config.STORAGE_BACKEND,
                "status": storage_status,
                "latency_ms": storage_latency_ms
            },
            "timestamp": time.time()
        }
    )


@app.get("/store", response_model=Store)
async def get_store(request: Request, client: LiveDataNowClient = Depends(get_api_client)):
    """Store for the hostname the storefront is served from"""
    return await resolve_store(client, request.headers.get("host"))


# Cart endpoints
@app.get("/cart", response_model=Cart)
async def get_cart(engine: CartEngine = Depends(get_cart_engine)):
    """Get cart contents; an empty cart when none is stored"""
    return engine.get_cart()


@app.post("/cart/items", response_model=Cart)
async def add_cart_item(item: CartItem, engine: CartEngine = Depends(get_cart_engine)):
    """Add item to cart, merging with an identical line"""
    return engine.add_to_cart(item)


@app.patch("/cart/items/{index}", response_model=Cart)
async def update_cart_item(
    index: int,
    request: QuantityUpdateRequest,
    engine: CartEngine = Depends(get_cart_engine)
):
    """Set a line's quantity; zero or less removes it"""
    return engine.update_cart_item_quantity(index, request.quantity)


@app.delete("/cart/items/{index}", response_model=Cart)
async def remove_cart_item(index: int, engine: CartEngine = Depends(get_cart_engine)):
    """Remove item from cart"""
    return engine.remove_from_cart(index)


@app.delete("/cart", response_model=dict)
async def clear_cart(engine: CartEngine = Depends(get_cart_engine)):
    engine.clear_cart()
    return {"success": True, "message": "Cart cleared"}


@app.get("/cart/events")
async def cart_events(request: Request, engine: CartEngine = Depends(get_cart_engine)):
    """
    Server-Sent Events stream of the device's cart.
    Every tab of a device listens here; any cart write reaches all of them.
    """
    # Subscribe now so the channel is not discarded as idle before streaming starts
    observer = CartObserver(engine)
    return StreamingResponse(
        cart_event_stream(observer, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )


# Session endpoints
@app.get("/session", response_model=SessionResponse)
async def get_session(auth: AuthSessionManager = Depends(get_auth_session)):
    await auth.resume()
    return _session_response(auth)


@app.post("/session/login", response_model=SessionResponse)
async def login(request: LoginRequest, auth: AuthSessionManager = Depends(get_auth_session)):
    """Start phone login; with OTP enabled the session waits for the code"""
    if not await auth.login(request.phone, request.store_id):
        raise HTTPException(status_code=400, detail=auth.error)
    return _session_response(auth)


@app.post("/session/verify-otp", response_model=OtpVerification)
async def verify_otp(request: VerifyOtpRequest, auth: AuthSessionManager = Depends(get_auth_session)):
    result = await auth.verify_otp(request.phone, request.otp, request.store_id)
    if not result.success:
        raise HTTPException(status_code=401, detail=result.error)
    return result


@app.post("/session/logout", response_model=SessionResponse)
async def logout(auth: AuthSessionManager = Depends(get_auth_session)):
    auth.logout()
    return _session_response(auth)


@app.put("/session/profile", response_model=SessionResponse)
async def update_profile(update: UserUpdate, auth: AuthSessionManager = Depends(get_auth_session)):
    if not await auth.update_profile(update):
        raise HTTPException(status_code=400, detail=auth.error)
    return _session_response(auth)


# Checkout endpoint
@app.post("/checkout", response_model=CheckoutResult)
async def checkout(options: CheckoutOptions, orchestrator: CheckoutOrchestrator = Depends(get_checkout)):
    """
    Place an order for the device's cart.
    Order failure keeps the cart; payment recording failure only warns.
    """
    result = await orchestrator.place_order(options)
    return JSONResponse(
        status_code=CHECKOUT_STATUS_CODES[result.status],
        content=result.model_dump(mode="json", by_alias=True),
    )


# Error handlers
@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "message": str(exc)}
    )


@app.exception_handler(StorageUnavailableError)
async def storage_error_handler(request, exc):
    return JSONResponse(
        status_code=503,
        content={"error": "Service unavailable", "message": "Storage connection failed"}
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request, exc):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(UpstreamTransportError)
async def upstream_transport_error_handler(request, exc):
    return JSONResponse(status_code=502, content={"error": exc.message})


# Generic exception handler for unhandled errors
@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "type": type(exc).__name__
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
