from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

import httpx
import pytest

from storefront import main
from storefront.cart_engine import CartEngine
from storefront.cart_observer import CartObserver, cart_event_stream
from storefront.storage import AUTH_TOKEN_KEY, CART_KEY, DeviceStore

DEVICE = {"X-Device-ID": "device-1"}

BURGER = {
    "productId": "P1",
    "name": "Burger",
    "price": "10",
    "quantity": 1,
    "modifiers": [{"modifierId": "M1", "name": "Cheese", "price": "1"}],
    "subTotal": "10",
    "tax": "0.832",
}


def _money(value) -> Decimal:
    return Decimal(str(value))


def test_cart_starts_empty(app_client) -> None:
    response = app_client.get("/cart", headers=DEVICE)

    assert response.status_code == 200
    body = response.json()
    assert body["items"] == []
    assert body["totalItems"] == 0
    assert _money(body["finalTotal"]) == 0


def test_cart_add_merge_update_remove(app_client, app_backend) -> None:
    app_client.post("/cart/items", json=BURGER, headers=DEVICE)
    body = app_client.post("/cart/items", json=BURGER, headers=DEVICE).json()

    assert len(body["items"]) == 1
    assert body["totalItems"] == 2
    assert _money(body["subTotal"]) == Decimal("20")
    assert _money(body["finalTotal"]) == Decimal("21.664")

    body = app_client.patch("/cart/items/0", json={"quantity": 3}, headers=DEVICE).json()
    assert body["items"][0]["quantity"] == 3
    assert _money(body["subTotal"]) == Decimal("30")

    body = app_client.delete("/cart/items/0", headers=DEVICE).json()
    assert body["items"] == []
    assert app_backend.get(f"storefront:device-1:{CART_KEY}") is not None


def test_cart_amounts_are_json_numbers(app_client) -> None:
    body = app_client.post("/cart/items", json=BURGER, headers=DEVICE).json()

    assert body["subTotal"] == 10.0
    assert body["finalTotal"] == pytest.approx(10.832)
    item = body["items"][0]
    assert isinstance(item["price"], float)
    assert isinstance(item["tax"], float)
    assert isinstance(item["modifiers"][0]["price"], float)

    again = app_client.post("/cart/items", json=BURGER, headers=DEVICE).json()
    assert len(again["items"]) == 1


def test_carts_are_scoped_per_device(app_client) -> None:
    app_client.post("/cart/items", json=BURGER, headers=DEVICE)

    other = app_client.get("/cart", headers={"X-Device-ID": "device-2"}).json()

    assert other["items"] == []


def test_clear_cart(app_client, app_backend) -> None:
    app_client.post("/cart/items", json=BURGER, headers=DEVICE)

    response = app_client.delete("/cart", headers=DEVICE)

    assert response.json() == {"success": True, "message": "Cart cleared"}
    assert app_backend.get(f"storefront:device-1:{CART_KEY}") is None


def test_invalid_item_is_rejected(app_client) -> None:
    response = app_client.post("/cart/items", json={**BURGER, "quantity": 0}, headers=DEVICE)

    assert response.status_code == 422


def test_missing_device_header(app_client) -> None:
    assert app_client.get("/cart").status_code == 422


def test_blank_device_header(app_client) -> None:
    response = app_client.get("/cart", headers={"X-Device-ID": "   "})

    assert response.status_code == 400
    assert response.json()["detail"] == "Device ID is required"


def test_anonymous_checkout_is_unauthorized(app_client, upstream) -> None:
    app_client.post("/cart/items", json=BURGER, headers=DEVICE)

    response = app_client.post("/checkout", json={}, headers=DEVICE)

    assert response.status_code == 401
    assert response.json()["status"] == "login_required"
    assert upstream.calls("POST", "/order/place-order") == []


def test_otp_login_then_checkout(app_client, app_backend, upstream) -> None:
    upstream.json("POST", "/auth/login", {"message": "OTP sent"})
    upstream.json(
        "POST",
        "/auth/verify-otp",
        {"token": "tok-1", "user": {"_id": "U1", "customerId": "C1", "phone": "+15550100"}},
    )
    upstream.json("POST", "/order/place-order", {"data": {"_id": "O9"}})
    upstream.json("POST", "/payment/make-payment", {"ok": True})

    session = app_client.post("/session/login", json={"phone": "+15550100", "storeId": "S1"}, headers=DEVICE)
    assert session.status_code == 200
    assert session.json()["state"] == "otp_pending"

    verified = app_client.post(
        "/session/verify-otp",
        json={"phone": "+15550100", "otp": "1234", "storeId": "S1"},
        headers=DEVICE,
    )
    assert verified.status_code == 200
    assert verified.json()["user"]["_id"] == "U1"
    assert app_backend.get(f"storefront:device-1:{AUTH_TOKEN_KEY}") == "tok-1"

    app_client.post("/cart/items", json=BURGER, headers=DEVICE)
    response = app_client.post("/checkout", json={"orderType": "WEB_DELIVERY"}, headers=DEVICE)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "placed"
    assert body["orderId"] == "O9"
    assert body["redirectTo"] == "/orders"
    assert app_client.get("/cart", headers=DEVICE).json()["items"] == []


def test_otp_pending_is_reported_on_later_requests(app_client, upstream) -> None:
    upstream.json("POST", "/auth/login", {"message": "OTP sent"})

    login = app_client.post("/session/login", json={"phone": "+15550100"}, headers=DEVICE)
    assert login.json()["state"] == "otp_pending"

    session = app_client.get("/session", headers=DEVICE).json()
    assert session["state"] == "otp_pending"
    assert session["authenticated"] is False

    other = app_client.get("/session", headers={"X-Device-ID": "device-2"}).json()
    assert other["state"] == "anonymous"


def test_rejected_otp_is_unauthorized(app_client, upstream) -> None:
    upstream.json("POST", "/auth/verify-otp", {"error": "Invalid OTP"}, status=401)

    response = app_client.post("/session/verify-otp", json={"phone": "+1", "otp": "0"}, headers=DEVICE)

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid OTP"


def test_login_without_phone(app_client, upstream) -> None:
    response = app_client.post("/session/login", json={"phone": ""}, headers=DEVICE)

    assert response.status_code == 400
    assert response.json()["detail"] == "Phone number is required"
    assert upstream.requests == []


def test_logout_keeps_cart(app_client, app_backend) -> None:
    app_backend.set(f"storefront:device-1:{AUTH_TOKEN_KEY}", "tok-1")
    app_client.post("/cart/items", json=BURGER, headers=DEVICE)

    response = app_client.post("/session/logout", headers=DEVICE)

    assert response.json()["authenticated"] is False
    assert app_backend.get(f"storefront:device-1:{AUTH_TOKEN_KEY}") is None
    assert app_client.get("/cart", headers=DEVICE).json()["totalItems"] == 1


def test_session_resume_fetches_profile(app_client, app_backend, upstream) -> None:
    app_backend.set(f"storefront:device-1:{AUTH_TOKEN_KEY}", "tok-1")
    upstream.json("GET", "/profile", {"_id": "U1", "phone": "+1"})

    body = app_client.get("/session", headers=DEVICE).json()

    assert body["authenticated"] is True
    assert body["state"] == "authenticated"
    assert body["user"]["_id"] == "U1"


def test_update_profile_requires_login(app_client) -> None:
    response = app_client.put("/session/profile", json={"city": "Austin"}, headers=DEVICE)

    assert response.status_code == 400
    assert response.json()["detail"] == "Not logged in"


def test_store_lookup_by_subdomain(app_client, upstream) -> None:
    upstream.json("GET", "/store/by-subdomain", {"data": {"_id": "S9", "name": "Tacos", "subdomain": "tacos"}})

    response = app_client.get("/store", headers={**DEVICE, "Host": "tacos.example.com"})

    assert response.json()["_id"] == "S9"
    (request,) = upstream.calls("GET", "/store/by-subdomain")
    assert request.url.params["hostname"] == "tacos"


def test_store_falls_back_to_default(app_client, upstream) -> None:
    upstream.add("GET", "/store/by-subdomain", httpx.ConnectError("down"))

    body = app_client.get("/store", headers=DEVICE).json()

    assert body["_id"] == "68c328b7a277614f117d8226"
    assert body["subdomain"] == "flavors"


def test_health_reports_storage(app_client) -> None:
    body = app_client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["service"] == "storefront-api"
    assert body["storage"]["status"] == "healthy"


def test_health_with_storage_down(app_client) -> None:
    main.app.dependency_overrides[main.get_storage_backend] = main.NullStore

    body = app_client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["storage"]["status"] == "unhealthy"


@pytest.mark.parametrize("path", ["/cart", "/session"])
def test_storage_outage_degrades_reads(app_client, path) -> None:
    main.app.dependency_overrides[main.get_storage_backend] = main.NullStore

    response = app_client.get(path, headers=DEVICE)

    assert response.status_code == 200


def test_response_time_header(app_client) -> None:
    response = app_client.get("/health")

    assert "x-response-time-ms" in response.headers


@pytest.mark.asyncio
async def test_cart_writes_reach_open_event_streams(app_client, app_backend) -> None:
    channel = main.channels.for_device("device-1")
    tab = CartObserver(CartEngine(DeviceStore(app_backend, "device-1"), channel=channel))
    stream = cart_event_stream(tab)
    await stream.__anext__()

    app_client.post("/cart/items", json=BURGER, headers=DEVICE)
    event = await stream.__anext__()

    assert '"totalItems": 1' in event
    await stream.aclose()
    assert main.channels.discard_idle() >= 1


@dataclass
class LeavingClient:
    async def is_disconnected(self) -> bool:
        return True


@pytest.mark.asyncio
async def test_cart_events_route_streams_and_unsubscribes(app_backend) -> None:
    engine = CartEngine(DeviceStore(app_backend, "device-9"), channel=main.channels.for_device("device-9"))

    response = await main.cart_events(LeavingClient(), engine)
    assert engine.channel.listener_count == 1
    events = [event async for event in response.body_iterator]

    assert response.media_type == "text/event-stream"
    assert events[0].startswith("event: cart\n")
    assert engine.channel.listener_count == 0
