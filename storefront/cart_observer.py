"""
Cart observer: keeps an in-memory mirror of a device's cart current, and
turns its updates into a server-sent event stream.
"""
import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from storefront.cart_engine import CartEngine
from storefront.models import Cart, CartItem

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 30.0


class CartObserver:
    """Mirror of the cart that re-reads storage whenever the channel fires"""

    def __init__(self, engine: CartEngine, on_change: Optional[Callable[[Cart], None]] = None):
        self.engine = engine
        self.on_change = on_change
        self.cart: Cart = engine.get_cart()
        self._unsubscribe: Optional[Callable[[], None]] = engine.channel.subscribe(self.refresh)

    def refresh(self) -> None:
        self.cart = self.engine.get_cart()
        if self.on_change is not None:
            self.on_change(self.cart)

    def add_to_cart(self, item: CartItem) -> Cart:
        self.cart = self.engine.add_to_cart(item)
        return self.cart

    def remove_from_cart(self, index: int) -> Cart:
        self.cart = self.engine.remove_from_cart(index)
        return self.cart

    def update_quantity(self, index: int, quantity: int) -> Cart:
        self.cart = self.engine.update_cart_item_quantity(index, quantity)
        return self.cart

    def clear_cart(self) -> Cart:
        self.engine.clear_cart()
        self.refresh()
        return self.cart

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __enter__(self) -> "CartObserver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def format_cart_event(cart: Cart) -> str:
    payload = cart.model_dump(mode="json", by_alias=True)
    return f"event: cart\ndata: {json.dumps(payload)}\n\n"


async def cart_event_stream(
    observer: CartObserver,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    keepalive_seconds: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """
    Server-sent events for one observer: the current cart first, then the
    cart after every write on the device's channel.

    Writes may be published from another thread, so they are handed to this
    loop through call_soon_threadsafe. The observer is closed when the
    stream ends.
    """
    loop = asyncio.get_running_loop()
    changes: "asyncio.Queue[Cart]" = asyncio.Queue()
    observer.on_change = lambda cart: loop.call_soon_threadsafe(changes.put_nowait, cart)

    try:
        yield format_cart_event(observer.cart)
        while True:
            if is_disconnected is not None and await is_disconnected():
                logger.info("Cart event client disconnected")
                break
            try:
                cart = await asyncio.wait_for(changes.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": ping\n\n"
                continue
            yield format_cart_event(cart)
    finally:
        observer.close()
