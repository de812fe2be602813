"""
Cart engine: the device's cart kept as one JSON document in the key-value store.

Totals are derived from the items on every write and never maintained by hand.
"""
import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from storefront.config import Config
from storefront.events import CartChannel
from storefront.exceptions import StorageUnavailableError
from storefront.models import Cart, CartItem, ZERO
from storefront.storage import CART_KEY, KeyValueStore

logger = logging.getLogger(__name__)


def calculate_cart_totals(items: Iterable[CartItem]) -> Cart:
    """Build a cart whose totals are derived from items alone"""
    items = list(items)
    sub_total = sum((item.sub_total for item in items), ZERO)
    total_tax = sum((item.tax for item in items), ZERO)
    return Cart(
        items=items,
        total_items=sum(item.quantity for item in items),
        sub_total=sub_total,
        total_tax=total_tax,
        final_total=sub_total + total_tax,
    )


class CartEngine:
    """Service for cart operations"""

    def __init__(
        self,
        store: KeyValueStore,
        channel: Optional[CartChannel] = None,
        normalize_modifier_order: Optional[bool] = None
    ):
        self.store = store
        self.channel = channel or CartChannel()
        if normalize_modifier_order is None:
            normalize_modifier_order = Config.CART_NORMALIZE_MODIFIER_ORDER
        self.normalize_modifier_order = normalize_modifier_order

    def _identity(self, item: CartItem) -> Tuple[str, Tuple]:
        """Merge identity: product plus its serialized modifier list"""
        modifiers = [
            (m.modifier_id, m.name, m.price)
            for m in item.modifiers
        ]
        if self.normalize_modifier_order:
            modifiers.sort()
        return item.product_id, tuple(modifiers)

    def get_cart(self) -> Cart:
        """Get cart contents, or an empty cart when none can be read"""
        try:
            raw = self.store.get(CART_KEY)
        except StorageUnavailableError as e:
            logger.debug(f"Cart storage unavailable, using empty cart: {e}")
            return Cart.empty()

        if not raw:
            return Cart.empty()

        try:
            return Cart.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.warning(f"Discarding malformed stored cart: {e.error_count()} errors")
            return Cart.empty()

    def _save(self, items: List[CartItem]) -> Cart:
        cart = calculate_cart_totals(items)
        try:
            self.store.set(CART_KEY, cart.model_dump_json(by_alias=True))
        except StorageUnavailableError as e:
            logger.warning(f"Cart not persisted, storage unavailable: {e}")
            return cart
        self.channel.publish()
        return cart

    def add_to_cart(self, item: CartItem) -> Cart:
        """
        Add item to cart, merging into an existing line with the same
        product and modifiers.
        """
        cart = self.get_cart()
        item = item.model_copy(deep=True)
        identity = self._identity(item)

        for existing in cart.items:
            if self._identity(existing) == identity:
                existing.quantity += item.quantity
                existing.sub_total += item.sub_total
                existing.tax += item.tax
                break
        else:
            cart.items.append(item)

        return self._save(cart.items)

    def remove_from_cart(self, index: int) -> Cart:
        """Remove the line at index; out-of-range indexes leave the cart unchanged"""
        cart = self.get_cart()
        if not 0 <= index < len(cart.items):
            logger.debug(f"Ignoring removal of missing cart line {index}")
            return cart

        del cart.items[index]
        return self._save(cart.items)

    def update_cart_item_quantity(self, index: int, quantity: int) -> Cart:
        """
        Set a line's quantity, rescaling its subtotal and tax per unit.
        A quantity of zero or less removes the line.
        """
        if quantity <= 0:
            return self.remove_from_cart(index)

        cart = self.get_cart()
        if not 0 <= index < len(cart.items):
            logger.debug(f"Ignoring quantity update of missing cart line {index}")
            return cart

        item = cart.items[index]
        price_per_unit = item.sub_total / item.quantity
        tax_per_unit = item.tax / item.quantity

        item.quantity = quantity
        item.sub_total = price_per_unit * quantity
        item.tax = tax_per_unit * quantity

        return self._save(cart.items)

    def clear_cart(self) -> None:
        """Delete the stored cart"""
        try:
            self.store.delete(CART_KEY)
        except StorageUnavailableError as e:
            logger.warning(f"Cart not cleared, storage unavailable: {e}")
            return
        self.channel.publish()
