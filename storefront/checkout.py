"""
Checkout orchestration: turns the device's cart and session into an order.
"""
import logging
from typing import Optional

from storefront.api_client import LiveDataNowClient
from storefront.auth_session import AuthSessionManager
from storefront.cart_engine import CartEngine
from storefront.exceptions import ResponseShapeError, StorefrontException
from storefront.models import (
    Cart,
    CheckoutOptions,
    CheckoutResult,
    CheckoutStatus,
    OrderLine,
    OrderModifierRef,
    OrderPayload,
    PaymentMethod,
    PaymentRecord,
    User,
    ZERO,
)
from storefront.responses import parse_order_id

logger = logging.getLogger(__name__)

PAYMENT_NOT_RECORDED = "Order placed, but payment could not be recorded. Please contact support."


def build_order_payload(cart: Cart, customer_id: Optional[str], options: CheckoutOptions) -> OrderPayload:
    """Order placement body for the cart as it is now"""
    if options.payment_method == PaymentMethod.CARD and options.card is not None:
        payment_method = options.card.card_type.value
    else:
        payment_method = options.payment_method.value

    lines = [
        OrderLine(
            product_id=item.product_id,
            quantity=item.quantity,
            price=item.price,
            sub_total=item.sub_total,
            tax=item.tax,
            discount=item.discount,
            modifiers=[OrderModifierRef(id=m.modifier_id, qty=1) for m in item.modifiers],
            order_id="",
        )
        for item in cart.items
    ]

    return OrderPayload(
        order_items=lines,
        customer_id=customer_id,
        payment_method=payment_method,
        type=options.order_type,
        sub_total=cart.sub_total,
        total_tax=cart.total_tax,
        final_total=cart.final_total,
        total_discount=sum((item.discount for item in cart.items), ZERO),
    )


class CheckoutOrchestrator:
    """Service for checkout operations"""

    def __init__(self, cart_engine: CartEngine, auth: AuthSessionManager, client: LiveDataNowClient):
        self.cart_engine = cart_engine
        self.auth = auth
        self.client = client

    async def _complete_profile(self) -> Optional[User]:
        user = self.auth.user
        if user is not None and user.is_complete:
            return user
        # One refresh from upstream before giving up
        user = await self.auth.fetch_profile()
        if user is not None and user.is_complete:
            return user
        return None

    async def _record_payment(self, order_id: str, cart: Cart) -> bool:
        record = PaymentRecord(amount=cart.final_total, order_id=order_id)
        try:
            await self.client.payment.make_payment(record.model_dump(mode="json", by_alias=True))
        except StorefrontException as e:
            logger.error(f"Make payment failed for order {order_id}: {e}")
            return False
        return True

    async def place_order(self, options: CheckoutOptions) -> CheckoutResult:
        """
        Place an order for the current cart:
        1. Require an authenticated session
        2. Require a profile with a phone number (refreshed once if missing)
        3. Validate card fields when paying by card (no charge is made)
        4. Build the order payload from the cart
        5. Place the order; failure stops here and keeps the cart
        6. Record cash payment; failure only adds a warning
        7. Clear the cart

        Returns:
            CheckoutResult describing the outcome
        """
        if not self.auth.is_authenticated:
            return CheckoutResult(
                status=CheckoutStatus.LOGIN_REQUIRED,
                message="Please log in to place an order.",
            )

        user = await self._complete_profile()
        if user is None:
            return CheckoutResult(
                status=CheckoutStatus.PROFILE_INCOMPLETE,
                message="Please add your phone number before placing an order.",
                redirect_to="/profile",
            )

        if options.payment_method == PaymentMethod.CARD:
            missing = options.card.missing_fields() if options.card else ["card details"]
            if missing:
                return CheckoutResult(
                    status=CheckoutStatus.INVALID_CARD,
                    message="Please fill in all card details.",
                    warnings=[f"Missing: {', '.join(missing)}"],
                )

        cart = self.cart_engine.get_cart()
        if not cart.items:
            return CheckoutResult(
                status=CheckoutStatus.EMPTY_CART,
                message="Your cart is empty.",
                redirect_to="/cart",
            )

        payload = build_order_payload(cart, user.customer_id or user.id, options)

        try:
            response = await self.client.order.place(payload.to_upstream())
        except StorefrontException as e:
            logger.error(f"Error placing order: {e}")
            return CheckoutResult(
                status=CheckoutStatus.FAILED,
                message=str(e) or "Failed to place order. Please try again.",
            )

        warnings = []
        try:
            order_id: Optional[str] = parse_order_id(response)
        except ResponseShapeError as e:
            logger.warning(f"Order placed without a readable id: {e}")
            order_id = None

        logger.info(f"Order placed: {order_id}, Total: {cart.final_total}")

        if options.payment_method == PaymentMethod.CASH:
            recorded = order_id is not None and await self._record_payment(order_id, cart)
            if not recorded:
                warnings.append(PAYMENT_NOT_RECORDED)

        self.cart_engine.clear_cart()

        return CheckoutResult(
            status=CheckoutStatus.PLACED_WITH_WARNING if warnings else CheckoutStatus.PLACED,
            message="Order placed successfully!",
            order_id=order_id,
            warnings=warnings,
            redirect_to="/orders",
        )
