"""
Pydantic models for cart state, user profiles, orders and checkout.

Attributes are snake_case; the persisted and wire forms use the camelCase
names the storefront and the upstream order API share.
"""
from enum import Enum
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

ZERO = Decimal("0")

# Amounts go over the wire as plain JSON numbers, except the few upstream wants as strings.
WireNumber = Annotated[Decimal, PlainSerializer(float, return_type=float)]
WireString = Annotated[Decimal, PlainSerializer(str, return_type=str)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartModifier(CamelModel):
    """Priced add-on attached to a cart line"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    modifier_id: str = Field(..., description="Modifier identifier")
    name: str = Field(..., description="Display name")
    price: WireNumber = Field(ZERO, description="Modifier price")


class CartItem(CamelModel):
    """Cart line; sub_total and tax are already multiplied by quantity"""
    product_id: str = Field(..., description="Product identifier")
    name: str = Field(..., description="Product name")
    price: WireNumber = Field(..., description="Unit price")
    quantity: int = Field(..., ge=1, description="Item quantity")
    modifiers: List[CartModifier] = Field(default_factory=list, description="Selected modifiers")
    image: Optional[str] = Field(None, description="Product image URL")
    sub_total: WireNumber = Field(..., description="Line subtotal (price x quantity)")
    tax: WireNumber = Field(ZERO, description="Line tax (tax x quantity)")
    discount: WireNumber = Field(ZERO, description="Line discount")


class Cart(CamelModel):
    """Cart aggregate with derived totals"""
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = Field(0, description="Sum of item quantities")
    sub_total: WireNumber = Field(ZERO, description="Sum of line subtotals")
    total_tax: WireNumber = Field(ZERO, description="Sum of line taxes")
    final_total: WireNumber = Field(ZERO, description="Subtotal plus tax")

    @classmethod
    def empty(cls) -> "Cart":
        return cls()


class User(CamelModel):
    """Customer profile as returned by the upstream API"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[str] = Field(None, alias="_id")
    customer_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    store_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.phone and self.phone.strip())


class UserUpdate(CamelModel):
    """Partial profile update"""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class Store(CamelModel):
    id: str = Field(..., alias="_id")
    name: str
    subdomain: str
    address: Optional[str] = None
    phone: Optional[str] = None
    logo: Optional[str] = None
    description: Optional[str] = None


class FulfillmentType(str, Enum):
    PICKUP = "WEB_PICKUP"
    DELIVERY = "WEB_DELIVERY"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"


class CardType(str, Enum):
    CREDIT = "credit card"
    DEBIT = "debit card"


class CardDetails(CamelModel):
    """Card form fields; validated locally, never charged"""
    card_number: str = Field("", repr=False)
    card_name: str = ""
    expiry_date: str = ""
    cvv: str = Field("", repr=False)
    card_type: CardType = CardType.CREDIT

    def missing_fields(self) -> List[str]:
        fields = ("card_number", "card_name", "expiry_date", "cvv")
        return [name for name in fields if not getattr(self, name).strip()]


class OrderModifierRef(CamelModel):
    id: str
    qty: int = 1


class OrderLine(CamelModel):
    product_id: str
    quantity: int
    price: WireNumber
    sub_total: WireNumber
    tax: WireNumber
    discount: WireNumber
    modifiers: List[OrderModifierRef] = Field(default_factory=list)
    order_id: str = ""


class OrderPayload(CamelModel):
    """Order placement request body, built fresh at checkout"""
    order_items: List[OrderLine]
    customer_id: Optional[str]
    payment_method: str
    type: FulfillmentType
    sub_total: WireNumber
    total_tax: WireNumber
    final_total: WireString
    total_discount: WireString

    def to_upstream(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PaymentRecord(CamelModel):
    amount: WireNumber
    payment_method: str = PaymentMethod.CASH.value
    order_id: str
    status: str = "PAID"


class CheckoutOptions(CamelModel):
    order_type: FulfillmentType = FulfillmentType.PICKUP
    payment_method: PaymentMethod = PaymentMethod.CASH
    card: Optional[CardDetails] = None


class CheckoutStatus(str, Enum):
    PLACED = "placed"
    PLACED_WITH_WARNING = "placed_with_warning"
    LOGIN_REQUIRED = "login_required"
    PROFILE_INCOMPLETE = "profile_incomplete"
    INVALID_CARD = "invalid_card"
    EMPTY_CART = "empty_cart"
    FAILED = "failed"


class CheckoutResult(CamelModel):
    status: CheckoutStatus
    message: str
    order_id: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    redirect_to: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (CheckoutStatus.PLACED, CheckoutStatus.PLACED_WITH_WARNING)


class OtpVerification(CamelModel):
    success: bool
    user: Optional[User] = None
    error: Optional[str] = None


# Request/response bodies for the storefront routes

class LoginRequest(CamelModel):
    phone: str
    store_id: Optional[str] = None


class VerifyOtpRequest(CamelModel):
    phone: str
    otp: str
    store_id: Optional[str] = None


class QuantityUpdateRequest(CamelModel):
    quantity: int


class SessionResponse(CamelModel):
    state: str
    authenticated: bool
    user: Optional[User] = None
    error: Optional[str] = None
