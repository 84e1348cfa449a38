# cartsync/domain/schemas.py
import re
import time
from decimal import Decimal
from enum import Enum
from typing import Any, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cartsync.domain.errors import CartError
from cartsync.utils.settings import POSTAL_CODE_LENGTH

DEFAULT_SIZE = "Default"

# (product_id, selected_size)
LineKey = Tuple[int, str]


def now_ms() -> int:
    return int(time.time() * 1000)


# =====================================================
# CART LINES
# =====================================================
class CartLine(BaseModel):
    """Schema dla pozycji koszyka, wspolna dla goscia i zalogowanego."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(..., alias="productId")
    product_name: str = Field("", alias="productName")
    unit_price: Decimal = Field(Decimal("0"), alias="price", ge=0)
    discounted_unit_price: Decimal | None = Field(None, alias="discountedPrice", ge=0)
    quantity: int = Field(1, ge=1)
    selected_size: str = Field(DEFAULT_SIZE, alias="selectedSize")
    images: List[str] = Field(default_factory=list)

    @field_validator("product_name", mode="before")
    @classmethod
    def _name_or_blank(cls, v):
        return v or ""

    @field_validator("selected_size", mode="before")
    @classmethod
    def _size_or_default(cls, v):
        return v or DEFAULT_SIZE

    @field_validator("images", mode="before")
    @classmethod
    def _image_urls(cls, v):
        # images bywaja stringami albo obiektami {imageUrl}
        if not v:
            return []
        if isinstance(v, (str, dict)):
            v = [v]
        urls = []
        for img in v:
            if isinstance(img, str):
                urls.append(img)
            elif isinstance(img, dict) and img.get("imageUrl"):
                urls.append(img["imageUrl"])
        return [u for u in urls if u]

    @property
    def key(self) -> LineKey:
        return (self.product_id, self.selected_size)

    @property
    def effective_price(self) -> Decimal:
        if self.discounted_unit_price is not None:
            return self.discounted_unit_price
        return self.unit_price

    def total_for(self, quantity: int | None = None) -> Decimal:
        qty = self.quantity if quantity is None else quantity
        return self.effective_price * qty


class GuestLine(CartLine):
    """Pozycja koszyka goscia, trzymana tylko lokalnie."""

    description: str = ""
    added_at: int = Field(default_factory=now_ms, alias="addedAt")

    @field_validator("description", mode="before")
    @classmethod
    def _description_or_blank(cls, v):
        return v or ""

    @field_validator("added_at", mode="before")
    @classmethod
    def _timestamp(cls, v):
        # stare rekordy trzymaly tu stringi ISO
        if isinstance(v, (int, float)) and not isinstance(v, bool) and v > 0:
            return int(v)
        return now_ms()


class AuthLine(CartLine):
    """Pozycja koszyka zwrocona przez serwer."""

    cart_item_id: int = Field(..., alias="cartItemId")
    total_price: Decimal | None = Field(None, alias="totalPrice")

    @model_validator(mode="before")
    @classmethod
    def _product_price(cls, data: Any):
        if isinstance(data, dict) and data.get("productPrice") is not None:
            data = {**data, "price": data["productPrice"]}
        return data


class CartViewLine(CartLine):
    cart_item_id: int | None = Field(None, alias="cartItemId")
    original_quantity: int = Field(..., alias="originalQuantity")
    line_total: Decimal = Field(..., alias="lineTotal")

    @property
    def has_pending_change(self) -> bool:
        return self.quantity != self.original_quantity


class CartView(BaseModel):
    """Zunifikowany widok koszyka niezaleznie od stanu logowania."""

    authenticated: bool = False
    lines: List[CartViewLine] = Field(default_factory=list)
    has_unsynced_changes: bool = False

    @property
    def subtotal(self) -> Decimal:
        return sum((l.effective_price * l.quantity for l in self.lines), Decimal("0.00"))

    @property
    def item_count(self) -> int:
        return sum(l.quantity for l in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def find(self, key: LineKey) -> CartViewLine | None:
        for line in self.lines:
            if line.key == key:
                return line
        return None


# =====================================================
# OFFERS, ORDERS, PAYMENT
# =====================================================
class AppliedOffer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    offer_code: str = Field(..., alias="offerCode", min_length=1)
    discount_amount: Decimal = Field(..., alias="discountAmount", ge=0)
    discount_percentage: Decimal | None = Field(None, alias="discountPercentage")


class ShippingAddress(BaseModel):
    """Schema dla adresu dostawy. Landmark i remark sa opcjonalne."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    house_no: str = Field(..., alias="houseNo", min_length=1)
    street: str = Field(..., min_length=1)
    landmark: str = ""
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    remark: str = ""

    @field_validator("pincode")
    @classmethod
    def _pincode_digits(cls, v: str) -> str:
        if not re.fullmatch(rf"\d{{{POSTAL_CODE_LENGTH}}}", v):
            raise ValueError(f"Pincode must be {POSTAL_CODE_LENGTH} digits")
        return v


class DraftOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_PAYMENT = "PENDING_PAYMENT"


class DraftOrder(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: int | str = Field(..., alias="orderId")
    amount: Decimal = Decimal("0")
    currency: str = "INR"
    # serwer potrafi zwrocic wlasne nazwy statusow, nie zawezamy do enuma
    status: str = DraftOrderStatus.DRAFT.value

    @model_validator(mode="before")
    @classmethod
    def _amount_aliases(cls, data: Any):
        if isinstance(data, dict) and "amount" not in data:
            for alt in ("finalAmount", "totalAmount"):
                if data.get(alt) is not None:
                    return {**data, "amount": data[alt]}
        return data


class PaymentOrderHandle(BaseModel):
    """Jednorazowy uchwyt transakcji po stronie bramki."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    order_id: int | str = Field(..., alias="orderId")
    gateway_order_id: str = Field(..., alias="gatewayOrderId", min_length=1)
    amount: Decimal
    currency: str = "INR"

    @model_validator(mode="before")
    @classmethod
    def _gateway_payload(cls, data: Any):
        # {gatewayPayload: {key, order_id, amount, currency}}
        if isinstance(data, dict) and isinstance(data.get("gatewayPayload"), dict):
            payload = data["gatewayPayload"]
            data = {
                **data,
                "gatewayOrderId": data.get("gatewayOrderId") or payload.get("order_id"),
                "amount": payload.get("amount", data.get("amount")),
                "currency": payload.get("currency") or data.get("currency") or "INR",
            }
        return data


class PaymentConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gateway_key: str = Field(..., alias="gatewayKey", min_length=1)
    display_name: str = Field("", alias="displayName")
    theme: str = ""


class PaymentConfirmation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: int | str = Field(..., alias="orderId")
    payment_id: str = Field(..., alias="paymentId")
    gateway_order_id: str = Field(..., alias="gatewayOrderId")
    signature: str


# =====================================================
# RESULTS
# =====================================================
class ApiResult(BaseModel):
    """
    Wynik pojedynczego wywolania API.
    Oczekiwane bledy (walidacja, 404, brak sieci) nie sa rzucane.
    """

    ok: bool
    data: Any = None
    message: str = ""
    error: str | None = None
    status_code: int | None = None

    @classmethod
    def success(cls, data: Any = None, message: str = "", status_code: int | None = 200) -> "ApiResult":
        return cls(ok=True, data=data, message=message, status_code=status_code)

    @classmethod
    def failure(cls, message: str, error: str | None = None, status_code: int | None = None) -> "ApiResult":
        return cls(ok=False, message=message, error=error or message, status_code=status_code)

    @property
    def is_network_error(self) -> bool:
        return not self.ok and self.status_code is None


class Outcome(BaseModel):
    ok: bool
    error: CartError | None = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(ok=True)

    @classmethod
    def fail(cls, error: CartError) -> "Outcome":
        return cls(ok=False, error=error)


class SyncOutcome(Outcome):
    synced: List[LineKey] = Field(default_factory=list)
    failed: List[LineKey] = Field(default_factory=list)
    # usuniete na serwerze, ale nie dodane ponownie
    lost: List[LineKey] = Field(default_factory=list)


class MergeStatus(str, Enum):
    MERGED = "MERGED"
    SKIPPED = "SKIPPED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class MergeOutcome(BaseModel):
    status: MergeStatus
    merged: int = 0
    failed: int = 0
    reason: str = ""


class CheckoutState(str, Enum):
    IDLE = "IDLE"
    CREATING_DRAFT = "CREATING_DRAFT"
    CREATING_PAYMENT_ORDER = "CREATING_PAYMENT_ORDER"
    AWAITING_GATEWAY = "AWAITING_GATEWAY"
    CONFIRMING = "CONFIRMING"
    DONE = "DONE"
    FAILED = "FAILED"


class CheckoutOutcome(BaseModel):
    state: CheckoutState
    order_id: int | str | None = None
    payment_id: str | None = None
    error: CartError | None = None

    @property
    def ok(self) -> bool:
        return self.state == CheckoutState.DONE
