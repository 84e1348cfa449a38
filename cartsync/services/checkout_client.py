# cartsync/services/checkout_client.py
from decimal import Decimal
from typing import List, Type

from pydantic import BaseModel, ValidationError

from cartsync.domain.schemas import (
    ApiResult,
    AppliedOffer,
    CartViewLine,
    DraftOrder,
    PaymentConfig,
    PaymentConfirmation,
    PaymentOrderHandle,
    ShippingAddress,
)
from cartsync.repos.guest_cart_repo import json_number
from cartsync.services.api_client import ApiClient
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


class CheckoutClient(ApiClient):
    """Oferty, zamowienia robocze i platnosci."""

    def _parse(self, result: ApiResult, model: Type[BaseModel], what: str) -> ApiResult:
        if not result.ok:
            return result
        try:
            parsed = model.model_validate(result.data)
        except ValidationError as e:
            logger.error(f"Unexpected {what} response: {e}")
            return ApiResult.failure(f"Invalid {what} response", error=str(e), status_code=result.status_code)
        return ApiResult.success(parsed, message=result.message, status_code=result.status_code)

    # =====================================================
    # OFFERS
    # =====================================================
    def apply_offer(self, user_id: int, code: str) -> ApiResult:
        result = self.request("POST", "/api/offers/apply", json={"userId": user_id, "offerCode": code})
        if not result.ok:
            return result

        data = result.data if isinstance(result.data, dict) else {}
        discount = data.get("discount", data.get("discountAmount"))
        try:
            offer = AppliedOffer(
                offer_code=code,
                discount_amount=Decimal(str(discount if discount is not None else 0)),
                discount_percentage=data.get("discountPercentage", data.get("discountPercent")),
            )
        except (ValidationError, ArithmeticError) as e:
            logger.error(f"Unexpected offer response for {code}: {e}")
            return ApiResult.failure("Invalid offer response", error=str(e), status_code=result.status_code)
        return ApiResult.success(offer, message=result.message, status_code=result.status_code)

    # =====================================================
    # ORDERS / PAYMENT
    # =====================================================
    def get_payment_config(self) -> ApiResult:
        return self._parse(self.request("GET", "/api/payment/config", retry=True), PaymentConfig, "payment config")

    def create_draft_order(
        self,
        user_id: int,
        address: ShippingAddress,
        lines: List[CartViewLine],
        offer_code: str | None = None,
    ) -> ApiResult:
        payload = {
            "userId": user_id,
            **address.model_dump(by_alias=True),
            "offerCode": offer_code or "",
            "items": [
                {
                    "productId": l.product_id,
                    "selectedSize": l.selected_size,
                    "quantity": l.quantity,
                    "price": json_number(l.effective_price),
                }
                for l in lines
            ],
        }
        return self._parse(self.request("POST", "/api/orders/checkout", json=payload), DraftOrder, "draft order")

    def create_payment_order(self, order_id: int | str) -> ApiResult:
        result = self.request("POST", "/api/payment/initiate", params={"orderId": order_id})
        return self._parse(result, PaymentOrderHandle, "payment order")

    def confirm_payment(self, confirmation: PaymentConfirmation) -> ApiResult:
        return self.request("POST", "/api/payment/success", json=confirmation.model_dump(by_alias=True))

    def report_payment_failure(self, order_id: int | str, gateway_order_id: str, reason: str) -> ApiResult:
        return self.request(
            "POST",
            "/api/payment/failure",
            json={"orderId": order_id, "gatewayOrderId": gateway_order_id, "reason": reason},
        )
