# cartsync/services/cart_client.py
from typing import Any, List

from pydantic import ValidationError

from cartsync.domain.schemas import ApiResult, AuthLine, DEFAULT_SIZE
from cartsync.services.api_client import ApiClient
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


def extract_items(data: Any) -> List[dict]:
    # {items: [...]}, [...] albo {data: {items}} - serwer nie jest konsekwentny
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("items", "data"):
            if key in data:
                return extract_items(data[key])
    return []


class CartClient(ApiClient):
    """Operacje na koszyku zalogowanego uzytkownika po stronie serwera."""

    ADD = "/api/cart/add"

    def fetch(self, user_id: int) -> ApiResult:
        result = self.request("GET", f"/api/cart/{user_id}", retry=True)
        if not result.ok:
            return result

        try:
            lines = [AuthLine.model_validate(i) for i in extract_items(result.data)]
        except ValidationError as e:
            logger.error(f"Malformed cart for user {user_id}: {e}")
            return ApiResult.failure("Failed to read cart", error=str(e), status_code=result.status_code)

        return ApiResult.success(lines, message=result.message, status_code=result.status_code)

    def add_line(self, user_id: int, product_id: int, quantity: int, size: str | None = None) -> ApiResult:
        return self.request(
            "POST",
            self.ADD,
            json={
                "userId": user_id,
                "productId": product_id,
                "quantity": quantity,
                "selectedSize": size or DEFAULT_SIZE,
            },
        )

    def remove_line(self, cart_item_id: int) -> ApiResult:
        return self.request("DELETE", f"/api/cart/remove/{cart_item_id}")

    def clear_all(self, user_id: int) -> ApiResult:
        return self.request("DELETE", f"/api/cart/clear/{user_id}")
