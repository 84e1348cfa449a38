# cartsync/services/api_client.py
from typing import Any, Callable

import requests
from requests import RequestException

from cartsync.domain.errors import CartError, ErrorKind
from cartsync.domain.schemas import ApiResult
from cartsync.utils.retry import http_retry
from cartsync.utils.settings import API_BASE_URL, HTTP_TIMEOUT_SECONDS
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


def unwrap(payload: Any) -> Any:
    """{success, message, data} -> data; inne ksztalty bez zmian."""
    if isinstance(payload, dict) and "data" in payload and ("success" in payload or "message" in payload):
        return payload["data"]
    return payload


def error_from_result(result: ApiResult, message: str) -> CartError:
    """Brak sieci i 5xx -> NETWORK, odrzucenie przez serwer (4xx) -> VALIDATION."""
    if result.is_network_error or (result.status_code or 0) >= 500:
        kind = ErrorKind.NETWORK
    else:
        kind = ErrorKind.VALIDATION
    return CartError(
        kind=kind,
        message=message,
        details={"reason": result.message, "status_code": result.status_code},
    )


class ApiClient:
    """
    Bazowy klient HTTP do zdalnego API sklepu.
    Kazda metoda to jedno zapytanie i zwraca ApiResult zamiast rzucac.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        token_provider: Callable[[], str | None] | None = None,
    ):
        self.base_url = (base_url or API_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.token_provider = token_provider

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = self.token_provider() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        logger.info(f"{type(self).__name__} {method} {url}")
        return requests.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)

    @http_retry()
    def _send_with_retry(self, method: str, path: str, **kwargs) -> requests.Response:
        return self._send(method, path, **kwargs)

    def request(self, method: str, path: str, retry: bool = False, **kwargs) -> ApiResult:
        try:
            if retry:
                resp = self._send_with_retry(method, path, **kwargs)
            else:
                resp = self._send(method, path, **kwargs)
        except RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            return ApiResult.failure("Network error, please try again", error=str(e))

        return self._handle_response(resp)

    def _handle_response(self, resp: requests.Response) -> ApiResult:
        try:
            payload = resp.json() if resp.content else None
        except ValueError as e:
            if resp.ok:
                logger.error(f"Failed to parse response from {resp.url}: {e}")
                return ApiResult.failure(
                    "Failed to parse response", error=str(e), status_code=resp.status_code
                )
            payload = None

        message = payload.get("message", "") if isinstance(payload, dict) else ""

        if not resp.ok:
            error = payload.get("error") if isinstance(payload, dict) else None
            logger.warning(f"Request to {resp.url} failed with {resp.status_code}: {message or error}")
            return ApiResult.failure(
                message or "Request failed",
                error=error or message or resp.reason,
                status_code=resp.status_code,
            )

        #200 ale z success=false w kopercie
        if isinstance(payload, dict) and payload.get("success") is False:
            return ApiResult.failure(
                message or "Request failed",
                error=payload.get("error"),
                status_code=resp.status_code,
            )

        return ApiResult.success(unwrap(payload), message=message, status_code=resp.status_code)
